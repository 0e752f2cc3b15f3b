# -*- coding: utf-8 -*-
# Copyright 2025 BrainX Ecosystem Limited. All Rights Reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import functools
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from jax.interpreters import xla, batching, mlir

from deepbelief._compatible_import import Primitive
from deepbelief._error import KernelFallbackExhaustedError
from deepbelief._typing import KernelGenerator
from deepbelief.config import get_backend, get_user_default
from .util import general_batching_rule, OutType, abstract_arguments

__all__ = [
    'XLACustomKernel',
    'KernelEntry',
]


@dataclass
class KernelEntry:
    """One registered kernel implementation.

    Parameters
    ----------
    backend : str
        ``'numba'``, ``'numba_cuda'`` or ``'jax_raw'``.
    platform : str
        ``'cpu'``, ``'gpu'`` or ``'tpu'``.
    kernel_generator : KernelGenerator
        Receives the keyword parameters of the primitive bind and returns
        a kernel callable on the input arrays.
    """
    backend: str
    platform: str
    kernel_generator: KernelGenerator


class XLACustomKernel:
    """A JAX primitive whose lowering dispatches to one of several kernel backends.

    Each deepbelief kernel (tiled multiply, vector-matrix product,
    elementwise operation, RNG) is one instance of this class. Backends are
    registered per platform with :meth:`def_kernel` or its shorthands; at
    lowering time one of them is chosen with this priority:

    1. the ``backend=`` keyword of the call;
    2. the global override from :func:`deepbelief.config.set_backend`;
    3. the persisted user default from :func:`deepbelief.config.set_user_default`;
    4. the primitive default (:meth:`set_default`, or the first registered);
    5. the first registered backend.

    Overrides naming a backend the primitive does not have are skipped.

    The primitive always has multiple results. Output shapes and dtypes are
    given by the caller through ``outs`` and returned by abstract evaluation
    as they are. Batching defaults to :func:`general_batching_rule`.

    Parameters
    ----------
    name : str
        Unique primitive name; also the key in the global registry.
    doc : str, optional
        Docstring of the instance.

    Examples
    --------
    .. code-block:: python

        >>> kernel = XLACustomKernel('my_op')
        >>> kernel.def_numba_kernel(numba_kernel_generator)  # doctest: +SKIP
        >>> kernel.def_jax_kernel(jax_kernel_generator)  # doctest: +SKIP
        >>> kernel.available_backends('cpu')  # doctest: +SKIP
        ['numba', 'jax_raw']
    """

    __module__ = 'deepbelief'

    def __init__(self, name: str, doc: str = None):
        self.name = name
        self.primitive = Primitive(name)
        self.primitive.multiple_results = True
        if doc is not None:
            self.__doc__ = doc

        self.primitive.def_impl(functools.partial(xla.apply_primitive, self.primitive))
        self.primitive.def_abstract_eval(self._abstract_eval)
        self.register_general_batching()

        # platform -> backend -> KernelEntry
        self._kernels: Dict[str, Dict[str, KernelEntry]] = {}
        self._defaults: Dict[str, str] = {}
        self._registered_platforms: Set[str] = set()
        self._call_fn: Optional[Callable] = None
        self._tags: Set[str] = set()

        from deepbelief._registry import register_primitive
        register_primitive(name, self)

    def _abstract_eval(self, *ins, outs: OutType, **kwargs):
        return tuple(outs)

    def __call__(self, *ins, outs: OutType, **kwargs):
        """Bind the primitive.

        Parameters
        ----------
        *ins : jax.Array
            Operands.
        outs : OutType
            Shape/dtype descriptors of the outputs (pytree).
        **kwargs
            Static parameters forwarded to the kernel generator. ``backend``
            selects a backend for this call.

        Returns
        -------
        pytree of jax.Array
            Outputs, structured like ``outs``.
        """
        outs, tree_def = abstract_arguments(outs)
        r = self.primitive.bind(*ins, **kwargs, outs=tuple(outs))
        assert len(r) == len(outs), 'The number of outputs does not match the expected.'
        return tree_def.unflatten(r)

    def def_kernel(self, backend: str, platform: str, kg: KernelGenerator, asdefault: bool = False):
        """Register ``kg`` as the ``backend`` kernel of ``platform``.

        The first kernel of a platform becomes its default unless a later one
        passes ``asdefault=True``. The lowering rule of a platform is
        registered with JAX the first time any kernel targets it.
        """
        assert isinstance(backend, str), f'The `backend` should be a string, but got {type(backend)}.'
        assert isinstance(platform, str), f'The `platform` should be a string, but got {type(platform)}.'
        assert callable(kg), f'The `kg` should be a callable, but got {type(kg)}.'

        self._kernels.setdefault(platform, {})[backend] = KernelEntry(backend, platform, kg)
        if asdefault or platform not in self._defaults:
            self._defaults[platform] = backend
        if platform not in self._registered_platforms:
            self._register_lowering(platform)
            self._registered_platforms.add(platform)

    def _select_backend(self, platform: str, requested: Optional[str]) -> str:
        kernels = self._kernels.get(platform, {})
        if not kernels:
            raise KernelFallbackExhaustedError(
                f"No kernels registered for platform '{platform}' in primitive '{self.name}'."
            )
        if requested is not None:
            if requested == '':
                raise ValueError(f"backend cannot be an empty string in primitive '{self.name}'.")
            if requested not in kernels:
                raise KernelFallbackExhaustedError(
                    f"Backend '{requested}' is not available for platform '{platform}' in primitive "
                    f"'{self.name}'. Available: {list(kernels)}."
                )
            return requested
        for candidate in (
            get_backend(platform),
            get_user_default(self.name, platform),
            self._defaults.get(platform),
        ):
            if candidate is not None and candidate in kernels:
                return candidate
        return next(iter(kernels))

    def _register_lowering(self, platform: str):
        def dispatch(*args, **kwargs):
            backend = self._select_backend(platform, kwargs.pop('backend', None))
            kernel = self._kernels[platform][backend].kernel_generator(**kwargs)
            return kernel(*args)

        lower = mlir.lower_fun(dispatch, multiple_results=True)
        mlir.register_lowering(self.primitive, lower, platform=platform)

    def def_numba_kernel(self, kg: KernelGenerator, asdefault: bool = False):
        """Register a Numba kernel for the CPU platform."""
        self.def_kernel(backend='numba', platform='cpu', kg=kg, asdefault=asdefault)

    def def_numba_cuda_kernel(self, kg: KernelGenerator, asdefault: bool = False):
        """Register a Numba CUDA kernel for the GPU platform."""
        self.def_kernel(backend='numba_cuda', platform='gpu', kg=kg, asdefault=asdefault)

    def def_jax_kernel(self, kg: KernelGenerator, platforms=('cpu', 'gpu', 'tpu')):
        """Register a ``jax.numpy`` kernel as the ``jax_raw`` backend of ``platforms``."""
        for platform in platforms:
            self.def_kernel(backend='jax_raw', platform=platform, kg=kg)

    def set_default(self, platform: str, backend: str):
        """Make ``backend`` the default of ``platform``.

        Raises
        ------
        ValueError
            If ``backend`` is not registered for ``platform``.
        """
        if platform not in self._kernels:
            raise ValueError(f"No kernels registered for platform '{platform}'")
        if backend not in self._kernels[platform]:
            raise ValueError(
                f"Backend '{backend}' not registered for platform '{platform}'. "
                f"Available: {list(self._kernels[platform])}"
            )
        self._defaults[platform] = backend

    def get_default(self, platform: str) -> Optional[str]:
        return self._defaults.get(platform)

    @property
    def defaults(self) -> Dict[str, str]:
        """A copy of the per-platform default backends."""
        return self._defaults.copy()

    def available_backends(self, platform: str) -> List[str]:
        """Backends registered for ``platform``, in registration order."""
        return list(self._kernels.get(platform, {}))

    def def_batching_rule(self, fun: Callable):
        batching.primitive_batchers[self.primitive] = fun

    def register_general_batching(self):
        """(Re)install :func:`general_batching_rule` as the batching rule."""
        batching.primitive_batchers[self.primitive] = functools.partial(general_batching_rule, self.primitive)

    def def_call(self, fn: Callable):
        """Attach the low-level call function (``*_p_call``) of this primitive."""
        self._call_fn = fn

    def call(self, *args, **kwargs):
        """Invoke the function attached with :meth:`def_call`."""
        if self._call_fn is None:
            raise ValueError(
                f"No call function registered for '{self.name}'. "
                "Use def_call() to register one before calling."
            )
        return self._call_fn(*args, **kwargs)

    def def_tags(self, *tags: str):
        """Set the categorization tags used by :func:`deepbelief.get_primitives_by_tags`."""
        self._tags = set(tags)

    @property
    def tags(self) -> Set[str]:
        return set(self._tags)

    def __repr__(self):
        return f"<XLACustomKernel({self.name}, backends={ {p: list(b) for p, b in self._kernels.items()} })>"
