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

# -*- coding: utf-8 -*-

import functools
import inspect
from typing import Callable, NamedTuple, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp

from deepbelief.config import get_block_size

__all__ = [
    'cdiv',
    'LaunchConfig',
    'resolve_block_size',
    'pad_to_block',
    'NameScope',
    'namescope',
]


def cdiv(m: int, n: int) -> int:
    """Compute the ceiling division of two positive integers.

    Parameters
    ----------
    m : int
        The dividend.
    n : int
        The divisor. Must be positive.

    Returns
    -------
    int
        The smallest integer ``k`` satisfying ``k * n >= m``.

    Raises
    ------
    ValueError
        If ``n`` is not positive.

    Examples
    --------
    .. code-block:: python

        >>> from deepbelief._misc import cdiv
        >>> cdiv(10, 3)
        4
        >>> cdiv(9, 3)
        3
    """
    if n <= 0:
        raise ValueError("Divisor must be positive")
    return (m + n - 1) // n


class LaunchConfig(NamedTuple):
    """Grid and block geometry of one kernel launch.

    ``grid`` and ``block`` are ``(x, y)`` tuples in CUDA order: ``x`` runs
    along output columns (or the flat element index for 1-D launches),
    ``y`` along output rows. The caller rounds the grid up so it covers the
    whole output; surplus units are masked inside the kernels.
    """
    grid: Tuple[int, ...]
    block: Tuple[int, ...]

    @classmethod
    def for_tiles(cls, height: int, width: int, block_size: int) -> 'LaunchConfig':
        """One ``block_size x block_size`` block per output tile."""
        return cls(
            grid=(cdiv(width, block_size), cdiv(height, block_size)),
            block=(block_size, block_size),
        )

    @classmethod
    def for_elements(cls, n: int, block_size: int) -> 'LaunchConfig':
        """One unit per element, ``block_size`` units per block."""
        return cls(grid=(max(cdiv(n, block_size), 1),), block=(block_size,))

    @property
    def num_blocks(self) -> int:
        total = 1
        for g in self.grid:
            total *= g
        return total

    @property
    def num_units(self) -> int:
        total = self.num_blocks
        for b in self.block:
            total *= b
        return total


def resolve_block_size(block_size: Optional[int]) -> int:
    """Return ``block_size``, or the configured default when it is ``None``."""
    if block_size is None:
        return get_block_size()
    if not isinstance(block_size, int) or block_size <= 0:
        raise ValueError(f'block_size must be a positive integer, got {block_size!r}.')
    return block_size


def pad_to_block(a, block_size: Optional[int] = None):
    """Zero-pad a matrix on the bottom and right up to multiples of ``block_size``.

    The tiled multiply requires block-aligned operands. Zero rows and columns
    do not change the product, so ``matmul(pad_to_block(a), pad_to_block(b))``
    cropped to the original output shape equals ``a @ b``.

    Parameters
    ----------
    a : array_like
        A 2-D matrix.
    block_size : int, optional
        Tile edge; defaults to :func:`deepbelief.config.get_block_size`.

    Returns
    -------
    jax.Array
        The padded matrix; ``a`` itself (as an array) when already aligned.

    Examples
    --------
    .. code-block:: python

        >>> import jax.numpy as jnp
        >>> from deepbelief import pad_to_block
        >>> pad_to_block(jnp.ones((3, 5)), block_size=4).shape
        (4, 8)
    """
    a = jnp.asarray(a)
    if a.ndim != 2:
        raise ValueError(f'pad_to_block expects a matrix, got shape {a.shape}.')
    bs = resolve_block_size(block_size)
    pad_rows = cdiv(a.shape[0], bs) * bs - a.shape[0]
    pad_cols = cdiv(a.shape[1], bs) * bs - a.shape[1]
    if pad_rows == 0 and pad_cols == 0:
        return a
    return jnp.pad(a, ((0, pad_rows), (0, pad_cols)))


def _static_arguments(sig: inspect.Signature, static_argnums, static_argnames):
    """Complete the static positions and names of ``sig`` from each other.

    A static name also marks its position and a static position also marks
    its name, so static arguments may be passed either way.
    """
    argnums = {static_argnums} if isinstance(static_argnums, int) else set(static_argnums)
    argnames = {static_argnames} if isinstance(static_argnames, str) else set(static_argnames)
    positional = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    for i, param in enumerate(sig.parameters.values()):
        if param.kind not in positional:
            break
        if param.name in argnames:
            argnums.add(i)
        if i in argnums and param.kind == inspect.Parameter.POSITIONAL_OR_KEYWORD:
            argnames.add(param.name)
    return tuple(sorted(argnums)), tuple(sorted(argnames))


class NameScope:
    """A callable that caches a separate JIT-compiled function per ``backend`` value.

    Each distinct ``backend`` keyword produces its own ``jax.jit`` variant of
    the wrapped function, so switching backends never hits a stale trace.

    Parameters
    ----------
    fn : callable
        The function to wrap.
    name : str or None, optional
        Display name. Defaults to ``f"{prefix}.{fn.__name__}"``.
    prefix : str, optional
        Prefix of the derived name.
    module : str, optional
        Value of ``__module__``.
    static_argnums, static_argnames : optional
        Forwarded to ``jax.jit`` after each is completed from the other, so
        a static argument may be passed by position or by name.
    """

    def __init__(
        self,
        fn: Callable,
        name: Optional[str] = None,
        prefix: str = "deepbelief",
        module: str = 'deepbelief',
        static_argnums: Sequence[int] | int = (),
        static_argnames: Sequence[str] | str = (),
    ):
        self._fn = fn
        fn.__name__ = name if name is not None else f"{prefix}.{fn.__name__}"
        self._cache = {}
        sig = inspect.signature(fn)
        self._static_argnums, self._static_argnames = _static_arguments(sig, static_argnums, static_argnames)
        self._has_backend = (
            'backend' in sig.parameters or
            any(p.kind == inspect.Parameter.VAR_KEYWORD for p in sig.parameters.values())
        )
        self.__name__ = fn.__name__
        self.__qualname__ = getattr(fn, '__qualname__', self.__name__)
        self.__doc__ = fn.__doc__
        self.__module__ = module
        self.__wrapped__ = fn

    def _get_jit_fn(self, backend):
        if backend not in self._cache:
            fn = functools.partial(self._fn, backend=backend) if self._has_backend else self._fn
            self._cache[backend] = jax.jit(
                fn,
                static_argnums=self._static_argnums,
                static_argnames=self._static_argnames,
            )
        return self._cache[backend]

    def __call__(self, *args, **kwargs):
        backend = kwargs.pop('backend', None)
        return self._get_jit_fn(backend)(*args, **kwargs)

    def __repr__(self):
        return f"<NameScope({self.__name__})>"


def namescope(
    fn: Callable = None,
    name: str = None,
    prefix: str = "deepbelief",
    module: str = 'deepbelief',
    static_argnums: Sequence[int] = (),
    static_argnames: Sequence[str] = ()
):
    """Decorator form of :class:`NameScope`, usable with or without arguments.

    Examples
    --------
    .. code-block:: python

        >>> from deepbelief._misc import namescope
        >>> @namescope(static_argnames=("block_size",))
        ... def scaled(x, *, block_size=None, backend=None):
        ...     return x * 2
    """
    if fn is None:
        def decorator(fun: Callable):
            return NameScope(
                fun,
                name=name,
                prefix=prefix,
                module=module,
                static_argnums=static_argnums,
                static_argnames=static_argnames
            )

        return decorator
    return NameScope(
        fn,
        name=name,
        prefix=prefix,
        module=module,
        static_argnums=static_argnums,
        static_argnames=static_argnames
    )
