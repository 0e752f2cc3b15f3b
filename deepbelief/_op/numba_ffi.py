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

import importlib.util
import threading
from typing import Dict, Tuple

import jax
import numpy as np

from ._xla_ffi import TypedFfiHandler, as_sequence, normalize_shapes_and_dtypes
from .util import OutType, abstract_arguments

__all__ = [
    'numba_kernel',
]

numba_installed = importlib.util.find_spec('numba') is not None

_NUMBA_CPU_FFI_HANDLERS: Dict[tuple, 'NumbaCpuFfiHandler'] = {}
_REGISTRATION_LOCK = threading.Lock()


def _numpy_from_buffer(data_ptr: int, shape: Tuple[int, ...], dtype: np.dtype) -> np.ndarray:
    """Zero-copy numpy view of a host buffer owned by XLA."""
    size = int(np.prod(shape, dtype=np.int64))
    if size == 0:
        return np.empty(shape, dtype=dtype)
    c_type = np.ctypeslib.as_ctypes_type(dtype)
    buffer = (c_type * size).from_address(data_ptr)
    return np.ctypeslib.as_array(buffer).reshape(shape)


class NumbaCpuFfiHandler(TypedFfiHandler):
    """Typed FFI target calling an ``@numba.njit`` kernel as ``kernel(*inputs, *outputs)``."""

    platform = 'cpu'

    def wrap_buffer(self, data_ptr, shape, dtype):
        return _numpy_from_buffer(data_ptr, shape, dtype)

    def launch(self, call_frame, inputs, outputs):
        self.kernel(*inputs, *outputs)


def _get_or_register_target(kernel, input_shapes, input_dtypes, output_shapes, output_dtypes) -> str:
    if not numba_installed:
        raise ImportError('Numba is required to compile the CPU kernels of deepbelief.')

    key = (kernel, input_shapes, input_dtypes, output_shapes, output_dtypes)
    with _REGISTRATION_LOCK:
        handler = _NUMBA_CPU_FFI_HANDLERS.get(key)
        if handler is None:
            name = f'deepbelief_numba_ffi_{len(_NUMBA_CPU_FFI_HANDLERS)}'
            handler = NumbaCpuFfiHandler(name, kernel, input_dtypes, output_dtypes)
            _NUMBA_CPU_FFI_HANDLERS[key] = handler
    return handler.name


def numba_kernel(
    kernel,
    outs: OutType,
    *,
    vmap_method: str | None = None,
    input_output_aliases: dict[int, int] | None = None,
):
    """Wrap an ``@numba.njit`` function as a JAX-callable CPU kernel.

    The kernel is called with the input arrays followed by the output
    arrays, all as zero-copy numpy views, and must fill the outputs in place.

    Parameters
    ----------
    kernel : numba.core.registry.CPUDispatcher
        The compiled kernel.
    outs : jax.ShapeDtypeStruct or sequence of them
        Output specification.
    vmap_method : str, optional
        Forwarded to ``jax.ffi.ffi_call``.
    input_output_aliases : dict, optional
        Forwarded to ``jax.ffi.ffi_call``.

    Returns
    -------
    callable
        ``call(*ins) -> sequence of jax.Array``.

    Examples
    --------
    .. code-block:: python

        >>> import numba
        >>> @numba.njit
        ... def scale(x, out):
        ...     for i in range(x.size):
        ...         out[i] = 2 * x[i]
        >>> f = numba_kernel(scale, outs=[jax.ShapeDtypeStruct((4,), np.float32)])  # doctest: +SKIP
        >>> f(jnp.arange(4.))  # doctest: +SKIP
    """
    from numba.core.registry import CPUDispatcher

    assert isinstance(kernel, CPUDispatcher), 'The kernel must be a Numba JIT-compiled function.'
    outs_seq = as_sequence(outs)
    output_shapes, output_dtypes = normalize_shapes_and_dtypes(
        tuple(out.shape for out in outs_seq),
        tuple(out.dtype for out in outs_seq),
        'output',
    )

    def call(*ins):
        in_info, _ = abstract_arguments(ins)
        input_shapes, input_dtypes = normalize_shapes_and_dtypes(
            tuple(inp.shape for inp in in_info),
            tuple(inp.dtype for inp in in_info),
            'input',
        )
        target_name = _get_or_register_target(kernel, input_shapes, input_dtypes, output_shapes, output_dtypes)
        out_types = tuple(jax.ShapeDtypeStruct(s, d) for s, d in zip(output_shapes, output_dtypes))
        return jax.ffi.ffi_call(
            target_name,
            out_types,
            input_output_aliases=input_output_aliases,
            vmap_method=vmap_method,
        )(*ins)

    return call
