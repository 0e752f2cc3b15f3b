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

import ctypes
import importlib.util
import threading
from ctypes import CFUNCTYPE, POINTER, Structure, c_size_t, c_void_p
from typing import Dict, Tuple, Union

import jax
import numpy as np

from deepbelief._error import KernelNotAvailableError
from ._xla_ffi import (
    TypedFfiHandler,
    XLA_FFI_Extension_Base,
    as_sequence,
    normalize_shapes_and_dtypes,
)
from .util import OutType, abstract_arguments

__all__ = [
    'numba_cuda_kernel',
    'numba_cuda_available',
]

_NUMBA_CUDA_FFI_HANDLERS: Dict[tuple, 'NumbaCudaFfiHandler'] = {}
_REGISTRATION_LOCK = threading.Lock()
_cuda_available = None


def numba_cuda_available() -> bool:
    """Return whether ``numba.cuda`` is importable and sees a CUDA device."""
    global _cuda_available
    if _cuda_available is None:
        if importlib.util.find_spec('numba') is None:
            _cuda_available = False
        else:
            try:
                from numba import cuda
                _cuda_available = bool(cuda.is_available())
            except ImportError:
                _cuda_available = False
    return _cuda_available


class XLA_FFI_Api_Version(Structure):
    _fields_ = [
        ("struct_size", c_size_t),
        ("extension_start", POINTER(XLA_FFI_Extension_Base)),
        ("major_version", ctypes.c_int),
        ("minor_version", ctypes.c_int),
    ]


class XLA_FFI_Stream_Get_Args(Structure):
    _fields_ = [
        ("struct_size", c_size_t),
        ("extension_start", POINTER(XLA_FFI_Extension_Base)),
        ("ctx", c_void_p),
        ("stream", c_void_p),
    ]


_XLA_FFI_Stream_Get_Fn = CFUNCTYPE(c_void_p, POINTER(XLA_FFI_Stream_Get_Args))


class XLA_FFI_Api(Structure):
    # prefix of XLA_FFI_Api up to XLA_FFI_Stream_Get
    _fields_ = [
        ("struct_size", c_size_t),
        ("extension_start", POINTER(XLA_FFI_Extension_Base)),
        ("api_version", XLA_FFI_Api_Version),
        ("internal_api", c_void_p),
        ("XLA_FFI_Error_Create", c_void_p),
        ("XLA_FFI_Error_GetMessage", c_void_p),
        ("XLA_FFI_Error_Destroy", c_void_p),
        ("XLA_FFI_Handler_Register", c_void_p),
        ("XLA_FFI_Stream_Get", _XLA_FFI_Stream_Get_Fn),
    ]


def _stream_of(call_frame) -> int:
    """Return the ``cudaStream_t`` XLA runs this call on."""
    args = XLA_FFI_Stream_Get_Args()
    args.struct_size = ctypes.sizeof(XLA_FFI_Stream_Get_Args)
    args.extension_start = POINTER(XLA_FFI_Extension_Base)()
    args.ctx = call_frame.ctx
    args.stream = None
    api = ctypes.cast(call_frame.api, POINTER(XLA_FFI_Api))
    api.contents.XLA_FFI_Stream_Get(args)
    return args.stream


class _DevicePointer:
    """Exposes a raw device pointer through ``__cuda_array_interface__``."""

    def __init__(self, ptr: int, shape: Tuple[int, ...], dtype: np.dtype):
        self._ptr = ptr
        self._shape = shape
        self._dtype = dtype

    @property
    def __cuda_array_interface__(self):
        return {
            'shape': self._shape,
            'typestr': self._dtype.str,
            'data': (self._ptr, False),
            'version': 3,
        }


class NumbaCudaFfiHandler(TypedFfiHandler):
    """Typed FFI target launching a ``@cuda.jit`` kernel on XLA's stream."""

    platform = 'CUDA'

    def __init__(self, name, kernel, input_dtypes, output_dtypes, grid, block, shared_mem=0):
        self.grid = grid
        self.block = block
        self.shared_mem = shared_mem
        super().__init__(name, kernel, input_dtypes, output_dtypes)

    def wrap_buffer(self, data_ptr, shape, dtype):
        from numba import cuda
        return cuda.as_cuda_array(_DevicePointer(data_ptr, shape, dtype))

    def launch(self, call_frame, inputs, outputs):
        from numba import cuda
        stream = cuda.external_stream(_stream_of(call_frame))
        self.kernel[self.grid, self.block, stream, self.shared_mem](*inputs, *outputs)


def _as_dims(dims: Union[int, Tuple[int, ...]]) -> Tuple[int, ...]:
    if isinstance(dims, int):
        return (dims,)
    return tuple(int(d) for d in dims)


def numba_cuda_kernel(
    kernel,
    outs: OutType,
    *,
    grid: Union[int, Tuple[int, ...]],
    block: Union[int, Tuple[int, ...]],
    shared_mem: int = 0,
    vmap_method: str | None = None,
    input_output_aliases: dict[int, int] | None = None,
):
    """Wrap a ``@cuda.jit`` kernel as a JAX-callable GPU kernel.

    The kernel receives the input device arrays followed by the output device
    arrays (zero-copy views of XLA's buffers) and is launched on the CUDA
    stream XLA assigned to the call, so no extra synchronization is needed.

    Parameters
    ----------
    kernel : numba.cuda.dispatcher.CUDADispatcher
        The compiled kernel.
    outs : jax.ShapeDtypeStruct or sequence of them
        Output specification.
    grid, block : int or tuple of int
        Launch geometry, usually from :class:`deepbelief._misc.LaunchConfig`.
    shared_mem : int, optional
        Dynamic shared memory in bytes.

    Returns
    -------
    callable
        ``call(*ins) -> sequence of jax.Array``.

    Raises
    ------
    KernelNotAvailableError
        If Numba cannot see a CUDA device.
    """
    if not numba_cuda_available():
        raise KernelNotAvailableError(
            'The numba_cuda backend needs Numba with CUDA support and a visible CUDA device.'
        )
    from numba.cuda.dispatcher import CUDADispatcher

    assert isinstance(kernel, CUDADispatcher), (
        f'The kernel must be a Numba CUDA JIT-compiled function (from @cuda.jit), '
        f'but got {type(kernel).__name__}.'
    )
    grid = _as_dims(grid)
    block = _as_dims(block)
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
        key = (kernel, input_shapes, input_dtypes, output_shapes, output_dtypes, grid, block, shared_mem)
        with _REGISTRATION_LOCK:
            handler = _NUMBA_CUDA_FFI_HANDLERS.get(key)
            if handler is None:
                name = f'deepbelief_numba_cuda_ffi_{len(_NUMBA_CUDA_FFI_HANDLERS)}'
                handler = NumbaCudaFfiHandler(
                    name, kernel, input_dtypes, output_dtypes, grid, block, shared_mem,
                )
                _NUMBA_CUDA_FFI_HANDLERS[key] = handler
        out_types = tuple(jax.ShapeDtypeStruct(s, d) for s, d in zip(output_shapes, output_dtypes))
        return jax.ffi.ffi_call(
            handler.name,
            out_types,
            input_output_aliases=input_output_aliases,
            vmap_method=vmap_method,
        )(*ins)

    return call
