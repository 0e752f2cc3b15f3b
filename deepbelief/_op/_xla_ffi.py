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

"""ctypes view of the XLA typed FFI call frame, shared by the Numba bridges.

Only the fields the bridges read are declared; the layout follows
``xla/ffi/api/c_api.h``.
"""

import ctypes
import enum
import threading
import traceback
from ctypes import CFUNCTYPE, POINTER, Structure, c_int, c_int64, c_size_t, c_uint32, c_void_p
from typing import Callable, List, Sequence, Tuple

import jax
import numpy as np

from deepbelief._error import KernelExecutionError
from .util import OutType

__all__ = [
    'TypedFfiHandler',
    'FFI_CALLBACK_TYPE',
    'XLA_FFI_CallFrame',
    'XLA_FFI_Extension_Base',
    'as_sequence',
    'normalize_shapes_and_dtypes',
]


class XLA_FFI_Extension_Type(enum.IntEnum):
    Metadata = 1


class XLA_FFI_Extension_Base(Structure):
    pass


XLA_FFI_Extension_Base._fields_ = [
    ("struct_size", c_size_t),
    ("type", c_int),
    ("next", POINTER(XLA_FFI_Extension_Base)),
]


class XLA_FFI_Api_Version(Structure):
    _fields_ = [
        ("struct_size", c_size_t),
        ("extension_start", POINTER(XLA_FFI_Extension_Base)),
        ("major_version", c_int),
        ("minor_version", c_int),
    ]


class XLA_FFI_Metadata(Structure):
    _fields_ = [
        ("struct_size", c_size_t),
        ("api_version", XLA_FFI_Api_Version),
        ("traits", c_uint32),
    ]


class XLA_FFI_Metadata_Extension(Structure):
    _fields_ = [
        ("extension_base", XLA_FFI_Extension_Base),
        ("metadata", POINTER(XLA_FFI_Metadata)),
    ]


class XLA_FFI_Buffer(Structure):
    _fields_ = [
        ("struct_size", c_size_t),
        ("extension_start", POINTER(XLA_FFI_Extension_Base)),
        ("dtype", c_int),
        ("data", c_void_p),
        ("rank", c_int64),
        ("dims", POINTER(c_int64)),
    ]


class _XLA_FFI_Sequence(Structure):
    # args and rets share this layout
    _fields_ = [
        ("struct_size", c_size_t),
        ("extension_start", POINTER(XLA_FFI_Extension_Base)),
        ("size", c_int64),
        ("types", POINTER(c_int)),
        ("items", POINTER(c_void_p)),
    ]


class XLA_FFI_Attrs(Structure):
    _fields_ = [
        ("struct_size", c_size_t),
        ("extension_start", POINTER(XLA_FFI_Extension_Base)),
        ("size", c_int64),
        ("types", POINTER(c_int)),
        ("names", POINTER(c_void_p)),
        ("attrs", POINTER(c_void_p)),
    ]


class XLA_FFI_CallFrame(Structure):
    _fields_ = [
        ("struct_size", c_size_t),
        ("extension_start", POINTER(XLA_FFI_Extension_Base)),
        ("api", c_void_p),
        ("ctx", c_void_p),
        ("stage", c_int),
        ("args", _XLA_FFI_Sequence),
        ("rets", _XLA_FFI_Sequence),
        ("attrs", XLA_FFI_Attrs),
        ("future", c_void_p),
    ]


# XLA_FFI_DataType -> numpy
XLA_DTYPES = {
    1: np.dtype(np.bool_),
    2: np.dtype(np.int8),
    3: np.dtype(np.int16),
    4: np.dtype(np.int32),
    5: np.dtype(np.int64),
    6: np.dtype(np.uint8),
    7: np.dtype(np.uint16),
    8: np.dtype(np.uint32),
    9: np.dtype(np.uint64),
    10: np.dtype(np.float16),
    11: np.dtype(np.float32),
    12: np.dtype(np.float64),
}

# void* handler(XLA_FFI_CallFrame*)
FFI_CALLBACK_TYPE = CFUNCTYPE(c_void_p, POINTER(XLA_FFI_CallFrame))


def as_sequence(outs: OutType) -> tuple:
    if isinstance(outs, Sequence):
        return tuple(outs)
    return (outs,)


def normalize_shapes_and_dtypes(
    shapes: Sequence[Sequence[int]],
    dtypes: Sequence[object],
    kind: str,
) -> Tuple[Tuple[Tuple[int, ...], ...], Tuple[np.dtype, ...]]:
    if len(shapes) != len(dtypes):
        raise ValueError(f'Number of {kind} shapes ({len(shapes)}) must match number of dtypes ({len(dtypes)}).')
    return (
        tuple(tuple(int(dim) for dim in shape) for shape in shapes),
        tuple(np.dtype(dtype) for dtype in dtypes),
    )


def _read_buffers(seq: _XLA_FFI_Sequence, fallback_dtypes, wrap: Callable) -> List:
    arrays = []
    for i in range(seq.size):
        buf = ctypes.cast(seq.items[i], POINTER(XLA_FFI_Buffer)).contents
        shape = tuple(buf.dims[d] for d in range(buf.rank))
        dtype = XLA_DTYPES.get(buf.dtype, fallback_dtypes[i])
        arrays.append(wrap(buf.data, shape, dtype))
    return arrays


def _answer_metadata_query(call_frame) -> bool:
    ext_ptr = call_frame.extension_start
    if not ext_ptr or ext_ptr.contents.type != int(XLA_FFI_Extension_Type.Metadata):
        return False
    metadata = ctypes.cast(ext_ptr, POINTER(XLA_FFI_Metadata_Extension)).contents.metadata.contents
    metadata.api_version.major_version = 0
    metadata.api_version.minor_version = 1
    metadata.traits = 0
    return True


class TypedFfiHandler:
    """Base class of the XLA typed FFI targets that launch Numba kernels.

    Subclasses choose how a raw buffer pointer is wrapped (``wrap_buffer``)
    and how the kernel is launched (``launch``). The ctypes callback is kept
    on the instance so it lives as long as the handler.

    Faults raised while the kernel runs cannot cross the C boundary; they
    are printed as a ``KernelExecutionError`` chained to the original
    traceback, and the call returns normally.
    """

    platform: str = 'cpu'

    def __init__(
        self,
        name: str,
        kernel,
        input_dtypes: Tuple[np.dtype, ...],
        output_dtypes: Tuple[np.dtype, ...],
    ):
        self.name = name
        self.kernel = kernel
        self.input_dtypes = input_dtypes
        self.output_dtypes = output_dtypes
        self._lock = threading.Lock()
        self._callback = FFI_CALLBACK_TYPE(self._ffi_callback)
        capsule = jax.ffi.pycapsule(ctypes.cast(self._callback, c_void_p).value)
        jax.ffi.register_ffi_target(name, capsule, platform=self.platform)

    def wrap_buffer(self, data_ptr: int, shape: Tuple[int, ...], dtype: np.dtype):
        raise NotImplementedError

    def launch(self, call_frame, inputs: List, outputs: List):
        raise NotImplementedError

    def _ffi_callback(self, call_frame_ptr):
        try:
            call_frame = call_frame_ptr.contents
            if _answer_metadata_query(call_frame):
                return None
            inputs = _read_buffers(call_frame.args, self.input_dtypes, self.wrap_buffer)
            outputs = _read_buffers(call_frame.rets, self.output_dtypes, self.wrap_buffer)
            with self._lock:
                self.launch(call_frame, inputs, outputs)
        except Exception as e:
            error = KernelExecutionError(f"Kernel target '{self.name}' failed on {self.platform}: {e!r}")
            error.__cause__ = e
            traceback.print_exception(error)
        return None
