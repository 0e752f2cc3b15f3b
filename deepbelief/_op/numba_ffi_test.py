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

"""Tests for calling Numba CPU kernels from JAX."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

cpu_platform = jax.default_backend() == 'cpu'
if not cpu_platform:
    pytest.skip(allow_module_level=True, reason='Numba CPU FFI tests only run on CPU platform')

numba = pytest.importorskip('numba')

from deepbelief._op._xla_ffi import as_sequence, normalize_shapes_and_dtypes
from deepbelief._op.numba_ffi import _numpy_from_buffer, numba_kernel


class TestHelperFunctions:
    def test_as_sequence(self):
        single = jax.ShapeDtypeStruct((10,), jnp.float32)
        assert as_sequence(single) == (single,)
        pair = [single, jax.ShapeDtypeStruct((2,), jnp.uint32)]
        assert as_sequence(pair) == tuple(pair)

    def test_normalize_shapes_and_dtypes(self):
        shapes, dtypes = normalize_shapes_and_dtypes([(10, 20), (5,)], [jnp.float32, np.uint32], 'test')
        assert shapes == ((10, 20), (5,))
        assert dtypes == (np.dtype(np.float32), np.dtype(np.uint32))
        assert all(isinstance(d, np.dtype) for d in dtypes)

    def test_normalize_shapes_and_dtypes_mismatched_length(self):
        with pytest.raises(ValueError, match='input'):
            normalize_shapes_and_dtypes([(10,), (20,)], [np.float32], 'input')

    def test_numpy_from_buffer(self):
        original = np.arange(6, dtype=np.float32).reshape(2, 3)
        view = _numpy_from_buffer(original.ctypes.data, (2, 3), np.dtype(np.float32))
        assert view.shape == (2, 3)
        np.testing.assert_array_equal(view, original)
        assert _numpy_from_buffer(0, (0,), np.dtype(np.float32)).shape == (0,)


class TestNumbaKernel:
    def test_element_wise_addition(self):
        @numba.njit
        def add_kernel(x, y, out):
            for i in range(out.size):
                out[i] = x[i] + y[i]

        n = 64
        kernel = numba_kernel(add_kernel, outs=jax.ShapeDtypeStruct((n,), jnp.float32))
        a = jnp.arange(n, dtype=jnp.float32)
        b = jnp.ones(n, dtype=jnp.float32) * 2
        result = kernel(a, b)[0]
        np.testing.assert_allclose(np.asarray(result), np.asarray(a + b))
        jax.block_until_ready(result)

    def test_multiple_outputs(self):
        @numba.njit
        def split_kernel(x, lo, hi):
            for i in range(x.size):
                lo[i] = x[i] & np.uint32(0xFFFF)
                hi[i] = x[i] >> np.uint32(16)

        x = jnp.array([0x00010002, 0xFFFF0000, 7], dtype=jnp.uint32)
        outs = [jax.ShapeDtypeStruct((3,), jnp.uint32), jax.ShapeDtypeStruct((3,), jnp.uint32)]
        lo, hi = numba_kernel(split_kernel, outs=outs)(x)
        np.testing.assert_array_equal(np.asarray(lo), [2, 0, 7])
        np.testing.assert_array_equal(np.asarray(hi), [1, 0xFFFF, 0])

    def test_two_dimensional_buffers(self):
        @numba.njit
        def transpose_kernel(x, out):
            for i in range(x.shape[0]):
                for j in range(x.shape[1]):
                    out[j, i] = x[i, j]

        x = jnp.arange(6, dtype=jnp.float32).reshape(2, 3)
        out = numba_kernel(transpose_kernel, outs=jax.ShapeDtypeStruct((3, 2), jnp.float32))(x)[0]
        np.testing.assert_array_equal(np.asarray(out), np.asarray(x).T)

    def test_inside_jit(self):
        @numba.njit
        def scale_kernel(x, out):
            for i in range(out.size):
                out[i] = 3 * x[i]

        kernel = numba_kernel(scale_kernel, outs=jax.ShapeDtypeStruct((5,), jnp.float32))
        f = jax.jit(lambda v: kernel(v + 1)[0])
        np.testing.assert_allclose(np.asarray(f(jnp.zeros(5))), 3 * np.ones(5))
        np.testing.assert_allclose(np.asarray(f(jnp.ones(5))), 6 * np.ones(5))

    def test_input_output_alias(self):
        @numba.njit
        def zero_first(x, out):
            out[0] = 0.

        kernel = numba_kernel(
            zero_first,
            outs=jax.ShapeDtypeStruct((4,), jnp.float32),
            input_output_aliases={0: 0},
        )
        x = jnp.arange(1., 5.)
        out = jax.jit(lambda v: kernel(v)[0])(x)
        np.testing.assert_array_equal(np.asarray(out), [0., 2., 3., 4.])
        np.testing.assert_array_equal(np.asarray(x), [1., 2., 3., 4.])

    def test_rejects_plain_functions(self):
        def not_compiled(x, out):
            out[:] = x

        with pytest.raises(AssertionError):
            numba_kernel(not_compiled, outs=jax.ShapeDtypeStruct((1,), jnp.float32))

    def test_kernel_faults_are_reported(self, capsys):
        @numba.njit
        def checked_copy(x, out):
            if x[0] < 0:
                raise ValueError('negative input')
            out[0] = x[0]

        kernel = numba_kernel(checked_copy, outs=jax.ShapeDtypeStruct((1,), jnp.float32))
        jax.block_until_ready(kernel(jnp.array([-1.], dtype=jnp.float32))[0])
        err = capsys.readouterr().err
        assert 'KernelExecutionError' in err
        assert 'negative input' in err
