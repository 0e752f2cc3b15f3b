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

"""Tests for calling Numba CUDA kernels from JAX."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from deepbelief._op.numba_cuda_ffi import numba_cuda_available

gpu_platform = jax.default_backend() == 'gpu'
if not gpu_platform:
    pytest.skip('GPU platform not detected, skipping Numba CUDA tests', allow_module_level=True)
if not numba_cuda_available():
    pytest.skip('Numba CUDA not available', allow_module_level=True)

from numba import cuda

from deepbelief._misc import LaunchConfig
from deepbelief._op.numba_cuda_ffi import numba_cuda_kernel


def test_element_wise_addition():
    @cuda.jit
    def add_kernel(x, y, out):
        i = cuda.grid(1)
        if i < out.size:
            out[i] = x[i] + y[i]

    n = 1000
    launch = LaunchConfig.for_elements(n, 256)
    kernel = numba_cuda_kernel(
        add_kernel,
        outs=jax.ShapeDtypeStruct((n,), jnp.float32),
        grid=launch.grid,
        block=launch.block,
    )
    a = jnp.arange(n, dtype=jnp.float32)
    b = jnp.ones(n, dtype=jnp.float32) * 2
    result = kernel(a, b)[0]
    jax.block_until_ready(result)
    np.testing.assert_allclose(np.asarray(result), np.asarray(a + b))


def test_shared_memory_reduction():
    @cuda.jit
    def block_sums(x, out):
        tile = cuda.shared.array(32, dtype=np.float32)
        t = cuda.threadIdx.x
        tile[t] = x[cuda.blockIdx.x * 32 + t]
        cuda.syncthreads()
        if t == 0:
            s = np.float32(0.)
            for k in range(32):
                s += tile[k]
            out[cuda.blockIdx.x] = s

    x = jnp.arange(128, dtype=jnp.float32)
    kernel = numba_cuda_kernel(block_sums, outs=jax.ShapeDtypeStruct((4,), jnp.float32), grid=4, block=32)
    out = jax.jit(lambda v: kernel(v)[0])(x)
    np.testing.assert_allclose(np.asarray(out), np.asarray(x).reshape(4, 32).sum(axis=1))
