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

import jax.numpy as jnp
import numpy as np
import pytest

from deepbelief import config
from deepbelief._misc import LaunchConfig, NameScope, cdiv, namescope, pad_to_block, resolve_block_size


def test_cdiv():
    assert cdiv(10, 3) == 4
    assert cdiv(9, 3) == 3
    assert cdiv(0, 8) == 0
    assert cdiv(1, 32) == 1
    with pytest.raises(ValueError):
        cdiv(4, 0)


class TestLaunchConfig:
    def test_tiles_cover_the_output(self):
        launch = LaunchConfig.for_tiles(70, 33, 32)
        assert launch.grid == (2, 3)
        assert launch.block == (32, 32)
        assert launch.num_blocks == 6
        assert launch.num_units == 6 * 32 * 32

    def test_elements(self):
        launch = LaunchConfig.for_elements(100, 32)
        assert launch.grid == (4,)
        assert launch.block == (32,)
        assert launch.num_units >= 100

    def test_elements_never_launch_an_empty_grid(self):
        assert LaunchConfig.for_elements(0, 32).grid == (1,)


class TestResolveBlockSize:
    def test_explicit(self):
        assert resolve_block_size(4) == 4

    def test_default_follows_config(self):
        previous = config.get_block_size()
        try:
            config.set_block_size(16)
            assert resolve_block_size(None) == 16
        finally:
            config.set_block_size(previous)

    @pytest.mark.parametrize('bad', [0, -1, 1.5])
    def test_rejects_bad_values(self, bad):
        with pytest.raises(ValueError):
            resolve_block_size(bad)


class TestPadToBlock:
    def test_pads_bottom_and_right_with_zeros(self):
        a = jnp.arange(15, dtype=jnp.float32).reshape(3, 5)
        padded = pad_to_block(a, block_size=4)
        assert padded.shape == (4, 8)
        np.testing.assert_array_equal(np.asarray(padded[:3, :5]), np.asarray(a))
        assert float(jnp.abs(padded[3:]).sum()) == 0.
        assert float(jnp.abs(padded[:, 5:]).sum()) == 0.

    def test_aligned_matrix_is_unchanged(self):
        a = jnp.ones((8, 4))
        assert pad_to_block(a, block_size=4).shape == (8, 4)

    def test_rejects_vectors(self):
        with pytest.raises(ValueError):
            pad_to_block(jnp.ones(4), block_size=4)


class TestNameScope:
    def test_caches_one_jit_per_backend(self):
        traces = []

        @namescope(static_argnames=['scale'])
        def scaled(x, *, scale=2, backend=None):
            traces.append(backend)
            return x * scale

        assert isinstance(scaled, NameScope)
        assert scaled.__name__ == 'deepbelief.scaled'
        x = jnp.ones(3)
        np.testing.assert_array_equal(np.asarray(scaled(x)), 2 * np.ones(3))
        scaled(x)
        scaled(x, backend='jax_raw')
        np.testing.assert_array_equal(np.asarray(scaled(x, scale=3)), 3 * np.ones(3))
        assert traces == [None, 'jax_raw', None]

    def test_without_arguments(self):
        @namescope
        def double(x):
            return 2 * x

        assert double.__module__ == 'deepbelief'
        assert float(double(jnp.float32(2.))) == 4.

    def test_static_arguments_by_position(self):
        @namescope(static_argnames=['f', 'n'])
        def apply(x, f, n, *, backend=None):
            for _ in range(n):
                x = f(x)
            return x

        double = lambda v: 2 * v
        np.testing.assert_array_equal(np.asarray(apply(jnp.ones(3), double, 3)), 8 * np.ones(3))
        np.testing.assert_array_equal(np.asarray(apply(jnp.ones(3), f=double, n=2)), 4 * np.ones(3))

    def test_static_arguments_by_name(self):
        @namescope(static_argnums=(0,))
        def repeat(n, x):
            return jnp.tile(x, n)

        x = jnp.arange(2.)
        assert repeat(3, x).shape == (6,)
        assert repeat(n=2, x=x).shape == (4,)

    def test_public_kernels_take_functions_by_position(self):
        from deepbelief import activate, multiply_vector_by_matrix_and_transform, sigmoid, transform

        x = jnp.zeros(4)
        np.testing.assert_array_equal(np.asarray(activate(x, jnp.full(4, 0.25), sigmoid)), np.ones(4))
        np.testing.assert_allclose(np.asarray(transform(x, 0, 2, sigmoid)), [0.5, 0.5, 0., 0.])
        y = multiply_vector_by_matrix_and_transform(jnp.zeros((2, 4)), x, sigmoid)
        np.testing.assert_allclose(np.asarray(y), [0.5, 0.5])
