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

import itertools

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from deepbelief import config
from deepbelief._error import KernelFallbackExhaustedError
from deepbelief._op.main import XLACustomKernel

platform = jax.default_backend()
_counter = itertools.count()


def _offset_kernel(offset):
    def kernel_generator(outs, **kwargs):
        def run(x):
            return (x + offset,)

        return run

    return kernel_generator


def make_primitive():
    # every test needs its own primitive because compiled calls are cached per primitive
    prim = XLACustomKernel(f'dispatch_test_{next(_counter)}')
    prim.def_kernel('alpha', platform, _offset_kernel(1.))
    prim.def_kernel('beta', platform, _offset_kernel(2.))
    return prim


def run(prim, x, **kwargs):
    return prim(x, outs=[jax.ShapeDtypeStruct(x.shape, x.dtype)], **kwargs)[0]


@pytest.fixture
def x():
    return jnp.zeros(4, dtype=jnp.float32)


@pytest.fixture
def restore_backend():
    previous = config.get_backend(platform)
    yield
    config.set_backend(platform, previous)


def test_first_registered_backend_is_the_default(x):
    prim = make_primitive()
    assert prim.available_backends(platform) == ['alpha', 'beta']
    assert prim.get_default(platform) == 'alpha'
    np.testing.assert_array_equal(np.asarray(run(prim, x)), np.ones(4))


def test_call_backend(x):
    prim = make_primitive()
    np.testing.assert_array_equal(np.asarray(run(prim, x, backend='beta')), 2 * np.ones(4))


def test_set_default(x):
    prim = make_primitive()
    prim.set_default(platform, 'beta')
    assert prim.defaults[platform] == 'beta'
    np.testing.assert_array_equal(np.asarray(run(prim, x)), 2 * np.ones(4))


def test_asdefault_registration(x):
    prim = XLACustomKernel(f'dispatch_test_{next(_counter)}')
    prim.def_kernel('alpha', platform, _offset_kernel(1.))
    prim.def_kernel('beta', platform, _offset_kernel(2.), asdefault=True)
    np.testing.assert_array_equal(np.asarray(run(prim, x)), 2 * np.ones(4))


def test_global_override(x, restore_backend):
    prim = make_primitive()
    config.set_backend(platform, 'beta')
    np.testing.assert_array_equal(np.asarray(run(prim, x)), 2 * np.ones(4))
    np.testing.assert_array_equal(np.asarray(run(prim, x, backend='alpha')), np.ones(4))


def test_global_override_of_a_missing_backend_is_skipped(x, restore_backend):
    prim = make_primitive()
    config.set_backend(platform, 'gamma')
    np.testing.assert_array_equal(np.asarray(run(prim, x)), np.ones(4))


def test_user_default(x, monkeypatch):
    prim = make_primitive()
    monkeypatch.setattr(
        'deepbelief._op.main.get_user_default',
        lambda name, plat: 'beta' if name == prim.name else None,
    )
    np.testing.assert_array_equal(np.asarray(run(prim, x)), 2 * np.ones(4))


def test_global_override_wins_over_user_default(x, monkeypatch, restore_backend):
    prim = make_primitive()
    prim.def_kernel('gamma', platform, _offset_kernel(3.))
    monkeypatch.setattr('deepbelief._op.main.get_user_default', lambda name, plat: 'beta')
    config.set_backend(platform, 'gamma')
    np.testing.assert_array_equal(np.asarray(run(prim, x)), 3 * np.ones(4))


def test_unknown_call_backend(x):
    prim = make_primitive()
    with pytest.raises(KernelFallbackExhaustedError):
        run(prim, x, backend='gamma')


def test_no_kernel_for_platform(x):
    prim = XLACustomKernel(f'dispatch_test_{next(_counter)}')
    other = 'tpu' if platform != 'tpu' else 'cpu'
    prim.def_kernel('alpha', other, _offset_kernel(1.))
    assert prim.available_backends(platform) == []
    with pytest.raises(Exception):
        run(prim, x)


def test_set_default_errors():
    prim = make_primitive()
    with pytest.raises(ValueError):
        prim.set_default(platform, 'gamma')
    other = 'tpu' if platform != 'tpu' else 'cpu'
    with pytest.raises(ValueError):
        prim.set_default(other, 'alpha')


def test_call_and_tags():
    prim = make_primitive()
    with pytest.raises(ValueError):
        prim.call(1)
    prim.def_call(lambda a, b=0: a + b)
    assert prim.call(1, b=2) == 3
    prim.def_tags('testing', 'dispatch')
    assert prim.tags == {'testing', 'dispatch'}
    assert prim.name in repr(prim)


def test_jit_and_vmap(x):
    prim = make_primitive()
    out = jax.jit(lambda v: run(prim, v, backend='beta'))(x)
    np.testing.assert_array_equal(np.asarray(out), 2 * np.ones(4))
    xs = jnp.arange(12, dtype=jnp.float32).reshape(3, 4)
    batched = jax.vmap(lambda v: run(prim, v))(xs)
    jax.block_until_ready(batched)
    np.testing.assert_array_equal(np.asarray(batched), np.asarray(xs) + 1)


def test_multiple_outputs(x):
    def kernel_generator(outs, **kwargs):
        def run_(v):
            return v + 1, (v * 2).astype(outs[1].dtype)

        return run_

    prim = XLACustomKernel(f'dispatch_test_{next(_counter)}')
    prim.def_kernel('alpha', platform, kernel_generator)
    y1, y2 = prim(
        x + 1,
        outs=[jax.ShapeDtypeStruct((4,), jnp.float32), jax.ShapeDtypeStruct((4,), jnp.int32)],
    )
    assert y2.dtype == jnp.int32
    np.testing.assert_array_equal(np.asarray(y1), 2 * np.ones(4))
    np.testing.assert_array_equal(np.asarray(y2), 2 * np.ones(4))
