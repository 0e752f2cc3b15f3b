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

import brainstate
import jax
import jax.numpy as jnp
import numpy as np
import pytest

import deepbelief._reference as ref
from deepbelief._error import DimensionMismatchError
from deepbelief._matvec import matvec_p
from deepbelief._network import batch_gradients, error_signals, feed_forward, gradients

platform = jax.default_backend()
IMPLEMENTATIONS = tuple(matvec_p.available_backends(platform))

LAYERS = [12, 7, 5, 3]


def make_network(sizes=LAYERS):
    return [0.5 * brainstate.random.randn(n_out, n_in + 1) for n_in, n_out in zip(sizes[:-1], sizes[1:])]


def assert_close(actual, expected):
    np.testing.assert_allclose(np.asarray(actual), expected, rtol=1e-4, atol=1e-5)


@pytest.mark.parametrize("implementation", IMPLEMENTATIONS)
@pytest.mark.parametrize("block_size", [1, 2, 32])
def test_feed_forward(implementation, block_size):
    weights = make_network()
    x = brainstate.random.rand(LAYERS[0])
    outputs = feed_forward(weights, x, block_size=block_size, backend=implementation)
    expected = ref.feed_forward(weights, x)
    assert len(outputs) == len(weights)
    for (a, d), (a_ref, d_ref) in zip(outputs, expected):
        assert_close(a, a_ref)
        assert_close(d, d_ref)


@pytest.mark.parametrize("implementation", IMPLEMENTATIONS)
def test_error_signals(implementation):
    weights = make_network()
    x = brainstate.random.rand(LAYERS[0])
    target = jnp.array([0., 1., 0.])
    outputs = feed_forward(weights, x, backend=implementation)
    deltas = error_signals(weights, outputs, target, block_size=4, backend=implementation)
    expected = ref.error_signals(weights, ref.feed_forward(weights, x), target)
    assert [d.shape for d in deltas] == [(n,) for n in LAYERS[1:]]
    for delta, delta_ref in zip(deltas, expected):
        assert_close(delta, delta_ref)


@pytest.mark.parametrize("implementation", IMPLEMENTATIONS)
def test_gradients(implementation):
    weights = make_network()
    x = brainstate.random.rand(LAYERS[0])
    target = jnp.array([1., 0., 0.])
    outputs = feed_forward(weights, x, backend=implementation)
    grads = gradients(weights, outputs, x, target, backend=implementation)
    expected = ref.gradients(weights, ref.feed_forward(weights, x), x, target)
    for g, w, g_ref in zip(grads, weights, expected):
        assert g.shape == w.shape
        assert_close(g, g_ref)


@pytest.mark.parametrize("implementation", IMPLEMENTATIONS)
def test_bias_column_of_gradient_is_the_error_signal(implementation):
    weights = make_network()
    x = brainstate.random.rand(LAYERS[0])
    target = jnp.array([0., 0., 1.])
    outputs = feed_forward(weights, x, backend=implementation)
    grads = gradients(weights, outputs, x, target, backend=implementation)
    deltas = error_signals(weights, outputs, target, backend=implementation)
    for g, delta in zip(grads, deltas):
        np.testing.assert_allclose(np.asarray(g[:, 0]), np.asarray(delta), rtol=1e-6)


@pytest.mark.parametrize("implementation", IMPLEMENTATIONS)
def test_batch_gradients(implementation):
    weights = make_network()
    xs = brainstate.random.rand(4, LAYERS[0])
    targets = jnp.eye(3)[jnp.array([0, 1, 2, 0])]
    grads = batch_gradients(weights, xs, targets, backend=implementation)
    expected = ref.batch_gradients(weights, xs, targets)
    for g, g_ref in zip(grads, expected):
        assert_close(g, g_ref)


def test_gradient_descent_lowers_the_error():
    weights = make_network()
    x = brainstate.random.rand(LAYERS[0])
    target = jnp.array([1., 0., 1.])

    def error(ws):
        a_out = feed_forward(ws, x)[-1][0]
        return float(jnp.sum((target - a_out) ** 2))

    before = error(weights)
    grads = gradients(weights, feed_forward(weights, x), x, target)
    # the gradients point along -dE/dW for E = |target - a|^2 / 2
    updated = [w + 0.5 * g for w, g in zip(weights, grads)]
    assert error(updated) < before


def test_network_shape_checks():
    weights = make_network()
    with pytest.raises(DimensionMismatchError):
        feed_forward(weights, jnp.ones(LAYERS[0] + 1))
    broken = [weights[0], weights[2]]
    with pytest.raises(DimensionMismatchError):
        feed_forward(broken, jnp.ones(LAYERS[0]))
    with pytest.raises(ValueError):
        feed_forward([], jnp.ones(3))
    outputs = feed_forward(weights, jnp.ones(LAYERS[0]))
    with pytest.raises(DimensionMismatchError):
        error_signals(weights, outputs, jnp.ones(4))
    with pytest.raises(DimensionMismatchError):
        batch_gradients(weights, jnp.ones((2, LAYERS[0])), jnp.ones((3, 3)))
