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

"""Forward and backward passes of a sigmoid network built from the kernels.

A network is a list of augmented weight matrices ``W_l`` of shape
``(n_out, 1 + n_in)`` whose column 0 holds the biases. Every layer input is
prefixed with the constant bias unit ``1``.
"""

from typing import List, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp

from deepbelief._elementwise import outer_product, pointwise_add, pointwise_multiply, pointwise_subtract
from deepbelief._error import DimensionMismatchError
from deepbelief._functions import d_sigmoid, sigmoid
from deepbelief._matvec import (
    multiply_vector_by_matrix_and_transform_twice,
    multiply_vector_by_transpose_of_matrix,
)

__all__ = [
    'feed_forward',
    'error_signals',
    'gradients',
    'batch_gradients',
]

LayerOutput = Tuple[jax.Array, jax.Array]


def _with_bias(a):
    return jnp.concatenate([jnp.ones((1,), dtype=jnp.float32), a])


def _check_network(weights: Sequence, n_in: int):
    if len(weights) == 0:
        raise ValueError('The network has no layers.')
    for layer, w in enumerate(weights):
        if jnp.ndim(w) != 2:
            raise DimensionMismatchError(f'Layer {layer}: weights must be a matrix, got shape {jnp.shape(w)}.')
        height, width = jnp.shape(w)
        if width != n_in + 1:
            raise DimensionMismatchError(
                f'Layer {layer}: weights of shape {(height, width)} expect {width - 1} inputs, got {n_in}.'
            )
        n_in = height


def feed_forward(
    weights: Sequence,
    x,
    *,
    block_size: Optional[int] = None,
    backend: Optional[str] = None
) -> List[LayerOutput]:
    """Propagate ``x`` through the network.

    Every layer runs one fused kernel producing the activation
    ``a_l = sigmoid(W_l · [1; a_{l-1}])`` and its derivative ``d_l``.

    Parameters
    ----------
    weights : sequence of array_like
        Augmented weight matrices, input layer first.
    x : array_like
        Input vector of length ``weights[0].shape[1] - 1``.

    Returns
    -------
    list of tuple of jax.Array
        ``(a_l, d_l)`` per layer, input layer first.

    Raises
    ------
    DimensionMismatchError
        If consecutive layers do not chain or ``x`` does not fit the first.

    Examples
    --------
    .. code-block:: python

        >>> import jax.numpy as jnp
        >>> import deepbelief
        >>> weights = [jnp.zeros((3, 5)), jnp.zeros((2, 4))]
        >>> [a for a, _ in deepbelief.feed_forward(weights, jnp.ones(4))][-1]
        Array([0.5, 0.5], dtype=float32)
    """
    a = jnp.asarray(x, dtype=jnp.float32)
    if a.ndim != 1:
        raise DimensionMismatchError(f'x must be a vector, got shape {a.shape}.')
    _check_network(weights, a.shape[0])
    outputs = []
    for w in weights:
        d, a = multiply_vector_by_matrix_and_transform_twice(
            w, _with_bias(a), sigmoid, d_sigmoid, block_size=block_size, backend=backend
        )
        outputs.append((a, d))
    return outputs


def error_signals(
    weights: Sequence,
    outputs: Sequence[LayerOutput],
    target,
    *,
    block_size: Optional[int] = None,
    backend: Optional[str] = None
) -> List[jax.Array]:
    """Back-propagate the output error of one sample.

    ``δ_L = d_L ⊙ (target - a_L)`` at the output layer and
    ``δ_l = d_l ⊙ (W_{l+1}ᵗ · δ_{l+1})[1:]`` below it; the first entry of the
    back-propagated vector belongs to the bias unit and is dropped.

    Parameters
    ----------
    weights : sequence of array_like
        The network.
    outputs : sequence of tuple
        Result of :func:`feed_forward` for the same network.
    target : array_like
        Desired output, of the length of the last layer.

    Returns
    -------
    list of jax.Array
        ``δ_l`` per layer, input layer first.
    """
    if len(outputs) != len(weights):
        raise DimensionMismatchError(f'{len(outputs)} layer outputs for a network of {len(weights)} layers.')
    a_out, d_out = outputs[-1]
    target = jnp.asarray(target, dtype=jnp.float32)
    if target.shape != a_out.shape:
        raise DimensionMismatchError(f'target of shape {target.shape} does not match the output {a_out.shape}.')
    kw = dict(block_size=block_size, backend=backend)
    deltas = [pointwise_multiply(d_out, pointwise_subtract(target, a_out, **kw), **kw)]
    for layer in range(len(weights) - 2, -1, -1):
        back = multiply_vector_by_transpose_of_matrix(weights[layer + 1], deltas[0], **kw)
        deltas.insert(0, pointwise_multiply(outputs[layer][1], back[1:], **kw))
    return deltas


def gradients(
    weights: Sequence,
    outputs: Sequence[LayerOutput],
    x,
    target,
    *,
    block_size: Optional[int] = None,
    backend: Optional[str] = None
) -> List[jax.Array]:
    """Per-layer gradient ``G_l = δ_l ⊗ [1; a_{l-1}]`` of one sample, with ``a_0 = x``.

    Every ``G_l`` has the shape of ``weights[l]``.
    """
    kw = dict(block_size=block_size, backend=backend)
    deltas = error_signals(weights, outputs, target, **kw)
    inputs = [jnp.asarray(x, dtype=jnp.float32)] + [a for a, _ in outputs[:-1]]
    return [outer_product(delta, _with_bias(a), **kw) for delta, a in zip(deltas, inputs)]


def batch_gradients(
    weights: Sequence,
    xs,
    targets,
    *,
    block_size: Optional[int] = None,
    backend: Optional[str] = None
) -> List[jax.Array]:
    """Sum of :func:`gradients` over a batch.

    Parameters
    ----------
    weights : sequence of array_like
        The network.
    xs : array_like
        Inputs, one row per sample.
    targets : array_like
        Targets, one row per sample.

    Returns
    -------
    list of jax.Array
        Summed gradient per layer.
    """
    xs = jnp.asarray(xs, dtype=jnp.float32)
    targets = jnp.asarray(targets, dtype=jnp.float32)
    if xs.ndim != 2 or targets.ndim != 2 or xs.shape[0] != targets.shape[0]:
        raise DimensionMismatchError(
            f'xs {xs.shape} and targets {targets.shape} must be matrices with one row per sample.'
        )
    kw = dict(block_size=block_size, backend=backend)
    total = None
    for x, target in zip(xs, targets):
        grads = gradients(weights, feed_forward(weights, x, **kw), x, target, **kw)
        total = grads if total is None else [pointwise_add(t, g, **kw) for t, g in zip(total, grads)]
    if total is None:
        total = [jnp.zeros(jnp.shape(w), dtype=jnp.float32) for w in weights]
    return total
