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

"""Plain NumPy float32 twins of the deepbelief kernels.

Nothing here is tiled or blocked; every function states the mathematical
result directly. The tests compare every backend against these functions.
"""

from typing import List, Sequence, Tuple

import numpy as np

from deepbelief._xorshift7 import NUM_LEVELS, XorShift7, jump_ahead

__all__ = [
    'sigmoid',
    'd_sigmoid',
    'logit',
    'matmul',
    'matmul_transpose_b',
    'matmul_transpose_a',
    'matvec',
    'matvec_transpose',
    'activate',
    'transform',
    'outer_product',
    'activate_first_row',
    'activate_first_column',
    'coerce',
    'xorshift7',
    'feed_forward',
    'error_signals',
    'gradients',
    'batch_gradients',
]


def _f32(x):
    return np.asarray(x, dtype=np.float32)


def sigmoid(x):
    x = _f32(x)
    return (1. / (1. + np.exp(-x))).astype(np.float32)


def d_sigmoid(s, x=None):
    s = _f32(s)
    return s * (np.float32(1.) - s)


def logit(x):
    x = _f32(x)
    return np.log(x / (np.float32(1.) - x)).astype(np.float32)


def matmul(a, b):
    return _f32(a) @ _f32(b)


def matmul_transpose_b(a, b):
    return _f32(a) @ _f32(b).T


def matmul_transpose_a(a, b):
    return _f32(a).T @ _f32(b)


def matvec(a, x):
    return _f32(a) @ _f32(x)


def matvec_transpose(a, x):
    return _f32(a).T @ _f32(x)


def activate(a, rnd, f=sigmoid):
    return np.where(f(a) < _f32(rnd), np.float32(0.), np.float32(1.))


def transform(x, start, size, f=sigmoid):
    x = _f32(x)
    flat = np.zeros(x.size, dtype=np.float32)
    stop = min(start + size, x.size)
    if stop > start:
        flat[start:stop] = f(x.reshape(-1)[start:stop])
    return flat.reshape(x.shape)


def outer_product(v, w):
    return np.outer(_f32(v), _f32(w))


def activate_first_row(m, n):
    m = _f32(m).copy()
    m[0] = (np.arange(m.shape[1]) < n).astype(np.float32)
    return m


def activate_first_column(m, n):
    m = _f32(m).copy()
    m[:, 0] = (np.arange(m.shape[0]) < n).astype(np.float32)
    return m


def coerce(x, min_index, max_index, value):
    x = _f32(x).copy()
    flat = x.reshape(-1)
    flat[max(min_index, 0):max_index + 1] = value
    return x


def xorshift7(
    state_start,
    num_steps: int,
    num_threads: int,
    num_runs: int = 1,
    run_rank: int = 0,
    dtype=np.float32,
    subsequence_log2: int = NUM_LEVELS,
):
    """One host generator per unit, interleaved exactly like the kernels write."""
    raw = np.empty((num_steps, num_threads), dtype=np.uint32)
    for t in range(num_threads):
        rank = run_rank * num_threads + t
        rng = XorShift7(
            jump_ahead(state_start, rank, num_runs * num_threads, subsequence_log2=subsequence_log2)
        )
        for step in range(num_steps):
            raw[step, t] = rng.next()
    raw = raw.reshape(-1)
    dtype = np.dtype(dtype)
    if dtype == np.float32:
        return ((raw >> np.uint32(8)).astype(np.float32) * np.float32(2. ** -24)).astype(np.float32)
    if dtype == np.float64:
        return raw.astype(np.float64) * 2. ** -32
    return raw


def _with_bias(a):
    return np.concatenate([np.ones(1, dtype=np.float32), _f32(a)])


def feed_forward(weights: Sequence[np.ndarray], x) -> List[Tuple[np.ndarray, np.ndarray]]:
    outputs = []
    a = _f32(x)
    for w in weights:
        v = _f32(w) @ _with_bias(a)
        a = sigmoid(v)
        outputs.append((a, d_sigmoid(a, v)))
    return outputs


def error_signals(weights, outputs, target) -> List[np.ndarray]:
    a_out, d_out = outputs[-1]
    deltas = [d_out * (_f32(target) - a_out)]
    for layer in range(len(weights) - 2, -1, -1):
        back = _f32(weights[layer + 1]).T @ deltas[0]
        deltas.insert(0, outputs[layer][1] * back[1:])
    return deltas


def gradients(weights, outputs, x, target) -> List[np.ndarray]:
    deltas = error_signals(weights, outputs, target)
    inputs = [_f32(x)] + [a for a, _ in outputs[:-1]]
    return [np.outer(delta, _with_bias(a)) for delta, a in zip(deltas, inputs)]


def batch_gradients(weights, xs, targets) -> List[np.ndarray]:
    total = [np.zeros_like(_f32(w)) for w in weights]
    for x, target in zip(xs, targets):
        grads = gradients(weights, feed_forward(weights, x), x, target)
        total = [t + g for t, g in zip(total, grads)]
    return total
