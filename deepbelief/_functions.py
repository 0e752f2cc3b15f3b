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

"""Scalar functions that the elementwise and fused kernels apply per element.

A function is written once in plain Python (scalar arithmetic and ``math``
only) and compiled lazily for every backend that needs it: an inlined
``numba.njit`` function for the CPU kernels, a ``cuda.jit`` device function
for the GPU kernels, and a ``jax.numpy`` twin for the ``jax_raw`` backend and
for direct calls on arrays.

Instances are hashable by identity, so they can be passed as static
parameters of jitted functions and primitives.
"""

import math
from typing import Callable, Optional

import jax.numpy as jnp
import numpy as np

__all__ = [
    'PointwiseFunction',
    'BinaryFunction',
    'sigmoid',
    'd_sigmoid',
    'identity',
    'logit',
    'add',
    'subtract',
    'multiply',
]


class _ScalarFunction:
    __module__ = 'deepbelief'

    def __init__(self, name: str, fn: Callable, jax_fn: Optional[Callable] = None):
        self.name = name
        self.fn = fn
        self.jax_fn = fn if jax_fn is None else jax_fn
        self._numba_cpu = None
        self._numba_cuda = None

    @property
    def numba_cpu(self):
        """The function compiled with ``numba.njit(inline='always')``."""
        if self._numba_cpu is None:
            import numba
            self._numba_cpu = numba.njit(inline='always')(self.fn)
        return self._numba_cpu

    @property
    def numba_cuda(self):
        """The function compiled as a CUDA device function."""
        if self._numba_cuda is None:
            from numba import cuda
            self._numba_cuda = cuda.jit(device=True, inline=True)(self.fn)
        return self._numba_cuda

    def __repr__(self):
        return f'{self.__class__.__name__}({self.name})'


class PointwiseFunction(_ScalarFunction):
    """A scalar function ``f(x)`` usable inside every deepbelief kernel.

    Parameters
    ----------
    name : str
        Display name.
    fn : callable
        ``fn(x) -> float`` using scalar arithmetic and ``math`` only.
    jax_fn : callable, optional
        Array version for ``jax.numpy``; defaults to ``fn``, which works
        when ``fn`` uses operators only.

    Examples
    --------
    .. code-block:: python

        >>> import math
        >>> import jax.numpy as jnp
        >>> from deepbelief import PointwiseFunction
        >>> tanh = PointwiseFunction('tanh', lambda x: math.tanh(x), jnp.tanh)
        >>> tanh(0.0)
        Array(0., dtype=float32, weak_type=True)
    """

    def __call__(self, x):
        return self.jax_fn(jnp.asarray(x))


class BinaryFunction(_ScalarFunction):
    """A scalar function ``f(a, b)`` usable inside every deepbelief kernel.

    Used by the pointwise binary kernels, and as the second transform of
    :func:`deepbelief.multiply_vector_by_matrix_and_transform_twice`, where
    ``a`` is the transformed value and ``b`` the raw product.
    """

    def __call__(self, a, b):
        return self.jax_fn(jnp.asarray(a), jnp.asarray(b))


# float32 constants keep the numba and CUDA builds in single precision
_ONE = np.float32(1.)


def _sigmoid(x):
    return _ONE / (_ONE + np.float32(math.exp(-x)))


def _d_sigmoid(s, x):
    return s * (_ONE - s)


def _identity(x):
    return x


def _logit(x):
    return np.float32(math.log(x / (_ONE - x)))


def _add(a, b):
    return a + b


def _subtract(a, b):
    return a - b


def _multiply(a, b):
    return a * b


sigmoid = PointwiseFunction('sigmoid', _sigmoid, lambda x: 1.0 / (1.0 + jnp.exp(-x)))
d_sigmoid = BinaryFunction('d_sigmoid', _d_sigmoid)
identity = PointwiseFunction('identity', _identity)
logit = PointwiseFunction('logit', _logit, lambda x: jnp.log(x / (1.0 - x)))
add = BinaryFunction('add', _add)
subtract = BinaryFunction('subtract', _subtract)
multiply = BinaryFunction('multiply', _multiply)
