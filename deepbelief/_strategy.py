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

"""Tiled multiply strategies.

A strategy describes, in pure integer arithmetic, how the blocked matrix
multiply of :mod:`deepbelief._matmul` walks its two operands:

* ``a_iteration(height, width, block_index, block_size)`` and
  ``b_iteration(...)`` return ``(begin, end, step)``: the flat offset of the
  first tile, the last offset still inside the sweep (inclusive), and the
  distance between consecutive tiles;
* ``multiply_element(As, Bs, ty, k, tx)`` returns the product term that
  thread ``(ty, tx)`` adds for index ``k`` of the two cached tiles;
* ``c_update(h_b, w_b, block_size, by, ty, bx, tx)`` returns the flat output
  offset of thread ``(ty, tx)`` in block ``(by, bx)``;
* ``output_shape(h_a, w_a, h_b, w_b)`` and ``contracted_dims(...)`` give the
  result shape and the pair of dimensions that must agree.

Both tiles are always loaded row-major, ``As[ty, tx] = A[a + w_a * ty + tx]``
and ``Bs[ty, tx] = B[b + w_b * ty + tx]``; the variants differ only in the
sweep direction and in which index of the tile is contracted.

The rule functions are plain Python. They are compiled for every backend by
:func:`numba_rules` and :func:`cuda_rules` and evaluated directly (on traced
integers) by the ``jax_raw`` backend.
"""

import functools
from typing import Callable, NamedTuple, Tuple

__all__ = [
    'TiledMultiplyStrategy',
    'multiply_strategy',
    'multiply_by_transpose_strategy',
    'transpose_and_multiply_strategy',
    'numba_rules',
    'cuda_rules',
]


class TiledMultiplyStrategy(NamedTuple):
    """Immutable description of one tiled multiply variant.

    Attributes
    ----------
    name : str
        ``'multiply'``, ``'multiply_by_transpose'`` or ``'transpose_and_multiply'``.
    block_size : int
        Tile edge.
    a_iteration, b_iteration : callable
        ``(height, width, block_index, block_size) -> (begin, end, step)``.
    multiply_element : callable
        ``(As, Bs, ty, k, tx) -> float``.
    c_update : callable
        ``(h_b, w_b, block_size, by, ty, bx, tx) -> int``.
    output_shape : callable
        ``(h_a, w_a, h_b, w_b) -> (rows, cols)``.
    contracted_dims : callable
        ``(h_a, w_a, h_b, w_b) -> (dim_of_a, dim_of_b)``; the two must be equal.
    """
    name: str
    block_size: int
    a_iteration: Callable
    b_iteration: Callable
    multiply_element: Callable
    c_update: Callable
    output_shape: Callable
    contracted_dims: Callable

    def num_tiles(self, h_a: int, w_a: int) -> int:
        """Number of tile pairs accumulated into every output element."""
        begin, end, step = self.a_iteration(h_a, w_a, 0, self.block_size)
        return (end - begin) // step + 1


def _row_tiles(height, width, block_index, block_size):
    # tiles of the block_index-th band of rows, left to right
    begin = width * block_size * block_index
    return begin, begin + width - 1, block_size


def _column_tiles(height, width, block_index, block_size):
    # tiles of the block_index-th band of columns, top to bottom
    begin = block_size * block_index
    return begin, begin + width * (height - block_size), block_size * width


def _element_ab(As, Bs, ty, k, tx):
    return As[ty, k] * Bs[k, tx]


def _element_abt(As, Bs, ty, k, tx):
    return As[ty, k] * Bs[tx, k]


def _element_atb(As, Bs, ty, k, tx):
    return As[k, ty] * Bs[k, tx]


def _c_index_width_b(h_b, w_b, block_size, by, ty, bx, tx):
    return w_b * (block_size * by + ty) + block_size * bx + tx


def _c_index_height_b(h_b, w_b, block_size, by, ty, bx, tx):
    return h_b * (block_size * by + ty) + block_size * bx + tx


def _shape_ab(h_a, w_a, h_b, w_b):
    return h_a, w_b


def _shape_abt(h_a, w_a, h_b, w_b):
    return h_a, h_b


def _shape_atb(h_a, w_a, h_b, w_b):
    return w_a, w_b


def _contract_ab(h_a, w_a, h_b, w_b):
    return w_a, h_b


def _contract_abt(h_a, w_a, h_b, w_b):
    return w_a, w_b


def _contract_atb(h_a, w_a, h_b, w_b):
    return h_a, h_b


def multiply_strategy(block_size: int) -> TiledMultiplyStrategy:
    """Strategy of ``C = A · B`` with ``C`` of shape ``(h_a, w_b)``.

    Examples
    --------
    .. code-block:: python

        >>> from deepbelief import multiply_strategy
        >>> s = multiply_strategy(2)
        >>> s.a_iteration(4, 6, 1, 2)
        (12, 17, 2)
        >>> s.b_iteration(6, 4, 1, 2)
        (2, 18, 8)
    """
    return TiledMultiplyStrategy(
        name='multiply',
        block_size=block_size,
        a_iteration=_row_tiles,
        b_iteration=_column_tiles,
        multiply_element=_element_ab,
        c_update=_c_index_width_b,
        output_shape=_shape_ab,
        contracted_dims=_contract_ab,
    )


def multiply_by_transpose_strategy(block_size: int) -> TiledMultiplyStrategy:
    """Strategy of ``C = A · Bᵗ`` with ``C`` of shape ``(h_a, h_b)``.

    Both operands are swept along rows; the output row width is ``h_b``.
    """
    return TiledMultiplyStrategy(
        name='multiply_by_transpose',
        block_size=block_size,
        a_iteration=_row_tiles,
        b_iteration=_row_tiles,
        multiply_element=_element_abt,
        c_update=_c_index_height_b,
        output_shape=_shape_abt,
        contracted_dims=_contract_abt,
    )


def transpose_and_multiply_strategy(block_size: int) -> TiledMultiplyStrategy:
    """Strategy of ``C = Aᵗ · B`` with ``C`` of shape ``(w_a, w_b)``.

    Both operands are swept down columns; the tile of ``A`` is read
    transposed.
    """
    return TiledMultiplyStrategy(
        name='transpose_and_multiply',
        block_size=block_size,
        a_iteration=_column_tiles,
        b_iteration=_column_tiles,
        multiply_element=_element_atb,
        c_update=_c_index_width_b,
        output_shape=_shape_atb,
        contracted_dims=_contract_atb,
    )


@functools.lru_cache(maxsize=None)
def numba_rules(strategy: TiledMultiplyStrategy) -> Tuple[Callable, Callable, Callable, Callable]:
    """``(a_iteration, b_iteration, multiply_element, c_update)`` compiled with ``numba.njit``."""
    import numba
    jit = numba.njit(inline='always')
    return (
        jit(strategy.a_iteration),
        jit(strategy.b_iteration),
        jit(strategy.multiply_element),
        jit(strategy.c_update),
    )


@functools.lru_cache(maxsize=None)
def cuda_rules(strategy: TiledMultiplyStrategy) -> Tuple[Callable, Callable, Callable, Callable]:
    """``(a_iteration, b_iteration, multiply_element, c_update)`` compiled as CUDA device functions."""
    from numba import cuda
    jit = cuda.jit(device=True, inline=True)
    return (
        jit(strategy.a_iteration),
        jit(strategy.b_iteration),
        jit(strategy.multiply_element),
        jit(strategy.c_update),
    )
