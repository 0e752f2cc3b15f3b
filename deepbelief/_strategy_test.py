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

import numpy as np
import pytest

from deepbelief._strategy import (
    TiledMultiplyStrategy,
    multiply_by_transpose_strategy,
    multiply_strategy,
    transpose_and_multiply_strategy,
)


class TestIterationRules:
    def test_row_tiles(self):
        s = multiply_strategy(4)
        # band 1 of a 8 x 12 matrix: offsets 48 .. 59 in steps of 4
        assert s.a_iteration(8, 12, 1, 4) == (48, 59, 4)
        assert s.a_iteration(8, 12, 0, 4) == (0, 11, 4)

    def test_column_tiles(self):
        s = multiply_strategy(4)
        # band 1 of a 12 x 8 matrix: down the columns, one tile row at a time
        assert s.b_iteration(12, 8, 1, 4) == (4, 68, 32)

    def test_tile_counts_agree_between_operands(self):
        for s, (h_a, w_a, h_b, w_b) in [
            (multiply_strategy(4), (8, 12, 12, 16)),
            (multiply_by_transpose_strategy(4), (8, 12, 16, 12)),
            (transpose_and_multiply_strategy(4), (12, 8, 12, 16)),
        ]:
            a_begin, a_end, a_step = s.a_iteration(h_a, w_a, 0, 4)
            b_begin, b_end, b_step = s.b_iteration(h_b, w_b, 0, 4)
            assert (a_end - a_begin) // a_step == (b_end - b_begin) // b_step
            assert s.num_tiles(h_a, w_a) == 3


class TestOutputRules:
    def test_output_shapes(self):
        assert multiply_strategy(4).output_shape(8, 12, 12, 16) == (8, 16)
        assert multiply_by_transpose_strategy(4).output_shape(8, 12, 16, 12) == (8, 16)
        assert transpose_and_multiply_strategy(4).output_shape(12, 8, 12, 16) == (8, 16)

    def test_contracted_dims(self):
        assert multiply_strategy(4).contracted_dims(8, 12, 12, 16) == (12, 12)
        assert multiply_by_transpose_strategy(4).contracted_dims(8, 12, 16, 12) == (12, 12)
        assert transpose_and_multiply_strategy(4).contracted_dims(12, 8, 12, 16) == (12, 12)

    def test_c_update(self):
        # element (ty=1, tx=2) of tile (by=1, bx=2), block size 4
        assert multiply_strategy(4).c_update(12, 16, 4, 1, 1, 2, 2) == 16 * 5 + 10
        assert multiply_by_transpose_strategy(4).c_update(16, 12, 4, 1, 1, 2, 2) == 16 * 5 + 10
        assert transpose_and_multiply_strategy(4).c_update(12, 16, 4, 1, 1, 2, 2) == 16 * 5 + 10

    def test_multiply_element(self):
        A = np.array([[1., 2.], [3., 4.]])
        B = np.array([[5., 6.], [7., 8.]])
        assert multiply_strategy(2).multiply_element(A, B, 0, 1, 1) == A[0, 1] * B[1, 1]
        assert multiply_by_transpose_strategy(2).multiply_element(A, B, 0, 1, 1) == A[0, 1] * B[1, 1]
        assert transpose_and_multiply_strategy(2).multiply_element(A, B, 0, 1, 1) == A[1, 0] * B[1, 1]


class TestStrategyValue:
    def test_is_hashable_and_comparable(self):
        assert multiply_strategy(8) == multiply_strategy(8)
        assert hash(multiply_strategy(8)) == hash(multiply_strategy(8))
        assert multiply_strategy(8) != multiply_strategy(16)
        assert multiply_strategy(8) != multiply_by_transpose_strategy(8)

    def test_is_immutable(self):
        s = multiply_strategy(8)
        assert isinstance(s, TiledMultiplyStrategy)
        with pytest.raises(AttributeError):
            s.block_size = 4
