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

__version__ = "0.1.0"

from . import config
from ._elementwise import (
    activate,
    activate_first_column,
    activate_first_row,
    coerce,
    outer_product,
    pointwise_add,
    pointwise_binary,
    pointwise_multiply,
    pointwise_subtract,
    scalar_multiply,
    transform,
)
from ._error import (
    BlockAlignmentError,
    DimensionMismatchError,
    KernelExecutionError,
    KernelFallbackExhaustedError,
    KernelNotAvailableError,
    MathError,
)
from ._functions import (
    BinaryFunction,
    PointwiseFunction,
    add,
    d_sigmoid,
    identity,
    logit,
    multiply,
    sigmoid,
    subtract,
)
from ._matmul import matmul, matmul_transpose_a, matmul_transpose_b, tiled_multiply
from ._matvec import (
    multiply_vector_by_matrix,
    multiply_vector_by_matrix_and_transform,
    multiply_vector_by_matrix_and_transform_twice,
    multiply_vector_by_transpose_of_matrix,
)
from ._misc import LaunchConfig, pad_to_block
from ._network import batch_gradients, error_signals, feed_forward, gradients
from ._op import XLACustomKernel
from ._registry import get_all_primitive_names, get_primitives_by_tags, get_registry
from ._strategy import (
    TiledMultiplyStrategy,
    multiply_by_transpose_strategy,
    multiply_strategy,
    transpose_and_multiply_strategy,
)
from ._xorshift7 import XorShift7, jump_ahead, jump_ahead_matrices, seed_state, uniform_draws, xorshift7

__all__ = [

    # --- tiled matrix multiply --- #
    'TiledMultiplyStrategy',
    'multiply_strategy',
    'multiply_by_transpose_strategy',
    'transpose_and_multiply_strategy',
    'tiled_multiply',
    'matmul',
    'matmul_transpose_b',
    'matmul_transpose_a',
    'pad_to_block',

    # --- vector-matrix products --- #
    'multiply_vector_by_matrix',
    'multiply_vector_by_transpose_of_matrix',
    'multiply_vector_by_matrix_and_transform',
    'multiply_vector_by_matrix_and_transform_twice',

    # --- elementwise kernels --- #
    'activate',
    'transform',
    'pointwise_binary',
    'pointwise_add',
    'pointwise_subtract',
    'pointwise_multiply',
    'scalar_multiply',
    'outer_product',
    'activate_first_row',
    'activate_first_column',
    'coerce',

    # --- pointwise functions --- #
    'PointwiseFunction',
    'BinaryFunction',
    'sigmoid',
    'd_sigmoid',
    'identity',
    'logit',
    'add',
    'subtract',
    'multiply',

    # --- random numbers --- #
    'XorShift7',
    'seed_state',
    'jump_ahead_matrices',
    'jump_ahead',
    'xorshift7',
    'uniform_draws',

    # --- network passes --- #
    'feed_forward',
    'error_signals',
    'gradients',
    'batch_gradients',

    # --- kernel infrastructure --- #
    'XLACustomKernel',
    'LaunchConfig',
    'get_registry',
    'get_primitives_by_tags',
    'get_all_primitive_names',
    'config',

    # --- errors --- #
    'MathError',
    'DimensionMismatchError',
    'BlockAlignmentError',
    'KernelNotAvailableError',
    'KernelFallbackExhaustedError',
    'KernelExecutionError',

]
