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

from typing import Optional

import jax
import jax.numpy as jnp
import numpy as np

from deepbelief._error import BlockAlignmentError, DimensionMismatchError
from deepbelief._misc import LaunchConfig, namescope, resolve_block_size
from deepbelief._op import XLACustomKernel, numba_kernel, numba_cuda_kernel
from deepbelief._strategy import (
    TiledMultiplyStrategy,
    cuda_rules,
    multiply_by_transpose_strategy,
    multiply_strategy,
    numba_rules,
    transpose_and_multiply_strategy,
)
from deepbelief.config import get_numba_parallel

__all__ = [
    'tiled_multiply', 'tiled_multiply_p',
    'matmul',
    'matmul_transpose_b',
    'matmul_transpose_a',
]


# ==============================================================================
# Generic blocked matrix multiply driven by a TiledMultiplyStrategy
# ==============================================================================
#
# Every output tile (by, bx) is computed by one block of block_size^2 units.
# Unit (ty, tx) accumulates in float32, tile pair after tile pair and k after
# k, the strategy's element products, then writes C[c_update(...)].
# Operands travel flat; widths are static parameters.


@namescope(static_argnums=(0,))
def tiled_multiply(strategy: TiledMultiplyStrategy, a, b, *, backend: Optional[str] = None):
    """Multiply two block-aligned matrices with a tiled multiply strategy.

    Parameters
    ----------
    strategy : TiledMultiplyStrategy
        One of :func:`~deepbelief.multiply_strategy`,
        :func:`~deepbelief.multiply_by_transpose_strategy` or
        :func:`~deepbelief.transpose_and_multiply_strategy`.
    a, b : array_like
        Row-major float32 matrices. Every dimension must be a multiple of
        ``strategy.block_size``.
    backend : str, optional
        ``'numba'``, ``'numba_cuda'``, ``'jax_raw'`` or ``None`` (auto-select).

    Returns
    -------
    jax.Array
        The product, of shape ``strategy.output_shape(*a.shape, *b.shape)``.

    Raises
    ------
    DimensionMismatchError
        If an operand is not a non-empty matrix or the contracted dimensions
        differ.
    BlockAlignmentError
        If a dimension is not a multiple of the block size. Pad with
        :func:`~deepbelief.pad_to_block` and crop the result.

    See Also
    --------
    matmul, matmul_transpose_b, matmul_transpose_a

    Notes
    -----
    The accumulation is a straight float32 sum over tile pairs and, within a
    tile, over ``k = 0 .. block_size - 1``. Every backend uses this order.

    Examples
    --------
    .. code-block:: python

        >>> import jax.numpy as jnp
        >>> import deepbelief
        >>> a = jnp.ones((4, 8))
        >>> b = jnp.ones((8, 4))
        >>> deepbelief.tiled_multiply(deepbelief.multiply_strategy(4), a, b)[0, 0]
        Array(8., dtype=float32)
    """
    return tiled_multiply_p_call(strategy, a, b, backend=backend)[0]


@namescope(static_argnames=['block_size'])
def matmul(a, b, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """``A · B`` with the tiled executor; see :func:`tiled_multiply` for the preconditions."""
    strategy = multiply_strategy(resolve_block_size(block_size))
    return tiled_multiply_p_call(strategy, a, b, backend=backend)[0]


@namescope(static_argnames=['block_size'])
def matmul_transpose_b(a, b, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """``A · Bᵗ`` with the tiled executor, without materializing ``Bᵗ``.

    ``a`` is ``(h_a, k)`` and ``b`` is ``(h_b, k)``; the result is ``(h_a, h_b)``.
    """
    strategy = multiply_by_transpose_strategy(resolve_block_size(block_size))
    return tiled_multiply_p_call(strategy, a, b, backend=backend)[0]


@namescope(static_argnames=['block_size'])
def matmul_transpose_a(a, b, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """``Aᵗ · B`` with the tiled executor, without materializing ``Aᵗ``.

    ``a`` is ``(k, w_a)`` and ``b`` is ``(k, w_b)``; the result is ``(w_a, w_b)``.
    """
    strategy = transpose_and_multiply_strategy(resolve_block_size(block_size))
    return tiled_multiply_p_call(strategy, a, b, backend=backend)[0]


def _check_tiled_operands(strategy: TiledMultiplyStrategy, a, b):
    for label, x in (('A', a), ('B', b)):
        if x.ndim != 2 or x.size == 0:
            raise DimensionMismatchError(
                f'{strategy.name}: {label} must be a non-empty matrix, got shape {x.shape}.'
            )
    h_a, w_a = a.shape
    h_b, w_b = b.shape
    dim_a, dim_b = strategy.contracted_dims(h_a, w_a, h_b, w_b)
    if dim_a != dim_b:
        raise DimensionMismatchError(
            f'{strategy.name}: contracted dimensions differ, A is {a.shape} and B is {b.shape} '
            f'({dim_a} != {dim_b}).'
        )
    bs = strategy.block_size
    for label, dim in (('height of A', h_a), ('width of A', w_a), ('height of B', h_b), ('width of B', w_b)):
        if dim % bs != 0:
            raise BlockAlignmentError(
                f'{strategy.name}: {label} ({dim}) is not a multiple of the block size {bs}. '
                f'Pad the operands with deepbelief.pad_to_block.'
            )


def _tiled_multiply_numba_kernel(
    strategy: TiledMultiplyStrategy,
    h_a: int,
    w_a: int,
    h_b: int,
    w_b: int,
    **kwargs
):
    import numba

    a_iteration, b_iteration, multiply_element, c_update = numba_rules(strategy)
    bs = strategy.block_size
    rows, cols = strategy.output_shape(h_a, w_a, h_b, w_b)
    grid_x = cols // bs
    n_blocks = (rows // bs) * grid_x

    # blocks run one after another; inside a block the two barriers of the
    # GPU kernel are the boundaries between the three loop nests
    @numba.njit(parallel=get_numba_parallel())
    def kernel(a, b, c):
        for block in numba.prange(n_blocks):
            by = block // grid_x
            bx = block % grid_x
            a_begin, a_end, a_step = a_iteration(h_a, w_a, by, bs)
            b_begin, b_end, b_step = b_iteration(h_b, w_b, bx, bs)
            As = np.empty((bs, bs), dtype=np.float32)
            Bs = np.empty((bs, bs), dtype=np.float32)
            c_sub = np.zeros((bs, bs), dtype=np.float32)
            ia = a_begin
            ib = b_begin
            while ia <= a_end:
                for ty in range(bs):
                    for tx in range(bs):
                        As[ty, tx] = a[ia + w_a * ty + tx]
                        Bs[ty, tx] = b[ib + w_b * ty + tx]
                for ty in range(bs):
                    for tx in range(bs):
                        acc = c_sub[ty, tx]
                        for k in range(bs):
                            acc += multiply_element(As, Bs, ty, k, tx)
                        c_sub[ty, tx] = acc
                ia += a_step
                ib += b_step
            for ty in range(bs):
                for tx in range(bs):
                    c[c_update(h_b, w_b, bs, by, ty, bx, tx)] = c_sub[ty, tx]

    def run(a, b):
        return numba_kernel(kernel, outs=kwargs['outs'])(a, b)

    return run


def _tiled_multiply_numba_cuda_kernel(
    strategy: TiledMultiplyStrategy,
    h_a: int,
    w_a: int,
    h_b: int,
    w_b: int,
    **kwargs
):
    import numba
    from numba import cuda

    bs = strategy.block_size
    if bs * bs > 1024:
        raise ValueError(f'The numba_cuda tiled multiply needs block_size <= 32, got {bs}.')
    a_iteration, b_iteration, multiply_element, c_update = cuda_rules(strategy)
    rows, cols = strategy.output_shape(h_a, w_a, h_b, w_b)
    launch = LaunchConfig.for_tiles(rows, cols, bs)

    @cuda.jit
    def kernel(a, b, c):
        bx = cuda.blockIdx.x
        by = cuda.blockIdx.y
        tx = cuda.threadIdx.x
        ty = cuda.threadIdx.y
        a_begin, a_end, a_step = a_iteration(h_a, w_a, by, bs)
        b_begin, b_end, b_step = b_iteration(h_b, w_b, bx, bs)
        As = cuda.shared.array((bs, bs), dtype=numba.float32)
        Bs = cuda.shared.array((bs, bs), dtype=numba.float32)
        c_sub = numba.float32(0.)
        ia = a_begin
        ib = b_begin
        while ia <= a_end:
            As[ty, tx] = a[ia + w_a * ty + tx]
            Bs[ty, tx] = b[ib + w_b * ty + tx]
            cuda.syncthreads()
            for k in range(bs):
                c_sub += multiply_element(As, Bs, ty, k, tx)
            cuda.syncthreads()
            ia += a_step
            ib += b_step
        c[c_update(h_b, w_b, bs, by, ty, bx, tx)] = c_sub

    def run(a, b):
        return numba_cuda_kernel(kernel, outs=kwargs['outs'], grid=launch.grid, block=launch.block)(a, b)

    return run


def _tiled_multiply_jax_kernel(
    strategy: TiledMultiplyStrategy,
    h_a: int,
    w_a: int,
    h_b: int,
    w_b: int,
    **kwargs
):
    bs = strategy.block_size
    rows, cols = strategy.output_shape(h_a, w_a, h_b, w_b)
    n_tiles = strategy.num_tiles(h_a, w_a)
    ty, tx = jnp.meshgrid(jnp.arange(bs), jnp.arange(bs), indexing='ij')

    def block(by, bx, a, b):
        a_begin, _, a_step = strategy.a_iteration(h_a, w_a, by, bs)
        b_begin, _, b_step = strategy.b_iteration(h_b, w_b, bx, bs)

        def tile(t, c_sub):
            As = a[a_begin + t * a_step + w_a * ty + tx]
            Bs = b[b_begin + t * b_step + w_b * ty + tx]
            return jax.lax.fori_loop(
                0, bs, lambda k, acc: acc + strategy.multiply_element(As, Bs, ty, k, tx), c_sub
            )

        c_sub = jax.lax.fori_loop(0, n_tiles, tile, jnp.zeros((bs, bs), dtype=a.dtype))
        return c_sub, strategy.c_update(h_b, w_b, bs, by, ty, bx, tx)

    def kernel(a, b):
        by, bx = jnp.meshgrid(jnp.arange(rows // bs), jnp.arange(cols // bs), indexing='ij')
        c_sub, index = jax.vmap(block, in_axes=(0, 0, None, None))(by.ravel(), bx.ravel(), a, b)
        c = jnp.zeros((rows * cols,), dtype=a.dtype).at[index.ravel()].set(c_sub.ravel())
        return c,

    return kernel


def tiled_multiply_p_call(strategy: TiledMultiplyStrategy, a, b, *, backend: Optional[str] = None):
    """Validate the operands and bind :data:`tiled_multiply_p`.

    Returns
    -------
    list of jax.Array
        A single-element list holding the product matrix.
    """
    a = jnp.asarray(a, dtype=jnp.float32)
    b = jnp.asarray(b, dtype=jnp.float32)
    _check_tiled_operands(strategy, a, b)
    h_a, w_a = a.shape
    h_b, w_b = b.shape
    rows, cols = strategy.output_shape(h_a, w_a, h_b, w_b)
    c = tiled_multiply_p(
        a.reshape(-1),
        b.reshape(-1),
        outs=[jax.ShapeDtypeStruct((rows * cols,), jnp.float32)],
        strategy=strategy,
        h_a=h_a,
        w_a=w_a,
        h_b=h_b,
        w_b=w_b,
        backend=backend,
    )[0]
    return [c.reshape(rows, cols)]


tiled_multiply_p = XLACustomKernel(
    'tiled_multiply',
    doc="""
Low-level XLA custom-kernel primitive of the blocked matrix multiply.

Operands are flat row-major float32 buffers; ``strategy``, ``h_a``, ``w_a``,
``h_b`` and ``w_b`` are static parameters. The output is the flat product.

See Also
--------
tiled_multiply : High-level user-facing function wrapper.
"""
)
tiled_multiply_p.def_numba_kernel(_tiled_multiply_numba_kernel)
tiled_multiply_p.def_numba_cuda_kernel(_tiled_multiply_numba_cuda_kernel)
tiled_multiply_p.def_jax_kernel(_tiled_multiply_jax_kernel)
tiled_multiply_p.def_call(tiled_multiply_p_call)
tiled_multiply_p.def_tags('matmul')
