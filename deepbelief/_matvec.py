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

from deepbelief._error import DimensionMismatchError
from deepbelief._functions import BinaryFunction, PointwiseFunction, identity
from deepbelief._misc import LaunchConfig, cdiv, namescope, resolve_block_size
from deepbelief._op import XLACustomKernel, numba_kernel, numba_cuda_kernel
from deepbelief.config import get_numba_parallel

__all__ = [
    'multiply_vector_by_matrix',
    'multiply_vector_by_transpose_of_matrix',
    'multiply_vector_by_matrix_and_transform',
    'multiply_vector_by_matrix_and_transform_twice',
    'matvec_p',
]


# ==============================================================================
# Tiled vector-matrix product with optional fused transforms
# ==============================================================================
#
# transpose=False: A[h, w] @ x[w] -> y[h]
# transpose=True:  A[h, w]^T @ x[h] -> y[w]
#
# One unit per output element, block_size units per block. x is cached one
# tile of block_size entries at a time. Indices past the valid extent of A or
# x contribute exactly 0.0, so any (h, w) is accepted; surplus units never
# write.


@namescope(static_argnames=['block_size'])
def multiply_vector_by_matrix(a, x, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """Compute ``y = A · x``.

    Parameters
    ----------
    a : array_like
        Matrix of shape ``(h, w)``; any ``h`` and ``w``.
    x : array_like
        Vector of length ``w``.
    block_size : int, optional
        Units per block and length of the cached tile of ``x``.
    backend : str, optional
        ``'numba'``, ``'numba_cuda'``, ``'jax_raw'`` or ``None`` (auto-select).

    Returns
    -------
    jax.Array
        Vector of length ``h``.

    Raises
    ------
    DimensionMismatchError
        If ``len(x) != w``.

    Examples
    --------
    .. code-block:: python

        >>> import jax.numpy as jnp
        >>> import deepbelief
        >>> deepbelief.multiply_vector_by_matrix(jnp.ones((3, 5)), jnp.arange(5.))
        Array([10., 10., 10.], dtype=float32)
    """
    return matvec_p_call(a, x, transpose=False, block_size=block_size, backend=backend)[0]


@namescope(static_argnames=['block_size'])
def multiply_vector_by_transpose_of_matrix(
    a, x, *, block_size: Optional[int] = None, backend: Optional[str] = None
):
    """Compute ``y = Aᵗ · x`` without transposing ``A``.

    ``a`` has shape ``(h, w)``, ``x`` length ``h``; the result has length ``w``.
    """
    return matvec_p_call(a, x, transpose=True, block_size=block_size, backend=backend)[0]


@namescope(static_argnames=['f', 'block_size'])
def multiply_vector_by_matrix_and_transform(
    a,
    x,
    f: PointwiseFunction,
    *,
    block_size: Optional[int] = None,
    backend: Optional[str] = None
):
    """Compute ``y = f(A · x)`` in one pass.

    Parameters
    ----------
    a : array_like
        Matrix of shape ``(h, w)``.
    x : array_like
        Vector of length ``w``.
    f : PointwiseFunction
        Applied to every accumulated value before it is stored, e.g.
        :data:`deepbelief.sigmoid`.

    Returns
    -------
    jax.Array
        Vector of length ``h``.
    """
    return matvec_p_call(a, x, transpose=False, transform=f, block_size=block_size, backend=backend)[0]


@namescope(static_argnames=['f1', 'f2', 'block_size'])
def multiply_vector_by_matrix_and_transform_twice(
    a,
    x,
    f1: PointwiseFunction,
    f2: BinaryFunction,
    *,
    block_size: Optional[int] = None,
    backend: Optional[str] = None
):
    """Compute ``v = A · x`` once and store two transforms of it.

    ``y1 = f1(v)`` and ``y2 = f2(y1, v)``. With ``f1 = sigmoid`` and
    ``f2 = d_sigmoid`` this yields a layer's activation and its derivative.

    Parameters
    ----------
    a : array_like
        Matrix of shape ``(h, w)``.
    x : array_like
        Vector of length ``w``.
    f1 : PointwiseFunction
        First transform.
    f2 : BinaryFunction
        Second transform, receiving ``(y1, v)``.

    Returns
    -------
    tuple of jax.Array
        ``(y2, y1)``, both of length ``h``.

    Examples
    --------
    .. code-block:: python

        >>> import jax.numpy as jnp
        >>> import deepbelief
        >>> d, s = deepbelief.multiply_vector_by_matrix_and_transform_twice(
        ...     jnp.zeros((2, 3)), jnp.ones(3), deepbelief.sigmoid, deepbelief.d_sigmoid)
        >>> s, d
        (Array([0.5, 0.5], dtype=float32), Array([0.25, 0.25], dtype=float32))
    """
    y2, y1 = matvec_p_call(
        a, x, transpose=False, transform=f1, second_transform=f2, block_size=block_size, backend=backend,
    )
    return y2, y1


def _orientation(transpose: bool, h_a: int, w_a: int):
    """``(n_out, n_in, offset)`` where ``offset(out, inp)`` is the flat index into A."""
    if transpose:
        return w_a, h_a, lambda out, inp: inp * w_a + out
    return h_a, w_a, lambda out, inp: out * w_a + inp


def _matvec_numba_kernel(
    transpose: bool,
    transform: PointwiseFunction,
    second_transform: Optional[BinaryFunction],
    h_a: int,
    w_a: int,
    block_size: int,
    **kwargs
):
    import numba

    bs = block_size
    n_out, n_in, offset = _orientation(transpose, h_a, w_a)
    offset = numba.njit(inline='always')(offset)
    n_blocks = cdiv(n_out, bs)
    n_tiles = cdiv(n_in, bs)
    f1 = transform.numba_cpu

    @numba.njit(inline='always')
    def accumulate(a, x, block, values, xds):
        for m in range(n_tiles):
            for tx in range(bs):
                i = m * bs + tx
                xds[tx] = x[i] if i < n_in else np.float32(0.)
            for tx in range(bs):
                out = block * bs + tx
                value = values[tx]
                for k in range(bs):
                    i = m * bs + k
                    term = np.float32(0.)
                    if out < n_out and i < n_in:
                        term = a[offset(out, i)] * xds[k]
                    value += term
                values[tx] = value

    if second_transform is None:
        @numba.njit(parallel=get_numba_parallel())
        def kernel(a, x, y):
            for block in numba.prange(n_blocks):
                xds = np.empty(bs, dtype=np.float32)
                values = np.zeros(bs, dtype=np.float32)
                accumulate(a, x, block, values, xds)
                for tx in range(bs):
                    out = block * bs + tx
                    if out < n_out:
                        y[out] = f1(values[tx])

    else:
        f2 = second_transform.numba_cpu

        @numba.njit(parallel=get_numba_parallel())
        def kernel(a, x, y2, y1):
            for block in numba.prange(n_blocks):
                xds = np.empty(bs, dtype=np.float32)
                values = np.zeros(bs, dtype=np.float32)
                accumulate(a, x, block, values, xds)
                for tx in range(bs):
                    out = block * bs + tx
                    if out < n_out:
                        y1[out] = f1(values[tx])
                        y2[out] = f2(y1[out], values[tx])

    def run(a, x):
        return numba_kernel(kernel, outs=kwargs['outs'])(a, x)

    return run


def _matvec_numba_cuda_kernel(
    transpose: bool,
    transform: PointwiseFunction,
    second_transform: Optional[BinaryFunction],
    h_a: int,
    w_a: int,
    block_size: int,
    **kwargs
):
    import numba
    from numba import cuda

    bs = block_size
    n_out, n_in, offset = _orientation(transpose, h_a, w_a)
    offset = cuda.jit(device=True, inline=True)(offset)
    n_tiles = cdiv(n_in, bs)
    launch = LaunchConfig.for_elements(n_out, bs)
    f1 = transform.numba_cuda

    @cuda.jit(device=True, inline=True)
    def accumulate(a, x, out, tx):
        xds = cuda.shared.array(bs, dtype=numba.float32)
        value = numba.float32(0.)
        for m in range(n_tiles):
            i = m * bs + tx
            xds[tx] = x[i] if i < n_in else numba.float32(0.)
            cuda.syncthreads()
            for k in range(bs):
                i = m * bs + k
                term = numba.float32(0.)
                if out < n_out and i < n_in:
                    term = a[offset(out, i)] * xds[k]
                value += term
            cuda.syncthreads()
        return value

    if second_transform is None:
        @cuda.jit
        def kernel(a, x, y):
            tx = cuda.threadIdx.x
            out = cuda.blockIdx.x * bs + tx
            value = accumulate(a, x, out, tx)
            if out < n_out:
                y[out] = f1(value)

    else:
        f2 = second_transform.numba_cuda

        @cuda.jit
        def kernel(a, x, y2, y1):
            tx = cuda.threadIdx.x
            out = cuda.blockIdx.x * bs + tx
            value = accumulate(a, x, out, tx)
            if out < n_out:
                s = numba.float32(f1(value))
                y1[out] = s
                y2[out] = f2(s, value)

    def run(a, x):
        return numba_cuda_kernel(kernel, outs=kwargs['outs'], grid=launch.grid, block=launch.block)(a, x)

    return run


def _matvec_jax_kernel(
    transpose: bool,
    transform: PointwiseFunction,
    second_transform: Optional[BinaryFunction],
    h_a: int,
    w_a: int,
    block_size: int,
    **kwargs
):
    n_out, n_in, _ = _orientation(transpose, h_a, w_a)
    n_pad = cdiv(n_in, block_size) * block_size

    def kernel(a, x):
        m = a.reshape(h_a, w_a)
        m = m.T if transpose else m
        m = jnp.pad(m, ((0, 0), (0, n_pad - n_in)))
        x = jnp.pad(x, (0, n_pad - n_in))
        v = jax.lax.fori_loop(
            0, n_pad, lambda i, acc: acc + m[:, i] * x[i], jnp.zeros((n_out,), dtype=a.dtype)
        )
        y1 = transform.jax_fn(v).astype(a.dtype)
        if second_transform is None:
            return y1,
        return second_transform.jax_fn(y1, v).astype(a.dtype), y1

    return kernel


def matvec_p_call(
    a,
    x,
    *,
    transpose: bool,
    transform: PointwiseFunction = identity,
    second_transform: Optional[BinaryFunction] = None,
    block_size: Optional[int] = None,
    backend: Optional[str] = None,
):
    """Validate shapes and bind :data:`matvec_p`.

    Returns
    -------
    list of jax.Array
        ``[y]``, or ``[y2, y1]`` when ``second_transform`` is given.
    """
    a = jnp.asarray(a, dtype=jnp.float32)
    x = jnp.asarray(x, dtype=jnp.float32)
    if a.ndim != 2 or a.size == 0:
        raise DimensionMismatchError(f'A must be a non-empty matrix, got shape {a.shape}.')
    if x.ndim != 1:
        raise DimensionMismatchError(f'x must be a vector, got shape {x.shape}.')
    h_a, w_a = a.shape
    n_out, n_in, _ = _orientation(transpose, h_a, w_a)
    if x.shape[0] != n_in:
        raise DimensionMismatchError(
            f'x of length {x.shape[0]} does not match the {"height" if transpose else "width"} '
            f'{n_in} of A with shape {a.shape}.'
        )
    n_outs = 1 if second_transform is None else 2
    out = jax.ShapeDtypeStruct((n_out,), jnp.float32)
    return matvec_p(
        a.reshape(-1),
        x,
        outs=[out] * n_outs,
        transpose=transpose,
        transform=transform,
        second_transform=second_transform,
        h_a=h_a,
        w_a=w_a,
        block_size=resolve_block_size(block_size),
        backend=backend,
    )


matvec_p = XLACustomKernel(
    'matvec',
    doc="""
Low-level XLA custom-kernel primitive of the tiled vector-matrix products.

Computes ``A x`` (``transpose=False``) or ``Aᵗ x`` (``transpose=True``) from a
flat ``A`` with static ``h_a`` and ``w_a``, applies ``transform`` to every
value, and, when ``second_transform`` is given, also stores
``second_transform(y1, value)`` as the first output.

See Also
--------
multiply_vector_by_matrix : High-level user-facing function wrapper.
"""
)
matvec_p.def_numba_kernel(_matvec_numba_kernel)
matvec_p.def_numba_cuda_kernel(_matvec_numba_cuda_kernel)
matvec_p.def_jax_kernel(_matvec_jax_kernel)
matvec_p.def_call(matvec_p_call)
matvec_p.def_tags('matvec')
