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
from deepbelief._functions import BinaryFunction, PointwiseFunction, add, multiply, subtract
from deepbelief._misc import LaunchConfig, namescope, resolve_block_size
from deepbelief._op import XLACustomKernel, numba_kernel, numba_cuda_kernel
from deepbelief.config import get_numba_parallel

__all__ = [
    'activate', 'activate_p',
    'transform', 'transform_p',
    'pointwise_binary', 'pointwise_binary_p',
    'pointwise_add',
    'pointwise_subtract',
    'pointwise_multiply',
    'scalar_multiply', 'scalar_multiply_p',
    'outer_product', 'outer_product_p',
    'activate_first_row', 'activate_first_row_p',
    'activate_first_column', 'activate_first_column_p',
    'coerce', 'coerce_p',
]


# ==============================================================================
# One execution unit per element
# ==============================================================================
#
# Operands travel flat. The GPU kernels launch ceil(n / block_size) blocks of
# block_size units and mask the surplus; the CPU kernels loop over the
# elements with numba.prange.


def _as_float32(x, label: str, ndim: Optional[int] = None):
    x = jnp.asarray(x, dtype=jnp.float32)
    if ndim is not None and x.ndim != ndim:
        kind = {1: 'a vector', 2: 'a matrix'}[ndim]
        raise DimensionMismatchError(f'{label} must be {kind}, got shape {x.shape}.')
    if ndim == 2 and x.size == 0:
        raise DimensionMismatchError(f'{label} must be a non-empty matrix, got shape {x.shape}.')
    return x


def _same_shape(op: str, lhs, rhs):
    if lhs.shape != rhs.shape:
        raise DimensionMismatchError(f'{op}: operand shapes differ, {lhs.shape} != {rhs.shape}.')


def _scalar_operand(x):
    return jnp.reshape(jnp.asarray(x, dtype=jnp.float32), (1,))


def _flat_launch(kwargs, block_size: int) -> LaunchConfig:
    return LaunchConfig.for_elements(kwargs['outs'][0].shape[0], block_size)


# ------------------------------------------------------------------------------
# activate
# ------------------------------------------------------------------------------


@namescope(static_argnames=['f', 'block_size'])
def activate(a, rnd, f: PointwiseFunction, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """Sample binary unit states.

    Every element becomes ``1.0`` when ``f(a) >= rnd`` and ``0.0`` otherwise,
    which draws Bernoulli states with probability ``f(a)`` when ``rnd`` holds
    uniform draws in ``[0, 1)``.

    Parameters
    ----------
    a : array_like
        Pre-activations, any shape.
    rnd : array_like
        Uniform draws of the same shape, e.g. from :func:`deepbelief.uniform_draws`.
    f : PointwiseFunction
        Activation probability, typically :data:`deepbelief.sigmoid`.

    Returns
    -------
    jax.Array
        ``0.0`` / ``1.0`` array shaped like ``a``.

    Examples
    --------
    .. code-block:: python

        >>> import jax.numpy as jnp
        >>> import deepbelief
        >>> deepbelief.activate(jnp.array([-50., 50.]), jnp.array([0.5, 0.5]), deepbelief.sigmoid)
        Array([0., 1.], dtype=float32)
    """
    a = _as_float32(a, 'a')
    rnd = _as_float32(rnd, 'rnd')
    _same_shape('activate', a, rnd)
    r = activate_p(
        a.reshape(-1),
        rnd.reshape(-1),
        outs=[jax.ShapeDtypeStruct((a.size,), jnp.float32)],
        f=f,
        block_size=resolve_block_size(block_size),
        backend=backend,
    )[0]
    return r.reshape(a.shape)


def _activate_numba_kernel(f: PointwiseFunction, **kwargs):
    import numba

    f = f.numba_cpu

    @numba.njit(parallel=get_numba_parallel())
    def kernel(a, rnd, out):
        for i in numba.prange(out.size):
            out[i] = np.float32(0.) if f(a[i]) < rnd[i] else np.float32(1.)

    def run(a, rnd):
        return numba_kernel(kernel, outs=kwargs['outs'])(a, rnd)

    return run


def _activate_numba_cuda_kernel(f: PointwiseFunction, block_size: int, **kwargs):
    import numba
    from numba import cuda

    f = f.numba_cuda
    launch = _flat_launch(kwargs, block_size)

    @cuda.jit
    def kernel(a, rnd, out):
        i = cuda.grid(1)
        if i < out.size:
            out[i] = numba.float32(0.) if f(a[i]) < rnd[i] else numba.float32(1.)

    def run(a, rnd):
        return numba_cuda_kernel(kernel, outs=kwargs['outs'], grid=launch.grid, block=launch.block)(a, rnd)

    return run


def _activate_jax_kernel(f: PointwiseFunction, **kwargs):
    def kernel(a, rnd):
        return jnp.where(f.jax_fn(a) < rnd, 0., 1.).astype(a.dtype),

    return kernel


activate_p = XLACustomKernel('activate')
activate_p.def_numba_kernel(_activate_numba_kernel)
activate_p.def_numba_cuda_kernel(_activate_numba_cuda_kernel)
activate_p.def_jax_kernel(_activate_jax_kernel)
activate_p.def_tags('elementwise')


# ------------------------------------------------------------------------------
# transform
# ------------------------------------------------------------------------------


@namescope(static_argnames=['start', 'size', 'f', 'block_size'])
def transform(
    x,
    start: int,
    size: int,
    f: PointwiseFunction,
    *,
    block_size: Optional[int] = None,
    backend: Optional[str] = None
):
    """Apply ``f`` to the flat window ``[start, start + size)`` and zero the rest.

    Parameters
    ----------
    x : array_like
        Input of any shape; the window indexes its row-major flattening.
    start, size : int
        Window bounds, both non-negative. The window may extend past the
        end of ``x``; only existing elements are transformed.
    f : PointwiseFunction
        Function applied inside the window.

    Returns
    -------
    jax.Array
        Array shaped like ``x``.
    """
    if start < 0 or size < 0:
        raise ValueError(f'transform: start and size must be non-negative, got {start} and {size}.')
    x = _as_float32(x, 'x')
    r = transform_p(
        x.reshape(-1),
        outs=[jax.ShapeDtypeStruct((x.size,), jnp.float32)],
        start=start,
        size=size,
        f=f,
        block_size=resolve_block_size(block_size),
        backend=backend,
    )[0]
    return r.reshape(x.shape)


def _transform_numba_kernel(start: int, size: int, f: PointwiseFunction, **kwargs):
    import numba

    f = f.numba_cpu
    stop = start + size

    @numba.njit(parallel=get_numba_parallel())
    def kernel(x, out):
        for i in numba.prange(out.size):
            if start <= i < stop:
                out[i] = f(x[i])
            else:
                out[i] = np.float32(0.)

    def run(x):
        return numba_kernel(kernel, outs=kwargs['outs'])(x)

    return run


def _transform_numba_cuda_kernel(start: int, size: int, f: PointwiseFunction, block_size: int, **kwargs):
    import numba
    from numba import cuda

    f = f.numba_cuda
    stop = start + size
    launch = _flat_launch(kwargs, block_size)

    @cuda.jit
    def kernel(x, out):
        i = cuda.grid(1)
        if i < out.size:
            if start <= i < stop:
                out[i] = f(x[i])
            else:
                out[i] = numba.float32(0.)

    def run(x):
        return numba_cuda_kernel(kernel, outs=kwargs['outs'], grid=launch.grid, block=launch.block)(x)

    return run


def _transform_jax_kernel(start: int, size: int, f: PointwiseFunction, **kwargs):
    def kernel(x):
        i = jnp.arange(x.shape[0])
        inside = (i >= start) & (i < start + size)
        return jnp.where(inside, f.jax_fn(x), 0.).astype(x.dtype),

    return kernel


transform_p = XLACustomKernel('transform')
transform_p.def_numba_kernel(_transform_numba_kernel)
transform_p.def_numba_cuda_kernel(_transform_numba_cuda_kernel)
transform_p.def_jax_kernel(_transform_jax_kernel)
transform_p.def_tags('elementwise')


# ------------------------------------------------------------------------------
# pointwise binary
# ------------------------------------------------------------------------------


@namescope(static_argnames=['op', 'block_size'])
def pointwise_binary(lhs, rhs, op: BinaryFunction, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """Combine two equally shaped arrays element by element with ``op``.

    Examples
    --------
    .. code-block:: python

        >>> import jax.numpy as jnp
        >>> import deepbelief
        >>> deepbelief.pointwise_binary(jnp.ones(3), jnp.arange(3.), deepbelief.subtract)
        Array([ 1.,  0., -1.], dtype=float32)
    """
    lhs = _as_float32(lhs, 'lhs')
    rhs = _as_float32(rhs, 'rhs')
    _same_shape(f'pointwise_binary({op.name})', lhs, rhs)
    r = pointwise_binary_p(
        lhs.reshape(-1),
        rhs.reshape(-1),
        outs=[jax.ShapeDtypeStruct((lhs.size,), jnp.float32)],
        op=op,
        block_size=resolve_block_size(block_size),
        backend=backend,
    )[0]
    return r.reshape(lhs.shape)


def pointwise_add(lhs, rhs, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """``lhs + rhs`` elementwise."""
    return pointwise_binary(lhs, rhs, add, block_size=block_size, backend=backend)


def pointwise_subtract(lhs, rhs, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """``lhs - rhs`` elementwise."""
    return pointwise_binary(lhs, rhs, subtract, block_size=block_size, backend=backend)


def pointwise_multiply(lhs, rhs, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """``lhs * rhs`` elementwise."""
    return pointwise_binary(lhs, rhs, multiply, block_size=block_size, backend=backend)


def _pointwise_binary_numba_kernel(op: BinaryFunction, **kwargs):
    import numba

    op = op.numba_cpu

    @numba.njit(parallel=get_numba_parallel())
    def kernel(lhs, rhs, out):
        for i in numba.prange(out.size):
            out[i] = op(lhs[i], rhs[i])

    def run(lhs, rhs):
        return numba_kernel(kernel, outs=kwargs['outs'])(lhs, rhs)

    return run


def _pointwise_binary_numba_cuda_kernel(op: BinaryFunction, block_size: int, **kwargs):
    from numba import cuda

    op = op.numba_cuda
    launch = _flat_launch(kwargs, block_size)

    @cuda.jit
    def kernel(lhs, rhs, out):
        i = cuda.grid(1)
        if i < out.size:
            out[i] = op(lhs[i], rhs[i])

    def run(lhs, rhs):
        return numba_cuda_kernel(kernel, outs=kwargs['outs'], grid=launch.grid, block=launch.block)(lhs, rhs)

    return run


def _pointwise_binary_jax_kernel(op: BinaryFunction, **kwargs):
    def kernel(lhs, rhs):
        return op.jax_fn(lhs, rhs).astype(lhs.dtype),

    return kernel


pointwise_binary_p = XLACustomKernel('pointwise_binary')
pointwise_binary_p.def_numba_kernel(_pointwise_binary_numba_kernel)
pointwise_binary_p.def_numba_cuda_kernel(_pointwise_binary_numba_cuda_kernel)
pointwise_binary_p.def_jax_kernel(_pointwise_binary_jax_kernel)
pointwise_binary_p.def_tags('elementwise')


# ------------------------------------------------------------------------------
# scalar multiply
# ------------------------------------------------------------------------------


@namescope(static_argnames=['block_size'])
def scalar_multiply(a, lam, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """Scale every element of ``a`` by the scalar ``lam``.

    ``lam`` is a traced operand, so changing it (a learning rate, say) does
    not recompile the kernel.
    """
    a = _as_float32(a, 'a')
    r = scalar_multiply_p(
        a.reshape(-1),
        _scalar_operand(lam),
        outs=[jax.ShapeDtypeStruct((a.size,), jnp.float32)],
        block_size=resolve_block_size(block_size),
        backend=backend,
    )[0]
    return r.reshape(a.shape)


def _scalar_multiply_numba_kernel(**kwargs):
    import numba

    @numba.njit(parallel=get_numba_parallel())
    def kernel(a, lam, out):
        s = lam[0]
        for i in numba.prange(out.size):
            out[i] = a[i] * s

    def run(a, lam):
        return numba_kernel(kernel, outs=kwargs['outs'])(a, lam)

    return run


def _scalar_multiply_numba_cuda_kernel(block_size: int, **kwargs):
    from numba import cuda

    launch = _flat_launch(kwargs, block_size)

    @cuda.jit
    def kernel(a, lam, out):
        i = cuda.grid(1)
        if i < out.size:
            out[i] = a[i] * lam[0]

    def run(a, lam):
        return numba_cuda_kernel(kernel, outs=kwargs['outs'], grid=launch.grid, block=launch.block)(a, lam)

    return run


def _scalar_multiply_jax_kernel(**kwargs):
    def kernel(a, lam):
        return a * lam[0],

    return kernel


scalar_multiply_p = XLACustomKernel('scalar_multiply')
scalar_multiply_p.def_numba_kernel(_scalar_multiply_numba_kernel)
scalar_multiply_p.def_numba_cuda_kernel(_scalar_multiply_numba_cuda_kernel)
scalar_multiply_p.def_jax_kernel(_scalar_multiply_jax_kernel)
scalar_multiply_p.def_tags('elementwise')


# ------------------------------------------------------------------------------
# outer product
# ------------------------------------------------------------------------------


@namescope(static_argnames=['block_size'])
def outer_product(v, w, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """Return the matrix ``A[i, j] = v[i] * w[j]``.

    Parameters
    ----------
    v : array_like
        Vector of length ``h``.
    w : array_like
        Vector of length ``w``.

    Returns
    -------
    jax.Array
        Matrix of shape ``(h, w)``.

    Examples
    --------
    .. code-block:: python

        >>> import jax.numpy as jnp
        >>> import deepbelief
        >>> v = jnp.array([1., 2., 3., 4.])
        >>> deepbelief.outer_product(v, v)[3]
        Array([ 4.,  8., 12., 16.], dtype=float32)
    """
    v = _as_float32(v, 'v', ndim=1)
    w = _as_float32(w, 'w', ndim=1)
    height, width = v.shape[0], w.shape[0]
    r = outer_product_p(
        v,
        w,
        outs=[jax.ShapeDtypeStruct((height * width,), jnp.float32)],
        width=width,
        block_size=resolve_block_size(block_size),
        backend=backend,
    )[0]
    return r.reshape(height, width)


def _outer_product_numba_kernel(width: int, **kwargs):
    import numba

    @numba.njit(parallel=get_numba_parallel())
    def kernel(v, w, out):
        for i in numba.prange(v.size):
            for j in range(width):
                out[i * width + j] = v[i] * w[j]

    def run(v, w):
        return numba_kernel(kernel, outs=kwargs['outs'])(v, w)

    return run


def _outer_product_numba_cuda_kernel(width: int, block_size: int, **kwargs):
    from numba import cuda

    launch = _flat_launch(kwargs, block_size)

    @cuda.jit
    def kernel(v, w, out):
        k = cuda.grid(1)
        if k < out.size:
            out[k] = v[k // width] * w[k % width]

    def run(v, w):
        return numba_cuda_kernel(kernel, outs=kwargs['outs'], grid=launch.grid, block=launch.block)(v, w)

    return run


def _outer_product_jax_kernel(**kwargs):
    def kernel(v, w):
        return (v[:, None] * w[None, :]).reshape(-1),

    return kernel


outer_product_p = XLACustomKernel('outer_product')
outer_product_p.def_numba_kernel(_outer_product_numba_kernel)
outer_product_p.def_numba_cuda_kernel(_outer_product_numba_cuda_kernel)
outer_product_p.def_jax_kernel(_outer_product_jax_kernel)
outer_product_p.def_tags('elementwise')


# ------------------------------------------------------------------------------
# first-row / first-column activation
# ------------------------------------------------------------------------------
#
# The output aliases the input buffer, so only the touched row or column is
# written by the kernels.


@namescope(static_argnames=['n', 'block_size'])
def activate_first_row(m, n: int, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """Set row 0 of ``m`` to ``1.0`` in columns ``< n`` and ``0.0`` in the others.

    Every other row is returned unchanged. With ``m`` holding a batch of
    layer inputs column by column, this installs the constant bias unit.
    """
    m = _as_float32(m, 'm', ndim=2)
    height, width = m.shape
    r = activate_first_row_p(
        m.reshape(-1),
        outs=[jax.ShapeDtypeStruct((height * width,), jnp.float32)],
        n=n,
        width=width,
        block_size=resolve_block_size(block_size),
        backend=backend,
    )[0]
    return r.reshape(height, width)


def _activate_first_row_numba_kernel(n: int, width: int, **kwargs):
    import numba

    @numba.njit
    def kernel(m, out):
        for j in range(width):
            out[j] = np.float32(1.) if j < n else np.float32(0.)

    def run(m):
        return numba_kernel(kernel, outs=kwargs['outs'], input_output_aliases={0: 0})(m)

    return run


def _activate_first_row_numba_cuda_kernel(n: int, width: int, block_size: int, **kwargs):
    import numba
    from numba import cuda

    launch = LaunchConfig.for_elements(width, block_size)

    @cuda.jit
    def kernel(m, out):
        j = cuda.grid(1)
        if j < width:
            out[j] = numba.float32(1.) if j < n else numba.float32(0.)

    def run(m):
        return numba_cuda_kernel(
            kernel, outs=kwargs['outs'], grid=launch.grid, block=launch.block, input_output_aliases={0: 0}
        )(m)

    return run


def _activate_first_row_jax_kernel(n: int, width: int, **kwargs):
    def kernel(m):
        row = (jnp.arange(width) < n).astype(m.dtype)
        return m.at[:width].set(row),

    return kernel


activate_first_row_p = XLACustomKernel('activate_first_row')
activate_first_row_p.def_numba_kernel(_activate_first_row_numba_kernel)
activate_first_row_p.def_numba_cuda_kernel(_activate_first_row_numba_cuda_kernel)
activate_first_row_p.def_jax_kernel(_activate_first_row_jax_kernel)
activate_first_row_p.def_tags('elementwise')


@namescope(static_argnames=['n', 'block_size'])
def activate_first_column(m, n: int, *, block_size: Optional[int] = None, backend: Optional[str] = None):
    """Set column 0 of ``m`` to ``1.0`` in rows ``< n`` and ``0.0`` in the others.

    Every other column is returned unchanged.
    """
    m = _as_float32(m, 'm', ndim=2)
    height, width = m.shape
    r = activate_first_column_p(
        m.reshape(-1),
        outs=[jax.ShapeDtypeStruct((height * width,), jnp.float32)],
        n=n,
        height=height,
        width=width,
        block_size=resolve_block_size(block_size),
        backend=backend,
    )[0]
    return r.reshape(height, width)


def _activate_first_column_numba_kernel(n: int, height: int, width: int, **kwargs):
    import numba

    @numba.njit
    def kernel(m, out):
        for i in range(height):
            out[i * width] = np.float32(1.) if i < n else np.float32(0.)

    def run(m):
        return numba_kernel(kernel, outs=kwargs['outs'], input_output_aliases={0: 0})(m)

    return run


def _activate_first_column_numba_cuda_kernel(n: int, height: int, width: int, block_size: int, **kwargs):
    import numba
    from numba import cuda

    launch = LaunchConfig.for_elements(height, block_size)

    @cuda.jit
    def kernel(m, out):
        i = cuda.grid(1)
        if i < height:
            out[i * width] = numba.float32(1.) if i < n else numba.float32(0.)

    def run(m):
        return numba_cuda_kernel(
            kernel, outs=kwargs['outs'], grid=launch.grid, block=launch.block, input_output_aliases={0: 0}
        )(m)

    return run


def _activate_first_column_jax_kernel(n: int, height: int, width: int, **kwargs):
    def kernel(m):
        column = (jnp.arange(height) < n).astype(m.dtype)
        return m.at[jnp.arange(height) * width].set(column),

    return kernel


activate_first_column_p = XLACustomKernel('activate_first_column')
activate_first_column_p.def_numba_kernel(_activate_first_column_numba_kernel)
activate_first_column_p.def_numba_cuda_kernel(_activate_first_column_numba_cuda_kernel)
activate_first_column_p.def_jax_kernel(_activate_first_column_jax_kernel)
activate_first_column_p.def_tags('elementwise')


# ------------------------------------------------------------------------------
# coerce
# ------------------------------------------------------------------------------


@namescope(static_argnames=['min_index', 'max_index', 'block_size'])
def coerce(
    x,
    min_index: int,
    max_index: int,
    value,
    *,
    block_size: Optional[int] = None,
    backend: Optional[str] = None
):
    """Overwrite the flat elements ``min_index ..= max_index`` of ``x`` with ``value``.

    Both bounds are inclusive; elements outside the range are unchanged and
    indices past the end of ``x`` are ignored. An empty range
    (``max_index < min_index``) returns ``x`` as is.

    Parameters
    ----------
    x : array_like
        Input of any shape, indexed through its row-major flattening.
    min_index, max_index : int
        Inclusive bounds of the range.
    value : float
        Replacement value; traced, so it can change without recompiling.
    """
    x = _as_float32(x, 'x')
    r = coerce_p(
        x.reshape(-1),
        _scalar_operand(value),
        outs=[jax.ShapeDtypeStruct((x.size,), jnp.float32)],
        min_index=min_index,
        max_index=max_index,
        block_size=resolve_block_size(block_size),
        backend=backend,
    )[0]
    return r.reshape(x.shape)


def _coerce_numba_kernel(min_index: int, max_index: int, **kwargs):
    import numba

    @numba.njit
    def kernel(x, value, out):
        lo = max(min_index, 0)
        hi = min(max_index, out.size - 1)
        for i in range(lo, hi + 1):
            out[i] = value[0]

    def run(x, value):
        return numba_kernel(kernel, outs=kwargs['outs'], input_output_aliases={0: 0})(x, value)

    return run


def _coerce_numba_cuda_kernel(min_index: int, max_index: int, block_size: int, **kwargs):
    from numba import cuda

    launch = _flat_launch(kwargs, block_size)

    @cuda.jit
    def kernel(x, value, out):
        i = cuda.grid(1)
        if i < out.size and min_index <= i <= max_index:
            out[i] = value[0]

    def run(x, value):
        return numba_cuda_kernel(
            kernel, outs=kwargs['outs'], grid=launch.grid, block=launch.block, input_output_aliases={0: 0}
        )(x, value)

    return run


def _coerce_jax_kernel(min_index: int, max_index: int, **kwargs):
    def kernel(x, value):
        i = jnp.arange(x.shape[0])
        return jnp.where((i >= min_index) & (i <= max_index), value[0], x),

    return kernel


coerce_p = XLACustomKernel('coerce')
coerce_p.def_numba_kernel(_coerce_numba_kernel)
coerce_p.def_numba_cuda_kernel(_coerce_numba_cuda_kernel)
coerce_p.def_jax_kernel(_coerce_jax_kernel)
coerce_p.def_tags('elementwise')
