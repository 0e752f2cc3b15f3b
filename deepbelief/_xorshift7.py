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

"""XorShift7 random numbers generated in parallel, non-overlapping streams.

XorShift7 keeps eight 32-bit words in a ring buffer and is linear over GF(2),
so ``2^L`` steps are a single 256 x 256 bit-matrix product. The jump-ahead
table holds those matrices for ``L = 0 .. 31``; an execution unit of rank
``r`` out of ``N`` (``2^p >= N``) applies level ``base + i`` for every set bit
``i`` of ``r`` and so starts ``r * 2^base`` steps into the sequence, where
``base = 32 - p`` by default.

Table layout: level-major, then 256 rows of 8 words. Row ``j * 32 + k`` of a
level computes bit ``31 - k`` of output word ``j``: the parity of
``row & state`` over the 8 words. Bit ``b`` of row word ``l`` addresses bit
``b`` of input word ``l``. States are canonical, word ``k`` being
``states[(index + k) & 7]``; a jumped state restarts with ``index = 0``.
"""

import functools
import math
from typing import Optional, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from deepbelief._error import DimensionMismatchError
from deepbelief._misc import cdiv, namescope
from deepbelief._op import XLACustomKernel, numba_kernel, numba_cuda_kernel
from deepbelief.config import get_numba_parallel

__all__ = [
    'XorShift7',
    'seed_state',
    'jump_ahead_matrices',
    'jump_ahead',
    'xorshift7', 'xorshift7_p',
    'uniform_draws',
]

NUM_LEVELS = 32
LEVEL_WORDS = 256 * 8

_MASK = np.uint32(0xFFFFFFFF)
_SUPPORTED_DTYPES = (np.dtype(np.uint32), np.dtype(np.float32), np.dtype(np.float64))


# ------------------------------------------------------------------------------
#  Scalar building blocks, shared by the host, numba and CUDA paths
# ------------------------------------------------------------------------------

def _next(states, index):
    """Advance the ring buffer once; return ``(output, next_index)``."""
    t = states[(index + 7) & 7]
    t = (t ^ (t << np.uint32(13))) & _MASK
    r = (t ^ (t << np.uint32(9))) & _MASK
    t = states[(index + 4) & 7]
    r = r ^ ((t ^ (t << np.uint32(7))) & _MASK)
    t = states[(index + 3) & 7]
    r = r ^ (t ^ (t >> np.uint32(3)))
    t = states[(index + 1) & 7]
    r = r ^ (t ^ (t >> np.uint32(10)))
    t = states[index]
    t = t ^ (t >> np.uint32(7))
    r = r ^ ((t ^ (t << np.uint32(24))) & _MASK)
    states[index] = r
    return r, (index + 1) & 7


def _parity(s):
    s = (s >> np.uint32(16)) ^ (s & np.uint32(0xffff))
    s = (s >> np.uint32(8)) ^ (s & np.uint32(0xff))
    s = (s >> np.uint32(4)) ^ (s & np.uint32(0xf))
    s = (s >> np.uint32(2)) ^ (s & np.uint32(0x3))
    s = (s >> np.uint32(1)) ^ (s & np.uint32(0x1))
    return s


def _make_jump(parity):
    def jump(state, prev, state_start, table, base, p, rank):
        """Write into ``state`` the start state of unit ``rank``; ``prev`` is scratch."""
        for l in range(8):
            state[l] = state_start[l]
        for i in range(p):
            if (rank >> i) & 1:
                offset = (base + i) * LEVEL_WORDS
                for l in range(8):
                    prev[l] = state[l]
                for j in range(8):
                    word = np.uint64(0)
                    for k in range(32):
                        row = offset + (j * 32 + k) * 8
                        partial = np.uint64(0)
                        for l in range(8):
                            partial = partial ^ (table[row + l] & prev[l])
                        word = ((word << np.uint32(1)) & _MASK) | parity(partial)
                    state[j] = word

    return jump


_jump = _make_jump(_parity)


def _to_uint32(x):
    return x


def _to_float32(x):
    return np.float32(x >> np.uint32(8)) * np.float32(5.9604644775390625e-08)


def _to_float64(x):
    return np.float64(x) * 2.3283064365386963e-10


_CONVERTERS = {
    np.dtype(np.uint32): _to_uint32,
    np.dtype(np.float32): _to_float32,
    np.dtype(np.float64): _to_float64,
}


@functools.lru_cache(maxsize=None)
def _numba_functions(dtype):
    import numba
    njit = numba.njit(inline='always')
    parity = njit(_parity)
    return njit(_next), parity, numba.njit(_make_jump(parity)), njit(_CONVERTERS[dtype])


@functools.lru_cache(maxsize=None)
def _cuda_functions(dtype):
    from numba import cuda
    device = cuda.jit(device=True, inline=True)
    return device(_next), device(_parity), device(_CONVERTERS[dtype])


# ------------------------------------------------------------------------------
#  Host side
# ------------------------------------------------------------------------------

class XorShift7:
    """Host XorShift7 generator: eight ``uint32`` words and a ring index.

    Parameters
    ----------
    states : array_like, optional
        Eight ``uint32`` words. When omitted call :meth:`init` before
        drawing.

    Examples
    --------
    .. code-block:: python

        >>> from deepbelief import XorShift7, seed_state
        >>> rng = XorShift7(seed_state(42))
        >>> first = rng.next()
        >>> rng.init(seed_state(42))
        >>> rng.next() == first
        True
    """
    __module__ = 'deepbelief'

    def __init__(self, states=None):
        self.states = np.zeros(8, dtype=np.uint32)
        self.index = 0
        if states is not None:
            self.init(states)

    def init(self, states):
        """Load eight words and reset the ring index; an ``int`` goes through :func:`seed_state`."""
        if isinstance(states, (int, np.integer)):
            states = seed_state(int(states))
        states = np.asarray(states, dtype=np.uint32)
        if states.shape != (8,):
            raise DimensionMismatchError(f'XorShift7 needs 8 state words, got shape {states.shape}.')
        self.states = states.copy()
        self.index = 0

    def next(self) -> int:
        """Return the next raw ``uint32`` output."""
        r, self.index = _next(self.states, self.index)
        return int(r)

    def canonical_state(self) -> np.ndarray:
        """The ring buffer rotated so that it starts at the current index."""
        return np.roll(self.states, -self.index)

    def __repr__(self):
        return f'XorShift7(states={self.states.tolist()}, index={self.index})'


def seed_state(seed: int) -> np.ndarray:
    """Derive a non-zero eight-word start state from an integer seed.

    The all-zero state is the fixed point of XorShift7, so it is never
    returned.
    """
    state = np.random.SeedSequence(seed).generate_state(8, dtype=np.uint32)
    if not state.any():
        state[0] = 1
    return state


def _one_step_matrix() -> np.ndarray:
    # column n: canonical state after one step from the n-th basis state
    basis = np.zeros((8, 256), dtype=np.uint32)
    n = np.arange(256)
    basis[n // 32, n] = np.uint32(1) << (n % 32).astype(np.uint32)
    _next(basis, 0)
    after = np.roll(basis, -1, axis=0)
    bits = (after[:, None, :] >> np.arange(32, dtype=np.uint32)[None, :, None]) & np.uint32(1)
    return bits.reshape(256, 256).astype(np.int32)


def _pack_level(m: np.ndarray) -> np.ndarray:
    words = (m.reshape(256, 8, 32).astype(np.uint64) << np.arange(32, dtype=np.uint64)).sum(-1)
    # output bits are produced most significant first
    return words.astype(np.uint32).reshape(8, 32, 8)[:, ::-1, :].reshape(256, 8)


@functools.lru_cache(maxsize=None)
def jump_ahead_matrices(levels: int = NUM_LEVELS) -> np.ndarray:
    """Build the jump-ahead table, level ``L`` being ``2^L`` XorShift7 steps.

    Level 0 is the one-step transition matrix; every further level squares
    the previous one over GF(2). The table is built once per process and
    returned read-only.

    Parameters
    ----------
    levels : int, optional
        Number of levels, at most 32.

    Returns
    -------
    np.ndarray
        ``uint32`` array of shape ``(levels, 256, 8)``.
    """
    if not 1 <= levels <= NUM_LEVELS:
        raise ValueError(f'levels must be in [1, {NUM_LEVELS}], got {levels}.')
    m = _one_step_matrix()
    table = np.empty((levels, 256, 8), dtype=np.uint32)
    for level in range(levels):
        table[level] = _pack_level(m)
        m = (m @ m) & 1
    table.flags.writeable = False
    return table


def _stream_layout(
    num_units: int,
    subsequence_log2: int,
    levels: int,
    num_steps: Optional[int] = None,
) -> Tuple[int, int]:
    """Return ``(base, p)`` for ``num_units`` streams of ``2^(subsequence_log2 - p)`` steps.

    With ``num_steps`` given, every stream must hold that many draws.
    """
    if num_units < 1:
        raise ValueError(f'The number of execution units must be positive, got {num_units}.')
    p = 0
    while (1 << p) < num_units:
        p += 1
    base = subsequence_log2 - p
    if base < 0:
        raise ValueError(
            f'{num_units} streams do not fit into 2^{subsequence_log2} steps; '
            f'increase subsequence_log2.'
        )
    if base + p > levels:
        raise ValueError(
            f'subsequence_log2={subsequence_log2} needs {base + p} jump-ahead levels, '
            f'the table has {levels}.'
        )
    if num_steps is not None and num_steps > (1 << base):
        raise ValueError(
            f'{num_steps} steps per unit overrun streams of 2^{base} steps; '
            f'increase subsequence_log2 to at least {p + (num_steps - 1).bit_length()}.'
        )
    return base, p


def jump_ahead(
    state_start,
    rank: int,
    num_units: int,
    *,
    matrices: Optional[np.ndarray] = None,
    subsequence_log2: int = NUM_LEVELS,
) -> np.ndarray:
    """Host computation of the start state of one execution unit.

    Parameters
    ----------
    state_start : array_like
        Eight ``uint32`` words of the global start state.
    rank : int
        Rank of the unit, ``0 <= rank < num_units``.
    num_units : int
        Total number of units over all runs.
    matrices : np.ndarray, optional
        Jump-ahead table; :func:`jump_ahead_matrices` by default.
    subsequence_log2 : int, optional
        Every unit owns ``2^(subsequence_log2 - p)`` steps.

    Returns
    -------
    np.ndarray
        The canonical state that unit ``rank`` starts from.
    """
    table = jump_ahead_matrices() if matrices is None else np.asarray(matrices, dtype=np.uint32)
    table = table.reshape(-1)
    if not 0 <= rank < num_units:
        raise ValueError(f'rank must be in [0, {num_units}), got {rank}.')
    base, p = _stream_layout(num_units, subsequence_log2, table.size // LEVEL_WORDS)
    start = np.asarray(state_start, dtype=np.uint32)
    state = np.empty(8, dtype=np.uint32)
    prev = np.empty(8, dtype=np.uint32)
    _jump(state, prev, start, table, base, p, rank)
    return state


# ------------------------------------------------------------------------------
#  Kernel
# ------------------------------------------------------------------------------


@namescope(static_argnames=['num_steps', 'num_threads', 'num_runs', 'run_rank', 'dtype', 'subsequence_log2'])
def xorshift7(
    state_start,
    num_steps: int,
    *,
    num_threads: int,
    num_runs: int = 1,
    run_rank: int = 0,
    dtype=np.float32,
    matrices=None,
    subsequence_log2: int = NUM_LEVELS,
    backend: Optional[str] = None,
):
    """Generate ``num_threads * num_steps`` XorShift7 variates in parallel.

    Unit ``t`` of run ``run_rank`` jumps to rank
    ``run_rank * num_threads + t`` of ``num_runs * num_threads`` streams and
    writes its ``num_steps`` values at ``t, t + num_threads, ...``.

    Parameters
    ----------
    state_start : array_like
        Eight ``uint32`` words, e.g. from :func:`seed_state`. Must not be all
        zero.
    num_steps : int
        Values drawn by every unit.
    num_threads : int
        Units of this run.
    num_runs : int, optional
        Runs sharing the sequence, e.g. one per device.
    run_rank : int, optional
        This run, ``0 <= run_rank < num_runs``.
    dtype : dtype, optional
        ``uint32`` (raw), ``float32`` (``(x >> 8) * 2^-24``) or ``float64``
        (``x * 2^-32``, needs ``jax_enable_x64``).
    matrices : array_like, optional
        Jump-ahead table; :func:`jump_ahead_matrices` by default.
    subsequence_log2 : int, optional
        Each stream is ``2^(subsequence_log2 - p)`` steps long, ``p`` being
        the smallest integer with ``2^p >= num_runs * num_threads``. Setting
        it so that this equals ``num_steps`` makes the streams of all units
        one contiguous stretch of the sequence. ``num_steps`` may not
        exceed the stream length.

    Returns
    -------
    jax.Array
        Vector of length ``num_threads * num_steps``.

    Examples
    --------
    .. code-block:: python

        >>> import deepbelief
        >>> x = deepbelief.xorshift7(deepbelief.seed_state(0), 16, num_threads=64)
        >>> x.shape, x.dtype
        ((1024,), dtype('float32'))
    """
    return xorshift7_p_call(
        state_start,
        num_steps,
        num_threads=num_threads,
        num_runs=num_runs,
        run_rank=run_rank,
        dtype=dtype,
        matrices=matrices,
        subsequence_log2=subsequence_log2,
        backend=backend,
    )[0]


def uniform_draws(seed: int, shape, *, num_threads: int = 256, backend: Optional[str] = None):
    """Uniform ``float32`` draws in ``[0, 1)`` of the given shape, seeded by an integer.

    Meant as the ``rnd`` operand of :func:`deepbelief.activate`.
    """
    shape = (shape,) if isinstance(shape, int) else tuple(shape)
    n = math.prod(shape)
    num_steps = max(cdiv(n, num_threads), 1)
    draws = xorshift7(seed_state(seed), num_steps, num_threads=num_threads, backend=backend)
    return draws[:n].reshape(shape)


def _xorshift7_numba_kernel(
    num_steps: int,
    num_threads: int,
    run_rank: int,
    base: int,
    p: int,
    dtype: np.dtype,
    **kwargs
):
    import numba

    next_, _, jump, convert = _numba_functions(dtype)

    @numba.njit(parallel=get_numba_parallel())
    def kernel(state_start, table, out):
        for t in numba.prange(num_threads):
            state = np.empty(8, dtype=np.uint32)
            prev = np.empty(8, dtype=np.uint32)
            jump(state, prev, state_start, table, base, p, run_rank * num_threads + t)
            index = 0
            for step in range(num_steps):
                r, index = next_(state, index)
                out[t + step * num_threads] = convert(r)

    def run(state_start, table):
        return numba_kernel(kernel, outs=kwargs['outs'])(state_start, table)

    return run


def _xorshift7_numba_cuda_kernel(
    num_steps: int,
    num_threads: int,
    run_rank: int,
    base: int,
    p: int,
    dtype: np.dtype,
    **kwargs
):
    import numba
    from numba import cuda

    next_, parity, convert = _cuda_functions(dtype)
    block = math.gcd(num_threads, 256)
    grid = num_threads // block

    @cuda.jit
    def kernel(state_start, table, out):
        tid = cuda.threadIdx.x
        t = cuda.blockIdx.x * block + tid
        rank = run_rank * num_threads + t
        row = cuda.shared.array(8, dtype=numba.uint32)
        state = cuda.local.array(8, dtype=numba.uint32)
        prev = cuda.local.array(8, dtype=numba.uint32)
        for l in range(8):
            state[l] = state_start[l]
        for i in range(p):
            selected = (rank >> i) & 1
            offset = (base + i) * LEVEL_WORDS
            for l in range(8):
                prev[l] = state[l]
            for j in range(8):
                word = numba.uint64(0)
                for k in range(32):
                    # the whole block reads the row once into shared memory
                    cuda.syncthreads()
                    l = tid
                    while l < 8:
                        row[l] = table[offset + (j * 32 + k) * 8 + l]
                        l += block
                    cuda.syncthreads()
                    if selected:
                        partial = numba.uint64(0)
                        for l in range(8):
                            partial = partial ^ (row[l] & prev[l])
                        word = ((word << numba.uint32(1)) & _MASK) | parity(partial)
                if selected:
                    state[j] = word
        index = 0
        for step in range(num_steps):
            r, index = next_(state, index)
            out[t + step * num_threads] = convert(r)

    def run(state_start, table):
        return numba_cuda_kernel(kernel, outs=kwargs['outs'], grid=(grid,), block=(block,))(state_start, table)

    return run


def _xorshift7_jax_kernel(
    num_steps: int,
    num_threads: int,
    run_rank: int,
    base: int,
    p: int,
    dtype: np.dtype,
    **kwargs
):
    shifts = jnp.arange(31, -1, -1, dtype=jnp.uint32)

    def jump(state_start, table):
        ranks = run_rank * num_threads + jnp.arange(num_threads, dtype=jnp.uint32)
        state = jnp.broadcast_to(state_start, (num_threads, 8))
        for i in range(p):
            rows = table[base + i]
            bits = jax.lax.population_count(rows[None, :, :] & state[:, None, :]).sum(-1) & 1
            words = (bits.astype(jnp.uint32).reshape(num_threads, 8, 32) << shifts).sum(-1)
            selected = ((ranks >> i) & 1).astype(bool)
            state = jnp.where(selected[:, None], words.astype(jnp.uint32), state)
        return state

    def step(carry, _):
        states, index = carry

        def word(offset):
            return jnp.take(states, (index + offset) & 7, axis=1)

        t = word(7)
        t = t ^ (t << 13)
        r = t ^ (t << 9)
        t = word(4)
        r = r ^ (t ^ (t << 7))
        t = word(3)
        r = r ^ (t ^ (t >> 3))
        t = word(1)
        r = r ^ (t ^ (t >> 10))
        t = word(0)
        t = t ^ (t >> 7)
        r = r ^ (t ^ (t << 24))
        states = states.at[:, index].set(r)
        return (states, (index + 1) & 7), r

    def convert(x):
        if dtype == np.dtype(np.float32):
            return (x >> 8).astype(jnp.float32) * jnp.float32(2 ** -24)
        if dtype == np.dtype(np.float64):
            return x.astype(jnp.float64) * (2.0 ** -32)
        return x

    def kernel(state_start, table):
        table = table.reshape(-1, 256, 8)
        state = jump(state_start, table)
        _, rs = jax.lax.scan(step, (state, jnp.int32(0)), None, length=num_steps)
        return convert(rs.reshape(-1)),

    return kernel


def xorshift7_p_call(
    state_start,
    num_steps: int,
    *,
    num_threads: int,
    num_runs: int = 1,
    run_rank: int = 0,
    dtype=np.float32,
    matrices=None,
    subsequence_log2: int = NUM_LEVELS,
    backend: Optional[str] = None,
):
    """Validate the stream layout and bind :data:`xorshift7_p`.

    Returns
    -------
    list of jax.Array
        A single-element list with the ``num_threads * num_steps`` variates.
    """
    dtype = np.dtype(dtype)
    if dtype not in _SUPPORTED_DTYPES:
        raise ValueError(f'xorshift7 supports {[str(d) for d in _SUPPORTED_DTYPES]}, got {dtype}.')
    if dtype == np.dtype(np.float64) and not jax.config.jax_enable_x64:
        raise ValueError('float64 variates need jax_enable_x64.')
    if num_steps < 1:
        raise ValueError(f'num_steps must be positive, got {num_steps}.')
    if num_threads < 1 or num_runs < 1:
        raise ValueError(f'num_threads and num_runs must be positive, got {num_threads} and {num_runs}.')
    if not 0 <= run_rank < num_runs:
        raise ValueError(f'run_rank must be in [0, {num_runs}), got {run_rank}.')

    state_start = jnp.asarray(state_start, dtype=jnp.uint32)
    if state_start.shape != (8,):
        raise DimensionMismatchError(f'state_start must hold 8 words, got shape {state_start.shape}.')
    table = jump_ahead_matrices() if matrices is None else matrices
    table = jnp.asarray(table, dtype=jnp.uint32).reshape(-1)
    if table.size % LEVEL_WORDS != 0:
        raise DimensionMismatchError(
            f'The jump-ahead table must hold whole levels of {LEVEL_WORDS} words, got {table.size}.'
        )
    base, p = _stream_layout(
        num_runs * num_threads, subsequence_log2, table.size // LEVEL_WORDS, num_steps
    )

    return xorshift7_p(
        state_start,
        table,
        outs=[jax.ShapeDtypeStruct((num_threads * num_steps,), dtype)],
        num_steps=num_steps,
        num_threads=num_threads,
        run_rank=run_rank,
        base=base,
        p=p,
        dtype=dtype,
        backend=backend,
    )


xorshift7_p = XLACustomKernel(
    'xorshift7',
    doc="""
Low-level XLA custom-kernel primitive of the parallel XorShift7 generator.

Operands are the eight start words and the flat jump-ahead table; ``base``
and ``p`` give the table levels of the jump, ``run_rank`` and
``num_threads`` the ranks of the units.

See Also
--------
xorshift7 : High-level user-facing function wrapper.
"""
)
xorshift7_p.def_numba_kernel(_xorshift7_numba_kernel)
xorshift7_p.def_numba_cuda_kernel(_xorshift7_numba_cuda_kernel)
xorshift7_p.def_jax_kernel(_xorshift7_jax_kernel)
xorshift7_p.def_call(xorshift7_p_call)
xorshift7_p.def_tags('rng')
