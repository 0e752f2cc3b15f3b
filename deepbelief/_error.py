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


__all__ = [
    'MathError',
    'DimensionMismatchError',
    'BlockAlignmentError',
    'KernelNotAvailableError',
    'KernelFallbackExhaustedError',
    'KernelExecutionError',
]


class MathError(Exception):
    """Base exception for numerical precondition violations in deepbelief kernels.

    Raised before any primitive is bound, so a failing check never leaves a
    partially written output behind.

    Parameters
    ----------
    message : str
        A human-readable description of the violated precondition.

    See Also
    --------
    DimensionMismatchError : Inconsistent operand shapes.
    BlockAlignmentError : Tiled multiply fed with non-aligned dimensions.

    Examples
    --------
    .. code-block:: python

        >>> from deepbelief._error import MathError
        >>> raise MathError("Matrix dimensions are incompatible")  # doctest: +SKIP
        Traceback (most recent call last):
            ...
        deepbelief.MathError: Matrix dimensions are incompatible
    """
    __module__ = 'deepbelief'


class DimensionMismatchError(MathError, ValueError):
    """Raised when operand shapes disagree with the declared heights and widths.

    Examples include a vector whose length differs from the matrix width in
    ``multiply_vector_by_matrix``, or inner dimensions that do not conform in
    one of the tiled multiply variants.

    Parameters
    ----------
    message : str
        Description naming the operation and the offending shapes.

    See Also
    --------
    BlockAlignmentError : Raised for correctly shaped but non-aligned inputs.

    Examples
    --------
    .. code-block:: python

        >>> import jax.numpy as jnp
        >>> import deepbelief
        >>> deepbelief.matmul(jnp.ones((32, 32)), jnp.ones((64, 32)))  # doctest: +SKIP
        Traceback (most recent call last):
            ...
        deepbelief.DimensionMismatchError: matmul: width of A (32) != height of B (64).
    """
    __module__ = 'deepbelief'


class BlockAlignmentError(MathError, ValueError):
    """Raised when the tiled multiply executor receives non block-aligned dimensions.

    The blocked matrix multiply loads whole ``block_size x block_size`` tiles
    and has no boundary handling of its own, so every dimension must be a
    multiple of the block size. Pad the operands with
    :func:`deepbelief.pad_to_block` and crop the result instead.

    Parameters
    ----------
    message : str
        Description naming the offending dimension and the block size.

    See Also
    --------
    deepbelief.pad_to_block : Zero-pad a matrix up to the next block multiple.
    """
    __module__ = 'deepbelief'


class KernelNotAvailableError(Exception):
    """Raised when a requested kernel backend is not installed or cannot run here.

    For example, the ``numba_cuda`` backend was requested on a machine without
    a CUDA device.

    Parameters
    ----------
    message : str
        A human-readable description indicating which backend is unavailable.

    See Also
    --------
    KernelFallbackExhaustedError : Raised when no backend at all can be used.
    """
    __module__ = 'deepbelief'


class KernelFallbackExhaustedError(Exception):
    """Raised when no registered backend can serve a primitive on the current platform.

    Raised by :class:`~deepbelief._op.main.XLACustomKernel` during lowering,
    either because no kernels are registered for the platform or because the
    explicitly requested backend is not among them.

    Parameters
    ----------
    message : str
        A description listing the primitive name, the platform, and the
        backends that were available.

    See Also
    --------
    KernelNotAvailableError : Raised for a single missing backend.
    """
    __module__ = 'deepbelief'


class KernelExecutionError(Exception):
    """Raised when a compiled kernel fails while it is being launched.

    Launch failures are fatal for the invocation and are never retried here;
    retry policy, if any, belongs to the caller.

    Parameters
    ----------
    message : str
        Description of the failure, including the backend name.
    """
    __module__ = 'deepbelief'
