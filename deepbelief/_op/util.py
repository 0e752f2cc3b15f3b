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

from typing import Protocol, Sequence, Tuple, Union

import jax
import numpy as np

__all__ = [
    'general_batching_rule',
    'abstract_arguments',
    'ShapeDtype',
    'OutType',
]


def general_batching_rule(prim, args, axes, **kwargs):
    """Batch any deepbelief primitive by scanning over the leading batch axis.

    Batched operands have their batch axis moved to position 0; unbatched
    operands are closed over. The primitive is then applied once per batch
    element with ``jax.lax.scan`` and every output is batched along axis 0.

    Parameters
    ----------
    prim : Primitive
        The primitive being batched.
    args : sequence of jax.Array
        Operands of the primitive.
    axes : sequence of int or None
        Batch axis of each operand, ``None`` for unbatched operands.
    **kwargs
        Primitive parameters, forwarded unchanged.

    Returns
    -------
    tuple
        ``(outs, out_dims)`` as expected by ``jax.interpreters.batching``.
    """
    batched, fixed = {}, {}
    for i, (arg, ax) in enumerate(zip(args, axes)):
        if ax is None:
            fixed[i] = arg
        else:
            batched[i] = arg if ax == 0 else jax.numpy.moveaxis(arg, ax, 0)

    def body(carry, xs):
        operands = tuple(xs[i] if i in batched else fixed[i] for i in range(len(args)))
        return carry, prim.bind(*operands, **kwargs)

    _, outs = jax.lax.scan(body, 0, batched)
    out_dims = jax.tree.map(lambda _: 0, outs)
    return outs, out_dims


class ShapeDtype(Protocol):
    """Anything with a ``shape`` and a ``dtype``, such as ``jax.ShapeDtypeStruct``."""

    @property
    def shape(self) -> Tuple[int, ...]:
        ...

    @property
    def dtype(self) -> np.dtype:
        ...


OutType = Union[ShapeDtype, Sequence[ShapeDtype]]


def _to_shaped_array(a):
    return jax.core.ShapedArray(a.shape, a.dtype)


def abstract_arguments(outs):
    """Flatten a pytree of shape/dtype descriptors into ``ShapedArray`` leaves.

    Returns
    -------
    tuple
        ``(leaves, treedef)``.
    """
    outs = jax.tree.map(_to_shaped_array, outs)
    return jax.tree.flatten(outs)
