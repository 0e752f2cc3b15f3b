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

"""Global registry of every kernel primitive defined by deepbelief.

Primitives add themselves when their ``XLACustomKernel`` is constructed, so
importing :mod:`deepbelief` is enough to populate it. This module imports
nothing from the rest of the package to stay free of import cycles.
"""

from typing import Dict, List, Set, TYPE_CHECKING

if TYPE_CHECKING:
    from deepbelief._op.main import XLACustomKernel

__all__ = [
    'register_primitive',
    'get_registry',
    'get_primitives_by_tags',
    'get_all_primitive_names',
]

_PRIMITIVE_REGISTRY: Dict[str, 'XLACustomKernel'] = {}


def register_primitive(name: str, primitive: 'XLACustomKernel'):
    """Register a primitive under ``name``; a later registration replaces an earlier one."""
    _PRIMITIVE_REGISTRY[name] = primitive


def get_registry() -> Dict[str, 'XLACustomKernel']:
    """Return a copy of the full primitive registry."""
    return dict(_PRIMITIVE_REGISTRY)


def get_primitives_by_tags(tags: Set[str]) -> Dict[str, 'XLACustomKernel']:
    """Return the primitives carrying every tag in ``tags``.

    Parameters
    ----------
    tags : set of str
        Tags such as ``'matmul'``, ``'matvec'``, ``'elementwise'`` or ``'rng'``.

    Returns
    -------
    dict of str to XLACustomKernel
        Matching primitives keyed by name.
    """
    result = {}
    for name, prim in _PRIMITIVE_REGISTRY.items():
        if tags.issubset(prim.tags):
            result[name] = prim
    return result


def get_all_primitive_names() -> List[str]:
    """Return the sorted names of all registered primitives."""
    return sorted(_PRIMITIVE_REGISTRY.keys())
