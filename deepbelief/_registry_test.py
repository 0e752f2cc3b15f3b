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

import jax

import deepbelief
from deepbelief._registry import get_all_primitive_names, get_primitives_by_tags, get_registry

ELEMENTWISE = {
    'activate',
    'transform',
    'pointwise_binary',
    'scalar_multiply',
    'outer_product',
    'activate_first_row',
    'activate_first_column',
    'coerce',
}


def test_every_kernel_is_registered():
    names = set(get_all_primitive_names())
    assert {'tiled_multiply', 'matvec', 'xorshift7'} | ELEMENTWISE <= names
    assert get_all_primitive_names() == sorted(get_all_primitive_names())


def test_registry_is_a_copy():
    registry = get_registry()
    registry.pop('matvec')
    assert 'matvec' in get_registry()


def test_tags():
    assert set(get_primitives_by_tags({'elementwise'})) >= ELEMENTWISE
    assert set(get_primitives_by_tags({'matmul'})) == {'tiled_multiply'}
    assert set(get_primitives_by_tags({'matvec'})) == {'matvec'}
    assert set(get_primitives_by_tags({'rng'})) == {'xorshift7'}
    assert get_primitives_by_tags({'matmul', 'rng'}) == {}


def test_every_primitive_runs_on_this_platform():
    platform = jax.default_backend()
    for name, prim in get_registry().items():
        if name in {'tiled_multiply', 'matvec', 'xorshift7'} | ELEMENTWISE:
            assert 'jax_raw' in prim.available_backends(platform), name


def test_public_exports():
    for name in deepbelief.__all__:
        assert hasattr(deepbelief, name), name
