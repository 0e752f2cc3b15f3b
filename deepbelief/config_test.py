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

import json
import os
import warnings

import pytest

from deepbelief import config
from deepbelief.config import (
    _SCHEMA_VERSION,
    _read_config_file,
    _write_config_file,
    clear_user_defaults,
    get_config_path,
    get_user_default,
    invalidate_cache,
    load_user_defaults,
    save_user_defaults,
    set_user_default,
)


@pytest.fixture(autouse=True)
def isolate_config(tmp_path, monkeypatch):
    """Redirect config to a temp directory and clear cache for each test."""
    config_path = str(tmp_path / 'deepbelief' / 'defaults.json')
    monkeypatch.setattr('deepbelief.config.get_config_path', lambda: config_path)
    invalidate_cache()
    yield config_path
    invalidate_cache()


@pytest.fixture
def restore_runtime():
    backends = dict(config._global_backends)
    parallel = config._numba_parallel
    num_threads = config._numba_num_threads
    block_size = config._block_size
    yield
    config._global_backends.clear()
    config._global_backends.update(backends)
    config._numba_parallel = parallel
    config._numba_num_threads = num_threads
    config._block_size = block_size


class TestRuntimeSwitches:
    def test_backend_override(self, restore_runtime):
        assert config.get_backend('tpu') is None
        config.set_backend('cpu', 'jax_raw')
        assert config.get_backend('cpu') == 'jax_raw'
        config.set_backend('cpu', None)
        assert config.get_backend('cpu') is None

    def test_backend_override_rejects_bad_values(self, restore_runtime):
        with pytest.raises(ValueError):
            config.set_backend('fpga', 'numba')
        with pytest.raises(ValueError):
            config.set_backend('cpu', '')

    def test_numba_parallel(self, restore_runtime):
        config.set_numba_parallel(True)
        assert config.get_numba_parallel()
        assert config.get_numba_num_threads() is None
        config.set_numba_parallel(False)
        assert not config.get_numba_parallel()
        with pytest.raises(ValueError):
            config.set_numba_parallel(True, num_threads=0)

    def test_block_size(self, restore_runtime):
        assert config.get_block_size() == 32
        config.set_block_size(8)
        assert config.get_block_size() == 8
        for bad in (0, -4, 2.0):
            with pytest.raises(ValueError):
                config.set_block_size(bad)
        assert config.get_block_size() == 8


class TestGetConfigPath:
    def test_returns_string(self):
        path = get_config_path()
        assert isinstance(path, str)

    def test_ends_with_defaults_json(self):
        path = get_config_path()
        assert path.endswith('defaults.json')


class TestReadConfigFile:
    def test_missing_file_returns_default(self, isolate_config):
        data = _read_config_file('/nonexistent/path/defaults.json')
        assert data['schema_version'] == _SCHEMA_VERSION
        assert data['defaults'] == {}

    def test_corrupted_json(self, isolate_config):
        path = isolate_config
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w') as f:
            f.write('not valid json{{{')
        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter('always')
            data = _read_config_file(path)
            assert any('Corrupted' in str(warning.message) for warning in w)
        assert data['defaults'] == {}

    def test_unsupported_schema_version(self, isolate_config):
        path = isolate_config
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w') as f:
            json.dump({'schema_version': 999, 'defaults': {'matmul': {'cpu': 'numba'}}}, f)
        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter('always')
            data = _read_config_file(path)
            assert any('schema version' in str(warning.message) for warning in w)
        assert data['defaults'] == {}

    def test_valid_file(self, isolate_config):
        path = isolate_config
        expected = {'schema_version': 1, 'defaults': {'matvec': {'cpu': 'numba'}}}
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w') as f:
            json.dump(expected, f)
        assert _read_config_file(path) == expected


class TestWriteConfigFile:
    def test_creates_directory_and_file(self, isolate_config):
        path = isolate_config
        data = {'schema_version': 1, 'defaults': {}}
        _write_config_file(path, data)
        assert os.path.isfile(path)
        with open(path) as f:
            assert json.load(f) == data

    def test_second_write_replaces_first(self, isolate_config):
        path = isolate_config
        _write_config_file(path, {'schema_version': 1, 'defaults': {'a': {'cpu': 'b'}}})
        _write_config_file(path, {'schema_version': 1, 'defaults': {'c': {'gpu': 'd'}}})
        with open(path) as f:
            assert json.load(f) == {'schema_version': 1, 'defaults': {'c': {'gpu': 'd'}}}
        leftovers = [p for p in os.listdir(os.path.dirname(path)) if p.endswith('.tmp')]
        assert leftovers == []


class TestLoadSaveUserDefaults:
    def test_load_empty(self):
        assert load_user_defaults() == {}

    def test_save_and_load(self):
        save_user_defaults({'matmul': {'cpu': 'numba', 'gpu': 'numba_cuda'}})
        invalidate_cache()
        defaults = load_user_defaults()
        assert defaults['matmul']['cpu'] == 'numba'
        assert defaults['matmul']['gpu'] == 'numba_cuda'

    def test_save_merges(self):
        save_user_defaults({'matmul': {'cpu': 'numba'}})
        save_user_defaults({'xorshift7': {'gpu': 'numba_cuda'}})
        save_user_defaults({'matmul': {'gpu': 'jax_raw'}})
        invalidate_cache()
        defaults = load_user_defaults()
        assert defaults['matmul'] == {'cpu': 'numba', 'gpu': 'jax_raw'}
        assert defaults['xorshift7'] == {'gpu': 'numba_cuda'}

    def test_caching(self):
        save_user_defaults({'matmul': {'cpu': 'numba'}})
        d1 = load_user_defaults()
        d2 = load_user_defaults()
        assert d1 is d2


class TestGetSetUserDefault:
    def test_get_nonexistent(self):
        assert get_user_default('nonexistent', 'cpu') is None

    def test_set_and_get(self):
        set_user_default('matvec', 'cpu', 'numba')
        invalidate_cache()
        assert get_user_default('matvec', 'cpu') == 'numba'
        assert get_user_default('matvec', 'gpu') is None

    def test_set_overwrites(self):
        set_user_default('matvec', 'cpu', 'numba')
        set_user_default('matvec', 'cpu', 'jax_raw')
        invalidate_cache()
        assert get_user_default('matvec', 'cpu') == 'jax_raw'


class TestClearUserDefaults:
    def test_clear_removes_file(self, isolate_config):
        save_user_defaults({'matmul': {'cpu': 'numba'}})
        assert os.path.isfile(isolate_config)
        clear_user_defaults()
        assert not os.path.isfile(isolate_config)

    def test_clear_invalidates_cache(self):
        save_user_defaults({'matmul': {'cpu': 'numba'}})
        load_user_defaults()
        clear_user_defaults()
        assert load_user_defaults() == {}

    def test_clear_nonexistent_file(self):
        clear_user_defaults()
