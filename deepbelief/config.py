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

"""Runtime and user-level configuration for deepbelief.

Three kinds of settings live here:

* process-wide runtime switches: a global backend override per platform,
  Numba parallel execution, and the default kernel block size;
* per-primitive default backends persisted in a JSON file at a
  platform-appropriate location, written atomically and cached in memory.

Config locations:
    - Linux:   ~/.config/deepbelief/defaults.json
    - macOS:   ~/Library/Application Support/deepbelief/defaults.json
    - Windows: %APPDATA%/deepbelief/defaults.json
"""

import json
import os
import platform
import tempfile
import warnings
from typing import Any, Dict, Optional

__all__ = [
    'set_backend',
    'get_backend',
    'set_numba_parallel',
    'get_numba_parallel',
    'get_numba_num_threads',
    'set_block_size',
    'get_block_size',
    'load_user_defaults',
    'save_user_defaults',
    'get_user_default',
    'set_user_default',
    'clear_user_defaults',
    'get_config_path',
    'invalidate_cache',
]

_SCHEMA_VERSION = 1
_SUPPORTED_SCHEMA_VERSIONS = {1}
_cache: Optional[Dict[str, Any]] = None

_KNOWN_PLATFORMS = ('cpu', 'gpu', 'tpu')
_global_backends: Dict[str, Optional[str]] = {}

_numba_parallel: bool = False
_numba_num_threads: Optional[int] = None

_DEFAULT_BLOCK_SIZE = 32
_block_size: int = _DEFAULT_BLOCK_SIZE


# ----------------------------------------------------------------------
#  Runtime switches
# ----------------------------------------------------------------------

def set_backend(platform_name: str, backend: Optional[str]):
    """Force every primitive to use ``backend`` on ``platform_name``.

    The override applies to primitives that registered a kernel for that
    backend; the others keep their own default. Pass ``None`` to remove the
    override.

    Parameters
    ----------
    platform_name : str
        ``'cpu'``, ``'gpu'`` or ``'tpu'``.
    backend : str or None
        Backend name such as ``'numba'``, ``'numba_cuda'`` or ``'jax_raw'``.

    Examples
    --------
    .. code-block:: python

        >>> import deepbelief
        >>> deepbelief.config.set_backend('cpu', 'jax_raw')
        >>> deepbelief.config.get_backend('cpu')
        'jax_raw'
        >>> deepbelief.config.set_backend('cpu', None)
    """
    if platform_name not in _KNOWN_PLATFORMS:
        raise ValueError(f'Unknown platform {platform_name!r}; expected one of {_KNOWN_PLATFORMS}.')
    if backend is not None and (not isinstance(backend, str) or backend == ''):
        raise ValueError(f'backend must be a non-empty string or None, got {backend!r}.')
    _global_backends[platform_name] = backend


def get_backend(platform_name: str) -> Optional[str]:
    """Return the global backend override for ``platform_name``, or ``None``."""
    return _global_backends.get(platform_name)


def set_numba_parallel(parallel: bool = True, num_threads: Optional[int] = None):
    """Enable or disable Numba parallel execution and optionally set the thread count.

    When enabled, CPU kernels distribute output tiles, rows and RNG streams
    over ``numba.prange``. Kernels compiled before the call keep the mode
    they were compiled with.

    Parameters
    ----------
    parallel : bool, optional
        Enable (``True``) or disable (``False``) parallel mode.
    num_threads : int or None, optional
        Size of Numba's thread pool; ``None`` keeps Numba's default.

    Notes
    -----
    Setting ``num_threads`` calls ``numba.set_num_threads`` immediately, which
    affects every Numba function in the process.

    Examples
    --------
    .. code-block:: python

        >>> import deepbelief
        >>> deepbelief.config.set_numba_parallel(True, num_threads=4)
        >>> deepbelief.config.get_numba_parallel()
        True
    """
    global _numba_parallel, _numba_num_threads
    if num_threads is not None and num_threads <= 0:
        raise ValueError(f'num_threads must be a positive integer, got {num_threads}.')
    _numba_parallel = parallel
    _numba_num_threads = num_threads
    if num_threads is not None:
        import numba
        numba.set_num_threads(num_threads)


def get_numba_parallel() -> bool:
    """Return whether Numba parallel execution is enabled."""
    return _numba_parallel


def get_numba_num_threads() -> Optional[int]:
    """Return the configured Numba thread count, or ``None`` for Numba's default."""
    return _numba_num_threads


def set_block_size(block_size: int):
    """Set the block size used when a kernel call does not pass ``block_size``.

    The block size is the tile edge of the tiled multiply and the number of
    execution units per block of the vector and elementwise kernels. It is a
    compile-time constant of every kernel instantiation.

    Parameters
    ----------
    block_size : int
        A positive integer; powers of two up to 32 suit the GPU kernels.
    """
    global _block_size
    if not isinstance(block_size, int) or block_size <= 0:
        raise ValueError(f'block_size must be a positive integer, got {block_size!r}.')
    _block_size = block_size


def get_block_size() -> int:
    """Return the default kernel block size (32 unless changed)."""
    return _block_size


# ----------------------------------------------------------------------
#  Persisted per-primitive defaults
# ----------------------------------------------------------------------

def get_config_path() -> str:
    """Return the platform-appropriate path of the deepbelief config file.

    Returns
    -------
    str
        Absolute path to ``defaults.json``.

    Notes
    -----
    - **Windows**: ``%APPDATA%/deepbelief/defaults.json`` (falls back to
      ``~/deepbelief/defaults.json`` if ``APPDATA`` is not set).
    - **macOS**: ``~/Library/Application Support/deepbelief/defaults.json``.
    - **Linux / other**: ``$XDG_CONFIG_HOME/deepbelief/defaults.json`` (falls
      back to ``~/.config/deepbelief/defaults.json``).
    """
    system = platform.system()
    if system == 'Windows':
        base = os.environ.get('APPDATA', os.path.expanduser('~'))
    elif system == 'Darwin':
        base = os.path.join(os.path.expanduser('~'), 'Library', 'Application Support')
    else:
        base = os.environ.get('XDG_CONFIG_HOME', os.path.join(os.path.expanduser('~'), '.config'))
    return os.path.join(base, 'deepbelief', 'defaults.json')


def _empty_config() -> Dict[str, Any]:
    return {'schema_version': _SCHEMA_VERSION, 'defaults': {}}


def _read_config_file(path: str) -> Dict[str, Any]:
    """Read and validate the JSON configuration file.

    Missing, corrupted or unsupported files yield an empty configuration;
    the latter two also emit a ``UserWarning``.
    """
    if not os.path.isfile(path):
        return _empty_config()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        warnings.warn(
            f"deepbelief: Corrupted config file at {path}: {e}. Using built-in defaults.",
            stacklevel=3,
        )
        return _empty_config()

    schema_ver = data.get('schema_version', 0) if isinstance(data, dict) else 0
    if schema_ver not in _SUPPORTED_SCHEMA_VERSIONS:
        warnings.warn(
            f"deepbelief: Config file schema version {schema_ver} is not supported "
            f"(supported: {_SUPPORTED_SCHEMA_VERSIONS}). Ignoring user defaults.",
            stacklevel=3,
        )
        return _empty_config()

    return data


def _write_config_file(path: str, data: Dict[str, Any]):
    """Atomically write ``data`` as JSON through a temporary file and ``os.replace``."""
    config_dir = os.path.dirname(path)
    try:
        os.makedirs(config_dir, exist_ok=True)
    except OSError as e:
        warnings.warn(
            f"deepbelief: Cannot create config directory {config_dir}: {e}. "
            f"Default persistence skipped.",
            stacklevel=3,
        )
        return

    try:
        fd, tmp_path = tempfile.mkstemp(dir=config_dir, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, sort_keys=True)
                f.write('\n')
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
    except OSError as e:
        warnings.warn(
            f"deepbelief: Cannot write config file {path}: {e}. "
            f"Default persistence skipped.",
            stacklevel=3,
        )


def invalidate_cache():
    """Drop the in-memory copy of the config file so the next access re-reads it."""
    global _cache
    _cache = None


def load_user_defaults() -> Dict[str, Dict[str, str]]:
    """Load the persisted per-primitive default backends.

    Returns
    -------
    dict of str to dict of str to str
        ``{primitive_name: {platform: backend}}``, e.g.
        ``{'matmul': {'cpu': 'numba'}}``. Empty when nothing was saved.
    """
    global _cache
    if _cache is not None:
        return _cache.get('defaults', {})

    _cache = _read_config_file(get_config_path())
    return _cache.get('defaults', {})


def save_user_defaults(defaults: Dict[str, Dict[str, str]]):
    """Merge ``defaults`` into the config file and refresh the cache.

    Parameters
    ----------
    defaults : dict of str to dict of str to str
        ``{primitive_name: {platform: backend}}``. Existing entries for the
        same primitive/platform pair are overwritten.

    Examples
    --------
    .. code-block:: python

        >>> import deepbelief
        >>> deepbelief.config.save_user_defaults({'matmul': {'gpu': 'numba_cuda'}})  # doctest: +SKIP
    """
    global _cache
    path = get_config_path()
    existing = _read_config_file(path)

    existing_defaults = existing.get('defaults', {})
    for prim_name, platform_map in defaults.items():
        existing_defaults.setdefault(prim_name, {}).update(platform_map)
    existing['defaults'] = existing_defaults
    existing['schema_version'] = _SCHEMA_VERSION
    _write_config_file(path, existing)

    _cache = existing


def get_user_default(primitive_name: str, platform_name: str) -> Optional[str]:
    """Return the persisted backend for a primitive/platform pair, or ``None``."""
    defaults = load_user_defaults()
    return defaults.get(primitive_name, {}).get(platform_name)


def set_user_default(primitive_name: str, platform_name: str, backend: str):
    """Persist ``backend`` as the default of one primitive on one platform."""
    save_user_defaults({primitive_name: {platform_name: backend}})


def clear_user_defaults():
    """Delete the config file and clear the in-memory cache.

    A ``UserWarning`` is emitted if the file exists but cannot be removed.
    """
    global _cache
    path = get_config_path()
    try:
        if os.path.isfile(path):
            os.unlink(path)
    except OSError as e:
        warnings.warn(
            f"deepbelief: Cannot delete config file {path}: {e}.",
            stacklevel=3,
        )
    _cache = None
