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

from typing import Callable, Tuple

import jax

__all__ = [
    'Kernel',
    'KernelGenerator',
]

# A kernel receives the input arrays and returns a tuple of output arrays.
Kernel = Callable[..., Tuple[jax.Array, ...]]

# A kernel generator receives the keyword parameters of a primitive bind
# (including ``outs``) and returns a ready-to-run kernel.
KernelGenerator = Callable[..., Kernel]
