# Copyright 2025 Gowtham Rao <rao@ohdsi.org>
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
"""Recursive merge of a partial record onto a base record."""

import copy
from collections.abc import Mapping
from typing import Any


def deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any] | None) -> dict[str, Any]:
    """Combine `overlay` onto `base` and return a new dictionary.

    Keys only in `base` are carried through. For keys in `overlay`, a mapping
    value is merged recursively into whatever `base` holds at that key (a
    missing or non-mapping node counts as empty); any other value, including
    a list, replaces the base value wholesale. Lists are never merged
    element-wise.

    Neither argument is modified, and the result shares no mutable
    containers with them.

    Args:
        base: The record to start from.
        overlay: The partial record whose values win. ``None`` is treated
            as an empty mapping.

    Returns:
        The merged record.
    """
    result = {key: copy.deepcopy(value) for key, value in base.items()}
    if not overlay:
        return result

    for key, value in overlay.items():
        if isinstance(value, Mapping):
            child = base.get(key)
            result[key] = deep_merge(child if isinstance(child, Mapping) else {}, value)
        else:
            result[key] = copy.deepcopy(value)
    return result
