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
"""Builds the zero-value Study Record used as the base of every merge."""

from collections.abc import Mapping
from typing import Any

from .merge import deep_merge
from .schema import StudyRecord


def build_default_record() -> dict[str, Any]:
    """Return a fresh, fully populated record holding only default values.

    Text fields are empty, repeatable text fields hold a single empty row,
    flags are off except the IRB and informed-consent requirements, and the
    monitoring section starts as on-site with electronic data capture.
    """
    return StudyRecord().model_dump(mode="json")


def initial_values(initial_data: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Merge caller-supplied starting data onto the default record."""
    return deep_merge(build_default_record(), initial_data or {})


def conform_record(record: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce a record to the exact schema shape.

    Keys the schema does not know are dropped and missing ones filled with
    defaults.

    Raises:
        pydantic.ValidationError: If a value cannot be read as its field's type.
    """
    return StudyRecord.model_validate(record).model_dump(mode="json")
