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
"""Checks a record against the schema's validation contract."""

from collections.abc import Mapping
from typing import Any

from .schema import FieldKind, FieldSpec, iter_leaf_fields

REQUIRED_MESSAGE = "Required"
MISSING_MESSAGE = "Missing field"

_TYPE_MESSAGES = {
    FieldKind.TEXT: "Expected text",
    FieldKind.BOOLEAN: "Expected true or false",
    FieldKind.TEXT_LIST: "Expected a list of text entries",
    FieldKind.FILE_LIST: "Expected a list of stored files",
}

_ABSENT = object()


def lookup(record: Mapping[str, Any], path: str) -> Any:
    """Return the value at a dotted path, or a private marker if absent."""
    node: Any = record
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return _ABSENT
        node = node[part]
    return node


def has_valid_type(spec: FieldSpec, value: Any) -> bool:
    if spec.kind is FieldKind.TEXT:
        return isinstance(value, str)
    if spec.kind is FieldKind.BOOLEAN:
        return isinstance(value, bool)
    if spec.kind is FieldKind.TEXT_LIST:
        return isinstance(value, list) and all(isinstance(item, str) for item in value)
    if spec.kind is FieldKind.FILE_LIST:
        return isinstance(value, list) and all(
            isinstance(item, Mapping) and isinstance(item.get("filename"), str)
            for item in value
        )
    return isinstance(value, Mapping)


def validate_field(spec: FieldSpec, value: Any) -> str | None:
    """Return the error message for one field value, or None if it is valid."""
    if value is _ABSENT:
        return REQUIRED_MESSAGE if spec.required else MISSING_MESSAGE
    if not has_valid_type(spec, value):
        return _TYPE_MESSAGES.get(spec.kind, MISSING_MESSAGE)
    if spec.required and spec.kind is not FieldKind.BOOLEAN and not value:
        return REQUIRED_MESSAGE
    return None


def validate_record(record: Mapping[str, Any]) -> dict[str, str]:
    """Validate a record and return its errors keyed by dotted field path.

    An empty dictionary means the record can be submitted. Keys the schema
    does not declare are not reported.
    """
    errors = {}
    for spec in iter_leaf_fields():
        message = validate_field(spec, lookup(record, spec.path))
        if message:
            errors[spec.path] = message
    return errors
