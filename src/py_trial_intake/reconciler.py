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
"""Applies an extraction result onto the live record.

The result comes from a remote service and is untrusted. Each
``(section, field)`` pair it mentions is normalized against the schema and
merged into the record on its own, so everything the result does not
mention keeps whatever the user last entered.
"""

import logging
from collections.abc import Iterator, Mapping
from typing import Any

from pydantic import BaseModel

from .merge import deep_merge
from .schema import FieldKind, FieldSpec, field_specs, section_model

logger = logging.getLogger(__name__)

NOT_PROVIDED = "Not Provided"

_TRUE_WORDS = {"true", "yes", "y"}
_FALSE_WORDS = {"false", "no", "n"}

# Marks a value that cannot be used for its field.
_SKIP = object()


def _normalize_text(value: Any) -> Any:
    if not value:
        return NOT_PROVIDED
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return "\n".join(item for item in value if item) or NOT_PROVIDED
    return _SKIP


def _normalize_flag(value: Any) -> Any:
    # The sentinel is not a boolean; "found nothing" reads as unchecked.
    if not value:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return _SKIP


def _normalize_rows(value: Any) -> Any:
    if not value:
        return [NOT_PROVIDED]
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    return _SKIP


def _normalize_group(model: type[BaseModel], value: Any, path: str) -> Any:
    if not value:
        blank = {spec.name: _normalize(spec, None) for spec in field_specs(model)}
        return {name: value for name, value in blank.items() if value is not _SKIP}
    if not isinstance(value, Mapping):
        return _SKIP
    return dict(_normalized_fields(model, value, f"{path}."))


def _normalize(spec: FieldSpec, value: Any, path: str = "") -> Any:
    if spec.kind is FieldKind.TEXT:
        return _normalize_text(value)
    if spec.kind is FieldKind.BOOLEAN:
        return _normalize_flag(value)
    if spec.kind is FieldKind.TEXT_LIST:
        return _normalize_rows(value)
    if spec.kind is FieldKind.GROUP:
        return _normalize_group(spec.group, value, path or spec.path)
    # Stored-file lists are only written by uploads.
    return _SKIP


def _normalized_fields(
    model: type[BaseModel], fields: Mapping[str, Any], prefix: str,
) -> Iterator[tuple[str, Any]]:
    specs = {spec.name: spec for spec in field_specs(model, prefix)}
    for name, value in fields.items():
        spec = specs.get(name)
        if spec is None:
            logger.warning("Ignoring unknown extracted field %s%s", prefix, name)
            continue
        normalized = _normalize(spec, value, spec.path)
        if normalized is _SKIP:
            logger.warning(
                "Ignoring extracted value of unexpected type %s for %s",
                type(value).__name__,
                spec.path,
            )
            continue
        yield name, normalized


def sanitize_extraction(extraction_result: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Reduce an extraction result to the pairs that fit the record's schema.

    Falsy text values become the "Not Provided" sentinel, unknown sections and
    fields are dropped, and values are coerced to their field's type where
    that is unambiguous.
    """
    clean: dict[str, dict[str, Any]] = {}
    for section, fields in extraction_result.items():
        model = section_model(section)
        if model is None:
            logger.warning("Ignoring unknown extracted section %s", section)
            continue
        if not isinstance(fields, Mapping):
            logger.warning("Ignoring extracted section %s: expected a mapping", section)
            continue
        clean[section] = dict(_normalized_fields(model, fields, f"{section}."))
    return clean


def reconcile(
    live_state: Mapping[str, Any], extraction_result: Mapping[str, Any],
) -> dict[str, Any]:
    """Merge an extraction result into the live record.

    Every field named in the result overwrites the live value (the
    extraction wins for those fields); every other field is left untouched.

    Args:
        live_state: The record as currently edited. Not modified.
        extraction_result: The parsed ``{section: {field: value}}`` mapping.

    Returns:
        The new record.
    """
    state = deep_merge(live_state, {})
    applied = 0
    for section, fields in sanitize_extraction(extraction_result).items():
        for field, value in fields.items():
            state = deep_merge(state, {section: {field: value}})
            applied += 1
    logger.info("Applied %d extracted field value(s).", applied)
    return state
