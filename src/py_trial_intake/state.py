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
"""Form state and the reducer that moves it from one version to the next.

`reduce(state, action)` is the only place the form state changes. It never
modifies its input; every action yields a new `FormState`. The deep merge
runs at exactly two points: when the initial state is built and when an
extraction result is applied.
"""

import logging
from collections.abc import Mapping
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

from .defaults import conform_record, initial_values
from .exceptions import FieldError
from .models import DocumentType, ManifestEntry, Notice, NoticeLevel, StoredFile
from .reconciler import reconcile
from .schema import DOCUMENT_FLAG_PATHS, FieldKind, FieldSpec, iter_leaf_fields, resolve_field
from .uploads import UploadSession
from .validation import has_valid_type, validate_record

logger = logging.getLogger(__name__)

EMPTY_MANIFEST_MESSAGE = "Please upload at least one document before proceeding."
EXTRACTION_FAILED_MESSAGE = "Error parsing documents. Please fill the form manually."
EXTRACTION_APPLIED_MESSAGE = "Form fields were pre-filled from the uploaded documents."
INVALID_SUBMISSION_MESSAGE = "Please correct the highlighted fields before submitting."


class FormState(BaseModel):
    """Everything one form session knows, as a single immutable value."""

    model_config = ConfigDict(frozen=True)

    values: dict[str, Any]
    uploads: UploadSession = Field(default_factory=UploadSession)
    is_parsing: bool = False
    touched: frozenset[str] = frozenset()
    errors: dict[str, str] = Field(default_factory=dict)
    notices: tuple[Notice, ...] = ()
    submit_count: int = 0

    @property
    def manifest(self) -> tuple[ManifestEntry, ...]:
        return self.uploads.manifest

    @property
    def can_finish_uploading(self) -> bool:
        return self.uploads.can_finish and not self.is_parsing

    @property
    def visible_errors(self) -> dict[str, str]:
        """Errors of the fields the user has already left (or tried to submit)."""
        return {path: message for path, message in self.errors.items() if path in self.touched}


def initial_state(initial_data: Mapping[str, Any] | None = None) -> FormState:
    """Build the starting state from the defaults plus optional caller data."""
    values = conform_record(initial_values(initial_data))
    return FormState(values=values, errors=validate_record(values))


# Actions


class _Action(BaseModel):
    model_config = ConfigDict(frozen=True)


class SetFieldValue(_Action):
    """Edit one field. A trailing index addresses a row of a repeatable field."""

    path: str
    value: Any


class TouchField(_Action):
    path: str


class AddRow(_Action):
    path: str


class RemoveRow(_Action):
    path: str
    index: int


class UploadStarted(_Action):
    document_type: DocumentType
    original_name: str


class UploadSucceeded(_Action):
    document_type: DocumentType
    original_name: str
    stored_file: StoredFile


class UploadFailed(_Action):
    document_type: DocumentType
    original_name: str
    detail: str


class ExtractionStarted(_Action):
    pass


class ExtractionSucceeded(_Action):
    result: dict[str, Any]


class ExtractionFailed(_Action):
    detail: str


class SubmitRequested(_Action):
    pass


class RaiseNotice(_Action):
    notice: Notice


class ClearNotices(_Action):
    pass


Action = Union[
    SetFieldValue,
    TouchField,
    AddRow,
    RemoveRow,
    UploadStarted,
    UploadSucceeded,
    UploadFailed,
    ExtractionStarted,
    ExtractionSucceeded,
    ExtractionFailed,
    SubmitRequested,
    RaiseNotice,
    ClearNotices,
]


# Path helpers


def _resolve_target(path: str) -> tuple[FieldSpec, int | None]:
    """Resolve a field path, allowing a trailing row index on list fields."""
    try:
        return resolve_field(path), None
    except KeyError:
        pass
    parent, _, last = path.rpartition(".")
    if parent and last.isdigit():
        try:
            spec = resolve_field(parent)
        except KeyError:
            spec = None
        if spec is not None and spec.kind is FieldKind.TEXT_LIST:
            return spec, int(last)
    raise FieldError(f"Unknown field: {path}")


def _get(values: Mapping[str, Any], path: str) -> Any:
    node: Any = values
    for part in path.split("."):
        node = node[part]
    return node


def _assign(node: Mapping[str, Any], parts: list[str], value: Any) -> dict[str, Any]:
    # Copies only the dictionaries along the path; siblings are shared.
    updated = dict(node)
    head = parts[0]
    if len(parts) == 1:
        updated[head] = value
    else:
        updated[head] = _assign(node.get(head, {}), parts[1:], value)
    return updated


def _set(values: Mapping[str, Any], path: str, value: Any) -> dict[str, Any]:
    return _assign(values, path.split("."), value)


def _notice(state: FormState, level: NoticeLevel, message: str) -> tuple[Notice, ...]:
    return (*state.notices, Notice(level=level, message=message))


def _with_values(state: FormState, values: dict[str, Any], **changes: Any) -> FormState:
    return state.model_copy(update={"values": values, "errors": validate_record(values), **changes})


# Reducer


def _set_field(state: FormState, action: SetFieldValue) -> FormState:
    spec, index = _resolve_target(action.path)
    if index is not None:
        rows = list(_get(state.values, spec.path))
        if not isinstance(action.value, str):
            raise FieldError(f"Rows of {spec.path} hold text, got {type(action.value).__name__}")
        if index >= len(rows):
            raise FieldError(f"Row {index} of {spec.path} does not exist")
        rows[index] = action.value
        return _with_values(state, _set(state.values, spec.path, rows))

    if spec.kind in (FieldKind.GROUP, FieldKind.FILE_LIST):
        raise FieldError(f"Field {spec.path} cannot be edited directly")
    if not has_valid_type(spec, action.value):
        raise FieldError(f"Invalid value for {spec.path}: {action.value!r}")
    value = list(action.value) if spec.kind is FieldKind.TEXT_LIST else action.value
    return _with_values(state, _set(state.values, spec.path, value))


def _touch(state: FormState, action: TouchField) -> FormState:
    spec, _ = _resolve_target(action.path)
    return state.model_copy(update={"touched": state.touched | {spec.path}})


def _rows_spec(path: str) -> FieldSpec:
    try:
        spec = resolve_field(path)
    except KeyError:
        raise FieldError(f"Unknown field: {path}") from None
    if spec.kind is not FieldKind.TEXT_LIST:
        raise FieldError(f"Field {path} is not a repeatable text field")
    return spec


def _add_row(state: FormState, action: AddRow) -> FormState:
    spec = _rows_spec(action.path)
    rows = [*_get(state.values, spec.path), ""]
    return _with_values(state, _set(state.values, spec.path, rows))


def _remove_row(state: FormState, action: RemoveRow) -> FormState:
    spec = _rows_spec(action.path)
    rows = list(_get(state.values, spec.path))
    if not 0 <= action.index < len(rows):
        raise FieldError(f"Row {action.index} of {spec.path} does not exist")
    del rows[action.index]
    return _with_values(state, _set(state.values, spec.path, rows))


def _upload_succeeded(state: FormState, action: UploadSucceeded) -> FormState:
    document_type = action.document_type
    entry = ManifestEntry(
        filename=action.stored_file.filename,
        original_name=action.original_name,
        document_type=document_type,
    )
    files_path = f"document_uploads.uploaded_files.{document_type.value}"
    stored = [*_get(state.values, files_path), action.stored_file.model_dump(mode="json")]
    values = _set(state.values, files_path, stored)
    values = _set(values, DOCUMENT_FLAG_PATHS[document_type], True)
    return _with_values(state, values, uploads=state.uploads.succeeded(entry))


def _submit(state: FormState) -> FormState:
    errors = validate_record(state.values)
    touched = state.touched | {spec.path for spec in iter_leaf_fields()}
    notices = state.notices
    if errors:
        notices = _notice(state, NoticeLevel.ERROR, INVALID_SUBMISSION_MESSAGE)
    return state.model_copy(
        update={
            "errors": errors,
            "touched": touched,
            "notices": notices,
            "submit_count": state.submit_count + 1,
        }
    )


def reduce(state: FormState, action: Action) -> FormState:
    """Return the state that results from applying `action` to `state`.

    Raises:
        FieldError: If an edit names an unknown field or carries a value of
            the wrong type.
    """
    logger.debug("Applying %s", type(action).__name__)
    if isinstance(action, SetFieldValue):
        return _set_field(state, action)
    if isinstance(action, TouchField):
        return _touch(state, action)
    if isinstance(action, AddRow):
        return _add_row(state, action)
    if isinstance(action, RemoveRow):
        return _remove_row(state, action)
    if isinstance(action, UploadStarted):
        return state.model_copy(update={"uploads": state.uploads.started(action.document_type)})
    if isinstance(action, UploadSucceeded):
        return _upload_succeeded(state, action)
    if isinstance(action, UploadFailed):
        return state.model_copy(
            update={
                "uploads": state.uploads.failed(action.document_type),
                "notices": _notice(
                    state, NoticeLevel.ERROR, f"Error uploading file: {action.detail}"
                ),
            }
        )
    if isinstance(action, ExtractionStarted):
        return state.model_copy(update={"is_parsing": True})
    if isinstance(action, ExtractionSucceeded):
        return _with_values(
            state,
            reconcile(state.values, action.result),
            is_parsing=False,
            notices=_notice(state, NoticeLevel.INFO, EXTRACTION_APPLIED_MESSAGE),
        )
    if isinstance(action, ExtractionFailed):
        return state.model_copy(
            update={
                "is_parsing": False,
                "notices": _notice(state, NoticeLevel.ERROR, EXTRACTION_FAILED_MESSAGE),
            }
        )
    if isinstance(action, SubmitRequested):
        return _submit(state)
    if isinstance(action, RaiseNotice):
        return state.model_copy(update={"notices": (*state.notices, action.notice)})
    if isinstance(action, ClearNotices):
        return state.model_copy(update={"notices": ()})
    raise TypeError(f"Unknown action: {action!r}")
