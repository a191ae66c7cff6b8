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
"""Exception types raised by the intake pipeline.

Hierarchy:
    IntakeServiceError      (any failed call to the document service)
    ├── UploadError         (one file could not be uploaded)
    └── ExtractionError     (parsing call failed or returned garbage)
    FieldError              (unknown field path or wrongly typed value)
"""


class IntakeServiceError(Exception):
    """Base for failures talking to the document service."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        self.detail = detail or message
        super().__init__(message)


class UploadError(IntakeServiceError):
    """A single file upload failed."""


class ExtractionError(IntakeServiceError):
    """The document-parsing call failed or its response was unusable."""


class FieldError(ValueError):
    """A field path does not exist in the record or the value has the wrong type."""
