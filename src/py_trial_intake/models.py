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
"""Defines the Pydantic models exchanged with the document service."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DocumentType(str, Enum):
    """Document-type tags accepted by the upload endpoint."""

    INVESTIGATOR_BROCHURE = "investigator_brochure"
    LABEL = "label"
    ADDITIONAL_REPORTS = "additional_reports"
    PHARMACY_MANUAL = "pharmacy_manual"
    RISK_MANAGEMENT_GUIDELINES = "risk_management_guidelines"
    USER_DEFINED = "user_defined"
    STUDY_DESIGN_OUTLINE = "study_design_outline"


class StoredFile(BaseModel):
    """Descriptor of a file as stored by the backend.

    Only `filename` is guaranteed; anything else the server sends back
    (size, mimetype, path, ...) is kept as-is.
    """

    model_config = ConfigDict(extra="allow")

    filename: str


class ManifestEntry(BaseModel):
    """One uploaded file, tracked for the duration of an upload session."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    filename: str = Field(..., description="Name the server stored the file under.")
    original_name: str = Field(
        ..., alias="originalname", description="Name of the file on the user's side."
    )
    document_type: DocumentType = Field(..., alias="documentType")

    def to_wire(self) -> dict[str, str]:
        """Serialize using the field names the parse endpoint expects."""
        return self.model_dump(by_alias=True, mode="json")


class UploadResponse(BaseModel):
    """Body returned by the upload endpoint."""

    success: bool = False
    file: StoredFile | None = None


class ExtractionResponse(BaseModel):
    """Body returned by the document-parsing endpoint.

    `parsedData` is kept as an untyped mapping; its contents are untrusted
    and are sanitized by the reconciler, not here.
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    parsed_data: dict[str, Any] | None = Field(default=None, alias="parsedData")


class NoticeLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notice(BaseModel):
    """A user-facing, non-blocking message."""

    model_config = ConfigDict(frozen=True)

    level: NoticeLevel
    message: str
