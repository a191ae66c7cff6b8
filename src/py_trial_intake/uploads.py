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
"""Tracks the files uploaded during one form session.

The session is immutable: every transition returns a new instance, so it can
live inside the form state and be replaced by the reducer.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict

from .models import DocumentType, ManifestEntry


class UploadStatus(str, Enum):
    UNTRACKED = "untracked"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"


class DocumentProgress(BaseModel):
    """Upload counters for one document type."""

    model_config = ConfigDict(frozen=True)

    in_flight: int = 0
    uploaded: int = 0
    failed: int = 0

    @property
    def status(self) -> UploadStatus:
        if self.in_flight:
            return UploadStatus.UPLOADING
        if self.uploaded:
            return UploadStatus.UPLOADED
        return UploadStatus.UNTRACKED


class UploadSession(BaseModel):
    """Manifest of uploaded files plus per-document-type progress.

    Manifest order is the order in which uploads completed.
    """

    model_config = ConfigDict(frozen=True)

    manifest: tuple[ManifestEntry, ...] = ()
    progress: dict[DocumentType, DocumentProgress] = {}

    @property
    def can_finish(self) -> bool:
        """Whether the "done uploading" trigger is enabled."""
        return bool(self.manifest)

    def progress_for(self, document_type: DocumentType) -> DocumentProgress:
        return self.progress.get(DocumentType(document_type), DocumentProgress())

    def status(self, document_type: DocumentType) -> UploadStatus:
        return self.progress_for(document_type).status

    def entries_for(self, document_type: DocumentType) -> list[ManifestEntry]:
        document_type = DocumentType(document_type)
        return [entry for entry in self.manifest if entry.document_type is document_type]

    def _with_progress(self, document_type: DocumentType, **changes: int) -> dict:
        current = self.progress_for(document_type)
        progress = dict(self.progress)
        progress[DocumentType(document_type)] = current.model_copy(update=changes)
        return progress

    def started(self, document_type: DocumentType) -> "UploadSession":
        current = self.progress_for(document_type)
        return self.model_copy(
            update={
                "progress": self._with_progress(document_type, in_flight=current.in_flight + 1)
            }
        )

    def succeeded(self, entry: ManifestEntry) -> "UploadSession":
        current = self.progress_for(entry.document_type)
        progress = self._with_progress(
            entry.document_type,
            in_flight=max(current.in_flight - 1, 0),
            uploaded=current.uploaded + 1,
        )
        return self.model_copy(
            update={"manifest": (*self.manifest, entry), "progress": progress}
        )

    def failed(self, document_type: DocumentType) -> "UploadSession":
        # Recorded entries stay; the same type can be retried at any time.
        current = self.progress_for(document_type)
        progress = self._with_progress(
            document_type,
            in_flight=max(current.in_flight - 1, 0),
            failed=current.failed + 1,
        )
        return self.model_copy(update={"progress": progress})
