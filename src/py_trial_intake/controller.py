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
"""Drives one intake form session: edits, uploads, extraction and submit."""

import asyncio
import copy
import logging
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from .client import IntakeApiClient
from .config import Settings
from .exceptions import ExtractionError, UploadError
from .models import DocumentType, Notice, NoticeLevel
from .schema import build_field_taxonomy
from .state import (
    EMPTY_MANIFEST_MESSAGE,
    Action,
    AddRow,
    ClearNotices,
    ExtractionFailed,
    ExtractionStarted,
    ExtractionSucceeded,
    FormState,
    RaiseNotice,
    RemoveRow,
    SetFieldValue,
    SubmitRequested,
    TouchField,
    UploadFailed,
    UploadStarted,
    UploadSucceeded,
    initial_state,
    reduce,
)

logger = logging.getLogger(__name__)

SubmitHandler = Callable[[dict[str, Any]], None]


class FormController:
    """Owns the state of one form session.

    All changes go through `dispatch`, which runs on the event loop's single
    thread, so concurrent uploads never interleave their state updates.
    """

    def __init__(
        self,
        api: IntakeApiClient,
        initial_data: Mapping[str, Any] | None = None,
        on_submit: SubmitHandler | None = None,
    ) -> None:
        self.api = api
        self.on_submit = on_submit
        self._state = initial_state(initial_data)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        initial_data: Mapping[str, Any] | None = None,
        on_submit: SubmitHandler | None = None,
    ) -> "FormController":
        return cls(IntakeApiClient(settings), initial_data=initial_data, on_submit=on_submit)

    @property
    def state(self) -> FormState:
        return self._state

    @property
    def values(self) -> dict[str, Any]:
        return self._state.values

    def dispatch(self, action: Action) -> FormState:
        self._state = reduce(self._state, action)
        return self._state

    def notify(self, level: NoticeLevel, message: str) -> None:
        self.dispatch(RaiseNotice(notice=Notice(level=level, message=message)))

    def clear_notices(self) -> None:
        self.dispatch(ClearNotices())

    # Field editing

    def set_field(self, path: str, value: Any) -> None:
        self.dispatch(SetFieldValue(path=path, value=value))

    def blur(self, path: str) -> None:
        """Mark a field as visited so its validation error becomes visible."""
        self.dispatch(TouchField(path=path))

    def add_row(self, path: str) -> None:
        self.dispatch(AddRow(path=path))

    def remove_row(self, path: str, index: int) -> None:
        self.dispatch(RemoveRow(path=path, index=index))

    # Uploads and extraction

    async def _upload_one(
        self, path: Path, document_type: DocumentType,
    ) -> UploadSucceeded | UploadFailed:
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            logger.error("Could not read %s: %s", path, e)
            return UploadFailed(
                document_type=document_type, original_name=path.name, detail=str(e)
            )
        try:
            stored = await self.api.upload_document(path.name, content, document_type)
        except UploadError as e:
            return UploadFailed(
                document_type=document_type, original_name=path.name, detail=e.detail
            )
        except Exception as e:
            logger.exception("Unexpected error while uploading %s", path)
            return UploadFailed(
                document_type=document_type, original_name=path.name, detail=str(e)
            )
        return UploadSucceeded(
            document_type=document_type, original_name=path.name, stored_file=stored
        )

    async def upload_files(
        self, files: Iterable[tuple[str | Path, DocumentType | str]],
    ) -> FormState:
        """Upload several files concurrently.

        Each file is uploaded independently. Results are applied one at a
        time as they complete, so the manifest lists files in completion
        order. A failed upload adds a notice and leaves everything else as is.
        """
        jobs = [(Path(path), DocumentType(document_type)) for path, document_type in files]
        for path, document_type in jobs:
            self.dispatch(UploadStarted(document_type=document_type, original_name=path.name))

        tasks = [self._upload_one(path, document_type) for path, document_type in jobs]
        for future in asyncio.as_completed(tasks):
            self.dispatch(await future)

        logger.info(
            "Upload batch finished: %d file(s) in manifest.", len(self._state.manifest)
        )
        return self._state

    async def finish_uploading(self) -> bool:
        """Send the uploaded documents for parsing and pre-fill the form.

        Returns:
            True if extracted values were applied. False if the manifest was
            empty, a parse was already running, or the parse failed; in
            those cases the form values are unchanged.
        """
        if not self._state.manifest:
            logger.warning("Finish requested with no uploaded documents.")
            self.notify(NoticeLevel.WARNING, EMPTY_MANIFEST_MESSAGE)
            return False
        if self._state.is_parsing:
            logger.warning("Document parsing already in progress; ignoring request.")
            return False

        self.dispatch(ExtractionStarted())
        try:
            result = await self.api.parse_documents(self._state.manifest, build_field_taxonomy())
            self.dispatch(ExtractionSucceeded(result=result))
            return True
        except ExtractionError as e:
            self.dispatch(ExtractionFailed(detail=e.detail))
        except Exception as e:
            logger.exception("Unexpected error while parsing documents.")
            self.dispatch(ExtractionFailed(detail=str(e)))
        finally:
            # Cancellation skips the handlers above.
            if self._state.is_parsing:
                self.dispatch(ExtractionFailed(detail="Document parsing was interrupted"))
        return False

    # Submission

    def submit(self) -> bool:
        """Validate the record and hand it to the submit handler.

        Returns:
            True if the record was valid and handed over.
        """
        self.dispatch(SubmitRequested())
        if self._state.errors:
            logger.info("Submission blocked by %d invalid field(s).", len(self._state.errors))
            return False
        record = copy.deepcopy(self._state.values)
        logger.info("Submitting intake record.")
        if self.on_submit is not None:
            self.on_submit(record)
        return True

    async def aclose(self) -> None:
        await self.api.aclose()

    async def __aenter__(self) -> "FormController":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
