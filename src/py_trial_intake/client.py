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
"""Provides a class to talk to the document upload and parsing service."""

import logging
import mimetypes
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from .config import Settings
from .exceptions import ExtractionError, UploadError
from .models import (
    DocumentType,
    ExtractionResponse,
    ManifestEntry,
    StoredFile,
    UploadResponse,
)

logger = logging.getLogger(__name__)

# InvalidURL is raised while building a request and is not an HTTPError.
_HTTP_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


def _error_detail(exc: Exception) -> str:
    """Prefer the server's own error detail over the generic HTTP message."""
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("details"):
            return str(body["details"])
    return str(exc)


class IntakeApiClient:
    """Client for the backend's document endpoints."""

    def __init__(
        self, settings: Settings, client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client with settings and an optional HTTP client."""
        self.settings = settings
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": settings.user_agent},
            follow_redirects=True,
            timeout=settings.request_timeout,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def upload_document(
        self, filename: str, content: bytes, document_type: DocumentType,
    ) -> StoredFile:
        """Upload one file tagged with its document type.

        Returns:
            The descriptor of the file as stored by the server.

        Raises:
            UploadError: If the request fails, the server rejects the file,
                or the response cannot be read.
        """
        mime_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        try:
            response = await self.client.post(
                self.settings.upload_url,
                files={"file": (filename, content, mime_type)},
                data={"documentType": DocumentType(document_type).value},
            )
            response.raise_for_status()
            body = UploadResponse.model_validate(response.json())
        except _HTTP_ERRORS as e:
            logger.error("Failed to upload %s: %s", filename, e)
            raise UploadError(f"Upload of {filename} failed", detail=_error_detail(e)) from e
        except ValueError as e:
            logger.error("Unreadable upload response for %s: %s", filename, e)
            raise UploadError(
                f"Upload of {filename} failed", detail="Malformed response from upload service"
            ) from e

        if not body.success or body.file is None:
            logger.warning("Upload of %s was not accepted by the server.", filename)
            raise UploadError(
                f"Upload of {filename} failed", detail="Upload was not accepted by the server"
            )
        logger.info("Uploaded %s as %s (%s).", filename, body.file.filename, document_type)
        return body.file

    async def parse_documents(
        self,
        manifest: Sequence[ManifestEntry],
        field_taxonomy: dict[str, list[str]],
    ) -> dict[str, Any]:
        """Ask the service to extract field values from the uploaded documents.

        Args:
            manifest: The files uploaded in this session.
            field_taxonomy: Field names to populate, keyed by section.

        Returns:
            The extraction result, a partial ``{section: {field: value}}``
            mapping. Its contents are not validated here.

        Raises:
            ExtractionError: On transport failure, an error status, a body
                that is not the expected JSON, or an unsuccessful result.
        """
        payload = {
            "files": [entry.to_wire() for entry in manifest],
            "formFields": field_taxonomy,
        }
        logger.info("Sending %d file(s) for parsing.", len(manifest))
        try:
            response = await self.client.post(self.settings.parse_documents_url, json=payload)
            response.raise_for_status()
            body = ExtractionResponse.model_validate(response.json())
        except _HTTP_ERRORS as e:
            logger.error("Document parsing request failed: %s", e)
            raise ExtractionError("Document parsing failed", detail=_error_detail(e)) from e
        except (ValueError, ValidationError) as e:
            logger.error("Malformed document parsing response: %s", e)
            raise ExtractionError(
                "Document parsing failed", detail="Malformed response from parsing service"
            ) from e

        if not body.success or body.parsed_data is None:
            logger.error("Document parsing reported no usable result.")
            raise ExtractionError("Document parsing failed", detail="No parsed data returned")
        return body.parsed_data

    async def list_files(self) -> list[StoredFile] | None:
        """List the files stored by the backend.

        Returns None if the listing cannot be fetched or read.
        """
        try:
            response = await self.client.get(self.settings.files_url)
            response.raise_for_status()
            body = response.json()
        except _HTTP_ERRORS + (ValueError,) as e:
            logger.error("Failed to list stored files: %s", e)
            return None

        items = body.get("files", []) if isinstance(body, dict) else body
        if not isinstance(items, list):
            logger.error("Unexpected file listing payload: %r", type(items).__name__)
            return None
        files = []
        for item in items:
            try:
                files.append(StoredFile.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed file entry: %r", item)
        return files

    async def download_document(self, filename: str, destination: Path) -> Path | None:
        """Download a stored file into `destination` (a directory).

        Returns:
            The path written, or None if the download failed. A partially
            written file is removed.
        """
        file_path = destination / Path(filename).name
        url = self.settings.download_url(filename)
        logger.info("Downloading %s to %s", url, file_path)
        try:
            async with self.client.stream("GET", url) as response:
                response.raise_for_status()
                with open(file_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
            return file_path
        except _HTTP_ERRORS as e:
            logger.error("An error occurred while downloading %s: %r", filename, e)
            if file_path.exists():
                file_path.unlink()
            return None
