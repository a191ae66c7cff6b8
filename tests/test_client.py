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

import json
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

from py_trial_intake.client import IntakeApiClient
from py_trial_intake.config import Settings
from py_trial_intake.exceptions import ExtractionError, UploadError
from py_trial_intake.models import DocumentType, ManifestEntry

BASE_URL = "http://intake.test/api"

MANIFEST = [
    ManifestEntry(
        filename="1700000000-ib.pdf",
        original_name="ib.pdf",
        document_type=DocumentType.INVESTIGATOR_BROCHURE,
    ),
]
TAXONOMY = {"study_identification": ["sponsor_name", "protocol_number"]}


@pytest.fixture
def mock_settings() -> Settings:
    """Fixture for settings pointing at a fake backend."""
    return Settings(api_base_url=BASE_URL)


@pytest_asyncio.fixture
async def api(mock_settings: Settings):
    client = IntakeApiClient(mock_settings)
    yield client
    await client.aclose()


@pytest.mark.asyncio
async def test_upload_document_success(api: IntakeApiClient, httpx_mock: HTTPXMock):
    """
    Tests that a file is posted as multipart form data together with its
    document type, and the stored descriptor is returned.
    """
    httpx_mock.add_response(
        method="POST",
        url=f"{BASE_URL}/documents/upload",
        json={"success": True, "file": {"filename": "1700000000-ib.pdf", "size": 7}},
    )

    stored = await api.upload_document("ib.pdf", b"%PDF-1.", DocumentType.INVESTIGATOR_BROCHURE)

    assert stored.filename == "1700000000-ib.pdf"
    request = httpx_mock.get_request()
    body = request.read()
    assert request.headers["content-type"].startswith("multipart/form-data")
    assert b'name="documentType"' in body
    assert b"investigator_brochure" in body
    assert b'filename="ib.pdf"' in body
    assert request.headers["user-agent"] == "py-trial-intake/0.1.0"


@pytest.mark.asyncio
async def test_upload_document_uses_server_error_detail(
    api: IntakeApiClient, httpx_mock: HTTPXMock
):
    httpx_mock.add_response(
        url=f"{BASE_URL}/documents/upload",
        status_code=500,
        json={"error": "Upload failed", "details": "Disk quota exceeded"},
    )

    with pytest.raises(UploadError) as excinfo:
        await api.upload_document("label.pdf", b"x", DocumentType.LABEL)

    assert excinfo.value.detail == "Disk quota exceeded"


@pytest.mark.asyncio
async def test_upload_document_not_accepted(api: IntakeApiClient, httpx_mock: HTTPXMock):
    """Tests that a 200 response reporting failure is still an upload error."""
    httpx_mock.add_response(url=f"{BASE_URL}/documents/upload", json={"success": False})

    with pytest.raises(UploadError) as excinfo:
        await api.upload_document("label.pdf", b"x", DocumentType.LABEL)

    assert "not accepted" in excinfo.value.detail


@pytest.mark.asyncio
async def test_upload_document_transport_error(api: IntakeApiClient, httpx_mock: HTTPXMock):
    httpx_mock.add_exception(httpx.ConnectError("Connection refused"))

    with pytest.raises(UploadError) as excinfo:
        await api.upload_document("label.pdf", b"x", DocumentType.LABEL)

    assert "Connection refused" in excinfo.value.detail


@pytest.mark.asyncio
async def test_parse_documents_sends_manifest_and_taxonomy(
    api: IntakeApiClient, httpx_mock: HTTPXMock
):
    """
    Tests that the request body carries the manifest under `files` and the
    field names under `formFields`, and that `parsedData` is returned as is.
    """
    parsed = {"study_identification": {"sponsor_name": "Acme"}, "bogus": {"x": 1}}
    httpx_mock.add_response(
        method="POST",
        url=f"{BASE_URL}/ai/parse-documents",
        json={"success": True, "parsedData": parsed},
    )

    result = await api.parse_documents(MANIFEST, TAXONOMY)

    assert result == parsed
    sent = json.loads(httpx_mock.get_request().content)
    assert sent == {
        "files": [
            {
                "filename": "1700000000-ib.pdf",
                "originalname": "ib.pdf",
                "documentType": "investigator_brochure",
            }
        ],
        "formFields": TAXONOMY,
    }


@pytest.mark.asyncio
async def test_parse_documents_http_error(api: IntakeApiClient, httpx_mock: HTTPXMock):
    httpx_mock.add_response(
        url=f"{BASE_URL}/ai/parse-documents",
        status_code=500,
        json={"error": "Failed to parse documents", "details": "model unavailable"},
    )

    with pytest.raises(ExtractionError) as excinfo:
        await api.parse_documents(MANIFEST, TAXONOMY)

    assert excinfo.value.detail == "model unavailable"


@pytest.mark.asyncio
async def test_parse_documents_timeout(api: IntakeApiClient, httpx_mock: HTTPXMock):
    httpx_mock.add_exception(httpx.ReadTimeout("Timed out"))

    with pytest.raises(ExtractionError):
        await api.parse_documents(MANIFEST, TAXONOMY)


@pytest.mark.asyncio
async def test_invalid_base_url_is_a_service_error():
    """Tests that a URL httpx cannot build surfaces as a domain error."""
    api = IntakeApiClient(Settings(api_base_url="http://[::1/api"))
    try:
        with pytest.raises(ExtractionError):
            await api.parse_documents(MANIFEST, TAXONOMY)
        with pytest.raises(UploadError):
            await api.upload_document("label.pdf", b"x", DocumentType.LABEL)
        assert await api.list_files() is None
    finally:
        await api.aclose()


@pytest.mark.asyncio
async def test_parse_documents_malformed_body(api: IntakeApiClient, httpx_mock: HTTPXMock):
    httpx_mock.add_response(url=f"{BASE_URL}/ai/parse-documents", text="<html>oops</html>")

    with pytest.raises(ExtractionError) as excinfo:
        await api.parse_documents(MANIFEST, TAXONOMY)

    assert excinfo.value.detail == "Malformed response from parsing service"


@pytest.mark.asyncio
async def test_parse_documents_unsuccessful_result(
    api: IntakeApiClient, httpx_mock: HTTPXMock
):
    httpx_mock.add_response(url=f"{BASE_URL}/ai/parse-documents", json={"success": False})

    with pytest.raises(ExtractionError):
        await api.parse_documents(MANIFEST, TAXONOMY)


@pytest.mark.asyncio
async def test_list_files(api: IntakeApiClient, httpx_mock: HTTPXMock):
    httpx_mock.add_response(
        method="GET",
        url=f"{BASE_URL}/documents/files",
        json=[{"filename": "a.pdf"}, {"size": 3}, {"filename": "b.pdf", "size": 9}],
    )

    files = await api.list_files()

    assert [f.filename for f in files] == ["a.pdf", "b.pdf"]


@pytest.mark.asyncio
async def test_list_files_error_returns_none(api: IntakeApiClient, httpx_mock: HTTPXMock):
    """Tests that an unreachable listing is distinguishable from an empty store."""
    httpx_mock.add_response(url=f"{BASE_URL}/documents/files", status_code=503)

    assert await api.list_files() is None


@pytest.mark.asyncio
async def test_list_files_empty_store(api: IntakeApiClient, httpx_mock: HTTPXMock):
    httpx_mock.add_response(url=f"{BASE_URL}/documents/files", json={"files": []})

    assert await api.list_files() == []


@pytest.mark.asyncio
async def test_download_document_success(
    api: IntakeApiClient, httpx_mock: HTTPXMock, tmp_path: Path
):
    httpx_mock.add_response(
        url=f"{BASE_URL}/documents/download/1700000000-ib.pdf", content=b"%PDF-1.7 body"
    )

    path = await api.download_document("1700000000-ib.pdf", tmp_path)

    assert path == tmp_path / "1700000000-ib.pdf"
    assert path.read_bytes() == b"%PDF-1.7 body"


@pytest.mark.asyncio
async def test_download_document_not_found(
    api: IntakeApiClient, httpx_mock: HTTPXMock, tmp_path: Path
):
    """Tests that a failed download returns None and leaves no file behind."""
    httpx_mock.add_response(
        url=f"{BASE_URL}/documents/download/missing.pdf",
        status_code=404,
        json={"error": "File not found"},
    )

    path = await api.download_document("missing.pdf", tmp_path)

    assert path is None
    assert list(tmp_path.iterdir()) == []
