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
"""Manages the application's configuration using Pydantic."""

from urllib.parse import quote

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Manages configuration for the application.

    Reads settings from environment variables with the prefix 'INTAKE_'.
    Every endpoint is the base URL plus a fixed suffix.
    """

    model_config = SettingsConfigDict(env_prefix="INTAKE_")

    api_base_url: str = "http://localhost:5000/api"
    request_timeout: float = 30.0
    user_agent: str = "py-trial-intake/0.1.0"

    @computed_field
    @property
    def upload_url(self) -> str:
        """Endpoint accepting one multipart file upload."""
        return f"{self.api_base_url.rstrip('/')}/documents/upload"

    @computed_field
    @property
    def files_url(self) -> str:
        """Endpoint listing the files stored by the backend."""
        return f"{self.api_base_url.rstrip('/')}/documents/files"

    @computed_field
    @property
    def parse_documents_url(self) -> str:
        """Endpoint running field extraction over uploaded documents."""
        return f"{self.api_base_url.rstrip('/')}/ai/parse-documents"

    def download_url(self, filename: str) -> str:
        """Construct the download URL of a stored file."""
        return f"{self.api_base_url.rstrip('/')}/documents/download/{quote(filename, safe='')}"


# Instantiate the settings so it can be imported directly
settings = Settings()
