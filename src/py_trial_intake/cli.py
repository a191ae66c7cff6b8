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
"""Command-line entry points for the intake pipeline."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import typer
import yaml

from .client import IntakeApiClient
from .config import Settings
from .controller import FormController
from .defaults import build_default_record
from .models import DocumentType
from .schema import build_field_taxonomy
from .validation import validate_record

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = typer.Typer(help="Pre-fill and validate clinical-trial intake records.")


def load_config(config_file: str | None) -> Dict[str, Any]:
    """Loads settings overrides from a YAML file."""
    if config_file:
        try:
            with open(config_file, "r") as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Config file not found: %s", config_file)
    return {}


def load_record(path: Path) -> Dict[str, Any]:
    """Reads a (partial) record from a YAML or JSON file."""
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise typer.BadParameter(f"{path} does not contain a mapping")
    return data


def build_settings(config_file: str | None, api_base_url: str | None) -> Settings:
    overrides = load_config(config_file)
    if api_base_url:
        overrides["api_base_url"] = api_base_url
    return Settings(**overrides)


def _http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": settings.user_agent},
        follow_redirects=True,
        timeout=settings.request_timeout,
    )


def _emit(data: Any, output: Path | None) -> None:
    text = json.dumps(data, indent=2)
    if output:
        output.write_text(text + "\n")
        logger.info("Wrote %s", output)
    else:
        typer.echo(text)


def _parse_document_option(value: str) -> tuple[Path, DocumentType]:
    document_type, sep, path = value.partition("=")
    if not sep or not path:
        raise typer.BadParameter(f"Expected TYPE=PATH, got {value!r}")
    try:
        return Path(path), DocumentType(document_type)
    except ValueError:
        choices = ", ".join(t.value for t in DocumentType)
        raise typer.BadParameter(
            f"Unknown document type {document_type!r}; choose from {choices}"
        ) from None


ConfigOption = typer.Option(None, "--config", help="Path to YAML config file.")
BaseUrlOption = typer.Option(None, "--api-base-url", help="Override the backend base URL.")
OutputOption = typer.Option(None, "--output", "-o", help="Write JSON here instead of stdout.")


@app.command()
def defaults(output: Optional[Path] = OutputOption):
    """Print the empty record with all default values."""
    _emit(build_default_record(), output)


@app.command()
def taxonomy():
    """Print the field names sent to the parsing service, per section."""
    _emit(build_field_taxonomy(), None)


@app.command()
def validate(record_file: Path = typer.Argument(..., help="Record as JSON or YAML.")):
    """Validate a record and list the fields that block submission."""
    errors = validate_record(load_record(record_file))
    if errors:
        for path, message in errors.items():
            typer.echo(f"{path}: {message}")
        raise typer.Exit(code=1)
    typer.echo("Record is valid.")


async def _prefill(
    settings: Settings,
    documents: List[tuple[Path, DocumentType]],
    initial_data: Dict[str, Any] | None,
) -> tuple[Dict[str, Any], bool, list]:
    async with _http_client(settings) as client:
        controller = FormController(IntakeApiClient(settings, client), initial_data=initial_data)
        await controller.upload_files(documents)
        applied = await controller.finish_uploading()
        return controller.values, applied, list(controller.state.notices)


@app.command()
def prefill(
    document: List[str] = typer.Option(
        ..., "--document", "-d", help="Document to upload, as TYPE=PATH. Repeatable."
    ),
    initial: Optional[Path] = typer.Option(
        None, "--initial", help="Starting record (JSON or YAML) to merge onto the defaults."
    ),
    output: Optional[Path] = OutputOption,
    config_file: Optional[str] = ConfigOption,
    api_base_url: Optional[str] = BaseUrlOption,
):
    """Upload documents, run extraction and print the pre-filled record."""
    settings = build_settings(config_file, api_base_url)
    documents = [_parse_document_option(value) for value in document]
    initial_data = load_record(initial) if initial else None

    values, applied, notices = asyncio.run(_prefill(settings, documents, initial_data))
    for notice in notices:
        typer.echo(f"[{notice.level.value}] {notice.message}", err=True)
    _emit(values, output)
    if not applied:
        raise typer.Exit(code=1)


@app.command()
def files(
    output: Optional[Path] = OutputOption,
    config_file: Optional[str] = ConfigOption,
    api_base_url: Optional[str] = BaseUrlOption,
):
    """List the documents stored by the backend."""
    settings = build_settings(config_file, api_base_url)

    async def _list():
        async with _http_client(settings) as client:
            return await IntakeApiClient(settings, client).list_files()

    stored = asyncio.run(_list())
    if stored is None:
        typer.echo("Could not list stored files", err=True)
        raise typer.Exit(code=1)
    _emit([item.model_dump(mode="json") for item in stored], output)


@app.command()
def download(
    filename: str = typer.Argument(..., help="Stored filename on the server."),
    dest: Path = typer.Option(Path("."), "--dest", help="Directory to save into."),
    config_file: Optional[str] = ConfigOption,
    api_base_url: Optional[str] = BaseUrlOption,
):
    """Download one stored document."""
    settings = build_settings(config_file, api_base_url)

    async def _download():
        async with _http_client(settings) as client:
            return await IntakeApiClient(settings, client).download_document(filename, dest)

    path = asyncio.run(_download())
    if path is None:
        typer.echo(f"Could not download {filename}", err=True)
        raise typer.Exit(code=1)
    typer.echo(str(path))


def main():
    app()


if __name__ == "__main__":
    main()
