"""
services/conversion_service.py
------------------------------
DOCX → PDF conversion through the ConvertAPI REST service.

Every conversion stages two scratch files:

    <SCRATCH_DIR>/docx-in-<token>-<safe name>
    <SCRATCH_DIR>/pdf-out-<token>.pdf

<token> combines a nanosecond clock with a random suffix, so concurrent
conversions never share files. Both files are removed on every exit path
(success, remote failure, local I/O failure); a failed removal is logged
and never hides the original error or the other removal.

Remote contract (https://v2.convertapi.com):
    POST /convert/{from}/to/{to}   Authorization: Bearer <secret>
    multipart field "File"
    200 → {"Files": [{"FileName": ..., "FileData": <base64>}]}
          or {"Files": [{"FileName": ..., "Url": ...}]} when stored remotely
    4xx/5xx → {"Code": ..., "Message": "human readable"}
"""

import asyncio
import base64
import re
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

import httpx

from gradesync.core.exceptions import ConversionError
from gradesync.core.logging import get_logger

logger = get_logger(__name__)

GENERIC_CONVERSION_ERROR = "An error occurred while converting the document."
MISSING_DOCUMENT_ERROR = "Missing document data."
INVALID_DOCUMENT_ERROR = "Invalid document data."
INVALID_FILE_NAME_ERROR = "Invalid file name."

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_basename(file_name: Optional[str], default: str = "document.docx") -> str:
    """Reduce a client-supplied file name to a bare, filesystem-safe basename."""
    name = re.split(r"[\\/]", file_name or "")[-1]
    name = _UNSAFE_NAME_CHARS.sub("_", name).lstrip(".")
    return name[:100] or default


@dataclass
class ConvertedFile:
    file_name: str
    data: Optional[bytes] = None
    url: Optional[str] = None


class ConvertApiClient:

    def __init__(
        self,
        secret: str,
        base_url: str = "https://v2.convertapi.com",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._secret = secret
        self._http = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        )

    async def convert(
        self, source: Path, to_format: str = "pdf", from_format: str = "docx"
    ) -> ConvertedFile:
        """
        Upload a staged file and return the first converted file.

        Raises:
            ConversionError: with the service's own Message when it sent one.
        """
        if not self._secret:
            raise ConversionError("Document conversion is not configured.")

        content = await asyncio.to_thread(source.read_bytes)
        try:
            response = await self._http.post(
                f"/convert/{from_format}/to/{to_format}",
                headers={"Authorization": f"Bearer {self._secret}"},
                files={"File": (source.name, content)},
            )
        except httpx.HTTPError as exc:
            logger.error("ConvertAPI unreachable", error=str(exc))
            raise ConversionError(GENERIC_CONVERSION_ERROR) from exc

        if response.is_error:
            raise ConversionError(
                _remote_message(response) or GENERIC_CONVERSION_ERROR,
                status_code=response.status_code,
            )

        try:
            first = response.json()["Files"][0]
            data = first.get("FileData")
            return ConvertedFile(
                file_name=first.get("FileName", f"{source.stem}.{to_format}"),
                data=base64.b64decode(data) if data else None,
                url=first.get("Url"),
            )
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.error("Malformed ConvertAPI response", error=str(exc))
            raise ConversionError(GENERIC_CONVERSION_ERROR) from exc

    async def save(self, converted: ConvertedFile, destination: Path) -> Path:
        """Write a converted file to disk, downloading it first if stored remotely."""
        data = converted.data
        if data is None:
            if not converted.url:
                raise ConversionError(GENERIC_CONVERSION_ERROR)
            try:
                response = await self._http.get(converted.url)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                logger.error("ConvertAPI download failed", error=str(exc))
                raise ConversionError(GENERIC_CONVERSION_ERROR) from exc
            data = response.content
        await asyncio.to_thread(destination.write_bytes, data)
        return destination

    async def aclose(self) -> None:
        await self._http.aclose()


def _remote_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        message = body.get("Message")
        if isinstance(message, str) and message.strip():
            return message
    return None


class ConversionPipeline:

    def __init__(self, client: ConvertApiClient, scratch_dir: Path) -> None:
        self._client = client
        self._scratch_dir = Path(scratch_dir)

    async def convert_document_to_pdf(self, document: bytes, file_name: str) -> bytes:
        """
        Render an in-memory DOCX as PDF bytes.

        Raises:
            ConversionError: always with a message fit for the end user.
        """
        if not document:
            raise ConversionError(MISSING_DOCUMENT_ERROR)

        logger.info("Preparing PDF conversion", file_name=file_name, size=len(document))
        try:
            async with self._staged(file_name) as (input_path, output_path):
                await asyncio.to_thread(input_path.write_bytes, document)
                logger.debug("Scratch input written", path=str(input_path))

                converted = await self._client.convert(input_path, "pdf", "docx")
                await self._client.save(converted, output_path)
                logger.debug("Scratch output written", path=str(output_path))

                pdf = await asyncio.to_thread(output_path.read_bytes)
        except ConversionError as exc:
            logger.error("Document conversion failed", error=exc.message, status=exc.status_code)
            raise
        except Exception as exc:
            logger.error("Document conversion failed", error=str(exc), exc_info=True)
            raise ConversionError(GENERIC_CONVERSION_ERROR) from exc

        logger.info("PDF conversion complete", size=len(pdf))
        return pdf

    @asynccontextmanager
    async def _staged(self, file_name: str) -> AsyncIterator[tuple[Path, Path]]:
        """Reserve the input/output scratch paths and always remove both."""
        token = f"{time.time_ns()}-{secrets.token_hex(4)}"
        input_path = self._scratch_dir / f"docx-in-{token}-{safe_basename(file_name)}"
        output_path = self._scratch_dir / f"pdf-out-{token}.pdf"
        try:
            await asyncio.to_thread(self._scratch_dir.mkdir, parents=True, exist_ok=True)
            yield input_path, output_path
        finally:
            for path in (input_path, output_path):
                await _remove_scratch_file(path)


async def _remove_scratch_file(path: Path) -> None:
    try:
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.debug("Scratch file removed", path=str(path))
    except OSError as exc:
        logger.error("Could not remove scratch file", path=str(path), error=str(exc))
