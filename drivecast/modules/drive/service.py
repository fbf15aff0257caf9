"""Drive file manager service.

Batch operations report each item's outcome independently; one failing
item never aborts its siblings.
"""

import logging
import re
from email.message import Message
from typing import Optional
from urllib.parse import parse_qs, unquote, urlparse

import httpx

from drivecast.modules.drive.client import (
    DEFAULT_MIME_TYPE,
    FOLDER_MIME_TYPE,
    DriveClient,
    DriveError,
)
from drivecast.modules.drive.schemas import (
    BatchItemResult,
    DriveFileRef,
    LinkUploadResult,
)

logger = logging.getLogger(__name__)

RAW_FILE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{20,}$")

# httpx raises InvalidURL and ValueError for malformed links, outside HTTPError
LINK_ERRORS = (httpx.HTTPError, httpx.InvalidURL, ValueError)


def extract_file_id(value: Optional[str]) -> Optional[str]:
    """Extract a Drive file id from a share URL or a raw id.

    Accepts raw ids, ``.../file/d/<id>/...`` URLs and ``?id=<id>`` URLs.
    """
    if not value:
        return None
    value = value.strip()
    if RAW_FILE_ID_PATTERN.match(value):
        return value

    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        return None

    parts = [p for p in parsed.path.split("/") if p]
    if "file" in parts:
        index = parts.index("file")
        if index + 2 < len(parts) and parts[index + 1] == "d":
            return parts[index + 2]

    ids = parse_qs(parsed.query).get("id")
    if ids and ids[0]:
        return ids[0]
    return None


def guess_name_from_url(url: str) -> str:
    """Use the last path segment of a URL as a file name."""
    try:
        path = urlparse(url).path
    except ValueError:
        return "download"
    segments = [s for s in path.split("/") if s]
    return unquote(segments[-1]) if segments else "download"


def filename_from_content_disposition(header: Optional[str]) -> Optional[str]:
    """Read the file name from a Content-Disposition header, RFC 5987 form included."""
    if not header:
        return None
    message = Message()
    message["content-disposition"] = header
    filename = message.get_filename()
    return filename or None


class DriveService:
    """Batch operations layered on the Drive client."""

    def __init__(self, drive: DriveClient, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.drive = drive
        self._transport = transport

    async def move_files(self, ids: list[str], destination_id: str) -> list[BatchItemResult]:
        results = []
        for file_id in ids:
            try:
                meta = await self.drive.get_file(file_id, fields="id, name, parents")
                updated = await self.drive.update_file(
                    file_id,
                    add_parents=destination_id,
                    remove_parents=",".join(meta.get("parents") or []),
                    fields="id, name, parents",
                )
                results.append(BatchItemResult(id=file_id, ok=True, file=_ref(updated)))
            except DriveError as e:
                logger.warning("Move failed", extra={"file_id": file_id, "error": str(e)})
                results.append(BatchItemResult(id=file_id, ok=False, error=str(e) or "Move failed"))
        return results

    async def copy_files(self, ids: list[str], destination_id: str) -> list[BatchItemResult]:
        results = []
        for file_id in ids:
            try:
                meta = await self.drive.get_file(file_id, fields="id, name, mimeType")
                if meta.get("mimeType") == FOLDER_MIME_TYPE:
                    results.append(
                        BatchItemResult(id=file_id, ok=False, error="Folder copy is not supported")
                    )
                    continue
                copied = await self.drive.copy_file(file_id, [destination_id])
                results.append(BatchItemResult(id=file_id, ok=True, file=_ref(copied)))
            except DriveError as e:
                logger.warning("Copy failed", extra={"file_id": file_id, "error": str(e)})
                results.append(BatchItemResult(id=file_id, ok=False, error=str(e) or "Copy failed"))
        return results

    async def upload_from_links(self, urls: list[str], folder_id: str) -> list[LinkUploadResult]:
        results = []
        async with httpx.AsyncClient(
            transport=self._transport,
            follow_redirects=True,
            timeout=httpx.Timeout(30.0, read=None),
        ) as http:
            for url in urls:
                try:
                    created = await self._upload_one(http, url, folder_id)
                    results.append(LinkUploadResult(url=url, ok=True, file=_ref(created)))
                except (DriveError, *LINK_ERRORS) as e:
                    logger.warning("Upload from link failed", extra={"url": url, "error": str(e)})
                    results.append(LinkUploadResult(url=url, ok=False, error=str(e) or "Upload failed"))
        return results

    async def _upload_one(self, http: httpx.AsyncClient, url: str, folder_id: str) -> dict:
        filename = guess_name_from_url(url)
        mime_type = DEFAULT_MIME_TYPE

        # HEAD is advisory only; plenty of hosts reject it
        try:
            head = await http.head(url)
            mime_type = head.headers.get("content-type") or mime_type
            filename = filename_from_content_disposition(
                head.headers.get("content-disposition")
            ) or filename
        except LINK_ERRORS as e:
            logger.debug("HEAD request failed", extra={"url": url, "error": str(e)})

        async with http.stream("GET", url) as response:
            if response.status_code >= 400:
                raise httpx.HTTPStatusError(
                    f"Failed to download ({response.status_code})",
                    request=response.request,
                    response=response,
                )
            return await self.drive.upload_file(
                filename,
                folder_id,
                response.aiter_bytes(),
                mime_type=mime_type,
            )


def _ref(data: dict) -> DriveFileRef:
    return DriveFileRef(id=data.get("id", ""), name=data.get("name"))
