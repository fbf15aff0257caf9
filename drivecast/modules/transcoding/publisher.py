"""Remote publisher: puts finished files into Drive."""

import asyncio
import logging
import os
from typing import AsyncIterator, Optional, Protocol

import httpx

from drivecast.core.metrics import record_publish
from drivecast.modules.drive.client import DEFAULT_MIME_TYPE, DriveClient, DriveError
from drivecast.modules.transcoding.progress import PublishedFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class AsyncReadable(Protocol):
    """Anything with ``async read(size)`` and ``async close()``, e.g. starlette's UploadFile."""

    async def read(self, size: int = -1) -> bytes:
        ...

    async def close(self) -> None:
        ...


async def iter_readable(source: AsyncReadable, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    while True:
        chunk = await source.read(chunk_size)
        if not chunk:
            break
        yield chunk


async def iter_file(path: str, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Read a local file in chunks without blocking the event loop."""
    handle = await asyncio.to_thread(open, path, "rb")
    try:
        while True:
            chunk = await asyncio.to_thread(handle.read, chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        await asyncio.to_thread(handle.close)


class RemotePublisher:
    """Publishes files and streams into Drive folders."""

    def __init__(self, drive: DriveClient):
        self.drive = drive

    async def ensure_folder(self, parent_id: str, relative_path: Optional[str]) -> str:
        return await self.drive.ensure_folder_path(parent_id, relative_path)

    async def publish_file(
        self,
        path: str,
        name: str,
        folder_id: str,
        mime_type: str = DEFAULT_MIME_TYPE,
    ) -> PublishedFile:
        """Upload a local file under ``name`` into ``folder_id``."""
        size = os.path.getsize(path)
        return await self._publish(iter_file(path), name, folder_id, mime_type, size)

    async def publish_stream(
        self,
        source: AsyncReadable,
        name: str,
        folder_id: str,
        mime_type: Optional[str] = None,
        size: Optional[int] = None,
    ) -> PublishedFile:
        """Upload the remaining bytes of ``source`` unchanged."""
        return await self._publish(
            iter_readable(source), name, folder_id, mime_type or DEFAULT_MIME_TYPE, size
        )

    async def _publish(
        self,
        content: AsyncIterator[bytes],
        name: str,
        folder_id: str,
        mime_type: str,
        size: Optional[int] = None,
    ) -> PublishedFile:
        try:
            created = await self.drive.upload_file(
                name, folder_id, content, mime_type=mime_type, size=size
            )
        except (DriveError, httpx.HTTPError):
            record_publish(success=False)
            raise

        record_publish(success=True)
        logger.info(
            "Published file",
            extra={"file_id": created.get("id"), "file_name": name, "folder_id": folder_id},
        )
        return PublishedFile(id=created["id"], name=created.get("name") or name)
