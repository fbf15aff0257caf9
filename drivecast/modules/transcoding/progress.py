"""Job progress store.

Keyed by job id. ``set`` merges partial fields into the existing record
and stamps ``updated_at``. Each job only ever writes its own key.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import redis.asyncio as redis
from pydantic import BaseModel, Field

from drivecast.core.config import settings
from drivecast.core.redis import get_redis
from drivecast.modules.transcoding.models import RENDITION_LADDER, JobStatus

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "upload-progress:"


class PublishedFile(BaseModel):
    """A file created in Drive."""
    id: str
    name: str


class JobProgress(BaseModel):
    """Progress record of one transcode job."""
    status: JobStatus
    current: Optional[str] = None
    done: int = 0
    total: int = len(RENDITION_LADDER)
    percent: int = 0
    files: Optional[list[PublishedFile]] = None
    error: Optional[str] = None
    updated_at: int = Field(0, alias="updatedAt", description="Epoch milliseconds")

    class Config:
        populate_by_name = True


def _now_ms() -> int:
    return int(time.time() * 1000)


def _merge(existing: Optional[dict], fields: dict[str, Any]) -> dict[str, Any]:
    record = dict(existing or {})
    record.update(fields)
    record["updated_at"] = _now_ms()
    return record


class ProgressStore(ABC):
    """Keyed record of job progress, read by the polling endpoint."""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[JobProgress]:
        """Return the current record, or None if the id is unknown."""

    @abstractmethod
    async def set(self, job_id: str, **fields: Any) -> JobProgress:
        """Merge fields into the job's record, creating it if needed."""

    @abstractmethod
    async def clear(self, job_id: str) -> None:
        """Remove a job's record."""


class InMemoryProgressStore(ProgressStore):
    """Process-local store. Records expire ``ttl`` seconds after their last write."""

    def __init__(self, ttl: Optional[int] = None):
        self.ttl = settings.PROGRESS_TTL_SECONDS if ttl is None else ttl
        self._records: dict[str, tuple[dict[str, Any], Optional[float]]] = {}

    def _expires_at(self) -> Optional[float]:
        return time.monotonic() + self.ttl if self.ttl > 0 else None

    def _cleanup_expired(self) -> None:
        now = time.monotonic()
        expired = [
            job_id for job_id, (_, expires_at) in self._records.items()
            if expires_at is not None and now > expires_at
        ]
        for job_id in expired:
            del self._records[job_id]

    async def get(self, job_id: str) -> Optional[JobProgress]:
        self._cleanup_expired()
        entry = self._records.get(job_id)
        if entry is None:
            return None
        return JobProgress.model_validate(entry[0])

    async def set(self, job_id: str, **fields: Any) -> JobProgress:
        self._cleanup_expired()
        existing = self._records.get(job_id)
        record = _merge(existing[0] if existing else None, fields)
        progress = JobProgress.model_validate(record)
        self._records[job_id] = (progress.model_dump(mode="json"), self._expires_at())
        return progress

    async def clear(self, job_id: str) -> None:
        self._records.pop(job_id, None)

    def __len__(self) -> int:
        return len(self._records)


class RedisProgressStore(ProgressStore):
    """Shared store for deployments running several worker processes."""

    def __init__(self, client: redis.Redis, ttl: Optional[int] = None):
        self.client = client
        self.ttl = settings.PROGRESS_TTL_SECONDS if ttl is None else ttl

    @staticmethod
    def _key(job_id: str) -> str:
        return f"{REDIS_KEY_PREFIX}{job_id}"

    async def _load(self, job_id: str) -> Optional[dict[str, Any]]:
        raw = await self.client.get(self._key(job_id))
        if raw is None:
            return None
        return json.loads(raw)

    async def get(self, job_id: str) -> Optional[JobProgress]:
        record = await self._load(job_id)
        if record is None:
            return None
        return JobProgress.model_validate(record)

    async def set(self, job_id: str, **fields: Any) -> JobProgress:
        # Read-modify-write is safe: a job is the only writer of its key
        record = _merge(await self._load(job_id), fields)
        progress = JobProgress.model_validate(record)
        await self.client.set(
            self._key(job_id),
            progress.model_dump_json(),
            ex=self.ttl if self.ttl > 0 else None,
        )
        return progress

    async def clear(self, job_id: str) -> None:
        await self.client.delete(self._key(job_id))


_store: Optional[ProgressStore] = None


def get_progress_store() -> ProgressStore:
    """Return the process-wide store selected by PROGRESS_BACKEND."""
    global _store
    if _store is None:
        backend = settings.PROGRESS_BACKEND.lower()
        if backend == "redis":
            _store = RedisProgressStore(get_redis())
        elif backend == "memory":
            _store = InMemoryProgressStore()
        else:
            raise ValueError(f"Unknown PROGRESS_BACKEND: {settings.PROGRESS_BACKEND}")
        logger.info("Progress store initialized", extra={"backend": backend})
    return _store
