"""Tests for the in-memory and Redis progress stores."""

import json
from unittest.mock import patch

import pytest

from drivecast.modules.transcoding.models import JobStatus
from drivecast.modules.transcoding.progress import (
    REDIS_KEY_PREFIX,
    InMemoryProgressStore,
    PublishedFile,
    RedisProgressStore,
)


class FakeRedis:
    """Dict-backed subset of the redis.asyncio client API."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.expiry: dict[str, object] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self.data.pop(key, None)


@pytest.fixture(params=["memory", "redis"])
def store(request):
    if request.param == "memory":
        return InMemoryProgressStore(ttl=3600)
    return RedisProgressStore(FakeRedis(), ttl=3600)


class TestProgressStoreContract:

    @pytest.mark.asyncio
    async def test_unknown_job(self, store):
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_set_merges_partial_fields(self, store):
        await store.set("job", status=JobStatus.PREPARING, done=0, total=4, percent=0)
        await store.set("job", status=JobStatus.ENCODING, current="720p", done=1)

        progress = await store.get("job")
        assert progress.status == JobStatus.ENCODING
        assert progress.current == "720p"
        assert progress.done == 1
        assert progress.total == 4
        assert progress.percent == 0

    @pytest.mark.asyncio
    async def test_set_stamps_update_time(self, store):
        with patch("drivecast.modules.transcoding.progress.time.time", return_value=1700000000.5):
            progress = await store.set("job", status=JobStatus.PREPARING)
        assert progress.updated_at == 1700000000500

    @pytest.mark.asyncio
    async def test_last_write_wins(self, store):
        await store.set("job", status=JobStatus.ENCODING, percent=10)
        await store.set("job", status=JobStatus.ERROR, error="boom")

        progress = await store.get("job")
        assert progress.status == JobStatus.ERROR
        assert progress.error == "boom"
        assert progress.percent == 10

    @pytest.mark.asyncio
    async def test_files_round_trip(self, store):
        files = [PublishedFile(id="a", name="clip_1080p.mp4"), PublishedFile(id="b", name="clip_720p.mp4")]
        await store.set("job", status=JobStatus.DONE, files=files, percent=100)

        progress = await store.get("job")
        assert progress.files == files

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.set("job", status=JobStatus.DONE)
        await store.clear("job")
        assert await store.get("job") is None

    @pytest.mark.asyncio
    async def test_jobs_are_isolated(self, store):
        await store.set("a", status=JobStatus.ENCODING, current="1080p", done=0)
        await store.set("b", status=JobStatus.PROGRESS, current="480p", done=3)

        a = await store.get("a")
        assert (a.current, a.done) == ("1080p", 0)


class TestInMemoryExpiry:

    @pytest.mark.asyncio
    async def test_records_expire_after_ttl(self):
        store = InMemoryProgressStore(ttl=60)
        with patch("drivecast.modules.transcoding.progress.time.monotonic", return_value=1000.0):
            await store.set("job", status=JobStatus.DONE)
        with patch("drivecast.modules.transcoding.progress.time.monotonic", return_value=1059.0):
            assert await store.get("job") is not None
        with patch("drivecast.modules.transcoding.progress.time.monotonic", return_value=1061.0):
            assert await store.get("job") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_write_extends_lifetime(self):
        store = InMemoryProgressStore(ttl=60)
        with patch("drivecast.modules.transcoding.progress.time.monotonic", return_value=1000.0):
            await store.set("job", status=JobStatus.ENCODING)
        with patch("drivecast.modules.transcoding.progress.time.monotonic", return_value=1050.0):
            await store.set("job", percent=40)
        with patch("drivecast.modules.transcoding.progress.time.monotonic", return_value=1100.0):
            assert (await store.get("job")).percent == 40

    @pytest.mark.asyncio
    async def test_zero_ttl_never_expires(self):
        store = InMemoryProgressStore(ttl=0)
        with patch("drivecast.modules.transcoding.progress.time.monotonic", return_value=0.0):
            await store.set("job", status=JobStatus.DONE)
        with patch("drivecast.modules.transcoding.progress.time.monotonic", return_value=10**9):
            assert await store.get("job") is not None


class TestRedisStore:

    @pytest.mark.asyncio
    async def test_uses_prefixed_key_json_and_ttl(self):
        client = FakeRedis()
        store = RedisProgressStore(client, ttl=120)

        await store.set("abc", status=JobStatus.ENCODING, current="1080p")

        key = f"{REDIS_KEY_PREFIX}abc"
        assert json.loads(client.data[key])["status"] == "encoding"
        assert client.expiry[key] == 120

    @pytest.mark.asyncio
    async def test_zero_ttl_sets_no_expiry(self):
        client = FakeRedis()
        await RedisProgressStore(client, ttl=0).set("abc", status=JobStatus.DONE)
        assert client.expiry[f"{REDIS_KEY_PREFIX}abc"] is None
