"""HTTP tests for the Drive file manager endpoints."""

from unittest.mock import AsyncMock

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from drivecast.core.config import settings
from drivecast.main import app
from drivecast.modules.drive.client import (
    DRIVE_API_BASE,
    GOOGLE_TOKEN_URL,
    DriveAPIError,
    DriveClient,
    get_drive_client,
)

NO_STORE = "no-store, no-cache, must-revalidate"


def api_client(drive) -> AsyncClient:
    app.dependency_overrides[get_drive_client] = lambda: drive
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def mock_drive() -> AsyncMock:
    return AsyncMock(spec=DriveClient)


class TestFileManagerEndpoints:

    @pytest.mark.asyncio
    async def test_list_passes_query_and_disables_caching(self, mock_drive):
        mock_drive.list_files.return_value = {
            "files": [{"id": "f1", "name": "Trips", "mimeType": "application/vnd.google-apps.folder"}],
            "nextPageToken": "page-2",
        }

        async with api_client(mock_drive) as client:
            response = await client.get(
                "/api/drive/list",
                params={"folderId": "abc", "search": "trip", "order": "DATE_DESC", "type": "Folders"},
            )

        assert response.status_code == 200
        assert response.headers["cache-control"] == NO_STORE
        assert response.headers["pragma"] == "no-cache"
        body = response.json()
        assert body["nextPageToken"] == "page-2"
        assert body["files"][0]["id"] == "f1"
        mock_drive.list_files.assert_awaited_once_with(
            folder_id="abc",
            search="trip",
            page_token=None,
            page_size=50,
            order="date_desc",
            item_type="folders",
        )

    @pytest.mark.asyncio
    async def test_create_folder_requires_name(self, mock_drive):
        async with api_client(mock_drive) as client:
            response = await client.post("/api/drive/create-folder", json={"name": "   "})

        assert response.status_code == 400
        mock_drive.create_folder.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_trashes_by_default(self, mock_drive):
        async with api_client(mock_drive) as client:
            response = await client.delete("/api/drive/delete", params={"id": "f1"})

        assert response.status_code == 200
        assert response.json()["permanent"] is False
        mock_drive.delete_file.assert_awaited_once_with("f1", permanent=False)

    @pytest.mark.asyncio
    async def test_drive_error_becomes_json(self, mock_drive):
        """A Drive 404 SHALL surface as a 404 JSON body with the error message."""
        mock_drive.get_file.side_effect = DriveAPIError("File not found: f1.", status_code=404)

        async with api_client(mock_drive) as client:
            response = await client.get("/api/drive/meta", params={"id": "f1"})

        assert response.status_code == 404
        assert response.json()["error"] == "File not found: f1."
        assert response.headers["cache-control"] == NO_STORE

    @pytest.mark.asyncio
    async def test_drive_server_error_becomes_500(self, mock_drive):
        mock_drive.get_file.side_effect = DriveAPIError("Backend error", status_code=503)

        async with api_client(mock_drive) as client:
            response = await client.get("/api/drive/meta", params={"id": "f1"})

        assert response.status_code == 500


class TestResolve:

    @pytest.mark.asyncio
    async def test_redirects_share_link_to_watch_page(self, mock_drive):
        file_id = "1AbCdEfGhIjKlMnOpQrStUvWxYz"
        async with api_client(mock_drive) as client:
            response = await client.get(
                "/api/drive/resolve",
                params={"url": f"https://drive.google.com/file/d/{file_id}/view", "name": "My Clip"},
            )

        assert response.status_code == 302
        assert response.headers["location"] == f"/watch/{file_id}?name=My%20Clip"

    @pytest.mark.asyncio
    async def test_rejects_unrecognised_link(self, mock_drive):
        async with api_client(mock_drive) as client:
            response = await client.get("/api/drive/resolve", params={"url": "https://example.com"})

        assert response.status_code == 400


class TestStream:

    @staticmethod
    def streaming_drive(handler) -> DriveClient:
        def route(request: httpx.Request) -> httpx.Response:
            if str(request.url) == GOOGLE_TOKEN_URL:
                return httpx.Response(200, json={"access_token": "token", "expires_in": 3600})
            return handler(request)

        return DriveClient(
            client_id="client",
            client_secret="secret",
            refresh_token="refresh",
            transport=httpx.MockTransport(route),
        )

    @pytest.mark.asyncio
    async def test_range_request_returns_partial_content(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["range"] = request.headers.get("range")
            return httpx.Response(
                206,
                headers={
                    "Content-Type": "video/mp4",
                    "Content-Range": "bytes 0-3/100",
                    "Accept-Ranges": "bytes",
                    "ETag": '"v1"',
                },
                content=b"abcd",
            )

        async with api_client(self.streaming_drive(handler)) as client:
            response = await client.get("/api/drive/stream/f1", headers={"Range": "bytes=0-3"})

        assert response.status_code == 206
        assert response.content == b"abcd"
        assert response.headers["content-range"] == "bytes 0-3/100"
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["etag"] == '"v1"'
        assert "Range" in [token.strip() for token in response.headers["vary"].split(",")]
        assert response.headers["cache-control"] == settings.STREAM_CACHE_CONTROL
        assert seen["url"].startswith(f"{DRIVE_API_BASE}/files/f1?alt=media")
        assert seen["range"] == "bytes=0-3"

    @pytest.mark.asyncio
    async def test_full_download_defaults_to_mp4(self):
        def handler(request):
            return httpx.Response(200, content=b"whole-file")

        async with api_client(self.streaming_drive(handler)) as client:
            response = await client.get("/api/drive/stream/f1")

        assert response.status_code == 200
        assert response.content == b"whole-file"
        assert response.headers["content-type"].startswith("video/mp4")

    @pytest.mark.asyncio
    async def test_stream_failure_is_reported(self):
        def handler(request):
            return httpx.Response(403, json={"error": {"message": "forbidden"}})

        async with api_client(self.streaming_drive(handler)) as client:
            response = await client.get("/api/drive/stream/f1")

        assert response.status_code == 403
        assert response.json()["error"] == "Failed to stream file"
