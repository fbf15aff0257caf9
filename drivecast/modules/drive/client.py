"""Google Drive v3 REST client.

Talks to Drive over plain HTTPS with httpx, authenticating with an OAuth2
refresh token. Every call works across shared drives, not only the
personal "My Drive" partition.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

import httpx

from drivecast.core.config import settings

logger = logging.getLogger(__name__)

# Endpoints
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DEFAULT_MIME_TYPE = "application/octet-stream"

LIST_FIELDS = (
    "nextPageToken, files(id, name, mimeType, size, modifiedTime, iconLink, "
    "webViewLink, capabilities(canTrash, canDelete))"
)
META_FIELDS = (
    "id, name, mimeType, size, modifiedTime, fileExtension, iconLink, "
    "thumbnailLink, webViewLink, driveId"
)

# Refresh the access token this many seconds before Google says it expires
TOKEN_EXPIRY_MARGIN_SECONDS = 60

UploadContent = Union[bytes, AsyncIterator[bytes]]


class DriveError(Exception):
    """Base exception for Drive backend errors."""
    pass


class DriveConfigError(DriveError):
    """Raised when Drive credentials are missing."""
    pass


class DriveAPIError(DriveError):
    """Raised when the Drive API answers with an error status."""

    def __init__(self, message: str, status_code: int = 500, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


@dataclass
class MediaStream:
    """An open media download. The body iterator closes the connection when exhausted."""
    status_code: int
    headers: httpx.Headers
    body: AsyncIterator[bytes]
    close: Callable[[], Awaitable[None]]


def escape_query_value(value: str) -> str:
    """Escape a literal for use inside a single-quoted Drive query string."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def split_relative_path(relative_path: Optional[str]) -> list[str]:
    """Split a slash separated folder path into trimmed, non-empty segments."""
    if not relative_path:
        return []
    return [part.strip() for part in str(relative_path).split("/") if part.strip()]


class DriveClient:
    """Async client for the subset of Drive v3 the file manager uses."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        refresh_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        """Initialize Drive client.

        Args:
            client_id: OAuth client ID (uses settings if not provided)
            client_secret: OAuth client secret (uses settings if not provided)
            refresh_token: Long-lived refresh token (uses settings if not provided)
            transport: Optional httpx transport, used by tests
            timeout: Timeout for metadata calls in seconds
        """
        self.client_id = client_id or settings.DRIVE_CLIENT_ID
        self.client_secret = client_secret or settings.DRIVE_CLIENT_SECRET
        self.refresh_token = refresh_token or settings.DRIVE_REFRESH_TOKEN
        self.timeout = timeout
        self._transport = transport
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    def _http(self, timeout: Optional[httpx.Timeout] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=timeout if timeout is not None else self.timeout,
        )

    # ==================== Auth ====================

    async def get_access_token(self) -> str:
        """Return a valid access token, refreshing it when close to expiry.

        Raises:
            DriveConfigError: If OAuth credentials are not configured
            DriveAPIError: If the token endpoint rejects the refresh
        """
        if not (self.client_id and self.client_secret and self.refresh_token):
            raise DriveConfigError(
                "Missing required settings: DRIVE_CLIENT_ID, DRIVE_CLIENT_SECRET, DRIVE_REFRESH_TOKEN"
            )

        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            async with self._http() as client:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": self.refresh_token,
                        "grant_type": "refresh_token",
                    },
                )

            if response.status_code != 200:
                error_data = _safe_json(response)
                raise DriveAPIError(
                    f"Token refresh failed: {error_data.get('error_description', 'Unknown error')}",
                    status_code=response.status_code,
                    details=error_data,
                )

            data = response.json()
            expires_in = int(data.get("expires_in", 3600))
            self._access_token = data["access_token"]
            self._token_expires_at = (
                time.monotonic() + max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
            )
            return self._access_token

    async def _auth_headers(self, extra: Optional[dict] = None) -> dict:
        token = await self.get_access_token()
        headers = {"Authorization": f"Bearer {token}"}
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        request_headers = await self._auth_headers(headers)

        async with self._http() as client:
            response = await client.request(
                method,
                url,
                params=params,
                json=json,
                headers=request_headers,
            )

        if response.status_code >= 400:
            raise _api_error(response)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # ==================== Listing & metadata ====================

    async def list_files(
        self,
        folder_id: str = "root",
        search: str = "",
        page_token: Optional[str] = None,
        page_size: int = 50,
        order: str = "name_asc",
        item_type: str = "all",
    ) -> dict:
        """List non-trashed children of a folder.

        A search term resets pagination. If a stale page token is rejected
        the first page is returned instead.

        Returns:
            dict with ``files`` and ``nextPageToken`` (None on the last page)
        """
        query = f"'{escape_query_value(folder_id)}' in parents and trashed = false"
        if search:
            query += f" and name contains '{escape_query_value(search)}'"
            page_token = None
        if item_type == "folder":
            query += f" and mimeType = '{FOLDER_MIME_TYPE}'"
        elif item_type == "file":
            query += f" and mimeType != '{FOLDER_MIME_TYPE}'"

        params = {
            "q": query,
            "pageSize": min(max(int(page_size), 1), 100),
            "fields": LIST_FIELDS,
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
            "corpora": "allDrives",
            "orderBy": "folder desc, name desc" if order == "name_desc" else "folder, name",
        }

        try:
            data = await self._request(
                "GET",
                f"{DRIVE_API_BASE}/files",
                params={**params, "pageToken": page_token} if page_token else params,
            )
        except DriveAPIError:
            if not page_token:
                raise
            logger.warning("Page token rejected, listing from first page", extra={"folder_id": folder_id})
            data = await self._request("GET", f"{DRIVE_API_BASE}/files", params=params)

        return {
            "files": data.get("files", []),
            "nextPageToken": data.get("nextPageToken"),
        }

    async def get_file(
        self,
        file_id: str,
        fields: str = META_FIELDS,
        resource_key: Optional[str] = None,
    ) -> dict:
        headers = _resource_key_header(file_id, resource_key)
        return await self._request(
            "GET",
            f"{DRIVE_API_BASE}/files/{file_id}",
            params={"fields": fields, "supportsAllDrives": "true"},
            headers=headers,
        )

    async def find_folder(self, parent_id: str, name: str) -> Optional[dict]:
        """Find a non-trashed folder with exactly ``name`` under ``parent_id``."""
        query = (
            f"'{escape_query_value(parent_id)}' in parents and trashed = false "
            f"and mimeType = '{FOLDER_MIME_TYPE}' and name = '{escape_query_value(name)}'"
        )
        data = await self._request(
            "GET",
            f"{DRIVE_API_BASE}/files",
            params={
                "q": query,
                "pageSize": 1,
                "fields": "files(id, name)",
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
                "corpora": "allDrives",
            },
        )
        files = data.get("files") or []
        return files[0] if files else None

    # ==================== Mutations ====================

    async def create_folder(self, name: str, parent_id: str = "root") -> dict:
        return await self._request(
            "POST",
            f"{DRIVE_API_BASE}/files",
            params={"fields": "id, name", "supportsAllDrives": "true"},
            json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
        )

    async def update_file(
        self,
        file_id: str,
        body: Optional[dict] = None,
        add_parents: Optional[str] = None,
        remove_parents: Optional[str] = None,
        fields: str = "id, name",
    ) -> dict:
        params = {"fields": fields, "supportsAllDrives": "true"}
        if add_parents:
            params["addParents"] = add_parents
        if remove_parents:
            params["removeParents"] = remove_parents
        return await self._request(
            "PATCH",
            f"{DRIVE_API_BASE}/files/{file_id}",
            params=params,
            json=body or {},
        )

    async def trash_file(self, file_id: str) -> dict:
        return await self.update_file(file_id, body={"trashed": True})

    async def delete_file(self, file_id: str, permanent: bool = False) -> None:
        """Trash a file, or delete it permanently.

        Shared drive members often may trash but not delete; a permanent
        delete refused with 403 falls back to trashing.
        """
        if not permanent:
            await self.trash_file(file_id)
            return

        try:
            await self._request(
                "DELETE",
                f"{DRIVE_API_BASE}/files/{file_id}",
                params={"supportsAllDrives": "true"},
            )
        except DriveAPIError as e:
            if e.status_code != 403:
                raise
            logger.info("Permanent delete forbidden, trashing instead", extra={"file_id": file_id})
            await self.trash_file(file_id)

    async def copy_file(self, file_id: str, parents: list[str]) -> dict:
        return await self._request(
            "POST",
            f"{DRIVE_API_BASE}/files/{file_id}/copy",
            params={"fields": "id, name", "supportsAllDrives": "true"},
            json={"parents": parents},
        )

    async def upload_file(
        self,
        name: str,
        parent_id: str,
        content: UploadContent,
        mime_type: str = DEFAULT_MIME_TYPE,
        size: Optional[int] = None,
    ) -> dict:
        """Create a file through a resumable upload session.

        The metadata request opens the session, then the content is streamed
        in a single PUT. No timeout applies to the content transfer.

        Returns:
            dict with the new file's ``id`` and ``name``
        """
        session_headers = {"X-Upload-Content-Type": mime_type or DEFAULT_MIME_TYPE}
        if size is not None:
            session_headers["X-Upload-Content-Length"] = str(size)
        headers = await self._auth_headers(session_headers)

        async with self._http() as client:
            response = await client.post(
                f"{DRIVE_UPLOAD_BASE}/files",
                params={
                    "uploadType": "resumable",
                    "supportsAllDrives": "true",
                    "fields": "id, name",
                },
                headers=headers,
                json={"name": name, "parents": [parent_id]},
            )
        if response.status_code >= 400:
            raise _api_error(response)

        session_url = response.headers.get("location")
        if not session_url:
            raise DriveAPIError("Missing upload session URL", status_code=502)

        async with self._http(timeout=httpx.Timeout(self.timeout, read=None, write=None)) as client:
            response = await client.put(
                session_url,
                content=content,
                headers={"Content-Type": mime_type or DEFAULT_MIME_TYPE},
            )
        if response.status_code >= 400:
            raise _api_error(response)

        data = response.json()
        return {"id": data.get("id"), "name": data.get("name", name)}

    async def ensure_folder_path(self, parent_id: str, relative_path: Optional[str]) -> str:
        """Resolve a nested folder path below ``parent_id``, creating missing folders.

        Segments are walked left to right. An existing folder with the exact
        segment name is reused, so calling this twice is harmless.

        Returns:
            Id of the deepest folder, or ``parent_id`` for an empty path
        """
        current = parent_id
        for name in split_relative_path(relative_path):
            existing = await self.find_folder(current, name)
            if existing:
                current = existing["id"]
            else:
                created = await self.create_folder(name, current)
                logger.info("Created folder", extra={"folder_name": name, "parent_id": current})
                current = created["id"]
        return current

    # ==================== Media ====================

    async def open_media(
        self,
        file_id: str,
        range_header: Optional[str] = None,
        resource_key: Optional[str] = None,
    ) -> MediaStream:
        """Open a (possibly ranged) download of a file's bytes.

        The direct ``alt=media`` fetch is tried first; when it fails the
        request is repeated through the shared-drive aware API form.
        """
        try:
            return await self._fetch_media(file_id, range_header, resource_key, api_form=False)
        except DriveAPIError as e:
            logger.warning(
                "Direct media fetch failed, retrying via API",
                extra={"file_id": file_id, "status_code": e.status_code},
            )
            return await self._fetch_media(file_id, range_header, resource_key, api_form=True)

    async def _fetch_media(
        self,
        file_id: str,
        range_header: Optional[str],
        resource_key: Optional[str],
        api_form: bool,
    ) -> MediaStream:
        params = {"alt": "media"}
        extra_headers = {}
        if range_header:
            extra_headers["Range"] = range_header
        if api_form:
            params["supportsAllDrives"] = "true"
            extra_headers.update(_resource_key_header(file_id, resource_key) or {})
        elif resource_key:
            params["resourceKey"] = resource_key
        headers = await self._auth_headers(extra_headers)

        client = self._http(timeout=httpx.Timeout(self.timeout, read=None))
        request = client.build_request(
            "GET", f"{DRIVE_API_BASE}/files/{file_id}", params=params, headers=headers
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError:
            await client.aclose()
            raise

        if response.status_code >= 400:
            await response.aread()
            await response.aclose()
            await client.aclose()
            raise DriveAPIError(
                "Failed to stream file",
                status_code=response.status_code,
                details=response.text[:500],
            )

        async def close() -> None:
            await response.aclose()
            await client.aclose()

        async def body() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_bytes():
                    yield chunk
            finally:
                await close()

        return MediaStream(
            status_code=response.status_code,
            headers=response.headers,
            body=body(),
            close=close,
        )


def _safe_json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {"message": response.text[:500]}
    return data if isinstance(data, dict) else {"message": data}


def _api_error(response: httpx.Response) -> DriveAPIError:
    data = _safe_json(response)
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message") or f"Drive API error {response.status_code}"
        errors = error.get("errors")
        if errors and isinstance(errors, list) and errors[0].get("message"):
            message = errors[0]["message"]
    else:
        message = data.get("message") or f"Drive API error {response.status_code}"
    return DriveAPIError(message, status_code=response.status_code, details=data)


def _resource_key_header(file_id: str, resource_key: Optional[str]) -> Optional[dict]:
    if not resource_key:
        return None
    return {"X-Goog-Drive-Resource-Keys": f"{file_id}/{resource_key}"}


_default_client: Optional[DriveClient] = None


def get_drive_client() -> DriveClient:
    """FastAPI dependency returning the process-wide Drive client."""
    global _default_client
    if _default_client is None:
        _default_client = DriveClient()
    return _default_client
