"""Drive file manager API router.

Thin proxies over the Drive client. Every response disables caching
except streamed media, which is cacheable by proxies.
"""

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse

from drivecast.core.config import settings
from drivecast.modules.drive.client import (
    DriveAPIError,
    DriveClient,
    DriveConfigError,
    DriveError,
    get_drive_client,
)
from drivecast.modules.drive.schemas import (
    BatchRequest,
    BatchResponse,
    CreateFolderRequest,
    DeleteResponse,
    FileListResponse,
    LinkUploadResponse,
    RenameRequest,
    UploadFromLinkRequest,
)
from drivecast.modules.drive.service import DriveService, extract_file_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/drive", tags=["drive"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
}

FORWARDED_MEDIA_HEADERS = (
    "content-length",
    "accept-ranges",
    "content-range",
    "etag",
    "last-modified",
)


def no_store(response: Response) -> None:
    response.headers.update(NO_STORE_HEADERS)


def get_drive_service(drive: DriveClient = Depends(get_drive_client)) -> DriveService:
    return DriveService(drive)


async def drive_exception_handler(request: Request, exc: DriveError) -> JSONResponse:
    """Translate Drive errors that escape a handler into a JSON error body."""
    if isinstance(exc, DriveConfigError):
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        details = None
    elif isinstance(exc, DriveAPIError):
        status_code = exc.status_code if 400 <= exc.status_code < 500 else 500
        details = exc.details
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        details = None

    logger.error(
        "Drive request failed",
        extra={"path": request.url.path, "status_code": status_code, "error": str(exc)},
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": str(exc), "details": details},
        headers=NO_STORE_HEADERS,
    )


@router.get("/list", response_model=FileListResponse)
async def list_files(
    response: Response,
    folder_id: str = Query("root", alias="folderId"),
    search: str = Query(""),
    page_token: Optional[str] = Query(None, alias="pageToken"),
    page_size: int = Query(50, alias="pageSize"),
    order: str = Query("name_asc"),
    item_type: str = Query("all", alias="type"),
    drive: DriveClient = Depends(get_drive_client),
):
    """List a folder's children, folders first."""
    no_store(response)
    data = await drive.list_files(
        folder_id=folder_id or "root",
        search=search,
        page_token=page_token,
        page_size=page_size,
        order=order.lower(),
        item_type=item_type.lower(),
    )
    return FileListResponse(**data)


@router.post("/create-folder")
async def create_folder(
    request: CreateFolderRequest,
    response: Response,
    drive: DriveClient = Depends(get_drive_client),
):
    no_store(response)
    name = request.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Missing folder name", headers=NO_STORE_HEADERS)
    folder = await drive.create_folder(name, request.parent_id or "root")
    return {"file": folder}


@router.post("/rename")
async def rename_file(
    request: RenameRequest,
    response: Response,
    drive: DriveClient = Depends(get_drive_client),
):
    no_store(response)
    name = request.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Missing id or name", headers=NO_STORE_HEADERS)
    updated = await drive.update_file(request.id, body={"name": name})
    return {"file": updated}


@router.delete("/delete", response_model=DeleteResponse)
async def delete_file(
    response: Response,
    file_id: Optional[str] = Query(None, alias="id"),
    permanent: bool = Query(False),
    drive: DriveClient = Depends(get_drive_client),
):
    """Trash a file, or delete it permanently when ``permanent=true``."""
    no_store(response)
    if not file_id:
        raise HTTPException(status_code=400, detail="Missing id", headers=NO_STORE_HEADERS)
    await drive.delete_file(file_id, permanent=permanent)
    return DeleteResponse(ok=True, permanent=permanent)


@router.get("/meta")
async def get_meta(
    response: Response,
    file_id: Optional[str] = Query(None, alias="id"),
    resource_key: Optional[str] = Query(None, alias="resourceKey"),
    drive: DriveClient = Depends(get_drive_client),
):
    no_store(response)
    if not file_id:
        raise HTTPException(status_code=400, detail="Missing file id", headers=NO_STORE_HEADERS)
    return {"file": await drive.get_file(file_id, resource_key=resource_key)}


@router.post("/move", response_model=BatchResponse)
async def move_files(
    request: BatchRequest,
    response: Response,
    service: DriveService = Depends(get_drive_service),
):
    no_store(response)
    results = await service.move_files(request.ids, request.destination_id)
    return BatchResponse(results=results)


@router.post("/copy", response_model=BatchResponse)
async def copy_files(
    request: BatchRequest,
    response: Response,
    service: DriveService = Depends(get_drive_service),
):
    """Copy files into a folder. Folders are reported as failed items."""
    no_store(response)
    results = await service.copy_files(request.ids, request.destination_id)
    return BatchResponse(results=results)


@router.get("/resolve")
async def resolve_link(
    url: str = Query(""),
    name: str = Query(""),
):
    """Redirect a Drive share link or raw file id to the watch page."""
    file_id = extract_file_id(url)
    if not file_id:
        raise HTTPException(
            status_code=400,
            detail="Invalid Google Drive URL or ID",
            headers=NO_STORE_HEADERS,
        )
    target = f"/watch/{quote(file_id, safe='')}"
    if name:
        target += f"?name={quote(name, safe='')}"
    return RedirectResponse(target, status_code=status.HTTP_302_FOUND, headers=NO_STORE_HEADERS)


@router.get("/stream/{file_id}")
async def stream_file(
    file_id: str,
    resource_key: Optional[str] = Query(None, alias="resourceKey"),
    range_header: Optional[str] = Header(None, alias="range"),
    drive: DriveClient = Depends(get_drive_client),
):
    """Proxy a file's bytes, honouring Range for seekable playback."""
    try:
        media = await drive.open_media(file_id, range_header=range_header, resource_key=resource_key)
    except DriveAPIError as e:
        logger.error(
            "Drive stream error",
            extra={"file_id": file_id, "range": range_header, "status_code": e.status_code},
        )
        return JSONResponse(
            status_code=e.status_code if e.status_code >= 400 else 500,
            content={"error": "Failed to stream file", "status": e.status_code, "details": e.details},
        )

    headers = {
        "Content-Type": media.headers.get("content-type") or "video/mp4",
        "Vary": "Range",
        "Cache-Control": settings.STREAM_CACHE_CONTROL,
    }
    for name in FORWARDED_MEDIA_HEADERS:
        value = media.headers.get(name)
        if value:
            headers[name.title()] = value

    status_code = 206 if range_header or "content-range" in media.headers else 200
    return StreamingResponse(
        media.body,
        status_code=status_code,
        headers=headers,
        media_type=headers["Content-Type"],
    )


@router.post("/upload-from-link", response_model=LinkUploadResponse)
async def upload_from_link(
    request: UploadFromLinkRequest,
    response: Response,
    service: DriveService = Depends(get_drive_service),
):
    """Download each URL and publish it into the target folder."""
    no_store(response)
    urls = request.all_urls()
    if not urls:
        raise HTTPException(status_code=400, detail="No urls provided", headers=NO_STORE_HEADERS)
    results = await service.upload_from_links(urls, request.folder_id or "root")
    return LinkUploadResponse(results=results)
