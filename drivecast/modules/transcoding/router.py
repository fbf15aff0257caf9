"""Upload API router.

``POST /drive/upload`` publishes a file directly or starts a transcode
job; ``GET /drive/upload/progress`` reports a job's progress.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from starlette.datastructures import UploadFile

from drivecast.modules.drive.client import get_drive_client
from drivecast.modules.drive.router import NO_STORE_HEADERS, no_store
from drivecast.modules.transcoding.models import wants_encode
from drivecast.modules.transcoding.progress import ProgressStore, get_progress_store
from drivecast.modules.transcoding.publisher import RemotePublisher
from drivecast.modules.transcoding.runner import get_job_runner
from drivecast.modules.transcoding.schemas import (
    DirectUploadResponse,
    JobStartedResponse,
    UnknownJobResponse,
)
from drivecast.modules.transcoding.service import TranscodeService, UploadValidationError

router = APIRouter(prefix="/drive/upload", tags=["upload"])

_service: Optional[TranscodeService] = None


def get_transcode_service() -> TranscodeService:
    global _service
    if _service is None:
        _service = TranscodeService(
            publisher=RemotePublisher(get_drive_client()),
            store=get_progress_store(),
            runner=get_job_runner(),
        )
    return _service


def _form_text(value) -> Optional[str]:
    if value is None or isinstance(value, UploadFile):
        return None
    return str(value).strip() or None


@router.post("")
async def upload_file(
    request: Request,
    response: Response,
    service: TranscodeService = Depends(get_transcode_service),
):
    """Upload a file, transcoding videos unless ``encode`` is declined.

    The form is parsed by hand so the uploaded file stays open for the
    background job after this handler returns.
    """
    no_store(response)
    form = await request.form()
    file = form.get("file")
    if not isinstance(file, UploadFile):
        raise HTTPException(status_code=400, detail="No file provided", headers=NO_STORE_HEADERS)

    try:
        result = await service.upload(
            file,
            file.filename,
            content_type=file.content_type,
            folder_id=_form_text(form.get("folderId")) or "root",
            relative_path=_form_text(form.get("relativePath")),
            encode=wants_encode(_form_text(form.get("encode"))),
            size=file.size,
        )
    except UploadValidationError as e:
        raise HTTPException(status_code=400, detail=str(e), headers=NO_STORE_HEADERS)

    if result.job_id:
        return JobStartedResponse(job_id=result.job_id).model_dump(by_alias=True)
    return DirectUploadResponse(files=result.files or []).model_dump()


@router.get("/progress")
async def get_upload_progress(
    response: Response,
    job_id: Optional[str] = Query(None, alias="id"),
    store: ProgressStore = Depends(get_progress_store),
):
    """Return the job's progress record, or ``{"status": "unknown"}``."""
    no_store(response)
    if not job_id:
        raise HTTPException(status_code=400, detail="Missing id", headers=NO_STORE_HEADERS)

    progress = await store.get(job_id)
    if progress is None:
        return UnknownJobResponse().model_dump()
    return progress.model_dump(by_alias=True, mode="json")
