"""Pydantic schemas for the upload endpoints."""

from pydantic import BaseModel, Field

from drivecast.modules.transcoding.progress import PublishedFile


class DirectUploadResponse(BaseModel):
    """Upload published as-is."""
    files: list[PublishedFile]


class JobStartedResponse(BaseModel):
    """Upload accepted as a background transcode job."""
    job_id: str = Field(..., alias="jobId")
    status: str = "started"

    class Config:
        populate_by_name = True


class UnknownJobResponse(BaseModel):
    status: str = "unknown"
