"""Pydantic schemas for the Drive file manager endpoints.

Field aliases keep the camelCase wire names the browser client sends.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class DriveFileRef(BaseModel):
    """Minimal reference to a Drive file."""
    id: str
    name: Optional[str] = None


class FileListResponse(BaseModel):
    """One page of a folder listing."""
    files: list[dict[str, Any]] = Field(default_factory=list)
    next_page_token: Optional[str] = Field(None, alias="nextPageToken")

    class Config:
        populate_by_name = True


class CreateFolderRequest(BaseModel):
    name: str = Field(..., min_length=1)
    parent_id: str = Field("root", alias="parentId")

    class Config:
        populate_by_name = True


class RenameRequest(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class BatchRequest(BaseModel):
    """Request to move or copy several items into one folder."""
    ids: list[str] = Field(..., min_length=1)
    destination_id: str = Field(..., min_length=1, alias="destinationId")

    class Config:
        populate_by_name = True


class BatchItemResult(BaseModel):
    """Outcome of one item in a batch operation."""
    id: str
    ok: bool
    file: Optional[DriveFileRef] = None
    error: Optional[str] = None


class BatchResponse(BaseModel):
    results: list[BatchItemResult]


class UploadFromLinkRequest(BaseModel):
    """Request to fetch one or more URLs into a folder."""
    url: Optional[str] = None
    urls: list[str] = Field(default_factory=list)
    folder_id: str = Field("root", alias="folderId")

    class Config:
        populate_by_name = True

    def all_urls(self) -> list[str]:
        urls = [u.strip() for u in self.urls if u and u.strip()]
        if self.url and self.url.strip():
            urls.insert(0, self.url.strip())
        return urls


class LinkUploadResult(BaseModel):
    url: str
    ok: bool
    file: Optional[DriveFileRef] = None
    error: Optional[str] = None


class LinkUploadResponse(BaseModel):
    results: list[LinkUploadResult]


class DeleteResponse(BaseModel):
    ok: bool = True
    permanent: bool = False
