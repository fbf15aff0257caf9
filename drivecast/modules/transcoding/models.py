"""Domain models for the transcoding pipeline."""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class JobStatus(str, Enum):
    """Status of a transcode job."""
    PREPARING = "preparing"
    ENCODING = "encoding"
    UPLOADING = "uploading"
    PROGRESS = "progress"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.ERROR)


OUTPUT_EXTENSION = "mp4"
OUTPUT_MIME_TYPE = "video/mp4"


@dataclass(frozen=True)
class RenditionTarget:
    """One entry of the rendition ladder."""
    width: int
    height: int

    @property
    def label(self) -> str:
        return f"{self.height}p"

    def output_name(self, base_name: str) -> str:
        return f"{base_name}_{self.label}.{OUTPUT_EXTENSION}"


# Always attempted in this order
RENDITION_LADDER: tuple[RenditionTarget, ...] = (
    RenditionTarget(1920, 1080),
    RenditionTarget(1280, 720),
    RenditionTarget(854, 480),
    RenditionTarget(640, 360),
)

VIDEO_EXTENSIONS = frozenset({".mp4", ".mkv", ".mov", ".webm", ".avi", ".m4v"})

ENCODE_DISABLED_VALUES = frozenset({"0", "false", "no"})


def is_video(filename: Optional[str], content_type: Optional[str]) -> bool:
    """Check the declared media type first, then the file extension."""
    if content_type and content_type.lower().startswith("video/"):
        return True
    ext = os.path.splitext(filename or "")[1].lower()
    return ext in VIDEO_EXTENSIONS


def wants_encode(value: Optional[str]) -> bool:
    """Encoding is on unless the caller explicitly declines it."""
    if value is None:
        return True
    return str(value).strip().lower() not in ENCODE_DISABLED_VALUES


def base_name(filename: str) -> str:
    """File name without directory or extension, used for rendition names."""
    name = os.path.basename(filename or "") or "video"
    stem = os.path.splitext(name)[0]
    return stem or name
