"""FFmpeg invocation utilities.

Builds the rendition command line and runs ffmpeg as an asyncio
subprocess, reporting elapsed-time checkpoints parsed from its stderr.
"""

import asyncio
import codecs
import logging
import os
import re
import shutil
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

from drivecast.core.config import settings
from drivecast.modules.transcoding.models import RenditionTarget

logger = logging.getLogger(__name__)

# Longest stderr excerpt carried by an EncoderError
MAX_DIAGNOSTIC_CHARS = 4000

READ_CHUNK_SIZE = 4096

TIME_PATTERN = re.compile(r"time=\s*(\d+(?::\d+){0,2}(?:\.\d+)?)")
LINE_BREAK_PATTERN = re.compile(r"[\r\n]")

CheckpointCallback = Callable[[float], Awaitable[None]]


class TranscodeError(Exception):
    """Base exception for transcoding errors."""
    pass


class EncoderError(TranscodeError):
    """Raised when an encoder run fails to start or exits non-zero."""

    def __init__(self, message: str, excerpt: str = ""):
        super().__init__(message)
        self.excerpt = excerpt


class EncoderUnavailableError(TranscodeError):
    """Raised when the encoder binary is missing or cannot run."""
    pass


def resolve_binary_path(override: Optional[str], name: str) -> str:
    """Pick the binary to run.

    An override path wins only when the file exists, then a PATH lookup,
    then the bare name (left for the spawn to fail on).
    """
    if override and os.path.isfile(override):
        return override
    return shutil.which(name) or name


def resolve_ffmpeg_path() -> str:
    return resolve_binary_path(settings.FFMPEG_PATH, "ffmpeg")


def resolve_ffprobe_path() -> str:
    return resolve_binary_path(settings.FFPROBE_PATH, "ffprobe")


async def check_binary(path: str, timeout: Optional[float] = None) -> bool:
    """Return True if ``path -version`` starts and exits cleanly within the timeout."""
    timeout = settings.BINARY_CHECK_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        process = await asyncio.create_subprocess_exec(
            path,
            "-version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.info("Binary not runnable", extra={"binary": path, "error": str(e)})
        return False

    try:
        returncode = await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.warning("Binary check timed out", extra={"binary": path, "timeout": timeout})
        return False

    return returncode == 0


def parse_timestamp(value: str) -> Optional[float]:
    """Convert ``HH:MM:SS.frac``, ``MM:SS.frac`` or ``SS.frac`` to seconds."""
    parts = value.strip().split(":")
    if not 1 <= len(parts) <= 3:
        return None
    try:
        seconds = 0.0
        for part in parts:
            seconds = seconds * 60 + float(part)
    except ValueError:
        return None
    return seconds


def parse_checkpoint(line: str) -> Optional[float]:
    """Extract the elapsed seconds from an ffmpeg progress line.

    Lines reporting ``time=N/A`` yield None.
    """
    match = TIME_PATTERN.search(line)
    if not match:
        return None
    return parse_timestamp(match.group(1))


@dataclass
class FFmpegConfig:
    """Encoding settings shared by every rendition."""
    video_codec: str = "libx264"
    preset: str = "veryfast"
    crf: int = 23
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    pad_color: str = "black"


def build_scale_filter(target: RenditionTarget, pad_color: str = "black") -> str:
    """Scale into the target box keeping aspect ratio, then letterbox to exact size."""
    w, h = target.width, target.height
    return (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:{pad_color}"
    )


def build_rendition_command(
    input_path: str,
    output_path: str,
    target: RenditionTarget,
    config: Optional[FFmpegConfig] = None,
) -> list[str]:
    """Build ffmpeg arguments (without the binary) for one rendition.

    Args:
        input_path: Staged source file
        output_path: Rendition file to write
        target: Rendition dimensions
        config: Codec settings, defaults to FFmpegConfig()

    Returns:
        Argument list for Encoder.run
    """
    config = config or FFmpegConfig()
    return [
        "-y",
        "-i", input_path,
        "-vf", build_scale_filter(target, config.pad_color),
        "-c:v", config.video_codec,
        "-preset", config.preset,
        "-crf", str(config.crf),
        "-c:a", config.audio_codec,
        "-b:a", config.audio_bitrate,
        # Move the moov atom up front for progressive playback
        "-movflags", "+faststart",
        output_path,
    ]


class Encoder(Protocol):
    """Runs one transcode to completion."""

    async def is_available(self) -> bool:
        ...

    async def run(self, args: list[str], on_checkpoint: CheckpointCallback) -> None:
        """Resolve on exit status 0, raise EncoderError otherwise."""
        ...


class FFmpegEncoder:
    """Encoder backed by an ffmpeg subprocess."""

    def __init__(self, binary: Optional[str] = None):
        self.binary = binary or resolve_ffmpeg_path()

    async def is_available(self, timeout: Optional[float] = None) -> bool:
        return await check_binary(self.binary, timeout)

    async def run(self, args: list[str], on_checkpoint: CheckpointCallback) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncoderError(f"Failed to start ffmpeg: {e}") from e

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        diagnostics = ""
        pending = ""

        try:
            while True:
                chunk = await process.stderr.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                diagnostics = (diagnostics + text)[-MAX_DIAGNOSTIC_CHARS:]

                lines = LINE_BREAK_PATTERN.split(pending + text)
                pending = lines.pop()
                for line in lines:
                    await self._report(line, on_checkpoint)

            tail = pending + decoder.decode(b"", final=True)
            if tail:
                await self._report(tail, on_checkpoint)

            returncode = await process.wait()
        finally:
            # Cancelled or failed mid-stream: do not leave ffmpeg running
            if process.returncode is None:
                process.kill()
                await process.wait()

        if returncode != 0:
            excerpt = diagnostics.strip()
            raise EncoderError(
                f"ffmpeg exited with code {returncode}: {excerpt}",
                excerpt=excerpt,
            )

    @staticmethod
    async def _report(line: str, on_checkpoint: CheckpointCallback) -> None:
        seconds = parse_checkpoint(line)
        if seconds is not None:
            await on_checkpoint(seconds)
