"""Source duration probing.

Prefers ffprobe and falls back to the ``Duration:`` line ffmpeg prints
while opening its input. Probing never fails a job; an unknown duration
is reported as None.
"""

import asyncio
import logging
import math
import re
from typing import Optional

from drivecast.modules.transcoding.ffmpeg import parse_timestamp

logger = logging.getLogger(__name__)

DURATION_PATTERN = re.compile(r"Duration:\s*(\d{1,3}:\d{1,2}:\d{1,2}(?:\.\d+)?)\s*,")

# The input banner always fits well within this
MAX_BANNER_CHARS = 65536

# ffmpeg prints these once the input section of the banner is complete
BANNER_END_PATTERN = re.compile(r"^\s*(?:Stream mapping:|Output #0)", re.MULTILINE)


def parse_duration(value: str) -> Optional[float]:
    """Parse ffprobe's plain duration output into positive seconds."""
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    return seconds


def parse_banner_duration(text: str) -> Optional[float]:
    """Parse ``Duration: HH:MM:SS.frac,`` out of ffmpeg diagnostic output."""
    match = DURATION_PATTERN.search(text)
    if not match:
        return None
    seconds = parse_timestamp(match.group(1))
    if seconds is None or seconds <= 0:
        return None
    return seconds


class DurationProbe:
    """Determine a media file's duration in seconds."""

    def __init__(self, ffmpeg_path: str, ffprobe_path: Optional[str] = None):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    async def probe(self, input_path: str) -> Optional[float]:
        if self.ffprobe_path:
            duration = await self._probe_ffprobe(input_path)
            if duration is not None:
                return duration
        return await self._probe_ffmpeg(input_path)

    async def _probe_ffprobe(self, input_path: str) -> Optional[float]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffprobe_path,
                "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                input_path,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.info("ffprobe unavailable", extra={"error": str(e)})
            return None

        stdout, _ = await process.communicate()
        return parse_duration(stdout.decode("utf-8", errors="replace"))

    async def _probe_ffmpeg(self, input_path: str) -> Optional[float]:
        # The banner precedes any decoding; stop as soon as it is parsed
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                "-hide_banner",
                "-i", input_path,
                "-f", "null", "-",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.info("ffmpeg unavailable for probing", extra={"error": str(e)})
            return None

        diagnostics = ""
        duration = None
        while len(diagnostics) < MAX_BANNER_CHARS:
            chunk = await process.stderr.read(4096)
            if not chunk:
                break
            diagnostics += chunk.decode("utf-8", errors="replace")
            duration = parse_banner_duration(diagnostics)
            if duration is not None or BANNER_END_PATTERN.search(diagnostics):
                break

        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()
        return duration
