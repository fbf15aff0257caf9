"""Transcode-and-publish orchestration.

An upload is either published as-is or, for videos with encoding
enabled, handed to a background job that stages the source, encodes
every rendition of the ladder in order and publishes each one. The
job is the only writer of its progress record.
"""

import asyncio
import logging
import math
import os
import shutil
import tempfile
import time
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from drivecast.core.config import settings
from drivecast.core.logging import (
    clear_correlation_id,
    log_error,
    log_info,
    log_warning,
    set_correlation_id,
)
from drivecast.core.metrics import RENDITION_ENCODE_DURATION_SECONDS, record_job_finished
from drivecast.core.tracing import add_span_attributes, create_span, record_exception
from drivecast.modules.transcoding.ffmpeg import (
    Encoder,
    EncoderUnavailableError,
    FFmpegConfig,
    FFmpegEncoder,
    build_rendition_command,
    check_binary,
    resolve_ffmpeg_path,
    resolve_ffprobe_path,
)
from drivecast.modules.transcoding.models import (
    OUTPUT_MIME_TYPE,
    RENDITION_LADDER,
    JobStatus,
    RenditionTarget,
    base_name,
    is_video,
)
from drivecast.modules.transcoding.probe import DurationProbe
from drivecast.modules.transcoding.progress import ProgressStore, PublishedFile
from drivecast.modules.transcoding.publisher import (
    AsyncReadable,
    RemotePublisher,
    iter_readable,
)
from drivecast.modules.transcoding.runner import JobRunner

logger = logging.getLogger(__name__)

TEMP_DIR_PREFIX = "upload-"
DEFAULT_INPUT_EXTENSION = ".dat"

# Ceiling while a rendition is still encoding
MAX_ENCODING_PERCENT = 99

ENCODER_UNAVAILABLE_MESSAGE = (
    "ffmpeg is not available. Install ffmpeg on the server "
    "or set FFMPEG_PATH to the ffmpeg binary."
)


class UploadValidationError(Exception):
    """Raised when an upload request is missing required input."""
    pass


@dataclass
class UploadResult:
    """Either the published files (direct path) or the id of a background job."""
    files: Optional[list[PublishedFile]] = None
    job_id: Optional[str] = None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def encoding_percent(completed: int, elapsed: float, duration: float, total: int) -> int:
    """Overall percent while rendition ``completed + 1`` is encoding.

    Args:
        completed: Renditions already published
        elapsed: Seconds of source encoded so far in the current rendition
        duration: Source duration in seconds
        total: Renditions in the ladder

    Returns:
        Percent clamped to [0, 99]
    """
    fraction = min(max(elapsed / duration, 0.0), 1.0)
    percent = round_half_up(((completed + fraction) / total) * 100)
    return min(max(percent, 0), MAX_ENCODING_PERCENT)


def completed_percent(done: int, total: int) -> int:
    return round_half_up((done / total) * 100)


class JobProgressWriter:
    """Writes one job's progress, keeping percent monotonic.

    Nothing is written after the job reaches a terminal state.
    """

    def __init__(self, store: ProgressStore, job_id: str):
        self.store = store
        self.job_id = job_id
        self.percent = 0
        self.terminal = False

    async def update(self, **fields: Any) -> None:
        if self.terminal:
            return
        if "percent" in fields:
            self.percent = max(self.percent, fields["percent"])
            fields["percent"] = self.percent
        await self.store.set(self.job_id, **fields)

    async def finish(self, files: list[PublishedFile], total: int) -> None:
        await self.update(status=JobStatus.DONE, done=total, percent=100, files=files)
        self.terminal = True

    async def fail(self, message: str) -> None:
        if self.terminal:
            return
        self.terminal = True
        await self.store.set(self.job_id, status=JobStatus.ERROR, error=message)


async def stage_source(source: AsyncReadable, path: str) -> int:
    """Copy an upload body to a local file. Returns bytes written."""
    written = 0
    handle = await asyncio.to_thread(open, path, "wb")
    try:
        async for chunk in iter_readable(source):
            await asyncio.to_thread(handle.write, chunk)
            written += len(chunk)
    finally:
        await asyncio.to_thread(handle.close)
    return written


class TranscodeService:
    """Accepts uploads and runs transcode jobs."""

    def __init__(
        self,
        publisher: RemotePublisher,
        store: ProgressStore,
        runner: JobRunner,
        encoder: Optional[Encoder] = None,
        probe: Optional[DurationProbe] = None,
        ladder: Sequence[RenditionTarget] = RENDITION_LADDER,
        ffmpeg_config: Optional[FFmpegConfig] = None,
        temp_dir: Optional[str] = None,
    ):
        """Initialize the service.

        Args:
            publisher: Publishes files into Drive
            store: Progress store shared with the polling endpoint
            runner: Background runner for jobs
            encoder: Encoder to use; a fresh FFmpegEncoder per job if omitted
            probe: Duration probe; built from the resolved binaries if omitted
            ladder: Rendition targets, in encoding order
            ffmpeg_config: Codec settings for every rendition
            temp_dir: Parent directory for job working directories
        """
        self.publisher = publisher
        self.store = store
        self.runner = runner
        self.encoder = encoder
        self.probe = probe
        self.ladder = tuple(ladder)
        self.ffmpeg_config = ffmpeg_config or FFmpegConfig()
        self.temp_dir = temp_dir if temp_dir is not None else settings.UPLOAD_TEMP_DIR

    async def upload(
        self,
        source: AsyncReadable,
        filename: Optional[str],
        content_type: Optional[str] = None,
        folder_id: str = "root",
        relative_path: Optional[str] = None,
        encode: bool = True,
        size: Optional[int] = None,
    ) -> UploadResult:
        """Publish directly or start a transcode job.

        The service takes ownership of ``source`` and closes it once its
        bytes are consumed. For jobs this happens in the background. ``size``
        is the body length when the caller knows it.

        Raises:
            UploadValidationError: If no file name was given
        """
        if not filename:
            await source.close()
            raise UploadValidationError("No file provided")
        folder_id = folder_id or "root"

        if not (encode and is_video(filename, content_type)):
            try:
                target_folder = await self.publisher.ensure_folder(folder_id, relative_path)
                published = await self.publisher.publish_stream(
                    source, filename, target_folder, content_type, size=size
                )
            finally:
                await source.close()
            return UploadResult(files=[published])

        job_id = uuid.uuid4().hex
        await self.store.set(
            job_id,
            status=JobStatus.PREPARING,
            current=None,
            done=0,
            total=len(self.ladder),
            percent=0,
        )
        self.runner.submit(
            self.run_job(job_id, source, filename, folder_id, relative_path),
            name=f"transcode-{job_id}",
            on_cancel=lambda: self._cancel_queued(job_id, source),
        )
        logger.info(
            "Transcode job accepted",
            extra={"job_id": job_id, "file_name": filename, "folder_id": folder_id},
        )
        return UploadResult(job_id=job_id)

    async def run_job(
        self,
        job_id: str,
        source: AsyncReadable,
        filename: str,
        folder_id: str,
        relative_path: Optional[str] = None,
    ) -> None:
        """Background body of one job. Failures end in ``status=error``, never raise."""
        set_correlation_id(job_id)
        writer = JobProgressWriter(self.store, job_id)
        work_dir = None

        with create_span("transcode.job", attributes={"job.id": job_id, "file.name": filename}):
            try:
                work_dir = await asyncio.to_thread(
                    tempfile.mkdtemp, prefix=TEMP_DIR_PREFIX, dir=self.temp_dir
                )
                files = await self._process(writer, work_dir, source, filename, folder_id, relative_path)
            except asyncio.CancelledError:
                await writer.fail("Job cancelled")
                record_job_finished(JobStatus.ERROR.value)
                raise
            except Exception as e:
                record_exception(e)
                log_error(logger, "Transcode job failed", exception=e, job_id=job_id, error=str(e))
                await writer.fail(str(e) or e.__class__.__name__)
                record_job_finished(JobStatus.ERROR.value)
            else:
                await writer.finish(files, len(self.ladder))
                record_job_finished(JobStatus.DONE.value)
                log_info(logger, "Transcode job done", job_id=job_id, files=len(files))
            finally:
                await source.close()
                if work_dir:
                    await self._cleanup(work_dir, job_id)
                clear_correlation_id()

    async def _cancel_queued(self, job_id: str, source: AsyncReadable) -> None:
        """Finish a job that was cancelled while still waiting for a runner slot."""
        try:
            await JobProgressWriter(self.store, job_id).fail("Job cancelled")
            record_job_finished(JobStatus.ERROR.value)
            log_warning(logger, "Queued transcode job cancelled", job_id=job_id)
        finally:
            await source.close()

    async def _process(
        self,
        writer: JobProgressWriter,
        work_dir: str,
        source: AsyncReadable,
        filename: str,
        folder_id: str,
        relative_path: Optional[str],
    ) -> list[PublishedFile]:
        input_ext = os.path.splitext(filename)[1] or DEFAULT_INPUT_EXTENSION
        input_path = os.path.join(work_dir, f"source{input_ext}")
        size = await stage_source(source, input_path)
        add_span_attributes({"file.size": size})

        target_folder = await self.publisher.ensure_folder(folder_id, relative_path)

        encoder = self.encoder or FFmpegEncoder()
        if not await encoder.is_available():
            raise EncoderUnavailableError(ENCODER_UNAVAILABLE_MESSAGE)

        probe = self.probe or await self._build_probe(encoder)
        duration = await probe.probe(input_path)
        logger.info("Probed source", extra={"job_id": writer.job_id, "duration": duration})

        total = len(self.ladder)
        stem = base_name(filename)
        files: list[PublishedFile] = []

        for completed, target in enumerate(self.ladder):
            await writer.update(status=JobStatus.ENCODING, current=target.label, done=completed)

            async def on_checkpoint(elapsed: float, completed: int = completed) -> None:
                if duration:
                    await writer.update(
                        percent=encoding_percent(completed, elapsed, duration, total)
                    )

            output_name = target.output_name(stem)
            output_path = os.path.join(work_dir, output_name)

            with create_span("transcode.rendition", attributes={"rendition": target.label}):
                started = time.perf_counter()
                await encoder.run(
                    build_rendition_command(input_path, output_path, target, self.ffmpeg_config),
                    on_checkpoint,
                )
                RENDITION_ENCODE_DURATION_SECONDS.labels(rendition=target.label).observe(
                    time.perf_counter() - started
                )
                logger.info(
                    "Rendition encoded",
                    extra={"job_id": writer.job_id, "rendition": target.label},
                )

                await writer.update(status=JobStatus.UPLOADING, current=target.label)
                published = await self.publisher.publish_file(
                    output_path, output_name, target_folder, OUTPUT_MIME_TYPE
                )

            files.append(published)
            await writer.update(
                status=JobStatus.PROGRESS,
                done=completed + 1,
                percent=completed_percent(completed + 1, total),
            )

        return files

    async def _build_probe(self, encoder: Encoder) -> DurationProbe:
        ffmpeg_path = encoder.binary if isinstance(encoder, FFmpegEncoder) else resolve_ffmpeg_path()
        ffprobe_path: Optional[str] = resolve_ffprobe_path()
        if not await check_binary(ffprobe_path):
            logger.info("ffprobe unavailable, using ffmpeg for probing")
            ffprobe_path = None
        return DurationProbe(ffmpeg_path, ffprobe_path)

    async def _cleanup(self, work_dir: str, job_id: str) -> None:
        try:
            await asyncio.to_thread(shutil.rmtree, work_dir)
        except OSError as e:
            log_warning(
                logger, "Failed to remove job directory", job_id=job_id, path=work_dir, error=str(e)
            )
