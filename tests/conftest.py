"""Shared fixtures for transcoding and upload tests."""

from typing import Optional

import pytest

from drivecast.modules.transcoding.publisher import RemotePublisher
from drivecast.modules.transcoding.runner import JobRunner
from drivecast.modules.transcoding.service import TranscodeService

from fakes import FakeDrive, FakeProbe, RecordingProgressStore, ScriptedEncoder


@pytest.fixture
def fake_drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def progress_store() -> RecordingProgressStore:
    return RecordingProgressStore()


@pytest.fixture
def make_service(tmp_path, progress_store):
    """Build a TranscodeService over fakes; keyword args override the defaults."""

    def factory(
        drive: Optional[FakeDrive] = None,
        encoder: Optional[ScriptedEncoder] = None,
        probe: Optional[FakeProbe] = None,
        max_concurrent: int = 2,
    ) -> TranscodeService:
        return TranscodeService(
            publisher=RemotePublisher(drive or FakeDrive()),
            store=progress_store,
            runner=JobRunner(max_concurrent),
            encoder=encoder or ScriptedEncoder(),
            probe=probe or FakeProbe(),
            temp_dir=str(tmp_path),
        )

    return factory
