"""Tests for ffmpeg path resolution, checkpoint parsing and the subprocess encoder.

Subprocess tests use small shell scripts in place of ffmpeg.
"""

import sys

import pytest
from hypothesis import given, settings, strategies as st

from drivecast.modules.transcoding.ffmpeg import (
    MAX_DIAGNOSTIC_CHARS,
    EncoderError,
    FFmpegEncoder,
    check_binary,
    parse_checkpoint,
    parse_timestamp,
    resolve_binary_path,
)

from fakes import write_script

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs /bin/sh")


class TestCheckpointParsing:

    @given(
        hours=st.integers(min_value=0, max_value=99),
        minutes=st.integers(min_value=0, max_value=59),
        seconds=st.integers(min_value=0, max_value=59),
        centis=st.integers(min_value=0, max_value=99),
    )
    @settings(max_examples=100)
    def test_parses_hh_mm_ss(self, hours, minutes, seconds, centis):
        """For any HH:MM:SS.cc token, the parsed checkpoint SHALL equal the elapsed seconds."""
        line = f"frame=  120 fps=30 q=28.0 size=1024kB time={hours:02d}:{minutes:02d}:{seconds:02d}.{centis:02d} bitrate=1000kbits/s"
        expected = hours * 3600 + minutes * 60 + seconds + centis / 100
        assert parse_checkpoint(line) == pytest.approx(expected)

    @given(value=st.floats(min_value=0, max_value=100000, allow_nan=False, allow_infinity=False))
    @settings(max_examples=100)
    def test_parses_plain_seconds(self, value):
        token = f"{value:.2f}"
        assert parse_checkpoint(f"time={token}") == pytest.approx(float(token))

    def test_parses_mm_ss(self):
        assert parse_checkpoint("time=01:30.5") == pytest.approx(90.5)

    def test_ignores_unavailable_time(self):
        assert parse_checkpoint("frame=0 time=N/A bitrate=N/A") is None
        assert parse_checkpoint("Press [q] to stop") is None

    def test_rejects_malformed_timestamp(self):
        assert parse_timestamp("1:2:3:4") is None


class TestBinaryResolution:

    def test_override_used_when_file_exists(self, tmp_path):
        binary = tmp_path / "ffmpeg-custom"
        binary.write_text("")
        assert resolve_binary_path(str(binary), "ffmpeg") == str(binary)

    def test_missing_override_falls_back_to_name(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PATH", str(tmp_path))
        assert resolve_binary_path(str(tmp_path / "missing"), "ffmpeg-not-installed") == "ffmpeg-not-installed"

    @posix_only
    def test_path_lookup(self, tmp_path, monkeypatch):
        script = write_script(tmp_path, "fakeffmpeg", "exit 0\n")
        monkeypatch.setenv("PATH", str(tmp_path))
        assert resolve_binary_path(None, "fakeffmpeg") == script


@posix_only
class TestCheckBinary:

    @pytest.mark.asyncio
    async def test_runnable_binary(self, tmp_path):
        script = write_script(tmp_path, "ffmpeg", "echo 'ffmpeg version 6.1'\nexit 0\n")
        assert await check_binary(script, timeout=5)

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        assert not await check_binary(str(tmp_path / "nope"), timeout=5)

    @pytest.mark.asyncio
    async def test_hanging_binary_times_out(self, tmp_path):
        script = write_script(tmp_path, "ffmpeg", "exec sleep 10\n")
        assert not await check_binary(script, timeout=0.2)


@posix_only
class TestFFmpegEncoder:

    @pytest.mark.asyncio
    async def test_reports_checkpoints_and_succeeds(self, tmp_path):
        script = write_script(
            tmp_path,
            "ffmpeg",
            "printf 'Input #0\\nframe=1 time=00:00:01.50 bitrate=1k\\rframe=2 time=00:00:03.00 bitrate=1k\\r' >&2\n"
            "printf 'frame=3 time=N/A\\rframe=4 time=00:00:04.25' >&2\n"
            "exit 0\n",
        )
        seen = []

        async def on_checkpoint(seconds):
            seen.append(seconds)

        await FFmpegEncoder(script).run(["-i", "in.mp4", "out.mp4"], on_checkpoint)

        assert seen == pytest.approx([1.5, 3.0, 4.25])

    @pytest.mark.asyncio
    async def test_non_zero_exit_carries_bounded_excerpt(self, tmp_path):
        script = write_script(
            tmp_path,
            "ffmpeg",
            "i=0\nwhile [ $i -lt 500 ]; do echo 'padding line of diagnostic output' >&2; i=$((i+1)); done\n"
            "echo 'Conversion failed!' >&2\nexit 1\n",
        )

        async def on_checkpoint(seconds):
            pass

        with pytest.raises(EncoderError) as exc_info:
            await FFmpegEncoder(script).run([], on_checkpoint)

        error = exc_info.value
        assert "exited with code 1" in str(error)
        assert error.excerpt.endswith("Conversion failed!")
        assert len(error.excerpt) <= MAX_DIAGNOSTIC_CHARS

    @pytest.mark.asyncio
    async def test_spawn_failure_is_encoder_error(self, tmp_path):
        async def on_checkpoint(seconds):
            pass

        with pytest.raises(EncoderError):
            await FFmpegEncoder(str(tmp_path / "missing-ffmpeg")).run([], on_checkpoint)

    @pytest.mark.asyncio
    async def test_passes_arguments(self, tmp_path):
        log = tmp_path / "args.txt"
        script = write_script(tmp_path, "ffmpeg", f'echo "$@" > "{log}"\nexit 0\n')

        async def on_checkpoint(seconds):
            pass

        await FFmpegEncoder(script).run(["-y", "-i", "a.mp4", "b.mp4"], on_checkpoint)

        assert log.read_text().strip() == "-y -i a.mp4 b.mp4"
