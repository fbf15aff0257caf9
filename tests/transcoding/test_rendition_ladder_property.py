"""Property-based tests for the rendition ladder and upload classification."""

from hypothesis import given, settings, strategies as st

from drivecast.modules.transcoding.ffmpeg import build_rendition_command, build_scale_filter
from drivecast.modules.transcoding.models import (
    RENDITION_LADDER,
    VIDEO_EXTENSIONS,
    JobStatus,
    base_name,
    is_video,
    wants_encode,
)


name_strategy = st.text(
    min_size=1,
    max_size=40,
    alphabet=st.characters(whitelist_categories=("L", "N"), whitelist_characters="-_ "),
)
rendition_strategy = st.sampled_from(RENDITION_LADDER)


class TestRenditionLadder:

    def test_ladder_is_fixed_and_descending(self):
        assert [(t.width, t.height) for t in RENDITION_LADDER] == [
            (1920, 1080),
            (1280, 720),
            (854, 480),
            (640, 360),
        ]
        assert [t.label for t in RENDITION_LADDER] == ["1080p", "720p", "480p", "360p"]

    @given(stem=name_strategy, target=rendition_strategy)
    @settings(max_examples=100)
    def test_output_name_pattern(self, stem, target):
        """For any base name, rendition output SHALL be named <base>_<height>p.mp4."""
        assert target.output_name(stem) == f"{stem}_{target.height}p.mp4"

    @given(target=rendition_strategy)
    @settings(max_examples=100)
    def test_command_letterboxes_to_exact_size(self, target):
        """For any rendition, the filter SHALL scale within and pad to the exact target size."""
        args = build_rendition_command("in.mp4", "out.mp4", target)
        vf = args[args.index("-vf") + 1]

        assert vf == build_scale_filter(target)
        assert vf.startswith(f"scale={target.width}:{target.height}:force_original_aspect_ratio=decrease,")
        assert f"pad={target.width}:{target.height}:(ow-iw)/2:(oh-ih)/2:black" in vf
        assert args[args.index("-movflags") + 1] == "+faststart"
        assert args[args.index("-crf") + 1] == "23"
        assert args[args.index("-b:a") + 1] == "128k"
        assert args[0] == "-y"
        assert args[-1] == "out.mp4"


class TestClassification:

    @given(stem=name_strategy, ext=st.sampled_from(sorted(VIDEO_EXTENSIONS)))
    @settings(max_examples=100)
    def test_video_extension_is_video(self, stem, ext):
        assert is_video(f"{stem}{ext.upper()}", "application/octet-stream")
        assert is_video(f"{stem}{ext}", None)

    @given(subtype=st.sampled_from(["mp4", "webm", "quicktime", "x-matroska"]))
    @settings(max_examples=20)
    def test_video_content_type_is_video(self, subtype):
        assert is_video("upload.bin", f"video/{subtype}")

    def test_non_video(self):
        assert not is_video("notes.txt", "text/plain")
        assert not is_video("archive", None)
        assert not is_video(None, None)

    @given(value=st.sampled_from(["0", "false", "no", "FALSE", " No "]))
    @settings(max_examples=20)
    def test_encode_declined(self, value):
        assert not wants_encode(value)

    @given(value=st.sampled_from(["1", "true", "yes", "on", "anything"]))
    @settings(max_examples=20)
    def test_encode_enabled(self, value):
        assert wants_encode(value)

    def test_encode_defaults_to_enabled(self):
        assert wants_encode(None)

    def test_base_name(self):
        assert base_name("clip.mp4") == "clip"
        assert base_name("my.holiday.mov") == "my.holiday"
        assert base_name("noext") == "noext"

    def test_terminal_statuses(self):
        assert {s for s in JobStatus if s.is_terminal} == {JobStatus.DONE, JobStatus.ERROR}
