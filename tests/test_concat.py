"""Tests for segment concatenation."""

import os
from pathlib import Path

import pytest

from scene_assembler.exceptions import ConcatenationError, EncoderProcessError
from scene_assembler.render.concat import (
    CONCAT_LIST_NAME,
    ConcatenationEngine,
    escape_concat_path,
    validate_segments,
    write_concat_list,
)
from scene_assembler.schemas.video import VideoSettings


class RecordingMerger:
    """TransitionMerger that copies the first segment and reports progress."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    async def merge_with_transitions(self, segment_paths, settings, output_path, on_progress=None):
        self.calls.append((list(segment_paths), settings.transition))
        if self.error is not None:
            raise self.error
        if on_progress:
            on_progress(0, "start")
            on_progress(50, "half")
            on_progress(100, "done")
        Path(output_path).write_bytes(b"merged")


class TestConcatList:
    """Tests for the concat demuxer list file."""

    def test_escape_single_quotes(self):
        assert escape_concat_path("/tmp/it's.mp4") == "'/tmp/it'\\''s.mp4'"

    def test_list_uses_absolute_paths(self, make_segments, temp_output_dir):
        segments = make_segments(2)
        list_path = write_concat_list(segments, temp_output_dir / "list.txt")
        lines = list_path.read_text().splitlines()
        assert lines == [f"file '{os.path.abspath(p)}'" for p in segments]


class TestValidateSegments:
    """Tests for pre-merge segment checks."""

    def test_no_segments(self):
        with pytest.raises(ConcatenationError, match="No segments"):
            validate_segments([])

    def test_missing_segment_names_scene(self, make_segments, temp_output_dir):
        segments = make_segments(2) + [temp_output_dir / "segment_002.mp4"]
        with pytest.raises(ConcatenationError) as exc_info:
            validate_segments(segments)
        assert exc_info.value.scene_index == 2
        assert "scene 3" in exc_info.value.message

    def test_empty_segment_names_scene(self, make_segments):
        with pytest.raises(ConcatenationError) as exc_info:
            validate_segments(make_segments(3, empty={1}))
        assert exc_info.value.scene_index == 1
        assert "empty for scene 2" in exc_info.value.message


class TestDirectConcat:
    """Tests for concatenation without transitions."""

    @pytest.mark.asyncio
    async def test_concatenates_and_removes_list(self, fake_executor, make_segments, temp_output_dir):
        engine = ConcatenationEngine(fake_executor, timeout=30)
        output = temp_output_dir / "concatenated.mp4"

        result = await engine.concatenate(make_segments(3), output, VideoSettings(), expected_duration=15)

        assert result == output
        assert output.stat().st_size > 0
        assert not (temp_output_dir / CONCAT_LIST_NAME).exists()
        args = fake_executor.commands[0].build_args()
        assert args[args.index("-f") + 1] == "concat"
        assert args[args.index("-safe") + 1] == "0"
        assert args[args.index("-ac") + 1] == "2"
        assert args[args.index("-ar") + 1] == "44100"

    @pytest.mark.asyncio
    async def test_progress_maps_into_band(self, fake_executor, make_segments, temp_output_dir):
        engine = ConcatenationEngine(fake_executor, timeout=30)
        events = []

        await engine.concatenate(
            make_segments(2),
            temp_output_dir / "out.mp4",
            VideoSettings(),
            on_progress=lambda percent, message: events.append(percent),
            expected_duration=10,
            progress_band=(75.0, 85.0),
        )
        assert events == [pytest.approx(80.0)]

    @pytest.mark.asyncio
    async def test_failure_wraps_and_removes_list(self, fake_executor, make_segments, temp_output_dir):
        fake_executor.fail_when = lambda command: EncoderProcessError(returncode=1)
        engine = ConcatenationEngine(fake_executor, timeout=30)

        with pytest.raises(ConcatenationError) as exc_info:
            await engine.concatenate(make_segments(2), temp_output_dir / "out.mp4", VideoSettings())

        assert exc_info.value.stage == "concatenating"
        assert not (temp_output_dir / CONCAT_LIST_NAME).exists()

    @pytest.mark.asyncio
    async def test_bad_segment_fails_before_encoding(self, fake_executor, make_segments, temp_output_dir):
        engine = ConcatenationEngine(fake_executor, timeout=30)

        with pytest.raises(ConcatenationError):
            await engine.concatenate(
                make_segments(3, empty={0}), temp_output_dir / "out.mp4", VideoSettings()
            )
        assert fake_executor.commands == []


class TestTransitionConcat:
    """Tests for delegation to the transition merger."""

    @pytest.mark.asyncio
    async def test_delegates_when_transition_set(self, fake_executor, make_segments, temp_output_dir):
        merger = RecordingMerger()
        engine = ConcatenationEngine(fake_executor, transition_merger=merger, timeout=30)
        events = []

        await engine.concatenate(
            make_segments(3),
            temp_output_dir / "out.mp4",
            VideoSettings(transition="fade"),
            on_progress=lambda percent, message: events.append(percent),
        )

        assert fake_executor.commands == []
        assert merger.calls[0][1] == "fade"
        assert events == [pytest.approx(75.0), pytest.approx(87.5), pytest.approx(100.0)]

    @pytest.mark.asyncio
    async def test_none_transition_uses_direct_path(self, fake_executor, make_segments, temp_output_dir):
        merger = RecordingMerger()
        engine = ConcatenationEngine(fake_executor, transition_merger=merger, timeout=30)

        await engine.concatenate(make_segments(2), temp_output_dir / "out.mp4", VideoSettings())

        assert merger.calls == []
        assert len(fake_executor.commands) == 1

    @pytest.mark.asyncio
    async def test_merger_failure_is_concatenation_error(self, fake_executor, make_segments, temp_output_dir):
        merger = RecordingMerger(error=EncoderProcessError(returncode=1))
        engine = ConcatenationEngine(fake_executor, transition_merger=merger, timeout=30)

        with pytest.raises(ConcatenationError, match="Transition merge failed"):
            await engine.concatenate(
                make_segments(2), temp_output_dir / "out.mp4", VideoSettings(transition="slide")
            )
