"""Tests for assembly exceptions and error codes."""

from scene_assembler.constants.error_codes import ERROR_CODES, get_error_spec, is_retryable
from scene_assembler.exceptions import (
    AssemblyError,
    AssetAcquisitionError,
    ConcatenationError,
    EmptyOutputError,
    EncoderProcessError,
    EncoderTimeoutError,
    EncoderUnavailableError,
    MusicMixError,
    PipelineCancelledError,
    SegmentRenderError,
)


class TestAssemblyError:
    """Tests for the exception hierarchy."""

    def test_str_includes_stage(self):
        error = SegmentRenderError("Scene 2: boom", stage="segmenting", scene_index=1)
        assert str(error) == "[segmenting] Scene 2: boom"
        assert error.scene_index == 1

    def test_default_message(self):
        assert str(ConcatenationError()) == "Failed to concatenate segments"

    def test_codes_are_registered(self):
        for cls in (
            AssemblyError,
            AssetAcquisitionError,
            ConcatenationError,
            EmptyOutputError,
            EncoderProcessError,
            EncoderTimeoutError,
            EncoderUnavailableError,
            MusicMixError,
            PipelineCancelledError,
            SegmentRenderError,
        ):
            assert cls.code in ERROR_CODES

    def test_timeout_is_timeout_error(self):
        error = EncoderTimeoutError(12.5)
        assert isinstance(error, TimeoutError)
        assert isinstance(error, AssemblyError)
        assert "12.5s" in error.message
        assert error.status_code == 504

    def test_process_error_message(self):
        error = EncoderProcessError(returncode=183, stderr_tail="Invalid argument")
        assert error.returncode == 183
        assert "exited with code 183" in error.message
        assert "Invalid argument" in error.message

    def test_empty_output_path(self):
        assert EmptyOutputError("/tmp/x.mp4").path == "/tmp/x.mp4"

    def test_retryable(self):
        assert SegmentRenderError().retryable is True
        assert AssetAcquisitionError().retryable is False
        assert is_retryable("ENCODER_TIMEOUT") is True
        assert is_retryable("UNKNOWN_CODE") is False


class TestErrorInfo:
    """Tests for conversion to API error payloads."""

    def test_location_and_actions(self):
        info = SegmentRenderError("Scene 3: failed", stage="segmenting", scene_index=2).to_error_info()
        assert info.code == "SEGMENT_RENDER_FAILED"
        assert info.location.stage == "segmenting"
        assert info.location.scene_index == 2
        assert info.retryable is True
        assert info.suggested_actions[0].action == "retry_with_backoff"
        assert info.suggested_actions[0].parameters["max_retries"] == 2

    def test_no_location_without_context(self):
        info = EncoderUnavailableError().to_error_info()
        assert info.location is None
        assert info.suggested_fix == get_error_spec("ENCODER_UNAVAILABLE")["suggested_fix"]

    def test_explicit_suggested_fix_wins(self):
        info = AssetAcquisitionError("bad", suggested_fix="Upload the file first").to_error_info()
        assert info.suggested_fix == "Upload the file first"
