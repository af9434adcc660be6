"""Custom exceptions for the scene assembler.

Every failure carries the pipeline stage it happened in and, where it applies,
the zero-based index of the scene being processed. The HTTP layer turns them
into ``ErrorInfo`` envelopes through ``to_error_info``.
"""

from scene_assembler.constants.error_codes import get_error_spec
from scene_assembler.schemas.envelope import ErrorInfo, ErrorLocation, SuggestedAction


class AssemblyError(Exception):
    """Base exception for all assembly errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        stage: str | None = None,
        scene_index: int | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        self.stage = stage
        self.scene_index = scene_index
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def __str__(self) -> str:
        prefix = f"[{self.stage}] " if self.stage else ""
        return f"{prefix}{self.message}"

    @property
    def retryable(self) -> bool:
        return get_error_spec(self.code).get("retryable", False)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            suggested_actions.append(
                SuggestedAction(
                    action=spec["suggested_action"],
                    parameters=spec.get("parameters", {}),
                )
            )

        location = None
        if self.stage is not None or self.scene_index is not None:
            location = ErrorLocation(stage=self.stage, scene_index=self.scene_index)

        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=location,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
            suggested_actions=suggested_actions,
        )


# =============================================================================
# Input Errors (400)
# =============================================================================


class AssetAcquisitionError(AssemblyError):
    """A scene asset reference could not be read or is unsupported."""

    code = "ASSET_ACQUISITION_FAILED"
    status_code = 400
    message = "Failed to acquire asset"


class InvalidSettingsError(AssemblyError):
    """Settings failed validation."""

    code = "INVALID_SETTINGS"
    status_code = 400
    message = "Invalid video settings"


# =============================================================================
# Encoder Errors
# =============================================================================


class EncoderUnavailableError(AssemblyError):
    """The FFmpeg binary cannot be located or started."""

    code = "ENCODER_UNAVAILABLE"
    status_code = 503
    message = "FFmpeg is not available. Please install FFmpeg to generate videos."


class EncoderProcessError(AssemblyError):
    """FFmpeg exited with a non-zero status."""

    code = "ENCODER_FAILED"
    message = "FFmpeg process failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        returncode: int | None = None,
        stderr_tail: str = "",
        **kwargs,
    ):
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        if message is None and returncode is not None:
            message = f"FFmpeg process exited with code {returncode}"
            if stderr_tail:
                message += f"\nStderr: {stderr_tail}"
        super().__init__(message, **kwargs)


class EncoderTimeoutError(AssemblyError, TimeoutError):
    """An FFmpeg invocation exceeded its time budget and was killed."""

    code = "ENCODER_TIMEOUT"
    status_code = 504
    message = "FFmpeg process timed out"

    def __init__(self, timeout: float | None = None, **kwargs):
        self.timeout = timeout
        message = f"FFmpeg process timed out after {timeout}s" if timeout else None
        super().__init__(message, **kwargs)


class EmptyOutputError(AssemblyError):
    """FFmpeg reported success but the output file is missing or empty."""

    code = "EMPTY_OUTPUT"
    message = "Generated file is empty"

    def __init__(self, path: str | None = None, **kwargs):
        self.path = path
        message = f"Generated file is empty: {path}" if path else None
        super().__init__(message, **kwargs)


# =============================================================================
# Stage Errors
# =============================================================================


class SegmentRenderError(AssemblyError):
    """Rendering one scene into a segment failed."""

    code = "SEGMENT_RENDER_FAILED"
    message = "Failed to render segment"


class ConcatenationError(AssemblyError):
    """Segments could not be merged into the final video."""

    code = "CONCATENATION_FAILED"
    message = "Failed to concatenate segments"


class MusicMixError(AssemblyError):
    """Background music could not be applied. Never fatal to a run."""

    code = "MUSIC_MIX_FAILED"
    message = "Failed to add background music"


class PipelineCancelledError(AssemblyError):
    """The run was cancelled or exceeded the caller's timeout."""

    code = "PIPELINE_CANCELLED"
    status_code = 499
    message = "Video generation was cancelled"
