"""Error codes dictionary for the assembly pipeline.

Single source of truth for error codes, their retryability and suggested
recovery actions. Used by exception handlers to build machine-readable error
responses.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_fix: str
    parameters: dict[str, Any]


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Input errors (not retryable until the request changes)
    # ==========================================================================
    "ASSET_ACQUISITION_FAILED": {
        "retryable": False,
        "suggested_fix": "Use an http(s) URL, a public path starting with '/', or a data: URL",
    },
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Fix the request body according to the error message",
    },
    "INVALID_SETTINGS": {
        "retryable": False,
        "suggested_fix": "Check resolution, frame rate, animation and transition values",
    },
    # ==========================================================================
    # Environment errors
    # ==========================================================================
    "ENCODER_UNAVAILABLE": {
        "retryable": False,
        "suggested_fix": "Install FFmpeg or set SCENE_ASSEMBLER_FFMPEG_PATH",
    },
    # ==========================================================================
    # Encoding errors (retryable with backoff)
    # ==========================================================================
    "SEGMENT_RENDER_FAILED": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    "CONCATENATION_FAILED": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    "ENCODER_TIMEOUT": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 5000, "max_retries": 1},
    },
    "ENCODER_FAILED": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    "EMPTY_OUTPUT": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    "MUSIC_MIX_FAILED": {
        "retryable": False,
        "suggested_fix": "The video was produced without background music",
    },
    # ==========================================================================
    # Run lifecycle
    # ==========================================================================
    "PIPELINE_CANCELLED": {
        "retryable": True,
    },
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested actions
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    spec = get_error_spec(code)
    return spec.get("retryable", False)
