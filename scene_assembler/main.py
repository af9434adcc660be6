import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from scene_assembler.api import videos
from scene_assembler.config import get_settings
from scene_assembler.constants.error_codes import get_error_spec
from scene_assembler.exceptions import AssemblyError
from scene_assembler.logging_config import configure_logging
from scene_assembler.middleware.request_context import build_meta, create_request_context
from scene_assembler.render.ffmpeg import check_ffmpeg_available
from scene_assembler.schemas.envelope import EnvelopeResponse, ErrorInfo, ErrorLocation

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
)


def _error_response(status_code: int, error: ErrorInfo) -> JSONResponse:
    context = create_request_context()
    envelope = EnvelopeResponse(
        request_id=context.request_id,
        error=error,
        meta=build_meta(context),
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(envelope.model_dump(exclude_none=True)),
    )


@app.exception_handler(AssemblyError)
async def assembly_exception_handler(request: Request, exc: AssemblyError) -> JSONResponse:
    """Render pipeline failures as envelope errors."""
    logger.error(f"Assembly failed: {exc}")
    return _error_response(exc.status_code, exc.to_error_info())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors (422) with envelope format."""
    spec = get_error_spec("VALIDATION_ERROR")

    errors = exc.errors()
    location = None
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
        location = ErrorLocation(field=loc or None)
    else:
        message = "Request validation failed"

    error = ErrorInfo(
        code="VALIDATION_ERROR",
        message=message,
        location=location,
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(422, error)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    spec = get_error_spec("INTERNAL_ERROR")
    error = ErrorInfo(
        code="INTERNAL_ERROR",
        message="Internal server error",
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(500, error)


# Routers
app.include_router(videos.router, prefix="/api/videos", tags=["videos"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    ffmpeg_ok = await check_ffmpeg_available()
    return {
        "status": "healthy" if ffmpeg_ok else "degraded",
        "version": settings.app_version,
        "ffmpeg": "available" if ffmpeg_ok else "unavailable",
    }


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting {settings.app_name} {settings.app_version}")
    uvicorn.run(app, host="0.0.0.0", port=8000)
