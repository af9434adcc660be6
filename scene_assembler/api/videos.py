"""Video assembly API endpoints - synchronous generation."""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from scene_assembler.config import get_settings
from scene_assembler.middleware.request_context import build_meta, create_request_context
from scene_assembler.render.animations import available_animations
from scene_assembler.render.pipeline import VideoAssemblyPipeline
from scene_assembler.schemas.envelope import EnvelopeResponse
from scene_assembler.schemas.video import (
    AnimationInfo,
    GenerateVideoRequest,
    GenerateVideoResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def get_pipeline() -> VideoAssemblyPipeline:
    return VideoAssemblyPipeline()


@router.post("/generate", response_model=EnvelopeResponse)
async def generate_video(
    request: GenerateVideoRequest,
    pipeline: VideoAssemblyPipeline = Depends(get_pipeline),
) -> EnvelopeResponse:
    """
    Assemble a video from scenes.

    Renders the video directly and returns when complete. Failures are
    raised as AssemblyError and rendered by the app's exception handler.
    """
    context = create_request_context()
    settings = get_settings()

    run_id = context.request_id.replace("-", "")
    stem = request.output_name or run_id
    output_path = Path(settings.output_dir) / f"{stem}.{request.settings.format}"

    logger.info(f"[API] Generating video {stem} with {len(request.scenes)} scenes")
    result = await pipeline.generate(
        request.scenes,
        request.settings,
        output_path,
        run_id=run_id,
    )
    context.warnings.extend(result.warnings)

    data = GenerateVideoResponse(**result.to_dict())
    return EnvelopeResponse(
        request_id=context.request_id,
        data=jsonable_encoder(data),
        meta=build_meta(context),
    )


@router.get("/animations", response_model=EnvelopeResponse)
async def list_animations() -> EnvelopeResponse:
    """List available animation types with descriptions."""
    context = create_request_context()
    data = [AnimationInfo(**item) for item in available_animations()]
    return EnvelopeResponse(
        request_id=context.request_id,
        data=jsonable_encoder(data),
        meta=build_meta(context),
    )
