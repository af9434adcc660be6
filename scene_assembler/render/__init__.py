from scene_assembler.render.animations import (
    available_animations,
    generate_animation_filter,
    validate_animation_settings,
)
from scene_assembler.render.concat import ConcatenationEngine
from scene_assembler.render.ffmpeg import FFmpegCommand, FFmpegRunner, check_ffmpeg_available
from scene_assembler.render.music import BackgroundMusicMixer
from scene_assembler.render.pipeline import PipelineResult, VideoAssemblyPipeline
from scene_assembler.render.segment import SegmentAssembler

__all__ = [
    "VideoAssemblyPipeline",
    "PipelineResult",
    "SegmentAssembler",
    "ConcatenationEngine",
    "BackgroundMusicMixer",
    "FFmpegCommand",
    "FFmpegRunner",
    "check_ffmpeg_available",
    "generate_animation_filter",
    "validate_animation_settings",
    "available_animations",
]
