from scene_assembler.schemas.progress import EncoderProgress, PipelineProgress, PipelineStage
from scene_assembler.schemas.video import (
    AnimationSettings,
    BackgroundMusicSettings,
    Scene,
    SubtitleSettings,
    SubtitleStyle,
    VideoSettings,
    default_video_settings,
)

__all__ = [
    "Scene",
    "VideoSettings",
    "AnimationSettings",
    "SubtitleSettings",
    "SubtitleStyle",
    "BackgroundMusicSettings",
    "default_video_settings",
    "EncoderProgress",
    "PipelineProgress",
    "PipelineStage",
]
