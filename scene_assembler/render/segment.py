"""
Per-scene segment rendering.

A segment is one still image looped for exactly the scene duration, with the
narration padded with silence to the same length. The video filter order is
load-bearing:

1. scale + pad to the output frame (letterbox, never crop the source)
2. camera motion, computed against the full scene duration
3. burned-in subtitles, drawn last so they stay fixed while the image moves
"""

import logging
import os
from pathlib import Path
from typing import Optional

from scene_assembler.config import get_settings
from scene_assembler.exceptions import EmptyOutputError, SegmentRenderError
from scene_assembler.render.animations import build_animation_chain
from scene_assembler.render.ffmpeg import EncoderProgressCallback, FFmpegCommand
from scene_assembler.render.filters import FilterChain, make_filter
from scene_assembler.render.protocols import CommandExecutor, SubtitleFilterGenerator
from scene_assembler.schemas.video import VideoSettings

logger = logging.getLogger(__name__)

AUDIO_BITRATE = "192k"


def build_base_filter(width: int, height: int) -> FilterChain:
    """Fit the image inside the frame and pad the rest with black."""
    return FilterChain([
        make_filter("scale", width, height, force_original_aspect_ratio="decrease"),
        make_filter("pad", width, height, "(ow-iw)/2", "(oh-ih)/2"),
    ])


class SegmentAssembler:
    """Renders one scene (image + narration) into a self-contained segment file."""

    def __init__(
        self,
        executor: CommandExecutor,
        subtitle_generator: Optional[SubtitleFilterGenerator] = None,
        timeout: Optional[float] = None,
    ):
        app_settings = get_settings()
        self.executor = executor
        self.subtitle_generator = subtitle_generator
        self.timeout = timeout if timeout is not None else app_settings.segment_timeout_s
        self.encoder_threads = app_settings.encoder_threads
        self.audio_sample_rate = app_settings.concat_audio_sample_rate
        self.audio_channels = app_settings.concat_audio_channels

    def build_video_filters(
        self,
        duration: float,
        narration: Optional[str],
        settings: VideoSettings,
        scene_index: int,
    ) -> FilterChain:
        width, height = settings.dimensions
        chain = build_base_filter(width, height)

        if settings.animation.type != "none":
            chain.append(
                build_animation_chain(
                    settings.animation.type,
                    settings.animation.intensity,
                    duration,
                    width,
                    height,
                    settings.frame_rate,
                )
            )

        subtitles = settings.subtitles
        if subtitles.enabled and narration and narration.strip() and self.subtitle_generator:
            fragment = self.subtitle_generator.generate_filter(
                narration,
                subtitles,
                width,
                height,
                duration,
                scene_index,
                settings.transitions_enabled,
                settings.transition_duration,
                settings.orientation,
            )
            if fragment:
                chain.append(fragment)
                logger.info(f"[SEGMENT] Scene {scene_index + 1}: subtitles added")

        return chain

    def build_command(
        self,
        image_path: Path,
        audio_path: Path,
        duration: float,
        narration: Optional[str],
        settings: VideoSettings,
        scene_index: int,
        output_path: Path,
    ) -> FFmpegCommand:
        crf, preset = settings.quality_profile
        command = FFmpegCommand(output_path=str(output_path))
        command.add_input(image_path, "-loop", "1", "-framerate", str(settings.frame_rate))
        command.add_input(audio_path)
        command.video_filters = self.build_video_filters(duration, narration, settings, scene_index)
        # Narration shorter than the scene is padded with silence, never the reverse
        command.audio_filters = FilterChain([make_filter("apad", whole_dur=duration)])
        command.maps = ["0:v:0", "1:a:0"]
        command.output_options = [
            "-c:v", "libx264",
            "-preset", preset,
            "-crf", str(crf),
            "-pix_fmt", "yuv420p",
            "-r", str(settings.frame_rate),
            "-c:a", "aac",
            "-b:a", AUDIO_BITRATE,
            "-ar", str(self.audio_sample_rate),
            "-ac", str(self.audio_channels),
            "-t", str(duration),
            "-avoid_negative_ts", "make_zero",
            "-fflags", "+genpts",
            "-threads", str(self.encoder_threads),
        ]
        return command

    async def create_segment(
        self,
        image_path: Path,
        audio_path: Path,
        duration: float,
        narration: Optional[str],
        settings: VideoSettings,
        scene_index: int,
        output_path: Path,
        on_progress: Optional[EncoderProgressCallback] = None,
    ) -> Path:
        """Render one scene to ``output_path``.

        Args:
            image_path: Still image for the scene
            audio_path: Narration audio
            duration: Authoritative scene duration in seconds
            narration: Subtitle text (optional)
            settings: Run settings
            scene_index: Zero-based scene position
            output_path: Segment file to write

        Returns:
            Path to the rendered, non-empty segment

        Raises:
            SegmentRenderError: On any failure, naming the scene
        """
        scene_no = scene_index + 1
        for label, path in (("image", image_path), ("audio", audio_path)):
            if not os.path.exists(path):
                raise SegmentRenderError(
                    f"Scene {scene_no}: {label} file not found: {path}",
                    stage="segmenting",
                    scene_index=scene_index,
                )

        logger.info(
            f"[SEGMENT] Creating segment {scene_no}: duration={duration}s, "
            f"animation={settings.animation.type}"
        )

        try:
            command = self.build_command(
                image_path, audio_path, duration, narration, settings, scene_index, output_path
            )
            result = await self.executor.run(
                command,
                timeout=self.timeout,
                on_progress=on_progress,
                duration=duration,
            )
        except EmptyOutputError as e:
            raise SegmentRenderError(
                f"Scene {scene_no}: generated segment is empty",
                stage="segmenting",
                scene_index=scene_index,
            ) from e
        except Exception as e:
            logger.error(f"[SEGMENT] Segment {scene_no} failed: {e}")
            raise SegmentRenderError(
                f"Scene {scene_no}: {e}",
                stage="segmenting",
                scene_index=scene_index,
            ) from e

        logger.info(f"[SEGMENT] Segment {scene_no} created: {result}")
        return Path(result)
