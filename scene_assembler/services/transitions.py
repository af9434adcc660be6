"""
Default transition merger: crossfades segments with FFmpeg ``xfade``.

xfade overlaps neighbouring clips, which would shorten the video by one
transition per cut. Each non-final segment is therefore extended by the
transition length with a frozen last frame (``tpad``), so the merged video is
exactly the sum of the scene durations and every crossfade starts at a scene
boundary. Audio is concatenated unchanged.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional

from scene_assembler.config import get_settings
from scene_assembler.exceptions import ConcatenationError
from scene_assembler.render.ffmpeg import FFmpegCommand
from scene_assembler.render.filters import format_number, make_filter
from scene_assembler.render.protocols import CommandExecutor, MediaProber, PercentCallback
from scene_assembler.schemas.progress import EncoderProgress
from scene_assembler.schemas.video import VideoSettings

logger = logging.getLogger(__name__)

XFADE_TRANSITIONS = {
    "fade": "fade",
    "slide": "slideleft",
    "zoom": "zoomin",
}


def effective_transition_duration(requested: float, durations: list[float]) -> float:
    """A crossfade may not take more than half of the shortest segment."""
    return min(requested, min(durations) / 2)


def build_transition_graph(
    durations: list[float],
    transition: str,
    transition_duration: float,
    fps: int,
) -> str:
    """filter_complex for N segments, producing ``[vout]`` and ``[aout]``."""
    count = len(durations)
    kind = XFADE_TRANSITIONS[transition]
    parts = []

    for i in range(count):
        filters = [
            make_filter("settb", "AVTB").render(),
            make_filter("fps", fps).render(),
            make_filter("format", "yuv420p").render(),
        ]
        if i < count - 1:
            filters.append(
                make_filter("tpad", stop_mode="clone", stop_duration=transition_duration).render()
            )
        parts.append(f"[{i}:v]{','.join(filters)}[v{i}]")

    previous = "v0"
    offset = 0.0
    for i in range(1, count):
        offset += durations[i - 1]
        label = "vout" if i == count - 1 else f"x{i}"
        xfade = make_filter(
            "xfade", transition=kind, duration=transition_duration, offset=format_number(offset)
        ).render()
        parts.append(f"[{previous}][v{i}]{xfade}[{label}]")
        previous = label

    audio_inputs = "".join(f"[{i}:a]" for i in range(count))
    parts.append(f"{audio_inputs}{make_filter('concat', n=count, v=0, a=1).render()}[aout]")
    return ";".join(parts)


class XfadeTransitionMerger:
    """``TransitionMerger`` that renders one xfade filter graph."""

    def __init__(
        self,
        executor: CommandExecutor,
        prober: MediaProber,
        timeout: Optional[float] = None,
    ):
        self.executor = executor
        self.prober = prober
        self.timeout = timeout if timeout is not None else get_settings().transition_timeout_s

    async def _durations(self, segment_paths: list[Path]) -> list[float]:
        durations = []
        for index, path in enumerate(segment_paths):
            probe = await self.prober.probe(str(path))
            if not probe.duration_seconds:
                raise ConcatenationError(
                    f"Could not determine duration of segment {index + 1}",
                    stage="concatenating",
                    scene_index=index,
                )
            durations.append(probe.duration_seconds)
        return durations

    async def merge_with_transitions(
        self,
        segment_paths: list[Path],
        settings: VideoSettings,
        output_path: Path,
        on_progress: Optional[PercentCallback] = None,
    ) -> None:
        if settings.transition not in XFADE_TRANSITIONS:
            raise ConcatenationError(f"Unsupported transition: {settings.transition}", stage="concatenating")

        if len(segment_paths) == 1:
            shutil.copyfile(segment_paths[0], output_path)
            if on_progress:
                on_progress(100, "Single segment, no transitions needed")
            return

        durations = await self._durations(segment_paths)
        transition_duration = effective_transition_duration(settings.transition_duration, durations)
        total = sum(durations)
        logger.info(
            f"[TRANSITION] {settings.transition} x{len(segment_paths) - 1}, "
            f"{transition_duration:.2f}s each, total {total:.2f}s"
        )

        crf, preset = settings.quality_profile
        command = FFmpegCommand(output_path=str(output_path))
        for path in segment_paths:
            command.add_input(path)
        command.filter_complex = build_transition_graph(
            durations, settings.transition, transition_duration, settings.frame_rate
        )
        command.maps = ["[vout]", "[aout]"]
        command.output_options = [
            "-c:v", "libx264",
            "-preset", preset,
            "-crf", str(crf),
            "-pix_fmt", "yuv420p",
            "-r", str(settings.frame_rate),
            "-c:a", "aac",
            "-avoid_negative_ts", "make_zero",
        ]

        def report(progress: EncoderProgress) -> None:
            if on_progress and progress.percent is not None:
                on_progress(progress.percent, f"Applying transitions ({progress.timemark})")

        await self.executor.run(command, timeout=self.timeout, on_progress=report, duration=total)
        if on_progress:
            on_progress(100, "Transitions applied")
