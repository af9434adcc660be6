"""
Segment concatenation.

Two paths:
- ``transition == "none"``: the concat demuxer reads a list file and the whole
  sequence is re-encoded once, normalising audio to stereo 44.1 kHz so segments
  with slightly different audio layouts still join cleanly
- otherwise the merge is delegated to a ``TransitionMerger``
"""

import logging
import os
from pathlib import Path
from typing import Optional

from scene_assembler.config import get_settings
from scene_assembler.exceptions import AssemblyError, ConcatenationError, EmptyOutputError
from scene_assembler.render.ffmpeg import FFmpegCommand
from scene_assembler.render.protocols import CommandExecutor, PercentCallback, TransitionMerger
from scene_assembler.schemas.progress import EncoderProgress
from scene_assembler.schemas.video import VideoSettings

logger = logging.getLogger(__name__)

CONCAT_LIST_NAME = "concat_list.txt"

# Run-level percent band the merge reports into by default
DEFAULT_PROGRESS_BAND = (75.0, 100.0)


def escape_concat_path(path: str) -> str:
    """Quote a path for a concat demuxer ``file '...'`` line."""
    return "'" + str(path).replace("'", "'\\''") + "'"


def write_concat_list(segment_paths: list[Path], list_path: Path) -> Path:
    lines = [f"file {escape_concat_path(os.path.abspath(p))}" for p in segment_paths]
    list_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return list_path


def validate_segments(segment_paths: list[Path]) -> None:
    """Every segment must exist and be non-empty.

    Raises:
        ConcatenationError: Naming the 1-based scene of the first bad segment
    """
    if not segment_paths:
        raise ConcatenationError("No segments to concatenate", stage="concatenating")

    for index, path in enumerate(segment_paths):
        if not os.path.exists(path):
            raise ConcatenationError(
                f"Segment file missing for scene {index + 1}: {path}",
                stage="concatenating",
                scene_index=index,
            )
        if os.path.getsize(path) == 0:
            raise ConcatenationError(
                f"Segment file is empty for scene {index + 1}: {path}",
                stage="concatenating",
                scene_index=index,
            )


class ConcatenationEngine:
    """Merges ordered segments into one video."""

    def __init__(
        self,
        executor: CommandExecutor,
        transition_merger: Optional[TransitionMerger] = None,
        timeout: Optional[float] = None,
    ):
        app_settings = get_settings()
        self.executor = executor
        self.transition_merger = transition_merger
        self.timeout = timeout if timeout is not None else app_settings.concat_timeout_s
        self.audio_sample_rate = app_settings.concat_audio_sample_rate
        self.audio_channels = app_settings.concat_audio_channels
        self.encoder_threads = app_settings.encoder_threads

    def build_command(self, list_path: Path, output_path: Path) -> FFmpegCommand:
        command = FFmpegCommand(output_path=str(output_path))
        command.add_input(list_path, "-f", "concat", "-safe", "0")
        command.output_options = [
            "-c:v", "libx264",
            "-c:a", "aac",
            "-preset", "fast",
            "-crf", "23",
            "-ac", str(self.audio_channels),
            "-ar", str(self.audio_sample_rate),
            "-avoid_negative_ts", "make_zero",
            "-fflags", "+genpts",
            "-threads", str(self.encoder_threads),
        ]
        return command

    async def concatenate(
        self,
        segment_paths: list[Path],
        output_path: Path,
        settings: VideoSettings,
        on_progress: Optional[PercentCallback] = None,
        expected_duration: Optional[float] = None,
        progress_band: tuple[float, float] = DEFAULT_PROGRESS_BAND,
    ) -> Path:
        """Merge segments in order into ``output_path``.

        Args:
            segment_paths: Segment files in scene order
            output_path: Where to write the merged video
            settings: Run settings (selects direct concat vs transitions)
            on_progress: Receives run-level percent and a message
            expected_duration: Sum of scene durations, for encoder percent
            progress_band: Run-level (start, end) percent the merge maps into

        Returns:
            Path to the non-empty merged video

        Raises:
            ConcatenationError: If a segment is missing/empty or merging fails
        """
        validate_segments(segment_paths)
        output_path = Path(output_path)
        band_start, band_end = progress_band

        def report(percent: float, message: str) -> None:
            if on_progress:
                on_progress(band_start + percent * (band_end - band_start) / 100, message)

        if settings.transitions_enabled and self.transition_merger is not None:
            await self._merge_with_transitions(segment_paths, output_path, settings, report)
        else:
            if settings.transitions_enabled:
                logger.warning("[CONCAT] No transition merger configured, using direct concatenation")
            await self._concat_direct(segment_paths, output_path, report, expected_duration)

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise ConcatenationError(
                f"Final video is empty: {output_path}",
                stage="concatenating",
            )
        logger.info(f"[CONCAT] Final video written: {output_path}")
        return output_path

    async def _concat_direct(
        self,
        segment_paths: list[Path],
        output_path: Path,
        on_progress: PercentCallback,
        expected_duration: Optional[float],
    ) -> None:
        list_path = output_path.parent / CONCAT_LIST_NAME
        logger.info(f"[CONCAT] Concatenating {len(segment_paths)} segments directly")

        def report(progress: EncoderProgress) -> None:
            if progress.percent is not None:
                on_progress(progress.percent, f"Concatenating ({progress.timemark})")

        try:
            write_concat_list(segment_paths, list_path)
            await self.executor.run(
                self.build_command(list_path, output_path),
                timeout=self.timeout,
                on_progress=report,
                duration=expected_duration,
            )
        except EmptyOutputError as e:
            raise ConcatenationError(f"Concatenated video is empty: {output_path}", stage="concatenating") from e
        except (AssemblyError, OSError) as e:
            raise ConcatenationError(f"Video concatenation failed: {e}", stage="concatenating") from e
        finally:
            try:
                list_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"[CONCAT] Failed to remove concat list: {e}")

    async def _merge_with_transitions(
        self,
        segment_paths: list[Path],
        output_path: Path,
        settings: VideoSettings,
        on_progress: PercentCallback,
    ) -> None:
        logger.info(
            f"[CONCAT] Merging {len(segment_paths)} segments with "
            f"{settings.transition} transitions ({settings.transition_duration}s)"
        )

        try:
            await self.transition_merger.merge_with_transitions(
                segment_paths, settings, output_path, on_progress
            )
        except ConcatenationError:
            raise
        except (AssemblyError, OSError, RuntimeError) as e:
            raise ConcatenationError(f"Transition merge failed: {e}", stage="concatenating") from e
