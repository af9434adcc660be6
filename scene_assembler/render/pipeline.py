"""
Video assembly pipeline.

This module orchestrates one run end to end:
1. Materialise scene assets into a private workspace
2. Render one segment per scene (image + narration, motion, subtitles)
3. Concatenate segments (directly or with transitions)
4. Optionally mix background music (failures fall back to the unmixed video)
5. Move the result to the caller's path

Runs are isolated: each owns ``<temp_root>/<run_id>`` and removes it when done,
whether the run succeeded, failed, timed out or was cancelled.
"""

import asyncio
import logging
import shutil
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from scene_assembler.config import get_settings
from scene_assembler.exceptions import (
    AssemblyError,
    EncoderUnavailableError,
    InvalidSettingsError,
    MusicMixError,
    PipelineCancelledError,
)
from scene_assembler.render.animations import validate_animation_settings
from scene_assembler.render.concat import ConcatenationEngine
from scene_assembler.render.ffmpeg import FFmpegCommand, FFmpegRunner
from scene_assembler.render.music import BackgroundMusicMixer
from scene_assembler.render.protocols import (
    CommandExecutor,
    MediaProber,
    SubtitleFilterGenerator,
    TransitionMerger,
)
from scene_assembler.render.segment import SegmentAssembler
from scene_assembler.schemas.progress import EncoderProgress, PipelineProgress, PipelineStage
from scene_assembler.schemas.video import Scene, VideoSettings
from scene_assembler.services.asset_fetcher import AssetFetcher
from scene_assembler.services.debug_store import DebugSegmentStore, default_debug_store
from scene_assembler.services.subtitles import DrawTextSubtitleGenerator
from scene_assembler.services.transitions import XfadeTransitionMerger
from scene_assembler.utils.media_info import FFprobeProber

logger = logging.getLogger(__name__)

PipelineProgressCallback = Callable[[PipelineProgress], None]

# Run-level progress bands
DOWNLOAD_END = 25.0
SEGMENT_START = 25.0
SEGMENT_SPAN = 50.0
CONCAT_START = 75.0
MUSIC_START = 85.0
MUSIC_END = 95.0
FINALIZE_START = 95.0

CONCATENATED_NAME = "concatenated.mp4"
WITH_MUSIC_NAME = "with_music.mp4"
WEBM_NAME = "final.webm"

_ALLOWED_TRANSITIONS: dict[PipelineStage, set[PipelineStage]] = {
    PipelineStage.INIT: {PipelineStage.DOWNLOADING},
    PipelineStage.DOWNLOADING: {PipelineStage.SEGMENTING},
    PipelineStage.SEGMENTING: {PipelineStage.CONCATENATING},
    PipelineStage.CONCATENATING: {PipelineStage.MIXING_MUSIC, PipelineStage.FINALIZING},
    PipelineStage.MIXING_MUSIC: {PipelineStage.FINALIZING},
    PipelineStage.FINALIZING: {PipelineStage.COMPLETED},
    PipelineStage.COMPLETED: set(),
    PipelineStage.FAILED: set(),
}


def can_transition(current: PipelineStage, target: PipelineStage) -> bool:
    """FAILED is reachable from every non-terminal state."""
    if target == PipelineStage.FAILED:
        return current not in (PipelineStage.COMPLETED, PipelineStage.FAILED)
    return target in _ALLOWED_TRANSITIONS[current]


# ============================================================================
# Dataclasses
# ============================================================================


@dataclass
class PipelineRun:
    """State of one assembly run."""

    run_id: str
    scenes: list[Scene]
    settings: VideoSettings
    workspace: Path
    on_progress: Optional[PipelineProgressCallback] = None
    stage: PipelineStage = PipelineStage.INIT
    percent: float = 0.0
    segment_paths: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def total_scenes(self) -> int:
        return len(self.scenes)

    @property
    def total_duration(self) -> float:
        return sum(scene.duration for scene in self.scenes)

    def transition(self, target: PipelineStage) -> None:
        if not can_transition(self.stage, target):
            raise RuntimeError(f"Illegal pipeline transition {self.stage.value} -> {target.value}")
        logger.info(f"[PIPELINE] {self.run_id}: {self.stage.value} -> {target.value}")
        self.stage = target

    def report(
        self,
        percent: float,
        message: str,
        current_scene: Optional[int] = None,
        encoder_progress: Optional[EncoderProgress] = None,
    ) -> None:
        # Progress never moves backwards within a run
        self.percent = max(self.percent, min(100.0, max(0.0, percent)))
        if self.on_progress is None:
            return
        self.on_progress(
            PipelineProgress(
                stage=self.stage,
                current_scene=current_scene,
                total_scenes=self.total_scenes,
                percent=round(self.percent, 2),
                message=message,
                encoder_progress=encoder_progress,
            )
        )


@dataclass
class PipelineResult:
    """Outcome of a successful run."""

    run_id: str
    output_path: Path
    duration_seconds: float
    segment_count: int
    debug_segments: list[Path] = field(default_factory=list)
    music_applied: bool = False
    elapsed_seconds: float = 0.0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "run_id": self.run_id,
            "output_path": str(self.output_path),
            "duration_seconds": self.duration_seconds,
            "segment_count": self.segment_count,
            "debug_segments": [str(p) for p in self.debug_segments],
            "music_applied": self.music_applied,
            "elapsed_seconds": self.elapsed_seconds,
            "warnings": self.warnings,
        }


# ============================================================================
# Pipeline
# ============================================================================


class VideoAssemblyPipeline:
    """Turns ordered scenes plus settings into one video file."""

    def __init__(
        self,
        executor: Optional[CommandExecutor] = None,
        prober: Optional[MediaProber] = None,
        asset_fetcher: Optional[AssetFetcher] = None,
        subtitle_generator: Optional[SubtitleFilterGenerator] = None,
        transition_merger: Optional[TransitionMerger] = None,
        music_mixer: Optional[BackgroundMusicMixer] = None,
        debug_store: Optional[DebugSegmentStore] = None,
        temp_root: Optional[str] = None,
    ):
        app_settings = get_settings()
        self.executor = executor or FFmpegRunner()
        self.prober = prober or FFprobeProber()
        self.asset_fetcher = asset_fetcher or AssetFetcher()
        self.segment_assembler = SegmentAssembler(
            self.executor, subtitle_generator or DrawTextSubtitleGenerator()
        )
        self.concat_engine = ConcatenationEngine(
            self.executor, transition_merger or XfadeTransitionMerger(self.executor, self.prober)
        )
        self.music_mixer = music_mixer or BackgroundMusicMixer(self.executor, self.prober)
        self.debug_store = debug_store if debug_store is not None else default_debug_store()
        self.temp_root = Path(temp_root or app_settings.temp_root)
        self.default_timeout = app_settings.pipeline_timeout_s

    async def generate(
        self,
        scenes: list[Scene],
        settings: VideoSettings,
        output_path: Path,
        *,
        run_id: Optional[str] = None,
        on_progress: Optional[PipelineProgressCallback] = None,
        timeout: Optional[float] = None,
    ) -> PipelineResult:
        """Assemble ``scenes`` into ``output_path``.

        Args:
            scenes: Scenes in playback order
            settings: Immutable run settings
            output_path: Where the final video is written
            run_id: Workspace key (generated when omitted)
            on_progress: Receives structured progress events
            timeout: Overall run budget in seconds (defaults to config)

        Returns:
            PipelineResult for the finished video

        Raises:
            InvalidSettingsError: If scenes or settings are unusable
            EncoderUnavailableError: If FFmpeg cannot be run
            PipelineCancelledError: If the run timed out
            AssemblyError: For any stage failure, annotated with stage and scene
            asyncio.CancelledError: If the calling task was cancelled
        """
        if not scenes:
            raise InvalidSettingsError("At least one scene is required", stage=PipelineStage.INIT.value)
        if not validate_animation_settings(settings.animation.type, settings.animation.intensity):
            raise InvalidSettingsError(
                f"Invalid animation settings: {settings.animation.type}/{settings.animation.intensity}",
                stage=PipelineStage.INIT.value,
            )
        if not await self.executor.is_available():
            raise EncoderUnavailableError(stage=PipelineStage.INIT.value)

        run_id = run_id or uuid.uuid4().hex
        workspace = self.temp_root / run_id
        try:
            workspace.mkdir(parents=True, exist_ok=False)
        except FileExistsError:
            raise InvalidSettingsError(f"Run id already in use: {run_id}", stage=PipelineStage.INIT.value) from None

        run = PipelineRun(
            run_id=run_id,
            scenes=list(scenes),
            settings=settings,
            workspace=workspace,
            on_progress=on_progress,
        )
        output_path = Path(output_path)
        timeout = timeout if timeout is not None else self.default_timeout

        logger.info(
            f"[PIPELINE] Starting run {run_id}: {run.total_scenes} scenes, "
            f"{run.total_duration:.2f}s, {settings.resolution} {settings.orientation}, "
            f"animation={settings.animation.type}, transition={settings.transition}, "
            f"music={settings.background_music.enabled}"
        )

        try:
            return await asyncio.wait_for(self._execute(run, output_path), timeout=timeout)
        except AssemblyError as e:
            failed_stage = self._fail(run, output_path, str(e))
            if e.stage is None:
                e.stage = failed_stage.value
            raise
        except asyncio.TimeoutError:
            failed_stage = self._fail(run, output_path, f"timed out after {timeout}s")
            raise PipelineCancelledError(
                f"Video generation timed out after {timeout}s",
                stage=failed_stage.value,
            ) from None
        except asyncio.CancelledError:
            self._fail(run, output_path, "cancelled")
            raise
        except Exception as e:
            failed_stage = self._fail(run, output_path, str(e))
            raise AssemblyError(f"Unexpected error: {e}", stage=failed_stage.value) from e
        finally:
            self._remove_workspace(workspace)

    def _fail(self, run: PipelineRun, output_path: Path, reason: str) -> PipelineStage:
        failed_stage = run.stage
        logger.error(f"[PIPELINE] Run {run.run_id} failed during {failed_stage.value}: {reason}")
        if can_transition(run.stage, PipelineStage.FAILED):
            run.transition(PipelineStage.FAILED)
        # Never leave a partial file at the caller's path
        if failed_stage in (PipelineStage.FINALIZING, PipelineStage.COMPLETED):
            try:
                output_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"[PIPELINE] Could not remove partial output {output_path}: {e}")
        return failed_stage

    def _remove_workspace(self, workspace: Path) -> None:
        try:
            shutil.rmtree(workspace)
            logger.info(f"[PIPELINE] Workspace removed: {workspace}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[PIPELINE] Failed to remove workspace {workspace}: {e}")

    async def _execute(self, run: PipelineRun, output_path: Path) -> PipelineResult:
        settings = run.settings

        # 1. Assets
        run.transition(PipelineStage.DOWNLOADING)
        run.report(0, "Downloading scene assets")
        assets = await self._download_assets(run)

        # 2. Segments
        run.transition(PipelineStage.SEGMENTING)
        await self._create_segments(run, assets)

        debug_segments = self._preserve_segments(run)

        # 3. Concatenation
        music_enabled = settings.background_music.enabled
        run.transition(PipelineStage.CONCATENATING)
        run.report(CONCAT_START, f"Concatenating {run.total_scenes} segments")
        concatenated = await self.concat_engine.concatenate(
            run.segment_paths,
            run.workspace / CONCATENATED_NAME,
            settings,
            on_progress=run.report,
            expected_duration=run.total_duration,
            progress_band=(CONCAT_START, MUSIC_START if music_enabled else FINALIZE_START),
        )

        # 4. Background music
        final_source = concatenated
        music_applied = False
        if music_enabled:
            run.transition(PipelineStage.MIXING_MUSIC)
            run.report(MUSIC_START, "Adding background music")
            final_source, music_applied = await self._apply_music(run, concatenated)

        # 5. Finalize
        run.transition(PipelineStage.FINALIZING)
        run.report(FINALIZE_START, "Finalizing video")
        if settings.format == "webm":
            final_source = await self._transcode_webm(run, final_source)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(final_source), str(output_path))
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise AssemblyError(f"Final video is empty: {output_path}", stage=PipelineStage.FINALIZING.value)

        duration = await self._final_duration(run, output_path)

        run.transition(PipelineStage.COMPLETED)
        run.report(100, "Video generation completed")
        elapsed = round(time.monotonic() - run.started_at, 3)
        logger.info(f"[PIPELINE] Run {run.run_id} completed in {elapsed}s: {output_path} ({duration:.2f}s)")

        return PipelineResult(
            run_id=run.run_id,
            output_path=output_path,
            duration_seconds=duration,
            segment_count=len(run.segment_paths),
            debug_segments=debug_segments,
            music_applied=music_applied,
            elapsed_seconds=elapsed,
            warnings=list(run.warnings),
        )

    async def _download_assets(self, run: PipelineRun) -> list[tuple[Path, Path]]:
        assets = []
        for index, scene in enumerate(run.scenes):
            image = await self.asset_fetcher.fetch(
                scene.image_url, run.workspace, f"image_{index}", "image", scene_index=index
            )
            audio = await self.asset_fetcher.fetch(
                scene.audio_url, run.workspace, f"audio_{index}", "audio", scene_index=index
            )
            assets.append((image, audio))
            run.report(
                DOWNLOAD_END * (index + 1) / run.total_scenes,
                f"Downloaded assets for scene {index + 1}/{run.total_scenes}",
                current_scene=index + 1,
            )
        return assets

    async def _create_segments(self, run: PipelineRun, assets: list[tuple[Path, Path]]) -> None:
        total = run.total_scenes
        for index, (scene, (image, audio)) in enumerate(zip(run.scenes, assets)):
            scene_no = index + 1
            run.report(
                SEGMENT_START + index / total * SEGMENT_SPAN,
                f"Creating segment {scene_no}/{total}",
                current_scene=scene_no,
            )

            def encoder_progress(progress: EncoderProgress, index: int = index, scene_no: int = scene_no) -> None:
                fraction = (progress.percent or 0.0) / 100
                run.report(
                    SEGMENT_START + (index + fraction) / total * SEGMENT_SPAN,
                    f"Rendering segment {scene_no}/{total}",
                    current_scene=scene_no,
                    encoder_progress=progress,
                )

            segment = await self.segment_assembler.create_segment(
                image,
                audio,
                scene.duration,
                scene.narration,
                run.settings,
                index,
                run.workspace / f"segment_{index:03d}.mp4",
                on_progress=encoder_progress,
            )
            run.segment_paths.append(segment)

        run.report(SEGMENT_START + SEGMENT_SPAN, f"All {total} segments created")

    def _preserve_segments(self, run: PipelineRun) -> list[Path]:
        try:
            return self.debug_store.save(run.run_id, run.segment_paths)
        except OSError as e:
            message = f"Could not preserve debug segments: {e}"
            logger.warning(f"[PIPELINE] {message}")
            run.warnings.append(message)
            return []

    async def _apply_music(self, run: PipelineRun, video_path: Path) -> tuple[Path, bool]:
        """Mix music; on failure keep the unmixed video and record a warning."""
        target = run.workspace / WITH_MUSIC_NAME

        def report(percent: float, message: str) -> None:
            run.report(MUSIC_START + percent * (MUSIC_END - MUSIC_START) / 100, message)

        try:
            await self.music_mixer.apply(
                video_path,
                target,
                run.settings.background_music,
                run.workspace / "music",
                on_progress=report,
            )
        except MusicMixError as e:
            logger.warning(f"[PIPELINE] Background music failed, continuing without it: {e}")
            run.warnings.append(f"Background music was not applied: {e.message}")
            target.unlink(missing_ok=True)
            return video_path, False
        return target, True

    async def _transcode_webm(self, run: PipelineRun, source: Path) -> Path:
        crf, _ = run.settings.quality_profile
        command = FFmpegCommand(output_path=str(run.workspace / WEBM_NAME))
        command.add_input(source)
        command.output_options = [
            "-c:v", "libvpx-vp9",
            "-crf", str(crf + 4),
            "-b:v", "0",
            "-c:a", "libopus",
        ]
        return await self.executor.run(
            command,
            timeout=get_settings().concat_timeout_s,
            duration=run.total_duration,
        )

    async def _final_duration(self, run: PipelineRun, output_path: Path) -> float:
        try:
            probe = await self.prober.probe(str(output_path))
        except RuntimeError as e:
            logger.warning(f"[PIPELINE] Could not probe final video: {e}")
            return run.total_duration
        if probe.duration_seconds is None:
            return run.total_duration
        if abs(probe.duration_seconds - run.total_duration) > 0.5:
            logger.warning(
                f"[PIPELINE] Final duration {probe.duration_seconds:.2f}s differs from "
                f"expected {run.total_duration:.2f}s"
            )
        return probe.duration_seconds
