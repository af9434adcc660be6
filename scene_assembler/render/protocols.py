"""
Narrow interfaces to the assembler's collaborators.

The pipeline only depends on these protocols; default implementations live in
``scene_assembler.render.ffmpeg``, ``scene_assembler.utils.media_info`` and
``scene_assembler.services``. Tests substitute fakes.
"""

from pathlib import Path
from typing import Callable, Optional, Protocol, runtime_checkable

from scene_assembler.render.ffmpeg import EncoderProgressCallback, FFmpegCommand
from scene_assembler.schemas.video import SubtitleSettings, VideoSettings
from scene_assembler.utils.media_info import MediaProbe

# Percent (0-100) plus a short status message
PercentCallback = Callable[[float, str], None]


@runtime_checkable
class CommandExecutor(Protocol):
    """Runs encoder invocations."""

    async def is_available(self) -> bool: ...

    async def run(
        self,
        command: FFmpegCommand,
        *,
        timeout: Optional[float] = None,
        on_progress: Optional[EncoderProgressCallback] = None,
        duration: Optional[float] = None,
    ) -> Path: ...


@runtime_checkable
class MediaProber(Protocol):
    async def probe(self, file_path: str) -> MediaProbe: ...


@runtime_checkable
class SubtitleFilterGenerator(Protocol):
    """Produces a video filter fragment that burns narration into a segment."""

    def generate_filter(
        self,
        narration: str,
        subtitle_settings: SubtitleSettings,
        width: int,
        height: int,
        duration: float,
        scene_index: int,
        transitions_enabled: bool,
        transition_duration: float,
        orientation: str,
    ) -> str: ...


@runtime_checkable
class TransitionMerger(Protocol):
    """Merges ordered segment files into one output with crossfades."""

    async def merge_with_transitions(
        self,
        segment_paths: list[Path],
        settings: VideoSettings,
        output_path: Path,
        on_progress: Optional[PercentCallback] = None,
    ) -> None: ...
