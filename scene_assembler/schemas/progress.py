"""Progress reporting models for encoder invocations and whole runs."""

from enum import Enum

from pydantic import BaseModel, Field


class PipelineStage(str, Enum):
    """Lifecycle states of one assembly run."""

    INIT = "init"
    DOWNLOADING = "downloading"
    SEGMENTING = "segmenting"
    CONCATENATING = "concatenating"
    MIXING_MUSIC = "mixing_music"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class EncoderProgress(BaseModel):
    """One parsed FFmpeg status line (``frame=... fps=... time=...``)."""

    frames: int = 0
    fps: float = 0.0
    bitrate_kbps: float | None = None
    size_kb: int | None = None
    timemark: str = "00:00:00.00"
    seconds: float = 0.0
    # Only known when the caller supplied the expected output duration
    percent: float | None = None


class PipelineProgress(BaseModel):
    """Structured progress event emitted by the orchestrator."""

    stage: PipelineStage
    current_scene: int | None = None  # 1-based, while segmenting
    total_scenes: int
    percent: float = Field(ge=0, le=100)
    message: str
    encoder_progress: EncoderProgress | None = None
