"""Request-level models: scenes and the per-run settings bundle."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Resolution = Literal["720p", "1080p", "1440p", "4K"]
FrameRate = Literal[24, 30, 60]
ContainerFormat = Literal["mp4", "webm"]
QualityTier = Literal["standard", "high", "ultra"]
Orientation = Literal["landscape", "portrait", "square"]
TransitionKind = Literal["none", "fade", "slide", "zoom"]
MusicSource = Literal["local", "upload", "remote"]

BASE_RESOLUTIONS: dict[str, tuple[int, int]] = {
    "720p": (1280, 720),
    "1080p": (1920, 1080),
    "1440p": (2560, 1440),
    "4K": (3840, 2160),
}

# quality tier -> (crf, x264 preset)
QUALITY_PROFILES: dict[str, tuple[int, str]] = {
    "standard": (28, "fast"),
    "high": (23, "medium"),
    "ultra": (18, "slow"),
}


class Scene(BaseModel):
    """One narrated still image. Identity is its position in the scene list."""

    id: int
    image_url: str
    audio_url: str
    duration: float = Field(gt=0)
    narration: str | None = None


class AnimationSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Kept as plain strings so an unknown value reaches the animation
    # validator instead of failing at parse time.
    type: str = "none"
    intensity: str = "subtle"


class SubtitleStyle(BaseModel):
    model_config = ConfigDict(frozen=True)

    font_size: int = Field(default=32, ge=12, le=72)
    font_color: str = "ffffff"
    outline_color: str = "000000"
    outline_width: int = 2


class SubtitleSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    position: Literal["bottom", "top", "center"] = "bottom"
    delay: float = 1.0  # seconds before the subtitle appears
    fade_in: bool = True
    style: SubtitleStyle = Field(default_factory=SubtitleStyle)


class BackgroundMusicSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    source: MusicSource = "local"
    track_id: str | None = None
    track_url: str | None = None
    volume: float = Field(default=30, ge=0, le=100)  # relative to narration
    fade_in: float = Field(default=2.0, ge=0)
    fade_out: float = Field(default=2.0, ge=0)
    loop: bool = True
    start_offset: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def _require_track(self) -> "BackgroundMusicSettings":
        if self.enabled and not (self.track_id or self.track_url):
            raise ValueError("No music source specified. Either track_url or track_id must be provided.")
        return self

    @property
    def volume_level(self) -> float:
        """Volume as a gain factor, floored at 10% so music stays audible."""
        return max(self.volume / 100, 0.1)


class VideoSettings(BaseModel):
    """Immutable configuration for a single assembly run."""

    model_config = ConfigDict(frozen=True)

    resolution: Resolution = "1080p"
    frame_rate: FrameRate = 30
    format: ContainerFormat = "mp4"
    quality: QualityTier = "high"
    orientation: Orientation = "landscape"
    transition: TransitionKind = "none"
    transition_duration: float = 1.0
    animation: AnimationSettings = Field(default_factory=AnimationSettings)
    subtitles: SubtitleSettings = Field(default_factory=lambda: SubtitleSettings(enabled=False))
    background_music: BackgroundMusicSettings = Field(default_factory=BackgroundMusicSettings)

    @field_validator("transition_duration")
    @classmethod
    def _check_transition_duration(cls, v: float) -> float:
        if v < 0.1 or v > 5:
            raise ValueError(f"Invalid transition duration: {v}")
        return v

    @property
    def dimensions(self) -> tuple[int, int]:
        """Output (width, height) after applying orientation."""
        width, height = BASE_RESOLUTIONS[self.resolution]
        if self.orientation == "portrait":
            return height, width
        if self.orientation == "square":
            size = min(width, height)
            return size, size
        return width, height

    @property
    def quality_profile(self) -> tuple[int, str]:
        return QUALITY_PROFILES[self.quality]

    @property
    def transitions_enabled(self) -> bool:
        return self.transition != "none"


def default_video_settings() -> VideoSettings:
    """Defaults used when a request omits settings."""
    return VideoSettings(
        resolution="1080p",
        frame_rate=30,
        format="mp4",
        quality="high",
        orientation="landscape",
        animation=AnimationSettings(type="none", intensity="subtle"),
        transition="none",
        transition_duration=1.0,
        background_music=BackgroundMusicSettings(enabled=False),
    )


# ============================================================================
# HTTP request / response
# ============================================================================


class GenerateVideoRequest(BaseModel):
    scenes: list[Scene] = Field(min_length=1)
    settings: VideoSettings = Field(default_factory=default_video_settings)
    # File stem for the output; defaults to the run id
    output_name: str | None = Field(default=None, pattern=r"^[A-Za-z0-9_-]{1,100}$")


class GenerateVideoResponse(BaseModel):
    run_id: str
    output_path: str
    duration_seconds: float
    segment_count: int
    debug_segments: list[str] = Field(default_factory=list)
    music_applied: bool = False
    elapsed_seconds: float
    warnings: list[str] = Field(default_factory=list)


class AnimationInfo(BaseModel):
    type: str
    description: str
