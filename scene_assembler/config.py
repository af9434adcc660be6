from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SCENE_ASSEMBLER_",
        extra="ignore",
    )

    # Application
    app_name: str = "Scene Assembler"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    encoder_threads: int = 2

    # Filesystem layout
    # Each run gets <temp_root>/<run_id>; runs never share a directory.
    temp_root: str = "/tmp/scene-assembler"
    # Root that "/"-prefixed asset paths (e.g. "/audio/bgm/calm.mp3") resolve against
    public_root: str = "./public"
    music_library_dir: str = "./public/audio/background-music"

    # Subtitles (drawtext). None lets fontconfig pick a default font.
    subtitle_font_file: str | None = None

    # Debug segment retention
    preserve_debug_segments: bool = True
    debug_segments_dir: str = "./public/debug-segments"
    # Where the HTTP API writes finished videos
    output_dir: str = "./public/videos"

    # Timeouts (seconds)
    segment_timeout_s: float = 120.0
    concat_timeout_s: float = 600.0
    transition_timeout_s: float = 600.0
    music_prepare_timeout_s: float = 120.0
    music_mix_timeout_s: float = 300.0
    music_synth_timeout_s: float = 60.0
    music_download_timeout_s: float = 5.0
    asset_download_timeout_s: float = 60.0
    pipeline_timeout_s: float = 600.0
    # Grace window between SIGTERM and SIGKILL when cancelling an encoder
    cancel_grace_seconds: float = 5.0

    # Direct concatenation normalizes audio to this layout
    concat_audio_sample_rate: int = 44100
    concat_audio_channels: int = 2


@lru_cache
def get_settings() -> Settings:
    return Settings()
