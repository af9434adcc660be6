"""Media file information utilities using FFprobe."""

import asyncio
import json
import os
import subprocess
from dataclasses import dataclass, field
from typing import Optional

from scene_assembler.config import get_settings


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


@dataclass
class StreamInfo:
    """One elementary stream of a media file."""

    type: str  # "video" | "audio" | ...
    codec: str | None = None
    width: int | None = None
    height: int | None = None
    frame_rate: float | None = None


@dataclass
class MediaProbe:
    """Media file information."""

    duration_seconds: float | None = None
    streams: list[StreamInfo] = field(default_factory=list)
    format_name: str | None = None
    size_bytes: int | None = None

    @property
    def has_video(self) -> bool:
        return any(s.type == "video" for s in self.streams)

    @property
    def has_audio(self) -> bool:
        return any(s.type == "audio" for s in self.streams)

    @property
    def video_stream(self) -> Optional[StreamInfo]:
        return next((s for s in self.streams if s.type == "video"), None)


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = _get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        str(file_path),
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise RuntimeError(f"ffprobe not found: {settings.ffprobe_path}") from e
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


def _parse_frame_rate(value: str | None) -> float | None:
    if not value or "/" not in value:
        return None
    num, den = value.split("/", 1)
    try:
        if int(den) > 0:
            return round(int(num) / int(den), 3)
    except ValueError:
        return None
    return None


def parse_probe(data: dict) -> MediaProbe:
    """Build a MediaProbe from ffprobe ``-show_format -show_streams`` JSON."""
    format_info = data.get("format", {})

    duration = None
    if "duration" in format_info:
        duration = float(format_info["duration"])

    size = format_info.get("size")

    streams = []
    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type", "unknown")
        info = StreamInfo(type=codec_type, codec=stream.get("codec_name"))
        if codec_type == "video":
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.frame_rate = _parse_frame_rate(stream.get("r_frame_rate"))
        streams.append(info)

    return MediaProbe(
        duration_seconds=duration,
        streams=streams,
        format_name=format_info.get("format_name"),
        size_bytes=int(size) if size is not None else None,
    )


def get_media_probe(file_path: str) -> MediaProbe:
    """
    Get complete media file information.

    Args:
        file_path: Path to media file

    Returns:
        MediaProbe with duration, streams and container info

    Raises:
        RuntimeError: If ffprobe fails
    """
    data = _run_ffprobe(file_path, "-show_format", "-show_streams")
    return parse_probe(data)


class FFprobeProber:
    """Async ``MediaProber`` backed by the ffprobe binary."""

    async def probe(self, file_path: str) -> MediaProbe:
        if not os.path.exists(file_path):
            raise RuntimeError(f"File not found: {file_path}")
        # ffprobe is blocking; keep it off the event loop
        return await asyncio.to_thread(get_media_probe, str(file_path))
