"""
Pytest fixtures for scene assembler tests.

Most tests run against in-memory fakes of the encoder and prober so they need
no media tooling. Tests that drive a real FFmpeg binary are marked with
@pytest.mark.requires_ffmpeg and skipped when ``ffmpeg`` is not on PATH:

    pytest -m "not requires_ffmpeg"
"""

import asyncio
import base64
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional

import pytest

from scene_assembler.render.ffmpeg import FFmpegCommand
from scene_assembler.schemas.progress import EncoderProgress
from scene_assembler.utils.media_info import MediaProbe, StreamInfo


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring ffmpeg/ffprobe binaries (skipped when missing)"
    )


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def pytest_collection_modifyitems(config, items):
    """Skip requires_ffmpeg tests when the binaries are missing."""
    if _ffmpeg_available():
        return
    skip_ffmpeg = pytest.mark.skip(reason="ffmpeg/ffprobe not available on PATH")
    for item in items:
        if "requires_ffmpeg" in item.keywords:
            item.add_marker(skip_ffmpeg)


class FakeExecutor:
    """CommandExecutor that records commands and writes placeholder outputs."""

    def __init__(self, available: bool = True):
        self.available = available
        self.commands: list[FFmpegCommand] = []
        # Return an exception to make a given command fail
        self.fail_when: Optional[Callable[[FFmpegCommand], Optional[BaseException]]] = None
        self.delay = 0.0
        self.output_bytes = b"\x00\x00\x00\x18ftypmp42fake"

    async def is_available(self) -> bool:
        return self.available

    async def run(self, command, *, timeout=None, on_progress=None, duration=None):
        self.commands.append(command)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_when is not None:
            error = self.fail_when(command)
            if error is not None:
                raise error
        if on_progress is not None:
            on_progress(
                EncoderProgress(
                    frames=30,
                    fps=30.0,
                    timemark="00:00:01.00",
                    seconds=1.0,
                    percent=50.0 if duration else None,
                )
            )
        output = Path(command.output_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(self.output_bytes)
        return output

    def commands_writing(self, name: str) -> list[FFmpegCommand]:
        return [c for c in self.commands if Path(c.output_path).name == name]


class FakeProber:
    """MediaProber returning configured durations keyed by file name."""

    def __init__(self, durations: Optional[dict[str, float]] = None, default: Optional[float] = None):
        self.durations = durations or {}
        self.default = default
        self.calls: list[str] = []

    async def probe(self, file_path: str) -> MediaProbe:
        self.calls.append(str(file_path))
        name = Path(file_path).name
        duration = self.durations.get(name, self.default)
        if duration is None:
            raise RuntimeError(f"ffprobe failed: no duration for {name}")
        return MediaProbe(
            duration_seconds=duration,
            streams=[
                StreamInfo(type="video", codec="h264", width=1920, height=1080, frame_rate=30.0),
                StreamInfo(type="audio", codec="aac"),
            ],
            format_name="mov,mp4,m4a,3gp,3g2,mj2",
            size_bytes=1024,
        )


def data_url(mime: str, payload: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(payload).decode('ascii')}"


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="scene_assembler_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def fake_prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def make_segments(temp_output_dir: Path):
    """Factory for placeholder segment files."""
    def _make(count: int, empty: Optional[set[int]] = None) -> list[Path]:
        paths = []
        for index in range(count):
            path = temp_output_dir / f"segment_{index:03d}.mp4"
            path.write_bytes(b"" if empty and index in empty else b"segment-data")
            paths.append(path)
        return paths
    return _make


@pytest.fixture
def image_data_url() -> str:
    return data_url("image/png", b"\x89PNG\r\n\x1a\nfake-image")


@pytest.fixture
def audio_data_url() -> str:
    return data_url("audio/mpeg", b"ID3fake-audio")


@pytest.fixture
def make_data_url():
    return data_url


@pytest.fixture
def make_prober():
    def _make(durations: Optional[dict[str, float]] = None, default: Optional[float] = None) -> FakeProber:
        return FakeProber(durations, default)
    return _make
