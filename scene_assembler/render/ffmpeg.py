"""
FFmpeg process wrapper.

Every encoder invocation in the assembler goes through ``FFmpegRunner.run``:

- Commands are declarative ``FFmpegCommand`` objects, lowered to argv only here
- stderr is streamed and ``frame= fps= size= time= bitrate=`` lines are parsed
  into ``EncoderProgress`` events
- Timeouts kill the process; task cancellation sends SIGTERM, waits a grace
  window and then SIGKILLs
- A missing or zero-byte output is a failure even when FFmpeg exits 0, and
  partial outputs never survive a failed invocation
"""

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Union

from scene_assembler.config import get_settings
from scene_assembler.exceptions import (
    EmptyOutputError,
    EncoderProcessError,
    EncoderTimeoutError,
    EncoderUnavailableError,
)
from scene_assembler.render.filters import FilterChain
from scene_assembler.schemas.progress import EncoderProgress

logger = logging.getLogger(__name__)

EncoderProgressCallback = Callable[[EncoderProgress], None]

STDERR_TAIL_LINES = 20


# ============================================================================
# Command model
# ============================================================================


@dataclass
class InputSpec:
    """One ``-i`` input and the options that must precede it."""

    path: str
    options: list[str] = field(default_factory=list)

    def to_args(self) -> list[str]:
        return [*self.options, "-i", str(self.path)]


@dataclass
class FFmpegCommand:
    """Declarative description of a single FFmpeg invocation."""

    output_path: str
    inputs: list[InputSpec] = field(default_factory=list)
    video_filters: Union[FilterChain, str, None] = None
    audio_filters: Union[FilterChain, str, None] = None
    filter_complex: Optional[str] = None
    maps: list[str] = field(default_factory=list)
    output_options: list[str] = field(default_factory=list)
    global_options: list[str] = field(default_factory=lambda: ["-y", "-hide_banner"])
    # False for sinks such as "-f null -" that produce no file
    verify_output: bool = True

    def add_input(self, path: Union[str, Path], *options: str) -> "FFmpegCommand":
        self.inputs.append(InputSpec(str(path), list(options)))
        return self

    def build_args(self, ffmpeg_path: str = "ffmpeg") -> list[str]:
        """Lower the command to an argv list."""
        args = [ffmpeg_path, *self.global_options]
        for spec in self.inputs:
            args.extend(spec.to_args())

        video_filters = str(self.video_filters) if self.video_filters else ""
        if video_filters:
            args.extend(["-vf", video_filters])
        audio_filters = str(self.audio_filters) if self.audio_filters else ""
        if audio_filters:
            args.extend(["-af", audio_filters])
        if self.filter_complex:
            args.extend(["-filter_complex", self.filter_complex])
        for stream in self.maps:
            args.extend(["-map", stream])

        args.extend(self.output_options)
        args.append(str(self.output_path))
        return args


# ============================================================================
# Progress parsing
# ============================================================================

_PROGRESS_FIELD_RE = re.compile(r"(frame|fps|size|time|bitrate)=\s*(\S+)")
_TIMEMARK_RE = re.compile(r"^(-?)(\d+):(\d{2}):(\d{2}(?:\.\d+)?)$")
_LEADING_NUMBER_RE = re.compile(r"^(\d+(?:\.\d+)?)")


def parse_timemark(timemark: str) -> float:
    """Convert ``HH:MM:SS.ss`` to seconds. Unparseable marks are 0."""
    match = _TIMEMARK_RE.match(timemark.strip())
    if not match:
        return 0.0
    sign, hours, minutes, seconds = match.groups()
    if sign:
        return 0.0
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def _leading_number(value: str) -> Optional[float]:
    match = _LEADING_NUMBER_RE.match(value)
    return float(match.group(1)) if match else None


def parse_progress_line(line: str, duration: Optional[float] = None) -> Optional[EncoderProgress]:
    """Parse an FFmpeg status line.

    Args:
        line: One line of FFmpeg stderr
        duration: Expected output duration in seconds, used for ``percent``

    Returns:
        EncoderProgress, or None if the line is not a status line
    """
    fields = dict(_PROGRESS_FIELD_RE.findall(line))
    if "time" not in fields or ("frame" not in fields and "size" not in fields):
        return None

    timemark = fields["time"]
    seconds = parse_timemark(timemark)

    frames = _leading_number(fields.get("frame", ""))
    fps = _leading_number(fields.get("fps", ""))
    size = _leading_number(fields.get("size", ""))

    percent = None
    if duration and duration > 0:
        percent = round(min(100.0, max(0.0, seconds / duration * 100)), 2)

    return EncoderProgress(
        frames=int(frames or 0),
        fps=fps or 0.0,
        bitrate_kbps=_leading_number(fields.get("bitrate", "")),
        size_kb=int(size) if size is not None else None,
        timemark=timemark,
        seconds=seconds,
        percent=percent,
    )


async def _iter_stderr_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
    # FFmpeg rewrites its status line with "\r", so split on both separators
    buffer = ""
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            break
        buffer += chunk.decode("utf-8", errors="replace")
        parts = re.split(r"[\r\n]", buffer)
        buffer = parts.pop()
        for part in parts:
            if part.strip():
                yield part
    if buffer.strip():
        yield buffer


# ============================================================================
# Runner
# ============================================================================


async def check_ffmpeg_available(ffmpeg_path: Optional[str] = None) -> bool:
    """Return True if ``ffmpeg -version`` can be executed successfully."""
    ffmpeg_path = ffmpeg_path or get_settings().ffmpeg_path
    try:
        proc = await asyncio.create_subprocess_exec(
            ffmpeg_path,
            "-version",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except (FileNotFoundError, PermissionError):
        return False

    try:
        returncode = await asyncio.wait_for(proc.wait(), timeout=10)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return False
    return returncode == 0


def _remove_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"[FFMPEG] Could not remove partial output {path}: {e}")


class FFmpegRunner:
    """Executes ``FFmpegCommand`` objects as cancellable subprocesses."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        cancel_grace_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.cancel_grace_seconds = (
            cancel_grace_seconds if cancel_grace_seconds is not None else settings.cancel_grace_seconds
        )

    async def is_available(self) -> bool:
        return await check_ffmpeg_available(self.ffmpeg_path)

    async def run(
        self,
        command: FFmpegCommand,
        *,
        timeout: Optional[float] = None,
        on_progress: Optional[EncoderProgressCallback] = None,
        duration: Optional[float] = None,
    ) -> Path:
        """Run one FFmpeg invocation to completion.

        Args:
            command: The invocation to run
            timeout: Seconds before the process is killed (None = no limit)
            on_progress: Called with each parsed status line
            duration: Expected output duration, enables ``percent`` in progress

        Returns:
            Path to the verified, non-empty output file

        Raises:
            EncoderUnavailableError: If the binary cannot be spawned
            EncoderTimeoutError: If the timeout elapsed
            EncoderProcessError: If FFmpeg exited non-zero
            EmptyOutputError: If the output is missing or zero bytes
            asyncio.CancelledError: Re-raised after the process is stopped
        """
        args = command.build_args(self.ffmpeg_path)
        output = Path(command.output_path)
        logger.debug(f"[FFMPEG] Command: {' '.join(args)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise EncoderUnavailableError(
                f"FFmpeg executable could not be started ({self.ffmpeg_path}): {e}"
            ) from e

        tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        try:
            await asyncio.wait_for(
                self._consume(proc, tail, on_progress, duration),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"[FFMPEG] Timed out after {timeout}s, killing pid {proc.pid}")
            await self._kill(proc)
            if command.verify_output:
                _remove_partial(output)
            raise EncoderTimeoutError(timeout) from None
        except asyncio.CancelledError:
            logger.warning(f"[FFMPEG] Cancelled, stopping pid {proc.pid}")
            await self._terminate(proc)
            if command.verify_output:
                _remove_partial(output)
            raise

        if proc.returncode != 0:
            stderr_tail = "\n".join(tail)
            logger.error(f"[FFMPEG] Exited with code {proc.returncode}: {stderr_tail}")
            if command.verify_output:
                _remove_partial(output)
            raise EncoderProcessError(returncode=proc.returncode, stderr_tail=stderr_tail)

        if command.verify_output:
            if not output.exists() or output.stat().st_size == 0:
                _remove_partial(output)
                raise EmptyOutputError(str(output))

        return output

    async def _consume(
        self,
        proc: asyncio.subprocess.Process,
        tail: deque,
        on_progress: Optional[EncoderProgressCallback],
        duration: Optional[float],
    ) -> None:
        assert proc.stderr is not None
        async for line in _iter_stderr_lines(proc.stderr):
            progress = parse_progress_line(line, duration)
            if progress is None:
                tail.append(line)
                continue
            if on_progress is not None:
                on_progress(progress)
        await proc.wait()

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL once the grace window has passed."""
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.cancel_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"[FFMPEG] pid {proc.pid} ignored SIGTERM, sending SIGKILL")
            await self._kill(proc)
