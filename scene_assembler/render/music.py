"""
Background music mixing with a source fallback chain.

Flow:
1. Resolve a music file through ordered ``MusicSource`` strategies
   (library track -> public path -> remote download -> synthesized ambient
   tone -> silence). An unavailable asset never aborts the chain.
2. Prepare the music for the video: loop if needed, set volume, fade in/out
   and trim to ``video_duration - start_offset``.
3. Mix it under the narration (delayed by ``start_offset``), copying video.
"""

import logging
import math
import shutil
from pathlib import Path
from typing import Optional

import httpx

from scene_assembler.config import get_settings
from scene_assembler.exceptions import AssemblyError, MusicMixError
from scene_assembler.render.ffmpeg import FFmpegCommand
from scene_assembler.render.filters import FilterChain, make_filter
from scene_assembler.render.protocols import CommandExecutor, MediaProber, PercentCallback
from scene_assembler.schemas.progress import EncoderProgress
from scene_assembler.schemas.video import BackgroundMusicSettings
from scene_assembler.services.music_library import MusicLibrary, get_music_library

logger = logging.getLogger(__name__)

PROCESSED_MUSIC_NAME = "processed_music.mp3"
DOWNLOADED_MUSIC_NAME = "background_music.mp3"
SYNTHESIZED_MUSIC_NAME = "fallback_music.mp3"
SILENCE_NAME = "silence.mp3"

# Multi-tone ambient pad (220/330/440 Hz) with a slow 0.1 Hz swell
AMBIENT_TONE_SOURCE = (
    "aevalsrc=0.3*(sin(2*PI*220*t)+0.5*sin(2*PI*330*t)+0.3*sin(2*PI*440*t))"
    "*sin(2*PI*0.1*t):s=44100:d=60:c=stereo"
)
AMBIENT_TONE_DURATION = 60
SILENCE_SOURCE = "anullsrc=channel_layout=stereo:sample_rate=44100:duration=30"

# Narration keeps full weight, music sits slightly below it
MIX_WEIGHTS = "1 0.8"
MUSIC_BITRATE = "192k"


class MusicSourceUnavailable(Exception):
    """A music source strategy could not provide a file."""


# ============================================================================
# Source strategies
# ============================================================================


class MusicSource:
    """One way of obtaining a music file."""

    name = "base"

    async def resolve(self, music_settings: BackgroundMusicSettings, work_dir: Path) -> Path:
        raise NotImplementedError


class LibraryTrackSource(MusicSource):
    """A track id from the local music library."""

    name = "library"

    def __init__(self, library: Optional[MusicLibrary] = None):
        self.library = library

    async def resolve(self, music_settings: BackgroundMusicSettings, work_dir: Path) -> Path:
        if music_settings.source != "local" or not music_settings.track_id:
            raise MusicSourceUnavailable("no library track requested")
        library = self.library or get_music_library()
        try:
            path = library.get_track_file_path(music_settings.track_id)
        except ValueError as e:
            raise MusicSourceUnavailable(str(e)) from e
        if path is None:
            raise MusicSourceUnavailable(f"Local music track not found: {music_settings.track_id}")
        return path


class LocalPathSource(MusicSource):
    """A "/"-rooted track URL resolved under the public root."""

    name = "public-path"

    def __init__(self, public_root: Optional[str] = None):
        self.public_root = Path(public_root or get_settings().public_root)

    async def resolve(self, music_settings: BackgroundMusicSettings, work_dir: Path) -> Path:
        url = music_settings.track_url
        if not url or not url.startswith("/"):
            raise MusicSourceUnavailable("track url is not a public path")
        root = self.public_root.resolve()
        path = (root / url.lstrip("/")).resolve()
        if not path.is_relative_to(root):
            raise MusicSourceUnavailable(f"Music path escapes the public root: {url[:80]}")
        if not path.is_file() or path.stat().st_size == 0:
            raise MusicSourceUnavailable(f"Local music file not found: {path}")
        return path


class RemoteTrackSource(MusicSource):
    """An http(s) track URL, downloaded with a short timeout."""

    name = "remote"

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else get_settings().music_download_timeout_s
        self.transport = transport

    async def resolve(self, music_settings: BackgroundMusicSettings, work_dir: Path) -> Path:
        url = music_settings.track_url
        if not url or not url.startswith(("http://", "https://")):
            raise MusicSourceUnavailable("track url is not an http(s) URL")

        output = work_dir / DOWNLOADED_MUSIC_NAME
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True, transport=self.transport
            ) as client:
                response = await client.get(
                    url, headers={"User-Agent": "Mozilla/5.0 (compatible; SceneAssembler/1.0)"}
                )
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise MusicSourceUnavailable(f"Download failed: {e}") from e

        if not response.content:
            raise MusicSourceUnavailable("Downloaded file is empty")
        output.write_bytes(response.content)
        logger.info(f"[MUSIC] Music downloaded: {output} ({len(response.content)} bytes)")
        return output


class _LavfiSource(MusicSource):
    output_name = ""

    def __init__(self, executor: CommandExecutor, timeout: Optional[float] = None):
        self.executor = executor
        self.timeout = timeout if timeout is not None else get_settings().music_synth_timeout_s

    def build_command(self, output: Path) -> FFmpegCommand:
        raise NotImplementedError

    async def resolve(self, music_settings: BackgroundMusicSettings, work_dir: Path) -> Path:
        output = work_dir / self.output_name
        try:
            return await self.executor.run(self.build_command(output), timeout=self.timeout)
        except AssemblyError as e:
            raise MusicSourceUnavailable(f"{self.name} generation failed: {e}") from e


class SynthesizedToneSource(_LavfiSource):
    """A generated 60 s ambient soundscape."""

    name = "synthesized"
    output_name = SYNTHESIZED_MUSIC_NAME

    def build_command(self, output: Path) -> FFmpegCommand:
        command = FFmpegCommand(output_path=str(output))
        command.add_input(AMBIENT_TONE_SOURCE, "-f", "lavfi")
        command.audio_filters = FilterChain([
            make_filter("volume", 0.6),
            make_filter("highpass", f=100),
            make_filter("lowpass", f=8000),
        ])
        command.output_options = ["-c:a", "libmp3lame", "-t", str(AMBIENT_TONE_DURATION)]
        return command


class SilenceSource(_LavfiSource):
    """Last resort: 30 s of stereo silence."""

    name = "silence"
    output_name = SILENCE_NAME

    def build_command(self, output: Path) -> FFmpegCommand:
        command = FFmpegCommand(output_path=str(output))
        command.add_input(SILENCE_SOURCE, "-f", "lavfi")
        command.output_options = ["-c:a", "libmp3lame"]
        return command


def default_music_sources(executor: CommandExecutor) -> list[MusicSource]:
    return [
        LibraryTrackSource(),
        LocalPathSource(),
        RemoteTrackSource(),
        SynthesizedToneSource(executor),
        SilenceSource(executor),
    ]


# ============================================================================
# Mixer
# ============================================================================


def loop_count(music_duration: float, target_duration: float) -> int:
    """Extra plays (``-stream_loop``) needed to cover the target duration."""
    if music_duration <= 0 or music_duration >= target_duration:
        return 0
    return math.ceil(target_duration / music_duration) - 1


def build_music_filters(music_settings: BackgroundMusicSettings, target_duration: float) -> FilterChain:
    chain = FilterChain([make_filter("volume", music_settings.volume_level)])
    if music_settings.fade_in > 0:
        chain.append(make_filter("afade", t="in", st=0, d=music_settings.fade_in))
    if music_settings.fade_out > 0:
        start = max(0.0, target_duration - music_settings.fade_out)
        chain.append(make_filter("afade", t="out", st=start, d=music_settings.fade_out))
    chain.append(make_filter("atrim", duration=target_duration))
    return chain


def build_mix_graph(start_offset: float) -> str:
    amix = make_filter(
        "amix", inputs=2, duration="first", dropout_transition=2, weights=MIX_WEIGHTS
    ).render()
    if start_offset > 0:
        delay_ms = int(round(start_offset * 1000))
        adelay = make_filter("adelay", f"{delay_ms}|{delay_ms}").render()
        return f"[1:a]{adelay}[delayed_music];[0:a][delayed_music]{amix}[mixed_audio]"
    return f"[0:a][1:a]{amix}[mixed_audio]"


class BackgroundMusicMixer:
    """Lays background music under an assembled video."""

    def __init__(
        self,
        executor: CommandExecutor,
        prober: MediaProber,
        sources: Optional[list[MusicSource]] = None,
        prepare_timeout: Optional[float] = None,
        mix_timeout: Optional[float] = None,
    ):
        app_settings = get_settings()
        self.executor = executor
        self.prober = prober
        self.sources = sources if sources is not None else default_music_sources(executor)
        self.prepare_timeout = prepare_timeout if prepare_timeout is not None else app_settings.music_prepare_timeout_s
        self.mix_timeout = mix_timeout if mix_timeout is not None else app_settings.music_mix_timeout_s

    async def resolve_music(self, music_settings: BackgroundMusicSettings, work_dir: Path) -> Path:
        """Walk the source chain and return the first file obtained.

        Raises:
            MusicMixError: Only when every source is unavailable
        """
        failures = []
        for source in self.sources:
            try:
                path = await source.resolve(music_settings, work_dir)
            except MusicSourceUnavailable as e:
                logger.debug(f"[MUSIC] Source {source.name} unavailable: {e}")
                failures.append(f"{source.name}: {e}")
                continue
            if failures:
                logger.warning(f"[MUSIC] Using fallback source '{source.name}' ({'; '.join(failures)})")
            else:
                logger.info(f"[MUSIC] Using {source.name} source: {path}")
            return Path(path)

        raise MusicMixError(
            f"Failed to obtain any background music: {'; '.join(failures)}",
            stage="mixing_music",
        )

    async def _duration(self, path: Path) -> float:
        probe = await self.prober.probe(str(path))
        if not probe.duration_seconds or probe.duration_seconds <= 0:
            raise MusicMixError(f"Could not determine duration of {path}", stage="mixing_music")
        return probe.duration_seconds

    def build_prepare_command(
        self,
        music_path: Path,
        music_duration: float,
        target_duration: float,
        music_settings: BackgroundMusicSettings,
        output_path: Path,
    ) -> FFmpegCommand:
        command = FFmpegCommand(output_path=str(output_path))
        loops = loop_count(music_duration, target_duration) if music_settings.loop else 0
        if loops:
            logger.info(f"[MUSIC] Looping music {loops} extra time(s) to cover {target_duration:.2f}s")
            command.add_input(music_path, "-stream_loop", str(loops))
        else:
            command.add_input(music_path)
        command.audio_filters = build_music_filters(music_settings, target_duration)
        command.output_options = ["-vn", "-c:a", "libmp3lame", "-b:a", MUSIC_BITRATE]
        return command

    def build_mix_command(
        self,
        video_path: Path,
        music_path: Path,
        output_path: Path,
        music_settings: BackgroundMusicSettings,
    ) -> FFmpegCommand:
        command = FFmpegCommand(output_path=str(output_path))
        command.add_input(video_path)
        command.add_input(music_path)
        command.filter_complex = build_mix_graph(music_settings.start_offset)
        command.maps = ["0:v", "[mixed_audio]"]
        command.output_options = ["-c:v", "copy", "-c:a", "aac", "-b:a", MUSIC_BITRATE]
        return command

    async def apply(
        self,
        video_path: Path,
        output_path: Path,
        music_settings: BackgroundMusicSettings,
        work_dir: Path,
        on_progress: Optional[PercentCallback] = None,
    ) -> Path:
        """Write ``video_path`` with background music to ``output_path``.

        Disabled music copies the video through unchanged.

        Raises:
            MusicMixError: On any failure
        """
        video_path, output_path, work_dir = Path(video_path), Path(output_path), Path(work_dir)

        if not music_settings.enabled:
            shutil.copyfile(video_path, output_path)
            return output_path

        def report(percent: float, message: str) -> None:
            if on_progress:
                on_progress(percent, message)

        try:
            work_dir.mkdir(parents=True, exist_ok=True)
            music_path = await self.resolve_music(music_settings, work_dir)
            report(10, "Background music ready")

            video_duration = await self._duration(video_path)
            music_duration = await self._duration(music_path)
            target = video_duration - music_settings.start_offset
            if target <= 0:
                raise MusicMixError(
                    f"Music start offset {music_settings.start_offset}s is beyond the video "
                    f"duration {video_duration:.2f}s",
                    stage="mixing_music",
                )
            logger.info(
                f"[MUSIC] Video {video_duration:.2f}s, music {music_duration:.2f}s, target {target:.2f}s"
            )

            processed = work_dir / PROCESSED_MUSIC_NAME
            await self.executor.run(
                self.build_prepare_command(music_path, music_duration, target, music_settings, processed),
                timeout=self.prepare_timeout,
            )
            report(30, "Background music prepared")

            def mix_progress(progress: EncoderProgress) -> None:
                if progress.percent is not None:
                    report(30 + progress.percent * 0.7, f"Mixing background music ({progress.timemark})")

            await self.executor.run(
                self.build_mix_command(video_path, processed, output_path, music_settings),
                timeout=self.mix_timeout,
                on_progress=mix_progress,
                duration=video_duration,
            )
        except MusicMixError:
            raise
        except (AssemblyError, OSError, RuntimeError) as e:
            logger.error(f"[MUSIC] Music mixing failed: {e}")
            raise MusicMixError(f"Failed to add background music: {e}", stage="mixing_music") from e

        report(100, "Background music added")
        logger.info(f"[MUSIC] Music mixing completed: {output_path}")
        return output_path
