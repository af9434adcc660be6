"""
Local background music library.

Tracks are described by ``catalog.json`` in the library directory:

    {"tracks": [{"id": "peaceful-morning", "title": "Peaceful Morning",
                 "duration": 120, "genre": ["ambient"], "mood": ["calm"],
                 "file_path": "/audio/background-music/peaceful-morning.mp3"}]}

``file_path`` is relative to the public root. Audio files present in the
directory but missing from the catalog are listed with their file stem as id.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from scene_assembler.config import get_settings

logger = logging.getLogger(__name__)

CATALOG_FILE = "catalog.json"
SUPPORTED_AUDIO_EXTENSIONS = (".mp3", ".wav", ".aac", ".m4a", ".ogg", ".flac")


class MusicTrack(BaseModel):
    id: str
    title: str
    artist: str | None = None
    duration: float | None = None  # seconds
    genre: list[str] = Field(default_factory=list)
    mood: list[str] = Field(default_factory=list)
    file_path: str


class MusicCatalog(BaseModel):
    tracks: list[MusicTrack] = Field(default_factory=list)


class MusicLibrary:
    """Read-only view over the local music catalog."""

    def __init__(self, library_dir: Optional[str] = None, public_root: Optional[str] = None):
        settings = get_settings()
        self.library_dir = Path(library_dir or settings.music_library_dir)
        self.public_root = Path(public_root or settings.public_root)
        self._catalog: MusicCatalog | None = None

    def _public_path_of(self, file: Path) -> str:
        try:
            return "/" + file.resolve().relative_to(self.public_root.resolve()).as_posix()
        except ValueError:
            return str(file.resolve())

    def _discover(self, known: set[str]) -> list[MusicTrack]:
        if not self.library_dir.is_dir():
            return []
        tracks = []
        for file in sorted(self.library_dir.iterdir()):
            if file.suffix.lower() not in SUPPORTED_AUDIO_EXTENSIONS or file.stem in known:
                continue
            tracks.append(
                MusicTrack(
                    id=file.stem,
                    title=file.stem.replace("-", " ").replace("_", " ").title(),
                    file_path=self._public_path_of(file),
                )
            )
        return tracks

    def load_catalog(self) -> MusicCatalog:
        """Load (once) the catalog, merged with auto-discovered files."""
        if self._catalog is not None:
            return self._catalog

        catalog = MusicCatalog()
        catalog_path = self.library_dir / CATALOG_FILE
        if catalog_path.exists():
            try:
                catalog = MusicCatalog.model_validate(json.loads(catalog_path.read_text(encoding="utf-8")))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.error(f"[MUSIC] Invalid catalog {catalog_path}: {e}")
                raise ValueError(f"Failed to load music catalog: {e}") from e

        discovered = self._discover({t.id for t in catalog.tracks})
        if discovered:
            logger.info(f"[MUSIC] Discovered {len(discovered)} uncatalogued tracks")
        catalog.tracks.extend(discovered)

        self._catalog = catalog
        logger.info(f"[MUSIC] Catalog loaded with {len(catalog.tracks)} tracks")
        return catalog

    def all_tracks(self) -> list[MusicTrack]:
        return list(self.load_catalog().tracks)

    def get_track(self, track_id: str) -> Optional[MusicTrack]:
        return next((t for t in self.load_catalog().tracks if t.id == track_id), None)

    def get_track_file_path(self, track_id: str) -> Optional[Path]:
        """Absolute path of a track's audio file, or None if unknown or missing."""
        track = self.get_track(track_id)
        if track is None:
            return None
        path = self.public_root / track.file_path.lstrip("/")
        if not path.exists():
            logger.warning(f"[MUSIC] File not found for track {track_id}: {path}")
            return None
        return path

    def search(
        self,
        mood: Optional[list[str]] = None,
        genre: Optional[list[str]] = None,
        min_duration: Optional[float] = None,
        max_duration: Optional[float] = None,
        max_results: int = 20,
    ) -> list[MusicTrack]:
        """Tracks matching any of the given moods and any of the given genres."""
        tracks = self.load_catalog().tracks
        if mood:
            tracks = [t for t in tracks if any(m in t.mood for m in mood)]
        if genre:
            tracks = [t for t in tracks if any(g in t.genre for g in genre)]
        if min_duration is not None:
            tracks = [t for t in tracks if t.duration is not None and t.duration >= min_duration]
        if max_duration is not None:
            tracks = [t for t in tracks if t.duration is not None and t.duration <= max_duration]
        return tracks[:max_results]


@lru_cache
def get_music_library() -> MusicLibrary:
    return MusicLibrary()
