"""Retention of intermediate segments for debugging."""

import logging
import shutil
from pathlib import Path
from typing import Optional, Protocol

from scene_assembler.config import get_settings

logger = logging.getLogger(__name__)


class DebugSegmentStore(Protocol):
    def save(self, run_id: str, segment_paths: list[Path]) -> list[Path]: ...


class NullDebugSegmentStore:
    """Keeps nothing."""

    def save(self, run_id: str, segment_paths: list[Path]) -> list[Path]:
        return []


class LocalDebugSegmentStore:
    """Copies segments to ``<root>/<run_id>/segment_NNN.mp4``."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or get_settings().debug_segments_dir)

    def save(self, run_id: str, segment_paths: list[Path]) -> list[Path]:
        target_dir = self.root / run_id
        target_dir.mkdir(parents=True, exist_ok=True)
        saved = []
        for index, path in enumerate(segment_paths):
            target = target_dir / f"segment_{index + 1:03d}{Path(path).suffix}"
            shutil.copyfile(path, target)
            saved.append(target)
        logger.info(f"[DEBUG] Preserved {len(saved)} segments in {target_dir}")
        return saved


def default_debug_store() -> DebugSegmentStore:
    if get_settings().preserve_debug_segments:
        return LocalDebugSegmentStore()
    return NullDebugSegmentStore()
