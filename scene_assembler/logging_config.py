"""Logging setup for the application entrypoint."""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger.

    Safe to call more than once; later calls only change the level.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(h, "_scene_assembler", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._scene_assembler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
