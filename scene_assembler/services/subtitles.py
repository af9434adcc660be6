"""
Default subtitle generator: burns narration in with FFmpeg ``drawtext``.

Timing follows the narration: the text appears 0.3 s before ``delay`` (to give
the reader a head start) and stays until ``delay + duration``, optionally
fading in over 0.5 s.
"""

import logging
import math
import textwrap
from typing import Optional

from scene_assembler.config import get_settings
from scene_assembler.render.filters import T, Expr, Num, Var, between, if_, lt, make_filter, max_, min_
from scene_assembler.schemas.video import SubtitleSettings

logger = logging.getLogger(__name__)

EARLY_START = 0.3
FADE_IN_DURATION = 0.5
BASE_LINE_LENGTH = 60
BASE_FONT_SIZE = 32

W = Var("w")
H = Var("h")
TEXT_W = Var("text_w")
TEXT_H = Var("text_h")

_UNICODE_REPLACEMENTS = {
    "'": "’",
    "‘": "’",
    "`": "’",
    '"': "”",
    "“": "”",
    "…": "...",
}


def is_portrait(width: int, height: int, orientation: Optional[str]) -> bool:
    if orientation == "portrait":
        return True
    if orientation in ("landscape", "square"):
        return False
    return width / height < 1


def max_line_length(font_size: int, portrait: bool) -> int:
    """Characters per line; bigger fonts and narrow frames get shorter lines."""
    ratio = font_size / BASE_FONT_SIZE
    if font_size >= 48:
        length = math.floor(BASE_LINE_LENGTH / (ratio * 1.1))
    else:
        length = math.floor(BASE_LINE_LENGTH / math.sqrt(ratio))
    if portrait:
        length = math.floor(length * 0.7)
    return max(15, min(80, length))


def wrap_narration(text: str, font_size: int, portrait: bool) -> str:
    return "\n".join(textwrap.wrap(text.strip(), width=max_line_length(font_size, portrait)))


def escape_drawtext(text: str) -> str:
    """Make text safe inside ``drawtext=text='...'``."""
    for source, target in _UNICODE_REPLACEMENTS.items():
        text = text.replace(source, target)
    return (
        text.replace("\\", "\\\\")
        .replace(":", "\\:")
        .replace("%", "\\%")
    )


class DrawTextSubtitleGenerator:
    """``SubtitleFilterGenerator`` backed by the drawtext filter."""

    def __init__(self, font_file: Optional[str] = None):
        self.font_file = font_file if font_file is not None else get_settings().subtitle_font_file

    def position(self, settings: SubtitleSettings, width: int, height: int, portrait: bool) -> tuple[Expr, Expr]:
        horizontal_margin = max(20, math.floor(width * 0.05))
        vertical_margin = max(30, math.floor(height * 0.08))
        if portrait:
            vertical_margin = max(50, math.floor(height * 0.12))

        x = max_(horizontal_margin, min_((W - TEXT_W) / 2, W - TEXT_W - horizontal_margin))
        if settings.position == "top":
            y: Expr = Num(vertical_margin)
        elif settings.position == "center":
            y = max_(vertical_margin, min_((H - TEXT_H) / 2, H - TEXT_H - vertical_margin))
        else:
            y = max_(vertical_margin, H - TEXT_H - vertical_margin)
        return x, y

    def generate_filter(
        self,
        narration: str,
        subtitle_settings: SubtitleSettings,
        width: int,
        height: int,
        duration: float,
        scene_index: int,
        transitions_enabled: bool,
        transition_duration: float,
        orientation: str,
    ) -> str:
        if not subtitle_settings.enabled or not narration or not narration.strip():
            return ""

        portrait = is_portrait(width, height, orientation)
        style = subtitle_settings.style
        font_size = max(16, math.floor(style.font_size * 0.85)) if portrait else style.font_size

        start = max(0.0, subtitle_settings.delay - EARLY_START)
        end = subtitle_settings.delay + duration
        x, y = self.position(subtitle_settings, width, height, portrait)

        text = escape_drawtext(wrap_narration(narration, style.font_size, portrait))
        options = {
            "text": f"'{text}'",
            "fontsize": font_size,
            "fontcolor": style.font_color.lstrip("#"),
            "x": x,
            "y": y,
            "borderw": style.outline_width,
            "bordercolor": style.outline_color.lstrip("#"),
        }
        if self.font_file:
            options["fontfile"] = self.font_file
        options["enable"] = between(T, start, end)
        if subtitle_settings.fade_in:
            fade_end = start + FADE_IN_DURATION
            options["alpha"] = if_(lt(T, start), 0, if_(lt(T, fade_end), (T - start) / FADE_IN_DURATION, 1))

        logger.info(
            f"[SUBTITLES] Scene {scene_index + 1}: {start:.2f}s-{end:.2f}s, "
            f"{subtitle_settings.position}, font {font_size}px (transitions: {transitions_enabled})"
        )
        return make_filter("drawtext", **options).render()
