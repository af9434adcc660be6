"""
Camera-motion (Ken Burns style) filters for still-image segments.

Each animation turns the padded ``width x height`` frame into a moving crop of
an upscaled copy. Motion is driven by an easing curve over ``p = t / D`` where
D is the scene duration, so every effect starts at rest and lands exactly at
the end of the segment.

Intensity scales the amount of motion:
- subtle: 0.6x, gentle sine easing
- moderate: 1.0x, sine ease-in-out
- strong: 1.4x, cubic ease-in-out
"""

import logging
from typing import Callable, Union

from scene_assembler.exceptions import InvalidSettingsError
from scene_assembler.render.filters import (
    IW,
    IH,
    PI,
    T,
    Expr,
    FilterChain,
    cos,
    if_,
    lt,
    make_filter,
    pow_,
    sin,
)

logger = logging.getLogger(__name__)

ANIMATION_DESCRIPTIONS: dict[str, str] = {
    "none": "No animation - static image",
    "ken-burns-zoom-in": "Ken Burns: Slow zoom in effect",
    "ken-burns-pan-diagonal": "Ken Burns: Diagonal pan from top-left to bottom-right",
    "ken-burns-pan-left": "Ken Burns: Pan from right to left",
    "ken-burns-pan-right": "Ken Burns: Pan from left to right",
    "slow-zoom": "Slow zoom: Very subtle zoom in",
    "gentle-pan": "Gentle pan: Soft circular movement",
}

ANIMATION_TYPES: tuple[str, ...] = tuple(ANIMATION_DESCRIPTIONS)

INTENSITY_MULTIPLIERS: dict[str, float] = {
    "subtle": 0.6,
    "moderate": 1.0,
    "strong": 1.4,
}

# Maximum extra scale at intensity 1.0
ZOOM_IN_RANGE = 0.18
PAN_SCALE = 0.15
SLOW_ZOOM_RANGE = 0.08
GENTLE_PAN_SCALE = 0.12
GENTLE_PAN_RADIUS = 0.3
# Vertical drift of horizontal pans, as a fraction of frame height
PAN_DRIFT = 0.01


# ============================================================================
# Easing
# ============================================================================


def ease_gentle(p: Expr) -> Expr:
    return sin(p * PI - PI / 2) * 0.5 + 0.5


def ease_sine_in_out(p: Expr) -> Expr:
    return -(cos(PI * p) - 1) / 2


def ease_cubic_in_out(p: Expr) -> Expr:
    return if_(lt(p, 0.5), 4 * pow_(p, 3), 1 - pow_(-2 * p + 2, 3) / 2)


EASING_BY_INTENSITY: dict[str, Callable[[Expr], Expr]] = {
    "subtle": ease_gentle,
    "moderate": ease_sine_in_out,
    "strong": ease_cubic_in_out,
}


# ============================================================================
# Validation / listing
# ============================================================================


def validate_animation_settings(animation_type: str, intensity: str) -> bool:
    """Check an animation type / intensity pair."""
    if animation_type not in ANIMATION_DESCRIPTIONS:
        logger.error(f"[ANIMATION] Invalid animation type: {animation_type}")
        return False
    if intensity not in INTENSITY_MULTIPLIERS:
        logger.error(f"[ANIMATION] Invalid animation intensity: {intensity}")
        return False
    return True


def describe_animation(animation_type: str) -> str:
    return ANIMATION_DESCRIPTIONS.get(animation_type, "Unknown animation type")


def available_animations() -> list[dict[str, str]]:
    """All animation types with human-readable descriptions."""
    return [{"type": t, "description": describe_animation(t)} for t in ANIMATION_TYPES]


# ============================================================================
# Filter builders
# ============================================================================


def _even(value: float) -> int:
    """Round to the nearest even integer (x264 needs even dimensions)."""
    return int(round(value / 2)) * 2


def _zoom_chain(zoom: Expr, fps: int, width: int, height: int) -> FilterChain:
    # scale re-evaluates every frame, then a centred crop restores the frame size
    return FilterChain([
        make_filter("fps", fps),
        make_filter("scale", w=IW * zoom, h=IH * zoom, flags="bicubic", eval="frame"),
        make_filter("crop", width, height),
    ])


def _pan_chain(zoom: float, x: Expr, y: Union[Expr, float], fps: int, width: int, height: int) -> FilterChain:
    return FilterChain([
        make_filter("fps", fps),
        make_filter("scale", w=_even(width * zoom), h=_even(height * zoom), flags="bicubic"),
        make_filter("crop", w=width, h=height, x=x, y=y, exact=1),
    ])


def _travel(width: int, height: int, zoom: float) -> tuple[int, int]:
    return _even(width * zoom) - width, _even(height * zoom) - height


def build_animation_chain(
    animation_type: str,
    intensity: str,
    duration: float,
    width: int,
    height: int,
    fps: int = 30,
) -> FilterChain:
    """Build the motion filter chain for one segment.

    Returns:
        FilterChain (empty for ``none``)

    Raises:
        InvalidSettingsError: For unknown types/intensities or a non-positive duration
    """
    if not validate_animation_settings(animation_type, intensity):
        raise InvalidSettingsError(
            f"Invalid animation settings: type={animation_type!r}, intensity={intensity!r}",
            stage="segmenting",
        )
    if animation_type == "none":
        return FilterChain()
    if duration <= 0:
        raise InvalidSettingsError(f"Animation duration must be positive, got {duration}", stage="segmenting")

    m = INTENSITY_MULTIPLIERS[intensity]
    p = T / duration
    ease = EASING_BY_INTENSITY[intensity](p)

    if animation_type == "ken-burns-zoom-in":
        return _zoom_chain(1 + ZOOM_IN_RANGE * m * ease, fps, width, height)

    if animation_type == "slow-zoom":
        return _zoom_chain(1 + SLOW_ZOOM_RANGE * m * p, fps, width, height)

    if animation_type in ("ken-burns-pan-left", "ken-burns-pan-right", "ken-burns-pan-diagonal"):
        zoom = 1 + PAN_SCALE * m
        travel_x, travel_y = _travel(width, height, zoom)

        if animation_type == "ken-burns-pan-diagonal":
            return _pan_chain(zoom, travel_x * ease, travel_y * ease, fps, width, height)

        x = travel_x * ease if animation_type == "ken-burns-pan-right" else travel_x * (1 - ease)
        y: Union[Expr, float] = travel_y / 2
        if intensity != "subtle":
            y = travel_y / 2 + sin(p * PI * 2) * round(height * PAN_DRIFT)
        return _pan_chain(zoom, x, y, fps, width, height)

    # gentle-pan: circle around the centre of the upscaled frame
    zoom = 1 + GENTLE_PAN_SCALE * m
    travel_x, travel_y = _travel(width, height, zoom)
    radius = GENTLE_PAN_RADIUS * min(travel_x, travel_y)
    angle = 2 * PI * ease
    x = travel_x / 2 + radius * cos(angle)
    y = travel_y / 2 + radius * sin(angle)
    return _pan_chain(zoom, x, y, fps, width, height)


def generate_animation_filter(
    animation_type: str,
    intensity: str,
    duration: float,
    width: int,
    height: int,
    fps: int = 30,
) -> str:
    """Motion filter as FFmpeg filter text ("" for ``none``)."""
    chain = build_animation_chain(animation_type, intensity, duration, width, height, fps)
    if chain:
        logger.info(f"[ANIMATION] {animation_type} ({intensity}) for {duration}s at {width}x{height}")
    return chain.render()
