"""Seconds/frames conversions shared by every stage."""

from __future__ import annotations

import math

# Products like 0.1 * 30 land a hair above an integer; snap before ceil.
_FRAME_EPSILON_DIGITS = 6


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def seconds_to_frame(seconds: float, fps: float) -> int:
    """Frame index of a timestamp: round(seconds * fps)."""
    return round_half_up(seconds * fps)


def duration_to_frames(seconds: float, fps: float) -> int:
    """Frames needed to cover a duration: ceil(seconds * fps)."""
    return math.ceil(round(seconds * fps, _FRAME_EPSILON_DIGITS))


def frames_to_seconds(frames: int, fps: float) -> float:
    return round(frames / fps, 6)


def to_percent(seconds: float, duration: float | None) -> int:
    """Integer position of a timestamp within a scene, 0-100."""
    if not duration or duration <= 0:
        return 0
    return round_half_up(seconds / duration * 100)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))
