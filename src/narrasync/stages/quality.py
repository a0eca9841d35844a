"""Audio quality checks on measured clip durations.

Flags clips that are suspiciously short, spoken too fast or too slow for
their text, or badly paced for a scene. The checks only annotate: they
return issues and never stop the pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from narrasync.models.schema import AudioMetadata, NarrationScene, ValidationIssue

logger = logging.getLogger(__name__)

CATEGORY = "audio-quality"


@dataclass
class QualityThresholds:
    """Limits used by :func:`check_audio_quality`."""

    min_duration: float = 0.5  # below this the clip is almost certainly broken
    min_chars_per_second: float = 2.0
    max_chars_per_second: float = 8.0
    min_scene_duration: float = 5.0
    max_scene_duration: float = 45.0


def speech_rate(text: str, duration: float) -> float:
    """Non-whitespace characters spoken per second."""
    if duration <= 0:
        return 0.0
    chars = sum(1 for ch in text if not ch.isspace())
    return chars / duration


def check_audio_quality(
    metadata: AudioMetadata,
    scenes: list[NarrationScene] | None = None,
    thresholds: QualityThresholds | None = None,
) -> list[ValidationIssue]:
    """Check measured clips for duration and speech-rate anomalies.

    Args:
        metadata: Measured audio metadata.
        scenes: Narration scenes, used for full text and bumper flags.
            Falls back to the text preview stored in the metadata.
        thresholds: Limits to check against.

    Returns:
        List of warning-level issues (empty when everything looks normal).
    """
    thresholds = thresholds or QualityThresholds()
    by_id = {scene.id: scene for scene in scenes or []}
    issues: list[ValidationIssue] = []

    for clip in metadata.scenes:
        scene = by_id.get(clip.id)

        if clip.error is not None:
            issues.append(
                ValidationIssue(
                    category=CATEGORY,
                    message=f'Scene "{clip.id}" has no usable audio: {clip.error}',
                    severity="warning",
                    details={"scene": clip.id, "level": "critical"},
                )
            )
            continue

        duration = clip.duration_seconds
        if duration is None:
            continue

        if duration < thresholds.min_duration:
            issues.append(
                ValidationIssue(
                    category=CATEGORY,
                    message=(
                        f'Scene "{clip.id}" audio is only {duration:.2f}s '
                        f"(minimum {thresholds.min_duration}s)"
                    ),
                    severity="warning",
                    details={"scene": clip.id, "duration": duration, "level": "critical"},
                )
            )
            # rate and pacing are meaningless for a broken clip
            continue

        text = scene.text if scene is not None else (clip.text or "")
        if text.endswith("...") and scene is None:
            # metadata only keeps a truncated preview
            text = ""

        if text:
            rate = speech_rate(text, duration)
            if not thresholds.min_chars_per_second <= rate <= thresholds.max_chars_per_second:
                issues.append(
                    ValidationIssue(
                        category=CATEGORY,
                        message=(
                            f'Scene "{clip.id}" speech rate {rate:.1f} chars/s is outside '
                            f"[{thresholds.min_chars_per_second}, {thresholds.max_chars_per_second}]"
                        ),
                        severity="warning",
                        details={"scene": clip.id, "charsPerSecond": round(rate, 2), "level": "rate"},
                    )
                )

        is_bumper = scene.bumper if scene is not None else False
        if not is_bumper and not (
            thresholds.min_scene_duration <= duration <= thresholds.max_scene_duration
        ):
            issues.append(
                ValidationIssue(
                    category=CATEGORY,
                    message=(
                        f'Scene "{clip.id}" runs {duration:.1f}s, outside the '
                        f"{thresholds.min_scene_duration:.0f}-{thresholds.max_scene_duration:.0f}s pacing range"
                    ),
                    severity="warning",
                    details={"scene": clip.id, "duration": duration, "level": "pacing"},
                )
            )

    for issue in issues:
        logger.warning(issue.message)

    return issues
