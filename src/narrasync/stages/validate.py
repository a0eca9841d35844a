"""Composition validation: pre-render checks over the persisted artifacts.

Every check runs independently and contributes to a single report; no check
stops the others. Errors block rendering, warnings only do so in strict
mode.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from narrasync.models.schema import (
    AudioMetadata,
    Narration,
    NarrationScene,
    ValidationIssue,
    ValidationReport,
    VisualPanelsOutput,
)
from narrasync.stages.duration import SUPPORTED_AUDIO_FORMATS, clip_file_name
from narrasync.stages.timing import FrameTable, TimingSource, compare_with_source
from narrasync.utils.logging import log_issue_summary

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.05
STRICT_TOLERANCE = 0.03
TRANSITION_OVERLAP_RATIO = 0.5
LOW_CONFIDENCE = 0.5
FALLBACK_SCENE_SECONDS = 5.0

DEFAULT_IGNORED_FILES = frozenset({"music.mp3"})


def _issue(category: str, message: str, severity: str = "warning", **details) -> ValidationIssue:
    return ValidationIssue(
        category=category,
        message=message,
        severity=severity,  # type: ignore[arg-type]
        details=details or None,
    )


def check_scenes(narration: Narration, composition_id: str | None = None) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    declared_id = narration.metadata.composition_id
    if composition_id and declared_id and declared_id != composition_id:
        issues.append(
            _issue(
                "narration",
                f'compositionId mismatch: expected "{composition_id}", got "{declared_id}"',
            )
        )
    if not narration.scenes:
        issues.append(_issue("narration", "No scenes defined in narration", severity="error"))
    return issues


def _clip_files(narration: Narration, audio_metadata: AudioMetadata | None) -> dict[str, str]:
    files = {scene.id: clip_file_name(scene.id) for scene in narration.scenes}
    if audio_metadata is not None:
        for clip in audio_metadata.scenes:
            if clip.id in files:
                files[clip.id] = clip.file
    return files


def check_audio_files(
    narration: Narration,
    audio_dir: Path,
    audio_metadata: AudioMetadata | None = None,
    ignored_files: Iterable[str] = DEFAULT_IGNORED_FILES,
) -> list[ValidationIssue]:
    """Every scene needs a clip on disk; clips no scene references are reported.

    Unreferenced files are only reported, never removed.
    """
    issues: list[ValidationIssue] = []
    expected = _clip_files(narration, audio_metadata)

    for scene_id, file_name in expected.items():
        if not (audio_dir / file_name).exists():
            issues.append(
                _issue(
                    "audio",
                    f'Missing audio file for scene "{scene_id}"',
                    severity="error",
                    scene=scene_id,
                    expected=str(audio_dir / file_name),
                )
            )

    if audio_dir.is_dir():
        referenced = set(expected.values()) | set(ignored_files)
        orphaned = sorted(
            path.name
            for path in audio_dir.iterdir()
            if path.is_file()
            and path.suffix.lower() in SUPPORTED_AUDIO_FORMATS
            and path.name not in referenced
        )
        if orphaned:
            issues.append(
                _issue("audio", f"Found {len(orphaned)} orphaned audio file(s)", files=orphaned)
            )

    return issues


def check_durations(
    narration: Narration,
    audio_metadata: AudioMetadata | None,
    tolerance: float,
) -> tuple[list[ValidationIssue], list[str]]:
    """Compare declared scene durations with measured audio.

    The allowed difference is ``tolerance`` times the declared duration,
    per scene and for the total. Scenes without a declared duration are not
    compared.
    """
    issues: list[ValidationIssue] = []
    info: list[str] = []

    if audio_metadata is None:
        issues.append(_issue("duration", "No audio metadata found, cannot validate durations"))
        return issues, info

    measured = audio_metadata.durations()
    declared_total = 0.0
    measured_total = 0.0

    for scene in narration.scenes:
        audio_seconds = measured.get(scene.id)
        if audio_seconds is None:
            issues.append(
                _issue("duration", f'No audio duration data for scene "{scene.id}"', scene=scene.id)
            )
            continue
        if scene.duration is None:
            continue

        declared_total += scene.duration
        measured_total += audio_seconds

        diff = abs(scene.duration - audio_seconds)
        if scene.duration > 0 and diff > scene.duration * tolerance:
            issues.append(
                _issue(
                    "duration",
                    f'Scene "{scene.id}" duration mismatch: declared {scene.duration}s vs '
                    f"audio {audio_seconds:.1f}s ({diff / scene.duration * 100:.1f}% diff)",
                    scene=scene.id,
                    declaredDuration=scene.duration,
                    audioDuration=audio_seconds,
                    diffPercent=round(diff / scene.duration * 100, 2),
                )
            )

    if declared_total > 0:
        total_diff = abs(declared_total - measured_total)
        if total_diff > declared_total * tolerance:
            issues.append(
                _issue(
                    "duration",
                    f"Total duration mismatch: declared {declared_total:.1f}s vs "
                    f"audio {measured_total:.1f}s",
                    declaredTotal=declared_total,
                    audioTotal=measured_total,
                    diffPercent=round(total_diff / declared_total * 100, 2),
                )
            )
        else:
            info.append(
                f"Total duration: {measured_total:.1f}s "
                f"({total_diff / declared_total * 100:.1f}% variance)"
            )

    return issues, info


def _scene_seconds(scene: NarrationScene, measured: dict[str, float]) -> float:
    return measured.get(scene.id) or scene.duration or FALLBACK_SCENE_SECONDS


def check_transitions(
    narration: Narration,
    audio_metadata: AudioMetadata | None = None,
) -> list[ValidationIssue]:
    """Flag neighbours whose combined transitions eat over half the shorter scene."""
    measured = audio_metadata.durations() if audio_metadata is not None else {}
    issues: list[ValidationIssue] = []

    for prev, scene in zip(narration.scenes, narration.scenes[1:]):
        prev_out = prev.transition_out.duration if prev.transition_out else 0.0
        next_in = scene.transition_in.duration if scene.transition_in else 0.0
        shorter = min(_scene_seconds(prev, measured), _scene_seconds(scene, measured))

        if prev_out + next_in > shorter * TRANSITION_OVERLAP_RATIO:
            issues.append(
                _issue(
                    "transition",
                    f'Potential transition overlap: "{prev.id}" -> "{scene.id}"',
                    prevTransitionOut=prev_out,
                    transitionIn=next_in,
                    shorterSceneDuration=shorter,
                )
            )

    return issues


def check_frame_table(source: TimingSource, expected: FrameTable) -> list[ValidationIssue]:
    """Warn when the stored timing no longer matches the measured audio."""
    diffs = compare_with_source(source, expected)
    if not diffs:
        return []
    return [
        _issue(
            "timing",
            f"Timing source is stale for {len(diffs)} scene(s); re-run sync",
            scenes={key: {"stored": stored, "expected": exp} for key, (stored, exp) in diffs.items()},
        )
    ]


def check_panels(panels: VisualPanelsOutput) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for scene in panels.scenes:
        for panel in scene.panels:
            if panel.match_type == "none" or panel.confidence < LOW_CONFIDENCE:
                issues.append(
                    _issue(
                        "panels",
                        f'Scene "{scene.id}" panel "{panel.text[:30]}" needs review '
                        f"({panel.match_type}, confidence {panel.confidence:.2f})",
                        scene=scene.id,
                        matchType=panel.match_type,
                        confidence=panel.confidence,
                    )
                )
    return issues


def validate_composition(
    narration: Narration,
    audio_dir: Path,
    audio_metadata: AudioMetadata | None = None,
    strict: bool = False,
    tolerance: float | None = None,
    timing_source: TimingSource | None = None,
    frame_table: FrameTable | None = None,
    panels: VisualPanelsOutput | None = None,
    quality_issues: list[ValidationIssue] | None = None,
    ignored_files: Iterable[str] = DEFAULT_IGNORED_FILES,
    composition_id: str | None = None,
) -> ValidationReport:
    """Run every pre-render check and collect the results.

    Args:
        narration: The narration script.
        audio_dir: Directory holding the synthesized clips.
        audio_metadata: Measured durations (None if not generated yet).
        strict: Tighter tolerance, and warnings fail the report.
        tolerance: Relative duration tolerance (defaults to 5%, 3% strict).
        timing_source: Render timing source to check for staleness.
        frame_table: Frame table expected from the current audio.
        panels: Aligned visual panels to check for low confidence.
        quality_issues: Audio quality issues to include.
        ignored_files: Audio files never reported as unreferenced.
        composition_id: Expected composition id.

    Returns:
        ValidationReport.
    """
    if tolerance is None:
        tolerance = STRICT_TOLERANCE if strict else DEFAULT_TOLERANCE

    report = ValidationReport(
        composition_id=composition_id or narration.metadata.composition_id,
        strict_mode=strict,
    )

    report.extend(check_scenes(narration, composition_id))
    if narration.scenes:
        report.info.append(f"Found {len(narration.scenes)} scenes")

    report.extend(check_audio_files(narration, audio_dir, audio_metadata, ignored_files))

    duration_issues, duration_info = check_durations(narration, audio_metadata, tolerance)
    report.extend(duration_issues)
    report.info.extend(duration_info)

    report.extend(check_transitions(narration, audio_metadata))
    report.info.append(f"Checked {max(len(narration.scenes) - 1, 0)} scene transitions")

    if timing_source is not None and frame_table is not None:
        report.extend(check_frame_table(timing_source, frame_table))
    if panels is not None:
        report.extend(check_panels(panels))
    if quality_issues:
        report.extend(quality_issues)

    log_issue_summary(logger, len(report.errors), len(report.warnings))
    return report
