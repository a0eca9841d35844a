"""Panel alignment stage: place authored visual panels on the speech timeline.

This stage handles:
- Text normalization and similarity scoring (swappable strategies)
- Matching each panel against transcription segments, then falling back to
  a word-sequence search, then to the authored percent placement
- Auto-generating one panel per segment for scenes without authored panels
- Writing resolved placement back into the narration script

Ambiguity is data, not an error: every panel comes back with a confidence
and a match type, and unmatched panels carry a review warning.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable

from rapidfuzz import fuzz

from narrasync.models.schema import (
    MatchType,
    Narration,
    NarrationScene,
    PanelAlignment,
    PanelScene,
    Segment,
    TranscriptionOutput,
    TranscriptionScene,
    VisualPanel,
    VisualPanelsOutput,
    Word,
)
from narrasync.store.artifacts import merge_by_id
from narrasync.utils.timecode import clamp, round_half_up, seconds_to_frame, to_percent

logger = logging.getLogger(__name__)

SEGMENT_MATCH_THRESHOLD = 0.5
CONTAINMENT_SCORE = 0.9
WORD_MATCH_CONFIDENCE = 0.7
# Extra transcript words taken past the panel's own word count
WORD_SPAN_SLACK = 5

MATCH_FAILED_WARNING = "Timestamp match failed - manual review required"

Similarity = Callable[[str, str], float]

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation (keeping any script's letters), collapse spaces."""
    text = _NON_WORD_RE.sub("", text.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def _normalize_token(token: str) -> str:
    return re.sub(r"[^\w]", "", token.lower())


def prefix_similarity(s1: str, s2: str) -> float:
    """Score two texts in [0, 1].

    1.0 when equal after normalization, 0 when either is empty, 0.9 when one
    contains the other, otherwise the length of the common leading run over
    the longer length.
    """
    a = normalize_text(s1)
    b = normalize_text(s2)

    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return CONTAINMENT_SCORE

    match_count = 0
    for ch_a, ch_b in zip(a, b):
        if ch_a != ch_b:
            break
        match_count += 1

    return match_count / max(len(a), len(b))


def _rapidfuzz_similarity(scorer: Callable[[str, str], float]) -> Similarity:
    def similarity(s1: str, s2: str) -> float:
        a = normalize_text(s1)
        b = normalize_text(s2)
        if a == b:
            return 1.0
        if not a or not b:
            return 0.0
        return scorer(a, b) / 100.0

    return similarity


ratio_similarity = _rapidfuzz_similarity(fuzz.ratio)
token_set_similarity = _rapidfuzz_similarity(fuzz.token_set_ratio)

SIMILARITY_STRATEGIES: dict[str, Similarity] = {
    "prefix": prefix_similarity,
    "ratio": ratio_similarity,
    "token_set": token_set_similarity,
}


def get_similarity(strategy: str) -> Similarity:
    try:
        return SIMILARITY_STRATEGIES[strategy]
    except KeyError:
        raise ValueError(
            f"Unknown similarity strategy '{strategy}'. "
            f"Choose from: {', '.join(SIMILARITY_STRATEGIES)}"
        )


@dataclass
class PanelMatch:
    """Where a panel's text was found in the transcription."""

    start: float
    end: float
    start_frame: int
    end_frame: int
    matched_text: str
    confidence: float
    match_type: MatchType


def _match_segment(
    panel_text: str,
    segments: list[Segment],
    similarity: Similarity,
) -> PanelMatch | None:
    best: Segment | None = None
    best_score = 0.0

    for segment in segments:
        score = similarity(panel_text, segment.text)
        # strict ">" keeps the first of equally good segments
        if score > best_score and score > SEGMENT_MATCH_THRESHOLD:
            best = segment
            best_score = score

    if best is None:
        return None

    return PanelMatch(
        start=best.start,
        end=best.end,
        start_frame=best.start_frame,
        end_frame=best.end_frame,
        matched_text=best.text,
        confidence=best_score,
        match_type="segment",
    )


def _match_words(panel_text: str, words: list[Word]) -> PanelMatch | None:
    panel_words = panel_text.lower().split()
    if not panel_words or not words:
        return None

    first = _normalize_token(panel_words[0])
    if not first:
        return None

    for i, word in enumerate(words):
        token = _normalize_token(word.word)
        if not token:
            continue
        if first in token or token in first:
            end_index = min(i + len(panel_words) + WORD_SPAN_SLACK, len(words)) - 1
            return PanelMatch(
                start=words[i].start,
                end=words[end_index].end,
                start_frame=words[i].start_frame,
                end_frame=words[end_index].end_frame,
                matched_text=" ".join(w.word for w in words[i:end_index + 1]),
                confidence=WORD_MATCH_CONFIDENCE,
                match_type="words",
            )

    return None


def find_match(
    panel_text: str,
    segments: list[Segment],
    words: list[Word],
    similarity: Similarity = prefix_similarity,
) -> PanelMatch | None:
    """Locate a panel's text: best segment first, then a word-sequence search.

    Args:
        panel_text: Authored panel text.
        segments: Transcription segments of the scene.
        words: Transcription words of the scene.
        similarity: Scoring function for segment matching.

    Returns:
        PanelMatch, or None when neither strategy finds the text.
    """
    return _match_segment(panel_text, segments, similarity) or _match_words(panel_text, words)


def _bounded_alignment(
    text: str,
    start: float,
    end: float,
    start_frame: int,
    end_frame: int,
    duration: float | None,
    duration_frames: int | None,
    confidence: float,
    match_type: MatchType,
    matched_text: str | None = None,
    warning: str | None = None,
) -> PanelAlignment:
    """Build a PanelAlignment clamped into the scene with start <= end."""
    upper = duration if duration is not None else max(start, end)
    start = clamp(start, 0.0, upper)
    end = clamp(end, start, upper)

    frame_upper = duration_frames if duration_frames is not None else max(start_frame, end_frame)
    start_frame = int(clamp(start_frame, 0, frame_upper))
    end_frame = int(clamp(end_frame, start_frame, frame_upper))

    start_percent = int(clamp(to_percent(start, duration), 0, 100))
    end_percent = int(clamp(to_percent(end, duration), start_percent, 100)) if duration else 100

    return PanelAlignment(
        text=text,
        start_seconds=start,
        end_seconds=end,
        start_frame=start_frame,
        end_frame=end_frame,
        start_percent=start_percent,
        end_percent=end_percent,
        confidence=confidence,
        match_type=match_type,
        matched_text=matched_text,
        warning=warning,
    )


def _unmatched_alignment(
    panel: VisualPanel,
    duration: float | None,
    duration_frames: int | None,
    fps: float,
) -> PanelAlignment:
    """Keep the authored percent placement and flag the panel for review."""
    start_percent = round_half_up(panel.start_percent or 0)
    end_percent = round_half_up(panel.end_percent if panel.end_percent is not None else 100)
    start_percent = int(clamp(start_percent, 0, 100))
    end_percent = int(clamp(end_percent, start_percent, 100))

    alignment = PanelAlignment(
        text=panel.text,
        start_percent=start_percent,
        end_percent=end_percent,
        confidence=0.0,
        match_type="none",
        warning=MATCH_FAILED_WARNING,
    )
    if duration is None:
        return alignment

    start = duration * start_percent / 100
    end = duration * end_percent / 100
    frame_upper = duration_frames if duration_frames is not None else seconds_to_frame(duration, fps)
    start_frame = int(clamp(seconds_to_frame(start, fps), 0, frame_upper))
    end_frame = int(clamp(seconds_to_frame(end, fps), start_frame, frame_upper))

    return alignment.model_copy(
        update={
            "start_seconds": start,
            "end_seconds": end,
            "start_frame": start_frame,
            "end_frame": end_frame,
        }
    )


def align_panel(
    panel: VisualPanel,
    transcription: TranscriptionScene,
    fps: float,
    similarity: Similarity = prefix_similarity,
) -> PanelAlignment:
    """Resolve one authored panel against a scene's transcription."""
    duration = transcription.duration
    duration_frames = transcription.duration_frames

    match = find_match(panel.text, transcription.segments, transcription.words, similarity)
    if match is None:
        logger.warning(f'[{transcription.id}] no match for panel "{panel.text[:30]}"')
        return _unmatched_alignment(panel, duration, duration_frames, fps)

    return _bounded_alignment(
        text=panel.text,
        start=match.start,
        end=match.end,
        start_frame=match.start_frame,
        end_frame=match.end_frame,
        duration=duration,
        duration_frames=duration_frames,
        confidence=match.confidence,
        match_type=match.match_type,
        matched_text=match.matched_text,
    )


def align_scene(
    scene: NarrationScene,
    transcription: TranscriptionScene,
    fps: float,
    similarity: Similarity = prefix_similarity,
) -> PanelScene:
    """Align every panel of a scene, or derive panels from segments if none are authored.

    Args:
        scene: Narration scene with its authored panels.
        transcription: The scene's transcription.
        fps: Composition frame rate.
        similarity: Scoring function for segment matching.

    Returns:
        PanelScene with one alignment per authored panel (or per segment).
    """
    if scene.visual_panels:
        panels = [align_panel(p, transcription, fps, similarity) for p in scene.visual_panels]
    else:
        logger.info(f"[{scene.id}] no visual panels authored, generating from segments")
        panels = [
            _bounded_alignment(
                text=segment.text,
                start=segment.start,
                end=segment.end,
                start_frame=segment.start_frame,
                end_frame=segment.end_frame,
                duration=transcription.duration,
                duration_frames=transcription.duration_frames,
                confidence=1.0,
                match_type="auto-segment",
            )
            for segment in transcription.segments
        ]

    return PanelScene(
        id=scene.id,
        duration=transcription.duration,
        duration_frames=transcription.duration_frames,
        panels=panels,
    )


def align_composition(
    narration: Narration,
    transcription: TranscriptionOutput,
    fps: float | None = None,
    scene_filter: set[str] | None = None,
    existing: VisualPanelsOutput | None = None,
    strategy: str = "prefix",
    composition_id: str | None = None,
) -> VisualPanelsOutput:
    """Align the panels of every (selected) scene with usable transcription.

    Scenes without transcription, or whose transcription failed, are skipped
    with a warning. Results are merged into ``existing`` by scene id.

    Args:
        narration: The narration script.
        transcription: Transcription output for the composition.
        fps: Frame rate (defaults to the transcription's).
        scene_filter: Only align these scene ids (None for all).
        existing: Previously stored panel output.
        strategy: Similarity strategy name.
        composition_id: Id recorded in the output.

    Returns:
        VisualPanelsOutput.
    """
    fps = fps or transcription.fps
    similarity = get_similarity(strategy)
    aligned: list[PanelScene] = []

    for scene in narration.scenes:
        if scene_filter and scene.id not in scene_filter:
            continue

        scene_transcription = transcription.scene(scene.id)
        if scene_transcription is None or not scene_transcription.usable:
            logger.warning(f"[{scene.id}] no usable transcription, skipped")
            continue

        panel_scene = align_scene(scene, scene_transcription, fps, similarity)
        flagged = sum(1 for p in panel_scene.panels if p.needs_review)
        logger.info(
            f"[{scene.id}] {len(panel_scene.panels)} panels aligned"
            + (f", {flagged} need review" if flagged else "")
        )
        aligned.append(panel_scene)

    previous = existing.scenes if existing is not None else []
    return VisualPanelsOutput(
        composition_id=composition_id or narration.metadata.composition_id or transcription.composition_id,
        fps=fps,
        scenes=merge_by_id(previous, aligned, narration.scene_ids),
    )


def apply_panels_to_narration(narration: Narration, panels: VisualPanelsOutput) -> Narration:
    """Return a copy of the narration with resolved panel placement written back.

    Authored panels keep any extra keys they carry; only text, percents and
    frames are updated.
    """
    updated = narration.model_copy(deep=True)

    for scene in updated.scenes:
        panel_scene = panels.scene(scene.id)
        if panel_scene is None:
            continue

        resolved: list[VisualPanel] = []
        for index, alignment in enumerate(panel_scene.panels):
            fields = {
                "text": alignment.text,
                "start_percent": alignment.start_percent,
                "end_percent": alignment.end_percent,
                "start_frame": alignment.start_frame,
                "end_frame": alignment.end_frame,
            }
            if index < len(scene.visual_panels) and scene.visual_panels[index].text == alignment.text:
                resolved.append(scene.visual_panels[index].model_copy(update=fields))
            else:
                resolved.append(VisualPanel(**fields))
        scene.visual_panels = resolved

    return updated
