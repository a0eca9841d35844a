"""Caption stage: segment timing and SRT/VTT export.

Timing is estimated from each scene's text and duration alone, so captions
can be produced without any transcription. When a scene does have
transcribed words their real timings are grouped instead; both paths emit
the same segment shape.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Iterable

import srt

from narrasync.models.schema import (
    AudioMetadata,
    CaptionScene,
    CaptionSegment,
    CaptionTimingData,
    Narration,
    TranscriptionOutput,
    Word,
)
from narrasync.utils.timecode import seconds_to_frame

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORDS = 7
DEFAULT_SCENE_SECONDS = 5.0

TERMINAL_PAUSE = 1.3
CLAUSE_PAUSE = 1.15

_TERMINAL_RE = re.compile(r"[.!?]$")
_CLAUSE_RE = re.compile(r"[,;:]$")


@dataclass
class TimedWord:
    word: str
    start: float
    end: float


def estimate_word_timing(text: str, start: float, duration: float) -> list[TimedWord]:
    """Spread a scene's words over its duration.

    Every word gets ``duration / word_count`` seconds, stretched by 1.3 after
    terminal punctuation and by 1.15 after a clause mark. The running clock
    never passes ``start + duration``.
    """
    words = text.split()
    if not words:
        return []

    base = duration / len(words)
    scene_end = start + duration
    clock = start
    timed: list[TimedWord] = []

    for word in words:
        length = base
        if _TERMINAL_RE.search(word):
            length *= TERMINAL_PAUSE
        elif _CLAUSE_RE.search(word):
            length *= CLAUSE_PAUSE

        end = min(clock + length, scene_end)
        timed.append(TimedWord(word=word, start=clock, end=end))
        clock = end

    return timed


def group_into_segments(
    words: list[TimedWord],
    max_words: int = DEFAULT_MAX_WORDS,
    fps: float = 60.0,
) -> list[CaptionSegment]:
    """Group consecutive words into caption segments.

    A segment closes when it reaches ``max_words`` or when a word ends in
    terminal punctuation, whichever comes first.
    """
    if max_words < 1:
        raise ValueError(f"max_words must be >= 1, got {max_words}")

    segments: list[CaptionSegment] = []
    current: list[TimedWord] = []

    def flush() -> None:
        start, end = current[0].start, current[-1].end
        segments.append(
            CaptionSegment(
                text=" ".join(w.word for w in current),
                start_time=start,
                end_time=end,
                start_frame=seconds_to_frame(start, fps),
                end_frame=seconds_to_frame(end, fps),
            )
        )
        current.clear()

    for word in words:
        current.append(word)
        if len(current) >= max_words or _TERMINAL_RE.search(word.word):
            flush()

    if current:
        flush()

    return segments


def segments_from_words(
    words: Iterable[Word],
    offset: float,
    max_words: int = DEFAULT_MAX_WORDS,
    fps: float = 60.0,
) -> list[CaptionSegment]:
    """Caption segments from transcribed words (scene-relative times + offset)."""
    timed = [TimedWord(word=w.word, start=offset + w.start, end=offset + w.end) for w in words]
    return group_into_segments(timed, max_words, fps)


def build_caption_timing(
    narration: Narration,
    audio_metadata: AudioMetadata | None,
    fps: float,
    max_words: int = DEFAULT_MAX_WORDS,
    buffer_frames: int = 0,
    transcription: TranscriptionOutput | None = None,
    composition_id: str | None = None,
) -> CaptionTimingData:
    """Compute caption timing for the whole composition.

    Scenes are laid end to end. A scene lasts its measured audio duration,
    else its declared duration, else five seconds, plus ``buffer_frames``
    of padding so cues line up with the rendered timeline.

    Args:
        narration: The narration script.
        audio_metadata: Measured durations (optional).
        fps: Frame rate for derived frame numbers.
        max_words: Maximum words per caption segment.
        buffer_frames: Per-scene padding in frames.
        transcription: Transcribed words to use instead of estimates (optional).
        composition_id: Id recorded in the output.

    Returns:
        CaptionTimingData.
    """
    measured = audio_metadata.durations() if audio_metadata is not None else {}
    buffer_seconds = buffer_frames / fps
    clock = 0.0
    scenes: list[CaptionScene] = []

    for scene in narration.scenes:
        duration = measured.get(scene.id) or scene.duration or DEFAULT_SCENE_SECONDS

        transcribed = transcription.scene(scene.id) if transcription is not None else None
        if transcribed is not None and transcribed.usable and transcribed.words:
            segments = segments_from_words(transcribed.words, clock, max_words, fps)
            source = "transcription"
        else:
            segments = group_into_segments(
                estimate_word_timing(scene.text, clock, duration), max_words, fps
            )
            source = "estimate"

        scenes.append(
            CaptionScene(
                id=scene.id,
                start_time=clock,
                end_time=clock + duration,
                duration=duration,
                word_count=len(scene.text.split()),
                segment_count=len(segments),
                segments=segments,
            )
        )
        logger.info(f"[{scene.id}] {len(segments)} caption segments ({source})")
        clock += duration + buffer_seconds

    return CaptionTimingData(
        composition_id=composition_id or narration.metadata.composition_id,
        fps=fps,
        scenes=scenes,
    )


def _cue_time(seconds: float) -> timedelta:
    # srt truncates sub-millisecond parts, so round to whole milliseconds first.
    return timedelta(milliseconds=round(max(seconds, 0.0) * 1000))


def to_subtitles(segments: list[CaptionSegment]) -> list[srt.Subtitle]:
    """Numbered subtitle cues shared by the SRT and VTT writers."""
    return [
        srt.Subtitle(
            index=i,
            start=_cue_time(seg.start_time),
            end=_cue_time(seg.end_time),
            content=seg.text,
        )
        for i, seg in enumerate(segments, start=1)
    ]


def format_srt_time(seconds: float) -> str:
    """``HH:MM:SS,mmm``"""
    return srt.timedelta_to_srt_timestamp(_cue_time(seconds))


def format_vtt_time(seconds: float) -> str:
    """``HH:MM:SS.mmm``"""
    return format_srt_time(seconds).replace(",", ".")


def to_srt(segments: list[CaptionSegment]) -> str:
    # Cues are already ordered; reindexing would also drop zero-length ones.
    return srt.compose(to_subtitles(segments), reindex=False)


def to_vtt(segments: list[CaptionSegment]) -> str:
    cues = [
        f"{sub.index}\n{format_vtt_time(sub.start.total_seconds())} --> "
        f"{format_vtt_time(sub.end.total_seconds())}\n{sub.content}\n"
        for sub in to_subtitles(segments)
    ]
    return "WEBVTT\n\n" + "\n".join(cues) if cues else "WEBVTT\n"


def write_captions(
    timing: CaptionTimingData,
    captions_dir: Path,
    formats: Iterable[str] = ("srt", "vtt"),
) -> list[Path]:
    """Write subtitle files and ``timing-data.json`` into ``captions_dir``."""
    captions_dir.mkdir(parents=True, exist_ok=True)
    segments = timing.all_segments()
    written: list[Path] = []

    renderers = {"srt": to_srt, "vtt": to_vtt}
    for fmt in formats:
        if fmt not in renderers:
            raise ValueError(f"Unknown caption format '{fmt}'. Choose from: srt, vtt")
        path = captions_dir / f"video.{fmt}"
        path.write_text(renderers[fmt](segments), encoding="utf-8")
        written.append(path)

    timing_path = captions_dir / "timing-data.json"
    timing.to_json(timing_path)
    written.append(timing_path)

    logger.info(f"Wrote {len(segments)} caption cues to {captions_dir}")
    return written
