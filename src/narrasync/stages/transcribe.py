"""Transcription stage: segment and word timestamps for synthesized clips.

This stage handles:
- Speech-to-text with timestamps via faster-whisper (local) or the OpenAI
  Whisper API
- Converting provider output into per-scene records with frame numbers

The faster-whisper model is lazy-loaded and cached per size/device.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from narrasync.models.schema import (
    AudioMetadata,
    Segment,
    TranscriptionOutput,
    TranscriptionScene,
    Word,
)
from narrasync.store.artifacts import merge_by_id
from narrasync.utils.timecode import duration_to_frames, seconds_to_frame

if TYPE_CHECKING:
    from faster_whisper import WhisperModel

logger = logging.getLogger(__name__)

# Lazy-loaded model references
_whisper_model: WhisperModel | None = None
_whisper_model_size: str | None = None
_whisper_device: str | None = None


class TranscriptionError(Exception):
    """Error during transcription."""

    pass


@dataclass
class RawSegment:
    start: float
    end: float
    text: str


@dataclass
class RawWord:
    word: str
    start: float
    end: float


@dataclass
class RawTranscript:
    """Provider-neutral transcription result, times in seconds."""

    text: str = ""
    segments: list[RawSegment] = field(default_factory=list)
    words: list[RawWord] = field(default_factory=list)
    duration: float | None = None
    language: str | None = None


class Transcriber(Protocol):
    """Anything that turns an audio file into a timed transcript."""

    name: str

    def transcribe(self, audio_path: Path, language: str | None = None) -> RawTranscript:
        ...


def _get_compute_type(device: str) -> str:
    """Get the faster-whisper compute type for the device."""
    if device == "cuda":
        return "float16"
    return "int8"  # CPU optimization


def _load_whisper_model(model_size: str = "small", device: str = "cpu") -> WhisperModel:
    """Lazy-load the Whisper model.

    Args:
        model_size: Model size (tiny, base, small, medium, large-v3).
        device: Compute device (cuda or cpu).

    Returns:
        Loaded WhisperModel instance.
    """
    global _whisper_model, _whisper_model_size, _whisper_device

    # Return cached model if same config
    if (
        _whisper_model is not None
        and _whisper_model_size == model_size
        and _whisper_device == device
    ):
        return _whisper_model

    start_time = time.perf_counter()
    logger.info(f"Loading Whisper model '{model_size}' on {device}...")

    try:
        from faster_whisper import WhisperModel
    except ImportError as e:
        raise TranscriptionError(
            f"Failed to import faster-whisper: {e}\n"
            "Install with: pip install faster-whisper"
        )

    compute_type = _get_compute_type(device)

    try:
        _whisper_model = WhisperModel(model_size, device=device, compute_type=compute_type)
        _whisper_model_size = model_size
        _whisper_device = device
    except Exception as e:
        raise TranscriptionError(f"Failed to load Whisper model: {e}") from e

    elapsed = time.perf_counter() - start_time
    logger.info(
        f"Whisper model loaded in {elapsed:.2f}s "
        f"(size={model_size}, device={device}, compute_type={compute_type})"
    )
    return _whisper_model


class FasterWhisperTranscriber:
    """Local transcription with faster-whisper word timestamps."""

    name = "faster-whisper"

    def __init__(self, model_size: str = "small", device: str = "cpu") -> None:
        self.model_size = model_size
        self.device = device

    def transcribe(self, audio_path: Path, language: str | None = None) -> RawTranscript:
        if not audio_path.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        model = _load_whisper_model(self.model_size, self.device)
        start_time = time.perf_counter()

        try:
            segments_iter, info = model.transcribe(
                str(audio_path),
                language=language,
                word_timestamps=True,
            )

            segments: list[RawSegment] = []
            words: list[RawWord] = []
            for segment in segments_iter:
                segments.append(RawSegment(start=segment.start, end=segment.end, text=segment.text.strip()))
                for word in segment.words or []:
                    words.append(RawWord(word=word.word.strip(), start=word.start, end=word.end))
        except Exception as e:
            raise TranscriptionError(f"Transcription failed: {e}") from e

        elapsed = time.perf_counter() - start_time
        logger.debug(
            f"Transcribed {audio_path.name}: {len(segments)} segments, "
            f"{len(words)} words in {elapsed:.2f}s"
        )

        return RawTranscript(
            text=" ".join(seg.text for seg in segments),
            segments=segments,
            words=words,
            duration=getattr(info, "duration", None),
            language=getattr(info, "language", None),
        )


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class OpenAIWhisperTranscriber:
    """Hosted transcription through the OpenAI audio API (``verbose_json``)."""

    name = "openai-whisper"

    def __init__(self, api_key: str, model: str = "whisper-1", client: Any | None = None) -> None:
        if not api_key and client is None:
            raise TranscriptionError("An OpenAI API key is required for openai-whisper transcription")
        self.model = model
        if client is None:
            from openai import OpenAI

            client = OpenAI(api_key=api_key)
        self.client = client

    def transcribe(self, audio_path: Path, language: str | None = None) -> RawTranscript:
        if not audio_path.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        options: dict[str, Any] = {
            "model": self.model,
            "response_format": "verbose_json",
            "timestamp_granularities": ["word", "segment"],
        }
        if language:
            options["language"] = language

        try:
            with audio_path.open("rb") as f:
                response = self.client.audio.transcriptions.create(file=f, **options)
        except Exception as e:
            raise TranscriptionError(f"OpenAI transcription failed: {e}") from e

        segments = [
            RawSegment(
                start=float(_field(s, "start", 0.0)),
                end=float(_field(s, "end", 0.0)),
                text=str(_field(s, "text", "")).strip(),
            )
            for s in _field(response, "segments") or []
        ]
        words = [
            RawWord(
                word=str(_field(w, "word", "")).strip(),
                start=float(_field(w, "start", 0.0)),
                end=float(_field(w, "end", 0.0)),
            )
            for w in _field(response, "words") or []
        ]
        return RawTranscript(
            text=str(_field(response, "text", "")).strip(),
            segments=segments,
            words=words,
            duration=_field(response, "duration"),
            language=_field(response, "language"),
        )


def to_transcription_scene(
    scene_id: str,
    transcript: RawTranscript,
    fps: float,
    duration: float | None = None,
) -> TranscriptionScene:
    """Attach frame numbers (``round(seconds * fps)``) to a raw transcript."""
    duration = duration if duration is not None else transcript.duration
    return TranscriptionScene(
        id=scene_id,
        duration=duration,
        duration_frames=duration_to_frames(duration, fps) if duration is not None else None,
        text=transcript.text,
        segments=[
            Segment(
                text=seg.text,
                start=seg.start,
                end=seg.end,
                start_frame=seconds_to_frame(seg.start, fps),
                end_frame=seconds_to_frame(seg.end, fps),
            )
            for seg in transcript.segments
        ],
        words=[
            Word(
                word=w.word,
                start=w.start,
                end=w.end,
                start_frame=seconds_to_frame(w.start, fps),
                end_frame=seconds_to_frame(w.end, fps),
            )
            for w in transcript.words
            if w.word
        ],
    )


def transcribe_scenes(
    metadata: AudioMetadata,
    audio_dir: Path,
    transcriber: Transcriber,
    fps: float,
    language: str | None = None,
    scene_filter: set[str] | None = None,
) -> list[TranscriptionScene]:
    """Transcribe every (selected) clip listed in the audio metadata.

    Scenes are processed one at a time. A clip whose file is missing is
    skipped with a warning; a provider failure is recorded as that scene's
    ``error`` and the remaining scenes are still processed.

    Args:
        metadata: Measured audio metadata (source of clip files and durations).
        audio_dir: Directory holding the clips.
        transcriber: Transcription provider.
        fps: Composition frame rate used for every frame number.
        language: Language hint passed to the provider.
        scene_filter: Only transcribe these scene ids (None for all).

    Returns:
        One TranscriptionScene per processed scene.
    """
    results: list[TranscriptionScene] = []
    language = language or metadata.language

    for clip in metadata.scenes:
        if scene_filter and clip.id not in scene_filter:
            continue
        if clip.error is not None:
            logger.warning(f"[{clip.id}] skipped: audio has error ({clip.error})")
            continue

        audio_path = audio_dir / clip.file
        if not audio_path.exists():
            logger.warning(f"[{clip.id}] skipped: audio file not found ({clip.file})")
            continue

        logger.info(f"[{clip.id}] transcribing with {transcriber.name}...")
        try:
            transcript = transcriber.transcribe(audio_path, language)
        except Exception as e:
            # Any provider failure is recorded against this scene.
            logger.error(f"[{clip.id}] transcription failed: {e}")
            results.append(TranscriptionScene(id=clip.id, error=str(e)))
            continue

        scene = to_transcription_scene(clip.id, transcript, fps, clip.duration_seconds)
        logger.info(f"[{clip.id}] {len(scene.segments)} segments, {len(scene.words)} words")
        results.append(scene)

    return results


def build_transcription_output(
    scenes: list[TranscriptionScene],
    fps: float,
    composition_id: str | None = None,
    existing: TranscriptionOutput | None = None,
    scene_order: list[str] | None = None,
) -> TranscriptionOutput:
    """Wrap transcribed scenes, merging into a previous output by scene id."""
    previous = existing.scenes if existing is not None else []
    return TranscriptionOutput(
        composition_id=composition_id,
        fps=fps,
        scenes=merge_by_id(previous, scenes, scene_order),
    )
