"""Duration extraction stage: measure synthesized clips.

This stage handles:
- Duration probing via ffprobe
- Building per-scene audio metadata (seconds + frames)
- Merging a partial (scene-filtered) run into previously stored metadata
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from pathlib import Path
from typing import Callable, Iterable

from narrasync.models.schema import AudioClipMetadata, AudioMetadata, NarrationScene
from narrasync.store.artifacts import merge_by_id
from narrasync.utils.timecode import duration_to_frames

logger = logging.getLogger(__name__)

SUPPORTED_AUDIO_FORMATS = {".mp3", ".wav", ".m4a", ".ogg", ".flac"}

# Length of the narration preview stored alongside each clip
TEXT_PREVIEW_CHARS = 100

DurationProbe = Callable[[Path], float]


class DurationProbeError(Exception):
    """Error while measuring an audio clip."""

    pass


def _run_ffprobe(source: Path) -> dict:
    """Run ffprobe and return parsed JSON output.

    Args:
        source: Path to the media file.

    Returns:
        Parsed JSON from ffprobe.

    Raises:
        DurationProbeError: If ffprobe fails or is not installed.
    """
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(source),
    ]

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except FileNotFoundError:
        raise DurationProbeError(
            "ffprobe not found. Please install FFmpeg:\n"
            "  Ubuntu/Debian: sudo apt install ffmpeg\n"
            "  macOS: brew install ffmpeg\n"
            "  Windows: choco install ffmpeg"
        )
    except subprocess.TimeoutExpired:
        raise DurationProbeError(f"ffprobe timed out reading: {source}")

    if result.returncode != 0:
        raise DurationProbeError(f"ffprobe failed for {source.name}: {result.stderr.strip()}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise DurationProbeError(f"Failed to parse ffprobe output: {e}")


def _parse_duration(data: dict) -> float:
    """Pull the duration out of ffprobe JSON (format first, then audio stream)."""
    format_info = data.get("format", {})
    if "duration" in format_info:
        return float(format_info["duration"])

    for stream in data.get("streams", []):
        if stream.get("codec_type") == "audio" and "duration" in stream:
            return float(stream["duration"])

    raise DurationProbeError("ffprobe reported no duration")


def probe_duration(source: Path) -> float:
    """Measure the duration of an audio file in seconds.

    Args:
        source: Path to the audio file.

    Returns:
        Duration in seconds.

    Raises:
        FileNotFoundError: If the file does not exist.
        DurationProbeError: If probing fails.
    """
    if not source.exists():
        raise FileNotFoundError(f"Audio file not found: {source}")

    start_time = time.perf_counter()
    duration = _parse_duration(_run_ffprobe(source))

    elapsed = time.perf_counter() - start_time
    logger.debug(f"Probed {source.name}: {duration:.3f}s in {elapsed:.2f}s")
    return duration


def text_preview(text: str) -> str:
    if len(text) <= TEXT_PREVIEW_CHARS:
        return text
    return text[:TEXT_PREVIEW_CHARS] + "..."


def clip_file_name(scene_id: str, extension: str = ".mp3") -> str:
    return f"{scene_id}{extension}"


def measure_clip(
    scene: NarrationScene,
    audio_dir: Path,
    fps: float,
    file_name: str | None = None,
    probe: DurationProbe = probe_duration,
) -> AudioClipMetadata:
    """Measure one scene's clip, recording failure inline instead of raising.

    Args:
        scene: The narration scene.
        audio_dir: Directory holding the synthesized clips.
        fps: Composition frame rate.
        file_name: Clip file name (defaults to ``<scene id>.mp3``).
        probe: Duration probe.

    Returns:
        AudioClipMetadata with duration, or with ``error`` set.
    """
    file_name = file_name or clip_file_name(scene.id)
    clip_path = audio_dir / file_name

    try:
        seconds = probe(clip_path)
    except (FileNotFoundError, DurationProbeError) as e:
        logger.error(f"[{scene.id}] duration probe failed: {e}")
        return AudioClipMetadata(
            id=scene.id,
            file=file_name,
            text=text_preview(scene.text),
            error=str(e),
        )

    return AudioClipMetadata(
        id=scene.id,
        file=file_name,
        duration_seconds=seconds,
        duration_frames=duration_to_frames(seconds, fps),
        text=text_preview(scene.text),
    )


def extract_durations(
    scenes: Iterable[NarrationScene],
    audio_dir: Path,
    fps: float,
    scene_filter: set[str] | None = None,
    clip_files: dict[str, str] | None = None,
    probe: DurationProbe = probe_duration,
) -> list[AudioClipMetadata]:
    """Measure the clip of every (selected) scene, sequentially.

    Args:
        scenes: Narration scenes in declaration order.
        audio_dir: Directory holding the synthesized clips.
        fps: Composition frame rate.
        scene_filter: Only measure these scene ids (None for all).
        clip_files: Optional scene id -> file name overrides.
        probe: Duration probe.

    Returns:
        One AudioClipMetadata per processed scene.
    """
    clip_files = clip_files or {}
    results: list[AudioClipMetadata] = []

    for scene in scenes:
        if scene_filter and scene.id not in scene_filter:
            continue
        clip = measure_clip(scene, audio_dir, fps, clip_files.get(scene.id), probe)
        if clip.error is None:
            logger.info(
                f"[{scene.id}] {clip.duration_seconds:.2f}s -> {clip.duration_frames} frames"
            )
        results.append(clip)

    return results


def merge_audio_metadata(
    existing: AudioMetadata | None,
    updated: list[AudioClipMetadata],
    scene_order: list[str],
    **fields,
) -> AudioMetadata:
    """Merge freshly measured clips into stored metadata by scene id.

    Scenes that were not reprocessed keep their stored entry unchanged.

    Args:
        existing: Previously stored metadata (None on first run).
        updated: Clips measured in this run.
        scene_order: Scene ids in declaration order.
        **fields: Top-level fields for the new document (provider, language, ...).

    Returns:
        New AudioMetadata document.
    """
    previous = existing.scenes if existing is not None else []
    base = {}
    if existing is not None:
        base = existing.model_dump(exclude={"scenes", "generated_at"})
    base.update({k: v for k, v in fields.items() if v is not None})

    return AudioMetadata(
        **base,
        scenes=merge_by_id(previous, updated, scene_order),
    )
