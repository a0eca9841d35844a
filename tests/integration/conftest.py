"""Pytest configuration and fixtures for integration tests."""

from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path

import pytest

CLIP_SECONDS = {"hook": 1.45, "intro": 2.25, "outro": 0.75}


def _make_tone(path: Path, seconds: float) -> None:
    """Render a sine tone of the given length with ffmpeg."""
    subprocess.run(
        [
            "ffmpeg",
            "-v", "quiet",
            "-y",
            "-f", "lavfi",
            "-i", f"sine=frequency=440:duration={seconds}",
            "-t", str(seconds),
            "-ar", "44100",
            str(path),
        ],
        check=True,
        timeout=60,
    )


@pytest.fixture(scope="session")
def ffmpeg_available() -> None:
    """Skip when FFmpeg tools are not installed."""
    if shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None:
        pytest.skip("ffmpeg/ffprobe not installed")


@pytest.fixture
def clip_seconds() -> dict[str, float]:
    """Rendered length of every tone clip, by scene id."""
    return dict(CLIP_SECONDS)


@pytest.fixture
def tone_project(temp_dir: Path, ffmpeg_available: None) -> Path:
    """A render project whose clips are real tones of known length."""
    narration = {
        "metadata": {"compositionId": "Tones", "language": "en"},
        "scenes": [
            {"id": scene_id, "text": f"Scene {scene_id} narration.", "duration": seconds}
            for scene_id, seconds in CLIP_SECONDS.items()
        ],
    }
    narration_path = temp_dir / "projects" / "Tones" / "narration.json"
    narration_path.parent.mkdir(parents=True)
    narration_path.write_text(json.dumps(narration, indent=2), encoding="utf-8")

    audio_dir = temp_dir / "public" / "videos" / "Tones" / "audio"
    audio_dir.mkdir(parents=True)
    for scene_id, seconds in CLIP_SECONDS.items():
        _make_tone(audio_dir / f"{scene_id}.wav", seconds)

    return temp_dir
