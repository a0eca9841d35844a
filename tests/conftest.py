"""Pytest configuration and fixtures for narrasync tests."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

import pytest

from narrasync.models.schema import (
    AudioClipMetadata,
    AudioMetadata,
    Narration,
    Segment,
    TranscriptionOutput,
    TranscriptionScene,
    Word,
)

NARRATION_DATA = {
    "metadata": {"compositionId": "Demo", "language": "en"},
    "scenes": [
        {
            "id": "hook",
            "text": "Why do unfinished tasks stay on our minds?",
            "duration": 3.0,
            "bumper": True,
            "visualPanels": [{"text": "Unfinished tasks", "startPercent": 0, "endPercent": 60}],
        },
        {
            "id": "intro",
            "text": "In the 1920s, a psychologist noticed something odd about waiters.",
            "duration": 6.0,
            "transitionIn": {"type": "fade", "duration": 0.5},
        },
        {
            "id": "outro",
            "text": "Finish what you start.",
            "duration": 2.0,
            "bumper": True,
        },
    ],
}


@pytest.fixture
def temp_dir() -> Path:
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def narration() -> Narration:
    """A three-scene narration script."""
    return Narration.model_validate(NARRATION_DATA)


@pytest.fixture
def audio_metadata() -> AudioMetadata:
    """Measured durations for the sample narration."""
    return AudioMetadata(
        provider="test",
        language="en",
        composition_id="Demo",
        fps=60,
        scenes=[
            AudioClipMetadata(id="hook", file="hook.mp3", duration_seconds=2.88, duration_frames=173),
            AudioClipMetadata(id="intro", file="intro.mp3", duration_seconds=6.1, duration_frames=366),
            AudioClipMetadata(id="outro", file="outro.mp3", duration_seconds=2.0, duration_frames=120),
        ],
    )


@pytest.fixture
def transcription() -> TranscriptionOutput:
    """Transcription for the sample narration at 60 fps."""
    return TranscriptionOutput(
        composition_id="Demo",
        fps=60,
        scenes=[
            TranscriptionScene(
                id="hook",
                duration=2.88,
                duration_frames=173,
                text="Why do unfinished tasks stay on our minds?",
                segments=[
                    Segment(text="Why do unfinished tasks", start=0.0, end=1.4, start_frame=0, end_frame=84),
                    Segment(text="stay on our minds?", start=1.4, end=2.8, start_frame=84, end_frame=168),
                ],
                words=[
                    Word(word="Why", start=0.0, end=0.3, start_frame=0, end_frame=18),
                    Word(word="do", start=0.3, end=0.5, start_frame=18, end_frame=30),
                ],
            ),
            TranscriptionScene(id="intro", error="Transcription failed: boom"),
        ],
    )


@pytest.fixture
def project_root(temp_dir: Path) -> Path:
    """A render project layout with narration and empty clips for "Demo"."""
    narration_path = temp_dir / "projects" / "Demo" / "narration.json"
    narration_path.parent.mkdir(parents=True)
    narration_path.write_text(json.dumps(NARRATION_DATA, indent=2), encoding="utf-8")

    audio_dir = temp_dir / "public" / "videos" / "Demo" / "audio"
    audio_dir.mkdir(parents=True)
    for scene in NARRATION_DATA["scenes"]:
        (audio_dir / f"{scene['id']}.mp3").write_bytes(b"fake mp3")

    return temp_dir


@pytest.fixture
def fake_probe():
    """Duration probe returning fixed durations per clip name."""
    durations = {"hook.mp3": 2.88, "intro.mp3": 6.1, "outro.mp3": 2.0}

    def probe(path: Path) -> float:
        if not path.exists():
            raise FileNotFoundError(f"Audio file not found: {path}")
        return durations[path.name]

    return probe


@pytest.fixture
def openai_key_env():
    """Set a mock OPENAI_API_KEY for tests that require it."""
    original = os.environ.get("OPENAI_API_KEY")
    os.environ["OPENAI_API_KEY"] = "test_key_for_testing"
    yield "test_key_for_testing"
    if original is None:
        os.environ.pop("OPENAI_API_KEY", None)
    else:
        os.environ["OPENAI_API_KEY"] = original


@pytest.fixture
def no_openai_key_env():
    """Ensure OPENAI_API_KEY is not set for tests that check its absence."""
    original = os.environ.get("OPENAI_API_KEY")
    os.environ.pop("OPENAI_API_KEY", None)
    yield
    if original is not None:
        os.environ["OPENAI_API_KEY"] = original
