"""Configuration and settings for narrasync pipelines."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

DEFAULT_FPS = 60.0


class ConfigurationError(ValueError):
    """Missing or inconsistent configuration, raised before any side effect."""

    pass


class WhisperModel(str, Enum):
    """Available Whisper model sizes."""

    TINY = "tiny"
    BASE = "base"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large-v3"


class TranscriptionProvider(str, Enum):
    FASTER_WHISPER = "faster-whisper"
    OPENAI = "openai"


class PipelineConfig(BaseModel):
    """Configuration for a narrasync pipeline.

    Paths follow the render project layout::

        projects/<id>/narration.json
        projects/<id>/visual-panels.json
        projects/<id>/captions/
        public/videos/<id>/audio/
        src/videos/<id>/constants.ts
    """

    composition_id: str = Field(..., min_length=1, description="Composition (video) identifier")
    project_root: Path = Field(default=Path("."), description="Render project root directory")
    fps: float | None = Field(
        default=None,
        gt=0,
        description="Frame rate; None reads FPS from the timing source, else 60",
    )
    buffer_frames: int = Field(
        default=15, ge=0, description="Padding appended to every scene, in frames"
    )
    language: str | None = Field(default=None, description="Narration language (None to detect)")
    max_words_per_caption: int = Field(default=7, ge=1, description="Caption segment word cap")
    similarity: Literal["prefix", "ratio", "token_set"] = Field(
        default="prefix", description="Panel text similarity strategy"
    )
    tolerance: float = Field(
        default=0.05, gt=0, le=1, description="Relative duration tolerance"
    )
    strict_tolerance: float = Field(
        default=0.03, gt=0, le=1, description="Relative duration tolerance in strict mode"
    )
    strict: bool = Field(default=False, description="Treat validation warnings as failures")
    transcription_provider: TranscriptionProvider = Field(
        default=TranscriptionProvider.FASTER_WHISPER, description="Transcription backend"
    )
    whisper_model: WhisperModel = Field(
        default=WhisperModel.SMALL, description="faster-whisper model size"
    )
    device: str = Field(default="cpu", description="faster-whisper device: 'cuda' or 'cpu'")
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key. Falls back to OPENAI_API_KEY env var.",
    )
    timing_shape: Literal["frames", "seconds"] = Field(
        default="frames", description="Timing declaration shape used when none exists yet"
    )

    @property
    def narration_path(self) -> Path:
        return self.project_root / "projects" / self.composition_id / "narration.json"

    @property
    def audio_dir(self) -> Path:
        return self.project_root / "public" / "videos" / self.composition_id / "audio"

    @property
    def audio_metadata_path(self) -> Path:
        return self.audio_dir / "audio-metadata.json"

    @property
    def timestamps_path(self) -> Path:
        return self.audio_dir / "timestamps.json"

    @property
    def visual_panels_path(self) -> Path:
        return self.project_root / "projects" / self.composition_id / "visual-panels.json"

    @property
    def captions_dir(self) -> Path:
        return self.project_root / "projects" / self.composition_id / "captions"

    @property
    def timing_source_path(self) -> Path:
        return self.project_root / "src" / "videos" / self.composition_id / "constants.ts"

    def effective_tolerance(self) -> float:
        return self.strict_tolerance if self.strict else self.tolerance

    def get_openai_api_key(self) -> str | None:
        """Get the OpenAI API key from config or environment."""
        if self.openai_api_key is not None:
            return self.openai_api_key
        return os.environ.get("OPENAI_API_KEY")

    def validate_for_transcription(self) -> None:
        """Validate that the selected transcription backend can run.

        Raises:
            ConfigurationError: If the OpenAI backend is selected without a key.
        """
        if self.transcription_provider != TranscriptionProvider.OPENAI:
            return

        if not self.get_openai_api_key():
            raise ConfigurationError(
                "OpenAI transcription requires an API key.\n\n"
                "Set it via environment variable:\n"
                "   export OPENAI_API_KEY='your_key_here'\n\n"
                "Alternatively, pass openai_api_key to PipelineConfig or use the local backend:\n"
                "   PipelineConfig(transcription_provider='faster-whisper', ...)"
            )

    def validate_for_narration(self) -> None:
        """Raises ConfigurationError if the narration script is missing."""
        if not self.narration_path.exists():
            raise ConfigurationError(f"Narration file not found: {self.narration_path}")
