"""Tests for pipeline configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from narrasync.config import (
    ConfigurationError,
    PipelineConfig,
    TranscriptionProvider,
    WhisperModel,
)


class TestPipelineConfig:
    """Tests for PipelineConfig model."""

    def test_defaults(self) -> None:
        """Should have the documented defaults."""
        config = PipelineConfig(composition_id="Demo")

        assert config.fps is None
        assert config.buffer_frames == 15
        assert config.max_words_per_caption == 7
        assert config.similarity == "prefix"
        assert config.transcription_provider == TranscriptionProvider.FASTER_WHISPER
        assert config.whisper_model == WhisperModel.SMALL

    def test_project_paths(self) -> None:
        """Artifact paths should follow the render project layout."""
        config = PipelineConfig(composition_id="Demo", project_root=Path("/work"))

        assert config.narration_path == Path("/work/projects/Demo/narration.json")
        assert config.audio_metadata_path == Path("/work/public/videos/Demo/audio/audio-metadata.json")
        assert config.timestamps_path == Path("/work/public/videos/Demo/audio/timestamps.json")
        assert config.visual_panels_path == Path("/work/projects/Demo/visual-panels.json")
        assert config.captions_dir == Path("/work/projects/Demo/captions")
        assert config.timing_source_path == Path("/work/src/videos/Demo/constants.ts")

    def test_effective_tolerance(self) -> None:
        """Strict mode should tighten the tolerance."""
        assert PipelineConfig(composition_id="Demo").effective_tolerance() == 0.05
        assert PipelineConfig(composition_id="Demo", strict=True).effective_tolerance() == 0.03

    @pytest.mark.parametrize(
        "field,value",
        [
            ("composition_id", ""),
            ("fps", 0),
            ("buffer_frames", -1),
            ("max_words_per_caption", 0),
            ("similarity", "cosine"),
        ],
    )
    def test_invalid_values(self, field: str, value) -> None:
        """Out-of-range values should be rejected."""
        options = {"composition_id": "Demo", field: value}
        with pytest.raises(ValidationError):
            PipelineConfig(**options)


class TestOpenAIKey:
    """Tests for OpenAI key resolution."""

    def test_key_from_env(self, openai_key_env: str) -> None:
        """Should fall back to the environment variable."""
        config = PipelineConfig(composition_id="Demo")
        assert config.get_openai_api_key() == openai_key_env

    def test_explicit_key_wins(self, openai_key_env: str) -> None:
        """An explicit key should take precedence."""
        config = PipelineConfig(composition_id="Demo", openai_api_key="explicit")
        assert config.get_openai_api_key() == "explicit"

    def test_openai_without_key(self, no_openai_key_env) -> None:
        """The OpenAI backend without a key should fail validation."""
        config = PipelineConfig(composition_id="Demo", transcription_provider="openai")
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            config.validate_for_transcription()

    def test_local_backend_needs_no_key(self, no_openai_key_env) -> None:
        """faster-whisper should not need a key."""
        PipelineConfig(composition_id="Demo").validate_for_transcription()


class TestValidateForNarration:
    """Tests for validate_for_narration method."""

    def test_missing_narration(self, temp_dir: Path) -> None:
        """A missing narration script should raise before any work."""
        config = PipelineConfig(composition_id="Demo", project_root=temp_dir)
        with pytest.raises(ConfigurationError, match="Narration file not found"):
            config.validate_for_narration()

    def test_present_narration(self, project_root: Path) -> None:
        """An existing narration script should pass."""
        PipelineConfig(composition_id="Demo", project_root=project_root).validate_for_narration()
