"""narrasync: keep video timing in sync with synthesized narration."""

from narrasync.config import ConfigurationError, PipelineConfig
from narrasync.models.schema import (
    AudioMetadata,
    CaptionTimingData,
    Narration,
    TranscriptionOutput,
    ValidationReport,
    VisualPanelsOutput,
)
from narrasync.pipeline import Pipeline, PipelineError

__version__ = "0.1.0"

__all__ = [
    "Pipeline",
    "PipelineConfig",
    "PipelineError",
    "ConfigurationError",
    "Narration",
    "AudioMetadata",
    "TranscriptionOutput",
    "VisualPanelsOutput",
    "CaptionTimingData",
    "ValidationReport",
    "__version__",
]
