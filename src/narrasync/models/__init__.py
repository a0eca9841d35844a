"""Data models for narrasync."""

from narrasync.models.schema import (
    AudioClipMetadata,
    AudioMetadata,
    CaptionScene,
    CaptionSegment,
    CaptionTimingData,
    Narration,
    NarrationScene,
    PanelAlignment,
    PanelScene,
    Segment,
    TranscriptionOutput,
    TranscriptionScene,
    ValidationIssue,
    ValidationReport,
    VisualPanel,
    VisualPanelsOutput,
    Word,
)

__all__ = [
    "AudioClipMetadata",
    "AudioMetadata",
    "CaptionScene",
    "CaptionSegment",
    "CaptionTimingData",
    "Narration",
    "NarrationScene",
    "PanelAlignment",
    "PanelScene",
    "Segment",
    "TranscriptionOutput",
    "TranscriptionScene",
    "ValidationIssue",
    "ValidationReport",
    "VisualPanel",
    "VisualPanelsOutput",
    "Word",
]
