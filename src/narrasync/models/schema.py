"""Pydantic models for narration scripts and the persisted timing artifacts.

Every artifact is written as camelCase JSON (the format the render project
reads) while Python code uses snake_case attributes. Fields that are None
are omitted on write, so re-serializing an unchanged record yields the same
bytes.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MatchType = Literal["segment", "words", "none", "auto-segment"]
Severity = Literal["error", "warning"]


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp used for every ``generatedAt`` field."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ArtifactModel(BaseModel):
    """Base for models that round-trip through camelCase JSON files."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        """Export to a JSON-ready dict with camelCase keys, dropping None values."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self, path: str | Path | None = None, indent: int = 2) -> str:
        """Export to a JSON string, optionally writing it to a file.

        Args:
            path: Optional file path to write JSON to.
            indent: JSON indentation level.

        Returns:
            JSON string representation.
        """
        json_str = json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)
        if path is not None:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            Path(path).write_text(json_str + "\n", encoding="utf-8")
        return json_str


# ---------------------------------------------------------------------------
# Narration script
# ---------------------------------------------------------------------------


class Transition(ArtifactModel):
    """A scene transition; only its duration matters for validation."""

    model_config = ConfigDict(extra="allow")

    type: str | None = Field(default=None, description="Transition style (fade, slide, ...)")
    duration: float = Field(default=0.0, ge=0, description="Transition length in seconds")


class VisualPanel(ArtifactModel):
    """An authored on-screen text fragment tied to part of the narration."""

    model_config = ConfigDict(extra="allow")

    text: str = Field(..., description="Panel text as authored")
    start_percent: float | None = Field(
        default=None, ge=0, le=100, description="Authoring-time start position within the scene"
    )
    end_percent: float | None = Field(
        default=None, ge=0, le=100, description="Authoring-time end position within the scene"
    )
    start_frame: int | None = Field(default=None, ge=0, description="Resolved start frame")
    end_frame: int | None = Field(default=None, ge=0, description="Resolved end frame")


class NarrationScene(ArtifactModel):
    """One narrated scene: the text that gets synthesized plus its panels."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, description="Scene identifier, unique within a composition")
    text: str = Field(default="", description="Narration text to synthesize")
    duration: float | None = Field(
        default=None, ge=0, description="Declared (target) scene duration in seconds"
    )
    language: str | None = Field(default=None, description="Narration language override")
    bumper: bool = Field(
        default=False, description="Short intro/outro sting, exempt from pacing checks"
    )
    visual_panels: list[VisualPanel] = Field(default_factory=list)
    transition_in: Transition | None = None
    transition_out: Transition | None = None


class NarrationMetadata(ArtifactModel):
    model_config = ConfigDict(extra="allow")

    composition_id: str | None = None
    language: str | None = None


class Narration(ArtifactModel):
    """The authored script (``narration.json``)."""

    model_config = ConfigDict(extra="allow")

    metadata: NarrationMetadata = Field(default_factory=NarrationMetadata)
    scenes: list[NarrationScene] = Field(default_factory=list)

    @property
    def scene_ids(self) -> list[str]:
        return [scene.id for scene in self.scenes]

    def scene(self, scene_id: str) -> NarrationScene | None:
        return next((s for s in self.scenes if s.id == scene_id), None)


# ---------------------------------------------------------------------------
# Audio metadata
# ---------------------------------------------------------------------------


class AudioClipMetadata(ArtifactModel):
    """Measured duration of one synthesized clip."""

    id: str = Field(..., description="Scene identifier")
    file: str = Field(..., description="Clip file name, relative to the audio directory")
    duration_seconds: float | None = Field(default=None, ge=0)
    duration_frames: int | None = Field(default=None, ge=0)
    text: str | None = Field(default=None, description="Preview of the synthesized text")
    error: str | None = Field(default=None, description="Synthesis or probe failure, if any")


class AudioMetadata(ArtifactModel):
    """``audio-metadata.json``: one entry per synthesized scene."""

    generated_at: str = Field(default_factory=utc_timestamp)
    provider: str = Field(default="unknown")
    language: str | None = None
    composition_id: str | None = None
    fps: float | None = None
    scenes: list[AudioClipMetadata] = Field(default_factory=list)

    def scene(self, scene_id: str) -> AudioClipMetadata | None:
        return next((s for s in self.scenes if s.id == scene_id), None)

    def durations(self) -> dict[str, float]:
        """Measured durations of every scene that has one."""
        return {
            s.id: s.duration_seconds
            for s in self.scenes
            if s.duration_seconds is not None and s.error is None
        }


# ---------------------------------------------------------------------------
# Transcription
# ---------------------------------------------------------------------------


class Segment(ArtifactModel):
    text: str
    start: float = Field(..., ge=0)
    end: float = Field(..., ge=0)
    start_frame: int = Field(..., ge=0)
    end_frame: int = Field(..., ge=0)


class Word(ArtifactModel):
    word: str
    start: float = Field(..., ge=0)
    end: float = Field(..., ge=0)
    start_frame: int = Field(..., ge=0)
    end_frame: int = Field(..., ge=0)


class TranscriptionScene(ArtifactModel):
    """Recognized speech for one scene, or the error that prevented it."""

    id: str
    duration: float | None = None
    duration_frames: int | None = None
    text: str | None = None
    segments: list[Segment] = Field(default_factory=list)
    words: list[Word] = Field(default_factory=list)
    error: str | None = None

    @property
    def usable(self) -> bool:
        return self.error is None


class TranscriptionOutput(ArtifactModel):
    """``timestamps.json``."""

    composition_id: str | None = None
    generated_at: str = Field(default_factory=utc_timestamp)
    fps: float = Field(..., gt=0)
    scenes: list[TranscriptionScene] = Field(default_factory=list)

    def scene(self, scene_id: str) -> TranscriptionScene | None:
        return next((s for s in self.scenes if s.id == scene_id), None)


# ---------------------------------------------------------------------------
# Visual panels
# ---------------------------------------------------------------------------


class PanelAlignment(ArtifactModel):
    """Resolved timing for one visual panel."""

    text: str
    start_seconds: float | None = Field(default=None, ge=0)
    end_seconds: float | None = Field(default=None, ge=0)
    start_frame: int | None = Field(default=None, ge=0)
    end_frame: int | None = Field(default=None, ge=0)
    start_percent: int = Field(default=0, ge=0, le=100)
    end_percent: int = Field(default=100, ge=0, le=100)
    confidence: float = Field(..., ge=0, le=1)
    match_type: MatchType
    matched_text: str | None = None
    warning: str | None = None

    @property
    def needs_review(self) -> bool:
        return self.match_type == "none" or self.warning is not None


class PanelScene(ArtifactModel):
    id: str
    duration: float | None = None
    duration_frames: int | None = None
    panels: list[PanelAlignment] = Field(default_factory=list)


class VisualPanelsOutput(ArtifactModel):
    """``visual-panels.json``."""

    composition_id: str | None = None
    generated_at: str = Field(default_factory=utc_timestamp)
    fps: float = Field(..., gt=0)
    scenes: list[PanelScene] = Field(default_factory=list)

    def scene(self, scene_id: str) -> PanelScene | None:
        return next((s for s in self.scenes if s.id == scene_id), None)


# ---------------------------------------------------------------------------
# Captions
# ---------------------------------------------------------------------------


class CaptionSegment(ArtifactModel):
    text: str
    start_time: float = Field(..., ge=0)
    end_time: float = Field(..., ge=0)
    start_frame: int = Field(..., ge=0)
    end_frame: int = Field(..., ge=0)


class CaptionScene(ArtifactModel):
    id: str
    start_time: float
    end_time: float
    duration: float
    word_count: int
    segment_count: int
    segments: list[CaptionSegment] = Field(default_factory=list)


class CaptionTimingData(ArtifactModel):
    """``captions/timing-data.json``."""

    composition_id: str | None = None
    generated_at: str = Field(default_factory=utc_timestamp)
    fps: float = Field(..., gt=0)
    scenes: list[CaptionScene] = Field(default_factory=list)

    def all_segments(self) -> list[CaptionSegment]:
        return [seg for scene in self.scenes for seg in scene.segments]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationIssue(ArtifactModel):
    category: str
    message: str
    severity: Severity
    details: dict[str, Any] | None = None


class ValidationReport(ArtifactModel):
    """Aggregated result of every pre-render check."""

    composition_id: str | None = None
    validated_at: str = Field(default_factory=utc_timestamp)
    strict_mode: bool = False
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    info: list[str] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        if self.errors:
            return False
        return not (self.strict_mode and self.warnings)

    def add(self, issue: ValidationIssue) -> None:
        if issue.severity == "error":
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def extend(self, issues: list[ValidationIssue]) -> None:
        for issue in issues:
            self.add(issue)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["passed"] = self.passed
        data["summary"] = {
            "errors": len(self.errors),
            "warnings": len(self.warnings),
            "info": len(self.info),
        }
        return data
