"""Integration tests for duration probing and timing sync with real audio files."""

from __future__ import annotations

from pathlib import Path

import pytest

from narrasync.models.schema import Narration
from narrasync.stages.duration import extract_durations, merge_audio_metadata, probe_duration
from narrasync.stages.timing import TimingSource, compute_frame_table, sync_timing_source
from narrasync.stages.validate import validate_composition
from narrasync.store.artifacts import load_artifact


def _narration(project: Path) -> Narration:
    return load_artifact(project / "projects" / "Tones" / "narration.json", Narration)


def _audio_dir(project: Path) -> Path:
    return project / "public" / "videos" / "Tones" / "audio"


@pytest.mark.integration
class TestRealClips:
    """Duration probing against clips rendered by ffmpeg."""

    def test_probe_matches_rendered_length(self, tone_project: Path, clip_seconds: dict[str, float]) -> None:
        """ffprobe should report the rendered tone length."""
        for scene_id, seconds in clip_seconds.items():
            measured = probe_duration(_audio_dir(tone_project) / f"{scene_id}.wav")
            assert measured == pytest.approx(seconds, abs=0.01)

    def test_frame_table_from_real_clips(self, tone_project: Path, clip_seconds: dict[str, float]) -> None:
        """Measured clips should produce the expected frame table."""
        narration = _narration(tone_project)
        clip_files = {scene_id: f"{scene_id}.wav" for scene_id in clip_seconds}

        clips = extract_durations(narration.scenes, _audio_dir(tone_project), 30, clip_files=clip_files)
        metadata = merge_audio_metadata(None, clips, narration.scene_ids, fps=30)
        table = compute_frame_table(metadata.durations(), narration.scene_ids, fps=30, buffer_frames=0)

        assert [e.audio_frames for e in table.entries] == [44, 68, 23]
        assert [e.start_frame for e in table.entries] == [0, 44, 112]

        path = tone_project / "src" / "videos" / "Tones" / "constants.ts"
        sync_timing_source(path, table)
        assert TimingSource.load(path).stored_frames() == {"HOOK": 44, "INTRO": 68, "OUTRO": 23}

    def test_validation_passes(self, tone_project: Path, clip_seconds: dict[str, float]) -> None:
        """Declared durations equal to the rendered lengths should validate."""
        narration = _narration(tone_project)
        clip_files = {scene_id: f"{scene_id}.wav" for scene_id in clip_seconds}
        clips = extract_durations(narration.scenes, _audio_dir(tone_project), 30, clip_files=clip_files)
        metadata = merge_audio_metadata(None, clips, narration.scene_ids, fps=30)

        report = validate_composition(narration, _audio_dir(tone_project), metadata)

        assert report.passed
        assert report.errors == []
