"""Tests for frame tables and timing source patching."""

from __future__ import annotations

from pathlib import Path

import pytest

from narrasync.stages.timing import (
    RawExpr,
    TimingSource,
    TimingSourceError,
    compare_with_source,
    compute_frame_table,
    parse_object_literal,
    patch_timing_source,
    sync_timing_source,
    to_constant_case,
)

SYNCED_AT = "2026-01-01T00:00:00.000Z"

FRAMES_SOURCE = """\
import { staticFile } from "remotion";

export const FPS = 60;

// Last synced: 2025-12-01T10:00:00.000Z
export const SCENE_DURATIONS = {
  HOOK: 100,
  INTRO: 200,
} as const;

export const SCENES = {
  HOOK: { start: 0, duration: 100 },
  INTRO: { start: 100, duration: 200 },
} as const;

export const TOTAL_DURATION = 300;

export const MUSIC = staticFile("music.mp3");
"""

SECONDS_SOURCE = """\
export const FPS = 30;

export const SCENE_TIMINGS = {
  hook: { startSeconds: 0, durationSeconds: 3 },
  intro: { startSeconds: 3, durationSeconds: 6 },
} as const;

export const TOTAL_DURATION_SECONDS = 9;
"""


class TestComputeFrameTable:
    """Tests for compute_frame_table function."""

    def test_hook_example(self) -> None:
        """2.88s at 60fps with a 5-frame buffer should take 178 frames."""
        table = compute_frame_table({"hook": 2.88}, ["hook"], fps=60, buffer_frames=5)

        entry = table.entry("hook")
        assert entry.audio_frames == 173
        assert entry.total_frames == 178
        assert entry.start_frame == 0

    def test_starts_are_prefix_sums(self) -> None:
        """Each start frame should equal the sum of the totals before it."""
        durations = {"hook": 2.88, "intro": 6.1, "outro": 2.0}
        table = compute_frame_table(durations, ["hook", "intro", "outro"], fps=60, buffer_frames=15)

        starts = [e.start_frame for e in table.entries]
        totals = [e.total_frames for e in table.entries]
        assert starts == [0, totals[0], totals[0] + totals[1]]
        assert table.total_frames == sum(totals)
        assert table.entries[-1].end_frame == table.total_frames

    def test_declaration_order(self) -> None:
        """Entries should follow scene_order, not dict order."""
        table = compute_frame_table({"b": 1.0, "a": 1.0}, ["a", "b"], fps=30, buffer_frames=0)
        assert [e.scene_id for e in table.entries] == ["a", "b"]

    def test_exact_products_not_rounded_up(self) -> None:
        """0.1s at 30fps should be exactly 3 frames."""
        table = compute_frame_table({"a": 0.1}, ["a"], fps=30, buffer_frames=0)
        assert table.entries[0].audio_frames == 3

    def test_missing_duration_skipped(self) -> None:
        """Scenes without a measured duration should be skipped."""
        table = compute_frame_table({"hook": 1.0}, ["hook", "intro"], fps=60, buffer_frames=0)

        assert [e.scene_id for e in table.entries] == ["hook"]
        assert table.skipped == ["intro"]

    def test_invalid_fps(self) -> None:
        """Non-positive fps should be rejected."""
        with pytest.raises(ValueError, match="fps"):
            compute_frame_table({}, [], fps=0, buffer_frames=0)

    def test_fractional_buffer_rejected(self) -> None:
        """The buffer must be a whole number of frames."""
        with pytest.raises(ValueError, match="integer"):
            compute_frame_table({}, [], fps=60, buffer_frames=0.5)

    def test_negative_buffer_rejected(self) -> None:
        """A negative buffer should be rejected."""
        with pytest.raises(ValueError, match=">= 0"):
            compute_frame_table({}, [], fps=60, buffer_frames=-1)


class TestToConstantCase:
    """Tests for to_constant_case function."""

    @pytest.mark.parametrize(
        "scene_id,expected",
        [
            ("hook", "HOOK"),
            ("introHook", "INTRO_HOOK"),
            ("intro-hook", "INTRO_HOOK"),
            ("scene2", "SCENE2"),
        ],
    )
    def test_conversion(self, scene_id: str, expected: str) -> None:
        """Scene ids should map to constant-case keys."""
        assert to_constant_case(scene_id) == expected


class TestParseObjectLiteral:
    """Tests for parse_object_literal function."""

    def test_nested_numbers(self) -> None:
        """Nested objects and numbers should parse in order."""
        result = parse_object_literal("{ HOOK: { start: 0, duration: 178 }, INTRO: { start: 178, duration: 1.5 } }")

        assert list(result) == ["HOOK", "INTRO"]
        assert result["HOOK"] == {"start": 0, "duration": 178}
        assert result["INTRO"]["duration"] == 1.5

    def test_comments_and_trailing_commas(self) -> None:
        """Comments and trailing commas should be ignored."""
        result = parse_object_literal("{\n  HOOK: 178, // 2.88s audio\n  /* block */ 'intro-b': 10,\n}")
        assert result == {"HOOK": 178, "intro-b": 10}

    def test_expressions_kept_raw(self) -> None:
        """Non-numeric values should be kept as raw text."""
        result = parse_object_literal("{ HOOK: 3 * FPS }")
        assert result["HOOK"] == RawExpr("3 * FPS")

    def test_unterminated(self) -> None:
        """A truncated literal should raise."""
        with pytest.raises(TimingSourceError):
            parse_object_literal("{ HOOK: 1,")


class TestTimingSource:
    """Tests for the TimingSource document."""

    def test_declarations_found(self) -> None:
        """Every export const should be located."""
        source = TimingSource(FRAMES_SOURCE)
        names = [d.name for d in source.declarations]
        assert names == ["FPS", "SCENE_DURATIONS", "SCENES", "TOTAL_DURATION", "MUSIC"]

    def test_fps(self) -> None:
        """FPS should be read from the module."""
        assert TimingSource(FRAMES_SOURCE).fps == 60
        assert TimingSource("").fps is None

    def test_detect_frames_shape(self) -> None:
        """The frames shape should be detected."""
        assert TimingSource(FRAMES_SOURCE).detect_shapes() == {"frames"}

    def test_detect_seconds_shape(self) -> None:
        """The seconds shape should be detected."""
        source = TimingSource(SECONDS_SOURCE)
        assert source.detect_shapes() == {"seconds"}
        assert source.seconds_table_name() == "SCENE_TIMINGS"

    def test_stored_frames(self) -> None:
        """Stored frame counts should come from SCENE_DURATIONS."""
        assert TimingSource(FRAMES_SOURCE).stored_frames() == {"HOOK": 100, "INTRO": 200}

    def test_stored_frames_from_seconds(self) -> None:
        """Seconds tables should be converted with the document FPS."""
        assert TimingSource(SECONDS_SOURCE).stored_frames() == {"hook": 90, "intro": 180}

    def test_load_missing(self, temp_dir: Path) -> None:
        """A missing file should load as an empty document."""
        source = TimingSource.load(temp_dir / "constants.ts")
        assert source.text == ""
        assert source.declarations == []


class TestPatchTimingSource:
    """Tests for patch_timing_source function."""

    @pytest.fixture
    def table(self):
        return compute_frame_table({"hook": 2.88, "intro": 6.1}, ["hook", "intro"], fps=60, buffer_frames=5)

    def test_frames_values_replaced(self, table) -> None:
        """Timing declarations should carry the new frame counts."""
        text, shapes = patch_timing_source(TimingSource(FRAMES_SOURCE), table, synced_at=SYNCED_AT)
        patched = TimingSource(text)

        assert shapes == ["frames"]
        assert patched.parse("SCENE_DURATIONS") == {"HOOK": 178, "INTRO": 371}
        assert patched.parse("SCENES") == {
            "HOOK": {"start": 0, "duration": 178},
            "INTRO": {"start": 178, "duration": 371},
        }
        assert patched.declaration("TOTAL_DURATION").value_text == "549"

    def test_opaque_text_preserved(self, table) -> None:
        """Code outside the timing declarations should be untouched."""
        text, _ = patch_timing_source(TimingSource(FRAMES_SOURCE), table, synced_at=SYNCED_AT)

        assert text.startswith('import { staticFile } from "remotion";\n\nexport const FPS = 60;\n')
        assert text.endswith('export const MUSIC = staticFile("music.mp3");\n')

    def test_single_marker_updated(self, table) -> None:
        """The existing sync marker should be rewritten, not duplicated."""
        text, _ = patch_timing_source(TimingSource(FRAMES_SOURCE), table, synced_at=SYNCED_AT)

        assert text.count("// Last synced:") == 1
        assert f"// Last synced: {SYNCED_AT}" in text

    def test_idempotent_apart_from_marker(self, table) -> None:
        """Patching twice with the same table should only move the marker."""
        first, _ = patch_timing_source(TimingSource(FRAMES_SOURCE), table, synced_at=SYNCED_AT)
        second, _ = patch_timing_source(TimingSource(first), table, synced_at="2026-02-02T00:00:00.000Z")

        assert second.replace("2026-02-02T00:00:00.000Z", SYNCED_AT) == first

    def test_marker_inserted_when_absent(self, table) -> None:
        """A marker should be inserted above the first rewritten declaration."""
        source = FRAMES_SOURCE.replace("// Last synced: 2025-12-01T10:00:00.000Z\n", "")
        text, _ = patch_timing_source(TimingSource(source), table, synced_at=SYNCED_AT)

        assert f"// Last synced: {SYNCED_AT}\nexport const SCENE_DURATIONS" in text

    def test_seconds_shape(self, table) -> None:
        """The seconds shape should be rewritten with id keys."""
        text, shapes = patch_timing_source(TimingSource(SECONDS_SOURCE), table, synced_at=SYNCED_AT)
        patched = TimingSource(text)

        assert shapes == ["seconds"]
        timings = patched.parse("SCENE_TIMINGS")
        assert list(timings) == ["hook", "intro"]
        assert timings["intro"]["startSeconds"] == pytest.approx(178 / 60, abs=1e-6)
        assert float(patched.declaration("TOTAL_DURATION_SECONDS").value_text) == pytest.approx(549 / 60, abs=1e-6)

    def test_new_document(self, table) -> None:
        """An empty document should get a complete module."""
        text, shapes = patch_timing_source(TimingSource(""), table, synced_at=SYNCED_AT)
        created = TimingSource(text)

        assert shapes == ["frames"]
        assert created.fps == 60
        assert created.parse("SCENE_DURATIONS") == {"HOOK": 178, "INTRO": 371}
        assert "// 2.88s audio + 5f buffer" in text

    def test_no_shape_appends_default(self, table) -> None:
        """A module without timing declarations should get the default blocks appended."""
        source = 'export const TITLE = "Demo";\n'
        text, shapes = patch_timing_source(TimingSource(source), table, default_shape="seconds", synced_at=SYNCED_AT)

        assert shapes == ["seconds"]
        assert text.startswith(source)
        assert TimingSource(text).parse("SCENE_TIMINGS") is not None


class TestSyncTimingSource:
    """Tests for sync_timing_source function."""

    def test_creates_file(self, temp_dir: Path) -> None:
        """A missing timing source should be created."""
        table = compute_frame_table({"hook": 2.88}, ["hook"], fps=60, buffer_frames=5)
        path = temp_dir / "src" / "videos" / "Demo" / "constants.ts"

        result = sync_timing_source(path, table, synced_at=SYNCED_AT)

        assert result.created
        assert path.exists()
        assert TimingSource.load(path).parse("SCENE_DURATIONS") == {"HOOK": 178}

    def test_dry_run_does_not_write(self, temp_dir: Path) -> None:
        """Dry runs should leave the file alone."""
        path = temp_dir / "constants.ts"
        path.write_text(FRAMES_SOURCE, encoding="utf-8")
        table = compute_frame_table({"hook": 2.88, "intro": 6.1}, ["hook", "intro"], fps=60, buffer_frames=5)

        result = sync_timing_source(path, table, dry_run=True)

        assert result.changed
        assert path.read_text(encoding="utf-8") == FRAMES_SOURCE

    def test_unchanged_when_in_sync(self, temp_dir: Path) -> None:
        """A second sync with the same table should report no change."""
        path = temp_dir / "constants.ts"
        table = compute_frame_table({"hook": 2.88}, ["hook"], fps=60, buffer_frames=5)
        sync_timing_source(path, table, synced_at=SYNCED_AT)

        result = sync_timing_source(path, table)

        assert not result.changed


class TestCompareWithSource:
    """Tests for compare_with_source function."""

    def test_stale_entries_reported(self) -> None:
        """Differing and missing keys should be reported."""
        table = compute_frame_table({"hook": 2.88, "outro": 2.0}, ["hook", "outro"], fps=60, buffer_frames=5)

        diffs = compare_with_source(TimingSource(FRAMES_SOURCE), table)

        assert diffs == {"HOOK": (100, 178), "INTRO": (200, None), "OUTRO": (None, 125)}

    def test_in_sync(self) -> None:
        """An up-to-date source should report no differences."""
        table = compute_frame_table({"hook": 2.88}, ["hook"], fps=60, buffer_frames=5)
        text, _ = patch_timing_source(TimingSource(""), table, synced_at=SYNCED_AT)

        assert compare_with_source(TimingSource(text), table) == {}

    def test_no_stored_table(self) -> None:
        """Without any stored table there is nothing to compare."""
        table = compute_frame_table({"hook": 2.88}, ["hook"], fps=60, buffer_frames=5)
        assert compare_with_source(TimingSource("export const FPS = 60;"), table) == {}


FIXTURES = Path(__file__).parent / "fixtures" / "timing"


def _load_fixture(name: str) -> TimingSource:
    return TimingSource((FIXTURES / name).read_text(encoding="utf-8"))


def _resync_table(source: TimingSource, fps: float, **seconds: float):
    """Frame table reproducing the stored timing, with some scenes re-measured."""
    stored = source.stored_frames(fps)
    durations = {scene_id: frames / fps for scene_id, frames in stored.items()}
    durations.update(seconds)
    return compute_frame_table(durations, list(stored), fps=fps, buffer_frames=0)


class TestSecondsStartDurationModule:
    """A module keeping {start, duration} in seconds plus TOTAL_DURATION_SECONDS."""

    @pytest.fixture
    def source(self) -> TimingSource:
        return _load_fixture("seconds_start_duration.ts")

    def test_detected_as_seconds(self, source: TimingSource) -> None:
        """Fractional {start, duration} values with a seconds total mean seconds."""
        layout = source.layout()

        assert source.detect_shapes() == {"seconds"}
        assert layout.seconds == "SCENES"
        assert layout.seconds_keys == ("start", "duration")
        assert source.stored_frames(60)["hook"] == 1158

    def test_rewritten_in_seconds(self, source: TimingSource) -> None:
        """Re-measured scenes should be written back in seconds, not frames."""
        table = _resync_table(source, 60, hook=19.5)

        text, shapes = patch_timing_source(source, table, synced_at=SYNCED_AT)
        patched = TimingSource(text)
        scenes = patched.parse("SCENES")

        assert shapes == ["seconds"]
        assert scenes["intro"] == {"start": 0, "duration": 3.8}
        assert scenes["hook"] == {"start": 3.8, "duration": 19.5}
        assert scenes["discovery"]["start"] == pytest.approx(23.3)
        assert list(scenes) == list(source.parse("SCENES"))

    def test_totals(self, source: TimingSource) -> None:
        """The seconds total is updated and the derived frame total kept."""
        table = _resync_table(source, 60, hook=19.5)

        text, _ = patch_timing_source(source, table, synced_at=SYNCED_AT)
        patched = TimingSource(text)

        assert patched.number("TOTAL_DURATION_SECONDS") == pytest.approx(138.6)
        assert patched.declaration("TOTAL_DURATION").value_text == "TOTAL_DURATION_SECONDS * FPS"

    def test_unrelated_declarations_untouched(self, source: TimingSource) -> None:
        """Theme and config blocks should survive byte for byte."""
        table = _resync_table(source, 60, hook=19.5)

        text, _ = patch_timing_source(source, table, synced_at=SYNCED_AT)

        tail = source.text[source.text.index("// Theme colors"):]
        assert text.endswith(tail)
        assert [d.name for d in TimingSource(text).declarations] == [d.name for d in source.declarations]

    def test_idempotent(self, source: TimingSource) -> None:
        """Patching twice should only move the sync marker."""
        table = _resync_table(source, 60)

        first, _ = patch_timing_source(source, table, synced_at=SYNCED_AT)
        second, _ = patch_timing_source(TimingSource(first), table, synced_at="2026-02-02T00:00:00.000Z")

        assert TimingSource(first).parse("SCENES") == source.parse("SCENES")
        assert second.replace("2026-02-02T00:00:00.000Z", SYNCED_AT) == first

    def test_stale_scene_reported(self, source: TimingSource) -> None:
        """compare_with_source should read the seconds table with its own keys."""
        table = _resync_table(source, 60, hook=19.5)
        assert compare_with_source(source, table) == {"hook": (1158, 1170)}


class TestFrameAndStartTablesModule:
    """A module with flat frame-count and cumulative start-frame tables."""

    AUDIO_SECONDS = {
        "hook": 9.8,
        "promise": 12.5,
        "radarReveal": 14.0,
        "learningParadox": 23.8,
        "fullstackTradeoff": 20.4,
        "aiAmplifier": 19.4,
        "devopsUniqueness": 15.0,
        "stats2026": 19.4,
        "synthesis": 24.6,
        "conclusion": 15.2,
        "outro": 4.4,
    }

    @pytest.fixture
    def source(self) -> TimingSource:
        return _load_fixture("frame_and_start_tables.ts")

    @pytest.fixture
    def table(self):
        return compute_frame_table(self.AUDIO_SECONDS, list(self.AUDIO_SECONDS), fps=30, buffer_frames=45)

    def test_tables_detected_by_structure(self, source: TimingSource) -> None:
        """Flat id -> int tables should be found whatever they are called."""
        layout = source.layout(self.AUDIO_SECONDS)

        assert source.detect_shapes() == {"frames"}
        assert layout.durations == "SCENE_FRAMES"
        assert layout.starts == "SCENE_START_FRAMES"

    def test_rewritten_in_place(self, source: TimingSource, table) -> None:
        """Both tables should be patched and no new declarations appended."""
        text, shapes = patch_timing_source(source, table, synced_at=SYNCED_AT)
        patched = TimingSource(text)

        assert shapes == ["frames"]
        assert [d.name for d in patched.declarations] == [
            "VIDEO_CONFIG",
            "COMPETENCY_DATA",
            "COLORS",
            "SCENE_FRAMES",
            "SCENE_START_FRAMES",
        ]
        frames = patched.parse("SCENE_FRAMES")
        starts = patched.parse("SCENE_START_FRAMES")
        assert frames["hook"] == 339
        assert frames == {e.scene_id: e.total_frames for e in table.entries}
        assert starts == {e.scene_id: e.start_frame for e in table.entries}
        assert starts["promise"] == 339

    def test_other_blocks_untouched(self, source: TimingSource, table) -> None:
        """Config, chart data and colours should be kept as written."""
        text, _ = patch_timing_source(source, table, synced_at=SYNCED_AT)

        head = source.text[: source.text.index("// Scene durations in frames")]
        assert text.startswith(head)

    def test_idempotent(self, source: TimingSource, table) -> None:
        """A second patch with the same table should only move the marker."""
        first, _ = patch_timing_source(source, table, synced_at=SYNCED_AT)
        second, _ = patch_timing_source(TimingSource(first), table, synced_at="2026-02-02T00:00:00.000Z")

        assert first.count("// Last synced:") == 1
        assert second.replace("2026-02-02T00:00:00.000Z", SYNCED_AT) == first
        assert compare_with_source(TimingSource(first), table) == {}


class TestDerivedScenesModule:
    """A module whose SCENES and TOTAL_DURATION derive from SCENE_DURATIONS."""

    @pytest.fixture
    def source(self) -> TimingSource:
        return _load_fixture("derived_scenes.ts")

    def test_only_durations_rewritten(self, source: TimingSource) -> None:
        """Derived expressions should be left for the renderer to evaluate."""
        table = _resync_table(source, 30, intro=18.0)

        text, shapes = patch_timing_source(source, table, synced_at=SYNCED_AT)
        patched = TimingSource(text)

        assert shapes == ["frames"]
        durations = patched.parse("SCENE_DURATIONS")
        assert durations["intro"] == 540
        assert {k: v for k, v in durations.items() if k != "intro"} == {
            k: v for k, v in source.parse("SCENE_DURATIONS").items() if k != "intro"
        }
        for name in ("SCENES", "TOTAL_DURATION", "VIDEO_METADATA"):
            assert patched.declaration(name).value_text == source.declaration(name).value_text

    def test_idempotent(self, source: TimingSource) -> None:
        """Patching twice should only move the sync marker."""
        table = _resync_table(source, 30, intro=18.0)

        first, _ = patch_timing_source(source, table, synced_at=SYNCED_AT)
        second, _ = patch_timing_source(TimingSource(first), table, synced_at="2026-02-02T00:00:00.000Z")

        assert second.replace("2026-02-02T00:00:00.000Z", SYNCED_AT) == first
