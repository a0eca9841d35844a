"""Scene timing stage: frame tables and the render timing source.

This stage handles:
- Converting per-scene audio durations into frame counts (plus a buffer,
  always expressed in frames) and cumulative start frames
- Reading and patching the render project's timing constants module

The timing module is treated as a structured document rather than a blob
of text: it is split into opaque text and ``export const`` declarations,
the timing declarations are parsed into ordered mappings, rebuilt from the
new frame table and serialized back in place. Anything else in the file is
left byte-for-byte alone.

Timing tables are recognised by structure, not by name. Keys must be
scene ids (as written or constant-cased) and the values decide the role:

``frames``::

    export const SCENE_FRAMES = { hook: 340, promise: 421 } as const;
    export const SCENE_START_FRAMES = { hook: 0, promise: 340 } as const;
    export const SCENES = { HOOK: { start: 0, duration: 178 } } as const;
    export const TOTAL_DURATION = 1234;

``seconds``::

    export const SCENE_TIMINGS = {
      hook: { startSeconds: 0, durationSeconds: 2.966667 },
    } as const;
    export const SCENES = { intro: { start: 0, duration: 3.8 } } as const;
    export const TOTAL_DURATION_SECONDS = 20.566667;

A ``{start, duration}`` table is in seconds when it holds fractional
values, or when the module declares ``TOTAL_DURATION_SECONDS`` and no flat
frame-count table. Totals are only rewritten when they are plain numbers;
derived expressions such as ``TOTAL_DURATION_SECONDS * FPS`` are kept.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Literal

from narrasync.models.schema import utc_timestamp
from narrasync.utils.timecode import duration_to_frames, round_half_up

logger = logging.getLogger(__name__)

TimingShape = Literal["frames", "seconds"]

SYNC_MARKER_PREFIX = "// Last synced: "
_SYNC_MARKER_RE = re.compile(r"^// Last synced: .*$", re.M)

DURATIONS_NAME = "SCENE_DURATIONS"
STARTS_NAME = "SCENES"
TOTAL_FRAMES_NAME = "TOTAL_DURATION"
SECONDS_TABLE_NAME = "SCENE_TIMINGS"
TOTAL_SECONDS_NAME = "TOTAL_DURATION_SECONDS"
FPS_NAME = "FPS"

INDENT = "  "


class TimingSourceError(Exception):
    """The timing source could not be parsed or patched safely."""

    pass


# ---------------------------------------------------------------------------
# Frame table
# ---------------------------------------------------------------------------


@dataclass
class SceneFrameEntry:
    """One scene's slot in the composition timeline."""

    scene_id: str
    audio_seconds: float
    audio_frames: int
    buffer_frames: int
    start_frame: int

    @property
    def key(self) -> str:
        """Constant-case key used in the frame-count table."""
        return to_constant_case(self.scene_id)

    @property
    def total_frames(self) -> int:
        return self.audio_frames + self.buffer_frames

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.total_frames


@dataclass
class FrameTable:
    """Frame counts and cumulative starts in scene declaration order."""

    fps: float
    buffer_frames: int
    entries: list[SceneFrameEntry] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def total_frames(self) -> int:
        return sum(entry.total_frames for entry in self.entries)

    @property
    def total_seconds(self) -> float:
        return self.total_frames / self.fps

    def entry(self, scene_id: str) -> SceneFrameEntry | None:
        return next((e for e in self.entries if e.scene_id == scene_id), None)


def compute_frame_table(
    durations: dict[str, float],
    scene_order: Iterable[str],
    fps: float,
    buffer_frames: int,
) -> FrameTable:
    """Build the frame table for a composition.

    ``total_frames = ceil(seconds * fps) + buffer_frames`` for every scene,
    and start frames are the running sum of the totals before it.

    Args:
        durations: Measured audio duration per scene id, in seconds.
        scene_order: Scene ids in declaration order.
        fps: Composition frame rate.
        buffer_frames: Padding appended to every scene, in frames.

    Returns:
        FrameTable; scenes without a duration are listed in ``skipped``.

    Raises:
        ValueError: If fps is not positive or the buffer is not a
            non-negative whole number of frames.
    """
    if fps <= 0:
        raise ValueError(f"fps must be positive, got {fps}")
    if isinstance(buffer_frames, bool) or not isinstance(buffer_frames, int):
        raise ValueError(
            f"buffer_frames must be an integer frame count, got {buffer_frames!r}"
        )
    if buffer_frames < 0:
        raise ValueError(f"buffer_frames must be >= 0, got {buffer_frames}")

    table = FrameTable(fps=fps, buffer_frames=buffer_frames)
    cursor = 0

    for scene_id in scene_order:
        seconds = durations.get(scene_id)
        if seconds is None:
            logger.warning(f"[{scene_id}] no audio duration, scene skipped in frame table")
            table.skipped.append(scene_id)
            continue

        entry = SceneFrameEntry(
            scene_id=scene_id,
            audio_seconds=seconds,
            audio_frames=duration_to_frames(seconds, fps),
            buffer_frames=buffer_frames,
            start_frame=cursor,
        )
        table.entries.append(entry)
        cursor += entry.total_frames

    return table


def to_constant_case(scene_id: str) -> str:
    """``introHook`` / ``intro-hook`` -> ``INTRO_HOOK``."""
    spaced = re.sub(r"([a-z])([A-Z])", r"\1_\2", scene_id)
    return re.sub(r"[^a-zA-Z0-9]", "_", spaced).upper()


# ---------------------------------------------------------------------------
# Object-literal parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawExpr:
    """A value that is not a plain number or object (kept as source text)."""

    text: str


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<comment>//[^\n]*|/\*.*?\*/)
    |(?P<string>"(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*'|`(?:\\.|[^`\\])*`)
    |(?P<number>-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)
    |(?P<ident>[A-Za-z_$][\w$]*)
    |(?P<punct>[{}\[\]():,.+\-*/<>?!=&|%])
    """,
    re.X | re.S,
)


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise TimingSourceError(f"Unexpected character {text[pos]!r} in timing declaration")
        kind = match.lastgroup or ""
        if kind not in ("ws", "comment"):
            tokens.append((kind, match.group()))
        pos = match.end()
    return tokens


class _ObjectParser:
    def __init__(self, text: str) -> None:
        self.tokens = _tokenize(text)
        self.pos = 0

    def peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self, value: str | None = None) -> tuple[str, str]:
        token = self.peek()
        if token is None:
            raise TimingSourceError("Unexpected end of timing declaration")
        if value is not None and token[1] != value:
            raise TimingSourceError(f"Expected {value!r}, found {token[1]!r}")
        self.pos += 1
        return token

    def parse(self) -> dict[str, Any]:
        result = self.parse_object()
        if self.peek() is not None:
            raise TimingSourceError(f"Unexpected {self.peek()[1]!r} after object literal")
        return result

    def parse_object(self) -> dict[str, Any]:
        self.take("{")
        result: dict[str, Any] = {}
        while True:
            token = self.peek()
            if token is None:
                raise TimingSourceError("Unterminated object literal")
            if token[1] == "}":
                self.take()
                return result

            kind, key = self.take()
            if kind == "string":
                key = key[1:-1]
            elif kind not in ("ident", "number"):
                raise TimingSourceError(f"Invalid object key {key!r}")
            self.take(":")
            result[key] = self.parse_value()

            token = self.peek()
            if token is not None and token[1] == ",":
                self.take()

    def parse_value(self) -> Any:
        token = self.peek()
        if token is None:
            raise TimingSourceError("Missing value in object literal")
        if token[1] == "{":
            return self.parse_object()

        parts: list[str] = []
        depth = 0
        while True:
            token = self.peek()
            if token is None:
                break
            if depth == 0 and token[1] in (",", "}"):
                break
            if token[1] in ("(", "[", "{"):
                depth += 1
            elif token[1] in (")", "]", "}"):
                depth -= 1
            parts.append(self.take()[1])

        if len(parts) == 1:
            number = _as_number(parts[0])
            if number is not None:
                return number
        return RawExpr(" ".join(parts))


def _as_number(text: str) -> int | float | None:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def parse_object_literal(text: str) -> dict[str, Any]:
    """Parse a TypeScript object literal into an ordered dict.

    Numbers become int/float, nested objects become dicts and anything
    else (references, arithmetic) is kept as :class:`RawExpr`.
    """
    return _ObjectParser(text).parse()


# ---------------------------------------------------------------------------
# Timing source document
# ---------------------------------------------------------------------------

_DECLARATION_RE = re.compile(
    r"^export\s+const\s+(?P<name>[A-Za-z_$][\w$]*)\s*(?::[^=\n]+)?=\s*",
    re.M,
)
_AS_CONST_RE = re.compile(r"\s*as\s+const")


@dataclass
class Declaration:
    """An ``export const`` statement located in the source text."""

    name: str
    start: int  # start of "export"
    value_start: int
    value_end: int
    end: int  # after the terminating semicolon, if any
    value_text: str

    @property
    def is_object(self) -> bool:
        return self.value_text.lstrip().startswith("{")


def _skip_string(text: str, pos: int) -> int:
    quote = text[pos]
    pos += 1
    while pos < len(text):
        if text[pos] == "\\":
            pos += 2
            continue
        if text[pos] == quote:
            return pos + 1
        pos += 1
    raise TimingSourceError("Unterminated string literal in timing source")


def _skip_comment(text: str, pos: int) -> int | None:
    if text.startswith("//", pos):
        newline = text.find("\n", pos)
        return len(text) if newline == -1 else newline
    if text.startswith("/*", pos):
        close = text.find("*/", pos + 2)
        if close == -1:
            raise TimingSourceError("Unterminated block comment in timing source")
        return close + 2
    return None


def _scan_braces(text: str, pos: int) -> int:
    """Index just after the ``}`` matching the ``{`` at ``pos``."""
    depth = 0
    while pos < len(text):
        ch = text[pos]
        if ch in "\"'`":
            pos = _skip_string(text, pos)
            continue
        skipped = _skip_comment(text, pos)
        if skipped is not None:
            pos = skipped
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return pos + 1
        pos += 1
    raise TimingSourceError("Unbalanced braces in timing source")


def _scan_statement(text: str, pos: int) -> int:
    """Index of the ``;`` or newline ending a simple expression statement."""
    depth = 0
    while pos < len(text):
        ch = text[pos]
        if ch in "\"'`":
            pos = _skip_string(text, pos)
            continue
        if text.startswith("//", pos) or text.startswith("/*", pos):
            if depth == 0:
                return pos
            pos = _skip_comment(text, pos) or pos + 1
            continue
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif depth == 0 and ch in ";\n":
            return pos
        pos += 1
    return pos


def _find_declarations(text: str) -> list[Declaration]:
    declarations: list[Declaration] = []
    pos = 0
    while True:
        match = _DECLARATION_RE.search(text, pos)
        if match is None:
            break
        value_start = match.end()
        if value_start < len(text) and text[value_start] == "{":
            value_end = _scan_braces(text, value_start)
            tail = _AS_CONST_RE.match(text, value_end)
            end = tail.end() if tail else value_end
        else:
            value_end = _scan_statement(text, value_start)
            while value_end > value_start and text[value_end - 1] in " \t":
                value_end -= 1
            end = value_end
        if end < len(text) and text[end] == ";":
            end += 1
        declarations.append(
            Declaration(
                name=match.group("name"),
                start=match.start(),
                value_start=value_start,
                value_end=value_end,
                end=end,
                value_text=text[value_start:value_end],
            )
        )
        pos = end
    return declarations


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.6f}".rstrip("0").rstrip(".")


def _format_key(key: str) -> str:
    if re.fullmatch(r"[A-Za-z_$][\w$]*", key):
        return key
    return json.dumps(key, ensure_ascii=False)


def _uses_constant_keys(mapping: dict[str, Any]) -> bool:
    return bool(mapping) and all(re.fullmatch(r"[A-Z0-9_]+", key) for key in mapping)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _starts_at_zero(mapping: dict[str, Any]) -> bool:
    values = list(mapping.values())
    return values[0] == 0 and all(a <= b for a, b in zip(values, values[1:]))


def _pair_keys(values: list[Any]) -> tuple[str, str] | None:
    """The ``(start, duration)`` key pair shared by every nested entry."""
    for pair in (("startSeconds", "durationSeconds"), ("start", "duration")):
        if all(isinstance(v, dict) and all(_is_number(v.get(k)) for k in pair) for v in values):
            return pair
    return None


@dataclass
class TimingLayout:
    """Which declarations of a timing source hold scene timing.

    Attributes:
        durations: Flat ``{id: frames}`` table.
        starts: Flat ``{id: start frame}`` table.
        scenes: ``{id: {start, duration}}`` table in frames.
        seconds: ``{id: {start, duration}}`` table in seconds.
        seconds_keys: Start and duration keys used by the seconds table.
    """

    durations: str | None = None
    starts: str | None = None
    scenes: str | None = None
    seconds: str | None = None
    seconds_keys: tuple[str, str] = ("startSeconds", "durationSeconds")

    @property
    def shapes(self) -> set[TimingShape]:
        shapes: set[TimingShape] = set()
        if self.durations or self.starts or self.scenes:
            shapes.add("frames")
        if self.seconds:
            shapes.add("seconds")
        return shapes


class TimingSource:
    """The render project's timing constants module, as a patchable document."""

    def __init__(self, text: str = "", path: Path | None = None) -> None:
        self.text = text
        self.path = path
        self.declarations = _find_declarations(text)

    @classmethod
    def load(cls, path: Path) -> TimingSource:
        """Load a timing source; a missing file yields an empty document."""
        if not path.exists():
            return cls("", path)
        return cls(path.read_text(encoding="utf-8"), path)

    def declaration(self, name: str) -> Declaration | None:
        return next((d for d in self.declarations if d.name == name), None)

    def parse(self, name: str) -> dict[str, Any] | None:
        """Parse a named object declaration; None if absent or not an object."""
        decl = self.declaration(name)
        if decl is None or not decl.is_object:
            return None
        try:
            return parse_object_literal(decl.value_text)
        except TimingSourceError as e:
            raise TimingSourceError(f"Cannot parse {name} in {self.path or 'timing source'}: {e}") from e

    @property
    def fps(self) -> float | None:
        decl = self.declaration(FPS_NAME)
        if decl is None:
            return None
        return _as_number(decl.value_text.strip())

    def number(self, name: str) -> int | float | None:
        """Value of a scalar declaration when it is a plain number literal."""
        decl = self.declaration(name)
        if decl is None or decl.is_object:
            return None
        return _as_number(decl.value_text.strip())

    def _object_tables(self, scene_ids: Iterable[str] | None) -> list[tuple[str, dict[str, Any]]]:
        known: set[str] | None = None
        if scene_ids is not None:
            ids = list(scene_ids)
            if ids:
                known = set(ids) | {to_constant_case(i) for i in ids}

        tables = []
        for decl in self.declarations:
            if not decl.is_object:
                continue
            try:
                mapping = parse_object_literal(decl.value_text)
            except TimingSourceError:
                # Not every exported object is timing; unparseable ones are opaque.
                continue
            if mapping and (known is None or known & set(mapping)):
                tables.append((decl.name, mapping))
        return tables

    def layout(self, scene_ids: Iterable[str] | None = None) -> TimingLayout:
        """Locate the timing tables by their structure.

        Args:
            scene_ids: Scene ids a timing table must be keyed by. Without
                them any table of the right structure qualifies.

        Returns:
            TimingLayout naming the declarations found.
        """
        found = TimingLayout()
        flat: list[tuple[str, dict[str, Any]]] = []
        paired: list[tuple[str, dict[str, Any], tuple[str, str]]] = []

        for name, mapping in self._object_tables(scene_ids):
            values = list(mapping.values())
            if all(_is_number(v) for v in values):
                flat.append((name, mapping))
                continue
            keys = _pair_keys(values)
            if keys is not None:
                paired.append((name, mapping, keys))

        if flat:
            names = [name for name, _ in flat]
            starts = [name for name, m in flat if _starts_at_zero(m)] if len(flat) > 1 else []
            found.durations = next((n for n in names if n not in starts), names[0])
            found.starts = next((n for n in starts if n != found.durations), None)

        totals_in_seconds = self.declaration(TOTAL_SECONDS_NAME) is not None and not flat
        for name, mapping, keys in paired:
            fractional = any(
                not float(v[k]).is_integer() for v in mapping.values() for k in keys
            )
            if keys[0] == "startSeconds" or fractional or totals_in_seconds:
                if found.seconds is None:
                    found.seconds, found.seconds_keys = name, keys
            elif found.scenes is None:
                found.scenes = name

        return found

    def seconds_table_name(self) -> str | None:
        """Name of the declaration holding the seconds timing table."""
        return self.layout().seconds

    def detect_shapes(self, scene_ids: Iterable[str] | None = None) -> set[TimingShape]:
        """Which timing shapes the document already declares."""
        return self.layout(scene_ids).shapes

    def stored_frames(self, fps: float | None = None, scene_ids: Iterable[str] | None = None) -> dict[str, int]:
        """Per-key total frames currently declared in the document.

        Reads the flat frame-count table, then the ``{start, duration}``
        frames table, then the seconds table (converted with ``fps``).
        Keys are as written.
        """
        layout = self.layout(scene_ids)
        if layout.durations:
            durations = self.parse(layout.durations) or {}
            return {k: int(v) for k, v in durations.items()}

        if layout.scenes:
            scenes = self.parse(layout.scenes) or {}
            return {k: int(v["duration"]) for k, v in scenes.items()}

        rate = fps or self.fps
        if layout.seconds and rate:
            duration_key = layout.seconds_keys[1]
            table = self.parse(layout.seconds) or {}
            return {k: round_half_up(float(v[duration_key]) * rate) for k, v in table.items()}
        return {}


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _entry_key(entry: SceneFrameEntry, constant_keys: bool) -> str:
    return to_constant_case(entry.scene_id) if constant_keys else entry.scene_id


def render_durations(table: FrameTable, constant_keys: bool = True) -> str:
    lines = ["{"]
    for entry in table.entries:
        key = _format_key(_entry_key(entry, constant_keys))
        lines.append(
            f"{INDENT}{key}: {entry.total_frames}, "
            f"// {entry.audio_seconds:.2f}s audio + {entry.buffer_frames}f buffer"
        )
    lines.append("}")
    return "\n".join(lines)


def render_start_frames(table: FrameTable, constant_keys: bool = True) -> str:
    lines = ["{"]
    for entry in table.entries:
        lines.append(f"{INDENT}{_format_key(_entry_key(entry, constant_keys))}: {entry.start_frame},")
    lines.append("}")
    return "\n".join(lines)


def render_starts(
    table: FrameTable,
    constant_keys: bool = True,
    keys: tuple[str, str] = ("start", "duration"),
    seconds: bool = False,
) -> str:
    """``{id: {start, duration}}`` in frames, or in seconds when ``seconds``."""
    start_key, duration_key = keys
    lines = ["{"]
    for entry in table.entries:
        key = _format_key(_entry_key(entry, constant_keys))
        if seconds:
            start = _format_number(entry.start_frame / table.fps)
            duration = _format_number(entry.total_frames / table.fps)
        else:
            start, duration = str(entry.start_frame), str(entry.total_frames)
        lines.append(f"{INDENT}{key}: {{ {start_key}: {start}, {duration_key}: {duration} }},")
    lines.append("}")
    return "\n".join(lines)


def render_seconds_table(table: FrameTable, constant_keys: bool = False) -> str:
    return render_starts(table, constant_keys, keys=("startSeconds", "durationSeconds"), seconds=True)


def render_total_frames(table: FrameTable) -> str:
    return str(table.total_frames)


def render_total_seconds(table: FrameTable) -> str:
    return _format_number(table.total_frames / table.fps)


def render_new_source(table: FrameTable, shape: TimingShape, synced_at: str) -> str:
    """A complete timing module for a project that has none yet."""
    header = [
        "// Scene timing synced from audio metadata.",
        f"// Buffer: {table.buffer_frames} frames per scene.",
        f"{SYNC_MARKER_PREFIX}{synced_at}",
        "",
        f"export const {FPS_NAME} = {_format_number(table.fps)};",
        "",
    ]
    return "\n".join(header) + render_blocks(table, shape) + "\n"


def render_blocks(table: FrameTable, shape: TimingShape) -> str:
    if shape == "frames":
        total_note = f" // {table.total_seconds:.1f}s at {_format_number(table.fps)}fps"
        return (
            f"export const {DURATIONS_NAME} = {render_durations(table)} as const;\n\n"
            f"export const {STARTS_NAME} = {render_starts(table)} as const;\n\n"
            f"export const {TOTAL_FRAMES_NAME} = {render_total_frames(table)};{total_note}\n"
        )
    return (
        f"export const {SECONDS_TABLE_NAME} = {render_seconds_table(table)} as const;\n\n"
        f"export const {TOTAL_SECONDS_NAME} = {render_total_seconds(table)};\n"
    )


# ---------------------------------------------------------------------------
# Patching
# ---------------------------------------------------------------------------


@dataclass
class SyncResult:
    """Outcome of patching the timing source."""

    path: Path
    shapes: list[TimingShape]
    created: bool
    changed: bool
    table: FrameTable


def _layout_replacements(source: TimingSource, layout: TimingLayout, table: FrameTable) -> dict[str, str]:
    replacements: dict[str, str] = {}

    def constant_keys(name: str) -> bool:
        return _uses_constant_keys(source.parse(name) or {})

    if layout.durations:
        replacements[layout.durations] = render_durations(table, constant_keys(layout.durations))
    if layout.starts:
        replacements[layout.starts] = render_start_frames(table, constant_keys(layout.starts))
    if layout.scenes:
        replacements[layout.scenes] = render_starts(table, constant_keys(layout.scenes))
    if layout.seconds:
        replacements[layout.seconds] = render_starts(
            table, constant_keys(layout.seconds), keys=layout.seconds_keys, seconds=True
        )

    if source.number(TOTAL_FRAMES_NAME) is not None:
        replacements[TOTAL_FRAMES_NAME] = render_total_frames(table)
    if source.number(TOTAL_SECONDS_NAME) is not None:
        replacements[TOTAL_SECONDS_NAME] = render_total_seconds(table)
    return replacements


def patch_timing_source(
    source: TimingSource,
    table: FrameTable,
    default_shape: TimingShape = "frames",
    synced_at: str | None = None,
) -> tuple[str, list[TimingShape]]:
    """Rewrite the timing declarations of a document from a frame table.

    Only the tables the document already uses are replaced, in their own
    key style and units; everything else in the text is preserved. The
    ``Last synced`` marker is updated or inserted above the first rewritten
    declaration.

    Args:
        source: Parsed timing source.
        table: Frame table to write.
        default_shape: Shape to append when the document declares none.
        synced_at: Timestamp for the marker (defaults to now).

    Returns:
        Tuple of (new text, shapes written).
    """
    synced_at = synced_at or utc_timestamp()

    if not source.text.strip():
        return render_new_source(table, default_shape, synced_at), [default_shape]

    layout = source.layout(entry.scene_id for entry in table.entries)
    shapes = layout.shapes

    if not shapes:
        text = source.text.rstrip("\n") + "\n\n"
        if _SYNC_MARKER_RE.search(text) is None:
            text += f"{SYNC_MARKER_PREFIX}{synced_at}\n"
        text += render_blocks(table, default_shape)
        return _SYNC_MARKER_RE.sub(SYNC_MARKER_PREFIX + synced_at, text, count=1), [default_shape]

    replacements = _layout_replacements(source, layout, table)

    pieces: list[str] = []
    cursor = 0
    first_rewrite: int | None = None
    for decl in source.declarations:
        if decl.name not in replacements:
            continue
        pieces.append(source.text[cursor:decl.value_start])
        if first_rewrite is None:
            first_rewrite = sum(len(p) for p in pieces) - (decl.value_start - decl.start)
        pieces.append(replacements[decl.name])
        cursor = decl.value_end
    pieces.append(source.text[cursor:])
    text = "".join(pieces)

    if _SYNC_MARKER_RE.search(text) is not None:
        text = _SYNC_MARKER_RE.sub(SYNC_MARKER_PREFIX + synced_at, text, count=1)
    elif first_rewrite is not None:
        marker = f"{SYNC_MARKER_PREFIX}{synced_at}\n"
        text = text[:first_rewrite] + marker + text[first_rewrite:]

    return text, sorted(shapes)


def sync_timing_source(
    path: Path,
    table: FrameTable,
    default_shape: TimingShape = "frames",
    dry_run: bool = False,
    synced_at: str | None = None,
) -> SyncResult:
    """Patch (or create) the timing source file from a frame table.

    Args:
        path: Timing constants module path.
        table: Frame table to write.
        default_shape: Shape used when the file declares none.
        dry_run: Compute but do not write.
        synced_at: Timestamp for the marker (defaults to now).

    Returns:
        SyncResult describing what was written.

    Raises:
        TimingSourceError: If an existing timing declaration cannot be parsed.
    """
    source = TimingSource.load(path)
    created = not path.exists()
    text, shapes = patch_timing_source(source, table, default_shape, synced_at)

    changed = _SYNC_MARKER_RE.sub("", text) != _SYNC_MARKER_RE.sub("", source.text)
    if not dry_run:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.info(
            f"{'Created' if created else 'Patched'} timing source {path.name} "
            f"({', '.join(shapes)}; {len(table.entries)} scenes, {table.total_frames} frames)"
        )

    return SyncResult(path=path, shapes=shapes, created=created, changed=changed, table=table)


def expected_keyed_frames(table: FrameTable, constant_keys: bool) -> dict[str, int]:
    return {_entry_key(e, constant_keys): e.total_frames for e in table.entries}


def compare_with_source(source: TimingSource, table: FrameTable) -> dict[str, tuple[int | None, int | None]]:
    """Differences between stored and expected frames: key -> (stored, expected)."""
    stored = source.stored_frames(table.fps, [e.scene_id for e in table.entries])
    if not stored:
        return {}
    expected = expected_keyed_frames(table, _uses_constant_keys(stored))
    diffs: dict[str, tuple[int | None, int | None]] = {}
    for key in dict.fromkeys([*stored, *expected]):
        if stored.get(key) != expected.get(key):
            diffs[key] = (stored.get(key), expected.get(key))
    return diffs
