"""Command-line interface for narrasync."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer

from narrasync import Pipeline, PipelineError, __version__
from narrasync.config import ConfigurationError, TranscriptionProvider, WhisperModel
from narrasync.stages.timing import TimingSourceError
from narrasync.store.artifacts import ArtifactStoreError, parse_scene_filter
from narrasync.utils.logging import get_logger

app = typer.Typer(
    name="narrasync",
    help="Keep video timing in sync with synthesized narration.",
    add_completion=False,
    no_args_is_help=True,
)

CompositionArg = Annotated[str, typer.Argument(help="Composition identifier")]
RootOption = Annotated[
    Path,
    typer.Option("--root", "-r", help="Render project root directory"),
]
SceneOption = Annotated[
    Optional[str],
    typer.Option("--scene", "-s", help="Only process these scene ids (comma-separated)"),
]
FpsOption = Annotated[
    Optional[float],
    typer.Option("--fps", help="Frame rate (default: FPS from constants.ts, else 60)"),
]
BufferOption = Annotated[
    int,
    typer.Option("--buffer-frames", "-b", help="Padding appended to each scene, in frames"),
]
QuietOption = Annotated[
    bool,
    typer.Option("--quiet", "-q", help="Suppress progress output"),
]

_HANDLED_ERRORS = (
    ConfigurationError,
    FileNotFoundError,
    PipelineError,
    ArtifactStoreError,
    TimingSourceError,
    ValueError,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"narrasync {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """narrasync: narration-to-speech timing synchronization."""
    pass


def _configure_logging(quiet: bool) -> None:
    get_logger(level=logging.WARNING if quiet else logging.INFO)


def _fail(message: str) -> NoReturn:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


@app.command()
def sync(
    composition_id: CompositionArg,
    root: RootOption = Path("."),
    scene: SceneOption = None,
    fps: FpsOption = None,
    buffer_frames: BufferOption = 15,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Write neither audio metadata nor the timing source")
    ] = False,
    quiet: QuietOption = False,
) -> None:
    """Measure clip durations and patch the scene timing source.

    Example:
        narrasync sync ZeigarnikEffect --scene hook
    """
    _configure_logging(quiet)
    try:
        pipeline = Pipeline(composition_id, project_root=root, fps=fps, buffer_frames=buffer_frames)
        metadata = pipeline.extract_durations(parse_scene_filter(scene), save=not dry_run)
        result = pipeline.sync_timing(dry_run=dry_run, metadata=metadata)
    except _HANDLED_ERRORS as e:
        _fail(str(e))

    if not quiet:
        typer.echo(
            f"{'Would write' if dry_run else 'Wrote'} {result.path} "
            f"({result.table.total_frames} frames, {len(result.table.entries)} scenes)"
        )


@app.command()
def transcribe(
    composition_id: CompositionArg,
    root: RootOption = Path("."),
    scene: SceneOption = None,
    fps: FpsOption = None,
    provider: Annotated[
        TranscriptionProvider,
        typer.Option("--provider", "-p", help="Transcription backend"),
    ] = TranscriptionProvider.FASTER_WHISPER,
    whisper_model: Annotated[
        WhisperModel,
        typer.Option("--whisper-model", "-m", help="Whisper model size"),
    ] = WhisperModel.SMALL,
    device: Annotated[str, typer.Option("--device", help="cuda or cpu")] = "cpu",
    quiet: QuietOption = False,
) -> None:
    """Transcribe clips into timestamps.json."""
    _configure_logging(quiet)
    try:
        pipeline = Pipeline(
            composition_id,
            project_root=root,
            fps=fps,
            transcription_provider=provider,
            whisper_model=whisper_model,
            device=device,
        )
        output = pipeline.transcribe(parse_scene_filter(scene))
    except _HANDLED_ERRORS as e:
        _fail(str(e))

    failed = [s.id for s in output.scenes if s.error]
    if not quiet:
        typer.echo(f"Transcribed {len(output.scenes) - len(failed)} scenes")
    if failed:
        typer.secho(f"Failed: {', '.join(failed)}", fg=typer.colors.YELLOW, err=True)


@app.command()
def align(
    composition_id: CompositionArg,
    root: RootOption = Path("."),
    scene: SceneOption = None,
    similarity: Annotated[
        str,
        typer.Option("--similarity", help="Similarity strategy: prefix, ratio or token_set"),
    ] = "prefix",
    write_back: Annotated[
        bool,
        typer.Option("--write-back/--no-write-back", help="Update narration.json panels"),
    ] = True,
    quiet: QuietOption = False,
) -> None:
    """Align visual panels with the transcription."""
    _configure_logging(quiet)
    try:
        pipeline = Pipeline(composition_id, project_root=root, similarity=similarity)
        output = pipeline.align(parse_scene_filter(scene), write_back=write_back)
    except _HANDLED_ERRORS as e:
        _fail(str(e))

    flagged = sum(1 for s in output.scenes for p in s.panels if p.needs_review)
    if not quiet:
        typer.echo(f"Aligned {len(output.scenes)} scenes ({flagged} panels need review)")


@app.command()
def captions(
    composition_id: CompositionArg,
    root: RootOption = Path("."),
    fps: FpsOption = None,
    words: Annotated[int, typer.Option("--words-per-caption", "-w", help="Max words per caption")] = 7,
    fmt: Annotated[str, typer.Option("--format", help="srt, vtt or both")] = "both",
    buffer_frames: BufferOption = 15,
    quiet: QuietOption = False,
) -> None:
    """Generate SRT/VTT captions and timing-data.json."""
    _configure_logging(quiet)
    formats = ("srt", "vtt") if fmt == "both" else (fmt,)
    try:
        pipeline = Pipeline(
            composition_id,
            project_root=root,
            fps=fps,
            max_words_per_caption=words,
            buffer_frames=buffer_frames,
        )
        timing = pipeline.captions(formats)
    except _HANDLED_ERRORS as e:
        _fail(str(e))

    if not quiet:
        typer.echo(f"Wrote {len(timing.all_segments())} captions to {pipeline.config.captions_dir}")


@app.command()
def validate(
    composition_id: CompositionArg,
    root: RootOption = Path("."),
    strict: Annotated[bool, typer.Option("--strict", help="Treat warnings as errors")] = False,
    as_json: Annotated[bool, typer.Option("--json", "-j", help="Print the report as JSON")] = False,
    buffer_frames: BufferOption = 15,
) -> None:
    """Run pre-render checks; exits 1 when validation fails."""
    _configure_logging(quiet=as_json)
    try:
        pipeline = Pipeline(composition_id, project_root=root, strict=strict, buffer_frames=buffer_frames)
        report = pipeline.validate()
    except _HANDLED_ERRORS as e:
        _fail(str(e))

    if as_json:
        typer.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    else:
        for issue in report.errors:
            typer.secho(f"ERROR   [{issue.category}] {issue.message}", fg=typer.colors.RED)
        for issue in report.warnings:
            typer.secho(f"WARNING [{issue.category}] {issue.message}", fg=typer.colors.YELLOW)
        typer.echo("PASSED" if report.passed else "FAILED")

    if not report.passed:
        raise typer.Exit(1)


@app.command()
def run(
    composition_id: CompositionArg,
    root: RootOption = Path("."),
    scene: SceneOption = None,
    fps: FpsOption = None,
    buffer_frames: BufferOption = 15,
    transcription: Annotated[
        bool,
        typer.Option("--transcribe/--no-transcribe", help="Transcribe and align panels"),
    ] = True,
    strict: Annotated[bool, typer.Option("--strict", help="Treat warnings as errors")] = False,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the validation report to this file"),
    ] = None,
    quiet: QuietOption = False,
) -> None:
    """Run every stage and validate the result."""
    _configure_logging(quiet)
    try:
        pipeline = Pipeline(
            composition_id,
            project_root=root,
            fps=fps,
            buffer_frames=buffer_frames,
            strict=strict,
        )
        report = pipeline.run(parse_scene_filter(scene), transcribe=transcription)
    except _HANDLED_ERRORS as e:
        _fail(str(e))

    if output:
        report.to_json(output)
        if not quiet:
            typer.echo(f"Report written to: {output}")
    elif not quiet:
        typer.echo("PASSED" if report.passed else "FAILED")

    if not report.passed:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
