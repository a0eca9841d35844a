#!/usr/bin/env python3
"""narrasync Quickstart Example.

Measures the synthesized clips of one composition, patches its timing
constants, aligns visual panels, writes captions and prints the
pre-render report.

Usage:
    python examples/quickstart.py <composition_id> [project_root] [--no-transcribe]

Requirements:
    - ffprobe on PATH
    - faster-whisper model download on first transcription
    - Or run with --no-transcribe to skip transcription and panel alignment
"""

from __future__ import annotations

import sys
from pathlib import Path


def main() -> None:
    """Run the quickstart example."""
    import narrasync

    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    if not args:
        print("Usage: python quickstart.py <composition_id> [project_root] [--no-transcribe]")
        print("\nExample:")
        print("  python quickstart.py ZeigarnikEffect ~/videos")
        print("  python quickstart.py ZeigarnikEffect ~/videos --no-transcribe")
        sys.exit(1)

    composition_id = args[0]
    project_root = Path(args[1]) if len(args) > 1 else Path(".")
    transcribe = "--no-transcribe" not in sys.argv

    print(f"narrasync v{narrasync.__version__}")
    print(f"Composition: {composition_id}")
    print(f"Transcription: {'enabled' if transcribe else 'disabled'}")
    print("-" * 50)

    pipeline = narrasync.Pipeline(composition_id, project_root=project_root)

    try:
        report = pipeline.run(transcribe=transcribe)
    except (narrasync.ConfigurationError, narrasync.PipelineError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    table = pipeline.frame_table()
    print(f"\nFPS: {table.fps:g}")
    print(f"Total: {table.total_frames} frames ({table.total_seconds:.1f}s)")

    print("\n" + "=" * 50)
    print("SCENES")
    print("=" * 50)

    for entry in table.entries:
        print(
            f"[{entry.start_frame:>6} - {entry.end_frame:>6}] {entry.scene_id}: "
            f"{entry.audio_seconds:.2f}s audio + {entry.buffer_frames}f buffer"
        )

    print("\n" + "=" * 50)
    print("PASSED" if report.passed else "FAILED")
    for issue in report.errors:
        print(f"  ERROR   [{issue.category}] {issue.message}")
    for issue in report.warnings:
        print(f"  WARNING [{issue.category}] {issue.message}")

    output_path = pipeline.config.captions_dir.parent / "validation-report.json"
    report.to_json(output_path)
    print(f"\nReport saved to: {output_path}")


if __name__ == "__main__":
    main()
