"""Processing stages for the narrasync pipeline.

Each stage handles a specific part of timing synchronization:
- synthesis: Driving a speech provider scene by scene
- duration: Measuring clip durations
- quality: Advisory audio quality checks
- timing: Frame tables and the render timing source
- transcribe: Segment and word timestamps
- align: Visual panel placement
- captions: Caption timing and SRT/VTT export
- validate: Pre-render composition checks
"""

__all__ = [
    "synthesis",
    "duration",
    "quality",
    "timing",
    "transcribe",
    "align",
    "captions",
    "validate",
]
