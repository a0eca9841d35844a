"""Speech synthesis orchestration.

Providers are external; this module only drives them. Each scene's text is
sent to a :class:`Synthesizer`, the returned audio is written to
``<scene id>.mp3`` and measured. A failing scene is recorded with its error
and the remaining scenes are still synthesized.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from narrasync.models.schema import AudioClipMetadata, NarrationScene
from narrasync.stages.duration import (
    DurationProbe,
    clip_file_name,
    measure_clip,
    probe_duration,
    text_preview,
)
from narrasync.utils.polling import (
    DEFAULT_INTERVAL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    poll_until_complete,
)

logger = logging.getLogger(__name__)

_HANGUL_RE = re.compile(r"[\uAC00-\uD7AF\u1100-\u11FF\u3130-\u318F]")
_KANA_RE = re.compile(r"[\u3040-\u309F\u30A0-\u30FF]")
_HAN_RE = re.compile(r"[\u4E00-\u9FFF]")


class SynthesisError(Exception):
    """Error while synthesizing speech."""

    pass


class Synthesizer(Protocol):
    """A speech provider: text in, encoded audio bytes out."""

    name: str

    def synthesize(self, text: str, voice: str | None = None, language: str | None = None) -> bytes:
        ...


def detect_language(text: str) -> str:
    """Guess the narration language from Unicode script counts.

    Returns one of ``ko``, ``ja``, ``zh`` or ``en``.
    """
    hangul = len(_HANGUL_RE.findall(text))
    kana = len(_KANA_RE.findall(text))
    han = len(_HAN_RE.findall(text))

    if hangul >= 10:
        return "ko"
    if kana >= 10:
        return "ja"
    # kanji alone is ambiguous once any kana shows up
    if han >= 20 and kana < 5:
        return "zh"
    return "en"


class PollingSynthesizer:
    """Adapt a submit/status/fetch job API to the :class:`Synthesizer` interface.

    Args:
        submit: Starts a job, returns a job id.
        status: Returns the job status (``completed``, ``failed`` or anything
            else while pending).
        fetch: Downloads the finished audio for a job id.
        timeout: Hard ceiling for a single job, in seconds.
        interval: Delay between status checks, in seconds.
        name: Provider name recorded in the audio metadata.
    """

    def __init__(
        self,
        submit: Callable[[str, str | None, str | None], str],
        status: Callable[[str], str],
        fetch: Callable[[str], bytes],
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        name: str = "polling",
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.submit = submit
        self.status = status
        self.fetch = fetch
        self.timeout = timeout
        self.interval = interval
        self.name = name
        self._poll_options: dict[str, Any] = {}
        if sleep is not None:
            self._poll_options["sleep"] = sleep

    def synthesize(self, text: str, voice: str | None = None, language: str | None = None) -> bytes:
        job_id = self.submit(text, voice, language)
        logger.debug(f"Submitted synthesis job {job_id}")

        def check() -> bool | None:
            state = self.status(job_id)
            if state == "failed":
                raise SynthesisError(f"Synthesis job {job_id} failed")
            return True if state == "completed" else None

        poll_until_complete(
            check,
            timeout=self.timeout,
            interval=self.interval,
            description=f"synthesis job {job_id}",
            **self._poll_options,
        )
        return self.fetch(job_id)


def synthesize_scenes(
    scenes: Iterable[NarrationScene],
    synthesizer: Synthesizer,
    audio_dir: Path,
    fps: float,
    voice: str | None = None,
    language: str | None = None,
    scene_filter: set[str] | None = None,
    probe: DurationProbe = probe_duration,
) -> list[AudioClipMetadata]:
    """Synthesize and measure every (selected) scene, one at a time.

    Args:
        scenes: Narration scenes in declaration order.
        synthesizer: Speech provider.
        audio_dir: Output directory for ``<scene id>.mp3`` clips.
        fps: Composition frame rate.
        voice: Provider voice id.
        language: Narration language; detected per scene when None.
        scene_filter: Only synthesize these scene ids (None for all).
        probe: Duration probe.

    Returns:
        One AudioClipMetadata per processed scene, with ``error`` set on failure.
    """
    audio_dir.mkdir(parents=True, exist_ok=True)
    results: list[AudioClipMetadata] = []

    for scene in scenes:
        if scene_filter and scene.id not in scene_filter:
            continue

        file_name = clip_file_name(scene.id)
        scene_language = scene.language or language or detect_language(scene.text)
        logger.info(f"[{scene.id}] synthesizing {len(scene.text)} chars ({scene_language})")

        try:
            audio = synthesizer.synthesize(scene.text, voice, scene_language)
        except Exception as e:
            logger.error(f"[{scene.id}] synthesis failed: {e}")
            results.append(
                AudioClipMetadata(id=scene.id, file=file_name, text=text_preview(scene.text), error=str(e))
            )
            continue

        (audio_dir / file_name).write_bytes(audio)
        clip = measure_clip(scene, audio_dir, fps, file_name, probe)
        if clip.error is None:
            logger.info(f"[{scene.id}] {clip.duration_seconds:.2f}s -> {clip.duration_frames} frames")
        results.append(clip)

    return results
