"""Main pipeline orchestration for narrasync."""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable

from tqdm import tqdm

from narrasync.config import (
    DEFAULT_FPS,
    ConfigurationError,
    PipelineConfig,
    TranscriptionProvider,
)
from narrasync.models.schema import (
    AudioClipMetadata,
    AudioMetadata,
    CaptionTimingData,
    Narration,
    TranscriptionOutput,
    ValidationIssue,
    ValidationReport,
    VisualPanelsOutput,
)
from narrasync.stages.align import align_composition, apply_panels_to_narration
from narrasync.stages.captions import build_caption_timing, write_captions
from narrasync.stages.duration import (
    DurationProbe,
    DurationProbeError,
    extract_durations,
    merge_audio_metadata,
    probe_duration,
)
from narrasync.stages.quality import check_audio_quality
from narrasync.stages.synthesis import SynthesisError, Synthesizer, synthesize_scenes
from narrasync.stages.timing import (
    FrameTable,
    SyncResult,
    TimingSource,
    TimingSourceError,
    compute_frame_table,
    sync_timing_source,
)
from narrasync.stages.transcribe import (
    FasterWhisperTranscriber,
    OpenAIWhisperTranscriber,
    Transcriber,
    TranscriptionError,
    build_transcription_output,
    transcribe_scenes,
)
from narrasync.stages.validate import validate_composition
from narrasync.store.artifacts import (
    ArtifactStoreError,
    load_artifact,
    load_optional,
    save_artifact,
)
from narrasync.utils.polling import PollTimeoutError

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Error during pipeline processing."""

    pass


def _create_pipeline_progress(total_stages: int, desc: str = "Processing") -> tqdm:
    """Create a progress bar for pipeline stages."""
    return tqdm(
        total=total_stages,
        desc=desc,
        unit="stage",
        bar_format="{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} stages [{elapsed}<{remaining}]",
        leave=True,
    )


class Pipeline:
    """narrasync timing pipeline for one composition.

    Reads the narration script and synthesized clips of a render project and
    keeps every timing artifact in sync with the real speech.

    Example:
        >>> import narrasync
        >>> pipeline = narrasync.Pipeline("ZeigarnikEffect", project_root=".")
        >>> report = pipeline.run()
        >>> report.passed
        True
    """

    def __init__(
        self,
        composition_id: str | None = None,
        config: PipelineConfig | None = None,
        synthesizer: Synthesizer | None = None,
        transcriber: Transcriber | None = None,
        probe: DurationProbe = probe_duration,
        **options: Any,
    ) -> None:
        """Initialize a pipeline.

        Args:
            composition_id: Composition identifier (ignored when ``config`` is given).
            config: Full configuration.
            synthesizer: Speech provider; without one, existing clips are measured.
            transcriber: Transcription provider (built from config when None).
            probe: Duration probe.
            **options: PipelineConfig fields when ``config`` is not given.

        Raises:
            ConfigurationError: If neither a config nor a composition id is given.
        """
        if config is None:
            if composition_id is None:
                raise ConfigurationError("A composition id or a PipelineConfig is required")
            config = PipelineConfig(composition_id=composition_id, **options)

        self.config = config
        self.synthesizer = synthesizer
        self._transcriber = transcriber
        self.probe = probe
        self._fps: float | None = None

        logger.info(f"narrasync pipeline initialized ({config.composition_id})")

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def fps(self) -> float:
        """Configured fps, else the timing source's FPS, else 60."""
        if self._fps is None:
            source_fps = TimingSource.load(self.config.timing_source_path).fps
            self._fps = self.config.fps or source_fps or DEFAULT_FPS
        return self._fps

    def load_narration(self) -> Narration:
        self.config.validate_for_narration()
        return load_artifact(self.config.narration_path, Narration)

    def load_audio_metadata(self) -> AudioMetadata | None:
        return load_optional(self.config.audio_metadata_path, AudioMetadata)

    def get_transcriber(self) -> Transcriber:
        """Return the configured transcriber, building it on first use.

        Raises:
            ConfigurationError: If the selected backend lacks credentials.
        """
        if self._transcriber is not None:
            return self._transcriber

        self.config.validate_for_transcription()
        if self.config.transcription_provider == TranscriptionProvider.OPENAI:
            self._transcriber = OpenAIWhisperTranscriber(api_key=self.config.get_openai_api_key() or "")
        else:
            self._transcriber = FasterWhisperTranscriber(
                model_size=self.config.whisper_model.value,
                device=self.config.device,
            )
        return self._transcriber

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def synthesize(self, scene_filter: set[str] | None = None, voice: str | None = None) -> AudioMetadata:
        """Synthesize (selected) scenes and merge them into the audio metadata."""
        if self.synthesizer is None:
            raise PipelineError("No synthesizer configured; use extract_durations() for existing clips")

        narration = self.load_narration()
        language = self.config.language or narration.metadata.language
        clips = synthesize_scenes(
            narration.scenes,
            self.synthesizer,
            self.config.audio_dir,
            self.fps,
            voice=voice,
            language=language,
            scene_filter=scene_filter,
            probe=self.probe,
        )
        return self._save_audio_metadata(
            narration, clips, provider=getattr(self.synthesizer, "name", "unknown"), language=language
        )

    def extract_durations(self, scene_filter: set[str] | None = None, save: bool = True) -> AudioMetadata:
        """Measure existing clips and merge them into the audio metadata.

        With ``save=False`` the merged metadata is returned but not written.
        """
        narration = self.load_narration()
        clips = extract_durations(
            narration.scenes,
            self.config.audio_dir,
            self.fps,
            scene_filter=scene_filter,
            probe=self.probe,
        )
        return self._save_audio_metadata(
            narration, clips, save=save, language=self.config.language or narration.metadata.language
        )

    def _save_audio_metadata(
        self, narration: Narration, clips: list[AudioClipMetadata], save: bool = True, **fields: Any
    ) -> AudioMetadata:
        metadata = merge_audio_metadata(
            self.load_audio_metadata(),
            clips,
            narration.scene_ids,
            composition_id=self.config.composition_id,
            fps=self.fps,
            **fields,
        )
        if save:
            save_artifact(metadata, self.config.audio_metadata_path)
        return metadata

    def check_quality(self, metadata: AudioMetadata | None = None) -> list[ValidationIssue]:
        narration = self.load_narration()
        metadata = metadata or self.load_audio_metadata()
        if metadata is None:
            return []
        return check_audio_quality(metadata, narration.scenes)

    def frame_table(self, metadata: AudioMetadata | None = None) -> FrameTable:
        narration = self.load_narration()
        metadata = metadata or self.load_audio_metadata()
        durations = metadata.durations() if metadata is not None else {}
        return compute_frame_table(durations, narration.scene_ids, self.fps, self.config.buffer_frames)

    def sync_timing(self, dry_run: bool = False, metadata: AudioMetadata | None = None) -> SyncResult:
        """Patch the render timing source from the measured durations."""
        table = self.frame_table(metadata)
        return sync_timing_source(
            self.config.timing_source_path,
            table,
            default_shape=self.config.timing_shape,
            dry_run=dry_run,
        )

    def transcribe(self, scene_filter: set[str] | None = None) -> TranscriptionOutput:
        """Transcribe (selected) clips and merge into ``timestamps.json``."""
        transcriber = self.get_transcriber()
        narration = self.load_narration()
        metadata = self.load_audio_metadata()
        if metadata is None:
            raise PipelineError(
                f"Audio metadata not found: {self.config.audio_metadata_path}. "
                "Synthesize or measure the clips first."
            )

        scenes = transcribe_scenes(
            metadata,
            self.config.audio_dir,
            transcriber,
            self.fps,
            language=self.config.language or metadata.language,
            scene_filter=scene_filter,
        )
        output = build_transcription_output(
            scenes,
            self.fps,
            composition_id=self.config.composition_id,
            existing=load_optional(self.config.timestamps_path, TranscriptionOutput),
            scene_order=narration.scene_ids,
        )
        save_artifact(output, self.config.timestamps_path)
        return output

    def align(self, scene_filter: set[str] | None = None, write_back: bool = True) -> VisualPanelsOutput:
        """Align visual panels against ``timestamps.json``."""
        narration = self.load_narration()
        transcription = load_optional(self.config.timestamps_path, TranscriptionOutput)
        if transcription is None:
            raise PipelineError(
                f"Timestamps not found: {self.config.timestamps_path}. Run transcription first."
            )

        panels = align_composition(
            narration,
            transcription,
            fps=self.fps,
            scene_filter=scene_filter,
            existing=load_optional(self.config.visual_panels_path, VisualPanelsOutput),
            strategy=self.config.similarity,
            composition_id=self.config.composition_id,
        )
        save_artifact(panels, self.config.visual_panels_path)

        if write_back:
            save_artifact(apply_panels_to_narration(narration, panels), self.config.narration_path)
        return panels

    def captions(self, formats: Iterable[str] = ("srt", "vtt")) -> CaptionTimingData:
        """Build caption timing and write SRT/VTT files."""
        narration = self.load_narration()
        timing = build_caption_timing(
            narration,
            self.load_audio_metadata(),
            self.fps,
            max_words=self.config.max_words_per_caption,
            buffer_frames=self.config.buffer_frames,
            transcription=load_optional(self.config.timestamps_path, TranscriptionOutput),
            composition_id=self.config.composition_id,
        )
        write_captions(timing, self.config.captions_dir, formats)
        return timing

    def validate(self, quality_issues: list[ValidationIssue] | None = None) -> ValidationReport:
        """Run the pre-render checks over everything persisted so far."""
        narration = self.load_narration()
        metadata = self.load_audio_metadata()
        source_path = self.config.timing_source_path

        if quality_issues is None and metadata is not None:
            quality_issues = check_audio_quality(metadata, narration.scenes)

        return validate_composition(
            narration,
            self.config.audio_dir,
            audio_metadata=metadata,
            strict=self.config.strict,
            tolerance=self.config.effective_tolerance(),
            timing_source=TimingSource.load(source_path) if source_path.exists() else None,
            frame_table=self.frame_table(metadata) if metadata is not None else None,
            panels=load_optional(self.config.visual_panels_path, VisualPanelsOutput),
            quality_issues=quality_issues,
            composition_id=self.config.composition_id,
        )

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def run(
        self,
        scene_filter: set[str] | None = None,
        transcribe: bool = True,
        captions: bool = True,
    ) -> ValidationReport:
        """Run every stage in order and return the aggregated report.

        Args:
            scene_filter: Only (re)process these scene ids.
            transcribe: Run transcription and panel alignment.
            captions: Generate caption files.

        Returns:
            ValidationReport covering quality issues and every pre-render check.

        Raises:
            ConfigurationError: If configuration is incomplete (before any write).
            PipelineError: If a stage fails.
        """
        self.config.validate_for_narration()
        if transcribe:
            self.get_transcriber()

        start_time = time.perf_counter()
        total_stages = 4 + (2 if transcribe else 0) + (1 if captions else 0)
        pbar = _create_pipeline_progress(total_stages, f"Processing {self.config.composition_id}")

        try:
            if self.synthesizer is not None:
                pbar.set_description("Stage 1: Synthesizing speech")
                metadata = self.synthesize(scene_filter)
            else:
                pbar.set_description("Stage 1: Measuring clip durations")
                metadata = self.extract_durations(scene_filter)
            pbar.update(1)

            pbar.set_description("Stage 2: Checking audio quality")
            quality_issues = self.check_quality(metadata)
            pbar.update(1)

            pbar.set_description("Stage 3: Syncing scene timing")
            self.sync_timing()
            pbar.update(1)

            if transcribe:
                pbar.set_description("Stage 4: Transcribing clips")
                self.transcribe(scene_filter)
                pbar.update(1)

                pbar.set_description("Stage 5: Aligning visual panels")
                self.align(scene_filter)
                pbar.update(1)

            if captions:
                pbar.set_description("Stage 6: Generating captions")
                self.captions()
                pbar.update(1)

            pbar.set_description("Stage 7: Validating composition")
            report = self.validate(quality_issues)
            pbar.update(1)

        except (
            DurationProbeError,
            SynthesisError,
            PollTimeoutError,
            TranscriptionError,
            TimingSourceError,
            ArtifactStoreError,
        ) as e:
            raise PipelineError(f"Processing failed: {e}") from e
        finally:
            pbar.close()

        elapsed = time.perf_counter() - start_time
        logger.info(
            f"Pipeline complete in {elapsed:.2f}s: "
            f"{len(report.errors)} errors, {len(report.warnings)} warnings "
            f"({'passed' if report.passed else 'failed'})"
        )
        return report
