"""Orchestrates the transcription pipeline and owns the resulting editing session."""

import logging
import os
import threading
import time
from typing import Dict, Optional, Union

from tqdm import tqdm

from .audio_source import AudioSource
from .chunk_planner import ChunkPlanner
from .config_loader import DEFAULT_CONFIG, build_planner_settings, build_runner_settings
from .exceptions import DecodeError, SubStitchError
from .inference_runner import InferenceRunner
from .job import TranscriptionJob
from .models import ChunkResult, EntrySource, JobResult, JobState, MediaHandle, PartialFailure
from .persistence import SessionSnapshot, load_session, save_session
from .stitcher import TimelineStitcher
from .subtitle_formatter import get_formatter, load_srt
from .timeline import SubtitleTimeline
from .transcriber import Transcriber
from .transform_pass import TextTransformer, TransformPass, TransformReport

logger = logging.getLogger(__name__)


class TranscriptionSession:
    """
    Manages the end-to-end process for one media file: decode, plan, infer,
    stitch, and then the editable timeline with its transform passes, export
    and persistence.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        transcriber: Optional[Transcriber] = None,
        audio_source: Optional[AudioSource] = None,
    ):
        """
        Initializes the TranscriptionSession.

        Args:
            config: Configuration dictionary; missing keys take their defaults.
            transcriber: Speech model wrapper. Only needed for transcribe().
            audio_source: Decoder used when transcribe() is given a path.

        Raises:
            InvalidConfigurationError: If planner or runner settings are invalid.
        """
        self.config = dict(DEFAULT_CONFIG)
        self.config.update(config or {})

        self.planner = ChunkPlanner(**build_planner_settings(self.config))
        settings = build_runner_settings(self.config)
        self.sample_rate = settings['sample_rate']
        self.similarity_threshold = settings['similarity_threshold']
        self.min_confidence = settings['min_confidence']
        self.trim_threshold_factor = settings['trim_threshold_factor']
        self.transform_workers = settings['transform_workers']

        self.transcriber = transcriber
        self.runner = None
        if transcriber is not None:
            self.runner = InferenceRunner(transcriber, max_retries=settings['inference_retries'],
                                          max_workers=settings['inference_workers'])
        self.audio_source = audio_source

        self.media: Optional[MediaHandle] = None
        self.media_path: Optional[str] = None
        self.media_sample_rate = self.sample_rate
        self.chunks = []
        self.chunk_errors: Dict[int, str] = {}
        self.state = JobState.PENDING
        self.timeline: Optional[SubtitleTimeline] = None
        self.job: Optional[TranscriptionJob] = None
        self._job_lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> "TranscriptionSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Cancels a running job. The session cannot transcribe again afterwards."""
        if self._closed:
            return
        self.cancel()
        self._closed = True
        logger.debug("Transcription session closed.")

    def cancel(self) -> None:
        """Requests cancellation of the running job, if any. Safe from any thread."""
        with self._job_lock:
            if self.job is not None:
                self.job.cancel()

    def _load_media(self, media: Union[str, MediaHandle]) -> MediaHandle:
        if isinstance(media, MediaHandle):
            return media
        return self._get_audio_source().load(media)

    def _get_audio_source(self) -> AudioSource:
        if self.audio_source is None:
            self.audio_source = AudioSource(ffmpeg_path=self.config.get('ffmpeg_path'),
                                            sample_rate=self.sample_rate)
        return self.audio_source

    def transcribe(self, media: Union[str, MediaHandle], show_progress: bool = True) -> JobResult:
        """
        Runs the chunked transcription pipeline and replaces the session timeline.

        Args:
            media: A media file path or an already decoded MediaHandle.
            show_progress: Display a tqdm progress bar over chunks.

        Returns:
            A JobResult. Failed chunks leave gaps and a PartialFailure;
            cancellation keeps the already-stitched prefix.

        Raises:
            SubStitchError: If the session has no transcriber or is closed.
            DecodeError: If the media cannot be decoded or holds no audio.
            FileNotFoundError: If the media path does not exist.
        """
        if self._closed:
            raise SubStitchError("Session is closed.")
        if self.runner is None:
            raise SubStitchError("No transcriber configured for this session.")

        started = time.time()
        media = self._load_media(media)
        if media.samples is None or media.total_samples == 0:
            raise DecodeError("Media has no decoded audio samples.")

        chunks = self.planner.plan(media)
        job = TranscriptionJob(media, chunks, self.planner.overlap_duration)
        with self._job_lock:
            self.job = job
        stitcher = TimelineStitcher(chunks, media.total_duration, self.similarity_threshold, self.min_confidence)
        name = os.path.basename(media.path) if media.path else "audio"
        logger.info(f"--- Starting transcription of {name} ({media.total_duration:.2f}s, {len(chunks)} chunks) ---")

        job.state = JobState.RUNNING
        self.state = JobState.RUNNING
        with tqdm(total=len(chunks), unit="chunk", desc=f"Transcribing {name[:30]}",
                  disable=not show_progress) as pbar:
            def on_result(result: ChunkResult) -> None:
                stitcher.add(result)
                pbar.update(1)

            try:
                self.runner.run(job, on_result)
            except Exception as e:
                job.state = JobState.FAILED
                self.state = JobState.FAILED
                logger.error(f"Transcription of {name} failed: {e}", exc_info=True)
                raise

        stitched = stitcher.finish()
        entries = stitched.entries
        missing = [(g.start_time, g.end_time) for g in stitched.gaps]
        if job.cancelled and not stitcher.complete:
            state = JobState.CANCELLED
            entries = stitcher.stitched_prefix()
            resume_at = chunks[stitcher.finalized_count].start_time
            missing.append((round(resume_at, 3), round(media.total_duration, 3)))
            logger.warning(f"Transcription cancelled; keeping {len(entries)} entries before {resume_at:.2f}s")
        elif stitcher.failed_chunks:
            state = JobState.PARTIAL
        else:
            state = JobState.COMPLETED

        partial = None
        if missing or stitcher.failed_chunks:
            partial = PartialFailure(missing_ranges=missing, chunk_errors=stitcher.failed_chunks)

        job.state = state
        self.state = state
        self.media = media
        self.media_path = media.path
        self.media_sample_rate = media.sample_rate
        self.chunks = list(chunks)
        self.chunk_errors = stitcher.failed_chunks
        self.timeline = SubtitleTimeline(entries, total_duration=media.total_duration, gaps=stitched.gaps)

        result = JobResult(
            state=state,
            timeline=self.timeline,
            partial_failure=partial,
            diagnostics=stitched.diagnostics,
            processing_time=time.time() - started,
            audio_duration=media.total_duration,
            average_confidence=stitched.average_confidence,
        )
        logger.info(f"--- Transcription {state.value}: {len(entries)} entries in {result.processing_time:.2f}s "
                    f"(real-time factor {result.real_time_factor:.2f}, average confidence {result.average_confidence:.2f}) ---")
        return result

    def _require_timeline(self) -> SubtitleTimeline:
        if self.timeline is None:
            raise SubStitchError("Session has no timeline yet. Transcribe or load a session first.")
        return self.timeline

    def run_transform(self, transformer: TextTransformer, source: EntrySource, ids=None,
                      context_window: int = 1) -> TransformReport:
        """Runs a correction or translation pass over the session timeline."""
        transform_pass = TransformPass(transformer, source, context_window=context_window,
                                       max_workers=self.transform_workers)
        return transform_pass.run(self._require_timeline(), ids)

    def trim_silence(self, media: Optional[Union[str, MediaHandle]] = None, ids=None) -> int:
        """
        Tightens entry timing to the speech in the media.

        Args:
            media: Path or decoded MediaHandle. Defaults to the media of the
                   last transcription, or the media path of a loaded session.
            ids: Entries to trim. Defaults to all of them.

        Returns:
            The number of entries whose timing changed.

        Raises:
            SubStitchError: If no media is known for this session.
            DecodeError: If the media cannot be decoded.
        """
        timeline = self._require_timeline()
        if self.media is not None and media in (None, self.media.path):
            handle = self.media
        else:
            media = media or self.media_path
            if media is None:
                raise SubStitchError("No media to measure silence on. Pass the media file.")
            handle = self._load_media(media)
            self.media = handle
        changed = timeline.trim_silence(handle, threshold_factor=self.trim_threshold_factor, ids=ids)
        return len(changed)

    def restore_timing(self) -> int:
        """Undoes trim_silence. Returns the number of entries moved back."""
        return len(self._require_timeline().restore_timing())

    def import_subtitles(self, srt_path: str, media: Optional[str] = None) -> SubtitleTimeline:
        """
        Starts the session from an existing SRT file instead of transcribing.

        When `media` is given its duration, read with ffprobe, bounds the
        timeline and the media is used for later silence trimming.

        Raises:
            FileNotFoundError: If a file does not exist.
            FormattingError: If the SRT file is malformed.
            DecodeError: If the media duration cannot be read.
            TimelineEditError: If the entries overlap or leave the media.
        """
        entries = load_srt(srt_path)
        total_duration = None
        if media is not None:
            total_duration = self._get_audio_source().probe_duration(media)
        self.timeline = SubtitleTimeline(entries, total_duration=total_duration)
        self.chunks = []
        self.chunk_errors = {}
        self.state = JobState.COMPLETED
        self.media = None
        self.media_path = media
        logger.info(f"Imported {len(entries)} entries from {srt_path}")
        return self.timeline

    def export(self, output_path: str, output_format: Optional[str] = None) -> str:
        """
        Writes the timeline as a subtitle file.

        Args:
            output_path: Destination file.
            output_format: "srt", "vtt" or "txt". Defaults to the configured format.

        Returns:
            The output path.
        """
        timeline = self._require_timeline()
        formatter = get_formatter(
            output_format or self.config['output_format'],
            max_chars_per_line=self.config['max_chars_per_line'],
            max_lines_per_block=self.config['max_lines_per_block'],
        )
        formatter.format_subtitles(timeline.entries, output_path)
        return output_path

    def save(self, path: str) -> None:
        timeline = self._require_timeline()
        snapshot = SessionSnapshot(
            timeline=timeline,
            chunks=list(self.chunks),
            job_state=self.state,
            media_path=self.media_path,
            sample_rate=self.media_sample_rate,
            total_duration=timeline.total_duration,
            chunk_errors=dict(self.chunk_errors),
        )
        save_session(path, snapshot)

    def load(self, path: str) -> SubtitleTimeline:
        """Restores timeline, chunks and job state from a saved session file."""
        snapshot = load_session(path)
        self.timeline = snapshot.timeline
        self.chunks = snapshot.chunks
        self.chunk_errors = snapshot.chunk_errors
        self.state = snapshot.job_state
        self.media = None
        self.media_path = snapshot.media_path
        self.media_sample_rate = snapshot.sample_rate
        return self.timeline
