"""Runs the speech model over planned chunks with bounded retries and a worker pool."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable

from .exceptions import InferenceError, InvalidConfigurationError
from .job import TranscriptionJob
from .models import Chunk, ChunkResult, MediaHandle, RawSegment
from .transcriber import Transcriber

logger = logging.getLogger(__name__)


class InferenceRunner:
    """Feeds chunk samples to a Transcriber and reports results tagged with chunk index."""

    def __init__(self, transcriber: Transcriber, max_retries: int = 2, max_workers: int = 1):
        """
        Args:
            transcriber: The speech model wrapper.
            max_retries: Extra attempts per chunk after an InferenceError.
            max_workers: Pool size when the transcriber is reentrant. Forced to 1 otherwise.
        """
        if max_retries < 0:
            raise InvalidConfigurationError(f"max_retries cannot be negative, got {max_retries}")
        if max_workers < 1:
            raise InvalidConfigurationError(f"max_workers must be at least 1, got {max_workers}")
        self.transcriber = transcriber
        self.max_retries = max_retries
        self.max_workers = max_workers if transcriber.reentrant else 1

    def run_chunk(self, media: MediaHandle, chunk: Chunk) -> ChunkResult:
        """
        Transcribes one chunk, retrying on InferenceError.

        Returns:
            A ChunkResult. When every attempt fails the result carries the last
            error message instead of raising.
        """
        samples = media.slice(*chunk.sample_range)
        attempts = 0
        last_error = None
        while attempts <= self.max_retries:
            attempts += 1
            try:
                segments = self.transcriber.transcribe_chunk(samples, media.sample_rate)
            except InferenceError as e:
                last_error = str(e)
                logger.warning(f"Inference failed for chunk {chunk.index} "
                               f"(attempt {attempts}/{self.max_retries + 1}): {e}")
                continue
            except Exception as e:
                # Unexpected errors fail the chunk without a retry
                last_error = f"{type(e).__name__}: {e}"
                logger.error(f"Unexpected error transcribing chunk {chunk.index}: {last_error}", exc_info=True)
                break
            segments = self._sanitize(chunk, segments)
            logger.debug(f"Chunk {chunk.index} transcribed: {len(segments)} segments in {attempts} attempt(s)")
            return ChunkResult(chunk_index=chunk.index, segments=segments, attempts=attempts)

        logger.error(f"Chunk {chunk.index} ({chunk.start_time:.2f}s-{chunk.end_time:.2f}s) "
                     f"failed after {attempts} attempts: {last_error}")
        return ChunkResult(chunk_index=chunk.index, error=last_error, attempts=attempts)

    def run(self, job: TranscriptionJob, on_result: Callable[[ChunkResult], None]) -> int:
        """
        Transcribes every chunk of the job on the worker pool.

        `on_result` is called from this thread, in completion order, which is
        not necessarily chunk order.

        Returns:
            Number of chunks that were processed (not skipped by cancellation).
        """
        processed = 0
        logger.info(f"Running inference over {len(job.chunks)} chunks with {self.max_workers} worker(s)")
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="inference") as executor:
            futures = {executor.submit(self._guarded_run, job, chunk): chunk for chunk in job.chunks}
            try:
                for future in as_completed(futures):
                    if future.cancelled():
                        continue
                    result = future.result()
                    if result is None:
                        continue
                    processed += 1
                    on_result(result)
                    if job.cancelled:
                        self._cancel_pending(futures)
            except BaseException:
                job.cancel()
                self._cancel_pending(futures)
                raise
        return processed

    def _guarded_run(self, job: TranscriptionJob, chunk: Chunk):
        if job.cancelled:
            logger.debug(f"Skipping chunk {chunk.index}: job cancelled")
            return None
        return self.run_chunk(job.media, chunk)

    @staticmethod
    def _cancel_pending(futures) -> None:
        cancelled = sum(1 for future in futures if future.cancel())
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending chunk inference(s)")

    @staticmethod
    def _sanitize(chunk: Chunk, segments) -> list:
        """Clamps local timestamps into the chunk and restores local_start order."""
        duration = chunk.duration
        cleaned = []
        for seg in segments:
            start = min(max(seg.local_start, 0.0), duration)
            end = min(max(seg.local_end, 0.0), duration)
            if (start, end) != (seg.local_start, seg.local_end):
                seg = RawSegment(local_start=start, local_end=end, text=seg.text, confidence=seg.confidence)
            cleaned.append(seg)
        cleaned.sort(key=lambda s: s.local_start)
        return cleaned
