"""Partitions decoded audio into bounded, overlapping or silence-aligned chunks."""

import logging
from typing import List

from .exceptions import InvalidConfigurationError
from .models import Chunk, MediaHandle
from .vad import find_silence_split

logger = logging.getLogger(__name__)


class ChunkPlanner:
    """
    Plans the chunk sequence for one transcription job.

    Boundaries are computed in sample indices, and chunk times are derived
    from them, so long recordings never accumulate floating point drift.
    """

    def __init__(
        self,
        max_chunk_duration: float = 60.0,
        overlap_duration: float = 1.0,
        silence_search_window: float = 10.0,
        min_silence_duration: float = 0.5,
        silence_threshold_factor: float = 0.5,
    ):
        """
        Args:
            max_chunk_duration: Upper bound on the length of every chunk, in seconds.
            overlap_duration: Overlap between chunks split at the ideal boundary.
            silence_search_window: How far before the ideal boundary to look for silence.
                                   0 disables silence alignment.
            min_silence_duration: Shortest pause accepted as a split point.
            silence_threshold_factor: Fraction of the window RMS below which a frame is silent.

        Raises:
            InvalidConfigurationError: If the parameters cannot produce a valid plan.
        """
        if max_chunk_duration <= 0:
            raise InvalidConfigurationError(f"max_chunk_duration must be positive, got {max_chunk_duration}")
        if overlap_duration < 0:
            raise InvalidConfigurationError(f"overlap_duration cannot be negative, got {overlap_duration}")
        if overlap_duration >= max_chunk_duration:
            raise InvalidConfigurationError(
                f"overlap_duration ({overlap_duration}) must be less than max_chunk_duration ({max_chunk_duration})"
            )
        if silence_search_window < 0:
            raise InvalidConfigurationError(f"silence_search_window cannot be negative, got {silence_search_window}")
        if min_silence_duration <= 0:
            raise InvalidConfigurationError(f"min_silence_duration must be positive, got {min_silence_duration}")

        self.max_chunk_duration = max_chunk_duration
        self.overlap_duration = overlap_duration
        self.silence_search_window = silence_search_window
        self.min_silence_duration = min_silence_duration
        self.silence_threshold_factor = silence_threshold_factor

    def plan(self, media: MediaHandle) -> List[Chunk]:
        """
        Produces an ordered chunk sequence covering [0, total_duration).

        Returns:
            A list of Chunk objects. A single chunk with no overlap when the
            media fits into one chunk.
        """
        sr = media.sample_rate
        total = media.total_samples
        max_samples = int(round(self.max_chunk_duration * sr))
        overlap_samples = int(round(self.overlap_duration * sr))
        window_samples = int(round(self.silence_search_window * sr))

        if max_samples <= overlap_samples:
            raise InvalidConfigurationError(
                f"Chunk length and overlap collapse at sample rate {sr}: {max_samples} <= {overlap_samples} samples"
            )

        if total <= max_samples:
            logger.debug(f"Audio duration {media.total_duration:.2f}s fits in one chunk "
                         f"({self.max_chunk_duration:.2f}s), using single chunk")
            return [self._make_chunk(0, 0, total, sr)]

        chunks: List[Chunk] = []
        start = 0
        while True:
            ideal_end = start + max_samples
            if ideal_end >= total:
                chunks.append(self._make_chunk(len(chunks), start, total, sr))
                break

            split = None
            if media.samples is not None and window_samples > 0:
                split = find_silence_split(
                    media.samples,
                    sr,
                    window_start=max(ideal_end - window_samples, start + 1),
                    window_end=ideal_end,
                    ideal=ideal_end,
                    min_silence=self.min_silence_duration,
                    threshold_factor=self.silence_threshold_factor,
                )

            if split is not None and start < split <= ideal_end:
                chunks.append(self._make_chunk(len(chunks), start, split, sr))
                start = split
            else:
                chunks.append(self._make_chunk(len(chunks), start, ideal_end, sr))
                start = ideal_end - overlap_samples

        logger.info(f"Planned {len(chunks)} chunks for {media.total_duration:.2f}s of audio "
                    f"(max {self.max_chunk_duration:.2f}s, overlap {self.overlap_duration:.2f}s)")
        return chunks

    @staticmethod
    def _make_chunk(index: int, start: int, end: int, sample_rate: int) -> Chunk:
        chunk = Chunk(
            index=index,
            start_time=start / sample_rate,
            end_time=end / sample_rate,
            sample_range=(start, end),
        )
        logger.debug(f"Created chunk {index}: samples {start}-{end}, "
                     f"{chunk.start_time:.2f}s-{chunk.end_time:.2f}s ({chunk.duration:.2f}s)")
        return chunk
