"""The transcription job: media, planned chunks and cancellation."""

import logging
import threading
from typing import List

from .models import Chunk, JobState, MediaHandle

logger = logging.getLogger(__name__)


class TranscriptionJob:
    """
    One transcription run. Owns its chunks and is the unit of cancellation.

    Cancelling stops scheduling of chunks that have not started yet; the
    already-stitched prefix of the timeline stays available.
    """

    def __init__(self, media: MediaHandle, chunks: List[Chunk], chunk_overlap: float):
        self.media = media
        self.chunks = tuple(chunks)
        self.chunk_overlap = chunk_overlap
        self.state = JobState.PENDING
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        if not self._cancel_event.is_set():
            logger.info("Cancellation requested for transcription job.")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def __repr__(self) -> str:
        return (f"TranscriptionJob(duration={self.media.total_duration:.2f}s, "
                f"chunks={len(self.chunks)}, state={self.state.value})")
