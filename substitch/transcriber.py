"""Speech model interface consumed by the inference runner."""

from abc import ABC, abstractmethod
from typing import List

import numpy as np

from .models import RawSegment


class Transcriber(ABC):
    """Abstract base class for speech-recognition models."""

    #: Whether transcribe_chunk may be called from several threads at once.
    reentrant: bool = False

    @abstractmethod
    def transcribe_chunk(self, samples: np.ndarray, sample_rate: int) -> List[RawSegment]:
        """
        Transcribes one chunk of mono PCM audio.

        Args:
            samples: Float32 samples of the chunk (read-only).
            sample_rate: Sample rate of `samples`.

        Returns:
            RawSegment objects ordered by local_start, with timestamps local
            to the chunk in [0, chunk_duration].

        Raises:
            InferenceError: If the model fails on this chunk.
        """
        pass
