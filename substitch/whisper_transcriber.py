"""Handles Speech-to-Text transcription of chunks using Whisper."""

import whisper
import logging
import math
import torch
from typing import List, Optional

import numpy as np

from .models import RawSegment
from .transcriber import Transcriber
from .exceptions import InferenceError

logger = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE = 16000

class WhisperTranscriber(Transcriber):
    """Implements chunk transcription using OpenAI's Whisper model."""

    # A loaded Whisper model keeps decoding state on the module; one inference at a time.
    reentrant = False

    def __init__(
        self,
        model_name: str = "base",
        device: str = "cuda",
        fp16: bool = True,
        language: Optional[str] = None,
        temperature: float = 0.0,
        initial_prompt: Optional[str] = None,
    ):
        """
        Initializes the WhisperTranscriber.

        Args:
            model_name: The name of the Whisper model to use (e.g., "base", "medium.en").
            device: The device to run the model on ("cuda" or "cpu").
            fp16: Whether to use float16 precision (faster on compatible GPUs).
            language: Language code to force, or None to auto-detect per chunk.
            temperature: Sampling temperature, clamped to [0, 1].
            initial_prompt: Optional text to prime the decoder with.

        Raises:
            ValueError: If the specified device is invalid.
            InferenceError: If the model fails to load.
        """
        self.model_name = model_name
        self.device = device
        self.language = language
        self.temperature = min(max(temperature, 0.0), 1.0)
        self.initial_prompt = initial_prompt

        if self.device == "cuda" and not torch.cuda.is_available():
            logger.warning("CUDA device requested but not available. Falling back to CPU.")
            self.device = "cpu"
        elif self.device not in ["cuda", "cpu"]:
             raise ValueError(f"Invalid device specified: {self.device}. Choose 'cuda' or 'cpu'.")

        # FP16 only works on CUDA
        self.fp16 = fp16 and self.device == "cuda"

        logger.info(f"Initializing WhisperTranscriber with model '{self.model_name}' on device '{self.device}' (FP16: {self.fp16})")
        try:
            self.model = whisper.load_model(self.model_name, device=self.device)
            logger.info(f"Whisper model '{self.model_name}' loaded successfully.")
        except Exception as e:
            logger.error(f"Failed to load Whisper model '{self.model_name}': {e}", exc_info=True)
            raise InferenceError(f"Failed to load Whisper model '{self.model_name}': {e}") from e

    def transcribe_chunk(self, samples: np.ndarray, sample_rate: int) -> List[RawSegment]:
        """
        Transcribes one chunk with the loaded Whisper model.

        Raises:
            InferenceError: If the sample rate is not 16 kHz or decoding fails.
        """
        if sample_rate != WHISPER_SAMPLE_RATE:
            raise InferenceError(f"Not compatible with whisper. Actual sample rate {sample_rate}, expect {WHISPER_SAMPLE_RATE}")

        chunk_duration = len(samples) / float(sample_rate)
        if len(samples) == 0:
            return []

        try:
            # Whisper pads/trims internally; it needs a writable float32 copy
            audio = np.array(samples, dtype=np.float32, copy=True)
            result = self.model.transcribe(
                audio,
                language=self.language,
                fp16=self.fp16,
                temperature=self.temperature,
                initial_prompt=self.initial_prompt,
                condition_on_previous_text=False,
                verbose=None
            )
        except Exception as e:
            logger.error(f"Error during Whisper transcription of {chunk_duration:.2f}s chunk: {e}", exc_info=True)
            raise InferenceError(f"Whisper transcription failed: {e}") from e

        segments = []
        for seg_data in result.get('segments', []):
            if 'start' not in seg_data or 'end' not in seg_data or 'text' not in seg_data:
                logger.warning(f"Skipping incomplete segment data: {seg_data}")
                continue
            text = seg_data['text'].strip()
            if not text:
                continue
            start = min(max(float(seg_data['start']), 0.0), chunk_duration)
            end = min(max(float(seg_data['end']), 0.0), chunk_duration)
            segments.append(
                RawSegment(
                    local_start=start,
                    local_end=end,
                    text=text,
                    confidence=self._confidence(seg_data),
                )
            )

        segments.sort(key=lambda s: s.local_start)
        logger.debug(f"Chunk of {chunk_duration:.2f}s produced {len(segments)} segments "
                     f"(language: {result.get('language', 'N/A')})")
        return segments

    @staticmethod
    def _confidence(seg_data: dict) -> float:
        avg_logprob = seg_data.get('avg_logprob')
        if avg_logprob is None:
            return 0.5
        return min(max(math.exp(float(avg_logprob)), 0.0), 1.0)
