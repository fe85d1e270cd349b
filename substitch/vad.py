"""Energy-based voice activity detection used to find split points and trim silent subtitle edges."""

import logging
from typing import List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class EnergyVAD:
    """Frame-wise RMS detector: a frame contains speech when its RMS exceeds the threshold."""

    def __init__(self, sample_rate: int, threshold: float = 0.1, frame_size: float = 0.2, frame_shift: float = 0.1):
        """
        Args:
            sample_rate: Sample rate of the buffers passed to this detector.
            threshold: RMS level above which a frame counts as speech.
            frame_size: Analysis frame length in seconds.
            frame_shift: Hop between frames in seconds.
        """
        if frame_size <= 0 or frame_shift <= 0:
            raise ValueError("Frame size and shift must be positive.")
        self.sample_rate = sample_rate
        self.threshold = threshold
        self.frame_size = frame_size
        self.frame_shift = frame_shift
        self._frame_samples = max(1, int(sample_rate * frame_size))
        self._shift_samples = max(1, int(sample_rate * frame_shift))

    @staticmethod
    def calculate_rms(samples: np.ndarray) -> float:
        if len(samples) == 0:
            return 0.0
        frame = np.asarray(samples, dtype=np.float64)
        return float(np.sqrt(np.mean(frame * frame)))

    def contains_speech(self, samples: np.ndarray) -> bool:
        if len(samples) == 0:
            return False
        return self.calculate_rms(samples) > self.threshold

    def _frame_flags(self, samples: np.ndarray) -> List[Tuple[int, bool]]:
        """Returns (offset, is_speech) for each analysis frame."""
        flags = []
        for offset in range(0, len(samples), self._shift_samples):
            frame = samples[offset:offset + self._frame_samples]
            if len(frame) == 0:
                break
            flags.append((offset, self.contains_speech(frame)))
        return flags

    def detect_active_segments(self, samples: np.ndarray) -> List[Tuple[float, float]]:
        """Returns (start, end) spans in seconds where speech is present."""
        segments = []
        active_start = None
        for offset, is_speech in self._frame_flags(samples):
            if is_speech and active_start is None:
                active_start = offset
            elif not is_speech and active_start is not None:
                segments.append((active_start / self.sample_rate, offset / self.sample_rate))
                active_start = None
        if active_start is not None:
            segments.append((active_start / self.sample_rate, len(samples) / self.sample_rate))
        return segments

    def silent_runs(self, samples: np.ndarray) -> List[Tuple[int, int]]:
        """Returns (start, end) sample offsets of consecutive non-speech frames."""
        runs = []
        run_start = None
        for offset, is_speech in self._frame_flags(samples):
            if not is_speech:
                if run_start is None:
                    run_start = offset
            elif run_start is not None:
                runs.append((run_start, offset))
                run_start = None
        if run_start is not None:
            runs.append((run_start, len(samples)))
        return runs

    def detect_leading_silence(self, samples: np.ndarray) -> float:
        """Seconds from the start of the buffer to the first frame with speech (0 if none)."""
        for index, (_, is_speech) in enumerate(self._frame_flags(samples)):
            if is_speech:
                return index * self.frame_shift
        return 0.0

    def detect_trailing_silence(self, samples: np.ndarray) -> float:
        """
        Seconds of silence after the last full frame with speech, plus one
        frame length. 0 when the last frame has speech or no frame does.
        """
        if len(samples) < self._frame_samples:
            return 0.0
        total_frames = (len(samples) - self._frame_samples) // self._shift_samples + 1
        for index in range(total_frames - 1, -1, -1):
            offset = index * self._shift_samples
            if self.contains_speech(samples[offset:offset + self._frame_samples]):
                if index == total_frames - 1:
                    return 0.0
                return (total_frames - index - 1) * self.frame_shift + self.frame_size
        return 0.0


def trim_span_silence(
    samples: np.ndarray,
    sample_rate: int,
    start: float,
    end: float,
    threshold_factor: float = 0.5,
) -> Tuple[float, float]:
    """
    Tightens a subtitle span to the speech it contains.

    The threshold adapts to the span itself (its RMS times
    `threshold_factor`). Leading and trailing silence are removed, keeping
    one frame of margin on each side. A span that would collapse, or that
    holds no audio, is returned unchanged.

    Returns:
        The new (start, end) in seconds, rounded to milliseconds.
    """
    start_index = max(0, int(start * sample_rate))
    end_index = min(int(end * sample_rate), len(samples))
    if start_index >= end_index:
        return start, end

    segment = samples[start_index:end_index]
    vad = EnergyVAD(sample_rate, threshold=EnergyVAD.calculate_rms(segment) * threshold_factor)
    leading = vad.detect_leading_silence(segment)
    trailing = vad.detect_trailing_silence(segment)

    new_start = start + leading - vad.frame_size if leading > vad.frame_size else start
    new_end = end
    if trailing > vad.frame_size:
        new_end = end - min(trailing - vad.frame_size, end - start)

    new_start, new_end = round(new_start, 3), round(new_end, 3)
    if new_start >= new_end:
        return start, end
    return new_start, new_end


def find_silence_split(
    samples: np.ndarray,
    sample_rate: int,
    window_start: int,
    window_end: int,
    ideal: int,
    min_silence: float = 0.5,
    threshold_factor: float = 0.5,
) -> Optional[int]:
    """
    Finds a low-energy split point inside samples[window_start:window_end].

    The detection threshold adapts to the search window (its RMS times
    `threshold_factor`). Among silent runs of at least `min_silence` seconds,
    the one whose midpoint is closest to `ideal` wins and its midpoint is
    returned as an absolute sample index.

    Returns:
        The split sample index, or None when no suitable silence exists.
    """
    window_start = max(0, window_start)
    window_end = min(len(samples), window_end)
    if window_end <= window_start:
        return None

    region = samples[window_start:window_end]
    threshold = EnergyVAD.calculate_rms(region) * threshold_factor
    vad = EnergyVAD(sample_rate, threshold=threshold)
    min_run = int(min_silence * sample_rate)

    best = None
    for run_start, run_end in vad.silent_runs(region):
        if run_end - run_start < min_run:
            continue
        midpoint = window_start + run_start + (run_end - run_start) // 2
        if best is None or abs(midpoint - ideal) < abs(best - ideal):
            best = midpoint

    if best is None:
        logger.debug(f"No silence of {min_silence:.2f}s found in window "
                     f"{window_start / sample_rate:.2f}s-{window_end / sample_rate:.2f}s")
    else:
        logger.debug(f"Found silence split point at {best / sample_rate:.2f}s")
    return best
