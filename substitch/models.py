"""Data models for SubStitch."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

import numpy as np

if TYPE_CHECKING:
    from .timeline import SubtitleTimeline


@dataclass(frozen=True, eq=False)
class MediaHandle:
    """
    Immutable descriptor of decoded audio.

    `samples` is a read-only mono float32 buffer shared by every chunk task.
    It may be None when only the duration of the media is known.
    """
    sample_rate: int
    total_duration: float
    samples: Optional[np.ndarray] = None
    path: Optional[str] = None

    @classmethod
    def from_samples(cls, samples, sample_rate: int, path: Optional[str] = None) -> "MediaHandle":
        buffer = np.asarray(samples, dtype=np.float32)
        if buffer.ndim != 1:
            raise ValueError("Samples must be a mono (1-D) buffer.")
        buffer = buffer.copy()
        buffer.setflags(write=False)
        return cls(
            sample_rate=sample_rate,
            total_duration=len(buffer) / float(sample_rate),
            samples=buffer,
            path=path,
        )

    @property
    def total_samples(self) -> int:
        if self.samples is not None:
            return len(self.samples)
        return int(round(self.total_duration * self.sample_rate))

    def slice(self, start_sample: int, end_sample: int) -> np.ndarray:
        if self.samples is None:
            raise ValueError("MediaHandle carries no sample buffer.")
        return self.samples[start_sample:end_sample]


@dataclass(frozen=True)
class Chunk:
    """A bounded time window of source audio processed as one inference unit."""
    index: int
    start_time: float
    end_time: float
    sample_range: Tuple[int, int]

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class RawSegment:
    """Model output for one chunk, timestamps local to the chunk."""
    local_start: float
    local_end: float
    text: str
    confidence: float = 1.0


@dataclass
class ChunkResult:
    """Inference outcome for one chunk, tagged with its index."""
    chunk_index: int
    segments: List[RawSegment] = field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 1

    @property
    def failed(self) -> bool:
        return self.error is not None


class EntrySource(Enum):
    TRANSCRIBED = "transcribed"
    CORRECTED = "corrected"
    TRANSLATED = "translated"
    MANUAL_EDIT = "manual_edit"


@dataclass(frozen=True)
class SubtitleEntry:
    """One timed line of output text with a stable identity across edits."""
    id: int
    start_time: float
    end_time: float
    text: str
    source: EntrySource = EntrySource.TRANSCRIBED

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class GapMarker:
    """A hole in the timeline left by chunks that could not be transcribed."""
    start_time: float
    end_time: float
    chunk_indices: Tuple[int, ...] = ()


@dataclass(frozen=True)
class StitchDiagnostic:
    kind: str
    message: str
    start_time: float
    end_time: float


@dataclass
class StitchResult:
    entries: List[SubtitleEntry] = field(default_factory=list)
    gaps: List[GapMarker] = field(default_factory=list)
    diagnostics: List[StitchDiagnostic] = field(default_factory=list)
    average_confidence: float = 0.0


@dataclass
class PartialFailure:
    """Some chunks failed; the rest of the timeline is usable."""
    missing_ranges: List[Tuple[float, float]] = field(default_factory=list)
    chunk_errors: Dict[int, str] = field(default_factory=dict)


class JobState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class JobResult:
    """Holds the structured output of one transcription job."""
    state: JobState
    timeline: "SubtitleTimeline"
    partial_failure: Optional[PartialFailure] = None
    diagnostics: List[StitchDiagnostic] = field(default_factory=list)
    processing_time: float = 0.0
    audio_duration: float = 0.0
    average_confidence: float = 0.0

    @property
    def real_time_factor(self) -> float:
        if self.audio_duration <= 0:
            return 0.0
        return self.processing_time / self.audio_duration
