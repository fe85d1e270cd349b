"""
Stitches per-chunk model output into one global subtitle timeline.

Chunk results may arrive in any order; they are buffered and reduced
strictly in chunk order because duplicate detection for chunk i needs the
already-stitched view of chunk i-1. Chunk i-1 is trusted for the leading
edge of the shared overlap region, chunk i for everything past it.
"""

import logging
import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Dict, List, Optional, Sequence

from .exceptions import InvalidConfigurationError
from .models import (
    Chunk,
    ChunkResult,
    EntrySource,
    GapMarker,
    StitchDiagnostic,
    StitchResult,
    SubtitleEntry,
)

logger = logging.getLogger(__name__)

_EPSILON = 1e-6
_PUNCTUATION_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercases, strips punctuation and collapses whitespace for fuzzy comparison."""
    text = _PUNCTUATION_RE.sub(" ", text.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def text_similarity(a: str, b: str) -> float:
    """Similarity ratio in [0, 1] between two subtitle texts."""
    norm_a, norm_b = normalize_text(a), normalize_text(b)
    if not norm_a and not norm_b:
        return 1.0
    return SequenceMatcher(None, norm_a, norm_b, autojunk=False).ratio()


@dataclass
class _Span:
    start: float
    end: float
    text: str
    chunk_index: int
    confidence: float = 1.0

    @property
    def duration(self) -> float:
        return self.end - self.start

    def intersection(self, other: "_Span") -> float:
        return min(self.end, other.end) - max(self.start, other.start)


class TimelineStitcher:
    """Sequential reducer from ChunkResults to an ordered SubtitleEntry sequence."""

    def __init__(self, chunks: Sequence[Chunk], total_duration: float, similarity_threshold: float = 0.8,
                 min_confidence: float = 0.0):
        """
        Args:
            chunks: The planned chunks, indexed 0..n-1.
            total_duration: Media duration; no entry may extend past it.
            similarity_threshold: Minimum text similarity for two boundary
                                  segments to count as the same utterance.
            min_confidence: Segments the model scored below this are dropped
                            with a "low_confidence" diagnostic. 0 keeps everything.

        Raises:
            InvalidConfigurationError: If a threshold is outside [0, 1] or chunk indices are not 0..n-1.
        """
        if not 0.0 <= similarity_threshold <= 1.0:
            raise InvalidConfigurationError(f"similarity_threshold must be within [0, 1], got {similarity_threshold}")
        if not 0.0 <= min_confidence <= 1.0:
            raise InvalidConfigurationError(f"min_confidence must be within [0, 1], got {min_confidence}")
        ordered = sorted(chunks, key=lambda c: c.index)
        if [c.index for c in ordered] != list(range(len(ordered))):
            raise InvalidConfigurationError("Chunk indices must be contiguous and start at 0.")

        self.chunks = ordered
        self.total_duration = total_duration
        self.similarity_threshold = similarity_threshold
        self.min_confidence = min_confidence

        self._pending: Dict[int, ChunkResult] = {}
        self._next_index = 0
        self._spans: List[_Span] = []
        self._tail: List[_Span] = []
        self._prev_chunk: Optional[Chunk] = None
        self._errors: Dict[int, str] = {}
        self._diagnostics: List[StitchDiagnostic] = []

    @property
    def finalized_count(self) -> int:
        """Number of chunks (a contiguous prefix) already reduced into the timeline."""
        return self._next_index

    @property
    def complete(self) -> bool:
        return self._next_index == len(self.chunks)

    @property
    def failed_chunks(self) -> Dict[int, str]:
        return dict(self._errors)

    def add(self, result: ChunkResult) -> int:
        """
        Buffers a chunk result and reduces every chunk whose predecessors are all present.

        Returns:
            The number of chunks finalized by this call.
        """
        index = result.chunk_index
        if not 0 <= index < len(self.chunks):
            raise ValueError(f"Result for unknown chunk index {index}")
        if index < self._next_index or index in self._pending:
            raise ValueError(f"Duplicate result for chunk {index}")

        self._pending[index] = result
        finalized = 0
        while self._next_index in self._pending:
            self._reduce(self._pending.pop(self._next_index))
            self._next_index += 1
            finalized += 1
        if finalized == 0:
            logger.debug(f"Buffered chunk {index}; waiting for chunk {self._next_index}")
        return finalized

    def _reduce(self, result: ChunkResult) -> None:
        chunk = self.chunks[result.chunk_index]
        if result.failed:
            logger.warning(f"Chunk {chunk.index} ({chunk.start_time:.2f}s-{chunk.end_time:.2f}s) "
                           f"has no transcription: {result.error}")
            self._errors[chunk.index] = result.error or "unknown error"
            self._prev_chunk = None
            self._tail = []
            return

        spans = []
        for seg in result.segments:
            text = seg.text.strip()
            if not text:
                continue
            span = _Span(
                start=chunk.start_time + seg.local_start,
                end=chunk.start_time + seg.local_end,
                text=text,
                chunk_index=chunk.index,
                confidence=seg.confidence,
            )
            if seg.confidence < self.min_confidence:
                self._record("low_confidence", f"Dropped '{text[:30]}' from chunk {chunk.index}: "
                             f"confidence {seg.confidence:.2f} below {self.min_confidence:.2f}", span)
                continue
            spans.append(span)
        spans.sort(key=lambda s: s.start)

        prev = self._prev_chunk
        if prev is not None and prev.end_time > chunk.start_time + _EPSILON:
            spans = self._resolve_overlap(prev, chunk, spans)

        self._spans.extend(spans)
        self._tail = spans
        self._prev_chunk = chunk

    def _resolve_overlap(self, prev: Chunk, chunk: Chunk, spans: List[_Span]) -> List[_Span]:
        region_start, region_end = chunk.start_time, prev.end_time
        midpoint = (region_start + region_end) / 2.0
        tail = self._tail
        # id of a matched chunk i-1 span -> its end before absorbing the duplicate
        matched: Dict[int, float] = {}
        kept = []

        for span in spans:
            inside = span.start >= region_start - _EPSILON and span.end <= region_end + _EPSILON
            if inside:
                match = self._find_duplicate(span, tail, matched)
                if match is not None:
                    matched[id(match)] = match.end
                    self._absorb(match, span, tail)
                    logger.debug(f"Chunk {chunk.index}: dropped duplicate '{span.text[:30]}' "
                                 f"at {span.start:.2f}s in favour of chunk {prev.index}")
                    continue
            kept.append(span)

        for earlier in tail:
            for later in kept:
                if earlier.intersection(later) <= _EPSILON:
                    continue
                if id(earlier) in matched:
                    # A matched segment keeps its own span; only the absorbed extension gives way
                    earlier.end = max(matched[id(earlier)], later.start)
                    later.start = max(later.start, earlier.end)
                elif earlier.end <= midpoint:
                    later.start = earlier.end
                elif later.start >= midpoint:
                    earlier.end = later.start
                else:
                    earlier.end = midpoint
                    later.start = midpoint

        for span in [s for s in tail if s.duration <= _EPSILON]:
            self._record("clipped", f"Segment '{span.text[:30]}' from chunk {span.chunk_index} "
                         f"vanished when clipped at {midpoint:.2f}s", span)
            self._spans.remove(span)
            tail.remove(span)
        survivors = []
        for span in kept:
            if span.duration <= _EPSILON:
                self._record("clipped", f"Segment '{span.text[:30]}' from chunk {span.chunk_index} "
                             f"vanished when clipped at {midpoint:.2f}s", span)
            else:
                survivors.append(span)
        return survivors

    def _find_duplicate(self, span: _Span, tail: List[_Span], matched: Dict[int, float]) -> Optional[_Span]:
        best, best_score = None, -1.0
        for candidate in tail:
            if id(candidate) in matched:
                continue
            shorter = min(candidate.duration, span.duration)
            if shorter <= 0 or candidate.intersection(span) <= shorter / 2.0:
                continue
            score = text_similarity(candidate.text, span.text)
            if score >= self.similarity_threshold and score > best_score:
                best, best_score = candidate, score
        return best

    @staticmethod
    def _absorb(kept: _Span, duplicate: _Span, tail: List[_Span]) -> None:
        """Lets the later chunk extend the trailing edge of a matched segment, up to the next segment."""
        if duplicate.end <= kept.end:
            return
        limit = duplicate.end
        for other in tail:
            if other is not kept and other.start >= kept.end - _EPSILON:
                limit = min(limit, other.start)
        kept.end = max(kept.end, limit)

    def _record(self, kind: str, message: str, span: _Span) -> None:
        logger.debug(message)
        self._diagnostics.append(StitchDiagnostic(kind=kind, message=message,
                                                  start_time=span.start, end_time=span.end))

    def gaps(self) -> List[GapMarker]:
        """Gap markers for failed chunks within the finalized prefix."""
        gaps = []
        failed = sorted(self._errors)
        i = 0
        while i < len(failed):
            first = last = failed[i]
            while i + 1 < len(failed) and failed[i + 1] == last + 1:
                i += 1
                last = failed[i]
            i += 1

            start = self.chunks[first].start_time
            end = self.chunks[last].end_time
            if first > 0:
                start = max(start, self.chunks[first - 1].end_time)
            if last + 1 < self._next_index:
                end = min(end, self.chunks[last + 1].start_time)
            if end - start <= _EPSILON:
                logger.info(f"Failed chunks {first}-{last} are fully covered by their neighbours; no gap left")
                continue
            gaps.append(GapMarker(start_time=round(start, 3), end_time=round(end, 3),
                                  chunk_indices=tuple(range(first, last + 1))))
        return gaps

    def finish(self) -> StitchResult:
        """
        Runs the final invariant pass over the finalized prefix.

        Safe to call repeatedly; the same inputs always produce the same
        entries and ids.
        """
        diagnostics = list(self._diagnostics)
        gaps = self.gaps()
        spans = sorted(
            (_Span(s.start, s.end, s.text, s.chunk_index, s.confidence) for s in self._spans),
            key=lambda s: (s.start, s.end),
        )

        ordered: List[_Span] = []
        for span in spans:
            span.start = min(round(max(span.start, 0.0), 3), self.total_duration)
            span.end = min(round(max(span.end, 0.0), 3), self.total_duration)
            for gap in gaps:
                if span.start < gap.end_time and gap.start_time < span.end:
                    if span.start < gap.start_time:
                        span.end = gap.start_time
                    else:
                        span.start = max(span.start, gap.end_time)
            if ordered and span.start < ordered[-1].end:
                span.start = ordered[-1].end
                diagnostics.append(StitchDiagnostic(
                    kind="truncated",
                    message=f"Start of '{span.text[:30]}' moved to {span.start:.3f}s to remove overlap",
                    start_time=span.start, end_time=span.end))
            if span.end - span.start <= _EPSILON:
                message = f"Dropped '{span.text[:30]}' from chunk {span.chunk_index}: no duration left"
                logger.debug(message)
                diagnostics.append(StitchDiagnostic(kind="dropped", message=message,
                                                    start_time=span.start, end_time=span.end))
                continue
            ordered.append(span)

        entries = [
            SubtitleEntry(id=i + 1, start_time=s.start, end_time=s.end, text=s.text,
                          source=EntrySource.TRANSCRIBED)
            for i, s in enumerate(ordered)
        ]
        average = sum(s.confidence for s in ordered) / len(ordered) if ordered else 0.0
        return StitchResult(entries=entries, gaps=gaps, diagnostics=diagnostics, average_confidence=average)

    def stitched_prefix(self) -> List[SubtitleEntry]:
        """Entries that no later chunk can change any more."""
        entries = self.finish().entries
        if self.complete:
            return entries
        boundary = self.chunks[self._next_index].start_time
        return [e for e in entries if e.end_time <= boundary]


def stitch(chunks: Sequence[Chunk], results: Sequence[ChunkResult], total_duration: float,
           similarity_threshold: float = 0.8, min_confidence: float = 0.0) -> StitchResult:
    """Stitches a complete set of chunk results in one call."""
    stitcher = TimelineStitcher(chunks, total_duration, similarity_threshold, min_confidence)
    for result in results:
        stitcher.add(result)
    return stitcher.finish()
