"""
The user-facing subtitle timeline and its editing operations.

Every mutation builds a candidate sequence, validates the full set of
invariants and only then commits it, so a failed operation leaves the
timeline exactly as it was. Mutations are serialized by a re-entrant lock
(single writer).
"""

import logging
import threading
from dataclasses import replace
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .exceptions import (
    DecodeError,
    EntryNotFoundError,
    InvalidRangeError,
    NotAdjacentError,
    OverlapError,
)
from .models import EntrySource, GapMarker, MediaHandle, SubtitleEntry
from .vad import trim_span_silence

logger = logging.getLogger(__name__)

_SPLIT_DELIMITERS = (' ', ',', '.', '，', '。', '!', '?', '！', '？', ';')


def split_text_in_two(text: str) -> Optional[Tuple[str, str]]:
    """
    Splits subtitle text into two halves at the delimiter closest to its middle.

    Falls back to splitting the characters in half when the text has no
    delimiter. Returns None for text too short to split.
    """
    if len(text.strip()) <= 1:
        return None

    positions = [i + 1 for i, ch in enumerate(text) if ch in _SPLIT_DELIMITERS and i + 1 < len(text)]
    if positions:
        target = len(text) // 2
        best = min(positions, key=lambda pos: abs(pos - target))
        first, second = text[:best].strip(), text[best:].strip()
        if first and second:
            return first, second

    mid = len(text) // 2
    return text[:mid], text[mid:]


class SubtitleTimeline:
    """Ordered, non-overlapping SubtitleEntry collection with stable ids."""

    def __init__(
        self,
        entries: Sequence[SubtitleEntry] = (),
        total_duration: Optional[float] = None,
        gaps: Sequence[GapMarker] = (),
        next_id: Optional[int] = None,
        original_timing: Optional[Dict[int, Tuple[float, float]]] = None,
    ):
        """
        Args:
            entries: Initial entries; validated like any other edit.
            total_duration: Media duration bounding every entry, or None if unknown.
            gaps: Gap markers left by failed chunks.
            next_id: Next id to hand out. Defaults to one past the largest id.
            original_timing: Spans remembered by trim_silence, keyed by entry id.

        Raises:
            InvalidRangeError, OverlapError: If the initial entries break the invariants.
        """
        self.total_duration = total_duration
        self._lock = threading.RLock()
        entries = list(entries)
        ids = [e.id for e in entries]
        if len(set(ids)) != len(ids):
            raise InvalidRangeError("Duplicate entry ids in timeline.")
        highest = max(ids, default=0)
        if next_id is not None and next_id <= highest:
            raise InvalidRangeError(f"next_id {next_id} would reuse an existing id (max {highest}).")
        self._next_id = next_id if next_id is not None else highest + 1
        self._validate(entries)
        self._entries: List[SubtitleEntry] = entries
        self._gaps: List[GapMarker] = list(gaps)
        self._original_timing: Dict[int, Tuple[float, float]] = dict(original_timing or {})

    # ----- read access -----

    @property
    def entries(self) -> List[SubtitleEntry]:
        with self._lock:
            return list(self._entries)

    @property
    def gaps(self) -> List[GapMarker]:
        with self._lock:
            return list(self._gaps)

    @property
    def next_id(self) -> int:
        return self._next_id

    @property
    def original_timing(self) -> Dict[int, Tuple[float, float]]:
        with self._lock:
            return dict(self._original_timing)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[SubtitleEntry]:
        return iter(self.entries)

    def get(self, entry_id: int) -> SubtitleEntry:
        with self._lock:
            return self._entries[self._index_of(entry_id)]

    def entry_at(self, time: float) -> Optional[SubtitleEntry]:
        """Returns the entry displayed at `time`, if any."""
        with self._lock:
            for entry in self._entries:
                if entry.start_time <= time < entry.end_time:
                    return entry
                if entry.start_time > time:
                    break
        return None

    # ----- editing operations -----

    def edit_text(self, entry_id: int, new_text: str) -> SubtitleEntry:
        with self._lock:
            index = self._index_of(entry_id)
            updated = replace(self._entries[index], text=new_text, source=EntrySource.MANUAL_EDIT)
            candidate = list(self._entries)
            candidate[index] = updated
            self._commit(candidate)
            return updated

    def retime(self, entry_id: int, new_start: float, new_end: float) -> SubtitleEntry:
        """
        Moves an entry to a new span.

        Raises:
            InvalidRangeError: If new_start >= new_end or the span leaves the media.
            OverlapError: If the span intersects another entry.
        """
        with self._lock:
            index = self._index_of(entry_id)
            self._check_span(new_start, new_end)
            updated = replace(self._entries[index], start_time=new_start, end_time=new_end)
            candidate = list(self._entries)
            candidate[index] = updated
            candidate.sort(key=lambda e: e.start_time)
            self._commit(candidate)
            logger.debug(f"Retimed entry {entry_id} to {new_start:.3f}-{new_end:.3f}")
            return updated

    def split(self, entry_id: int, at_time: float, first_text: Optional[str] = None,
              second_text: Optional[str] = None) -> Tuple[SubtitleEntry, SubtitleEntry]:
        """
        Splits an entry in two at `at_time`; both halves get fresh ids.

        The caller provides the text of each half. When omitted, a half keeps
        the full original text.

        Raises:
            InvalidRangeError: If at_time is not strictly inside the entry.
        """
        with self._lock:
            index = self._index_of(entry_id)
            entry = self._entries[index]
            if not entry.start_time < at_time < entry.end_time:
                raise InvalidRangeError(
                    f"Split point {at_time:.3f} is not inside entry {entry_id} "
                    f"({entry.start_time:.3f}-{entry.end_time:.3f})"
                )
            first_id, second_id = self._next_id, self._next_id + 1
            first = SubtitleEntry(id=first_id, start_time=entry.start_time, end_time=at_time,
                                  text=entry.text if first_text is None else first_text, source=entry.source)
            second = SubtitleEntry(id=second_id, start_time=at_time, end_time=entry.end_time,
                                   text=entry.text if second_text is None else second_text, source=entry.source)
            candidate = self._entries[:index] + [first, second] + self._entries[index + 1:]
            self._commit(candidate, consumed_ids=2)
            logger.debug(f"Split entry {entry_id} at {at_time:.3f} into {first_id} and {second_id}")
            return first, second

    def auto_split(self, entry_id: int) -> Tuple[SubtitleEntry, SubtitleEntry]:
        """
        Splits an entry at the delimiter nearest the middle of its text,
        placing the cut in time proportionally to the character count.
        """
        with self._lock:
            entry = self.get(entry_id)
            parts = split_text_in_two(entry.text)
            if parts is None:
                raise InvalidRangeError(f"Entry {entry_id} text is too short to split.")
            first_text, second_text = parts
            total_chars = len(entry.text)
            at_time = entry.start_time + entry.duration * len(first_text) / total_chars
            if entry.start_time < round(at_time, 3) < entry.end_time:
                at_time = round(at_time, 3)
            return self.split(entry_id, at_time, first_text, second_text)

    def merge(self, id_a: int, id_b: int) -> SubtitleEntry:
        """
        Merges two neighbouring entries into one with a new id.

        Raises:
            NotAdjacentError: If another entry sits between them (or they are the same entry).
        """
        with self._lock:
            index_a, index_b = self._index_of(id_a), self._index_of(id_b)
            if abs(index_a - index_b) != 1:
                raise NotAdjacentError(f"Entries {id_a} and {id_b} are not adjacent.")
            lo, hi = min(index_a, index_b), max(index_a, index_b)
            first, second = self._entries[lo], self._entries[hi]
            text = " ".join(t for t in (first.text.strip(), second.text.strip()) if t)
            merged = SubtitleEntry(id=self._next_id, start_time=first.start_time, end_time=second.end_time,
                                   text=text, source=EntrySource.MANUAL_EDIT)
            candidate = self._entries[:lo] + [merged] + self._entries[hi + 1:]
            self._commit(candidate, consumed_ids=1)
            logger.debug(f"Merged entries {first.id} and {second.id} into {merged.id}")
            return merged

    def delete(self, entry_id: int) -> SubtitleEntry:
        with self._lock:
            index = self._index_of(entry_id)
            removed = self._entries[index]
            self._entries = self._entries[:index] + self._entries[index + 1:]
            return removed

    def insert(self, after_id: Optional[int], start: float, end: float, text: str) -> SubtitleEntry:
        """
        Inserts a new entry right after `after_id` (or first when None).

        Raises:
            EntryNotFoundError: If after_id does not exist.
            InvalidRangeError: If the span is invalid or does not belong right after after_id.
            OverlapError: If the span intersects an existing entry.
        """
        with self._lock:
            position = 0 if after_id is None else self._index_of(after_id) + 1
            self._check_span(start, end)
            entry = SubtitleEntry(id=self._next_id, start_time=start, end_time=end, text=text,
                                  source=EntrySource.MANUAL_EDIT)
            for other in self._entries:
                if other.start_time < end and start < other.end_time:
                    raise OverlapError(
                        f"Span {start:.3f}-{end:.3f} overlaps entry {other.id} "
                        f"({other.start_time:.3f}-{other.end_time:.3f})"
                    )
            before = self._entries[position - 1] if position > 0 else None
            after = self._entries[position] if position < len(self._entries) else None
            if (before is not None and start < before.end_time) or (after is not None and end > after.start_time):
                raise InvalidRangeError(f"Span {start:.3f}-{end:.3f} does not fit at the requested position.")
            candidate = self._entries[:position] + [entry] + self._entries[position:]
            self._commit(candidate, consumed_ids=1)
            return entry

    def shift(self, offset: float, from_id: Optional[int] = None) -> List[SubtitleEntry]:
        """
        Shifts every entry (or every entry from `from_id` onwards) by `offset` seconds.

        Raises:
            InvalidRangeError: If a shifted entry would leave the media.
            OverlapError: If the shifted block would run into the entry before it.
        """
        with self._lock:
            start_index = 0 if from_id is None else self._index_of(from_id)
            candidate = list(self._entries)
            for i in range(start_index, len(candidate)):
                entry = candidate[i]
                candidate[i] = replace(entry, start_time=round(entry.start_time + offset, 3),
                                       end_time=round(entry.end_time + offset, 3))
            self._commit(candidate)
            return candidate[start_index:]

    def replace_text(self, old: str, new: str) -> int:
        """Replaces `old` with `new` in every entry's text. Returns the number of entries changed."""
        if not old:
            raise ValueError("Text to replace cannot be empty.")
        with self._lock:
            changed = 0
            candidate = []
            for entry in self._entries:
                if old in entry.text:
                    entry = replace(entry, text=entry.text.replace(old, new), source=EntrySource.MANUAL_EDIT)
                    changed += 1
                candidate.append(entry)
            self._commit(candidate)
            return changed

    def apply_transform(self, entry_id: int, text: str, source: EntrySource) -> SubtitleEntry:
        """Replaces an entry's text from a correction/translation pass; timing is untouched."""
        with self._lock:
            index = self._index_of(entry_id)
            updated = replace(self._entries[index], text=text, source=source)
            candidate = list(self._entries)
            candidate[index] = updated
            self._commit(candidate)
            return updated

    # ----- waveform-assisted timing -----

    def trim_silence(self, media: MediaHandle, threshold_factor: float = 0.5,
                     ids: Optional[Sequence[int]] = None) -> List[SubtitleEntry]:
        """
        Shrinks entries onto the speech they cover by removing leading and
        trailing silence measured on `media`.

        The span an entry had before its first trim is remembered, so
        restore_timing() can put it back. Text and source are untouched.

        Args:
            media: Decoded audio of the subtitled media.
            threshold_factor: Speech threshold as a fraction of each entry's own RMS.
            ids: Entries to trim. Defaults to all of them.

        Returns:
            The entries whose timing changed.

        Raises:
            DecodeError: If the media carries no samples.
            EntryNotFoundError: If an id in `ids` does not exist.
        """
        if media.samples is None:
            raise DecodeError("Media carries no decoded samples to measure silence on.")
        with self._lock:
            indices = range(len(self._entries)) if ids is None else [self._index_of(i) for i in ids]
            candidate = list(self._entries)
            remembered = dict(self._original_timing)
            changed = []
            for index in indices:
                entry = candidate[index]
                start, end = trim_span_silence(media.samples, media.sample_rate,
                                               entry.start_time, entry.end_time, threshold_factor)
                if (start, end) == (entry.start_time, entry.end_time):
                    continue
                remembered.setdefault(entry.id, (entry.start_time, entry.end_time))
                candidate[index] = replace(entry, start_time=start, end_time=end)
                changed.append(candidate[index])
            self._commit(candidate)
            self._original_timing = remembered
            logger.info(f"Trimmed silence from {len(changed)} of {len(indices)} entries")
            return changed

    def restore_timing(self) -> List[SubtitleEntry]:
        """
        Moves every trimmed entry back to the span it had before trim_silence.

        Entries deleted or replaced since the trim are skipped.

        Raises:
            OverlapError: If a restored span would now intersect another entry.
                          Nothing is restored in that case.
        """
        with self._lock:
            candidate = list(self._entries)
            restored = []
            for index, entry in enumerate(candidate):
                span = self._original_timing.get(entry.id)
                if span is None or span == (entry.start_time, entry.end_time):
                    continue
                candidate[index] = replace(entry, start_time=span[0], end_time=span[1])
                restored.append(candidate[index])
            candidate.sort(key=lambda e: e.start_time)
            self._commit(candidate)
            self._original_timing = {}
            logger.info(f"Restored the original timing of {len(restored)} entries")
            return restored

    # ----- invariants -----

    def _index_of(self, entry_id: int) -> int:
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                return index
        raise EntryNotFoundError(entry_id)

    def _check_span(self, start: float, end: float) -> None:
        if start >= end:
            raise InvalidRangeError(f"Start {start:.3f} must be before end {end:.3f}.")
        if start < 0:
            raise InvalidRangeError(f"Start {start:.3f} is before the beginning of the media.")
        if self.total_duration is not None and end > self.total_duration:
            raise InvalidRangeError(f"End {end:.3f} exceeds the media duration {self.total_duration:.3f}.")

    def _validate(self, entries: Sequence[SubtitleEntry]) -> None:
        previous = None
        for entry in entries:
            self._check_span(entry.start_time, entry.end_time)
            if previous is not None:
                if entry.start_time <= previous.start_time:
                    raise OverlapError(f"Entry {entry.id} is not ordered after entry {previous.id}.")
                if entry.start_time < previous.end_time:
                    raise OverlapError(
                        f"Entry {entry.id} ({entry.start_time:.3f}-{entry.end_time:.3f}) overlaps "
                        f"entry {previous.id} ({previous.start_time:.3f}-{previous.end_time:.3f})"
                    )
            previous = entry

    def _commit(self, candidate: List[SubtitleEntry], consumed_ids: int = 0) -> None:
        self._validate(candidate)
        self._entries = candidate
        self._next_id += consumed_ids
