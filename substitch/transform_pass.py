"""Runs a correction or translation pass over subtitle entries."""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .exceptions import EntryNotFoundError, InvalidConfigurationError
from .models import EntrySource
from .timeline import SubtitleTimeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformContext:
    """Neighbouring subtitle texts, nearest first, given to the provider for context."""
    previous: Tuple[str, ...] = ()
    following: Tuple[str, ...] = ()


class TextTransformer(ABC):
    """Abstract base class for text correction/translation providers."""

    @abstractmethod
    def transform(self, text: str, context: TransformContext) -> str:
        """
        Transforms a single subtitle text.

        Args:
            text: The subtitle text to transform.
            context: Texts of neighbouring entries.

        Returns:
            The transformed text.

        Raises:
            TransformError: If the provider fails for this text.
        """
        pass


@dataclass(frozen=True)
class TransformFailure:
    entry_id: int
    error: str


@dataclass
class TransformReport:
    succeeded: List[int] = field(default_factory=list)
    failures: List[TransformFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class TransformPass:
    """
    Applies a TextTransformer to timeline entries concurrently.

    Each request is correlated with its entry by id, so results may complete
    in any order. A failed entry keeps its text; the rest of the batch goes on.
    """

    def __init__(self, transformer: TextTransformer, source: EntrySource,
                 context_window: int = 1, max_workers: int = 4):
        if source not in (EntrySource.CORRECTED, EntrySource.TRANSLATED):
            raise InvalidConfigurationError(f"Transform source must be CORRECTED or TRANSLATED, got {source}")
        if context_window < 0:
            raise InvalidConfigurationError(f"context_window cannot be negative, got {context_window}")
        if max_workers < 1:
            raise InvalidConfigurationError(f"max_workers must be at least 1, got {max_workers}")
        self.transformer = transformer
        self.source = source
        self.context_window = context_window
        self.max_workers = max_workers

    def _requests(self, timeline: SubtitleTimeline, ids: Optional[Iterable[int]],
                  report: TransformReport) -> Dict[int, Tuple[str, TransformContext]]:
        entries = timeline.entries
        positions = {entry.id: i for i, entry in enumerate(entries)}
        wanted = [e.id for e in entries] if ids is None else list(dict.fromkeys(ids))

        requests = {}
        for entry_id in wanted:
            index = positions.get(entry_id)
            if index is None:
                report.failures.append(TransformFailure(entry_id, str(EntryNotFoundError(entry_id))))
                continue
            w = self.context_window
            previous = tuple(e.text for e in reversed(entries[max(0, index - w):index]))
            following = tuple(e.text for e in entries[index + 1:index + 1 + w])
            requests[entry_id] = (entries[index].text, TransformContext(previous, following))
        return requests

    def run(self, timeline: SubtitleTimeline, ids: Optional[Iterable[int]] = None) -> TransformReport:
        """
        Transforms the given entries (all entries when ids is None).

        Returns:
            A TransformReport listing succeeded ids and per-entry failures.
        """
        report = TransformReport()
        requests = self._requests(timeline, ids, report)
        if not requests:
            return report

        logger.info(f"Running {self.source.value} pass over {len(requests)} entries "
                    f"with {self.max_workers} worker(s)")
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="transform") as executor:
            futures = {
                executor.submit(self.transformer.transform, text, context): entry_id
                for entry_id, (text, context) in requests.items()
            }
            for future in as_completed(futures):
                entry_id = futures[future]
                try:
                    new_text = future.result()
                except Exception as e:
                    logger.warning(f"Transform failed for entry {entry_id}: {e}",
                                   exc_info=logger.isEnabledFor(logging.DEBUG))
                    report.failures.append(TransformFailure(entry_id, str(e)))
                    continue
                try:
                    timeline.apply_transform(entry_id, new_text, self.source)
                except EntryNotFoundError as e:
                    logger.warning(f"Entry {entry_id} was removed during the {self.source.value} pass")
                    report.failures.append(TransformFailure(entry_id, str(e)))
                    continue
                report.succeeded.append(entry_id)

        report.succeeded.sort()
        report.failures.sort(key=lambda f: f.entry_id)
        logger.info(f"{self.source.value.capitalize()} pass done: {len(report.succeeded)} succeeded, "
                    f"{len(report.failures)} failed")
        return report
