import threading
import time

import pytest

from substitch.exceptions import InvalidConfigurationError, TransformError
from substitch.models import EntrySource, SubtitleEntry
from substitch.timeline import SubtitleTimeline
from substitch.transform_pass import TextTransformer, TransformContext, TransformPass


class RecordingTransformer(TextTransformer):
    def __init__(self, fail_on=(), delays=None):
        self.fail_on = set(fail_on)
        self.delays = delays or {}
        self.contexts = {}
        self._lock = threading.Lock()

    def transform(self, text, context):
        with self._lock:
            self.contexts[text] = context
        time.sleep(self.delays.get(text, 0.0))
        if text in self.fail_on:
            raise TransformError(f"provider rejected '{text}'")
        return f"[{text}]"


@pytest.fixture
def timeline():
    return SubtitleTimeline(
        [SubtitleEntry(i + 1, i * 2.0, i * 2.0 + 1.5, text) for i, text in enumerate(["one", "two", "three", "four"])],
        total_duration=10.0,
    )


def test_successful_pass_updates_text_and_source_only(timeline):
    before = timeline.entries

    report = TransformPass(RecordingTransformer(), EntrySource.CORRECTED).run(timeline)

    assert report.ok
    assert report.succeeded == [1, 2, 3, 4]
    for old, new in zip(before, timeline.entries):
        assert new.id == old.id
        assert (new.start_time, new.end_time) == (old.start_time, old.end_time)
        assert new.text == f"[{old.text}]"
        assert new.source is EntrySource.CORRECTED


def test_per_entry_failures_do_not_abort_the_batch(timeline):
    report = TransformPass(RecordingTransformer(fail_on={"two"}), EntrySource.TRANSLATED).run(timeline)

    assert report.succeeded == [1, 3, 4]
    assert [f.entry_id for f in report.failures] == [2]
    assert "two" in report.failures[0].error
    assert timeline.get(2).text == "two"
    assert timeline.get(2).source is EntrySource.TRANSCRIBED


def test_results_completing_out_of_order_land_on_their_own_entry(timeline):
    delays = {"one": 0.3, "two": 0.2, "three": 0.1, "four": 0.0}
    transformer = RecordingTransformer(delays=delays)

    TransformPass(transformer, EntrySource.CORRECTED, max_workers=4).run(timeline)

    assert [e.text for e in timeline] == ["[one]", "[two]", "[three]", "[four]"]


def test_neighbour_context(timeline):
    transformer = RecordingTransformer()

    TransformPass(transformer, EntrySource.CORRECTED, context_window=2).run(timeline, ids=[3])

    assert transformer.contexts["three"] == TransformContext(previous=("two", "one"), following=("four",))
    assert timeline.get(2).text == "two"


def test_unknown_and_deleted_entries_are_reported(timeline):
    class DeletingTransformer(RecordingTransformer):
        def transform(self, text, context):
            if text == "one":
                timeline.delete(3)
            return super().transform(text, context)

    report = TransformPass(DeletingTransformer(), EntrySource.CORRECTED, max_workers=1).run(timeline, ids=[1, 3, 99])

    assert report.succeeded == [1]
    assert [f.entry_id for f in report.failures] == [3, 99]


def test_rejects_invalid_source():
    with pytest.raises(InvalidConfigurationError):
        TransformPass(RecordingTransformer(), EntrySource.MANUAL_EDIT)
