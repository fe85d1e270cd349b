import random

import pytest

from substitch.exceptions import InvalidConfigurationError
from substitch.models import ChunkResult, EntrySource, GapMarker, RawSegment
from substitch.stitcher import TimelineStitcher, stitch, text_similarity

from fakes import make_chunks


def seg(start, end, text):
    return RawSegment(local_start=start, local_end=end, text=text)


def spans(entries):
    return [(e.start_time, e.end_time, e.text) for e in entries]


def assert_timeline_invariants(entries, total_duration):
    for entry in entries:
        assert 0.0 <= entry.start_time < entry.end_time <= total_duration
    for prev, nxt in zip(entries, entries[1:]):
        assert prev.start_time < nxt.start_time
        assert prev.end_time <= nxt.start_time


def test_text_similarity_ignores_case_and_punctuation():
    assert text_similarity("Hello, world!", "hello world") == 1.0
    assert text_similarity("hello world", "something else entirely") < 0.5


def test_duplicate_in_overlap_is_dropped():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0)])
    results = [
        ChunkResult(0, [seg(20.0, 24.0, "first line"), seg(27.0, 30.0, "hello world")]),
        ChunkResult(1, [seg(2.0, 5.0, "hello world."), seg(6.0, 9.0, "next line")]),
    ]

    result = stitch(chunks, results, total_duration=55.0)

    assert spans(result.entries) == [
        (20.0, 24.0, "first line"),
        (27.0, 30.0, "hello world"),
        (31.0, 34.0, "next line"),
    ]
    assert [e.id for e in result.entries] == [1, 2, 3]
    assert all(e.source is EntrySource.TRANSCRIBED for e in result.entries)
    assert result.gaps == []


def test_later_chunk_extends_trailing_edge_of_duplicate():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0)])
    results = [
        ChunkResult(0, [seg(27.0, 29.5, "hello world")]),
        ChunkResult(1, [seg(2.0, 4.8, "hello world")]),
    ]

    entries = stitch(chunks, results, total_duration=55.0).entries

    assert len(entries) == 1
    assert entries[0].start_time == 27.0
    assert entries[0].end_time == pytest.approx(29.8)


def test_unmatched_segments_crossing_boundary_are_clipped_at_midpoint():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0)])
    results = [
        ChunkResult(0, [seg(26.0, 29.0, "alpha beta")]),
        ChunkResult(1, [seg(2.0, 6.0, "completely different words")]),
    ]

    entries = stitch(chunks, results, total_duration=55.0).entries

    assert spans(entries) == [
        (26.0, 27.5, "alpha beta"),
        (27.5, 31.0, "completely different words"),
    ]


def test_extended_duplicate_yields_only_its_extension_to_the_next_segment():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0)])
    results = [
        ChunkResult(0, [seg(27.0, 28.5, "hello world")]),
        ChunkResult(1, [seg(2.1, 4.0, "hello world"), seg(3.8, 8.0, "and more")]),
    ]

    entries = stitch(chunks, results, total_duration=55.0).entries

    assert spans(entries) == [
        (27.0, 28.8, "hello world"),
        (28.8, 33.0, "and more"),
    ]


def test_later_segment_starts_where_an_early_ending_segment_stops():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0)])
    results = [
        ChunkResult(0, [seg(20.0, 26.0, "earlier line")]),
        ChunkResult(1, [seg(0.5, 2.0, "only heard by the second chunk")]),
    ]

    entries = stitch(chunks, results, total_duration=55.0).entries

    assert spans(entries) == [
        (20.0, 26.0, "earlier line"),
        (26.0, 27.0, "only heard by the second chunk"),
    ]


def test_earlier_segment_stops_where_a_late_starting_segment_begins():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0)])
    results = [
        ChunkResult(0, [seg(26.0, 29.5, "first words here")]),
        ChunkResult(1, [seg(3.0, 6.0, "something new")]),
    ]

    entries = stitch(chunks, results, total_duration=55.0).entries

    assert spans(entries) == [
        (26.0, 28.0, "first words here"),
        (28.0, 31.0, "something new"),
    ]


def test_low_confidence_segments_are_dropped_and_reported():
    chunks = make_chunks([(0.0, 30.0)])
    results = [ChunkResult(0, [
        RawSegment(1.0, 2.0, "clear speech", confidence=0.9),
        RawSegment(3.0, 4.0, "mumble", confidence=0.2),
        RawSegment(5.0, 6.0, "more speech", confidence=0.7),
    ])]

    result = stitch(chunks, results, total_duration=30.0, min_confidence=0.5)

    assert [e.text for e in result.entries] == ["clear speech", "more speech"]
    assert [d.kind for d in result.diagnostics] == ["low_confidence"]
    assert result.average_confidence == pytest.approx(0.8)


def test_confidence_filter_is_off_by_default():
    chunks = make_chunks([(0.0, 30.0)])
    results = [ChunkResult(0, [RawSegment(1.0, 2.0, "quiet", confidence=0.1)])]

    result = stitch(chunks, results, total_duration=30.0)

    assert [e.text for e in result.entries] == ["quiet"]
    assert result.average_confidence == pytest.approx(0.1)
    with pytest.raises(InvalidConfigurationError):
        TimelineStitcher(chunks, total_duration=30.0, min_confidence=-0.1)


def test_segment_clipped_to_nothing_is_reported():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0)])
    results = [
        ChunkResult(0, [seg(27.5, 28.0, "tail end")]),
        ChunkResult(1, [seg(1.0, 6.0, "other words")]),
    ]

    result = stitch(chunks, results, total_duration=55.0)

    assert spans(result.entries) == [(27.5, 31.0, "other words")]
    assert any(d.kind == "clipped" for d in result.diagnostics)


def test_failed_chunk_becomes_gap():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0), (50.0, 80.0)])
    results = [
        ChunkResult(0, [seg(10.0, 20.0, "before"), seg(28.0, 30.0, "edge")]),
        ChunkResult(1, error="model crashed"),
        ChunkResult(2, [seg(0.0, 3.0, "right after"), seg(5.0, 10.0, "after")]),
    ]

    result = stitch(chunks, results, total_duration=80.0)

    assert result.gaps == [GapMarker(start_time=30.0, end_time=50.0, chunk_indices=(1,))]
    assert spans(result.entries) == [
        (10.0, 20.0, "before"),
        (28.0, 30.0, "edge"),
        (50.0, 53.0, "right after"),
        (55.0, 60.0, "after"),
    ]
    for entry in result.entries:
        for gap in result.gaps:
            assert not (entry.start_time < gap.end_time and gap.start_time < entry.end_time)


def test_adjacent_failures_merge_into_one_gap():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0), (50.0, 80.0), (75.0, 100.0)])
    results = [
        ChunkResult(0, [seg(1.0, 2.0, "a")]),
        ChunkResult(1, error="boom"),
        ChunkResult(2, error="boom"),
        ChunkResult(3, [seg(10.0, 12.0, "b")]),
    ]

    result = stitch(chunks, results, total_duration=100.0)

    assert result.gaps == [GapMarker(start_time=30.0, end_time=75.0, chunk_indices=(1, 2))]


def test_out_of_order_results_are_buffered():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0), (50.0, 80.0)])
    results = [
        ChunkResult(0, [seg(1.0, 3.0, "one"), seg(27.0, 29.0, "shared")]),
        ChunkResult(1, [seg(2.0, 4.0, "shared"), seg(10.0, 12.0, "two")]),
        ChunkResult(2, [seg(5.0, 8.0, "three")]),
    ]
    stitcher = TimelineStitcher(chunks, total_duration=80.0)

    assert stitcher.add(results[2]) == 0
    assert stitcher.add(results[1]) == 0
    assert stitcher.finalized_count == 0
    assert stitcher.add(results[0]) == 3
    assert stitcher.complete

    assert stitcher.finish().entries == stitch(chunks, results, total_duration=80.0).entries


def test_stitched_prefix_excludes_entries_a_later_chunk_may_change():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0)])
    stitcher = TimelineStitcher(chunks, total_duration=55.0)
    stitcher.add(ChunkResult(0, [seg(10.0, 20.0, "stable"), seg(27.0, 30.0, "may change")]))

    assert spans(stitcher.stitched_prefix()) == [(10.0, 20.0, "stable")]


def test_stitching_is_idempotent():
    chunks = make_chunks([(0.0, 30.0), (25.0, 55.0)])
    results = [
        ChunkResult(0, [seg(20.0, 24.0, "first"), seg(27.0, 30.0, "hello")]),
        ChunkResult(1, [seg(2.0, 5.0, "hello"), seg(6.0, 9.0, "next")]),
    ]

    first = stitch(chunks, results, total_duration=55.0)
    second = stitch(chunks, results, total_duration=55.0)

    assert first.entries == second.entries
    assert first.gaps == second.gaps


@pytest.mark.parametrize("seed", range(5))
def test_invariants_hold_for_messy_model_output(seed):
    rng = random.Random(seed)
    bounds = [(0.0, 30.0), (25.0, 55.0), (50.0, 80.0), (75.0, 90.0)]
    chunks = make_chunks(bounds)
    words = ["alpha", "beta", "gamma", "delta", "epsilon"]
    results = []
    for chunk in chunks:
        if rng.random() < 0.2:
            results.append(ChunkResult(chunk.index, error="flaky"))
            continue
        segments = []
        for _ in range(rng.randint(0, 12)):
            start = rng.uniform(0.0, chunk.duration)
            end = min(chunk.duration, start + rng.uniform(0.0, 6.0))
            segments.append(seg(start, end, " ".join(rng.sample(words, 2))))
        results.append(ChunkResult(chunk.index, sorted(segments, key=lambda s: s.local_start)))

    result = stitch(chunks, results, total_duration=90.0)

    assert_timeline_invariants(result.entries, 90.0)
    assert [e.id for e in result.entries] == list(range(1, len(result.entries) + 1))


def test_rejects_bad_threshold_and_duplicate_results():
    chunks = make_chunks([(0.0, 30.0)])
    with pytest.raises(InvalidConfigurationError):
        TimelineStitcher(chunks, total_duration=30.0, similarity_threshold=1.5)

    stitcher = TimelineStitcher(chunks, total_duration=30.0)
    stitcher.add(ChunkResult(0, []))
    with pytest.raises(ValueError):
        stitcher.add(ChunkResult(0, []))
    with pytest.raises(ValueError):
        stitcher.add(ChunkResult(5, []))
