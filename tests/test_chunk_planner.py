import numpy as np
import pytest

from substitch.chunk_planner import ChunkPlanner
from substitch.exceptions import InvalidConfigurationError
from substitch.models import MediaHandle

from fakes import time_coded_media


def test_short_media_is_a_single_chunk():
    media = time_coded_media(30.0)
    chunks = ChunkPlanner(max_chunk_duration=60.0, overlap_duration=5.0).plan(media)

    assert len(chunks) == 1
    assert chunks[0].start_time == 0.0
    assert chunks[0].end_time == 30.0
    assert chunks[0].sample_range == (0, 3000)


def test_fixed_boundaries_overlap_by_configured_amount():
    media = time_coded_media(150.0)
    planner = ChunkPlanner(max_chunk_duration=60.0, overlap_duration=5.0, silence_search_window=0.0)

    chunks = planner.plan(media)

    assert [(c.start_time, c.end_time) for c in chunks] == [(0.0, 60.0), (55.0, 115.0), (110.0, 150.0)]
    assert [c.index for c in chunks] == [0, 1, 2]


@pytest.mark.parametrize("duration,max_len,overlap,window", [
    (61.0, 60.0, 1.0, 10.0),
    (600.0, 60.0, 1.0, 10.0),
    (333.33, 30.0, 5.0, 0.0),
    (95.5, 20.0, 0.0, 5.0),
    (1000.0, 45.0, 2.5, 10.0),
])
def test_plan_covers_media_with_bounded_chunks(duration, max_len, overlap, window):
    media = time_coded_media(duration)
    chunks = ChunkPlanner(max_chunk_duration=max_len, overlap_duration=overlap,
                          silence_search_window=window).plan(media)

    assert chunks[0].start_time == 0.0
    assert chunks[-1].end_time == pytest.approx(media.total_duration)
    assert chunks[-1].sample_range[1] == media.total_samples
    for chunk in chunks:
        assert chunk.duration <= max_len + 1e-9
        assert chunk.duration > 0
    for prev, nxt in zip(chunks, chunks[1:]):
        assert prev.start_time < nxt.start_time <= prev.end_time
        assert prev.end_time - nxt.start_time <= overlap + 1e-9


def test_split_prefers_silence_near_boundary():
    sr = 1000
    t = np.arange(150 * sr) / sr
    samples = 0.5 * np.sin(2 * np.pi * 50 * t)
    samples[50 * sr:52 * sr] = 0.0
    media = MediaHandle.from_samples(samples, sr)

    chunks = ChunkPlanner(max_chunk_duration=60.0, overlap_duration=2.0, silence_search_window=15.0).plan(media)

    assert 50.0 <= chunks[0].end_time <= 52.0
    # silence-aligned split: no overlap
    assert chunks[1].start_time == chunks[0].end_time
    assert chunks[1].sample_range[0] == chunks[0].sample_range[1]


def test_falls_back_to_overlap_without_silence():
    sr = 1000
    t = np.arange(100 * sr) / sr
    media = MediaHandle.from_samples(0.5 * np.sin(2 * np.pi * 50 * t), sr)

    chunks = ChunkPlanner(max_chunk_duration=60.0, overlap_duration=2.0, silence_search_window=15.0).plan(media)

    assert chunks[0].end_time == 60.0
    assert chunks[1].start_time == 58.0


@pytest.mark.parametrize("kwargs", [
    {"max_chunk_duration": 0.0},
    {"max_chunk_duration": -5.0},
    {"overlap_duration": -1.0},
    {"max_chunk_duration": 10.0, "overlap_duration": 10.0},
    {"silence_search_window": -1.0},
])
def test_invalid_parameters_are_rejected(kwargs):
    with pytest.raises(InvalidConfigurationError):
        ChunkPlanner(**kwargs)
