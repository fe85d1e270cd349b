import numpy as np
import pytest

from substitch.audio_source import AudioSource
from substitch.exceptions import DecodeError, InvalidConfigurationError, InvalidRangeError, SubStitchError
from substitch.models import EntrySource, JobState, MediaHandle, RawSegment
from substitch.session import TranscriptionSession
from substitch.transcriber import Transcriber
from substitch.transform_pass import TextTransformer

from fakes import ScriptedTranscriber, time_coded_media

CONFIG = {
    "max_chunk_duration": 30.0,
    "chunk_overlap": 5.0,
    "silence_search_window": 0.0,
    "inference_retries": 1,
}

UTTERANCES = [
    (2.0, 6.0, "alpha one"),
    (10.0, 14.0, "bravo two"),
    (25.5, 27.5, "charlie in the overlap"),
    (28.0, 33.0, "delta across the boundary"),
    (40.0, 44.0, "echo five"),
    (70.0, 74.0, "foxtrot six"),
]


def spans(timeline):
    return [(e.start_time, e.end_time, e.text) for e in timeline]


def test_transcribe_stitches_chunks_into_one_timeline():
    transcriber = ScriptedTranscriber(UTTERANCES)

    with TranscriptionSession(CONFIG, transcriber=transcriber) as session:
        result = session.transcribe(time_coded_media(80.0), show_progress=False)

    assert result.state is JobState.COMPLETED
    assert result.partial_failure is None
    assert sorted(transcriber.calls) == [0.0, 25.0, 50.0]
    assert spans(result.timeline) == [(s, e, t) for s, e, t in UTTERANCES]
    assert result.audio_duration == 80.0
    assert result.real_time_factor >= 0.0


def test_failed_chunk_yields_partial_result_with_gap():
    transcriber = ScriptedTranscriber(UTTERANCES, fail_at=[25.0])
    session = TranscriptionSession(CONFIG, transcriber=transcriber)

    result = session.transcribe(time_coded_media(80.0), show_progress=False)

    assert result.state is JobState.PARTIAL
    assert result.partial_failure.missing_ranges == [(30.0, 50.0)]
    assert 1 in result.partial_failure.chunk_errors
    assert transcriber.calls.count(25.0) == 2
    assert [t for _, _, t in spans(result.timeline)] == [
        "alpha one", "bravo two", "charlie in the overlap", "delta across the boundary", "foxtrot six",
    ]
    assert result.timeline.get(4).end_time == 30.0


def test_cancel_keeps_the_stitched_prefix():
    holder = {}
    transcriber = ScriptedTranscriber(UTTERANCES, on_call=lambda start: holder["session"].cancel())
    session = TranscriptionSession(CONFIG, transcriber=transcriber)
    holder["session"] = session

    result = session.transcribe(time_coded_media(80.0), show_progress=False)

    assert result.state is JobState.CANCELLED
    assert spans(result.timeline) == [(2.0, 6.0, "alpha one"), (10.0, 14.0, "bravo two")]
    assert (25.0, 80.0) in result.partial_failure.missing_ranges


def test_export_save_and_resume(tmp_path):
    session = TranscriptionSession(CONFIG, transcriber=ScriptedTranscriber(UTTERANCES))
    session.transcribe(time_coded_media(80.0), show_progress=False)
    session.timeline.edit_text(1, "Alpha One")
    session.save(str(tmp_path / "talk.json"))

    resumed = TranscriptionSession(CONFIG)
    timeline = resumed.load(str(tmp_path / "talk.json"))
    out = resumed.export(str(tmp_path / "talk.vtt"), "vtt")

    assert timeline.entries == session.timeline.entries
    assert resumed.state is JobState.COMPLETED
    assert resumed.chunks == session.chunks
    content = (tmp_path / "talk.vtt").read_text(encoding="utf-8")
    assert out.endswith("talk.vtt")
    assert content.startswith("WEBVTT")
    assert "Alpha One" in content


def test_run_transform_through_session():
    class Shout(TextTransformer):
        def transform(self, text, context):
            return text.upper()

    session = TranscriptionSession(CONFIG, transcriber=ScriptedTranscriber(UTTERANCES[:2]))
    session.transcribe(time_coded_media(20.0), show_progress=False)

    report = session.run_transform(Shout(), EntrySource.TRANSLATED)

    assert report.succeeded == [1, 2]
    assert [e.text for e in session.timeline] == ["ALPHA ONE", "BRAVO TWO"]


def test_session_errors():
    with pytest.raises(SubStitchError):
        TranscriptionSession(CONFIG).transcribe(time_coded_media(10.0))
    with pytest.raises(SubStitchError):
        TranscriptionSession(CONFIG).export("never.srt")
    with pytest.raises(DecodeError):
        TranscriptionSession(CONFIG, transcriber=ScriptedTranscriber([])).transcribe(
            MediaHandle.from_samples(np.zeros(0, dtype=np.float32), 100), show_progress=False)
    with pytest.raises(InvalidConfigurationError):
        TranscriptionSession({"max_chunk_duration": 10.0, "chunk_overlap": 10.0})

    session = TranscriptionSession(CONFIG, transcriber=ScriptedTranscriber([]))
    session.close()
    with pytest.raises(SubStitchError):
        session.transcribe(time_coded_media(10.0))


def test_low_confidence_segments_are_filtered_and_average_is_reported():
    class Scored(Transcriber):
        def transcribe_chunk(self, samples, sample_rate):
            return [RawSegment(1.0, 2.0, "sure", confidence=0.9), RawSegment(3.0, 4.0, "unsure", confidence=0.3)]

    session = TranscriptionSession(dict(CONFIG, min_confidence=0.5), transcriber=Scored())

    result = session.transcribe(time_coded_media(20.0), show_progress=False)

    assert [e.text for e in result.timeline] == ["sure"]
    assert result.average_confidence == pytest.approx(0.9)
    assert any(d.kind == "low_confidence" for d in result.diagnostics)


SRT = (
    "1\n00:00:01,000 --> 00:00:05,000\nspeech\n\n"
    "2\n00:00:06,000 --> 00:00:09,000\nnothing audible\n"
)


class FixedDuration(AudioSource):
    def probe_duration(self, media_path):
        return 9.5


def test_imported_subtitles_are_bounded_by_the_media_duration(tmp_path):
    srt = tmp_path / "talk.srt"
    srt.write_text(SRT, encoding="utf-8")
    session = TranscriptionSession(CONFIG, audio_source=FixedDuration())

    timeline = session.import_subtitles(str(srt), media="talk.mp4")

    assert [e.text for e in timeline] == ["speech", "nothing audible"]
    assert timeline.total_duration == 9.5
    assert session.media_path == "talk.mp4"
    assert session.state is JobState.COMPLETED

    short = tmp_path / "short.srt"
    short.write_text("1\n00:00:09,000 --> 00:00:12,000\ntoo late\n", encoding="utf-8")
    with pytest.raises(InvalidRangeError):
        session.import_subtitles(str(short), media="talk.mp4")


def test_trim_and_restore_timing_through_session(tmp_path):
    srt = tmp_path / "talk.srt"
    srt.write_text(SRT, encoding="utf-8")
    samples = np.zeros(10 * 1000, dtype=np.float32)
    samples[2000:4000] = 0.5
    media = MediaHandle.from_samples(samples, 1000)
    session = TranscriptionSession(CONFIG)
    session.import_subtitles(str(srt))

    with pytest.raises(SubStitchError):
        session.trim_silence()
    assert session.trim_silence(media) == 1
    assert session.timeline.get(1).start_time == pytest.approx(1.7)
    assert session.trim_silence() == 0

    assert session.restore_timing() == 1
    assert (session.timeline.get(1).start_time, session.timeline.get(1).end_time) == (1.0, 5.0)
