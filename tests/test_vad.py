import numpy as np
import pytest

from substitch.vad import EnergyVAD, find_silence_split, trim_span_silence

SR = 1000


def _tone(seconds, amplitude=0.5):
    t = np.arange(int(seconds * SR)) / SR
    return amplitude * np.sin(2 * np.pi * 50 * t)


def test_calculate_rms():
    assert EnergyVAD.calculate_rms(np.zeros(100)) == 0.0
    assert EnergyVAD.calculate_rms(np.full(100, 0.5)) == 0.5
    assert EnergyVAD.calculate_rms(np.array([])) == 0.0


def test_detect_active_segments():
    samples = np.concatenate([np.zeros(SR), _tone(2.0), np.zeros(SR)])
    vad = EnergyVAD(SR, threshold=0.1)

    segments = vad.detect_active_segments(samples)

    assert len(segments) == 1
    start, end = segments[0]
    assert 0.8 <= start <= 1.0
    assert 3.0 <= end <= 3.2


def test_no_split_in_uniform_speech():
    samples = _tone(20.0)
    assert find_silence_split(samples, SR, 0, len(samples), ideal=len(samples)) is None


def test_split_lands_in_the_silence_closest_to_ideal():
    samples = np.concatenate([_tone(4.0), np.zeros(SR), _tone(4.0), np.zeros(SR), _tone(2.0)])

    split = find_silence_split(samples, SR, 0, len(samples), ideal=len(samples))

    # second silence spans 9s-10s and is nearer the ideal end
    assert 9 * SR <= split <= 10 * SR


def test_short_pause_is_ignored():
    samples = np.concatenate([_tone(4.0), np.zeros(SR // 5), _tone(4.0)])
    assert find_silence_split(samples, SR, 0, len(samples), ideal=len(samples), min_silence=0.5) is None


def test_leading_and_trailing_silence():
    samples = np.concatenate([np.zeros(SR), _tone(2.0), np.zeros(SR)])
    vad = EnergyVAD(SR, threshold=0.1)

    assert 0.8 <= vad.detect_leading_silence(samples) <= 1.0
    assert 1.0 <= vad.detect_trailing_silence(samples) <= 1.3
    assert vad.detect_leading_silence(_tone(1.0)) == 0.0
    assert vad.detect_trailing_silence(_tone(1.0)) == 0.0
    assert vad.detect_trailing_silence(np.zeros(SR)) == 0.0


def test_trim_span_silence_keeps_one_frame_of_margin():
    samples = np.concatenate([np.zeros(2 * SR), np.full(2 * SR, 0.5), np.zeros(6 * SR)])

    start, end = trim_span_silence(samples, SR, 1.0, 5.0)

    assert start == pytest.approx(1.7)
    assert end == pytest.approx(4.1)


def test_trim_span_silence_leaves_silent_or_speech_only_spans_alone():
    assert trim_span_silence(np.zeros(10 * SR), SR, 1.0, 5.0) == (1.0, 5.0)
    assert trim_span_silence(np.full(10 * SR, 0.5), SR, 1.0, 5.0) == (1.0, 5.0)
    assert trim_span_silence(np.zeros(SR), SR, 2.0, 3.0) == (2.0, 3.0)
