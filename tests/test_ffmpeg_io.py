import ffmpeg
import numpy as np
import pytest

from substitch import audio_source
from substitch.audio_source import AudioSource
from substitch.exceptions import DecodeError, MuxError
from substitch.media_muxer import BurnStyle, MediaMuxer


class FakeFfmpegStream:
    def __init__(self, stdout=b"", error=None):
        self.stdout = stdout
        self.error = error
        self.output_kwargs = None

    def output(self, target, **kwargs):
        self.output_kwargs = dict(kwargs, target=target)
        return self

    def run(self, **kwargs):
        if self.error is not None:
            raise self.error
        return self.stdout, b""


@pytest.fixture
def media_file(tmp_path):
    path = tmp_path / "talk.mp4"
    path.write_bytes(b"\x00")
    return path


def test_load_decodes_mono_float_pcm(monkeypatch, media_file):
    stream = FakeFfmpegStream(stdout=np.full(3200, 0.25, dtype=np.float32).tobytes())
    monkeypatch.setattr(audio_source.ffmpeg, "input", lambda path: stream)

    media = AudioSource(sample_rate=16000).load(str(media_file))

    assert media.total_duration == pytest.approx(0.2)
    assert media.sample_rate == 16000
    assert media.path == str(media_file)
    assert not media.samples.flags.writeable
    assert stream.output_kwargs["ac"] == 1
    assert stream.output_kwargs["ar"] == 16000
    assert stream.output_kwargs["format"] == "f32le"


def test_load_failures(monkeypatch, media_file, tmp_path):
    failing = FakeFfmpegStream(error=ffmpeg.Error("ffmpeg", b"", b"Invalid data found"))
    monkeypatch.setattr(audio_source.ffmpeg, "input", lambda path: failing)
    with pytest.raises(DecodeError, match="Invalid data found"):
        AudioSource().load(str(media_file))

    monkeypatch.setattr(audio_source.ffmpeg, "input", lambda path: FakeFfmpegStream(stdout=b""))
    with pytest.raises(DecodeError):
        AudioSource().load(str(media_file))

    with pytest.raises(FileNotFoundError):
        AudioSource().load(str(tmp_path / "missing.mp4"))


def test_burn_style():
    style = BurnStyle(font_name="DejaVu Sans", font_size=30, margin_v=40, background=True)

    assert style.force_style() == (
        "FontName=DejaVu Sans,FontSize=30,MarginV=40,"
        "PrimaryColour=&H00FFFFFF,OutlineColour=&H00000000,BackColour=&H00000000,BorderStyle=3"
    )


def test_embed_adds_mov_text_track(monkeypatch, media_file, tmp_path):
    subs = tmp_path / "talk.srt"
    subs.write_text("", encoding="utf-8")
    captured = {}
    monkeypatch.setattr(MediaMuxer, "_run", lambda self, stream, output_path, action: captured.setdefault("args", stream.get_args()))

    MediaMuxer().embed(str(media_file), str(subs), str(tmp_path / "out" / "talk.subtitled.mp4"))

    args = captured["args"]
    assert args[args.index("-c:s") + 1] == "mov_text"
    assert args[args.index("-c") + 1] == "copy"


def test_mux_input_checks(media_file, tmp_path):
    subs = tmp_path / "talk.srt"
    subs.write_text("", encoding="utf-8")
    muxer = MediaMuxer()

    with pytest.raises(FileNotFoundError):
        muxer.burn(str(media_file), str(tmp_path / "missing.srt"), str(tmp_path / "out.mp4"))
    with pytest.raises(MuxError):
        muxer.embed(str(media_file), str(subs), str(media_file))


def test_media_duration_is_read_from_container_format(monkeypatch):
    calls = {}

    def fake_ffprobe_call(path, cmd):
        calls["cmd"] = cmd
        return {"format": {"duration": "12.480000"}}

    monkeypatch.setattr(audio_source.ffmpeg, "probe", fake_ffprobe_call)

    assert AudioSource().probe_duration("talk.mp4") == pytest.approx(12.48)
    assert calls["cmd"] == "ffprobe"
    AudioSource(ffmpeg_path="/opt/ffmpeg/bin/ffmpeg").probe_duration("talk.mp4")
    assert calls["cmd"] == "/opt/ffmpeg/bin/ffprobe"


def test_unreadable_media_duration_raises_decode_error(monkeypatch):
    monkeypatch.setattr(audio_source.ffmpeg, "probe", lambda path, cmd: {"format": {}})
    with pytest.raises(DecodeError):
        AudioSource().probe_duration("talk.mp4")

    def failing_ffprobe_call(path, cmd):
        raise ffmpeg.Error("ffprobe", b"", b"moov atom not found")

    monkeypatch.setattr(audio_source.ffmpeg, "probe", failing_ffprobe_call)
    with pytest.raises(DecodeError, match="moov atom not found"):
        AudioSource().probe_duration("talk.mp4")
