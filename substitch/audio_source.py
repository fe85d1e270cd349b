"""Decodes audio/video files into mono PCM using ffmpeg."""

import ffmpeg
import os
import logging
from typing import Optional

import numpy as np

from .exceptions import DecodeError
from .models import MediaHandle

logger = logging.getLogger(__name__)

class AudioSource:
    """Turns a media file into a MediaHandle with a read-only sample buffer."""

    def __init__(self, ffmpeg_path: Optional[str] = None, sample_rate: int = 16000):
        """
        Initializes the AudioSource.

        Args:
            ffmpeg_path: Optional path to the ffmpeg executable.
                         If None, assumes ffmpeg is in the system PATH.
            sample_rate: Rate to resample to. Whisper expects 16 kHz.
        """
        self.ffmpeg_cmd = ffmpeg_path or 'ffmpeg'
        self.sample_rate = sample_rate
        logger.info(f"Using ffmpeg command: {self.ffmpeg_cmd}")

    def load(self, media_path: str) -> MediaHandle:
        """
        Decodes the first audio stream of a file to mono float32 samples.

        Args:
            media_path: Path to the input audio or video file.

        Returns:
            A MediaHandle carrying the samples and the decoded duration.

        Raises:
            FileNotFoundError: If the input file does not exist.
            DecodeError: If ffmpeg fails or the file holds no audio.
        """
        logger.info(f"Decoding audio from: {media_path}")
        if not os.path.exists(media_path):
            raise FileNotFoundError(f"Input media file not found: {media_path}")

        try:
            out, _ = (
                ffmpeg
                .input(media_path)
                .output('pipe:', format='f32le', acodec='pcm_f32le', ac=1, ar=self.sample_rate)
                .run(cmd=self.ffmpeg_cmd, capture_stdout=True, capture_stderr=True)
            )
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            logger.error(f"ffmpeg stderr: {stderr_output}")
            raise DecodeError(f"ffmpeg failed to decode {media_path}: {stderr_output}") from e
        except OSError as e:
            logger.error(f"Could not run ffmpeg '{self.ffmpeg_cmd}': {e}", exc_info=True)
            raise DecodeError(f"Could not run ffmpeg: {e}") from e

        samples = np.frombuffer(out, dtype=np.float32)
        if samples.size == 0:
            raise DecodeError(f"No audio samples decoded from {media_path}")

        media = MediaHandle.from_samples(samples, self.sample_rate, path=media_path)
        logger.info(f"Decoded {media.total_duration:.2f}s of audio ({media.total_samples} samples at {self.sample_rate} Hz)")
        return media

    def probe_duration(self, media_path: str) -> float:
        """
        Reads the container duration without decoding.

        Raises:
            DecodeError: If ffprobe fails or reports no duration.
        """
        probe_cmd = 'ffprobe'
        if self.ffmpeg_cmd != 'ffmpeg':
            probe_cmd = os.path.join(os.path.dirname(self.ffmpeg_cmd), 'ffprobe')
        try:
            info = ffmpeg.probe(media_path, cmd=probe_cmd)
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            raise DecodeError(f"ffprobe failed for {media_path}: {stderr_output}") from e

        duration = info.get('format', {}).get('duration')
        if duration is None:
            raise DecodeError(f"No duration reported for {media_path}")
        return float(duration)
