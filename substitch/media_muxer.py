"""Attaches subtitle files to media using ffmpeg, either as a soft track or burned into the video."""

import ffmpeg
import os
import logging
from dataclasses import dataclass
from typing import Optional

from .exceptions import MuxError
from .utils import ensure_dir_exists

logger = logging.getLogger(__name__)


@dataclass
class BurnStyle:
    """ASS style overrides passed to the subtitles filter."""
    font_name: str = "Arial"
    font_size: int = 24
    white_text: bool = True
    background: bool = False
    margin_v: Optional[int] = None

    def force_style(self) -> str:
        if self.white_text:
            parts = ["PrimaryColour=&H00FFFFFF", "OutlineColour=&H00000000"]
            back = "BackColour=&H00000000"
        else:
            parts = ["PrimaryColour=&H00000000", "OutlineColour=&H00FFFFFF"]
            back = "BackColour=&H00FFFFFF"
        if self.background:
            parts += [back, "BorderStyle=3"]
        else:
            parts.append("BorderStyle=1")

        style = [f"FontName={self.font_name}", f"FontSize={self.font_size}"]
        if self.margin_v is not None:
            style.append(f"MarginV={self.margin_v}")
        return ",".join(style + parts)


class MediaMuxer:
    """Writes a copy of the media with subtitles attached."""

    def __init__(self, ffmpeg_path: Optional[str] = None):
        self.ffmpeg_cmd = ffmpeg_path or 'ffmpeg'

    def embed(self, media_path: str, subtitle_path: str, output_path: str) -> str:
        """
        Adds the subtitle file as a default soft track (mov_text), copying the other streams.

        Returns:
            The output path.

        Raises:
            FileNotFoundError: If an input file does not exist.
            MuxError: If ffmpeg fails.
        """
        self._check_inputs(media_path, subtitle_path, output_path)
        media = ffmpeg.input(media_path)
        subs = ffmpeg.input(subtitle_path)
        stream = ffmpeg.output(
            media, subs, output_path,
            c='copy', **{'c:s': 'mov_text', 'disposition:s:0': 'default'}
        )
        return self._run(stream, output_path, "embed")

    def burn(self, media_path: str, subtitle_path: str, output_path: str, style: Optional[BurnStyle] = None) -> str:
        """
        Renders the subtitles into the video frames; audio is copied.

        Raises:
            FileNotFoundError: If an input file does not exist.
            MuxError: If ffmpeg fails.
        """
        self._check_inputs(media_path, subtitle_path, output_path)
        style = style or BurnStyle()
        source = ffmpeg.input(media_path)
        video = source.video.filter('subtitles', subtitle_path, force_style=style.force_style())
        stream = ffmpeg.output(video, source.audio, output_path, **{'c:a': 'copy'})
        return self._run(stream, output_path, "burn")

    def _check_inputs(self, media_path: str, subtitle_path: str, output_path: str) -> None:
        for path in (media_path, subtitle_path):
            if not os.path.exists(path):
                raise FileNotFoundError(f"Input file not found: {path}")
        if os.path.abspath(media_path) == os.path.abspath(output_path):
            raise MuxError("Output path must differ from the input media path.")
        ensure_dir_exists(os.path.dirname(os.path.abspath(output_path)))

    def _run(self, stream, output_path: str, action: str) -> str:
        logger.info(f"Running ffmpeg to {action} subtitles into {output_path}...")
        try:
            stream.overwrite_output().run(cmd=self.ffmpeg_cmd, capture_stdout=True, capture_stderr=True)
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            logger.error(f"ffmpeg stderr: {stderr_output}")
            if os.path.exists(output_path):
                try:
                    os.remove(output_path)
                except OSError:
                    logger.warning(f"Could not clean up partially written file: {output_path}")
            raise MuxError(f"ffmpeg failed to {action} subtitles: {stderr_output}") from e
        logger.info(f"Subtitles {'embedded' if action == 'embed' else 'burned'} into {output_path}")
        return output_path
