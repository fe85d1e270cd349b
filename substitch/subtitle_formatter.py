"""Handles formatting subtitle entries into subtitle files (SRT, VTT, TXT) and reading SRT back."""

import logging
import math
import os
import re
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .models import EntrySource, SubtitleEntry
from .exceptions import FormattingError
from .utils import ensure_dir_exists, format_time_srt, format_time_vtt, parse_time_srt

logger = logging.getLogger(__name__)

_TIMING_RE = re.compile(r"^\s*(\S+)\s*-->\s*(\S+)")


def wrap_text(text: str, max_chars_per_line: Optional[int], max_lines: Optional[int] = None) -> List[str]:
    """
    Word-wraps subtitle text.

    Existing line breaks are kept. When `max_lines` is set and the text
    would need more lines, the line width grows instead of dropping words.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not max_chars_per_line:
        return lines

    width = max_chars_per_line
    if max_lines:
        total = sum(len(line) for line in lines) + max(len(lines) - 1, 0)
        width = max(width, math.ceil(total / max_lines))

    wrapped = []
    for line in lines:
        if len(line) <= width:
            wrapped.append(line)
            continue
        current = ""
        for word in line.split():
            if not current:
                current = word
            elif len(current) + len(word) + 1 <= width:
                current += f" {word}"
            else:
                wrapped.append(current)
                current = word
        if current:
            wrapped.append(current)
    return wrapped


class SubtitleFormatter(ABC):
    """Abstract base class for subtitle formatters."""

    extension = ""

    def __init__(self, max_chars_per_line: Optional[int] = 42, max_lines_per_block: Optional[int] = 2):
        self.max_chars_per_line = max_chars_per_line
        self.max_lines_per_block = max_lines_per_block

    @abstractmethod
    def render(self, entries: Iterable[SubtitleEntry]) -> str:
        """Renders entries into the file format as a string."""
        pass

    def _block_text(self, entry: SubtitleEntry) -> str:
        return "\n".join(wrap_text(entry.text, self.max_chars_per_line, self.max_lines_per_block))

    def format_subtitles(self, entries: Iterable[SubtitleEntry], output_path: str) -> None:
        """
        Formats the entries and writes them to a subtitle file.

        Args:
            entries: Ordered subtitle entries.
            output_path: The path to save the formatted subtitle file.

        Raises:
            FormattingError: If formatting or writing fails.
            FileSystemError: If the output directory cannot be created.
        """
        logger.info(f"Formatting subtitles to {self.extension.upper()}: {output_path}")
        content = self.render(entries)

        out_dir = os.path.dirname(os.path.abspath(output_path))
        ensure_dir_exists(out_dir)
        try:
            with open(output_path, 'w', encoding='utf-8') as f:
                f.write(content)
            logger.info(f"Successfully wrote subtitles to {output_path}")
        except IOError as e:
            logger.error(f"Failed to write {self.extension.upper()} file to {output_path}: {e}", exc_info=True)
            raise FormattingError(f"Could not write {self.extension.upper()} file: {e}") from e


def _printable(entries: Iterable[SubtitleEntry]) -> List[SubtitleEntry]:
    result = []
    for entry in entries:
        if not entry.text.strip():
            logger.debug(f"Skipping entry {entry.id} with empty text")
            continue
        if entry.end_time <= entry.start_time:
            raise FormattingError(f"Entry {entry.id} has zero or negative duration.")
        result.append(entry)
    return result


class SRTFormatter(SubtitleFormatter):
    """Formats subtitles into the SRT (SubRip Text) format."""

    extension = "srt"

    def render(self, entries: Iterable[SubtitleEntry]) -> str:
        blocks = []
        for index, entry in enumerate(_printable(entries), start=1):
            blocks.append(
                f"{index}\n"
                f"{format_time_srt(entry.start_time)} --> {format_time_srt(entry.end_time)}\n"
                f"{self._block_text(entry)}\n"
            )
        return "\n".join(blocks)


class VTTFormatter(SubtitleFormatter):
    """Formats subtitles into the WebVTT format."""

    extension = "vtt"

    def render(self, entries: Iterable[SubtitleEntry]) -> str:
        blocks = ["WEBVTT\n"]
        for index, entry in enumerate(_printable(entries), start=1):
            blocks.append(
                f"{index}\n"
                f"{format_time_vtt(entry.start_time)} --> {format_time_vtt(entry.end_time)}\n"
                f"{self._block_text(entry)}\n"
            )
        return "\n".join(blocks)


class TXTFormatter(SubtitleFormatter):
    """Plain transcript: one entry per line, no timing."""

    extension = "txt"

    def __init__(self, max_chars_per_line: Optional[int] = None, max_lines_per_block: Optional[int] = None):
        super().__init__(max_chars_per_line, max_lines_per_block)

    def render(self, entries: Iterable[SubtitleEntry]) -> str:
        lines = [" ".join(entry.text.split()) for entry in _printable(entries)]
        return "\n".join(lines) + ("\n" if lines else "")


_FORMATTERS = {
    "srt": SRTFormatter,
    "vtt": VTTFormatter,
    "txt": TXTFormatter,
}


def get_formatter(name: str, **kwargs) -> SubtitleFormatter:
    """
    Returns a formatter instance for the given format name.

    Raises:
        FormattingError: If the format is not supported.
    """
    try:
        formatter_cls = _FORMATTERS[name.lower()]
    except KeyError:
        raise FormattingError(f"Unsupported output format '{name}'. Choose one of: {', '.join(_FORMATTERS)}") from None
    return formatter_cls(**kwargs)


def load_srt(path: str) -> List[SubtitleEntry]:
    """
    Parses an SRT file into entries with ids 1..n.

    Raises:
        FileNotFoundError: If the file does not exist.
        FormattingError: If a block has no valid timing line.
    """
    logger.info(f"Loading subtitles from SRT: {path}")
    try:
        with open(path, 'r', encoding='utf-8-sig') as f:
            content = f.read()
    except FileNotFoundError:
        raise
    except (IOError, UnicodeDecodeError) as e:
        raise FormattingError(f"Could not read SRT file {path}: {e}") from e

    entries = []
    for block in re.split(r"\n\s*\n", content.replace("\r\n", "\n").strip()):
        lines = block.strip().split("\n")
        if not lines or not lines[0].strip():
            continue
        if lines[0].strip().isdigit():
            lines = lines[1:]
        if not lines:
            continue
        match = _TIMING_RE.match(lines[0])
        if not match:
            raise FormattingError(f"Invalid SRT block in {path}: {block[:60]!r}")
        start, end = parse_time_srt(match.group(1)), parse_time_srt(match.group(2))
        text = "\n".join(line.strip() for line in lines[1:]).strip()
        entries.append(SubtitleEntry(id=len(entries) + 1, start_time=start, end_time=end, text=text,
                                     source=EntrySource.MANUAL_EDIT))

    logger.info(f"Loaded {len(entries)} subtitle entries from {path}")
    return entries
