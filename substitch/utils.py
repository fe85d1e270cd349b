"""Utility functions for SubStitch."""

import os
import re
import logging
from .exceptions import FileSystemError, FormattingError

logger = logging.getLogger(__name__)

_SRT_TIME_RE = re.compile(r"^\s*(\d+):(\d{1,2}):(\d{1,2})[,.](\d{1,3})\s*$")

def ensure_dir_exists(dir_path: str) -> None:
    """
    Ensures that a directory exists. Creates it if it doesn't.

    Args:
        dir_path: The path to the directory.

    Raises:
        FileSystemError: If the directory cannot be created due to permissions
                         or if the path exists but is not a directory.
    """
    if not dir_path:
        raise ValueError("Directory path cannot be empty.")
    try:
        if not os.path.exists(dir_path):
            os.makedirs(dir_path)
            logger.info(f"Created directory: {dir_path}")
        elif not os.path.isdir(dir_path):
            raise FileSystemError(f"Path exists but is not a directory: {dir_path}")
    except OSError as e:
        logger.error(f"Error creating or accessing directory {dir_path}: {e}", exc_info=True)
        raise FileSystemError(f"Could not create or access directory {dir_path}: {e}") from e

def _split_millis(seconds: float):
    if seconds < 0:
        seconds = 0.0 # Ensure non-negative time
    milliseconds = round(seconds * 1000)
    hrs = milliseconds // 3600000
    milliseconds %= 3600000
    mins = milliseconds // 60000
    milliseconds %= 60000
    secs = milliseconds // 1000
    milliseconds %= 1000
    return hrs, mins, secs, milliseconds

def format_time_srt(seconds: float) -> str:
    """
    Formats seconds into SRT time format HH:MM:SS,ms.

    Args:
        seconds: Time in seconds.

    Returns:
        Formatted time string.
    """
    hrs, mins, secs, milliseconds = _split_millis(seconds)
    return f"{hrs:02d}:{mins:02d}:{secs:02d},{milliseconds:03d}"

def format_time_vtt(seconds: float) -> str:
    """Formats seconds into WebVTT time format HH:MM:SS.ms."""
    hrs, mins, secs, milliseconds = _split_millis(seconds)
    return f"{hrs:02d}:{mins:02d}:{secs:02d}.{milliseconds:03d}"

def parse_time_srt(timestamp: str) -> float:
    """
    Parses an SRT (or VTT) timestamp back into seconds.

    Raises:
        FormattingError: If the timestamp is malformed.
    """
    match = _SRT_TIME_RE.match(timestamp)
    if not match:
        raise FormattingError(f"Invalid subtitle timestamp: {timestamp!r}")
    hrs, mins, secs, millis = match.groups()
    millis = millis.ljust(3, "0")
    total_ms = int(hrs) * 3600000 + int(mins) * 60000 + int(secs) * 1000 + int(millis)
    return total_ms / 1000.0
