"""Saves and restores transcription sessions as versioned JSON documents."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .exceptions import PersistenceError, TimelineEditError
from .models import Chunk, EntrySource, GapMarker, JobState, SubtitleEntry
from .timeline import SubtitleTimeline
from .utils import ensure_dir_exists

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


@dataclass
class SessionSnapshot:
    """Everything needed to reopen a session without running inference again."""
    timeline: SubtitleTimeline
    chunks: List[Chunk] = field(default_factory=list)
    job_state: JobState = JobState.COMPLETED
    media_path: Optional[str] = None
    sample_rate: int = 16000
    total_duration: Optional[float] = None
    chunk_errors: Dict[int, str] = field(default_factory=dict)


def _encode(snapshot: SessionSnapshot) -> Dict[str, Any]:
    timeline = snapshot.timeline
    return {
        "version": SCHEMA_VERSION,
        "media": {
            "path": snapshot.media_path,
            "sample_rate": snapshot.sample_rate,
            "total_duration": snapshot.total_duration,
        },
        "job_state": snapshot.job_state.value,
        "chunks": [
            {
                "index": c.index,
                "start_time": c.start_time,
                "end_time": c.end_time,
                "sample_range": list(c.sample_range),
            }
            for c in snapshot.chunks
        ],
        "chunk_errors": {str(k): v for k, v in snapshot.chunk_errors.items()},
        "next_id": timeline.next_id,
        "entries": [
            {
                "id": e.id,
                "start_time": e.start_time,
                "end_time": e.end_time,
                "text": e.text,
                "source": e.source.value,
            }
            for e in timeline.entries
        ],
        "gaps": [
            {"start_time": g.start_time, "end_time": g.end_time, "chunk_indices": list(g.chunk_indices)}
            for g in timeline.gaps
        ],
        "original_timing": [
            {"id": entry_id, "start_time": start, "end_time": end}
            for entry_id, (start, end) in sorted(timeline.original_timing.items())
        ],
    }


def _decode(data: Dict[str, Any]) -> SessionSnapshot:
    version = data.get("version")
    if version != SCHEMA_VERSION:
        raise PersistenceError(f"Unsupported session schema version: {version!r}")

    media = data.get("media") or {}
    entries = [
        SubtitleEntry(
            id=int(e["id"]),
            start_time=float(e["start_time"]),
            end_time=float(e["end_time"]),
            text=e["text"],
            source=EntrySource(e["source"]),
        )
        for e in data.get("entries", [])
    ]
    gaps = [
        GapMarker(start_time=float(g["start_time"]), end_time=float(g["end_time"]),
                  chunk_indices=tuple(int(i) for i in g.get("chunk_indices", [])))
        for g in data.get("gaps", [])
    ]
    chunks = [
        Chunk(index=int(c["index"]), start_time=float(c["start_time"]), end_time=float(c["end_time"]),
              sample_range=(int(c["sample_range"][0]), int(c["sample_range"][1])))
        for c in data.get("chunks", [])
    ]
    total_duration = media.get("total_duration")
    timeline = SubtitleTimeline(
        entries,
        total_duration=float(total_duration) if total_duration is not None else None,
        gaps=gaps,
        next_id=int(data["next_id"]),
        original_timing={
            int(t["id"]): (float(t["start_time"]), float(t["end_time"]))
            for t in data.get("original_timing", [])
        },
    )
    return SessionSnapshot(
        timeline=timeline,
        chunks=chunks,
        job_state=JobState(data["job_state"]),
        media_path=media.get("path"),
        sample_rate=int(media.get("sample_rate", 16000)),
        total_duration=timeline.total_duration,
        chunk_errors={int(k): v for k, v in data.get("chunk_errors", {}).items()},
    )


def save_session(path: str, snapshot: SessionSnapshot) -> None:
    """
    Writes the snapshot to `path` atomically: a temp file in the same
    directory is written, flushed and then moved over the target.

    Raises:
        PersistenceError: If the file cannot be written.
    """
    directory = os.path.dirname(os.path.abspath(path))
    ensure_dir_exists(directory)
    document = _encode(snapshot)

    fd, tmp_path = tempfile.mkstemp(prefix=".session-", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(document, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to save session to {path}: {e}", exc_info=True)
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise PersistenceError(f"Could not save session to {path}: {e}") from e
    logger.info(f"Saved session with {len(document['entries'])} entries to {path}")


def load_session(path: str) -> SessionSnapshot:
    """
    Reads a snapshot written by save_session.

    Raises:
        FileNotFoundError: If the file does not exist.
        PersistenceError: If the file is not a valid session document.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Session file not found: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PersistenceError(f"Could not read session file {path}: {e}") from e
    if not isinstance(data, dict):
        raise PersistenceError(f"Invalid session file {path}: root must be an object.")

    try:
        snapshot = _decode(data)
    except (KeyError, TypeError, ValueError, IndexError) as e:
        raise PersistenceError(f"Invalid session file {path}: {e}") from e
    except TimelineEditError as e:
        raise PersistenceError(f"Session file {path} holds an invalid timeline: {e}") from e
    logger.info(f"Loaded session with {len(snapshot.timeline)} entries from {path}")
    return snapshot
