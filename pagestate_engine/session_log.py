"""
Read-only session log handle.

The recording subsystem writes one JSONL file per session.  Each line is a
record tagged with ``kind``:

    {"kind": "session", "session_id": "..."}
    {"kind": "frame", "frame_id": 1, "tab_id": 1, "parent_frame_id": null}
    {"kind": "navigation" | "dom" | "storage" | "resource", "frame_id": 1, "timestamp": ..., ...}

The engine only ever reads these logs.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pagestate_engine.models import (
    DomChange,
    FrameRecord,
    NavigationEvent,
    ResourceLoad,
    StorageChange,
)

logger = logging.getLogger(__name__)

LogEvent = Union[NavigationEvent, DomChange, StorageChange, ResourceLoad]

_EVENT_TYPES = {
    "navigation": NavigationEvent,
    "dom": DomChange,
    "storage": StorageChange,
    "resource": ResourceLoad,
}


class SessionLog:
    """
    Immutable view over one recorded session.

    Events keep their recording order as a tie-breaker, so two events with
    the same timestamp replay in the order they were written.
    """

    def __init__(
        self,
        session_id: str,
        frames: Iterable[FrameRecord],
        events: Iterable[LogEvent],
    ) -> None:
        self.session_id: str = str(session_id)
        self._frames: Dict[int, FrameRecord] = {}
        for frame in frames:
            if frame.frame_id in self._frames:
                raise ValueError(
                    f"Duplicate frame_id {frame.frame_id} in session {self.session_id!r}"
                )
            self._frames[frame.frame_id] = frame

        self._events_by_frame: Dict[int, List[Tuple[int, int, LogEvent]]] = {}
        for seq, event in enumerate(events):
            self._events_by_frame.setdefault(event.frame_id, []).append(
                (event.timestamp, seq, event)
            )
        for entries in self._events_by_frame.values():
            entries.sort(key=lambda entry: (entry[0], entry[1]))

    # ------------------------------------------------------------------
    # Frame identity
    # ------------------------------------------------------------------
    def tab_ids(self) -> List[int]:
        return sorted({f.tab_id for f in self._frames.values()})

    def has_tab(self, tab_id: int) -> bool:
        return any(f.tab_id == tab_id for f in self._frames.values())

    def frames_for_tab(self, tab_id: int) -> List[FrameRecord]:
        return sorted(
            (f for f in self._frames.values() if f.tab_id == tab_id),
            key=lambda f: f.frame_id,
        )

    def frame_ids(self) -> List[int]:
        return sorted(self._frames)

    def frames(self) -> List[FrameRecord]:
        return [self._frames[frame_id] for frame_id in self.frame_ids()]

    # ------------------------------------------------------------------
    # Event queries
    # ------------------------------------------------------------------
    def events(
        self,
        frame_id: int,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> List[LogEvent]:
        """Events of one frame with ``start <= timestamp < end``."""
        out: List[LogEvent] = []
        for timestamp, _seq, event in self._events_by_frame.get(frame_id, []):
            if start is not None and timestamp < start:
                continue
            if end is not None and timestamp >= end:
                break
            out.append(event)
        return out

    def final_url(self, frame_id: int, before: Optional[int] = None) -> Optional[str]:
        """URL of the last navigation in ``frame_id`` strictly before ``before``."""
        url: Optional[str] = None
        for event in self.events(frame_id, end=before):
            if isinstance(event, NavigationEvent):
                url = event.url
        return url

    def all_events(self) -> List[LogEvent]:
        entries = [e for entries in self._events_by_frame.values() for e in entries]
        entries.sort(key=lambda entry: entry[1])
        return [event for _ts, _seq, event in entries]

    def __repr__(self) -> str:
        return (
            f"SessionLog(session_id={self.session_id!r}, "
            f"frames={self.frame_ids()}, events={len(self.all_events())})"
        )


# ---------------------------------------------------------------------------
# JSONL persistence
# ---------------------------------------------------------------------------
def parse_record(data: Dict[str, Any]) -> Union[FrameRecord, LogEvent]:
    kind = data.get("kind")
    if kind == "frame":
        return FrameRecord.from_dict(data)
    event_type = _EVENT_TYPES.get(kind)
    if event_type is None:
        raise ValueError(f"Unknown record kind: {kind!r}")
    return event_type.from_dict(data)


def session_log_from_records(records: Iterable[Dict[str, Any]]) -> SessionLog:
    """Build a log from already-decoded records (the JSONL lines as dicts)."""
    session_id: Optional[str] = None
    frames: List[FrameRecord] = []
    events: List[LogEvent] = []
    for index, data in enumerate(records):
        try:
            if data.get("kind") == "session":
                session_id = str(data["session_id"])
                continue
            record = parse_record(data)
        except (KeyError, ValueError, TypeError) as exc:
            raise ValueError(f"Invalid record #{index}: {exc}") from exc
        if isinstance(record, FrameRecord):
            frames.append(record)
        else:
            events.append(record)
    if session_id is None:
        raise ValueError("Session log has no session record")
    return SessionLog(session_id, frames, events)


def load_session_log(path: str) -> SessionLog:
    """Load a session log from a JSONL file."""
    session_id: Optional[str] = None
    frames: List[FrameRecord] = []
    events: List[LogEvent] = []

    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                if data.get("kind") == "session":
                    session_id = str(data["session_id"])
                    continue
                record = parse_record(data)
            except (json.JSONDecodeError, KeyError, ValueError, TypeError) as exc:
                raise ValueError(
                    f"Invalid record on line {line_no} of {path}: {exc}"
                ) from exc
            if isinstance(record, FrameRecord):
                frames.append(record)
            else:
                events.append(record)

    if session_id is None:
        session_id = Path(path).stem
        logger.debug("No session record in %s, using file stem %r", path, session_id)

    log = SessionLog(session_id, frames, events)
    logger.debug("Loaded %r from %s", log, path)
    return log


def dump_session_log(log: SessionLog, path: str) -> None:
    """Write ``log`` in the JSONL format read by :func:`load_session_log`."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        f.write(json.dumps({"kind": "session", "session_id": log.session_id}, sort_keys=True) + "\n")
        for frame in log.frames():
            f.write(json.dumps(frame.to_dict(), sort_keys=True) + "\n")
        for event in log.all_events():
            f.write(json.dumps(event.to_dict(), sort_keys=True) + "\n")