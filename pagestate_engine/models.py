"""
Data models for the page-state assertion generator.

All timestamps are integer MILLISECONDS since the epoch.  Windows are
half-open: an event at ``window.end`` belongs to the next window.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Set

from pagestate_engine.keys import generate_key


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
TOP_FRAME_ID: int = 1                 # logical id of a tab's top document
DEFAULT_MAX_WORKERS: int = 4          # extraction thread pool size
SNAPSHOT_VERSION: int = 1


# ---------------------------------------------------------------------------
# Assertion / store / action names (string-based for JSON compat)
# ---------------------------------------------------------------------------
ASSERT_XPATH    = "xpath"
ASSERT_RESOURCE = "resource"
ASSERT_STORAGE  = "storage"
ASSERTION_TYPES = (ASSERT_XPATH, ASSERT_RESOURCE, ASSERT_STORAGE)

STORE_COOKIE          = "cookie"
STORE_LOCAL_STORAGE   = "localStorage"
STORE_SESSION_STORAGE = "sessionStorage"
STORE_INDEXED_DB      = "indexedDB"
STORE_TYPES = (STORE_COOKIE, STORE_LOCAL_STORAGE, STORE_SESSION_STORAGE, STORE_INDEXED_DB)

DOM_ADDED     = "added"
DOM_REMOVED   = "removed"
DOM_TEXT      = "text"
DOM_ATTRIBUTE = "attribute"
DOM_ACTIONS = (DOM_ADDED, DOM_REMOVED, DOM_TEXT, DOM_ATTRIBUTE)

STORAGE_SET    = "set"
STORAGE_REMOVE = "remove"
STORAGE_CLEAR  = "clear"
STORAGE_ACTIONS = (STORAGE_SET, STORAGE_REMOVE, STORAGE_CLEAR)


# ---------------------------------------------------------------------------
# Window
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Window:
    """Half-open observation window ``[start, end)``."""

    start: int
    end:   int

    def __post_init__(self) -> None:
        if not isinstance(self.start, int) or not isinstance(self.end, int):
            raise TypeError(
                f"window bounds must be int (ms), got "
                f"{type(self.start).__name__}/{type(self.end).__name__}"
            )
        if self.start >= self.end:
            raise ValueError(
                f"Inverted window: start={self.start} must be < end={self.end}"
            )

    def contains(self, timestamp: int) -> bool:
        return self.start <= timestamp < self.end

    def to_list(self) -> List[int]:
        return [self.start, self.end]


# ---------------------------------------------------------------------------
# Session log records (input)
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class FrameRecord:
    """Logical frame identity inside one tab; stable across navigations."""

    frame_id:        int
    tab_id:          int
    parent_frame_id: Optional[int] = None

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "FrameRecord":
        parent = d.get("parent_frame_id")
        return FrameRecord(
            frame_id=int(d["frame_id"]),
            tab_id=int(d["tab_id"]),
            parent_frame_id=int(parent) if parent is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "frame",
            "frame_id": self.frame_id,
            "tab_id": self.tab_id,
            "parent_frame_id": self.parent_frame_id,
        }


@dataclass(frozen=True, slots=True)
class NavigationEvent:
    """A new document was committed in a frame."""

    frame_id:  int
    timestamp: int
    url:       str
    status:    str = "committed"

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "NavigationEvent":
        return NavigationEvent(
            frame_id=int(d["frame_id"]),
            timestamp=int(d["timestamp"]),
            url=d["url"],
            status=d.get("status", "committed"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "navigation",
            "frame_id": self.frame_id,
            "timestamp": self.timestamp,
            "url": self.url,
            "status": self.status,
        }


@dataclass(frozen=True, slots=True)
class DomChange:
    """One recorded DOM mutation.

    Element nodes carry ``tag``; text nodes carry ``text`` and no tag.
    ``attributes`` on an ``attribute`` action holds only the changed
    attributes, with ``None`` meaning the attribute was removed.
    """

    frame_id:            int
    timestamp:           int
    action:              str                       # added | removed | text | attribute
    node_id:             int
    parent_node_id:      Optional[int] = None
    previous_sibling_id: Optional[int] = None
    tag:                 Optional[str] = None
    text:                Optional[str] = None
    attributes:          Dict[str, Optional[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.action not in DOM_ACTIONS:
            raise ValueError(f"Invalid DOM action: {self.action!r}")

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "DomChange":
        return DomChange(
            frame_id=int(d["frame_id"]),
            timestamp=int(d["timestamp"]),
            action=d["action"],
            node_id=int(d["node_id"]),
            parent_node_id=d.get("parent_node_id"),
            previous_sibling_id=d.get("previous_sibling_id"),
            tag=d.get("tag"),
            text=d.get("text"),
            attributes=dict(d.get("attributes") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "dom",
            "frame_id": self.frame_id,
            "timestamp": self.timestamp,
            "action": self.action,
            "node_id": self.node_id,
            "parent_node_id": self.parent_node_id,
            "previous_sibling_id": self.previous_sibling_id,
            "tag": self.tag,
            "text": self.text,
            "attributes": dict(self.attributes),
        }


@dataclass(frozen=True, slots=True)
class StorageChange:
    """A cookie, web storage or indexedDB write."""

    frame_id:  int
    timestamp: int
    store:     str                     # cookie | localStorage | sessionStorage | indexedDB
    origin:    str
    action:    str                     # set | remove | clear
    key:       Optional[str] = None
    value:     Any = None

    def __post_init__(self) -> None:
        if self.store not in STORE_TYPES:
            raise ValueError(f"Invalid store: {self.store!r}")
        if self.action not in STORAGE_ACTIONS:
            raise ValueError(f"Invalid storage action: {self.action!r}")
        if self.action != STORAGE_CLEAR and self.key is None:
            raise ValueError(f"Storage {self.action!r} requires a key")

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "StorageChange":
        return StorageChange(
            frame_id=int(d["frame_id"]),
            timestamp=int(d["timestamp"]),
            store=d["store"],
            origin=d.get("origin", ""),
            action=d["action"],
            key=d.get("key"),
            value=d.get("value"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "storage",
            "frame_id": self.frame_id,
            "timestamp": self.timestamp,
            "store": self.store,
            "origin": self.origin,
            "action": self.action,
            "key": self.key,
            "value": self.value,
        }


@dataclass(frozen=True, slots=True)
class ResourceLoad:
    """A network resource loaded by a frame."""

    frame_id:      int
    timestamp:     int
    url:           str
    resource_type: str = "Other"
    method:        str = "GET"
    status:        int = 200

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "ResourceLoad":
        return ResourceLoad(
            frame_id=int(d["frame_id"]),
            timestamp=int(d["timestamp"]),
            url=d["url"],
            resource_type=d.get("resource_type", "Other"),
            method=d.get("method", "GET"),
            status=int(d.get("status", 200)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "resource",
            "frame_id": self.frame_id,
            "timestamp": self.timestamp,
            "url": self.url,
            "resource_type": self.resource_type,
            "method": self.method,
            "status": self.status,
        }


# ---------------------------------------------------------------------------
# Observation / Assertion
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Observation:
    """One structural, storage or resource fact; also the assertion record."""

    type:   str
    args:   List[Any]
    result: Any

    def __post_init__(self) -> None:
        if self.type not in ASSERTION_TYPES:
            raise ValueError(f"Invalid assertion type: {self.type!r}")

    @property
    def key(self) -> str:
        return generate_key(self.type, self.args)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "args": list(self.args), "result": self.result}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Observation":
        return Observation(type=d["type"], args=list(d.get("args", [])), result=d.get("result"))


Assertion = Observation


# ---------------------------------------------------------------------------
# PageState (the consensus target)
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class PageState:
    """A caller-named bucket of sessions and their agreed assertions."""

    name: str
    id: str
    session_ids: Set[str] = field(default_factory=set)
    asserts_by_frame_id: Dict[int, Dict[str, Assertion]] = field(default_factory=dict)

    def assertion_count(self) -> int:
        return sum(len(v) for v in self.asserts_by_frame_id.values())

    def frozen_copy(self) -> "PageState":
        """Detached copy whose session set and assertion maps cannot be mutated."""
        return PageState(
            name=self.name,
            id=self.id,
            session_ids=frozenset(self.session_ids),
            asserts_by_frame_id=MappingProxyType({
                frame_id: MappingProxyType(dict(asserts))
                for frame_id, asserts in self.asserts_by_frame_id.items()
            }),
        )


# ---------------------------------------------------------------------------
# StateSnapshot (export / import)
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class StateSnapshot:
    """Persisted form of one state: ``[frame_id, type, args, result]`` rows.

    ``frames`` lists every evaluated frame, including frames whose sessions
    agreed on nothing and so have no rows.
    """

    id: str
    assertions: List[List[Any]] = field(default_factory=list)
    sessions: List[str] = field(default_factory=list)
    frames: List[int] = field(default_factory=list)
    version: int = SNAPSHOT_VERSION

    def __post_init__(self) -> None:
        frames = set(self.frames)
        frames.update(row[0] for row in self.assertions)
        self.frames = sorted(frames)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "assertions": [list(row) for row in self.assertions],
            "sessions": list(self.sessions),
            "frames": list(self.frames),
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "StateSnapshot":
        rows: List[List[Any]] = []
        for row in d.get("assertions", []):
            if len(row) != 4:
                raise ValueError(f"Assertion row must be [frame_id, type, args, result], got {row!r}")
            frame_id, type_, args, result = row
            rows.append([int(frame_id), type_, list(args), result])
        return StateSnapshot(
            id=str(d["id"]),
            assertions=rows,
            sessions=[str(s) for s in d.get("sessions", [])],
            frames=[int(f) for f in d.get("frames", [])],
            version=int(d.get("version", SNAPSHOT_VERSION)),
        )
