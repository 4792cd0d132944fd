"""
Synthetic session generator for the page-state generator.

Produces session logs plus a manifest that demonstrate:
  - List growth inside the window (count facts)
  - Element removal
  - Attribute changes
  - Cookie / indexedDB vs localStorage writes
  - Redirects inside the window
  - Resources fetched inside the window
"""
from __future__ import annotations

import json
import random
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pagestate_engine.models import (
    DOM_ADDED,
    DOM_ATTRIBUTE,
    DOM_REMOVED,
    DOM_TEXT,
    STORAGE_REMOVE,
    STORAGE_SET,
    STORE_COOKIE,
    STORE_INDEXED_DB,
    STORE_LOCAL_STORAGE,
    TOP_FRAME_ID,
    DomChange,
    FrameRecord,
    NavigationEvent,
    ResourceLoad,
    StorageChange,
)
from pagestate_engine.session_log import LogEvent, SessionLog, dump_session_log

BASE_TIME = 1_700_000_000_000          # ms, ~Nov 2023
DEFAULT_ORIGIN = "http://localhost:3000"

# (tag, attributes, text[, children])
NodeSpec = Tuple[Any, ...]


class SessionLogBuilder:
    """
    Records a session the way the recording subsystem would.

    Events are stamped with ``now``; call :meth:`tick` to advance the clock.

        b = SessionLogBuilder("s1")
        b.load_page("http://localhost/list", [("UL", {}, None, [("LI", {}, "1")])])
        start = b.tick()
        b.element("LI", parent=b.find("UL")[0], text="2")
        end = b.tick()
        log = b.build()
    """

    def __init__(self, session_id: str, tab_id: int = 1, start_time: int = BASE_TIME) -> None:
        self.session_id = session_id
        self.tab_id = tab_id
        self.now = start_time
        self._frames: List[FrameRecord] = [FrameRecord(TOP_FRAME_ID, tab_id)]
        self._events: List[LogEvent] = []
        self._next_node_id = 1
        self._tags: Dict[Tuple[int, int], str] = {}

    # ------------------------------------------------------------------
    # Clock / frames
    # ------------------------------------------------------------------
    def tick(self, ms: int = 10) -> int:
        self.now += ms
        return self.now

    def add_frame(self, frame_id: int, parent_frame_id: int = TOP_FRAME_ID) -> None:
        self._frames.append(FrameRecord(frame_id, self.tab_id, parent_frame_id))

    def navigate(self, url: str, frame_id: int = TOP_FRAME_ID) -> None:
        self._events.append(NavigationEvent(frame_id, self.now, url))
        self._tags = {k: v for k, v in self._tags.items() if k[0] != frame_id}

    # ------------------------------------------------------------------
    # DOM
    # ------------------------------------------------------------------
    def element(
        self,
        tag: str,
        parent: Optional[int] = None,
        attributes: Optional[Dict[str, str]] = None,
        text: Optional[str] = None,
        after: Optional[int] = None,
        frame_id: int = TOP_FRAME_ID,
    ) -> int:
        """Add an element (plus a text child when ``text`` is given)."""
        node_id = self._node_id()
        self._events.append(DomChange(
            frame_id, self.now, DOM_ADDED, node_id,
            parent_node_id=parent, previous_sibling_id=after,
            tag=tag, attributes=dict(attributes or {}),
        ))
        self._tags[(frame_id, node_id)] = tag.upper()
        if text is not None:
            self.text_node(text, node_id, frame_id=frame_id)
        return node_id

    def text_node(self, text: str, parent: int, frame_id: int = TOP_FRAME_ID) -> int:
        node_id = self._node_id()
        self._events.append(DomChange(
            frame_id, self.now, DOM_ADDED, node_id, parent_node_id=parent, text=text,
        ))
        return node_id

    def remove(self, node_id: int, frame_id: int = TOP_FRAME_ID) -> None:
        self._events.append(DomChange(frame_id, self.now, DOM_REMOVED, node_id))
        self._tags.pop((frame_id, node_id), None)

    def set_attributes(
        self,
        node_id: int,
        attributes: Dict[str, Optional[str]],
        frame_id: int = TOP_FRAME_ID,
    ) -> None:
        self._events.append(DomChange(
            frame_id, self.now, DOM_ATTRIBUTE, node_id, attributes=dict(attributes),
        ))

    def set_text(self, text_node_id: int, text: str, frame_id: int = TOP_FRAME_ID) -> None:
        self._events.append(DomChange(frame_id, self.now, DOM_TEXT, text_node_id, text=text))

    def find(self, tag: str, frame_id: int = TOP_FRAME_ID) -> List[int]:
        """Live element ids with ``tag``, in creation order."""
        tag = tag.upper()
        return [nid for (fid, nid), t in sorted(self._tags.items()) if fid == frame_id and t == tag]

    def load_page(
        self,
        url: str,
        body: Sequence[NodeSpec] = (),
        title: Optional[str] = None,
        frame_id: int = TOP_FRAME_ID,
    ) -> int:
        """Navigate and build ``<html><head/><body>...</body></html>``; returns BODY id."""
        self.navigate(url, frame_id=frame_id)
        html = self.element("HTML", frame_id=frame_id)
        head = self.element("HEAD", parent=html, frame_id=frame_id)
        if title is not None:
            self.element("TITLE", parent=head, text=title, frame_id=frame_id)
        body_id = self.element("BODY", parent=html, after=head, frame_id=frame_id)
        for spec in body:
            self._build(spec, body_id, frame_id)
        return body_id

    def _build(self, spec: NodeSpec, parent: int, frame_id: int) -> int:
        tag, attributes, text = spec[0], spec[1], spec[2]
        children: Sequence[NodeSpec] = spec[3] if len(spec) > 3 else ()
        node_id = self.element(tag, parent=parent, attributes=attributes, text=text, frame_id=frame_id)
        for child in children:
            self._build(child, node_id, frame_id)
        return node_id

    # ------------------------------------------------------------------
    # Storage / network
    # ------------------------------------------------------------------
    def storage(
        self,
        store: str,
        key: Optional[str],
        value: Any = None,
        action: str = STORAGE_SET,
        origin: str = DEFAULT_ORIGIN,
        frame_id: int = TOP_FRAME_ID,
    ) -> None:
        self._events.append(StorageChange(frame_id, self.now, store, origin, action, key, value))

    def resource(
        self,
        url: str,
        resource_type: str = "Fetch",
        method: str = "GET",
        status: int = 200,
        frame_id: int = TOP_FRAME_ID,
    ) -> None:
        self._events.append(ResourceLoad(frame_id, self.now, url, resource_type, method, status))

    def build(self) -> SessionLog:
        return SessionLog(self.session_id, self._frames, self._events)

    def _node_id(self) -> int:
        node_id = self._next_node_id
        self._next_node_id += 1
        return node_id


# ---------------------------------------------------------------------------
# Scenarios: each records one session and returns its window
# ---------------------------------------------------------------------------
Recorder = Callable[[SessionLogBuilder, random.Random, str], Tuple[int, int]]


def _jitter(rng: random.Random, b: SessionLogBuilder) -> int:
    return b.tick(rng.randint(5, 400))


def record_list_growth(b: SessionLogBuilder, rng: random.Random, state: str) -> Tuple[int, int]:
    """One-item list; two items added in state "3", one in state "2"."""
    b.load_page(f"{DEFAULT_ORIGIN}/list", [
        ("H1", {}, "Title 1"),
        ("DIV", {"id": "div1"}, "This is page 1"),
        ("UL", {}, None, [("LI", {"class": "li"}, "1")]),
    ], title="List")
    start = _jitter(rng, b)
    ul = b.find("UL")[0]
    for _ in range(int(state) - 1):
        b.element("LI", parent=ul, attributes={"class": "li"}, text="add")
        _jitter(rng, b)
    return start, b.tick()


def record_removal(b: SessionLogBuilder, rng: random.Random, state: str) -> Tuple[int, int]:
    """Three-item list; the first item removed once per remaining-count step."""
    b.load_page(f"{DEFAULT_ORIGIN}/remove", [
        ("H1", {}, "Remove Page"),
        ("UL", {}, None, [("LI", {"class": "li"}, str(i)) for i in range(1, 4)]),
    ])
    start = _jitter(rng, b)
    for _ in range(3 - int(state)):
        b.remove(b.find("LI")[0])
        _jitter(rng, b)
    return start, b.tick()


def record_slider(b: SessionLogBuilder, rng: random.Random, state: str) -> Tuple[int, int]:
    b.load_page(f"{DEFAULT_ORIGIN}/slider", [
        ("H1", {}, "Attributes Page"),
        ("DIV", {"class": "slider", "style": "width: 0;"}, None),
    ])
    start = _jitter(rng, b)
    b.set_attributes(b.find("DIV")[0], {"style": f"width: {state}%;"})
    return start, b.tick()


def record_storage(b: SessionLogBuilder, rng: random.Random, state: str) -> Tuple[int, int]:
    start = b.tick()
    b.load_page(f"{DEFAULT_ORIGIN}/storage?state={state}", [("H1", {}, "Storage Page")])
    b.storage(STORE_COOKIE, "test", state)
    _jitter(rng, b)
    if state == "1":
        b.storage(STORE_INDEXED_DB, "db1/store1/1", {"id": 1, "child": {"name": "Richard"}})
        b.storage(STORE_INDEXED_DB, "db1/store1/2", {"id": 2, "child": {"name": "Jill"}})
    else:
        b.storage(STORE_LOCAL_STORAGE, "test", "1")
        b.storage(STORE_LOCAL_STORAGE, "test2", "2")
        b.storage(STORE_LOCAL_STORAGE, "test2", action=STORAGE_REMOVE)
    b.set_attributes(b.find("BODY")[0], {"class": "db-ready"})
    return start, b.tick()


def record_redirect(b: SessionLogBuilder, rng: random.Random, state: str) -> Tuple[int, int]:
    start = b.tick()
    b.load_page(f"{DEFAULT_ORIGIN}/redirect", [("H1", {}, "Redirect Page")])
    _jitter(rng, b)
    b.load_page(f"{DEFAULT_ORIGIN}/redirect-end{state}", [("H1", {}, f"Page {state}")])
    return start, b.tick()


def record_resources(b: SessionLogBuilder, rng: random.Random, state: str) -> Tuple[int, int]:
    b.load_page(f"{DEFAULT_ORIGIN}/resources?state={state}", [("H1", {}, "Resources Page")])
    start = b.tick()
    b.resource(f"{DEFAULT_ORIGIN}/xhr?param={state}")
    _jitter(rng, b)
    b.element("DIV", parent=b.find("BODY")[0], attributes={"id": "ready"}, text=f"ok {state}")
    return start, b.tick()


SCENARIOS: Dict[str, Tuple[Recorder, Tuple[str, ...]]] = {
    "list":      (record_list_growth, ("3", "2")),
    "remove":    (record_removal, ("1", "2")),
    "slider":    (record_slider, ("100", "50")),
    "storage":   (record_storage, ("1", "2")),
    "redirect":  (record_redirect, ("1", "2")),
    "resources": (record_resources, ("1", "2")),
}


def generate_sessions(
    output_dir: str,
    scenario: str = "list",
    sessions_per_state: int = 3,
    seed: int = 42,
) -> str:
    """Write session logs and ``manifest.json`` for one scenario; returns the manifest path."""
    if scenario not in SCENARIOS:
        raise ValueError(f"Unknown scenario {scenario!r} (choose from {sorted(SCENARIOS)})")
    recorder, states = SCENARIOS[scenario]
    rng = random.Random(seed)
    out = Path(output_dir)

    entries: List[Dict[str, Any]] = []
    for state in states:
        for _ in range(sessions_per_state):
            # Use seeded rng for deterministic session ids
            session_id = str(uuid.UUID(int=rng.getrandbits(128), version=4))
            builder = SessionLogBuilder(
                session_id, start_time=BASE_TIME + rng.randint(0, 10_000_000),
            )
            start, end = recorder(builder, rng, state)
            log_name = f"logs/{session_id}.jsonl"
            dump_session_log(builder.build(), str(out / log_name))
            entries.append({
                "log": log_name,
                "tab_id": builder.tab_id,
                "window": [start, end],
                "state": state,
            })

    entries.sort(key=lambda e: (e["state"], e["log"]))
    manifest = {"generator_id": scenario, "sessions": entries}
    manifest_path = out / "manifest.json"
    out.mkdir(parents=True, exist_ok=True)
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)
    return str(manifest_path)


if __name__ == "__main__":
    path = generate_sessions("sessions", "list", 3, 42)
    print(f"Generated {path}")
