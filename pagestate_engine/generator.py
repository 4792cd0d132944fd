"""
The page-state generator.

Sessions are registered as they finish recording, attached to a caller-named
state, and evaluated in one batch:

    generator = PageStateGenerator("checkout")
    session_id = generator.add_session(log, tab_id=1, window=(start, end))
    generator.add_state("cart-filled", session_id)
    generator.evaluate()
    generator.states_by_name["cart-filled"].asserts_by_frame_id[1]

``add_session`` and ``add_state`` may be called from several threads at once.
``evaluate`` is single-writer: callers serialise it per generator instance.
"""
from __future__ import annotations

import hashlib
import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pagestate_engine.extractor import SessionExtraction, extract
from pagestate_engine.keys import canonical_json
from pagestate_engine.models import (
    DEFAULT_MAX_WORKERS,
    Observation,
    PageState,
    StateSnapshot,
    Window,
)
from pagestate_engine.reducer import FrameAssertions, reduce_state
from pagestate_engine.session_log import SessionLog

logger = logging.getLogger(__name__)

WindowLike = Union[Window, Sequence[int]]


@dataclass(frozen=True, slots=True)
class RegisteredSession:
    """A session handed to the generator; extraction is deferred to ``evaluate``."""
    log: SessionLog
    tab_id: int
    window: Window


def state_id_for(generator_id: str, name: str) -> str:
    """Deterministic id of a state created by ``add_state``."""
    digest = hashlib.sha256(canonical_json([generator_id, name]).encode("utf-8"))
    return digest.hexdigest()[:16]


def _as_window(window: WindowLike) -> Window:
    if isinstance(window, Window):
        return window
    if len(window) != 2:
        raise ValueError(f"window must be (start, end), got {window!r}")
    start, end = window
    return Window(int(start), int(end))


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------
class PageStateGenerator:
    """
    Owns the state table, the session table and the per-session extraction
    cache.  Every ``evaluate`` re-derives each state's consensus from its
    full current session set (plus any imported baseline).
    """

    def __init__(self, generator_id: str, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.id: str = generator_id
        self.max_workers: int = max_workers

        self._lock = threading.Lock()
        self._sessions: Dict[str, RegisteredSession] = {}
        self._state_name_by_session: Dict[str, str] = {}
        self._live_sessions_by_state: Dict[str, List[str]] = {}
        self._states: Dict[str, PageState] = {}
        self._baselines: Dict[str, FrameAssertions] = {}
        self._extractions: Dict[str, SessionExtraction] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def states_by_name(self) -> Mapping[str, PageState]:
        """Read-only view of every state, detached from the generator's tables."""
        with self._lock:
            return MappingProxyType(
                {name: state.frozen_copy() for name, state in self._states.items()}
            )

    def add_session(self, log: SessionLog, tab_id: int, window: WindowLike) -> str:
        """Register a recorded session; returns its session id."""
        window = _as_window(window)
        if not log.has_tab(tab_id):
            raise ValueError(
                f"Unknown tab_id {tab_id} for session {log.session_id!r} "
                f"(tabs: {log.tab_ids()})"
            )

        with self._lock:
            if log.session_id in self._sessions:
                raise ValueError(f"Duplicate session_id: {log.session_id!r}")
            self._sessions[log.session_id] = RegisteredSession(log, tab_id, window)

        logger.info(
            "Session added: id=%s tab=%d window=[%d, %d)",
            log.session_id, tab_id, window.start, window.end,
        )
        return log.session_id

    def add_state(self, name: str, session_id: str) -> PageState:
        """Attach a registered session to state ``name``, creating it on first use."""
        with self._lock:
            if session_id not in self._sessions:
                raise KeyError(f"Unknown session_id: {session_id!r}")

            current = self._state_name_by_session.get(session_id)
            if current is not None and current != name:
                raise ValueError(
                    f"Session {session_id!r} is already attached to state {current!r}"
                )

            state = self._states.get(name)
            if state is None:
                state = PageState(name=name, id=state_id_for(self.id, name))
                self._states[name] = state
                logger.info("State created: name=%s id=%s", name, state.id)

            if current is None:
                self._state_name_by_session[session_id] = name
                self._live_sessions_by_state.setdefault(name, []).append(session_id)
                state.session_ids.add(session_id)
            return state.frozen_copy()

    def evaluate(self, parallel: bool = True) -> None:
        """Extract pending sessions and recompute every state's consensus."""
        with self._lock:
            pending = [
                (sid, self._sessions[sid])
                for sid in sorted(self._state_name_by_session)
                if sid not in self._extractions
            ]
            plan: List[Tuple[str, List[str], Optional[FrameAssertions]]] = [
                (name, list(self._live_sessions_by_state.get(name, [])), self._baselines.get(name))
                for name in sorted(self._states)
            ]

        if pending:
            logger.info("Extracting %d session(s)", len(pending))
            extracted = self._extract_all(pending, parallel)
            with self._lock:
                self._extractions.update(extracted)

        for name, session_ids, baseline in plan:
            extractions = [self._extractions[sid] for sid in session_ids]
            if not extractions and baseline is None:
                asserts: FrameAssertions = {}
            else:
                asserts = reduce_state(extractions, baseline)
            with self._lock:
                state = self._states[name]
                state.asserts_by_frame_id = asserts
            logger.info(
                "State evaluated: name=%s sessions=%d frames=%d assertions=%d",
                name, len(state.session_ids), len(asserts), state.assertion_count(),
            )

    def export(self, name: str) -> Dict[str, Any]:
        """Snapshot of one state: ordered ``[frame_id, type, args, result]`` rows."""
        state = self._require_state(name)
        rows = [
            [frame_id, a.type, list(a.args), a.result]
            for frame_id, asserts in state.asserts_by_frame_id.items()
            for a in asserts.values()
        ]
        rows.sort(key=lambda row: (row[0], row[1], canonical_json(row[2])))
        snapshot = StateSnapshot(
            id=state.id,
            assertions=rows,
            sessions=sorted(state.session_ids),
            frames=sorted(state.asserts_by_frame_id),
        )
        return snapshot.to_dict()

    def import_state(self, name: str, exported: Union[Dict[str, Any], StateSnapshot]) -> PageState:
        """Seed or replace ``name``'s baseline from an exported snapshot."""
        snapshot = exported if isinstance(exported, StateSnapshot) else StateSnapshot.from_dict(exported)

        # frames with no rows still vote, with an empty set
        baseline: FrameAssertions = {frame_id: {} for frame_id in snapshot.frames}
        for frame_id, type_, args, result in snapshot.assertions:
            obs = Observation(type_, list(args), result)
            baseline.setdefault(frame_id, {})[obs.key] = obs

        with self._lock:
            state = self._states.get(name)
            if state is None:
                state = PageState(name=name, id=snapshot.id)
                self._states[name] = state
            else:
                state.id = snapshot.id
            state.session_ids.update(snapshot.sessions)
            self._baselines[name] = baseline
            state.asserts_by_frame_id = {fid: dict(asserts) for fid, asserts in baseline.items()}
            view = state.frozen_copy()

        logger.info(
            "State imported: name=%s id=%s sessions=%d assertions=%d",
            name, snapshot.id, len(snapshot.sessions), len(snapshot.assertions),
        )
        return view

    def extraction_for(self, session_id: str) -> Optional[SessionExtraction]:
        """Cached extraction of a session, if it has been evaluated."""
        return self._extractions.get(session_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require_state(self, name: str) -> PageState:
        state = self._states.get(name)
        if state is None:
            raise KeyError(f"Unknown state: {name!r}")
        return state

    def _extract_all(
        self,
        pending: List[Tuple[str, RegisteredSession]],
        parallel: bool,
    ) -> Dict[str, SessionExtraction]:
        def run(item: Tuple[str, RegisteredSession]) -> SessionExtraction:
            _sid, session = item
            return extract(session.log, session.tab_id, session.window)

        if parallel and self.max_workers > 1 and len(pending) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(pool.map(run, pending))
        else:
            results = [run(item) for item in pending]

        out: Dict[str, SessionExtraction] = {}
        for (sid, _session), extraction in zip(pending, results):
            if extraction.failures_by_frame:
                logger.warning(
                    "Session %s degraded in frame(s) %s",
                    sid, sorted(extraction.failures_by_frame),
                )
            out[sid] = extraction
        return out


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ManifestEntry:
    log_path: str
    tab_id: int
    window: Window
    state: str


def load_manifest(path: str) -> Tuple[str, List[ManifestEntry]]:
    """
    Read a session manifest::

        {"generator_id": "id",
         "sessions": [{"log": "s1.jsonl", "tab_id": 1, "window": [s, e], "state": "1"}]}

    Log paths are relative to the manifest's directory.
    """
    base = Path(path).parent
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    entries: List[ManifestEntry] = []
    for index, item in enumerate(data.get("sessions", [])):
        try:
            entries.append(ManifestEntry(
                log_path=str(base / item["log"]),
                tab_id=int(item["tab_id"]),
                window=_as_window(item["window"]),
                state=str(item["state"]),
            ))
        except (KeyError, ValueError, TypeError) as exc:
            raise ValueError(f"Invalid manifest entry #{index}: {exc}") from exc
    return str(data.get("generator_id", Path(path).stem)), entries


def _build_generator(
    manifest_path: str,
    import_dir: Optional[str],
    max_workers: int,
) -> PageStateGenerator:
    from pagestate_engine.session_log import load_session_log
    from pagestate_engine.snapshot import read_state_files

    generator_id, entries = load_manifest(manifest_path)
    generator = PageStateGenerator(generator_id, max_workers=max_workers)

    if import_dir:
        logger.info("Importing states from %s", import_dir)
        read_state_files(generator, import_dir)

    for entry in entries:
        log = load_session_log(entry.log_path)
        session_id = generator.add_session(log, entry.tab_id, entry.window)
        generator.add_state(entry.state, session_id)

    generator.evaluate()
    return generator


# ---------------------------------------------------------------------------
# High-level runners
# ---------------------------------------------------------------------------
def run_generator(
    manifest_path: str,
    output_dir: str,
    import_dir: Optional[str] = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> Dict[str, str]:
    """
    Evaluate every session in the manifest and write one state file per state.
    Returns ``{state name: snapshot hash}``.
    """
    from pagestate_engine.snapshot import write_state_files

    logger.info("Loading manifest from %s", manifest_path)
    generator = _build_generator(manifest_path, import_dir, max_workers)
    hashes = write_state_files(generator, output_dir)
    logger.info("Wrote %d state file(s) to %s", len(hashes), output_dir)
    return hashes


def verify_generator(
    manifest_path: str,
    output_dir: str,
    import_dir: Optional[str] = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> bool:
    """
    Re-evaluate the manifest from scratch and check that every state file in
    ``output_dir`` is reproduced exactly.  Returns True if all hashes match.
    """
    from pagestate_engine.snapshot import compute_snapshot_hash, read_index, load_snapshot

    logger.info("Verify mode: re-evaluating %s", manifest_path)
    generator = _build_generator(manifest_path, import_dir, max_workers)
    index = read_index(output_dir, generator.id)

    ok = set(index) == set(generator.states_by_name)
    if not ok:
        logger.error(
            "Verify FAILED: states on disk %s != evaluated %s",
            sorted(index), sorted(generator.states_by_name),
        )
        return False

    for name, path in sorted(index.items()):
        expected = load_snapshot(path)
        actual = StateSnapshot.from_dict(generator.export(name))
        expected_hash = compute_snapshot_hash(expected)
        actual_hash = compute_snapshot_hash(actual)
        if expected_hash == actual_hash:
            logger.info("Verify PASSED: state=%s hash=%s", name, actual_hash)
        else:
            logger.error(
                "Verify FAILED: state=%s expected=%s actual=%s",
                name, expected_hash, actual_hash,
            )
            ok = False
    return ok
