"""
Trace extractor: turns one session's log inside its window into observations.

For every frame of the session's tab:
  * DOM    -> XPath facts that differ between ``window.start`` and ``window.end``
  * storage -> net value per (store, origin, key) changed inside the window
  * network -> one existence fact per distinct resource loaded in the window

A frame whose events cannot be replayed is reported in ``failures_by_frame``
and never aborts extraction of its sibling frames.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urldefrag

from pagestate_engine.dom import DomTree, ExtractionError
from pagestate_engine.keys import results_equal
from pagestate_engine.models import (
    ASSERT_RESOURCE,
    ASSERT_STORAGE,
    ASSERT_XPATH,
    STORAGE_CLEAR,
    STORAGE_REMOVE,
    Observation,
    ResourceLoad,
    StorageChange,
    Window,
)
from pagestate_engine.session_log import SessionLog

logger = logging.getLogger(__name__)

StorageKey = Tuple[str, str, str]   # (store, origin, key)


@dataclass(slots=True)
class SessionExtraction:
    """Observations of one session, grouped by frame id and keyed by assertion key."""

    session_id: str
    tab_id: int
    window: Window
    observations_by_frame: Dict[int, Dict[str, Observation]] = field(default_factory=dict)
    failures_by_frame: Dict[int, str] = field(default_factory=dict)

    def observation_count(self) -> int:
        return sum(len(v) for v in self.observations_by_frame.values())


def extract(
    log: SessionLog,
    tab_id: int,
    window: Window,
    frame_filter: Optional[Iterable[int]] = None,
) -> SessionExtraction:
    """Extract the observations of ``tab_id`` in ``log`` during ``window``."""
    wanted = set(frame_filter) if frame_filter is not None else None
    extraction = SessionExtraction(log.session_id, tab_id, window)

    for frame in log.frames_for_tab(tab_id):
        if wanted is not None and frame.frame_id not in wanted:
            continue
        try:
            observations = _extract_frame(log, frame.frame_id, window)
        except (ExtractionError, ValueError, KeyError, TypeError, RuntimeError) as exc:
            logger.warning(
                "Extraction failed: session=%s frame=%d: %s",
                log.session_id, frame.frame_id, exc,
            )
            extraction.failures_by_frame[frame.frame_id] = str(exc)
            continue
        extraction.observations_by_frame[frame.frame_id] = {o.key: o for o in observations}
        logger.debug(
            "Extracted session=%s frame=%d observations=%d url=%s",
            log.session_id, frame.frame_id, len(observations),
            log.final_url(frame.frame_id, window.end),
        )

    return extraction


def _extract_frame(log: SessionLog, frame_id: int, window: Window) -> List[Observation]:
    before = log.events(frame_id, end=window.start)
    during = log.events(frame_id, window.start, window.end)

    observations: List[Observation] = []
    observations.extend(dom_observations(before, during))
    observations.extend(storage_observations(before, during))
    observations.extend(resource_observations(during))
    return observations


# ---------------------------------------------------------------------------
# DOM
# ---------------------------------------------------------------------------
def dom_observations(before: List[Any], during: List[Any]) -> List[Observation]:
    """XPath facts that are new or changed at the end of the window."""
    tree = DomTree()
    tree.apply_all(before)
    start_facts = tree.facts()
    tree.apply_all(during)
    end_facts = tree.facts()

    out: List[Observation] = []
    for expr, value in end_facts.items():
        if expr in start_facts and results_equal(start_facts[expr], value):
            continue
        out.append(Observation(ASSERT_XPATH, [expr], value))
    for expr in start_facts:
        # count facts that disappeared are now zero
        if expr not in end_facts and expr.startswith("count("):
            out.append(Observation(ASSERT_XPATH, [expr], 0))
    return out


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
def _apply_storage(
    values: Dict[StorageKey, Any],
    change: StorageChange,
) -> List[StorageKey]:
    """Apply one change to ``values``; return the keys it touched."""
    if change.action == STORAGE_CLEAR:
        touched = [k for k in values if k[0] == change.store and k[1] == change.origin]
        for k in touched:
            del values[k]
        return touched

    k = (change.store, change.origin, change.key)
    if change.action == STORAGE_REMOVE or change.value is None:
        values.pop(k, None)
    else:
        values[k] = change.value
    return [k]


def storage_observations(before: List[Any], during: List[Any]) -> List[Observation]:
    """Net storage effect of the window, one fact per changed key."""
    values: Dict[StorageKey, Any] = {}
    for event in before:
        if isinstance(event, StorageChange):
            _apply_storage(values, event)
    start_values = dict(values)

    touched: Dict[StorageKey, None] = {}
    for event in during:
        if isinstance(event, StorageChange):
            for k in _apply_storage(values, event):
                touched[k] = None

    out: List[Observation] = []
    for k in touched:
        store, origin, key = k
        final = values.get(k)
        if results_equal(start_values.get(k), final):
            continue
        out.append(Observation(
            ASSERT_STORAGE,
            [{"type": store, "origin": origin, "key": key}],
            final,
        ))
    return out


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------
def resource_observations(during: List[Any]) -> List[Observation]:
    """One existence fact per distinct resource loaded in the window."""
    seen: Dict[str, Observation] = {}
    for event in during:
        if not isinstance(event, ResourceLoad):
            continue
        url, _fragment = urldefrag(event.url)
        obs = Observation(
            ASSERT_RESOURCE,
            [{"url": url, "method": event.method, "type": event.resource_type}],
            True,
        )
        seen.setdefault(obs.key, obs)
    return list(seen.values())
