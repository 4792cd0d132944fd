"""
Per-state consensus reduction.

A fact survives in a frame only if every participating session observed it
with a bit-identical result.  Participation is decided per frame: a session
that failed in a frame, or observed nothing there, does not vote on it.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from pagestate_engine.extractor import SessionExtraction
from pagestate_engine.keys import results_equal
from pagestate_engine.models import Observation

logger = logging.getLogger(__name__)

FrameAssertions = Dict[int, Dict[str, Observation]]


def reduce_frame(observation_sets: Sequence[Mapping[str, Observation]]) -> Dict[str, Observation]:
    """Key-wise intersection of ``observation_sets`` with equal results.

    Surviving records are taken from the first set.
    """
    if not observation_sets:
        return {}
    first = observation_sets[0]
    agreed: Dict[str, Observation] = {}
    for key, obs in first.items():
        for other in observation_sets[1:]:
            match = other.get(key)
            if match is None or not results_equal(match.result, obs.result):
                break
        else:
            agreed[key] = obs
    return agreed


def reduce_state(
    extractions: Iterable[SessionExtraction],
    baseline: Optional[FrameAssertions] = None,
) -> FrameAssertions:
    """
    Fold a state's sessions into one assertion map per frame.

    ``baseline`` holds imported assertions and votes first, as one more
    session that agrees with all of them.  An empty baseline frame still
    votes, so a frame that had no consensus stays empty.  Sessions vote in
    session id order, so the result does not depend on registration order.
    """
    participants: Dict[int, List[Mapping[str, Observation]]] = {}

    if baseline is not None:
        for frame_id, asserts in baseline.items():
            participants.setdefault(frame_id, []).append(asserts)

    for extraction in sorted(extractions, key=lambda e: e.session_id):
        for frame_id, observations in extraction.observations_by_frame.items():
            if frame_id in extraction.failures_by_frame or not observations:
                continue
            participants.setdefault(frame_id, []).append(observations)

    result: FrameAssertions = {}
    for frame_id in sorted(participants):
        sets = participants[frame_id]
        result[frame_id] = reduce_frame(sets)
        logger.debug(
            "Reduced frame=%d voters=%d agreed=%d",
            frame_id, len(sets), len(result[frame_id]),
        )
    return result
