"""
State snapshot persistence.

Each state is written to ``<dir>/<generator id>/<state id>.json`` with a
SHA-256 over its canonical JSON (sorted keys, no whitespace, hash field
excluded), and ``<dir>/<generator id>/index.json`` maps state names to ids.
These files are what a downstream listener loads.
"""
from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List

from pagestate_engine.keys import canonical_json
from pagestate_engine.models import StateSnapshot

if TYPE_CHECKING:
    from pagestate_engine.generator import PageStateGenerator

logger = logging.getLogger(__name__)

INDEX_FILE = "index.json"


def compute_snapshot_hash(snapshot: StateSnapshot) -> str:
    """Compute SHA-256 of the canonical snapshot JSON."""
    canonical = canonical_json(snapshot.to_dict())
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def save_snapshot(snapshot: StateSnapshot, path: str) -> str:
    """Persist ``snapshot`` with its hash and return the hash."""
    snapshot_hash = compute_snapshot_hash(snapshot)
    data: Dict[str, Any] = snapshot.to_dict()
    data["snapshot_hash"] = snapshot_hash

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True)

    return snapshot_hash


def load_snapshot(path: str) -> StateSnapshot:
    """Load a snapshot file; a stored hash must match the content."""
    with open(path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = json.load(f)

    stored_hash = data.pop("snapshot_hash", "")
    snapshot = StateSnapshot.from_dict(data)

    expected = compute_snapshot_hash(snapshot)
    if stored_hash and stored_hash != expected:
        raise ValueError(
            f"Snapshot file {path} is corrupted! "
            f"Expected hash {expected}, got {stored_hash}"
        )
    return snapshot


# ---------------------------------------------------------------------------
# Generator-level files
# ---------------------------------------------------------------------------
def write_state_files(generator: "PageStateGenerator", directory: str) -> Dict[str, str]:
    """Write every state of ``generator``; returns ``{state name: hash}``."""
    root = Path(directory) / generator.id
    hashes: Dict[str, str] = {}
    index: Dict[str, str] = {}

    for name in sorted(generator.states_by_name):
        snapshot = StateSnapshot.from_dict(generator.export(name))
        hashes[name] = save_snapshot(snapshot, str(root / f"{snapshot.id}.json"))
        index[name] = snapshot.id
        logger.debug("State file written: name=%s id=%s hash=%s", name, snapshot.id, hashes[name])

    root.mkdir(parents=True, exist_ok=True)
    with open(root / INDEX_FILE, "w", encoding="utf-8") as f:
        json.dump({"generator_id": generator.id, "states": index}, f, indent=2, sort_keys=True)

    return hashes


def read_index(directory: str, generator_id: str) -> Dict[str, str]:
    """Map state name -> snapshot path for one generator; empty if absent."""
    root = Path(directory) / generator_id
    index_path = root / INDEX_FILE
    if not index_path.exists():
        return {}
    with open(index_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return {name: str(root / f"{state_id}.json") for name, state_id in data.get("states", {}).items()}


def read_state_files(generator: "PageStateGenerator", directory: str) -> List[str]:
    """Import every indexed state into ``generator``; returns imported names."""
    names: List[str] = []
    for name, path in sorted(read_index(directory, generator.id).items()):
        generator.import_state(name, load_snapshot(path))
        names.append(name)
    logger.info("Imported %d state(s) from %s", len(names), directory)
    return names
