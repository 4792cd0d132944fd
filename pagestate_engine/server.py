"""
HTTP inspector for a page-state generator.

Lets a person (or a downstream listener) register sessions, attach them to
states, evaluate, and fetch state snapshots as JSON.

Usage:
    python -m pagestate_engine.cli serve --generator-id checkout
    # GET http://localhost:5050/api/states
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from pagestate_engine.generator import PageStateGenerator
from pagestate_engine.models import PageState
from pagestate_engine.session_log import load_session_log, session_log_from_records

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------
def _state_summary(state: PageState) -> Dict[str, Any]:
    return {
        "name": state.name,
        "id": state.id,
        "sessions": sorted(state.session_ids),
        "assertions_by_frame": {
            str(frame_id): len(asserts)
            for frame_id, asserts in sorted(state.asserts_by_frame_id.items())
        },
    }


def _error(message: str, status: int):
    return jsonify({"error": message}), status


# -----------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------
def create_app(generator: Optional[PageStateGenerator] = None) -> Flask:
    app = Flask(__name__)
    gen = generator or PageStateGenerator("default")
    app.config["GENERATOR"] = gen
    # evaluate is single-writer per generator
    evaluate_lock = threading.Lock()

    @app.route("/api/states")
    def list_states():
        return jsonify([_state_summary(s) for _, s in sorted(gen.states_by_name.items())])

    @app.route("/api/states/<name>")
    def get_state(name: str):
        if name not in gen.states_by_name:
            return _error(f"Unknown state: {name}", 404)
        return jsonify(gen.export(name))

    @app.route("/api/pagestate/<state_id>")
    def get_state_by_id(state_id: str):
        for name, state in gen.states_by_name.items():
            if state.id == state_id:
                return jsonify(gen.export(name))
        return _error(f"Unknown state id: {state_id}", 404)

    @app.route("/api/sessions", methods=["POST"])
    def add_session():
        data = request.get_json(silent=True) or {}
        try:
            if "log" in data:
                log = load_session_log(data["log"])
            else:
                log = session_log_from_records(data.get("records", []))
            session_id = gen.add_session(log, int(data["tab_id"]), data["window"])
        except (KeyError, ValueError, TypeError, OSError) as exc:
            return _error(str(exc), 400)
        return jsonify({"session_id": session_id}), 201

    @app.route("/api/states", methods=["POST"])
    def add_state():
        data = request.get_json(silent=True) or {}
        if "name" not in data or "session_id" not in data:
            return _error("name and session_id are required", 400)
        try:
            state = gen.add_state(str(data["name"]), str(data["session_id"]))
        except KeyError as exc:
            return _error(str(exc.args[0]), 404)
        except ValueError as exc:
            return _error(str(exc), 400)
        return jsonify(_state_summary(state))

    @app.route("/api/evaluate", methods=["POST"])
    def evaluate():
        with evaluate_lock:
            gen.evaluate()
        return jsonify([_state_summary(s) for _, s in sorted(gen.states_by_name.items())])

    @app.route("/api/states/<name>/import", methods=["POST"])
    def import_state(name: str):
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return _error("Expected a snapshot object", 400)
        try:
            state = gen.import_state(name, data)
        except (KeyError, ValueError, TypeError) as exc:
            return _error(f"Invalid snapshot: {exc}", 400)
        return jsonify(_state_summary(state))

    return app
