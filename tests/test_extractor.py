"""
Unit tests for the trace extractor.
"""
import random

from pagestate_engine import extractor
from pagestate_engine.extractor import extract
from pagestate_engine.generate_sessions import (
    DEFAULT_ORIGIN,
    SessionLogBuilder,
    record_redirect,
    record_removal,
)
from pagestate_engine.models import (
    ASSERT_RESOURCE,
    ASSERT_STORAGE,
    ASSERT_XPATH,
    DOM_REMOVED,
    STORAGE_CLEAR,
    STORAGE_REMOVE,
    STORE_COOKIE,
    STORE_LOCAL_STORAGE,
    STORE_SESSION_STORAGE,
    DomChange,
    FrameRecord,
    Window,
)


# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------
def _xpaths(extraction, frame_id=1):
    return {
        o.args[0]: o.result
        for o in extraction.observations_by_frame[frame_id].values()
        if o.type == ASSERT_XPATH
    }


def _of_type(extraction, type_, frame_id=1):
    return [o for o in extraction.observations_by_frame[frame_id].values() if o.type == type_]


def _list_page(session_id="s1") -> SessionLogBuilder:
    b = SessionLogBuilder(session_id)
    b.load_page(f"{DEFAULT_ORIGIN}/list", [
        ("H1", {}, "Title 1"),
        ("UL", {}, None, [("LI", {}, "1")]),
    ])
    return b


# -----------------------------------------------------------------------
# Test: Window scoping
# -----------------------------------------------------------------------
class TestWindow:
    def test_only_changes_inside_window(self):
        b = _list_page()
        start = b.tick()
        b.element("LI", parent=b.find("UL")[0], text="2")
        end = b.tick()
        # at window.end: belongs to the next window
        b.element("LI", parent=b.find("UL")[0], text="3")

        facts = _xpaths(extract(b.build(), 1, Window(start, end)))
        assert facts["count(/HTML/BODY/UL/LI)"] == 2
        assert facts['count(//LI[text()="2"])'] == 1
        assert 'count(//LI[text()="3"])' not in facts

    def test_unchanged_facts_not_reported(self):
        b = _list_page()
        start = b.tick()
        b.element("LI", parent=b.find("UL")[0], text="2")
        end = b.tick()

        facts = _xpaths(extract(b.build(), 1, Window(start, end)))
        assert "count(/HTML/BODY/H1)" not in facts
        assert "string(/HTML/BODY/H1)" not in facts
        assert "string(/HTML/BODY/UL/LI)" not in facts

    def test_quiet_window_has_no_observations(self):
        b = _list_page()
        start = b.tick()
        end = b.tick()
        extraction = extract(b.build(), 1, Window(start, end))
        assert extraction.observations_by_frame == {1: {}}
        assert extraction.observation_count() == 0

    def test_vanished_count_is_zero(self):
        b = SessionLogBuilder("s1")
        start, end = record_removal(b, random.Random(1), "1")
        facts = _xpaths(extract(b.build(), 1, Window(start, end)))
        assert facts["count(/HTML/BODY/UL/LI)"] == 1
        assert facts['count(//LI[text()="1"])'] == 0
        assert facts['count(//LI[text()="2"])'] == 0

    def test_redirect_inside_window(self):
        b = SessionLogBuilder("s1")
        start, end = record_redirect(b, random.Random(1), "2")
        facts = _xpaths(extract(b.build(), 1, Window(start, end)))
        assert facts["string(/HTML/BODY/H1)"] == "Page 2"
        assert facts['count(//H1[text()="Page 2"])'] == 1
        assert 'count(//H1[text()="Redirect Page"])' not in facts


# -----------------------------------------------------------------------
# Test: Storage
# -----------------------------------------------------------------------
class TestStorage:
    def _storage(self, extraction):
        return {
            (o.args[0]["type"], o.args[0]["key"]): o.result
            for o in _of_type(extraction, ASSERT_STORAGE)
        }

    def test_net_effect(self):
        b = _list_page()
        b.storage(STORE_COOKIE, "same", "1")
        b.storage(STORE_LOCAL_STORAGE, "x", "1")
        start = b.tick()
        b.storage(STORE_COOKIE, "same", "1")
        b.storage(STORE_LOCAL_STORAGE, "tmp", "2")
        b.storage(STORE_LOCAL_STORAGE, "tmp", action=STORAGE_REMOVE)
        b.storage(STORE_SESSION_STORAGE, "c", "2")
        b.storage(STORE_SESSION_STORAGE, "c", "3")
        end = b.tick()

        values = self._storage(extract(b.build(), 1, Window(start, end)))
        assert values == {(STORE_SESSION_STORAGE, "c"): "3"}

    def test_clear_reports_removed_keys(self):
        b = _list_page()
        b.storage(STORE_LOCAL_STORAGE, "x", "1")
        b.storage(STORE_LOCAL_STORAGE, "y", "2", origin="http://other")
        start = b.tick()
        b.storage(STORE_LOCAL_STORAGE, None, action=STORAGE_CLEAR)
        end = b.tick()

        values = self._storage(extract(b.build(), 1, Window(start, end)))
        assert values == {(STORE_LOCAL_STORAGE, "x"): None}

    def test_args_shape(self):
        b = _list_page()
        start = b.tick()
        b.storage(STORE_COOKIE, "test", "1")
        end = b.tick()

        (obs,) = _of_type(extract(b.build(), 1, Window(start, end)), ASSERT_STORAGE)
        assert obs.args == [{"type": STORE_COOKIE, "origin": DEFAULT_ORIGIN, "key": "test"}]
        assert obs.result == "1"

    def test_structured_values_kept(self):
        b = _list_page()
        start = b.tick()
        b.storage("indexedDB", "db/store/1", {"id": 1, "child": {"name": "Jill"}})
        end = b.tick()

        (obs,) = _of_type(extract(b.build(), 1, Window(start, end)), ASSERT_STORAGE)
        assert obs.result == {"id": 1, "child": {"name": "Jill"}}


# -----------------------------------------------------------------------
# Test: Resources
# -----------------------------------------------------------------------
class TestResources:
    def test_distinct_resources_in_window(self):
        b = _list_page()
        b.resource(f"{DEFAULT_ORIGIN}/before.js", "Script")
        start = b.tick()
        b.resource(f"{DEFAULT_ORIGIN}/api?q=1#top")
        b.resource(f"{DEFAULT_ORIGIN}/api?q=1#bottom")
        b.resource(f"{DEFAULT_ORIGIN}/api?q=1", method="POST")
        end = b.tick()

        resources = _of_type(extract(b.build(), 1, Window(start, end)), ASSERT_RESOURCE)
        args = sorted((o.args[0]["url"], o.args[0]["method"]) for o in resources)
        assert args == [
            (f"{DEFAULT_ORIGIN}/api?q=1", "GET"),
            (f"{DEFAULT_ORIGIN}/api?q=1", "POST"),
        ]
        assert all(o.result is True for o in resources)

    def test_query_string_distinguishes(self):
        b = _list_page()
        start = b.tick()
        b.resource(f"{DEFAULT_ORIGIN}/xhr?param=1")
        b.resource(f"{DEFAULT_ORIGIN}/xhr?param=2")
        end = b.tick()

        resources = _of_type(extract(b.build(), 1, Window(start, end)), ASSERT_RESOURCE)
        assert len(resources) == 2


# -----------------------------------------------------------------------
# Test: Frames
# -----------------------------------------------------------------------
class TestFrames:
    def _two_frames(self) -> SessionLogBuilder:
        b = _list_page()
        b.add_frame(2)
        b.load_page(f"{DEFAULT_ORIGIN}/frame", [("P", {}, "inner")], frame_id=2)
        return b

    def test_frames_observed_separately(self):
        b = self._two_frames()
        start = b.tick()
        b.element("LI", parent=b.find("UL")[0], text="2")
        b.element("P", parent=b.find("BODY", frame_id=2)[0], text="more", frame_id=2)
        end = b.tick()

        extraction = extract(b.build(), 1, Window(start, end))
        assert sorted(extraction.observations_by_frame) == [1, 2]
        assert _xpaths(extraction, 1)["count(/HTML/BODY/UL/LI)"] == 2
        assert _xpaths(extraction, 2)["count(/HTML/BODY/P)"] == 2

    def test_failure_isolated_to_frame(self):
        b = self._two_frames()
        start = b.tick()
        b.element("LI", parent=b.find("UL")[0], text="2")
        b._events.append(DomChange(2, b.now, DOM_REMOVED, 9999))
        end = b.tick()

        extraction = extract(b.build(), 1, Window(start, end))
        assert 2 in extraction.failures_by_frame
        assert "9999" in extraction.failures_by_frame[2]
        assert 2 not in extraction.observations_by_frame
        assert _xpaths(extraction, 1)["count(/HTML/BODY/UL/LI)"] == 2

    def test_recursion_error_isolated_to_frame(self, monkeypatch):
        real = extractor.dom_observations

        def dom_observations(before, during):
            if any(event.frame_id == 2 for event in before):
                raise RecursionError("maximum recursion depth exceeded")
            return real(before, during)

        monkeypatch.setattr("pagestate_engine.extractor.dom_observations", dom_observations)
        b = self._two_frames()
        start = b.tick()
        b.element("LI", parent=b.find("UL")[0], text="2")
        end = b.tick()

        extraction = extract(b.build(), 1, Window(start, end))
        assert "recursion" in extraction.failures_by_frame[2]
        assert 2 not in extraction.observations_by_frame
        assert _xpaths(extraction, 1)["count(/HTML/BODY/UL/LI)"] == 2

    def test_frame_filter(self):
        b = self._two_frames()
        start = b.tick()
        b.element("LI", parent=b.find("UL")[0], text="2")
        end = b.tick()

        extraction = extract(b.build(), 1, Window(start, end), frame_filter=[2])
        assert list(extraction.observations_by_frame) == [2]

    def test_other_tab_ignored(self):
        b = _list_page()
        b._frames.append(FrameRecord(7, tab_id=2))
        start = b.tick()
        b.element("LI", parent=b.find("UL")[0], text="2")
        end = b.tick()

        extraction = extract(b.build(), 1, Window(start, end))
        assert list(extraction.observations_by_frame) == [1]
