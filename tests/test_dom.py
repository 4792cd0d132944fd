"""
Unit tests for DOM replay and XPath facts.
"""
import pytest

from pagestate_engine.dom import DomTree, ExtractionError, xpath_literal
from pagestate_engine.generate_sessions import SessionLogBuilder
from pagestate_engine.models import (
    DOM_ADDED,
    DOM_ATTRIBUTE,
    DOM_REMOVED,
    DOM_TEXT,
    DomChange,
)


# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------
def _tree(builder: SessionLogBuilder) -> DomTree:
    tree = DomTree()
    tree.apply_all(builder.build().events(1))
    return tree


def _page(*body, title=None) -> SessionLogBuilder:
    b = SessionLogBuilder("dom")
    b.load_page("http://localhost/page", list(body), title=title)
    return b


# -----------------------------------------------------------------------
# Test: XPath literals
# -----------------------------------------------------------------------
class TestXpathLiteral:
    def test_plain(self):
        assert xpath_literal("abc") == '"abc"'

    def test_double_quote(self):
        assert xpath_literal('a"b') == "'a\"b'"

    def test_both_quotes(self):
        assert xpath_literal("x\"y'z") == "concat(\"x\", '\"', \"y'z\")"


# -----------------------------------------------------------------------
# Test: Facts
# -----------------------------------------------------------------------
class TestFacts:
    def test_simple_document(self):
        facts = _tree(_page(("H1", {}, "Title"))).facts()
        assert facts == {
            "count(/HTML)": 1,
            "count(/HTML/HEAD)": 1,
            "count(/HTML/BODY)": 1,
            "count(/HTML/BODY/H1)": 1,
            "string(/HTML/BODY/H1)": "Title",
            'count(//H1[text()="Title"])': 1,
        }

    def test_repeated_elements_counted(self):
        facts = _tree(_page(("UL", {}, None, [("LI", {}, "a"), ("LI", {}, "b")]))).facts()
        assert facts["count(/HTML/BODY/UL/LI)"] == 2
        # first element wins the string() fact
        assert facts["string(/HTML/BODY/UL/LI)"] == "a"
        assert "string(/HTML/BODY/UL)" not in facts

    def test_attribute_predicates_sorted(self):
        facts = _tree(_page(("DIV", {"style": "w", "class": "c"}, None))).facts()
        assert facts['count(/HTML/BODY/DIV[@class="c"][@style="w"])'] == 1

    def test_whitespace_normalized(self):
        facts = _tree(_page(("P", {}, "  hello \n  world "))).facts()
        assert facts["string(/HTML/BODY/P)"] == "hello world"
        assert facts['count(//P[text()="hello world"])'] == 1

    def test_script_text_ignored(self):
        facts = _tree(_page(("SCRIPT", {}, "var x = 1;"))).facts()
        assert facts["count(/HTML/BODY/SCRIPT)"] == 1
        assert not any(k.startswith("string(") for k in facts)
        assert not any("text()" in k for k in facts)

    def test_text_predicate_per_text_node(self):
        b = _page(("P", {}, None))
        p = b.find("P")[0]
        b.text_node("a", p)
        b.text_node(" b ", p)
        b.text_node("a", p)
        facts = _tree(b).facts()
        assert facts['count(//P[text()="a"])'] == 1
        assert facts['count(//P[text()="b"])'] == 1
        assert not any('text()="ab' in k or 'text()="a b' in k for k in facts)
        assert facts["string(/HTML/BODY/P)"] == "a ba"

    def test_deep_nesting(self):
        b = _page()
        parent = b.find("BODY")[0]
        for _ in range(1500):
            parent = b.element("DIV", parent=parent)
        b.text_node("leaf", parent)
        facts = _tree(b).facts()
        path = "/HTML/BODY" + "/DIV" * 1500
        assert facts[f"count({path})"] == 1
        assert facts[f"string({path})"] == "leaf"
        assert facts['count(//DIV[text()="leaf"])'] == 1

    def test_tags_uppercased(self):
        b = SessionLogBuilder("dom")
        b.navigate("http://localhost/")
        b.element("html")
        assert _tree(b).facts() == {"count(/HTML)": 1}


# -----------------------------------------------------------------------
# Test: Replay
# -----------------------------------------------------------------------
class TestReplay:
    def test_remove_drops_subtree(self):
        b = _page(("UL", {}, None, [("LI", {}, "1")]))
        b.remove(b.find("UL")[0])
        facts = _tree(b).facts()
        assert "count(/HTML/BODY/UL)" not in facts
        assert "count(/HTML/BODY/UL/LI)" not in facts

    def test_remove_deep_subtree(self):
        b = _page()
        top = parent = b.element("DIV", parent=b.find("BODY")[0])
        for _ in range(1500):
            parent = b.element("DIV", parent=parent)
        b.remove(top)
        assert _tree(b).facts() == {
            "count(/HTML)": 1,
            "count(/HTML/HEAD)": 1,
            "count(/HTML/BODY)": 1,
        }

    def test_text_change(self):
        b = SessionLogBuilder("dom")
        b.load_page("http://localhost/")
        h1 = b.element("H1", parent=b.find("BODY")[0])
        text = b.text_node("old", h1)
        b.set_text(text, "new")
        assert _tree(b).facts()["string(/HTML/BODY/H1)"] == "new"

    def test_attribute_removed_with_none(self):
        b = _page(("DIV", {"class": "x"}, None))
        b.set_attributes(b.find("DIV")[0], {"class": None})
        facts = _tree(b).facts()
        assert facts["count(/HTML/BODY/DIV)"] == 1
        assert not any("@class" in k for k in facts)

    def test_insert_after_sibling(self):
        b = _page(("P", {}, "first"), ("P", {}, "last"))
        first = b.find("P")[0]
        b.element("P", parent=b.find("BODY")[0], text="middle", after=first)
        tree = _tree(b)
        assert tree.facts()["count(/HTML/BODY/P)"] == 3

    def test_readd_moves_node(self):
        b = _page(("DIV", {}, None), ("UL", {}, None, [("LI", {}, "x")]))
        li = b.find("LI")[0]
        b._events.append(DomChange(1, b.now, DOM_ADDED, li, parent_node_id=b.find("DIV")[0]))
        facts = _tree(b).facts()
        assert "count(/HTML/BODY/UL/LI)" not in facts
        assert facts["count(/HTML/BODY/DIV/LI)"] == 1

    def test_navigation_resets_document(self):
        b = _page(("H1", {}, "One"))
        b.load_page("http://localhost/two", [("H2", {}, "Two")])
        tree = _tree(b)
        facts = tree.facts()
        assert "count(/HTML/BODY/H1)" not in facts
        assert facts["string(/HTML/BODY/H2)"] == "Two"
        assert tree.url == "http://localhost/two"


# -----------------------------------------------------------------------
# Test: Inconsistent logs
# -----------------------------------------------------------------------
class TestInconsistentLogs:
    def test_move_under_own_descendant(self):
        b = _page(("UL", {}, None, [("LI", {}, "x")]))
        b._events.append(DomChange(1, b.now, DOM_ADDED, b.find("UL")[0], parent_node_id=b.find("LI")[0]))
        with pytest.raises(ExtractionError, match="own descendant"):
            _tree(b)

    def test_unknown_parent(self):
        tree = DomTree()
        with pytest.raises(ExtractionError, match="unknown parent"):
            tree.apply(DomChange(1, 0, DOM_ADDED, 5, parent_node_id=99, tag="DIV"))

    def test_unknown_node_removed(self):
        with pytest.raises(ExtractionError, match="unknown node"):
            DomTree().apply(DomChange(1, 0, DOM_REMOVED, 7))

    def test_unknown_node_attribute(self):
        with pytest.raises(ExtractionError):
            DomTree().apply(DomChange(1, 0, DOM_ATTRIBUTE, 7, attributes={"a": "b"}))

    def test_text_change_on_element(self):
        tree = DomTree()
        tree.apply(DomChange(1, 0, DOM_ADDED, 1, tag="HTML"))
        with pytest.raises(ExtractionError, match="targets element"):
            tree.apply(DomChange(1, 1, DOM_TEXT, 1, text="x"))

    def test_node_without_tag_or_text(self):
        with pytest.raises(ExtractionError, match="neither tag nor text"):
            DomTree().apply(DomChange(1, 0, DOM_ADDED, 1))

    def test_unknown_previous_sibling(self):
        tree = DomTree()
        with pytest.raises(ExtractionError, match="unknown sibling"):
            tree.apply(DomChange(1, 0, DOM_ADDED, 1, previous_sibling_id=42, tag="HTML"))

    def test_invalid_action_rejected(self):
        with pytest.raises(ValueError, match="Invalid DOM action"):
            DomChange(1, 0, "moved", 1)
