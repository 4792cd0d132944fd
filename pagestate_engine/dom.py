"""
DOM replay for one frame.

Rebuilds the document from recorded mutations and describes it as XPath
facts.  Facts are keyed by their XPath expression:

    count(/HTML/BODY/UL/LI)                          -> 3
    count(/HTML/BODY/DIV[@class="slider"])           -> 1
    string(/HTML/BODY/H1)                            -> "Title 1"
    count(//H1[text()="Title 1"])                    -> 1

``text()`` predicates are emitted once per distinct own text node of an
element, with whitespace runs collapsed and trimmed.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from pagestate_engine.models import (
    DOM_ADDED,
    DOM_ATTRIBUTE,
    DOM_REMOVED,
    DOM_TEXT,
    DomChange,
    NavigationEvent,
)

logger = logging.getLogger(__name__)

# Elements whose text is code, not content.
_TEXTLESS_TAGS = frozenset({"SCRIPT", "STYLE", "NOSCRIPT", "TEMPLATE"})


class ExtractionError(Exception):
    """The recorded changes for a frame cannot be replayed consistently."""


class _Node:
    __slots__ = ("node_id", "tag", "text", "attributes", "parent", "children")

    def __init__(
        self,
        node_id: int,
        tag: Optional[str] = None,
        text: Optional[str] = None,
        attributes: Optional[Dict[str, str]] = None,
    ) -> None:
        self.node_id = node_id
        self.tag = tag.upper() if tag else None
        self.text = text
        self.attributes: Dict[str, str] = dict(attributes or {})
        self.parent: Optional[_Node] = None
        self.children: List[_Node] = []

    @property
    def is_element(self) -> bool:
        return self.tag is not None


def _normalize(text: str) -> str:
    return " ".join(text.split())


def xpath_literal(value: str) -> str:
    """Quote ``value`` as an XPath 1.0 string literal."""
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    parts = value.split('"')
    return "concat(" + ", '\"', ".join(f'"{p}"' for p in parts) + ")"


class DomTree:
    """
    Cumulative document state of one frame.

    Usage:
        tree = DomTree()
        tree.apply_all(log.events(frame_id, end=window.start))
        before = tree.facts()
        tree.apply_all(log.events(frame_id, window.start, window.end))
        after = tree.facts()
    """

    def __init__(self) -> None:
        self._document = _Node(0)
        self._nodes: Dict[int, _Node] = {}
        self.url: Optional[str] = None

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------
    def reset(self, url: Optional[str] = None) -> None:
        self._document = _Node(0)
        self._nodes = {}
        self.url = url

    def apply_all(self, events: Iterable[object]) -> None:
        for event in events:
            if isinstance(event, NavigationEvent):
                logger.debug("New document in frame %d: %s", event.frame_id, event.url)
                self.reset(event.url)
            elif isinstance(event, DomChange):
                self.apply(event)

    def apply(self, change: DomChange) -> None:
        if change.action == DOM_ADDED:
            self._add(change)
        elif change.action == DOM_REMOVED:
            node = self._require(change)
            self._detach(node)
            self._forget(node)
        elif change.action == DOM_TEXT:
            node = self._require(change)
            if node.is_element:
                raise ExtractionError(
                    f"text change at ts={change.timestamp} targets element "
                    f"{change.node_id} <{node.tag}>"
                )
            node.text = change.text
        elif change.action == DOM_ATTRIBUTE:
            node = self._require(change)
            for name, value in change.attributes.items():
                if value is None:
                    node.attributes.pop(name, None)
                else:
                    node.attributes[name] = value

    def _require(self, change: DomChange) -> _Node:
        node = self._nodes.get(change.node_id)
        if node is None:
            raise ExtractionError(
                f"{change.action} change at ts={change.timestamp} references "
                f"unknown node {change.node_id}"
            )
        return node

    def _add(self, change: DomChange) -> None:
        if change.parent_node_id is None:
            parent = self._document
        else:
            parent = self._nodes.get(change.parent_node_id)
            if parent is None:
                raise ExtractionError(
                    f"Node {change.node_id} added at ts={change.timestamp} under "
                    f"unknown parent {change.parent_node_id}"
                )

        node = self._nodes.get(change.node_id)
        if node is not None:
            # re-added means moved
            ancestor: Optional[_Node] = parent
            while ancestor is not None:
                if ancestor is node:
                    raise ExtractionError(
                        f"Node {change.node_id} moved at ts={change.timestamp} "
                        f"under its own descendant {change.parent_node_id}"
                    )
                ancestor = ancestor.parent
            self._detach(node)
        else:
            if change.tag is None and change.text is None:
                raise ExtractionError(
                    f"Node {change.node_id} added at ts={change.timestamp} "
                    f"has neither tag nor text"
                )
            attributes = {k: v for k, v in change.attributes.items() if v is not None}
            node = _Node(change.node_id, change.tag, change.text, attributes)
            self._nodes[node.node_id] = node

        index = len(parent.children)
        if change.previous_sibling_id is not None:
            for i, sibling in enumerate(parent.children):
                if sibling.node_id == change.previous_sibling_id:
                    index = i + 1
                    break
            else:
                raise ExtractionError(
                    f"Node {change.node_id} added after unknown sibling "
                    f"{change.previous_sibling_id}"
                )
        node.parent = parent
        parent.children.insert(index, node)

    @staticmethod
    def _detach(node: _Node) -> None:
        if node.parent is not None:
            node.parent.children.remove(node)
            node.parent = None

    def _forget(self, node: _Node) -> None:
        stack = [node]
        while stack:
            current = stack.pop()
            self._nodes.pop(current.node_id, None)
            stack.extend(current.children)

    # ------------------------------------------------------------------
    # Facts
    # ------------------------------------------------------------------
    def facts(self) -> Dict[str, Union[int, str]]:
        """Describe the current document as ``{xpath expression: result}``."""
        counts: Counter = Counter()
        strings: Dict[str, str] = {}
        seen_paths = set()

        for path, node in self._walk(self._document):
            counts[path] += 1
            if node.attributes:
                predicate = "".join(
                    f"[@{name}={xpath_literal(node.attributes[name])}]"
                    for name in sorted(node.attributes)
                )
                counts[path + predicate] += 1

            first_at_path = path not in seen_paths
            seen_paths.add(path)
            if node.tag in _TEXTLESS_TAGS:
                continue
            own_texts = [
                _normalize(c.text or "") for c in node.children if not c.is_element
            ]
            own_texts = [t for t in own_texts if t]
            if not own_texts:
                continue
            # string() facts only for elements with their own text
            if first_at_path:
                strings[path] = _normalize(self._text_content(node))
            # text() matches per text node; an element counts once per value
            for text in dict.fromkeys(own_texts):
                counts[f"//{node.tag}[text()={xpath_literal(text)}]"] += 1

        facts: Dict[str, Union[int, str]] = {}
        for expr, count in counts.items():
            facts[f"count({expr})"] = count
        for path, text in strings.items():
            facts[f"string({path})"] = text
        return facts

    @staticmethod
    def _walk(root: _Node) -> Iterator[Tuple[str, _Node]]:
        """Elements below ``root`` in document order, with their tag paths."""
        stack: List[Tuple[_Node, str]] = [(c, "") for c in reversed(root.children)]
        while stack:
            node, prefix = stack.pop()
            if not node.is_element:
                continue
            path = f"{prefix}/{node.tag}"
            yield path, node
            stack.extend((c, path) for c in reversed(node.children))

    @staticmethod
    def _text_content(node: _Node) -> str:
        parts: List[str] = []
        stack = [node]
        while stack:
            current = stack.pop()
            if not current.is_element:
                parts.append(current.text or "")
            elif current.tag not in _TEXTLESS_TAGS:
                stack.extend(reversed(current.children))
        return "".join(parts)
