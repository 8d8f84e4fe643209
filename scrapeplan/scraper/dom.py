"""Queryable DOM built from an HTML string.

The document is flattened into an *arena*: every element becomes a
:class:`DomNode` addressed by an integer index, with its parent and children
stored as indices too.  Ancestor walks, subtree scans and "is this node
inside that one" checks are therefore plain index operations.

CSS queries are delegated to soupsieve through the BeautifulSoup tags kept
alongside the arena; the matched tags are mapped back to indices before they
leave this module, so callers never handle bs4 objects directly.

Index ``0`` is always the synthetic document root (tag ``"#document"``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterator, Optional

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

_WS = re.compile(r"\s+")


class InvalidSelectorError(ValueError):
    """Raised when a CSS selector cannot be parsed."""


@dataclass
class DomNode:
    index: int
    tag: str
    attrs: dict[str, str]
    parent: Optional[int]
    children: list[int] = field(default_factory=list)

    @property
    def classes(self) -> list[str]:
        return self.attrs.get("class", "").split()

    @property
    def id(self) -> str:
        return self.attrs.get("id", "")


def _flatten_attrs(tag: Tag) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for key, value in tag.attrs.items():
        if isinstance(value, (list, tuple)):
            attrs[key] = " ".join(value)
        else:
            attrs[key] = str(value)
    return attrs


class DomArena:
    """Index-addressed element tree for a single HTML document."""

    ROOT = 0

    def __init__(self, soup: BeautifulSoup) -> None:
        self._soup = soup
        self.nodes: list[DomNode] = [DomNode(0, "#document", {}, None)]
        self._tags: list[Tag] = [soup]
        self._index_of: dict[int, int] = {id(soup): 0}

        stack: list[tuple[Tag, int]] = [(soup, 0)]
        while stack:
            parent_tag, parent_idx = stack.pop()
            child_indices: list[int] = []
            for child in parent_tag.children:
                if not isinstance(child, Tag):
                    continue
                idx = len(self.nodes)
                self.nodes.append(
                    DomNode(idx, child.name.lower(), _flatten_attrs(child), parent_idx)
                )
                self._tags.append(child)
                self._index_of[id(child)] = idx
                child_indices.append(idx)
            self.nodes[parent_idx].children = child_indices
            # Reverse so the stack pops children in document order.
            for idx in reversed(child_indices):
                stack.append((self._tags[idx], idx))

    @classmethod
    def from_html(cls, html: str) -> "DomArena":
        return cls(BeautifulSoup(html, "html.parser"))

    def __len__(self) -> int:
        return len(self.nodes)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def node(self, index: int) -> DomNode:
        return self.nodes[index]

    @property
    def body(self) -> int:
        """Index of ``<body>``, or the document root when there is none."""
        for node in self.nodes:
            if node.tag == "body":
                return node.index
        return self.ROOT

    def parent(self, index: int) -> Optional[int]:
        return self.nodes[index].parent

    def ancestors(self, index: int) -> Iterator[int]:
        """Yield ancestors of *index* from the nearest outwards (root excluded)."""
        current = self.nodes[index].parent
        while current is not None and current != self.ROOT:
            yield current
            current = self.nodes[current].parent

    def descendants(self, index: int) -> Iterator[int]:
        """Yield every element below *index* in document order."""
        stack = list(reversed(self.nodes[index].children))
        while stack:
            idx = stack.pop()
            yield idx
            stack.extend(reversed(self.nodes[idx].children))

    def contains(self, ancestor: int, index: int) -> bool:
        return ancestor == self.ROOT or ancestor in self.ancestors(index)

    def find_all(self, tag: str, scope: int = ROOT) -> list[int]:
        tag = tag.lower()
        return [i for i in self.descendants(scope) if self.nodes[i].tag == tag]

    def anchors(self, scope: int = ROOT) -> list[int]:
        """All ``<a>`` elements with a non-empty ``href`` below *scope*."""
        return [
            i for i in self.find_all("a", scope)
            if self.nodes[i].attrs.get("href", "").strip()
        ]

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def attr(self, index: int, name: str, default: str = "") -> str:
        return self.nodes[index].attrs.get(name, default)

    def text(self, index: int) -> str:
        """Whitespace-collapsed text content of the element."""
        return _WS.sub(" ", self._tags[index].get_text(" ")).strip()

    def outer_html(self, index: int) -> str:
        return str(self._tags[index])

    # ------------------------------------------------------------------
    # CSS queries
    # ------------------------------------------------------------------

    def select(self, selector: str, scope: int = ROOT) -> list[int]:
        """Return indices of elements matching *selector* below *scope*.

        Raises:
            InvalidSelectorError: If the selector is syntactically invalid or
                uses a pseudo-class soupsieve does not support.
        """
        try:
            matches = self._tags[scope].select(selector)
        except (SelectorSyntaxError, NotImplementedError, ValueError) as exc:
            raise InvalidSelectorError(f"Invalid selector {selector!r}: {exc}") from exc
        return [self._index_of[id(tag)] for tag in matches if id(tag) in self._index_of]

    def select_one(self, selector: str, scope: int = ROOT) -> Optional[int]:
        matches = self.select(selector, scope)
        return matches[0] if matches else None

    def try_select(self, selector: Optional[str], scope: int = ROOT) -> list[int]:
        """Like :meth:`select` but returns ``[]`` for empty or invalid selectors."""
        if not selector or not selector.strip():
            return []
        try:
            return self.select(selector, scope)
        except InvalidSelectorError:
            return []

    # ------------------------------------------------------------------
    # Selector generation
    # ------------------------------------------------------------------

    def element_path(self, index: int) -> str:
        """Build a ``parent > child`` selector path for *index*.

        Stops at the first ancestor carrying an ``id`` (ids are unique) or at
        ``<html>``; at most two classes are used per step.
        """
        parts: list[str] = []
        current: Optional[int] = index
        while current is not None and current != self.ROOT:
            node = self.nodes[current]
            if node.tag == "html":
                break
            if node.id and _SIMPLE_IDENT.match(node.id):
                parts.append(f"{node.tag}#{node.id}")
                break
            step = node.tag
            classes = [c for c in node.classes if _SIMPLE_IDENT.match(c)][:2]
            if classes:
                step += "." + ".".join(classes)
            parts.append(step)
            current = node.parent
        return " > ".join(reversed(parts))

    def relative_path(self, ancestor: int, index: int) -> str:
        """Selector path from *ancestor* (exclusive) down to *index* (inclusive)."""
        parts: list[str] = []
        current: Optional[int] = index
        while current is not None and current != ancestor:
            node = self.nodes[current]
            step = node.tag
            classes = [c for c in node.classes if _SIMPLE_IDENT.match(c)][:2]
            if classes:
                step += "." + ".".join(classes)
            parts.append(step)
            current = node.parent
        return " > ".join(reversed(parts))

    def signature(self, index: int) -> str:
        """Stable container fingerprint: ``tag.class#id[childCount]``."""
        node = self.nodes[index]
        return f"{node.tag}.{node.attrs.get('class', '')}#{node.id}[{len(node.children)}]"


# Class/id tokens safe to emit unescaped in a CSS selector.
_SIMPLE_IDENT = re.compile(r"^-?[A-Za-z_][A-Za-z0-9_-]*$")
