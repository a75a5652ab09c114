from __future__ import annotations

import re
from typing import Dict, Iterator, List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from .utils import NodeMap


PARSER = "html.parser"

FRAGMENT_TEMPLATE_ATTRS = ("shadowrootmode", "shadowroot")

# Default `display` of HTML elements when no inline style overrides it.
INLINE_DISPLAY_TAGS = frozenset(
    {
        "a", "abbr", "acronym", "b", "bdi", "bdo", "big", "br", "cite", "code",
        "data", "del", "dfn", "em", "font", "i", "img", "ins", "kbd", "label",
        "mark", "q", "s", "samp", "small", "span", "strike", "strong", "sub",
        "sup", "time", "tt", "u", "var", "wbr", "button", "input", "select",
        "textarea", "output", "meter", "progress",
    }
)
HIDDEN_DISPLAY_TAGS = frozenset(
    {
        "head", "title", "meta", "link", "base", "script", "style", "noscript",
        "template", "datalist", "param", "source", "track",
    }
)

_STYLE_DECL_RE = re.compile(r"\s*([-\w]+)\s*:\s*([^;]+?)\s*(?:!important\s*)?(?:;|$)")


def parse_html(html_text: str) -> BeautifulSoup:
    return BeautifulSoup(html_text, PARSER)


def is_text_leaf(node: object) -> bool:
    """True for character data that renders as text (not comments, doctypes, ...)."""
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def parse_inline_style(tag: Tag) -> Dict[str, str]:
    style = tag.get("style")
    if not style:
        return {}
    if isinstance(style, list):
        style = " ".join(style)
    return {m.group(1).lower(): m.group(2).strip().lower() for m in _STYLE_DECL_RE.finditer(style)}


def effective_display(tag: Tag) -> str:
    display = parse_inline_style(tag).get("display")
    if display:
        return display
    name = (tag.name or "").lower()
    if name in INLINE_DISPLAY_TAGS:
        return "inline"
    if name in HIDDEN_DISPLAY_TAGS:
        return "none"
    return "block"


def has_direct_text(tag: Tag) -> bool:
    """Whether the tag has non-whitespace text among its own children."""
    return any(is_text_leaf(child) and child.strip() for child in tag.children)


def has_element_children(tag: Tag) -> bool:
    return any(isinstance(child, Tag) for child in tag.children)


def class_list(tag: Tag) -> List[str]:
    value = tag.get("class") or []
    if isinstance(value, str):
        return value.split()
    return list(value)


class FragmentRegistry:
    """
    Tracks nested document fragments ("shadow roots").

    A host's fragment is either attached explicitly with `attach()` or given
    declaratively by a direct `<template shadowrootmode=...>` child. Queries
    and ancestor walks stop at fragment roots, so content inside a fragment
    is only reachable through its host.
    """

    def __init__(self) -> None:
        self._by_host: NodeMap[Tag] = NodeMap()
        self._hosts: NodeMap[Tag] = NodeMap()

    def attach(self, host: Tag, fragment: Tag) -> Tag:
        if not isinstance(fragment, BeautifulSoup) and fragment.parent is not None:
            fragment.extract()
        self._by_host.set(host, fragment)
        self._hosts.set(fragment, host)
        return fragment

    def detach(self, host: Tag) -> Optional[Tag]:
        fragment = self._by_host.pop(host)
        if fragment is not None:
            self._hosts.pop(fragment)
        return fragment

    def fragment_of(self, host: Tag) -> Optional[Tag]:
        attached = self._by_host.get(host)
        if attached is not None:
            return attached
        for child in host.children:
            if isinstance(child, Tag) and self._is_declarative_root(child):
                return child
        return None

    def host_of(self, root: Tag) -> Optional[Tag]:
        host = self._hosts.get(root)
        if host is not None:
            return host
        if self._is_declarative_root(root):
            return root.parent
        return None

    def is_fragment_root(self, node: object) -> bool:
        if not isinstance(node, Tag):
            return False
        return node in self._hosts or self._is_declarative_root(node)

    @staticmethod
    def _is_declarative_root(tag: Tag) -> bool:
        return tag.name == "template" and any(tag.has_attr(a) for a in FRAGMENT_TEMPLATE_ATTRS)

    def ancestors(self, node: object) -> Iterator[Tag]:
        """Yield parents up to and including the node's fragment root."""
        parent = getattr(node, "parent", None)
        while parent is not None:
            yield parent
            if self.is_fragment_root(parent):
                return
            parent = parent.parent

    def root_of(self, node: Tag) -> Tag:
        if self.is_fragment_root(node):
            return node
        root = node
        for parent in self.ancestors(node):
            root = parent
        return root

    def contains(self, outer: Tag, inner: object) -> bool:
        """Strict containment that does not cross fragment boundaries."""
        return any(parent is outer for parent in self.ancestors(inner))

    def is_attached(self, node: Tag, document: Tag) -> bool:
        """Whether `node` is still reachable from `document`, hopping through hosts."""
        current: Optional[Tag] = node
        while current is not None:
            root = self.root_of(current)
            if root is document:
                return True
            current = self.host_of(root)
        return False

    def children_of(self, tag: Tag) -> List[object]:
        """Children to walk for rendering: the fragment when present, else the light tree."""
        fragment = self.fragment_of(tag)
        if fragment is not None:
            return list(fragment.children)
        return list(tag.children)

    def iter_hosts(self, root: Tag) -> Iterator[Tag]:
        """Hosts below `root` (same fragment) that carry a nested fragment."""
        for el in root.find_all(True):
            if self.root_of(el) is not root:
                continue
            if self.fragment_of(el) is not None:
                yield el

    def query(self, root: Tag, selector: str) -> List[Tag]:
        """
        `root.select()` restricted to nodes whose fragment root is `root`.

        Raises soupsieve's SelectorSyntaxError for malformed selectors.
        """
        scope = self.root_of(root)
        return [el for el in root.select(selector) if self.root_of(el) is scope]

    def clear(self) -> None:
        self._by_host.clear()
        self._hosts.clear()


def iter_leaves(tag: Tag, fragments: Optional[FragmentRegistry] = None) -> Iterator[NavigableString]:
    """Yield text leaves under `tag`, descending into nested fragments."""
    children = fragments.children_of(tag) if fragments else list(tag.children)
    for child in children:
        if is_text_leaf(child):
            yield child
        elif isinstance(child, Tag):
            yield from iter_leaves(child, fragments)


def text_content(tag: Tag, fragments: Optional[FragmentRegistry] = None) -> str:
    return "".join(str(leaf) for leaf in iter_leaves(tag, fragments))


def is_visible(tag: Tag, fragments: Optional[FragmentRegistry] = None) -> bool:
    """Approximate rendered visibility from attributes and inline styles."""
    style = parse_inline_style(tag)
    if style.get("visibility") == "hidden":
        return False
    opacity = style.get("opacity")
    if opacity is not None:
        try:
            if float(opacity) == 0:
                return False
        except ValueError:
            pass
    registry = fragments or FragmentRegistry()
    chain = [tag] + [p for p in registry.ancestors(tag) if not registry.is_fragment_root(p)]
    for el in chain:
        if isinstance(el, BeautifulSoup):
            break
        if el.has_attr("hidden") or effective_display(el) == "none":
            return False
    return True


def document_order(root: Tag) -> Dict[int, int]:
    """Map id(node) -> position for every element under `root`."""
    return {id(el): idx for idx, el in enumerate(root.find_all(True))}
