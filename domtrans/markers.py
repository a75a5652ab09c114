"""Injected host markers and the stylesheet that styles them."""

from __future__ import annotations

from typing import List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from .config import Setting
from .html_parser import FragmentRegistry, is_text_leaf


CSS_MARKER_ATTR = "data-domtrans-css"
CSS_DOCUMENT_ID = "domtrans-css"

CSS_TEMPLATE = """
{host} {{
  display: block;
  margin-top: 0.25em;
  line-height: inherit;
}}
{host}[data-style="fuzzy"] {{
  filter: blur(0.2px);
  opacity: 0.92;
}}
{host}[data-style="dashline"] {{
  border-top: 1px dashed currentColor;
  padding-top: 0.25em;
}}
{host}[data-decoration="underline"] {{ text-decoration: underline; }}
{host}[data-decoration="underline dashed"] {{ text-decoration: underline dashed; }}
{host}[data-decoration="underline dotted"] {{ text-decoration: underline dotted; }}
"""


def _factory(node: Tag) -> BeautifulSoup:
    """A soup to build new tags with; the node's own document when reachable."""
    top = node
    while top.parent is not None:
        top = top.parent
    if isinstance(top, BeautifulSoup):
        return top
    return BeautifulSoup("", "html.parser")


def find_hosts(node: Tag, setting: Setting) -> List[Tag]:
    """Hosts owned by `node`. Hosts are always direct children of their target."""
    return list(node.find_all(setting.host_tag, recursive=False))


def remove_hosts(node: Tag, setting: Setting) -> int:
    hosts = find_hosts(node, setting)
    for host in hosts:
        host.decompose()
    return len(hosts)


def is_own_node(node: object, setting: Setting) -> bool:
    """Whether `node` is, or contains, something this engine injected."""
    if not isinstance(node, Tag):
        return False
    if node.name == setting.host_tag or node.has_attr(CSS_MARKER_ATTR):
        return True
    return node.find(setting.host_tag) is not None


def create_host(node: Tag, setting: Setting, text_style: str, decoration: str, text: str) -> Tag:
    host = _factory(node).new_tag(setting.host_tag)
    host["class"] = setting.host_class
    host["data-mode"] = "overlay"
    host["data-style"] = text_style
    host["data-decoration"] = decoration
    host.append(NavigableString(text))
    return host


def place_host(node: Tag, host: Tag, after_direct_text: bool) -> None:
    """Append `host`, or put it after the node's last direct text leaf."""
    if after_direct_text:
        last_text: Optional[NavigableString] = None
        for child in node.children:
            if is_text_leaf(child) and child.strip():
                last_text = child
        if last_text is not None:
            last_text.insert_after(host)
            return
    node.append(host)


def ensure_css(root: Tag, setting: Setting, fragments: Optional[FragmentRegistry] = None) -> Optional[Tag]:
    """Inject the shared stylesheet into a document or fragment root once. Returns it when created."""
    registry = fragments or FragmentRegistry()
    for existing in root.find_all("style", attrs={CSS_MARKER_ATTR: True}):
        if registry.root_of(existing) is root:
            return None
    style = _factory(root).new_tag("style")
    style[CSS_MARKER_ATTR] = "1"
    style.string = CSS_TEMPLATE.format(host=setting.host_tag)
    if isinstance(root, BeautifulSoup):
        style["id"] = CSS_DOCUMENT_ID
        head = root.find("head")
        if head is not None:
            head.append(style)
        else:
            root.insert(0, style)
    else:
        root.append(style)
    return style
