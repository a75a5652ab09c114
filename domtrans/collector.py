from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from .boundary import BoundaryClassifier
from .config import Setting, skip_tag_set
from .html_parser import (
    FragmentRegistry,
    document_order,
    has_direct_text,
    has_element_children,
    is_visible,
    text_content,
)
from .utils import NodeSet, split_list


logger = logging.getLogger(__name__)

NESTED_SEPARATOR = "::shadow::"


class SelectorSpecError(ValueError):
    """Raised for a malformed selector spec when parsing strictly."""


@dataclass(frozen=True)
class SelectorPart:
    selector: str
    inner: Optional[str] = None

    @property
    def is_nested(self) -> bool:
        return self.inner is not None


def parse_selector_spec(spec: Optional[str], strict: bool = False) -> List[SelectorPart]:
    """
    Parse `sel1; sel2; host::shadow::inner` into selector parts.

    Broken nested forms are dropped with a warning, or raise
    SelectorSpecError when `strict` is set.
    """
    parts: List[SelectorPart] = []
    for item in split_list(spec, ";"):
        if NESTED_SEPARATOR not in item:
            parts.append(SelectorPart(item))
            continue
        outer, _, inner = (s.strip() for s in item.partition(NESTED_SEPARATOR))
        if not outer or not inner or NESTED_SEPARATOR in inner:
            if strict:
                raise SelectorSpecError(f"Malformed nested selector: {item!r}")
            logger.warning("Ignoring malformed nested selector %r.", item)
            continue
        parts.append(SelectorPart(outer, inner))
    return parts


class TargetCollector:
    """Finds the structural nodes that should each be translated as one target."""

    def __init__(
        self,
        setting: Optional[Setting] = None,
        classifier: Optional[BoundaryClassifier] = None,
        fragments: Optional[FragmentRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.setting = setting or Setting()
        self.classifier = classifier or BoundaryClassifier(
            skip_tags=skip_tag_set(self.setting), inline_tags=self.setting.inline_tags
        )
        self.fragments = fragments or FragmentRegistry()
        self.logger = logger or logging.getLogger(__name__)

    def _query(self, root: Tag, selector: str) -> List[Tag]:
        try:
            return self.fragments.query(root, selector)
        except (SelectorSyntaxError, ValueError, NotImplementedError) as exc:
            self.logger.warning("Invalid selector %r: %s", selector, exc)
            return []

    def match(self, root: Tag, spec: str) -> List[Tag]:
        """Direct selector matches, including nodes inside nested fragments."""
        found = NodeSet()
        for part in parse_selector_spec(spec):
            if not part.is_nested:
                for el in self._query(root, part.selector):
                    found.add(el)
                continue
            for host in self._query(root, part.selector):
                fragment = self.fragments.fragment_of(host)
                if fragment is None:
                    continue
                for el in self._query(fragment, part.inner or ""):
                    found.add(el)
        return list(found)

    def collect(self, root: Tag, spec: str) -> List[Tag]:
        matched = NodeSet(self.match(root, spec))
        candidates = NodeSet(matched)

        # nearest ancestor carrying its own text
        for node in list(matched):
            for parent in self.fragments.ancestors(node):
                if isinstance(parent, BeautifulSoup) or self.fragments.is_fragment_root(parent):
                    break
                if not has_direct_text(parent):
                    continue
                if parent not in matched and not self.is_skipped(parent):
                    candidates.add(parent)
                break

        # bare text containers no selector reached
        for el in root.find_all(True):
            if el in candidates or self.fragments.root_of(el) is not self.fragments.root_of(root):
                continue
            if has_element_children(el) or not has_direct_text(el):
                continue
            if self.is_skipped(el) or not is_visible(el, self.fragments):
                continue
            if any(parent in candidates for parent in self.fragments.ancestors(el)):
                continue
            candidates.add(el)

        has_nested = NodeSet()
        for node in candidates:
            for parent in self.fragments.ancestors(node):
                has_nested.add(parent)

        kept = [n for n in candidates if self._keep(n, has_nested)]
        order = document_order(root)
        fallback = len(order)
        return sorted(kept, key=lambda n: order.get(id(n), fallback))

    def _keep(self, node: Tag, has_nested: NodeSet) -> bool:
        host_tag = self.setting.host_tag
        if not is_visible(node, self.fragments):
            self.logger.debug("Dropping invisible <%s>.", node.name)
            return False
        if node.name == host_tag or node.find(host_tag) is not None:
            return False
        if self.is_skipped(node):
            return False
        if "-" in (node.name or "") and self.fragments.fragment_of(node) is None:
            if not text_content(node, self.fragments).strip():
                return False
        if node not in has_nested:
            return True
        return has_direct_text(node)

    def is_skipped(self, node: Tag) -> bool:
        """Skip-tagged or opted out, directly or through an ancestor in the same fragment."""
        if self.classifier.classify(node).is_skipped:
            return True
        for parent in self.fragments.ancestors(node):
            if isinstance(parent, BeautifulSoup) or self.fragments.is_fragment_root(parent):
                break
            if self.classifier.classify(parent).is_skipped:
                return True
        return False

    def nested_targets(self, node: Tag, spec: str) -> NodeSet:
        """Selector matches strictly below `node`; for nested forms, their hosts."""
        exclude = NodeSet()
        try:
            for part in parse_selector_spec(spec, strict=True):
                for el in self.fragments.query(node, part.selector):
                    exclude.add(el)
        except (SelectorSpecError, SelectorSyntaxError, ValueError, NotImplementedError) as exc:
            self.logger.debug("Selector spec %r unusable for exclusions: %s", spec, exc)
            return NodeSet()
        exclude.discard(node)
        return exclude

    def discover_fragment_roots(self, root: Tag) -> List[Tag]:
        roots: List[Tag] = []
        for host in self.fragments.iter_hosts(root):
            fragment = self.fragments.fragment_of(host)
            if fragment is not None:
                roots.append(fragment)
        return roots
