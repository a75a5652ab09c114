"""Groups the text leaves of a subtree into translation-ready segments."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from .boundary import BoundaryClassifier
from .collector import TargetCollector
from .config import SegmentOptions, Setting, skip_tag_set
from .html_parser import FragmentRegistry, is_text_leaf
from .models import Segment, SegmentContext
from .utils import NodeMap, NodeSet, sha1_text


logger = logging.getLogger(__name__)

SENTENCE_END_RE = re.compile(r"[.!?…‽。！？؟।]\s*$")


def ends_sentence(text: str) -> bool:
    return bool(SENTENCE_END_RE.search(text))


@dataclass
class _Accumulator:
    anchor_top: Tag
    leaves: List[NavigableString] = field(default_factory=list)
    parts: List[str] = field(default_factory=list)
    size: int = 0
    anchor_bottom: Optional[Tag] = None

    def add(self, leaf: NavigableString, parent: Tag) -> None:
        content = str(leaf)
        self.leaves.append(leaf)
        self.parts.append(content)
        self.size += len(content)
        self.anchor_bottom = parent


class TextSegmenter:
    """
    Depth-first segmentation of a subtree.

    Inline elements continue the running segment, block elements close it
    before and after their content, and skipped or excluded elements are
    hard boundaries whose subtree is never visited. Results are cached per
    root unless an exclusion set is given.
    """

    def __init__(
        self,
        options: Optional[SegmentOptions] = None,
        classifier: Optional[BoundaryClassifier] = None,
        fragments: Optional[FragmentRegistry] = None,
    ) -> None:
        self.options = options or SegmentOptions()
        self.classifier = classifier or BoundaryClassifier()
        self.fragments = fragments or FragmentRegistry()
        self._segment_cache: NodeMap[List[Segment]] = NodeMap()
        self._fingerprints: Dict[str, str] = {}

    def segment(self, root: Tag, exclude: Optional[Iterable[Tag]] = None) -> List[Segment]:
        excluded = NodeSet(exclude or ())
        if not excluded:
            cached = self._segment_cache.get(root)
            if cached is not None:
                return cached
        segments = self._collect(root, excluded)
        if not excluded:
            self._segment_cache.set(root, segments)
        return segments

    def segment_root(self, root: Tag) -> List[Segment]:
        """Always re-walk `root` and refresh its cache entry."""
        segments = self._collect(root, NodeSet())
        self._segment_cache.set(root, segments)
        return segments

    def invalidate(self, node: object) -> None:
        """Forget cached segments for `node` and every ancestor up to the document."""
        current = node
        while current is not None:
            self._segment_cache.pop(current)
            parent = getattr(current, "parent", None)
            if parent is None and isinstance(current, Tag):
                parent = self.fragments.host_of(current)
            current = parent

    def clear_cache(self) -> None:
        self._segment_cache.clear()
        self._fingerprints.clear()

    def fingerprint(self, text: str) -> str:
        cached = self._fingerprints.get(text)
        if cached is None:
            cached = sha1_text(text)
            self._fingerprints[text] = cached
        return cached

    def _collect(self, root: Tag, exclude: NodeSet) -> List[Segment]:
        segments: List[Segment] = []
        self._walk_root(root, exclude, segments)
        if self.options.preserve_context:
            self.add_context(segments)
        return segments

    def _walk_root(self, root: Tag, exclude: NodeSet, segments: List[Segment]) -> None:
        state: Dict[str, Optional[_Accumulator]] = {"acc": None}

        def flush() -> None:
            acc = state["acc"]
            state["acc"] = None
            if acc is not None and acc.leaves:
                segment = self._finalize(acc)
                if segment is not None:
                    segments.append(segment)

        def visit(node: object, parent: Tag) -> None:
            if is_text_leaf(node):
                content = str(node)
                if not content.strip():
                    return
                acc = state["acc"]
                if acc is None or self._should_start_new(acc.size, content):
                    flush()
                    acc = _Accumulator(anchor_top=self._non_inline_parent(parent))
                    state["acc"] = acc
                acc.add(node, parent)  # type: ignore[arg-type]
                return

            if not isinstance(node, Tag):
                return

            if node in exclude:
                flush()
                return

            boundary = self.classifier.classify(node)
            if boundary.is_skipped:
                flush()
                return

            if not boundary.is_inline:
                flush()

            fragment = self.fragments.fragment_of(node)
            if fragment is not None:
                # nested fragment content is kept in document order
                flush()
                self._walk_root(fragment, exclude, segments)
            else:
                for child in list(node.children):
                    visit(child, node)

            if not boundary.is_inline:
                flush()

        for child in self.fragments.children_of(root):
            visit(child, root)
        flush()

    def _should_start_new(self, current_size: int, content: str) -> bool:
        if current_size == 0:
            return True
        max_size = self.options.max_chunk_size
        if current_size + len(content) > max_size:
            if not self.options.preserve_sentences:
                return True
            return ends_sentence(content) or current_size >= max_size
        return False

    def _non_inline_parent(self, tag: Tag) -> Tag:
        current: Optional[Tag] = tag
        while current is not None and not isinstance(current, BeautifulSoup):
            if self.fragments.is_fragment_root(current):
                break
            if not self.classifier.classify(current).is_inline:
                return current
            current = current.parent
        return tag

    def _finalize(self, acc: _Accumulator) -> Optional[Segment]:
        text = "".join(acc.parts).strip()
        if not text:
            return None
        return Segment(
            leaves=list(acc.leaves),
            text=text,
            anchor_top=acc.anchor_top,
            anchor_bottom=acc.anchor_bottom,
            fingerprint=self.fingerprint(text),
        )

    def add_context(self, segments: List[Segment]) -> None:
        overlap = self.options.context_overlap
        if overlap <= 0:
            return
        for i, segment in enumerate(segments):
            before = segments[i - 1].text[-overlap:] if i > 0 else None
            after = segments[i + 1].text[:overlap] if i < len(segments) - 1 else None
            segment.context = SegmentContext(before=before, after=after)


def segment_document(
    soup: Tag,
    selector: str,
    setting: Optional[Setting] = None,
    options: Optional[SegmentOptions] = None,
    fragments: Optional[FragmentRegistry] = None,
) -> List[Dict[str, object]]:
    """
    Segment every translation target of a page, without rendering.

    Each target is segmented with its nested targets excluded, exactly as a
    render would see it. Returns flat records for export.
    """
    setting = setting or Setting()
    fragments = fragments or FragmentRegistry()
    classifier = BoundaryClassifier(skip_tag_set(setting), setting.inline_tags)
    collector = TargetCollector(setting, classifier, fragments)
    segmenter = TextSegmenter(options, classifier, fragments)

    targets: List[Tag] = []
    roots = [soup]
    while roots:
        root = roots.pop(0)
        targets.extend(collector.collect(root, selector))
        roots.extend(collector.discover_fragment_roots(root))

    rows: List[Dict[str, object]] = []
    for target_index, target in enumerate(targets):
        exclude = collector.nested_targets(target, selector)
        for segment in segmenter.segment(target, exclude or None):
            record = segment.as_record(len(rows))
            record["target"] = target_index
            record["target_tag"] = target.name
            rows.append(record)
    logger.info("Segmented %s targets into %s segments.", len(targets), len(rows))
    return rows
