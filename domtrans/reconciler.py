from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Optional

from bs4 import Tag

from .markers import is_own_node
from .models import ChangeBatch
from .utils import NodeSet

if TYPE_CHECKING:
    from .controller import RenderController
    from .feeds import ChangeFeed


class MutationReconciler:
    """
    Keeps the controller's target set in step with document mutations.

    Added elements are batched and re-collected after a short debounce;
    removed elements drop their bookkeeping right away. Changes that arrive
    while the controller is rebuilding its own state are ignored.
    """

    DEBOUNCE_MS = 100

    def __init__(
        self,
        controller: "RenderController",
        debounce_ms: int = DEBOUNCE_MS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.controller = controller
        self.debounce_ms = debounce_ms
        self.logger = logger or logging.getLogger(__name__)
        self._pending = NodeSet()
        self._handle: Optional[asyncio.TimerHandle] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    def start(self, feed: "ChangeFeed") -> None:
        self.stop()
        self._unsubscribe = feed.subscribe(self.on_changes)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending.clear()

    def on_changes(self, batch: ChangeBatch) -> None:
        ctl = self.controller
        if ctl.is_updating or not ctl.is_registered or batch.is_empty():
            return

        for node in batch.added:
            if not isinstance(node, Tag):
                # new text in an existing element only changes its segments
                ctl.segmenter.invalidate(getattr(node, "parent", None))
                continue
            if is_own_node(node, ctl.setting):
                continue
            ctl.segmenter.invalidate(node)
            self._scan_new_fragments(node)
            self._pending.add(node)

        if batch.removed:
            dropped = sum(ctl.drop_subtree(node) for node in batch.removed)
            # removed leaves may sit in any cached segment list
            ctl.segmenter.clear_cache()
            if dropped:
                self.logger.debug("Dropped %s removed targets.", dropped)

        for node in batch.attribute_changed:
            if not isinstance(node, Tag):
                continue
            ctl.segmenter.invalidate(node)
            self._scan_new_fragments(node)

        if self._pending:
            self._schedule()

    def _scan_new_fragments(self, node: Tag) -> None:
        ctl = self.controller
        fragments = ctl.fragments
        roots = []
        if fragments.is_fragment_root(node):
            roots.append(node)
        fragment = fragments.fragment_of(node)
        if fragment is not None:
            roots.append(fragment)
        roots.extend(ctl.collector.discover_fragment_roots(node))
        for root in roots:
            if not ctl.has_root(root) and fragments.is_attached(root, ctl.document):
                self.logger.debug("Scanning newly attached fragment under <%s>.", node.name)
                ctl.scan_root(root)

    def _schedule(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        self._handle = loop.call_later(self.debounce_ms / 1000.0, self.flush)

    def flush(self) -> int:
        """Re-collect around every pending addition now; returns the number of new targets."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        nodes = list(self._pending)
        self._pending.clear()
        ctl = self.controller
        if not nodes or not ctl.is_registered:
            return 0

        roots = NodeSet()
        for node in nodes:
            if ctl.fragments.is_attached(node, ctl.document):
                roots.add(ctl.fragments.root_of(node))

        adopted = 0
        for root in roots:
            for target in ctl.collector.collect(root, ctl.rule.selector):
                if ctl.adopt(target):
                    adopted += 1
        if adopted:
            self.logger.info("Adopted %s new targets.", adopted)
        return adopted
