from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Iterable, List, Optional, Sequence, Set, Tuple

from bs4 import BeautifulSoup, NavigableString, Tag

from .boundary import BoundaryClassifier
from .collector import TargetCollector
from .config import Rule, Setting, SettingsStore, TEXT_STYLES, skip_tag_set, update_rule
from .feeds import ChangeFeed, ManualVisibilityFeed, VisibilityFeed
from .html_parser import FragmentRegistry, text_content
from .language import ContentLanguageFilter
from .markers import create_host, ensure_css, place_host, remove_hosts
from .models import Segment, TargetCache
from .reconciler import MutationReconciler
from .segmenter import TextSegmenter
from .translator import SegmentTranslator, TranslationProvider
from .utils import NodeMap, NodeSet


def call_later(delay_s: float, callback: Callable[[], None]) -> Optional[asyncio.TimerHandle]:
    """Schedule on the running loop; without one, run the callback right away."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        callback()
        return None
    return loop.call_later(delay_s, callback)


def new_render_token() -> str:
    return uuid.uuid4().hex[:8]


def distribute_translation(
    leaves: Sequence[NavigableString], translation: str
) -> List[Tuple[NavigableString, NavigableString]]:
    """
    Overwrite `leaves` with consecutive slices of `translation`.

    Slices are proportional to each leaf's original character count. The
    first leaf keeps its leading whitespace and the last its trailing
    whitespace. Approximate by nature: there is no word alignment.
    Returns `(replaced, written)` leaf pairs.
    """
    live = [leaf for leaf in leaves if leaf.parent is not None]
    if not live:
        return []
    originals = [str(leaf) for leaf in live]
    weights = [max(len(o), 1) for o in originals]
    total = sum(weights)
    size = len(translation)

    cuts = [0]
    running = 0
    for weight in weights[:-1]:
        running += weight
        cuts.append(round(size * running / total))
    cuts.append(size)

    portions = [translation[cuts[i] : cuts[i + 1]] for i in range(len(live))]
    first, last = originals[0], originals[-1]
    portions[0] = first[: len(first) - len(first.lstrip())] + portions[0]
    portions[-1] = portions[-1] + last[len(last.rstrip()) :]

    written: List[Tuple[NavigableString, NavigableString]] = []
    for leaf, portion in zip(live, portions):
        replacement = NavigableString(portion)
        leaf.replace_with(replacement)
        written.append((leaf, replacement))
    return written


class RenderController:
    """
    Owns the translation lifecycle of every candidate node in one document.

    Nodes are registered with a trigger (visibility, hover, immediate or
    manual). A render segments the node, translates the segments through
    the shared cache and writes the result back as an overlay marker or in
    place. Each render stores a fresh token first; results whose token is
    no longer current are dropped. `unregister()` restores the document.
    """

    def __init__(
        self,
        document: BeautifulSoup,
        rule: Rule,
        setting: Optional[Setting] = None,
        provider: Optional[TranslationProvider] = None,
        *,
        language_filter: Optional[ContentLanguageFilter] = None,
        visibility_feed: Optional[VisibilityFeed] = None,
        change_feed: Optional[ChangeFeed] = None,
        settings_store: Optional[SettingsStore] = None,
        fragments: Optional[FragmentRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if provider is None:
            raise ValueError("A translation provider is required.")
        self.document = document
        self.rule = rule
        self.setting = setting or Setting()
        self.logger = logger or logging.getLogger(__name__)
        self.fragments = fragments or FragmentRegistry()

        classifier = BoundaryClassifier(skip_tag_set(self.setting), self.setting.inline_tags)
        self.segmenter = TextSegmenter(rule.segment_options, classifier, self.fragments)
        self.collector = TargetCollector(self.setting, classifier, self.fragments, self.logger)
        self.translator = SegmentTranslator(provider, self.logger)
        self.language_filter = language_filter or ContentLanguageFilter(logger=self.logger)
        self.reconciler = MutationReconciler(self, logger=self.logger)
        self.change_feed = change_feed
        self.settings_store = settings_store

        self._visibility_feed = visibility_feed
        self._targets: NodeMap[TargetCache] = NodeMap()
        # written leaf -> text it had before any replace render
        self._leaf_backups: NodeMap[str] = NodeMap()
        self._roots = NodeSet()
        self._hover_bindings = NodeSet()
        self._injected_styles: List[Tag] = []
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._reflow_handle: Optional[asyncio.TimerHandle] = None
        self._updating = False
        self._registered = False
        self._settings_loaded = False
        self._original_title: Optional[str] = None

    # -- state -----------------------------------------------------------

    @property
    def is_registered(self) -> bool:
        return self._registered

    @property
    def is_updating(self) -> bool:
        return self._updating

    @property
    def targets(self) -> List[Tag]:
        return self._targets.keys()

    def target_cache(self, node: Tag) -> Optional[TargetCache]:
        return self._targets.get(node)

    def has_root(self, root: Tag) -> bool:
        return root in self._roots

    @property
    def visibility_feed(self) -> VisibilityFeed:
        if self._visibility_feed is None:
            self._visibility_feed = ManualVisibilityFeed(self.setting.visible_threshold)
        return self._visibility_feed

    # -- lifecycle -------------------------------------------------------

    def register(self) -> None:
        if self._registered:
            self.logger.debug("Already registered.")
            return
        if self.rule.trigger == "open" or self.rule.translate_title:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                raise RuntimeError(
                    "register() with the 'open' trigger or title translation needs a running event loop."
                ) from None
        if self.settings_store is not None and not self._settings_loaded:
            stored = self.settings_store.load()
            self._settings_loaded = True
            if not stored.enabled:
                self.logger.info("Translation disabled in stored settings; not registering.")
                return
            self.rule = update_rule(
                self.rule, display_mode=stored.display_mode, text_decoration=stored.text_decoration
            )

        self.logger.info(
            "Registering (selector=%r, trigger=%s, mode=%s)",
            self.rule.selector,
            self.rule.trigger,
            self.rule.display_mode,
        )
        self._registered = True
        self.scan_root(self.document)
        if self.change_feed is not None:
            self.reconciler.start(self.change_feed)
        if self.rule.translate_title:
            self._spawn(self._translate_title())

    def unregister(self) -> None:
        if self._reflow_handle is not None:
            self._reflow_handle.cancel()
            self._reflow_handle = None
        self._teardown()

    def _teardown(self) -> None:
        self.logger.info("Unregistering (%s targets)", len(self._targets))
        self.reconciler.stop()
        if self._visibility_feed is not None:
            self._visibility_feed.disconnect()
        self._hover_bindings.clear()
        self._restore_all()
        self._restore_title()
        for style in self._injected_styles:
            if style.parent is not None:
                style.decompose()
        self._injected_styles.clear()
        self._roots.clear()
        self._targets.clear()
        self.segmenter.clear_cache()
        self.translator.clear()
        self.language_filter.clear_cache()
        self._registered = False

    def _restore_all(self) -> None:
        for leaf, original in self._leaf_backups.items():
            if leaf.parent is not None:
                leaf.replace_with(NavigableString(original))
        self._leaf_backups.clear()
        for node in self._targets.keys():
            remove_hosts(node, self.setting)
            if self.rule.on_remove is not None:
                try:
                    self.rule.on_remove(node)
                except Exception as exc:  # noqa: BLE001
                    self.logger.warning("on_remove callback failed for <%s>: %s", node.name, exc)

    def update_rule(self, **patch: Any) -> None:
        """Apply a rule change, then rebuild all state after the reflow debounce."""
        self.rule = update_rule(self.rule, **patch)
        self.segmenter.options = self.rule.segment_options
        if self._reflow_handle is not None:
            self._reflow_handle.cancel()
        self._reflow_handle = call_later(self.setting.reflow_debounce_ms / 1000.0, self._reflow)

    def _reflow(self) -> None:
        self._reflow_handle = None
        if self._updating:
            return
        self._updating = True
        try:
            self._teardown()
            self.register()
        finally:
            self._updating = False

    # -- discovery -------------------------------------------------------

    def scan_root(self, root: Tag) -> List[Tag]:
        """Collect candidates under a document or fragment root and wire their triggers."""
        self._roots.add(root)
        style = ensure_css(root, self.setting, self.fragments)
        if style is not None:
            self._injected_styles.append(style)

        adopted = [node for node in self.collector.collect(root, self.rule.selector) if self.adopt(node)]
        self.logger.debug("Scanned <%s>: %s new targets.", root.name, len(adopted))

        for fragment in self.collector.discover_fragment_roots(root):
            if fragment not in self._roots:
                adopted.extend(self.scan_root(fragment))
        return adopted

    def collect_targets(self) -> List[Tag]:
        targets: List[Tag] = []
        for root in self._roots:
            targets.extend(self.collector.collect(root, self.rule.selector))
        return targets

    def adopt(self, node: Tag) -> bool:
        if node in self._targets:
            return False
        self._targets.set(node, TargetCache())
        trigger = self.rule.trigger
        if trigger == "scroll":
            self.visibility_feed.subscribe(node, self._on_visible)
        elif trigger == "hover":
            self._hover_bindings.add(node)
        elif trigger == "open":
            self.render(node)
        return True

    def drop_subtree(self, removed: Any) -> int:
        """Forget every target that is, or sits inside, a node removed from the document."""
        dropped = 0
        for node in self._targets.keys():
            if self._is_within(node, removed):
                self._targets.pop(node)
                self._hover_bindings.discard(node)
                if self._visibility_feed is not None:
                    self._visibility_feed.unsubscribe(node)
                dropped += 1
        for leaf in self._leaf_backups.keys():
            if self._is_within(leaf, removed):
                self._leaf_backups.pop(leaf)
        return dropped

    def _is_within(self, node: Any, ancestor: Any) -> bool:
        current: Any = node
        while current is not None:
            if current is ancestor:
                return True
            parent = current.parent
            if parent is None and isinstance(current, Tag):
                parent = self.fragments.host_of(current)
            current = parent
        return False

    def attach_fragment(self, host: Tag, fragment: Tag) -> Tag:
        """Integration hook: the host environment reports a newly attached nested fragment."""
        self.fragments.attach(host, fragment)
        if self._registered:
            call_later(0, lambda: self._scan_attached(fragment))
        return fragment

    def _scan_attached(self, fragment: Tag) -> None:
        if self._registered and fragment not in self._roots:
            self.scan_root(fragment)

    # -- triggers --------------------------------------------------------

    def _on_visible(self, node: Tag) -> None:
        self.visibility_feed.unsubscribe(node)
        self.render(node)

    def hover(self, node: Tag, modifiers: Iterable[str] = ()) -> Optional["asyncio.Task[None]"]:
        """Host entry point for a pointer entering `node`."""
        if node not in self._hover_bindings:
            return None
        key = self.rule.hover_key
        if key and key not in {m.lower() for m in modifiers}:
            return None
        self._hover_bindings.discard(node)
        return self.render(node)

    def render(self, node: Tag) -> "asyncio.Task[None]":
        return self._spawn(self._render(node))

    async def translate_element(self, node: Tag) -> None:
        """Translate one node now, without scanning or observers."""
        style = ensure_css(self.document, self.setting, self.fragments)
        if style is not None:
            self._injected_styles.append(style)
        await self._render(node)

    def translate_all(self) -> List["asyncio.Task[None]"]:
        self.logger.info("Translating all %s targets", len(self._targets))
        return [self.render(node) for node in self._targets.keys()]

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Any) -> "asyncio.Task[None]":
        # renders only run inside the host event loop
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -- rendering -------------------------------------------------------

    async def _render(self, node: Tag) -> None:
        cache = self._targets.get(node)
        if cache is None:
            cache = TargetCache()
            self._targets.set(node, cache)
        token = new_render_token()
        cache.last_render_token = token

        host: Optional[Tag] = None
        try:
            remove_hosts(node, self.setting)
            raw = text_content(node, self.fragments).strip()
            if not raw:
                return

            replace = self.rule.display_mode == "replace"
            if self.rule.on_render_start is not None:
                self.rule.on_render_start(node, raw)

            exclude = self.collector.nested_targets(node, self.rule.selector)
            segments = self.segmenter.segment(node, exclude or None)
            segments = [s for s in segments if self.rule.min_len <= len(s.text) <= self.rule.max_len]
            if not segments:
                return
            segments = await self.language_filter.filter_by_source_language(segments)
            if not segments:
                return

            translations = await asyncio.gather(*(self.translator.translate(s) for s in segments))

            if self._targets.get(node) is not cache or cache.last_render_token != token:
                self.logger.debug("Discarding superseded render %s for <%s>.", token, node.name)
                return

            if replace:
                self._write_replace(node, segments, translations)
            else:
                host = self._build_overlay(node, translations)
                if host is not None:
                    remove_hosts(node, self.setting)
                    place_host(node, host, after_direct_text=bool(exclude))
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Translation failed for <%s>: %s", node.name, exc)
            if host is not None and host.parent is not None:
                host.decompose()

    def _build_overlay(self, node: Tag, translations: Sequence[str]) -> Optional[Tag]:
        text = " ".join(t for t in translations if t)
        if not text:
            return None
        return create_host(node, self.setting, self.rule.text_style, self.rule.text_decoration, text)

    def _write_replace(self, node: Tag, segments: Sequence[Segment], translations: Sequence[str]) -> None:
        for segment, translation in zip(segments, translations):
            if not translation:
                continue
            for replaced, written in distribute_translation(segment.leaves, translation):
                original = self._leaf_backups.pop(replaced)
                self._leaf_backups.set(written, str(replaced) if original is None else original)
        self.segmenter.invalidate(node)

    # -- presentation ------------------------------------------------------

    def _hosts(self) -> List[Tag]:
        hosts: List[Tag] = []
        for root in self._roots:
            hosts.extend(root.find_all(self.setting.host_tag))
        return hosts

    def set_style(self, style: str) -> None:
        self.rule = update_rule(self.rule, text_style=style)
        for host in self._hosts():
            host["data-style"] = style

    def toggle_style(self) -> str:
        current = self.rule.text_style
        nxt = TEXT_STYLES[(TEXT_STYLES.index(current) + 1) % len(TEXT_STYLES)]
        self.set_style(nxt)
        return nxt

    def set_decoration(self, decoration: str) -> None:
        self.rule = update_rule(self.rule, text_decoration=decoration)
        for host in self._hosts():
            host["data-decoration"] = decoration

    # -- title -----------------------------------------------------------

    async def _translate_title(self) -> None:
        title = self.document.find("title")
        if title is None or self._original_title is not None:
            return
        original = title.get_text()
        if not original.strip():
            return
        self._original_title = original
        try:
            translated = await self.translator.provider.translate(original)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Title translation failed: %s", exc)
            return
        if translated and self._original_title == original:
            title.string = f"{translated} | {original}"

    def _restore_title(self) -> None:
        if self._original_title is None:
            return
        title = self.document.find("title")
        if title is not None:
            title.string = self._original_title
        self._original_title = None
