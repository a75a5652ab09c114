import asyncio
import logging

import pytest
from bs4 import BeautifulSoup
from conftest import FixedClassifier, GatedTranslator, settle

from domtrans.config import PersistedSettings, Rule, SegmentOptions, Setting
from domtrans.controller import RenderController, distribute_translation
from domtrans.html_parser import class_list, parse_html
from domtrans.language import ContentLanguageFilter
from domtrans.markers import CSS_MARKER_ATTR
from domtrans.translator import DummyTranslator

HOST = "x-kt-trans"


def _controller(html, provider=None, setting=None, **rule_kw):
    rule_kw.setdefault("selector", "p")
    soup = parse_html(html)
    provider = provider or DummyTranslator()
    ctl = RenderController(soup, Rule(**rule_kw), setting or Setting(), provider)
    return soup, ctl, provider


async def _register_and_wait(ctl):
    ctl.register()
    await ctl.wait_idle()


def test_overlay_render_appends_marker():
    soup, ctl, _ = _controller("<html><head></head><body><p>Hello world</p></body></html>", trigger="open")
    asyncio.run(_register_and_wait(ctl))

    host = soup.p.find(HOST)
    assert host.get_text() == "X:Hello world"
    assert host["data-mode"] == "overlay"
    assert host["data-style"] == "fuzzy"
    assert host["data-decoration"] == "normal"
    assert "kt-trans" in class_list(host)
    assert soup.head.find("style", attrs={CSS_MARKER_ATTR: True}) is not None


def test_replace_render_rewrites_text_in_place():
    soup, ctl, _ = _controller("<p>Hi</p>", trigger="open", display_mode="replace")
    asyncio.run(_register_and_wait(ctl))

    assert soup.p.get_text() == "X:Hi"
    assert soup.p.find(HOST) is None
    assert ctl.target_cache(soup.p).last_render_token is not None

    ctl.unregister()
    assert str(soup) == "<p>Hi</p>"


def test_rerender_is_idempotent():
    soup, ctl, provider = _controller("<p>Hello world</p>", trigger="manual")

    async def scenario():
        ctl.register()
        await ctl.render(soup.p)
        await ctl.render(soup.p)

    asyncio.run(scenario())
    assert len(soup.p.find_all(HOST)) == 1
    assert provider.calls == ["Hello world"]


def test_parent_and_nested_targets_render_separately():
    soup, ctl, _ = _controller("<body><div>Lead text<p>Inner text</p></div></body>", trigger="open", selector="div; p")
    asyncio.run(_register_and_wait(ctl))

    div_host = soup.div.find(HOST, recursive=False)
    assert div_host.get_text() == "X:Lead text"
    assert div_host.previous_sibling == "Lead text"
    assert soup.p.find(HOST).get_text() == "X:Inner text"


def test_stale_render_results_are_discarded():
    provider = GatedTranslator()
    soup, ctl, _ = _controller("<p>Old text</p>", provider=provider, trigger="manual")

    async def scenario():
        ctl.register()
        first = ctl.render(soup.p)
        await settle()
        soup.p.string = "New text"
        ctl.segmenter.invalidate(soup.p)
        second = ctl.render(soup.p)
        await settle()
        assert provider.calls == ["Old text", "New text"]
        provider.gates[0].set()
        await first
        assert soup.p.find(HOST) is None
        provider.gates[1].set()
        await second

    asyncio.run(scenario())
    hosts = soup.p.find_all(HOST)
    assert [h.get_text() for h in hosts] == ["X:New text"]


def test_teardown_restores_document_exactly():
    html = (
        "<html><head><title>Page</title></head><body>"
        "<p>Hello <b>world</b>.</p><div>Lead<p>Inner</p></div>"
        "</body></html>"
    )
    for mode in ("overlay", "replace"):
        removed = []
        soup, ctl, _ = _controller(
            html, trigger="open", display_mode=mode, selector="p; div", translate_title=True, on_remove=removed.append
        )
        before = str(soup)
        asyncio.run(_register_and_wait(ctl))
        assert str(soup) != before
        assert soup.title.get_text() == "X:Page | Page"

        ctl.unregister()
        assert str(soup) == before, mode
        assert len(removed) == 3
        assert not ctl.is_registered
        assert ctl.targets == []


def test_replace_teardown_is_exact_when_nested_target_renders_first():
    soup, ctl, _ = _controller(
        "<body><div>Lead<p>Inner</p></div></body>", trigger="manual", selector="div; p", display_mode="replace"
    )

    async def scenario():
        ctl.register()
        await ctl.render(soup.p)
        await ctl.render(soup.div)

    asyncio.run(scenario())
    assert soup.div.get_text() == "X:LeadX:Inner"

    ctl.unregister()
    assert str(soup) == "<body><div>Lead<p>Inner</p></div></body>"


def test_replace_rerender_restores_the_first_original():
    soup, ctl, provider = _controller("<p>Hello world</p>", trigger="manual", display_mode="replace")

    async def scenario():
        ctl.register()
        await ctl.render(soup.p)
        await ctl.render(soup.p)

    asyncio.run(scenario())
    assert provider.calls == ["Hello world", "X:Hello world"]
    assert soup.p.get_text() == "X:X:Hello world"

    ctl.unregister()
    assert str(soup) == "<p>Hello world</p>"


def test_register_without_running_loop_changes_nothing():
    for rule_kw in ({"trigger": "open"}, {"trigger": "manual", "translate_title": True}):
        soup, ctl, _ = _controller("<html><head><title>T</title></head><body><p>Hello</p></body></html>", **rule_kw)
        before = str(soup)

        with pytest.raises(RuntimeError, match="running event loop"):
            ctl.register()
        assert not ctl.is_registered
        assert ctl.targets == []
        assert str(soup) == before

    asyncio.run(_register_and_wait(ctl))
    assert ctl.is_registered


def test_scroll_trigger_renders_once_visible():
    soup, ctl, _ = _controller("<p>Hello world</p>", setting=Setting(visible_threshold=0.25))

    async def scenario():
        ctl.register()
        feed = ctl.visibility_feed
        assert feed.is_observing(soup.p)
        assert not feed.notify_visible(soup.p, ratio=0.1)
        assert feed.notify_visible(soup.p, ratio=0.5)
        assert not feed.is_observing(soup.p)
        await ctl.wait_idle()

    asyncio.run(scenario())
    assert soup.p.find(HOST).get_text() == "X:Hello world"


def test_hover_trigger_requires_modifier_key():
    soup, ctl, _ = _controller("<p>Hello world</p>", trigger="hover", hover_key="alt")

    async def scenario():
        ctl.register()
        assert ctl.hover(soup.p) is None
        task = ctl.hover(soup.p, modifiers=["Alt"])
        assert task is not None
        await task
        assert ctl.hover(soup.p, modifiers=["alt"]) is None

    asyncio.run(scenario())
    assert soup.p.find(HOST) is not None


def test_length_bounds_filter_segments():
    soup, ctl, provider = _controller("<p>A</p><p>Long enough</p>", trigger="open", max_len=20)
    asyncio.run(_register_and_wait(ctl))
    assert provider.calls == ["Long enough"]
    assert soup.find("p").find(HOST) is None


def test_language_filter_blocks_foreign_text():
    soup = parse_html("<p>Bonjour tout le monde</p>")
    provider = DummyTranslator()
    ctl = RenderController(
        soup,
        Rule(selector="p", trigger="open"),
        Setting(),
        provider,
        language_filter=ContentLanguageFilter(FixedClassifier("fr")),
    )
    asyncio.run(_register_and_wait(ctl))
    assert provider.calls == []
    assert soup.p.find(HOST) is None


def test_failed_render_is_logged_and_retriable(caplog):
    class FlakyTranslator:
        def __init__(self):
            self.attempts = 0

        async def translate(self, text):
            self.attempts += 1
            if self.attempts == 1:
                raise RuntimeError("provider down")
            return f"ok:{text}"

    soup, ctl, _ = _controller("<p>Hello world</p>", provider=FlakyTranslator(), trigger="manual")

    async def scenario():
        ctl.register()
        with caplog.at_level(logging.WARNING):
            await ctl.render(soup.p)
        assert soup.p.find(HOST) is None
        assert ctl.target_cache(soup.p) is not None
        await ctl.render(soup.p)

    asyncio.run(scenario())
    assert "Translation failed for <p>" in caplog.text
    assert soup.p.find(HOST).get_text() == "ok:Hello world"


def test_update_rule_reflows_after_debounce():
    soup, ctl, _ = _controller("<p>Hello world</p>", setting=Setting(reflow_debounce_ms=0), trigger="open")

    async def scenario():
        await _register_and_wait(ctl)
        assert soup.p.find(HOST) is not None
        ctl.update_rule(display_mode="replace")
        await asyncio.sleep(0.01)
        await ctl.wait_idle()

    asyncio.run(scenario())
    assert soup.p.find(HOST) is None
    assert soup.p.get_text() == "X:Hello world"

    with pytest.raises(ValueError):
        ctl.update_rule(trigger="never")


def test_style_and_decoration_update_existing_markers():
    soup, ctl, _ = _controller("<p>Hello world</p>", trigger="open")
    asyncio.run(_register_and_wait(ctl))

    assert ctl.toggle_style() == "dashline"
    ctl.set_decoration("underline dotted")
    host = soup.p.find(HOST)
    assert host["data-style"] == "dashline"
    assert host["data-decoration"] == "underline dotted"
    assert ctl.toggle_style() == "fuzzy"


def test_translate_all_and_translate_element():
    soup, ctl, provider = _controller("<p>First one</p><p>Second one</p>", trigger="manual")

    async def scenario():
        ctl.register()
        assert provider.calls == []
        await asyncio.gather(*ctl.translate_all())

    asyncio.run(scenario())
    assert [p.find(HOST).get_text() for p in soup.find_all("p")] == ["X:First one", "X:Second one"]

    soup, ctl, _ = _controller("<p>Alone here</p>", trigger="manual")
    asyncio.run(ctl.translate_element(soup.p))
    assert not ctl.is_registered
    assert soup.p.find(HOST).get_text() == "X:Alone here"


def test_stored_settings_are_applied_at_register():
    class Store:
        def __init__(self, settings):
            self.settings = settings

        def load(self):
            return self.settings

    soup = parse_html("<p>Hi</p>")
    ctl = RenderController(
        soup,
        Rule(selector="p", trigger="manual"),
        Setting(),
        DummyTranslator(),
        settings_store=Store(PersistedSettings(enabled=False)),
    )
    ctl.register()
    assert not ctl.is_registered
    assert soup.find("style") is None

    ctl = RenderController(
        soup,
        Rule(selector="p", trigger="manual"),
        Setting(),
        DummyTranslator(),
        settings_store=Store(PersistedSettings(display_mode="replace", text_decoration="underline")),
    )
    ctl.register()
    assert ctl.rule.display_mode == "replace"
    assert ctl.rule.text_decoration == "underline"


def test_declarative_fragment_targets_are_rendered():
    html = '<body><x-card><template shadowrootmode="open"><p>Inside</p></template></x-card></body>'
    soup, ctl, _ = _controller(html, trigger="open")
    before = str(soup)
    asyncio.run(_register_and_wait(ctl))

    template = soup.find("template")
    assert ctl.has_root(template)
    assert template.find("style", attrs={CSS_MARKER_ATTR: True}) is not None
    assert template.p.find(HOST).get_text() == "X:Inside"

    ctl.unregister()
    assert str(soup) == before


def test_attached_fragment_is_scanned_on_next_tick():
    soup, ctl, _ = _controller('<body><div id="host"></div><p>Light</p></body>', trigger="open")
    fragment = BeautifulSoup("<p>Shadow text</p>", "html.parser")

    async def scenario():
        await _register_and_wait(ctl)
        ctl.attach_fragment(soup.find(id="host"), fragment)
        assert not ctl.has_root(fragment)
        await settle()
        await ctl.wait_idle()

    asyncio.run(scenario())
    assert ctl.has_root(fragment)
    assert fragment.p.find(HOST).get_text() == "X:Shadow text"


def test_distribute_translation_is_proportional():
    soup = parse_html("<p> Hello <b>big</b> world </p>")
    leaves = [s for s in soup.p.descendants if isinstance(s, str)]
    distribute_translation(leaves, "ABCDEFGHIJ")

    assert soup.p.get_text() == " ABCDEFGHIJ "
    assert soup.b.get_text() == "EF"


def test_multiple_segments_in_replace_mode():
    soup, ctl, _ = _controller(
        "<div><p>One.</p><p>Two.</p></div>",
        trigger="open",
        selector="div",
        display_mode="replace",
        segment_options=SegmentOptions(preserve_context=False),
    )
    asyncio.run(_register_and_wait(ctl))
    assert [p.get_text() for p in soup.find_all("p")] == ["X:One.", "X:Two."]


def test_inline_and_block_targets_with_stub_provider():
    soup, ctl, _ = _controller("<span>Hi</span>", selector="span", trigger="open", display_mode="replace")
    asyncio.run(_register_and_wait(ctl))
    assert soup.span.get_text() == "X:Hi"

    soup, ctl, _ = _controller("<div>Hello world</div>", selector="div", trigger="open")
    asyncio.run(_register_and_wait(ctl))
    host = soup.div.find(HOST)
    assert host.get_text() == "X:Hello world"
    assert host["data-mode"] == "overlay"
