from domtrans.config import SegmentOptions, Setting
from domtrans.html_parser import parse_html
from domtrans.segmenter import TextSegmenter, ends_sentence, segment_document
from domtrans.utils import sha1_text


def _texts(segments):
    return [s.text for s in segments]


def test_inline_elements_join_and_blocks_split():
    soup = parse_html("<div><p>Hello <b>world</b>.</p><p>Second</p></div>")
    segments = TextSegmenter().segment(soup.div)

    assert _texts(segments) == ["Hello world.", "Second"]
    first = segments[0]
    assert [str(leaf) for leaf in first.leaves] == ["Hello ", "world", "."]
    assert first.anchor_top is soup.find("p")
    assert first.anchor_bottom is soup.find("p")


def test_context_comes_from_neighbours():
    soup = parse_html("<div><p>One sentence.</p><p>Two sentence.</p><p>Three</p></div>")
    opts = SegmentOptions(context_overlap=5)
    segments = TextSegmenter(opts).segment(soup.div)

    assert segments[0].context.before is None
    assert segments[0].context.after == "Two s"
    assert segments[1].context.before == "ence."
    assert segments[1].context.after == "Three"
    assert segments[2].context.after is None


def test_no_context_when_disabled():
    soup = parse_html("<div><p>A text</p><p>B text</p></div>")
    segments = TextSegmenter(SegmentOptions(preserve_context=False)).segment(soup.div)
    assert not segments[0].context
    assert not segments[1].context


def test_skipped_subtree_is_a_hard_boundary():
    soup = parse_html("<p>Run <code>x = 1</code> now</p>")
    assert _texts(TextSegmenter().segment(soup.p)) == ["Run", "now"]


def test_excluded_nodes_are_never_visited():
    soup = parse_html("<div>Intro <p>Nested</p> tail</div>")
    segmenter = TextSegmenter()
    assert _texts(segmenter.segment(soup.div)) == ["Intro", "Nested", "tail"]
    assert _texts(segmenter.segment(soup.div, exclude=[soup.p])) == ["Intro", "tail"]


def test_max_chunk_size_without_sentence_preservation():
    soup = parse_html("<p>aaaaaa <b>bbbbbb</b> cccccc</p>")
    opts = SegmentOptions(max_chunk_size=10, preserve_sentences=False, preserve_context=False)
    assert _texts(TextSegmenter(opts).segment(soup.p)) == ["aaaaaa", "bbbbbb", "cccccc"]


def test_sentence_preservation_keeps_growing_until_full():
    soup = parse_html("<p>aaaaaa <b>bbbbbb</b> cccccc</p>")
    opts = SegmentOptions(max_chunk_size=10, preserve_context=False)
    assert _texts(TextSegmenter(opts).segment(soup.p)) == ["aaaaaa bbbbbb", "cccccc"]


def test_sentence_end_starts_a_new_segment_when_over_size():
    soup = parse_html("<p>aaaaaa <b>bb.</b></p>")
    opts = SegmentOptions(max_chunk_size=8, preserve_context=False)
    assert _texts(TextSegmenter(opts).segment(soup.p)) == ["aaaaaa", "bb."]


def test_ends_sentence():
    assert ends_sentence("Done. ")
    assert ends_sentence("完成。")
    assert ends_sentence("Really?!")
    assert not ends_sentence("and then")


def test_fingerprint_is_stable_across_documents():
    a = TextSegmenter().segment(parse_html("<p>  Hello </p>").p)
    b = TextSegmenter().segment(parse_html("<div><span>Hello</span></div>").div)
    assert a[0].fingerprint == b[0].fingerprint == sha1_text("Hello")


def test_results_are_cached_until_invalidated():
    soup = parse_html("<div><p>Hello</p></div>")
    segmenter = TextSegmenter()
    first = segmenter.segment(soup.div)
    assert segmenter.segment(soup.div) is first
    assert segmenter.segment(soup.div, exclude=[soup.p]) is not first

    soup.p.string = "Changed"
    segmenter.invalidate(soup.p)
    assert _texts(segmenter.segment(soup.div)) == ["Changed"]


def test_fragment_content_replaces_light_children():
    soup = parse_html(
        "<div><x-card><template shadowrootmode=\"open\"><p>Inside</p></template>"
        "<span>light</span></x-card><p>After</p></div>"
    )
    assert _texts(TextSegmenter().segment(soup.div)) == ["Inside", "After"]


def test_segment_document_records():
    soup = parse_html("<body><div>Lead <p>Inner text</p></div><li>Item</li></body>")
    rows = segment_document(soup, "div; p", Setting(), SegmentOptions(preserve_context=False))

    assert [(r["target_tag"], r["text"]) for r in rows] == [
        ("div", "Lead"),
        ("p", "Inner text"),
        ("li", "Item"),
    ]
    assert rows[0]["id"] == "seg_0000"
    assert rows[1]["fingerprint"] == sha1_text("Inner text")


def test_segment_root_always_rewalks():
    soup = parse_html("<p>Before</p>")
    segmenter = TextSegmenter()
    cached = segmenter.segment(soup.p)
    soup.p.string = "After"
    assert segmenter.segment(soup.p) is cached
    assert _texts(segmenter.segment_root(soup.p)) == ["After"]
    assert _texts(segmenter.segment(soup.p)) == ["After"]


def test_documented_examples():
    soup = parse_html("<p>Hello <span>world</span>!</p>")
    assert _texts(TextSegmenter().segment(soup.p)) == ["Hello world!"]
    soup = parse_html("<div><p>A.</p><p>B.</p></div>")
    assert _texts(TextSegmenter().segment(soup.div)) == ["A.", "B."]
