from __future__ import annotations

import argparse

from domtrans import storage
from domtrans.config import SegmentOptions, load_config
from domtrans.html_parser import parse_html
from domtrans.segmenter import segment_document


def main() -> None:
    parser = argparse.ArgumentParser(description="Segment the translation targets of an HTML file.")
    parser.add_argument("--html", required=True, help="Path to source HTML")
    parser.add_argument("--out", required=True, help="Output segments file (.json or .csv)")
    parser.add_argument("--config", default="", help="Optional config.json for selector and options")
    parser.add_argument("--selector", default="p; li; h1; h2; h3", help="Selector spec when no config is given")
    args = parser.parse_args()

    if args.config:
        rule, setting, _ = load_config(args.config)
        selector, options = rule.selector, rule.segment_options
    else:
        setting, selector, options = None, args.selector, SegmentOptions()

    soup = parse_html(storage.read_text(args.html))
    rows = segment_document(soup, selector, setting, options)
    out = storage.write_segment_records(args.out, rows)

    print(f"Wrote {len(rows)} segments to {out}")


if __name__ == "__main__":
    main()
