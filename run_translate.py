from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv

from domtrans import storage
from domtrans.config import JsonSettingsStore, Rule, Setting, load_config, update_rule
from domtrans.controller import RenderController
from domtrans.html_parser import parse_html
from domtrans.language import language_filter_from_dict
from domtrans.segmenter import segment_document
from domtrans.translator import LazyTranslator, MissingApiKeyError, build_translator
from domtrans.utils import setup_logger


def export_segments(
    html_text: str, rule: Rule, setting: Setting, out_path: Path, logger: logging.Logger
) -> List[Dict[str, Any]]:
    rows = segment_document(parse_html(html_text), rule.selector, setting, rule.segment_options)
    storage.write_segment_records(out_path, rows)
    logger.info(f"   Wrote {len(rows)} segments to {out_path}")
    return rows


async def translate_document(
    html_text: str, rule: Rule, setting: Setting, cfg: Dict[str, Any], logger: logging.Logger
) -> str:
    """Register every target with the 'open' trigger, wait for the renders and return the page."""
    if rule.trigger != "open":
        logger.info(f"   Offline run: trigger {rule.trigger!r} replaced by 'open'.")
        rule = update_rule(rule, trigger="open")

    tcfg = cfg.get("translation", {})
    provider = build_translator(tcfg.get("provider", "dummy"), tcfg)
    if isinstance(provider, LazyTranslator):
        # surface credential problems before any render swallows them
        await provider.ensure_ready()

    paths = cfg.get("paths", {})
    store = JsonSettingsStore(paths["settings_json"], logger=logger) if paths.get("settings_json") else None

    language_filter = language_filter_from_dict(cfg.get("language"), logger=logger)
    if language_filter.classifier is not None:
        logger.info(f"   Keeping only {language_filter.source_language!r} segments (langdetect).")

    soup = parse_html(html_text)
    controller = RenderController(
        soup, rule, setting, provider, language_filter=language_filter, settings_store=store, logger=logger
    )
    try:
        controller.register()
        await controller.wait_idle()
        logger.info(
            f"   Rendered {len(controller.targets)} targets, {len(controller.translator.cache)} cached translations."
        )
    finally:
        closer = getattr(provider, "aclose", None)
        if closer is not None:
            await closer()
    return str(soup)


def main() -> None:
    parser = argparse.ArgumentParser(description="Translate an HTML page with overlays or in place.")
    parser.add_argument("--config", type=str, default="config.json", help="Path to config.json")
    parser.add_argument("--html", type=str, default="", help="Override paths.raw_html")
    parser.add_argument("--out", type=str, default="", help="Override paths.output_html")
    args = parser.parse_args()

    load_dotenv()

    try:
        rule, setting, cfg = load_config(args.config)
    except (OSError, ValueError) as exc:
        raise SystemExit(f"Invalid configuration: {exc}")
    paths = cfg.get("paths", {})

    logger = setup_logger(paths.get("logs_dir", "logs"))

    raw_html_path = Path(args.html or paths["raw_html"])
    out_path = Path(args.out or paths.get("output_html", "output/translated.html"))
    html_text = storage.read_text(raw_html_path)

    if paths.get("segments_json"):
        try:
            logger.info("1) Segmentation…")
            export_segments(html_text, rule, setting, Path(paths["segments_json"]), logger)
        except Exception:
            logger.exception("Segmentation failed.")
            raise SystemExit(1)

    try:
        logger.info(f"2) Translation (mode={rule.display_mode})…")
        translated = asyncio.run(translate_document(html_text, rule, setting, cfg, logger))
    except MissingApiKeyError:
        logger.error("OPENAI_API_KEY is missing: set it in the environment or .env.")
        raise SystemExit(1)
    except Exception:
        logger.exception("Translation failed.")
        raise SystemExit(1)

    storage.write_text(out_path, translated)
    logger.info(f"Done. Wrote {out_path}")


if __name__ == "__main__":
    main()
