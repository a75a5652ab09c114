from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from bs4 import Tag

from . import storage


DISPLAY_MODES = ("overlay", "replace")
TRIGGERS = ("scroll", "open", "hover", "manual")
HOVER_KEYS = ("alt", "ctrl", "shift")
TEXT_STYLES = ("fuzzy", "dashline")
TEXT_DECORATIONS = ("normal", "underline", "underline dashed", "underline dotted")

DEFAULT_SKIP_TAGS: Tuple[str, ...] = (
    "style", "script", "noscript", "svg", "img", "video", "audio",
    "textarea", "input", "button", "select", "option", "iframe",
    "code", "pre", "math", "object", "embed",
)

DEFAULT_INLINE_TAGS: Tuple[str, ...] = (
    "a", "abbr", "acronym", "b", "bdi", "bdo", "big", "br", "cite",
    "code", "data", "del", "dfn", "em", "i", "ins", "kbd", "mark",
    "q", "s", "samp", "small", "span", "strong", "sub", "sup",
    "time", "u", "var", "wbr",
)


@dataclass
class SegmentOptions:
    max_chunk_size: int = 1000
    # Carried for configuration compatibility; boundaries never merge short runs.
    min_chunk_size: int = 50
    preserve_sentences: bool = True
    preserve_context: bool = True
    context_overlap: int = 100


@dataclass
class Rule:
    selector: str
    display_mode: str = "overlay"
    trigger: str = "scroll"
    hover_key: Optional[str] = None
    min_len: int = 2
    max_len: int = 8000
    text_style: str = "fuzzy"
    text_decoration: str = "normal"
    translate_title: bool = False
    segment_options: SegmentOptions = field(default_factory=SegmentOptions)
    on_render_start: Optional[Callable[[Tag, str], None]] = None
    on_remove: Optional[Callable[[Tag], None]] = None

    def __post_init__(self) -> None:
        validate_rule(self)


@dataclass
class Setting:
    reflow_debounce_ms: int = 300
    visible_threshold: float = 0.1
    skip_tags: Tuple[str, ...] = DEFAULT_SKIP_TAGS
    inline_tags: Tuple[str, ...] = DEFAULT_INLINE_TAGS
    host_tag: str = "x-kt-trans"
    host_class: str = "kt-trans"

    def __post_init__(self) -> None:
        self.skip_tags = tuple(t.lower() for t in self.skip_tags)
        self.inline_tags = tuple(t.lower() for t in self.inline_tags)
        self.host_tag = self.host_tag.lower()
        if not self.host_tag:
            raise ValueError("setting.host_tag must not be empty.")
        if self.reflow_debounce_ms < 0:
            raise ValueError("setting.reflow_debounce_ms must be >= 0.")
        if not 0.0 <= self.visible_threshold <= 1.0:
            raise ValueError("setting.visible_threshold must be within [0, 1].")


def _check_choice(name: str, value: Any, choices: Tuple[str, ...]) -> None:
    if value not in choices:
        raise ValueError(f"Invalid {name}: {value!r} (expected one of {', '.join(choices)}).")


def validate_rule(rule: Rule) -> None:
    if not isinstance(rule.selector, str):
        raise ValueError("rule.selector must be a string.")
    _check_choice("rule.display_mode", rule.display_mode, DISPLAY_MODES)
    _check_choice("rule.trigger", rule.trigger, TRIGGERS)
    if rule.hover_key is not None:
        _check_choice("rule.hover_key", rule.hover_key, HOVER_KEYS)
    _check_choice("rule.text_style", rule.text_style, TEXT_STYLES)
    _check_choice("rule.text_decoration", rule.text_decoration, TEXT_DECORATIONS)
    if rule.min_len < 0 or rule.max_len < rule.min_len:
        raise ValueError(f"Invalid length bounds: min_len={rule.min_len}, max_len={rule.max_len}.")
    opts = rule.segment_options
    if opts.max_chunk_size <= 0:
        raise ValueError("segment_options.max_chunk_size must be positive.")
    if opts.context_overlap < 0:
        raise ValueError("segment_options.context_overlap must be >= 0.")


_RULE_KEYS = {f.name for f in fields(Rule)} - {"on_render_start", "on_remove"}
_SETTING_KEYS = {f.name for f in fields(Setting)}
_SEGMENT_KEYS = {f.name for f in fields(SegmentOptions)}


def _reject_unknown(section: str, data: Dict[str, Any], allowed: set[str]) -> None:
    extra = set(data.keys()) - allowed
    if extra:
        raise ValueError(f"Unknown keys in {section}: {', '.join(sorted(extra))}")


def segment_options_from_dict(data: Optional[Dict[str, Any]]) -> SegmentOptions:
    data = dict(data or {})
    _reject_unknown("segment_options", data, _SEGMENT_KEYS)
    return SegmentOptions(**data)


def rule_from_dict(data: Dict[str, Any], **callbacks: Any) -> Rule:
    if not isinstance(data, dict):
        raise ValueError("The rule section must be a JSON object.")
    data = dict(data)
    _reject_unknown("rule", data, _RULE_KEYS)
    if "selector" not in data:
        raise ValueError("Missing required field: rule.selector")
    data["segment_options"] = segment_options_from_dict(data.get("segment_options"))
    return Rule(**data, **callbacks)


def setting_from_dict(data: Optional[Dict[str, Any]]) -> Setting:
    data = dict(data or {})
    _reject_unknown("setting", data, _SETTING_KEYS)
    for key in ("skip_tags", "inline_tags"):
        if key in data:
            data[key] = tuple(data[key])
    return Setting(**data)


def config_from_dict(cfg: Dict[str, Any]) -> Tuple[Rule, Setting]:
    if not isinstance(cfg, dict):
        raise ValueError("The configuration file must contain a JSON object.")
    return rule_from_dict(cfg.get("rule") or {}), setting_from_dict(cfg.get("setting"))


def load_config(path: str | Path) -> Tuple[Rule, Setting, Dict[str, Any]]:
    """Load `config.json` and return (rule, setting, raw config)."""
    cfg = storage.read_json(path)
    rule, setting = config_from_dict(cfg)
    return rule, setting, cfg


def update_rule(rule: Rule, **patch: Any) -> Rule:
    """Return a validated copy of `rule` with `patch` applied."""
    unknown = set(patch) - {f.name for f in fields(Rule)}
    if unknown:
        raise ValueError(f"Unknown rule fields: {', '.join(sorted(unknown))}")
    if isinstance(patch.get("segment_options"), dict):
        patch["segment_options"] = segment_options_from_dict(patch["segment_options"])
    return replace(rule, **patch)


@dataclass
class PersistedSettings:
    display_mode: str = "overlay"
    text_decoration: str = "normal"
    enabled: bool = True


class SettingsStore(Protocol):
    def load(self) -> PersistedSettings:
        ...


class JsonSettingsStore:
    """Reads persisted user settings from a JSON file. Never writes."""

    def __init__(self, path: str | Path, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.logger = logger or logging.getLogger(__name__)

    def load(self) -> PersistedSettings:
        data = storage.read_json_object(self.path)
        defaults = PersistedSettings()
        settings = PersistedSettings(
            display_mode=data.get("displayMode", data.get("display_mode", defaults.display_mode)),
            text_decoration=data.get("textDecoration", data.get("text_decoration", defaults.text_decoration)),
            enabled=bool(data.get("enabled", defaults.enabled)),
        )
        if settings.display_mode not in DISPLAY_MODES:
            self.logger.warning("Ignoring stored display mode %r.", settings.display_mode)
            settings.display_mode = defaults.display_mode
        if settings.text_decoration not in TEXT_DECORATIONS:
            self.logger.warning("Ignoring stored text decoration %r.", settings.text_decoration)
            settings.text_decoration = defaults.text_decoration
        return settings


def skip_tag_set(setting: Setting) -> List[str]:
    tags = list(dict.fromkeys(setting.skip_tags))
    if setting.host_tag not in tags:
        tags.append(setting.host_tag)
    return tags
