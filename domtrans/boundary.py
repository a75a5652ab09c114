from __future__ import annotations

from typing import Iterable, Optional

from bs4 import Tag

from .config import DEFAULT_INLINE_TAGS, DEFAULT_SKIP_TAGS
from .html_parser import class_list, effective_display
from .models import BoundaryInfo


INLINE_DISPLAYS = frozenset({"inline", "inline-block", "inline-flex", "inline-grid"})
EDITABLE_VALUES = frozenset({"", "true", "plaintext-only"})
OPT_OUT_CLASS = "notranslate"

_SKIPPED = BoundaryInfo(is_inline=False, is_skipped=True, is_translatable=False)


class BoundaryClassifier:
    """Decides how a structural node affects segmentation. Pure and side-effect free."""

    def __init__(
        self,
        skip_tags: Optional[Iterable[str]] = None,
        inline_tags: Optional[Iterable[str]] = None,
    ) -> None:
        self.skip_tags = frozenset(t.lower() for t in (skip_tags if skip_tags is not None else DEFAULT_SKIP_TAGS))
        self.inline_tags = frozenset(
            t.lower() for t in (inline_tags if inline_tags is not None else DEFAULT_INLINE_TAGS)
        )

    def is_skip_tag(self, tag: Tag) -> bool:
        return (tag.name or "").lower() in self.skip_tags

    @staticmethod
    def is_opted_out(tag: Tag) -> bool:
        if OPT_OUT_CLASS in class_list(tag):
            return True
        if str(tag.get("translate", "")).strip().lower() == "no":
            return True
        editable = tag.get("contenteditable")
        return editable is not None and str(editable).strip().lower() in EDITABLE_VALUES

    def classify(self, tag: Tag) -> BoundaryInfo:
        if self.is_skip_tag(tag) or self.is_opted_out(tag):
            return _SKIPPED
        display = effective_display(tag)
        is_inline = display in INLINE_DISPLAYS or (tag.name or "").lower() in self.inline_tags
        return BoundaryInfo(is_inline=is_inline, is_skipped=False, is_translatable=True, display=display)
