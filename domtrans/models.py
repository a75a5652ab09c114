from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bs4 import NavigableString, Tag


@dataclass
class SegmentContext:
    before: Optional[str] = None
    after: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.before or self.after)


@dataclass
class Segment:
    """
    A run of text leaves grouped for one translation call.

    `leaves` are non-owning references into the document. `fingerprint`
    digests `text` only, so identical text anywhere shares a cache entry.
    """

    leaves: List[NavigableString]
    text: str
    anchor_top: Optional[Tag] = None
    anchor_bottom: Optional[Tag] = None
    context: SegmentContext = field(default_factory=SegmentContext)
    fingerprint: str = ""

    def as_record(self, index: int = 0) -> Dict[str, Any]:
        return {
            "id": f"seg_{index:04d}",
            "text": self.text,
            "fingerprint": self.fingerprint,
            "leaves": len(self.leaves),
            "anchor_top": self.anchor_top.name if self.anchor_top is not None else "",
            "anchor_bottom": self.anchor_bottom.name if self.anchor_bottom is not None else "",
            "context_before": self.context.before or "",
            "context_after": self.context.after or "",
        }


@dataclass(frozen=True)
class BoundaryInfo:
    is_inline: bool
    is_skipped: bool
    is_translatable: bool
    display: str = ""


@dataclass
class TargetCache:
    """Per-target bookkeeping owned by the render controller."""

    last_render_token: Optional[str] = None


@dataclass
class ChangeBatch:
    """One delivery from the host's change feed."""

    added: List[Any] = field(default_factory=list)
    removed: List[Any] = field(default_factory=list)
    attribute_changed: List[Any] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.attribute_changed)
