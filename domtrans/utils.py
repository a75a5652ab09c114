from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path
from typing import Any, Dict, Generic, Iterable, Iterator, List, Optional, Tuple, TypeVar


V = TypeVar("V")


def setup_logger(log_dir: str | Path, name: str = "domtrans") -> logging.Logger:
    """Create a simple file+console logger."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)

    # Avoid adding multiple handlers when drivers are re-run in-process
    if logger.handlers:
        return logger

    fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")

    fh = logging.FileHandler(log_dir / "domtrans.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(fmt)

    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(fmt)

    logger.addHandler(fh)
    logger.addHandler(ch)
    return logger


def sha1_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def split_list(spec: Optional[str], separators: str = ";") -> List[str]:
    """Split a `a; b; c` style option into trimmed, non-empty items."""
    if not spec:
        return []
    pattern = "[" + re.escape(separators) + "]"
    return [part.strip() for part in re.split(pattern, spec) if part.strip()]


class NodeMap(Generic[V]):
    """
    Mapping keyed by node identity.

    bs4 tags compare and hash by their markup, so two distinct `<p>A</p>`
    nodes would collide in a plain dict. Entries keep a strong reference to
    the node, which also keeps its id() from being reused while stored.
    """

    def __init__(self) -> None:
        self._items: Dict[int, Tuple[Any, V]] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, node: Any) -> bool:
        entry = self._items.get(id(node))
        return entry is not None and entry[0] is node

    def __iter__(self) -> Iterator[Any]:
        return (node for node, _ in list(self._items.values()))

    def get(self, node: Any, default: Optional[V] = None) -> Optional[V]:
        entry = self._items.get(id(node))
        if entry is None or entry[0] is not node:
            return default
        return entry[1]

    def set(self, node: Any, value: V) -> None:
        self._items[id(node)] = (node, value)

    def pop(self, node: Any, default: Optional[V] = None) -> Optional[V]:
        if node not in self:
            return default
        return self._items.pop(id(node))[1]

    def items(self) -> List[Tuple[Any, V]]:
        return list(self._items.values())

    def keys(self) -> List[Any]:
        return [node for node, _ in self._items.values()]

    def clear(self) -> None:
        self._items.clear()


class NodeSet:
    """Insertion-ordered set keyed by node identity."""

    def __init__(self, nodes: Iterable[Any] = ()) -> None:
        self._items: Dict[int, Any] = {}
        for node in nodes:
            self.add(node)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __contains__(self, node: Any) -> bool:
        return self._items.get(id(node)) is node

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._items.values()))

    def add(self, node: Any) -> None:
        self._items[id(node)] = node

    def discard(self, node: Any) -> None:
        if node in self:
            del self._items[id(node)]

    def clear(self) -> None:
        self._items.clear()
