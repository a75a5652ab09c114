"""Interfaces to the host environment's change and visibility notifications."""

from __future__ import annotations

from typing import Callable, List, Optional, Protocol

from bs4 import Tag

from .models import ChangeBatch
from .utils import NodeMap


ChangeCallback = Callable[[ChangeBatch], None]
VisibleCallback = Callable[[Tag], None]


class ChangeFeed(Protocol):
    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        ...


class VisibilityFeed(Protocol):
    def subscribe(self, node: Tag, callback: VisibleCallback) -> None:
        ...

    def unsubscribe(self, node: Tag) -> None:
        ...

    def disconnect(self) -> None:
        ...


class ChangeFeedHub:
    """A change feed the host publishes mutation batches into."""

    def __init__(self) -> None:
        self._subscribers: List[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, batch: ChangeBatch) -> None:
        for callback in list(self._subscribers):
            callback(batch)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class ManualVisibilityFeed:
    """
    Visibility feed driven by the host.

    The host reports intersection ratios through `notify_visible`; a node's
    callback fires once its ratio reaches the threshold.
    """

    def __init__(self, threshold: float = 0.1):
        self.threshold = threshold
        self._observed: NodeMap[VisibleCallback] = NodeMap()

    def subscribe(self, node: Tag, callback: VisibleCallback) -> None:
        self._observed.set(node, callback)

    def unsubscribe(self, node: Tag) -> None:
        self._observed.pop(node)

    def disconnect(self) -> None:
        self._observed.clear()

    def is_observing(self, node: Tag) -> bool:
        return node in self._observed

    @property
    def observed(self) -> List[Tag]:
        return self._observed.keys()

    def notify_visible(self, node: Tag, ratio: float = 1.0) -> bool:
        """Report that `node` intersects the viewport; returns whether a callback fired."""
        callback: Optional[VisibleCallback] = self._observed.get(node)
        if callback is None or ratio < self.threshold or ratio <= 0:
            return False
        callback(node)
        return True
