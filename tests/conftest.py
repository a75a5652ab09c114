from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import pytest


def pytest_configure() -> None:
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks and zero-delay callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class GatedTranslator:
    """Provider whose calls block until the test opens their gate."""

    def __init__(self, prefix: str = "X:"):
        self.prefix = prefix
        self.calls: List[str] = []
        self.gates: List[asyncio.Event] = []

    async def translate(self, text: str) -> str:
        self.calls.append(text)
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        return f"{self.prefix}{text}"


class FixedClassifier:
    """Language classifier returning one canned result for every text."""

    def __init__(self, language: Optional[str], percentage: float = 99.0, reliable: bool = True):
        from domtrans.language import DetectionResult

        self.result = DetectionResult(language, percentage, reliable) if language else None
        self.calls: List[str] = []

    async def detect(self, text: str):
        self.calls.append(text)
        return self.result


@pytest.fixture
def gated() -> GatedTranslator:
    return GatedTranslator()
