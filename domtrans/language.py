from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, TypeVar

from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException


@dataclass(frozen=True)
class DetectionResult:
    language: str
    percentage: float
    is_reliable: bool


class LanguageClassifier(Protocol):
    async def detect(self, text: str) -> Optional[DetectionResult]:
        ...


class LangDetectClassifier:
    """`LanguageClassifier` over langdetect. The top candidate wins; probabilities become percentages."""

    def __init__(self, seed: Optional[int] = 0, min_probability: float = 0.5):
        if seed is not None:
            # langdetect is randomized unless seeded
            DetectorFactory.seed = seed
        self.min_probability = min_probability

    async def detect(self, text: str) -> Optional[DetectionResult]:
        try:
            candidates = detect_langs(text)
        except LangDetectException:
            return None
        if not candidates:
            return None
        top = candidates[0]
        return DetectionResult(top.lang, top.prob * 100.0, top.prob >= self.min_probability)


class HasText(Protocol):
    text: str


T = TypeVar("T", bound=HasText)


class ContentLanguageFilter:
    """
    Keeps segments whose text is in the expected source language.

    Every uncertain outcome (short text, unreliable guess, classifier error,
    no classifier at all) counts as a match, so classification never blocks
    translation.
    """

    CACHE_KEY_CHARS = 100
    PAGE_SAMPLE_LIMIT = 10
    PAGE_SAMPLE_CHARS = 1000

    def __init__(
        self,
        classifier: Optional[LanguageClassifier] = None,
        source_language: str = "en",
        min_confidence: float = 95.0,
        min_text_length: int = 10,
        logger: Optional[logging.Logger] = None,
    ):
        self.classifier = classifier
        self.source_language = source_language
        self.min_confidence = min_confidence
        self.min_text_length = min_text_length
        self.logger = logger or logging.getLogger(__name__)
        self._cache: Dict[str, DetectionResult] = {}

    def _cache_key(self, text: str) -> str:
        return text.strip().lower()[: self.CACHE_KEY_CHARS]

    async def detect_language(self, text: str) -> Optional[DetectionResult]:
        if self.classifier is None or not text or len(text.strip()) < self.min_text_length:
            return None

        key = self._cache_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            result = await self.classifier.detect(text)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Language detection failed: %s", exc)
            return None

        if result is None or not result.is_reliable:
            return None
        self._cache[key] = result
        return result

    async def is_source_language(self, text: str) -> bool:
        result = await self.detect_language(text)
        if result is None or not result.is_reliable:
            return True
        return result.language == self.source_language and result.percentage >= self.min_confidence

    async def detect_batch(self, texts: Sequence[str]) -> List[Optional[DetectionResult]]:
        return list(await asyncio.gather(*(self.detect_language(t) for t in texts)))

    async def are_all_source_language(self, texts: Sequence[str]) -> List[bool]:
        return list(await asyncio.gather(*(self.is_source_language(t) for t in texts)))

    async def filter_by_source_language(self, segments: Sequence[T]) -> List[T]:
        if self.classifier is None:
            return list(segments)
        verdicts = await self.are_all_source_language([seg.text for seg in segments])
        return [seg for seg, keep in zip(segments, verdicts) if keep]

    async def detect_page_language(self, sample_texts: Sequence[str]) -> Optional[str]:
        if not sample_texts:
            return None
        samples = [t for t in sample_texts if t and len(t.strip()) > self.min_text_length]
        combined = " ".join(samples[: self.PAGE_SAMPLE_LIMIT])[: self.PAGE_SAMPLE_CHARS]
        result = await self.detect_language(combined)
        return result.language if result is not None and result.is_reliable else None

    def clear_cache(self) -> None:
        self._cache.clear()


def language_filter_from_dict(
    section: Optional[Dict[str, Any]], logger: Optional[logging.Logger] = None
) -> ContentLanguageFilter:
    """Build the filter from the `language` config section; disabled means pass-through."""
    section = section or {}
    unknown = set(section) - {"enabled", "source_language", "min_confidence"}
    if unknown:
        raise ValueError(f"Unknown language fields: {', '.join(sorted(unknown))}")
    classifier = LangDetectClassifier() if section.get("enabled") else None
    return ContentLanguageFilter(
        classifier,
        source_language=str(section.get("source_language", "en")),
        min_confidence=float(section.get("min_confidence", 95.0)),
        logger=logger,
    )
