from __future__ import annotations

import asyncio
import inspect
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

from .models import Segment


SYSTEM_PROMPT_TRANSLATION = """\
You are a professional translation engine embedded in a web page reader.
Translate the user's text into {target_language}.
The text may start or end with a short fragment of neighbouring text wrapped in "...": translate it as well, in place.
Return only the translation, with no quotes, labels or explanations."""

_LEADING_TOKEN_RE = re.compile(r"^\S*\s*")
_TRAILING_TOKEN_RE = re.compile(r"\s*\S*$")


class TranslationProvider(Protocol):
    async def translate(self, text: str) -> str:
        ...


class MissingApiKeyError(RuntimeError):
    """Raised when a required provider API key is missing."""


class TranslationProviderError(RuntimeError):
    """Raised when the translation provider rejects a request."""


@dataclass
class OpenAIConfig:
    model: str = "gpt-4.1-mini"
    temperature: float = 0.1
    max_output_tokens: int = 2000
    target_language: str = "Simplified Chinese"


class OpenAITranslator:
    """
    Translation provider backed by the OpenAI chat completions API.

    Requires:
      - `openai` python package
      - OPENAI_API_KEY in env or provided.
    """

    def __init__(self, api_key: Optional[str] = None, cfg: Optional[OpenAIConfig] = None):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY", "")
        if not self.api_key:
            raise MissingApiKeyError(
                "OPENAI_API_KEY is missing: set the environment variable or add it to your .env."
            )
        self.cfg = cfg or OpenAIConfig()

        from openai import AsyncOpenAI  # type: ignore

        self._client = AsyncOpenAI(api_key=self.api_key)

    async def translate(self, text: str) -> str:
        import openai  # type: ignore

        try:
            resp = await self._client.chat.completions.create(
                model=self.cfg.model,
                messages=[
                    {
                        "role": "system",
                        "content": SYSTEM_PROMPT_TRANSLATION.format(target_language=self.cfg.target_language),
                    },
                    {"role": "user", "content": text},
                ],
                temperature=self.cfg.temperature,
                max_tokens=self.cfg.max_output_tokens,
            )
        except openai.OpenAIError as exc:
            raise TranslationProviderError(f"OpenAI translation failed: {exc}") from exc

        content = resp.choices[0].message.content or ""
        return content.strip()

    async def aclose(self) -> None:
        await self._client.close()


class DummyTranslator:
    """Offline translator for testing/dev. Does not translate; just marks content."""

    def __init__(self, prefix: str = "X:"):
        self.prefix = prefix
        self.calls: list[str] = []

    async def translate(self, text: str) -> str:
        self.calls.append(text)
        return f"{self.prefix}{text}"


ProviderFactory = Callable[[], Union[TranslationProvider, Awaitable[TranslationProvider]]]


class LazyTranslator:
    """
    Creates the wrapped provider on first use, once.

    Concurrent first calls share one creation. A failed creation is logged
    and retried by the next call.
    """

    def __init__(self, factory: ProviderFactory, logger: Optional[logging.Logger] = None):
        self._factory = factory
        self._provider: Optional[TranslationProvider] = None
        self._lock = asyncio.Lock()
        self.logger = logger or logging.getLogger(__name__)

    @property
    def ready(self) -> bool:
        return self._provider is not None

    async def ensure_ready(self) -> TranslationProvider:
        if self._provider is not None:
            return self._provider
        async with self._lock:
            if self._provider is None:
                try:
                    created = self._factory()
                    if inspect.isawaitable(created):
                        created = await created
                except Exception:
                    self.logger.exception("Failed to create translation provider.")
                    raise
                self._provider = created  # type: ignore[assignment]
                self.logger.info("Translation provider initialized: %s", type(created).__name__)
        return self._provider  # type: ignore[return-value]

    async def translate(self, text: str) -> str:
        provider = await self.ensure_ready()
        return await provider.translate(text)

    async def aclose(self) -> None:
        provider, self._provider = self._provider, None
        closer = getattr(provider, "aclose", None)
        if closer is not None:
            await closer()


def build_request(segment: Segment) -> str:
    """Wrap segment text with its neighbours as `...before text after...`."""
    text = segment.text
    if segment.context.before:
        text = f"...{segment.context.before} {text}"
    if segment.context.after:
        text = f"{text} {segment.context.after}..."
    return text


def strip_context(translation: str, segment: Segment) -> str:
    """Drop the leading/trailing whitespace-delimited token added by the context wrap."""
    clean = translation
    if segment.context.before:
        clean = _LEADING_TOKEN_RE.sub("", clean, count=1)
    if segment.context.after:
        clean = _TRAILING_TOKEN_RE.sub("", clean, count=1)
    return clean


class SegmentTranslator:
    """
    Fingerprint-keyed translation cache with in-flight request sharing.

    The first request for a fingerprint starts one provider call; concurrent
    requests for the same fingerprint await that same task instead of
    calling the provider again.
    """

    def __init__(self, provider: TranslationProvider, logger: Optional[logging.Logger] = None):
        self.provider = provider
        self.cache: Dict[str, str] = {}
        self._inflight: Dict[str, "asyncio.Task[str]"] = {}
        self.logger = logger or logging.getLogger(__name__)

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    def is_in_flight(self, fingerprint: str) -> bool:
        return fingerprint in self._inflight

    async def translate(self, segment: Segment) -> str:
        cached = self.cache.get(segment.fingerprint)
        if cached:
            return cached

        task = self._inflight.get(segment.fingerprint)
        if task is None:
            task = asyncio.ensure_future(self._fetch(segment))
            self._inflight[segment.fingerprint] = task
        else:
            self.logger.debug("Joining in-flight translation %s.", segment.fingerprint[:10])
        return await asyncio.shield(task)

    async def _fetch(self, segment: Segment) -> str:
        try:
            translation = await self.provider.translate(build_request(segment))
            clean = strip_context(translation or "", segment)
            if clean:
                self.cache[segment.fingerprint] = clean
            return clean
        finally:
            # clear() may have let a newer call take this fingerprint
            if self._inflight.get(segment.fingerprint) is asyncio.current_task():
                self._inflight.pop(segment.fingerprint)

    def clear(self) -> None:
        self.cache.clear()
        self._inflight.clear()


def build_translator(provider: str, cfg: Optional[Dict[str, Any]] = None) -> TranslationProvider:
    """Create a provider from the `translation` config section, deferring setup to first use."""
    cfg = cfg or {}
    provider = (provider or "dummy").lower()
    if provider == "openai":
        ocfg = cfg.get("openai", {})
        openai_cfg = OpenAIConfig(
            model=ocfg.get("model", "gpt-4.1-mini"),
            temperature=float(ocfg.get("temperature", 0.1)),
            max_output_tokens=int(ocfg.get("max_output_tokens", 2000)),
            target_language=ocfg.get("target_language", "Simplified Chinese"),
        )
        return LazyTranslator(lambda: OpenAITranslator(cfg=openai_cfg))
    if provider == "dummy":
        return DummyTranslator(prefix=cfg.get("dummy", {}).get("prefix", "X:"))
    raise ValueError(f"Unknown translation provider: {provider}")
