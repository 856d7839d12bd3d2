"""LLM client boundary used by the summarizer.

The engine depends only on the ``LLMClient`` protocol. ``AnthropicLLMClient``
is the production implementation; any SDK failure surfaces as
``ProviderError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

import anthropic

from recall.config import settings
from recall.errors import ProviderError
from recall.llm.models import ModelManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationOptions:
    """Per-call generation settings."""

    temperature: float = 0.3
    max_output_tokens: int = 2000
    response_format: Literal["text", "json"] = "text"
    system: str | None = None


@runtime_checkable
class LLMClient(Protocol):
    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Return the raw model text. Raises ProviderError on failure."""
        ...


class AnthropicLLMClient:
    """Single-shot Claude calls: no tools, no streaming.

    Args:
        api_key: Anthropic API key (default from settings).
        model: Model ID override. Defaults to the ModelManager's memory model.
        timeout: Request timeout in seconds passed to the SDK.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._api_key = api_key or settings.anthropic_api_key
        self._model = model
        self._timeout = timeout or settings.summarizer_timeout_seconds
        self._client: anthropic.AsyncAnthropic | None = None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Lazily initialize the Anthropic client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key,
                timeout=self._timeout,
                max_retries=0,
            )
        return self._client

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        messages: list[dict[str, Any]] = [{"role": "user", "content": prompt}]
        # Prefill the opening brace so the reply starts as a JSON object.
        if options.response_format == "json":
            messages.append({"role": "assistant", "content": "{"})

        kwargs: dict[str, Any] = {
            "model": self._model or ModelManager.get().get_memory_model(),
            "max_tokens": options.max_output_tokens,
            "temperature": options.temperature,
            "messages": messages,
        }
        if options.system is not None:
            kwargs["system"] = options.system

        try:
            response = await self._get_client().messages.create(**kwargs)
        except anthropic.APIError as exc:
            msg = f"Anthropic request failed: {exc}"
            raise ProviderError(msg) from exc

        texts = [block.text for block in response.content if getattr(block, "type", "") == "text"]
        if not texts:
            msg = "Anthropic response contained no text"
            raise ProviderError(msg)
        text = "".join(texts)
        if options.response_format == "json":
            text = "{" + text
        return text
