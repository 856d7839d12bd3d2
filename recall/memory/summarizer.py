"""Delta summarization of a message batch into structured memory.

The summarizer folds a new batch of messages into the previous summary
(if any) and returns a validated ``summary + key_events`` result. Anything
the model returns that does not fit the schema is a SummarizationFailure;
the worker decides whether to retry.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from recall.config import settings
from recall.errors import ProviderError, SummarizationFailure
from recall.llm.client import GenerationOptions
from recall.memory.models import KeyEvent, SummaryResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from recall.llm.client import LLMClient
    from recall.memory.rate_limit import TokenBucket
    from recall.memory.tokens import TokenAccountant
    from recall.messages.models import Message

logger = logging.getLogger(__name__)


# -- Prompt building ---------------------------------------------------------


def build_system_prompt(token_ceiling: int, max_key_events: int, chars_per_token: float = 4.0) -> str:
    """Build the instructions sent as the system prompt."""
    char_budget = int(token_ceiling * chars_per_token)
    return (
        "You are a conversation memory assistant. You compress a conversation "
        "into a concise structured memory that later replaces the raw messages.\n\n"
        f"The summary must use at most {token_ceiling} tokens "
        f"(approximately {char_budget} characters).\n\n"
        "Output a JSON object with:\n"
        "- summary: concise prose summary of everything that happened, "
        "folding in the previous summary when one is given\n"
        f"- keyEvents: array of at most {max_key_events} of the most important events, each with:\n"
        "  - description: what happened (1 sentence)\n"
        "  - participants: array of participant names involved\n"
        '  - importance: "high", "medium", or "low"\n'
        "  - timestamp: ISO datetime of the event, if known\n\n"
        "Keep only information needed to continue the conversation. "
        "Respond with valid JSON only."
    )


def _format_key_events(events: Sequence[KeyEvent]) -> str:
    lines = []
    for event in events:
        who = ", ".join(sorted(event.participants))
        suffix = f" [{who}]" if who else ""
        lines.append(f"- ({event.importance}) {event.description}{suffix}")
    return "\n".join(lines)


def build_summary_prompt(
    previous_summary: str | None,
    previous_key_events: Sequence[KeyEvent] | None,
    message_batch: Sequence[Message],
) -> str:
    """Build the user prompt: prior memory as context, then the new messages."""
    parts = []
    if previous_summary:
        prior = f"<previous_summary>\n{previous_summary}\n</previous_summary>"
        if previous_key_events:
            prior += (
                f"\n<previous_key_events>\n{_format_key_events(previous_key_events)}"
                "\n</previous_key_events>"
            )
        parts.append(prior)

    conversation = "\n".join(
        f"[{m.created_at}] {m.sender_label}: {m.content}" for m in message_batch
    )
    parts.append(f"<new_messages>\n{conversation}\n</new_messages>")
    parts.append(
        "Update the memory with the new messages and respond with the JSON object only."
    )
    return "\n\n".join(parts)


# -- Parsing -----------------------------------------------------------------


def _extract_json(text: str) -> str:
    """Strip markdown fences or chatter around the JSON object."""
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        msg = "No JSON object in summarizer output"
        raise SummarizationFailure(msg)
    return text[start:end]


def parse_summary_result(text: str) -> SummaryResult:
    """Parse and validate the model's JSON output.

    Raises:
        SummarizationFailure: output is not JSON or does not match the schema.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = json.loads(_extract_json(text))
        except json.JSONDecodeError as exc:
            msg = "Summarizer output is not valid JSON"
            raise SummarizationFailure(msg) from exc

    if not isinstance(data, dict):
        msg = f"Summarizer output is a {type(data).__name__}, expected an object"
        raise SummarizationFailure(msg)

    try:
        return SummaryResult.model_validate(data)
    except ValidationError as exc:
        msg = f"Summarizer output does not match schema: {exc.error_count()} error(s)"
        raise SummarizationFailure(msg) from exc


# -- Summarizer --------------------------------------------------------------


class Summarizer:
    """Produces the next memory entry's content from a message batch.

    Args:
        llm: LLM client used for generation.
        accountant: Token accountant used for the summary ceiling.
        rate_limiter: Optional token bucket gating LLM calls.
        timeout: Seconds allowed for one LLM call (default from settings).
    """

    def __init__(
        self,
        llm: LLMClient,
        accountant: TokenAccountant,
        *,
        rate_limiter: TokenBucket | None = None,
        timeout: float | None = None,
        max_key_events: int | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> None:
        self._llm = llm
        self._accountant = accountant
        self._rate_limiter = rate_limiter
        self._timeout = timeout or settings.summarizer_timeout_seconds
        self._max_key_events = max_key_events or settings.max_key_events
        self._temperature = settings.summarizer_temperature if temperature is None else temperature
        self._max_output_tokens = max_output_tokens or settings.summarizer_max_output_tokens

    async def summarize(
        self,
        previous_summary: str | None,
        previous_key_events: Sequence[KeyEvent] | None,
        message_batch: Sequence[Message],
    ) -> SummaryResult:
        """Summarize *message_batch* on top of the previous memory.

        Raises:
            SummarizationFailure: LLM error, timeout, or malformed output.
        """
        if not message_batch:
            msg = "message_batch must not be empty"
            raise ValueError(msg)

        ceiling = self._accountant.compressed_token_ceiling
        options = GenerationOptions(
            temperature=self._temperature,
            max_output_tokens=self._max_output_tokens,
            response_format="json",
            system=build_system_prompt(
                ceiling, self._max_key_events, self._accountant.chars_per_token
            ),
        )
        prompt = build_summary_prompt(previous_summary, previous_key_events, message_batch)

        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()

        try:
            raw = await asyncio.wait_for(self._llm.generate(prompt, options), timeout=self._timeout)
        except TimeoutError as exc:
            msg = f"LLM call timed out after {self._timeout}s"
            raise SummarizationFailure(msg) from exc
        except ProviderError as exc:
            msg = f"LLM call failed: {exc}"
            raise SummarizationFailure(msg) from exc

        result = parse_summary_result(raw)

        if len(result.key_events) > self._max_key_events:
            logger.info(
                "Summarizer returned %d key events, keeping the first %d",
                len(result.key_events),
                self._max_key_events,
            )
            result = result.model_copy(update={"key_events": result.key_events[: self._max_key_events]})

        summary_tokens = self._accountant.estimate_tokens(result.summary)
        if summary_tokens > ceiling:
            logger.warning(
                "Summary exceeds token ceiling (%d > %d), accepting anyway",
                summary_tokens,
                ceiling,
            )
        return result
