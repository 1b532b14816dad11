"""Provider-agnostic types and abstract base class for completion adapters.

All runtime code should depend on these types, never on provider-specific SDKs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass

from attache.history import HistoryMessage


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

@dataclass
class TextDelta:
    """A fragment of streamed assistant text."""
    text: str


@dataclass
class ToolCallRequest:
    """A complete function/tool invocation requested by the model.

    Attributes:
        id: Provider-assigned call ID (e.g. ``call_xxxxx`` for OpenAI,
            ``toolu_xxxxx`` for Anthropic).
        name: Tool/function name.
        args: Parsed arguments dict (``{}`` when the model sent malformed JSON).
    """
    id: str
    name: str
    args: dict


@dataclass
class StreamError:
    """Terminal failure of a completion stream. Nothing follows it."""
    message: str


StreamEvent = TextDelta | ToolCallRequest | StreamError


@dataclass
class FunctionSchema:
    """Wraps a tool/function schema dict for type clarity.

    The ``parameters`` dict is already JSON-schema-shaped and provider-agnostic.
    """
    name: str
    description: str
    parameters: dict


@dataclass
class SamplingParams:
    temperature: float | None = None
    max_output_tokens: int | None = None


# ---------------------------------------------------------------------------
# CompletionAdapter ABC
# ---------------------------------------------------------------------------

class CompletionAdapter(ABC):
    """Abstract interface that every model provider adapter must implement.

    No retries happen here; callers decide what a failed stream means.
    """

    provider_type: str = ""

    @abstractmethod
    def stream(
        self,
        system_prompt: str,
        messages: list[HistoryMessage],
        tools: list[FunctionSchema],
        sampling: SamplingParams | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one completion.

        Yields ``TextDelta`` as text arrives, then one ``ToolCallRequest`` per
        requested tool call. Provider failures are yielded as a single
        terminal ``StreamError`` instead of being raised.
        """

    @abstractmethod
    async def summarize(
        self,
        system_prompt: str,
        content: str,
        *,
        max_output_tokens: int,
        temperature: float,
    ) -> str:
        """One-shot, non-streaming generation of a single user message.

        Used by the compaction engine. Raises on provider failure.
        """
