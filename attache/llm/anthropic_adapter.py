"""Anthropic adapter - wraps the ``anthropic`` SDK for Claude models.

This is the **only** module that imports the ``anthropic`` package.

Key Anthropic API differences from OpenAI:
- System prompt is a separate ``system`` parameter, not a message.
- Strict user/assistant alternation required - consecutive same-role messages
  must be merged.
- Tool results are sent inside a ``user`` message with ``tool_result`` blocks.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import anthropic

from attache.history import ASSISTANT, TOOL, HistoryMessage
from attache.logging import get_logger
from .base import (
    CompletionAdapter,
    FunctionSchema,
    SamplingParams,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCallRequest,
)

logger = get_logger()

DEFAULT_MAX_OUTPUT_TOKENS = 8192


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_tools(schemas: list[FunctionSchema] | None) -> list[dict] | None:
    """Convert FunctionSchema list to Anthropic tool format."""
    if not schemas:
        return None
    return [
        {
            "name": s.name,
            "description": s.description,
            "input_schema": s.parameters,
        }
        for s in schemas
    ]


def _to_anthropic(msg: HistoryMessage) -> dict:
    if msg.role == TOOL:
        return {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": tr.call_id, "content": tr.output}
                for tr in msg.tool_results
            ],
        }
    if msg.role == ASSISTANT:
        blocks: list[dict] = []
        if msg.text:
            blocks.append({"type": "text", "text": msg.text})
        for tc in msg.tool_calls:
            blocks.append({"type": "tool_use", "id": tc.id, "name": tc.name, "input": tc.args})
        if not blocks:
            blocks = [{"type": "text", "text": "(no content)"}]
        return {"role": "assistant", "content": blocks}
    return {"role": "user", "content": msg.text or "(empty)"}


def _ensure_alternation(messages: list[dict]) -> list[dict]:
    """Merge consecutive same-role messages to satisfy Anthropic's alternation rule.

    Anthropic requires strict user/assistant alternation. If two consecutive
    messages have the same role, merge their content.
    """
    if not messages:
        return messages

    merged: list[dict] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            prev = merged[-1]
            prev["content"] = _as_blocks(prev.get("content", "")) + _as_blocks(msg.get("content", ""))
        else:
            merged.append(dict(msg))
    return merged


def _as_blocks(content) -> list[dict]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return list(content)


# ---------------------------------------------------------------------------
# AnthropicAdapter
# ---------------------------------------------------------------------------


class AnthropicAdapter(CompletionAdapter):
    """Adapter that wraps ``anthropic.AsyncAnthropic`` for Claude models."""

    provider_type = "claude"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str | None = None,
        timeout_ms: int = 300_000,
    ):
        self.model = model
        kwargs: dict[str, Any] = {"api_key": api_key, "timeout": timeout_ms / 1000.0}
        if base_url:
            kwargs["base_url"] = base_url
        self._client = anthropic.AsyncAnthropic(**kwargs)

    async def stream(
        self,
        system_prompt: str,
        messages: list[HistoryMessage],
        tools: list[FunctionSchema],
        sampling: SamplingParams | None = None,
    ) -> AsyncIterator[StreamEvent]:
        sampling = sampling or SamplingParams()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": _ensure_alternation([_to_anthropic(m) for m in messages]),
            "max_tokens": sampling.max_output_tokens or DEFAULT_MAX_OUTPUT_TOKENS,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        anthropic_tools = _build_tools(tools)
        if anthropic_tools:
            kwargs["tools"] = anthropic_tools
        if sampling.temperature is not None:
            kwargs["temperature"] = sampling.temperature

        calls: list[ToolCallRequest] = []
        pending_tool = None
        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for event in stream:
                    etype = getattr(event, "type", None)
                    if etype == "content_block_start":
                        block = getattr(event, "content_block", None)
                        if block and getattr(block, "type", None) == "tool_use":
                            pending_tool = {"id": block.id, "name": block.name, "args_json": ""}
                    elif etype == "content_block_delta":
                        delta = getattr(event, "delta", None)
                        if delta is None:
                            continue
                        dtype = getattr(delta, "type", None)
                        if dtype == "text_delta":
                            if delta.text:
                                yield TextDelta(delta.text)
                        elif dtype == "input_json_delta":
                            partial = getattr(delta, "partial_json", "")
                            if partial and pending_tool is not None:
                                pending_tool["args_json"] += partial
                    elif etype == "content_block_stop" and pending_tool is not None:
                        try:
                            args = json.loads(pending_tool["args_json"]) if pending_tool["args_json"] else {}
                        except json.JSONDecodeError:
                            args = {}
                        if not isinstance(args, dict):
                            args = {}
                        calls.append(ToolCallRequest(id=pending_tool["id"], name=pending_tool["name"], args=args))
                        pending_tool = None
        except anthropic.AnthropicError as exc:
            logger.debug("Anthropic stream failed: %s", exc)
            yield StreamError(str(exc))
            return

        for call in calls:
            yield call

    async def summarize(
        self,
        system_prompt: str,
        content: str,
        *,
        max_output_tokens: int,
        temperature: float,
    ) -> str:
        raw = await self._client.messages.create(
            model=self.model,
            system=system_prompt,
            messages=[{"role": "user", "content": content}],
            max_tokens=max_output_tokens,
            temperature=temperature,
        )
        return "".join(block.text for block in raw.content if block.type == "text")
