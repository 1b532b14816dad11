"""OpenAI adapter - wraps the ``openai`` SDK for OpenAI and compatible APIs.

Covers the ``openai`` provider type and ``custom-openai`` (any provider
exposing an OpenAI-compatible ``/chat/completions`` endpoint, reached via
``base_url``: Ollama, vLLM, DeepSeek, Groq, ...).

This is the **only** module that imports the ``openai`` package.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import openai

from attache.history import ASSISTANT, TOOL, HistoryMessage
from .base import (
    CompletionAdapter,
    FunctionSchema,
    SamplingParams,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCallRequest,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_tools(schemas: list[FunctionSchema] | None) -> list[dict] | None:
    """Convert FunctionSchema list to OpenAI tool format."""
    if not schemas:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": s.name,
                "description": s.description,
                "parameters": s.parameters,
            },
        }
        for s in schemas
    ]


def _build_messages(system_prompt: str, history: list[HistoryMessage]) -> list[dict]:
    """Convert typed history to Chat Completions messages.

    A ``tool`` turn becomes one ``role="tool"`` message per result.
    """
    messages: list[dict] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for msg in history:
        if msg.role == TOOL:
            for tr in msg.tool_results:
                messages.append({"role": "tool", "tool_call_id": tr.call_id, "content": tr.output})
        elif msg.role == ASSISTANT:
            entry: dict[str, Any] = {"role": "assistant", "content": msg.text or None}
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.args)},
                    }
                    for tc in msg.tool_calls
                ]
            elif not msg.text:
                entry["content"] = ""
            messages.append(entry)
        else:
            messages.append({"role": "user", "content": msg.text})
    return messages


def _finalize_tool_calls(pending: dict[int, dict]) -> list[ToolCallRequest]:
    calls = []
    for idx in sorted(pending):
        pt = pending[idx]
        try:
            args = json.loads(pt["args_json"]) if pt["args_json"] else {}
        except json.JSONDecodeError:
            args = {}
        if not isinstance(args, dict):
            args = {}
        calls.append(ToolCallRequest(id=pt["id"] or f"call_{idx}", name=pt["name"], args=args))
    return calls


# ---------------------------------------------------------------------------
# OpenAIAdapter
# ---------------------------------------------------------------------------


class OpenAIAdapter(CompletionAdapter):
    """Adapter that wraps ``openai.AsyncOpenAI`` for OpenAI and compatible APIs."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str | None = None,
        timeout_ms: int = 300_000,
        provider_type: str = "openai",
    ):
        self.model = model
        self.base_url = base_url
        self.provider_type = provider_type
        kwargs: dict[str, Any] = {"api_key": api_key or "not-needed"}
        if base_url:
            kwargs["base_url"] = base_url
        kwargs["timeout"] = timeout_ms / 1000.0  # openai SDK uses seconds
        self._client = openai.AsyncOpenAI(**kwargs)

    async def stream(
        self,
        system_prompt: str,
        messages: list[HistoryMessage],
        tools: list[FunctionSchema],
        sampling: SamplingParams | None = None,
    ) -> AsyncIterator[StreamEvent]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": _build_messages(system_prompt, messages),
            "stream": True,
        }
        openai_tools = _build_tools(tools)
        if openai_tools:
            kwargs["tools"] = openai_tools
        if sampling is not None:
            if sampling.temperature is not None:
                kwargs["temperature"] = sampling.temperature
            if sampling.max_output_tokens is not None:
                kwargs["max_tokens"] = sampling.max_output_tokens

        pending: dict[int, dict] = {}
        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta is None:
                    continue
                if delta.content:
                    yield TextDelta(delta.content)
                for tc in delta.tool_calls or []:
                    slot = pending.setdefault(tc.index, {"id": "", "name": "", "args_json": ""})
                    if tc.id and not slot["id"]:
                        slot["id"] = tc.id
                    if tc.function and tc.function.name and not slot["name"]:
                        slot["name"] = tc.function.name
                    if tc.function and tc.function.arguments:
                        slot["args_json"] += tc.function.arguments
        except openai.OpenAIError as exc:
            yield StreamError(str(exc))
            return

        for call in _finalize_tool_calls(pending):
            yield call

    async def summarize(
        self,
        system_prompt: str,
        content: str,
        *,
        max_output_tokens: int,
        temperature: float,
    ) -> str:
        raw = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
            max_tokens=max_output_tokens,
            temperature=temperature,
        )
        if not raw.choices:
            return ""
        return raw.choices[0].message.content or ""
