"""attache/compaction.py - Token estimation and history compaction.

Estimates are a cheap ``ceil(chars / 4)`` heuristic, used only as a
threshold trigger. Compaction turns a history into a flat transcript,
asks the model for a summary, and returns the replacement history.

Public API:
    estimate_tokens(text)                      -> int
    should_compact(texts, budget, min_messages) -> bool
    should_compact_history(history, budget)    -> bool   (agent histories)
    compact_history(adapter, history, budget)  -> list[HistoryMessage]
    fallback_history(history)                  -> list[HistoryMessage]
    summarize_transcript(adapter, entries, budget) -> str (main transcript)
"""

from __future__ import annotations

import math
from typing import Iterable

from attache.history import ASSISTANT, TOOL, USER, HistoryMessage
from attache.llm.base import CompletionAdapter
from attache.prompts import AGENT_COMPACT_PROMPT, COMPACT_PROMPT

CHARS_PER_TOKEN = 4
THRESHOLD_RATIO = 0.8
MIN_AGENT_MESSAGES = 6
MIN_MAIN_MESSAGES = 4
FALLBACK_TAIL = 6
SUMMARY_MAX_OUTPUT_TOKENS = 2048
SUMMARY_TEMPERATURE = 0.3

SUMMARY_HEADER = "[Previous conversation summary]"
CONTINUE_INSTRUCTION = (
    "Continue working on the task. Use the summary above as context for "
    "what has been done so far."
)
TRUNCATION_MARKER = "\n\n[...middle truncated...]\n\n"

_AGENT_ROLE_LABELS = {USER: "User", ASSISTANT: "Assistant", TOOL: "Tool Result"}
_MAIN_ROLE_LABELS = {"user": "User", "assistant": "Assistant", "agent": "Agent"}


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~4 characters per token."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def should_compact(texts: Iterable[str], budget: int, min_messages: int) -> bool:
    """True when the texts exceed 80% of *budget* and there are enough of them."""
    texts = list(texts)
    if len(texts) < min_messages:
        return False
    total = sum(estimate_tokens(t) for t in texts)
    return total > budget * THRESHOLD_RATIO


def should_compact_history(history: list[HistoryMessage], budget: int) -> bool:
    return should_compact((m.plain_text() for m in history), budget, MIN_AGENT_MESSAGES)


def truncate_middle(text: str, budget: int) -> str:
    """Keep head and tail of *text* when it overflows the summarizer's input."""
    max_chars = int(budget * THRESHOLD_RATIO) * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    half = max_chars // 2
    tail = text[-half:] if half > 0 else ""
    return text[:half] + TRUNCATION_MARKER + tail


async def _summarize(adapter: CompletionAdapter, system_prompt: str, transcript: str, budget: int) -> str:
    return await adapter.summarize(
        system_prompt,
        truncate_middle(transcript, budget),
        max_output_tokens=min(budget, SUMMARY_MAX_OUTPUT_TOKENS),
        temperature=SUMMARY_TEMPERATURE,
    )


async def compact_history(
    adapter: CompletionAdapter,
    history: list[HistoryMessage],
    budget: int,
) -> list[HistoryMessage]:
    """Summarize an agent history into a single continuation turn.

    Raises whatever the adapter raises; callers fall back to
    :func:`fallback_history`.
    """
    transcript = "\n\n".join(
        f"[{_AGENT_ROLE_LABELS[m.role]}]: {m.plain_text()}" for m in history
    )
    summary = await _summarize(adapter, AGENT_COMPACT_PROMPT, transcript, budget)
    return [HistoryMessage.user(f"{SUMMARY_HEADER}\n{summary}\n\n{CONTINUE_INSTRUCTION}")]


def fallback_history(history: list[HistoryMessage]) -> list[HistoryMessage]:
    """First message plus the most recent six.

    Tool-result turns at the start of the kept tail have lost the assistant
    turn that requested them and are dropped.
    """
    if len(history) <= FALLBACK_TAIL + 1:
        return list(history)
    recent = history[-FALLBACK_TAIL:]
    while recent and recent[0].role == TOOL:
        recent = recent[1:]
    return [history[0], *recent]


async def summarize_transcript(
    adapter: CompletionAdapter,
    entries: list[tuple[str, str]],
    budget: int,
) -> str:
    """Summarize the main transcript given as ``(role, content)`` pairs."""
    transcript = "\n\n".join(
        f"[{_MAIN_ROLE_LABELS.get(role, 'Assistant')}]: {content}" for role, content in entries
    )
    return await _summarize(adapter, COMPACT_PROMPT, transcript, budget)
