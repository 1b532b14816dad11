import pytest

from attache.compaction import (
    CONTINUE_INSTRUCTION,
    SUMMARY_HEADER,
    TRUNCATION_MARKER,
    compact_history,
    estimate_tokens,
    fallback_history,
    should_compact,
    should_compact_history,
    summarize_transcript,
    truncate_middle,
)
from attache.history import TOOL, HistoryMessage, ToolCallPart, ToolResultPart
from tests.conftest import FakeAdapter


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_threshold_is_eighty_percent():
    texts = ["x" * 400] * 6  # 600 tokens
    assert not should_compact(texts, budget=750, min_messages=6)  # 600 == 0.8 * 750
    assert should_compact(texts, budget=740, min_messages=6)


@pytest.mark.parametrize("percent,expected", [(79, False), (80, False), (81, True)])
def test_threshold_around_eighty_percent(percent, expected):
    budget = 1000
    tokens = budget * percent // 100
    texts = ["x" * 4 * (tokens - 5)] + ["abcd"] * 5
    assert sum(estimate_tokens(t) for t in texts) == tokens
    assert should_compact(texts, budget=budget, min_messages=6) is expected
    assert should_compact(texts, budget=budget, min_messages=4) is expected


def test_minimum_message_count():
    texts = ["x" * 4000] * 3
    assert not should_compact(texts, budget=100, min_messages=4)
    assert should_compact(texts + ["y"], budget=100, min_messages=4)


def test_history_counts_tool_payloads():
    history = [HistoryMessage.user("task")] + [
        HistoryMessage.tool([ToolResultPart("c", "read_file", "z" * 1000)]) for _ in range(5)
    ]
    assert should_compact_history(history, budget=1000)
    assert not should_compact_history(history[:5], budget=1000)


def test_truncate_middle():
    assert truncate_middle("short", 1000) == "short"
    text = "a" * 50 + "b" * 50
    out = truncate_middle(text, budget=10)  # 8 tokens -> 32 chars
    assert out == "a" * 16 + TRUNCATION_MARKER + "b" * 16


async def test_compact_history_returns_single_continuation_turn():
    adapter = FakeAdapter(summary="Read three files, found the bug.")
    history = [
        HistoryMessage.user("fix the bug"),
        HistoryMessage.assistant("", [ToolCallPart("c1", "read_file", {"path": "a.py"})]),
        HistoryMessage.tool([ToolResultPart("c1", "read_file", "print('a')")]),
    ]
    compacted = await compact_history(adapter, history, budget=10_000)
    assert len(compacted) == 1
    assert compacted[0].role == "user"
    assert compacted[0].text == (
        f"{SUMMARY_HEADER}\nRead three files, found the bug.\n\n{CONTINUE_INSTRUCTION}"
    )
    transcript = adapter.summaries[0]
    assert transcript.startswith("[User]: fix the bug")
    assert "[Tool Result]: print('a')" in transcript


async def test_compact_history_propagates_failures():
    adapter = FakeAdapter(summary_error=RuntimeError("quota"))
    with pytest.raises(RuntimeError):
        await compact_history(adapter, [HistoryMessage.user("t")], budget=1000)


def test_fallback_keeps_first_and_last_six():
    history = [HistoryMessage.user(f"m{i}") for i in range(10)]
    kept = fallback_history(history)
    assert [m.text for m in kept] == ["m0", "m4", "m5", "m6", "m7", "m8", "m9"]


def test_fallback_drops_orphan_tool_turns():
    history = [HistoryMessage.user("task")]
    for i in range(4):
        history.append(HistoryMessage.assistant("", [ToolCallPart(f"c{i}", "wait", {})]))
        history.append(HistoryMessage.tool([ToolResultPart(f"c{i}", "wait", "ok")]))
    history.append(HistoryMessage.assistant("done"))
    kept = fallback_history(history)
    assert kept[0].text == "task"
    assert kept[1].role != TOOL
    assert len(kept) == 6


def test_fallback_short_history_unchanged():
    history = [HistoryMessage.user(f"m{i}") for i in range(7)]
    assert fallback_history(history) == history


async def test_summarize_transcript_labels_roles():
    adapter = FakeAdapter(summary="S")
    summary = await summarize_transcript(
        adapter, [("user", "hi"), ("assistant", "hello"), ("agent", "report")], budget=1000,
    )
    assert summary == "S"
    assert adapter.summaries[0] == "[User]: hi\n\n[Assistant]: hello\n\n[Agent]: report"
