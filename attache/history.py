"""Typed conversation history for agents and the main tool loop.

``HistoryMessage`` is what the runtime, the compaction engine, the adapters
and the durable agent record all exchange. JSON only appears at the tool
boundary (``ToolCallPart.args`` / ``ToolResultPart.output``) and at the
persistence boundary (``to_dict`` / ``from_dict``).
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, asdict
from typing import Optional

USER = "user"
ASSISTANT = "assistant"
TOOL = "tool"

MAIN_MESSAGE_PREFIX = "[Message from main assistant]: "
SEND_TO_MAIN = "send_to_main"


@dataclass
class ToolCallPart:
    id: str
    name: str
    args: dict = field(default_factory=dict)


@dataclass
class ToolResultPart:
    call_id: str
    name: str
    output: str


@dataclass
class HistoryMessage:
    """One turn of a tool-calling conversation.

    A ``user`` turn carries text. An ``assistant`` turn carries text and/or
    tool calls. A ``tool`` turn carries the outputs of every call of the
    preceding assistant turn, keyed by call id.
    """
    role: str
    text: str = ""
    tool_calls: list[ToolCallPart] = field(default_factory=list)
    tool_results: list[ToolResultPart] = field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> "HistoryMessage":
        return cls(role=USER, text=text)

    @classmethod
    def assistant(cls, text: str, tool_calls: Optional[list[ToolCallPart]] = None) -> "HistoryMessage":
        return cls(role=ASSISTANT, text=text, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, results: list[ToolResultPart]) -> "HistoryMessage":
        return cls(role=TOOL, tool_results=list(results))

    def plain_text(self) -> str:
        """Text used for token estimation and compaction transcripts."""
        parts = [self.text] if self.text else []
        parts.extend(json.dumps(tc.args, ensure_ascii=False) for tc in self.tool_calls)
        parts.extend(tr.output for tr in self.tool_results)
        return " ".join(parts)

    def to_dict(self) -> dict:
        data: dict = {"role": self.role, "text": self.text}
        if self.tool_calls:
            data["tool_calls"] = [asdict(tc) for tc in self.tool_calls]
        if self.tool_results:
            data["tool_results"] = [asdict(tr) for tr in self.tool_results]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryMessage":
        role = data.get("role")
        if role not in (USER, ASSISTANT, TOOL):
            raise ValueError(f"Unknown history role: {role!r}")
        return cls(
            role=role,
            text=data.get("text", "") or "",
            tool_calls=[
                ToolCallPart(id=tc["id"], name=tc["name"], args=tc.get("args") or {})
                for tc in data.get("tool_calls", [])
            ],
            tool_results=[
                ToolResultPart(call_id=tr["call_id"], name=tr.get("name", ""), output=tr.get("output", ""))
                for tr in data.get("tool_results", [])
            ],
        )


def history_to_dicts(history: list[HistoryMessage]) -> list[dict]:
    return [m.to_dict() for m in history]


def history_from_dicts(items: list[dict]) -> list[HistoryMessage]:
    return [HistoryMessage.from_dict(item) for item in items]


# ---- Display projection ----

THINKING = "thinking"
TOOL_CALL = "tool_call"
USER_MESSAGE = "user_message"
SYSTEM = "system"


@dataclass
class DisplayMessage:
    """A UI-facing entry of an agent's activity log."""
    type: str
    content: str
    timestamp: float = 0.0
    tool_name: Optional[str] = None
    tool_input: Optional[dict] = None
    tool_output: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"type": self.type, "content": self.content, "timestamp": self.timestamp}
        if self.tool_name is not None:
            data["tool_name"] = self.tool_name
            data["tool_input"] = self.tool_input or {}
            data["tool_output"] = self.tool_output
        return data


def display_entry(type: str, content: str, **kwargs) -> DisplayMessage:
    return DisplayMessage(type=type, content=content, timestamp=time.time(), **kwargs)


def derive_display_messages(history: list[HistoryMessage]) -> list[DisplayMessage]:
    """Rebuild the display log of an agent from its conversation history.

    The initial task turn and ``[System]`` turns are not shown (the task is
    part of the agent header). Tool outputs are merged into the tool-call
    entry that requested them.
    """
    result: list[DisplayMessage] = []
    pending: dict[str, DisplayMessage] = {}

    for msg in history:
        if msg.role == USER:
            if msg.text.startswith(MAIN_MESSAGE_PREFIX):
                result.append(DisplayMessage(USER_MESSAGE, msg.text[len(MAIN_MESSAGE_PREFIX):]))
            continue

        if msg.role == ASSISTANT:
            if msg.text.strip():
                result.append(DisplayMessage(THINKING, msg.text.strip()))
            for tc in msg.tool_calls:
                if tc.name == SEND_TO_MAIN:
                    result.append(DisplayMessage(SEND_TO_MAIN, str(tc.args.get("message", ""))))
                    continue
                entry = DisplayMessage(TOOL_CALL, tc.name, tool_name=tc.name, tool_input=tc.args)
                result.append(entry)
                pending[tc.id] = entry
            continue

        for tr in msg.tool_results:
            entry = pending.pop(tr.call_id, None)
            if entry is not None:
                entry.tool_output = tr.output

    return result
