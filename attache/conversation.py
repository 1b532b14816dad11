"""Main conversation transcript, persisted to ``<data_dir>/context.json``.

Only the interaction coordinator mutates it; every mutation is followed by
an awaited ``save()`` that writes off the event loop.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .logging import get_logger

logger = get_logger()

ROLES = ("user", "assistant", "agent")


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Message:
    role: str
    content: str
    timestamp: int = field(default_factory=now_ms)
    agent_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"role": self.role, "content": self.content, "timestamp": self.timestamp}
        if self.agent_id:
            data["agent_id"] = self.agent_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            timestamp=int(data.get("timestamp") or 0),
            agent_id=data.get("agent_id"),
        )


@dataclass
class ToolCallRecord:
    """A tool call of the main assistant, anchored inside a streamed message.

    ``message_index`` is the transcript index of the assistant message the
    call belongs to; ``content_position`` is the length of that message's
    text at the moment the call was requested.
    """
    tool_name: str
    tool_input: dict
    message_index: int
    content_position: int
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict:
        return {
            "tool_name": self.tool_name,
            "tool_input": self.tool_input,
            "timestamp": self.timestamp,
            "message_index": self.message_index,
            "content_position": self.content_position,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ToolCallRecord":
        return cls(
            tool_name=data["tool_name"],
            tool_input=data.get("tool_input") or {},
            message_index=int(data["message_index"]),
            content_position=int(data.get("content_position", 0)),
            timestamp=int(data.get("timestamp") or 0),
        )


class Conversation:
    """Append-only list of messages and tool-call records."""

    def __init__(self, path: Optional[Path] = None):
        if path is None:
            from config import get_data_dir
            path = get_data_dir() / "context.json"
        self.path = Path(path)
        self.messages: list[Message] = []
        self.tool_calls: list[ToolCallRecord] = []

    def load(self) -> "Conversation":
        """Read the transcript from disk. A missing or corrupt file gives an empty one."""
        if not self.path.exists():
            return self
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self.messages = [Message.from_dict(m) for m in data.get("messages", [])]
            self.tool_calls = [ToolCallRecord.from_dict(t) for t in data.get("tool_calls", [])]
        except (OSError, ValueError, KeyError) as e:
            logger.error("Error loading context from %s: %s", self.path, e)
            self.messages, self.tool_calls = [], []
        return self

    def to_dict(self) -> dict:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "tool_calls": [t.to_dict() for t in self.tool_calls],
        }

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp, self.path)

    async def save(self) -> None:
        await asyncio.to_thread(self._write, self.to_dict())

    # ---- Mutation ----

    def append(self, role: str, content: str, agent_id: Optional[str] = None) -> Message:
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        message = Message(role=role, content=content, agent_id=agent_id)
        self.messages.append(message)
        return message

    def add_tool_call(self, tool_name: str, tool_input: dict, message_index: int,
                      content_position: int) -> ToolCallRecord:
        record = ToolCallRecord(tool_name, tool_input, message_index, content_position)
        self.tool_calls.append(record)
        return record

    def clear(self) -> None:
        self.messages, self.tool_calls = [], []

    def replace(self, messages: list[Message], tool_calls: Optional[list[ToolCallRecord]] = None) -> None:
        self.messages = list(messages)
        self.tool_calls = list(tool_calls or [])

    def keep(self, indices: list[int]) -> None:
        """Keep only the messages at *indices* (ascending).

        Tool-call records of kept messages are re-indexed; the others are
        dropped.
        """
        remap = {old: new for new, old in enumerate(indices)}
        self.tool_calls = [
            ToolCallRecord(t.tool_name, t.tool_input, remap[t.message_index], t.content_position, t.timestamp)
            for t in self.tool_calls
            if t.message_index in remap
        ]
        self.messages = [self.messages[i] for i in indices]

    def __len__(self) -> int:
        return len(self.messages)
