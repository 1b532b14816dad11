"""
Agent directory: in-memory map of agent records plus their durable copies.

One JSON file per agent under ``<data_dir>/agents/``. The display log is
not stored; it is rebuilt from the conversation history on load. Memory is
authoritative: a failed write is logged and the process keeps going.

Constructed once by the composition root and injected into the runtime,
the tool handlers and the transport.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .event_bus import AGENT_COMPLETED, AGENT_MESSAGE, AGENT_REMOVED, AGENT_STARTED, EventBus
from .history import (
    DisplayMessage,
    HistoryMessage,
    derive_display_messages,
    history_from_dicts,
    history_to_dicts,
)
from .logging import get_logger, log_error

logger = get_logger()

RUNNING = "running"
COMPLETED = "completed"

INACTIVITY_TIMEOUT = 30 * 60  # seconds a completed agent is kept
GC_INTERVAL = 5 * 60


@dataclass
class AgentRecord:
    """Everything known about one background agent."""
    id: str
    task: str
    status: str = RUNNING
    last_activity_time: float = field(default_factory=time.time)
    conversation_history: list[HistoryMessage] = field(default_factory=list)
    system_prompt: str = ""
    provider: str = ""
    incoming_messages: list[str] = field(default_factory=list)
    display_messages: list[DisplayMessage] = field(default_factory=list)

    def touch(self, now: Optional[float] = None) -> None:
        self.last_activity_time = time.time() if now is None else now

    @property
    def running(self) -> bool:
        return self.status == RUNNING

    def info(self) -> dict:
        return {"id": self.id, "task": self.task, "status": self.status}

    def detail(self) -> dict:
        return {**self.info(), "displayMessages": [m.to_dict() for m in self.display_messages]}

    def to_dict(self) -> dict:
        """The durable record (no display log)."""
        return {
            "id": self.id,
            "task": self.task,
            "status": self.status,
            "last_activity_time": self.last_activity_time,
            "conversation_history": history_to_dicts(self.conversation_history),
            "system_prompt": self.system_prompt,
            "provider": self.provider,
            "incoming_messages": list(self.incoming_messages),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AgentRecord":
        history = history_from_dicts(data.get("conversation_history") or [])
        status = data.get("status", COMPLETED)
        if status not in (RUNNING, COMPLETED):
            raise ValueError(f"Unknown agent status: {status!r}")
        return cls(
            id=data["id"],
            task=data.get("task", ""),
            status=status,
            last_activity_time=float(data.get("last_activity_time") or time.time()),
            conversation_history=history,
            system_prompt=data.get("system_prompt", ""),
            provider=data.get("provider", ""),
            incoming_messages=list(data.get("incoming_messages") or []),
            display_messages=derive_display_messages(history),
        )


class AgentDirectory:
    """Registry of agents with per-agent JSON persistence and inactivity GC."""

    def __init__(self, bus: EventBus, base_dir: Optional[Path] = None):
        if base_dir is None:
            from config import get_data_dir
            base_dir = get_data_dir() / "agents"
        self.base_dir = Path(base_dir)
        self.bus = bus
        self._agents: dict[str, AgentRecord] = {}
        self._gc_task: Optional[asyncio.Task] = None

    # ---- Queries ----

    def get(self, agent_id: str) -> Optional[AgentRecord]:
        return self._agents.get(agent_id)

    def records(self) -> list[AgentRecord]:
        return list(self._agents.values())

    def list_info(self) -> list[dict]:
        return [a.info() for a in self._agents.values()]

    def detail(self, agent_id: str) -> Optional[dict]:
        record = self._agents.get(agent_id)
        return record.detail() if record is not None else None

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    # ---- Mutation ----

    def add(self, record: AgentRecord) -> None:
        self._agents[record.id] = record

    def _path(self, agent_id: str) -> Path:
        return self.base_dir / f"{agent_id}.json"

    @staticmethod
    def _write_json(path: Path, data: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp, path)

    async def save(self, record: AgentRecord) -> bool:
        """Persist one record. Returns False (after logging) on failure."""
        try:
            await asyncio.to_thread(self._write_json, self._path(record.id), record.to_dict())
        except Exception as e:
            log_error(f"Failed to save agent {record.id}", exc=e, bus=self.bus)
            return False
        return True

    async def _delete_file(self, agent_id: str) -> None:
        try:
            await asyncio.to_thread(self._path(agent_id).unlink, missing_ok=True)
        except OSError as e:
            log_error(f"Failed to delete agent {agent_id} from disk", exc=e, bus=self.bus)

    async def remove(self, agent_id: str) -> bool:
        if self._agents.pop(agent_id, None) is None:
            return False
        await self._delete_file(agent_id)
        self.bus.emit(AGENT_REMOVED, agent=agent_id, level="info", summary=f"Agent {agent_id} removed")
        return True

    async def clear(self) -> int:
        """Remove every agent from memory and disk."""
        ids = list(self._agents)
        self._agents.clear()
        for agent_id in ids:
            await self._delete_file(agent_id)
            self.bus.emit(AGENT_REMOVED, agent=agent_id, level="info", summary=f"Agent {agent_id} removed")
        return len(ids)

    # ---- Load ----

    def _read_all(self) -> list[tuple[str, Optional[dict], Optional[Exception]]]:
        if not self.base_dir.is_dir():
            return []
        results = []
        for path in sorted(self.base_dir.glob("*.json")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    results.append((path.name, json.load(f), None))
            except (OSError, ValueError) as e:
                results.append((path.name, None, e))
        return results

    async def load(self) -> list[AgentRecord]:
        """Load every durable record into memory.

        Replays each agent's lifecycle onto the bus (started, messages,
        completed) so a client connecting after a restart sees them.

        Returns:
            The agents whose status was ``running`` when they were saved.
        """
        running = []
        for filename, data, error in await asyncio.to_thread(self._read_all):
            try:
                if error is not None:
                    raise error
                record = AgentRecord.from_dict(data)
            except Exception as e:
                log_error(f"Failed to load agent from {filename}", exc=e, bus=self.bus)
                continue

            self._agents[record.id] = record
            logger.debug("Loaded agent from disk: %s (%s)", record.id, record.status)
            self.bus.emit(AGENT_STARTED, agent=record.id, summary=record.task, data={"task": record.task})
            for message in record.display_messages:
                self.bus.emit(AGENT_MESSAGE, agent=record.id, data={"message": message.to_dict()})
            if record.running:
                running.append(record)
            else:
                self.bus.emit(AGENT_COMPLETED, agent=record.id, data={"output": ""})
        return running

    # ---- Garbage collection ----

    async def gc(self, now: Optional[float] = None) -> list[str]:
        """Remove completed agents idle for longer than INACTIVITY_TIMEOUT."""
        now = time.time() if now is None else now
        stale = [
            a.id for a in self._agents.values()
            if a.status == COMPLETED and now - a.last_activity_time > INACTIVITY_TIMEOUT
        ]
        for agent_id in stale:
            del self._agents[agent_id]
        for agent_id in stale:
            logger.info("Cleaning up inactive agent: %s", agent_id)
            await self._delete_file(agent_id)
            self.bus.emit(AGENT_REMOVED, agent=agent_id, level="info", summary=f"Agent {agent_id} removed")
        return stale

    async def _gc_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.gc()
            except Exception as e:
                log_error("Agent GC pass failed", exc=e, bus=self.bus)

    def start_gc_loop(self, interval: float = GC_INTERVAL) -> None:
        if self._gc_task is None or self._gc_task.done():
            self._gc_task = asyncio.create_task(self._gc_loop(interval), name="agent-gc")

    async def stop_gc_loop(self) -> None:
        task, self._gc_task = self._gc_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
