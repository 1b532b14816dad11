"""
Agent runtime: creates background agents and runs their episodes.

An episode is one run of the tool-calling loop, from ``running`` until the
agent is ``completed`` again. Key concepts:
    - **One episode per agent**: a resume waits for the previous episode's
      task to exit before touching the loop, so the history has one writer.
    - **Sequential tools**: the calls of one model turn run in order, so the
      display log and the model's view of what happened agree.
    - **Checkpoint per tool cycle**: the record is saved after every cycle.
    - **Always completes**: whatever ends the loop (tool-less answer,
      iteration cap, exception, kill), the finishing step marks the agent
      completed and, if it never called ``send_to_main``, reports that to
      main on its behalf. Only cancellation (process shutdown) leaves the
      record ``running`` so the next start resumes it. A cycle cut short
      that way leaves no trace in the history.
"""

from __future__ import annotations

import asyncio
import functools
import math
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import config
from config import ProviderConfig, ToolSettings
from .agent_directory import COMPLETED, RUNNING, AgentDirectory, AgentRecord
from .compaction import compact_history, fallback_history, should_compact_history
from .event_bus import AGENT_COMPLETED, AGENT_MESSAGE, AGENT_REMOVED, AGENT_RESUMED, AGENT_STARTED, EventBus
from .history import (
    MAIN_MESSAGE_PREFIX,
    SEND_TO_MAIN,
    SYSTEM,
    THINKING,
    TOOL_CALL,
    USER_MESSAGE,
    DisplayMessage,
    HistoryMessage,
    ToolCallPart,
    ToolResultPart,
    display_entry,
)
from .llm import create_adapter
from .llm.base import CompletionAdapter, SamplingParams, StreamError, TextDelta, ToolCallRequest
from .logging import get_logger, log_error
from .policy import ReadTracker
from .prompts import RESTART_NOTICE, build_agent_system_prompt
from .tasks import TaskSupervisor
from .tools import agent_tool_names
from .tool_registry import ToolContext, ToolRegistry
from .turn_limits import get_limit

logger = get_logger()

CREATION_COOLDOWN = 1.0  # seconds between two agent creations, process-wide

START, RESUME, RESTART = "start", "resume", "restart"

AUTO_REPORTS = {
    START: '[Agent completed task "{task}" but did not send back a report. '
           'You can use send_to_agent to ask it for results.]',
    RESUME: '[Agent completed follow-up on "{task}" but did not send back a report. '
            'You can use send_to_agent to ask it for results.]',
    RESTART: '[Agent resumed task "{task}" but did not send back a report.]',
}


class AgentError(Exception):
    """An agent could not be created or resumed. Nothing was changed."""


@dataclass
class Episode:
    record: AgentRecord
    provider: ProviderConfig
    kind: str
    after: Optional[asyncio.Task] = None
    stopped: bool = False
    killed: bool = False
    output: str = ""
    opening: Optional[str] = None  # user turn appended once the previous episode has exited


class AgentRuntime:
    """Starts, feeds, resumes and kills background agents.

    Args:
        directory: Where records live and get persisted.
        bus: Receives agent_started / agent_message / agent_resumed /
            agent_completed events.
        supervisor: Owns the episode tasks.
        report: ``report(message, agent_id)`` delivers a report to the main
            conversation. Wired by the composition root.
        adapter_factory / provider_resolver / settings_factory: seams for
            tests; default to the configured providers and tool settings.
    """

    def __init__(
        self,
        directory: AgentDirectory,
        bus: EventBus,
        supervisor: TaskSupervisor,
        *,
        report: Optional[Callable[[str, str], None]] = None,
        mcp=None,
        memory=None,
        adapter_factory: Callable[[ProviderConfig], CompletionAdapter] = create_adapter,
        provider_resolver: Callable[[Optional[str]], ProviderConfig] = config.get_provider,
        settings_factory: Callable[[], ToolSettings] = ToolSettings.from_config,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.directory = directory
        self.bus = bus
        self.supervisor = supervisor
        self.report = report
        self.mcp = mcp
        self.memory = memory
        self.adapter_factory = adapter_factory
        self.provider_resolver = provider_resolver
        self.settings_factory = settings_factory
        self._clock = clock
        self._last_creation: Optional[float] = None
        self._episodes: dict[str, Episode] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._read_trackers: dict[str, ReadTracker] = {}
        bus.subscribe(self._on_event)

    # ---- Public operations ----

    def start_agent(self, task: str) -> str:
        """Create an agent for *task* and start its first episode.

        Raises:
            AgentError: invalid task, creation cooldown active, or unknown
                provider. No agent is created in that case.
        """
        trimmed = (task or "").strip()
        if not trimmed or len(trimmed) < 3 or trimmed == ":":
            raise AgentError("Task description is too short or invalid")

        now = self._clock()
        if self._last_creation is not None and now - self._last_creation < CREATION_COOLDOWN:
            remaining = CREATION_COOLDOWN - (now - self._last_creation)
            raise AgentError(f"Agent creation cooldown active. Please wait {math.ceil(remaining)} seconds.")

        provider = self._resolve_provider(None)
        self._last_creation = now

        agent_id = f"agent_{uuid.uuid4()}"
        settings = self.settings_factory()
        record = AgentRecord(
            id=agent_id,
            task=trimmed,
            conversation_history=[HistoryMessage.user(trimmed)],
            system_prompt=build_agent_system_prompt(agent_id, self._tool_names(settings), settings),
            provider=provider.name,
        )
        self.directory.add(record)
        logger.info(f"[{agent_id}] Started: {trimmed}")
        self.bus.emit(AGENT_STARTED, agent=agent_id, level="info", summary=trimmed, data={"task": trimmed})

        self._spawn(Episode(record=record, provider=provider, kind=START))
        return agent_id

    def send_to_agent(self, agent_id: str, message: str) -> bool:
        """Queue *message* for a running agent. False when not running."""
        record = self.directory.get(agent_id)
        if record is None or record.status != RUNNING:
            return False
        record.incoming_messages.append(message)
        record.touch()
        return True

    def resume_agent(self, agent_id: str, message: str) -> None:
        """Start a follow-up episode of a completed agent with *message*.

        Raises:
            AgentError: unknown agent, nothing to resume from, still
                running, or unknown provider.
        """
        record = self.directory.get(agent_id)
        if record is None:
            raise AgentError("Agent not found")
        if not record.conversation_history or not record.system_prompt:
            raise AgentError("Agent has no conversation history to resume from")
        if record.status == RUNNING:
            raise AgentError("Agent is already running")
        provider = self._resolve_provider(record.provider or None)

        record.status = RUNNING
        record.touch()
        record.incoming_messages = []
        self._push_display(record, display_entry(USER_MESSAGE, message))
        self.bus.emit(AGENT_RESUMED, agent=agent_id, level="info", summary=f"Agent {agent_id} resumed")
        self._spawn(Episode(record=record, provider=provider, kind=RESUME,
                            opening=MAIN_MESSAGE_PREFIX + message))

    def kill_agent(self, agent_id: str) -> bool:
        """Stop a running agent at its next cycle boundary.

        The in-flight model call or tool is not interrupted; the agent is
        marked completed immediately and its loop runs no further cycle.
        """
        record = self.directory.get(agent_id)
        if record is None or record.status != RUNNING:
            return False

        record.status = COMPLETED
        record.touch()
        record.incoming_messages = []
        self._push_display(record, display_entry(SYSTEM, "Agent killed"))
        episode = self._episodes.get(agent_id)
        if episode is not None:
            episode.stopped = True
            episode.killed = True
        else:
            self.bus.emit(AGENT_COMPLETED, agent=agent_id, data={"output": ""})
            self.supervisor.spawn(self._checkpoint(record), name=f"save:{agent_id}")
        logger.info(f"[{agent_id}] Killed")
        return True

    def resume_interrupted(self, records: list[AgentRecord]) -> list[str]:
        """Restart recovery for agents that were running when the process stopped.

        Each gets one restart-notice user turn and a new episode. Returns the
        ids that were resumed.
        """
        resumed = []
        for record in records:
            if record.status != RUNNING or not record.conversation_history or not record.system_prompt:
                continue
            try:
                provider = self._resolve_provider(record.provider or None)
            except AgentError as e:
                log_error(f"Cannot resume agent {record.id}", exc=e, bus=self.bus)
                record.status = COMPLETED
                self.supervisor.spawn(self._checkpoint(record), name=f"save:{record.id}")
                continue

            logger.info(f"[{record.id}] Resuming after restart: {record.task}")
            record.touch()
            record.incoming_messages = []
            self._push_display(record, display_entry(SYSTEM, "Resumed after server restart"))
            self.bus.emit(AGENT_RESUMED, agent=record.id, level="info", summary=f"Agent {record.id} resumed")
            self._spawn(Episode(record=record, provider=provider, kind=RESTART, opening=RESTART_NOTICE))
            resumed.append(record.id)
        return resumed

    def in_flight(self) -> int:
        """Number of episodes currently running."""
        return len(self._episodes)

    # ---- Internals ----

    def _resolve_provider(self, name: Optional[str]) -> ProviderConfig:
        try:
            return self.provider_resolver(name)
        except KeyError as e:
            raise AgentError(e.args[0] if e.args else "Provider not found in config") from e

    def _tool_names(self, settings: ToolSettings) -> list[str]:
        names = agent_tool_names(settings)
        if self.mcp is not None:
            names = names + [t.qualified_name for t in self.mcp.tools()]
        return names

    def _spawn(self, episode: Episode) -> None:
        agent_id = episode.record.id
        episode.after = self._tasks.get(agent_id)
        self._episodes[agent_id] = episode
        task = self.supervisor.spawn(self._run_episode(episode), name=f"agent:{agent_id}")
        self._tasks[agent_id] = task
        task.add_done_callback(functools.partial(self._forget_task, agent_id))

    def _forget_task(self, agent_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(agent_id) is task:
            del self._tasks[agent_id]

    def _on_event(self, event) -> None:
        if event.type == AGENT_REMOVED:
            self._read_trackers.pop(event.agent, None)

    async def _checkpoint(self, record: AgentRecord) -> None:
        # a record removed from the directory must not reappear on disk
        if record.id in self.directory:
            await self.directory.save(record)

    def _push_display(self, record: AgentRecord, entry: DisplayMessage) -> None:
        record.display_messages.append(entry)
        self.bus.emit(AGENT_MESSAGE, agent=record.id, data={"message": entry.to_dict()})

    def _report(self, message: str, agent_id: str) -> None:
        if self.report is None:
            logger.warning(f"[{agent_id}] No report sink; dropping report")
            return
        self.report(message, agent_id)

    def _build_registry(self, episode: Episode, messages_to_main: list[str]) -> ToolRegistry:
        from .tool_handlers import build_agent_registry

        record = episode.record
        ctx = ToolContext(
            agent_id=record.id,
            settings=self.settings_factory(),
            read_tracker=self._read_trackers.setdefault(record.id, ReadTracker()),
            messages_to_main=messages_to_main,
            report=self._report,
            add_display=lambda entry: self._push_display(record, entry),
            touch=record.touch,
            runtime=self,
            directory=self.directory,
            mcp=self.mcp,
            memory=self.memory,
            bus=self.bus,
        )

        def on_invoke(name: str, args: dict, output: str) -> None:
            if name == SEND_TO_MAIN:
                return
            self._push_display(record, display_entry(
                TOOL_CALL, name, tool_name=name, tool_input=args, tool_output=output,
            ))

        return build_agent_registry(ctx, on_invoke=on_invoke)

    async def _run_episode(self, episode: Episode) -> None:
        record = episode.record
        if episode.after is not None and not episode.after.done():
            await asyncio.wait({episode.after})
        if episode.opening is not None:
            record.conversation_history.append(HistoryMessage.user(episode.opening))

        messages_to_main: list[str] = []
        cancelled = False
        try:
            registry = self._build_registry(episode, messages_to_main)
            adapter = self.adapter_factory(episode.provider)
            await self._agent_loop(episode, registry, adapter)
        except asyncio.CancelledError:
            cancelled = True
            raise
        except Exception as e:
            log_error(f"Agent {record.id} episode failed", exc=e, context={"task": record.task}, bus=self.bus)
            self._push_display(record, display_entry(SYSTEM, f"**Error:** {e}"))
        finally:
            if cancelled:
                if self._episodes.get(record.id) is episode:
                    del self._episodes[record.id]
                await self._checkpoint(record)
            else:
                await self._finish(episode, messages_to_main)

    async def _finish(self, episode: Episode, messages_to_main: list[str]) -> None:
        record = episode.record
        current = self._episodes.get(record.id) is episode
        if current:
            del self._episodes[record.id]
            record.status = COMPLETED
        record.touch()

        if not messages_to_main and not episode.killed:
            auto_message = AUTO_REPORTS[episode.kind].format(task=record.task)
            messages_to_main.append(auto_message)
            self._push_display(record, display_entry(SYSTEM, auto_message))
            try:
                self._report(auto_message, record.id)
            except Exception as e:
                log_error(f"Failed to auto-send agent {record.id} output to main", exc=e, bus=self.bus)

        await self._checkpoint(record)
        if current:
            logger.info(f"[{record.id}] Completed")
            self.bus.emit(AGENT_COMPLETED, agent=record.id, level="info",
                          summary=f"Agent {record.id} completed", data={"output": episode.output})

    async def _agent_loop(self, episode: Episode, registry: ToolRegistry, adapter: CompletionAdapter) -> None:
        record = episode.record
        max_iterations = get_limit("agent.max_iterations")

        while not episode.stopped:
            if record.incoming_messages:
                incoming = record.incoming_messages.pop(0)
                record.conversation_history.append(HistoryMessage.user(MAIN_MESSAGE_PREFIX + incoming))

            for _ in range(max_iterations):
                if episode.stopped:
                    break
                if await self._tool_cycle(episode, registry, adapter):
                    break

            if record.incoming_messages and not episode.stopped:
                continue
            break

    async def _stream(self, episode: Episode, registry: ToolRegistry, adapter: CompletionAdapter):
        """Run one completion. Returns ``(text, tool_calls, error)``."""
        record = episode.record
        text_parts: list[str] = []
        calls: list[ToolCallRequest] = []
        sampling = SamplingParams(temperature=episode.provider.temperature)
        try:
            async for event in adapter.stream(record.system_prompt, record.conversation_history,
                                              registry.schemas(), sampling):
                if isinstance(event, TextDelta):
                    text_parts.append(event.text)
                elif isinstance(event, ToolCallRequest):
                    calls.append(event)
                elif isinstance(event, StreamError):
                    return "".join(text_parts), calls, event.message
        except Exception as e:
            log_error(f"Agent {record.id} stream failed", exc=e, bus=self.bus)
            return "".join(text_parts), calls, str(e) or type(e).__name__
        return "".join(text_parts), calls, None

    async def _tool_cycle(self, episode: Episode, registry: ToolRegistry, adapter: CompletionAdapter) -> bool:
        """One completion plus its tools. Returns True when the turn had no tool calls."""
        record = episode.record
        text, calls, error = await self._stream(episode, registry, adapter)
        episode.output += text

        shown = text.strip()
        if error is not None:
            shown = f"{shown}\n\n**Error:** {error}".strip()
        if shown:
            self._push_display(record, display_entry(THINKING, shown))

        if error is not None or not calls:
            if text:
                record.conversation_history.append(HistoryMessage.assistant(text))
            return True

        # the call turn and its results enter the history together, so a
        # cancellation mid-tool never persists calls without results
        call_turn = HistoryMessage.assistant(
            text, [ToolCallPart(id=c.id, name=c.name, args=c.args) for c in calls],
        )
        results = []
        for call in calls:
            output = await registry.invoke(call.name, call.args)
            results.append(ToolResultPart(call_id=call.id, name=call.name, output=output))
        record.conversation_history.extend([call_turn, HistoryMessage.tool(results)])
        record.touch()

        await self._checkpoint(record)
        await self._maybe_compact(episode, adapter)
        return False

    async def _maybe_compact(self, episode: Episode, adapter: CompletionAdapter) -> None:
        record = episode.record
        budget = episode.provider.max_tokens
        if not should_compact_history(record.conversation_history, budget):
            return

        count = len(record.conversation_history)
        self._push_display(record, display_entry(SYSTEM, f"Auto-compacting conversation ({count} messages)..."))
        try:
            record.conversation_history = await compact_history(adapter, record.conversation_history, budget)
        except Exception as e:
            log_error(f"Agent {record.id} compaction failed", exc=e, bus=self.bus)
            self._push_display(record, display_entry(SYSTEM, "Compaction failed, continuing with truncated history"))
            record.conversation_history = fallback_history(record.conversation_history)
