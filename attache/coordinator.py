"""
Interaction coordinator: the single writer of the main conversation.

User messages and agent reports go into one ordered queue. Exactly one
interaction is processed at a time; while it runs (model stream, main tool
calls, compaction) nothing else touches the transcript. Progress is
published on the event bus:

    message_appended, stream_start, stream_chunk, tool_call, stream_end,
    compaction_start, context_replaced, compaction_complete,
    queue_changed, error
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import config
from config import ProviderConfig
from .compaction import (
    FALLBACK_TAIL,
    MIN_MAIN_MESSAGES,
    SUMMARY_HEADER,
    should_compact,
    summarize_transcript,
)
from .conversation import Conversation, Message, now_ms
from .event_bus import (
    COMPACTION_COMPLETE,
    COMPACTION_START,
    CONTEXT_REPLACED,
    ERROR,
    MESSAGE_APPENDED,
    QUEUE_CHANGED,
    STREAM_CHUNK,
    STREAM_END,
    STREAM_START,
    TOOL_CALL,
    EventBus,
)
from .history import HistoryMessage, ToolCallPart, ToolResultPart
from .llm import create_adapter
from .llm.base import CompletionAdapter, SamplingParams, StreamError, TextDelta, ToolCallRequest
from .logging import get_logger, log_error
from .prompts import RELAY_INSTRUCTION
from .tasks import TaskSupervisor
from .tool_registry import ToolRegistry
from .turn_limits import get_limit

logger = get_logger()

AGENT_ROLE = "agent"
SPLIT_TOOL = "start_agent"


@dataclass
class QueuedInteraction:
    content: str
    timestamp: int = field(default_factory=now_ms)
    from_agent: bool = False
    agent_id: Optional[str] = None


class Coordinator:
    """Serializes every interaction with the main conversation.

    Args:
        conversation: The persisted transcript.
        bus: Receives the coordinator events.
        supervisor: Runs the queue processor as a background task.
        registry_factory: Builds the main tool registry for one turn.
        system_prompt_factory: Coroutine returning the current main prompt.
    """

    def __init__(
        self,
        conversation: Conversation,
        bus: EventBus,
        supervisor: TaskSupervisor,
        *,
        registry_factory: Callable[[], ToolRegistry],
        system_prompt_factory: Callable[[], Awaitable[str]],
        adapter_factory: Callable[[ProviderConfig], CompletionAdapter] = create_adapter,
        provider_resolver: Callable[[Optional[str]], ProviderConfig] = config.get_provider,
    ):
        self.conversation = conversation
        self.bus = bus
        self.supervisor = supervisor
        self.registry_factory = registry_factory
        self.system_prompt_factory = system_prompt_factory
        self.adapter_factory = adapter_factory
        self.provider_resolver = provider_resolver
        self._queue: list[QueuedInteraction] = []
        self._processing = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._lock = asyncio.Lock()

    # ---- Queue ----

    def submit_user_message(self, content: str) -> QueuedInteraction:
        item = QueuedInteraction(content=content)
        self._queue.append(item)
        self._emit_queue()
        self._kick()
        return item

    def submit_agent_report(self, content: str, agent_id: str) -> Optional[QueuedInteraction]:
        """Queue a report from an agent. Empty reports are ignored."""
        trimmed = (content or "").strip()
        if not trimmed:
            logger.warning("Agent %s attempted to send an empty message to main, ignoring", agent_id)
            return None
        item = QueuedInteraction(content=trimmed, from_agent=True, agent_id=agent_id)
        self._queue.append(item)
        self._kick()
        return item

    def queued_user_messages(self) -> list[dict]:
        return [
            {"content": item.content, "timestamp": item.timestamp}
            for item in self._queue
            if not item.from_agent
        ]

    def remove_queued(self, timestamp: int) -> bool:
        """Drop a queued user message. Agent reports cannot be removed."""
        for i, item in enumerate(self._queue):
            if not item.from_agent and item.timestamp == timestamp:
                del self._queue[i]
                self._emit_queue()
                return True
        return False

    @property
    def processing(self) -> bool:
        return self._processing

    def __len__(self) -> int:
        return len(self._queue)

    async def wait_idle(self) -> None:
        """Wait until the queue is drained and nothing is being processed."""
        await self._idle.wait()

    def _emit_queue(self) -> None:
        self.bus.emit(QUEUE_CHANGED, data={"queued_messages": self.queued_user_messages()})

    def _kick(self) -> None:
        if self._processing or not self._queue:
            return
        self._processing = True
        self._idle.clear()
        self.supervisor.spawn(self._process_queue(), name="main:queue")

    async def _process_queue(self) -> None:
        try:
            while self._queue:
                item = self._queue.pop(0)
                self._emit_queue()
                async with self._lock:
                    await self._process_one(item)
        finally:
            self._processing = False
            self._idle.set()

    async def _process_one(self, item: QueuedInteraction) -> None:
        try:
            await self._maybe_compact("Pre-message")
            if item.from_agent:
                message = self.conversation.append(AGENT_ROLE, item.content, agent_id=item.agent_id)
                await self._appended(message)
                await self._stream_turn(RELAY_INSTRUCTION)
            else:
                message = self.conversation.append("user", item.content)
                await self._appended(message)
                await self._stream_turn(None)
            await self._maybe_compact("Post-message")
        except Exception as e:
            log_error("Chat error", exc=e, context={"from_agent": item.from_agent}, bus=self.bus)
            self.bus.emit(ERROR, level="error", summary=str(e) or "Failed to process message",
                          data={"error": str(e) or "Failed to process message"})

    async def _appended(self, message: Message) -> None:
        await self.conversation.save()
        self.bus.emit(MESSAGE_APPENDED, agent=message.agent_id or "main", data={"message": message.to_dict()})

    # ---- Model turn ----

    def _model_history(self, prompt: Optional[str]) -> list[HistoryMessage]:
        history = []
        for msg in self.conversation.messages:
            if not msg.content:
                continue
            if msg.role == AGENT_ROLE:
                history.append(HistoryMessage.assistant(
                    f"[Response from agent {msg.agent_id or 'unknown'}]\n{msg.content}"
                ))
            elif msg.role == "user":
                history.append(HistoryMessage.user(msg.content))
            else:
                history.append(HistoryMessage.assistant(msg.content))
        if prompt is not None:
            history.append(HistoryMessage.user(prompt))
        return history

    def _resolve_provider(self) -> ProviderConfig:
        try:
            return self.provider_resolver(None)
        except KeyError as e:
            raise RuntimeError(e.args[0] if e.args else "Provider not found in config") from e

    async def _stream_turn(self, prompt: Optional[str]) -> None:
        """Stream the assistant's answer, running main tools between completions.

        After a tool cycle that started an agent, the text so far is closed
        as its own assistant message and a new stream begins, so the agent's
        later report lands after it.
        """
        provider = self._resolve_provider()
        adapter = self.adapter_factory(provider)
        registry = self.registry_factory()
        system_prompt = await self.system_prompt_factory()
        history = self._model_history(prompt)
        sampling = SamplingParams(temperature=provider.temperature)

        message_id = uuid.uuid4().hex
        self.bus.emit(STREAM_START, data={"message_id": message_id})
        current = ""
        full = ""
        message_index = len(self.conversation.messages)

        def chunk(text: str) -> None:
            nonlocal current, full
            current += text
            full += text
            self.bus.emit(STREAM_CHUNK, data={"message_id": message_id, "chunk": text})

        for _ in range(get_limit("main.max_iterations")):
            text_parts: list[str] = []
            calls: list[ToolCallRequest] = []
            started_agent = False
            try:
                async for event in adapter.stream(system_prompt, history, registry.schemas(), sampling):
                    if isinstance(event, TextDelta):
                        if event.text:
                            text_parts.append(event.text)
                            chunk(event.text)
                    elif isinstance(event, ToolCallRequest):
                        calls.append(event)
                        position = len(full)
                        self.conversation.add_tool_call(event.name, event.args, message_index, position)
                        self.bus.emit(TOOL_CALL, data={
                            "tool_name": event.name,
                            "tool_input": event.args,
                            "message_index": message_index,
                            "content_position": position,
                        })
                        if event.name == SPLIT_TOOL:
                            started_agent = True
                    elif isinstance(event, StreamError):
                        logger.error("AI stream error: %s", event.message)
                        chunk(f"\n\n**Error:** {event.message}")
            except Exception as e:
                log_error("AI stream failed", exc=e, bus=self.bus)
                chunk(f"\n\n**Error:** {str(e) or type(e).__name__}")

            if not calls:
                break

            history.append(HistoryMessage.assistant(
                "".join(text_parts), [ToolCallPart(id=c.id, name=c.name, args=c.args) for c in calls],
            ))
            results = []
            for call in calls:
                output = await registry.invoke(call.name, call.args)
                results.append(ToolResultPart(call_id=call.id, name=call.name, output=output))
            history.append(HistoryMessage.tool(results))

            if started_agent:
                await self._close_message(message_id, current)
                message_id = uuid.uuid4().hex
                current = ""
                full = ""
                message_index += 1
                self.bus.emit(STREAM_START, data={"message_id": message_id})

        await self._close_message(message_id, current)

    async def _close_message(self, message_id: str, content: str) -> None:
        message = self.conversation.append("assistant", content)
        await self.conversation.save()
        self.bus.emit(STREAM_END, data={
            "message_id": message_id,
            "full_content": content,
            "message": message.to_dict(),
        })

    # ---- Context management ----

    async def _maybe_compact(self, label: str) -> None:
        try:
            provider = self._resolve_provider()
        except RuntimeError:
            return
        texts = [m.content for m in self.conversation.messages]
        if not should_compact(texts, provider.max_tokens, MIN_MAIN_MESSAGES):
            return
        try:
            await self._compact(provider)
        except Exception as e:
            log_error(f"{label} auto-compact failed", exc=e, bus=self.bus)

    async def _compact(self, provider: ProviderConfig) -> bool:
        """Replace the transcript with a summary. Caller holds the lock."""
        messages = self.conversation.messages
        if len(messages) < MIN_MAIN_MESSAGES:
            return False

        self.bus.emit(COMPACTION_START, level="info", summary=f"Compacting {len(messages)} messages")
        try:
            try:
                summary = await summarize_transcript(
                    self.adapter_factory(provider),
                    [(m.role, m.content) for m in messages],
                    provider.max_tokens,
                )
                self.conversation.replace([Message(role="assistant", content=f"{SUMMARY_HEADER}\n{summary}")])
            except Exception as e:
                log_error("Main conversation compaction failed, keeping recent messages", exc=e, bus=self.bus)
                count = len(messages)
                keep = [0] + list(range(max(1, count - FALLBACK_TAIL), count))
                self.conversation.keep(keep)
            await self.conversation.save()
            self._emit_context()
        finally:
            self.bus.emit(COMPACTION_COMPLETE, level="info")
        return True

    def _emit_context(self) -> None:
        self.bus.emit(CONTEXT_REPLACED, data=self.conversation.to_dict())

    async def compact_now(self) -> bool:
        """Compact on request. Waits for the interaction in progress, if any."""
        provider = self._resolve_provider()
        async with self._lock:
            return await self._compact(provider)

    async def clear_context(self) -> None:
        async with self._lock:
            self.conversation.clear()
            await self.conversation.save()
            self._emit_context()
