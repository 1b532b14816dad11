"""
Composition root: builds the services once per process and wires them.

    EventBus ─┬─ AgentDirectory ── AgentRuntime ──report──► Coordinator
              ├─ TaskSupervisor (episodes, queue processor)
              └─ McpManager, MemoryStore, Conversation

The transport holds one ``Assistant`` and talks to its coordinator,
directory and runtime.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

import config
from config import ProviderConfig, ToolSettings
from .agent_directory import RUNNING, AgentDirectory
from .agent_runtime import AgentRuntime
from .conversation import Conversation
from .coordinator import Coordinator
from .downloads import CLEANUP_INTERVAL, cleanup_downloads
from .event_bus import MAIN, DebugLogListener, EventBus
from .llm import create_adapter
from .llm.base import CompletionAdapter
from .logging import get_logger, log_error
from .mcp_client import McpManager
from .memory import MemoryStore
from .prompts import build_main_system_prompt
from .tasks import TaskSupervisor
from .tool_handlers import build_main_registry
from .tool_registry import ToolContext, ToolRegistry
from .user_profile import load_user_profile

logger = get_logger()


class Assistant:
    """All long-lived services of one assistant process."""

    def __init__(
        self,
        *,
        bus: Optional[EventBus] = None,
        mcp: Optional[McpManager] = None,
        adapter_factory: Callable[[ProviderConfig], CompletionAdapter] = create_adapter,
        provider_resolver: Callable[[Optional[str]], ProviderConfig] = config.get_provider,
        settings_factory: Callable[[], ToolSettings] = ToolSettings.from_config,
    ):
        data_dir = config.get_data_dir()
        self.bus = bus or EventBus()
        self.bus.subscribe(DebugLogListener(logger))
        self.supervisor = TaskSupervisor(self.bus)
        self.mcp = mcp or McpManager()
        self.memory = MemoryStore(data_dir / "memories")
        self.settings_factory = settings_factory

        self.directory = AgentDirectory(self.bus, data_dir / "agents")
        self.runtime = AgentRuntime(
            self.directory,
            self.bus,
            self.supervisor,
            mcp=self.mcp,
            memory=self.memory,
            adapter_factory=adapter_factory,
            provider_resolver=provider_resolver,
            settings_factory=settings_factory,
        )
        self.conversation = Conversation(data_dir / "context.json").load()
        self.coordinator = Coordinator(
            self.conversation,
            self.bus,
            self.supervisor,
            registry_factory=self.main_registry,
            system_prompt_factory=self.main_system_prompt,
            adapter_factory=adapter_factory,
            provider_resolver=provider_resolver,
        )
        self.runtime.report = self.coordinator.submit_agent_report
        self._started = False
        self._cleanup_task: Optional[asyncio.Task] = None

    # ---- Wiring ----

    def main_registry(self) -> ToolRegistry:
        ctx = ToolContext(
            agent_id=MAIN,
            settings=self.settings_factory(),
            runtime=self.runtime,
            directory=self.directory,
            mcp=self.mcp,
            memory=self.memory,
            bus=self.bus,
        )
        return build_main_registry(ctx)

    async def main_system_prompt(self) -> str:
        profile = await asyncio.to_thread(load_user_profile)
        return build_main_system_prompt(profile, config.mcp_servers())

    # ---- Lifecycle ----

    async def start(self, *, connect_mcp: bool = True, run_gc: bool = True) -> None:
        """Connect MCP servers, load agents, resume interrupted ones, expire old
        downloads, then start the periodic GC and download cleanup."""
        if self._started:
            return
        self._started = True
        if connect_mcp:
            await self.mcp.initialize(config.mcp_servers())
        running = await self.directory.load()
        resumed = self.runtime.resume_interrupted(running)
        if resumed:
            logger.info("Resumed %d interrupted agent(s)", len(resumed))
        await asyncio.to_thread(cleanup_downloads)
        if run_gc:
            self.directory.start_gc_loop()
            self._cleanup_task = asyncio.create_task(self._cleanup_loop(CLEANUP_INTERVAL), name="downloads-cleanup")

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(cleanup_downloads)
            except Exception as e:
                log_error("Download cleanup failed", exc=e, bus=self.bus)

    async def stop(self) -> None:
        await self.directory.stop_gc_loop()
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.supervisor.shutdown()
        await self.mcp.shutdown()
        self._started = False

    # ---- Operations used by the transport ----

    def submit_message(self, content: str):
        return self.coordinator.submit_user_message(content)

    async def clear_agents(self) -> int:
        """Stop every running agent, then remove all agents."""
        for record in self.directory.records():
            if record.status == RUNNING:
                self.runtime.kill_agent(record.id)
        return await self.directory.clear()

    async def reload_mcp(self) -> list[dict]:
        await self.mcp.reinitialize(config.mcp_servers())
        return self.mcp.status()

    def status(self) -> dict:
        return {
            "assistant": config.assistant_name(),
            "first_run": config.is_first_run(),
            "agents": len(self.directory),
            "agents_in_flight": self.runtime.in_flight(),
            "queued": len(self.coordinator),
            "processing": self.coordinator.processing,
            "messages": len(self.conversation),
            "mcp": self.mcp.status(),
        }


def create_assistant(**kwargs) -> Assistant:
    """Factory function to create the assistant services.

    Keyword arguments are passed to :class:`Assistant` (test seams).
    """
    return Assistant(**kwargs)
