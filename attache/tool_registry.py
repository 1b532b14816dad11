"""
Tool registry - name -> (schema, handler) with a never-raising ``invoke``.

Handlers take ``(ctx: ToolContext, tool_args: dict)`` and return a dict
(JSON-encoded here) or a string (passed through). They may be plain
functions or coroutines. Anything that goes wrong inside ``invoke`` comes
back as ``{"success": false, "error": "..."}`` because the result is fed to
the model as ordinary tool output.
"""

from __future__ import annotations

import inspect
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from config import ToolSettings
from .event_bus import MAIN
from .history import DisplayMessage
from .llm.base import FunctionSchema
from .logging import get_logger, log_error
from .policy import PolicyError, ReadTracker

if TYPE_CHECKING:
    from .agent_directory import AgentDirectory
    from .agent_runtime import AgentRuntime
    from .event_bus import EventBus
    from .mcp_client import McpManager
    from .memory import MemoryStore

logger = get_logger()

ToolResult = Union[dict, str]
ToolHandler = Callable[["ToolContext", dict], Union[ToolResult, Awaitable[ToolResult]]]
InvokeHook = Callable[[str, dict, str], None]


@dataclass
class ToolContext:
    """Per-session state and services handed to every handler.

    ``messages_to_main`` holds what this agent already reported; the last
    entry is what ``send_to_main`` compares against to drop immediate
    duplicates. ``report`` delivers a report into the main conversation
    queue. ``add_display`` and ``touch`` update the owning agent's record.
    """
    agent_id: str = MAIN
    settings: ToolSettings = field(default_factory=ToolSettings)
    read_tracker: ReadTracker = field(default_factory=ReadTracker)
    messages_to_main: list[str] = field(default_factory=list)
    report: Optional[Callable[[str, str], None]] = None
    add_display: Optional[Callable[[DisplayMessage], None]] = None
    touch: Optional[Callable[[], None]] = None
    runtime: Optional["AgentRuntime"] = None
    directory: Optional["AgentDirectory"] = None
    mcp: Optional["McpManager"] = None
    memory: Optional["MemoryStore"] = None
    bus: Optional["EventBus"] = None


def failure(message: str) -> dict:
    return {"success": False, "error": message}


class ToolRegistry:
    """Tools available to one session (an agent episode or a main turn)."""

    def __init__(self, context: Optional[ToolContext] = None, on_invoke: Optional[InvokeHook] = None):
        self.context = context or ToolContext()
        self.on_invoke = on_invoke
        self._tools: dict[str, tuple[FunctionSchema, ToolHandler]] = {}

    def register(self, name: str, json_schema: dict, handler: ToolHandler, description: str = "") -> None:
        self._tools[name] = (FunctionSchema(name=name, description=description, parameters=json_schema), handler)

    def register_schema(self, schema: dict, handler: ToolHandler) -> None:
        """Register from a catalogue entry ``{"name", "description", "parameters"}``."""
        self.register(schema["name"], schema["parameters"], handler, schema.get("description", ""))

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[FunctionSchema]:
        return [schema for schema, _ in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def invoke(self, name: str, args: Any) -> str:
        """Run a tool and return its output string. Never raises."""
        output = await self._invoke(name, args)
        if self.on_invoke is not None:
            try:
                self.on_invoke(name, args if isinstance(args, dict) else {}, output)
            except Exception as e:
                log_error(f"on_invoke hook failed for {name}", exc=e, bus=self.context.bus)
        return output

    async def _invoke(self, name: str, args: Any) -> str:
        entry = self._tools.get(name)
        if entry is None:
            return json.dumps(failure(f'Tool "{name}" not found'))

        if isinstance(args, str):
            try:
                args = json.loads(args) if args.strip() else {}
            except json.JSONDecodeError as e:
                return json.dumps(failure(f"Invalid JSON arguments: {e}"))
        if args is None:
            args = {}
        if not isinstance(args, dict):
            return json.dumps(failure("Tool arguments must be a JSON object"))

        _, handler = entry
        try:
            result = handler(self.context, args)
            if inspect.isawaitable(result):
                result = await result
        except PolicyError as e:
            logger.debug("[%s] %s rejected: %s", self.context.agent_id, name, e)
            return json.dumps(failure(str(e)))
        except Exception as e:
            log_error(
                f"Tool {name} failed",
                exc=e,
                context={"agent": self.context.agent_id, "args": args},
                bus=self.context.bus,
            )
            return json.dumps(failure(str(e) or type(e).__name__))

        if isinstance(result, str):
            return result
        return json.dumps(result, default=str)
