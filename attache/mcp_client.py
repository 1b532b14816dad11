"""
MCP client manager for externally configured tool servers.

Each configured server gets one long-lived connection task that holds the
transport and ``ClientSession`` context managers open until shutdown. Tools
discovered on a server are exposed to agents under the qualified name
``mcp__<server>__<tool>``.

Connection failures are recorded per server and never abort startup.
"""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field
from typing import Any, Optional

from .logging import get_logger
from .turn_limits import get_limit

logger = get_logger()

QUALIFIED_PREFIX = "mcp__"


@dataclass
class McpTool:
    server: str
    name: str
    description: str
    input_schema: dict

    @property
    def qualified_name(self) -> str:
        return f"{QUALIFIED_PREFIX}{self.server}__{self.name}"


@dataclass
class McpConnection:
    name: str
    config: dict
    status: str = "connecting"
    error: Optional[str] = None
    tools: list[McpTool] = field(default_factory=list)
    session: Any = None
    task: Optional[asyncio.Task] = None
    stop: asyncio.Event = field(default_factory=asyncio.Event)


def split_qualified_name(qualified_name: str) -> Optional[tuple[str, str]]:
    """``mcp__server__tool`` -> ``(server, tool)``; the tool name may contain ``__``."""
    if not qualified_name.startswith(QUALIFIED_PREFIX):
        return None
    server, sep, tool = qualified_name[len(QUALIFIED_PREFIX):].partition("__")
    if not sep:
        return None
    return server, tool


def is_mcp_tool(name: str) -> bool:
    return name.startswith(QUALIFIED_PREFIX)


def _transport(config: dict):
    """Open the transport context manager for a server config."""
    if config.get("type", "stdio") == "stdio":
        from mcp.client.stdio import StdioServerParameters, stdio_client

        env = {**os.environ, **config["env"]} if config.get("env") else None
        params = StdioServerParameters(
            command=config["command"],
            args=list(config.get("args") or []),
            env=env,
        )
        return stdio_client(params)

    from mcp.client.sse import sse_client
    return sse_client(config["url"], headers=config.get("headers") or None)


class McpManager:
    """Connections to every configured MCP server."""

    def __init__(self):
        self._connections: dict[str, McpConnection] = {}

    # ---- Lifecycle ----

    async def initialize(self, servers: dict[str, dict]) -> None:
        """Connect all *servers* concurrently. Never raises."""
        await asyncio.gather(*(self.connect_server(name, cfg) for name, cfg in servers.items()))

    async def connect_server(self, name: str, config: dict) -> None:
        if name in self._connections:
            await self.disconnect_server(name)

        conn = McpConnection(name=name, config=config)
        self._connections[name] = conn
        ready: asyncio.Future = asyncio.get_running_loop().create_future()
        conn.task = asyncio.create_task(self._hold(conn, ready), name=f"mcp:{name}")

        try:
            await asyncio.wait_for(asyncio.shield(ready), timeout=get_limit("mcp.connect_timeout"))
        except asyncio.TimeoutError:
            conn.task.cancel()
            conn.status, conn.error = "error", "Connection timeout"
        except Exception as e:
            conn.status, conn.error = "error", str(e) or type(e).__name__
        else:
            conn.status = "connected"
            logger.info(
                "MCP server %r connected with %d tools: %s",
                name, len(conn.tools), ", ".join(t.name for t in conn.tools),
            )
            return
        logger.warning("MCP server %r failed to connect: %s", name, conn.error)

    async def _hold(self, conn: McpConnection, ready: asyncio.Future) -> None:
        """Open the session, report readiness, then keep it open until stopped."""
        from mcp.client.session import ClientSession

        try:
            async with _transport(conn.config) as streams:
                read_stream, write_stream = streams[0], streams[1]
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    result = await session.list_tools()
                    conn.tools = [
                        McpTool(
                            server=conn.name,
                            name=t.name,
                            description=t.description or "",
                            input_schema=t.inputSchema or {"type": "object", "properties": {}},
                        )
                        for t in result.tools
                    ]
                    conn.session = session
                    if not ready.done():
                        ready.set_result(None)
                    await conn.stop.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                conn.status, conn.error = "error", str(e)
                logger.warning("MCP server %r connection lost: %s", conn.name, e)
        finally:
            conn.session = None

    async def disconnect_server(self, name: str) -> None:
        conn = self._connections.pop(name, None)
        if conn is None:
            return
        conn.stop.set()
        conn.status = "disconnected"
        if conn.task is not None and not conn.task.done():
            try:
                await asyncio.wait_for(conn.task, timeout=5)
            except asyncio.TimeoutError:
                conn.task.cancel()
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("MCP server %r close error: %s", name, e)

    async def shutdown(self) -> None:
        await asyncio.gather(*(self.disconnect_server(n) for n in list(self._connections)))

    async def reinitialize(self, servers: dict[str, dict]) -> None:
        await self.shutdown()
        if servers:
            await self.initialize(servers)

    # ---- Tools ----

    def tools(self) -> list[McpTool]:
        """Every tool of every connected server."""
        return [
            tool
            for conn in self._connections.values()
            if conn.status == "connected"
            for tool in conn.tools
        ]

    async def call(self, qualified_name: str, args: dict) -> str:
        """Call a tool and return its text content. Failures come back as JSON."""
        parts = split_qualified_name(qualified_name)
        if parts is None:
            return json.dumps({"success": False, "error": f"Invalid MCP tool name: {qualified_name}"})
        server, tool = parts

        conn = self._connections.get(server)
        if conn is None or conn.status != "connected" or conn.session is None:
            return json.dumps({"success": False, "error": f'MCP server "{server}" is not connected'})

        try:
            result = await conn.session.call_tool(tool, arguments=args)
        except Exception as e:
            return json.dumps({
                "success": False,
                "error": f'MCP tool "{tool}" on "{server}" failed: {e}',
            })

        content = result.content or []
        text = "\n".join(block.text for block in content if getattr(block, "type", None) == "text")
        if text:
            return text
        return json.dumps([block.model_dump() for block in content], default=str)

    def status(self) -> list[dict]:
        return [
            {
                "name": name,
                "status": conn.status,
                "toolCount": len(conn.tools),
                "description": conn.config.get("description"),
                "error": conn.error,
            }
            for name, conn in self._connections.items()
        ]
