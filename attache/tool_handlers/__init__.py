from __future__ import annotations
from typing import TYPE_CHECKING, Optional

from attache.tool_registry import InvokeHook, ToolContext, ToolHandler, ToolRegistry
from attache.tools import AGENT_TOOLS, MAIN_TOOLS, agent_tool_names, get_tool_schemas, main_tool_names

if TYPE_CHECKING:
    from attache.mcp_client import McpTool

# ── Utility ──
from attache.tool_handlers.reporting import (
    handle_send_to_main,
    handle_wait,
    handle_create_download,
)

# ── Settings, profile ──
from attache.tool_handlers.settings import (
    handle_get_config,
    handle_update_config,
    handle_get_user_profile,
    handle_save_user_profile,
    handle_complete_first_run,
)

# ── Web, memory ──
from attache.tool_handlers.web import handle_brave_search, handle_web_fetch
from attache.tool_handlers.memory import handle_save_memory, handle_search_memories

# ── Filesystem, terminal ──
from attache.tool_handlers.filesystem import (
    handle_list_directory,
    handle_read_file,
    handle_write_file,
    handle_create_directory,
    handle_delete_path,
    handle_move_path,
    handle_grep,
    handle_edit_file,
    handle_find_files,
    handle_file_info,
)
from attache.tool_handlers.terminal import handle_run_command

# ── Agent management (main assistant) ──
from attache.tool_handlers.agents import (
    handle_get_active_agents,
    handle_start_agent,
    handle_send_to_agent,
    handle_kill_agent,
)

AGENT_HANDLERS: dict[str, ToolHandler] = {
    "send_to_main": handle_send_to_main,
    "wait": handle_wait,
    "create_download": handle_create_download,
    "get_config": handle_get_config,
    "update_config": handle_update_config,
    "get_user_profile": handle_get_user_profile,
    "save_user_profile": handle_save_user_profile,
    "complete_first_run": handle_complete_first_run,
    "brave_search": handle_brave_search,
    "web_fetch": handle_web_fetch,
    "save_memory": handle_save_memory,
    "search_memories": handle_search_memories,
    "list_directory": handle_list_directory,
    "read_file": handle_read_file,
    "write_file": handle_write_file,
    "create_directory": handle_create_directory,
    "delete_path": handle_delete_path,
    "move_path": handle_move_path,
    "grep": handle_grep,
    "edit_file": handle_edit_file,
    "find_files": handle_find_files,
    "file_info": handle_file_info,
    "run_command": handle_run_command,
}

MAIN_HANDLERS: dict[str, ToolHandler] = {
    "get_active_agents": handle_get_active_agents,
    "start_agent": handle_start_agent,
    "send_to_agent": handle_send_to_agent,
    "kill_agent": handle_kill_agent,
    "create_download": handle_create_download,
    "save_memory": handle_save_memory,
}


def _mcp_handler(tool: "McpTool") -> ToolHandler:
    async def handler(ctx: ToolContext, tool_args: dict) -> str:
        return await ctx.mcp.call(tool.qualified_name, tool_args)
    return handler


def build_agent_registry(ctx: ToolContext, on_invoke: Optional[InvokeHook] = None) -> ToolRegistry:
    """Tools of one agent episode: the static set enabled by settings plus MCP tools."""
    registry = ToolRegistry(ctx, on_invoke=on_invoke)
    for schema in get_tool_schemas(agent_tool_names(ctx.settings), AGENT_TOOLS):
        registry.register_schema(schema, AGENT_HANDLERS[schema["name"]])
    if ctx.mcp is not None:
        for tool in ctx.mcp.tools():
            registry.register(
                tool.qualified_name,
                tool.input_schema,
                _mcp_handler(tool),
                f"[MCP: {tool.server}] {tool.description}",
            )
    return registry


def build_main_registry(ctx: ToolContext) -> ToolRegistry:
    registry = ToolRegistry(ctx)
    for schema in get_tool_schemas(main_tool_names(ctx.settings), MAIN_TOOLS):
        registry.register_schema(schema, MAIN_HANDLERS[schema["name"]])
    return registry
