"""Main-assistant tool handlers: start, message, list and kill sub-agents."""

from __future__ import annotations

from typing import TYPE_CHECKING

from attache.agent_runtime import AgentError
from attache.tool_registry import failure

if TYPE_CHECKING:
    from attache.tool_registry import ToolContext


def handle_get_active_agents(ctx: "ToolContext", tool_args: dict) -> dict:
    return {"success": True, "agents": ctx.directory.list_info()}


def handle_start_agent(ctx: "ToolContext", tool_args: dict) -> dict:
    task = tool_args.get("task")
    if not isinstance(task, str) or not task.strip():
        return failure("Missing or invalid required field: task (must be a non-empty string)")
    try:
        agent_id = ctx.runtime.start_agent(task)
    except AgentError as e:
        return failure(str(e))
    return {"success": True, "agent_id": agent_id, "message": "Agent started in background"}


def handle_send_to_agent(ctx: "ToolContext", tool_args: dict) -> dict:
    agent_id = str(tool_args.get("agent_id") or "")
    message = str(tool_args.get("message") or "")
    record = ctx.directory.get(agent_id)
    if record is None:
        return failure(
            "Agent not found. It may have been removed. Start a new agent with start_agent instead."
        )

    if record.status == "completed":
        try:
            ctx.runtime.resume_agent(agent_id, message)
        except AgentError as e:
            return failure(str(e))
        return {
            "success": True,
            "message": "Agent has been resumed with your message. It will send results when done.",
        }

    if ctx.runtime.send_to_agent(agent_id, message):
        return {"success": True, "message": "Message sent to agent"}
    return failure("Failed to send message to agent.")


def handle_kill_agent(ctx: "ToolContext", tool_args: dict) -> dict:
    if ctx.runtime.kill_agent(str(tool_args.get("agent_id") or "")):
        return {"success": True, "message": "Agent killed successfully"}
    return failure("Agent not found or not running")
