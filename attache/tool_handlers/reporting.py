"""Utility tool handlers: reporting to main, waiting, downloads."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from attache import downloads
from attache.history import SEND_TO_MAIN, display_entry
from attache.logging import log_error
from attache.policy import resolve_path
from attache.tool_registry import failure

if TYPE_CHECKING:
    from attache.tool_registry import ToolContext


def handle_send_to_main(ctx: "ToolContext", tool_args: dict) -> dict:
    message = str(tool_args.get("message") or "").strip()
    if not message:
        return failure("Message cannot be empty")
    # A model retrying the same call must not deliver the report twice
    if ctx.messages_to_main and ctx.messages_to_main[-1] == message:
        return {"success": True, "message": "Message already sent to main context"}

    ctx.messages_to_main.append(message)
    if ctx.add_display is not None:
        ctx.add_display(display_entry(SEND_TO_MAIN, message))
    if ctx.touch is not None:
        ctx.touch()
    if ctx.report is not None:
        try:
            ctx.report(message, ctx.agent_id)
        except Exception as e:
            log_error(f"Failed to send agent {ctx.agent_id} message to main", exc=e, bus=ctx.bus)
            return failure("Failed to queue message to main context")
    return {"success": True, "message": "Message queued to main context"}


async def handle_wait(ctx: "ToolContext", tool_args: dict) -> dict:
    seconds = float(tool_args.get("seconds") or 1)
    await asyncio.sleep(max(seconds, 0))
    return {"success": True, "message": f"Waited for {seconds:g} seconds"}


async def handle_create_download(ctx: "ToolContext", tool_args: dict) -> dict:
    filename = str(tool_args.get("filename") or "").strip()
    if not filename:
        return failure("filename is required")
    content = tool_args.get("content")
    source = tool_args.get("file")
    if not content and not source:
        return failure("Either content or file is required")
    if source:
        source = resolve_path(str(source), ctx.settings)
    try:
        result = await asyncio.to_thread(downloads.create_download, filename, content, source)
    except OSError as e:
        return failure(f"Failed to read file: {e}")
    return {"success": True, "url": result["url"], "filename": result["filename"]}
