"""Memory tool handlers."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from attache.memory import MemoryStore
from attache.tool_registry import failure

if TYPE_CHECKING:
    from attache.tool_registry import ToolContext


def _store(ctx: "ToolContext") -> MemoryStore:
    return ctx.memory if ctx.memory is not None else MemoryStore()


async def handle_save_memory(ctx: "ToolContext", tool_args: dict) -> dict:
    title = str(tool_args.get("title") or "").strip()
    content = str(tool_args.get("content") or "")
    if not title or not content:
        return failure("title and content are required")
    tags = tool_args.get("tags") or []
    if not isinstance(tags, list):
        tags = [str(tags)]
    filepath = await asyncio.to_thread(_store(ctx).save, title, content, tags)
    return {"success": True, "filepath": filepath, "message": "Memory saved successfully"}


async def handle_search_memories(ctx: "ToolContext", tool_args: dict) -> dict:
    query = str(tool_args.get("query") or "")
    results = await asyncio.to_thread(_store(ctx).search, query)
    return {"success": True, "results": [r.to_dict() for r in results]}
