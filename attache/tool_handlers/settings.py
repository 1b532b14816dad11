"""Settings tool handlers: configuration and user profile."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import config
from attache.user_profile import load_user_profile, save_user_profile

if TYPE_CHECKING:
    from attache.tool_registry import ToolContext

_SECRET_KEYS = ("api_key", "auth_token", "brave_search_api_key")


def redact_config(value):
    if isinstance(value, dict):
        return {
            k: ("***" if k in _SECRET_KEYS and v else redact_config(v))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact_config(v) for v in value]
    return value


def handle_get_config(ctx: "ToolContext", tool_args: dict) -> dict:
    return {"success": True, "config": redact_config(config.snapshot())}


async def handle_update_config(ctx: "ToolContext", tool_args: dict) -> dict:
    allowed = {k: v for k, v in tool_args.items() if k in ("assistant", "models")}
    if not allowed:
        return {"success": False, "error": "Nothing to update. Provide assistant and/or models."}
    await asyncio.to_thread(config.save_config, allowed)
    return {"success": True, "message": "Configuration updated successfully"}


async def handle_get_user_profile(ctx: "ToolContext", tool_args: dict) -> dict:
    profile = await asyncio.to_thread(load_user_profile)
    return {"success": True, "content": profile}


async def handle_save_user_profile(ctx: "ToolContext", tool_args: dict) -> dict:
    content = tool_args.get("content")
    if not isinstance(content, str):
        return {"success": False, "error": "content must be a string"}
    await asyncio.to_thread(save_user_profile, content)
    return {"success": True, "message": "User profile saved successfully"}


async def handle_complete_first_run(ctx: "ToolContext", tool_args: dict) -> dict:
    await asyncio.to_thread(config.save_config, {"assistant": {"first_run": False}})
    return {"success": True, "message": "First run completed"}
