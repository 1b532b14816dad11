"""Terminal tool handler: whitelisted shell commands with a wall-clock limit."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from attache.policy import resolve_path, validate_command
from attache.tool_registry import failure
from attache.turn_limits import get_limit

if TYPE_CHECKING:
    from attache.tool_registry import ToolContext


MAX_OUTPUT_CHARS = 50_000


async def handle_run_command(ctx: "ToolContext", tool_args: dict) -> dict:
    settings = ctx.settings
    if not settings.terminal:
        return failure("Terminal access is not enabled.")
    command = str(tool_args.get("command") or "")
    validate_command(command, settings.command_whitelist)

    if tool_args.get("cwd"):
        cwd = resolve_path(str(tool_args["cwd"]), settings)
    else:
        cwd = settings.working_dir or None

    timeout = get_limit("terminal.timeout")
    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(proc)
        return failure(f"Command timed out after {timeout} seconds")
    except BaseException:
        # cancelled with the episode; the child must not outlive it
        await asyncio.shield(_kill(proc))
        raise

    exit_code = proc.returncode
    return {
        "success": exit_code == 0,
        "exitCode": exit_code,
        "stdout": stdout.decode("utf-8", errors="replace")[:MAX_OUTPUT_CHARS],
        "stderr": stderr.decode("utf-8", errors="replace")[:MAX_OUTPUT_CHARS],
    }


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
