"""Filesystem tool handlers.

Every path goes through ``resolve_path`` (working-directory confinement).
Overwrites and edits go through the agent's ``ReadTracker``. Disk work runs
in a worker thread.
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterator, Optional

from attache.policy import PolicyError, resolve_path
from attache.tool_registry import failure
from attache.tree_walk import walk_tree

if TYPE_CHECKING:
    from attache.tool_registry import ToolContext

MAX_SNIPPET_LENGTH = 200
DEFAULT_GREP_RESULTS = 50
DEFAULT_FIND_RESULTS = 100


def _path(ctx: "ToolContext", raw) -> str:
    if not ctx.settings.filesystem:
        raise PolicyError("Filesystem access is not enabled.")
    if raw is None or str(raw).strip() == "":
        raise PolicyError("path is required")
    return resolve_path(str(raw), ctx.settings)


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def _write_text(path: str, content: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


# ---- Listing and reading ----

def _list_directory(path: str) -> list[dict]:
    items = []
    with os.scandir(path) as it:
        for entry in sorted(it, key=lambda e: e.name):
            item: dict = {"name": entry.name, "type": "directory" if entry.is_dir() else "file"}
            if entry.is_file():
                try:
                    item["size"] = entry.stat().st_size
                except OSError:
                    pass
            items.append(item)
    return items


async def handle_list_directory(ctx: "ToolContext", tool_args: dict) -> dict:
    path = _path(ctx, tool_args.get("path"))
    items = await asyncio.to_thread(_list_directory, path)
    return {"success": True, "path": path, "items": items}


async def handle_read_file(ctx: "ToolContext", tool_args: dict) -> dict:
    path = _path(ctx, tool_args.get("path"))
    content = await asyncio.to_thread(_read_text, path)
    ctx.read_tracker.record(path)

    lines = content.split("\n")
    total = len(lines)
    from_arg, to_arg = tool_args.get("from_line"), tool_args.get("to_line")
    if not from_arg and not to_arg:
        return {"success": True, "path": path, "totalLines": total, "content": content}

    from_line = max(1, int(from_arg)) if from_arg else 1
    to_line = min(total, int(to_arg)) if to_arg else total
    numbered = "\n".join(
        f"{from_line + i}: {line}" for i, line in enumerate(lines[from_line - 1:to_line])
    )
    return {
        "success": True, "path": path, "totalLines": total,
        "from": from_line, "to": to_line, "content": numbered,
    }


async def handle_file_info(ctx: "ToolContext", tool_args: dict) -> dict:
    path = _path(ctx, tool_args.get("path"))
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return {"success": True, "path": path, "exists": False}
    return {
        "success": True,
        "path": path,
        "exists": True,
        "type": "directory" if os.path.isdir(path) else "file",
        "size": st.st_size,
        "modified": datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat(),
    }


# ---- Mutations ----

def _write_file(path: str, content: str) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    _write_text(path, content)


async def handle_write_file(ctx: "ToolContext", tool_args: dict) -> dict:
    path = _path(ctx, tool_args.get("path"))
    content = tool_args.get("content")
    if not isinstance(content, str):
        return failure("content must be a string")
    ctx.read_tracker.check(path, action="write")
    await asyncio.to_thread(_write_file, path, content)
    ctx.read_tracker.record(path)
    return {"success": True, "path": path, "message": "File written successfully"}


async def handle_edit_file(ctx: "ToolContext", tool_args: dict) -> dict:
    path = _path(ctx, tool_args.get("path"))
    ctx.read_tracker.check(path, action="edit")

    old, new = tool_args.get("old_string"), tool_args.get("new_string")
    if not isinstance(old, str) or not isinstance(new, str) or not old:
        return failure("old_string and new_string must be strings and old_string must not be empty")
    if old == new:
        return failure("old_string and new_string are identical.")

    content = await asyncio.to_thread(_read_text, path)
    occurrences = content.count(old)
    if occurrences == 0:
        return failure("old_string not found in file.")
    if occurrences > 1:
        return failure(
            f"old_string found {occurrences} times - it must be unique. "
            "Include more surrounding context to make it unique."
        )
    await asyncio.to_thread(_write_text, path, content.replace(old, new, 1))
    ctx.read_tracker.record(path)
    return {"success": True, "path": path, "message": "Edit applied successfully"}


async def handle_create_directory(ctx: "ToolContext", tool_args: dict) -> dict:
    path = _path(ctx, tool_args.get("path"))
    await asyncio.to_thread(os.makedirs, path, exist_ok=True)
    return {"success": True, "path": path, "message": "Directory created successfully"}


def _delete(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.remove(path)


async def handle_delete_path(ctx: "ToolContext", tool_args: dict) -> dict:
    path = _path(ctx, tool_args.get("path"))
    await asyncio.to_thread(_delete, path)
    return {"success": True, "path": path, "message": "Deleted successfully"}


def _move(source: str, destination: str) -> None:
    os.makedirs(os.path.dirname(destination), exist_ok=True)
    shutil.move(source, destination)


async def handle_move_path(ctx: "ToolContext", tool_args: dict) -> dict:
    source = _path(ctx, tool_args.get("source"))
    destination = _path(ctx, tool_args.get("destination"))
    await asyncio.to_thread(_move, source, destination)
    return {"success": True, "source": source, "destination": destination, "message": "Moved successfully"}


# ---- Search ----

def _brace_alternation(pattern: str) -> str:
    return re.sub(r"\{([^}]+)\}", lambda m: "(" + m.group(1).replace(",", "|") + ")", pattern)


def name_glob_to_regex(glob: str) -> re.Pattern:
    """File-name filter for grep: ``*.py``, ``*.{js,tsx}``."""
    pattern = _brace_alternation(glob.replace(".", r"\.")).replace("*", ".*")
    return re.compile(pattern + "$")


def _glob_segment(part: str) -> str:
    part = _brace_alternation(part.replace(".", r"\."))
    part = part.replace("**", "\0")
    part = part.replace("*", "[^/]*").replace("?", "[^/]")
    return part.replace("\0", "(.+/)?")


def path_glob_to_regex(glob: str) -> re.Pattern:
    """Relative-path matcher for find_files; ``**`` spans directories."""
    parts = glob.split("/")
    out = ""
    i = 0
    while i < len(parts):
        if i > 0:
            out += "/"
        if parts[i] == "**":
            out += "(.+/)?"
            if i < len(parts) - 1:
                i += 1
                out += _glob_segment(parts[i])
        else:
            out += _glob_segment(parts[i])
        i += 1
    return re.compile(f"^{out}$")


def _snippet(line: str) -> str:
    trimmed = line.strip()
    if len(trimmed) <= MAX_SNIPPET_LENGTH:
        return trimmed
    return trimmed[:MAX_SNIPPET_LENGTH] + "…"


def _grep_file(path: str, regex: re.Pattern) -> Iterator[dict]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().split("\n")
    except (OSError, UnicodeDecodeError):
        return
    for i, line in enumerate(lines):
        if regex.search(line):
            yield {"file": path, "line": i + 1, "snippet": _snippet(line)}


def _grep(root: str, regex: re.Pattern, name_filter: Optional[re.Pattern], limit: int) -> list[dict]:
    if os.path.isfile(root):
        return list(_grep_file(root, regex))[:limit]

    def visit(full_path: str, rel_path: str):
        if name_filter is not None and not name_filter.search(os.path.basename(full_path)):
            return ()
        return _grep_file(full_path, regex)

    return walk_tree(root, visit, max_results=limit)


async def handle_grep(ctx: "ToolContext", tool_args: dict) -> dict:
    root = _path(ctx, tool_args.get("path") or ".")
    pattern = tool_args.get("pattern")
    if not pattern:
        return failure("pattern is required")
    try:
        regex = re.compile(str(pattern), re.IGNORECASE if tool_args.get("ignore_case") else 0)
    except re.error as e:
        return failure(f"Invalid regex: {e}")
    name_filter = name_glob_to_regex(tool_args["glob"]) if tool_args.get("glob") else None
    limit = int(tool_args.get("max_results") or DEFAULT_GREP_RESULTS)

    matches = await asyncio.to_thread(_grep, root, regex, name_filter, limit)
    return {"success": True, "matches": matches, "total": len(matches)}


async def handle_find_files(ctx: "ToolContext", tool_args: dict) -> dict:
    root = _path(ctx, tool_args.get("path") or ".")
    pattern = tool_args.get("pattern")
    if not pattern:
        return failure("pattern is required")
    regex = path_glob_to_regex(str(pattern))
    limit = int(tool_args.get("max_results") or DEFAULT_FIND_RESULTS)

    def visit(full_path: str, rel_path: str):
        return (full_path,) if regex.match(rel_path) else ()

    files = await asyncio.to_thread(walk_tree, root, visit, max_results=limit)
    return {"success": True, "files": files, "total": len(files)}
