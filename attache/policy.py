"""
Policy checks shared by the filesystem and terminal tool handlers.

- Path confinement: with ``limit_working_dir`` on, every resolved path must
  be the working directory or lie inside it.
- Command whitelist: the first token of a command must match one of the
  configured glob patterns (``*`` and ``?``); a ``*`` entry allows anything.
- Read-before-write: see ``ReadTracker``.
"""

from __future__ import annotations

import os
from typing import Optional

from config import ToolSettings


class PolicyError(Exception):
    """A tool request violates a configured policy."""


def glob_match(pattern: str, text: str) -> bool:
    """Match *text* against a glob supporting ``*`` and ``?``.

    Two-pointer matcher with single-star backtracking; linear in practice.
    """
    pi = si = 0
    star_pi = star_si = -1
    while si < len(text):
        if pi < len(pattern) and (pattern[pi] == text[si] or pattern[pi] == "?"):
            pi += 1
            si += 1
        elif pi < len(pattern) and pattern[pi] == "*":
            star_pi = pi
            pi += 1
            star_si = si
        elif star_pi >= 0:
            pi = star_pi + 1
            star_si += 1
            si = star_si
        else:
            return False
    while pi < len(pattern) and pattern[pi] == "*":
        pi += 1
    return pi == len(pattern)


def validate_command(command: str, whitelist: list[str]) -> None:
    """Raise PolicyError unless *command* is allowed by *whitelist*."""
    if not whitelist:
        raise PolicyError("No commands are whitelisted. Configure tools.command_whitelist in config.json.")
    if "*" in whitelist:
        return
    tokens = command.strip().split()
    if not tokens:
        raise PolicyError("Empty command.")
    name = tokens[0]
    if not any(glob_match(pattern, name) for pattern in whitelist):
        raise PolicyError(f'Command "{name}" is not in the whitelist. Allowed: {", ".join(whitelist)}')


def _normalize(path: str, base: Optional[str] = None) -> str:
    path = os.path.expanduser(path)
    if not os.path.isabs(path):
        path = os.path.join(base or os.getcwd(), path)
    return os.path.normpath(path)


def is_within(path: str, root: str) -> bool:
    """True if normalized *path* equals *root* or lies inside it."""
    path = _normalize(path)
    root = _normalize(root)
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def resolve_path(path: str, settings: ToolSettings) -> str:
    """Resolve *path* against the working directory and enforce confinement.

    Returns the normalized absolute path.

    Raises:
        PolicyError: confinement is on and the path escapes the working
            directory, or confinement is on with no working directory.
    """
    resolved = _normalize(path, settings.working_dir or None)
    if not settings.limit_working_dir:
        return resolved
    if not settings.working_dir:
        raise PolicyError("limit_working_dir is enabled but no working_dir is configured.")
    if not is_within(resolved, settings.working_dir):
        raise PolicyError(f'Access denied: path "{resolved}" is outside the allowed working directory.')
    return resolved


class ReadTracker:
    """Per-agent record of file mtimes observed by ``read_file``.

    Overwriting or editing an existing file is allowed only when the file
    was read by the same agent and has not changed since. Granularity is
    whatever ``st_mtime_ns`` the filesystem provides.
    """

    def __init__(self) -> None:
        self._mtimes: dict[str, int] = {}

    def record(self, path: str) -> None:
        self._mtimes[path] = os.stat(path).st_mtime_ns

    def check(self, path: str, *, action: str = "write") -> None:
        """Raise PolicyError if *path* exists and is not freshly read."""
        try:
            current = os.stat(path).st_mtime_ns
        except FileNotFoundError:
            if action == "write":
                return
            raise
        last = self._mtimes.get(path)
        if last is None:
            if action == "write":
                raise PolicyError("Cannot overwrite an existing file without reading it first. Use read_file before write_file.")
            raise PolicyError("You must read the file with read_file before editing it.")
        if current != last:
            verb = "writing" if action == "write" else "editing"
            raise PolicyError(f"File has been modified since it was last read. Read it again with read_file before {verb}.")

    def __contains__(self, path: str) -> bool:
        return path in self._mtimes

    def __len__(self) -> int:
        return len(self._mtimes)
