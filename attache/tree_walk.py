"""Bounded depth-first tree traversal used by the search tools."""

from __future__ import annotations

import os
from typing import Callable, Iterable, Optional, TypeVar

T = TypeVar("T")

DEFAULT_IGNORE_DIRS = frozenset({
    "node_modules", ".git", "dist", ".next", "__pycache__", ".cache", "coverage",
})

Visitor = Callable[[str, str], Iterable[T]]


def walk_tree(
    root: str,
    visit: Visitor,
    ignore_dirs: frozenset[str] = DEFAULT_IGNORE_DIRS,
    max_results: Optional[int] = None,
) -> list[T]:
    """Visit every file under *root* in sorted depth-first order.

    ``visit(full_path, relative_path)`` yields zero or more results. Ignored
    directories and dot-directories are not descended into; unreadable
    subdirectories are skipped. Traversal stops as soon as *max_results*
    results have been collected.

    Raises:
        OSError: *root* itself cannot be listed.
    """
    results: list[T] = []

    def full() -> bool:
        return max_results is not None and len(results) >= max_results

    def descend(directory: str, prefix: str, top: bool) -> None:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            if top:
                raise
            return
        for entry in entries:
            if full():
                return
            rel = f"{prefix}/{entry.name}" if prefix else entry.name
            if entry.is_dir(follow_symlinks=False):
                if entry.name in ignore_dirs or entry.name.startswith("."):
                    continue
                descend(entry.path, rel, False)
            elif entry.is_file():
                for item in visit(entry.path, rel):
                    results.append(item)
                    if full():
                        return

    descend(root, "", True)
    return results
