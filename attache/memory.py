"""
Long-term memory stored as markdown files.

Each memory is ``<data_dir>/memories/<date>-<slug>.md`` with a small front
matter block::

    ---
    title: Favourite editor
    tags: [preferences, tools]
    source: assistant
    created: 2026-01-01T12:00:00+00:00
    ---
    The user prefers Helix over Vim.

Search is keyword based: query tokens (minus stop words) are counted in
title, tags and body, with title and tag hits weighted higher.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import config

_STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "how",
    "i", "in", "is", "it", "of", "on", "or", "that", "the", "to", "was",
    "what", "when", "where", "which", "with", "my", "me", "do", "does",
})

_FRONT_MATTER = re.compile(r"^---\n(.*?)\n---\n?(.*)$", re.DOTALL)
_TITLE_WEIGHT = 3.0
_TAG_WEIGHT = 2.0


@dataclass
class MemoryEntry:
    filepath: str  # relative to the memories directory
    title: str
    content: str
    tags: list[str] = field(default_factory=list)
    score: float = 0.0

    def to_dict(self) -> dict:
        return {
            "filepath": self.filepath,
            "title": self.title,
            "content": self.content,
            "tags": self.tags,
            "score": round(self.score, 3),
        }


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:60] or "memory"


def _tokens(text: str) -> list[str]:
    return [t for t in re.split(r"[^a-zA-Z0-9_]+", text.lower()) if t and t not in _STOP_WORDS]


def parse_memory_file(raw: str) -> tuple[str, str, list[str]]:
    """Return ``(title, content, tags)`` from a memory file's text."""
    match = _FRONT_MATTER.match(raw)
    if not match:
        return "", raw.strip(), []
    front, body = match.group(1), match.group(2)
    title, tags = "", []
    for line in front.splitlines():
        if line.startswith("title:"):
            title = line[len("title:"):].strip().strip("\"'")
        elif line.startswith("tags:"):
            inner = line[len("tags:"):].strip()
            if inner.startswith("[") and inner.endswith("]"):
                tags = [t.strip().strip("\"'") for t in inner[1:-1].split(",") if t.strip()]
    return title, body.strip(), tags


class MemoryStore:
    """Markdown-file memory store under ``<data_dir>/memories``."""

    def __init__(self, directory: Optional[Path] = None):
        self.directory = directory or (config.get_data_dir() / "memories")

    def save(self, title: str, content: str, tags: Optional[list[str]] = None) -> str:
        """Write a memory file; returns its file name."""
        title = (title or "").strip()
        if not title:
            raise ValueError("title is required")
        tags = [str(t).strip() for t in (tags or []) if str(t).strip()]
        self.directory.mkdir(parents=True, exist_ok=True)

        now = datetime.now(timezone.utc)
        base = f"{now:%Y-%m-%d}-{slugify(title)}"
        filename = f"{base}.md"
        n = 2
        while (self.directory / filename).exists():
            filename = f"{base}-{n}.md"
            n += 1

        text = "\n".join([
            "---",
            f"title: {title}",
            f"tags: [{', '.join(tags)}]",
            "source: assistant",
            f"created: {now.isoformat()}",
            "---",
            "",
            content,
        ])
        (self.directory / filename).write_text(text, encoding="utf-8")
        return filename

    def all(self) -> list[MemoryEntry]:
        if not self.directory.is_dir():
            return []
        entries = []
        for path in sorted(self.directory.glob("*.md")):
            try:
                title, content, tags = parse_memory_file(path.read_text(encoding="utf-8"))
            except OSError:
                continue
            entries.append(MemoryEntry(path.name, title or path.stem, content, tags))
        return entries

    def search(self, query: str, limit: int = 10) -> list[MemoryEntry]:
        """Rank memories by weighted keyword frequency; zero-score entries dropped."""
        query_tokens = set(_tokens(query or ""))
        if not query_tokens:
            return []

        scored: list[MemoryEntry] = []
        for entry in self.all():
            title_tokens = _tokens(entry.title)
            tag_tokens = _tokens(" ".join(entry.tags))
            body_tokens = _tokens(entry.content)
            score = 0.0
            for token in query_tokens:
                score += _TITLE_WEIGHT * title_tokens.count(token)
                score += _TAG_WEIGHT * tag_tokens.count(token)
                score += body_tokens.count(token)
            if score > 0:
                entry.score = score
                scored.append(entry)

        scored.sort(key=lambda e: e.score, reverse=True)
        return scored[:limit]
