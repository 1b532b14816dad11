"""Downloadable files under ``<data_dir>/downloads/<id>/<filename>``."""

from __future__ import annotations

import shutil
import time
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import config
from .logging import get_logger

logger = get_logger()

DOWNLOAD_MAX_AGE = 24 * 60 * 60  # seconds a download stays available
CLEANUP_INTERVAL = 15 * 60


def downloads_dir() -> Path:
    return config.get_data_dir() / "downloads"


def _safe_name(filename: str) -> str:
    name = Path(filename).name
    if name in ("", ".", ".."):
        raise ValueError(f"Invalid filename: {filename!r}")
    return name


def create_download(filename: str, content: Optional[str] = None, file: Optional[str] = None) -> dict:
    """Store text content or a copy of *file*; returns ``{url, filename, path}``.

    Raises:
        ValueError: no filename, or neither content nor file given.
        OSError: the source file cannot be read.
    """
    filename = (filename or "").strip()
    if not filename:
        raise ValueError("filename is required")
    if not content and not file:
        raise ValueError("Either content or file is required")
    name = _safe_name(filename)

    download_id = uuid.uuid4().hex[:8]
    target_dir = downloads_dir() / download_id
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / name
    if file:
        shutil.copyfile(file, target)
    else:
        target.write_text(content, encoding="utf-8")

    return {
        "url": f"/api/downloads/{download_id}/{quote(name)}",
        "filename": name,
        "path": str(target),
    }


def resolve_download(download_id: str, filename: str) -> Optional[Path]:
    """Return the stored file for a download URL, or None if absent."""
    if not download_id.isalnum():
        return None
    try:
        name = _safe_name(filename)
    except ValueError:
        return None
    path = downloads_dir() / download_id / name
    return path if path.is_file() else None


def cleanup_downloads(max_age: float = DOWNLOAD_MAX_AGE, now: Optional[float] = None) -> list[str]:
    """Delete download folders last modified more than *max_age* seconds ago.

    Returns the removed download ids. Folders that cannot be removed are
    logged and left for the next pass.
    """
    root = downloads_dir()
    if not root.is_dir():
        return []
    now = time.time() if now is None else now
    removed = []
    for entry in root.iterdir():
        if not entry.is_dir():
            continue
        try:
            if now - entry.stat().st_mtime <= max_age:
                continue
            shutil.rmtree(entry)
        except OSError as e:
            logger.warning("Could not remove download %s: %s", entry.name, e)
            continue
        removed.append(entry.name)
    if removed:
        logger.info("Removed %d expired download(s)", len(removed))
    return removed
