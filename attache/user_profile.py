"""User profile persisted as ``<data_dir>/USER.md``."""

from pathlib import Path

import config
from .logging import get_logger

logger = get_logger()


def profile_path() -> Path:
    return config.get_data_dir() / "USER.md"


def load_user_profile() -> str:
    """Return the profile markdown, or ``""`` when none exists yet."""
    path = profile_path()
    if not path.exists():
        return ""
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Could not read user profile %s: %s", path, e)
        return ""


def save_user_profile(content: str) -> Path:
    path = profile_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.debug("User profile saved to %s", path)
    return path
