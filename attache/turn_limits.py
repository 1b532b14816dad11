"""Named runtime limits with ``turn_limits`` overrides from config.json.

Covers the bounded loops (model/tool cycles per episode or turn) and the
timeouts of tools that wait on the outside world. A config entry such as

    "turn_limits": {"agent.max_iterations": 40, "terminal.timeout": 120}

replaces the default for that name only; unknown names in the config are
ignored, unknown names in code raise ``KeyError``.
"""

from __future__ import annotations

DEFAULTS: dict[str, int] = {
    "agent.max_iterations": 20,   # tool cycles in one agent episode
    "main.max_iterations": 20,    # tool cycles in one main turn
    "terminal.timeout": 60,       # seconds
    "web.fetch_timeout": 30,
    "web.search_timeout": 15,
    "mcp.connect_timeout": 15,
}

_overrides: dict[str, int] = {}


def _coerce(name: str, value) -> int | None:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def reload() -> None:
    """Pick up ``turn_limits`` from the current config. Bad values are dropped."""
    global _overrides
    import config
    raw = config.get("turn_limits", {})
    if not isinstance(raw, dict):
        raw = {}
    _overrides = {
        name: number
        for name, value in raw.items()
        if name in DEFAULTS and (number := _coerce(name, value)) is not None
    }


def get_limit(name: str) -> int:
    if name not in DEFAULTS:
        raise KeyError(f"Unknown turn limit: {name!r}")
    return _overrides.get(name, DEFAULTS[name])


def limits() -> dict[str, int]:
    """Effective value of every limit, for diagnostics."""
    return {name: get_limit(name) for name in DEFAULTS}


reload()
