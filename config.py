import copy
import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# Secrets can stay in .env (ANTHROPIC_API_KEY, OPENAI_API_KEY) and be
# referenced from config.json as "${VAR_NAME}".

# User config - loaded from ~/.attache/config.json (primary)
# or project-root config.json (fallback).
CONFIG_PATH = Path.home() / ".attache" / "config.json"
_LOCAL_CONFIG_PATH = Path(__file__).resolve().parent / "config.json"
_user_config: dict = {}

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _substitute_env_vars(value):
    """Replace ``${VAR}`` placeholders in every string of a JSON tree."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, list):
        return [_substitute_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    return value


def _deep_merge(target: dict, source: dict) -> dict:
    result = dict(target)
    for key, value in source.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_raw(path: Path) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def _load_config() -> dict:
    # Project-local config.json as base, user home config overlaid on top
    merged: dict = {}
    for path in (_LOCAL_CONFIG_PATH, CONFIG_PATH):
        if path is not None and path.exists():
            merged = _deep_merge(merged, _read_raw(path))
    return _substitute_env_vars(merged)


def get(key: str, default=None):
    """Get a config value by dot-separated key. E.g. get('tools.working_dir')"""
    keys = key.split(".")
    val = _user_config
    for k in keys:
        if isinstance(val, dict):
            val = val.get(k)
        else:
            return default
    return val if val is not None else default


def snapshot() -> dict:
    """Deep copy of the effective configuration (env vars substituted)."""
    return copy.deepcopy(_user_config)


def reload_config() -> None:
    """Re-read config files and refresh dependent registries."""
    global _user_config
    _user_config = _load_config()
    from attache import turn_limits
    turn_limits.reload()


def save_config(updates: dict) -> Path:
    """Deep-merge *updates* into the home config file and reload.

    ``None`` values delete keys. The ``server`` section is never written
    from here. Placeholders such as ``${VAR}`` already in the file are kept
    as-is because the merge happens on the raw, unsubstituted JSON.
    """
    updates = {k: v for k, v in updates.items() if k != "server"}
    raw = _read_raw(CONFIG_PATH) if CONFIG_PATH.exists() else {}
    merged = _deep_merge(raw, updates)
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    tmp = CONFIG_PATH.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(merged, indent=2), encoding="utf-8")
    tmp.replace(CONFIG_PATH)
    reload_config()
    return CONFIG_PATH


_user_config = _load_config()


# ---- Data directory -----------------------------------------------------------
# Single source of truth for the base data directory (logs, agents, context,
# memories, downloads).
# Priority: ATTACHE_DIR env var > "data_dir" config key > ~/.attache

_data_dir: Optional[Path] = None


def get_data_dir() -> Path:
    """Return the resolved base data directory.

    Resolution order:
    1. ``ATTACHE_DIR`` environment variable (highest - useful for CI/Docker)
    2. ``"data_dir"`` key in config.json
    3. ``~/.attache`` (default)
    """
    global _data_dir
    if _data_dir is not None:
        return _data_dir
    env_val = os.environ.get("ATTACHE_DIR")
    if env_val:
        _data_dir = Path(env_val).expanduser().resolve()
    else:
        configured = get("data_dir")
        if configured:
            _data_dir = Path(configured).expanduser().resolve()
        else:
            _data_dir = Path.home() / ".attache"
    return _data_dir


def _reset_data_dir() -> None:
    """Reset the cached data directory (for testing only)."""
    global _data_dir
    _data_dir = None


# ---- LLM provider config ------------------------------------------------------
PROVIDER_TYPES = ("claude", "openai", "custom-openai")

_PROVIDER_ENV_KEYS = {
    "claude": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "custom-openai": "OPENAI_API_KEY",
}

# Hardcoded defaults per provider type, used when a provider section omits
# a key.
_PROVIDER_DEFAULTS = {
    "claude": {"model": "claude-sonnet-4-5", "max_tokens": 200_000, "temperature": 0.7},
    "openai": {"model": "gpt-4.1", "max_tokens": 128_000, "temperature": 0.7},
    "custom-openai": {"model": "", "max_tokens": 32_000, "temperature": 0.7},
}


@dataclass
class ProviderConfig:
    """One entry of ``models.providers``.

    ``max_tokens`` is the context budget used by compaction, not the
    per-response output limit.
    """
    name: str
    type: str
    model: str
    api_key: str = ""
    api_url: str = ""
    max_tokens: int = 32_000
    temperature: float = 0.7


def get_api_key(provider_type: str) -> str | None:
    """Return the API key env var for a provider type.

    Each provider type uses its own env var:
      claude        → ANTHROPIC_API_KEY
      openai        → OPENAI_API_KEY
      custom-openai → OPENAI_API_KEY
    """
    env_key = _PROVIDER_ENV_KEYS.get(provider_type.lower())
    if env_key:
        return os.getenv(env_key)
    return None


def default_provider_name() -> str:
    return get("models.default", "")


def get_provider(name: str | None = None) -> ProviderConfig:
    """Resolve a provider section into a ProviderConfig.

    Raises:
        KeyError: if the provider is not configured or its type is unknown.
    """
    name = name or default_provider_name()
    section = get(f"models.providers.{name}") if name else None
    if not isinstance(section, dict):
        raise KeyError(f"Provider {name!r} not found in config")
    ptype = str(section.get("type", "")).lower()
    if ptype not in PROVIDER_TYPES:
        raise KeyError(f"Provider {name!r} has unknown type {ptype!r}")
    defaults = _PROVIDER_DEFAULTS[ptype]
    return ProviderConfig(
        name=name,
        type=ptype,
        model=section.get("model") or defaults["model"],
        api_key=section.get("api_key") or get_api_key(ptype) or "",
        api_url=section.get("api_url") or "",
        max_tokens=int(section.get("max_tokens") or defaults["max_tokens"]),
        temperature=float(section.get("temperature", defaults["temperature"])),
    )


# ---- Tool settings ------------------------------------------------------------

@dataclass
class ToolSettings:
    """Snapshot of the ``tools`` section consumed by tool handlers."""
    filesystem: bool = False
    terminal: bool = False
    working_dir: str = ""
    limit_working_dir: bool = False
    command_whitelist: list[str] = field(default_factory=list)
    brave_search_api_key: str = ""
    memory: bool = False

    @classmethod
    def from_config(cls) -> "ToolSettings":
        working_dir = get("tools.working_dir", "")
        if working_dir:
            working_dir = str(Path(working_dir).expanduser().resolve())
        return cls(
            filesystem=bool(get("tools.filesystem", False)),
            terminal=bool(get("tools.terminal", False)),
            working_dir=working_dir,
            limit_working_dir=bool(get("tools.limit_working_dir", False)),
            command_whitelist=list(get("tools.command_whitelist", [])),
            brave_search_api_key=get("tools.brave_search_api_key", "") or os.getenv("BRAVE_SEARCH_API_KEY", ""),
            memory=bool(get("memory", False)),
        )


# ---- Assistant / server -------------------------------------------------------


def assistant_name() -> str:
    return get("assistant.name", "Attache")


def is_first_run() -> bool:
    return bool(get("assistant.first_run", False))


def mcp_servers() -> dict:
    servers = get("mcp_servers", {})
    return servers if isinstance(servers, dict) else {}
