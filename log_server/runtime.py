from __future__ import annotations

import os
from typing import Any

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})


def env_str(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def env_bool(name: str, default: bool = False) -> bool:
    value = env_str(name).lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    return default


def env_int(name: str, default: int, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """Read an integer setting, clamped to ``[minimum, maximum]``; unparseable values use ``default``."""
    try:
        value = int(env_str(name) or default)
    except ValueError:
        value = default
    if minimum is not None:
        value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def waitress_runtime_settings(prefix: str) -> dict[str, Any]:
    default_threads = max(4, min(64, (os.cpu_count() or 1) * 4))
    return {
        "host": env_str(f"{prefix}_HOST") or "0.0.0.0",
        "threads": env_int(f"{prefix}_THREADS", default_threads, minimum=4, maximum=256),
        "connection_limit": env_int(f"{prefix}_CONNECTION_LIMIT", 2000, minimum=128, maximum=50000),
        "channel_timeout": env_int(f"{prefix}_CHANNEL_TIMEOUT_SECONDS", 32, minimum=5, maximum=300),
        "ident": "logview",
    }
