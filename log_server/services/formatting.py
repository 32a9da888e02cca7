from __future__ import annotations

from datetime import datetime, timedelta, tzinfo
from typing import Any


def friendly_duration(value: Any) -> str:
    """Render a duration in seconds as ``1h2m3s``, dropping zero leading parts."""
    if isinstance(value, timedelta):
        total = int(value.total_seconds())
    else:
        try:
            total = int(float(value))
        except (TypeError, ValueError):
            return ""
    if total <= 0:
        return "0s"
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    parts: list[str] = []
    if hours:
        parts.append(f"{hours}h")
    if hours or minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return "".join(parts)


def local_time(value: datetime | None, location: tzinfo) -> str:
    if value is None:
        return ""
    return value.astimezone(location).strftime("%b %d, %Y %H:%M:%S %Z")
