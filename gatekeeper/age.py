from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from .errors import ConfigurationError, ResourceTooOld

if TYPE_CHECKING:
    from .policy import Permission

DEFAULT_MAX_RESOURCE_AGE = timedelta(days=30)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d|w)")
_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


def _to_timedelta(value: Any) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ConfigurationError(f"Invalid duration: {value!r}")

    text = value.strip().lower()
    if not text:
        return timedelta(0)
    if text.isdigit():
        return timedelta(seconds=int(text))
    position = 0
    duration = timedelta(0)
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        duration += float(match.group(1)) * _UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    return duration


def parse_duration(value: Any) -> timedelta:
    """Parse a configured duration.

    Accepts a ``timedelta``, a number of seconds, or a string of one or more
    ``<number><unit>`` parts such as ``720h``, ``30d`` or ``1h30m``.
    """
    try:
        duration = _to_timedelta(value)
    except (OverflowError, ValueError) as exc:
        raise ConfigurationError(f"Duration out of range: {value!r}") from exc

    if duration < timedelta(0):
        raise ConfigurationError(f"Duration must not be negative: {value!r}")
    return duration


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def oldest_viewable(permission: Permission, *, now: datetime | None = None) -> datetime:
    return _as_aware(now or _utcnow()) - permission.max_resource_age


def is_too_old(created_at: datetime, permission: Permission, *, now: datetime | None = None) -> bool:
    return _as_aware(created_at) < oldest_viewable(permission, now=now)


def check_resource_age(created_at: datetime, permission: Permission, *, now: datetime | None = None) -> None:
    """Raise ResourceTooOld if ``created_at`` is before ``now - ceiling``.

    This runs in addition to capability checks; a resource the caller may
    otherwise see is still rejected when it is too old.
    """
    if is_too_old(created_at, permission, now=now):
        raise ResourceTooOld()
