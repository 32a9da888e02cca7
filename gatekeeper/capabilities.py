from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from .errors import ConfigurationError

CALL_CAPABILITIES = (
    "can_view_calls",
    "can_view_call_from",
    "can_view_call_to",
    "can_view_call_price",
    "can_view_recordings",
    "can_play_recordings",
)
MESSAGE_CAPABILITIES = (
    "can_view_messages",
    "can_view_message_from",
    "can_view_message_to",
    "can_view_message_body",
    "can_view_message_price",
    "can_view_num_media",
    "can_view_media",
)
CONFERENCE_CAPABILITIES = ("can_view_conferences",)

CAPABILITIES = frozenset(CALL_CAPABILITIES + MESSAGE_CAPABILITIES + CONFERENCE_CAPABILITIES)

Capabilities = Mapping[str, bool]

def all_capabilities() -> Capabilities:
    return MappingProxyType({name: True for name in sorted(CAPABILITIES)})

def normalize_capabilities(values: Mapping[str, bool] | None) -> Capabilities:
    """Return a read-only mapping with an entry for every known capability.

    ``None`` means the group did not configure a capability set and grants
    everything. Names missing from a configured mapping are denied.
    """
    if values is None:
        return all_capabilities()

    unknown = sorted(set(values) - CAPABILITIES)
    if unknown:
        raise ConfigurationError(f"Unknown permission(s): {', '.join(unknown)}")

    resolved = {name: False for name in CAPABILITIES}
    for name, value in values.items():
        resolved[name] = bool(value)
    return MappingProxyType(dict(sorted(resolved.items())))
