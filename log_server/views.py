"""Permission-aware views of Twilio resources.

Every resource passes two independent checks before it's rendered: the
caller must hold the capability for its kind, and it must be younger than the
caller's max resource age. Fields the caller can't see are dropped.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from gatekeeper.age import check_resource_age, is_too_old
from gatekeeper.errors import ResourceTooOld
from gatekeeper.policy import User

from .services.twilio_client import parse_twilio_time


@dataclass(frozen=True)
class ResourceKind:
    name: str
    capability: str
    fields: Mapping[str, str] = field(default_factory=dict)


CALLS = ResourceKind(
    name="calls",
    capability="can_view_calls",
    fields={
        "from": "can_view_call_from",
        "from_formatted": "can_view_call_from",
        "caller_name": "can_view_call_from",
        "to": "can_view_call_to",
        "to_formatted": "can_view_call_to",
        "price": "can_view_call_price",
        "price_unit": "can_view_call_price",
    },
)
MESSAGES = ResourceKind(
    name="messages",
    capability="can_view_messages",
    fields={
        "from": "can_view_message_from",
        "to": "can_view_message_to",
        "body": "can_view_message_body",
        "price": "can_view_message_price",
        "price_unit": "can_view_message_price",
        "num_media": "can_view_num_media",
    },
)
CONFERENCES = ResourceKind(name="conferences", capability="can_view_conferences")


def _redact(resource: Mapping[str, Any], user: User, kind: ResourceKind, created_at: datetime) -> dict[str, Any]:
    view = {
        key: value
        for key, value in resource.items()
        if key not in kind.fields or user.can(kind.fields[key])
    }
    view["created_at"] = created_at
    return view


def instance_view(resource: Mapping[str, Any], user: User, kind: ResourceKind, *, now: datetime | None = None) -> dict[str, Any]:
    user.require(kind.capability)
    created_at = parse_twilio_time(resource.get("date_created"))
    if created_at is None:
        raise ResourceTooOld("Cannot determine the age of this resource")
    check_resource_age(created_at, user.permission, now=now)
    return _redact(resource, user, kind, created_at)


def list_view(
    resources: Iterable[Mapping[str, Any]],
    user: User,
    kind: ResourceKind,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    user.require(kind.capability)
    views: list[dict[str, Any]] = []
    for resource in resources:
        created_at = parse_twilio_time(resource.get("date_created"))
        if created_at is None or is_too_old(created_at, user.permission, now=now):
            continue
        views.append(_redact(resource, user, kind, created_at))
    return views


def recording_views(recordings: Iterable[Mapping[str, Any]], user: User) -> list[dict[str, Any]]:
    if not user.can("can_view_recordings"):
        return []
    return [
        {
            "sid": str(recording.get("sid") or ""),
            "duration": recording.get("duration"),
            "created_at": parse_twilio_time(recording.get("date_created")),
        }
        for recording in recordings
        if recording.get("sid")
    ]


def media_views(media_list: Iterable[Mapping[str, Any]], user: User) -> list[dict[str, Any]]:
    if not user.can("can_view_media"):
        return []
    return [
        {"sid": str(media.get("sid") or ""), "content_type": str(media.get("content_type") or "")}
        for media in media_list
        if media.get("sid")
    ]
