from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from types import SimpleNamespace

import httpx
import pytest

from log_server.services.twilio_client import TwilioClient

ACCOUNT_SID = "AC" + "0" * 32


def _sid(prefix: str, digit: str) -> str:
    return prefix + digit * 32


def _twilio_date(days_ago: int) -> str:
    return format_datetime(datetime.now(timezone.utc) - timedelta(days=days_ago))


@pytest.fixture()
def twilio() -> SimpleNamespace:
    """A TwilioClient backed by an in-memory copy of a small account."""
    ns = SimpleNamespace(
        account_sid=ACCOUNT_SID,
        call_sid=_sid("CA", "1"),
        old_call_sid=_sid("CA", "2"),
        missing_call_sid=_sid("CA", "3"),
        recording_sid=_sid("RE", "1"),
        message_sid=_sid("MM", "1"),
        media_sid=_sid("ME", "1"),
        conference_sid=_sid("CF", "1"),
        requests=[],
    )
    prefix = f"/2010-04-01/Accounts/{ACCOUNT_SID}"
    recent_call = {
        "sid": ns.call_sid,
        "from": "+15551230001",
        "to": "+15551230002",
        "status": "completed",
        "duration": "75",
        "price": "-0.0130",
        "price_unit": "USD",
        "date_created": _twilio_date(1),
    }
    old_call = {**recent_call, "sid": ns.old_call_sid, "date_created": _twilio_date(400)}
    message = {
        "sid": ns.message_sid,
        "from": "+15550000001",
        "to": "+15550000002",
        "body": "hello there",
        "num_media": "1",
        "status": "delivered",
        "date_created": _twilio_date(2),
    }
    conference = {"sid": ns.conference_sid, "friendly_name": "standup", "status": "completed", "date_created": _twilio_date(3)}
    json_routes = {
        f"{prefix}/Calls.json": {"calls": [recent_call, old_call], "next_page_uri": f"{prefix}/Calls.json?Page=1&PageSize=50"},
        f"{prefix}/Calls/{ns.call_sid}.json": recent_call,
        f"{prefix}/Calls/{ns.old_call_sid}.json": old_call,
        f"{prefix}/Calls/{ns.call_sid}/Recordings.json": {
            "recordings": [{"sid": ns.recording_sid, "duration": "12", "date_created": _twilio_date(1)}]
        },
        f"{prefix}/Messages.json": {"messages": [message], "next_page_uri": None},
        f"{prefix}/Messages/{ns.message_sid}.json": message,
        f"{prefix}/Messages/{ns.message_sid}/Media.json": {
            "media_list": [{"sid": ns.media_sid, "content_type": "image/png"}]
        },
        f"{prefix}/Conferences.json": {"conferences": [conference]},
        f"{prefix}/Conferences/{ns.conference_sid}.json": conference,
        f"{prefix}/Conferences/{ns.conference_sid}/Participants.json": {"participants": [{"call_sid": ns.call_sid}]},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        ns.requests.append(request)
        path = request.url.path
        if path in json_routes:
            return httpx.Response(200, json=json_routes[path])
        if path == f"{prefix}/Messages/{ns.message_sid}/Media/{ns.media_sid}":
            return httpx.Response(
                200,
                content=b"\x89PNG fake",
                headers={"content-type": "image/png", "etag": '"media-1"', "x-internal": "secret"},
            )
        if path == f"{prefix}/Recordings/{ns.recording_sid}.mp3":
            if request.headers.get("range"):
                return httpx.Response(
                    206,
                    content=b"ID3",
                    headers={"content-type": "audio/mpeg", "content-range": "bytes 0-2/100", "accept-ranges": "bytes"},
                )
            return httpx.Response(200, content=b"ID3" * 10, headers={"content-type": "audio/mpeg"})
        return httpx.Response(404, json={"code": 20404, "message": "not found"})

    ns.client = TwilioClient(ACCOUNT_SID, "auth-token", transport=httpx.MockTransport(handler))
    return ns
