from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

LOGGER = logging.getLogger(__name__)

API_BASE_URL = "https://api.twilio.com"
API_VERSION = "2010-04-01"
HTTP_LIMITS = httpx.Limits(max_connections=80, max_keepalive_connections=40, keepalive_expiry=20)
MEDIA_PASSTHROUGH_HEADERS = (
    "accept-ranges",
    "cache-control",
    "content-disposition",
    "content-range",
    "etag",
    "last-modified",
)


class UpstreamError(Exception):
    def __init__(self, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


def parse_twilio_time(value: Any) -> datetime | None:
    """Parse the RFC 2822 timestamps Twilio returns, e.g. ``Tue, 31 Aug 2010 20:36:28 +0000``."""
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TwilioClient:
    """Thin client over the parts of the Twilio REST API the viewer reads."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        *,
        base_url: str = API_BASE_URL,
        transport: httpx.BaseTransport | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.account_sid = account_sid
        self._auth = (account_sid, auth_token)
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = httpx.Timeout(timeout, connect=2.5)
        self._lock = threading.Lock()
        self._client: httpx.Client | None = None

    @property
    def account_prefix(self) -> str:
        return f"/{API_VERSION}/Accounts/{self.account_sid}"

    def _get_http_client(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(
                    base_url=self._base_url,
                    auth=self._auth,
                    timeout=self._timeout,
                    limits=HTTP_LIMITS,
                    transport=self._transport,
                    headers={"User-Agent": "logview", "Accept": "application/json"},
                )
            return self._client

    def close(self) -> None:
        client: httpx.Client | None = None
        with self._lock:
            if self._client is not None:
                client = self._client
                self._client = None
        if client is not None:
            client.close()

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = self._get_http_client().get(path, params=params)
        except httpx.HTTPError as exc:
            LOGGER.warning("Twilio request failed: %s %s", path, exc)
            raise UpstreamError("Twilio is unreachable") from exc
        if response.status_code == 404:
            raise UpstreamError("Resource not found", status_code=404)
        if not response.is_success:
            LOGGER.warning("Twilio returned %d for %s", response.status_code, path)
            raise UpstreamError("Twilio request failed")
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError("Twilio returned an invalid JSON response") from exc
        if not isinstance(payload, dict):
            raise UpstreamError("Twilio returned an invalid JSON response")
        return payload

    def _list(self, resource: str, key: str, *, page_size: int, next_page_uri: str | None) -> dict[str, Any]:
        if next_page_uri:
            # Only follow page links that stay inside this account's resource.
            if not next_page_uri.startswith(f"{self.account_prefix}/{resource}.json?"):
                raise UpstreamError("Invalid page link", status_code=400)
            payload = self._get_json(next_page_uri)
        else:
            payload = self._get_json(f"{self.account_prefix}/{resource}.json", params={"PageSize": page_size})
        items = payload.get(key) or []
        return {
            "items": [item for item in items if isinstance(item, dict)],
            "next_page_uri": str(payload.get("next_page_uri") or ""),
        }

    def list_calls(self, *, page_size: int, next_page_uri: str | None = None) -> dict[str, Any]:
        return self._list("Calls", "calls", page_size=page_size, next_page_uri=next_page_uri)

    def list_messages(self, *, page_size: int, next_page_uri: str | None = None) -> dict[str, Any]:
        return self._list("Messages", "messages", page_size=page_size, next_page_uri=next_page_uri)

    def list_conferences(self, *, page_size: int, next_page_uri: str | None = None) -> dict[str, Any]:
        return self._list("Conferences", "conferences", page_size=page_size, next_page_uri=next_page_uri)

    def get_call(self, sid: str) -> dict[str, Any]:
        return self._get_json(f"{self.account_prefix}/Calls/{sid}.json")

    def get_message(self, sid: str) -> dict[str, Any]:
        return self._get_json(f"{self.account_prefix}/Messages/{sid}.json")

    def get_conference(self, sid: str) -> dict[str, Any]:
        return self._get_json(f"{self.account_prefix}/Conferences/{sid}.json")

    def list_call_recordings(self, call_sid: str) -> list[dict[str, Any]]:
        payload = self._get_json(f"{self.account_prefix}/Calls/{call_sid}/Recordings.json")
        return [item for item in payload.get("recordings") or [] if isinstance(item, dict)]

    def list_message_media(self, message_sid: str) -> list[dict[str, Any]]:
        payload = self._get_json(f"{self.account_prefix}/Messages/{message_sid}/Media.json")
        return [item for item in payload.get("media_list") or [] if isinstance(item, dict)]

    def list_conference_participants(self, conference_sid: str) -> list[dict[str, Any]]:
        payload = self._get_json(f"{self.account_prefix}/Conferences/{conference_sid}/Participants.json")
        return [item for item in payload.get("participants") or [] if isinstance(item, dict)]

    def fetch_media(self, path: str, *, headers: dict[str, str] | None = None) -> httpx.Response:
        """Fetch raw media bytes under this account, following the storage redirect."""
        if not path.startswith(f"{self.account_prefix}/"):
            raise UpstreamError("Invalid media path", status_code=400)
        try:
            response = self._get_http_client().get(
                path,
                headers={"Accept": "*/*", **(headers or {})},
                follow_redirects=True,
            )
        except httpx.HTTPError as exc:
            LOGGER.warning("Twilio media request failed: %s %s", path, exc)
            raise UpstreamError("Twilio is unreachable") from exc
        if response.status_code == 404:
            raise UpstreamError("Media not found", status_code=404)
        if not response.is_success:
            raise UpstreamError("Twilio media request failed")
        return response

    def recording_path(self, recording_sid: str) -> str:
        return f"{self.account_prefix}/Recordings/{recording_sid}.mp3"

    def media_path(self, message_sid: str, media_sid: str) -> str:
        return f"{self.account_prefix}/Messages/{message_sid}/Media/{media_sid}"
