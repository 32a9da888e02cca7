from __future__ import annotations

from datetime import timedelta
from typing import Any, Mapping

from flask import Response, url_for

from gatekeeper.policy import User
from gatekeeper.signing import URLSigner

from .services.twilio_client import MEDIA_PASSTHROUGH_HEADERS, TwilioClient


def image_resource(message_sid: str, media_sid: str) -> str:
    return f"images/{message_sid}/{media_sid}"


def audio_resource(recording_sid: str) -> str:
    return f"audio/{recording_sid}"


def signed_image_url(signer: URLSigner, user: User, message_sid: str, media_sid: str, ttl: timedelta) -> str:
    token = signer.sign_resource(image_resource(message_sid, media_sid), user.id, expires_in=int(ttl.total_seconds()))
    return url_for("web.image", message_sid=message_sid, media_sid=media_sid, **token.query_params())


def signed_audio_url(signer: URLSigner, user: User, recording_sid: str, ttl: timedelta) -> str:
    token = signer.sign_resource(audio_resource(recording_sid), user.id, expires_in=int(ttl.total_seconds()))
    return url_for("web.audio", recording_sid=recording_sid, **token.query_params())


def verify_media_request(signer: URLSigner, resource: str, user: User, args: Mapping[str, str]) -> None:
    """Raise a SignatureError unless the query carries a live signature for this user and resource."""
    signer.verify_resource(resource, user.id, args.get("expires"), args.get("sig"))


def _forward_range_header(request_headers: Any | None) -> dict[str, str]:
    if request_headers is None:
        return {}
    range_header = str(request_headers.get("Range") or "").strip()
    if not range_header:
        return {}
    return {"Range": range_header}


def relay_media(client: TwilioClient, path: str, *, request_headers: Any | None = None) -> Response:
    upstream = client.fetch_media(path, headers=_forward_range_header(request_headers))
    passthrough_headers: dict[str, str] = {}
    for header_name in MEDIA_PASSTHROUGH_HEADERS:
        value = upstream.headers.get(header_name)
        if value:
            passthrough_headers[header_name] = value
    passthrough_headers.setdefault("cache-control", "private, max-age=900")
    content_type = upstream.headers.get("content-type", "application/octet-stream")
    return Response(upstream.content, status=upstream.status_code, headers=passthrough_headers, content_type=content_type)
