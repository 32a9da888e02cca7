from __future__ import annotations

import logging
import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import (
    Blueprint,
    Response,
    abort,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from werkzeug.exceptions import HTTPException

from gatekeeper.errors import AccessError, AuthError, SignatureError

from .auth import app_state, current_user, require_user
from .media import (
    audio_resource,
    image_resource,
    relay_media,
    signed_audio_url,
    signed_image_url,
    verify_media_request,
)
from .services.twilio_client import UpstreamError
from .views import CALLS, CONFERENCES, MESSAGES, ResourceKind, instance_view, list_view, media_views, recording_views

LOGGER = logging.getLogger(__name__)

web = Blueprint("web", __name__)

SID_PATTERN = re.compile(r"^[A-Z]{2}[0-9a-f]{32}$")
SEARCH_PREFIXES = {"CA": "web.call_instance", "SM": "web.message_instance", "MM": "web.message_instance", "CF": "web.conference_instance"}
TIMEZONE_SESSION_KEY = "tz"


def _sid_or_404(value: str) -> str:
    if not SID_PATTERN.match(value or ""):
        abort(404, description="Unknown resource")
    return value


def _render_error(message: str, status_code: int) -> tuple[str, int]:
    return render_template("error.html", message=message, status_code=status_code, mailto=app_state().settings.mailto), status_code


@web.app_errorhandler(AuthError)
def handle_auth_error(error: AuthError):
    return app_state().authenticator.challenge(error)


@web.app_errorhandler(SignatureError)
def handle_signature_error(error: SignatureError):
    LOGGER.info("Rejected media request %s: %s", request.path, error.message)
    return _render_error("Access denied", 403)


@web.app_errorhandler(AccessError)
def handle_access_error(error: AccessError):
    return _render_error(error.message, error.status_code)


@web.app_errorhandler(UpstreamError)
def handle_upstream_error(error: UpstreamError):
    if error.status_code == 404:
        return _render_error("Unknown resource", 404)
    return _render_error(str(error), error.status_code)


@web.app_errorhandler(HTTPException)
def handle_http_error(error: HTTPException):
    return error


@web.app_errorhandler(Exception)
def handle_unexpected_error(error: Exception):
    LOGGER.exception("Unhandled error serving %s", request.path)
    app_state().reporter.report(error, {"path": request.path, "method": request.method})
    return _render_error("Something went wrong. The error has been reported.", 500)


def _render_list(kind: ResourceKind, endpoint: str, fetch) -> str:
    user = current_user()
    user.require(kind.capability)
    payload = fetch(page_size=app_state().settings.page_size, next_page_uri=request.args.get("next"))
    rows = list_view(payload["items"], user, kind)
    return render_template(
        "list.html",
        kind=kind,
        rows=rows,
        instance_endpoint=endpoint,
        next_page_uri=payload.get("next_page_uri") or "",
        user=user,
    )


@web.get("/")
@require_user
def index():
    return render_template("index.html", user=current_user())


@web.get("/calls")
@require_user
def call_list():
    return _render_list(CALLS, "web.call_instance", app_state().client.list_calls)


@web.get("/messages")
@require_user
def message_list():
    return _render_list(MESSAGES, "web.message_instance", app_state().client.list_messages)


@web.get("/conferences")
@require_user
def conference_list():
    return _render_list(CONFERENCES, "web.conference_instance", app_state().client.list_conferences)


@web.get("/calls/<sid>")
@require_user
def call_instance(sid: str):
    state = app_state()
    user = current_user()
    call = instance_view(state.client.get_call(_sid_or_404(sid)), user, CALLS)
    recordings = recording_views(state.client.list_call_recordings(sid), user) if user.can("can_view_recordings") else []
    if user.can("can_play_recordings"):
        for recording in recordings:
            recording["url"] = signed_audio_url(state.signer, user, recording["sid"], state.settings.media_url_ttl)
    return render_template("instance.html", kind=CALLS, resource=call, recordings=recordings, media=[], user=user)


@web.get("/messages/<sid>")
@require_user
def message_instance(sid: str):
    state = app_state()
    user = current_user()
    message = instance_view(state.client.get_message(_sid_or_404(sid)), user, MESSAGES)
    media = media_views(state.client.list_message_media(sid), user) if user.can("can_view_media") else []
    for item in media:
        item["url"] = signed_image_url(state.signer, user, sid, item["sid"], state.settings.media_url_ttl)
    return render_template(
        "instance.html",
        kind=MESSAGES,
        resource=message,
        recordings=[],
        media=media,
        show_media=state.settings.show_media_by_default,
        user=user,
    )


@web.get("/conferences/<sid>")
@require_user
def conference_instance(sid: str):
    state = app_state()
    user = current_user()
    conference = instance_view(state.client.get_conference(_sid_or_404(sid)), user, CONFERENCES)
    conference["participants"] = state.client.list_conference_participants(sid)
    return render_template("instance.html", kind=CONFERENCES, resource=conference, recordings=[], media=[], user=user)


@web.get("/images/<message_sid>/<media_sid>")
@require_user
def image(message_sid: str, media_sid: str):
    state = app_state()
    user = current_user()
    verify_media_request(state.signer, image_resource(message_sid, media_sid), user, request.args)
    user.require("can_view_media")
    path = state.client.media_path(_sid_or_404(message_sid), _sid_or_404(media_sid))
    return relay_media(state.client, path)


@web.get("/audio/<recording_sid>")
@require_user
def audio(recording_sid: str):
    state = app_state()
    user = current_user()
    verify_media_request(state.signer, audio_resource(recording_sid), user, request.args)
    user.require("can_play_recordings")
    path = state.client.recording_path(_sid_or_404(recording_sid))
    return relay_media(state.client, path, request_headers=request.headers)


@web.get("/search")
@require_user
def search():
    query = (request.args.get("q") or "").strip()
    endpoint = SEARCH_PREFIXES.get(query[:2])
    if not endpoint or not SID_PATTERN.match(query):
        return _render_error("Search for a call, message or conference sid", 400)
    return redirect(url_for(endpoint, sid=query))


@web.post("/tz")
@require_user
def set_timezone():
    value = (request.form.get("timezone") or "").strip()
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        abort(400, description="Unknown timezone")
    session[TIMEZONE_SESSION_KEY] = value
    return redirect(request.referrer if (request.referrer or "").startswith(request.host_url) else url_for("web.index"))


@web.post("/auth/logout")
def logout():
    response = redirect(url_for("web.index"))
    app_state().authenticator.logout(response)
    session.clear()
    return response


@web.get("/opensearch.xml")
def opensearch():
    body = render_template("opensearch.xml", base_url=app_state().settings.base_url)
    return Response(body, content_type="application/opensearchdescription+xml")
