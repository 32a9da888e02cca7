from __future__ import annotations

import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import Flask, redirect, request, session

from gatekeeper.policy import PermissionEvaluator, Policy
from gatekeeper.signing import URLSigner, validate_secret_key

from .auth import EXTENSION_KEY, AppState
from .authenticators import build_authenticator
from .config import Settings
from .routes import TIMEZONE_SESSION_KEY, web
from .services.formatting import friendly_duration, local_time
from .services.reporter import get_reporter
from .services.twilio_client import TwilioClient

__version__ = "1.0.0"

PACKAGE_DIR = Path(__file__).resolve().parent


def _resource_root() -> Path:
    if getattr(sys, "frozen", False):
        return Path(getattr(sys, "_MEIPASS", str(PACKAGE_DIR)))
    return PACKAGE_DIR


def _display_location(settings: Settings):
    preferred = str(session.get(TIMEZONE_SESSION_KEY) or "")
    if preferred:
        try:
            return ZoneInfo(preferred)
        except (ZoneInfoNotFoundError, ValueError):
            session.pop(TIMEZONE_SESSION_KEY, None)
    return settings.location


def create_app(settings: Settings, *, client: TwilioClient | None = None) -> Flask:
    """Build the web app. Raises ConfigurationError before anything is served."""
    validate_secret_key(settings.secret_key)
    signer = URLSigner(settings.secret_key)
    policy = settings.policy if settings.policy is not None else Policy.open()
    state = AppState(
        settings=settings,
        signer=signer,
        evaluator=PermissionEvaluator(policy, settings.max_resource_age),
        authenticator=build_authenticator(settings, signer),
        reporter=get_reporter(settings.error_reporter, settings.error_reporter_token),
        client=client or TwilioClient(settings.account_sid, settings.auth_token),
    )

    resource_root = _resource_root()
    app = Flask(
        __name__,
        template_folder=str(resource_root / "templates"),
        static_folder=str(resource_root / "static"),
    )
    app.config.update(
        SECRET_KEY=settings.secret_key,
        SESSION_COOKIE_SECURE=not settings.allow_unencrypted_traffic,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
    )
    app.extensions[EXTENSION_KEY] = state

    @app.before_request
    def _upgrade_insecure():
        if not settings.allow_unencrypted_traffic and request.headers.get("X-Forwarded-Proto") == "http":
            return redirect(request.url.replace("http://", "https://", 1), code=301)
        return None

    @app.after_request
    def _standard_headers(response):
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"
        response.headers["Server"] = f"logview/{__version__}"
        return response

    @app.template_filter("duration")
    def _duration_filter(value):
        return friendly_duration(value)

    @app.template_filter("localtime")
    def _localtime_filter(value):
        return local_time(value, _display_location(settings))

    app.register_blueprint(web)
    auth_routes = state.authenticator.blueprint()
    if auth_routes is not None:
        app.register_blueprint(auth_routes)
    return app
