from __future__ import annotations

import base64
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from flask import Flask

from gatekeeper.errors import AuthError, AuthProviderError
from gatekeeper.signing import URLSigner
from log_server import create_app
from log_server.authenticators import (
    GOOGLE_TOKEN_URL,
    GOOGLE_USERINFO_URL,
    SESSION_COOKIE,
    STATE_COOKIE,
    BasicAuthAuthenticator,
    GoogleAuthenticator,
    NoopAuthenticator,
    build_authenticator,
    safe_next_path,
)
from log_server.config import Settings

SECRET = bytes([0xAB]) * 32
HTTPS = "https://localhost"


def _request(app: Flask, headers: dict[str, str] | None = None):
    return app.test_request_context("/", headers=headers or {})


def _basic(value: str) -> dict[str, str]:
    return {"Authorization": "Basic " + base64.b64encode(value.encode()).decode()}


def test_noop_returns_fixed_principal() -> None:
    app = Flask(__name__)
    with _request(app) as ctx:
        assert NoopAuthenticator().authenticate(ctx.request) == "anonymous"


def test_basic_auth_accepts_known_user() -> None:
    authenticator = BasicAuthAuthenticator("logview", {"admin": "s3cret"})
    app = Flask(__name__)
    with _request(app, _basic("admin:s3cret")) as ctx:
        assert authenticator.authenticate(ctx.request) == "admin"


@pytest.mark.parametrize(
    "headers",
    [
        {},
        _basic("admin:wrong"),
        _basic("mallory:s3cret"),
        _basic("no-separator"),
        {"Authorization": "Basic !!!"},
        {"Authorization": "Bearer abc"},
        {"Authorization": "Basic \u00e9\u00e9\u00e9\u00e9"},
    ],
)
def test_basic_auth_rejects_bad_credentials(headers: dict[str, str]) -> None:
    authenticator = BasicAuthAuthenticator("logview", {"admin": "s3cret"})
    app = Flask(__name__)
    with _request(app, headers) as ctx:
        with pytest.raises(AuthError):
            authenticator.authenticate(ctx.request)


def test_basic_challenge_names_realm() -> None:
    response = BasicAuthAuthenticator("logview", {}).challenge(AuthError())
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == 'Basic realm="logview"'


def test_safe_next_path() -> None:
    assert safe_next_path("/calls?Page=2") == "/calls?Page=2"
    assert safe_next_path("//evil.example.com") == "/"
    assert safe_next_path("https://evil.example.com") == "/"
    assert safe_next_path(None) == "/"


def test_build_authenticator_follows_scheme() -> None:
    signer = URLSigner(SECRET)
    assert isinstance(build_authenticator(Settings(secret_key=SECRET), signer), NoopAuthenticator)
    basic = build_authenticator(Settings(secret_key=SECRET, auth_scheme="basic", basic_auth_users={"a": "b"}), signer)
    assert isinstance(basic, BasicAuthAuthenticator)

    google = build_authenticator(
        Settings(
            secret_key=SECRET,
            auth_scheme="google",
            google_client_id="id",
            google_client_secret="secret",
            public_host="localhost:4114",
            allow_unencrypted_traffic=True,
            session_ttl=timedelta(hours=1),
        ),
        signer,
    )
    assert isinstance(google, GoogleAuthenticator)
    assert google.callback_url == "http://localhost:4114/auth/callback"
    assert google.secure_cookies is False
    assert google.session_ttl == timedelta(hours=1)


def _google(handler=None, **kwargs) -> GoogleAuthenticator:
    transport = httpx.MockTransport(handler) if handler is not None else None
    return GoogleAuthenticator("client-id", "client-secret", "https://logs.example.com", URLSigner(SECRET), transport=transport, **kwargs)


def test_google_exchange_returns_verified_email() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if str(request.url) == GOOGLE_TOKEN_URL:
            return httpx.Response(200, json={"access_token": "token-1"})
        if str(request.url) == GOOGLE_USERINFO_URL:
            return httpx.Response(200, json={"email": "Alice@Example.com", "email_verified": True})
        return httpx.Response(404)

    assert _google(handler).exchange("code-1") == "alice@example.com"
    form = parse_qs(seen[0].content.decode())
    assert form["code"] == ["code-1"]
    assert form["redirect_uri"] == ["https://logs.example.com/auth/callback"]
    assert seen[1].headers["Authorization"] == "Bearer token-1"


@pytest.mark.parametrize(
    "token_response, userinfo_response",
    [
        (httpx.Response(400, json={"error": "invalid_grant"}), None),
        (httpx.Response(200, json={}), None),
        (httpx.Response(200, json=["not", "a", "dict"]), None),
        (httpx.Response(200, content=b"not json"), None),
        (httpx.Response(200, json={"access_token": "t"}), httpx.Response(200, json={"email": "a@b.c", "email_verified": False})),
        (httpx.Response(200, json={"access_token": "t"}), httpx.Response(200, json={})),
        (httpx.Response(200, json={"access_token": "t"}), httpx.Response(500)),
    ],
)
def test_google_exchange_failures(token_response, userinfo_response) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == GOOGLE_TOKEN_URL:
            return token_response
        return userinfo_response

    with pytest.raises(AuthProviderError):
        _google(handler).exchange("code")


def test_google_exchange_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    with pytest.raises(AuthProviderError, match="unreachable"):
        _google(handler).exchange("code")


def _google_app(twilio, monkeypatch, email: str = "alice@example.com") -> Flask:
    monkeypatch.setattr(GoogleAuthenticator, "exchange", lambda self, code: email)
    settings = Settings(
        secret_key=SECRET,
        auth_scheme="google",
        google_client_id="client-id",
        google_client_secret="client-secret",
        public_host="logs.example.com",
        account_sid=twilio.account_sid,
    )
    app = create_app(settings, client=twilio.client)
    app.testing = True
    return app


def test_google_login_flow_sets_session_cookie(twilio, monkeypatch) -> None:
    client = _google_app(twilio, monkeypatch).test_client()

    response = client.get("/calls", base_url=HTTPS)
    assert response.status_code == 302
    assert "/auth/google" in response.headers["Location"]

    response = client.get("/auth/google?next=/calls", base_url=HTTPS)
    assert response.status_code == 302
    location = urlsplit(response.headers["Location"])
    assert location.netloc == "accounts.google.com"
    query = parse_qs(location.query)
    assert query["redirect_uri"] == ["https://logs.example.com/auth/callback"]
    state = query["state"][0]
    assert STATE_COOKIE in response.headers["Set-Cookie"]

    response = client.get(f"/auth/callback?state={state}&code=abc", base_url=HTTPS)
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/calls")
    session_cookie = next(value for value in response.headers.getlist("Set-Cookie") if value.startswith(SESSION_COOKIE))
    assert "Secure" in session_cookie
    assert "HttpOnly" in session_cookie

    response = client.get("/calls", base_url=HTTPS)
    assert response.status_code == 200
    assert twilio.call_sid in response.get_data(as_text=True)


def test_google_callback_rejects_state_from_another_browser(twilio, monkeypatch) -> None:
    app = _google_app(twilio, monkeypatch)
    first = app.test_client()
    response = first.get("/auth/google", base_url=HTTPS)
    state = parse_qs(urlsplit(response.headers["Location"]).query)["state"][0]

    other = app.test_client()
    response = other.get(f"/auth/callback?state={state}&code=abc", base_url=HTTPS)
    assert response.status_code == 302
    assert "error=provider" in response.headers["Location"]

    response = other.get("/auth/google?error=provider", base_url=HTTPS)
    assert response.status_code == 401
    assert "Sign in with Google" in response.get_data(as_text=True)


def test_google_rejects_forged_session_cookie(twilio, monkeypatch) -> None:
    app = _google_app(twilio, monkeypatch)
    client = app.test_client()
    forged = URLSigner(bytes([0xCD]) * 32).issue_token({"kind": "session", "sub": "alice@example.com"}, expires_in=60)
    client.set_cookie(SESSION_COOKIE, forged, domain="localhost")

    response = client.get("/calls", base_url=HTTPS)
    assert response.status_code == 302
    assert "/auth/google" in response.headers["Location"]


def test_google_logout_clears_session(twilio, monkeypatch) -> None:
    client = _google_app(twilio, monkeypatch).test_client()
    response = client.post("/auth/logout", base_url=HTTPS)

    assert response.status_code == 302
    cleared = [value for value in response.headers.getlist("Set-Cookie") if value.startswith(SESSION_COOKIE)]
    assert cleared and "Max-Age=0" in cleared[0]
