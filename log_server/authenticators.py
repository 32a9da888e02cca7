from __future__ import annotations

import base64
import logging
import secrets
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

import httpx
from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError
from flask import Blueprint, Request, Response, redirect, render_template, request, url_for

from gatekeeper.errors import AuthError, AuthProviderError, SignatureError
from gatekeeper.signing import URLSigner

from .config import Settings

LOGGER = logging.getLogger(__name__)

ANONYMOUS_PRINCIPAL = "anonymous"
SESSION_COOKIE = "logview_session"
STATE_COOKIE = "logview_oauth_state"
STATE_TTL_SECONDS = 600

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"

_password_hasher = PasswordHasher()


def safe_next_path(value: str | None) -> str:
    candidate = str(value or "").strip()
    if candidate.startswith("/") and not candidate.startswith("//"):
        return candidate
    return "/"


class Authenticator(ABC):
    """Turns an inbound request into an authenticated principal id."""

    @abstractmethod
    def authenticate(self, req: Request) -> str:
        """Return the principal id, or raise AuthError."""

    def challenge(self, error: AuthError) -> Response:
        return Response(error.message, status=401, mimetype="text/plain")

    def logout(self, response: Response) -> None:
        return None

    def blueprint(self) -> Blueprint | None:
        """Routes the scheme needs to serve outside the authenticated area."""
        return None


class NoopAuthenticator(Authenticator):
    def __init__(self, principal_id: str = ANONYMOUS_PRINCIPAL) -> None:
        self.principal_id = principal_id

    def authenticate(self, req: Request) -> str:
        return self.principal_id


def _decode_basic(header_value: str) -> tuple[str, str]:
    scheme, _, encoded = header_value.partition(" ")
    if scheme.lower() != "basic" or not encoded.strip():
        raise AuthError("Unsupported auth scheme")
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except ValueError as exc:
        raise AuthError("Bad Base64") from exc
    username, separator, password = decoded.partition(":")
    if not separator:
        raise AuthError("Malformed credentials")
    return username, password


class BasicAuthAuthenticator(Authenticator):
    def __init__(self, realm: str, users: Mapping[str, str]) -> None:
        self.realm = realm
        self._hashes = {username: _password_hasher.hash(password) for username, password in users.items()}
        # Unknown users are checked against this so they cost the same as a wrong password.
        self._decoy_hash = _password_hasher.hash(secrets.token_urlsafe(16))

    def authenticate(self, req: Request) -> str:
        header = req.headers.get("Authorization", "")
        if not header:
            raise AuthError("Missing Authorization header")
        username, password = _decode_basic(header)
        stored = self._hashes.get(username)
        try:
            _password_hasher.verify(stored or self._decoy_hash, password)
        except VerifyMismatchError as exc:
            raise AuthError("Bad credentials") from exc
        if stored is None:
            raise AuthError("Bad credentials")
        return username

    def challenge(self, error: AuthError) -> Response:
        LOGGER.debug("Basic auth failed: %s", error)
        return Response(
            "Authentication required",
            status=401,
            mimetype="text/plain",
            headers={"WWW-Authenticate": f'Basic realm="{self.realm}"'},
        )


class GoogleAuthenticator(Authenticator):
    """Google OAuth login with the session held in a signed client cookie.

    ``base_url`` must be ``http://`` only when unencrypted traffic is allowed;
    the cookie is marked Secure otherwise.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        signer: URLSigner,
        *,
        allow_unencrypted_traffic: bool = False,
        session_ttl: timedelta = timedelta(days=7),
        transport: httpx.BaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self._signer = signer
        self.allow_unencrypted_traffic = allow_unencrypted_traffic
        self.session_ttl = session_ttl
        self._transport = transport
        self._timeout = httpx.Timeout(timeout, connect=3.0)

    @property
    def callback_url(self) -> str:
        return f"{self.base_url}/auth/callback"

    @property
    def secure_cookies(self) -> bool:
        return not self.allow_unencrypted_traffic

    def authenticate(self, req: Request) -> str:
        token = req.cookies.get(SESSION_COOKIE, "")
        if not token:
            raise AuthError("Not logged in")
        try:
            claims = self._signer.decode_token(token)
        except SignatureError as exc:
            raise AuthError(f"Invalid session: {exc.message}") from exc
        principal_id = str(claims.get("sub") or "")
        if claims.get("kind") != "session" or not principal_id:
            raise AuthError("Invalid session")
        return principal_id

    def challenge(self, error: AuthError) -> Response:
        LOGGER.debug("Google session rejected: %s", error)
        next_path = safe_next_path(request.full_path.rstrip("?") if request.method == "GET" else "/")
        return redirect(url_for("google_auth.login", next=next_path))

    def logout(self, response: Response) -> None:
        response.delete_cookie(SESSION_COOKIE, secure=self.secure_cookies, httponly=True, samesite="Lax")

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.callback_url,
            "response_type": "code",
            "scope": "openid email",
            "state": state,
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"

    def _http_client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout, transport=self._transport, follow_redirects=False)

    def exchange(self, code: str) -> str:
        """Exchange an authorization code for the verified email it belongs to."""
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "redirect_uri": self.callback_url,
            "grant_type": "authorization_code",
        }
        try:
            with self._http_client() as client:
                token_response = client.post(GOOGLE_TOKEN_URL, data=data, headers={"Accept": "application/json"})
                if not token_response.is_success:
                    raise AuthProviderError(f"Token exchange rejected with status {token_response.status_code}")
                token_payload: Any = token_response.json()
                if not isinstance(token_payload, dict):
                    raise AuthProviderError("Token exchange returned an invalid response")
                access_token = str(token_payload.get("access_token") or "")
                if not access_token:
                    raise AuthProviderError("Token exchange returned no access token")
                userinfo_response = client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                )
                if not userinfo_response.is_success:
                    raise AuthProviderError(f"Userinfo request rejected with status {userinfo_response.status_code}")
                userinfo: Any = userinfo_response.json()
        except httpx.HTTPError as exc:
            raise AuthProviderError(f"Login provider unreachable: {exc}") from exc
        except ValueError as exc:
            raise AuthProviderError("Login provider returned an invalid response") from exc

        if not isinstance(userinfo, dict):
            raise AuthProviderError("Login provider returned an invalid response")
        email = str(userinfo.get("email") or "").strip().lower()
        if not email or userinfo.get("email_verified") is False:
            raise AuthProviderError("Login provider did not return a verified email")
        return email

    def _login(self) -> Response:
        if request.args.get("error") == "provider":
            return Response(render_template("login.html", error="We couldn't verify your identity. Try again."), status=401)
        nonce = secrets.token_urlsafe(16)
        state = self._signer.issue_token(
            {"kind": "oauth_state", "nonce": nonce, "next": safe_next_path(request.args.get("next"))},
            expires_in=STATE_TTL_SECONDS,
        )
        response = redirect(self.authorization_url(state))
        response.set_cookie(
            STATE_COOKIE,
            nonce,
            max_age=STATE_TTL_SECONDS,
            secure=self.secure_cookies,
            httponly=True,
            samesite="Lax",
        )
        return response

    def _verify_state(self) -> str:
        try:
            claims = self._signer.decode_token(request.args.get("state", ""))
        except SignatureError as exc:
            raise AuthProviderError(f"Invalid login state: {exc.message}") from exc
        nonce = request.cookies.get(STATE_COOKIE, "")
        if claims.get("kind") != "oauth_state" or not nonce or not secrets.compare_digest(str(claims.get("nonce") or ""), nonce):
            raise AuthProviderError("Login state does not match this browser")
        return safe_next_path(str(claims.get("next") or "/"))

    def _callback(self) -> Response:
        try:
            if request.args.get("error"):
                raise AuthProviderError(f"Login provider returned error: {request.args['error']}")
            next_path = self._verify_state()
            code = request.args.get("code", "")
            if not code:
                raise AuthProviderError("Missing authorization code")
            email = self.exchange(code)
        except AuthProviderError as exc:
            LOGGER.warning("Google login failed: %s", exc.message)
            response = redirect(url_for("google_auth.login", error="provider"))
            response.delete_cookie(STATE_COOKIE)
            return response

        session_token = self._signer.issue_token(
            {"kind": "session", "sub": email},
            expires_in=int(self.session_ttl.total_seconds()),
        )
        LOGGER.info("Google login succeeded for %s", email)
        response = redirect(next_path)
        response.delete_cookie(STATE_COOKIE)
        response.set_cookie(
            SESSION_COOKIE,
            session_token,
            max_age=int(self.session_ttl.total_seconds()),
            secure=self.secure_cookies,
            httponly=True,
            samesite="Lax",
        )
        return response

    def blueprint(self) -> Blueprint:
        bp = Blueprint("google_auth", __name__)
        bp.add_url_rule("/auth/google", "login", self._login, methods=["GET"])
        bp.add_url_rule("/auth/callback", "callback", self._callback, methods=["GET"])
        return bp


def build_authenticator(settings: Settings, signer: URLSigner) -> Authenticator:
    """Select the authenticator once, from configuration."""
    if settings.auth_scheme == "basic":
        return BasicAuthAuthenticator("logview", settings.basic_auth_users)
    if settings.auth_scheme == "google":
        return GoogleAuthenticator(
            settings.google_client_id,
            settings.google_client_secret,
            settings.base_url,
            signer,
            allow_unencrypted_traffic=settings.allow_unencrypted_traffic,
            session_ttl=settings.session_ttl,
        )
    return NoopAuthenticator()
