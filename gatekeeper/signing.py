from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any

from .errors import SecretKeyError, SignatureExpired, SignatureInvalid

LOGGER = logging.getLogger(__name__)

KEY_SIZE = 32


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * ((4 - (len(text) % 4)) % 4)
    return base64.urlsafe_b64decode((text + padding).encode("ascii"))


def new_random_key() -> bytes:
    return secrets.token_bytes(KEY_SIZE)


def get_secret_key(hex_key: str) -> bytes:
    """Produce a 32 byte secret key from its configured hex form.

    An empty string generates a random key, which won't survive a restart.
    """
    if hex_key == "":
        LOGGER.warning("No secret key provided, generating random secret key. Sessions won't persist across restarts")
        return new_random_key()
    if len(hex_key) != KEY_SIZE * 2:
        raise SecretKeyError("Secret key has wrong length. Should be a 64-byte hex string")
    try:
        key = bytes.fromhex(hex_key)
    except ValueError as exc:
        raise SecretKeyError(f"Secret key is not valid hex: {exc}") from exc
    # fromhex skips whitespace, so a padded string can decode short
    if len(key) != KEY_SIZE:
        raise SecretKeyError("Secret key is not valid hex")
    return key


def validate_secret_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise SecretKeyError(f"Secret key must be {KEY_SIZE} bytes")
    if not any(key):
        raise SecretKeyError("Invalid secret key (must initialize some bytes)")


@dataclass(frozen=True)
class SignedToken:
    resource: str
    requester: str
    expires: int
    signature: str

    def query_params(self) -> dict[str, str]:
        return {"expires": str(self.expires), "sig": self.signature}


class URLSigner:
    """Keyed digests over a payload and an expiry time, for URLs and cookies."""

    def __init__(self, secret_key: bytes) -> None:
        validate_secret_key(secret_key)
        self._key = bytes(secret_key)

    def _digest(self, body: bytes) -> bytes:
        return hmac.new(self._key, body, hashlib.sha256).digest()

    @staticmethod
    def _canonical(payload: Any, expiry: int) -> bytes:
        return json.dumps({"exp": int(expiry), "payload": payload}, separators=(",", ":"), sort_keys=True).encode("utf-8")

    def sign(self, payload: Any, expiry: int) -> str:
        return _b64encode(self._digest(self._canonical(payload, expiry)))

    def verify(self, payload: Any, expiry: int, digest: str, *, now: float | None = None) -> None:
        try:
            candidate = _b64decode(str(digest or ""))
        except (binascii.Error, ValueError) as exc:
            raise SignatureInvalid() from exc
        expected = self._digest(self._canonical(payload, expiry))
        if not candidate or not hmac.compare_digest(candidate, expected):
            raise SignatureInvalid()
        current = time.time() if now is None else now
        if current > int(expiry):
            raise SignatureExpired()

    def sign_resource(self, resource: str, requester: str, *, expires_in: int) -> SignedToken:
        expires = int(time.time()) + max(1, int(expires_in))
        signature = self.sign({"resource": resource, "requester": requester}, expires)
        return SignedToken(resource=resource, requester=requester, expires=expires, signature=signature)

    def verify_resource(self, resource: str, requester: str, expires: Any, signature: Any) -> None:
        try:
            expiry = int(str(expires))
        except (TypeError, ValueError) as exc:
            raise SignatureInvalid("Invalid signature expiry") from exc
        self.verify({"resource": resource, "requester": requester}, expiry, str(signature or ""))

    def issue_token(self, payload: dict[str, Any], *, expires_in: int) -> str:
        token_payload = dict(payload)
        token_payload["exp"] = int(time.time()) + max(1, int(expires_in))
        body = json.dumps(token_payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return f"{_b64encode(body)}.{_b64encode(self._digest(body))}"

    def decode_token(self, token: str) -> dict[str, Any]:
        try:
            body_part, signature_part = str(token or "").split(".", 1)
            body = _b64decode(body_part)
            signature = _b64decode(signature_part)
        except (binascii.Error, ValueError) as exc:
            raise SignatureInvalid("Malformed token") from exc

        if not hmac.compare_digest(signature, self._digest(body)):
            raise SignatureInvalid("Invalid token signature")

        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SignatureInvalid("Invalid token body") from exc
        if not isinstance(payload, dict):
            raise SignatureInvalid("Invalid token payload")

        exp = payload.get("exp")
        if not isinstance(exp, int) or isinstance(exp, bool):
            raise SignatureInvalid("Invalid token expiry")
        if exp < int(time.time()):
            raise SignatureExpired("Token expired")
        return payload
