from __future__ import annotations

import time

import pytest

from gatekeeper.errors import SecretKeyError, SignatureExpired, SignatureInvalid
from gatekeeper.signing import KEY_SIZE, URLSigner, get_secret_key, validate_secret_key

HEX_KEY = "ab" * KEY_SIZE


def test_empty_secret_key_generates_random_key() -> None:
    first = get_secret_key("")
    second = get_secret_key("")

    assert len(first) == KEY_SIZE
    assert any(first)
    assert first != second


def test_hex_secret_key_decodes() -> None:
    assert get_secret_key(HEX_KEY) == bytes([0xAB]) * KEY_SIZE


@pytest.mark.parametrize("value", ["a" * 63, "a" * 65, "zz" * KEY_SIZE, "ab" * 31 + " a"])
def test_malformed_secret_keys_are_rejected(value: str) -> None:
    with pytest.raises(SecretKeyError):
        get_secret_key(value)


def test_all_zero_key_is_rejected() -> None:
    with pytest.raises(SecretKeyError):
        validate_secret_key(bytes(KEY_SIZE))
    with pytest.raises(SecretKeyError):
        URLSigner(get_secret_key("00" * KEY_SIZE))


def test_sign_then_verify_before_expiry() -> None:
    signer = URLSigner(get_secret_key(HEX_KEY))
    expiry = int(time.time()) + 60
    digest = signer.sign({"resource": "audio/RE1"}, expiry)

    signer.verify({"resource": "audio/RE1"}, expiry, digest)


def test_verify_rejects_tampered_payload_expiry_and_digest() -> None:
    signer = URLSigner(get_secret_key(HEX_KEY))
    expiry = int(time.time()) + 60
    digest = signer.sign("payload", expiry)

    with pytest.raises(SignatureInvalid):
        signer.verify("other", expiry, digest)
    with pytest.raises(SignatureInvalid):
        signer.verify("payload", expiry + 1, digest)
    with pytest.raises(SignatureInvalid):
        signer.verify("payload", expiry, ("B" if digest[0] == "A" else "A") + digest[1:])
    with pytest.raises(SignatureInvalid):
        signer.verify("payload", expiry, "")


def test_verify_rejects_expired_signature() -> None:
    signer = URLSigner(get_secret_key(HEX_KEY))
    expiry = 1_000
    digest = signer.sign("payload", expiry)

    signer.verify("payload", expiry, digest, now=999)
    with pytest.raises(SignatureExpired):
        signer.verify("payload", expiry, digest, now=1_001)


def test_signature_from_another_key_is_invalid() -> None:
    expiry = int(time.time()) + 60
    digest = URLSigner(get_secret_key(HEX_KEY)).sign("payload", expiry)
    other = URLSigner(get_secret_key("cd" * KEY_SIZE))

    with pytest.raises(SignatureInvalid):
        other.verify("payload", expiry, digest)


def test_resource_token_is_bound_to_requester() -> None:
    signer = URLSigner(get_secret_key(HEX_KEY))
    token = signer.sign_resource("images/MM1/ME1", "alice", expires_in=60)

    signer.verify_resource("images/MM1/ME1", "alice", token.query_params()["expires"], token.query_params()["sig"])
    with pytest.raises(SignatureInvalid):
        signer.verify_resource("images/MM1/ME1", "mallory", token.expires, token.signature)
    with pytest.raises(SignatureInvalid):
        signer.verify_resource("images/MM1/ME2", "alice", token.expires, token.signature)
    with pytest.raises(SignatureInvalid):
        signer.verify_resource("images/MM1/ME1", "alice", "soon", token.signature)


def test_issue_and_decode_token(monkeypatch) -> None:
    signer = URLSigner(get_secret_key(HEX_KEY))
    token = signer.issue_token({"kind": "session", "sub": "alice@example.com"}, expires_in=60)

    claims = signer.decode_token(token)
    assert claims["sub"] == "alice@example.com"

    with pytest.raises(SignatureInvalid):
        signer.decode_token(token + "x")
    with pytest.raises(SignatureInvalid):
        signer.decode_token("no-dot")

    real_time = time.time
    monkeypatch.setattr("gatekeeper.signing.time.time", lambda: real_time() + 120)
    with pytest.raises(SignatureExpired):
        signer.decode_token(token)
