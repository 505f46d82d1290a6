"""Tests for JWT issuance and validation outcomes."""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from app.core.errors import SigningKeyMissing
from app.security.authorizer import MISSING, Identity, extract_identity
from app.security.tokens import TokenError, TokenService

KEY = "k1-secret-0123456789abcdef0123456789abcdef"
OTHER_KEY = "k2-secret-0123456789abcdef0123456789abcdef"


def make_service(key: str = KEY, issuer: str = "task-tracker", audience: str = "clients", **kw):
    return TokenService(signing_key=key, issuer=issuer, audience=audience, **kw)


def test_issued_token_validates_and_yields_identity() -> None:
    service = make_service()
    token = service.issue("u1", "alice", "alice@example.com")

    result = service.validate(token)

    assert result.ok
    assert result.claims.identity == "u1"
    assert result.claims.name == "alice"
    assert result.claims.email == "alice@example.com"


def test_expiry_is_24_hours_after_issue() -> None:
    issued = datetime.now(timezone.utc).replace(microsecond=0)
    service = make_service(clock=lambda: issued)

    claims = service.validate(service.issue("u1", "alice", "a@example.com")).claims

    assert claims.issued_at == issued
    assert claims.expires_at == issued + timedelta(hours=24)


def test_token_signed_with_other_key_is_invalid_signature() -> None:
    token = make_service(key=KEY).issue("u1", "alice", "a@example.com")

    result = make_service(key=OTHER_KEY).validate(token)

    assert not result.ok
    assert result.error is TokenError.INVALID_SIGNATURE
    assert result.claims is None


def test_expired_token_is_rejected() -> None:
    past = datetime.now(timezone.utc) - timedelta(hours=25)
    token = make_service(clock=lambda: past).issue("u1", "alice", "a@example.com")

    result = make_service().validate(token)

    assert result.error is TokenError.EXPIRED


def test_expiry_follows_the_service_clock() -> None:
    now = datetime.now(timezone.utc).replace(microsecond=0)
    current = {"now": now}
    service = make_service(clock=lambda: current["now"])
    token = service.issue("u1", "alice", "a@example.com")

    current["now"] = now + timedelta(hours=24)
    assert service.validate(token).ok

    current["now"] = now + timedelta(hours=25)
    assert service.validate(token).error is TokenError.EXPIRED


def test_token_from_the_future_is_accepted_until_its_expiry() -> None:
    future = datetime.now(timezone.utc) + timedelta(days=30)
    token = make_service(clock=lambda: future).issue("u1", "alice", "a@example.com")

    assert make_service().validate(token).ok


def test_signature_is_checked_before_expiry() -> None:
    past = datetime.now(timezone.utc) - timedelta(hours=25)
    token = make_service(key=KEY, clock=lambda: past).issue("u1", "alice", "a@example.com")

    assert make_service(key=OTHER_KEY).validate(token).error is TokenError.INVALID_SIGNATURE


def test_issuer_mismatch() -> None:
    token = make_service(issuer="someone-else").issue("u1", "alice", "a@example.com")

    assert make_service().validate(token).error is TokenError.ISSUER_MISMATCH


def test_audience_mismatch() -> None:
    token = make_service(audience="other-clients").issue("u1", "alice", "a@example.com")

    assert make_service().validate(token).error is TokenError.AUDIENCE_MISMATCH


@pytest.mark.parametrize("token", ["", "not-a-token", "a.b", "a.b.c"])
def test_garbage_is_malformed(token: str) -> None:
    assert make_service().validate(token).error is TokenError.MALFORMED


def test_token_without_exp_is_malformed() -> None:
    token = jwt.encode(
        {"sub": "u1", "iss": "task-tracker", "aud": "clients"}, KEY, algorithm="HS256"
    )

    assert make_service().validate(token).error is TokenError.MALFORMED


def test_token_without_subject_validates_but_has_no_identity() -> None:
    expires = datetime.now(timezone.utc) + timedelta(hours=1)
    token = jwt.encode(
        {"name": "ghost", "iss": "task-tracker", "aud": "clients", "exp": expires},
        KEY,
        algorithm="HS256",
    )

    result = make_service().validate(token)

    assert result.ok
    assert result.claims.identity is None
    assert extract_identity(result.claims) is MISSING


def test_valid_claims_map_to_identity() -> None:
    service = make_service()
    claims = service.validate(service.issue("u1", "alice", "a@example.com")).claims

    assert extract_identity(claims) == Identity("u1")


@pytest.mark.parametrize("key", ["", "   "])
def test_missing_signing_key_fails_at_issuance(key: str) -> None:
    with pytest.raises(SigningKeyMissing):
        make_service(key=key).issue("u1", "alice", "a@example.com")


def test_missing_signing_key_fails_at_validation() -> None:
    token = make_service().issue("u1", "alice", "a@example.com")

    with pytest.raises(SigningKeyMissing):
        make_service(key="").validate(token)
