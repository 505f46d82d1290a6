"""JWT issuance and validation.

Tokens carry sub (identity), name, email, iat, exp, iss and aud and are signed
with a shared secret. Validation returns an explicit outcome instead of
raising, so callers decide how each failure kind maps to a response.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from jose import jws, jwt
from jose.exceptions import (
    JWSError,
    JWSSignatureError,
    JWTClaimsError,
    JWTError,
)

from app.core.config import Settings
from app.core.errors import SigningKeyMissing

logger = logging.getLogger(__name__)


class TokenError(str, Enum):
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    ISSUER_MISMATCH = "issuer_mismatch"
    AUDIENCE_MISMATCH = "audience_mismatch"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class TokenClaims:
    identity: str | None
    name: str
    email: str
    issued_at: datetime | None
    expires_at: datetime


@dataclass(frozen=True)
class TokenValidation:
    claims: TokenClaims | None = None
    error: TokenError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class TokenService:
    def __init__(
        self,
        signing_key: str,
        issuer: str,
        audience: str,
        lifetime: timedelta = timedelta(hours=24),
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._signing_key = signing_key
        self.issuer = issuer
        self.audience = audience
        self.lifetime = lifetime
        self.algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            signing_key=settings.jwt_key.get_secret_value(),
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            lifetime=timedelta(hours=settings.jwt_lifetime_hours),
            algorithm=settings.jwt_algorithm,
        )

    def ensure_configured(self) -> None:
        """Raise SigningKeyMissing unless a non-blank signing key is set."""
        if not self._signing_key or not self._signing_key.strip():
            raise SigningKeyMissing()

    def issue(self, identity: str, display_name: str, email: str) -> str:
        self.ensure_configured()
        issued_at = self._clock()
        claims = {
            "sub": identity,
            "name": display_name or "",
            "email": email or "",
            "iat": issued_at,
            "exp": issued_at + self.lifetime,
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(claims, self._signing_key, algorithm=self.algorithm)

    def validate(self, token: str) -> TokenValidation:
        self.ensure_configured()

        # Signature first: a forged token must never report a claim problem
        try:
            jws.verify(token, self._signing_key, algorithms=[self.algorithm])
        except JWSSignatureError:
            return TokenValidation(error=TokenError.INVALID_SIGNATURE)
        except JWSError:
            return TokenValidation(error=TokenError.MALFORMED)

        try:
            payload = jwt.decode(
                token,
                self._signing_key,
                algorithms=[self.algorithm],
                # exp is compared against the service clock below
                options={
                    "verify_aud": False,
                    "verify_iss": False,
                    "verify_exp": False,
                    "require_exp": True,
                },
            )
        except (JWTClaimsError, JWTError) as e:
            logger.debug("Rejecting malformed token: %s", e)
            return TokenValidation(error=TokenError.MALFORMED)

        try:
            expires_at = _timestamp(payload["exp"])
        except (TypeError, ValueError, OverflowError):
            return TokenValidation(error=TokenError.MALFORMED)
        if expires_at is None:
            return TokenValidation(error=TokenError.MALFORMED)
        if self._clock() > expires_at:
            return TokenValidation(error=TokenError.EXPIRED)

        if payload.get("iss") != self.issuer:
            return TokenValidation(error=TokenError.ISSUER_MISMATCH)
        audience = payload.get("aud")
        audiences = audience if isinstance(audience, list) else [audience]
        if self.audience not in audiences:
            return TokenValidation(error=TokenError.AUDIENCE_MISMATCH)

        sub = payload.get("sub")
        return TokenValidation(
            claims=TokenClaims(
                identity=sub if isinstance(sub, str) else None,
                name=payload.get("name") or "",
                email=payload.get("email") or "",
                issued_at=_timestamp(payload.get("iat")),
                expires_at=expires_at,
            )
        )
