from dataclasses import dataclass
from enum import Enum

from app.security.tokens import TokenClaims


@dataclass(frozen=True)
class Identity:
    id: str


class MissingIdentity(Enum):
    """Outcome for validated claims that do not name a user."""

    MISSING = "missing"


MISSING = MissingIdentity.MISSING


def extract_identity(claims: TokenClaims) -> Identity | MissingIdentity:
    """Return the identity carried by claims, or MISSING if absent or blank.

    Never falls back to a default id: data operations must not be scoped to a
    user the token did not name.
    """
    identity = claims.identity
    if identity is None or not identity.strip():
        return MISSING
    return Identity(identity)
