"""
models/identity.py — Backend-neutral records passed between the layers.

Every user directory backend returns `User` values; the SQL and document
backends map their rows/documents onto this shape. Nothing here touches a
database, Flask, or JWT.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


DEFAULT_ROLES: frozenset[str] = frozenset({"user"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def user_id_for(provider: str, provider_id: str) -> str:
    """Internal user id. Deterministic, so the same federated identity always maps to one record."""
    return f"{provider}-{provider_id}"


@dataclass(frozen=True)
class User:
    id: str
    provider: str
    provider_id: str
    display_name: str
    email: str | None = None
    photo: str | None = None
    roles: frozenset[str] = DEFAULT_ROLES
    refresh_tokens: frozenset[str] = frozenset()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def has_any_role(self, required: frozenset[str]) -> bool:
        return bool(self.roles & required)


@dataclass(frozen=True)
class ExternalProfile:
    """Canonical input of UserDirectory.resolve()."""

    provider: str
    provider_id: str
    display_name: str
    email: str | None = None
    photo: str | None = None


@dataclass(frozen=True)
class ProfileEmail:
    value: str
    # None when the provider does not report verification status.
    verified: bool | None = None


@dataclass(frozen=True)
class ProviderProfile:
    """
    Verified profile as parsed from one provider's userinfo response.

    Providers differ in how many emails and photos they report, and in whether
    they send a display name at all. IdentityResolver reduces this shape to an
    ExternalProfile.
    """

    id: str
    display_name: str | None = None
    username: str | None = None
    emails: tuple[ProfileEmail, ...] = ()
    photos: tuple[str, ...] = ()


@dataclass(frozen=True)
class AccessTokenPayload:
    sub: str
    type: str
    iat: int
    exp: int
    email: str | None = None
    jti: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    def to_dict(self) -> dict:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
        }


@dataclass(frozen=True)
class LoginResult:
    user: User
    tokens: TokenPair
