"""
services/token_service.py — Access/refresh token lifecycle.

Responsibilities:
  - Mint signed access + refresh token pairs and record the refresh token in
    the user directory
  - Rotate a refresh token: exchange it exactly once for a new pair
  - Revoke a refresh token (logout)
  - Verify access tokens for the authorization gate

Layer rules:
  - No imports from routes, schemas or middleware
  - No use of flask.request / flask.g / flask.current_app; the service gets
    its directory and settings through the constructor

Token design:
  - Both tokens are JWS compact strings signed with HS256 (shared secret) or
    RS256 (private key signs, public key verifies).
  - Claims: sub, type ("access" | "refresh"), iat, exp, jti; access tokens also
    carry email. exp - iat is exactly the configured TTL.
  - The exact refresh token string is what the directory stores. A token is
    usable only while it verifies AND is still in its owner's active set.
  - Access tokens are stateless: they cannot be revoked before they expire.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

import jwt

from fedauth.app.errors import (
    SigningKeyMissing,
    TokenExpired,
    TokenMalformed,
    TokenNotRecognized,
    UserNotFound,
    WrongTokenType,
)
from fedauth.app.models.identity import AccessTokenPayload, TokenPair, User, utcnow
from fedauth.app.stores import UserDirectory

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"

_REQUIRED_CLAIMS = ["sub", "type", "iat", "exp"]


@dataclass(frozen=True)
class TokenSettings:
    algorithm: str
    signing_key: str | None
    verifying_key: str | None
    access_ttl: timedelta
    refresh_ttl: timedelta

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "TokenSettings":
        algorithm = config.get("JWT_ALGORITHM", "HS256")
        if algorithm == "RS256":
            signing_key = config.get("JWT_PRIVATE_KEY") or None
            verifying_key = config.get("JWT_PUBLIC_KEY") or None
        else:
            signing_key = verifying_key = config.get("JWT_SECRET_KEY") or None
        return cls(
            algorithm=algorithm,
            signing_key=signing_key,
            verifying_key=verifying_key,
            access_ttl=config["JWT_ACCESS_TOKEN_EXPIRES"],
            refresh_ttl=config["JWT_REFRESH_TOKEN_EXPIRES"],
        )


class TokenService:

    def __init__(self, directory: UserDirectory, settings: TokenSettings) -> None:
        self._directory = directory
        self._settings = settings

    # ── Private helpers ────────────────────────────────────────────────────

    def _encode(self, claims: dict[str, Any], ttl: timedelta) -> str:
        if not self._settings.signing_key:
            logger.error("Cannot sign %s token: no signing key configured.", claims.get("type"))
            raise SigningKeyMissing()
        issued_at = int(utcnow().timestamp())
        payload = {
            **claims,
            "iat": issued_at,
            "exp": issued_at + int(ttl.total_seconds()),
            # Two tokens minted for the same user in the same second must
            # still be distinct strings.
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._settings.signing_key, algorithm=self._settings.algorithm)

    def _decode(self, token: str, *, verify_exp: bool = True) -> dict[str, Any]:
        if not self._settings.verifying_key:
            logger.error("Cannot verify token: no verification key configured.")
            raise SigningKeyMissing()
        try:
            return jwt.decode(
                token,
                self._settings.verifying_key,
                algorithms=[self._settings.algorithm],
                options={"require": _REQUIRED_CLAIMS, "verify_exp": verify_exp},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpired() from None
        except jwt.InvalidTokenError as exc:
            # Covers: bad signature, malformed token, missing claims, wrong algorithm.
            logger.debug("Token rejected: %s", exc)
            raise TokenMalformed() from None

    @staticmethod
    def _require_type(claims: dict[str, Any], expected: str) -> None:
        if claims.get("type") != expected:
            raise WrongTokenType(expected)

    def _access_token(self, user: User) -> str:
        return self._encode({"sub": user.id, "type": ACCESS, "email": user.email}, self._settings.access_ttl)

    def _refresh_token(self, user: User) -> str:
        return self._encode({"sub": user.id, "type": REFRESH}, self._settings.refresh_ttl)

    # ── Public API ─────────────────────────────────────────────────────────

    def issue_and_store(self, user: User) -> TokenPair:
        """
        Mints a new access + refresh pair for `user` and records the refresh
        token as active.

        Raises:
          SigningKeyMissing — no secret/private key configured
          UserNotFound      — the user disappeared before the token was stored
          StorageFault      — directory backend failure
        """
        access_token = self._access_token(user)
        refresh_token = self._refresh_token(user)
        if not self._directory.add_refresh_token(user.id, refresh_token):
            logger.error("Refresh token issued for unknown user %s was not stored.", user.id)
            raise UserNotFound()
        logger.debug("Issued token pair for user %s.", user.id)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def rotate(self, presented_refresh_token: str) -> TokenPair:
        """
        Exchanges a refresh token for a new pair. The presented token is
        removed before the new one is issued, so it can be spent only once.

        Raises:
          TokenExpired       — signature fine, exp in the past
          TokenMalformed     — signature or structure invalid
          WrongTokenType     — an access token was presented
          TokenNotRecognized — rotated already, revoked, never issued, or a
                               concurrent request spent it first
          UserNotFound       — token was active for a user that no longer exists
        """
        claims = self._decode(presented_refresh_token)
        self._require_type(claims, REFRESH)
        user_id = claims["sub"]

        if not self._directory.has_refresh_token(user_id, presented_refresh_token):
            logger.warning("Refresh token for user %s not recognized (replayed, revoked or forged).", user_id)
            raise TokenNotRecognized()

        if not self._directory.remove_refresh_token(user_id, presented_refresh_token):
            # Lost the race against another rotate/logout of the same token.
            logger.warning("Refresh token for user %s was spent by a concurrent request.", user_id)
            raise TokenNotRecognized()

        user = self._directory.find_by_id(user_id)
        if user is None:
            logger.error("Active refresh token belonged to missing user %s.", user_id)
            raise UserNotFound()

        logger.info("Rotated refresh token for user %s.", user_id)
        return self.issue_and_store(user)

    def revoke(self, presented_refresh_token: str) -> bool:
        """
        Removes a refresh token from its owner's active set (logout).

        Expiry is not checked: a stale token can still be cleared. Returns
        whether a token was actually removed; False is not an error.

        Raises:
          TokenMalformed — signature or structure invalid
          WrongTokenType — an access token was presented
        """
        claims = self._decode(presented_refresh_token, verify_exp=False)
        self._require_type(claims, REFRESH)
        removed = self._directory.remove_refresh_token(claims["sub"], presented_refresh_token)
        logger.info("Logout for user %s (token removed: %s).", claims["sub"], removed)
        return removed

    def verify_access(self, presented_access_token: str) -> AccessTokenPayload:
        """Signature, expiry and type check. Never consults the directory."""
        claims = self._decode(presented_access_token)
        self._require_type(claims, ACCESS)
        return AccessTokenPayload(
            sub=claims["sub"],
            type=claims["type"],
            iat=claims["iat"],
            exp=claims["exp"],
            email=claims.get("email"),
            jti=claims.get("jti"),
        )
