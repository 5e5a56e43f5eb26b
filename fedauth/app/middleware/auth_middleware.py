"""
middleware/auth_middleware.py — Authorization gate.

Two composable route decorators:

  @require_auth
    1. Reads the Authorization header (expected: "Bearer <token>")
    2. Verifies the access token through TokenService.verify_access()
    3. Loads the user from the user directory
    4. Attaches the user to flask.g.current_user (and the decoded payload
       to flask.g.token_payload)

  @require_roles("admin", "editor")
    Any-of check against g.current_user.roles. Must sit BELOW @require_auth.

Error codes:
  TOKEN_MISSING        (401) — no Authorization header
  TOKEN_MALFORMED      (401) — bad header format, bad signature, bad payload
  TOKEN_EXPIRED        (401) — valid token but exp claim is in the past
  WRONG_TOKEN_TYPE     (401) — a refresh token was presented
  USER_NOT_FOUND       (401) — token subject has no user record
  FORBIDDEN            (403) — authenticated, but none of the required roles
  RBAC_MISCONFIGURED   (500) — the route itself declared invalid roles
"""

from __future__ import annotations

import functools
import logging
from typing import Callable

from flask import g, request

from fedauth.app.errors import Forbidden, RbacMisconfigured, TokenMalformed, TokenMissing, UserNotFound
from fedauth.app.extensions import get_gateway

logger = logging.getLogger(__name__)


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces access-token authentication.

    Raises AppError subclasses for all auth failures; the global error
    handler converts these to the JSON error envelope. Routes never catch them.

    Usage:
        @profile_bp.route("/profile")
        @require_auth
        def profile():
            user = g.current_user
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def _bearer_token() -> str:
    auth_header = request.headers.get("Authorization", "")

    if not auth_header:
        raise TokenMissing(
            "Authentication required. Provide a Bearer token in the Authorization header.",
            http_status=401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise TokenMalformed("Authorization header must be in the format: Bearer <token>.")

    return parts[1]


def _authenticate_request() -> None:
    """
    Performs the full authentication sequence and sets flask.g.current_user.

    Separated from the decorator wrapper so it can be called directly in
    tests without wrapping a real view function.
    """
    state = get_gateway()
    raw_token = _bearer_token()

    # TokenExpired / TokenMalformed / WrongTokenType propagate unchanged.
    payload = state.token_service.verify_access(raw_token)

    user = state.directory.find_by_id(payload.sub)
    if user is None:
        logger.warning("Access token subject %s has no user record.", payload.sub)
        raise UserNotFound()

    g.token_payload = payload
    g.current_user = user


def _valid_role_declaration(roles: tuple) -> bool:
    return bool(roles) and all(isinstance(role, str) and role.strip() for role in roles)


def require_roles(*required_roles: str) -> Callable[[Callable], Callable]:
    """
    Route decorator factory enforcing that the authenticated user holds at
    least one of `required_roles`.

    Invalid declarations (no roles, empty or non-string roles) are a defect
    in the route, not in the request: they are logged once at import time
    and every request to the route fails with RBAC_MISCONFIGURED (500).
    """
    misconfigured = not _valid_role_declaration(required_roles)
    if misconfigured:
        logger.error(
            "require_roles() configured with invalid role(s) %r; each role must be a non-empty string.",
            required_roles,
        )
    wanted = frozenset() if misconfigured else frozenset(role.strip() for role in required_roles)

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            if misconfigured:
                raise RbacMisconfigured()

            user = g.get("current_user")
            if user is None:
                logger.error(
                    "require_roles() on %s runs without @require_auth above it.",
                    request.path,
                )
                raise RbacMisconfigured()

            if not user.has_any_role(wanted):
                logger.warning(
                    "RBAC denied user %s (roles=%s, required any of %s) on %s.",
                    user.id,
                    sorted(user.roles),
                    sorted(wanted),
                    request.path,
                )
                raise Forbidden()

            return f(*args, **kwargs)

        return decorated

    return decorator
