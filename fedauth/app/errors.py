"""
errors.py — AppError base class, error code registry, and typed failures.

Every error returned by the gateway must use a code defined here.
Services and middleware raise the typed subclasses below; the global error
handler in app/__init__.py turns them into the JSON error envelope.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized), and never
    report a server-side configuration defect (RBAC_MISCONFIGURED) as either.
  - Raw storage or JWT library errors never reach the caller. They are logged
    and replaced by one of the generic messages here.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    BAD_REQUEST                = "BAD_REQUEST"

    # ── Routing Errors ─────────────────────────────────────────────────────
    NOT_FOUND                  = "NOT_FOUND"              # 404
    METHOD_NOT_ALLOWED         = "METHOD_NOT_ALLOWED"     # 405

    # ── Token Errors ───────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    TOKEN_MISSING              = "TOKEN_MISSING"          # 400 body/cookie, 401 header
    TOKEN_MALFORMED            = "TOKEN_MALFORMED"        # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    WRONG_TOKEN_TYPE           = "WRONG_TOKEN_TYPE"       # 401
    TOKEN_NOT_RECOGNIZED       = "TOKEN_NOT_RECOGNIZED"   # 401
    USER_NOT_FOUND             = "USER_NOT_FOUND"         # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── Identity Provider Errors ───────────────────────────────────────────
    PROVIDER_NOT_FOUND         = "PROVIDER_NOT_FOUND"         # 404
    PROVIDER_PROFILE_INVALID   = "PROVIDER_PROFILE_INVALID"   # 401
    PROVIDER_HANDSHAKE_FAILED  = "PROVIDER_HANDSHAKE_FAILED"  # 401

    # ── System Errors (500) ────────────────────────────────────────────────
    RBAC_MISCONFIGURED         = "RBAC_MISCONFIGURED"
    SIGNING_KEY_MISSING        = "SIGNING_KEY_MISSING"
    STORAGE_FAULT              = "STORAGE_FAULT"
    INTERNAL_ERROR             = "INTERNAL_ERROR"


GENERIC_SERVER_MESSAGE = "An unexpected error occurred. Please try again later."


# ── Typed failures ─────────────────────────────────────────────────────────
#
# One class per taxonomy kind so callers can `except TokenExpired:` without
# string-matching codes. Each carries its default code, message and status.
# ──────────────────────────────────────────────────────────────────────────

class TokenMissing(AppError):
    def __init__(self, message: str = "A token is required.", http_status: int = 400) -> None:
        super().__init__(ErrorCode.TOKEN_MISSING, message, http_status)


class TokenMalformed(AppError):
    def __init__(self, message: str = "The token is invalid or has been tampered with.") -> None:
        super().__init__(ErrorCode.TOKEN_MALFORMED, message, 401)


class TokenExpired(AppError):
    def __init__(self, message: str = "The token has expired.") -> None:
        super().__init__(ErrorCode.TOKEN_EXPIRED, message, 401)


class WrongTokenType(AppError):
    def __init__(self, expected: str) -> None:
        super().__init__(
            ErrorCode.WRONG_TOKEN_TYPE,
            f"Invalid token type. Expected {expected} token.",
            401,
        )
        self.expected = expected


class TokenNotRecognized(AppError):
    def __init__(self) -> None:
        super().__init__(
            ErrorCode.TOKEN_NOT_RECOGNIZED,
            "Refresh token not recognized or has been invalidated.",
            401,
        )


class UserNotFound(AppError):
    def __init__(self) -> None:
        super().__init__(ErrorCode.USER_NOT_FOUND, "User not found.", 401)


class Forbidden(AppError):
    def __init__(self) -> None:
        super().__init__(
            ErrorCode.FORBIDDEN,
            "You do not have the required permissions.",
            403,
        )


class RbacMisconfigured(AppError):
    """Route declared invalid role requirements. Detail goes to the log only."""

    def __init__(self) -> None:
        super().__init__(ErrorCode.RBAC_MISCONFIGURED, GENERIC_SERVER_MESSAGE, 500)


class SigningKeyMissing(AppError):
    def __init__(self) -> None:
        super().__init__(ErrorCode.SIGNING_KEY_MISSING, GENERIC_SERVER_MESSAGE, 500)


class StorageFault(AppError):
    """Backend unavailable or erroring. Never retried by the gateway itself."""

    def __init__(self) -> None:
        super().__init__(ErrorCode.STORAGE_FAULT, GENERIC_SERVER_MESSAGE, 500)


class ProviderNotFound(AppError):
    def __init__(self, name: str) -> None:
        super().__init__(
            ErrorCode.PROVIDER_NOT_FOUND,
            f"Identity provider '{name}' is not enabled.",
            404,
        )


class ProviderProfileInvalid(AppError):
    def __init__(self, provider: str) -> None:
        super().__init__(
            ErrorCode.PROVIDER_PROFILE_INVALID,
            f"The {provider} profile is invalid or missing its subject id.",
            401,
        )


class ProviderHandshakeFailed(AppError):
    def __init__(self, provider: str) -> None:
        super().__init__(
            ErrorCode.PROVIDER_HANDSHAKE_FAILED,
            f"Authentication with {provider} failed. Please try again.",
            401,
        )


# ── Startup / programming errors ───────────────────────────────────────────
# Not request-level failures; these stop a component from being constructed.

class ProviderConfigurationError(Exception):
    """A provider adapter is missing a required option."""


class StoreConfigurationError(Exception):
    """Unknown store type, or a test-only store operation called outside test mode."""
