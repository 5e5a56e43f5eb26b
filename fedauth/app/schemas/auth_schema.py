"""
schemas/auth_schema.py — Marshmallow schemas for the token endpoints.

Validation responsibility:
  - This file: field types and shapes.
  - services/token_service.py: whether the token is valid, current, and of
    the right type (TOKEN_* error codes).

All schemas inherit from marshmallow.Schema directly, so they can be
exercised in unit tests without a Flask app context.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, fields, validate


class RefreshTokenSchema(Schema):
    """
    POST /auth/refresh and POST /auth/logout

    The token may be omitted from the body when the client sends it in the
    refresh-token cookie instead; the route decides which source wins and
    raises TOKEN_MISSING when neither is present.
    """

    class Meta:
        unknown = EXCLUDE

    refresh_token = fields.Str(
        data_key="refreshToken",
        load_default=None,
        allow_none=True,
        validate=validate.Length(min=1, error="refreshToken must not be empty."),
    )
