"""
routes/auth.py — Token and federated-login route handlers.

Layer rules:
  - Parse request body / cookie
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service operation
  - Return the standard response envelope: {"data": {...}, "warnings": []}

No business logic here. AppError propagates to the global error handler in
app/__init__.py; routes never catch it.

Endpoints (url_prefix=/api/v1/auth):
  POST   /auth/refresh               → 200
  POST   /auth/logout                → 200
  GET    /auth/<provider>            → 302 to the provider
  GET    /auth/<provider>/callback   → 200
"""

from __future__ import annotations

import logging

from authlib.integrations.flask_client import OAuthError
from flask import Blueprint, abort, current_app, jsonify, request, url_for
from requests import RequestException

from fedauth.app.errors import ProviderHandshakeFailed, TokenMissing
from fedauth.app.extensions import get_gateway
from fedauth.app.schemas.auth_schema import RefreshTokenSchema
from fedauth.app.schemas.user_schema import UserSchema

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)

# POST-only paths that /<provider_name> would otherwise swallow on GET.
POST_ONLY_SEGMENTS = frozenset({"refresh", "logout"})


def _cookie_name() -> str:
    return current_app.config.get("REFRESH_TOKEN_COOKIE_NAME", "jid_rt")


def _presented_refresh_token() -> tuple[str, bool]:
    """
    Returns (token, came_from_cookie). The JSON body wins over the cookie.

    Raises TokenMissing (400) when neither carries a token.
    """
    data = RefreshTokenSchema().load(request.get_json(silent=True) or {})
    if data["refresh_token"]:
        return data["refresh_token"], False

    cookie_token = request.cookies.get(_cookie_name())
    if cookie_token:
        return cookie_token, True

    raise TokenMissing("Refresh token is required.")


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """POST /auth/refresh — Exchange a refresh token for a new token pair."""
    token, from_cookie = _presented_refresh_token()
    tokens = get_gateway().token_service.rotate(token)

    resp = jsonify({"data": tokens.to_dict(), "warnings": []})
    if from_cookie:
        resp.set_cookie(
            _cookie_name(),
            tokens.refresh_token,
            httponly=True,
            secure=not current_app.config.get("DEBUG", False),
            samesite="Lax",
            max_age=int(current_app.config["JWT_REFRESH_TOKEN_EXPIRES"].total_seconds()),
        )
    return resp, 200


@auth_bp.route("/logout", methods=["POST"])
def logout():
    """POST /auth/logout — Revoke a refresh token. Idempotent."""
    token, from_cookie = _presented_refresh_token()
    removed = get_gateway().token_service.revoke(token)

    message = (
        "Logout successful. Refresh token invalidated."
        if removed
        else "Logout successful or token already invalidated."
    )
    resp = jsonify({"data": {"message": message}, "warnings": []})
    if from_cookie:
        resp.delete_cookie(_cookie_name())
    return resp, 200


@auth_bp.route("/<provider_name>", methods=["GET"])
def provider_login(provider_name: str):
    """GET /auth/<provider> — Start the OAuth handshake with an enabled provider."""
    if provider_name in POST_ONLY_SEGMENTS:
        abort(405, valid_methods=["POST"])
    state = get_gateway()
    state.providers.get(provider_name)  # 404 PROVIDER_NOT_FOUND if not enabled
    client = state.oauth.create_client(provider_name)
    redirect_uri = url_for("auth.provider_callback", provider_name=provider_name, _external=True)
    return client.authorize_redirect(redirect_uri)


@auth_bp.route("/<provider_name>/callback", methods=["GET"])
def provider_callback(provider_name: str):
    """GET /auth/<provider>/callback — Finish the handshake and issue tokens."""
    state = get_gateway()
    adapter = state.providers.get(provider_name)
    client = state.oauth.create_client(provider_name)

    try:
        provider_token = client.authorize_access_token()
        userinfo = adapter.fetch_userinfo(client, provider_token)
    except (OAuthError, RequestException) as exc:
        logger.warning("%s OAuth callback failed: %s", provider_name, exc)
        raise ProviderHandshakeFailed(provider_name) from None

    result = adapter.complete_login(userinfo)
    return jsonify({
        "data": {
            "user": UserSchema().dump(result.user),
            **result.tokens.to_dict(),
        },
        "warnings": [],
    }), 200
