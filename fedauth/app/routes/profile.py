"""
routes/profile.py — Protected resources.

Endpoints (url_prefix=/api/v1/auth):
  GET  /auth/profile          → 200   any authenticated user
  GET  /auth/admin/dashboard  → 200   users holding the "admin" role
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from fedauth.app.middleware.auth_middleware import require_auth, require_roles
from fedauth.app.schemas.user_schema import UserSchema

profile_bp = Blueprint("profile", __name__)


@profile_bp.route("/profile", methods=["GET"])
@require_auth
def profile():
    return jsonify({
        "data": {"user": UserSchema().dump(g.current_user)},
        "warnings": [],
    }), 200


@profile_bp.route("/admin/dashboard", methods=["GET"])
@require_auth
@require_roles("admin")
def admin_dashboard():
    user = g.current_user
    return jsonify({
        "data": {
            "message": f"Welcome to the admin dashboard, {user.display_name}.",
            "user": UserSchema().dump(user),
        },
        "warnings": [],
    }), 200
