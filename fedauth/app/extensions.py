"""
extensions.py — Flask extension objects.

`db` is the Flask-SQLAlchemy extension used by the relational user
directory. `gateway` wires the auth components for one app.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Read per-app state through get_gateway() inside a request.

The extension objects hold no per-app state themselves. The user directory,
token service and provider registry live in app.extensions["fedauth"], so
two apps in one process (e.g. parallel test apps) never share users or
tokens.
"""

from __future__ import annotations

from dataclasses import dataclass

from authlib.integrations.flask_client import OAuth
from flask import Flask, current_app
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

EXTENSION_KEY = "fedauth"


@dataclass(frozen=True)
class GatewayState:
    directory: "UserDirectory"  # noqa: F821
    resolver: "IdentityResolver"  # noqa: F821
    token_service: "TokenService"  # noqa: F821
    providers: "ProviderRegistry"  # noqa: F821
    oauth: OAuth


class AuthGateway:

    def init_app(self, app: Flask) -> GatewayState:
        # Import here (not at module top) to avoid circular imports:
        # the SQL models import `db` from this module.
        from fedauth.app.services.identity_resolver import IdentityResolver
        from fedauth.app.services.provider_registry import ProviderRegistry
        from fedauth.app.services.token_service import TokenService, TokenSettings
        from fedauth.app.stores import build_user_directory

        directory = build_user_directory(app.config)
        resolver = IdentityResolver(directory)
        token_service = TokenService(directory, TokenSettings.from_config(app.config))
        oauth = OAuth(app)
        providers = ProviderRegistry.from_descriptors(
            app.config.get("OAUTH_PROVIDERS", []),
            resolver,
            token_service,
            oauth=oauth,
        )

        state = GatewayState(
            directory=directory,
            resolver=resolver,
            token_service=token_service,
            providers=providers,
            oauth=oauth,
        )
        app.extensions[EXTENSION_KEY] = state
        return state


gateway = AuthGateway()


def get_gateway() -> GatewayState:
    return current_app.extensions[EXTENSION_KEY]
