"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Each test gets its own app from create_app("testing"), backed by the
    in-memory user directory. Apps never share users or tokens, so there is
    no cleanup between tests.
  - The google and github providers are registered with fake endpoints. No
    test talks to a real provider: the OAuth handshake is replaced with
    `fake_handshake()`, which patches the Authlib client and the adapter.

Helper functions (not fixtures) are provided for common operations:
  - login_as(app, ...)            → LoginResult via the service layer
  - callback_login(client, ...)   → response data of a full callback login
  - auth_headers(token)           → {"Authorization": "Bearer <token>"}
  - fake_handshake(...)           → patches one provider's handshake
"""

from __future__ import annotations

import pytest

from fedauth.app import create_app
from fedauth.app.models.identity import LoginResult, ProfileEmail, ProviderProfile

TEST_PROVIDERS = [
    {
        "name": "google",
        "client_id": "google-test-client",
        "client_secret": "google-test-secret",
        "authorize_url": "https://accounts.example.com/o/oauth2/auth",
        "token_url": "https://accounts.example.com/token",
        "userinfo_url": "https://accounts.example.com/userinfo",
        "scopes": ["profile", "email"],
    },
    {
        "name": "github",
        "client_id": "github-test-client",
        "client_secret": "github-test-secret",
        "authorize_url": "https://github.example.com/login/oauth/authorize",
        "token_url": "https://github.example.com/login/oauth/access_token",
        "userinfo_url": "https://api.github.example.com/user",
        "scopes": ["user:email"],
        "headers": {"User-Agent": "fedauth-tests"},
    },
]


# ═══════════════════════════════════════════════════════════════════════════
# App / client fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def app():
    """Flask app in 'testing' mode with a fresh in-memory user directory."""
    return create_app("testing", {"OAUTH_PROVIDERS": TEST_PROVIDERS})


@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


@pytest.fixture
def state(app):
    """The gateway components (directory, token service, providers) of `app`."""
    return app.extensions["fedauth"]


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def login_as(
    app,
    provider: str = "google",
    provider_id: str = "abc123",
    display_name: str = "Alice",
    email: str | None = "alice@example.com",
    roles: list[str] | None = None,
) -> LoginResult:
    """
    Resolves a user and issues tokens without an HTTP handshake.
    If `roles` is given the user's roles are replaced before tokens are issued.
    """
    state = app.extensions["fedauth"]
    with app.app_context():
        user = state.resolver.resolve(provider, ProviderProfile(
            id=provider_id,
            display_name=display_name,
            emails=(ProfileEmail(email, verified=True),) if email else (),
        ))
        if roles is not None:
            user = state.directory.set_roles(user.id, roles)
        tokens = state.token_service.issue_and_store(user)
    return LoginResult(user=user, tokens=tokens)


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def fake_handshake(monkeypatch, app, provider: str, userinfo: dict | None = None, error: Exception | None = None):
    """
    Replaces the provider round trip: the Authlib client "receives" a token
    and the adapter "fetches" `userinfo`. With `error`, the token exchange
    raises it instead.
    """
    state = app.extensions["fedauth"]
    oauth_client = state.oauth.create_client(provider)
    adapter = state.providers.get(provider)

    def authorize_access_token(**kwargs):
        if error is not None:
            raise error
        return {"access_token": f"{provider}-provider-token", "token_type": "Bearer"}

    monkeypatch.setattr(oauth_client, "authorize_access_token", authorize_access_token)
    monkeypatch.setattr(adapter, "fetch_userinfo", lambda client, token: dict(userinfo or {}))


def callback_login(client, provider: str = "google") -> dict:
    """Completes a callback login (after fake_handshake) and returns response data."""
    resp = client.get(f"/api/v1/auth/{provider}/callback?code=test-code&state=test-state")
    assert resp.status_code == 200, f"callback login failed: {resp.get_json()}"
    return resp.get_json()["data"]
