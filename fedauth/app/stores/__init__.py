"""
stores — the user directory contract and its backend table.

Every backend (memory, sql, mongodb) satisfies `UserDirectory` structurally;
none of them inherits from it. The backend is picked from
`USER_DIRECTORY_BACKENDS` by the USER_STORE_TYPE config value when the app
is created, and the resulting instance is owned by that app.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol, runtime_checkable

from fedauth.app.errors import StoreConfigurationError
from fedauth.app.models.identity import ExternalProfile, User


@runtime_checkable
class UserDirectory(Protocol):

    def find_by_id(self, user_id: str) -> User | None: ...

    def find_by_external_identity(self, provider: str, provider_id: str) -> User | None: ...

    def resolve(self, profile: ExternalProfile) -> User: ...

    def set_roles(self, user_id: str, roles: Iterable[str]) -> User | None: ...

    def add_refresh_token(self, user_id: str, token: str) -> bool: ...

    def has_refresh_token(self, user_id: str, token: str) -> bool: ...

    def remove_refresh_token(self, user_id: str, token: str) -> bool: ...

    def purge_all(self) -> None: ...


def normalize_roles(roles: Iterable[str]) -> frozenset[str]:
    """Validates a role assignment. A user always holds at least one role."""
    normalized = frozenset(role.strip() for role in roles if isinstance(role, str) and role.strip())
    if not normalized:
        raise ValueError("A user must hold at least one non-empty role.")
    return normalized


def normalize_email(email: str | None) -> str | None:
    """Emails are stored trimmed and lower-cased by every backend."""
    if not email or not email.strip():
        return None
    return email.strip().lower()


def _build_memory(config: Mapping[str, Any]) -> UserDirectory:
    from fedauth.app.stores.memory_store import InMemoryUserDirectory

    return InMemoryUserDirectory(testing=bool(config.get("TESTING")))


def _build_sql(config: Mapping[str, Any]) -> UserDirectory:
    from fedauth.app.extensions import db
    from fedauth.app.stores.sql_store import SqlUserDirectory

    return SqlUserDirectory(db.session, testing=bool(config.get("TESTING")))


def _build_mongodb(config: Mapping[str, Any]) -> UserDirectory:
    from fedauth.app.stores.mongo_store import MongoUserDirectory

    return MongoUserDirectory.from_uri(
        config["MONGO_URI"],
        db_name=config.get("MONGO_DB_NAME", "fedauth"),
        collection_name=config.get("MONGO_USERS_COLLECTION", "users"),
        testing=bool(config.get("TESTING")),
    )


USER_DIRECTORY_BACKENDS: dict[str, Callable[[Mapping[str, Any]], UserDirectory]] = {
    "memory":  _build_memory,
    "sql":     _build_sql,
    "mongodb": _build_mongodb,
}


def build_user_directory(config: Mapping[str, Any]) -> UserDirectory:
    store_type = config.get("USER_STORE_TYPE", "memory")
    try:
        builder = USER_DIRECTORY_BACKENDS[store_type]
    except KeyError:
        raise StoreConfigurationError(
            f"Unknown USER_STORE_TYPE {store_type!r}; "
            f"expected one of {sorted(USER_DIRECTORY_BACKENDS)}."
        ) from None
    return builder(config)
