"""
stores/memory_store.py — In-memory user directory.

Suitable for development, tests and single-process demos. State belongs to
the instance (one per app), never to the module, so two apps in the same
process never see each other's users.

Concurrency: every read-modify-write of a user record runs under that user's
lock. Records are frozen dataclasses replaced wholesale, so readers never see
a half-applied update. Two threads removing the same refresh token therefore
get exactly one True between them.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import replace

from fedauth.app.errors import StoreConfigurationError
from fedauth.app.models.identity import DEFAULT_ROLES, ExternalProfile, User, user_id_for, utcnow
from fedauth.app.stores import normalize_email, normalize_roles

logger = logging.getLogger(__name__)


class InMemoryUserDirectory:

    def __init__(self, testing: bool = False) -> None:
        self._testing = testing
        self._users: dict[str, User] = {}
        self._identity_index: dict[tuple[str, str], str] = {}
        self._registry_lock = threading.Lock()
        self._user_locks: dict[str, threading.Lock] = {}
        logger.info("In-memory user directory initialised (testing=%s).", testing)

    def __len__(self) -> int:
        return len(self._users)

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = self._user_locks[user_id] = threading.Lock()
            return lock

    # ── Lookups ────────────────────────────────────────────────────────────

    def find_by_id(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def find_by_external_identity(self, provider: str, provider_id: str) -> User | None:
        user_id = self._identity_index.get((provider, provider_id))
        if user_id is None:
            return None
        return self._users.get(user_id)

    # ── Mutations ──────────────────────────────────────────────────────────

    def resolve(self, profile: ExternalProfile) -> User:
        user_id = user_id_for(profile.provider, profile.provider_id)
        email = normalize_email(profile.email)
        with self._lock_for(user_id):
            now = utcnow()
            existing = self._users.get(user_id)
            if existing is not None:
                user = replace(
                    existing,
                    display_name=profile.display_name,
                    email=email,
                    photo=profile.photo,
                    updated_at=now,
                )
            else:
                user = User(
                    id=user_id,
                    provider=profile.provider,
                    provider_id=profile.provider_id,
                    display_name=profile.display_name,
                    email=email,
                    photo=profile.photo,
                    roles=DEFAULT_ROLES,
                    refresh_tokens=frozenset(),
                    created_at=now,
                    updated_at=now,
                )
                logger.info("Created user %s from %s login.", user_id, profile.provider)
            self._users[user_id] = user
            self._identity_index[(profile.provider, profile.provider_id)] = user_id
            return user

    def set_roles(self, user_id: str, roles: Iterable[str]) -> User | None:
        new_roles = normalize_roles(roles)
        with self._lock_for(user_id):
            user = self._users.get(user_id)
            if user is None:
                return None
            user = replace(user, roles=new_roles, updated_at=utcnow())
            self._users[user_id] = user
            return user

    def add_refresh_token(self, user_id: str, token: str) -> bool:
        with self._lock_for(user_id):
            user = self._users.get(user_id)
            if user is None:
                return False
            if token not in user.refresh_tokens:
                self._users[user_id] = replace(
                    user,
                    refresh_tokens=user.refresh_tokens | {token},
                    updated_at=utcnow(),
                )
            return True

    def has_refresh_token(self, user_id: str, token: str) -> bool:
        user = self._users.get(user_id)
        return user is not None and token in user.refresh_tokens

    def remove_refresh_token(self, user_id: str, token: str) -> bool:
        with self._lock_for(user_id):
            user = self._users.get(user_id)
            if user is None or token not in user.refresh_tokens:
                return False
            self._users[user_id] = replace(
                user,
                refresh_tokens=user.refresh_tokens - {token},
                updated_at=utcnow(),
            )
            return True

    def purge_all(self) -> None:
        if not self._testing:
            raise StoreConfigurationError("purge_all() is only available in testing mode.")
        with self._registry_lock:
            self._users.clear()
            self._identity_index.clear()
            self._user_locks.clear()
        logger.info("In-memory user directory purged.")
