"""
stores/sql_store.py — Relational user directory (Flask-SQLAlchemy).

Each public method is one unit of work: it commits on success, and on any
SQLAlchemyError it rolls back, logs the full error, and raises StorageFault so
that no driver message reaches a caller.

Atomic single-use removal:
    DELETE FROM refresh_tokens WHERE user_id = :uid AND token_hash = :hash
  is a conditional delete. When two requests race on the same token the
  database serialises the deletes and only one of them sees rowcount == 1.

Refresh tokens are stored as the SHA-256 digest of the exact signed string,
so a leaked table does not hand out usable tokens.
"""

from __future__ import annotations

import functools
import hashlib
import logging
from collections.abc import Callable, Iterable
from typing import TypeVar

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fedauth.app.errors import StorageFault, StoreConfigurationError
from fedauth.app.models.identity import DEFAULT_ROLES, ExternalProfile, User, user_id_for, utcnow
from fedauth.app.models.refresh_token import RefreshTokenRecord
from fedauth.app.models.user import UserRecord
from fedauth.app.stores import normalize_email, normalize_roles

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw token string. Used for refresh token storage."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _storage_guard(method: Callable[..., T]) -> Callable[..., T]:
    """Rolls back and converts SQLAlchemy errors into StorageFault."""

    @functools.wraps(method)
    def wrapper(self: "SqlUserDirectory", *args, **kwargs) -> T:
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError:
            self._session.rollback()
            logger.exception("User directory %s failed (sql backend).", method.__name__)
            raise StorageFault() from None

    return wrapper


class SqlUserDirectory:

    def __init__(self, session: Session, testing: bool = False) -> None:
        # Flask-SQLAlchemy's scoped session: one real session per app context.
        self._session = session
        self._testing = testing

    def _to_user(self, record: UserRecord) -> User:
        token_hashes = self._session.execute(
            select(RefreshTokenRecord.token_hash).where(RefreshTokenRecord.user_id == record.id)
        ).scalars().all()
        return User(
            id=record.id,
            provider=record.provider,
            provider_id=record.provider_id,
            display_name=record.display_name,
            email=record.email,
            photo=record.photo,
            roles=frozenset(record.roles or DEFAULT_ROLES),
            # Digests, not raw tokens: the relational backend never holds the raw string.
            refresh_tokens=frozenset(token_hashes),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def _record_by_identity(self, provider: str, provider_id: str) -> UserRecord | None:
        return self._session.execute(
            select(UserRecord).where(
                UserRecord.provider == provider,
                UserRecord.provider_id == provider_id,
            )
        ).scalar_one_or_none()

    # ── Lookups ────────────────────────────────────────────────────────────

    @_storage_guard
    def find_by_id(self, user_id: str) -> User | None:
        record = self._session.get(UserRecord, user_id)
        return self._to_user(record) if record is not None else None

    @_storage_guard
    def find_by_external_identity(self, provider: str, provider_id: str) -> User | None:
        record = self._record_by_identity(provider, provider_id)
        return self._to_user(record) if record is not None else None

    # ── Mutations ──────────────────────────────────────────────────────────

    @_storage_guard
    def resolve(self, profile: ExternalProfile) -> User:
        email = normalize_email(profile.email)

        record = self._record_by_identity(profile.provider, profile.provider_id)
        if record is None:
            now = utcnow()
            record = UserRecord(
                id=user_id_for(profile.provider, profile.provider_id),
                provider=profile.provider,
                provider_id=profile.provider_id,
                display_name=profile.display_name,
                email=email,
                photo=profile.photo,
                roles=sorted(DEFAULT_ROLES),
                created_at=now,
                updated_at=now,
            )
            self._session.add(record)
            try:
                self._session.commit()
                logger.info("Created user %s from %s login.", record.id, profile.provider)
                return self._to_user(record)
            except IntegrityError:
                # A concurrent first login inserted the same identity; fall
                # through and update the row that won.
                self._session.rollback()
                record = self._record_by_identity(profile.provider, profile.provider_id)
                if record is None:
                    raise

        record.display_name = profile.display_name
        record.email = email
        record.photo = profile.photo
        record.updated_at = utcnow()
        self._session.commit()
        return self._to_user(record)

    @_storage_guard
    def set_roles(self, user_id: str, roles: Iterable[str]) -> User | None:
        new_roles = normalize_roles(roles)
        record = self._session.get(UserRecord, user_id)
        if record is None:
            return None
        record.roles = sorted(new_roles)
        record.updated_at = utcnow()
        self._session.commit()
        return self._to_user(record)

    @_storage_guard
    def add_refresh_token(self, user_id: str, token: str) -> bool:
        record = self._session.get(UserRecord, user_id)
        if record is None:
            return False
        token_hash = _hash_token(token)
        exists = self._session.execute(
            select(RefreshTokenRecord.id).where(RefreshTokenRecord.token_hash == token_hash)
        ).first()
        if exists is None:
            self._session.add(RefreshTokenRecord(user_id=user_id, token_hash=token_hash))
            record.updated_at = utcnow()
        self._session.commit()
        return True

    @_storage_guard
    def has_refresh_token(self, user_id: str, token: str) -> bool:
        row = self._session.execute(
            select(RefreshTokenRecord.id).where(
                RefreshTokenRecord.user_id == user_id,
                RefreshTokenRecord.token_hash == _hash_token(token),
            )
        ).first()
        return row is not None

    @_storage_guard
    def remove_refresh_token(self, user_id: str, token: str) -> bool:
        result = self._session.execute(
            delete(RefreshTokenRecord).where(
                RefreshTokenRecord.user_id == user_id,
                RefreshTokenRecord.token_hash == _hash_token(token),
            )
        )
        self._session.commit()
        return result.rowcount == 1

    @_storage_guard
    def purge_all(self) -> None:
        if not self._testing:
            raise StoreConfigurationError("purge_all() is only available in testing mode.")
        # refresh_tokens before users (CASCADE would handle it, but be explicit).
        self._session.execute(delete(RefreshTokenRecord))
        self._session.execute(delete(UserRecord))
        self._session.commit()
        logger.info("SQL user directory purged.")
