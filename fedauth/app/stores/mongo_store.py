"""
stores/mongo_store.py — Document-store user directory (pymongo).

Document shape (collection `users`):
    {
      "_id": "<provider>-<provider_id>",
      "provider": str, "provider_id": str,
      "display_name": str, "email": str | None, "photo": str | None,
      "roles": [str, ...], "refresh_tokens": [str, ...],
      "created_at": datetime, "updated_at": datetime,
    }

Every mutation is a single-document update, which MongoDB applies
atomically. Token removal filters on the token being present, so of two
concurrent removals only one reports modified_count == 1.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from fedauth.app.errors import StorageFault, StoreConfigurationError
from fedauth.app.models.identity import DEFAULT_ROLES, ExternalProfile, User, user_id_for, utcnow
from fedauth.app.stores import normalize_email, normalize_roles

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _storage_guard(method: Callable[..., T]) -> Callable[..., T]:
    """Converts driver errors into StorageFault after logging them."""

    @functools.wraps(method)
    def wrapper(*args, **kwargs) -> T:
        try:
            return method(*args, **kwargs)
        except PyMongoError:
            logger.exception("User directory %s failed (mongodb backend).", method.__name__)
            raise StorageFault() from None

    return wrapper


def _to_user(doc: dict[str, Any]) -> User:
    return User(
        id=doc["_id"],
        provider=doc["provider"],
        provider_id=doc["provider_id"],
        display_name=doc.get("display_name") or "",
        email=doc.get("email"),
        photo=doc.get("photo"),
        roles=frozenset(doc.get("roles") or DEFAULT_ROLES),
        refresh_tokens=frozenset(doc.get("refresh_tokens") or ()),
        created_at=doc.get("created_at") or utcnow(),
        updated_at=doc.get("updated_at") or utcnow(),
    )


class MongoUserDirectory:

    def __init__(self, collection: Collection, testing: bool = False) -> None:
        self._col = collection
        self._testing = testing

    @classmethod
    def from_uri(
        cls,
        uri: str,
        *,
        db_name: str,
        collection_name: str = "users",
        testing: bool = False,
    ) -> "MongoUserDirectory":
        client: MongoClient = MongoClient(uri)
        directory = cls(client[db_name][collection_name], testing=testing)
        directory.ensure_indexes()
        logger.info("MongoDB user directory connected (db=%s, collection=%s).", db_name, collection_name)
        return directory

    @_storage_guard
    def ensure_indexes(self) -> None:
        self._col.create_index(
            [("provider", ASCENDING), ("provider_id", ASCENDING)],
            unique=True,
        )

    # ── Lookups ────────────────────────────────────────────────────────────

    @_storage_guard
    def find_by_id(self, user_id: str) -> User | None:
        doc = self._col.find_one({"_id": user_id})
        return _to_user(doc) if doc else None

    @_storage_guard
    def find_by_external_identity(self, provider: str, provider_id: str) -> User | None:
        doc = self._col.find_one({"provider": provider, "provider_id": provider_id})
        return _to_user(doc) if doc else None

    # ── Mutations ──────────────────────────────────────────────────────────

    @_storage_guard
    def resolve(self, profile: ExternalProfile) -> User:
        """
        Create user if missing, otherwise refresh the mutable profile fields.

        The upsert filters on the deterministic `_id`, so the server retries a
        duplicate-key insert from a concurrent first login by itself. A
        duplicate on the (provider, provider_id) index is not covered by that
        and is retried here once, as a plain update of the winning document.
        """
        user_id = user_id_for(profile.provider, profile.provider_id)
        now = utcnow()
        update = {
            "$set": {
                "display_name": profile.display_name,
                "email": normalize_email(profile.email),
                "photo": profile.photo,
                "updated_at": now,
            },
            "$setOnInsert": {
                "provider": profile.provider,
                "provider_id": profile.provider_id,
                "roles": sorted(DEFAULT_ROLES),
                "refresh_tokens": [],
                "created_at": now,
            },
        }
        try:
            doc = self._upsert(user_id, update)
        except DuplicateKeyError:
            logger.info("Concurrent first login for %s; updating the stored user.", user_id)
            doc = self._upsert(user_id, update)
        return _to_user(doc)

    def _upsert(self, user_id: str, update: dict[str, Any]) -> dict[str, Any]:
        return self._col.find_one_and_update(
            {"_id": user_id},
            update,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    @_storage_guard
    def set_roles(self, user_id: str, roles: Iterable[str]) -> User | None:
        new_roles = normalize_roles(roles)
        doc = self._col.find_one_and_update(
            {"_id": user_id},
            {"$set": {"roles": sorted(new_roles), "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return _to_user(doc) if doc else None

    @_storage_guard
    def add_refresh_token(self, user_id: str, token: str) -> bool:
        result = self._col.update_one(
            {"_id": user_id},
            {"$addToSet": {"refresh_tokens": token}, "$set": {"updated_at": utcnow()}},
        )
        return result.matched_count > 0

    @_storage_guard
    def has_refresh_token(self, user_id: str, token: str) -> bool:
        return self._col.count_documents({"_id": user_id, "refresh_tokens": token}, limit=1) > 0

    @_storage_guard
    def remove_refresh_token(self, user_id: str, token: str) -> bool:
        result = self._col.update_one(
            {"_id": user_id, "refresh_tokens": token},
            {"$pull": {"refresh_tokens": token}, "$set": {"updated_at": utcnow()}},
        )
        return result.modified_count == 1

    @_storage_guard
    def purge_all(self) -> None:
        if not self._testing:
            raise StoreConfigurationError("purge_all() is only available in testing mode.")
        self._col.delete_many({})
        logger.info("MongoDB user directory purged.")
