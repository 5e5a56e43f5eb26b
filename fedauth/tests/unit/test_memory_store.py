"""
Unit tests for InMemoryUserDirectory: user resolution, role assignment and the
refresh-token set operations that every backend must honour.
"""

from __future__ import annotations

import threading

import pytest

from fedauth.app.errors import StoreConfigurationError
from fedauth.app.models.identity import ExternalProfile
from fedauth.app.stores import UserDirectory
from fedauth.app.stores.memory_store import InMemoryUserDirectory


def _profile(**overrides) -> ExternalProfile:
    values = {
        "provider": "github",
        "provider_id": "42",
        "display_name": "Octo Cat",
        "email": "octo@example.com",
        "photo": "https://example.com/octo.png",
    }
    values.update(overrides)
    return ExternalProfile(**values)


@pytest.fixture
def directory():
    return InMemoryUserDirectory(testing=True)


def test_satisfies_the_directory_protocol(directory):
    assert isinstance(directory, UserDirectory)


# ═══════════════════════════════════════════════════════════════════════════
# resolve / lookups
# ═══════════════════════════════════════════════════════════════════════════

class TestResolve:

    def test_first_login_creates_user_with_default_role(self, directory):
        user = directory.resolve(_profile())

        assert user.id == "github-42"
        assert user.roles == {"user"}
        assert user.refresh_tokens == frozenset()
        assert user.created_at == user.updated_at
        assert len(directory) == 1

    def test_second_login_updates_profile_fields_only(self, directory):
        first = directory.resolve(_profile())
        directory.set_roles(first.id, ["admin"])
        directory.add_refresh_token(first.id, "rt-1")

        second = directory.resolve(_profile(display_name="Octo", email=None, photo=None))

        assert second.id == first.id
        assert second.display_name == "Octo"
        assert second.email is None
        assert second.photo is None
        assert second.roles == {"admin"}
        assert second.refresh_tokens == {"rt-1"}
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at
        assert len(directory) == 1

    def test_email_is_stored_lowercased(self, directory):
        user = directory.resolve(_profile(email="  Octo@Example.COM "))

        assert user.email == "octo@example.com"
        assert directory.find_by_id(user.id).email == "octo@example.com"

    def test_blank_email_is_stored_as_none(self, directory):
        assert directory.resolve(_profile(email="   ")).email is None

    def test_same_provider_id_on_other_provider_is_a_different_user(self, directory):
        a = directory.resolve(_profile(provider="github"))
        b = directory.resolve(_profile(provider="google"))
        assert a.id != b.id
        assert len(directory) == 2

    def test_find_by_external_identity(self, directory):
        created = directory.resolve(_profile())
        assert directory.find_by_external_identity("github", "42") == created
        assert directory.find_by_external_identity("github", "43") is None

    def test_find_by_id_unknown_returns_none(self, directory):
        assert directory.find_by_id("github-999") is None


# ═══════════════════════════════════════════════════════════════════════════
# set_roles
# ═══════════════════════════════════════════════════════════════════════════

class TestSetRoles:

    def test_replaces_roles(self, directory):
        user = directory.resolve(_profile())
        updated = directory.set_roles(user.id, ["admin", " editor "])
        assert updated.roles == {"admin", "editor"}
        assert directory.find_by_id(user.id).roles == {"admin", "editor"}

    def test_unknown_user_returns_none(self, directory):
        assert directory.set_roles("nobody", ["admin"]) is None

    @pytest.mark.parametrize("roles", [[], [""], ["  "], [None]])
    def test_rejects_empty_role_set(self, directory, roles):
        user = directory.resolve(_profile())
        with pytest.raises(ValueError):
            directory.set_roles(user.id, roles)
        assert directory.find_by_id(user.id).roles == {"user"}


# ═══════════════════════════════════════════════════════════════════════════
# Refresh-token set
# ═══════════════════════════════════════════════════════════════════════════

class TestRefreshTokens:

    def test_add_then_has(self, directory):
        user = directory.resolve(_profile())
        assert directory.add_refresh_token(user.id, "rt-1") is True
        assert directory.has_refresh_token(user.id, "rt-1") is True
        assert directory.has_refresh_token(user.id, "rt-2") is False

    def test_add_is_idempotent(self, directory):
        user = directory.resolve(_profile())
        directory.add_refresh_token(user.id, "rt-1")
        directory.add_refresh_token(user.id, "rt-1")
        assert directory.find_by_id(user.id).refresh_tokens == {"rt-1"}

    def test_add_for_unknown_user_returns_false(self, directory):
        assert directory.add_refresh_token("nobody", "rt-1") is False
        assert len(directory) == 0

    def test_remove_reports_whether_it_removed(self, directory):
        user = directory.resolve(_profile())
        directory.add_refresh_token(user.id, "rt-1")
        assert directory.remove_refresh_token(user.id, "rt-1") is True
        assert directory.remove_refresh_token(user.id, "rt-1") is False
        assert directory.remove_refresh_token("nobody", "rt-1") is False

    def test_tokens_are_per_user(self, directory):
        alice = directory.resolve(_profile(provider_id="1"))
        bob = directory.resolve(_profile(provider_id="2"))
        directory.add_refresh_token(alice.id, "rt-shared")
        assert directory.has_refresh_token(bob.id, "rt-shared") is False
        assert directory.remove_refresh_token(bob.id, "rt-shared") is False
        assert directory.has_refresh_token(alice.id, "rt-shared") is True

    def test_concurrent_removal_succeeds_once(self, directory):
        user = directory.resolve(_profile())
        directory.add_refresh_token(user.id, "rt-1")
        barrier = threading.Barrier(8)
        results: list[bool] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            removed = directory.remove_refresh_token(user.id, "rt-1")
            with lock:
                results.append(removed)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 7


# ═══════════════════════════════════════════════════════════════════════════
# purge_all
# ═══════════════════════════════════════════════════════════════════════════

class TestPurgeAll:

    def test_purge_in_testing_mode(self, directory):
        directory.resolve(_profile())
        directory.purge_all()
        assert len(directory) == 0
        assert directory.find_by_external_identity("github", "42") is None

    def test_purge_outside_testing_mode_is_refused(self):
        directory = InMemoryUserDirectory(testing=False)
        directory.resolve(_profile())
        with pytest.raises(StoreConfigurationError):
            directory.purge_all()
        assert len(directory) == 1

    def test_instances_do_not_share_state(self):
        a = InMemoryUserDirectory(testing=True)
        b = InMemoryUserDirectory(testing=True)
        a.resolve(_profile())
        assert b.find_by_id("github-42") is None
