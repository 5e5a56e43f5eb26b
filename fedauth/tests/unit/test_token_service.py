"""
Unit tests for TokenService: issuance, single-use rotation, revocation and
access-token verification against the in-memory user directory.
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from fedauth.app.errors import (
    ErrorCode,
    SigningKeyMissing,
    StorageFault,
    TokenExpired,
    TokenMalformed,
    TokenNotRecognized,
    UserNotFound,
    WrongTokenType,
)
from fedauth.app.models.identity import ExternalProfile, User
from fedauth.app.services.token_service import TokenService, TokenSettings
from fedauth.app.stores.memory_store import InMemoryUserDirectory

SECRET = "unit-test-secret-key-that-is-at-least-32-chars"


def _settings(**overrides) -> TokenSettings:
    values = {
        "algorithm": "HS256",
        "signing_key": SECRET,
        "verifying_key": SECRET,
        "access_ttl": timedelta(minutes=15),
        "refresh_ttl": timedelta(days=7),
    }
    values.update(overrides)
    return TokenSettings(**values)


@pytest.fixture
def directory():
    return InMemoryUserDirectory(testing=True)


@pytest.fixture
def user(directory):
    return directory.resolve(ExternalProfile(
        provider="google",
        provider_id="abc123",
        display_name="Alice",
        email="alice@example.com",
    ))


@pytest.fixture
def service(directory):
    return TokenService(directory, _settings())


def _claims(token: str) -> dict:
    return jwt.decode(token, SECRET, algorithms=["HS256"])


# ═══════════════════════════════════════════════════════════════════════════
# TokenSettings.from_config
# ═══════════════════════════════════════════════════════════════════════════

class TestTokenSettings:

    def test_hs256_uses_shared_secret_for_both_sides(self):
        settings = TokenSettings.from_config({
            "JWT_ALGORITHM": "HS256",
            "JWT_SECRET_KEY": SECRET,
            "JWT_ACCESS_TOKEN_EXPIRES": timedelta(minutes=15),
            "JWT_REFRESH_TOKEN_EXPIRES": timedelta(days=7),
        })
        assert settings.signing_key == SECRET
        assert settings.verifying_key == SECRET

    def test_rs256_uses_key_pair(self):
        settings = TokenSettings.from_config({
            "JWT_ALGORITHM": "RS256",
            "JWT_SECRET_KEY": SECRET,
            "JWT_PRIVATE_KEY": "private-pem",
            "JWT_PUBLIC_KEY": "public-pem",
            "JWT_ACCESS_TOKEN_EXPIRES": timedelta(minutes=15),
            "JWT_REFRESH_TOKEN_EXPIRES": timedelta(days=7),
        })
        assert settings.signing_key == "private-pem"
        assert settings.verifying_key == "public-pem"

    def test_empty_secret_becomes_none(self):
        settings = TokenSettings.from_config({
            "JWT_ALGORITHM": "HS256",
            "JWT_SECRET_KEY": "",
            "JWT_ACCESS_TOKEN_EXPIRES": timedelta(minutes=15),
            "JWT_REFRESH_TOKEN_EXPIRES": timedelta(days=7),
        })
        assert settings.signing_key is None


# ═══════════════════════════════════════════════════════════════════════════
# issue_and_store
# ═══════════════════════════════════════════════════════════════════════════

class TestIssueAndStore:

    def test_refresh_token_is_recorded_as_active(self, service, directory, user):
        pair = service.issue_and_store(user)
        assert directory.has_refresh_token(user.id, pair.refresh_token)

    def test_claims_carry_subject_type_and_email(self, service, user):
        pair = service.issue_and_store(user)

        access = _claims(pair.access_token)
        refresh = _claims(pair.refresh_token)

        assert access["sub"] == "google-abc123"
        assert access["type"] == "access"
        assert access["email"] == "alice@example.com"
        assert refresh["sub"] == "google-abc123"
        assert refresh["type"] == "refresh"
        assert "email" not in refresh

    def test_lifetime_is_exactly_the_configured_ttl(self, service, user):
        pair = service.issue_and_store(user)
        access = _claims(pair.access_token)
        refresh = _claims(pair.refresh_token)
        assert access["exp"] - access["iat"] == 15 * 60
        assert refresh["exp"] - refresh["iat"] == 7 * 24 * 60 * 60

    def test_two_issues_in_the_same_second_are_distinct(self, service, directory, user):
        first = service.issue_and_store(user)
        second = service.issue_and_store(user)
        assert first.refresh_token != second.refresh_token
        # Multi-device sessions: both stay active.
        assert directory.has_refresh_token(user.id, first.refresh_token)
        assert directory.has_refresh_token(user.id, second.refresh_token)

    def test_unknown_user_raises_user_not_found(self, service):
        ghost = User(id="github-404", provider="github", provider_id="404", display_name="Ghost")
        with pytest.raises(UserNotFound) as exc_info:
            service.issue_and_store(ghost)
        assert exc_info.value.http_status == 401

    def test_missing_signing_key_raises(self, directory, user):
        service = TokenService(directory, _settings(signing_key=None, verifying_key=None))
        with pytest.raises(SigningKeyMissing) as exc_info:
            service.issue_and_store(user)
        assert exc_info.value.code == ErrorCode.SIGNING_KEY_MISSING
        assert exc_info.value.http_status == 500

    def test_storage_fault_propagates(self, user):
        directory = MagicMock()
        directory.add_refresh_token.side_effect = StorageFault()
        service = TokenService(directory, _settings())
        with pytest.raises(StorageFault):
            service.issue_and_store(user)


# ═══════════════════════════════════════════════════════════════════════════
# rotate
# ═══════════════════════════════════════════════════════════════════════════

class TestRotate:

    def test_rotation_replaces_the_presented_token(self, service, directory, user):
        old = service.issue_and_store(user)
        new = service.rotate(old.refresh_token)

        assert new.refresh_token != old.refresh_token
        assert not directory.has_refresh_token(user.id, old.refresh_token)
        assert directory.has_refresh_token(user.id, new.refresh_token)
        assert service.verify_access(new.access_token).sub == user.id

    def test_replayed_token_is_not_recognized(self, service, user):
        old = service.issue_and_store(user)
        service.rotate(old.refresh_token)

        with pytest.raises(TokenNotRecognized) as exc_info:
            service.rotate(old.refresh_token)
        assert exc_info.value.code == ErrorCode.TOKEN_NOT_RECOGNIZED

    def test_access_token_is_rejected(self, service, user):
        pair = service.issue_and_store(user)
        with pytest.raises(WrongTokenType) as exc_info:
            service.rotate(pair.access_token)
        assert exc_info.value.expected == "refresh"

    def test_signed_but_never_stored_token_is_not_recognized(self, service, user):
        now = int(time.time())
        forged = jwt.encode(
            {"sub": user.id, "type": "refresh", "iat": now, "exp": now + 60},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(TokenNotRecognized):
            service.rotate(forged)

    def test_expired_token_raises_token_expired(self, service, directory, user):
        now = int(time.time())
        expired = jwt.encode(
            {"sub": user.id, "type": "refresh", "iat": now - 61, "exp": now - 1},
            SECRET,
            algorithm="HS256",
        )
        directory.add_refresh_token(user.id, expired)

        with pytest.raises(TokenExpired):
            service.rotate(expired)
        # Expiry is checked before the directory, so the token was not spent.
        assert directory.has_refresh_token(user.id, expired)

    def test_tampered_token_raises_token_malformed(self, service, user):
        pair = service.issue_and_store(user)
        header, payload, signature = pair.refresh_token.split(".")
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
        tampered = ".".join([header, payload, flipped])
        with pytest.raises(TokenMalformed):
            service.rotate(tampered)

    def test_garbage_raises_token_malformed(self, service):
        with pytest.raises(TokenMalformed):
            service.rotate("not-a-jwt")

    def test_token_signed_with_other_secret_is_malformed(self, service, user):
        now = int(time.time())
        foreign = jwt.encode(
            {"sub": user.id, "type": "refresh", "iat": now, "exp": now + 60},
            "some-other-secret-that-is-also-32-chars-long",
            algorithm="HS256",
        )
        with pytest.raises(TokenMalformed):
            service.rotate(foreign)

    def test_token_missing_required_claims_is_malformed(self, service, user):
        incomplete = jwt.encode({"sub": user.id, "type": "refresh"}, SECRET, algorithm="HS256")
        with pytest.raises(TokenMalformed):
            service.rotate(incomplete)

    def test_user_deleted_after_issue_raises_user_not_found(self, user):
        directory = MagicMock()
        directory.add_refresh_token.return_value = True
        directory.has_refresh_token.return_value = True
        directory.remove_refresh_token.return_value = True
        directory.find_by_id.return_value = None
        service = TokenService(directory, _settings())
        pair = service.issue_and_store(user)

        with pytest.raises(UserNotFound):
            service.rotate(pair.refresh_token)

    def test_lost_removal_race_is_not_recognized(self, user):
        directory = MagicMock()
        directory.add_refresh_token.return_value = True
        directory.has_refresh_token.return_value = True
        directory.remove_refresh_token.return_value = False
        service = TokenService(directory, _settings())
        pair = service.issue_and_store(user)

        with pytest.raises(TokenNotRecognized):
            service.rotate(pair.refresh_token)
        directory.find_by_id.assert_not_called()

    def test_concurrent_rotation_succeeds_exactly_once(self, service, directory, user):
        pair = service.issue_and_store(user)
        barrier = threading.Barrier(2)
        successes: list = []
        failures: list = []

        def worker():
            barrier.wait()
            try:
                successes.append(service.rotate(pair.refresh_token))
            except TokenNotRecognized as exc:
                failures.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(successes) == 1
        assert len(failures) == 1
        active = directory.find_by_id(user.id).refresh_tokens
        assert active == {successes[0].refresh_token}


# ═══════════════════════════════════════════════════════════════════════════
# revoke
# ═══════════════════════════════════════════════════════════════════════════

class TestRevoke:

    def test_revoke_removes_the_token(self, service, directory, user):
        pair = service.issue_and_store(user)
        assert service.revoke(pair.refresh_token) is True
        assert not directory.has_refresh_token(user.id, pair.refresh_token)

    def test_revoke_is_idempotent(self, service, user):
        pair = service.issue_and_store(user)
        assert service.revoke(pair.refresh_token) is True
        assert service.revoke(pair.refresh_token) is False

    def test_revoked_token_cannot_rotate(self, service, user):
        pair = service.issue_and_store(user)
        service.revoke(pair.refresh_token)
        with pytest.raises(TokenNotRecognized):
            service.rotate(pair.refresh_token)

    def test_revoke_accepts_an_expired_token(self, service, directory, user):
        now = int(time.time())
        expired = jwt.encode(
            {"sub": user.id, "type": "refresh", "iat": now - 61, "exp": now - 1},
            SECRET,
            algorithm="HS256",
        )
        directory.add_refresh_token(user.id, expired)
        assert service.revoke(expired) is True
        assert not directory.has_refresh_token(user.id, expired)

    def test_revoke_rejects_access_token(self, service, user):
        pair = service.issue_and_store(user)
        with pytest.raises(WrongTokenType):
            service.revoke(pair.access_token)

    def test_revoke_rejects_bad_signature(self, service):
        with pytest.raises(TokenMalformed):
            service.revoke("a.b.c")

    def test_revoking_one_session_keeps_the_other(self, service, directory, user):
        laptop = service.issue_and_store(user)
        phone = service.issue_and_store(user)
        service.revoke(laptop.refresh_token)
        assert directory.has_refresh_token(user.id, phone.refresh_token)


# ═══════════════════════════════════════════════════════════════════════════
# verify_access
# ═══════════════════════════════════════════════════════════════════════════

class TestVerifyAccess:

    def test_returns_payload(self, service, user):
        pair = service.issue_and_store(user)
        payload = service.verify_access(pair.access_token)
        assert payload.sub == user.id
        assert payload.type == "access"
        assert payload.email == "alice@example.com"
        assert payload.exp - payload.iat == 15 * 60
        assert payload.jti

    def test_refresh_token_is_wrong_type(self, service, user):
        pair = service.issue_and_store(user)
        with pytest.raises(WrongTokenType) as exc_info:
            service.verify_access(pair.refresh_token)
        assert exc_info.value.expected == "access"

    def test_expired_access_token(self, service, user):
        now = int(time.time())
        expired = jwt.encode(
            {"sub": user.id, "type": "access", "iat": now - 61, "exp": now - 1},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(TokenExpired) as exc_info:
            service.verify_access(expired)
        assert exc_info.value.http_status == 401

    def test_does_not_consult_the_directory(self, user):
        directory = MagicMock()
        directory.add_refresh_token.return_value = True
        service = TokenService(directory, _settings())
        pair = service.issue_and_store(user)
        directory.reset_mock()

        service.verify_access(pair.access_token)

        assert directory.method_calls == []

    def test_unsigned_token_is_rejected(self, service, user):
        now = int(time.time())
        unsigned = jwt.encode(
            {"sub": user.id, "type": "access", "iat": now, "exp": now + 60},
            None,
            algorithm="none",
        )
        with pytest.raises(TokenMalformed):
            service.verify_access(unsigned)


# ═══════════════════════════════════════════════════════════════════════════
# RS256
# ═══════════════════════════════════════════════════════════════════════════

class TestRs256:

    @pytest.fixture(scope="class")
    def key_pair(self):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()
        return private_pem, public_pem

    def test_round_trip_with_key_pair(self, directory, user, key_pair):
        private_pem, public_pem = key_pair
        service = TokenService(
            directory,
            _settings(algorithm="RS256", signing_key=private_pem, verifying_key=public_pem),
        )
        pair = service.issue_and_store(user)

        assert jwt.get_unverified_header(pair.access_token)["alg"] == "RS256"
        assert service.verify_access(pair.access_token).sub == user.id
        rotated = service.rotate(pair.refresh_token)
        assert directory.has_refresh_token(user.id, rotated.refresh_token)

    def test_hs256_token_rejected_by_rs256_service(self, directory, user, key_pair):
        private_pem, public_pem = key_pair
        rs_service = TokenService(
            directory,
            _settings(algorithm="RS256", signing_key=private_pem, verifying_key=public_pem),
        )
        hs_pair = TokenService(directory, _settings()).issue_and_store(user)

        with pytest.raises(TokenMalformed):
            rs_service.verify_access(hs_pair.access_token)
