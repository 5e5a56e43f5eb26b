"""
services/providers.py — Identity provider adapters.

An adapter owns one provider's configuration and its profile quirks. Once the
external OAuth handshake has produced a userinfo document, the adapter:

  1. parses it into a ProviderProfile and rejects it if the subject id is empty
  2. resolves the profile to a user through the IdentityResolver
  3. asks the TokenService for a fresh token pair

The set of adapters is closed: PROVIDER_ADAPTERS maps every supported
provider name to its class. Configuration decides which of them are active.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from fedauth.app.errors import ProviderConfigurationError, ProviderProfileInvalid
from fedauth.app.models.identity import LoginResult, ProfileEmail, ProviderProfile
from fedauth.app.services.identity_resolver import IdentityResolver
from fedauth.app.services.token_service import TokenService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderDescriptor:
    name: str
    client_id: str = ""
    client_secret: str = ""
    authorize_url: str = ""
    token_url: str = ""
    userinfo_url: str = ""
    scopes: tuple[str, ...] = ()
    headers: Mapping[str, str] = field(default_factory=dict)
    enabled: bool = False

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ProviderDescriptor":
        client_id = raw.get("client_id") or ""
        client_secret = raw.get("client_secret") or ""
        return cls(
            name=raw.get("name") or "",
            client_id=client_id,
            client_secret=client_secret,
            authorize_url=raw.get("authorize_url") or "",
            token_url=raw.get("token_url") or "",
            userinfo_url=raw.get("userinfo_url") or "",
            scopes=tuple(raw.get("scopes") or ()),
            headers=dict(raw.get("headers") or {}),
            enabled=bool(raw.get("enabled", client_id and client_secret)),
        )


class ProviderAdapter(ABC):
    name: str = ""
    required_options: tuple[str, ...] = (
        "client_id",
        "client_secret",
        "authorize_url",
        "token_url",
        "userinfo_url",
    )

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        resolver: IdentityResolver,
        token_service: TokenService,
    ) -> None:
        missing = [option for option in self.required_options if not getattr(descriptor, option)]
        if missing:
            raise ProviderConfigurationError(
                f"{self.name} provider is missing required option(s): {', '.join(missing)}."
            )
        self.descriptor = descriptor
        self._resolver = resolver
        self._token_service = token_service

    @abstractmethod
    def parse_profile(self, userinfo: Mapping[str, Any]) -> ProviderProfile:
        """Maps the provider's userinfo document onto a ProviderProfile."""

    def register_client(self, oauth) -> None:
        """Registers this provider with an Authlib OAuth registry."""
        oauth.register(
            name=self.name,
            client_id=self.descriptor.client_id,
            client_secret=self.descriptor.client_secret,
            authorize_url=self.descriptor.authorize_url,
            access_token_url=self.descriptor.token_url,
            client_kwargs={"scope": " ".join(self.descriptor.scopes)},
        )

    def fetch_userinfo(self, client, token: Mapping[str, Any]) -> dict[str, Any]:
        resp = client.get(
            self.descriptor.userinfo_url,
            token=token,
            headers=dict(self.descriptor.headers) or None,
        )
        resp.raise_for_status()
        return resp.json()

    def complete_login(self, userinfo: Mapping[str, Any]) -> LoginResult:
        profile = self.parse_profile(userinfo)
        if not profile.id:
            logger.warning("%s profile is missing its subject id.", self.name)
            raise ProviderProfileInvalid(self.name)

        user = self._resolver.resolve(self.name, profile)
        tokens = self._token_service.issue_and_store(user)
        logger.info("User %s logged in with %s.", user.id, self.name)
        return LoginResult(user=user, tokens=tokens)


class GoogleAdapter(ProviderAdapter):
    name = "google"

    def parse_profile(self, userinfo: Mapping[str, Any]) -> ProviderProfile:
        emails = ()
        if userinfo.get("email"):
            verified = userinfo.get("email_verified")
            emails = (ProfileEmail(userinfo["email"], verified if isinstance(verified, bool) else None),)
        return ProviderProfile(
            id=str(userinfo.get("sub") or ""),
            display_name=userinfo.get("name") or userinfo.get("given_name"),
            emails=emails,
            photos=(userinfo["picture"],) if userinfo.get("picture") else (),
        )


class GithubAdapter(ProviderAdapter):
    name = "github"

    def parse_profile(self, userinfo: Mapping[str, Any]) -> ProviderProfile:
        # /user reports only the public email, with no verification flag.
        return ProviderProfile(
            id=str(userinfo.get("id") or ""),
            display_name=userinfo.get("name"),
            username=userinfo.get("login"),
            emails=(ProfileEmail(userinfo["email"]),) if userinfo.get("email") else (),
            photos=(userinfo["avatar_url"],) if userinfo.get("avatar_url") else (),
        )


class FacebookAdapter(ProviderAdapter):
    name = "facebook"

    def parse_profile(self, userinfo: Mapping[str, Any]) -> ProviderProfile:
        picture = ((userinfo.get("picture") or {}).get("data") or {}).get("url")
        return ProviderProfile(
            id=str(userinfo.get("id") or ""),
            display_name=userinfo.get("name"),
            emails=(ProfileEmail(userinfo["email"]),) if userinfo.get("email") else (),
            photos=(picture,) if picture else (),
        )


PROVIDER_ADAPTERS: dict[str, type[ProviderAdapter]] = {
    GoogleAdapter.name:   GoogleAdapter,
    GithubAdapter.name:   GithubAdapter,
    FacebookAdapter.name: FacebookAdapter,
}
