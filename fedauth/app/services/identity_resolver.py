"""
services/identity_resolver.py — Provider profile → user directory entry.

Providers disagree on profile shape: several emails with or without a
verification flag, several photos, sometimes no display name. This module
reduces a ProviderProfile to the canonical ExternalProfile and hands it to
UserDirectory.resolve(). It has no other side effects.
"""

from __future__ import annotations

from fedauth.app.models.identity import ExternalProfile, ProfileEmail, ProviderProfile, User
from fedauth.app.stores import UserDirectory


def pick_email(emails: tuple[ProfileEmail, ...]) -> str | None:
    """
    First verified email; failing that, the first one whose status is unknown.
    An address the provider explicitly marks unverified is never used.
    """
    for email in emails:
        if email.verified is True and email.value:
            return email.value
    for email in emails:
        if email.verified is None and email.value:
            return email.value
    return None


def pick_photo(photos: tuple[str, ...]) -> str | None:
    return next((photo for photo in photos if photo), None)


def to_external_profile(provider: str, profile: ProviderProfile) -> ExternalProfile:
    display_name = profile.display_name or profile.username or f"{provider}User-{profile.id}"
    return ExternalProfile(
        provider=provider,
        provider_id=str(profile.id),
        display_name=display_name,
        email=pick_email(profile.emails),
        photo=pick_photo(profile.photos),
    )


class IdentityResolver:

    def __init__(self, directory: UserDirectory) -> None:
        self._directory = directory

    def resolve(self, provider: str, profile: ProviderProfile) -> User:
        return self._directory.resolve(to_external_profile(provider, profile))
