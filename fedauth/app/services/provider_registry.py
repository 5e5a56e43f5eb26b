"""
services/provider_registry.py — Builds the active identity provider adapters.

Built once per app from the OAUTH_PROVIDERS descriptor list. Each enabled
descriptor is looked up in PROVIDER_ADAPTERS and constructed with the
app's IdentityResolver and TokenService. A descriptor that names an unknown
provider, or whose adapter rejects its options, is logged at ERROR and
skipped; the remaining providers still come up.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from fedauth.app.errors import ProviderConfigurationError, ProviderNotFound
from fedauth.app.services.identity_resolver import IdentityResolver
from fedauth.app.services.providers import PROVIDER_ADAPTERS, ProviderAdapter, ProviderDescriptor
from fedauth.app.services.token_service import TokenService

logger = logging.getLogger(__name__)


class ProviderRegistry:

    def __init__(
        self,
        adapters: Mapping[str, ProviderAdapter],
        failures: Mapping[str, str] | None = None,
    ) -> None:
        self._adapters = dict(adapters)
        # provider name -> reason it failed to initialise
        self.failures = dict(failures or {})

    @classmethod
    def from_descriptors(
        cls,
        descriptors: Iterable[Mapping[str, Any]],
        resolver: IdentityResolver,
        token_service: TokenService,
        oauth=None,
    ) -> "ProviderRegistry":
        adapters: dict[str, ProviderAdapter] = {}
        failures: dict[str, str] = {}

        for raw in descriptors:
            descriptor = ProviderDescriptor.from_mapping(raw)
            name = descriptor.name

            if not descriptor.enabled:
                logger.info("Identity provider %r is disabled (no credentials).", name)
                continue

            adapter_cls = PROVIDER_ADAPTERS.get(name)
            if adapter_cls is None:
                logger.error(
                    "Identity provider %r is not supported; expected one of %s. Skipping.",
                    name,
                    sorted(PROVIDER_ADAPTERS),
                )
                failures[name] = "unsupported provider"
                continue

            try:
                adapter = adapter_cls(descriptor, resolver, token_service)
            except ProviderConfigurationError as exc:
                logger.error("Identity provider %r failed to initialise: %s", name, exc)
                failures[name] = str(exc)
                continue

            if oauth is not None:
                adapter.register_client(oauth)
            adapters[name] = adapter
            logger.info("Identity provider %r initialised.", name)

        if not adapters:
            logger.warning("No identity providers are enabled; federated login is unavailable.")
        return cls(adapters, failures)

    @property
    def names(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, name: str) -> bool:
        return name in self._adapters

    def get(self, name: str) -> ProviderAdapter:
        try:
            return self._adapters[name]
        except KeyError:
            raise ProviderNotFound(name) from None
