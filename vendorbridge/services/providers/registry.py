"""
Provider Registry - explicit routing from identifier to conformance.

Providers are registered once at startup. Lookup is by identifier only.
"""

from collections.abc import Iterable, Mapping

import httpx
from structlog import get_logger

from vendorbridge.config import ReconcilerConfig, Settings
from vendorbridge.exceptions import ProviderDisabledError, ProviderNotFoundError
from vendorbridge.services.providers.base import BaseVendorProvider, VendorProvider
from vendorbridge.services.providers.fivesim import FiveSimProvider
from vendorbridge.services.providers.grizzly import GrizzlySmsProvider
from vendorbridge.services.providers.jap import JapProvider
from vendorbridge.services.providers.zendit import ZenditProvider
from vendorbridge.services.telemetry import VendorCallRecorder

logger = get_logger(__name__)

PROVIDER_CLASSES: Mapping[str, type[BaseVendorProvider]] = {
    FiveSimProvider.identifier: FiveSimProvider,
    GrizzlySmsProvider.identifier: GrizzlySmsProvider,
    ZenditProvider.identifier: ZenditProvider,
    JapProvider.identifier: JapProvider,
}


class ProviderRegistry:
    """Identifier -> provider lookup."""

    def __init__(self, providers: Iterable[VendorProvider] = ()) -> None:
        self._providers: dict[str, VendorProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: VendorProvider) -> None:
        if provider.identifier in self._providers:
            raise ValueError(f"Provider already registered: {provider.identifier}")
        self._providers[provider.identifier] = provider

    def get(self, identifier: str) -> VendorProvider:
        """
        Any registered provider, enabled or not.

        Polling and webhooks must still reach a provider that was disabled
        after orders were placed with it.

        Raises:
            ProviderNotFoundError: Nothing registered under identifier
        """
        provider = self._providers.get(identifier)
        if provider is None:
            raise ProviderNotFoundError(identifier)
        return provider

    def get_enabled(self, identifier: str) -> VendorProvider:
        """
        A provider that may take new orders.

        Raises:
            ProviderNotFoundError: Nothing registered under identifier
            ProviderDisabledError: Registered but switched off or unconfigured
        """
        provider = self.get(identifier)
        if not provider.is_enabled():
            raise ProviderDisabledError(identifier)
        return provider

    def all(self) -> list[VendorProvider]:
        return list(self._providers.values())

    def enabled(self) -> list[VendorProvider]:
        return [p for p in self._providers.values() if p.is_enabled()]

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        reconciler_config: ReconcilerConfig,
        recorder: VendorCallRecorder | None = None,
    ) -> "ProviderRegistry":
        """Build every known provider from settings."""
        configs = settings.provider_configs()
        registry = cls(
            provider_class(configs[identifier], http_client, reconciler_config, recorder)
            for identifier, provider_class in PROVIDER_CLASSES.items()
        )
        logger.info(
            "provider_registry_built",
            registered=sorted(configs),
            enabled=sorted(p.identifier for p in registry.enabled()),
        )
        return registry
