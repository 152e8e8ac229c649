"""Vendor provider conformances."""

from vendorbridge.services.providers.base import (
    CONTRACT_VERSION,
    BaseVendorProvider,
    VendorProvider,
)
from vendorbridge.services.providers.fivesim import FiveSimProvider
from vendorbridge.services.providers.grizzly import GrizzlySmsProvider
from vendorbridge.services.providers.jap import JapProvider
from vendorbridge.services.providers.registry import PROVIDER_CLASSES, ProviderRegistry
from vendorbridge.services.providers.zendit import ZenditProvider

__all__ = [
    "CONTRACT_VERSION",
    "BaseVendorProvider",
    "FiveSimProvider",
    "GrizzlySmsProvider",
    "JapProvider",
    "PROVIDER_CLASSES",
    "ProviderRegistry",
    "VendorProvider",
    "ZenditProvider",
]
