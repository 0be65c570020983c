"""Provider factory for creating deposit address providers."""

from typing import Optional

from charger.config import get_settings
from charger.providers.base import DepositAddressProvider
from charger.providers.dryrun import DryRunProvider
from charger.providers.golightning import GoLightningProvider

# Singleton instance
_provider_instance: Optional[DepositAddressProvider] = None


def get_provider() -> DepositAddressProvider:
    """Get the configured deposit address provider.

    Provider is selected based on PROVIDER environment variable:
    - golightning (default): golightning.club swap service
    - dryrun: Simulated addresses for testing

    Returns:
        Configured DepositAddressProvider instance
    """
    global _provider_instance

    if _provider_instance is not None:
        return _provider_instance

    settings = get_settings()

    if settings.provider.lower() == "dryrun":
        _provider_instance = DryRunProvider()
    else:
        _provider_instance = GoLightningProvider(
            url=settings.deposit_service_url,
            timeout=settings.deposit_service_timeout,
        )

    return _provider_instance


def reset_provider() -> None:
    """Reset provider instance (useful for testing)."""
    global _provider_instance
    _provider_instance = None
