"""Dry-run provider for testing (no real addresses)."""

import hashlib

from charger.providers.base import DepositAddressProvider, DepositQuote


class DryRunProvider(DepositAddressProvider):
    """Simulated provider that generates deterministic fake addresses."""

    @property
    def name(self) -> str:
        return "dryrun"

    async def create_swap(self, bolt11: str) -> DepositQuote:
        """Generate a deterministic fake address for an invoice."""
        digest = hashlib.sha256(bolt11.encode()).hexdigest()
        return DepositQuote(address=f"sim:btc:{digest[:32]}", price="0.00000000")

    async def validate_config(self) -> bool:
        """Always valid for dry-run."""
        return True
