"""Deposit address provider base interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class DepositQuote:
    """On-chain address that pays a Lightning invoice once funded."""

    address: str
    price: str  # BTC amount to send, as quoted by the provider

    def to_event(self) -> dict:
        return {"address": self.address, "price": self.price}


class DepositAddressProvider(ABC):
    """Abstract base class for on-chain to Lightning swap services."""

    @abstractmethod
    async def create_swap(self, bolt11: str) -> DepositQuote:
        """Allocate an on-chain address that will pay ``bolt11``.

        Args:
            bolt11: Payment request of the user's deposit invoice

        Returns:
            DepositQuote with the address and BTC price

        Raises:
            ProviderError: If the service fails or refuses the invoice
        """
        raise NotImplementedError()

    @abstractmethod
    async def validate_config(self) -> bool:
        """Validate provider configuration.

        Returns:
            True if configuration is valid
        """
        raise NotImplementedError()

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        raise NotImplementedError()
