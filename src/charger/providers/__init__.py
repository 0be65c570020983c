"""Deposit address providers."""

from charger.providers.base import DepositAddressProvider, DepositQuote
from charger.providers.factory import get_provider, reset_provider

__all__ = ["DepositAddressProvider", "DepositQuote", "get_provider", "reset_provider"]
