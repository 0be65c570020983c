"""Utility modules for charger."""

from charger.utils.locks import WithdrawalLock

__all__ = ["WithdrawalLock"]
