"""Concurrency control for withdrawals.

Provides a per-label flag that guards settlement so that a user's invoice is
never paid out twice, even when wallets retry the callback concurrently.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class WithdrawalLock:
    """Registry of labels that currently have a settlement in flight.

    Unlike a plain ``asyncio.Lock`` the second caller does not wait: it is told
    the label is busy and must give up. Check and set happen under a single
    registry lock so two requests can never both observe the label as free.

    Example:
        if not await locks.acquire(label):
            raise DuplicateWithdrawalError()
        try:
            await pay()
        finally:
            await locks.release(label)
    """

    def __init__(self):
        self._in_flight: dict[str, bool] = {}
        self._registry_lock = asyncio.Lock()

    async def acquire(self, label: str) -> bool:
        """Mark a label as busy.

        Args:
            label: Invoice label of the withdrawing user

        Returns:
            True if the caller now owns the label, False if it was already taken
        """
        async with self._registry_lock:
            if self._in_flight.get(label):
                logger.warning(f"Withdrawal already in flight for {label}")
                return False
            self._in_flight[label] = True
            logger.debug(f"Withdrawal lock acquired: {label}")
            return True

    async def release(self, label: str) -> None:
        """Remove the label entry, whatever its state."""
        async with self._registry_lock:
            self._in_flight.pop(label, None)
            logger.debug(f"Withdrawal lock released: {label}")

    def is_locked(self, label: str) -> bool:
        return self._in_flight.get(label, False)

    def in_flight(self) -> list[str]:
        """Labels with a settlement currently running."""
        return [label for label, busy in self._in_flight.items() if busy]

    def clear(self) -> None:
        """Clear all entries (useful for testing)."""
        self._in_flight.clear()
