"""Deposit intent flow.

Creates the user's invoice on the node and asks the swap provider for an
on-chain address that pays it. The browser learns the address through the
``btc-deposit`` event.
"""

import logging

from charger.config import Settings
from charger.errors import ChargerError, UsageError
from charger.gateway.base import InvoiceStatus, PaymentGateway
from charger.providers.base import DepositAddressProvider, DepositQuote
from charger.services.withdrawal import WithdrawalFlow
from charger.sessions import DEPOSIT_EVENT, SessionRegistry

logger = logging.getLogger(__name__)


class DepositIntentFlow:
    """Turns a requested amount into an invoice plus deposit address."""

    def __init__(
        self,
        gateway: PaymentGateway,
        provider: DepositAddressProvider,
        sessions: SessionRegistry,
        withdrawals: WithdrawalFlow,
        settings: Settings,
    ):
        self.gateway = gateway
        self.provider = provider
        self.sessions = sessions
        self.withdrawals = withdrawals
        self.settings = settings

    async def issue_deposit_invoice(self, session_id: str, amount_sat: int) -> DepositQuote:
        """Create a deposit invoice and push its on-chain address.

        Args:
            session_id: Logged-in session
            amount_sat: Amount in satoshi

        Returns:
            The provider's quote

        Raises:
            UsageError: Unknown session or non-positive amount
            ChargerError: Node or provider failure (logged, no event sent)
        """
        pubkey = self.withdrawals.require_pubkey(session_id)
        if amount_sat <= 0:
            raise UsageError("Amount must be positive.")

        label = self.settings.label_for(pubkey)
        logger.debug(f"Deposit intent for {pubkey}: {amount_sat} sat")

        try:
            existing = await self.gateway.get_invoice(label)
            if existing is not None and existing.status == InvoiceStatus.EXPIRED:
                await self.gateway.delete_invoice(label, InvoiceStatus.EXPIRED)

            invoice = await self.gateway.create_invoice(
                amount_sat * 1000, label, label, self.settings.invoice_expiry
            )
            quote = await self.provider.create_swap(invoice.bolt11)
        except ChargerError as e:
            logger.error(f"Deposit intent failed for {pubkey} ({amount_sat} sat): {e.reason}")
            raise

        self.sessions.publish(session_id, DEPOSIT_EVENT, quote.to_event())
        return quote
