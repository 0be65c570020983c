"""Dry-run gateway: an in-memory node for development and testing."""

import asyncio
import logging
import re
import secrets
from typing import Optional

from charger.errors import GatewayError
from charger.gateway.base import (
    DecodedPayment,
    Invoice,
    InvoiceStatus,
    PaymentGateway,
    PaymentResult,
)

logger = logging.getLogger(__name__)

# Simulated payment requests look like lnsim<msatoshi>1<random hex>
PAYMENT_REQUEST_RE = re.compile(r"^lnsim(\d+)1([0-9a-f]+)$")


def make_payment_request(msatoshi: int) -> str:
    """Build a simulated payment request for ``msatoshi``."""
    return f"lnsim{msatoshi}1{secrets.token_hex(16)}"


class DryRunGateway(PaymentGateway):
    """Simulated node that keeps invoices in memory and pays instantly."""

    def __init__(self, hold_payments: bool = False, fail_payments: bool = False):
        """Initialize dry-run gateway.

        Args:
            hold_payments: Block ``wait_pay`` until ``release_payments()``
            fail_payments: Make every payment fail
        """
        self.fail_payments = fail_payments
        self.paid_requests: list[str] = []
        self._invoices: dict[str, Invoice] = {}
        self._release = asyncio.Event()
        if not hold_payments:
            self._release.set()

    @property
    def name(self) -> str:
        return "dryrun"

    async def get_invoice(self, label: str) -> Optional[Invoice]:
        return self._invoices.get(label)

    async def create_invoice(
        self, msatoshi: int, label: str, description: str, expiry: int
    ) -> Invoice:
        if label in self._invoices:
            raise GatewayError(f"Duplicate label '{label}'", code=900)
        invoice = Invoice(
            label=label,
            msatoshi=msatoshi,
            status=InvoiceStatus.UNPAID,
            bolt11=make_payment_request(msatoshi),
        )
        self._invoices[label] = invoice
        logger.info(f"[dry-run] Created invoice {label} for {msatoshi} msat")
        return invoice

    async def decode_payment(self, bolt11: str) -> DecodedPayment:
        match = PAYMENT_REQUEST_RE.match(bolt11 or "")
        if not match:
            raise GatewayError("Invalid bolt11: Bad bech32 string", code=-32602)
        return DecodedPayment(msatoshi=int(match.group(1)), payment_hash=match.group(2))

    async def wait_pay(self, bolt11: str) -> PaymentResult:
        decoded = await self.decode_payment(bolt11)
        await self._release.wait()
        if self.fail_payments:
            raise GatewayError("Ran out of routes to try", code=206)
        self.paid_requests.append(bolt11)
        logger.info(f"[dry-run] Paid {decoded.msatoshi} msat")
        return PaymentResult(
            success=True,
            payment_hash=decoded.payment_hash,
            msatoshi_sent=decoded.msatoshi,
        )

    async def delete_invoice(self, label: str, status: InvoiceStatus) -> None:
        invoice = self._invoices.get(label)
        if invoice is None:
            raise GatewayError("Unknown invoice", code=905)
        if invoice.status != InvoiceStatus(status):
            raise GatewayError(f"Invoice status is {invoice.status.value}", code=906)
        del self._invoices[label]

    def mark_paid(self, label: str) -> None:
        """Simulate the user paying their deposit invoice."""
        self._invoices[label].status = InvoiceStatus.PAID

    def expire(self, label: str) -> None:
        self._invoices[label].status = InvoiceStatus.EXPIRED

    def release_payments(self) -> None:
        """Let held ``wait_pay`` calls complete."""
        self._release.set()
