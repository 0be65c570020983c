"""Payment gateway base interface.

The gateway is the Lightning node that owns our invoices. Each user has at
most one invoice, found by its label: paying it in is a deposit, and deleting
it after paying the user's own invoice closes the withdrawal.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class InvoiceStatus(str, Enum):
    """Invoice status as reported by the node."""

    UNPAID = "unpaid"
    PAID = "paid"
    EXPIRED = "expired"


@dataclass
class Invoice:
    """Invoice stored on the node."""

    label: str
    msatoshi: int
    status: InvoiceStatus
    bolt11: str = ""
    payment_hash: Optional[str] = None
    expires_at: Optional[int] = None


@dataclass
class DecodedPayment:
    """Decoded BOLT11 payment request."""

    msatoshi: int
    payee: Optional[str] = None
    payment_hash: Optional[str] = None
    description: Optional[str] = None


@dataclass
class PaymentResult:
    """Outcome of paying a payment request."""

    success: bool
    payment_hash: Optional[str] = None
    preimage: Optional[str] = None
    msatoshi_sent: Optional[int] = None
    error: Optional[str] = None


class PaymentGateway(ABC):
    """Abstract base class for payment node clients.

    Implementations are process-wide handles and must be safe to call from
    concurrent tasks. Transport failures raise ``GatewayUnavailableError``,
    node-side refusals raise ``GatewayError``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Gateway name."""
        raise NotImplementedError()

    @abstractmethod
    async def get_invoice(self, label: str) -> Optional[Invoice]:
        """Get the most recent invoice for a label, or None."""
        raise NotImplementedError()

    @abstractmethod
    async def create_invoice(
        self, msatoshi: int, label: str, description: str, expiry: int
    ) -> Invoice:
        """Create a new invoice.

        Args:
            msatoshi: Amount in millisatoshi
            label: Unique invoice label
            description: Description embedded in the payment request
            expiry: Seconds until the invoice expires
        """
        raise NotImplementedError()

    @abstractmethod
    async def decode_payment(self, bolt11: str) -> DecodedPayment:
        """Decode a BOLT11 payment request."""
        raise NotImplementedError()

    @abstractmethod
    async def wait_pay(self, bolt11: str) -> PaymentResult:
        """Pay a payment request and wait until it is settled or failed."""
        raise NotImplementedError()

    @abstractmethod
    async def delete_invoice(self, label: str, status: InvoiceStatus) -> None:
        """Delete the invoice with ``label`` if it is in ``status``."""
        raise NotImplementedError()

    async def close(self) -> None:
        """Release network resources."""
        return None
