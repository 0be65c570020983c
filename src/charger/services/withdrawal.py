"""Withdrawal flow (LNURL-withdraw).

A user's balance is the invoice stored under their label. Withdrawing means
paying an invoice of exactly that amount that the user's wallet hands us,
then deleting the stored invoice so the label can be used again:

1. Wallet asks for withdraw parameters (min = max = balance, fresh k1)
2. Wallet calls back with k1, its signature and a payment request
3. We check signature, balance and payment request amount
4. The per-label lock is taken and settlement starts in the background
5. Settlement pays, deletes the invoice, releases the lock, notifies
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from charger import lnurl
from charger.config import Settings
from charger.errors import (
    AmountMismatchError,
    ChargerError,
    DuplicateWithdrawalError,
    GatewayError,
    GatewayUnavailableError,
    InvalidPaymentRequestError,
    InvalidSignatureError,
    UsageError,
)
from charger.gateway.base import Invoice, InvoiceStatus, PaymentGateway
from charger.sessions import DEPOSIT_EVENT, WITHDRAW_EVENT, SessionRegistry
from charger.utils.locks import WithdrawalLock

logger = logging.getLogger(__name__)


class IntentStatus(str, Enum):
    """State of a user's withdrawal intent."""

    NONE = "none"
    OPEN = "open"
    PAID = "paid"
    EXPIRED = "expired"


@dataclass
class IntentState:
    status: IntentStatus
    msatoshi: int = 0


class SettlementStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


@dataclass
class Settlement:
    """A dispatched withdrawal payment and its outcome."""

    label: str
    session_id: str
    payment_request: str
    msatoshi: int
    k1: str = ""
    status: SettlementStatus = SettlementStatus.PENDING
    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.status != SettlementStatus.PENDING


@dataclass
class WithdrawParams:
    """LNURL-withdraw parameters offered to a wallet."""

    callback: str
    k1: str
    min_withdrawable: int
    max_withdrawable: int
    default_description: str
    tag: str = "withdrawRequest"

    def to_response(self) -> dict:
        return {
            "callback": self.callback,
            "k1": self.k1,
            "minWithdrawable": self.min_withdrawable,
            "maxWithdrawable": self.max_withdrawable,
            "defaultDescription": self.default_description,
            "tag": self.tag,
        }


_INTENT_STATUS = {
    InvoiceStatus.UNPAID: IntentStatus.OPEN,
    InvoiceStatus.PAID: IntentStatus.PAID,
    InvoiceStatus.EXPIRED: IntentStatus.EXPIRED,
}


class WithdrawalFlow:
    """Issues withdraw parameters and settles withdrawals."""

    def __init__(
        self,
        gateway: PaymentGateway,
        sessions: SessionRegistry,
        locks: WithdrawalLock,
        settings: Settings,
    ):
        self.gateway = gateway
        self.sessions = sessions
        self.locks = locks
        self.settings = settings
        self._settlements: dict[str, Settlement] = {}

    def require_pubkey(self, session_id: str) -> str:
        """Get the key bound to a session.

        Raises:
            UsageError: If nobody has logged in with this session
        """
        pubkey = self.sessions.lookup_pubkey(session_id)
        if pubkey is None:
            raise UsageError("Unknown session, please log in first.")
        return pubkey

    def withdraw_lnurl(self, session_id: str) -> str:
        """Encoded LNURL pointing at the withdraw-request endpoint."""
        return lnurl.encode(f"{self.settings.base_url}/withdraw-request?session={session_id}")

    async def status_query(self, pubkey: str) -> IntentState:
        """Classify the most recent invoice stored for a key."""
        invoice = await self.gateway.get_invoice(self.settings.label_for(pubkey))
        if invoice is None:
            return IntentState(status=IntentStatus.NONE)
        return IntentState(status=_INTENT_STATUS[invoice.status], msatoshi=invoice.msatoshi)

    async def _fetch_balance(self, label: str) -> Invoice:
        try:
            invoice = await self.gateway.get_invoice(label)
        except GatewayError as e:
            logger.error(f"listinvoices failed for {label}: {e.reason}")
            raise GatewayUnavailableError() from e
        if invoice is None:
            raise UsageError("There is nothing to withdraw.")
        return invoice

    async def issue_withdraw_params(self, session_id: str) -> WithdrawParams:
        """Build fixed-amount withdraw parameters for a logged-in session."""
        pubkey = self.require_pubkey(session_id)
        invoice = await self._fetch_balance(self.settings.label_for(pubkey))

        # A new k1 so the login signature cannot double as a withdraw proof
        k1 = lnurl.new_nonce()
        while k1 == session_id:
            k1 = lnurl.new_nonce()
        self.sessions.add_withdraw_nonce(session_id, k1)

        return WithdrawParams(
            callback=f"{self.settings.base_url}/withdraw-callback?session={session_id}",
            k1=k1,
            min_withdrawable=invoice.msatoshi,
            max_withdrawable=invoice.msatoshi,
            default_description=self.settings.withdraw_description,
        )

    async def execute_withdraw(
        self, session_id: str, k1: str, sig: str, payment_request: str
    ) -> Settlement:
        """Validate a withdraw callback and start settlement.

        Returns as soon as settlement is dispatched; the payment itself runs
        in a background task that outlives the request.

        Raises:
            UsageError: Session not logged in, or k1 not issued to it (or spent)
            InvalidSignatureError: Signature over k1 does not verify
            GatewayUnavailableError: Node unreachable while checking balance
            InvalidPaymentRequestError: Payment request cannot be decoded
            AmountMismatchError: Payment request amount differs from balance
            DuplicateWithdrawalError: A settlement is already running
        """
        pubkey = self.require_pubkey(session_id)
        label = self.settings.label_for(pubkey)

        if not lnurl.verify_signature(k1, sig, pubkey):
            logger.warning(f"Withdraw signature verification failed for {pubkey}")
            raise InvalidSignatureError()

        invoice = await self._fetch_balance(label)

        try:
            decoded = await self.gateway.decode_payment(payment_request)
        except GatewayError as e:
            logger.error(f"Invalid invoice received from {pubkey}: {payment_request} ({e.reason})")
            raise InvalidPaymentRequestError() from e

        if invoice.msatoshi != decoded.msatoshi:
            logger.error(
                f"Wrong amount invoice from {pubkey}: "
                f"balance {invoice.msatoshi} msat, invoice {decoded.msatoshi} msat"
            )
            raise AmountMismatchError()

        if not await self.locks.acquire(label):
            logger.warning(f"Duplicated withdraw attempt prevented for {pubkey}")
            raise DuplicateWithdrawalError()

        # Checks above ran before the lock, another settlement may have
        # finished in between
        try:
            if not self.sessions.consume_withdraw_nonce(session_id, k1):
                logger.warning(f"Withdraw attempted with unknown or spent k1 for {pubkey}")
                raise UsageError("Unknown k1, please request a new withdraw link.")
            current = await self._fetch_balance(label)
            if current.msatoshi != decoded.msatoshi:
                logger.warning(
                    f"Balance of {pubkey} changed to {current.msatoshi} msat during withdraw"
                )
                raise DuplicateWithdrawalError()
        except ChargerError:
            await self.locks.release(label)
            raise

        settlement = Settlement(
            label=label,
            session_id=session_id,
            payment_request=payment_request,
            msatoshi=decoded.msatoshi,
            k1=k1,
        )
        self._settlements[label] = settlement
        settlement.task = asyncio.create_task(self._settle(settlement))

        self.sessions.publish(session_id, WITHDRAW_EVENT, {"processing": True})
        logger.info(f"Withdrawal of {decoded.msatoshi} msat started for {pubkey}")
        return settlement

    async def _settle(self, settlement: Settlement) -> None:
        label = settlement.label
        try:
            try:
                result = await self.gateway.wait_pay(settlement.payment_request)
                if result.success:
                    settlement.status = SettlementStatus.PAID
                    logger.info(f"Paid {settlement.msatoshi} msat for {label}")
                else:
                    settlement.status = SettlementStatus.FAILED
                    settlement.error = result.error
                    logger.error(f"Failed to pay {settlement.payment_request}: {result.error}")
            except ChargerError as e:
                settlement.status = SettlementStatus.FAILED
                settlement.error = e.reason
                logger.error(f"Failed to pay {settlement.payment_request}: {e.reason}")

            # Frees the label so the user can deposit again
            try:
                await self.gateway.delete_invoice(label, InvoiceStatus.PAID)
            except ChargerError as e:
                logger.error(f"Failed to delete invoice {label} after payment: {e.reason}")
        except Exception as e:
            settlement.status = SettlementStatus.FAILED
            settlement.error = str(e)
            logger.exception(f"Settlement for {label} crashed")
        finally:
            if settlement.status == SettlementStatus.PENDING:
                settlement.status = SettlementStatus.FAILED
                settlement.error = "cancelled"
            settlement.finished_at = datetime.now(timezone.utc)
            await self.locks.release(label)
            self.sessions.publish(settlement.session_id, WITHDRAW_EVENT, {"processed": True})

    def get_settlement(self, label: str) -> Optional[Settlement]:
        """Most recent settlement dispatched for a label."""
        return self._settlements.get(label)

    async def wait_settlement(self, label: str) -> Optional[Settlement]:
        """Wait for the label's latest settlement to finish."""
        settlement = self._settlements.get(label)
        if settlement is not None and settlement.task is not None:
            await asyncio.gather(settlement.task, return_exceptions=True)
        return settlement

    def pending_settlements(self) -> list[Settlement]:
        return [s for s in self._settlements.values() if not s.done]

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for running settlements, used on shutdown."""
        tasks = [s.task for s in self.pending_settlements() if s.task is not None]
        if not tasks:
            return
        logger.info(f"Waiting for {len(tasks)} settlements to finish")
        await asyncio.wait(tasks, timeout=timeout)

    async def cancel_intent(self, session_id: str) -> None:
        """Delete the user's unpaid or expired invoice and reset the client state.

        A paid invoice is never deleted here, the node refuses it.
        """
        pubkey = self.require_pubkey(session_id)
        label = self.settings.label_for(pubkey)

        try:
            invoice = await self.gateway.get_invoice(label)
            status = InvoiceStatus.UNPAID
            if invoice is not None and invoice.status == InvoiceStatus.EXPIRED:
                status = InvoiceStatus.EXPIRED
            await self.gateway.delete_invoice(label, status)
        except ChargerError as e:
            logger.error(f"Failed to delete invoice {label} on cancel: {e.reason}")
            raise

        self.sessions.publish(session_id, WITHDRAW_EVENT, {"waiting": False})
        self.sessions.publish(session_id, DEPOSIT_EVENT, None)
