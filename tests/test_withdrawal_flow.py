"""Tests for the withdrawal flow: params, execution, settlement and cancel."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from charger.errors import (
    AmountMismatchError,
    DuplicateWithdrawalError,
    GatewayError,
    GatewayUnavailableError,
    InvalidPaymentRequestError,
    InvalidSignatureError,
    UsageError,
)
from charger.gateway import DryRunGateway, make_payment_request
from charger.services import IntentStatus, SettlementStatus, build_services
from tests.conftest import drain_events, login


async def open_intent(services, wallet, msatoshi: int, paid: bool = False) -> str:
    """Store an invoice for the wallet's label and return the label."""
    label = services.settings.label_for(wallet.pubkey)
    await services.gateway.create_invoice(msatoshi, label, label, 60)
    if paid:
        services.gateway.mark_paid(label)
    return label


async def withdraw(services, wallet, session_id: str, msatoshi: int):
    """Request withdraw params and call back with a matching invoice."""
    params = await services.withdrawals.issue_withdraw_params(session_id)
    return await services.withdrawals.execute_withdraw(
        session_id, params.k1, wallet.sign(params.k1), make_payment_request(msatoshi)
    )


class SlowDecodeGateway(DryRunGateway):
    """Dry-run node whose first decode stalls, letting other requests overtake it."""

    def __init__(self, delay: float = 0.1):
        super().__init__()
        self.delay = delay
        self.decodes = 0

    async def decode_payment(self, bolt11: str):
        self.decodes += 1
        if self.decodes == 1:
            await asyncio.sleep(self.delay)
        return await super().decode_payment(bolt11)


class TestStatusQuery:
    """Tests for intent classification."""

    @pytest.mark.asyncio
    async def test_no_invoice(self, services, wallet):
        state = await services.withdrawals.status_query(wallet.pubkey)
        assert state.status == IntentStatus.NONE

    @pytest.mark.asyncio
    async def test_open_invoice(self, services, wallet):
        await open_intent(services, wallet, 21000)

        state = await services.withdrawals.status_query(wallet.pubkey)

        assert state.status == IntentStatus.OPEN
        assert state.msatoshi == 21000

    @pytest.mark.asyncio
    async def test_paid_invoice(self, services, wallet):
        await open_intent(services, wallet, 21000, paid=True)

        state = await services.withdrawals.status_query(wallet.pubkey)

        assert state.status == IntentStatus.PAID
        assert state.msatoshi == 21000


class TestWithdrawParams:
    """Tests for withdraw parameter issuance."""

    @pytest.mark.asyncio
    async def test_requires_login(self, services):
        with pytest.raises(UsageError):
            await services.withdrawals.issue_withdraw_params("unknown-session")

    @pytest.mark.asyncio
    async def test_requires_intent(self, services, wallet):
        session_id = await login(services, wallet)
        with pytest.raises(UsageError):
            await services.withdrawals.issue_withdraw_params(session_id)

    @pytest.mark.asyncio
    async def test_fixed_amount_and_fresh_k1(self, services, wallet):
        session_id = await login(services, wallet)
        await open_intent(services, wallet, 21000)

        params = await services.withdrawals.issue_withdraw_params(session_id)

        assert params.min_withdrawable == params.max_withdrawable == 21000
        assert params.k1 != session_id
        assert params.callback == f"https://charger.test/withdraw-callback?session={session_id}"
        assert params.to_response() == {
            "callback": params.callback,
            "k1": params.k1,
            "minWithdrawable": 21000,
            "maxWithdrawable": 21000,
            "defaultDescription": "charger.alhur.es withdraw",
            "tag": "withdrawRequest",
        }

    @pytest.mark.asyncio
    async def test_each_request_gets_new_k1(self, services, wallet):
        session_id = await login(services, wallet)
        await open_intent(services, wallet, 21000)

        first = await services.withdrawals.issue_withdraw_params(session_id)
        second = await services.withdrawals.issue_withdraw_params(session_id)

        assert first.k1 != second.k1

    @pytest.mark.asyncio
    async def test_gateway_down(self, services, wallet):
        session_id = await login(services, wallet)
        services.gateway.get_invoice = AsyncMock(side_effect=GatewayUnavailableError())

        with pytest.raises(GatewayUnavailableError):
            await services.withdrawals.issue_withdraw_params(session_id)


class TestExecuteWithdraw:
    """Tests for withdrawal validation and dispatch."""

    @pytest.mark.asyncio
    async def test_scenario_login_withdraw_processed(self, services, wallet):
        """Bound session with a 21000 msat intent withdraws and gets notified."""
        challenge = services.auth.issue_challenge()
        session_id = challenge.session
        queue = services.sessions.subscribe(session_id).connect()
        await services.auth.verify_challenge(session_id, wallet.sign(session_id), wallet.pubkey)
        label = await open_intent(services, wallet, 21000)

        state = await services.withdrawals.status_query(wallet.pubkey)
        assert (state.status, state.msatoshi) == (IntentStatus.OPEN, 21000)

        params = await services.withdrawals.issue_withdraw_params(session_id)
        assert params.min_withdrawable == params.max_withdrawable == 21000

        settlement = await services.withdrawals.execute_withdraw(
            session_id, params.k1, wallet.sign(params.k1), make_payment_request(21000)
        )
        assert settlement.msatoshi == 21000

        await services.withdrawals.wait_settlement(label)

        events = drain_events(queue)
        assert events[-2:] == [("withdraw", {"processing": True}), ("withdraw", {"processed": True})]
        assert settlement.status == SettlementStatus.PAID
        assert settlement.finished_at is not None
        assert services.gateway.paid_requests == [settlement.payment_request]

    @pytest.mark.asyncio
    async def test_amount_mismatch(self, services, gateway, wallet):
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 500000, paid=True)

        with pytest.raises(AmountMismatchError):
            await withdraw(services, wallet, session_id, 500001)

        assert not services.locks.is_locked(label)
        assert services.withdrawals.get_settlement(label) is None
        assert gateway.paid_requests == []
        assert (await gateway.get_invoice(label)) is not None

    @pytest.mark.asyncio
    async def test_exact_amount_proceeds(self, services, wallet):
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 500000, paid=True)

        await withdraw(services, wallet, session_id, 500000)
        settlement = await services.withdrawals.wait_settlement(label)

        assert settlement.status == SettlementStatus.PAID

    @pytest.mark.asyncio
    async def test_unbound_session(self, services, wallet):
        with pytest.raises(UsageError):
            await services.withdrawals.execute_withdraw(
                "nobody", "00" * 32, wallet.sign("00" * 32), make_payment_request(1000)
            )

    @pytest.mark.asyncio
    async def test_invalid_signature(self, services, wallet):
        session_id = await login(services, wallet)
        await open_intent(services, wallet, 21000)
        params = await services.withdrawals.issue_withdraw_params(session_id)

        with pytest.raises(InvalidSignatureError):
            await services.withdrawals.execute_withdraw(
                session_id, params.k1, wallet.sign(session_id), make_payment_request(21000)
            )

    @pytest.mark.asyncio
    async def test_login_signature_cannot_be_replayed(self, services, wallet):
        """The login k1 was never issued as a withdraw nonce."""
        session_id = await login(services, wallet)
        await open_intent(services, wallet, 21000)
        await services.withdrawals.issue_withdraw_params(session_id)

        with pytest.raises(UsageError):
            await services.withdrawals.execute_withdraw(
                session_id, session_id, wallet.sign(session_id), make_payment_request(21000)
            )

    @pytest.mark.asyncio
    async def test_withdraw_nonce_single_use(self, services, wallet):
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000, paid=True)
        params = await services.withdrawals.issue_withdraw_params(session_id)
        sig = wallet.sign(params.k1)

        await services.withdrawals.execute_withdraw(
            session_id, params.k1, sig, make_payment_request(21000)
        )
        await services.withdrawals.wait_settlement(label)
        await open_intent(services, wallet, 21000, paid=True)

        with pytest.raises(UsageError):
            await services.withdrawals.execute_withdraw(
                session_id, params.k1, sig, make_payment_request(21000)
            )

    @pytest.mark.asyncio
    async def test_invalid_payment_request(self, services, wallet):
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000)
        params = await services.withdrawals.issue_withdraw_params(session_id)

        with pytest.raises(InvalidPaymentRequestError):
            await services.withdrawals.execute_withdraw(
                session_id, params.k1, wallet.sign(params.k1), "lnbc-garbage"
            )
        assert not services.locks.is_locked(label)

    @pytest.mark.asyncio
    async def test_gateway_unavailable_on_balance(self, services, wallet):
        session_id = await login(services, wallet)
        await open_intent(services, wallet, 21000)
        params = await services.withdrawals.issue_withdraw_params(session_id)
        services.gateway.get_invoice = AsyncMock(side_effect=GatewayUnavailableError())

        with pytest.raises(GatewayUnavailableError):
            await services.withdrawals.execute_withdraw(
                session_id, params.k1, wallet.sign(params.k1), make_payment_request(21000)
            )


class TestConcurrency:
    """Tests for at-most-once settlement per label."""

    @pytest.mark.asyncio
    async def test_concurrent_withdrawals_single_settlement(self, settings, provider, wallet):
        gateway = DryRunGateway(hold_payments=True)
        services = build_services(settings, gateway=gateway, provider=provider)
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000, paid=True)
        params = await services.withdrawals.issue_withdraw_params(session_id)
        sig = wallet.sign(params.k1)
        gateway.wait_pay = AsyncMock(wraps=gateway.wait_pay)

        results = await asyncio.gather(
            services.withdrawals.execute_withdraw(
                session_id, params.k1, sig, make_payment_request(21000)
            ),
            services.withdrawals.execute_withdraw(
                session_id, params.k1, sig, make_payment_request(21000)
            ),
            return_exceptions=True,
        )

        duplicates = [r for r in results if isinstance(r, DuplicateWithdrawalError)]
        settlements = [r for r in results if not isinstance(r, Exception)]
        assert len(duplicates) == 1
        assert len(settlements) == 1
        assert services.locks.is_locked(label)

        gateway.release_payments()
        await services.withdrawals.wait_settlement(label)

        assert gateway.wait_pay.await_count == 1
        assert len(gateway.paid_requests) == 1
        assert not services.locks.is_locked(label)

    @pytest.mark.asyncio
    async def test_withdraw_refused_while_settling(self, settings, provider, wallet):
        gateway = DryRunGateway(hold_payments=True)
        services = build_services(settings, gateway=gateway, provider=provider)
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000, paid=True)

        await withdraw(services, wallet, session_id, 21000)
        await asyncio.sleep(0.01)
        assert services.withdrawals.pending_settlements()

        with pytest.raises(DuplicateWithdrawalError):
            await withdraw(services, wallet, session_id, 21000)

        gateway.release_payments()
        await services.withdrawals.wait_settlement(label)
        assert services.withdrawals.pending_settlements() == []


    @pytest.mark.asyncio
    async def test_same_k1_after_settlement_finished(self, settings, provider, wallet):
        """A callback overtaken by a whole settlement cannot pay again."""
        gateway = SlowDecodeGateway()
        services = build_services(settings, gateway=gateway, provider=provider)
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000, paid=True)
        params = await services.withdrawals.issue_withdraw_params(session_id)
        sig = wallet.sign(params.k1)

        async def overtaking():
            await asyncio.sleep(0.01)
            settlement = await services.withdrawals.execute_withdraw(
                session_id, params.k1, sig, make_payment_request(21000)
            )
            await services.withdrawals.wait_settlement(label)
            return settlement

        results = await asyncio.gather(
            services.withdrawals.execute_withdraw(
                session_id, params.k1, sig, make_payment_request(21000)
            ),
            overtaking(),
            return_exceptions=True,
        )

        assert isinstance(results[0], UsageError)
        assert results[1].status == SettlementStatus.PAID
        assert len(gateway.paid_requests) == 1
        assert not services.locks.is_locked(label)

    @pytest.mark.asyncio
    async def test_other_k1_sees_spent_balance(self, settings, provider, wallet):
        """Two issued k1s still give a single payout."""
        gateway = SlowDecodeGateway()
        services = build_services(settings, gateway=gateway, provider=provider)
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000, paid=True)
        first = await services.withdrawals.issue_withdraw_params(session_id)
        second = await services.withdrawals.issue_withdraw_params(session_id)

        async def overtaking():
            await asyncio.sleep(0.01)
            await services.withdrawals.execute_withdraw(
                session_id, second.k1, wallet.sign(second.k1), make_payment_request(21000)
            )
            await services.withdrawals.wait_settlement(label)

        results = await asyncio.gather(
            services.withdrawals.execute_withdraw(
                session_id, first.k1, wallet.sign(first.k1), make_payment_request(21000)
            ),
            overtaking(),
            return_exceptions=True,
        )

        assert isinstance(results[0], UsageError)
        assert results[1] is None
        assert len(gateway.paid_requests) == 1
        assert not services.locks.is_locked(label)


class TestSettlement:
    """Tests for the background settlement task."""

    @pytest.mark.asyncio
    async def test_settlement_frees_label_for_new_intent(self, services, gateway, wallet):
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000, paid=True)

        await withdraw(services, wallet, session_id, 21000)
        await services.withdrawals.wait_settlement(label)

        assert await gateway.get_invoice(label) is None
        assert not services.locks.is_locked(label)

        await open_intent(services, wallet, 42000, paid=True)
        settlement = await withdraw(services, wallet, session_id, 42000)
        await services.withdrawals.wait_settlement(label)

        assert settlement.status == SettlementStatus.PAID
        assert len(gateway.paid_requests) == 2

    @pytest.mark.asyncio
    async def test_failed_payment_releases_lock(self, settings, provider, wallet):
        gateway = DryRunGateway(fail_payments=True)
        services = build_services(settings, gateway=gateway, provider=provider)
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000, paid=True)
        queue = services.sessions.subscribe(session_id).connect()

        await withdraw(services, wallet, session_id, 21000)
        settlement = await services.withdrawals.wait_settlement(label)

        assert settlement.status == SettlementStatus.FAILED
        assert settlement.error
        assert not services.locks.is_locked(label)
        # Invoice is deleted whatever the payment outcome
        assert await gateway.get_invoice(label) is None
        assert drain_events(queue)[-1] == ("withdraw", {"processed": True})

    @pytest.mark.asyncio
    async def test_delete_failure_still_releases_lock(self, services, gateway, wallet):
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000)

        await withdraw(services, wallet, session_id, 21000)
        settlement = await services.withdrawals.wait_settlement(label)

        # The open invoice is not "paid" so the node refuses to delete it
        assert settlement.status == SettlementStatus.PAID
        assert await gateway.get_invoice(label) is not None
        assert not services.locks.is_locked(label)

        # So the surviving open invoice can be withdrawn again
        await withdraw(services, wallet, session_id, 21000)
        await services.withdrawals.wait_settlement(label)
        assert len(gateway.paid_requests) == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_failed(self, services, gateway, wallet):
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000, paid=True)
        gateway.wait_pay = AsyncMock(side_effect=RuntimeError("boom"))

        await withdraw(services, wallet, session_id, 21000)
        settlement = await services.withdrawals.wait_settlement(label)

        assert settlement.status == SettlementStatus.FAILED
        assert settlement.error == "boom"
        assert not services.locks.is_locked(label)

    @pytest.mark.asyncio
    async def test_drain_waits_for_settlements(self, settings, provider, wallet):
        gateway = DryRunGateway(hold_payments=True)
        services = build_services(settings, gateway=gateway, provider=provider)
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000, paid=True)
        await withdraw(services, wallet, session_id, 21000)

        await services.withdrawals.drain(timeout=0.05)
        assert services.withdrawals.get_settlement(label).status == SettlementStatus.PENDING

        gateway.release_payments()
        await services.withdrawals.drain(timeout=1)
        assert services.withdrawals.get_settlement(label).status == SettlementStatus.PAID


class TestCancelIntent:
    """Tests for intent cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_then_status_none(self, services, wallet):
        session_id = await login(services, wallet)
        await open_intent(services, wallet, 21000)
        queue = services.sessions.subscribe(session_id).connect()

        await services.withdrawals.cancel_intent(session_id)

        state = await services.withdrawals.status_query(wallet.pubkey)
        assert state.status == IntentStatus.NONE
        assert drain_events(queue) == [
            ("withdraw", {"waiting": False}),
            ("btc-deposit", None),
        ]

    @pytest.mark.asyncio
    async def test_cancel_expired_intent(self, services, gateway, wallet):
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000)
        gateway.expire(label)

        await services.withdrawals.cancel_intent(session_id)

        assert await gateway.get_invoice(label) is None
        state = await services.withdrawals.status_query(wallet.pubkey)
        assert state.status == IntentStatus.NONE

    @pytest.mark.asyncio
    async def test_cancel_requires_login(self, services):
        with pytest.raises(UsageError):
            await services.withdrawals.cancel_intent("nobody")

    @pytest.mark.asyncio
    async def test_cancel_paid_invoice_refused(self, services, gateway, wallet):
        session_id = await login(services, wallet)
        label = await open_intent(services, wallet, 21000, paid=True)

        with pytest.raises(GatewayError):
            await services.withdrawals.cancel_intent(session_id)

        assert await gateway.get_invoice(label) is not None
