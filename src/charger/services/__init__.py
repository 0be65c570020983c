"""Application services and their wiring."""

from dataclasses import dataclass
from typing import Optional

from charger.config import Settings, get_settings
from charger.gateway import PaymentGateway, get_gateway
from charger.providers import DepositAddressProvider, get_provider
from charger.services.auth import AuthChallengeFlow, LoginChallenge
from charger.services.deposit import DepositIntentFlow
from charger.services.withdrawal import (
    IntentState,
    IntentStatus,
    Settlement,
    SettlementStatus,
    WithdrawalFlow,
    WithdrawParams,
)
from charger.sessions import SessionRegistry
from charger.utils.locks import WithdrawalLock


@dataclass
class Services:
    """Everything a request handler needs, shared by the whole process."""

    settings: Settings
    sessions: SessionRegistry
    locks: WithdrawalLock
    gateway: PaymentGateway
    provider: DepositAddressProvider
    withdrawals: WithdrawalFlow
    auth: AuthChallengeFlow
    deposits: DepositIntentFlow


def build_services(
    settings: Optional[Settings] = None,
    gateway: Optional[PaymentGateway] = None,
    provider: Optional[DepositAddressProvider] = None,
) -> Services:
    """Wire the flows together around one registry and one lock map."""
    settings = settings or get_settings()
    gateway = gateway or get_gateway()
    provider = provider or get_provider()
    sessions = SessionRegistry()
    locks = WithdrawalLock()

    withdrawals = WithdrawalFlow(gateway, sessions, locks, settings)
    return Services(
        settings=settings,
        sessions=sessions,
        locks=locks,
        gateway=gateway,
        provider=provider,
        withdrawals=withdrawals,
        auth=AuthChallengeFlow(sessions, withdrawals, settings),
        deposits=DepositIntentFlow(gateway, provider, sessions, withdrawals, settings),
    )


__all__ = [
    "AuthChallengeFlow",
    "DepositIntentFlow",
    "IntentState",
    "IntentStatus",
    "LoginChallenge",
    "Services",
    "Settlement",
    "SettlementStatus",
    "WithdrawParams",
    "WithdrawalFlow",
    "build_services",
]
