"""Pytest configuration and fixtures."""

import os

import pytest
from ecdsa import SECP256k1, SigningKey
from ecdsa.util import sigencode_der

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["SERVICE_URL"] = "https://charger.test"
os.environ["GATEWAY"] = "dryrun"
os.environ["PROVIDER"] = "dryrun"
os.environ["SESSION_TTL"] = "0"

from charger.config import Settings
from charger.gateway import DryRunGateway
from charger.providers.dryrun import DryRunProvider
from charger.services import Services, build_services


class Wallet:
    """LNURL wallet holding a linking key."""

    def __init__(self):
        self.key = SigningKey.generate(curve=SECP256k1)

    @property
    def pubkey(self) -> str:
        return self.key.get_verifying_key().to_string("compressed").hex()

    def sign(self, k1: str) -> str:
        return self.key.sign_digest(bytes.fromhex(k1), sigencode=sigencode_der).hex()


async def login(services: Services, wallet: Wallet) -> str:
    """Run a full login and return the session id."""
    challenge = services.auth.issue_challenge()
    await services.auth.verify_challenge(
        challenge.session, wallet.sign(challenge.session), wallet.pubkey
    )
    return challenge.session


def drain_events(queue) -> list[tuple[str, object]]:
    """Pop every queued event as (name, data) pairs."""
    events = []
    while not queue.empty():
        event = queue.get_nowait()
        if event is not None:
            events.append((event.name, event.data))
    return events


@pytest.fixture
def settings() -> Settings:
    return Settings(
        service_url="https://charger.test/",
        gateway="dryrun",
        provider="dryrun",
        session_ttl=0,
    )


@pytest.fixture
def gateway() -> DryRunGateway:
    return DryRunGateway()


@pytest.fixture
def provider() -> DryRunProvider:
    return DryRunProvider()


@pytest.fixture
def services(settings, gateway, provider) -> Services:
    return build_services(settings, gateway=gateway, provider=provider)


@pytest.fixture
def wallet() -> Wallet:
    return Wallet()
