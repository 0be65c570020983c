"""Login flow (LNURL-auth).

The browser gets a session id and shows it as an LNURL QR code. The wallet
signs the session id with its linking key and calls us back; we bind the key
to the session and tell the browser who logged in and what it can do next.
"""

import logging
from dataclasses import dataclass

from charger import lnurl
from charger.config import Settings
from charger.errors import ChargerError, InvalidSignatureError
from charger.services.withdrawal import IntentStatus, WithdrawalFlow
from charger.sessions import LOGIN_EVENT, WITHDRAW_EVENT, SessionRegistry

logger = logging.getLogger(__name__)


@dataclass
class LoginChallenge:
    session: str
    lnurl: str

    def to_response(self) -> dict:
        return {"session": self.session, "lnurl": self.lnurl}


class AuthChallengeFlow:
    """Issues login challenges and binds verified keys to sessions."""

    def __init__(
        self,
        sessions: SessionRegistry,
        withdrawals: WithdrawalFlow,
        settings: Settings,
    ):
        self.sessions = sessions
        self.withdrawals = withdrawals
        self.settings = settings

    def issue_challenge(self) -> LoginChallenge:
        """Allocate a session and encode its login URL."""
        session_id = self.sessions.create_session()
        url = f"{self.settings.base_url}/login-callback?tag=login&k1={session_id}"
        return LoginChallenge(session=session_id, lnurl=lnurl.encode(url))

    async def verify_challenge(self, k1: str, sig: str, key: str) -> None:
        """Verify a wallet's login signature and bind its key.

        Args:
            k1: The challenge, which is also the session id
            sig: DER signature over k1, hex
            key: Wallet linking public key, hex

        Raises:
            InvalidSignatureError: If the signature does not verify
            UsageError: If the session is already bound to another key
        """
        if not lnurl.verify_signature(k1, sig, key):
            logger.warning(f"Login signature verification failed for session {k1[:8]}")
            raise InvalidSignatureError()

        session_id = k1
        self.sessions.bind_pubkey(session_id, key)
        logger.debug(f"Valid login: session {session_id[:8]} key {key}")

        if self.sessions.get_channel(session_id) is None:
            return

        self.sessions.publish(session_id, LOGIN_EVENT, key)
        await self.push_withdraw_state(session_id, key)

    async def push_withdraw_state(self, session_id: str, pubkey: str) -> None:
        """Tell the browser whether a withdrawal is ready, pending or absent."""
        try:
            state = await self.withdrawals.status_query(pubkey)
        except ChargerError as e:
            logger.error(f"listinvoices failed while checking {pubkey}: {e.reason}")
            return

        if state.status == IntentStatus.PAID:
            payload = {"ready": True, "lnurl": self.withdrawals.withdraw_lnurl(session_id)}
        elif state.status == IntentStatus.OPEN:
            # Waiting for the deposit to come in, the user may cancel
            payload = {"waiting": True}
        else:
            payload = {"waiting": False}

        self.sessions.publish(session_id, WITHDRAW_EVENT, payload)
