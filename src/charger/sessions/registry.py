"""In-memory session registry.

Sessions live only in process memory: a restart logs everybody out, which is
fine because a session is just the nonce of a login QR code.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from charger import lnurl
from charger.errors import UsageError
from charger.sessions.channel import NotificationChannel

logger = logging.getLogger(__name__)


@dataclass
class SessionRecord:
    """State attached to one session id."""

    session_id: str
    pubkey: Optional[str] = None
    channel: Optional[NotificationChannel] = None
    withdraw_nonces: set[str] = field(default_factory=set)
    last_seen: float = field(default_factory=time.monotonic)


class SessionRegistry:
    """Maps sessions to their bound public key and notification channel.

    All mutations go through a single lock, and none of them await, so callers
    from request handlers and settlement tasks never interleave half-updates.
    """

    def __init__(self):
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def create_session(self) -> str:
        """Allocate a fresh session id.

        The id is not stored: a session only becomes known once a wallet
        signs it or a browser subscribes to its events.
        """
        session_id = lnurl.new_nonce()
        while session_id in self._sessions:
            session_id = lnurl.new_nonce()
        return session_id

    def _record(self, session_id: str) -> SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            record = SessionRecord(session_id=session_id)
            self._sessions[session_id] = record
        record.last_seen = time.monotonic()
        return record

    def bind_pubkey(self, session_id: str, pubkey: str) -> None:
        """Bind a verified public key to a session.

        Raises:
            UsageError: If the session is already bound to another key
        """
        with self._lock:
            record = self._record(session_id)
            if record.pubkey is not None and record.pubkey != pubkey:
                logger.warning(
                    f"Refusing to rebind session {session_id[:8]} to a different key"
                )
                raise UsageError("Session already bound to another key.")
            record.pubkey = pubkey

    def lookup_pubkey(self, session_id: str) -> Optional[str]:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        return record.pubkey

    def subscribe(self, session_id: str) -> NotificationChannel:
        """Get the session's channel, creating it on first subscription."""
        with self._lock:
            record = self._record(session_id)
            if record.channel is None:
                record.channel = NotificationChannel(session_id)
            return record.channel

    def get_channel(self, session_id: str) -> Optional[NotificationChannel]:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        return record.channel

    def publish(self, session_id: str, name: str, data: Any) -> bool:
        """Best-effort push to a session's channel.

        Returns:
            True if a connected listener received the event
        """
        channel = self.get_channel(session_id)
        if channel is None:
            return False
        return channel.publish(name, data)

    def add_withdraw_nonce(self, session_id: str, nonce: str) -> None:
        with self._lock:
            self._record(session_id).withdraw_nonces.add(nonce)

    def consume_withdraw_nonce(self, session_id: str, nonce: str) -> bool:
        """Spend a withdraw nonce so its signature cannot be replayed.

        Returns:
            True if the nonce was issued to the session and not spent yet
        """
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None or nonce not in record.withdraw_nonces:
                return False
            record.withdraw_nonces.discard(nonce)
            return True

    def sweep(self, ttl: float, now: Optional[float] = None) -> int:
        """Drop sessions idle for longer than ``ttl`` seconds.

        Sessions with a connected listener are kept regardless of age.

        Returns:
            Number of sessions removed
        """
        now = time.monotonic() if now is None else now
        with self._lock:
            expired = [
                session_id
                for session_id, record in self._sessions.items()
                if now - record.last_seen > ttl
                and not (record.channel and record.channel.connected)
            ]
            for session_id in expired:
                del self._sessions[session_id]
        if expired:
            logger.info(f"Swept {len(expired)} idle sessions")
        return len(expired)
