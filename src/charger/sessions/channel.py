"""Per-session push channel delivered as server-sent events."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

logger = logging.getLogger(__name__)

# Event names understood by the web client
LOGIN_EVENT = "login"
WITHDRAW_EVENT = "withdraw"
DEPOSIT_EVENT = "btc-deposit"


@dataclass
class Event:
    """A named event with a JSON payload."""

    name: str
    data: Any

    def encode(self) -> str:
        """Render the event in text/event-stream framing."""
        return f"event: {self.name}\ndata: {json.dumps(self.data)}\n\n"


class NotificationChannel:
    """Unicast event stream for one session.

    At most one listener is connected at a time; a new connection replaces
    the previous one. Events published while nobody listens are dropped.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._listener: Optional[asyncio.Queue] = None

    @property
    def connected(self) -> bool:
        return self._listener is not None

    def publish(self, name: str, data: Any) -> bool:
        """Push an event to the connected listener.

        Returns:
            True if a listener received the event
        """
        if self._listener is None:
            logger.debug(f"No listener on {self.session_id[:8]}, dropping {name} event")
            return False
        self._listener.put_nowait(Event(name=name, data=data))
        return True

    def connect(self) -> asyncio.Queue:
        """Attach a new listener, closing the previous one."""
        if self._listener is not None:
            self._listener.put_nowait(None)
        self._listener = asyncio.Queue()
        return self._listener

    def disconnect(self, queue: asyncio.Queue) -> None:
        if self._listener is queue:
            self._listener = None

    async def listen(self, keepalive: Optional[float] = None) -> AsyncIterator[Optional[Event]]:
        """Yield events until the listener is replaced or the consumer stops.

        With ``keepalive`` set, None is yielded after that many idle seconds
        so the caller can write a comment line and keep proxies from closing
        the stream.
        """
        queue = self.connect()
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield None
                    continue
                if event is None:
                    return
                yield event
        finally:
            self.disconnect(queue)
