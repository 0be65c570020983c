"""Session registry and per-session notification channels."""

from charger.sessions.channel import (
    DEPOSIT_EVENT,
    LOGIN_EVENT,
    WITHDRAW_EVENT,
    Event,
    NotificationChannel,
)
from charger.sessions.registry import SessionRecord, SessionRegistry

__all__ = [
    "DEPOSIT_EVENT",
    "LOGIN_EVENT",
    "WITHDRAW_EVENT",
    "Event",
    "NotificationChannel",
    "SessionRecord",
    "SessionRegistry",
]
