"""Error taxonomy.

Every error carries a human readable ``reason`` that is sent back to the
wallet as ``{"status": "ERROR", "reason": ...}``.
"""

from typing import Optional


class ChargerError(Exception):
    """Base class for errors reported to clients."""

    default_reason = "Unexpected error."

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)

    def to_response(self) -> dict:
        """Render the LNURL error payload."""
        return {"status": "ERROR", "reason": self.reason}


class UsageError(ChargerError):
    """Request made in the wrong state (unknown session, missing intent...)."""

    default_reason = "Invalid request."


class InvalidSignatureError(ChargerError):
    default_reason = "Invalid signature!"


class GatewayUnavailableError(ChargerError):
    """The payment node could not be reached or timed out."""

    default_reason = "Invalid response from node. Please report if this persists."


class GatewayError(ChargerError):
    """The payment node answered with an RPC error."""

    default_reason = "The node refused the request."

    def __init__(self, reason: Optional[str] = None, code: Optional[int] = None):
        super().__init__(reason)
        self.code = code


class InvalidPaymentRequestError(ChargerError):
    default_reason = "The invoice we got is invalid."


class AmountMismatchError(ChargerError):
    default_reason = "The invoice we got has the wrong value."


class DuplicateWithdrawalError(ChargerError):
    default_reason = "Can't withdraw twice!"


class ProviderError(ChargerError):
    """The deposit address service failed or returned an error."""

    default_reason = "Deposit service failed."


class ConfigurationError(ChargerError):
    """Raised at startup when required settings are missing."""

    default_reason = "Invalid configuration."
