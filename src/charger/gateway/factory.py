"""Gateway factory for the process-wide payment node client."""

from typing import Optional

from charger.config import get_settings
from charger.gateway.base import PaymentGateway
from charger.gateway.dryrun import DryRunGateway
from charger.gateway.spark import SparkGateway

# Singleton instance
_gateway_instance: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    """Get the configured payment gateway.

    Gateway is selected based on GATEWAY environment variable:
    - spark (default): Spark server in front of c-lightning
    - dryrun: In-memory simulated node

    Returns:
        Configured PaymentGateway instance
    """
    global _gateway_instance

    if _gateway_instance is not None:
        return _gateway_instance

    settings = get_settings()

    if settings.gateway.lower() == "dryrun":
        _gateway_instance = DryRunGateway()
    else:
        _gateway_instance = SparkGateway(
            url=settings.spark_url,
            token=settings.spark_token,
            timeout=settings.spark_call_timeout,
            verify_tls=settings.spark_verify_tls,
        )

    return _gateway_instance


def reset_gateway() -> None:
    """Reset gateway instance (useful for testing)."""
    global _gateway_instance
    _gateway_instance = None
