"""Payment gateway (Lightning node) clients."""

from charger.gateway.base import (
    DecodedPayment,
    Invoice,
    InvoiceStatus,
    PaymentGateway,
    PaymentResult,
)
from charger.gateway.dryrun import DryRunGateway, make_payment_request
from charger.gateway.factory import get_gateway, reset_gateway
from charger.gateway.spark import SparkGateway

__all__ = [
    "DecodedPayment",
    "DryRunGateway",
    "Invoice",
    "InvoiceStatus",
    "PaymentGateway",
    "PaymentResult",
    "SparkGateway",
    "get_gateway",
    "make_payment_request",
    "reset_gateway",
]
