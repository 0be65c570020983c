"""Spark wallet RPC gateway for c-lightning nodes.

Spark exposes the node's JSON-RPC over HTTP: every call is a POST of
``{"method": ..., "params": [...]}`` authenticated with the ``X-Access`` key.
Docs: https://github.com/shesek/spark-wallet#server-installation
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from charger.errors import GatewayError, GatewayUnavailableError
from charger.gateway.base import (
    DecodedPayment,
    Invoice,
    InvoiceStatus,
    PaymentGateway,
    PaymentResult,
)

logger = logging.getLogger(__name__)


def parse_msat(value: Any) -> int:
    """Parse an amount field that may be an int or a ``"1000msat"`` string."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    text = str(value)
    if text.endswith("msat"):
        text = text[: -len("msat")]
    return int(text)


def _invoice_from_rpc(data: dict) -> Invoice:
    return Invoice(
        label=data.get("label", ""),
        msatoshi=parse_msat(data.get("msatoshi", data.get("amount_msat"))),
        status=InvoiceStatus(data.get("status", "unpaid")),
        bolt11=data.get("bolt11", ""),
        payment_hash=data.get("payment_hash"),
        expires_at=data.get("expires_at"),
    )


class SparkGateway(PaymentGateway):
    """Payment gateway talking to a Spark server."""

    def __init__(
        self,
        url: str,
        token: str,
        timeout: float = 60.0,
        verify_tls: bool = False,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize Spark gateway.

        Args:
            url: Spark RPC endpoint (e.g. https://node:9737/rpc)
            token: Spark access key
            timeout: Overall timeout of each call in seconds
            verify_tls: Verify the server certificate (Spark is usually self-signed)
            client: Optional preconfigured HTTP client
        """
        self.url = url
        self.token = token
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            verify=verify_tls,
        )

    @property
    def name(self) -> str:
        return "spark"

    async def call(self, method: str, *params: Any) -> dict:
        """Call a node RPC method.

        Raises:
            GatewayUnavailableError: Network failure, or no answer within ``timeout``
            GatewayError: The node returned an error
        """
        try:
            # httpx timeouts are per phase, this bounds the whole call
            response = await asyncio.wait_for(
                self._client.post(
                    self.url,
                    headers={"X-Access": self.token},
                    json={"method": method, "params": list(params)},
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Spark {method} call timed out after {self.timeout}s")
            raise GatewayUnavailableError() from e
        except httpx.HTTPError as e:
            logger.error(f"Spark {method} call failed: {e!r}")
            raise GatewayUnavailableError() from e

        if response.status_code != 200:
            try:
                body = response.json()
            except ValueError:
                body = {"message": response.text}
            if not isinstance(body, dict):
                body = {"message": str(body)}
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.warning(f"Spark {method} returned error: {message}")
            raise GatewayError(message, code=body.get("code"))

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Spark {method} returned invalid JSON: {response.text[:200]}")
            raise GatewayUnavailableError() from e

    async def get_invoice(self, label: str) -> Optional[Invoice]:
        result = await self.call("listinvoices", label)
        invoices = result.get("invoices") or []
        if not invoices:
            return None
        return _invoice_from_rpc(invoices[0])

    async def create_invoice(
        self, msatoshi: int, label: str, description: str, expiry: int
    ) -> Invoice:
        result = await self.call("invoice", msatoshi, label, description, expiry)
        return Invoice(
            label=label,
            msatoshi=msatoshi,
            status=InvoiceStatus.UNPAID,
            bolt11=result.get("bolt11", ""),
            payment_hash=result.get("payment_hash"),
            expires_at=result.get("expires_at"),
        )

    async def decode_payment(self, bolt11: str) -> DecodedPayment:
        result = await self.call("decodepay", bolt11)
        return DecodedPayment(
            msatoshi=parse_msat(result.get("msatoshi", result.get("amount_msat"))),
            payee=result.get("payee"),
            payment_hash=result.get("payment_hash"),
            description=result.get("description"),
        )

    async def wait_pay(self, bolt11: str) -> PaymentResult:
        """Pay with the node's blocking ``pay`` command."""
        result = await self.call("pay", bolt11)
        status = result.get("status", "complete")
        return PaymentResult(
            success=status == "complete",
            payment_hash=result.get("payment_hash"),
            preimage=result.get("payment_preimage"),
            msatoshi_sent=parse_msat(
                result.get("msatoshi_sent", result.get("amount_sent_msat"))
            ),
            error=None if status == "complete" else f"payment status {status}",
        )

    async def delete_invoice(self, label: str, status: InvoiceStatus) -> None:
        await self.call("delinvoice", label, InvoiceStatus(status).value)

    async def close(self) -> None:
        await self._client.aclose()
