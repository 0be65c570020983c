"""golightning.club deposit provider.

Takes a BOLT11 invoice and returns a Bitcoin address; once the quoted amount
lands on-chain the service pays the invoice over Lightning.
"""

import logging
from typing import Optional

import httpx

from charger.errors import ProviderError
from charger.providers.base import DepositAddressProvider, DepositQuote

logger = logging.getLogger(__name__)


class GoLightningProvider(DepositAddressProvider):
    """Deposit provider backed by golightning.club."""

    def __init__(
        self,
        url: str = "https://api.golightning.club/new",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize provider.

        Args:
            url: Swap creation endpoint
            timeout: Request timeout in seconds
            transport: Optional httpx transport override
        """
        self.url = url
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "golightning"

    async def validate_config(self) -> bool:
        return bool(self.url)

    async def create_swap(self, bolt11: str) -> DepositQuote:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    data={"bolt11": bolt11},
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            logger.error(f"golightning.club request failed: {e!r}")
            raise ProviderError() from e

        if response.status_code >= 300:
            logger.error(f"golightning.club request failed: {response.text[:500]}")
            raise ProviderError(f"Deposit service returned HTTP {response.status_code}.")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Failed to parse golightning.club response: {response.text[:500]}")
            raise ProviderError() from e

        if data.get("error"):
            logger.error(f"golightning.club returned error: {data['error']} for {bolt11}")
            raise ProviderError(str(data["error"]))

        address = data.get("bitcoinAddress")
        if not address:
            logger.error(f"golightning.club returned no address: {data}")
            raise ProviderError()

        return DepositQuote(address=address, price=str(data.get("btcPrice", "")))
