"""CoinCap reference rate for the wrapped native asset."""

from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import ReferenceRateUnavailable
from ..core.interfaces import ReferenceRateSource

logger = structlog.get_logger(__name__)


class CoinCapReferenceRate(ReferenceRateSource):
    """Reads the ETH/USD rate from the CoinCap assets endpoint."""

    def __init__(
        self,
        base_url: str = "https://api.coincap.io/v2",
        asset_id: str = "ethereum",
        session: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize CoinCap reference rate.

        Args:
            base_url: CoinCap API base URL
            asset_id: CoinCap asset id of the native asset
            session: Optional httpx client session
        """
        self.base_url = base_url.rstrip("/")
        self.asset_id = asset_id
        self.session = session or httpx.AsyncClient()

        self.retry_config = AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
            reraise=True,
        )

    async def _fetch_asset(self) -> dict[str, Any]:
        url = f"{self.base_url}/assets/{self.asset_id}"
        async for attempt in self.retry_config:
            with attempt:
                response = await self.session.get(url, timeout=10.0)
                response.raise_for_status()
                return response.json()

    async def get_native_asset_usd(self) -> Decimal:
        """Fetch the current native asset USD rate.

        Returns:
            Rate as a Decimal parsed from CoinCap's string field

        Raises:
            ReferenceRateUnavailable: On transport errors or a malformed body
        """
        try:
            payload = await self._fetch_asset()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("CoinCap request failed", asset=self.asset_id, error=str(e))
            raise ReferenceRateUnavailable(f"CoinCap request failed: {e}") from e

        try:
            rate = Decimal(str(payload["data"]["priceUsd"]))
        except (KeyError, TypeError, InvalidOperation) as e:
            logger.error("Unexpected CoinCap response", asset=self.asset_id, error=str(e))
            raise ReferenceRateUnavailable("Unexpected CoinCap response") from e

        if not rate.is_finite() or rate <= 0:
            raise ReferenceRateUnavailable(f"Unusable CoinCap rate: {rate}")

        logger.info("Reference rate fetched", asset=self.asset_id, usd=str(rate))
        return rate

    async def close(self) -> None:
        """Close the HTTP session."""
        await self.session.aclose()
