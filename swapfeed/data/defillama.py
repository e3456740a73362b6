"""DefiLlama token price oracle."""

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

from ..core.errors import OracleUnavailable
from ..core.interfaces import TokenPriceOracle

logger = structlog.get_logger(__name__)


def parse_coin_price(payload: dict[str, Any], coin_id: str) -> Decimal:
    """Extract a coin's price from a ``prices/current`` response.

    Missing coins, malformed bodies and unparsable prices map to zero.
    """
    coins = payload.get("coins") if isinstance(payload, dict) else None
    if not isinstance(coins, dict):
        return Decimal(0)
    info = coins.get(coin_id)
    if not isinstance(info, dict) or "price" not in info:
        return Decimal(0)
    try:
        price = Decimal(str(info["price"]))
    except InvalidOperation:
        return Decimal(0)
    return price if price.is_finite() else Decimal(0)


class DefiLlamaPriceOracle(TokenPriceOracle):
    """Current USD prices from the DefiLlama coins API (no API key)."""

    def __init__(
        self,
        base_url: str = "https://coins.llama.fi",
        chain: str = "ethereum",
        session: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize DefiLlama oracle.

        Args:
            base_url: DefiLlama coins API base URL
            chain: Chain prefix used in coin ids
            session: Optional httpx client session
        """
        self.base_url = base_url.rstrip("/")
        self.chain = chain
        self.session = session or httpx.AsyncClient()

        self.retry_config = AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
            reraise=True,
        )

    def coin_id(self, token_address: str) -> str:
        return f"{self.chain}:{token_address.lower()}"

    async def get_token_usd(self, token_address: str) -> Decimal:
        """Fetch a token's current USD price.

        Args:
            token_address: Token contract address

        Returns:
            Price, or zero when DefiLlama does not know the token

        Raises:
            OracleUnavailable: On transport or server errors
        """
        coin_id = self.coin_id(token_address)
        url = f"{self.base_url}/prices/current/{coin_id}"

        try:
            async for attempt in self.retry_config:
                with attempt:
                    response = await self.session.get(url, timeout=10.0)
                    if response.status_code == 404:
                        logger.info("Token not listed", coin_id=coin_id)
                        return Decimal(0)
                    response.raise_for_status()
                    payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("DefiLlama request failed", coin_id=coin_id, error=str(e))
            raise OracleUnavailable(f"DefiLlama request failed: {e}") from e

        price = parse_coin_price(payload, coin_id)
        logger.debug("Oracle price fetched", coin_id=coin_id, usd=str(price))
        return price

    async def close(self) -> None:
        """Close the HTTP session."""
        await self.session.aclose()
