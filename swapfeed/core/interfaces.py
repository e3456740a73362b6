"""Core interfaces for the swap feed collaborators."""

from decimal import Decimal
from typing import Protocol, runtime_checkable

from .types import RawSwapLog, SwapRow


class PairTokenSource(Protocol):
    """Resolves a pool's two token addresses."""

    async def get_pair_tokens(self, pool_address: str) -> tuple[str, str]:
        """Return ``(token0, token1)``. Raises PairLookupError."""
        ...


class TokenMetadataSource(Protocol):
    """Resolves token symbol and decimals."""

    async def get_token_metadata(self, token_address: str) -> tuple[str, int]:
        """Return ``(symbol, decimals)``. Raises TokenMetadataError."""
        ...


class ReferenceRateSource(Protocol):
    """Supplies the native wrapped asset USD rate."""

    async def get_native_asset_usd(self) -> Decimal:
        """Return the current rate. Raises ReferenceRateUnavailable."""
        ...


@runtime_checkable
class TokenPriceOracle(Protocol):
    """Direct USD price lookup for a single token."""

    async def get_token_usd(self, token_address: str) -> Decimal:
        """Return the USD price, or zero when none is known.

        Raises OracleUnavailable on transport failure only.
        """
        ...


class SwapRowWriter(Protocol):
    """Writes one persisted swap row per call."""

    async def write_row(self, row: SwapRow) -> None:
        """Write a row. Raises PersistenceWriteError."""
        ...


class SwapLogSource(Protocol):
    """Source of raw swap logs."""

    async def poll(self) -> list[RawSwapLog]:
        """Return logs observed since the previous poll."""
        ...


class AlertSink(Protocol):
    """Alert sink protocol."""

    async def push(self, message: str) -> None:
        """Push alert message."""
        ...
