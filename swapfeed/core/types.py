"""Core data types for the swap feed."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class RawSwapLog(BaseModel):
    """Swap event log as delivered by the chain-data provider."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(description="Pool contract address that emitted the log")
    topics: tuple[str, ...] = Field(description="Indexed topics, first is the event signature")
    data: str = Field(description="Hex-encoded non-indexed event data")
    block_number: int = Field(description="Block number")
    block_hash: str = Field(description="Block hash")
    transaction_hash: str = Field(description="Transaction hash")
    log_index: int = Field(default=0, description="Log index within the block")


class TokenIdentity(BaseModel):
    """ERC-20 token identity."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(description="Token contract address")
    symbol: str = Field(description="Token symbol")
    decimals: int = Field(ge=0, description="Token decimal count")


class PairIdentity(BaseModel):
    """Pool and its two constituent tokens in native pool order."""

    model_config = ConfigDict(frozen=True)

    pool_address: str = Field(description="Pool contract address")
    token0: TokenIdentity = Field(description="Pool token0")
    token1: TokenIdentity = Field(description="Pool token1")


class SwapLeg(BaseModel):
    """One side of a decoded swap."""

    model_config = ConfigDict(frozen=True)

    token: TokenIdentity = Field(description="Token moved on this leg")
    amount: Decimal = Field(ge=0, description="Nonnegative amount in token units")


class CanonicalSwap(BaseModel):
    """Directional swap record decoded from one raw log.

    ``leg0`` is the side whose pool delta was nonnegative. It is not
    necessarily the pool's native ``token0``.
    """

    model_config = ConfigDict(frozen=True)

    pool_address: str
    block_number: int
    block_hash: str
    transaction_hash: str
    log_index: int = 0
    leg0: SwapLeg
    leg1: SwapLeg


class EnrichedLeg(BaseModel):
    """Swap leg with its USD valuation, if one was resolved."""

    token: TokenIdentity = Field(description="Token moved on this leg")
    amount: Decimal = Field(description="Amount in token units")
    unit_price_usd: Decimal | None = Field(
        default=None, description="USD price of one token unit"
    )
    total_value_usd: Decimal | None = Field(
        default=None, description="USD value of the whole leg"
    )

    @property
    def priced(self) -> bool:
        return self.unit_price_usd is not None


class EnrichedSwap(BaseModel):
    """Canonical swap with USD valuations applied to both legs."""

    pool_address: str
    block_number: int
    block_hash: str
    transaction_hash: str
    log_index: int = 0
    leg0: EnrichedLeg
    leg1: EnrichedLeg


class SwapRow(BaseModel):
    """Flattened ``swap_events`` row. Numerics are plain decimal text."""

    block_number: int
    block_hash: str
    transaction_hash: str
    leg0_token_id: str
    leg0_symbol: str
    leg0_amount: str
    leg0_usd_unit_price: str | None = None
    leg0_usd_total: str | None = None
    leg1_token_id: str
    leg1_symbol: str
    leg1_amount: str
    leg1_usd_unit_price: str | None = None
    leg1_usd_total: str | None = None
    native_asset_usd_rate: str | None = None
    created_at: str


class PersistReport(BaseModel):
    """Outcome of persisting one batch."""

    written: list[str] = Field(
        default_factory=list, description="Transaction hashes written"
    )
    failed: list[str] = Field(
        default_factory=list, description="Transaction hashes that failed"
    )


class BatchReport(BaseModel):
    """Summary of one Decode -> Propagate -> Persist cycle."""

    received: int = Field(description="Logs handed to the cycle")
    decoded: int = Field(default=0, description="Logs decoded into swaps")
    skipped: int = Field(default=0, description="Logs skipped on decode/metadata errors")
    priced_tokens: int = Field(default=0, description="Token symbols priced")
    missing_tokens: list[str] = Field(
        default_factory=list, description="Token symbols left without a price"
    )
    written: int = Field(default=0, description="Rows written")
    failed: int = Field(default=0, description="Rows that failed to write")
    native_usd: Decimal | None = Field(
        default=None, description="Reference rate used for the native anchor"
    )
    started_at: datetime | None = Field(default=None, description="Cycle start")
    duration_seconds: float = Field(default=0.0, description="Cycle duration")
