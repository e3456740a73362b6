"""USD price propagation over the swaps of one batch.

Every swap links its two tokens with a pair of ratio edges. Prices start at
a fixed anchor set and spread outward: a token first reached from a priced
neighbor takes ``price(neighbor) * weight`` and keeps it. Tokens that stay
unreachable may be priced by an external oracle, after which they seed a
further round of propagation.
"""

from collections.abc import Iterable, Sequence
from decimal import Context, Decimal
from enum import Enum

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import OracleUnavailable
from ..core.interfaces import TokenPriceOracle
from ..core.types import CanonicalSwap, EnrichedLeg, EnrichedSwap, SwapLeg, TokenIdentity

logger = structlog.get_logger(__name__)

PRICE_CONTEXT = Context(prec=50)


class FallbackMode(str, Enum):
    """Which legs of a swap may trigger an oracle lookup."""

    FIRST_LEG = "first_leg"
    BOTH_LEGS = "both_legs"


class AnchorSet(BaseModel):
    """Token symbols whose USD price is known before propagation."""

    model_config = ConfigDict(frozen=True)

    stablecoins: tuple[str, ...] = Field(
        default=("USDC", "USDT"), description="Symbols pegged to 1 USD"
    )
    native_symbol: str | None = Field(
        default="WETH", description="Wrapped native asset priced at the reference rate"
    )

    def seeds(self, native_usd: Decimal | None) -> dict[str, Decimal]:
        """Return anchor prices in push order."""
        prices = {symbol: Decimal(1) for symbol in self.stablecoins}
        if self.native_symbol and native_usd is not None:
            prices[self.native_symbol] = native_usd
        return prices


class PriceBook(BaseModel):
    """Per-batch propagation result."""

    prices: dict[str, Decimal] = Field(default_factory=dict)
    observed: list[str] = Field(
        default_factory=list, description="Symbols seen in the batch, in order"
    )
    oracle_seeded: list[str] = Field(
        default_factory=list, description="Symbols priced by the oracle"
    )
    missing: list[str] = Field(
        default_factory=list, description="Symbols left without a price"
    )

    def get(self, symbol: str) -> Decimal | None:
        return self.prices.get(symbol)


class PriceGraph:
    """Directed ratio graph over token symbols."""

    def __init__(self) -> None:
        self.edges: dict[str, list[tuple[str, Decimal]]] = {}

    def add_edge(self, source: str, target: str, weight: Decimal) -> None:
        self.edges.setdefault(source, []).append((target, weight))

    def add_swap(self, swap: CanonicalSwap) -> bool:
        """Link the swap's two tokens. Returns False for a zero-amount leg."""
        a, b = swap.leg0, swap.leg1
        if a.amount == 0 or b.amount == 0:
            logger.debug(
                "Skipping zero-amount swap edge",
                tx_hash=swap.transaction_hash,
                leg0=a.token.symbol,
                leg1=b.token.symbol,
            )
            return False
        self.add_edge(a.token.symbol, b.token.symbol, PRICE_CONTEXT.divide(a.amount, b.amount))
        self.add_edge(b.token.symbol, a.token.symbol, PRICE_CONTEXT.divide(b.amount, a.amount))
        return True

    @classmethod
    def from_swaps(cls, swaps: Iterable[CanonicalSwap]) -> "PriceGraph":
        graph = cls()
        for swap in swaps:
            graph.add_swap(swap)
        return graph

    def propagate(self, prices: dict[str, Decimal], seeds: Sequence[str]) -> list[str]:
        """Spread prices from ``seeds`` depth-first, updating ``prices`` in place.

        Seeds are pushed in order, so the last seed is expanded first.
        Returns the symbols newly priced by this call.
        """
        stack = list(seeds)
        reached = []
        while stack:
            symbol = stack.pop()
            for neighbor, weight in self.edges.get(symbol, ()):
                if neighbor in prices:
                    continue
                prices[neighbor] = PRICE_CONTEXT.multiply(prices[symbol], weight)
                reached.append(neighbor)
                stack.append(neighbor)
        return reached


def _fallback_legs(swap: CanonicalSwap, mode: FallbackMode) -> tuple[SwapLeg, ...]:
    if mode is FallbackMode.BOTH_LEGS:
        return (swap.leg0, swap.leg1)
    return (swap.leg0,)


async def _oracle_price(
    oracle: TokenPriceOracle, token: TokenIdentity
) -> Decimal | None:
    try:
        price = await oracle.get_token_usd(token.address)
    except OracleUnavailable as e:
        logger.warning(
            "Oracle unavailable", symbol=token.symbol, token=token.address, error=str(e)
        )
        return None

    if price is None or price <= 0:
        logger.info("Oracle has no price", symbol=token.symbol, token=token.address)
        return None
    return price


async def resolve_prices(
    swaps: Sequence[CanonicalSwap],
    native_usd: Decimal | None,
    oracle: TokenPriceOracle | None,
    anchors: AnchorSet | None = None,
    fallback: FallbackMode = FallbackMode.BOTH_LEGS,
) -> PriceBook:
    """Derive a USD unit price for every token symbol in the batch.

    Args:
        swaps: Canonical swaps of one batch
        native_usd: Reference rate for the native anchor (None omits it)
        oracle: Direct price lookup for tokens propagation cannot reach
        anchors: Anchor symbols (defaults to USDC, USDT, WETH)
        fallback: Which legs trigger an oracle lookup

    Returns:
        PriceBook with prices, oracle-seeded and missing symbols
    """
    anchors = anchors or AnchorSet()
    graph = PriceGraph.from_swaps(swaps)

    prices = anchors.seeds(native_usd)
    graph.propagate(prices, list(prices))

    oracle_seeded: list[str] = []
    attempted: set[str] = set()
    if oracle is not None:
        for swap in swaps:
            for leg in _fallback_legs(swap, fallback):
                symbol = leg.token.symbol
                if symbol in prices or symbol in attempted:
                    continue
                attempted.add(symbol)

                price = await _oracle_price(oracle, leg.token)
                if price is None:
                    continue

                prices[symbol] = price
                oracle_seeded.append(symbol)
                reached = graph.propagate(prices, [symbol])
                logger.debug(
                    "Oracle seeded token", symbol=symbol, price=str(price), reached=reached
                )

    observed = []
    for swap in swaps:
        for leg in (swap.leg0, swap.leg1):
            if leg.token.symbol not in observed:
                observed.append(leg.token.symbol)
    missing = [symbol for symbol in observed if symbol not in prices]

    logger.info(
        "Prices resolved",
        swaps=len(swaps),
        tokens=len(observed),
        priced=len(observed) - len(missing),
        oracle_seeded=len(oracle_seeded),
        missing=len(missing),
    )
    return PriceBook(
        prices=prices, observed=observed, oracle_seeded=oracle_seeded, missing=missing
    )


def _enrich_leg(leg: SwapLeg, book: PriceBook) -> EnrichedLeg:
    unit_price = book.get(leg.token.symbol)
    if unit_price is None:
        return EnrichedLeg(token=leg.token, amount=leg.amount)
    return EnrichedLeg(
        token=leg.token,
        amount=leg.amount,
        unit_price_usd=unit_price,
        total_value_usd=PRICE_CONTEXT.multiply(unit_price, leg.amount),
    )


def apply_prices(swaps: Sequence[CanonicalSwap], book: PriceBook) -> list[EnrichedSwap]:
    """Attach unit and total USD values to every leg of every swap."""
    return [
        EnrichedSwap(
            pool_address=swap.pool_address,
            block_number=swap.block_number,
            block_hash=swap.block_hash,
            transaction_hash=swap.transaction_hash,
            log_index=swap.log_index,
            leg0=_enrich_leg(swap.leg0, book),
            leg1=_enrich_leg(swap.leg1, book),
        )
        for swap in swaps
    ]
