"""Uniswap V2/V3 swap log decoding."""

from decimal import Context, Decimal
from enum import Enum

import structlog
from eth_abi import decode
from eth_abi.exceptions import DecodingError

from ..core.errors import AbiDecodeError, UnrecognizedEventKind
from ..core.types import CanonicalSwap, PairIdentity, RawSwapLog, SwapLeg, TokenIdentity

logger = structlog.get_logger(__name__)

# Swap(address indexed sender, address indexed recipient, int256 amount0,
#      int256 amount1, uint160 sqrtPriceX96, uint128 liquidity, int24 tick)
UNISWAP_V3_SWAP_TOPIC = (
    "0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67"
)
# Swap(address indexed sender, uint amount0In, uint amount1In,
#      uint amount0Out, uint amount1Out, address indexed to)
UNISWAP_V2_SWAP_TOPIC = (
    "0xd78ad95fa46c994b6551d0da85fc275fe613ce37657fb8d5e3d130840159d822"
)

V3_DATA_TYPES = ["int256", "int256", "uint160", "uint128", "int24"]
V2_DATA_TYPES = ["uint256", "uint256", "uint256", "uint256"]

# Wide enough for a full uint256 without rounding.
_SCALE_CONTEXT = Context(prec=100)


class SwapEventKind(str, Enum):
    """Supported swap signature families."""

    SIGNED_DELTA = "uniswap_v3"
    IN_OUT = "uniswap_v2"


_KIND_BY_TOPIC = {
    UNISWAP_V3_SWAP_TOPIC: SwapEventKind.SIGNED_DELTA,
    UNISWAP_V2_SWAP_TOPIC: SwapEventKind.IN_OUT,
}


def to_units(raw: int, decimals: int) -> Decimal:
    """Scale a raw integer amount by the token's decimals, exactly."""
    return Decimal(raw).scaleb(-decimals, context=_SCALE_CONTEXT)


def normalize_in_out(
    amount0_in: int, amount1_in: int, amount0_out: int, amount1_out: int
) -> tuple[int, int]:
    """Collapse V2 in/out amounts into a pair of signed deltas."""
    if amount0_in == 0:
        return -amount0_out, amount1_in
    return amount0_in, amount1_out


def orient_legs(
    amount0: Decimal, amount1: Decimal, token0: TokenIdentity, token1: TokenIdentity
) -> tuple[SwapLeg, SwapLeg]:
    """Put the nonnegative side first, absolute value on the other."""
    if amount0 >= 0:
        return (
            SwapLeg(token=token0, amount=amount0),
            SwapLeg(token=token1, amount=amount1.copy_abs()),
        )
    return (
        SwapLeg(token=token1, amount=amount1.copy_abs()),
        SwapLeg(token=token0, amount=amount0.copy_abs()),
    )


class SwapDecoder:
    """Decodes raw swap logs into directional CanonicalSwap records."""

    def event_kind(self, log: RawSwapLog) -> SwapEventKind:
        """Classify a log by its first topic.

        Raises:
            UnrecognizedEventKind: If the topic matches neither signature
        """
        topic = log.topics[0].lower() if log.topics else None
        kind = _KIND_BY_TOPIC.get(topic)
        if kind is None:
            raise UnrecognizedEventKind(topic)
        return kind

    def raw_deltas(self, log: RawSwapLog) -> tuple[int, int]:
        """Return the pool's signed raw deltas for token0 and token1."""
        kind = self.event_kind(log)
        payload = self._payload(log)

        try:
            if kind is SwapEventKind.SIGNED_DELTA:
                amount0, amount1, _sqrt_price, _liquidity, _tick = decode(
                    V3_DATA_TYPES, payload
                )
                return amount0, amount1

            amount0_in, amount1_in, amount0_out, amount1_out = decode(
                V2_DATA_TYPES, payload
            )
        except DecodingError as e:
            raise AbiDecodeError(
                f"Cannot decode {kind.value} swap in tx {log.transaction_hash}: {e}"
            ) from e

        return normalize_in_out(amount0_in, amount1_in, amount0_out, amount1_out)

    def decode(self, log: RawSwapLog, pair: PairIdentity) -> CanonicalSwap:
        """Decode one log against its pool's pair identity.

        Args:
            log: Raw swap log
            pair: Resolved identity of the emitting pool

        Returns:
            CanonicalSwap with leg0 holding the nonnegative side

        Raises:
            UnrecognizedEventKind: If the event signature is not supported
            AbiDecodeError: If the data payload cannot be parsed
        """
        raw0, raw1 = self.raw_deltas(log)

        amount0 = to_units(raw0, pair.token0.decimals)
        amount1 = to_units(raw1, pair.token1.decimals)
        leg0, leg1 = orient_legs(amount0, amount1, pair.token0, pair.token1)

        logger.debug(
            "Swap decoded",
            tx_hash=log.transaction_hash,
            pool=log.address,
            leg0=leg0.token.symbol,
            leg1=leg1.token.symbol,
        )

        return CanonicalSwap(
            pool_address=pair.pool_address,
            block_number=log.block_number,
            block_hash=log.block_hash,
            transaction_hash=log.transaction_hash,
            log_index=log.log_index,
            leg0=leg0,
            leg1=leg1,
        )

    @staticmethod
    def _payload(log: RawSwapLog) -> bytes:
        data = log.data[2:] if log.data.startswith(("0x", "0X")) else log.data
        try:
            return bytes.fromhex(data)
        except ValueError as e:
            raise AbiDecodeError(
                f"Log data is not valid hex in tx {log.transaction_hash}"
            ) from e
