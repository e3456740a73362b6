"""Ethereum chain access via web3.py: pair tokens, ERC-20 metadata, swap logs."""

import asyncio
from typing import Any

import aiohttp
import structlog
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import Web3Exception

from ..core.errors import PairLookupError, TokenMetadataError
from ..core.interfaces import PairTokenSource, SwapLogSource, TokenMetadataSource
from ..core.types import RawSwapLog
from ..decode.swaps import UNISWAP_V2_SWAP_TOPIC, UNISWAP_V3_SWAP_TOPIC

logger = structlog.get_logger(__name__)

PAIR_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "token0",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "token1",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

ERC20_METADATA_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]

SWAP_TOPICS = [UNISWAP_V3_SWAP_TOPIC, UNISWAP_V2_SWAP_TOPIC]

# Contract call failures, including HTTP status errors raised by the provider
RPC_ERRORS = (
    Web3Exception,
    ValueError,
    OSError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)


def to_hex(value: Any) -> str:
    """Render HexBytes/bytes/str values as a 0x-prefixed hex string."""
    if isinstance(value, str):
        return value if value.startswith("0x") else f"0x{value}"
    return "0x" + bytes(value).hex()


def raw_log_from_web3(entry: Any) -> RawSwapLog:
    """Convert a web3 log entry into a RawSwapLog."""
    return RawSwapLog(
        address=str(entry["address"]),
        topics=tuple(to_hex(topic) for topic in entry["topics"]),
        data=to_hex(entry["data"]),
        block_number=int(entry["blockNumber"]),
        block_hash=to_hex(entry["blockHash"]),
        transaction_hash=to_hex(entry["transactionHash"]),
        log_index=int(entry.get("logIndex", 0)),
    )


class Web3ChainClient(PairTokenSource, TokenMetadataSource):
    """Pool and token lookups through contract calls."""

    def __init__(self, rpc_url: str | None = None, w3: AsyncWeb3 | None = None) -> None:
        """Initialize chain client.

        Args:
            rpc_url: Ethereum JSON-RPC URL
            w3: Optional preconfigured AsyncWeb3 instance
        """
        if w3 is None:
            if not rpc_url:
                raise ValueError("Either rpc_url or w3 is required")
            w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.w3 = w3

    def _contract(self, address: str, abi: list[dict[str, Any]]):
        return self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(address), abi=abi
        )

    async def get_pair_tokens(self, pool_address: str) -> tuple[str, str]:
        """Return the pool's ``token0`` and ``token1`` addresses.

        Raises:
            PairLookupError: If either call fails
        """
        try:
            pair = self._contract(pool_address, PAIR_ABI)
            token0 = await pair.functions.token0().call()
            token1 = await pair.functions.token1().call()
        except RPC_ERRORS as e:
            logger.error("Error fetching pair tokens", pool=pool_address, error=str(e))
            raise PairLookupError(f"Pair tokens unavailable for {pool_address}: {e}") from e
        return str(token0), str(token1)

    async def get_token_metadata(self, token_address: str) -> tuple[str, int]:
        """Return the token's ``symbol`` and ``decimals``.

        Raises:
            TokenMetadataError: If either call fails
        """
        try:
            token = self._contract(token_address, ERC20_METADATA_ABI)
            symbol = await token.functions.symbol().call()
            decimals = await token.functions.decimals().call()
        except RPC_ERRORS as e:
            logger.error("Error fetching token metadata", token=token_address, error=str(e))
            raise TokenMetadataError(
                f"Token metadata unavailable for {token_address}: {e}"
            ) from e
        return str(symbol), int(decimals)


class Web3LogSource(SwapLogSource):
    """Polls ``eth_getLogs`` for Uniswap V2/V3 swap events."""

    def __init__(
        self,
        rpc_url: str | None = None,
        w3: AsyncWeb3 | None = None,
        start_block: int | None = None,
        max_block_range: int = 50,
    ) -> None:
        """Initialize log source.

        Args:
            rpc_url: Ethereum JSON-RPC URL
            w3: Optional preconfigured AsyncWeb3 instance
            start_block: First block to fetch (defaults to the latest block)
            max_block_range: Largest block span requested per poll
        """
        if w3 is None:
            if not rpc_url:
                raise ValueError("Either rpc_url or w3 is required")
            w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.w3 = w3
        self.next_block = start_block
        self.max_block_range = max_block_range

    async def poll(self) -> list[RawSwapLog]:
        """Fetch swap logs from blocks not seen yet."""
        latest = await self.w3.eth.block_number
        if self.next_block is None:
            self.next_block = latest
        if self.next_block > latest:
            return []

        to_block = min(latest, self.next_block + self.max_block_range - 1)
        entries = await self.w3.eth.get_logs(
            {
                "fromBlock": self.next_block,
                "toBlock": to_block,
                "topics": [SWAP_TOPICS],
            }
        )
        logger.debug(
            "Polled swap logs",
            from_block=self.next_block,
            to_block=to_block,
            count=len(entries),
        )
        self.next_block = to_block + 1
        return [raw_log_from_web3(entry) for entry in entries]
