"""In-memory pair and token identity cache with single-flight lookups."""

import asyncio
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

from ..core.errors import MetadataUnavailable, PairLookupError, TokenMetadataError
from ..core.interfaces import PairTokenSource, TokenMetadataSource
from ..core.types import PairIdentity, TokenIdentity

logger = structlog.get_logger(__name__)

V = TypeVar("V")


class SingleFlightMap(Generic[V]):
    """Memoizing map where concurrent misses for a key share one lookup.

    Failed lookups are not stored, so the next call retries. With
    ``max_entries`` set, the least recently used entry is evicted.
    """

    def __init__(self, name: str, max_entries: int | None = None) -> None:
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive or None")
        self.name = name
        self.max_entries = max_entries
        self._entries: OrderedDict[str, V] = OrderedDict()
        self._in_flight: dict[str, asyncio.Future[V]] = {}
        self.lookups = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def peek(self, key: str) -> V | None:
        return self._entries.get(key)

    async def get_or_load(self, key: str, load: Callable[[], Awaitable[V]]) -> V:
        if key in self._entries:
            self._entries.move_to_end(key)
            return self._entries[key]

        pending = self._in_flight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future[V] = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        self.lookups += 1
        try:
            value = await load()
        except asyncio.CancelledError:
            # Waiters were not cancelled themselves; fail them instead.
            future.set_exception(MetadataUnavailable(key, "lookup cancelled"))
            future.exception()
            raise
        except Exception as e:
            future.set_exception(e)
            # Retrieved here so a failure with no waiters is not reported by the loop.
            future.exception()
            raise
        else:
            self._store(key, value)
            future.set_result(value)
            return value
        finally:
            del self._in_flight[key]

    def _store(self, key: str, value: V) -> None:
        self._entries[key] = value
        if self.max_entries is not None and len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Metadata entry evicted", cache=self.name, key=evicted)


class MetadataCache:
    """Resolves and memoizes pair and token identities.

    Entries are keyed by lowercase address and are immutable once stored.
    """

    def __init__(
        self,
        pairs: PairTokenSource,
        tokens: TokenMetadataSource,
        max_entries: int | None = None,
    ) -> None:
        """Initialize metadata cache.

        Args:
            pairs: Collaborator returning a pool's token addresses
            tokens: Collaborator returning token symbol and decimals
            max_entries: Optional LRU bound per map (None never evicts)
        """
        self.pairs = pairs
        self.tokens = tokens
        self._pair_map: SingleFlightMap[PairIdentity] = SingleFlightMap(
            "pairs", max_entries
        )
        self._token_map: SingleFlightMap[TokenIdentity] = SingleFlightMap(
            "tokens", max_entries
        )

        logger.info(
            "Metadata cache initialized",
            eviction="lru" if max_entries else "none",
            max_entries=max_entries,
        )

    @property
    def pair_count(self) -> int:
        return len(self._pair_map)

    @property
    def token_count(self) -> int:
        return len(self._token_map)

    async def resolve_pair(self, pool_address: str) -> PairIdentity:
        """Return the pool's pair identity, looking it up on first use.

        Raises:
            MetadataUnavailable: If the pool or either token cannot be resolved
        """
        key = pool_address.lower()
        return await self._pair_map.get_or_load(key, lambda: self._load_pair(key))

    async def resolve_token(self, token_address: str) -> TokenIdentity:
        """Return the token identity, looking it up on first use.

        Raises:
            MetadataUnavailable: If the token metadata cannot be fetched
        """
        key = token_address.lower()
        return await self._token_map.get_or_load(key, lambda: self._load_token(key))

    async def _load_pair(self, pool_address: str) -> PairIdentity:
        try:
            token0_address, token1_address = await self.pairs.get_pair_tokens(
                pool_address
            )
        except PairLookupError as e:
            logger.warning("Pair lookup failed", pool=pool_address, error=str(e))
            raise MetadataUnavailable(pool_address, str(e)) from e

        token0 = await self.resolve_token(token0_address)
        token1 = await self.resolve_token(token1_address)

        logger.info(
            "Pair resolved",
            pool=pool_address,
            token0=token0.symbol,
            token1=token1.symbol,
        )
        return PairIdentity(pool_address=pool_address, token0=token0, token1=token1)

    async def _load_token(self, token_address: str) -> TokenIdentity:
        try:
            symbol, decimals = await self.tokens.get_token_metadata(token_address)
        except TokenMetadataError as e:
            logger.warning("Token metadata lookup failed", token=token_address, error=str(e))
            raise MetadataUnavailable(token_address, str(e)) from e

        logger.debug("Token resolved", token=token_address, symbol=symbol)
        return TokenIdentity(address=token_address, symbol=symbol, decimals=decimals)
