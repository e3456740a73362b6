"""Tests for the metadata cache."""

import asyncio

import pytest

from swapfeed.core.errors import MetadataUnavailable, PairLookupError, TokenMetadataError
from swapfeed.metadata.cache import MetadataCache, SingleFlightMap

POOL = "0x88E6A0c2dDD26FEEb64F039a2c41296FcB3f5640"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"


class MockChain:
    """Pair and token source that counts calls and can block or fail."""

    def __init__(self):
        self.pairs = {POOL.lower(): (USDC, WETH)}
        self.tokens = {USDC.lower(): ("USDC", 6), WETH.lower(): ("WETH", 18)}
        self.pair_calls = 0
        self.token_calls = 0
        self.fail_pairs = 0
        self.fail_tokens: set[str] = set()
        self.gate: asyncio.Event | None = None

    async def get_pair_tokens(self, pool_address: str) -> tuple[str, str]:
        self.pair_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_pairs:
            self.fail_pairs -= 1
            raise PairLookupError("rpc timeout")
        return self.pairs[pool_address]

    async def get_token_metadata(self, token_address: str) -> tuple[str, int]:
        self.token_calls += 1
        if token_address in self.fail_tokens:
            raise TokenMetadataError("symbol() reverted")
        return self.tokens[token_address]


@pytest.fixture
def chain():
    return MockChain()


@pytest.fixture
def cache(chain):
    return MetadataCache(pairs=chain, tokens=chain)


class TestMetadataCache:
    """Test pair and token resolution."""

    @pytest.mark.asyncio
    async def test_resolve_pair(self, cache):
        """Test pair resolution includes both token identities."""
        pair = await cache.resolve_pair(POOL)

        assert pair.pool_address == POOL.lower()
        assert pair.token0.symbol == "USDC"
        assert pair.token0.decimals == 6
        assert pair.token1.symbol == "WETH"
        assert pair.token1.decimals == 18

    @pytest.mark.asyncio
    async def test_hit_does_not_call_collaborator(self, cache, chain):
        """Test second resolution is served from memory."""
        first = await cache.resolve_pair(POOL)
        second = await cache.resolve_pair(POOL.lower())

        assert first == second
        assert chain.pair_calls == 1
        assert chain.token_calls == 2
        assert cache.pair_count == 1
        assert cache.token_count == 2

    @pytest.mark.asyncio
    async def test_tokens_shared_between_pairs(self, cache, chain):
        """Test token lookups are reused by a second pool with the same tokens."""
        other_pool = "0xB4e16d0168e52d35CaCD2c6185b44281Ec28C9Dc"
        chain.pairs[other_pool.lower()] = (USDC, WETH)

        await cache.resolve_pair(POOL)
        await cache.resolve_pair(other_pool)

        assert chain.pair_calls == 2
        assert chain.token_calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_lookup(self, cache, chain):
        """Test concurrent resolutions of one pool issue a single call."""
        chain.gate = asyncio.Event()

        tasks = [asyncio.create_task(cache.resolve_pair(POOL)) for _ in range(5)]
        await asyncio.sleep(0)
        chain.gate.set()
        results = await asyncio.gather(*tasks)

        assert chain.pair_calls == 1
        assert all(result == results[0] for result in results)

    @pytest.mark.asyncio
    async def test_concurrent_waiters_see_failure(self, cache, chain):
        """Test every waiter on a failed lookup gets the error."""
        chain.gate = asyncio.Event()
        chain.fail_pairs = 1

        tasks = [asyncio.create_task(cache.resolve_pair(POOL)) for _ in range(3)]
        await asyncio.sleep(0)
        chain.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert chain.pair_calls == 1
        assert all(isinstance(result, MetadataUnavailable) for result in results)

    @pytest.mark.asyncio
    async def test_cancelled_lookup_fails_waiters(self, cache, chain):
        """Test cancelling the first caller fails waiters without cancelling them."""
        chain.gate = asyncio.Event()

        first = asyncio.create_task(cache.resolve_pair(POOL))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(cache.resolve_pair(POOL))
        await asyncio.sleep(0)
        first.cancel()
        results = await asyncio.gather(first, waiter, return_exceptions=True)

        assert isinstance(results[0], asyncio.CancelledError)
        assert isinstance(results[1], MetadataUnavailable)
        assert not waiter.cancelled()

        chain.gate.set()
        pair = await cache.resolve_pair(POOL)
        assert pair.token0.symbol == "USDC"
        assert chain.pair_calls == 2

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, cache, chain):
        """Test a failed pair lookup is retried on the next call."""
        chain.fail_pairs = 1

        with pytest.raises(MetadataUnavailable) as exc_info:
            await cache.resolve_pair(POOL)
        assert exc_info.value.address == POOL.lower()
        assert cache.pair_count == 0

        pair = await cache.resolve_pair(POOL)
        assert pair.token0.symbol == "USDC"
        assert chain.pair_calls == 2

    @pytest.mark.asyncio
    async def test_token_failure_fails_pair(self, cache, chain):
        """Test a token metadata failure makes the pair unavailable."""
        chain.fail_tokens.add(WETH.lower())

        with pytest.raises(MetadataUnavailable):
            await cache.resolve_pair(POOL)

        assert cache.pair_count == 0
        assert cache.token_count == 1

    @pytest.mark.asyncio
    async def test_resolve_token(self, cache):
        """Test direct token resolution."""
        token = await cache.resolve_token(WETH)

        assert token.address == WETH.lower()
        assert token.symbol == "WETH"
        assert token.decimals == 18


class TestSingleFlightMap:
    """Test the memoizing map on its own."""

    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        """Test the least recently used key is evicted past the bound."""
        entries = SingleFlightMap("test", max_entries=2)

        async def value(v):
            return v

        await entries.get_or_load("a", lambda: value(1))
        await entries.get_or_load("b", lambda: value(2))
        await entries.get_or_load("a", lambda: value(99))
        await entries.get_or_load("c", lambda: value(3))

        assert "a" in entries
        assert "b" not in entries
        assert "c" in entries
        assert entries.peek("a") == 1
        assert entries.lookups == 3

    @pytest.mark.asyncio
    async def test_unbounded_by_default(self):
        """Test no eviction without a bound."""
        entries = SingleFlightMap("test")

        async def value(v):
            return v

        for i in range(100):
            await entries.get_or_load(str(i), lambda i=i: value(i))

        assert len(entries) == 100

    def test_invalid_bound(self):
        """Test a non-positive bound is rejected."""
        with pytest.raises(ValueError):
            SingleFlightMap("test", max_entries=0)
