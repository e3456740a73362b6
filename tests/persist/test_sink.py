"""Tests for the persistence sink."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from swapfeed.core.errors import PersistenceWriteError
from swapfeed.core.types import EnrichedLeg, EnrichedSwap, SwapRow, TokenIdentity
from swapfeed.persist.sink import PersistenceSink, decimal_text, to_row

USDC = TokenIdentity(address="0xusdc", symbol="USDC", decimals=6)
PEPE = TokenIdentity(address="0xpepe", symbol="PEPE", decimals=18)
NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def enriched(tx_hash: str, priced: bool = True) -> EnrichedSwap:
    leg1 = EnrichedLeg(token=PEPE, amount=Decimal("1000000"))
    if priced:
        leg1 = EnrichedLeg(
            token=PEPE,
            amount=Decimal("1000000"),
            unit_price_usd=Decimal("0.00001"),
            total_value_usd=Decimal("10.00000"),
        )
    return EnrichedSwap(
        pool_address="0xpool",
        block_number=42,
        block_hash="0xblock",
        transaction_hash=tx_hash,
        leg0=EnrichedLeg(
            token=USDC,
            amount=Decimal("10"),
            unit_price_usd=Decimal(1),
            total_value_usd=Decimal("10"),
        ),
        leg1=leg1,
    )


class MemoryWriter:
    """Row writer that keeps rows in memory and fails on chosen hashes."""

    def __init__(self, fail_on: set[str] | None = None):
        self.fail_on = fail_on or set()
        self.rows: list[SwapRow] = []
        self.attempts = 0

    async def write_row(self, row: SwapRow) -> None:
        self.attempts += 1
        if row.transaction_hash in self.fail_on:
            raise PersistenceWriteError("disk I/O error")
        self.rows.append(row)


class TestDecimalText:
    """Test numeric rendering."""

    def test_no_exponent(self):
        assert decimal_text(Decimal("1E-18")) == "0.000000000000000001"
        assert decimal_text(Decimal("1.5E+3")) == "1500"

    def test_none(self):
        assert decimal_text(None) is None


class TestToRow:
    """Test row flattening."""

    def test_priced_swap(self):
        row = to_row(enriched("0x1"), Decimal("2000"), NOW)

        assert row.transaction_hash == "0x1"
        assert row.leg0_token_id == "0xusdc"
        assert row.leg0_symbol == "USDC"
        assert row.leg0_amount == "10"
        assert row.leg1_usd_unit_price == "0.00001"
        assert row.leg1_usd_total == "10.00000"
        assert row.native_asset_usd_rate == "2000"
        assert row.created_at == "2024-01-01T12:00:00+00:00"

    def test_unpriced_leg_and_missing_rate(self):
        row = to_row(enriched("0x1", priced=False), None, NOW)

        assert row.leg1_amount == "1000000"
        assert row.leg1_usd_unit_price is None
        assert row.leg1_usd_total is None
        assert row.native_asset_usd_rate is None


class TestPersistenceSink:
    """Test per-row persistence."""

    @pytest.mark.asyncio
    async def test_writes_one_row_per_swap(self):
        """Test every swap becomes a row in batch order."""
        writer = MemoryWriter()
        sink = PersistenceSink(writer, now_fn=lambda: NOW)

        report = await sink.persist([enriched("0x1"), enriched("0x2")], Decimal("2000"))

        assert report.written == ["0x1", "0x2"]
        assert report.failed == []
        assert [row.transaction_hash for row in writer.rows] == ["0x1", "0x2"]

    @pytest.mark.asyncio
    async def test_failed_row_does_not_stop_batch(self):
        """Test a failing row is reported and later rows are still written."""
        writer = MemoryWriter(fail_on={"0x2"})
        sink = PersistenceSink(writer, now_fn=lambda: NOW)

        report = await sink.persist(
            [enriched("0x1"), enriched("0x2"), enriched("0x3")], Decimal("2000")
        )

        assert report.written == ["0x1", "0x3"]
        assert report.failed == ["0x2"]
        assert writer.attempts == 3

    @pytest.mark.asyncio
    async def test_unexpected_writer_error_is_contained(self):
        """Test non-persistence exceptions are also contained per row."""

        class BrokenWriter:
            async def write_row(self, row):
                raise RuntimeError("connection reset")

        sink = PersistenceSink(BrokenWriter(), now_fn=lambda: NOW)

        report = await sink.persist([enriched("0x1")])

        assert report.written == []
        assert report.failed == ["0x1"]

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        writer = MemoryWriter()
        report = await PersistenceSink(writer).persist([])

        assert report.written == []
        assert writer.attempts == 0
