"""Per-row persistence of enriched swaps."""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from decimal import Decimal

import structlog

from ..core.interfaces import SwapRowWriter
from ..core.types import EnrichedSwap, PersistReport, SwapRow

logger = structlog.get_logger(__name__)


def decimal_text(value: Decimal | None) -> str | None:
    """Render a decimal as plain text without an exponent."""
    if value is None:
        return None
    return format(value, "f")


def to_row(
    swap: EnrichedSwap, native_usd: Decimal | None, created_at: datetime
) -> SwapRow:
    """Flatten an enriched swap into a ``swap_events`` row."""
    return SwapRow(
        block_number=swap.block_number,
        block_hash=swap.block_hash,
        transaction_hash=swap.transaction_hash,
        leg0_token_id=swap.leg0.token.address,
        leg0_symbol=swap.leg0.token.symbol,
        leg0_amount=decimal_text(swap.leg0.amount),
        leg0_usd_unit_price=decimal_text(swap.leg0.unit_price_usd),
        leg0_usd_total=decimal_text(swap.leg0.total_value_usd),
        leg1_token_id=swap.leg1.token.address,
        leg1_symbol=swap.leg1.token.symbol,
        leg1_amount=decimal_text(swap.leg1.amount),
        leg1_usd_unit_price=decimal_text(swap.leg1.unit_price_usd),
        leg1_usd_total=decimal_text(swap.leg1.total_value_usd),
        native_asset_usd_rate=decimal_text(native_usd),
        created_at=created_at.isoformat(),
    )


class PersistenceSink:
    """Writes enriched swaps one row at a time.

    There is no batch transaction: a failed row is logged and the remaining
    rows are still attempted.
    """

    def __init__(
        self,
        writer: SwapRowWriter,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize persistence sink.

        Args:
            writer: Row writer collaborator
            now_fn: Optional clock for ``created_at`` (for testing)
        """
        self.writer = writer
        self._now_fn = now_fn or (lambda: datetime.now(UTC))

    async def persist(
        self, batch: Sequence[EnrichedSwap], native_usd: Decimal | None = None
    ) -> PersistReport:
        """Persist every swap of a batch.

        Args:
            batch: Enriched swaps
            native_usd: Reference rate recorded alongside each row

        Returns:
            PersistReport listing written and failed transaction hashes
        """
        report = PersistReport()

        for index, swap in enumerate(batch):
            try:
                row = to_row(swap, native_usd, self._now_fn())
                await self.writer.write_row(row)
                report.written.append(swap.transaction_hash)
            except Exception as e:
                report.failed.append(swap.transaction_hash)
                logger.error(
                    "Error saving swap",
                    index=index,
                    tx_hash=swap.transaction_hash,
                    block_number=swap.block_number,
                    error=str(e),
                )

        logger.info(
            "Batch persisted",
            rows=len(batch),
            written=len(report.written),
            failed=len(report.failed),
        )
        return report
