"""Swap event persistence using SQLite."""

from typing import Any

import aiosqlite
import structlog

from ..core.errors import PersistenceWriteError
from ..core.interfaces import SwapRowWriter
from ..core.types import SwapRow

logger = structlog.get_logger(__name__)

SWAP_EVENT_COLUMNS = (
    "block_number",
    "block_hash",
    "transaction_hash",
    "leg0_token_id",
    "leg0_symbol",
    "leg0_amount",
    "leg0_usd_unit_price",
    "leg0_usd_total",
    "leg1_token_id",
    "leg1_symbol",
    "leg1_amount",
    "leg1_usd_unit_price",
    "leg1_usd_total",
    "native_asset_usd_rate",
    "created_at",
)


class SQLiteSwapStore(SwapRowWriter):
    """SQLite-based ``swap_events`` store. One connection per write."""

    def __init__(self, db_path: str = "swaps.sqlite") -> None:
        """Initialize SQLite storage.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

        logger.info("SQLite storage initialized", db_path=db_path)

    async def initialize(self) -> None:
        """Initialize database tables."""
        async with aiosqlite.connect(self.db_path) as db:
            # Numeric columns are TEXT so decimals keep full precision
            await db.execute("""
                CREATE TABLE IF NOT EXISTS swap_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    block_number INTEGER NOT NULL,
                    block_hash TEXT NOT NULL,
                    transaction_hash TEXT NOT NULL,
                    leg0_token_id TEXT NOT NULL,
                    leg0_symbol TEXT NOT NULL,
                    leg0_amount TEXT NOT NULL,
                    leg0_usd_unit_price TEXT,
                    leg0_usd_total TEXT,
                    leg1_token_id TEXT NOT NULL,
                    leg1_symbol TEXT NOT NULL,
                    leg1_amount TEXT NOT NULL,
                    leg1_usd_unit_price TEXT,
                    leg1_usd_total TEXT,
                    native_asset_usd_rate TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_swap_events_block_number
                ON swap_events(block_number)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_swap_events_transaction_hash
                ON swap_events(transaction_hash)
            """)

            await db.commit()

        logger.info("Database tables initialized")

    async def write_row(self, row: SwapRow) -> None:
        """Insert one swap row.

        Args:
            row: Flattened swap row

        Raises:
            PersistenceWriteError: If the insert fails
        """
        values = tuple(getattr(row, column) for column in SWAP_EVENT_COLUMNS)
        placeholders = ", ".join("?" for _ in SWAP_EVENT_COLUMNS)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    f"INSERT INTO swap_events ({', '.join(SWAP_EVENT_COLUMNS)}) "
                    f"VALUES ({placeholders})",
                    values,
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceWriteError(
                f"Failed to write swap {row.transaction_hash}: {e}"
            ) from e

        logger.debug(
            "Swap row written",
            block_number=row.block_number,
            tx_hash=row.transaction_hash,
        )

    async def load_rows(self, limit: int = 100) -> list[dict[str, Any]]:
        """Load the most recent swap rows.

        Args:
            limit: Maximum number of rows

        Returns:
            List of row dictionaries, newest first
        """
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row

            async with db.execute(
                f"""
                SELECT {", ".join(SWAP_EVENT_COLUMNS)}
                FROM swap_events
                ORDER BY id DESC
                LIMIT ?
            """,
                (limit,),
            ) as cursor:
                rows = await cursor.fetchall()

        result = [dict(row) for row in rows]

        logger.debug("Loaded swap rows", count=len(result))
        return result

    async def close(self) -> None:
        """Close storage (cleanup if needed)."""
        logger.info("Storage closed")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
