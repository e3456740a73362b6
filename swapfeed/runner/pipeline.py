"""Swap feed pipeline runner: Decode -> Propagate -> Persist per batch."""

import argparse
import asyncio
import signal
import sys
import time
from datetime import UTC, datetime
from typing import Any

import structlog

from ..alerts.telegram import NoopAlertSink, TelegramAlertSink
from ..config.settings import AppSettings, load_settings
from ..core.errors import DecodeError, MetadataUnavailable, ReferenceRateUnavailable
from ..core.types import BatchReport, CanonicalSwap, RawSwapLog
from ..data.chain import Web3ChainClient, Web3LogSource
from ..data.coincap import CoinCapReferenceRate
from ..data.defillama import DefiLlamaPriceOracle
from ..decode.swaps import SwapDecoder
from ..metadata.cache import MetadataCache
from ..persist.sink import PersistenceSink
from ..persist.storage import SQLiteSwapStore
from ..pricing.graph import AnchorSet, FallbackMode, apply_prices, resolve_prices
from .aggregator import BatchAggregator, BusyPolicy

logger = structlog.get_logger(__name__)


class SwapPipeline:
    """Main swap feed orchestrator."""

    def __init__(self, settings: AppSettings) -> None:
        """Initialize swap pipeline with assembled components."""
        self.settings = settings
        self.running = False
        self.anchors = AnchorSet(
            stablecoins=tuple(settings.anchor_stablecoins),
            native_symbol=settings.native_symbol,
        )
        self.fallback = FallbackMode(settings.oracle_fallback)
        self.unhealthy_streak = 0
        self._stopped = False

        self.components = self._assemble(settings)

        logger.info(
            "Swap pipeline initialized",
            busy_policy=settings.busy_policy,
            oracle_fallback=settings.oracle_fallback,
            quiet_period_ms=settings.quiet_period_ms,
        )

    def _assemble(self, settings: AppSettings) -> dict[str, Any]:
        """Assemble all pipeline components from settings.

        Args:
            settings: Application settings

        Returns:
            Dictionary of assembled components
        """
        components: dict[str, Any] = {}

        chain = Web3ChainClient(rpc_url=settings.rpc_url)
        components["log_source"] = Web3LogSource(
            w3=chain.w3, start_block=settings.start_block
        )
        components["metadata"] = MetadataCache(
            pairs=chain,
            tokens=chain,
            max_entries=settings.metadata_cache_max_entries,
        )
        components["decoder"] = SwapDecoder()
        logger.info("Initialized chain client and metadata cache")

        components["reference_rate"] = CoinCapReferenceRate(
            base_url=settings.coincap_base
        )
        components["oracle"] = DefiLlamaPriceOracle(
            base_url=settings.defillama_base, chain=settings.defillama_chain
        )
        logger.info("Initialized price sources")

        store = SQLiteSwapStore(db_path=settings.database_path)
        components["store"] = store
        components["sink"] = PersistenceSink(store)

        if settings.telegram_bot_token and settings.telegram_admin_ids:
            components["alerts"] = TelegramAlertSink(
                bot_token=settings.telegram_bot_token,
                admin_user_ids=settings.telegram_admin_ids,
            )
            logger.info("Using Telegram alert sink")
        else:
            components["alerts"] = NoopAlertSink()
            logger.info("Using noop alert sink (no Telegram config)")

        components["aggregator"] = BatchAggregator(
            handler=self.process_batch,
            quiet_period=settings.quiet_period_ms / 1000,
            busy_policy=BusyPolicy(settings.busy_policy),
        )

        return components

    async def _decode_batch(
        self, logs: list[RawSwapLog]
    ) -> tuple[list[CanonicalSwap], int, int]:
        """Decode logs in arrival order, skipping the ones that fail.

        Returns:
            Decoded swaps, skipped count, and metadata failure count
        """
        decoder: SwapDecoder = self.components["decoder"]
        metadata: MetadataCache = self.components["metadata"]

        swaps = []
        skipped = 0
        metadata_failures = 0
        for log in logs:
            try:
                decoder.event_kind(log)
                pair = await metadata.resolve_pair(log.address)
                swaps.append(decoder.decode(log, pair))
            except DecodeError as e:
                skipped += 1
                logger.warning(
                    "Skipping undecodable log",
                    tx_hash=log.transaction_hash,
                    pool=log.address,
                    error=str(e),
                )
            except MetadataUnavailable as e:
                skipped += 1
                metadata_failures += 1
                logger.warning(
                    "Skipping log without metadata",
                    tx_hash=log.transaction_hash,
                    pool=log.address,
                    error=str(e),
                )
            except Exception as e:
                skipped += 1
                logger.error(
                    "Unexpected error decoding log",
                    tx_hash=log.transaction_hash,
                    pool=log.address,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return swaps, skipped, metadata_failures

    async def process_batch(self, logs: list[RawSwapLog]) -> BatchReport:
        """Run one Decode -> Propagate -> Persist cycle.

        A cycle that raises counts as unhealthy before the error propagates.

        Args:
            logs: Raw logs of one settled window, in arrival order

        Returns:
            BatchReport summarizing the cycle
        """
        try:
            report, unhealthy = await self._run_cycle(logs)
        except Exception as e:
            logger.error("Batch aborted", logs=len(logs), error=str(e))
            await self._track_health(True)
            raise
        await self._track_health(unhealthy)
        return report

    async def _run_cycle(self, logs: list[RawSwapLog]) -> tuple[BatchReport, bool]:
        started_at = datetime.now(UTC)
        start = time.monotonic()
        logger.info(
            "Batch started",
            logs=len(logs),
            block_number=logs[0].block_number if logs else None,
        )

        native_usd = None
        try:
            native_usd = await self.components["reference_rate"].get_native_asset_usd()
        except ReferenceRateUnavailable as e:
            logger.warning(
                "Reference rate unavailable, native anchor omitted", error=str(e)
            )

        swaps, skipped, metadata_failures = await self._decode_batch(logs)

        book = await resolve_prices(
            swaps,
            native_usd,
            self.components["oracle"],
            anchors=self.anchors,
            fallback=self.fallback,
        )
        enriched = apply_prices(swaps, book)
        persisted = await self.components["sink"].persist(enriched, native_usd)

        report = BatchReport(
            received=len(logs),
            decoded=len(swaps),
            skipped=skipped,
            priced_tokens=len(book.observed) - len(book.missing),
            missing_tokens=book.missing,
            written=len(persisted.written),
            failed=len(persisted.failed),
            native_usd=native_usd,
            started_at=started_at,
            duration_seconds=time.monotonic() - start,
        )

        logger.info(
            "Batch finished",
            received=report.received,
            decoded=report.decoded,
            skipped=report.skipped,
            missing_tokens=len(report.missing_tokens),
            written=report.written,
            failed=report.failed,
            duration_seconds=round(report.duration_seconds, 3),
        )

        unhealthy = bool(logs) and (
            native_usd is None
            or metadata_failures == len(logs)
            or (bool(enriched) and not persisted.written)
        )
        return report, unhealthy

    async def _track_health(self, unhealthy: bool) -> None:
        """Alert once a run of unhealthy batches reaches the threshold."""
        if not unhealthy:
            if self.unhealthy_streak:
                logger.info("Collaborators recovered", after_batches=self.unhealthy_streak)
            self.unhealthy_streak = 0
            return

        self.unhealthy_streak += 1
        if self.unhealthy_streak == self.settings.alert_after_failed_batches:
            message = (
                f"🚨 Swap feed degraded: {self.unhealthy_streak} consecutive batches "
                f"could not reach a collaborator"
            )
            logger.error("Sustained collaborator failure", batches=self.unhealthy_streak)
            await self.components["alerts"].push(message)

    async def run_once(self) -> int:
        """Poll the log source once and feed new logs to the aggregator.

        Returns:
            Number of logs delivered
        """
        try:
            logs = await self.components["log_source"].poll()
        except Exception as e:
            logger.error("Failed to poll log source", error=str(e))
            return 0

        aggregator: BatchAggregator = self.components["aggregator"]
        for log in logs:
            aggregator.on_log_arrived(log)
        return len(logs)

    async def run_forever(self) -> None:
        """Poll for swap logs until stopped."""
        logger.info("Starting swap pipeline", env=self.settings.env)
        self.running = True

        await self.components["store"].initialize()
        await self.components["alerts"].push("🤖 Swap feed started")

        cycle_count = 0
        delivered = 0
        start_time = datetime.now()

        try:
            while self.running:
                delivered += await self.run_once()
                cycle_count += 1

                if cycle_count % 10 == 0:
                    aggregator: BatchAggregator = self.components["aggregator"]
                    logger.info(
                        "Pipeline metrics",
                        polls=cycle_count,
                        logs_delivered=delivered,
                        batches=aggregator.cycles_run,
                        dropped_logs=aggregator.dropped_logs,
                        cached_pairs=self.components["metadata"].pair_count,
                        uptime_seconds=(datetime.now() - start_time).total_seconds(),
                    )

                await asyncio.sleep(self.settings.poll_interval_seconds)

        except asyncio.CancelledError:
            logger.info("Pipeline cancelled")
        except Exception as e:
            logger.error("Pipeline error", error=str(e))
            await self.components["alerts"].push(f"🚨 Pipeline error: {str(e)}")
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the pipeline and release resources."""
        if self._stopped:
            return
        self._stopped = True
        self.running = False
        logger.info("Stopping swap pipeline")

        await self.components["aggregator"].close()
        await self.components["alerts"].push("🛑 Swap feed stopped")

        for name in ("reference_rate", "oracle", "alerts", "store"):
            component = self.components.get(name)
            close = getattr(component, "close", None)
            if close is not None:
                await close()


async def main() -> None:
    """Main entry point for the swap feed."""
    parser = argparse.ArgumentParser(description="DEX swap USD feed")
    parser.add_argument(
        "--config", default="configs/dev.yaml", help="Configuration file path"
    )
    parser.add_argument(
        "--profile",
        default="dev",
        choices=["dev", "prod"],
        help="Configuration profile",
    )

    args = parser.parse_args()

    try:
        settings = load_settings(args.profile, args.config)
        logger.info("Settings loaded", profile=args.profile, config=args.config)

        pipeline = SwapPipeline(settings)

        def signal_handler(signum, frame):
            logger.info("Received shutdown signal")
            pipeline.running = False

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await pipeline.run_forever()

    except Exception as e:
        logger.error("Fatal error", error=str(e))
        sys.exit(1)


def cli() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
