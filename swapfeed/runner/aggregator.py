"""Debounced batching of swap log arrivals."""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import structlog

from ..core.types import RawSwapLog

logger = structlog.get_logger(__name__)

BatchHandler = Callable[[list[RawSwapLog]], Awaitable[Any]]


class AggregatorState(str, Enum):
    """Lifecycle of one batch window."""

    IDLE = "idle"
    ARRIVING = "arriving"
    PROCESSING = "processing"


class BusyPolicy(str, Enum):
    """Handling of logs that arrive while a batch is processing."""

    QUEUE = "queue"
    DROP = "drop"


class BatchAggregator:
    """Coalesces bursty log arrivals into batches.

    Each arrival restarts a quiet-period timer. When the timer fires the
    buffered logs go to ``handler`` as one batch, and only one batch is
    processed at a time. Logs that arrive meanwhile are either replayed as
    the next window (``BusyPolicy.QUEUE``) or discarded (``BusyPolicy.DROP``).
    """

    def __init__(
        self,
        handler: BatchHandler,
        quiet_period: float = 0.3,
        busy_policy: BusyPolicy = BusyPolicy.QUEUE,
    ) -> None:
        """Initialize batch aggregator.

        Args:
            handler: Coroutine run once per settled batch
            quiet_period: Seconds without arrivals before a batch settles
            busy_policy: What to do with arrivals during processing
        """
        self.handler = handler
        self.quiet_period = quiet_period
        self.busy_policy = busy_policy

        self._state = AggregatorState.IDLE
        self._buffer: list[RawSwapLog] = []
        self._pending: list[RawSwapLog] = []
        self._timer: asyncio.TimerHandle | None = None
        self._in_flight: asyncio.Task | None = None
        self._closed = False

        self.cycles_run = 0
        self.dropped_logs = 0

    @property
    def state(self) -> AggregatorState:
        return self._state

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def on_log_arrived(self, log: RawSwapLog) -> None:
        """Buffer a log and restart the quiet-period timer.

        Must be called from the event loop thread.
        """
        if self._closed:
            logger.warning("Log arrived after close", tx_hash=log.transaction_hash)
            return

        if self._state is AggregatorState.PROCESSING:
            if self.busy_policy is BusyPolicy.DROP:
                self.dropped_logs += 1
                logger.debug(
                    "Dropped log during processing",
                    block_number=log.block_number,
                    tx_hash=log.transaction_hash,
                )
            else:
                self._pending.append(log)
            return

        if self._state is AggregatorState.IDLE:
            logger.info("Window opened", block_number=log.block_number)
            self._state = AggregatorState.ARRIVING

        self._buffer.append(log)
        self._restart_timer()

    def _restart_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.quiet_period, self._settle)

    def _settle(self) -> None:
        self._timer = None
        batch, self._buffer = self._buffer, []
        # Set before the cycle's first suspension point.
        self._state = AggregatorState.PROCESSING
        self._in_flight = asyncio.get_running_loop().create_task(self._run_cycle(batch))

    async def _run_cycle(self, batch: list[RawSwapLog]) -> None:
        try:
            await self.handler(batch)
        except Exception as e:
            logger.error("Batch cycle failed", logs=len(batch), error=str(e))
        finally:
            self.cycles_run += 1
            self._in_flight = None
            self._state = AggregatorState.IDLE
            self._replay_pending()

    def _replay_pending(self) -> None:
        if self._closed or not self._pending:
            return
        replay, self._pending = self._pending, []
        logger.info("Replaying logs queued during processing", logs=len(replay))
        self._state = AggregatorState.ARRIVING
        self._buffer.extend(replay)
        self._restart_timer()

    async def wait_idle(self) -> None:
        """Wait until no window is open and no batch is processing."""
        while self._state is not AggregatorState.IDLE:
            if self._in_flight is not None:
                await asyncio.shield(self._in_flight)
            else:
                await asyncio.sleep(self.quiet_period / 4)

    async def close(self) -> None:
        """Cancel the open window and wait for the in-flight batch.

        Logs still buffered or queued are discarded.
        """
        self._closed = True
        self._cancel_timer()
        if self._in_flight is not None:
            await asyncio.shield(self._in_flight)
        self._cancel_timer()

        discarded = len(self._buffer) + len(self._pending)
        if discarded:
            logger.warning("Discarding unprocessed logs on close", logs=discarded)
        self._buffer = []
        self._pending = []
        self._state = AggregatorState.IDLE

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
