"""
Click Worker

Consumes click observations from the queue, appends them to the event log
and triggers analytics aggregation.

Architecture:
- Consumes messages from queue in batches
- Appends each click through the ClickRecorder
- Acks each message only after its append succeeded, nacks the rest
- Flushes the aggregation scheduler after every batch
"""

import asyncio
import signal
import sys
import time
from typing import List

from shortlink_app.config import settings
from shortlink_app.logging_config import get_logger, setup_logging
from shortlink_app.queue.models import ClickObservation
from shortlink_app.queue.strategies import QueueStrategy
from shortlink_app.services.analytics_aggregator import AggregationScheduler
from shortlink_app.services.click_recorder import ClickRecorder

logger = get_logger(__name__)


class ClickWorker:
    """
    Queue consumer for click observations.

    A failed append is never acked: the message goes back to the queue and
    is retried after ``retry_delay``. Aggregation lags while storage is
    failing, but no click is lost.
    """

    def __init__(
        self,
        queue: QueueStrategy,
        recorder: ClickRecorder,
        scheduler: AggregationScheduler,
        queue_name: str = None,
        batch_size: int = None,
        block_time: int = None,
        retry_delay: float = 1.0,
        reclaim_interval: float = 30.0
    ):
        """
        Args:
            queue: Queue strategy for consuming messages
            recorder: Appends clicks to the event log
            scheduler: Aggregation scheduler flushed after each batch
        """
        self.queue = queue
        self.recorder = recorder
        self.scheduler = scheduler
        self.queue_name = queue_name or settings.queue_name
        self.batch_size = batch_size or settings.queue_batch_size
        self.block_time = block_time or settings.queue_block_time_ms
        self.retry_delay = retry_delay
        self.reclaim_interval = reclaim_interval
        self._last_reclaim = 0.0
        self.running = False
        self.processed_count = 0

    async def start(self):
        """Consume until stopped"""
        self.running = True
        logger.info(f"Click worker started on {self.queue_name} (batch size {self.batch_size})")

        while self.running:
            try:
                await self.reclaim_pending()
                await self.process_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error processing click batch: {e}")
                await asyncio.sleep(self.retry_delay)

        logger.info(f"Click worker stopped after {self.processed_count} clicks")

    async def reclaim_pending(self) -> int:
        """
        Re-handle messages left pending by a crashed or failing consumer.

        Runs at start and then at most once per ``reclaim_interval``.
        """
        now = time.monotonic()
        if self._last_reclaim and now - self._last_reclaim < self.reclaim_interval:
            return 0
        self._last_reclaim = now
        reclaimed = await self.queue.reclaim(self.queue_name)
        if not reclaimed:
            return 0
        logger.info(f"Reclaimed {len(reclaimed)} pending clicks")
        return await self.handle_batch(reclaimed)

    async def process_once(self) -> int:
        """Consume and handle one batch. Returns the number of clicks stored."""
        messages = await self.queue.consume(
            self.queue_name,
            batch_size=self.batch_size,
            block_time=self.block_time
        )
        if not messages:
            return 0
        return await self.handle_batch(messages)

    async def handle_batch(self, messages: List[ClickObservation]) -> int:
        stored, failed = [], []
        for message in messages:
            try:
                await self.recorder.record(message.link_id, message)
                stored.append(message.message_id)
            except Exception as e:
                logger.error(f"Failed to record click on {message.short_code}: {e}")
                failed.append(message.message_id)

        await self.queue.ack(self.queue_name, [mid for mid in stored if mid])
        if failed:
            await self.queue.nack(self.queue_name, [mid for mid in failed if mid])

        await self.scheduler.flush()

        self.processed_count += len(stored)
        logger.debug(f"Stored {len(stored)} clicks, {len(failed)} failed. Total: {self.processed_count}")

        if failed:
            await asyncio.sleep(self.retry_delay)
        return len(stored)

    def stop(self):
        """Stop the worker"""
        self.running = False


async def main():
    """
    Standalone worker for a shared (Redis Streams) queue.

    Usage:
        python -m shortlink_app.click_processor.worker
    """
    setup_logging()
    logger.info(
        f"Click worker starting: environment={settings.environment} "
        f"queue={settings.queue_backend} storage={settings.storage_backend}"
    )

    from shortlink_app.dependencies import build_click_pipeline, get_queue, get_storage

    pipeline = build_click_pipeline(get_storage(), get_queue(), workers=1)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, pipeline.request_stop)

    try:
        await pipeline.start()
        await pipeline.wait_stopped()
    finally:
        await pipeline.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)
