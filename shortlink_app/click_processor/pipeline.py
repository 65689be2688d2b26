"""
Click pipeline: the boundary between the redirect path and telemetry.

The redirect handler only calls submit(). Everything behind it (queue,
workers, recorder, aggregation) runs in background tasks owned by the
pipeline for the lifetime of the application.
"""

import asyncio
import time
from typing import List, Optional

from shortlink_app.click_processor.worker import ClickWorker
from shortlink_app.logging_config import get_logger
from shortlink_app.queue.models import ClickObservation
from shortlink_app.queue.strategies import QueueStrategy
from shortlink_app.services.analytics_aggregator import AggregationScheduler
from shortlink_app.services.click_recorder import ClickRecorder

logger = get_logger(__name__)


class ClickPipeline:
    """
    Owns the click queue consumers and the aggregation loop.

    Backpressure policy: submit() waits briefly for queue room (the queue's
    publish timeout). If the queue is still full or unavailable, the click
    is appended directly by the recorder. Either way the event is stored;
    only the aggregation lag grows.
    """

    def __init__(
        self,
        queue: QueueStrategy,
        recorder: ClickRecorder,
        scheduler: AggregationScheduler,
        queue_name: str,
        workers: int = 1
    ):
        self.queue = queue
        self.recorder = recorder
        self.scheduler = scheduler
        self.queue_name = queue_name
        self.workers: List[ClickWorker] = [
            ClickWorker(queue, recorder, scheduler, queue_name=queue_name)
            for _ in range(workers)
        ]
        self._tasks: List[asyncio.Task] = []
        self._stop_requested: Optional[asyncio.Event] = None

    async def submit(self, observation: ClickObservation) -> None:
        """
        Hand a click off for recording.

        Raises:
            StorageError: queue refused the click and the direct append failed
        """
        if await self.queue.publish(self.queue_name, observation):
            return
        logger.warning(f"Click queue full or unavailable; recording {observation.short_code} directly")
        await self.recorder.record(observation.link_id, observation)

    async def start(self) -> None:
        if self._tasks:
            return
        self._stop_requested = asyncio.Event()
        self._tasks = [asyncio.create_task(worker.start()) for worker in self.workers]
        self._tasks.append(asyncio.create_task(self.scheduler.run()))
        logger.info(f"Click pipeline started with {len(self.workers)} worker(s)")

    def request_stop(self) -> None:
        """Signal-handler friendly stop request"""
        if self._stop_requested is not None:
            self._stop_requested.set()

    async def wait_stopped(self) -> None:
        if self._stop_requested is not None:
            await self._stop_requested.wait()

    async def drain(self, timeout: float = 5.0) -> bool:
        """
        Wait until every queued click is stored, then flush aggregation.

        Returns False if the queue did not empty within ``timeout``.
        """
        deadline = time.monotonic() + timeout
        drained = True
        while await self.queue.get_queue_length(self.queue_name) > 0:
            if time.monotonic() >= deadline or not self._tasks:
                drained = False
                break
            await asyncio.sleep(0.01)
        await self.scheduler.flush()
        return drained

    async def stop(self, timeout: float = 5.0) -> None:
        """Drain what the workers can finish in ``timeout``, then cancel them."""
        if not self._tasks:
            return
        if not await self.drain(timeout):
            pending = await self.queue.get_queue_length(self.queue_name)
            logger.warning(f"Stopping with {pending} clicks still queued")
        for worker in self.workers:
            worker.stop()
        self.scheduler.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Click pipeline stopped")
