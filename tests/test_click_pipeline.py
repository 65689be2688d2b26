"""
Tests for the click queue, worker and pipeline.
"""
import asyncio

from shortlink_app.click_processor.pipeline import ClickPipeline
from shortlink_app.click_processor.worker import ClickWorker
from shortlink_app.queue.models import ClickObservation
from shortlink_app.queue.strategies import InMemoryQueue
from shortlink_app.schemas.records import LinkRecord
from shortlink_app.services.analytics_aggregator import AggregationScheduler, AnalyticsAggregator
from shortlink_app.services.click_recorder import ClickRecorder

QUEUE = "clicks"


def add_link(storage, code="clk1"):
    return asyncio.run(storage.add_link(LinkRecord(original_url="https://example.com", short_code=code)))


def observation(link, **extra):
    return ClickObservation(link_id=link.id, short_code=link.short_code, **extra)


def components(storage, queue=None):
    scheduler = AggregationScheduler(AnalyticsAggregator(storage), interval=0.05)
    recorder = ClickRecorder(storage, scheduler=scheduler)
    return queue or InMemoryQueue(max_size=100), recorder, scheduler


class FailingRecorder:
    """Fails the first ``failures`` records, then delegates"""

    def __init__(self, recorder, failures=1):
        self.recorder = recorder
        self.failures = failures

    async def record(self, link_id, observation):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("storage unavailable")
        return await self.recorder.record(link_id, observation)


class TestInMemoryQueue:
    """Test queue semantics the worker relies on"""

    def test_publish_times_out_when_full(self, memory_storage):
        link = add_link(memory_storage)
        queue = InMemoryQueue(max_size=1, publish_timeout=0.05)

        async def run():
            assert await queue.publish(QUEUE, observation(link))
            return await queue.publish(QUEUE, observation(link))

        assert asyncio.run(run()) is False

    def test_nack_redelivers_before_new_messages(self, memory_storage):
        link = add_link(memory_storage)
        queue = InMemoryQueue()

        async def run():
            await queue.publish(QUEUE, observation(link, ip_address="203.0.113.1"))
            [first] = await queue.consume(QUEUE, batch_size=1, block_time=10)
            await queue.publish(QUEUE, observation(link, ip_address="203.0.113.2"))
            await queue.nack(QUEUE, [first.message_id])
            return await queue.consume(QUEUE, batch_size=1, block_time=10)

        [redelivered] = asyncio.run(run())
        assert redelivered.ip_address == "203.0.113.1"

    def test_length_counts_unacked_messages(self, memory_storage):
        link = add_link(memory_storage)
        queue = InMemoryQueue()

        async def run():
            await queue.publish(QUEUE, observation(link))
            [message] = await queue.consume(QUEUE, batch_size=10, block_time=10)
            before_ack = await queue.get_queue_length(QUEUE)
            await queue.ack(QUEUE, [message.message_id])
            return before_ack, await queue.get_queue_length(QUEUE)

        assert asyncio.run(run()) == (1, 0)


class TestClickWorker:
    """Test batch handling"""

    def test_batch_is_stored_and_aggregated_once(self, storage):
        link = add_link(storage)
        queue, recorder, scheduler = components(storage)
        worker = ClickWorker(queue, recorder, scheduler, queue_name=QUEUE, batch_size=50, block_time=10)

        async def run():
            for _ in range(5):
                await queue.publish(QUEUE, observation(link))
            return await worker.process_once()

        assert asyncio.run(run()) == 5
        snapshot = asyncio.run(storage.get_snapshot(link.id))
        assert snapshot.total_clicks == 5
        assert asyncio.run(queue.get_queue_length(QUEUE)) == 0

    def test_failed_record_is_nacked_and_retried(self, memory_storage):
        link = add_link(memory_storage)
        queue, recorder, scheduler = components(memory_storage)
        worker = ClickWorker(
            queue, FailingRecorder(recorder), scheduler,
            queue_name=QUEUE, batch_size=10, block_time=10, retry_delay=0
        )

        async def run():
            await queue.publish(QUEUE, observation(link))
            first = await worker.process_once()
            length_after_failure = await queue.get_queue_length(QUEUE)
            second = await worker.process_once()
            return first, length_after_failure, second

        assert asyncio.run(run()) == (0, 1, 1)
        assert asyncio.run(memory_storage.count_clicks(link.id)) == 1


class TestClickPipeline:
    """Test submit, drain and the backpressure fallback"""

    def test_submitted_clicks_are_drained(self, storage):
        link = add_link(storage)
        queue, recorder, scheduler = components(storage)
        pipeline = ClickPipeline(queue, recorder, scheduler, queue_name=QUEUE, workers=2)

        async def run():
            await pipeline.start()
            for _ in range(20):
                await pipeline.submit(observation(link))
            drained = await pipeline.drain(timeout=5.0)
            await pipeline.stop()
            return drained

        assert asyncio.run(run()) is True
        snapshot = asyncio.run(storage.get_snapshot(link.id))
        assert snapshot.total_clicks == asyncio.run(storage.count_clicks(link.id)) == 20

    def test_full_queue_records_directly(self, memory_storage):
        link = add_link(memory_storage)
        queue, recorder, scheduler = components(memory_storage, InMemoryQueue(max_size=1, publish_timeout=0))
        # Not started: nothing consumes, so the second submit finds the queue full
        pipeline = ClickPipeline(queue, recorder, scheduler, queue_name=QUEUE)

        async def run():
            await pipeline.submit(observation(link))
            await pipeline.submit(observation(link))

        asyncio.run(run())
        assert asyncio.run(queue.get_queue_length(QUEUE)) == 1
        assert asyncio.run(memory_storage.count_clicks(link.id)) == 1
        assert scheduler.pending == 1

    def test_stop_without_start_is_noop(self, memory_storage):
        queue, recorder, scheduler = components(memory_storage)
        pipeline = ClickPipeline(queue, recorder, scheduler, queue_name=QUEUE)
        asyncio.run(pipeline.stop())


class TestReclaim:
    """Test recovery of messages left pending"""

    def test_pending_messages_are_reclaimed_once_per_interval(self, memory_storage):
        link = add_link(memory_storage)

        class PendingQueue(InMemoryQueue):
            def __init__(self, pending):
                super().__init__()
                self.pending = pending
                self.reclaim_calls = 0

            async def reclaim(self, queue_name, min_idle_ms=30000, count=100):
                self.reclaim_calls += 1
                pending, self.pending = self.pending, []
                return pending

        queue, recorder, scheduler = components(
            memory_storage, PendingQueue([observation(link, message_id="1-0")])
        )
        worker = ClickWorker(queue, recorder, scheduler, queue_name=QUEUE, reclaim_interval=60)

        assert asyncio.run(worker.reclaim_pending()) == 1
        assert asyncio.run(worker.reclaim_pending()) == 0
        assert queue.reclaim_calls == 1
        assert asyncio.run(memory_storage.count_clicks(link.id)) == 1
