"""
Queue strategies using Strategy Pattern.
Allows switching between different queue backends (Redis Streams, In-Memory).

Delivery contract for both backends: a consumed message stays in flight
until it is acked; a nacked message is delivered again. The worker only
acks after the click has been appended, so a failing store delays clicks
but does not lose them.
"""

import asyncio
import itertools
import json
import socket
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Dict, List

from .models import ClickObservation
from shortlink_app.logging_config import get_logger

logger = get_logger(__name__)

POLL_INTERVAL = 0.01  # seconds between checks while waiting on the in-memory queue


class QueueStrategy(ABC):
    """
    Abstract base class for queue strategies.

    Similar to Celery's broker abstraction.
    """

    @abstractmethod
    async def publish(self, queue_name: str, message: ClickObservation) -> bool:
        """
        Publish a message to the queue.

        Returns:
            True if enqueued, False if the queue had no room in time or the
            backend failed. Callers must not treat False as "dropped".
        """
        pass

    @abstractmethod
    async def consume(
        self,
        queue_name: str,
        batch_size: int = 1,
        block_time: int = 1000
    ) -> List[ClickObservation]:
        """
        Consume messages from the queue.

        Args:
            queue_name: Name of the queue
            batch_size: Maximum number of messages to retrieve
            block_time: Time to wait for messages (milliseconds)
        """
        pass

    @abstractmethod
    async def ack(self, queue_name: str, message_ids: List[str]) -> bool:
        """Acknowledge messages (mark as processed)"""
        pass

    @abstractmethod
    async def nack(self, queue_name: str, message_ids: List[str]) -> bool:
        """Return in-flight messages to the queue for another attempt"""
        pass

    @abstractmethod
    async def get_queue_length(self, queue_name: str) -> int:
        """Number of messages waiting or in flight"""
        pass

    async def reclaim(self, queue_name: str, min_idle_ms: int = 30000, count: int = 100) -> List[ClickObservation]:
        """
        Take over messages left in flight by a consumer that died.

        Backends without a pending list have nothing to reclaim.
        """
        return []


class RedisStreamQueue(QueueStrategy):
    """
    Redis Streams implementation for message queue.

    - Persistent (messages survive restarts)
    - Consumer groups (several worker processes)

    How it works:
    1. Producer publishes messages using XADD
    2. Consumer reads messages using XREADGROUP
    3. Consumer acknowledges messages using XACK
    4. Unacknowledged messages stay in the pending list for reclaiming

    redis-py blocks, so every command runs on a worker thread; an idle
    XREADGROUP wait never holds the event loop.
    """

    def __init__(self, redis_client, consumer_group: str = "click_workers", max_length: int = None):
        """
        Args:
            redis_client: Redis client instance
            consumer_group: Name of consumer group for workers
            max_length: Approximate stream cap (None keeps everything)
        """
        self.redis = redis_client
        self.consumer_group = consumer_group
        self.max_length = max_length
        self.consumer_name = f"worker-{socket.gethostname()}-{id(self)}"
        self._initialized_streams = set()

    def _ensure_stream_exists(self, queue_name: str):
        """Create the stream and consumer group on first use."""
        if queue_name in self._initialized_streams:
            return

        try:
            self.redis.xgroup_create(
                name=queue_name,
                groupname=self.consumer_group,
                id="0",
                mkstream=True
            )
            logger.info(f"Created Redis stream {queue_name}")
        except Exception as e:
            # Group might already exist, that's OK
            if "BUSYGROUP" not in str(e):
                raise

        self._initialized_streams.add(queue_name)

    async def publish(self, queue_name: str, message: ClickObservation) -> bool:
        try:
            await asyncio.to_thread(self._ensure_stream_exists, queue_name)
            await asyncio.to_thread(
                self.redis.xadd,
                queue_name,
                {"data": message.model_dump_json()},
                maxlen=self.max_length,
                approximate=True,
            )
            return True
        except Exception as e:
            logger.error(f"Redis publish error for {message.short_code}: {e}")
            return False

    async def consume(
        self,
        queue_name: str,
        batch_size: int = 1,
        block_time: int = 1000
    ) -> List[ClickObservation]:
        try:
            await asyncio.to_thread(self._ensure_stream_exists, queue_name)

            # '>' means "messages never delivered to other consumers"
            messages = await asyncio.to_thread(
                self.redis.xreadgroup,
                groupname=self.consumer_group,
                consumername=self.consumer_name,
                streams={queue_name: ">"},
                count=batch_size,
                block=block_time
            )
        except Exception as e:
            logger.error(f"Redis consume error: {e}")
            return []

        events = []
        for _, stream_messages in messages or []:
            for message_id, message_data in stream_messages:
                message_id = message_id.decode("utf-8")
                try:
                    data = json.loads(message_data[b"data"].decode("utf-8"))
                    event = ClickObservation(**data)
                except Exception as e:
                    # Unparseable entries can never succeed; ack them away
                    logger.error(f"Discarding malformed message {message_id}: {e}")
                    await self.ack(queue_name, [message_id])
                    continue
                event.message_id = message_id
                events.append(event)

        return events

    async def ack(self, queue_name: str, message_ids: List[str]) -> bool:
        if not message_ids:
            return True
        try:
            await asyncio.to_thread(self.redis.xack, queue_name, self.consumer_group, *message_ids)
            return True
        except Exception as e:
            logger.error(f"Redis ack error: {e}")
            return False

    async def nack(self, queue_name: str, message_ids: List[str]) -> bool:
        """
        Leave messages pending.

        They stay in the consumer group's pending list and are redelivered
        by XAUTOCLAIM from the worker's recovery pass.
        """
        if message_ids:
            logger.warning(f"{len(message_ids)} messages left pending on {queue_name}")
        return True

    async def reclaim(self, queue_name: str, min_idle_ms: int = 30000, count: int = 100) -> List[ClickObservation]:
        """Take over messages another consumer left pending for too long."""
        try:
            await asyncio.to_thread(self._ensure_stream_exists, queue_name)
            result = await asyncio.to_thread(
                self.redis.xautoclaim,
                queue_name,
                self.consumer_group,
                self.consumer_name,
                min_idle_time=min_idle_ms,
                start_id="0-0",
                count=count,
            )
        except Exception as e:
            logger.error(f"Redis reclaim error: {e}")
            return []

        claimed = result[1] if len(result) > 1 else []
        events = []
        for message_id, message_data in claimed:
            message_id = message_id.decode("utf-8")
            if not message_data:
                continue
            try:
                event = ClickObservation(**json.loads(message_data[b"data"].decode("utf-8")))
            except Exception as e:
                logger.error(f"Discarding malformed message {message_id}: {e}")
                await self.ack(queue_name, [message_id])
                continue
            event.message_id = message_id
            events.append(event)
        return events

    async def get_queue_length(self, queue_name: str) -> int:
        """Entries not yet delivered to the group plus entries awaiting ack"""
        try:
            groups = await asyncio.to_thread(self.redis.xinfo_groups, queue_name)
        except Exception:
            return 0
        for group in groups:
            name = group.get("name")
            if isinstance(name, bytes):
                name = name.decode("utf-8")
            if name == self.consumer_group:
                return (group.get("pending") or 0) + (group.get("lag") or 0)
        return 0


class InMemoryQueue(QueueStrategy):
    """
    Bounded in-memory queue using Python deques.

    Pros:
    - No external dependencies
    - Fast (no network overhead)

    Cons:
    - Not persistent (lost on restart)
    - Not distributed (each process has its own queue)

    Waiting is done by polling with asyncio.sleep, so the queue is not tied
    to the event loop that created it.
    """

    def __init__(self, max_size: int = 10000, publish_timeout: float = 0.0):
        """
        Args:
            max_size: Messages accepted before publish starts waiting
            publish_timeout: Seconds publish waits for room before giving up
        """
        self.max_size = max_size
        self.publish_timeout = publish_timeout
        self._queues: Dict[str, Deque[ClickObservation]] = {}
        self._retry: Dict[str, Deque[ClickObservation]] = {}
        self._in_flight: Dict[str, Dict[str, ClickObservation]] = {}
        self._ids = itertools.count(1)

    def _get_queue(self, queue_name: str) -> Deque[ClickObservation]:
        if queue_name not in self._queues:
            self._queues[queue_name] = deque()
            self._retry[queue_name] = deque()
            self._in_flight[queue_name] = {}
        return self._queues[queue_name]

    async def publish(self, queue_name: str, message: ClickObservation) -> bool:
        """
        Append a message, waiting up to ``publish_timeout`` seconds for room.

        Returns False when the queue is still full after the wait.
        """
        queue = self._get_queue(queue_name)
        deadline = time.monotonic() + self.publish_timeout
        while len(queue) >= self.max_size:
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(POLL_INTERVAL)
        queue.append(message.model_copy())
        return True

    async def consume(
        self,
        queue_name: str,
        batch_size: int = 1,
        block_time: int = 1000
    ) -> List[ClickObservation]:
        queue = self._get_queue(queue_name)
        retry = self._retry[queue_name]
        deadline = time.monotonic() + block_time / 1000
        while not queue and not retry:
            if time.monotonic() >= deadline:
                return []
            await asyncio.sleep(POLL_INTERVAL)

        messages = []
        in_flight = self._in_flight[queue_name]
        while len(messages) < batch_size and (retry or queue):
            message = retry.popleft() if retry else queue.popleft()
            message.message_id = str(next(self._ids))
            in_flight[message.message_id] = message
            messages.append(message)
        return messages

    async def ack(self, queue_name: str, message_ids: List[str]) -> bool:
        self._get_queue(queue_name)
        in_flight = self._in_flight[queue_name]
        for message_id in message_ids:
            in_flight.pop(message_id, None)
        return True

    async def nack(self, queue_name: str, message_ids: List[str]) -> bool:
        """Redeliver ahead of new messages, ignoring the size bound."""
        self._get_queue(queue_name)
        in_flight = self._in_flight[queue_name]
        retry = self._retry[queue_name]
        for message_id in message_ids:
            message = in_flight.pop(message_id, None)
            if message is not None:
                retry.append(message)
        return True

    async def get_queue_length(self, queue_name: str) -> int:
        queue = self._get_queue(queue_name)
        return len(queue) + len(self._retry[queue_name]) + len(self._in_flight[queue_name])
