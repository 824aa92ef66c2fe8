"""
Queue strategies using Strategy Pattern.
Allows switching between different queue backends (Redis Streams, In-Memory).
"""

import json
import logging
import socket
from abc import ABC, abstractmethod
from collections import deque
from typing import Dict, List

from .models import JobMessage

logger = logging.getLogger(__name__)


class QueueStrategy(ABC):
    """
    Abstract base class for queue strategies.

    The job service publishes and the job worker consumes through this
    interface, similar to Celery's broker abstraction.
    """

    @abstractmethod
    async def publish(self, queue_name: str, message: JobMessage) -> bool:
        """
        Publish a message to the queue.

        Returns:
            True if successful, False otherwise
        """
        pass

    @abstractmethod
    async def consume(
        self,
        queue_name: str,
        batch_size: int = 1,
        block_time: int = 1000
    ) -> List[JobMessage]:
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
        """Acknowledge messages (mark as processed)."""
        pass

    @abstractmethod
    async def get_queue_length(self, queue_name: str) -> int:
        pass


class RedisStreamQueue(QueueStrategy):
    """
    Redis Streams implementation for the job queue.

    1. Producer publishes messages using XADD
    2. Consumer reads messages using XREADGROUP
    3. Consumer acknowledges messages using XACK
    """

    def __init__(self, redis_client, consumer_group: str = "job_workers"):
        self.redis = redis_client
        self.consumer_group = consumer_group
        self.consumer_name = f"worker-{socket.gethostname()}-{id(self)}"
        self._initialized_streams = set()

    async def _ensure_stream_exists(self, queue_name: str):
        if queue_name in self._initialized_streams:
            return

        try:
            # MKSTREAM creates the stream when it does not exist yet
            self.redis.xgroup_create(
                name=queue_name,
                groupname=self.consumer_group,
                id="0",
                mkstream=True
            )
            logger.info("Created Redis stream: %s", queue_name)
        except Exception as e:
            if "BUSYGROUP" not in str(e):
                logger.warning("Stream creation warning: %s", e)

        self._initialized_streams.add(queue_name)

    async def publish(self, queue_name: str, message: JobMessage) -> bool:
        try:
            await self._ensure_stream_exists(queue_name)
            self.redis.xadd(queue_name, {"data": message.model_dump_json(exclude={"message_id"})})
            return True
        except Exception as e:
            logger.error("Redis publish error: %s", e)
            return False

    async def consume(
        self,
        queue_name: str,
        batch_size: int = 1,
        block_time: int = 1000
    ) -> List[JobMessage]:
        try:
            await self._ensure_stream_exists(queue_name)

            # ">" means "messages never delivered to other consumers".
            # block_time=0 polls without blocking (embedded worker).
            messages = self.redis.xreadgroup(
                groupname=self.consumer_group,
                consumername=self.consumer_name,
                streams={queue_name: ">"},
                count=batch_size,
                block=block_time or None
            )

            if not messages:
                return []

            jobs = []
            for _stream_name, stream_messages in messages:
                for message_id, message_data in stream_messages:
                    try:
                        data = json.loads(message_data[b"data"].decode("utf-8"))
                        job = JobMessage(**data)
                        job.message_id = message_id.decode("utf-8")
                        jobs.append(job)
                    except Exception as e:
                        logger.warning("Failed to parse message %s: %s", message_id, e)

            return jobs

        except Exception as e:
            logger.error("Redis consume error: %s", e)
            return []

    async def ack(self, queue_name: str, message_ids: List[str]) -> bool:
        try:
            if not message_ids:
                return True
            self.redis.xack(queue_name, self.consumer_group, *message_ids)
            return True
        except Exception as e:
            logger.error("Redis ack error: %s", e)
            return False

    async def get_queue_length(self, queue_name: str) -> int:
        try:
            info = self.redis.xinfo_stream(queue_name)
            return info["length"]
        except Exception:
            return 0


class InMemoryQueue(QueueStrategy):
    """
    In-memory queue implementation using Python deque.

    Not persistent and not shared between processes. Messages are removed
    on consume, so ack is a no-op. Used in development and tests.
    """

    def __init__(self):
        self._queues: Dict[str, deque] = {}

    def _get_queue(self, queue_name: str) -> deque:
        if queue_name not in self._queues:
            self._queues[queue_name] = deque()
        return self._queues[queue_name]

    async def publish(self, queue_name: str, message: JobMessage) -> bool:
        self._get_queue(queue_name).append(message)
        return True

    async def consume(
        self,
        queue_name: str,
        batch_size: int = 1,
        block_time: int = 1000
    ) -> List[JobMessage]:
        """block_time is ignored (no blocking in this simple implementation)"""
        queue = self._get_queue(queue_name)
        messages = []
        while queue and len(messages) < batch_size:
            messages.append(queue.popleft())
        return messages

    async def ack(self, queue_name: str, message_ids: List[str]) -> bool:
        return True

    async def get_queue_length(self, queue_name: str) -> int:
        return len(self._get_queue(queue_name))
