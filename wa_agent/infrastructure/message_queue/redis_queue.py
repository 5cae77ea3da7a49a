"""
Redis List Message Queue

Architecture:
    DurableQueue (Public API)
        ├── MessageSerializer (QueueMessage <-> JSON via orjson)
        └── Redis list (LPUSH producer side, BRPOP consumer side = FIFO)
    QueueConsumer
        └── Consumer loop: dequeue → handler → requeue on failure

Delivery is at-least-once from the queue's point of view: a message popped
by a consumer that then crashes is gone from Redis, but a handler failure
puts it back (up to ``max_attempts``).

Failure contract:
    - Remote errors are logged and degrade: enqueue → None, dequeue → None,
      size → 0, clear → no-op
    - A stored item that is not a valid message is logged and skipped (None)
    - A full queue (``max_size``) raises QueueFullError to the producer
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

import orjson
from pydantic import BaseModel, Field, ValidationError

from wa_agent.core.config.constants import DEFAULT_QUEUE_NAME, QUEUE_BLOCK_TIMEOUT, QUEUE_MAX_ATTEMPTS
from wa_agent.core.exceptions import QueueConsumerError, QueueFullError
from wa_agent.core.interfaces.queue import RemoteListStore
from wa_agent.core.logging.logger import get_logger
from wa_agent.core.observability.metrics import MetricsCollector

logger = get_logger(__name__)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class QueueMessage(BaseModel):
    """Envelope stored in the Redis list."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    data: Any = None
    timestamp: int = Field(default_factory=_epoch_ms, description="Enqueue time, epoch ms")
    attempts: int = Field(default=0, ge=0, description="Failed handler runs so far")


# =============================================================================
# LAYER 1: SERIALIZATION
# =============================================================================


class MessageSerializer:
    """Converts between ``QueueMessage`` and the JSON stored in Redis."""

    @staticmethod
    def serialize(message: QueueMessage) -> bytes:
        return orjson.dumps(message.model_dump())

    @staticmethod
    def deserialize(raw: str | bytes) -> QueueMessage:
        """
        Raises:
            orjson.JSONDecodeError: not JSON
            ValidationError: JSON, but not a message envelope
        """
        return QueueMessage.model_validate(orjson.loads(raw))


# =============================================================================
# LAYER 2: PUBLIC API
# =============================================================================


class DurableQueue:
    """
    FIFO work queue on a Redis list.

    Usage:
        queue = DurableQueue(redis_client, queue_name="inbound-messages")
        message_id = await queue.enqueue({"from": "+15550001111", "body": "hola"})

        message = await queue.dequeue()  # waits up to block_timeout seconds
        if message:
            await handle(message.data)
    """

    def __init__(
        self,
        redis: RemoteListStore,
        queue_name: str = DEFAULT_QUEUE_NAME,
        block_timeout: float = QUEUE_BLOCK_TIMEOUT,
        max_size: int | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._redis = redis
        self.queue_name = queue_name
        self._block_timeout = block_timeout
        self._max_size = max_size
        self._metrics = metrics
        self._serializer = MessageSerializer()

    def _remote_error(self, operation: str, error: Exception) -> None:
        logger.error(
            "Queue operation failed",
            stage="QUEUE.ERR",
            queue=self.queue_name,
            operation=operation,
            error=str(error),
            error_type=type(error).__name__,
        )
        if self._metrics:
            self._metrics.record_remote_error("queue", operation)

    def _record_depth(self, depth: int) -> None:
        if self._metrics:
            self._metrics.set_queue_depth(self.queue_name, depth)

    async def _push(self, message: QueueMessage) -> str | None:
        if self._max_size is not None:
            try:
                depth = await self._redis.llen(self.queue_name)
            except Exception as e:
                self._remote_error("llen", e)
                return None

            if depth >= self._max_size:
                logger.warning(
                    "Queue at capacity, rejecting message",
                    stage="QUEUE.BACKPRESSURE",
                    queue=self.queue_name,
                    current_length=depth,
                    max_length=self._max_size,
                )
                raise QueueFullError(
                    message=f"Queue {self.queue_name} is full",
                    details={"queue": self.queue_name, "depth": depth, "max_size": self._max_size},
                )

        try:
            depth = await self._redis.lpush(self.queue_name, self._serializer.serialize(message))
        except Exception as e:
            self._remote_error("lpush", e)
            return None

        self._record_depth(depth)
        logger.debug(
            "Message enqueued",
            stage="QUEUE.PROD",
            queue=self.queue_name,
            id=message.id,
            attempts=message.attempts,
        )
        return message.id

    async def enqueue(self, payload: Any) -> str | None:
        """
        Append a payload to the queue.

        Returns:
            The new message id, or None if Redis was unreachable

        Raises:
            QueueFullError: queue at ``max_size``
        """
        return await self._push(QueueMessage(data=payload))

    async def requeue(self, message: QueueMessage) -> str | None:
        """Put a message back at the tail of the queue with ``attempts + 1``."""
        retry = message.model_copy(update={"attempts": message.attempts + 1})
        return await self._push(retry)

    async def dequeue(self) -> QueueMessage | None:
        """
        Pop the oldest message, waiting up to ``block_timeout`` seconds.

        Returns:
            The message, or None on timeout, remote error, or a malformed item
        """
        try:
            raw = await self._redis.brpop(self.queue_name, self._block_timeout)
        except Exception as e:
            self._remote_error("brpop", e)
            return None

        if raw is None:
            return None

        try:
            message = self._serializer.deserialize(raw)
        except (orjson.JSONDecodeError, ValidationError) as e:
            logger.error(
                "Discarding malformed queue item",
                stage="QUEUE.PARSE_ERR",
                queue=self.queue_name,
                error=str(e),
            )
            return None

        logger.debug("Message dequeued", stage="QUEUE.CONS", queue=self.queue_name, id=message.id)
        return message

    async def size(self) -> int:
        try:
            depth = await self._redis.llen(self.queue_name)
        except Exception as e:
            self._remote_error("llen", e)
            return 0
        self._record_depth(depth)
        return depth

    async def clear(self) -> None:
        try:
            await self._redis.delete(self.queue_name)
        except Exception as e:
            self._remote_error("delete", e)
            return
        self._record_depth(0)
        logger.info("Queue cleared", stage="QUEUE.CLEAR", queue=self.queue_name)


# =============================================================================
# LAYER 3: CONSUMER LOOP
# =============================================================================

MessageHandler = Callable[[QueueMessage], Awaitable[None]]
DeadLetterHandler = Callable[[QueueMessage, BaseException], Any]


class QueueConsumer:
    """
    Continuous consumer for a ``DurableQueue``.

    Algorithm:
    1. Dequeue (blocking up to the queue's block_timeout)
    2. Run the handler
    3. On handler failure, requeue with attempts + 1 until ``max_attempts``
       handler runs have failed, then hand the message to ``on_dead_letter``.
       A message that cannot be put back (queue full or unreachable) goes
       to ``on_dead_letter`` straight away; the loop keeps running
    4. Sleep briefly when nothing arrived (prevents a tight loop while Redis
       is down)

    Usage:
        consumer = QueueConsumer(queue, handle_inbound)
        consumer.start()
        ...
        await consumer.stop()
    """

    def __init__(
        self,
        queue: DurableQueue,
        handler: MessageHandler,
        max_attempts: int = QUEUE_MAX_ATTEMPTS,
        on_dead_letter: DeadLetterHandler | None = None,
        idle_sleep: float = 0.1,
    ):
        self._queue = queue
        self._handler = handler
        self._max_attempts = max_attempts
        self._on_dead_letter = on_dead_letter
        self._idle_sleep = idle_sleep
        self._running = False
        self._task: asyncio.Task | None = None
        self.processed = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def process_one(self) -> bool:
        """
        Consume at most one message.

        Returns:
            True if a message was taken off the queue
        """
        message = await self._queue.dequeue()
        if message is None:
            return False

        try:
            await self._handler(message)
        except Exception as e:
            await self._handle_failure(message, e)
        else:
            self.processed += 1
        return True

    async def _handle_failure(self, message: QueueMessage, error: Exception) -> None:
        self.failed += 1
        failed_runs = message.attempts + 1

        if failed_runs < self._max_attempts:
            logger.warning(
                "Message handler failed, requeueing",
                stage="QUEUE.PROC_ERR",
                queue=self._queue.queue_name,
                id=message.id,
                attempt=failed_runs,
                max_attempts=self._max_attempts,
                error=str(error),
            )
            try:
                requeued = await self._queue.requeue(message)
            except QueueFullError as full:
                self._dead_letter(message, error, failed_runs, reason=full.message)
                return
            if requeued is None:
                self._dead_letter(message, error, failed_runs, reason="requeue failed, queue unreachable")
            return

        self._dead_letter(message, error, failed_runs, reason="attempts exhausted")

    def _dead_letter(self, message: QueueMessage, error: Exception, failed_runs: int, reason: str) -> None:
        dead = QueueConsumerError(
            message=f"Message {message.id} failed {failed_runs} times",
            details={"queue": self._queue.queue_name, "id": message.id, "attempts": failed_runs},
        )
        logger.error(
            "Message handler failed, giving up",
            stage="QUEUE.DLQ",
            error=str(error),
            reason=reason,
            **dead.details,
        )
        if self._on_dead_letter:
            try:
                self._on_dead_letter(message, error)
            except Exception as callback_error:
                logger.error("Dead-letter callback raised", stage="QUEUE.DLQ", error=str(callback_error))

    async def run(self) -> None:
        """Consume until ``stop()`` is called."""
        self._running = True
        logger.info("Starting consumer loop", stage="QUEUE.LOOP", queue=self._queue.queue_name)

        while self._running:
            took = await self.process_one()
            if not took and self._running:
                await asyncio.sleep(self._idle_sleep)

        logger.info("Consumer loop stopped", stage="QUEUE.LOOP", queue=self._queue.queue_name)

    def start(self) -> asyncio.Task:
        """
        Run the loop in a background task.

        Raises:
            QueueConsumerError: consumer already started
        """
        if self._task is not None and not self._task.done():
            raise QueueConsumerError(
                message="Consumer already running",
                details={"queue": self._queue.queue_name},
            )
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self, timeout: float = 5.0) -> None:
        """Ask the loop to finish its current message, cancelling after ``timeout``."""
        self._running = False
        if self._task is None:
            return

        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        if not done:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
