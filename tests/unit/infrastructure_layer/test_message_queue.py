"""
Unit Tests for DurableQueue and QueueConsumer

Uses the in-memory list store from conftest in place of Redis.
"""

import asyncio

import orjson
import pytest
from pydantic import ValidationError

from wa_agent.core.exceptions import QueueConsumerError, QueueFullError
from wa_agent.infrastructure.message_queue.redis_queue import (
    DurableQueue,
    MessageSerializer,
    QueueConsumer,
    QueueMessage,
)


@pytest.mark.unit
class TestDurableQueue:
    @pytest.mark.asyncio
    async def test_fifo_order(self, in_memory_redis):
        queue = DurableQueue(in_memory_redis, queue_name="inbound")

        for index in range(3):
            await queue.enqueue({"n": index})

        received = [(await queue.dequeue()).data["n"] for _ in range(3)]
        assert received == [0, 1, 2]
        assert await queue.dequeue() is None

    @pytest.mark.asyncio
    async def test_payload_survives_round_trip(self, in_memory_redis):
        queue = DurableQueue(in_memory_redis)
        payload = {"from": "whatsapp:+15550001111", "body": "hola", "media": [1, None, {"x": 1.5}]}

        message_id = await queue.enqueue(payload)
        message = await queue.dequeue()

        assert message.id == message_id
        assert message.data == payload
        assert message.attempts == 0
        assert message.timestamp > 0

    @pytest.mark.asyncio
    async def test_malformed_item_is_skipped(self, in_memory_redis):
        queue = DurableQueue(in_memory_redis, queue_name="q")
        in_memory_redis.lists["q"] = ["not json", orjson.dumps({"attempts": -1})]

        assert await queue.dequeue() is None
        assert await queue.dequeue() is None
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_remote_errors_degrade(self, in_memory_redis, metrics):
        in_memory_redis.down = True
        queue = DurableQueue(in_memory_redis, queue_name="q", metrics=metrics)

        assert await queue.enqueue({"a": 1}) is None
        assert await queue.dequeue() is None
        assert await queue.size() == 0
        await queue.clear()

        assert metrics.registry.get_sample_value(
            "wa_agent_remote_errors_total", {"component": "queue", "operation": "brpop"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_full_queue_rejects(self, in_memory_redis):
        queue = DurableQueue(in_memory_redis, queue_name="q", max_size=2)
        await queue.enqueue(1)
        await queue.enqueue(2)

        with pytest.raises(QueueFullError) as exc_info:
            await queue.enqueue(3)

        assert exc_info.value.details["max_size"] == 2
        assert await queue.size() == 2

    @pytest.mark.asyncio
    async def test_requeue_increments_attempts(self, in_memory_redis):
        queue = DurableQueue(in_memory_redis)
        await queue.enqueue("job")
        message = await queue.dequeue()

        await queue.requeue(message)
        again = await queue.dequeue()

        assert again.id == message.id
        assert again.attempts == 1

    @pytest.mark.asyncio
    async def test_size_and_clear(self, in_memory_redis, metrics):
        queue = DurableQueue(in_memory_redis, queue_name="q", metrics=metrics)
        await queue.enqueue("a")
        await queue.enqueue("b")

        assert await queue.size() == 2
        await queue.clear()
        assert await queue.size() == 0
        assert metrics.registry.get_sample_value("wa_agent_queue_depth", {"queue_name": "q"}) == 0.0


@pytest.mark.unit
class TestMessageSerializer:
    def test_rejects_non_envelope(self):
        with pytest.raises(ValidationError):
            MessageSerializer.deserialize(b"[1, 2]")

    def test_defaults(self):
        message = QueueMessage(data="x")

        assert len(message.id) == 36
        assert message.attempts == 0


@pytest.mark.unit
class TestQueueConsumer:
    @pytest.mark.asyncio
    async def test_handles_message(self, in_memory_redis):
        queue = DurableQueue(in_memory_redis)
        seen = []

        async def handler(message):
            seen.append(message.data)

        consumer = QueueConsumer(queue, handler)
        await queue.enqueue("hello")

        assert await consumer.process_one() is True
        assert await consumer.process_one() is False
        assert seen == ["hello"]
        assert consumer.processed == 1

    @pytest.mark.asyncio
    async def test_failed_message_requeued_then_dead_lettered(self, in_memory_redis):
        queue = DurableQueue(in_memory_redis)
        dead = []

        async def handler(message):
            raise RuntimeError("handler broke")

        consumer = QueueConsumer(
            queue,
            handler,
            max_attempts=3,
            on_dead_letter=lambda message, error: dead.append((message.attempts, str(error))),
        )
        await queue.enqueue("job")

        for _ in range(3):
            assert await consumer.process_one() is True

        assert await queue.size() == 0
        assert consumer.failed == 3
        assert dead == [(2, "handler broke")]

    @pytest.mark.asyncio
    async def test_dead_letter_callback_errors_are_logged(self, in_memory_redis):
        queue = DurableQueue(in_memory_redis)

        async def handler(message):
            raise RuntimeError("fail")

        def on_dead_letter(message, error):
            raise ValueError("callback broke")

        consumer = QueueConsumer(queue, handler, max_attempts=1, on_dead_letter=on_dead_letter)
        await queue.enqueue("job")

        assert await consumer.process_one() is True

    @pytest.mark.asyncio
    async def test_full_queue_on_requeue_dead_letters_and_keeps_running(self, in_memory_redis):
        queue = DurableQueue(in_memory_redis, queue_name="q", max_size=1)
        dead = []

        async def handler(message):
            if message.data == "first":
                await queue.enqueue("refill")
                raise RuntimeError("handler broke")

        consumer = QueueConsumer(
            queue,
            handler,
            max_attempts=3,
            on_dead_letter=lambda message, error: dead.append(message.data),
            idle_sleep=0.01,
        )
        await queue.enqueue("first")

        consumer.start()
        for _ in range(100):
            if consumer.processed == 1:
                break
            await asyncio.sleep(0.01)
        task = consumer._task
        await consumer.stop(timeout=1.0)

        assert dead == ["first"]
        assert consumer.processed == 1
        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_unreachable_queue_on_requeue_dead_letters(self, in_memory_redis):
        queue = DurableQueue(in_memory_redis)
        dead = []

        async def handler(message):
            in_memory_redis.down = True
            raise RuntimeError("handler broke")

        consumer = QueueConsumer(queue, handler, on_dead_letter=lambda message, error: dead.append(message.id))
        message_id = await queue.enqueue("job")

        assert await consumer.process_one() is True
        assert dead == [message_id]

    @pytest.mark.asyncio
    async def test_start_and_stop(self, in_memory_redis):
        queue = DurableQueue(in_memory_redis)
        handled = asyncio.Event()

        async def handler(message):
            handled.set()

        consumer = QueueConsumer(queue, handler, idle_sleep=0.01)
        consumer.start()

        with pytest.raises(QueueConsumerError):
            consumer.start()

        await queue.enqueue("job")
        await asyncio.wait_for(handled.wait(), timeout=1.0)
        await consumer.stop(timeout=1.0)

        assert not consumer.is_running
        assert consumer.processed == 1
