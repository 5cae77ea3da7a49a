"""Durable FIFO queue on a Redis list."""

from .redis_queue import DurableQueue, MessageSerializer, QueueConsumer, QueueMessage

__all__ = ["DurableQueue", "MessageSerializer", "QueueConsumer", "QueueMessage"]
