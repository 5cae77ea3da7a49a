"""
Message Queue Exceptions

All exceptions related to the durable work queue.
"""

from wa_agent.core.exceptions.base import WAAgentError


class QueueError(WAAgentError):
    """Base exception for message queue errors."""
    pass


class QueueFullError(QueueError):
    """
    Raised when the queue is at its configured capacity (backpressure).

    Raised immediately to the producer; this is an ops signal, not a
    candidate for retry.
    """
    pass


class QueueConsumerError(QueueError):
    """
    Raised when a queue consumer gives up on a message.

    Common causes:
    - Handler kept failing past the attempt limit
    - Consumer started twice
    """
    pass
