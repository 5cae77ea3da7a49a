"""
Retry Exceptions

Errors that carry an explicit retry decision for the error classifier.
"""

from typing import Any

from wa_agent.core.exceptions.base import WAAgentError


class RetryableError(WAAgentError):
    """
    Error with an explicit retry decision and optional HTTP status.

    ``retryable=False`` makes the error permanent (e.g. a 503 the integration
    knows will not recover). A permanent status such as 400 stays permanent
    whatever the flag says.

    Example:
        raise RetryableError("Upstream busy", retryable=True, status_code=503)
    """

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        status_code: int | None = None,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, session_id=session_id, details=details)
        self.retryable = retryable
        self.status_code = status_code
