"""
Base Exception Class

This module contains ONLY the base exception class that all other exceptions inherit from.
All specialized exceptions are in their respective themed modules.
"""

from typing import Any


class WAAgentError(Exception):
    """
    Base exception for all wa-agent runtime errors.

    All custom exceptions inherit from this class to enable:
    - Consistent error handling
    - Session ID correlation
    - Structured error logging

    Attributes:
        message: Error message
        session_id: Session ID for correlation (if available)
        details: Additional error details (dict)

    Example:
        raise CircuitBreakerOpenError(
            "Circuit open for llm-openai",
            session_id="whatsapp:+15550001111",
            details={"operation": "llm-openai"}
        )
    """

    def __init__(
        self, message: str, session_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.session_id = session_id
        self.details = (details or {}).copy()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging.

        Returns:
            Dict with error_type, message, session_id, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "session_id": self.session_id,
            "details": self.details,
        }

    def with_context(self, **context) -> "WAAgentError":
        """
        Add additional context to the error details.

        Returns:
            Self (for method chaining)
        """
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        session_str = f", session_id='{self.session_id}'" if self.session_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{session_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        message: str | None = None,
        session_id: str | None = None,
        **details
    ) -> "WAAgentError":
        """
        Create an error from another exception, keeping the original type and message.

        Example:
            >>> try:
            ...     await redis.ping()
            ... except redis.ConnectionError as e:
            ...     raise CacheConnectionError.from_exception(e, host="localhost")
        """
        error_message = message or str(exc)
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, session_id=session_id, details=error_details)
