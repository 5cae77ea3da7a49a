"""
Error Classification for Retry Decisions.

Decides whether a failed call is worth retrying. Permanent failures (bad
input, bad credentials, missing resource) are surfaced immediately; anything
else (timeouts, 5xx, dropped connections) is treated as transient.

Different dependencies fail permanently in different ways, so every resilient
operation can carry its own classifier: either an ``ErrorClassifier`` built
with other status/code sets, or any ``Callable[[BaseException], bool]``.
"""

from collections.abc import Callable, Iterable

from wa_agent.core.config.constants import NON_RETRYABLE_ERROR_CODES, NON_RETRYABLE_STATUS_CODES

RetryPredicate = Callable[[BaseException], bool]

_STATUS_ATTRIBUTES = ("status_code", "statusCode", "status")


def extract_status_code(error: BaseException) -> int | None:
    """
    Find an HTTP status on an error.

    Looks at the error itself first, then at an attached ``response`` object
    (httpx/requests style exceptions).
    """
    for source in (error, getattr(error, "response", None)):
        if source is None:
            continue
        for attribute in _STATUS_ATTRIBUTES:
            value = getattr(source, attribute, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return None


class ErrorClassifier:
    """
    Callable retry predicate.

    Order of precedence:
    1. HTTP status in ``non_retryable_status_codes``: permanent
    2. Application ``code`` in ``non_retryable_codes``: permanent
    3. ``retryable = False`` on the error: permanent
    4. Otherwise retryable

    The ``retryable`` flag can only make an error permanent; it never turns a
    400 into something worth retrying.
    """

    def __init__(
        self,
        non_retryable_status_codes: Iterable[int] = NON_RETRYABLE_STATUS_CODES,
        non_retryable_codes: Iterable[str] = NON_RETRYABLE_ERROR_CODES,
    ):
        self.non_retryable_status_codes = frozenset(non_retryable_status_codes)
        self.non_retryable_codes = frozenset(non_retryable_codes)

    def is_retryable(self, error: BaseException) -> bool:
        status = extract_status_code(error)
        if status is not None and status in self.non_retryable_status_codes:
            return False

        code = getattr(error, "code", None)
        if isinstance(code, str) and code in self.non_retryable_codes:
            return False

        if getattr(error, "retryable", None) is False:
            return False

        return True

    def __call__(self, error: BaseException) -> bool:
        return self.is_retryable(error)

    def extend(
        self,
        status_codes: Iterable[int] = (),
        codes: Iterable[str] = (),
    ) -> "ErrorClassifier":
        """Build a classifier that also treats the given statuses/codes as permanent."""
        return ErrorClassifier(
            self.non_retryable_status_codes | frozenset(status_codes),
            self.non_retryable_codes | frozenset(codes),
        )


default_classifier = ErrorClassifier()


def is_retryable(error: BaseException) -> bool:
    """Default classification: 400/401/403/404 and input/auth codes are permanent."""
    return default_classifier.is_retryable(error)
