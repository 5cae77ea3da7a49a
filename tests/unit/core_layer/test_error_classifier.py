"""
Unit Tests for Error Classification

Permanent (caller) errors must not be retried; everything else is transient.
"""

import pytest

from wa_agent.core.exceptions import RetryableError
from wa_agent.core.resilience.error_classifier import ErrorClassifier, extract_status_code, is_retryable


class StatusError(Exception):
    def __init__(self, status_code=None, code=None):
        super().__init__("upstream error")
        if status_code is not None:
            self.statusCode = status_code
        if code is not None:
            self.code = code


class _Response:
    def __init__(self, status_code):
        self.status_code = status_code


class ResponseError(Exception):
    def __init__(self, status_code):
        super().__init__("http error")
        self.response = _Response(status_code)


@pytest.mark.unit
class TestIsRetryable:
    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_errors_are_permanent(self, status):
        assert is_retryable(StatusError(status_code=status)) is False

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
    def test_other_statuses_are_transient(self, status):
        assert is_retryable(StatusError(status_code=status)) is True

    @pytest.mark.parametrize("code", ["INVALID_INPUT", "AUTHENTICATION_FAILED"])
    def test_permanent_application_codes(self, code):
        assert is_retryable(StatusError(code=code)) is False

    def test_unknown_code_is_transient(self):
        assert is_retryable(StatusError(code="ECONNRESET")) is True

    def test_plain_errors_are_transient(self):
        assert is_retryable(RuntimeError("Network timeout")) is True
        assert is_retryable(TimeoutError()) is True

    def test_status_on_attached_response(self):
        assert is_retryable(ResponseError(404)) is False
        assert is_retryable(ResponseError(503)) is True

    def test_flag_can_only_make_errors_permanent(self):
        assert is_retryable(RetryableError("busy", retryable=False, status_code=503)) is False
        assert is_retryable(RetryableError("eventually", retryable=True, status_code=404)) is False
        assert is_retryable(RetryableError("bad request", status_code=400)) is False
        assert is_retryable(RetryableError("upstream busy", retryable=True, status_code=503)) is True

    def test_boolean_status_is_ignored(self):
        error = Exception()
        error.status = True
        assert extract_status_code(error) is None
        assert is_retryable(error) is True


@pytest.mark.unit
class TestErrorClassifier:
    def test_extend_adds_permanent_status(self):
        classifier = ErrorClassifier().extend(status_codes=[409])

        assert classifier(StatusError(status_code=409)) is False
        assert classifier(StatusError(status_code=400)) is False
        assert classifier(StatusError(status_code=500)) is True

    def test_custom_sets_replace_defaults(self):
        classifier = ErrorClassifier(non_retryable_status_codes=[422], non_retryable_codes=[])

        assert classifier(StatusError(status_code=400)) is True
        assert classifier(StatusError(status_code=422)) is False
        assert classifier(StatusError(code="INVALID_INPUT")) is True
