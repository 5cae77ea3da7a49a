"""
Unit Tests for Structured Logging
"""

import pytest

from wa_agent.core.logging.logger import (
    add_log_level_name,
    add_session_id,
    clear_session_id,
    get_logger,
    get_session_id,
    log_stage,
    redact_pii,
    redact_text,
    set_session_id,
    setup_logging,
)


@pytest.mark.unit
class TestSessionContext:
    def test_set_get_clear(self):
        set_session_id("whatsapp:+15550001111")
        assert get_session_id() == "whatsapp:+15550001111"

        clear_session_id()
        assert get_session_id() is None

    def test_processor_adds_session_id(self):
        set_session_id("s-1")
        try:
            event = add_session_id(None, "info", {"event": "hello"})
        finally:
            clear_session_id()

        assert event["session_id"] == "s-1"

    def test_processor_keeps_explicit_session_id(self):
        set_session_id("s-1")
        try:
            event = add_session_id(None, "info", {"event": "hello", "session_id": "s-2"})
        finally:
            clear_session_id()

        assert event["session_id"] == "s-2"


@pytest.mark.unit
class TestRedaction:
    def test_redacts_phone_numbers(self):
        assert "+15550001111" not in redact_text("message from whatsapp:+15550001111")

    def test_redacts_email_and_keys(self):
        text = redact_text("user a.b@example.com used sk-abc123XYZ")

        assert "[EMAIL]" in text
        assert "[REDACTED]" in text
        assert "sk-abc123XYZ" not in text

    def test_processor_only_touches_event(self):
        event = redact_pii(None, "info", {"event": "ping +15550001111", "session_id": "+15550001111"})

        assert "[PHONE]" in event["event"]
        assert event["session_id"] == "+15550001111"

    def test_level_upper_cased(self):
        assert add_log_level_name(None, "info", {"level": "warning"})["level"] == "WARNING"


@pytest.mark.unit
class TestSetup:
    @pytest.mark.parametrize("log_format", ["json", "console"])
    def test_setup_and_log(self, log_format):
        setup_logging(log_level="DEBUG", log_format=log_format)
        logger = get_logger("tests.logging")

        log_stage(logger, "T.1", "stage message", detail="x")
        logger.info("plain message", stage="T.2")
