"""Tests for structured logging setup."""

import structlog

from apps.api.core.logging import mask_card_numbers, setup_logging


class TestStructuredLogging:
    """Test structlog outputs structured JSON."""

    def test_setup_logging_configures_structlog(self):
        """After setup, structlog.get_logger() should return a bound logger."""
        setup_logging(log_level="DEBUG", json_output=True)
        logger = structlog.get_logger()
        assert logger is not None

    def test_setup_logging_dev_mode(self):
        """Dev mode should configure console renderer without errors."""
        setup_logging(log_level="DEBUG", json_output=False)
        logger = structlog.get_logger()
        assert logger is not None


class TestCardMasking:
    def test_card_number_keeps_last_four(self):
        event = mask_card_numbers(None, "info", {"event": "x", "card_number": "4111 1111 1111 1234"})
        assert event["card_number"] == "****1234"

    def test_card_no_field_is_masked_too(self):
        event = mask_card_numbers(None, "info", {"event": "x", "card_no": "1234"})
        assert event["card_no"] == "****1234"

    def test_other_fields_untouched(self):
        event = mask_card_numbers(None, "info", {"event": "x", "amount": "4.50", "card_number": None})
        assert event == {"event": "x", "amount": "4.50", "card_number": None}
