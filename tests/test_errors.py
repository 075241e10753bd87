"""
Tests for error types and error message sanitization.
"""

import pytest

from anoa.core.errors import (
    MAX_ERROR_MESSAGE_LENGTH,
    AppError,
    ErrorCode,
    LedgerError,
    MarketDataError,
    PriceUnavailableError,
    sanitize_error_message,
)


class TestAppErrors:
    """Tests for domain error classes."""

    def test_app_error_fields(self):
        """AppError keeps code, message and details."""
        error = AppError(ErrorCode.VENUE_ERROR, "Venue down", details={"venue": "lifi"})
        assert error.code == ErrorCode.VENUE_ERROR
        assert str(error) == "Venue down"
        assert error.details == {"venue": "lifi"}

    def test_market_data_error(self):
        """MarketDataError carries the token in its details."""
        error = MarketDataError("No data", token="0xabc")
        assert error.code == ErrorCode.MARKET_DATA_UNAVAILABLE
        assert error.details == {"token": "0xabc"}

    def test_price_unavailable_error(self):
        """PriceUnavailableError names the asset."""
        error = PriceUnavailableError("MON")
        assert error.code == ErrorCode.PRICE_UNAVAILABLE
        assert "MON" in error.message

    def test_ledger_error_default_code(self):
        """LedgerError defaults to LEDGER_ERROR but accepts a specific code."""
        assert LedgerError("boom").code == ErrorCode.LEDGER_ERROR
        illegal = LedgerError("terminal", code=ErrorCode.ILLEGAL_TRANSITION)
        assert illegal.code == ErrorCode.ILLEGAL_TRANSITION


class TestSanitizeErrorMessage:
    """Tests for sanitize_error_message."""

    def test_development_keeps_detail(self):
        """Development keeps the raw message."""
        assert sanitize_error_message(RuntimeError("rpc exploded")) == "rpc exploded"

    def test_development_with_type(self):
        """include_type prefixes the exception class."""
        text = sanitize_error_message(RuntimeError("rpc exploded"), include_type=True)
        assert text == "RuntimeError: rpc exploded"

    def test_empty_message_uses_type_name(self):
        """An exception without a message falls back to its class name."""
        assert sanitize_error_message(KeyError()) == "KeyError"

    def test_production_hides_unexpected_errors(self, override_settings):
        """Production replaces non-application errors with the user message."""
        override_settings(
            ENVIRONMENT="production",
            AGENT_PRIVATE_KEY="0x" + "1" * 64,
            DATABASE_URL="postgresql+asyncpg://u:p@db/anoa",
        )
        text = sanitize_error_message(RuntimeError("secret dsn"), "Trade failed")
        assert text == "Trade failed"

    def test_production_keeps_app_error_message(self, override_settings):
        """AppError messages are written to be safe and are kept."""
        override_settings(
            ENVIRONMENT="production",
            AGENT_PRIVATE_KEY="0x" + "1" * 64,
            DATABASE_URL="postgresql+asyncpg://u:p@db/anoa",
        )
        error = AppError(ErrorCode.PRICE_UNAVAILABLE, "Reference price unavailable for MON")
        assert sanitize_error_message(error) == "Reference price unavailable for MON"

    @pytest.mark.parametrize("length", [MAX_ERROR_MESSAGE_LENGTH + 1, 2000])
    def test_truncates_long_messages(self, length):
        """Messages never exceed the column limit."""
        text = sanitize_error_message(RuntimeError("x" * length))
        assert len(text) == MAX_ERROR_MESSAGE_LENGTH
        assert text.endswith("...")
