"""
Centralized error types for the trading pipeline.

Provides:
- Standard error codes for the application
- Domain errors for each failure class of the pipeline
- Error message sanitization for persisted execution records
"""

import logging
from enum import Enum
from typing import Any, Optional

from .config import get_settings

logger = logging.getLogger(__name__)

# Execution.error_msg column limit
MAX_ERROR_MESSAGE_LENGTH = 500


class ErrorCode(str, Enum):
    """Standard error codes for the application"""

    # Data availability
    MARKET_DATA_UNAVAILABLE = "MARKET_DATA_UNAVAILABLE"
    CHAIN_READ_FAILED = "CHAIN_READ_FAILED"
    PRICE_UNAVAILABLE = "PRICE_UNAVAILABLE"

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    QUOTE_INVALID = "QUOTE_INVALID"
    UNKNOWN_TOKEN = "UNKNOWN_TOKEN"
    UNKNOWN_STRATEGY = "UNKNOWN_STRATEGY"

    # Execution
    SUBMISSION_FAILED = "SUBMISSION_FAILED"
    TRANSACTION_REVERTED = "TRANSACTION_REVERTED"
    CONFIRMATION_TIMEOUT = "CONFIRMATION_TIMEOUT"
    SIGNER_NOT_CONFIGURED = "SIGNER_NOT_CONFIGURED"
    EXECUTION_CANCELLED = "EXECUTION_CANCELLED"

    # Ledger
    LEDGER_ERROR = "LEDGER_ERROR"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    DATABASE_ERROR = "DATABASE_ERROR"

    # External services
    ENHANCER_ERROR = "ENHANCER_ERROR"
    VENUE_ERROR = "VENUE_ERROR"

    # General
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class AppError(Exception):
    """
    Base application error with structured information.

    Supports automatic sanitization for production environments.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        """
        Create an application error.

        Args:
            code: Error code enum for machine-readable identification
            message: Human-readable error message (safe to persist)
            details: Additional details (sanitized in production)
            internal_message: Detailed message for logging only (never persisted)
        """
        self.code = code
        self.message = message
        self.details = details or {}
        self.internal_message = internal_message
        super().__init__(message)


class MarketDataError(AppError):
    """Market or on-chain data for a token could not be read."""

    def __init__(self, message: str, token: Optional[str] = None, **kwargs):
        details = {"token": token} if token else {}
        super().__init__(ErrorCode.MARKET_DATA_UNAVAILABLE, message, details=details, **kwargs)
        self.token = token


class PriceUnavailableError(AppError):
    """No reference price could be obtained, not even a stale one."""

    def __init__(self, asset: str, message: Optional[str] = None):
        super().__init__(
            ErrorCode.PRICE_UNAVAILABLE,
            message or f"Reference price unavailable for {asset}",
            details={"asset": asset},
        )
        self.asset = asset


class LedgerError(AppError):
    """Ledger invariant violation (e.g. finalizing a terminal execution)."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.LEDGER_ERROR, **kwargs):
        super().__init__(code, message, **kwargs)


def sanitize_error_message(
    error: Exception,
    user_message: str = "An unexpected error occurred",
    include_type: bool = False,
) -> str:
    """
    Sanitize an error message before it is persisted on an execution record.

    In production: AppError messages are kept (they are written to be safe),
    anything else is replaced by the generic user message.
    In development: Returns detailed error information.

    The result is always truncated to the column limit.
    """
    settings = get_settings()

    if isinstance(error, AppError):
        text = error.message
    elif settings.environment == "production":
        text = user_message
    elif include_type:
        text = f"{type(error).__name__}: {error}"
    else:
        text = str(error) or type(error).__name__

    if len(text) > MAX_ERROR_MESSAGE_LENGTH:
        text = text[: MAX_ERROR_MESSAGE_LENGTH - 3] + "..."
    return text
