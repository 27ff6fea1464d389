"""
Exception hierarchy for portfolio analytics.

Input and validation errors are raised synchronously with the offending
field; guarded formula branches never raise, they resolve to a defined
value and a flag instead.
"""

from typing import Any, Dict, Optional


class AnalyticsError(Exception):
    """Base class for analytics failures."""

    def __init__(self, message: str, field: Optional[str] = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API error responses."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "field": self.field,
            "details": self.details,
        }


class InvalidInputError(AnalyticsError):
    """Malformed holding: non-positive price, quantity or cost basis, unknown asset class."""

    pass


class InsufficientDataError(AnalyticsError):
    """Risk metrics requested with fewer than 2 data points or a flat market series."""

    pass


class ValidationError(AnalyticsError):
    """Target allocation not summing to 100, or threshold out of range."""

    pass


class ComputationError(AnalyticsError):
    """Unexpected arithmetic failure, e.g. a NaN reaching a snapshot."""

    pass


class PriceFetchError(AnalyticsError):
    """Price feed could not provide a usable price for a symbol."""

    def __init__(self, symbol: str, message: str):
        super().__init__(message, field="symbol", details={"symbol": symbol})
        self.symbol = symbol
