# backend/app/errors.py
from __future__ import annotations


class ValuationError(ValueError):
    """
    Base class for value-level valuation failures.
    Carries the id of the offending record so callers can report it.
    """

    def __init__(self, message: str, *, trade_id: str | None = None, investment_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.trade_id = trade_id
        self.investment_id = investment_id

    def as_dict(self) -> dict:
        return {
            "kind": type(self).__name__,
            "message": self.message,
            "trade_id": self.trade_id,
            "investment_id": self.investment_id,
        }


class InvalidTradeError(ValuationError):
    """Missing/non-positive entry price or position size, or a broken close state."""


class InvalidInvestmentError(ValuationError):
    """Non-positive amount or price at investment."""


class MissingPriceError(ValuationError):
    """No live or stored price for an OPEN trade."""
