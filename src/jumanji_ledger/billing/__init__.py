"""
JUMANJI LEDGER - Billing Module

- Settlement: start, live-quote, end and cancel table sessions
- Payments: cash/card/online splits and method statistics
- Promotions: price-schedule management with an audit trail
- Revenue: totals over completed sessions
- Ticker: once-per-second re-quoting of running bills
"""

from .payments import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentSplitError,
    Tender,
    method_breakdown,
    payment_stats,
)
from .revenue import RevenueSummary, summarize
from .ticker import SessionTicker
from .promotions import PromotionService, PromotionNotFoundError
from .settlement import (
    SettlementService,
    SettlementResult,
    SettlementMismatchError,
    SessionNotFoundError,
    PromotionNotApplicableError,
    PaymentNotFoundError,
)

__all__ = [
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentSplitError",
    "Tender",
    "method_breakdown",
    "payment_stats",
    "RevenueSummary",
    "summarize",
    "SessionTicker",
    "PromotionService",
    "PromotionNotFoundError",
    "SettlementService",
    "SettlementResult",
    "SettlementMismatchError",
    "SessionNotFoundError",
    "PromotionNotApplicableError",
    "PaymentNotFoundError",
]
