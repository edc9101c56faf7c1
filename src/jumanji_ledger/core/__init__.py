"""
JUMANJI LEDGER - Core Module
Session billing for a board-game café

- Billing engine: elapsed time + party size + price schedule -> running charge
- Session lifecycle: active -> completed | cancelled
- Promotions: alternate price schedules with an active flag and date window
- Clocks: the caller-owned source of ``now``
"""

from .pricing import (
    BillingPhase,
    ChargeQuote,
    PriceSchedule,
    quote,
    quote_payload,
    quote_session,
)
from .session import Session, SessionStatus, SessionStateError, SessionValidationError
from .promotion import Promotion, PromotionValidationError, select_active
from .clock import SystemClock, ManualClock

__all__ = [
    "BillingPhase",
    "ChargeQuote",
    "PriceSchedule",
    "quote",
    "quote_payload",
    "quote_session",
    "Session",
    "SessionStatus",
    "SessionStateError",
    "SessionValidationError",
    "Promotion",
    "PromotionValidationError",
    "select_active",
    "SystemClock",
    "ManualClock",
]
