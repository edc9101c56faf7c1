"""
Persistence Layer for Jumanji Ledger

SQLite storage for sessions, promotions, payments and the activity log.
"""

from .database import Database, get_database
from .models import SessionRecord, PromotionRecord, PaymentRecord, ActivityLogRecord
from .repository import (
    SessionRepository,
    PromotionRepository,
    PaymentRepository,
    ActivityLogRepository,
)

__all__ = [
    "Database",
    "get_database",
    "SessionRecord",
    "PromotionRecord",
    "PaymentRecord",
    "ActivityLogRecord",
    "SessionRepository",
    "PromotionRepository",
    "PaymentRepository",
    "ActivityLogRepository",
]
