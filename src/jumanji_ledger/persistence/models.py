"""
Data Models for Persistence Layer

These models mirror the core domain objects but are optimized for database storage.
Timestamps are stored as ISO-8601 text, booleans as 0/1.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional
import uuid

from ..billing.payments import Payment, PaymentMethod, PaymentStatus
from ..core.promotion import Promotion
from ..core.session import Session, SessionStatus


def _iso_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


@dataclass
class SessionRecord:
    """Persisted session record."""
    session_id: str
    customer_id: str
    start_time: str
    capacity: int
    first_hour_price: float
    extra_hour_price: float
    status: str = "active"
    end_time: Optional[str] = None
    promo_id: Optional[str] = None
    total_cost: float = 0.0
    hours: float = 0.0
    table_id: Optional[str] = None
    table_number: Optional[int] = None
    notes: Optional[str] = None
    game_master_id: Optional[str] = None
    male: Optional[int] = None
    female: Optional[int] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_domain(cls, session: Session) -> "SessionRecord":
        return cls(
            session_id=session.session_id,
            customer_id=session.customer_id,
            start_time=session.start_time.isoformat(),
            capacity=session.capacity,
            first_hour_price=session.first_hour_price,
            extra_hour_price=session.extra_hour_price,
            status=session.status.value,
            end_time=_iso_or_none(session.end_time),
            promo_id=session.promo_id,
            total_cost=session.total_cost,
            hours=session.hours,
            table_id=session.table_id,
            table_number=session.table_number,
            notes=session.notes,
            game_master_id=session.game_master_id,
            male=session.male,
            female=session.female,
            created_at=session.created_at,
        )

    def to_domain(self) -> Session:
        return Session(
            session_id=self.session_id,
            customer_id=self.customer_id,
            start_time=_parse_dt(self.start_time),
            capacity=self.capacity,
            first_hour_price=self.first_hour_price,
            extra_hour_price=self.extra_hour_price,
            promo_id=self.promo_id,
            status=SessionStatus(self.status),
            end_time=_parse_dt(self.end_time),
            total_cost=self.total_cost,
            hours=self.hours,
            table_id=self.table_id,
            table_number=self.table_number,
            notes=self.notes,
            game_master_id=self.game_master_id,
            male=self.male,
            female=self.female,
            created_at=self.created_at,
        )

    def to_db_tuple(self) -> tuple:
        """Convert to database insert tuple."""
        return (
            self.session_id,
            self.customer_id,
            self.start_time,
            self.end_time,
            self.status,
            self.capacity,
            self.promo_id,
            self.first_hour_price,
            self.extra_hour_price,
            self.total_cost,
            self.hours,
            self.table_id,
            self.table_number,
            self.notes,
            self.game_master_id,
            self.male,
            self.female,
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SessionRecord":
        return cls(
            session_id=row["session_id"],
            customer_id=row["customer_id"],
            start_time=row["start_time"],
            capacity=row["capacity"],
            first_hour_price=row["first_hour_price"],
            extra_hour_price=row["extra_hour_price"],
            status=row.get("status", "active"),
            end_time=row.get("end_time"),
            promo_id=row.get("promo_id"),
            total_cost=row.get("total_cost", 0.0),
            hours=row.get("hours", 0.0),
            table_id=row.get("table_id"),
            table_number=row.get("table_number"),
            notes=row.get("notes"),
            game_master_id=row.get("game_master_id"),
            male=row.get("male"),
            female=row.get("female"),
            created_at=row["created_at"],
        )


@dataclass
class PromotionRecord:
    """Persisted promotion record."""
    promo_id: str
    name: str
    first_hour_price: float
    extra_hour_price: float
    is_active: bool = True
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    updated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_domain(cls, promo: Promotion) -> "PromotionRecord":
        return cls(
            promo_id=promo.promo_id,
            name=promo.name,
            first_hour_price=promo.first_hour_price,
            extra_hour_price=promo.extra_hour_price,
            is_active=promo.is_active,
            start_date=promo.start_date.isoformat() if promo.start_date else None,
            end_date=promo.end_date.isoformat() if promo.end_date else None,
            created_at=promo.created_at,
        )

    def to_domain(self) -> Promotion:
        return Promotion(
            promo_id=self.promo_id,
            name=self.name,
            first_hour_price=self.first_hour_price,
            extra_hour_price=self.extra_hour_price,
            is_active=self.is_active,
            start_date=_parse_date(self.start_date),
            end_date=_parse_date(self.end_date),
            created_at=self.created_at,
        )

    def to_db_tuple(self) -> tuple:
        return (
            self.promo_id,
            self.name,
            self.first_hour_price,
            self.extra_hour_price,
            1 if self.is_active else 0,
            self.start_date,
            self.end_date,
            self.created_at,
            self.updated_at,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PromotionRecord":
        return cls(
            promo_id=row["promo_id"],
            name=row["name"],
            first_hour_price=row["first_hour_price"],
            extra_hour_price=row["extra_hour_price"],
            is_active=bool(row.get("is_active", 1)),
            start_date=row.get("start_date"),
            end_date=row.get("end_date"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class PaymentRecord:
    """Persisted payment record."""
    payment_id: str
    session_id: str
    customer_id: str
    amount: float
    method: str
    cash_amount: float = 0.0
    card_amount: float = 0.0
    online_amount: float = 0.0
    status: str = "completed"
    expected_amount: Optional[float] = None
    override_reason: Optional[str] = None
    notes: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_domain(cls, payment: Payment) -> "PaymentRecord":
        return cls(
            payment_id=payment.payment_id,
            session_id=payment.session_id,
            customer_id=payment.customer_id,
            amount=payment.amount,
            method=payment.method.value,
            cash_amount=payment.cash_amount,
            card_amount=payment.card_amount,
            online_amount=payment.online_amount,
            status=payment.status.value,
            expected_amount=payment.expected_amount,
            override_reason=payment.override_reason,
            notes=payment.notes,
            timestamp=payment.timestamp,
        )

    def to_domain(self) -> Payment:
        return Payment(
            payment_id=self.payment_id,
            session_id=self.session_id,
            customer_id=self.customer_id,
            amount=self.amount,
            method=PaymentMethod(self.method),
            cash_amount=self.cash_amount,
            card_amount=self.card_amount,
            online_amount=self.online_amount,
            status=PaymentStatus(self.status),
            expected_amount=self.expected_amount,
            override_reason=self.override_reason,
            notes=self.notes,
            timestamp=self.timestamp,
        )

    def to_db_tuple(self) -> tuple:
        return (
            self.payment_id,
            self.session_id,
            self.customer_id,
            self.amount,
            self.method,
            self.cash_amount,
            self.card_amount,
            self.online_amount,
            self.status,
            self.expected_amount,
            self.override_reason,
            self.notes,
            self.timestamp,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PaymentRecord":
        return cls(
            payment_id=row["payment_id"],
            session_id=row["session_id"],
            customer_id=row["customer_id"],
            amount=row["amount"],
            method=row["method"],
            cash_amount=row.get("cash_amount", 0.0),
            card_amount=row.get("card_amount", 0.0),
            online_amount=row.get("online_amount", 0.0),
            status=row.get("status", "completed"),
            expected_amount=row.get("expected_amount"),
            override_reason=row.get("override_reason"),
            notes=row.get("notes"),
            timestamp=row["timestamp"],
        )


@dataclass
class ActivityLogRecord:
    """One line of the staff activity trail."""
    type: str
    action: str
    details: str
    user_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    log_id: str = field(default_factory=lambda: f"LOG-{uuid.uuid4().hex[:16]}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log_id": self.log_id,
            "type": self.type,
            "action": self.action,
            "details": self.details,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
        }

    def to_db_tuple(self) -> tuple:
        return (
            self.log_id,
            self.type,
            self.action,
            self.details,
            self.user_id,
            self.timestamp,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ActivityLogRecord":
        return cls(
            log_id=row["log_id"],
            type=row["type"],
            action=row["action"],
            details=row["details"],
            user_id=row.get("user_id"),
            timestamp=row["timestamp"],
        )
