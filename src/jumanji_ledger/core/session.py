"""
Table Sessions

A session is one customer group occupying a table. It is billed from
``start_time`` until it is ended.

Lifecycle:
    active -> completed   (normal end, bill frozen)
    active -> cancelled   (discarded, never billed)

Completed and cancelled are terminal.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from .pricing import DEFAULT_EXTRA_HOUR_PRICE, DEFAULT_FIRST_HOUR_PRICE, PriceSchedule


class SessionStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS = {
    SessionStatus.ACTIVE: {SessionStatus.COMPLETED, SessionStatus.CANCELLED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.CANCELLED: set(),
}


class SessionStateError(Exception):
    """Raised on a lifecycle transition the state machine does not allow."""
    pass


class SessionValidationError(ValueError):
    """Raised when a new session's party details are inconsistent."""
    pass


def new_session_id() -> str:
    return f"SES-{uuid.uuid4().hex[:16]}"


def validate_party(capacity: int, male: Optional[int] = None, female: Optional[int] = None) -> None:
    """Capacity must be positive; a gender breakdown, when given, must add up to it."""
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
        raise SessionValidationError(f"Capacity must be a positive integer, got {capacity!r}")

    if male is None and female is None:
        return

    male = male or 0
    female = female or 0
    if male < 0 or female < 0:
        raise SessionValidationError("Gender counts cannot be negative")
    if male + female != capacity:
        raise SessionValidationError(
            f"Gender count mismatch: male ({male}) + female ({female}) must equal capacity ({capacity})"
        )


@dataclass
class Session:
    """
    A timed table occupancy.

    ``first_hour_price`` and ``extra_hour_price`` are the prices snapshotted
    when the session started (from a promotion or the defaults).
    """
    session_id: str
    customer_id: str
    start_time: datetime
    capacity: int
    first_hour_price: float = DEFAULT_FIRST_HOUR_PRICE
    extra_hour_price: float = DEFAULT_EXTRA_HOUR_PRICE
    promo_id: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    end_time: Optional[datetime] = None
    total_cost: float = 0.0
    hours: float = 0.0

    # Display/reference fields
    table_id: Optional[str] = None
    table_number: Optional[int] = None
    notes: Optional[str] = None
    game_master_id: Optional[str] = None
    male: Optional[int] = None
    female: Optional[int] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def schedule(self, currency: Optional[str] = None) -> PriceSchedule:
        if currency:
            return PriceSchedule(self.first_hour_price, self.extra_hour_price, currency)
        return PriceSchedule(self.first_hour_price, self.extra_hour_price)

    def can_transition(self, target: SessionStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def _transition(self, target: SessionStatus) -> None:
        if not self.can_transition(target):
            raise SessionStateError(
                f"Session {self.session_id} cannot go from {self.status.value} to {target.value}"
            )
        self.status = target

    def complete(self, end_time: datetime, total_cost: float, hours: float) -> None:
        """Freeze the bill. ``end_time`` is set exactly once."""
        self._transition(SessionStatus.COMPLETED)
        self.end_time = end_time
        self.total_cost = total_cost
        self.hours = hours

    def cancel(self, cancelled_at: datetime) -> None:
        self._transition(SessionStatus.CANCELLED)
        self.end_time = cancelled_at
        self.total_cost = 0.0
        self.hours = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "customer_id": self.customer_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status.value,
            "capacity": self.capacity,
            "promo_id": self.promo_id,
            "first_hour_price": self.first_hour_price,
            "extra_hour_price": self.extra_hour_price,
            "total_cost": self.total_cost,
            "hours": self.hours,
            "table_id": self.table_id,
            "table_number": self.table_number,
            "notes": self.notes,
            "game_master_id": self.game_master_id,
            "gender_breakdown": (
                {"male": self.male or 0, "female": self.female or 0}
                if self.male is not None or self.female is not None else None
            ),
            "created_at": self.created_at,
        }
