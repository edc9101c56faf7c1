"""
Promotions

A promotion is an alternate per-person price schedule. It only applies while
``is_active`` is set and the current day falls inside its optional
``start_date``/``end_date`` window (both ends inclusive).

The window is checked once, when a promotion is attached to a new session.
The session keeps a snapshot of the prices from then on.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Optional
import uuid

from .pricing import DEFAULT_CURRENCY, PriceSchedule


class PromotionValidationError(ValueError):
    """Raised for negative prices or an inverted validity window."""
    pass


def new_promo_id() -> str:
    return f"PRM-{uuid.uuid4().hex[:16]}"


def _day_of(moment: datetime) -> date:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


@dataclass
class Promotion:
    """Per-person price override with an activation flag and optional window."""
    promo_id: str
    name: str
    first_hour_price: float
    extra_hour_price: float
    is_active: bool = True
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def validate(self) -> None:
        if self.first_hour_price < 0 or self.extra_hour_price < 0:
            raise PromotionValidationError("Promotion prices cannot be negative")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise PromotionValidationError(
                f"Promotion window ends ({self.end_date}) before it starts ({self.start_date})"
            )

    def is_within_window(self, now: datetime) -> bool:
        day = _day_of(now)
        if self.start_date and day < self.start_date:
            return False
        if self.end_date and day > self.end_date:
            return False
        return True

    def is_applicable(self, now: datetime) -> bool:
        return self.is_active and self.is_within_window(now)

    def schedule(self, currency: str = DEFAULT_CURRENCY) -> PriceSchedule:
        return PriceSchedule(self.first_hour_price, self.extra_hour_price, currency)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promo_id": self.promo_id,
            "name": self.name,
            "first_hour_price": self.first_hour_price,
            "extra_hour_price": self.extra_hour_price,
            "is_active": self.is_active,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "created_at": self.created_at,
        }


def select_active(promotions: Iterable[Promotion], now: datetime) -> Optional[Promotion]:
    """First promotion applicable at ``now``, in the order given."""
    for promo in promotions:
        if promo.is_applicable(now):
            return promo
    return None
