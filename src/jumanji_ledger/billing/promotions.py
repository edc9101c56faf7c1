"""
Promotion Management

Create, edit, toggle and delete promotions. Every change is written to the
activity log, which doubles as the promotion history.
"""

from dataclasses import replace
from datetime import date, datetime
from typing import Any, List, Optional
import structlog

from ..core.activity import ActivityType
from ..core.clock import SystemClock
from ..core.promotion import Promotion, PromotionValidationError, new_promo_id, select_active

logger = structlog.get_logger()

EDITABLE_FIELDS = {"name", "first_hour_price", "extra_hour_price", "is_active", "start_date", "end_date"}
REQUIRED_FIELDS = {"name", "first_hour_price", "extra_hour_price", "is_active"}


class PromotionNotFoundError(Exception):
    """Raised when a promotion id does not exist."""
    pass


class PromotionService:
    """Promotion CRUD on top of the promotion and activity repositories."""

    def __init__(self, promotions, activity, clock=None):
        self.promotions = promotions
        self.activity = activity
        self.clock = clock or SystemClock()

    def create(
        self,
        name: str,
        first_hour_price: float,
        extra_hour_price: float,
        is_active: bool = True,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Promotion:
        promo = Promotion(
            promo_id=new_promo_id(),
            name=name,
            first_hour_price=first_hour_price,
            extra_hour_price=extra_hour_price,
            is_active=is_active,
            start_date=start_date,
            end_date=end_date,
            created_at=self.clock.now().isoformat(),
        )
        promo.validate()
        self.promotions.create(promo)
        self.activity.record(
            ActivityType.PROMOTION_CREATED,
            "Promotion Added",
            f"Added promo: {name} (first hour {first_hour_price}, extra hour {extra_hour_price})",
        )
        return promo

    def get(self, promo_id: str) -> Promotion:
        promo = self.promotions.get(promo_id)
        if promo is None:
            raise PromotionNotFoundError(f"Promotion not found: {promo_id}")
        return promo

    def list(self) -> List[Promotion]:
        return self.promotions.list_all()

    def update(self, promo_id: str, **changes: Any) -> Promotion:
        """
        Apply a partial update.

        A change that only flips ``is_active`` is logged as activated/disabled,
        anything else as updated. Only the window dates may be set to None.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update promotion fields: {sorted(unknown)}")
        cleared = sorted(name for name in REQUIRED_FIELDS & set(changes) if changes[name] is None)
        if cleared:
            raise PromotionValidationError(f"Promotion fields cannot be null: {cleared}")

        current = self.get(promo_id)
        updated = replace(current, **changes)
        updated.validate()
        self.promotions.update(updated)

        if set(changes) == {"is_active"}:
            activity_type = (
                ActivityType.PROMOTION_ACTIVATED if updated.is_active
                else ActivityType.PROMOTION_DISABLED
            )
        else:
            activity_type = ActivityType.PROMOTION_UPDATED
        self.activity.record(
            activity_type,
            "Promotion Updated",
            f"Updated promo: {updated.name} ({', '.join(sorted(changes)) or 'no changes'})",
        )
        return updated

    def delete(self, promo_id: str) -> None:
        promo = self.get(promo_id)
        self.promotions.delete(promo_id)
        self.activity.record(
            ActivityType.PROMOTION_DELETED,
            "Promotion Deleted",
            f"Deleted promo: {promo.name}",
        )

    def applicable(self, now: Optional[datetime] = None) -> Optional[Promotion]:
        """The promotion a session starting at ``now`` would get."""
        return select_active(self.promotions.list_active(), now or self.clock.now())
