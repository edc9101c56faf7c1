"""
Payments

A payment is what the customer actually handed over at settlement, split across
cash, card and online. The split must add up to the payment amount.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import uuid


class PaymentMethod(Enum):
    CASH = "cash"
    CARD = "card"
    ONLINE = "online"
    MIXED = "mixed"


class PaymentStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentSplitError(ValueError):
    """Raised for a sub-amount that is not a finite, non-negative number."""
    pass


def new_payment_id() -> str:
    return f"PAY-{uuid.uuid4().hex[:16]}"


@dataclass
class Tender:
    """Cash/card/online amounts offered at the till."""
    cash_amount: float = 0.0
    card_amount: float = 0.0
    online_amount: float = 0.0

    def validate(self) -> None:
        for name in ("cash_amount", "card_amount", "online_amount"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise PaymentSplitError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise PaymentSplitError(f"{name} must be a finite amount, got {value!r}")
            if value < 0:
                raise PaymentSplitError(f"{name} cannot be negative ({value})")

    @property
    def total(self) -> float:
        return round(self.cash_amount + self.card_amount + self.online_amount, 2)

    @property
    def method(self) -> PaymentMethod:
        """Single method when only one component is used, otherwise mixed."""
        used = [
            method for method, amount in (
                (PaymentMethod.CASH, self.cash_amount),
                (PaymentMethod.CARD, self.card_amount),
                (PaymentMethod.ONLINE, self.online_amount),
            )
            if amount > 0
        ]
        if len(used) == 1:
            return used[0]
        if not used:
            return PaymentMethod.CASH
        return PaymentMethod.MIXED

    @classmethod
    def exact(cls, amount: float, method: PaymentMethod = PaymentMethod.CASH) -> "Tender":
        """The whole amount through one method."""
        if method == PaymentMethod.CARD:
            return cls(card_amount=amount)
        if method == PaymentMethod.ONLINE:
            return cls(online_amount=amount)
        return cls(cash_amount=amount)


@dataclass
class Payment:
    """A settled (or pending/failed) payment for one session."""
    payment_id: str
    session_id: str
    customer_id: str
    amount: float
    method: PaymentMethod
    cash_amount: float = 0.0
    card_amount: float = 0.0
    online_amount: float = 0.0
    status: PaymentStatus = PaymentStatus.COMPLETED
    expected_amount: Optional[float] = None  # Engine total when staff overrode it
    override_reason: Optional[str] = None
    notes: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def components_total(self) -> float:
        return round(self.cash_amount + self.card_amount + self.online_amount, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "session_id": self.session_id,
            "customer_id": self.customer_id,
            "amount": self.amount,
            "method": self.method.value,
            "cash_amount": self.cash_amount,
            "card_amount": self.card_amount,
            "online_amount": self.online_amount,
            "status": self.status.value,
            "expected_amount": self.expected_amount,
            "override_reason": self.override_reason,
            "notes": self.notes,
            "timestamp": self.timestamp,
        }


def payment_stats(payments: Iterable[Payment]) -> Dict[str, Any]:
    """Revenue is completed payments only; pending and failed are reported apart."""
    payments = list(payments)
    totals = {status: 0.0 for status in PaymentStatus}
    for payment in payments:
        totals[payment.status] += payment.amount

    return {
        "total_revenue": round(totals[PaymentStatus.COMPLETED], 2),
        "pending_amount": round(totals[PaymentStatus.PENDING], 2),
        "failed_amount": round(totals[PaymentStatus.FAILED], 2),
        "total_payments": len(payments),
    }


def method_breakdown(payments: Iterable[Payment]) -> Dict[str, Dict[str, Any]]:
    """
    Count and completed amount per method.

    A mixed payment counts once as mixed and is also spread into each of its
    non-zero components.
    """
    totals: Dict[str, Dict[str, Any]] = {
        method.value: {"count": 0, "amount": 0.0} for method in PaymentMethod
    }

    for payment in payments:
        completed = payment.status == PaymentStatus.COMPLETED
        if payment.method == PaymentMethod.MIXED:
            totals["mixed"]["count"] += 1
            if completed:
                totals["mixed"]["amount"] += payment.amount
            components: List[tuple] = [
                ("cash", payment.cash_amount),
                ("card", payment.card_amount),
                ("online", payment.online_amount),
            ]
            for key, amount in components:
                if amount > 0:
                    totals[key]["count"] += 1
                    if completed:
                        totals[key]["amount"] += amount
        else:
            bucket = totals[payment.method.value]
            bucket["count"] += 1
            if completed:
                bucket["amount"] += payment.amount

    for bucket in totals.values():
        bucket["amount"] = round(bucket["amount"], 2)
    return totals
