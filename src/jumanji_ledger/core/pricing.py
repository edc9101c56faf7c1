"""
Session Billing Engine

Turns a session's elapsed wall-clock time, party size and price schedule into
a running charge.

Per-person pricing:
- First 30 minutes: free (grace period)
- 30 min to 1h30: flat first-hour price
- From 1h30: first-hour price + one extra-hour price per started hour past 1h30

The live timer, the session list and settlement all go through ``quote``.
Everything here is pure: no clock, no I/O, no logging. The caller supplies
``now`` on every tick.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS
GRACE_PERIOD_MS = 30 * MINUTE_MS
FIRST_HOUR_END_MS = 90 * MINUTE_MS
EXTRA_HOUR_MS = HOUR_MS

DEFAULT_FIRST_HOUR_PRICE = 30.0
DEFAULT_EXTRA_HOUR_PRICE = 30.0
DEFAULT_CURRENCY = "SAR"

Timestamp = Union[datetime, str]


class BillingPhase(Enum):
    """Which pricing window a session currently sits in."""
    GRACE = "GRACE"
    FIRST_HOUR = "FIRST_HOUR"
    EXTRA_HOURS = "EXTRA_HOURS"


@dataclass(frozen=True)
class PriceSchedule:
    """Per-person prices applied to a session."""
    first_hour_price: float = DEFAULT_FIRST_HOUR_PRICE
    extra_hour_price: float = DEFAULT_EXTRA_HOUR_PRICE
    currency: str = DEFAULT_CURRENCY

    @classmethod
    def default(cls, currency: str = DEFAULT_CURRENCY) -> "PriceSchedule":
        return cls(currency=currency)

    def clamped(self) -> "PriceSchedule":
        """Copy with negative or non-numeric prices forced to 0."""
        return PriceSchedule(
            first_hour_price=_clamp_amount(self.first_hour_price),
            extra_hour_price=_clamp_amount(self.extra_hour_price),
            currency=self.currency or DEFAULT_CURRENCY,
        )


@dataclass(frozen=True)
class ChargeQuote:
    """
    The engine's answer for one (start, now, capacity, schedule) tuple.

    ``next_charge_amount`` is per person, matching the price schedule.
    """
    elapsed_ms: int
    capacity: int
    phase: BillingPhase
    extra_hours: int
    per_person_cost: float
    current_cost: float
    hours_billable: float
    next_charge_in_ms: int
    next_charge_amount: float
    progress_percent: float
    breakdown_text: str
    next_charge_text: str
    currency: str = DEFAULT_CURRENCY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "elapsed_ms": self.elapsed_ms,
            "capacity": self.capacity,
            "phase": self.phase.value,
            "extra_hours": self.extra_hours,
            "per_person_cost": self.per_person_cost,
            "current_cost": self.current_cost,
            "hours_billable": self.hours_billable,
            "next_charge_in_ms": self.next_charge_in_ms,
            "next_charge_amount": self.next_charge_amount,
            "progress_percent": self.progress_percent,
            "breakdown_text": self.breakdown_text,
            "next_charge_text": self.next_charge_text,
            "currency": self.currency,
        }


def _clamp_amount(value: Any) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(amount) or math.isinf(amount) or amount < 0:
        return 0.0
    return amount


def _clamp_capacity(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        capacity = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, capacity)


def _money(value: float) -> float:
    # + 0.0 folds -0.0 into 0.0
    return round(value, 2) + 0.0


def _format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def _ceil_minutes(ms: int) -> int:
    return -(-ms // MINUTE_MS)


def _people(capacity: int) -> str:
    return "1 person" if capacity == 1 else f"{capacity} people"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string or datetime into an aware UTC-comparable datetime.

    Naive values are taken as UTC. Returns None for anything unparseable.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def elapsed_ms_between(start_time: Any, now: Any) -> int:
    """Whole milliseconds from start to now; 0 on clock skew or bad input."""
    start = parse_timestamp(start_time)
    end = parse_timestamp(now)
    if start is None or end is None:
        return 0
    return max(0, (end - start) // timedelta(milliseconds=1))


def phase_for(elapsed_ms: int) -> BillingPhase:
    if elapsed_ms < GRACE_PERIOD_MS:
        return BillingPhase.GRACE
    if elapsed_ms < FIRST_HOUR_END_MS:
        return BillingPhase.FIRST_HOUR
    return BillingPhase.EXTRA_HOURS


def extra_hours_for(elapsed_ms: int) -> int:
    """Started hours past the 90-minute mark."""
    if elapsed_ms < FIRST_HOUR_END_MS:
        return 0
    return (elapsed_ms - FIRST_HOUR_END_MS) // EXTRA_HOUR_MS + 1


def per_person_charge(elapsed_ms: int, first_hour_price: float, extra_hour_price: float) -> float:
    """The three-branch step function, for a single person."""
    first = _clamp_amount(first_hour_price)
    extra = _clamp_amount(extra_hour_price)

    if elapsed_ms < GRACE_PERIOD_MS:
        return 0.0
    if elapsed_ms < FIRST_HOUR_END_MS:
        return first
    return first + extra_hours_for(elapsed_ms) * extra


def hours_billable_for(elapsed_ms: int) -> float:
    """Decimal hours floored to one place: 4 minutes -> 0.0, 6 minutes -> 0.1."""
    return (max(0, elapsed_ms) * 10 // HOUR_MS) / 10


def quote(
    start_time: Any,
    now: Any,
    capacity: Any,
    schedule: Optional[PriceSchedule] = None,
) -> ChargeQuote:
    """
    Compute the running charge for a session.

    Never raises: malformed timestamps and clock skew give zero elapsed time,
    negative capacity and prices clamp to 0.
    """
    schedule = (schedule or PriceSchedule.default()).clamped()
    first = schedule.first_hour_price
    extra = schedule.extra_hour_price
    currency = schedule.currency
    people = _clamp_capacity(capacity)
    elapsed_ms = elapsed_ms_between(start_time, now)

    phase = phase_for(elapsed_ms)
    extra_hours = extra_hours_for(elapsed_ms)
    per_person = per_person_charge(elapsed_ms, first, extra)
    current_cost = _money(per_person * people)

    if phase is BillingPhase.GRACE:
        next_in_ms = GRACE_PERIOD_MS - elapsed_ms
        next_amount = first
        progress = elapsed_ms / GRACE_PERIOD_MS * 100
    elif phase is BillingPhase.FIRST_HOUR:
        next_in_ms = FIRST_HOUR_END_MS - elapsed_ms
        next_amount = extra
        progress = (elapsed_ms % HOUR_MS) / HOUR_MS * 100
    else:
        next_in_ms = EXTRA_HOUR_MS - (elapsed_ms - FIRST_HOUR_END_MS) % EXTRA_HOUR_MS
        next_amount = extra
        progress = (elapsed_ms % HOUR_MS) / HOUR_MS * 100

    progress = min(100.0, max(0.0, round(progress, 2)))
    minutes_left = _ceil_minutes(next_in_ms)

    if phase is BillingPhase.GRACE:
        breakdown = (
            f"First 30 min free: 0 {currency} - "
            f"{_format_amount(_money(first * people))} {currency} due in {minutes_left}m "
            f"({_people(people)})"
        )
    elif phase is BillingPhase.FIRST_HOUR:
        breakdown = (
            f"30 min to 1h30: {_format_amount(current_cost)} {currency} - "
            f"next charge {_format_amount(_money(extra * people))} {currency} in {minutes_left}m "
            f"({_people(people)})"
        )
    else:
        unit = "hour" if extra_hours == 1 else "hours"
        breakdown = (
            f"First hour + {extra_hours} extra {unit}: {_format_amount(current_cost)} {currency} - "
            f"next charge {_format_amount(_money(extra * people))} {currency} in {minutes_left}m "
            f"({_people(people)})"
        )

    next_text = (
        f"Next charge in {minutes_left}m "
        f"({_format_amount(next_amount)} {currency} per person)"
    )

    return ChargeQuote(
        elapsed_ms=elapsed_ms,
        capacity=people,
        phase=phase,
        extra_hours=extra_hours,
        per_person_cost=_money(per_person),
        current_cost=current_cost,
        hours_billable=hours_billable_for(elapsed_ms),
        next_charge_in_ms=next_in_ms,
        next_charge_amount=_money(next_amount),
        progress_percent=progress,
        breakdown_text=breakdown,
        next_charge_text=next_text,
        currency=currency,
    )


def quote_session(session: Any, now: Any, currency: str = DEFAULT_CURRENCY) -> ChargeQuote:
    """Quote anything shaped like a Session (start_time, capacity, price snapshot)."""
    schedule = PriceSchedule(
        first_hour_price=session.first_hour_price,
        extra_hour_price=session.extra_hour_price,
        currency=currency,
    )
    return quote(session.start_time, now, session.capacity, schedule)


def quote_payload(
    payload: Mapping[str, Any],
    now: Any,
    default_schedule: Optional[PriceSchedule] = None,
) -> ChargeQuote:
    """
    Quote the wire shape ``{startTime, capacity, promo?: {firstHourPrice, extraHourPrice}}``.

    snake_case keys are accepted too. Missing promo prices fall back to the
    default schedule; an explicit 0 is kept.
    """
    base = default_schedule or PriceSchedule.default()
    start_time = payload.get("startTime", payload.get("start_time"))
    capacity = payload.get("capacity", 0)
    promo = payload.get("promo") or {}
    if not isinstance(promo, Mapping):
        promo = {}

    first = promo.get("firstHourPrice", promo.get("first_hour_price"))
    extra = promo.get("extraHourPrice", promo.get("extra_hour_price"))
    schedule = PriceSchedule(
        first_hour_price=base.first_hour_price if first is None else first,
        extra_hour_price=base.extra_hour_price if extra is None else extra,
        currency=base.currency,
    )
    return quote(start_time, now, capacity, schedule)
