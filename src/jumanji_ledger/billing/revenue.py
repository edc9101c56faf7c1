"""
Revenue Aggregation

Only completed sessions count. Active sessions have no frozen bill yet and
cancelled sessions are never billed.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from ..core.session import Session, SessionStatus


@dataclass
class RevenueSummary:
    """Totals over a set of sessions."""
    completed_sessions: int = 0
    cancelled_sessions: int = 0
    active_sessions: int = 0
    total_revenue: float = 0.0
    total_hours: float = 0.0
    total_guests: int = 0

    @property
    def average_session_hours(self) -> float:
        if not self.completed_sessions:
            return 0.0
        return round(self.total_hours / self.completed_sessions, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completed_sessions": self.completed_sessions,
            "cancelled_sessions": self.cancelled_sessions,
            "active_sessions": self.active_sessions,
            "total_revenue": self.total_revenue,
            "total_hours": self.total_hours,
            "total_guests": self.total_guests,
            "average_session_hours": self.average_session_hours,
        }


def summarize(
    sessions: Iterable[Session],
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> RevenueSummary:
    """Aggregate sessions whose start falls in ``[since, until)``."""
    summary = RevenueSummary()
    revenue = 0.0
    hours = 0.0

    for session in sessions:
        if since is not None and session.start_time < since:
            continue
        if until is not None and session.start_time >= until:
            continue

        if session.status == SessionStatus.CANCELLED:
            summary.cancelled_sessions += 1
        elif session.status == SessionStatus.ACTIVE:
            summary.active_sessions += 1
        else:
            summary.completed_sessions += 1
            summary.total_guests += session.capacity
            revenue += session.total_cost
            hours += session.hours

    summary.total_revenue = round(revenue, 2)
    summary.total_hours = round(hours, 2)
    return summary
