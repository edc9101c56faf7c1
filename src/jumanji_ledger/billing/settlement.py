"""
Session Settlement

Starts sessions, serves live quotes and settles them at the end.

Settlement contract: the bill frozen on a completed session is exactly what
the billing engine reports at ``end_time``, and the payment recorded for it
splits that amount across cash, card and online. Staff may settle for a
different amount (a manual discount, say) only by giving an override reason,
which is stored on the payment.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import structlog

from ..config import BillingConfig
from ..core.activity import ActivityType
from ..core.clock import SystemClock
from ..core.pricing import ChargeQuote, quote_session
from ..core.promotion import select_active
from ..core.session import (
    Session,
    SessionStateError,
    SessionStatus,
    new_session_id,
    validate_party,
)
from .payments import Payment, PaymentSplitError, PaymentStatus, Tender, new_payment_id

logger = structlog.get_logger()


class SessionNotFoundError(Exception):
    """Raised when a session id does not exist."""
    pass


class PaymentNotFoundError(Exception):
    """Raised when a payment id does not exist."""
    pass


class PromotionNotApplicableError(Exception):
    """Raised when an explicitly requested promotion is missing, inactive or out of its window."""
    pass


class SettlementMismatchError(Exception):
    """
    The tendered amount disagrees with the computed bill.

    Not a hard failure: the caller should show ``expected`` to staff and retry
    with an override reason if the difference is intended.
    """

    def __init__(self, session_id: str, expected: float, tendered: float):
        self.session_id = session_id
        self.expected = expected
        self.tendered = tendered
        super().__init__(
            f"Session {session_id}: tendered {tendered} but the bill is {expected}"
        )


@dataclass
class SettlementResult:
    """Outcome of ending a session."""
    session: Session
    quote: ChargeQuote
    payment: Optional[Payment] = None
    overridden: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session.to_dict(),
            "quote": self.quote.to_dict(),
            "payment": self.payment.to_dict() if self.payment else None,
            "overridden": self.overridden,
        }


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class SettlementService:
    """
    Session lifecycle on top of the session, promotion, payment and activity
    repositories.
    """

    def __init__(
        self,
        sessions,
        promotions,
        payments,
        activity,
        clock=None,
        config: Optional[BillingConfig] = None,
    ):
        self.sessions = sessions
        self.promotions = promotions
        self.payments = payments
        self.activity = activity
        self.clock = clock or SystemClock()
        self.config = config or BillingConfig()

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start_session(
        self,
        customer_id: str,
        capacity: int,
        table_id: Optional[str] = None,
        table_number: Optional[int] = None,
        notes: Optional[str] = None,
        game_master_id: Optional[str] = None,
        male: Optional[int] = None,
        female: Optional[int] = None,
        promo_id: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> Session:
        """
        Open a session.

        Without ``promo_id`` the first applicable promotion is attached
        automatically. Either way the promotion's window is checked against the
        start time and its prices are copied onto the session.
        """
        validate_party(capacity, male, female)
        start = _as_utc(started_at) if started_at else self.clock.now()

        if promo_id is not None:
            promo = self.promotions.get(promo_id)
            if promo is None or not promo.is_applicable(start):
                raise PromotionNotApplicableError(f"Promotion {promo_id} is not applicable at {start.isoformat()}")
        else:
            promo = select_active(self.promotions.list_active(), start)

        schedule = promo.schedule(self.config.currency) if promo else self.config.default_schedule

        session = Session(
            session_id=new_session_id(),
            customer_id=customer_id,
            start_time=start,
            capacity=capacity,
            first_hour_price=schedule.first_hour_price,
            extra_hour_price=schedule.extra_hour_price,
            promo_id=promo.promo_id if promo else None,
            table_id=table_id,
            table_number=table_number,
            notes=notes,
            game_master_id=game_master_id,
            male=male,
            female=female,
            created_at=self.clock.now().isoformat(),
        )
        self.sessions.create(session)

        details = f"Started session for customer {customer_id} - {capacity} people"
        if table_number is not None:
            details += f" - Table {table_number}"
        if promo:
            details += f" - Promo: {promo.name}"
        self.activity.record(ActivityType.SESSION_START, "Session Started", details, user_id=game_master_id)

        logger.info(
            "session_started",
            session_id=session.session_id,
            capacity=capacity,
            promo_id=session.promo_id,
            first_hour_price=session.first_hour_price,
            extra_hour_price=session.extra_hour_price,
        )
        return session

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return session

    def list_sessions(self, status: Optional[SessionStatus] = None) -> List[Session]:
        return self.sessions.list(status=status)

    def live_quote(self, session_id: str, now: Optional[datetime] = None) -> ChargeQuote:
        """
        The running bill.

        Completed sessions are quoted at their ``end_time``, which reproduces
        the frozen total. Cancelled sessions have no bill.
        """
        session = self.get_session(session_id)
        if session.status == SessionStatus.CANCELLED:
            raise SessionStateError(f"Session {session_id} was cancelled and is not billed")
        if session.status == SessionStatus.COMPLETED:
            at = session.end_time
        else:
            at = _as_utc(now) if now else self.clock.now()
        return quote_session(session, at, self.config.currency)

    # ------------------------------------------------------------------
    # End
    # ------------------------------------------------------------------

    def end_session(
        self,
        session_id: str,
        tender: Optional[Tender] = None,
        ended_at: Optional[datetime] = None,
        override_reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SettlementResult:
        """
        Complete a session and record its payment.

        With no ``tender`` the bill is taken in full as cash. A tender that is
        off by more than the configured tolerance raises
        ``SettlementMismatchError`` unless ``override_reason`` is set.
        """
        session = self.get_session(session_id)
        if not session.is_active:
            raise SessionStateError(f"Session {session_id} is already {session.status.value}")

        end_time = _as_utc(ended_at) if ended_at else self.clock.now()
        if end_time < session.start_time:
            end_time = session.start_time

        result = quote_session(session, end_time, self.config.currency)
        total_cost = result.current_cost

        if tender is None:
            tender = Tender.exact(total_cost)
        try:
            tender.validate()
        except PaymentSplitError:
            logger.warning("settlement_rejected", session_id=session_id, reason="invalid_split")
            raise

        overridden = abs(tender.total - total_cost) > self.config.settlement_tolerance
        if overridden and not override_reason:
            logger.warning(
                "settlement_mismatch",
                session_id=session_id,
                expected=total_cost,
                tendered=tender.total,
            )
            raise SettlementMismatchError(session_id, total_cost, tender.total)

        session.complete(end_time, total_cost, result.hours_billable)

        payment = None
        if tender.total > 0 or total_cost > 0:
            payment = Payment(
                payment_id=new_payment_id(),
                session_id=session_id,
                customer_id=session.customer_id,
                amount=tender.total,
                method=tender.method,
                cash_amount=tender.cash_amount,
                card_amount=tender.card_amount,
                online_amount=tender.online_amount,
                status=PaymentStatus.COMPLETED,
                expected_amount=total_cost if overridden else None,
                override_reason=override_reason if overridden else None,
                notes=notes,
                timestamp=end_time.isoformat(),
            )

        try:
            settled = self.sessions.settle(session, payment)
        except Exception as e:
            logger.error("settlement_write_failed", session_id=session_id, error=str(e))
            raise
        if not settled:
            raise SessionStateError(f"Session {session_id} was ended by another terminal")

        if payment is not None:
            self.activity.record(
                ActivityType.PAYMENT_ADD,
                "Payment Added",
                f"Added payment: {payment.amount} {self.config.currency} ({payment.method.value}) "
                f"- cash {payment.cash_amount}, card {payment.card_amount}, online {payment.online_amount}",
            )

        if overridden:
            logger.warning(
                "settlement_override",
                session_id=session_id,
                expected=total_cost,
                tendered=tender.total,
                reason=override_reason,
            )

        self.activity.record(
            ActivityType.SESSION_END,
            "Session Ended",
            f"Ended session for customer {session.customer_id} - {session.capacity} people "
            f"- Duration: {session.hours}h, Cost: {total_cost} {self.config.currency}",
            user_id=session.game_master_id,
        )
        logger.info(
            "session_settled",
            session_id=session_id,
            total_cost=total_cost,
            hours=session.hours,
            overridden=overridden,
        )
        return SettlementResult(session=session, quote=result, payment=payment, overridden=overridden)

    def cancel_session(
        self,
        session_id: str,
        cancelled_at: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> Session:
        """Discard an active session without billing it."""
        session = self.get_session(session_id)
        session.cancel(_as_utc(cancelled_at) if cancelled_at else self.clock.now())
        if not self.sessions.finalize(session):
            raise SessionStateError(f"Session {session_id} was ended by another terminal")

        self.activity.record(
            ActivityType.SESSION_CANCEL,
            "Session Cancelled",
            f"Cancelled session for customer {session.customer_id}" + (f" - {reason}" if reason else ""),
            user_id=session.game_master_id,
        )
        logger.info("session_cancelled", session_id=session_id, reason=reason)
        return session

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def update_payment_status(
        self,
        payment_id: str,
        status: PaymentStatus,
        notes: Optional[str] = None,
    ) -> Payment:
        """
        Mark a recorded payment pending, completed or failed.

        Only completed payments count as revenue in the payment statistics.
        The session's frozen bill is not touched.
        """
        payment = self.payments.get(payment_id)
        if payment is None:
            raise PaymentNotFoundError(f"Payment not found: {payment_id}")

        previous = payment.status
        self.payments.update_status(payment_id, status, notes)
        payment.status = status
        if notes is not None:
            payment.notes = notes

        self.activity.record(
            ActivityType.PAYMENT_UPDATE,
            "Payment Updated",
            f"Updated payment {payment_id} for session {payment.session_id}: "
            f"{previous.value} -> {status.value} ({payment.amount} {self.config.currency})",
        )
        logger.info(
            "payment_status_changed",
            payment_id=payment_id,
            previous=previous.value,
            status=status.value,
        )
        return payment
