"""
Tests for Session Settlement

The frozen bill must equal the engine at end_time, and the recorded payment
must split exactly that amount.
"""

import pytest
import sqlite3
from datetime import date, timedelta

from jumanji_ledger.billing.payments import (
    Payment,
    PaymentMethod,
    PaymentSplitError,
    PaymentStatus,
    Tender,
    method_breakdown,
    payment_stats,
)
from jumanji_ledger.billing.promotions import PromotionNotFoundError
from jumanji_ledger.billing.revenue import summarize
from jumanji_ledger.billing.settlement import (
    PaymentNotFoundError,
    PromotionNotApplicableError,
    SessionNotFoundError,
    SettlementMismatchError,
)
from jumanji_ledger.core.activity import ActivityType
from jumanji_ledger.core.pricing import quote
from jumanji_ledger.core.promotion import PromotionValidationError
from jumanji_ledger.core.session import SessionStateError, SessionStatus, SessionValidationError


class TestStartSession:
    """Opening sessions and attaching promotions."""

    def test_defaults_without_promotion(self, settlement, clock):
        session = settlement.start_session("CUST-1", capacity=2, table_number=4)

        assert session.status == SessionStatus.ACTIVE
        assert session.start_time == clock.now()
        assert session.first_hour_price == 30.0
        assert session.promo_id is None

    def test_active_promotion_is_auto_applied(self, settlement, promotions):
        promo = promotions.create("Student night", first_hour_price=20, extra_hour_price=10)
        session = settlement.start_session("CUST-1", capacity=2)

        assert session.promo_id == promo.promo_id
        assert session.first_hour_price == 20
        assert session.extra_hour_price == 10

    def test_expired_promotion_is_skipped(self, settlement, promotions, clock):
        yesterday = clock.now().date() - timedelta(days=1)
        promotions.create("Old", 20, 10, end_date=yesterday)

        session = settlement.start_session("CUST-1", capacity=1)
        assert session.promo_id is None

    def test_explicit_promotion_out_of_window(self, settlement, promotions, clock):
        promo = promotions.create("Later", 20, 10, start_date=clock.now().date() + timedelta(days=3))
        with pytest.raises(PromotionNotApplicableError):
            settlement.start_session("CUST-1", capacity=1, promo_id=promo.promo_id)

    def test_prices_are_snapshotted(self, settlement, promotions, clock):
        promo = promotions.create("Happy hour", 20, 10)
        session = settlement.start_session("CUST-1", capacity=1)

        promotions.update(promo.promo_id, first_hour_price=5, extra_hour_price=5)
        clock.advance(minutes=45)

        assert settlement.live_quote(session.session_id).current_cost == 20.0

    def test_gender_mismatch_rejected(self, settlement):
        with pytest.raises(SessionValidationError):
            settlement.start_session("CUST-1", capacity=3, male=1, female=1)

    def test_backdated_start(self, settlement, clock):
        session = settlement.start_session("CUST-1", capacity=1, started_at=clock.now() - timedelta(minutes=95))
        assert settlement.live_quote(session.session_id).current_cost == 60.0


class TestEndSession:
    """Settlement equality and the payment split."""

    def test_settles_engine_total(self, settlement, repos, clock):
        session = settlement.start_session("CUST-1", capacity=2)
        clock.advance(minutes=120)

        result = settlement.end_session(session.session_id)

        expected = quote(session.start_time, clock.now(), 2).current_cost
        assert result.session.total_cost == expected == 120.0
        assert result.session.hours == 2.0
        assert result.payment.amount == 120.0
        assert result.payment.method == PaymentMethod.CASH
        assert not result.overridden

        stored = repos["sessions"].get(session.session_id)
        assert stored.status == SessionStatus.COMPLETED
        assert stored.total_cost == 120.0
        assert stored.end_time == clock.now()

    def test_completed_quote_is_frozen(self, settlement, clock):
        session = settlement.start_session("CUST-1", capacity=1)
        clock.advance(minutes=100)
        settlement.end_session(session.session_id)

        clock.advance(hours=5)
        assert settlement.live_quote(session.session_id).current_cost == 60.0

    def test_split_payment(self, settlement, repos, clock):
        session = settlement.start_session("CUST-1", capacity=2)
        clock.advance(minutes=120)

        result = settlement.end_session(
            session.session_id,
            tender=Tender(cash_amount=50, card_amount=40, online_amount=30),
        )

        payment = repos["payments"].get_by_session(session.session_id)[0]
        assert payment.method == PaymentMethod.MIXED
        assert payment.amount == payment.components_total == result.session.total_cost

    def test_mismatch_rejected(self, settlement, repos, clock):
        session = settlement.start_session("CUST-1", capacity=2)
        clock.advance(minutes=120)

        with pytest.raises(SettlementMismatchError) as exc_info:
            settlement.end_session(session.session_id, tender=Tender(cash_amount=100))

        assert exc_info.value.expected == 120.0
        assert exc_info.value.tendered == 100.0
        assert repos["sessions"].get(session.session_id).is_active
        assert repos["payments"].get_by_session(session.session_id) == []

    def test_rounding_within_tolerance(self, settlement, clock):
        session = settlement.start_session("CUST-1", capacity=1)
        clock.advance(minutes=45)

        result = settlement.end_session(session.session_id, tender=Tender(card_amount=29.999))
        assert not result.overridden

    def test_override_records_reason(self, settlement, repos, clock):
        session = settlement.start_session("CUST-1", capacity=2)
        clock.advance(minutes=120)

        result = settlement.end_session(
            session.session_id,
            tender=Tender(cash_amount=100),
            override_reason="Birthday discount",
        )

        assert result.overridden
        assert result.session.total_cost == 120.0
        payment = repos["payments"].get_by_session(session.session_id)[0]
        assert payment.amount == 100.0
        assert payment.expected_amount == 120.0
        assert payment.override_reason == "Birthday discount"

    def test_negative_split_rejected(self, settlement, clock):
        session = settlement.start_session("CUST-1", capacity=1)
        clock.advance(minutes=45)

        with pytest.raises(PaymentSplitError):
            settlement.end_session(session.session_id, tender=Tender(cash_amount=40, card_amount=-10))

    def test_free_session_has_no_payment(self, settlement, repos, clock):
        session = settlement.start_session("CUST-1", capacity=3)
        clock.advance(minutes=20)

        result = settlement.end_session(session.session_id)
        assert result.session.total_cost == 0.0
        assert result.payment is None
        assert repos["payments"].get_by_session(session.session_id) == []

    def test_cannot_end_twice(self, settlement, clock):
        session = settlement.start_session("CUST-1", capacity=1)
        clock.advance(minutes=45)
        settlement.end_session(session.session_id)

        with pytest.raises(SessionStateError):
            settlement.end_session(session.session_id)

    def test_unknown_session(self, settlement):
        with pytest.raises(SessionNotFoundError):
            settlement.end_session("SES-missing")

    def test_activity_trail(self, settlement, repos, clock):
        session = settlement.start_session("CUST-1", capacity=1)
        clock.advance(minutes=45)
        settlement.end_session(session.session_id)

        summary = repos["activity"].summary()
        assert summary[ActivityType.SESSION_START.value] == 1
        assert summary[ActivityType.SESSION_END.value] == 1
        assert summary[ActivityType.PAYMENT_ADD.value] == 1


class TestSettlementWrites:
    """The completed session and its payment are stored together or not at all."""

    def test_failed_payment_write_keeps_session_active(self, settlement, repos, db, clock):
        session = settlement.start_session("CUST-1", capacity=1)
        clock.advance(minutes=100)
        db.execute(
            """CREATE TRIGGER reject_payments BEFORE INSERT ON payments
               BEGIN SELECT RAISE(ABORT, 'payments table unavailable'); END"""
        )

        with pytest.raises(sqlite3.DatabaseError):
            settlement.end_session(session.session_id)

        stored = repos["sessions"].get(session.session_id)
        assert stored.status == SessionStatus.ACTIVE
        assert stored.total_cost == 0.0
        assert stored.end_time is None
        assert repos["payments"].get_by_session(session.session_id) == []
        assert ActivityType.PAYMENT_ADD.value not in repos["activity"].summary()

    def test_retry_after_failed_write(self, settlement, repos, db, clock):
        session = settlement.start_session("CUST-1", capacity=1)
        clock.advance(minutes=100)
        db.execute(
            """CREATE TRIGGER reject_payments BEFORE INSERT ON payments
               BEGIN SELECT RAISE(ABORT, 'payments table unavailable'); END"""
        )
        with pytest.raises(sqlite3.DatabaseError):
            settlement.end_session(session.session_id)

        db.execute("DROP TRIGGER reject_payments")
        result = settlement.end_session(session.session_id)

        assert result.session.total_cost == 60.0
        payments = repos["payments"].get_by_session(session.session_id)
        assert len(payments) == 1
        assert payments[0].amount == 60.0

    @pytest.mark.parametrize("amount", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_tender_rejected(self, settlement, repos, clock, amount):
        session = settlement.start_session("CUST-1", capacity=1)
        clock.advance(minutes=45)

        with pytest.raises(PaymentSplitError):
            settlement.end_session(session.session_id, tender=Tender(cash_amount=amount))

        assert repos["sessions"].get(session.session_id).is_active
        assert repos["payments"].get_by_session(session.session_id) == []


class TestPaymentStatus:
    """Payments can be moved between pending, completed and failed."""

    def settle(self, settlement, clock):
        session = settlement.start_session("CUST-1", capacity=2)
        clock.advance(minutes=120)
        return settlement.end_session(session.session_id).payment

    def test_mark_pending(self, settlement, repos, clock):
        payment = self.settle(settlement, clock)

        updated = settlement.update_payment_status(payment.payment_id, PaymentStatus.PENDING, notes="Card declined once")

        assert updated.status == PaymentStatus.PENDING
        stored = repos["payments"].get(payment.payment_id)
        assert stored.status == PaymentStatus.PENDING
        assert stored.notes == "Card declined once"

        stats = payment_stats(repos["payments"].list_all())
        assert stats["total_revenue"] == 0.0
        assert stats["pending_amount"] == 120.0

    def test_status_filter(self, settlement, repos, clock):
        payment = self.settle(settlement, clock)
        settlement.update_payment_status(payment.payment_id, PaymentStatus.FAILED)

        assert repos["payments"].list_recent(status=PaymentStatus.COMPLETED) == []
        failed = repos["payments"].list_recent(status=PaymentStatus.FAILED)
        assert [p.payment_id for p in failed] == [payment.payment_id]

    def test_update_is_logged(self, settlement, repos, clock):
        payment = self.settle(settlement, clock)
        settlement.update_payment_status(payment.payment_id, PaymentStatus.FAILED)

        assert repos["activity"].summary()[ActivityType.PAYMENT_UPDATE.value] == 1

    def test_session_bill_unchanged(self, settlement, repos, clock):
        payment = self.settle(settlement, clock)
        settlement.update_payment_status(payment.payment_id, PaymentStatus.FAILED)

        assert repos["sessions"].get(payment.session_id).total_cost == 120.0

    def test_unknown_payment(self, settlement):
        with pytest.raises(PaymentNotFoundError):
            settlement.update_payment_status("PAY-missing", PaymentStatus.FAILED)


class TestCancelSession:
    """Cancelled sessions are never billed."""

    def test_cancel(self, settlement, repos, clock):
        session = settlement.start_session("CUST-1", capacity=4)
        clock.advance(minutes=200)

        cancelled = settlement.cancel_session(session.session_id, reason="Wrong table")

        assert cancelled.status == SessionStatus.CANCELLED
        assert cancelled.total_cost == 0.0
        assert repos["payments"].get_by_session(session.session_id) == []
        with pytest.raises(SessionStateError):
            settlement.live_quote(session.session_id)

    def test_cannot_end_cancelled(self, settlement):
        session = settlement.start_session("CUST-1", capacity=1)
        settlement.cancel_session(session.session_id)

        with pytest.raises(SessionStateError):
            settlement.end_session(session.session_id)


class TestRevenue:
    """Revenue counts completed sessions only."""

    def test_excludes_cancelled_and_active(self, settlement, clock):
        first = settlement.start_session("CUST-1", capacity=2)
        second = settlement.start_session("CUST-2", capacity=3)
        settlement.start_session("CUST-3", capacity=1)

        clock.advance(minutes=120)
        settlement.end_session(first.session_id)
        settlement.cancel_session(second.session_id)

        summary = summarize(settlement.list_sessions())
        assert summary.completed_sessions == 1
        assert summary.cancelled_sessions == 1
        assert summary.active_sessions == 1
        assert summary.total_revenue == 120.0
        assert summary.total_guests == 2
        assert summary.average_session_hours == 2.0

    def test_window(self, settlement, clock):
        early = settlement.start_session("CUST-1", capacity=1)
        clock.advance(hours=3)
        late = settlement.start_session("CUST-2", capacity=1)
        clock.advance(minutes=45)
        settlement.end_session(early.session_id)
        settlement.end_session(late.session_id)

        summary = summarize(settlement.list_sessions(), since=late.start_time)
        assert summary.completed_sessions == 1
        assert summary.total_revenue == 30.0


class TestPaymentStats:
    """Aggregates over recorded payments."""

    def make(self, amount, method, status=PaymentStatus.COMPLETED, **split):
        return Payment(
            payment_id=f"PAY-{amount}-{method.value}",
            session_id="SES-1",
            customer_id="CUST-1",
            amount=amount,
            method=method,
            status=status,
            **split,
        )

    def test_stats_by_status(self):
        payments = [
            self.make(60, PaymentMethod.CASH, cash_amount=60),
            self.make(30, PaymentMethod.CARD, PaymentStatus.PENDING, card_amount=30),
            self.make(10, PaymentMethod.ONLINE, PaymentStatus.FAILED, online_amount=10),
        ]
        stats = payment_stats(payments)
        assert stats["total_revenue"] == 60.0
        assert stats["pending_amount"] == 30.0
        assert stats["failed_amount"] == 10.0
        assert stats["total_payments"] == 3

    def test_mixed_is_distributed(self):
        payments = [
            self.make(90, PaymentMethod.MIXED, cash_amount=50, card_amount=40),
            self.make(30, PaymentMethod.CARD, card_amount=30),
        ]
        breakdown = method_breakdown(payments)
        assert breakdown["mixed"] == {"count": 1, "amount": 90.0}
        assert breakdown["card"] == {"count": 2, "amount": 70.0}
        assert breakdown["cash"] == {"count": 1, "amount": 50.0}
        assert breakdown["online"] == {"count": 0, "amount": 0.0}

    def test_tender_method(self):
        assert Tender(card_amount=10).method == PaymentMethod.CARD
        assert Tender().method == PaymentMethod.CASH
        assert Tender(cash_amount=5, online_amount=5).method == PaymentMethod.MIXED


class TestPromotionService:
    """Promotion CRUD and its activity trail."""

    def test_toggle_is_logged_as_activation(self, promotions, repos):
        promo = promotions.create("Weekday", 20, 10)
        promotions.update(promo.promo_id, is_active=False)
        promotions.update(promo.promo_id, is_active=True)

        summary = repos["activity"].summary()
        assert summary[ActivityType.PROMOTION_DISABLED.value] == 1
        assert summary[ActivityType.PROMOTION_ACTIVATED.value] == 1

    def test_update_and_delete(self, promotions):
        promo = promotions.create("Weekday", 20, 10)
        updated = promotions.update(promo.promo_id, name="Weekday deal", end_date=date(2026, 12, 31))
        assert updated.name == "Weekday deal"
        assert promotions.get(promo.promo_id).end_date == date(2026, 12, 31)

        promotions.delete(promo.promo_id)
        with pytest.raises(PromotionNotFoundError):
            promotions.get(promo.promo_id)

    def test_unknown_field_rejected(self, promotions):
        promo = promotions.create("Weekday", 20, 10)
        with pytest.raises(ValueError):
            promotions.update(promo.promo_id, promo_id="PRM-other")

    def test_applicable(self, promotions):
        assert promotions.applicable() is None
        promo = promotions.create("Weekday", 20, 10)
        assert promotions.applicable().promo_id == promo.promo_id

    @pytest.mark.parametrize("field", ["name", "first_hour_price", "extra_hour_price", "is_active"])
    def test_required_field_cannot_be_cleared(self, promotions, field):
        promo = promotions.create("Weekday", 20, 10)

        with pytest.raises(PromotionValidationError):
            promotions.update(promo.promo_id, **{field: None})

        assert promotions.get(promo.promo_id) == promo

    def test_window_can_be_cleared(self, promotions):
        promo = promotions.create("Weekday", 20, 10, end_date=date(2026, 12, 31))
        updated = promotions.update(promo.promo_id, end_date=None)
        assert updated.end_date is None
