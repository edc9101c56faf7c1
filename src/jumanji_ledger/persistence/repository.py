"""
Repository Layer for Jumanji Ledger

Provides CRUD operations for all persisted entities.
"""

from typing import Any, Dict, List, Optional, Union
from datetime import datetime, timezone
import structlog

from ..billing.payments import Payment, PaymentStatus
from ..core.activity import ActivityType
from ..core.promotion import Promotion
from ..core.session import Session, SessionStatus
from .database import Database, get_database
from .models import ActivityLogRecord, PaymentRecord, PromotionRecord, SessionRecord

logger = structlog.get_logger()

PAYMENT_INSERT_SQL = """INSERT INTO payments
   (payment_id, session_id, customer_id, amount, method, cash_amount,
    card_amount, online_amount, status, expected_amount, override_reason,
    notes, timestamp)
   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"""


class SessionRepository:
    """Repository for table sessions."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def create(self, session: Session) -> Session:
        """Create a new session."""
        self.db.execute(
            """INSERT INTO sessions
               (session_id, customer_id, start_time, end_time, status, capacity,
                promo_id, first_hour_price, extra_hour_price, total_cost, hours,
                table_id, table_number, notes, game_master_id, male, female, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            SessionRecord.from_domain(session).to_db_tuple()
        )
        logger.info("session_created", session_id=session.session_id, customer_id=session.customer_id)
        return session

    def get(self, session_id: str) -> Optional[Session]:
        """Get a session by ID."""
        results = self.db.execute(
            "SELECT * FROM sessions WHERE session_id = ?",
            (session_id,)
        )
        return SessionRecord.from_row(results[0]).to_domain() if results else None

    def list(
        self,
        status: Optional[SessionStatus] = None,
        limit: int = 500,
        offset: int = 0,
    ) -> List[Session]:
        """List sessions, newest first, optionally filtered by status."""
        if status is not None:
            results = self.db.execute(
                "SELECT * FROM sessions WHERE status = ? ORDER BY start_time DESC LIMIT ? OFFSET ?",
                (status.value, limit, offset)
            )
        else:
            results = self.db.execute(
                "SELECT * FROM sessions ORDER BY start_time DESC LIMIT ? OFFSET ?",
                (limit, offset)
            )
        return [SessionRecord.from_row(r).to_domain() for r in results]

    def list_active(self) -> List[Session]:
        """Every session the live ticker should re-quote."""
        results = self.db.execute(
            "SELECT * FROM sessions WHERE status = 'active' ORDER BY start_time ASC"
        )
        return [SessionRecord.from_row(r).to_domain() for r in results]

    def finalize(self, session: Session) -> bool:
        """
        Persist a completed or cancelled session.

        Only applies while the stored row is still active, so two terminals
        ending the same session cannot both succeed.
        """
        with self.db.connection() as conn:
            updated = self._finalize(conn, session)
        if updated:
            self._log_finalized(session)
        return updated

    def settle(self, session: Session, payment: Optional[Payment] = None) -> bool:
        """
        Persist a completed session and its payment in one transaction.

        If the payment insert fails the session update is rolled back too, so
        the session stays active and can be ended again.
        """
        with self.db.connection() as conn:
            updated = self._finalize(conn, session)
            if updated and payment is not None:
                conn.execute(PAYMENT_INSERT_SQL, PaymentRecord.from_domain(payment).to_db_tuple())
        if updated:
            self._log_finalized(session)
            if payment is not None:
                logger.info(
                    "payment_created",
                    payment_id=payment.payment_id,
                    session_id=payment.session_id,
                    amount=payment.amount,
                    method=payment.method.value,
                )
        return updated

    def _finalize(self, conn, session: Session) -> bool:
        cursor = conn.execute(
            """UPDATE sessions
               SET status = ?, end_time = ?, total_cost = ?, hours = ?
               WHERE session_id = ? AND status = 'active'""",
            (
                session.status.value,
                session.end_time.isoformat() if session.end_time else None,
                session.total_cost,
                session.hours,
                session.session_id,
            )
        )
        return cursor.rowcount > 0

    def _log_finalized(self, session: Session) -> None:
        logger.info(
            "session_finalized",
            session_id=session.session_id,
            status=session.status.value,
            total_cost=session.total_cost,
        )

    def count_by_status(self) -> Dict[str, int]:
        results = self.db.execute(
            "SELECT status, COUNT(*) as cnt FROM sessions GROUP BY status"
        )
        counts = {status.value: 0 for status in SessionStatus}
        for row in results:
            counts[row["status"]] = row["cnt"]
        return counts


class PromotionRepository:
    """Repository for promotions."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def create(self, promo: Promotion) -> Promotion:
        """Create a new promotion."""
        self.db.execute(
            """INSERT INTO promotions
               (promo_id, name, first_hour_price, extra_hour_price, is_active,
                start_date, end_date, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            PromotionRecord.from_domain(promo).to_db_tuple()
        )
        logger.info("promotion_created", promo_id=promo.promo_id, name=promo.name)
        return promo

    def get(self, promo_id: str) -> Optional[Promotion]:
        results = self.db.execute(
            "SELECT * FROM promotions WHERE promo_id = ?",
            (promo_id,)
        )
        return PromotionRecord.from_row(results[0]).to_domain() if results else None

    def list_all(self) -> List[Promotion]:
        """All promotions, newest first."""
        results = self.db.execute(
            "SELECT * FROM promotions ORDER BY created_at DESC"
        )
        return [PromotionRecord.from_row(r).to_domain() for r in results]

    def list_active(self) -> List[Promotion]:
        """Promotions with the active flag set. Date windows are not checked here."""
        results = self.db.execute(
            "SELECT * FROM promotions WHERE is_active = 1 ORDER BY created_at DESC"
        )
        return [PromotionRecord.from_row(r).to_domain() for r in results]

    def update(self, promo: Promotion) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        record = PromotionRecord.from_domain(promo)
        updated = self.db.execute_write(
            """UPDATE promotions
               SET name = ?, first_hour_price = ?, extra_hour_price = ?, is_active = ?,
                   start_date = ?, end_date = ?, updated_at = ?
               WHERE promo_id = ?""",
            (
                record.name,
                record.first_hour_price,
                record.extra_hour_price,
                1 if record.is_active else 0,
                record.start_date,
                record.end_date,
                now,
                record.promo_id,
            )
        )
        logger.info("promotion_updated", promo_id=promo.promo_id, is_active=promo.is_active)
        return updated > 0

    def delete(self, promo_id: str) -> bool:
        deleted = self.db.execute_write(
            "DELETE FROM promotions WHERE promo_id = ?",
            (promo_id,)
        )
        logger.info("promotion_deleted", promo_id=promo_id, found=deleted > 0)
        return deleted > 0


class PaymentRepository:
    """Repository for payments."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def create(self, payment: Payment) -> Payment:
        """Create a payment record."""
        self.db.execute(PAYMENT_INSERT_SQL, PaymentRecord.from_domain(payment).to_db_tuple())
        logger.info(
            "payment_created",
            payment_id=payment.payment_id,
            session_id=payment.session_id,
            amount=payment.amount,
            method=payment.method.value,
        )
        return payment

    def get(self, payment_id: str) -> Optional[Payment]:
        results = self.db.execute(
            "SELECT * FROM payments WHERE payment_id = ?",
            (payment_id,)
        )
        return PaymentRecord.from_row(results[0]).to_domain() if results else None

    def get_by_session(self, session_id: str) -> List[Payment]:
        results = self.db.execute(
            "SELECT * FROM payments WHERE session_id = ? ORDER BY timestamp ASC",
            (session_id,)
        )
        return [PaymentRecord.from_row(r).to_domain() for r in results]

    def list_recent(self, limit: int = 500, status: Optional[PaymentStatus] = None) -> List[Payment]:
        if status is not None:
            results = self.db.execute(
                "SELECT * FROM payments WHERE status = ? ORDER BY timestamp DESC LIMIT ?",
                (status.value, limit)
            )
        else:
            results = self.db.execute(
                "SELECT * FROM payments ORDER BY timestamp DESC LIMIT ?",
                (limit,)
            )
        return [PaymentRecord.from_row(r).to_domain() for r in results]

    def list_all(self) -> List[Payment]:
        results = self.db.execute("SELECT * FROM payments ORDER BY timestamp ASC")
        return [PaymentRecord.from_row(r).to_domain() for r in results]

    def update_status(self, payment_id: str, status: PaymentStatus, notes: Optional[str] = None) -> bool:
        """Move a payment to ``status``. ``notes`` replaces the stored notes when given."""
        updated = self.db.execute_write(
            "UPDATE payments SET status = ?, notes = COALESCE(?, notes) WHERE payment_id = ?",
            (status.value, notes, payment_id)
        )
        logger.info("payment_status_updated", payment_id=payment_id, status=status.value, found=updated > 0)
        return updated > 0


class ActivityLogRepository:
    """Append-only staff activity trail."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def record(
        self,
        activity_type: Union[ActivityType, str],
        action: str,
        details: str,
        user_id: Optional[str] = None,
    ) -> ActivityLogRecord:
        entry = ActivityLogRecord(
            type=activity_type.value if isinstance(activity_type, ActivityType) else activity_type,
            action=action,
            details=details,
            user_id=user_id,
        )
        self.db.execute(
            """INSERT INTO activity_logs (log_id, type, action, details, user_id, timestamp)
               VALUES (?, ?, ?, ?, ?, ?)""",
            entry.to_db_tuple()
        )
        logger.debug("activity_recorded", type=entry.type, action=action)
        return entry

    def list_recent(
        self,
        limit: int = 100,
        activity_type: Optional[ActivityType] = None,
    ) -> List[ActivityLogRecord]:
        if activity_type is not None:
            results = self.db.execute(
                "SELECT * FROM activity_logs WHERE type = ? ORDER BY timestamp DESC LIMIT ?",
                (activity_type.value, limit)
            )
        else:
            results = self.db.execute(
                "SELECT * FROM activity_logs ORDER BY timestamp DESC LIMIT ?",
                (limit,)
            )
        return [ActivityLogRecord.from_row(r) for r in results]

    def summary(self) -> Dict[str, Any]:
        results = self.db.execute(
            "SELECT type, COUNT(*) as cnt FROM activity_logs GROUP BY type"
        )
        return {row["type"]: row["cnt"] for row in results}
