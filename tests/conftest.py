"""
Pytest Configuration and Fixtures
"""

import os
import sys
import tempfile
from datetime import datetime, timezone

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

# Set test environment
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["API_KEY"] = "test-key-12345"

from jumanji_ledger.billing.promotions import PromotionService
from jumanji_ledger.billing.settlement import SettlementService
from jumanji_ledger.config import BillingConfig
from jumanji_ledger.core.clock import ManualClock
from jumanji_ledger.persistence.database import Database
from jumanji_ledger.persistence.repository import (
    ActivityLogRepository,
    PaymentRepository,
    PromotionRepository,
    SessionRepository,
)

OPENING_TIME = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """A clock fixed at noon on a Saturday."""
    return ManualClock(OPENING_TIME)


@pytest.fixture
def db():
    """Fresh in-memory database with the schema applied."""
    database = Database("sqlite:///:memory:")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def temp_db():
    """Create a temporary database file for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    Database.reset_instance()
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(db_path + suffix)
        except OSError:
            pass


@pytest.fixture
def repos(db):
    return {
        "sessions": SessionRepository(db),
        "promotions": PromotionRepository(db),
        "payments": PaymentRepository(db),
        "activity": ActivityLogRepository(db),
    }


@pytest.fixture
def settlement(repos, clock):
    """Settlement service over the in-memory repositories."""
    return SettlementService(
        sessions=repos["sessions"],
        promotions=repos["promotions"],
        payments=repos["payments"],
        activity=repos["activity"],
        clock=clock,
        config=BillingConfig(),
    )


@pytest.fixture
def promotions(repos, clock):
    return PromotionService(repos["promotions"], repos["activity"], clock=clock)
