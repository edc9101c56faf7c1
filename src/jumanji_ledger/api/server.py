"""
JUMANJI LEDGER - FastAPI Server

Session billing API for the café dashboard.

Endpoints:
- GET  /health               - Health check
- GET  /pricing/quote        - Stateless quote for ad-hoc inputs
- POST /sessions             - Start a session (auto-applies the active promotion)
- GET  /sessions             - List sessions
- GET  /sessions/{id}/quote  - Live bill for one session
- POST /sessions/{id}/end    - Settle a session and record its payment
- POST /sessions/{id}/cancel - Cancel a session without billing
- /promotions                - Promotion management
- GET  /payments             - Payments and method statistics
- PATCH /payments/{id}       - Mark a payment pending, completed or failed
- GET  /revenue              - Revenue over completed sessions
- GET  /activity             - Activity trail
"""

from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
import os
import structlog

from fastapi import FastAPI, HTTPException, Depends, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .. import __version__
from ..billing.payments import PaymentSplitError, PaymentStatus, Tender, method_breakdown, payment_stats
from ..billing.promotions import PromotionNotFoundError, PromotionService
from ..billing.revenue import summarize
from ..billing.settlement import (
    PaymentNotFoundError,
    PromotionNotApplicableError,
    SessionNotFoundError,
    SettlementMismatchError,
    SettlementService,
)
from ..config import BillingConfig
from ..core.activity import ActivityType
from ..core.clock import SystemClock
from ..core.pricing import PriceSchedule, parse_timestamp, quote
from ..core.promotion import PromotionValidationError
from ..core.session import SessionStateError, SessionStatus, SessionValidationError
from ..persistence.database import Database, get_database
from ..persistence.repository import (
    ActivityLogRepository,
    PaymentRepository,
    PromotionRepository,
    SessionRepository,
)

logger = structlog.get_logger()


# ============================================================================
# Pydantic Models
# ============================================================================

class StartSessionRequest(BaseModel):
    """Request to start a table session."""
    customer_id: str = Field(..., description="Customer identifier")
    capacity: int = Field(..., ge=1, description="Total people in the party")
    table_id: Optional[str] = None
    table_number: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = None
    game_master_id: Optional[str] = None
    male: Optional[int] = Field(None, ge=0)
    female: Optional[int] = Field(None, ge=0)
    promo_id: Optional[str] = Field(None, description="Explicit promotion; omitted means auto-apply")
    started_at: Optional[datetime] = Field(None, description="Backdated start; defaults to now")


class EndSessionRequest(BaseModel):
    """Payment split tendered at settlement."""
    cash_amount: float = Field(default=0.0, ge=0)
    card_amount: float = Field(default=0.0, ge=0)
    online_amount: float = Field(default=0.0, ge=0)
    pay_in_full: bool = Field(default=False, description="Ignore the split and take the bill as cash")
    override_reason: Optional[str] = Field(None, description="Required when settling for a different amount")
    notes: Optional[str] = None
    ended_at: Optional[datetime] = None


class CancelSessionRequest(BaseModel):
    reason: Optional[str] = None


class PaymentUpdateRequest(BaseModel):
    """Status change for a recorded payment."""
    status: PaymentStatus
    notes: Optional[str] = None


class PromotionRequest(BaseModel):
    """Request to create a promotion."""
    name: str
    first_hour_price: float = Field(..., ge=0)
    extra_hour_price: float = Field(..., ge=0)
    is_active: bool = True
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class PromotionUpdateRequest(BaseModel):
    """Partial promotion update."""
    name: Optional[str] = None
    first_hour_price: Optional[float] = Field(None, ge=0)
    extra_hour_price: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class QuoteResponse(BaseModel):
    """Running bill for a session."""
    current_cost: float
    hours_billable: float
    breakdown_text: str
    next_charge_text: str
    next_charge_in_ms: int
    next_charge_amount: float
    progress_percent: float
    phase: str
    extra_hours: int
    elapsed_ms: int
    capacity: int
    currency: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    active_sessions: int
    uptime_seconds: float


# ============================================================================
# Application State
# ============================================================================

class AppState:
    """Application state container."""

    def __init__(self, db: Optional[Database] = None, config: Optional[BillingConfig] = None, clock=None):
        self.db = db or get_database()
        self.config = config or BillingConfig.from_env()
        self.clock = clock or SystemClock()

        self.session_repo = SessionRepository(self.db)
        self.promotion_repo = PromotionRepository(self.db)
        self.payment_repo = PaymentRepository(self.db)
        self.activity_repo = ActivityLogRepository(self.db)

        self.settlement = SettlementService(
            sessions=self.session_repo,
            promotions=self.promotion_repo,
            payments=self.payment_repo,
            activity=self.activity_repo,
            clock=self.clock,
            config=self.config,
        )
        self.promotions = PromotionService(self.promotion_repo, self.activity_repo, clock=self.clock)
        self.start_time = datetime.now(timezone.utc)


app_state: Optional[AppState] = None


# ============================================================================
# Application Factory
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global app_state
    logger.info("jumanji_ledger_starting", version=__version__)
    app_state = AppState()
    yield
    logger.info("jumanji_ledger_stopping")
    app_state = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Jumanji Ledger",
        description="""
# Board-game café session billing

- **Live bills**: first 30 minutes free, flat first hour until 1h30, then per started hour
- **Promotions**: alternate per-person prices, auto-applied at session start
- **Settlement**: frozen bill plus a cash/card/online payment split
- **Revenue**: completed sessions only
        """,
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return application


app = create_app()


# ============================================================================
# Dependencies
# ============================================================================

def get_state() -> AppState:
    """Get application state."""
    if app_state is None:
        raise HTTPException(status_code=503, detail="Application not initialized")
    return app_state


def verify_api_key(x_api_key: str = Header(..., alias="X-API-Key")) -> str:
    """Verify API key."""
    expected = os.environ.get("API_KEY", "dev-key-change-in-production")
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return x_api_key


def _parse_status(status: Optional[str]) -> Optional[SessionStatus]:
    if status is None:
        return None
    try:
        return SessionStatus(status.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")


def _quote_response(result) -> QuoteResponse:
    return QuoteResponse(
        current_cost=result.current_cost,
        hours_billable=result.hours_billable,
        breakdown_text=result.breakdown_text,
        next_charge_text=result.next_charge_text,
        next_charge_in_ms=result.next_charge_in_ms,
        next_charge_amount=result.next_charge_amount,
        progress_percent=result.progress_percent,
        phase=result.phase.value,
        extra_hours=result.extra_hours,
        elapsed_ms=result.elapsed_ms,
        capacity=result.capacity,
        currency=result.currency,
    )


# ============================================================================
# Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check(state: AppState = Depends(get_state)):
    """Health check endpoint."""
    uptime = (datetime.now(timezone.utc) - state.start_time).total_seconds()
    counts = state.session_repo.count_by_status()
    return HealthResponse(
        status="healthy",
        version=__version__,
        active_sessions=counts[SessionStatus.ACTIVE.value],
        uptime_seconds=uptime,
    )


@app.get("/pricing/quote", response_model=QuoteResponse, tags=["Pricing"])
async def pricing_quote(
    start_time: str,
    capacity: int = 1,
    first_hour_price: Optional[float] = None,
    extra_hour_price: Optional[float] = None,
    at: Optional[str] = None,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """
    Quote arbitrary inputs without touching any session.

    Prices default to the configured schedule; ``at`` defaults to now.
    """
    default = state.config.default_schedule
    schedule = PriceSchedule(
        first_hour_price=default.first_hour_price if first_hour_price is None else first_hour_price,
        extra_hour_price=default.extra_hour_price if extra_hour_price is None else extra_hour_price,
        currency=default.currency,
    )
    return _quote_response(quote(start_time, at or state.clock.now(), capacity, schedule))


@app.post("/sessions", tags=["Sessions"])
async def start_session(
    request: StartSessionRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Start a session. The applicable promotion, if any, is attached automatically."""
    try:
        session = state.settlement.start_session(
            customer_id=request.customer_id,
            capacity=request.capacity,
            table_id=request.table_id,
            table_number=request.table_number,
            notes=request.notes,
            game_master_id=request.game_master_id,
            male=request.male,
            female=request.female,
            promo_id=request.promo_id,
            started_at=request.started_at,
        )
    except SessionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PromotionNotApplicableError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return session.to_dict()


@app.get("/sessions", tags=["Sessions"])
async def list_sessions(
    status: Optional[str] = None,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """List sessions. Active ones carry their live bill."""
    sessions = state.settlement.list_sessions(_parse_status(status))
    now = state.clock.now()

    items = []
    for session in sessions:
        data = session.to_dict()
        if session.is_active:
            data["quote"] = state.settlement.live_quote(session.session_id, now).to_dict()
        items.append(data)

    return {"total": len(items), "sessions": items}


@app.get("/sessions/{session_id}", tags=["Sessions"])
async def get_session(
    session_id: str,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    try:
        session = state.settlement.get_session(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    data = session.to_dict()
    data["payments"] = [p.to_dict() for p in state.payment_repo.get_by_session(session_id)]
    return data


@app.get("/sessions/{session_id}/quote", response_model=QuoteResponse, tags=["Sessions"])
async def session_quote(
    session_id: str,
    at: Optional[datetime] = None,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Live bill. Completed sessions return their frozen bill."""
    try:
        result = state.settlement.live_quote(session_id, at)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return _quote_response(result)


@app.post("/sessions/{session_id}/end", tags=["Sessions"])
async def end_session(
    session_id: str,
    request: EndSessionRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """
    Settle a session.

    If the split does not add up to the computed bill the response is 409 with
    the expected amount; resend with ``override_reason`` to settle anyway.
    """
    tender = None
    if not request.pay_in_full:
        tender = Tender(
            cash_amount=request.cash_amount,
            card_amount=request.card_amount,
            online_amount=request.online_amount,
        )

    try:
        result = state.settlement.end_session(
            session_id,
            tender=tender,
            ended_at=request.ended_at,
            override_reason=request.override_reason,
            notes=request.notes,
        )
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PaymentSplitError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SettlementMismatchError as e:
        raise HTTPException(
            status_code=409,
            detail={
                "error": "SETTLEMENT_MISMATCH",
                "message": str(e),
                "expected_amount": e.expected,
                "tendered_amount": e.tendered,
            },
        )

    return result.to_dict()


@app.post("/sessions/{session_id}/cancel", tags=["Sessions"])
async def cancel_session(
    session_id: str,
    request: Optional[CancelSessionRequest] = None,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Cancel an active session. Cancelled sessions are never billed."""
    try:
        session = state.settlement.cancel_session(
            session_id,
            reason=request.reason if request else None,
        )
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return session.to_dict()


@app.post("/promotions", tags=["Promotions"])
async def create_promotion(
    request: PromotionRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    try:
        promo = state.promotions.create(
            name=request.name,
            first_hour_price=request.first_hour_price,
            extra_hour_price=request.extra_hour_price,
            is_active=request.is_active,
            start_date=request.start_date,
            end_date=request.end_date,
        )
    except PromotionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return promo.to_dict()


@app.get("/promotions", tags=["Promotions"])
async def list_promotions(
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """All promotions plus the one a session starting now would get."""
    applicable = state.promotions.applicable()
    return {
        "promotions": [p.to_dict() for p in state.promotions.list()],
        "applicable_promo_id": applicable.promo_id if applicable else None,
    }


@app.patch("/promotions/{promo_id}", tags=["Promotions"])
async def update_promotion(
    promo_id: str,
    request: PromotionUpdateRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    changes: Dict[str, Any] = request.model_dump(exclude_unset=True)
    try:
        promo = state.promotions.update(promo_id, **changes)
    except PromotionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PromotionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return promo.to_dict()


@app.delete("/promotions/{promo_id}", tags=["Promotions"])
async def delete_promotion(
    promo_id: str,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    try:
        state.promotions.delete(promo_id)
    except PromotionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"deleted": promo_id}


@app.get("/payments", tags=["Payments"])
async def list_payments(
    limit: int = Query(default=100, le=1000),
    status: Optional[PaymentStatus] = None,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    payments = state.payment_repo.list_recent(limit, status)
    return {
        "total": len(payments),
        "payments": [p.to_dict() for p in payments],
    }


@app.patch("/payments/{payment_id}", tags=["Payments"])
async def update_payment(
    payment_id: str,
    request: PaymentUpdateRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Mark a payment pending, completed or failed."""
    try:
        payment = state.settlement.update_payment_status(payment_id, request.status, request.notes)
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return payment.to_dict()


@app.get("/payments/stats", tags=["Payments"])
async def get_payment_stats(
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    payments = state.payment_repo.list_all()
    return {
        "summary": payment_stats(payments),
        "methods": method_breakdown(payments),
        "currency": state.config.currency,
    }


@app.get("/revenue", tags=["Analytics"])
async def get_revenue(
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Revenue totals over sessions started in ``[since, until)``. Cancelled sessions add nothing."""
    sessions = state.settlement.list_sessions()
    summary = summarize(
        sessions,
        since=parse_timestamp(since) if since else None,
        until=parse_timestamp(until) if until else None,
    )
    data = summary.to_dict()
    data["currency"] = state.config.currency
    return data


@app.get("/activity", tags=["Audit"])
async def get_activity(
    limit: int = Query(default=100, le=1000),
    type: Optional[str] = None,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    activity_type = None
    if type is not None:
        try:
            activity_type = ActivityType(type)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid activity type: {type}")

    entries: List = state.activity_repo.list_recent(limit, activity_type)
    return {
        "total": len(entries),
        "entries": [e.to_dict() for e in entries],
    }


# ============================================================================
# Run
# ============================================================================

def run():
    """Run the server."""
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(
        "jumanji_ledger.api.server:app",
        host="0.0.0.0",
        port=port,
        reload=os.environ.get("DEBUG", "false").lower() == "true",
    )


if __name__ == "__main__":
    run()
