"""
Live Session Ticker

Re-quotes every active session once per tick. The ticker owns the schedule,
the engine stays a pure function: each tick is a complete, independent call
with one fresh ``now`` shared by all sessions.
"""

import asyncio
from typing import Callable, Dict, Iterable, Optional
import structlog

from ..core.clock import SystemClock
from ..core.pricing import DEFAULT_CURRENCY, ChargeQuote, quote_session
from ..core.session import Session

logger = structlog.get_logger()

QuoteCallback = Callable[[Session, ChargeQuote], None]


class SessionTicker:
    """
    Periodic re-evaluation of running bills.

    ``source`` is called on every tick, so sessions ended or cancelled in the
    meantime simply drop out.
    """

    def __init__(
        self,
        source: Callable[[], Iterable[Session]],
        callback: Optional[QuoteCallback] = None,
        clock=None,
        currency: str = DEFAULT_CURRENCY,
    ):
        self.source = source
        self.callback = callback
        self.clock = clock or SystemClock()
        self.currency = currency
        self.ticks = 0

    def tick(self) -> Dict[str, ChargeQuote]:
        """Quote all active sessions at the same instant."""
        now = self.clock.now()
        quotes: Dict[str, ChargeQuote] = {}

        for session in self.source():
            if not session.is_active:
                continue
            result = quote_session(session, now, self.currency)
            quotes[session.session_id] = result

            if self.callback is not None:
                try:
                    self.callback(session, result)
                except Exception as e:
                    logger.error("ticker_callback_error", session_id=session.session_id, error=str(e))

        self.ticks += 1
        return quotes

    async def run(
        self,
        stop_event: asyncio.Event,
        interval: float = 1.0,
        max_ticks: Optional[int] = None,
    ) -> int:
        """Tick every ``interval`` seconds until stopped. Returns ticks run."""
        logger.info("ticker_started", interval=interval)
        count = 0

        while not stop_event.is_set():
            self.tick()
            count += 1
            if max_ticks is not None and count >= max_ticks:
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("ticker_stopped", ticks=count)
        return count
