"""
Tests for the Live Session Ticker
"""

import asyncio
from datetime import timedelta

from jumanji_ledger.billing.ticker import SessionTicker
from jumanji_ledger.core.session import Session


def make_session(session_id, start, capacity=1):
    return Session(session_id=session_id, customer_id="CUST-1", start_time=start, capacity=capacity)


class TestSessionTicker:
    """Each tick quotes every active session at one shared instant."""

    def test_tick_quotes_active_sessions(self, clock):
        running = make_session("SES-a", clock.now() - timedelta(minutes=45), capacity=2)
        done = make_session("SES-b", clock.now() - timedelta(minutes=200))
        done.complete(clock.now(), 90.0, 3.3)

        ticker = SessionTicker(lambda: [running, done], clock=clock)
        quotes = ticker.tick()

        assert list(quotes) == ["SES-a"]
        assert quotes["SES-a"].current_cost == 60.0
        assert ticker.ticks == 1

    def test_bill_moves_with_the_clock(self, clock):
        session = make_session("SES-a", clock.now())
        ticker = SessionTicker(lambda: [session], clock=clock)

        assert ticker.tick()["SES-a"].current_cost == 0.0
        clock.advance(minutes=30)
        assert ticker.tick()["SES-a"].current_cost == 30.0
        clock.advance(minutes=60)
        assert ticker.tick()["SES-a"].current_cost == 60.0

    def test_callback_errors_do_not_stop_the_tick(self, clock):
        sessions = [make_session("SES-a", clock.now()), make_session("SES-b", clock.now())]
        seen = []

        def callback(session, result):
            seen.append(session.session_id)
            raise RuntimeError("display gone")

        quotes = SessionTicker(lambda: sessions, callback=callback, clock=clock).tick()

        assert seen == ["SES-a", "SES-b"]
        assert len(quotes) == 2

    def test_run_stops_after_max_ticks(self, clock):
        session = make_session("SES-a", clock.now())
        ticker = SessionTicker(lambda: [session], clock=clock)

        async def go():
            return await ticker.run(asyncio.Event(), interval=0.01, max_ticks=3)

        assert asyncio.run(go()) == 3
        assert ticker.ticks == 3

    def test_run_stops_on_event(self, clock):
        ticker = SessionTicker(lambda: [], clock=clock)

        async def go():
            stop = asyncio.Event()
            task = asyncio.create_task(ticker.run(stop, interval=0.01))
            await asyncio.sleep(0.05)
            stop.set()
            return await task

        assert asyncio.run(go()) >= 1
