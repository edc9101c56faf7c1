"""
Jumanji Ledger CLI

Commands:
  serve  - Run the billing API server
  quote  - Print the bill for a start time and party size
  watch  - Print live bills for active sessions once per second
"""

import argparse
import asyncio
import os
import sys

from .config import BillingConfig
from .core.pricing import PriceSchedule, parse_timestamp, quote


def cmd_serve(args):
    """Run the billing API server."""
    import uvicorn

    port = args.port or int(os.environ.get("PORT", 8000))
    host = args.host or "0.0.0.0"

    print(f"Starting Jumanji Ledger on {host}:{port}")

    uvicorn.run(
        "jumanji_ledger.api.server:app",
        host=host,
        port=port,
        reload=args.reload,
        workers=args.workers,
    )


def _print_quote(result, prefix=""):
    print(f"{prefix}{result.breakdown_text}")
    print(f"{prefix}  Current cost: {result.current_cost} {result.currency}")
    print(f"{prefix}  Hours: {result.hours_billable}")
    print(f"{prefix}  {result.next_charge_text}")
    print(f"{prefix}  Progress: {result.progress_percent}%")


def cmd_quote(args):
    """Quote a single session from flags."""
    config = BillingConfig.from_env()

    start = parse_timestamp(args.start)
    if start is None:
        print(f"Error: invalid --start timestamp: {args.start}")
        sys.exit(1)

    if args.at:
        at = parse_timestamp(args.at)
        if at is None:
            print(f"Error: invalid --at timestamp: {args.at}")
            sys.exit(1)
    else:
        from .core.clock import SystemClock
        at = SystemClock().now()

    schedule = PriceSchedule(
        first_hour_price=config.default_first_hour_price if args.first_hour_price is None else args.first_hour_price,
        extra_hour_price=config.default_extra_hour_price if args.extra_hour_price is None else args.extra_hour_price,
        currency=config.currency,
    )
    _print_quote(quote(start, at, args.capacity, schedule))


def cmd_watch(args):
    """Re-quote every active session once per interval."""
    from .billing.ticker import SessionTicker
    from .persistence.database import get_database
    from .persistence.repository import SessionRepository

    config = BillingConfig.from_env()
    sessions = SessionRepository(get_database(args.database))

    def show(session, result):
        label = f"Table {session.table_number}" if session.table_number is not None else session.session_id
        _print_quote(result, prefix=f"[{label}] ")

    ticker = SessionTicker(sessions.list_active, callback=show, currency=config.currency)

    async def _run():
        stop = asyncio.Event()
        return await ticker.run(stop, interval=args.interval, max_ticks=args.ticks)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        print("Stopped")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Jumanji Ledger - Board-game café session billing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true")
    serve_parser.add_argument("--workers", type=int, default=1)

    # quote
    quote_parser = subparsers.add_parser("quote", help="Quote a session")
    quote_parser.add_argument("--start", required=True, help="Session start (ISO-8601)")
    quote_parser.add_argument("--at", help="Quote time (ISO-8601), defaults to now")
    quote_parser.add_argument("--capacity", type=int, default=1, help="People in the party")
    quote_parser.add_argument("--first-hour-price", type=float, help="Per-person first hour price")
    quote_parser.add_argument("--extra-hour-price", type=float, help="Per-person extra hour price")

    # watch
    watch_parser = subparsers.add_parser("watch", help="Watch live bills")
    watch_parser.add_argument("--database", help="Database URL, defaults to DATABASE_URL")
    watch_parser.add_argument("--interval", type=float, default=1.0, help="Seconds between ticks")
    watch_parser.add_argument("--ticks", type=int, help="Stop after this many ticks")

    args = parser.parse_args(argv)

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "quote":
        cmd_quote(args)
    elif args.command == "watch":
        cmd_watch(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
