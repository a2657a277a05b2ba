"""CLI tool for admin operations.

Usage:
    python -m signal_trader.cli parse "LONG BTC 45000 SL:44000 TP:47000"
    python -m signal_trader.cli retry-job <hash>
"""

import asyncio
import json
import sys

from signal_trader.database import create_db_and_tables, engine
from signal_trader.engine.queue import QueueOptions, SignalQueue
from signal_trader.engine.router import route_signal
from signal_trader.services.text_parser import TextSignalParser
from signal_trader.utils.logging import setup_logging


def parse(text: str):
    """Dry-run the text parser and router; nothing is stored."""
    parsed = TextSignalParser().parse(text)
    if parsed is None:
        print("No signal recognized.")
        sys.exit(1)

    route = route_signal(parsed)
    print(json.dumps({
        "parsed": parsed.to_dict(),
        "route": {
            "exchange": str(route.exchange),
            "market": str(route.market),
            "symbol": route.symbol,
            "confidence": route.confidence,
        },
    }, indent=2))


def retry_job(job_id: str):
    """Move a parked failed job back to waiting."""
    create_db_and_tables()
    queue = SignalQueue(engine, options=QueueOptions())
    if asyncio.run(queue.retry_job(job_id)):
        print(f"Job {job_id} re-queued.")
    else:
        print(f"Job {job_id} not found or not failed.")
        sys.exit(1)


def main():
    if len(sys.argv) < 3:
        print("Usage: python -m signal_trader.cli <command> <arg>")
        print("Commands: parse <text>, retry-job <hash>")
        sys.exit(1)

    setup_logging()
    command = sys.argv[1]
    if command == "parse":
        parse(" ".join(sys.argv[2:]))
    elif command == "retry-job":
        retry_job(sys.argv[2])
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
