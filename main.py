"""
Recurring Events — Entry Point.

`python main.py` starts the periodic reconciler.
`python main.py --once` runs a single reconciliation pass and exits.
"""

import argparse
import asyncio
import logging

from src.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from src.core.reconciler import Reconciler
from src.core.scheduler import process_recurring_events, start_scheduler, stop_scheduler
from src.data.db import EventDB, TemplateDB

logger = logging.getLogger(__name__)


def _build_reconciler() -> Reconciler:
    return Reconciler(TemplateDB(), EventDB())


async def _run_forever() -> None:
    start_scheduler(_build_reconciler())
    try:
        await asyncio.Event().wait()
    finally:
        stop_scheduler()


def main() -> None:
    parser = argparse.ArgumentParser(description="Expand recurring event templates.")
    parser.add_argument(
        "--once", action="store_true", help="run one reconciliation pass and exit",
    )
    args = parser.parse_args()

    if args.once:
        report = asyncio.run(process_recurring_events(_build_reconciler()))
        raise SystemExit(1 if report.failures else 0)

    logger.info("Starting recurring events scheduler...")
    try:
        asyncio.run(_run_forever())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
