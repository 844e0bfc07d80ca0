"""Run a single reconciliation pass against the configured database.

Usage:
    python scripts/reconcile_once.py [--batch-size N] [--min-age-minutes M]

Useful for backfills after an outage and for cron-driven deployments that
run with RECONCILER_ENABLED=false.
"""

import argparse
import asyncio
from datetime import timedelta

from payflow.core.config import get_settings
from payflow.core.logging import configure_structlog
from payflow.db import close_db, init_db
from payflow.services import Reconciler, build_payment_service
from payflow.services.notifications import drain_notifications


async def main(batch_size: int | None, min_age_minutes: int | None) -> int:
    settings = get_settings()
    await init_db(create_tables=False)
    try:
        reconciler = Reconciler(
            build_payment_service(),
            batch_size=batch_size or settings.reconciler_batch_size,
            min_age=timedelta(
                minutes=min_age_minutes if min_age_minutes is not None else settings.reconciler_min_age_minutes
            ),
        )
        report = await reconciler.run_once()
        await drain_notifications()
    finally:
        await close_db()

    print(
        f"selected={report.selected} applied={report.applied} "
        f"unchanged={report.unchanged} failed={report.failed}"
    )
    return 1 if report.failed else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--min-age-minutes", type=int, default=None)
    args = parser.parse_args()

    configure_structlog(log_level="INFO", json_logs=False)
    raise SystemExit(asyncio.run(main(args.batch_size, args.min_age_minutes)))
