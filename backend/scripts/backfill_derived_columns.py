"""
Fill the derived columns (org, user name, tool, company, error message) of
events stored before those columns existed.

Run on production:
    python -m scripts.backfill_derived_columns

Safe to run repeatedly, rows that already carry any derived value are skipped.
"""

import argparse

from loguru import logger

from telemetry_server.setup import run as setup


def backfill(batch_size: int) -> None:
    from telemetry_server.app.events.service import EventService
    from telemetry_server.network.database import db

    with db(commit_on_success=True):
        result = EventService.backfill_derived_columns(batch_size=batch_size)

    logger.info(f'Backfill complete: {result.scanned} rows scanned, {result.updated} updated')


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument('--batch-size', type=int, default=500)
    args = parser.parse_args()

    setup()
    backfill(args.batch_size)
