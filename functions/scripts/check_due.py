"""
Run the due-date check once and notify registered browsers.

Intended for cron: it uses the same settings, store and push sender as the
API, so it can replace polling ``GET /api/check-due``.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from subtracker.config import get_settings
from subtracker.dependencies import build_db_client, build_push_sender
from subtracker.due import run_due_check, today_in
from subtracker.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Notify about due subscriptions")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Evaluate as of this date (YYYY-MM-DD) instead of today",
    )
    parser.add_argument(
        "--no-dedupe",
        action="store_true",
        help="Notify even if a subscription was already notified today",
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    db = build_db_client(settings)
    sender = build_push_sender(settings)
    if not sender.enabled:
        logger.warning("Push is not configured; due subscriptions will only be listed")
    dispatcher = NotificationDispatcher(db, sender, max_workers=settings.push_max_workers)

    today = args.date or today_in(settings.timezone)
    evaluations = run_due_check(
        db,
        dispatcher,
        today,
        due_soon_days=settings.due_soon_days,
        dedupe=settings.due_check_dedupe and not args.no_dedupe,
    )
    for evaluation in evaluations:
        sub = evaluation.subscription
        logger.info(
            "%s: %s (%+d days)", sub.name, evaluation.state.value, evaluation.diff_days
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
