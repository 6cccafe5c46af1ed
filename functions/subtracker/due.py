"""
Due-date evaluation for subscriptions that are still unpaid.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from subtracker.db import DbClient, SubscriptionRecord, SubscriptionStatus
from subtracker.notifications import (
    NotificationDispatcher,
    NotificationMessage,
    format_zar,
)

logger = logging.getLogger(__name__)

DEFAULT_DUE_SOON_DAYS = 7


class DueState(str, Enum):
    OVERDUE = "Overdue"
    DUE_SOON = "DueSoon"
    NOT_YET_DUE = "NotYetDue"


@dataclass(frozen=True)
class DueEvaluation:
    subscription: SubscriptionRecord
    state: DueState
    diff_days: int

    @property
    def qualifies(self) -> bool:
        return self.state is not DueState.NOT_YET_DUE

    def message(self) -> NotificationMessage:
        sub = self.subscription
        cost = format_zar(sub.cost)
        if self.state is DueState.OVERDUE:
            return NotificationMessage(
                title="Subscription Overdue ⚠️",
                body=(
                    f"Your {sub.name} subscription for {cost} is "
                    f"{abs(self.diff_days)} days overdue. ⚠️"
                ),
            )
        return NotificationMessage(
            title="Subscription Due Soon ⏰",
            body=(
                f"Your {sub.name} subscription for {cost} is due in "
                f"{self.diff_days} days. ⏰"
            ),
        )


def today_in(tz_name: str) -> date:
    """Return the current calendar date in the named timezone."""
    return datetime.now(ZoneInfo(tz_name)).date()


def days_until(due_date: date, today: date) -> int:
    # Both sides are whole days at midnight, so the ceiling of the
    # difference is the plain day count.
    return (due_date - today).days


def classify(diff_days: int, due_soon_days: int = DEFAULT_DUE_SOON_DAYS) -> DueState:
    if diff_days < 0:
        return DueState.OVERDUE
    if diff_days <= due_soon_days:
        return DueState.DUE_SOON
    return DueState.NOT_YET_DUE


def evaluate(
    subscription: SubscriptionRecord,
    today: date,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> Optional[DueEvaluation]:
    """
    Classify one subscription against ``today``.

    Returns None for subscriptions that are never evaluated: paid ones and
    ones without a due date.
    """
    if subscription.status != SubscriptionStatus.DUE:
        return None
    if subscription.due_date is None:
        return None
    diff = days_until(subscription.due_date, today)
    return DueEvaluation(
        subscription=subscription,
        state=classify(diff, due_soon_days),
        diff_days=diff,
    )


def find_due(
    subscriptions: list[SubscriptionRecord],
    today: date,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> list[DueEvaluation]:
    """Return evaluations for every subscription that is overdue or due soon."""
    results = []
    for sub in subscriptions:
        evaluation = evaluate(sub, today, due_soon_days)
        if evaluation and evaluation.qualifies:
            results.append(evaluation)
    return results


def run_due_check(
    db: DbClient,
    dispatcher: NotificationDispatcher,
    today: date,
    *,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
    dedupe: bool = True,
) -> list[DueEvaluation]:
    """
    Notify about every overdue or due-soon subscription.

    With ``dedupe`` set, a subscription already notified today is still
    returned but not notified again. A subscription is stamped with
    ``last_notified_on = today`` only once a delivery succeeded, so a
    browser registered later the same day still gets the message.
    """
    subscriptions = db.list_subscriptions()
    evaluations = find_due(subscriptions, today, due_soon_days)
    for evaluation in evaluations:
        sub = evaluation.subscription
        if dedupe and sub.last_notified_on == today:
            logger.debug("Already notified %s today; skipping", sub.id)
            continue
        report = dispatcher.notify(evaluation.message())
        if dedupe and report.delivered > 0:
            db.update_subscription(sub.id, {"last_notified_on": today})
    logger.info(
        "Due check for %s: %d of %d subscriptions qualify",
        today.isoformat(),
        len(evaluations),
        len(subscriptions),
    )
    return evaluations
