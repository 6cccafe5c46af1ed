"""
Fan-out of notification messages to every registered push endpoint.

Each registration gets exactly one delivery attempt per message. Attempts
run concurrently on a bounded thread pool and the dispatcher waits for all
of them before returning. Endpoints the push service reports as gone are
removed from the registration store; any other failure is logged and
dropped.
"""

from __future__ import annotations

import concurrent.futures
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from subtracker.db import DbClient, PushRegistrationRecord, SubscriptionRecord
from subtracker.errors import DeliveryError, PermanentDeliveryError
from subtracker.push import PushSender

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationMessage:
    title: str
    body: str

    def to_payload(self) -> str:
        """Encode as the JSON object the service worker displays."""
        return json.dumps({"title": self.title, "body": self.body})


@dataclass
class DispatchReport:
    attempted: int = 0
    delivered: int = 0
    pruned: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class NotificationDispatcher:
    """Delivers messages to all push registrations held in ``db``."""

    def __init__(self, db: DbClient, sender: PushSender, max_workers: int = 8):
        self.db = db
        self.sender = sender
        self.max_workers = max(1, max_workers)

    def notify(self, message: NotificationMessage) -> DispatchReport:
        """Read the current registrations and dispatch ``message`` to them."""
        return self.dispatch(message, self.db.list_push_registrations())

    def dispatch(
        self,
        message: NotificationMessage,
        registrations: list[PushRegistrationRecord],
    ) -> DispatchReport:
        if not self.sender.enabled:
            logger.debug(
                "Push notifications disabled - VAPID private key or contact email not configured"
            )
            return DispatchReport()
        report = DispatchReport(attempted=len(registrations))
        if not registrations:
            return report

        payload = message.to_payload()
        workers = min(self.max_workers, len(registrations))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="push"
        ) as executor:
            futures = {
                executor.submit(self._deliver, registration, payload): registration
                for registration in registrations
            }
            for future in concurrent.futures.as_completed(futures):
                endpoint = futures[future].endpoint
                outcome = future.result()
                if outcome == "delivered":
                    report.delivered += 1
                elif outcome == "gone":
                    report.pruned.append(endpoint)
                else:
                    report.failed.append(endpoint)

        # Prune once every attempt has settled, one delete at a time.
        for endpoint in report.pruned:
            self.db.delete_push_registration(endpoint)

        logger.info(
            "Dispatched %r: %d attempted, %d delivered, %d pruned, %d failed",
            message.title,
            report.attempted,
            report.delivered,
            len(report.pruned),
            len(report.failed),
        )
        return report

    def _deliver(self, registration: PushRegistrationRecord, payload: str) -> str:
        endpoint = registration.endpoint
        try:
            self.sender.send(registration, payload)
        except PermanentDeliveryError as exc:
            logger.info(
                "Push subscription %s is stale (%s). Deleting.",
                endpoint,
                exc.status_code,
            )
            return "gone"
        except DeliveryError as exc:
            logger.warning("Failed to send push notification to %s: %s", endpoint, exc)
            return "failed"
        except Exception:
            logger.error(
                "Unexpected error sending push notification to %s",
                endpoint,
                exc_info=True,
            )
            return "failed"
        logger.info("Sent push notification to %s", endpoint)
        return "delivered"


def format_zar(amount: Decimal | float | int) -> str:
    """Format an amount as South African Rand, e.g. ``R1,299.00``."""
    value = Decimal(str(amount))
    sign = "-" if value < 0 else ""
    return f"{sign}R{abs(value):,.2f}"


def added_message(sub: SubscriptionRecord) -> NotificationMessage:
    return NotificationMessage(
        title="Subscription Added 🆕",
        body=f"Your {sub.name} subscription for {format_zar(sub.cost)} has been added.",
    )


def updated_message(
    previous: SubscriptionRecord, current: SubscriptionRecord
) -> NotificationMessage:
    if current.cost > previous.cost:
        return NotificationMessage(
            title="Subscription Cost Updated 📈",
            body=(
                f"Your {current.name} subscription has increased to "
                f"{format_zar(current.cost)}. 📈"
            ),
        )
    return NotificationMessage(
        title="Subscription Updated ✏️",
        body=f"Your {current.name} subscription has been updated.",
    )


def paid_message(sub: SubscriptionRecord) -> NotificationMessage:
    return NotificationMessage(
        title="Subscription Paid ✅",
        body=f"Your {sub.name} subscription for {format_zar(sub.cost)} has been paid! ✅",
    )


def marked_due_message(sub: SubscriptionRecord) -> NotificationMessage:
    return NotificationMessage(
        title="Subscription Marked Due 🔁",
        body=(
            f"Your {sub.name} subscription for {format_zar(sub.cost)} "
            "is marked as due again."
        ),
    )


def deleted_message(sub: SubscriptionRecord) -> NotificationMessage:
    return NotificationMessage(
        title="Subscription Deleted 🗑️",
        body=(
            f"Your {sub.name} subscription for {format_zar(sub.cost)} "
            "has been deleted. 🗑️"
        ),
    )
