"""
HTTP routes for the subscription tracker API.

Every mutation is written to the store before any notification goes out;
delivery outcome never changes the response.
"""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends

from subtracker.config import Settings
from subtracker.db import DbClient, SubscriptionRecord, SubscriptionStatus
from subtracker.dependencies import (
    get_app_settings,
    get_db_client,
    get_dispatcher,
    get_today,
)
from subtracker.due import run_due_check
from subtracker.errors import NotFoundError, ValidationError
from subtracker.notifications import (
    NotificationDispatcher,
    added_message,
    deleted_message,
    marked_due_message,
    paid_message,
    updated_message,
)
from subtracker.schemas import (
    DueSubscriptionResponse,
    HealthResponse,
    MessageResponse,
    PushSubscribeRequest,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionUpdate,
    UnsubscribeRequest,
    VapidPublicKeyResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Request field name -> record attribute.
_UPDATE_FIELD_MAP = {
    "name": "name",
    "cost": "cost",
    "dueDate": "due_date",
    "status": "status",
}
_NON_NULLABLE = {"name", "cost", "status"}


def _clean_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise ValidationError("name must not be blank")
    return name


def _require_subscription(db: DbClient, subscription_id: str) -> SubscriptionRecord:
    record = db.get_subscription(subscription_id)
    if not record:
        raise NotFoundError("Subscription not found")
    return record


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok")


@router.get("/subscriptions", response_model=list[SubscriptionResponse])
def list_subscriptions(db: DbClient = Depends(get_db_client)):
    return [SubscriptionResponse.from_record(r) for r in db.list_subscriptions()]


@router.post("/subscriptions", response_model=SubscriptionResponse, status_code=201)
def create_subscription(
    payload: SubscriptionCreate,
    db: DbClient = Depends(get_db_client),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    record = db.insert_subscription(
        name=_clean_name(payload.name),
        cost=payload.cost,
        due_date=payload.dueDate,
        status=payload.status,
    )
    logger.info("Created subscription %s (%s)", record.id, record.name)
    dispatcher.notify(added_message(record))
    return SubscriptionResponse.from_record(record)


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(subscription_id: str, db: DbClient = Depends(get_db_client)):
    return SubscriptionResponse.from_record(_require_subscription(db, subscription_id))


@router.put("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def update_subscription(
    subscription_id: str,
    payload: SubscriptionUpdate,
    db: DbClient = Depends(get_db_client),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Merge the supplied fields into the stored record.

    Sends a cost-increase notification when the cost goes up and a generic
    update notification for any other change. No change, no notification.
    """
    existing = _require_subscription(db, subscription_id)

    changes = {}
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is None and key in _NON_NULLABLE:
            raise ValidationError(f"{key} must not be null")
        if key == "name":
            value = _clean_name(value)
        attr = _UPDATE_FIELD_MAP[key]
        if getattr(existing, attr) != value:
            changes[attr] = value

    if not changes:
        return SubscriptionResponse.from_record(existing)

    if "due_date" in changes or changes.get("status") == SubscriptionStatus.DUE:
        changes["last_notified_on"] = None

    updated = db.update_subscription(subscription_id, changes)
    if not updated:
        raise NotFoundError("Subscription not found")
    logger.info("Updated subscription %s: %s", subscription_id, sorted(changes))
    dispatcher.notify(updated_message(existing, updated))
    return SubscriptionResponse.from_record(updated)


@router.put(
    "/subscriptions/{subscription_id}/toggle", response_model=SubscriptionResponse
)
def toggle_subscription(
    subscription_id: str,
    db: DbClient = Depends(get_db_client),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    existing = _require_subscription(db, subscription_id)
    new_status = SubscriptionStatus(existing.status).toggled()
    changes = {"status": new_status}
    if new_status == SubscriptionStatus.DUE:
        changes["last_notified_on"] = None

    updated = db.update_subscription(subscription_id, changes)
    if not updated:
        raise NotFoundError("Subscription not found")
    logger.info("Toggled subscription %s to %s", subscription_id, new_status.value)
    if new_status == SubscriptionStatus.PAID:
        dispatcher.notify(paid_message(updated))
    else:
        dispatcher.notify(marked_due_message(updated))
    return SubscriptionResponse.from_record(updated)


@router.delete("/subscriptions/{subscription_id}", response_model=MessageResponse)
def delete_subscription(
    subscription_id: str,
    db: DbClient = Depends(get_db_client),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    # Read first: the notification needs the record's name and cost.
    existing = _require_subscription(db, subscription_id)
    if not db.delete_subscription(subscription_id):
        raise NotFoundError("Subscription not found")
    logger.info("Deleted subscription %s", subscription_id)
    dispatcher.notify(deleted_message(existing))
    return MessageResponse(message="Deleted")


@router.post("/subscribe", response_model=MessageResponse, status_code=201)
def subscribe(payload: PushSubscribeRequest, db: DbClient = Depends(get_db_client)):
    db.upsert_push_registration(
        payload.endpoint,
        payload.keys.model_dump(),
        expiration_time=payload.expirationTime,
    )
    logger.info("Registered push endpoint %s", payload.endpoint)
    return MessageResponse(message="Subscribed")


@router.delete("/subscribe", response_model=MessageResponse)
def unsubscribe(payload: UnsubscribeRequest, db: DbClient = Depends(get_db_client)):
    if not db.delete_push_registration(payload.endpoint):
        raise NotFoundError("Push subscription not found")
    logger.info("Removed push endpoint %s", payload.endpoint)
    return MessageResponse(message="Unsubscribed")


@router.get("/check-due", response_model=list[DueSubscriptionResponse])
def check_due(
    db: DbClient = Depends(get_db_client),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings),
    today: date = Depends(get_today),
):
    evaluations = run_due_check(
        db,
        dispatcher,
        today,
        due_soon_days=settings.due_soon_days,
        dedupe=settings.due_check_dedupe,
    )
    return [DueSubscriptionResponse.from_evaluation(e) for e in evaluations]


@router.get("/vapid-public-key", response_model=VapidPublicKeyResponse)
def vapid_public_key(settings: Settings = Depends(get_app_settings)):
    if not settings.vapid_public_key:
        raise NotFoundError("Push notifications are not configured")
    return VapidPublicKeyResponse(publicKey=settings.vapid_public_key)
