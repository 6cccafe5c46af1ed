"""
Pydantic schemas for the subscription tracker API.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_serializer

from subtracker.db import SubscriptionRecord, SubscriptionStatus
from subtracker.due import DueEvaluation, DueState


class SubscriptionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    cost: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    dueDate: Optional[date] = None
    status: SubscriptionStatus = SubscriptionStatus.DUE


class SubscriptionUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    cost: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )
    dueDate: Optional[date] = None
    status: Optional[SubscriptionStatus] = None


class SubscriptionResponse(BaseModel):
    id: str
    name: str
    cost: Decimal
    dueDate: Optional[date] = None
    status: SubscriptionStatus
    createdAt: datetime
    lastNotifiedOn: Optional[date] = None

    @field_serializer("cost")
    def _serialize_cost(self, cost: Decimal) -> float:
        return float(cost)

    @classmethod
    def from_record(cls, record: SubscriptionRecord) -> "SubscriptionResponse":
        return cls(**record.as_dict())


class DueSubscriptionResponse(SubscriptionResponse):
    dueState: DueState
    diffDays: int

    @classmethod
    def from_evaluation(cls, evaluation: DueEvaluation) -> "DueSubscriptionResponse":
        return cls(
            **evaluation.subscription.as_dict(),
            dueState=evaluation.state,
            diffDays=evaluation.diff_days,
        )


class PushSubscriptionKeys(BaseModel):
    """Encryption keys for push subscription."""

    p256dh: str
    auth: str


class PushSubscribeRequest(BaseModel):
    """Browser PushSubscription as serialized by ``subscription.toJSON()``."""

    endpoint: str = Field(..., min_length=1)
    keys: PushSubscriptionKeys
    expirationTime: Optional[int] = None


class UnsubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    message: str


class VapidPublicKeyResponse(BaseModel):
    publicKey: str


class HealthResponse(BaseModel):
    status: Literal["ok"]
