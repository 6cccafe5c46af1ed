"""
Push delivery abstraction.

Supports a recording fallback for tests/local runs and a pywebpush-backed
implementation that talks to browser push services using VAPID.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from pywebpush import WebPushException, webpush

from subtracker.db import PushRegistrationRecord
from subtracker.errors import PermanentDeliveryError, TransientDeliveryError

logger = logging.getLogger(__name__)

# Push services answer 404 or 410 once a subscription has expired or the
# user revoked permission.
GONE_STATUS_CODES = frozenset({404, 410})


class PushSender(Protocol):
    """Minimal interface for delivering one payload to one endpoint."""

    enabled: bool

    def send(self, registration: PushRegistrationRecord, payload: str) -> None:
        """Deliver ``payload`` or raise a ``DeliveryError`` subclass."""
        ...


def normalize_vapid_subject(contact: str) -> str:
    """Ensure the VAPID ``sub`` claim carries exactly one ``mailto:`` prefix."""
    if contact.lower().startswith("mailto:"):
        return contact
    return f"mailto:{contact}"


@dataclass
class RecordingPushSender:
    """Test double that records deliveries and fails on demand."""

    gone_endpoints: set[str] = field(default_factory=set)
    failing_endpoints: set[str] = field(default_factory=set)
    sent: list[tuple[str, str]] = field(default_factory=list)
    enabled: bool = True

    def send(self, registration: PushRegistrationRecord, payload: str) -> None:
        endpoint = registration.endpoint
        if endpoint in self.gone_endpoints:
            raise PermanentDeliveryError(endpoint, "Push subscription has expired", 410)
        if endpoint in self.failing_endpoints:
            raise TransientDeliveryError(endpoint, "Push service unavailable", 503)
        self.sent.append((endpoint, payload))

    def reset(self) -> None:
        self.sent.clear()


@dataclass
class WebPushSender:
    """Delivers messages through pywebpush, signing each request with VAPID."""

    vapid_private_key: Optional[str]
    vapid_contact_email: Optional[str]
    ttl_seconds: int = 86400
    timeout_seconds: float = 10.0

    def __post_init__(self):
        self.vapid_claims: dict[str, str | int] = {}
        if self.vapid_contact_email:
            self.vapid_claims = {
                "sub": normalize_vapid_subject(self.vapid_contact_email)
            }
        self.enabled = bool(self.vapid_private_key and self.vapid_contact_email)

    def send(self, registration: PushRegistrationRecord, payload: str) -> None:
        endpoint = registration.endpoint
        try:
            webpush(
                subscription_info=registration.subscription_info(),
                data=payload,
                vapid_private_key=self.vapid_private_key,
                # webpush fills in "aud" on the dict it is given, so each
                # endpoint needs its own copy.
                vapid_claims=dict(self.vapid_claims),
                ttl=self.ttl_seconds,
                timeout=self.timeout_seconds,
            )
        except WebPushException as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            if status_code in GONE_STATUS_CODES:
                raise PermanentDeliveryError(endpoint, str(exc), status_code) from exc
            raise TransientDeliveryError(endpoint, str(exc), status_code) from exc
