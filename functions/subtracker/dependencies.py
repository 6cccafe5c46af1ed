"""
Dependency wiring for the FastAPI app.

Clients are built once by ``create_app`` and kept on ``app.state``; the
request-scoped providers below only hand them out.
"""

from __future__ import annotations

from datetime import date

from fastapi import Depends, Request

from subtracker.config import Settings
from subtracker.db import DbClient, InMemoryDbClient, PostgresDbClient
from subtracker.due import today_in
from subtracker.notifications import NotificationDispatcher
from subtracker.push import PushSender, RecordingPushSender, WebPushSender


def build_db_client(settings: Settings) -> DbClient:
    if settings.use_in_memory_backends or not settings.database_url:
        return InMemoryDbClient()
    return PostgresDbClient(settings.database_url)


def build_push_sender(settings: Settings) -> PushSender:
    if settings.use_in_memory_backends:
        return RecordingPushSender()
    return WebPushSender(
        vapid_private_key=settings.vapid_private_key,
        vapid_contact_email=settings.vapid_contact_email,
        ttl_seconds=settings.push_ttl_seconds,
        timeout_seconds=settings.push_timeout_seconds,
    )


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db_client(request: Request) -> DbClient:
    return request.app.state.db


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


def get_today(settings: Settings = Depends(get_app_settings)) -> date:
    """Current date in the configured timezone; overridden in tests."""
    return today_in(settings.timezone)
