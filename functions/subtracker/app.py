"""
FastAPI application entry point for the subscription tracker.

Serve with ``uvicorn --factory subtracker.app:create_app``.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from subtracker.config import Settings, get_settings
from subtracker.db import DbClient
from subtracker.dependencies import build_db_client, build_push_sender
from subtracker.errors import NotFoundError, StorageError, ValidationError
from subtracker.notifications import NotificationDispatcher
from subtracker.push import PushSender
from subtracker.routes import router

logger = logging.getLogger(__name__)


def _describe_validation_error(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return "; ".join(parts) or "Invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400, content={"error": _describe_validation_error(exc)}
        )

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        # Unknown paths and known paths with the wrong method both read as 404.
        if exc.status_code in (404, 405):
            return JSONResponse(status_code=404, content={"error": "Not found"})
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.detail}
        )

    @app.exception_handler(StorageError)
    async def _storage_error(request: Request, exc: StorageError):
        logger.error(
            "Storage failure on %s %s",
            request.method,
            request.url.path,
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"error": "Server error"})

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.error(
            "Unhandled error on %s %s",
            request.method,
            request.url.path,
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"error": "Server error"})


def create_app(
    settings: Optional[Settings] = None,
    *,
    db: Optional[DbClient] = None,
    push_sender: Optional[PushSender] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title="Subscription Tracker", version="0.1.0")
    app.state.settings = settings
    app.state.db = db if db is not None else build_db_client(settings)
    app.state.push_sender = (
        push_sender if push_sender is not None else build_push_sender(settings)
    )
    app.state.dispatcher = NotificationDispatcher(
        app.state.db,
        app.state.push_sender,
        max_workers=settings.push_max_workers,
    )
    logger.info(
        "Storage: %s, push: %s",
        app.state.db.__class__.__name__,
        app.state.push_sender.__class__.__name__,
    )

    app.include_router(router, prefix=settings.api_prefix)
    register_exception_handlers(app)
    return app
