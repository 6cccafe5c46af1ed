"""
Database abstraction for Postgres and an in-memory test implementation.

Two collections are kept: subscription records keyed by an opaque id, and
push registrations keyed by their endpoint URL.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    Date,
    DateTime,
    Numeric,
    String,
    create_engine,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from subtracker.errors import StorageError


class SubscriptionStatus(str, Enum):
    DUE = "Due"
    PAID = "Paid"

    def toggled(self) -> "SubscriptionStatus":
        if self is SubscriptionStatus.DUE:
            return SubscriptionStatus.PAID
        return SubscriptionStatus.DUE


# Fields a partial update may touch. id and created_at are server-owned.
UPDATABLE_FIELDS = frozenset(
    {"name", "cost", "due_date", "status", "last_notified_on"}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DbClient(Protocol):
    """Interface for database access."""

    def list_subscriptions(self) -> list["SubscriptionRecord"]:
        ...

    def get_subscription(self, subscription_id: str) -> Optional["SubscriptionRecord"]:
        ...

    def insert_subscription(
        self,
        *,
        name: str,
        cost: Decimal,
        due_date: Optional[date] = None,
        status: SubscriptionStatus = SubscriptionStatus.DUE,
    ) -> "SubscriptionRecord":
        ...

    def update_subscription(
        self, subscription_id: str, fields: Dict[str, Any]
    ) -> Optional["SubscriptionRecord"]:
        ...

    def delete_subscription(self, subscription_id: str) -> bool:
        ...

    def list_push_registrations(self) -> list["PushRegistrationRecord"]:
        ...

    def upsert_push_registration(
        self,
        endpoint: str,
        keys: dict,
        expiration_time: Optional[int] = None,
    ) -> "PushRegistrationRecord":
        ...

    def delete_push_registration(self, endpoint: str) -> bool:
        ...


@dataclass
class SubscriptionRecord:
    id: str
    name: str
    cost: Decimal
    status: SubscriptionStatus = SubscriptionStatus.DUE
    due_date: Optional[date] = None
    created_at: datetime = field(default_factory=_utcnow)
    last_notified_on: Optional[date] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "cost": self.cost,
            "dueDate": self.due_date,
            "status": self.status.value,
            "createdAt": self.created_at,
            "lastNotifiedOn": self.last_notified_on,
        }


@dataclass
class PushRegistrationRecord:
    endpoint: str
    keys: dict = field(default_factory=dict)
    expiration_time: Optional[int] = None

    def subscription_info(self) -> dict:
        """Return the structure pywebpush expects for ``subscription_info``."""
        return {"endpoint": self.endpoint, "keys": dict(self.keys)}


def _sort_key(record: SubscriptionRecord) -> tuple:
    # Records without a due date sort last.
    return (
        record.due_date is None,
        record.due_date or date.max,
        record.created_at,
    )


def _check_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.subscriptions: Dict[str, SubscriptionRecord] = {}
        self.push_registrations: Dict[str, PushRegistrationRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.subscriptions.clear()
        self.push_registrations.clear()

    def list_subscriptions(self) -> list[SubscriptionRecord]:
        return sorted(self.subscriptions.values(), key=_sort_key)

    def get_subscription(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        return self.subscriptions.get(subscription_id)

    def insert_subscription(
        self,
        *,
        name: str,
        cost: Decimal,
        due_date: Optional[date] = None,
        status: SubscriptionStatus = SubscriptionStatus.DUE,
    ) -> SubscriptionRecord:
        record = SubscriptionRecord(
            id=uuid.uuid4().hex,
            name=name,
            cost=cost,
            status=status,
            due_date=due_date,
        )
        self.subscriptions[record.id] = record
        return record

    def update_subscription(
        self, subscription_id: str, fields: Dict[str, Any]
    ) -> Optional[SubscriptionRecord]:
        _check_fields(fields)
        record = self.subscriptions.get(subscription_id)
        if not record:
            return None
        updated = replace(record, **fields)
        self.subscriptions[subscription_id] = updated
        return updated

    def delete_subscription(self, subscription_id: str) -> bool:
        return self.subscriptions.pop(subscription_id, None) is not None

    def list_push_registrations(self) -> list[PushRegistrationRecord]:
        return list(self.push_registrations.values())

    def upsert_push_registration(
        self,
        endpoint: str,
        keys: dict,
        expiration_time: Optional[int] = None,
    ) -> PushRegistrationRecord:
        record = PushRegistrationRecord(
            endpoint=endpoint, keys=dict(keys), expiration_time=expiration_time
        )
        self.push_registrations[endpoint] = record
        return record

    def delete_push_registration(self, endpoint: str) -> bool:
        return self.push_registrations.pop(endpoint, None) is not None


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        try:
            self.engine = create_engine(
                database_url,
                future=True,
                pool_pre_ping=True,
                pool_recycle=1800,
            )
            self.Session = sessionmaker(
                bind=self.engine, class_=Session, expire_on_commit=False, future=True
            )
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not initialise database: {exc}") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

    def _to_subscription_record(self, row: "SubscriptionRow") -> SubscriptionRecord:
        return SubscriptionRecord(
            id=row.id,
            name=row.name,
            cost=Decimal(row.cost),
            status=SubscriptionStatus(row.status),
            due_date=row.due_date,
            created_at=row.created_at,
            last_notified_on=row.last_notified_on,
        )

    def _to_push_record(self, row: "PushRegistrationRow") -> PushRegistrationRecord:
        return PushRegistrationRecord(
            endpoint=row.endpoint,
            keys=dict(row.keys or {}),
            expiration_time=row.expiration_time,
        )

    def list_subscriptions(self) -> list[SubscriptionRecord]:
        with self._session() as session:
            stmt = select(SubscriptionRow).order_by(
                SubscriptionRow.due_date.is_(None),
                SubscriptionRow.due_date.asc(),
                SubscriptionRow.created_at.asc(),
            )
            rows = session.execute(stmt).scalars().all()
            return [self._to_subscription_record(row) for row in rows]

    def get_subscription(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        with self._session() as session:
            row = session.get(SubscriptionRow, subscription_id)
            if not row:
                return None
            return self._to_subscription_record(row)

    def insert_subscription(
        self,
        *,
        name: str,
        cost: Decimal,
        due_date: Optional[date] = None,
        status: SubscriptionStatus = SubscriptionStatus.DUE,
    ) -> SubscriptionRecord:
        with self._session() as session:
            row = SubscriptionRow(
                id=uuid.uuid4().hex,
                name=name,
                cost=cost,
                due_date=due_date,
                status=status.value,
                created_at=_utcnow(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_subscription_record(row)

    def update_subscription(
        self, subscription_id: str, fields: Dict[str, Any]
    ) -> Optional[SubscriptionRecord]:
        _check_fields(fields)
        with self._session() as session:
            row = session.get(SubscriptionRow, subscription_id)
            if not row:
                return None
            for key, value in fields.items():
                if key == "status":
                    value = SubscriptionStatus(value).value
                setattr(row, key, value)
            session.commit()
            session.refresh(row)
            return self._to_subscription_record(row)

    def delete_subscription(self, subscription_id: str) -> bool:
        with self._session() as session:
            row = session.get(SubscriptionRow, subscription_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def list_push_registrations(self) -> list[PushRegistrationRecord]:
        with self._session() as session:
            rows = session.execute(select(PushRegistrationRow)).scalars().all()
            return [self._to_push_record(row) for row in rows]

    def upsert_push_registration(
        self,
        endpoint: str,
        keys: dict,
        expiration_time: Optional[int] = None,
    ) -> PushRegistrationRecord:
        now = _utcnow()
        with self._session() as session:
            row = session.get(PushRegistrationRow, endpoint)
            if row:
                row.keys = dict(keys)
                row.expiration_time = expiration_time
                row.updated_at = now
            else:
                row = PushRegistrationRow(
                    endpoint=endpoint,
                    keys=dict(keys),
                    expiration_time=expiration_time,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_push_record(row)

    def delete_push_registration(self, endpoint: str) -> bool:
        with self._session() as session:
            row = session.get(PushRegistrationRow, endpoint)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True


Base = declarative_base()


class SubscriptionRow(Base):
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    cost = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=True, index=True)
    status = Column(String, nullable=False, default=SubscriptionStatus.DUE.value)
    created_at = Column(DateTime(timezone=True), nullable=False)
    last_notified_on = Column(Date, nullable=True)


class PushRegistrationRow(Base):
    __tablename__ = "push_subscriptions"

    endpoint = Column(String, primary_key=True)
    keys = Column(JSON, nullable=False)
    expiration_time = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
