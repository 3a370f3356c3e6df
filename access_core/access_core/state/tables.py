"""SQLAlchemy 2.0 ORM table definitions for the access state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by Alembic migrations and
the repository layer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON (stored as TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all access tables."""


# ---------------------------------------------------------------------------
# Tenant access
# ---------------------------------------------------------------------------


class TenantAccessTable(Base):
    """Subscription and entitlement state per tenant.

    ``billing_customer_id`` is unique across tenants: a Stripe customer is
    bound to exactly one tenant and the binding is never reassigned.
    """

    __tablename__ = "tenant_access"

    tenant_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    billing_customer_id: Mapped[str | None] = mapped_column(String(256), nullable=True, unique=True)
    billing_subscription_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="INACTIVE")
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="MANUAL")
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    active_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    seat_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    seat_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    plan_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("seat_limit >= 1", name="ck_tenant_access_seat_limit"),
        CheckConstraint("seat_used >= 0", name="ck_tenant_access_seat_used"),
        Index("ix_tenant_access_status", "status"),
    )


# ---------------------------------------------------------------------------
# Access change log
# ---------------------------------------------------------------------------


class AccessChangeLogTable(Base):
    """Append-only log of access-status transitions.

    Rows are never updated or deleted.  ``seq`` is monotonically increasing
    and breaks ties between entries sharing a ``created_at`` timestamp.
    """

    __tablename__ = "access_change_log"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    actor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_access_change_log_created", "created_at"),
        Index("ix_access_change_log_tenant_created", "tenant_id", "created_at"),
    )
