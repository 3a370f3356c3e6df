"""SQL repositories for tenant access state.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for
calling ``session.commit()`` (normally the scope from
:func:`~access_core.state.scope.sql_scope_factory`).
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from access_core.errors import BillingCustomerConflictError
from access_core.models.access import (
    AccessAction,
    AccessChangeLogEntry,
    AccessSource,
    AccessStatus,
    TenantAccessRecord,
)
from access_core.state.tables import AccessChangeLogTable, TenantAccessTable

logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _to_record(row: TenantAccessTable) -> TenantAccessRecord:
    return TenantAccessRecord(
        tenant_id=row.tenant_id,
        billing_customer_id=row.billing_customer_id,
        billing_subscription_id=row.billing_subscription_id,
        status=AccessStatus(row.status),
        source=AccessSource(row.source),
        trial_ends_at=_aware(row.trial_ends_at),
        active_until=_aware(row.active_until),
        seat_limit=row.seat_limit,
        seat_used=row.seat_used,
        plan_id=row.plan_id,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _to_entry(row: AccessChangeLogTable) -> AccessChangeLogEntry:
    return AccessChangeLogEntry(
        id=row.entry_id,
        timestamp=_aware(row.created_at),
        tenant_id=row.tenant_id,
        action=AccessAction(row.action),
        old_status=AccessStatus(row.old_status) if row.old_status else None,
        new_status=AccessStatus(row.new_status),
        source=AccessSource(row.source),
        actor_email=row.actor_email,
        metadata=row.metadata_json or {},
    )


# ---------------------------------------------------------------------------
# Entitlement store
# ---------------------------------------------------------------------------


class SqlEntitlementStore:
    """Tenant access records backed by the ``tenant_access`` table.

    Mutations are read-modify-write against the row keyed by ``tenant_id``.
    Concurrent writers to the same tenant are last-write-wins.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _get_row(self, tenant_id: str) -> TenantAccessTable | None:
        stmt = select(TenantAccessTable).where(TenantAccessTable.tenant_id == tenant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_row_by_customer(self, customer_id: str) -> TenantAccessTable | None:
        stmt = select(TenantAccessTable).where(TenantAccessTable.billing_customer_id == customer_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, tenant_id: str) -> TenantAccessRecord | None:
        row = await self._get_row(tenant_id)
        return _to_record(row) if row is not None else None

    async def get_by_billing_customer(self, customer_id: str) -> TenantAccessRecord | None:
        row = await self._get_row_by_customer(customer_id)
        return _to_record(row) if row is not None else None

    async def activate(
        self,
        tenant_id: str,
        customer_id: str,
        subscription_id: str | None,
        active_until: datetime,
        seats: int,
        plan_id: str | None = None,
    ) -> TenantAccessRecord:
        """Bind the customer and mark the tenant ``ACTIVE``.

        Raises
        ------
        BillingCustomerConflictError
            If the customer is bound elsewhere or the tenant is bound to a
            different customer.
        """
        bound = await self._get_row_by_customer(customer_id)
        if bound is not None and bound.tenant_id != tenant_id:
            raise BillingCustomerConflictError(tenant_id, customer_id, bound.tenant_id)

        row = await self._get_row(tenant_id)
        if row is None:
            row = TenantAccessTable(tenant_id=tenant_id, seat_used=0)
            self._session.add(row)
        elif row.billing_customer_id is not None and row.billing_customer_id != customer_id:
            raise BillingCustomerConflictError(tenant_id, customer_id, row.billing_customer_id)

        row.billing_customer_id = customer_id
        row.billing_subscription_id = subscription_id
        row.status = AccessStatus.ACTIVE.value
        row.source = AccessSource.STRIPE.value
        row.trial_ends_at = None
        row.active_until = active_until
        row.seat_limit = seats
        if plan_id is not None:
            row.plan_id = plan_id
        row.updated_at = datetime.now(UTC)

        try:
            await self._session.flush()
        except IntegrityError as exc:
            # A concurrent writer bound the customer between our read and flush.
            raise BillingCustomerConflictError(tenant_id, customer_id, "<concurrent binding>") from exc

        logger.info(
            "Activated tenant %s customer=%s until=%s seats=%d",
            tenant_id,
            customer_id,
            active_until.isoformat(),
            seats,
        )
        return _to_record(row)

    async def update_status(
        self,
        tenant_id: str,
        status: AccessStatus,
        active_until: datetime | None = None,
        seats: int | None = None,
        *,
        source: AccessSource = AccessSource.STRIPE,
    ) -> TenantAccessRecord | None:
        row = await self._get_row(tenant_id)
        if row is None:
            logger.warning("Status update for unknown tenant %s ignored", tenant_id)
            return None

        row.status = status.value
        row.source = source.value
        if active_until is not None:
            row.active_until = active_until
        if seats is not None:
            row.seat_limit = seats
        row.updated_at = datetime.now(UTC)
        await self._session.flush()

        logger.info("Updated tenant %s status to %s", tenant_id, status.value)
        return _to_record(row)

    async def grant_trial(
        self,
        tenant_id: str,
        days: int,
        seat_limit: int,
    ) -> TenantAccessRecord:
        now = datetime.now(UTC)
        trial_ends_at = now + timedelta(days=days)

        row = await self._get_row(tenant_id)
        if row is None:
            row = TenantAccessTable(tenant_id=tenant_id, seat_used=0, created_at=now)
            self._session.add(row)

        row.status = AccessStatus.TRIALING.value
        row.source = AccessSource.MANUAL.value
        row.trial_ends_at = trial_ends_at
        row.active_until = None
        row.seat_limit = seat_limit
        row.updated_at = now
        await self._session.flush()

        logger.info(
            "Granted %d-day trial to tenant %s until %s",
            days,
            tenant_id,
            trial_ends_at.isoformat(),
        )
        return _to_record(row)


# ---------------------------------------------------------------------------
# Access change log
# ---------------------------------------------------------------------------


class SqlAccessLog:
    """Append-only access change log backed by ``access_change_log``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        *,
        tenant_id: str,
        action: AccessAction,
        new_status: AccessStatus,
        source: AccessSource,
        old_status: AccessStatus | None = None,
        actor_email: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AccessChangeLogEntry:
        row = AccessChangeLogTable(
            entry_id=uuid.uuid4().hex,
            tenant_id=tenant_id,
            action=action.value,
            old_status=old_status.value if old_status is not None else None,
            new_status=new_status.value,
            source=source.value,
            actor_email=actor_email,
            metadata_json=metadata or {},
            created_at=datetime.now(UTC),
        )
        self._session.add(row)
        await self._session.flush()

        logger.info(
            "Access change tenant=%s action=%s %s -> %s source=%s",
            tenant_id,
            action.value,
            old_status.value if old_status is not None else None,
            new_status.value,
            source.value,
        )
        return _to_entry(row)

    async def recent(
        self,
        limit: int = 50,
        *,
        tenant_id: str | None = None,
    ) -> list[AccessChangeLogEntry]:
        stmt = select(AccessChangeLogTable)
        if tenant_id is not None:
            stmt = stmt.where(AccessChangeLogTable.tenant_id == tenant_id)
        stmt = stmt.order_by(
            AccessChangeLogTable.created_at.desc(),
            AccessChangeLogTable.seq.desc(),
        ).limit(limit)
        result = await self._session.execute(stmt)
        return [_to_entry(row) for row in result.scalars().all()]
