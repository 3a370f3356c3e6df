"""Create the tenant_access table.

One row per tenant holding its subscription status, billing binding and
seat entitlement.  ``billing_customer_id`` is unique so a Stripe customer
can never be bound to two tenants.

Revision ID: 001
Revises:
Create Date: 2026-09-28 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "tenant_access",
        sa.Column("tenant_id", sa.String(128), primary_key=True),
        sa.Column("billing_customer_id", sa.String(256), nullable=True, unique=True),
        sa.Column("billing_subscription_id", sa.String(256), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="INACTIVE"),
        sa.Column("source", sa.String(16), nullable=False, server_default="MANUAL"),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("seat_limit", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("seat_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("plan_id", sa.String(256), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("seat_limit >= 1", name="ck_tenant_access_seat_limit"),
        sa.CheckConstraint("seat_used >= 0", name="ck_tenant_access_seat_used"),
    )

    op.create_index("ix_tenant_access_status", "tenant_access", ["status"])


def downgrade() -> None:
    op.drop_index("ix_tenant_access_status", table_name="tenant_access")
    op.drop_table("tenant_access")
