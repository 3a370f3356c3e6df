"""Operator endpoints: manual trial grants and the access audit trail."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from portal_api.dependencies import ScopeFactoryDep
from portal_api.middleware.rbac import Permission, require_permission
from portal_api.security import Principal
from portal_api.services.access_service import (
    MAX_TRIAL_DAYS,
    MAX_TRIAL_SEATS,
    AccessService,
    entry_payload,
    record_payload,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

GrantOperatorDep = Annotated[Principal, Depends(require_permission(Permission.GRANT_TRIAL))]
AuditReaderDep = Annotated[Principal, Depends(require_permission(Permission.READ_ACCESS_AUDIT))]


class GrantTrialRequest(BaseModel):
    """Request body for ``POST /admin/grant-trial``."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    tenant_id: StrictStr = Field(..., alias="tenantId", min_length=1, description="Tenant to grant.")
    days: StrictInt = Field(default=14, ge=1, le=MAX_TRIAL_DAYS, description="Trial length in days.")
    seat_limit: StrictInt = Field(
        default=1,
        alias="seatLimit",
        ge=1,
        le=MAX_TRIAL_SEATS,
        description="Seats included in the trial.",
    )


@router.post("/grant-trial")
async def grant_trial(
    body: GrantTrialRequest,
    operator: GrantOperatorDep,
    scope_factory: ScopeFactoryDep,
) -> dict[str, Any]:
    """Grant (or renew) a manual trial for a tenant."""
    async with scope_factory() as scope:
        record = await AccessService(scope).grant_trial(
            body.tenant_id,
            days=body.days,
            seat_limit=body.seat_limit,
            actor_email=operator.email or operator.sub,
        )
    return {
        "success": True,
        "access": record_payload(record),
        "message": f"Trial granted for {body.days} days with {body.seat_limit} seats.",
    }


@router.get("/access-audit")
async def access_audit(
    _operator: AuditReaderDep,
    scope_factory: ScopeFactoryDep,
    limit: int = Query(default=50, ge=1, le=50),
    tenant_id: str | None = Query(default=None, alias="tenantId"),
) -> dict[str, Any]:
    """Return the most recent access changes, newest first."""
    async with scope_factory() as scope:
        entries = await AccessService(scope).recent_changes(limit, tenant_id=tenant_id)
    return {"entries": [entry_payload(entry) for entry in entries], "total": len(entries)}
