"""Session introspection for the portal front end."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from portal_api.dependencies import PrincipalDep, SettingsDep
from portal_api.middleware.rbac import is_operator

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/whoami")
async def whoami(principal: PrincipalDep, settings: SettingsDep) -> dict[str, Any]:
    """Describe the authenticated caller, including the tenant id operators need for support."""
    return {
        "authenticated": True,
        "user": {
            "email": principal.email,
            "name": principal.name,
            "id": principal.sub,
        },
        "tenantId": principal.tenant_id,
        "isOperator": is_operator(principal, settings),
    }
