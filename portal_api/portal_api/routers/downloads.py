"""Entitlement-gated desktop client downloads."""

from __future__ import annotations

import logging
from typing import Any

from access_core.entitlement import compute_entitlement
from fastapi import APIRouter, HTTPException

from portal_api.dependencies import PrincipalDep, ScopeFactoryDep, SettingsDep, TenantDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/downloads", tags=["downloads"])


@router.post("/{platform}")
async def download_link(
    platform: str,
    principal: PrincipalDep,
    tenant_id: TenantDep,
    settings: SettingsDep,
    scope_factory: ScopeFactoryDep,
) -> dict[str, Any]:
    """Return the download link for *platform* if the tenant is entitled."""
    async with scope_factory() as scope:
        record = await scope.store.get(tenant_id)

    entitlement = compute_entitlement(record)
    if not entitlement.entitled:
        logger.info(
            "Download of %s denied for tenant %s (%s)",
            platform,
            tenant_id,
            entitlement.reason.value if entitlement.reason else "unknown",
        )
        raise HTTPException(status_code=403, detail="An active subscription is required to download")

    asset = settings.download_catalog.get(platform.lower())
    if asset is None:
        raise HTTPException(status_code=400, detail="Unknown platform")
    if not asset.url:
        raise HTTPException(status_code=404, detail="This platform is not available yet")

    logger.info("Download initiated: %s by %s (tenant %s)", platform, principal.email, tenant_id)
    return {"url": asset.url, "filename": asset.filename}
