"""Operator capability gate.

Portal users are clinic staff; a small set of operators may additionally
grant manual trials and read the access audit.  A principal is an operator
when its e-mail is in the configured ``PORTAL_OPERATOR_EMAILS`` list or its
session token carries ``role=operator``.

Usage in routers::

    from portal_api.middleware.rbac import Permission, require_permission

    @router.post("/grant-trial")
    async def grant_trial(
        ...,
        principal: Principal = Depends(require_permission(Permission.GRANT_TRIAL)),
    ) -> ...:
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from fastapi import HTTPException

from portal_api.config import PortalSettings
from portal_api.dependencies import PrincipalDep, SettingsDep
from portal_api.security import Principal

logger = logging.getLogger(__name__)

OPERATOR_ROLE = "operator"


class Permission(str, Enum):
    """Capabilities checked by endpoint guards."""

    GRANT_TRIAL = "grant:trial"
    READ_ACCESS_AUDIT = "read:access_audit"


OPERATOR_PERMISSIONS: frozenset[Permission] = frozenset(
    {
        Permission.GRANT_TRIAL,
        Permission.READ_ACCESS_AUDIT,
    }
)


def is_operator(principal: Principal, settings: PortalSettings) -> bool:
    """Return ``True`` if *principal* holds the operator capability."""
    if (principal.role or "").strip().lower() == OPERATOR_ROLE:
        return True
    return settings.is_operator_email(principal.email)


def permissions_for(principal: Principal, settings: PortalSettings) -> frozenset[Permission]:
    return OPERATOR_PERMISSIONS if is_operator(principal, settings) else frozenset()


def require_permission(permission: Permission) -> Callable[..., Principal]:
    """Return a FastAPI dependency that enforces *permission*.

    Returns the resolved :class:`Principal` so handlers can use it as the
    actor of the change.
    """

    def _guard(principal: PrincipalDep, settings: SettingsDep) -> Principal:
        if permission not in permissions_for(principal, settings):
            logger.warning(
                "Permission denied: %s requires %s",
                principal.email or principal.sub,
                permission.value,
            )
            raise HTTPException(
                status_code=403,
                detail=f"Permission denied: '{permission.value}' is required",
            )
        return principal

    return _guard

