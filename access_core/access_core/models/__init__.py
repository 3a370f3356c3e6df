"""Domain models for tenant access."""

from access_core.models.access import (
    AccessAction,
    AccessChangeLogEntry,
    AccessSource,
    AccessStatus,
    TenantAccessRecord,
)

__all__ = [
    "AccessAction",
    "AccessChangeLogEntry",
    "AccessSource",
    "AccessStatus",
    "TenantAccessRecord",
]
