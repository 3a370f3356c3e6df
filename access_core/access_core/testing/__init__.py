"""In-memory test doubles for the access state protocols."""

from access_core.testing.memory import (
    InMemoryAccessLog,
    InMemoryEntitlementStore,
    InMemoryIdempotencyGuard,
    memory_scope_factory,
)

__all__ = [
    "InMemoryAccessLog",
    "InMemoryEntitlementStore",
    "InMemoryIdempotencyGuard",
    "memory_scope_factory",
]
