"""Webhook idempotency markers."""

from access_core.idempotency.guard import (
    DONE,
    PROCESSING,
    IdempotencyGuard,
    RedisIdempotencyGuard,
    marker_key,
)

__all__ = [
    "DONE",
    "PROCESSING",
    "IdempotencyGuard",
    "RedisIdempotencyGuard",
    "marker_key",
]
