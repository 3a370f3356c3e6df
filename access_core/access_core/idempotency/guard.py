"""Distributed idempotency guard for webhook events.

A guard marker is a short-lived key ``stripe-event:{event_id}`` whose value
is ``processing`` while a handler runs and ``done`` once its effects are
committed.  Claiming uses an atomic SET-if-absent, which is the only
mutual-exclusion primitive between concurrent deliveries of the same event.

Marker lifecycle::

    (absent) --try_acquire--> processing --finalize--> done (long TTL)
                                   |
                                   +------release----> (absent)
                                   +------TTL expiry--> (absent)

Any failure to reach the backing store surfaces as
:class:`~access_core.errors.GuardUnavailableError`; whether that fails the
request or is tolerated is the caller's decision.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from access_core.errors import GuardUnavailableError

logger = logging.getLogger(__name__)

MARKER_PREFIX = "stripe-event:"
PROCESSING = "processing"
DONE = "done"

DEFAULT_PROCESSING_TTL_SECONDS = 300
DEFAULT_DONE_TTL_SECONDS = 30 * 24 * 3600


def marker_key(event_id: str) -> str:
    """Return the marker key for *event_id*."""
    return f"{MARKER_PREFIX}{event_id}"


@runtime_checkable
class IdempotencyGuard(Protocol):
    """Claim/finalize/release protocol keyed by external event id."""

    async def try_acquire(self, event_id: str) -> bool:
        """Atomically claim *event_id*; ``False`` if a marker already exists."""
        ...

    async def finalize(self, event_id: str) -> None:
        """Mark *event_id* as ``done`` with the long TTL."""
        ...

    async def release(self, event_id: str) -> None:
        """Delete the marker so a redelivery can be processed."""
        ...

    async def extend(self, event_id: str, ttl_seconds: int) -> None:
        """Best-effort TTL extension of an existing marker."""
        ...

    async def peek(self, event_id: str) -> str | None:
        """Return the current marker value, or ``None``."""
        ...


class RedisIdempotencyGuard:
    """Idempotency guard backed by Redis.

    Parameters
    ----------
    client:
        A ``redis.asyncio.Redis`` client.  Responses are expected as ``str``
        (``decode_responses=True``); bytes are decoded defensively in
        :meth:`peek`.
    processing_ttl:
        Seconds a ``processing`` marker lives before a crashed handler's
        claim lapses and the event becomes processable again.
    done_ttl:
        Seconds a ``done`` marker suppresses redeliveries.
    """

    def __init__(
        self,
        client: Redis,
        *,
        processing_ttl: int = DEFAULT_PROCESSING_TTL_SECONDS,
        done_ttl: int = DEFAULT_DONE_TTL_SECONDS,
    ) -> None:
        self._client = client
        self._processing_ttl = processing_ttl
        self._done_ttl = done_ttl

    async def try_acquire(self, event_id: str) -> bool:
        try:
            acquired = await self._client.set(
                marker_key(event_id),
                PROCESSING,
                nx=True,
                ex=self._processing_ttl,
            )
        except RedisError as exc:
            raise GuardUnavailableError(f"Cannot claim event {event_id}: {exc}") from exc
        return bool(acquired)

    async def finalize(self, event_id: str) -> None:
        try:
            await self._client.set(marker_key(event_id), DONE, ex=self._done_ttl)
        except RedisError as exc:
            raise GuardUnavailableError(f"Cannot finalize event {event_id}: {exc}") from exc

    async def release(self, event_id: str) -> None:
        try:
            await self._client.delete(marker_key(event_id))
        except RedisError as exc:
            raise GuardUnavailableError(f"Cannot release event {event_id}: {exc}") from exc

    async def extend(self, event_id: str, ttl_seconds: int) -> None:
        try:
            await self._client.expire(marker_key(event_id), ttl_seconds)
        except RedisError as exc:
            raise GuardUnavailableError(f"Cannot extend event {event_id}: {exc}") from exc

    async def peek(self, event_id: str) -> str | None:
        try:
            value = await self._client.get(marker_key(event_id))
        except RedisError as exc:
            raise GuardUnavailableError(f"Cannot read event {event_id}: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value
