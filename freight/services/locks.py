"""
Per-booking mutual exclusion.

Every mutation of one booking (transition, edit, tracking, payment initiation)
runs inside `hold(booking_id)`. The Redis backend works across workers; the
local backend is for single-process deployments and tests.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import LockError, RedisError

from freight.errors import ConflictError
from freight.redis_client import redis_lock

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.05


class RedisBookingLocks:
    def __init__(self, redis: aioredis.Redis, ttl_seconds: int = 15, wait_seconds: float = 5.0):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.wait_seconds = wait_seconds

    @asynccontextmanager
    async def hold(self, booking_id: str) -> AsyncIterator[None]:
        key = f"booking:{booking_id}:lock"
        lock = redis_lock(self.redis, key, self.ttl_seconds, self.wait_seconds, sleep=POLL_INTERVAL_SECONDS)
        if not await lock.acquire():
            raise ConflictError("Booking is being updated by another request, retry shortly",
                                booking_id=booking_id)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as exc:
                # Expired and possibly re-taken; the other holder's token is left alone
                logger.warning("Lock %s was no longer held on release: %s", key, exc)
            except RedisError as exc:
                # Lock expires on its own after ttl
                logger.warning("Failed to release %s: %s", key, exc)


class LocalBookingLocks:
    def __init__(self, wait_seconds: float = 5.0):
        self.wait_seconds = wait_seconds
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, booking_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(booking_id, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
        except asyncio.TimeoutError:
            raise ConflictError("Booking is being updated by another request, retry shortly",
                                booking_id=booking_id)
        try:
            yield
        finally:
            lock.release()
