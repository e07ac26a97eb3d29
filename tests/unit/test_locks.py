"""
Unit tests for per-booking locks (Redis backend exercised against a fake client).
"""
import asyncio

import pytest

from freight.errors import ConflictError
from freight.services.locks import LocalBookingLocks, RedisBookingLocks


@pytest.mark.asyncio
class TestRedisBookingLocks:
    async def test_lock_is_released_after_use(self, fake_redis):
        locks = RedisBookingLocks(fake_redis, ttl_seconds=15, wait_seconds=0.2)
        async with locks.hold("b1"):
            assert "booking:b1:lock" in fake_redis.store
        assert "booking:b1:lock" not in fake_redis.store

    async def test_held_lock_times_out(self, fake_redis):
        fake_redis.store["booking:b1:lock"] = "someone-else"
        locks = RedisBookingLocks(fake_redis, wait_seconds=0.1)
        with pytest.raises(ConflictError):
            async with locks.hold("b1"):
                pass
        # Foreign lock is never deleted
        assert fake_redis.store["booking:b1:lock"] == "someone-else"

    async def test_released_on_error(self, fake_redis):
        locks = RedisBookingLocks(fake_redis, wait_seconds=0.1)
        with pytest.raises(RuntimeError):
            async with locks.hold("b1"):
                raise RuntimeError("boom")
        assert fake_redis.store == {}

    async def test_expired_lock_retaken_by_another_is_kept(self, fake_redis):
        locks = RedisBookingLocks(fake_redis, wait_seconds=0.1)
        async with locks.hold("b1"):
            # Our lease ran out and another worker took the key
            fake_redis.store["booking:b1:lock"] = "next-holder"
        assert fake_redis.store["booking:b1:lock"] == "next-holder"

    async def test_other_bookings_not_blocked(self, fake_redis):
        locks = RedisBookingLocks(fake_redis, wait_seconds=0.1)
        async with locks.hold("b1"):
            async with locks.hold("b2"):
                assert len(fake_redis.store) == 2


@pytest.mark.asyncio
class TestLocalBookingLocks:
    async def test_serializes_same_booking(self):
        locks = LocalBookingLocks(wait_seconds=1.0)
        order = []

        async def worker(name):
            async with locks.hold("b1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    async def test_wait_timeout(self):
        locks = LocalBookingLocks(wait_seconds=0.05)
        async with locks.hold("b1"):
            with pytest.raises(ConflictError):
                async with locks.hold("b1"):
                    pass
