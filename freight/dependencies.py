"""
Request-scoped wiring for the booking and escrow services.

Repositories share the request's AsyncSession; FastAPI caches each dependency
per request so the lifecycle and the ledger see the same identity map.
"""
from functools import lru_cache

import redis.asyncio as aioredis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from freight.config import get_settings
from freight.database import get_db
from freight.redis_client import get_redis
from freight.repository.bookings import BookingRepository
from freight.repository.payments import PaymentRepository
from freight.repository.trucks import TruckRepository
from freight.services.distance import Geocoder, RoadDistanceEstimator
from freight.services.escrow import EscrowLedger
from freight.services.gateway import MpesaGateway
from freight.services.lifecycle import BookingLifecycle
from freight.services.locks import LocalBookingLocks, RedisBookingLocks
from freight.services.notifier import DatabaseNotifier

settings = get_settings()


@lru_cache
def _local_locks() -> LocalBookingLocks:
    # One registry per process; only safe with a single worker.
    return LocalBookingLocks(wait_seconds=settings.booking_lock_wait_seconds)


async def get_booking_locks(redis: aioredis.Redis = Depends(get_redis)):
    if settings.booking_lock_backend == "local":
        return _local_locks()
    return RedisBookingLocks(
        redis,
        ttl_seconds=settings.booking_lock_ttl_seconds,
        wait_seconds=settings.booking_lock_wait_seconds,
    )


def get_notifier() -> DatabaseNotifier:
    return DatabaseNotifier()


async def get_booking_repository(db: AsyncSession = Depends(get_db)) -> BookingRepository:
    return BookingRepository(db)


async def get_truck_repository(db: AsyncSession = Depends(get_db)) -> TruckRepository:
    return TruckRepository(db)


async def get_payment_repository(db: AsyncSession = Depends(get_db)) -> PaymentRepository:
    return PaymentRepository(db)


async def get_estimator(redis: aioredis.Redis = Depends(get_redis)) -> RoadDistanceEstimator:
    return RoadDistanceEstimator(redis=redis, settings=settings)


def get_geocoder() -> Geocoder:
    return Geocoder(settings=settings)


def get_gateway() -> MpesaGateway:
    return MpesaGateway(settings=settings)


async def get_ledger(
    payments: PaymentRepository = Depends(get_payment_repository),
    bookings: BookingRepository = Depends(get_booking_repository),
    gateway: MpesaGateway = Depends(get_gateway),
    notifier: DatabaseNotifier = Depends(get_notifier),
    locks=Depends(get_booking_locks),
) -> EscrowLedger:
    return EscrowLedger(payments, bookings, gateway, notifier=notifier, locks=locks, settings=settings)


async def get_booking_service(
    bookings: BookingRepository = Depends(get_booking_repository),
    trucks: TruckRepository = Depends(get_truck_repository),
    ledger: EscrowLedger = Depends(get_ledger),
    estimator: RoadDistanceEstimator = Depends(get_estimator),
    geocoder: Geocoder = Depends(get_geocoder),
    notifier: DatabaseNotifier = Depends(get_notifier),
    locks=Depends(get_booking_locks),
) -> BookingLifecycle:
    return BookingLifecycle(
        bookings,
        trucks,
        ledger,
        estimator,
        geocoder,
        notifier=notifier,
        locks=locks,
        settings=settings,
    )
