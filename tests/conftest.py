"""
In-memory stand-ins for the stores, gateway, estimator and notifier so the
booking and escrow services can be exercised without Postgres or Redis.
"""
import asyncio
import math
import time
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from redis.exceptions import LockError, LockNotOwnedError

from freight.config import Settings
from freight.models.booking import Booking
from freight.models.payment import Payment
from freight.models.truck import Truck, TruckActivity
from freight.schemas.schemas import ACTIVE_STATUSES, Actor, RoleEnum
from freight.services.distance import DistanceEstimate, GeocodeResult, Point
from freight.services.escrow import EscrowLedger
from freight.services.gateway import GatewayReceipt
from freight.services.lifecycle import BookingLifecycle
from freight.services.locks import LocalBookingLocks

BASE_TIME = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class _Clock:
    """Monotonic created_at values so list ordering is deterministic."""

    def __init__(self):
        self.ticks = 0

    def next(self) -> datetime:
        self.ticks += 1
        return BASE_TIME + timedelta(seconds=self.ticks)


class FakeBookingRepository:
    def __init__(self):
        self.rows: dict[str, Booking] = {}
        self.saves = 0
        self.rollbacks = 0
        self._clock = _Clock()

    async def get(self, booking_id):
        return self.rows.get(booking_id)

    async def get_for_update(self, booking_id):
        return self.rows.get(booking_id)

    async def save(self, booking):
        if booking.id is None:
            booking.id = str(uuid.uuid4())
        if booking.created_at is None:
            booking.created_at = self._clock.next()
        booking.updated_at = datetime.now(timezone.utc)
        self.rows[booking.id] = booking
        self.saves += 1
        return booking

    async def count_active_for_truck(self, truck_id, exclude_id=None):
        return sum(
            1 for b in self.rows.values()
            if b.truck_id == truck_id and b.status in ACTIVE_STATUSES and b.id != exclude_id
        )

    async def list_for_trucker(self, trucker_id, statuses=None):
        rows = [b for b in self.rows.values() if b.trucker_id == trucker_id]
        if statuses is not None:
            allowed = set(statuses)
            rows = [b for b in rows if b.status in allowed]
        return sorted(rows, key=lambda b: (b.created_at, b.id))

    async def list_for_customer(self, customer_id):
        rows = [b for b in self.rows.values() if b.customer_id == customer_id]
        return sorted(rows, key=lambda b: b.created_at, reverse=True)

    async def rollback(self, *instances):
        self.rollbacks += 1


class FakeTruckRepository:
    def __init__(self):
        self.rows: dict[str, Truck] = {}
        self.activity: list[TruckActivity] = []
        self.removals = []
        self.rollbacks = 0

    async def get(self, truck_id):
        return self.rows.get(truck_id)

    async def get_by_registration(self, registration_number):
        for truck in self.rows.values():
            if truck.registration_number == registration_number:
                return truck
        return None

    async def save(self, truck):
        if truck.id is None:
            truck.id = str(uuid.uuid4())
        self.rows[truck.id] = truck
        return truck

    async def set_availability(self, truck_id, available):
        truck = self.rows.get(truck_id)
        if truck is not None:
            truck.is_available = available

    async def append_activity(self, truck_id, action, performed_by, details=None):
        self.activity.append(
            TruckActivity(
                truck_id=truck_id,
                action=action,
                performed_by=performed_by,
                details=details or {},
                timestamp=datetime.now(timezone.utc),
            )
        )

    async def list_activity(self, truck_id):
        return [a for a in self.activity if a.truck_id == truck_id]

    async def has_pending_removal(self, truck_id):
        return any(r.truck_id == truck_id and r.status == "pending" for r in self.removals)

    async def add_removal_request(self, request):
        if request.id is None:
            request.id = str(uuid.uuid4())
        self.removals.append(request)
        return request

    async def rollback(self, *instances):
        self.rollbacks += 1


class FakePaymentRepository:
    def __init__(self):
        self.rows: dict[str, Payment] = {}
        self.rollbacks = 0
        self._clock = _Clock()

    async def get(self, payment_id):
        return self.rows.get(payment_id)

    async def get_for_update(self, payment_id):
        return self.rows.get(payment_id)

    async def get_by_external_id(self, external_request_id):
        for payment in self.rows.values():
            if payment.external_request_id == external_request_id:
                return payment
        return None

    async def list_for_booking(self, booking_id):
        rows = [p for p in self.rows.values() if p.booking_id == booking_id]
        return sorted(rows, key=lambda p: p.created_at)

    async def save(self, payment):
        if payment.id is None:
            payment.id = str(uuid.uuid4())
        if payment.created_at is None:
            payment.created_at = self._clock.next()
        self.rows[payment.id] = payment
        return payment

    async def rollback(self, *instances):
        self.rollbacks += 1


class RecordingNotifier:
    def __init__(self):
        self.sent: list[dict] = []

    async def notify(self, user_id, type, title, message, related_booking_id=None, related_user_id=None):
        self.sent.append({
            "user_id": user_id,
            "type": type,
            "title": title,
            "message": message,
            "related_booking_id": related_booking_id,
            "related_user_id": related_user_id,
        })

    def types_for(self, user_id):
        return [n["type"] for n in self.sent if n["user_id"] == user_id]


class FixedEstimator:
    """Every route has the same length."""

    def __init__(self, distance_km=40.0, duration_minutes=60.0):
        self.distance_km = distance_km
        self.duration_minutes = duration_minutes
        self.calls = []

    async def estimate(self, origin, destination):
        self.calls.append((origin, destination))
        return DistanceEstimate(self.distance_km, self.duration_minutes, source="fixed")


class PlanarEstimator:
    """Distance = 100 km per degree of planar separation; no network."""

    def __init__(self):
        self.calls = []

    async def estimate(self, origin, destination):
        self.calls.append((origin, destination))
        km = math.hypot(destination.lat - origin.lat, destination.lng - origin.lng) * 100
        return DistanceEstimate(round(km, 3), km * 2, source="planar")


class StubGeocoder:
    def __init__(self, point=Point(-1.30, 36.80)):
        self.point = point
        self.calls = []

    async def geocode(self, address):
        self.calls.append(address)
        return GeocodeResult(point=self.point, formatted_address=f"{address}, Kenya")


class StubGateway:
    def __init__(self):
        self.requests = []

    async def initiate(self, amount, payer_phone, reference):
        self.requests.append((amount, payer_phone, reference))
        return GatewayReceipt(
            external_request_id=f"ws_CO_{len(self.requests):04d}",
            merchant_request_id=f"mr-{len(self.requests)}",
            customer_message="Success. Request accepted for processing",
        )


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def set(self, key, value, nx=False, px=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        self.store.pop(key, None)

    def lock(self, name, timeout=None, sleep=0.1, blocking_timeout=None):
        return FakeLock(self, name, sleep=sleep, blocking_timeout=blocking_timeout)


class FakeLock:
    """Token-owned lock over FakeRedis with redis-py's acquire/release contract."""

    def __init__(self, redis, name, sleep=0.1, blocking_timeout=None):
        self.redis = redis
        self.name = name
        self.sleep = sleep
        self.blocking_timeout = blocking_timeout
        self.token = None

    async def acquire(self):
        token = uuid.uuid4().hex
        deadline = time.monotonic() + (self.blocking_timeout or 0)
        while not await self.redis.set(self.name, token, nx=True):
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self.sleep)
        self.token = token
        return True

    async def release(self):
        if self.token is None:
            raise LockError("Cannot release an unlocked lock")
        token, self.token = self.token, None
        if self.redis.store.get(self.name) != token:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        del self.redis.store[self.name]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return Settings(
        booking_lock_backend="local",
        allow_straight_line_fallback=True,
        openrouteservice_api_key="",
        mpesa_consumer_key="",
    )


@pytest.fixture
def customer():
    return Actor(id="customer-1", role=RoleEnum.customer, name="Wanjiru")


@pytest.fixture
def other_customer():
    return Actor(id="customer-2", role=RoleEnum.customer, name="Otieno")


@pytest.fixture
def trucker():
    return Actor(id="trucker-1", role=RoleEnum.trucker, name="Kamau")


@pytest.fixture
def admin():
    return Actor(id="admin-1", role=RoleEnum.admin, name="Ops")


@pytest.fixture
def bookings_repo():
    return FakeBookingRepository()


@pytest.fixture
def trucks_repo():
    return FakeTruckRepository()


@pytest.fixture
def payments_repo():
    return FakePaymentRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def estimator():
    return FixedEstimator()


@pytest.fixture
def planar_estimator():
    return PlanarEstimator()


@pytest.fixture
def geocoder():
    return StubGeocoder()


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def locks():
    return LocalBookingLocks(wait_seconds=1.0)


@pytest.fixture
def ledger(payments_repo, bookings_repo, gateway, notifier, locks, settings):
    return EscrowLedger(payments_repo, bookings_repo, gateway, notifier=notifier, locks=locks, settings=settings)


@pytest.fixture
def service(bookings_repo, trucks_repo, ledger, estimator, geocoder, notifier, locks, settings):
    return BookingLifecycle(
        bookings_repo,
        trucks_repo,
        ledger,
        estimator,
        geocoder,
        notifier=notifier,
        locks=locks,
        settings=settings,
    )


@pytest.fixture
def truck(trucks_repo, trucker):
    t = Truck(
        id="truck-1",
        trucker_id=trucker.id,
        truck_type="lorry",
        registration_number="KBZ 123A",
        capacity_weight=10.0,
        rate_per_km=Decimal("50"),
        minimum_charge=Decimal("1000"),
        is_available=True,
        status="active",
    )
    trucks_repo.rows[t.id] = t
    return t


@pytest.fixture
def make_booking(bookings_repo, customer, trucker):
    """Factory inserting a booking straight into the fake store."""
    clock = _Clock()

    def _make(**overrides):
        fields = dict(
            id=str(uuid.uuid4()),
            customer_id=customer.id,
            trucker_id=trucker.id,
            truck_id="truck-1",
            origin_address="Industrial Area, Nairobi",
            origin_lat=-1.30,
            origin_lng=36.85,
            destination_address="Thika Road Mall",
            dest_lat=-1.22,
            dest_lng=36.89,
            cargo_type="cement",
            cargo_weight=8.0,
            is_delicate=False,
            distance_km=Decimal("40"),
            rate_per_km=Decimal("50"),
            estimated_amount=Decimal("2000"),
            payment_method="mpesa",
            payment_status="pending",
            status="pending",
            created_at=clock.next(),
        )
        fields.update(overrides)
        booking = Booking(**fields)
        bookings_repo.rows[booking.id] = booking
        return booking

    return _make


@pytest.fixture
def make_payment(payments_repo, bookings_repo):
    """Factory linking a payment in the given state to a booking."""

    def _make(booking, status="completed", escrow_status="held", **overrides):
        fields = dict(
            id=str(uuid.uuid4()),
            booking_id=booking.id,
            customer_id=booking.customer_id,
            trucker_id=booking.trucker_id,
            amount=Decimal("2000"),
            currency="KES",
            method="mpesa",
            status=status,
            escrow_status=escrow_status,
            external_request_id=f"ws_CO_{uuid.uuid4().hex[:10]}",
            requires_manual_processing=False,
            created_at=BASE_TIME,
        )
        fields.update(overrides)
        payment = Payment(**fields)
        payments_repo.rows[payment.id] = payment
        booking.payment_id = payment.id
        return payment

    return _make
