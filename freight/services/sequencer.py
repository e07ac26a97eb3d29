"""
Delivery planning for a trucker with several concurrent bookings.

Greedy nearest-neighbor: start at the most urgent pickup, then repeatedly
drive from the current drop-off to the closest remaining pickup. The result
is an ordering hint for the UI; it is never persisted.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from freight.errors import FreightError
from freight.models.booking import Booking
from freight.services.distance import Point, make_point

logger = logging.getLogger(__name__)

# Sorts bookings with unusable coordinates to the end instead of failing the comparison.
SENTINEL_DISTANCE_KM = 999_999.0

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class SequencedBooking:
    booking: Booking
    position: Optional[int] = None
    estimated_pickup_time: Optional[datetime] = None


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _pickup_key(booking: Booking) -> datetime:
    # No stated pickup time means "as soon as possible".
    return _aware(booking.pickup_time) or _EARLIEST


def _departure_point(booking: Booking) -> Optional[Point]:
    return make_point(booking.dest_lat, booking.dest_lng) or make_point(booking.origin_lat, booking.origin_lng)


async def _leg_distance(estimator, start: Optional[Point], end: Optional[Point]) -> float:
    if start is None or end is None:
        return SENTINEL_DISTANCE_KM
    try:
        estimate = await estimator.estimate(start, end)
    except FreightError as exc:
        logger.warning("Distance lookup failed while sequencing (%s); treating leg as unreachable", exc)
        return SENTINEL_DISTANCE_KM
    return estimate.distance_km


async def plan_deliveries(
    bookings: Sequence[Booking],
    estimator,
    minutes_per_km: float = 2.0,
    now: Optional[datetime] = None,
) -> list[SequencedBooking]:
    """
    Order `bookings` (given in input order) for pickup.

    Returns them unchanged, without positions, when there is nothing to order.
    """
    if len(bookings) <= 1:
        return [SequencedBooking(booking=b) for b in bookings]

    now = now or datetime.now(timezone.utc)
    remaining = list(bookings)

    # min() keeps the first of equal keys, so ties follow input order.
    current = min(remaining, key=_pickup_key)
    remaining.remove(current)
    planned = [
        SequencedBooking(
            booking=current,
            position=1,
            estimated_pickup_time=_aware(current.pickup_time) or now,
        )
    ]

    while remaining:
        start = _departure_point(current)
        nearest = remaining[0]
        min_distance = None
        for candidate in remaining:
            distance = await _leg_distance(estimator, start, make_point(candidate.origin_lat, candidate.origin_lng))
            if min_distance is None or distance < min_distance:
                min_distance = distance
                nearest = candidate

        previous = planned[-1].estimated_pickup_time
        projected = previous + timedelta(minutes=math.ceil(min_distance * minutes_per_km))
        planned.append(
            SequencedBooking(
                booking=nearest,
                position=len(planned) + 1,
                estimated_pickup_time=_aware(nearest.pickup_time) or projected,
            )
        )
        remaining.remove(nearest)
        current = nearest

    return planned
