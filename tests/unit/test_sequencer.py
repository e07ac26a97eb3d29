"""
Unit tests for greedy nearest-neighbor delivery sequencing.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from freight.errors import DependencyError
from freight.services.distance import DistanceEstimate
from freight.services.sequencer import SENTINEL_DISTANCE_KM, plan_deliveries

NOW = datetime(2026, 3, 2, 7, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0) -> datetime:
    return NOW.replace(hour=hour, minute=minute)


def _ids(plan):
    return [item.booking.id for item in plan]


@pytest.mark.asyncio
class TestPlanDeliveries:
    async def test_empty_list(self, planar_estimator):
        assert await plan_deliveries([], planar_estimator, now=NOW) == []

    async def test_single_booking_is_not_sequenced(self, make_booking, planar_estimator):
        only = make_booking(id="A", pickup_time=at(9))
        plan = await plan_deliveries([only], planar_estimator, now=NOW)
        assert _ids(plan) == ["A"]
        assert plan[0].position is None
        assert plan[0].estimated_pickup_time is None
        assert planar_estimator.calls == []

    async def test_earliest_pickup_seeds_the_route(self, make_booking, planar_estimator):
        late = make_booking(id="late", pickup_time=at(11))
        early = make_booking(id="early", pickup_time=at(8))
        plan = await plan_deliveries([late, early], planar_estimator, now=NOW)
        assert _ids(plan) == ["early", "late"]
        assert [item.position for item in plan] == [1, 2]
        assert plan[0].estimated_pickup_time == at(8)
        assert plan[1].estimated_pickup_time == at(11)

    async def test_missing_pickup_time_counts_as_earliest(self, make_booking, planar_estimator):
        scheduled = make_booking(id="scheduled", pickup_time=at(9))
        asap = make_booking(id="asap", pickup_time=None)
        plan = await plan_deliveries([scheduled, asap], planar_estimator, now=NOW)
        assert _ids(plan) == ["asap", "scheduled"]
        assert plan[0].estimated_pickup_time == NOW

    async def test_unscheduled_job_seeds_ahead_of_scheduled_one(self, make_booking, planar_estimator):
        a = make_booking(id="A", pickup_time=at(9), origin_lat=-2.0, origin_lng=36.05,
                         dest_lat=-1.0, dest_lng=36.0)
        b = make_booking(id="B", pickup_time=None, origin_lat=-1.0, origin_lng=36.1,
                         dest_lat=-2.0, dest_lng=36.0)
        c = make_booking(id="C", pickup_time=None, origin_lat=-1.0, origin_lng=37.5,
                         dest_lat=-1.0, dest_lng=37.6)
        plan = await plan_deliveries([a, b, c], planar_estimator, now=NOW)
        # B is nearest to A's drop-off, but unset pickups sort first so B leads.
        assert _ids(plan) == ["B", "A", "C"]
        assert plan[0].estimated_pickup_time == NOW
        assert plan[1].estimated_pickup_time == at(9)

    async def test_nearest_pickup_follows_previous_dropoff(self, make_booking, planar_estimator):
        seed = make_booking(id="seed", pickup_time=at(8), origin_lat=-1.0, origin_lng=36.0,
                            dest_lat=-1.0, dest_lng=37.0)
        far = make_booking(id="far", pickup_time=at(10), origin_lat=-1.0, origin_lng=36.0,
                           dest_lat=-1.5, dest_lng=36.5)
        near = make_booking(id="near", pickup_time=at(12), origin_lat=-1.0, origin_lng=37.2,
                            dest_lat=-1.5, dest_lng=36.5)
        plan = await plan_deliveries([seed, far, near], planar_estimator, now=NOW)
        # Nearest to the seed's drop-off wins even though its pickup is later.
        assert _ids(plan) == ["seed", "near", "far"]

    async def test_projected_time_from_distance(self, make_booking, planar_estimator):
        first = make_booking(id="first", pickup_time=None, dest_lat=-1.0, dest_lng=36.0)
        second = make_booking(id="second", pickup_time=None, origin_lat=-1.0, origin_lng=36.5)
        plan = await plan_deliveries([first, second], planar_estimator, minutes_per_km=2.0, now=NOW)
        assert _ids(plan) == ["first", "second"]
        # 50 km at 2 min/km
        assert plan[1].estimated_pickup_time == NOW + timedelta(minutes=100)

    async def test_projection_rounds_minutes_up(self, make_booking):
        estimator = AsyncMock()
        estimator.estimate.return_value = DistanceEstimate(10.2, 15.0)
        first = make_booking(id="first", pickup_time=None)
        second = make_booking(id="second", pickup_time=None)
        plan = await plan_deliveries([first, second], estimator, minutes_per_km=2.0, now=NOW)
        # ceil(20.4) = 21
        assert plan[1].estimated_pickup_time == NOW + timedelta(minutes=21)

    async def test_equal_distances_keep_input_order(self, make_booking, planar_estimator):
        seed = make_booking(id="seed", pickup_time=at(7), dest_lat=-1.0, dest_lng=36.0)
        b = make_booking(id="b", pickup_time=at(9), origin_lat=-1.0, origin_lng=36.3)
        c = make_booking(id="c", pickup_time=at(9), origin_lat=-1.0, origin_lng=35.7)
        plan = await plan_deliveries([seed, b, c], planar_estimator, now=NOW)
        assert _ids(plan) == ["seed", "b", "c"]

    async def test_equal_pickup_times_keep_input_order(self, make_booking, planar_estimator):
        a = make_booking(id="a", pickup_time=at(9))
        b = make_booking(id="b", pickup_time=at(9))
        plan = await plan_deliveries([a, b], planar_estimator, now=NOW)
        assert plan[0].booking.id == "a"

    async def test_missing_coordinates_sort_last(self, make_booking, planar_estimator):
        seed = make_booking(id="seed", pickup_time=at(7), dest_lat=-1.0, dest_lng=36.0)
        lost = make_booking(id="lost", pickup_time=at(8), origin_lat=None, origin_lng=None)
        far = make_booking(id="far", pickup_time=at(9), origin_lat=-3.0, origin_lng=39.0)
        plan = await plan_deliveries([seed, lost, far], planar_estimator, now=NOW)
        assert _ids(plan) == ["seed", "far", "lost"]

    async def test_departure_uses_origin_when_destination_unknown(self, make_booking, planar_estimator):
        seed = make_booking(id="seed", pickup_time=at(7), origin_lat=-2.0, origin_lng=37.0,
                            dest_lat=None, dest_lng=None)
        near_origin = make_booking(id="near-origin", pickup_time=at(9), origin_lat=-2.0, origin_lng=37.1)
        elsewhere = make_booking(id="elsewhere", pickup_time=at(8), origin_lat=-1.0, origin_lng=36.0)
        plan = await plan_deliveries([seed, elsewhere, near_origin], planar_estimator, now=NOW)
        assert _ids(plan) == ["seed", "near-origin", "elsewhere"]

    async def test_estimator_failure_treated_as_unreachable(self, make_booking):
        estimator = AsyncMock()
        estimator.estimate.side_effect = [
            DependencyError("routing down"),
            DistanceEstimate(30.0, 45.0),
            DistanceEstimate(5.0, 8.0),
        ]
        seed = make_booking(id="seed", pickup_time=at(7))
        broken = make_booking(id="broken", pickup_time=at(8))
        fine = make_booking(id="fine", pickup_time=at(9))
        plan = await plan_deliveries([seed, broken, fine], estimator, now=NOW)
        assert _ids(plan) == ["seed", "fine", "broken"]

    async def test_unreachable_leg_projects_far_future(self, make_booking):
        first = make_booking(id="first", pickup_time=None, dest_lat=None, dest_lng=None,
                             origin_lat=None, origin_lng=None)
        second = make_booking(id="second", pickup_time=None)
        estimator = AsyncMock()
        plan = await plan_deliveries([first, second], estimator, minutes_per_km=2.0, now=NOW)
        assert plan[1].estimated_pickup_time == NOW + timedelta(minutes=int(SENTINEL_DISTANCE_KM * 2))
        estimator.estimate.assert_not_called()
