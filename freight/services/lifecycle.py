"""
Booking lifecycle: the status state machine and everything it triggers.

    pending    -> confirmed | cancelled
    confirmed  -> in-transit | cancelled
    in-transit -> completed | cancelled
    completed, cancelled: terminal

Status changes are persisted first; side effects (escrow settlement, truck
availability, notifications, audit log) run afterwards, each on its own, and a
failing side effect is logged without undoing the transition.
"""
import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from freight.config import Settings, get_settings
from freight.errors import (
    AuthorizationError,
    ConflictError,
    FreightError,
    InvalidTransition,
    NotFoundError,
    OutOfBoundsError,
    ValidationError,
)
from freight.models.booking import Booking
from freight.schemas.schemas import (
    Actor,
    BookingCreateRequest,
    BookingEditRequest,
    BookingStatusEnum,
    Coordinates,
    RoleEnum,
)
from freight.services.distance import Point, make_point
from freight.services.escrow import SettlementOutcome, project_payment_status
from freight.services.notifier import notify_safely
from freight.services.pricing import quote_charge, require_rate_card
from freight.services.sequencer import SequencedBooking, plan_deliveries

logger = logging.getLogger(__name__)

PENDING = BookingStatusEnum.PENDING.value
CONFIRMED = BookingStatusEnum.CONFIRMED.value
IN_TRANSIT = BookingStatusEnum.IN_TRANSIT.value
COMPLETED = BookingStatusEnum.COMPLETED.value
CANCELLED = BookingStatusEnum.CANCELLED.value

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({IN_TRANSIT, CANCELLED}),
    IN_TRANSIT: frozenset({COMPLETED, CANCELLED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}

# Which party may drive each edge. Admins bypass this table.
EDGE_ROLES: dict[tuple[str, str], frozenset[RoleEnum]] = {
    (PENDING, CONFIRMED): frozenset({RoleEnum.trucker}),
    (PENDING, CANCELLED): frozenset({RoleEnum.customer, RoleEnum.trucker}),
    (CONFIRMED, IN_TRANSIT): frozenset({RoleEnum.trucker}),
    (CONFIRMED, CANCELLED): frozenset({RoleEnum.customer, RoleEnum.trucker}),
    (IN_TRANSIT, COMPLETED): frozenset({RoleEnum.trucker}),
    (IN_TRANSIT, CANCELLED): frozenset({RoleEnum.trucker}),
}

SEQUENCED_STATUSES = (PENDING, CONFIRMED)


def is_valid_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def validate_transition(current: str, target: str) -> None:
    if not is_valid_transition(current, target):
        raise InvalidTransition(current, target)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CreateResult:
    booking: Booking
    on_another_job: bool = False


@dataclass
class TransitionResult:
    booking: Booking
    previous_status: str
    settlement: Optional[SettlementOutcome] = None
    manual_refund_required: bool = False


class BookingLifecycle:
    def __init__(
        self,
        bookings,
        trucks,
        ledger,
        estimator,
        geocoder,
        notifier=None,
        locks=None,
        settings: Optional[Settings] = None,
    ):
        self.bookings = bookings
        self.trucks = trucks
        self.ledger = ledger
        self.estimator = estimator
        self.geocoder = geocoder
        self.notifier = notifier
        self.locks = locks
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Creation and editing
    # ------------------------------------------------------------------

    async def create_booking(self, actor: Actor, request: BookingCreateRequest) -> CreateResult:
        if actor.role != RoleEnum.customer:
            raise AuthorizationError("Only customers can create bookings")
        cargo = request.cargo
        if not cargo.type or not cargo.weight or cargo.weight <= 0:
            raise ValidationError("Cargo type and weight are required")

        truck = await self.trucks.get(request.truck_id)
        if truck is None:
            raise NotFoundError("Truck not found", truck_id=request.truck_id)
        if not truck.trucker_id:
            raise ValidationError("Truck does not have an assigned trucker", truck_id=truck.id)
        self._check_capacity(truck, cargo.weight)
        rate, minimum = require_rate_card(truck)

        active = await self.bookings.count_active_for_truck(truck.id)
        if not truck.is_available and active == 0:
            # Flag says unavailable and no job explains it: the trucker switched the truck off.
            raise ConflictError(
                "This truck is currently unavailable. Please select another truck.",
                truck_id=truck.id,
                unavailable=True,
            )

        origin_address, origin = await self._resolve(request.origin.address, request.origin.coordinates)
        dest_address, destination = await self._resolve(
            request.destination.address, request.destination.coordinates
        )
        estimate = await self.estimator.estimate(origin, destination)
        quote = quote_charge(estimate.distance_km, rate, minimum)

        booking = Booking(
            customer_id=actor.id,
            trucker_id=truck.trucker_id,
            truck_id=truck.id,
            origin_address=origin_address,
            origin_lat=origin.lat,
            origin_lng=origin.lng,
            origin_contact=request.origin.contact,
            pickup_time=request.origin.pickup_time,
            destination_address=dest_address,
            dest_lat=destination.lat,
            dest_lng=destination.lng,
            destination_contact=request.destination.contact,
            dropoff_time=request.destination.dropoff_time,
            cargo_type=cargo.type,
            cargo_weight=cargo.weight,
            cargo_volume=cargo.volume,
            cargo_description=cargo.description,
            is_delicate=cargo.is_delicate,
            special_instructions=request.special_instructions,
            distance_km=quote.distance_km,
            rate_per_km=quote.rate_per_km,
            estimated_amount=quote.estimated_amount,
            payment_method=request.payment_method.value,
            payment_status=project_payment_status(None),
            status=PENDING,
        )
        booking = await self.bookings.save(booking)
        logger.info("Booking %s created: truck=%s amount=%s on_another_job=%s",
                    booking.id, truck.id, booking.estimated_amount, active > 0)

        await self._audit(booking, "Booking created", actor, {"booking": booking.id, "status": booking.status})
        await notify_safely(
            self.notifier,
            truck.trucker_id,
            "booking_created",
            "New Booking Request",
            f"You have a new booking request from {actor.name or 'a customer'}. Please review and confirm.",
            related_booking_id=booking.id,
            related_user_id=actor.id,
        )
        return CreateResult(booking=booking, on_another_job=active > 0)

    async def edit_booking(self, actor: Actor, booking_id: str, changes: BookingEditRequest) -> Booking:
        async with self._hold(booking_id):
            booking = await self._load_for_update(booking_id)
            if actor.role != RoleEnum.customer or booking.customer_id != actor.id:
                raise AuthorizationError("Not authorized to edit this booking")
            if booking.status != PENDING:
                raise ConflictError(
                    "Booking can only be edited when status is pending. "
                    "Once confirmed by trucker, changes require communication.",
                    status=booking.status,
                )

            truck = await self.trucks.get(booking.truck_id)
            if truck is None:
                raise NotFoundError("Truck not found", truck_id=booking.truck_id)

            # Everything is validated and resolved before the booking is touched.
            updates: dict = {}
            if changes.cargo is not None:
                c = changes.cargo
                if c.weight is not None:
                    self._check_capacity(truck, c.weight)
                    updates["cargo_weight"] = c.weight
                for field, attr in (("type", "cargo_type"), ("volume", "cargo_volume"),
                                    ("description", "cargo_description"), ("is_delicate", "is_delicate")):
                    value = getattr(c, field)
                    if value is not None:
                        updates[attr] = value

            if changes.origin is not None:
                updates.update(await self._endpoint_updates(
                    changes.origin, booking.origin_address, "origin_address", "origin_lat", "origin_lng"))
                if changes.origin.contact is not None:
                    updates["origin_contact"] = changes.origin.contact
                if changes.origin.pickup_time is not None:
                    updates["pickup_time"] = changes.origin.pickup_time

            if changes.destination is not None:
                updates.update(await self._endpoint_updates(
                    changes.destination, booking.destination_address, "destination_address", "dest_lat", "dest_lng"))
                if changes.destination.contact is not None:
                    updates["destination_contact"] = changes.destination.contact
                if changes.destination.dropoff_time is not None:
                    updates["dropoff_time"] = changes.destination.dropoff_time

            if changes.special_instructions is not None:
                updates["special_instructions"] = changes.special_instructions

            old_origin = make_point(booking.origin_lat, booking.origin_lng)
            old_dest = make_point(booking.dest_lat, booking.dest_lng)
            new_origin = make_point(updates.get("origin_lat", booking.origin_lat),
                                    updates.get("origin_lng", booking.origin_lng))
            new_dest = make_point(updates.get("dest_lat", booking.dest_lat),
                                  updates.get("dest_lng", booking.dest_lng))
            if new_origin != old_origin or new_dest != old_dest:
                rate, minimum = require_rate_card(truck)
                estimate = await self.estimator.estimate(new_origin, new_dest)
                quote = quote_charge(estimate.distance_km, rate, minimum)
                updates["distance_km"] = quote.distance_km
                updates["rate_per_km"] = quote.rate_per_km
                updates["estimated_amount"] = quote.estimated_amount

            for attr, value in updates.items():
                setattr(booking, attr, value)
            booking = await self.bookings.save(booking)

        await notify_safely(
            self.notifier,
            booking.trucker_id,
            "booking_updated",
            "Booking Updated",
            "The booking has been updated by the customer. Please review the changes.",
            related_booking_id=booking.id,
            related_user_id=actor.id,
        )
        return booking

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def transition_status(
        self,
        actor: Actor,
        booking_id: str,
        target: str,
        cancellation_reason: Optional[str] = None,
    ) -> TransitionResult:
        try:
            target = BookingStatusEnum(target).value
        except ValueError:
            raise ValidationError(
                f"Unsupported status: {target}",
                allowed=[s.value for s in BookingStatusEnum],
            )

        async with self._hold(booking_id):
            # Re-read right before validating so a concurrent terminal transition is seen.
            booking = await self._load_for_update(booking_id)
            self._authorize_party(actor, booking, "Not authorized")
            current = booking.status
            validate_transition(current, target)
            self._authorize_edge(actor, current, target)

            booking.status = target
            if target == CANCELLED:
                booking.cancellation_reason = cancellation_reason
                booking.cancelled_by = actor.id
                booking.cancelled_at = _now()
            booking = await self.bookings.save(booking)

        logger.info("Booking %s: %s -> %s by %s=%s", booking.id, current, target, actor.role.value, actor.id)
        result = TransitionResult(booking=booking, previous_status=current)
        await self._after_transition(actor, result, cancellation_reason)
        return result

    async def _after_transition(self, actor: Actor, result: TransitionResult, reason: Optional[str]) -> None:
        booking = result.booking
        target = booking.status

        if target == CANCELLED:
            outcome = await self._side_effect(
                "refund policy", booking, self.ledger.settle_cancellation(booking, reason, actor)
            )
            result.settlement = outcome
            result.manual_refund_required = outcome == SettlementOutcome.MANUAL_INTERVENTION
            await self._side_effect("availability recompute", booking, self._recompute_availability(booking))
            await self._notify_cancellation(actor, booking, reason)

        elif target == COMPLETED:
            await self._side_effect("availability recompute", booking, self._recompute_availability(booking))
            await self._side_effect("escrow release", booking, self.ledger.release_on_delivery(booking))
            await notify_safely(
                self.notifier,
                booking.customer_id,
                "review",
                "Review Your Delivery",
                "Your delivery has been completed! Please rate and review your experience with the trucker.",
                related_booking_id=booking.id,
            )

        elif target == CONFIRMED:
            await notify_safely(
                self.notifier, booking.customer_id, "booking_confirmed", "Booking Confirmed",
                "Your booking has been confirmed by the trucker.",
                related_booking_id=booking.id, related_user_id=actor.id,
            )

        elif target == IN_TRANSIT:
            await notify_safely(
                self.notifier, booking.customer_id, "booking_in_transit", "Delivery Started",
                "Your cargo has been picked up and is on the way.",
                related_booking_id=booking.id, related_user_id=actor.id,
            )

        details = {"booking": booking.id, "status": target, "previous_status": result.previous_status}
        if reason:
            details["cancellation_reason"] = reason
        await self._audit(booking, f"Booking status updated to {target}", actor, details)

    async def _notify_cancellation(self, actor: Actor, booking: Booking, reason: Optional[str]) -> None:
        if actor.role == RoleEnum.trucker:
            recipients = [booking.customer_id]
        elif actor.role == RoleEnum.customer:
            recipients = [booking.trucker_id]
        else:
            recipients = [booking.customer_id, booking.trucker_id]
        message = f"Booking has been cancelled by {actor.name or 'the ' + actor.role.value}."
        if reason:
            message += f" Reason: {reason}"
        for user_id in recipients:
            await notify_safely(
                self.notifier, user_id, "booking_cancelled", "Booking Cancelled", message,
                related_booking_id=booking.id, related_user_id=actor.id,
            )

    async def _recompute_availability(self, booking: Booking) -> bool:
        # Always a fresh count; racing recomputes converge on the same answer.
        active = await self.bookings.count_active_for_truck(booking.truck_id, exclude_id=booking.id)
        available = active == 0
        await self.trucks.set_availability(booking.truck_id, available)
        return available

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def record_tracking(self, actor: Actor, booking_id: str, lat: float, lng: float) -> Booking:
        async with self._hold(booking_id):
            booking = await self._load_for_update(booking_id)
            if actor.role != RoleEnum.trucker or booking.trucker_id != actor.id:
                raise AuthorizationError("Only the assigned trucker can update tracking")
            if booking.status != IN_TRANSIT:
                raise ConflictError("Tracking updates are accepted only while the booking is in transit",
                                    status=booking.status)
            point = make_point(lat, lng)
            if point is None or not self._in_service_area(point):
                raise OutOfBoundsError("Location is outside the service area", lat=lat, lng=lng)

            now = _now()
            eta = booking.estimated_arrival
            destination = make_point(booking.dest_lat, booking.dest_lng)
            if destination is not None:
                try:
                    estimate = await self.estimator.estimate(point, destination)
                    eta = now + timedelta(minutes=estimate.duration_minutes)
                except FreightError as exc:
                    logger.warning("ETA estimate failed for booking=%s: %s", booking.id, exc)

            booking.current_lat = point.lat
            booking.current_lng = point.lng
            booking.tracking_updated_at = now
            booking.estimated_arrival = eta
            return await self.bookings.save(booking)

    def _in_service_area(self, point: Point) -> bool:
        s = self.settings
        return s.service_min_lat <= point.lat <= s.service_max_lat and \
            s.service_min_lng <= point.lng <= s.service_max_lng

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_booking(self, actor: Actor, booking_id: str) -> tuple[Booking, str]:
        """Booking plus its payment status recomputed from the Payment row."""
        booking = await self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", booking_id=booking_id)
        self._authorize_party(actor, booking, "Not authorized to view this booking")
        payment = await self.ledger.payment_for(booking)
        return booking, project_payment_status(payment)

    async def list_active_bookings_sequenced(self, actor: Actor) -> list[SequencedBooking]:
        if actor.role != RoleEnum.trucker:
            raise AuthorizationError("Only truckers have a delivery plan")
        active = await self.bookings.list_for_trucker(actor.id, SEQUENCED_STATUSES)
        return await plan_deliveries(
            active,
            self.estimator,
            minutes_per_km=self.settings.sequencing_minutes_per_km,
        )

    async def list_bookings(self, actor: Actor) -> list[SequencedBooking]:
        if actor.role == RoleEnum.customer:
            return [SequencedBooking(booking=b) for b in await self.bookings.list_for_customer(actor.id)]
        if actor.role != RoleEnum.trucker:
            raise AuthorizationError("Booking lists are available to customers and truckers")

        plan = {item.booking.id: item for item in await self.list_active_bookings_sequenced(actor)}
        everything = await self.bookings.list_for_trucker(actor.id)
        return [plan.get(b.id) or SequencedBooking(booking=b) for b in reversed(everything)]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _hold(self, booking_id: str):
        return self.locks.hold(booking_id) if self.locks is not None else nullcontext()

    async def _load_for_update(self, booking_id: str) -> Booking:
        booking = await self.bookings.get_for_update(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", booking_id=booking_id)
        return booking

    @staticmethod
    def _check_capacity(truck, weight: float) -> None:
        if weight > truck.capacity_weight:
            raise ValidationError(
                f"Cargo weight ({weight} tons) exceeds truck capacity ({truck.capacity_weight} tons)",
                weight=weight,
                capacity=truck.capacity_weight,
            )

    @staticmethod
    def _authorize_party(actor: Actor, booking: Booking, message: str) -> None:
        if actor.is_admin:
            return
        if actor.role == RoleEnum.customer and booking.customer_id == actor.id:
            return
        if actor.role == RoleEnum.trucker and booking.trucker_id == actor.id:
            return
        raise AuthorizationError(message)

    @staticmethod
    def _authorize_edge(actor: Actor, current: str, target: str) -> None:
        if actor.is_admin:
            return
        if actor.role not in EDGE_ROLES.get((current, target), frozenset()):
            raise AuthorizationError(
                f"A {actor.role.value} cannot move a booking from {current} to {target}",
                current=current,
                target=target,
            )

    async def _resolve(self, address: str, coordinates: Optional[Coordinates]) -> tuple[str, Point]:
        point = make_point(coordinates.lat, coordinates.lng) if coordinates is not None else None
        if point is not None:
            return address, point
        result = await self.geocoder.geocode(address)
        return result.formatted_address or address, result.point

    async def _endpoint_updates(self, patch, current_address: str,
                                address_attr: str, lat_attr: str, lng_attr: str) -> dict:
        updates: dict = {}
        if patch.coordinates is not None:
            updates[lat_attr] = patch.coordinates.lat
            updates[lng_attr] = patch.coordinates.lng
            if patch.address:
                updates[address_attr] = patch.address
        elif patch.address and patch.address != current_address:
            address, point = await self._resolve(patch.address, None)
            updates[address_attr] = address
            updates[lat_attr] = point.lat
            updates[lng_attr] = point.lng
        return updates

    async def _side_effect(self, label: str, booking: Booking, awaitable):
        try:
            return await awaitable
        except Exception as exc:
            logger.error("%s failed for booking=%s: %s", label, booking.id, exc, exc_info=True)
            await self.bookings.rollback(booking)
            return None

    async def _audit(self, booking: Booking, action: str, actor: Actor, details: dict) -> None:
        try:
            await self.trucks.append_activity(booking.truck_id, action, actor.id, details)
        except Exception as exc:
            logger.error("Truck activity log error for truck=%s: %s", booking.truck_id, exc, exc_info=True)
            await self.trucks.rollback(booking)
