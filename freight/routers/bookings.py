"""
Bookings router: create, edit, read, status transitions, tracking, delivery plan.
"""
import logging

from fastapi import APIRouter, Depends, Header, status

from freight.config import get_settings
from freight.dependencies import get_booking_service, get_geocoder
from freight.middleware.auth import get_current_actor
from freight.middleware.idempotency import check_idempotency, store_idempotency_result
from freight.redis_client import get_redis
from freight.schemas.schemas import (
    Actor,
    BookingCreateRequest,
    BookingEditRequest,
    BookingResponse,
    BookingWarning,
    GeocodeRequest,
    GeocodeResponse,
    SequenceOut,
    StatusUpdateRequest,
    TrackingUpdateRequest,
    TransitionResponse,
)
from freight.services.distance import Geocoder
from freight.services.lifecycle import BookingLifecycle
from freight.services.sequencer import SequencedBooking

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/bookings", tags=["Bookings"])

ON_ANOTHER_JOB_MESSAGE = (
    "This truck is currently on another job. "
    "The trucker will confirm if they can accommodate your booking."
)


def _sequenced_response(item: SequencedBooking) -> BookingResponse:
    sequence = None
    if item.position is not None:
        sequence = SequenceOut(position=item.position, estimated_pickup_time=item.estimated_pickup_time)
    return BookingResponse.from_booking(item.booking, sequence=sequence, currency=settings.currency)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=BookingResponse)
async def create_booking(
    payload: BookingCreateRequest,
    actor: Actor = Depends(get_current_actor),
    service: BookingLifecycle = Depends(get_booking_service),
    redis=Depends(get_redis),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    cached = await check_idempotency(redis, actor.id, idempotency_key)
    if cached:
        return cached

    result = await service.create_booking(actor, payload)
    warning = BookingWarning(message=ON_ANOTHER_JOB_MESSAGE) if result.on_another_job else None
    response = BookingResponse.from_booking(result.booking, warning=warning, currency=settings.currency)

    await store_idempotency_result(
        redis, actor.id, idempotency_key, status.HTTP_201_CREATED, response.model_dump(mode="json")
    )
    return response


@router.get("", response_model=list[BookingResponse])
async def list_bookings(
    actor: Actor = Depends(get_current_actor),
    service: BookingLifecycle = Depends(get_booking_service),
):
    return [_sequenced_response(item) for item in await service.list_bookings(actor)]


@router.get("/sequence", response_model=list[BookingResponse])
async def delivery_plan(
    actor: Actor = Depends(get_current_actor),
    service: BookingLifecycle = Depends(get_booking_service),
):
    """Active bookings in suggested pickup order."""
    return [_sequenced_response(item) for item in await service.list_active_bookings_sequenced(actor)]


@router.post("/geocode", response_model=GeocodeResponse)
async def geocode(
    payload: GeocodeRequest,
    actor: Actor = Depends(get_current_actor),
    geocoder: Geocoder = Depends(get_geocoder),
):
    result = await geocoder.geocode(payload.address)
    return GeocodeResponse(lat=result.point.lat, lng=result.point.lng, formatted_address=result.formatted_address)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    service: BookingLifecycle = Depends(get_booking_service),
):
    booking, payment_status = await service.get_booking(actor, booking_id)
    return BookingResponse.from_booking(booking, payment_status=payment_status, currency=settings.currency)


@router.patch("/{booking_id}", response_model=BookingResponse)
async def edit_booking(
    booking_id: str,
    payload: BookingEditRequest,
    actor: Actor = Depends(get_current_actor),
    service: BookingLifecycle = Depends(get_booking_service),
):
    booking = await service.edit_booking(actor, booking_id, payload)
    return BookingResponse.from_booking(booking, currency=settings.currency)


@router.put("/{booking_id}/status", response_model=TransitionResponse)
async def update_status(
    booking_id: str,
    payload: StatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    service: BookingLifecycle = Depends(get_booking_service),
):
    result = await service.transition_status(actor, booking_id, payload.status, payload.cancellation_reason)
    return TransitionResponse(
        booking=BookingResponse.from_booking(result.booking, currency=settings.currency),
        manual_refund_required=result.manual_refund_required,
    )


@router.post("/{booking_id}/tracking", response_model=BookingResponse)
async def update_tracking(
    booking_id: str,
    payload: TrackingUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    service: BookingLifecycle = Depends(get_booking_service),
):
    booking = await service.record_tracking(actor, booking_id, payload.lat, payload.lng)
    return BookingResponse.from_booking(booking, currency=settings.currency)
