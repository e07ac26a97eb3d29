from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RoleEnum(str, Enum):
    customer = "customer"
    trucker = "trucker"
    admin = "admin"


class BookingStatusEnum(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_TRANSIT = "in-transit"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({
    BookingStatusEnum.PENDING.value,
    BookingStatusEnum.CONFIRMED.value,
    BookingStatusEnum.IN_TRANSIT.value,
})


class PaymentMethodEnum(str, Enum):
    mpesa = "mpesa"
    cash = "cash"
    bank = "bank"


class PaymentStatusEnum(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class EscrowStatusEnum(str, Enum):
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class BookingPaymentStatusEnum(str, Enum):
    """Booking-side view of the linked Payment."""
    PENDING = "pending"
    PROCESSING = "processing"
    HELD = "held"
    PAID = "paid"
    REFUNDED = "refunded"


class TruckTypeEnum(str, Enum):
    pickup = "pickup"
    lorry = "lorry"
    truck = "truck"
    container = "container"
    flatbed = "flatbed"


# ---------------------------------------------------------------------------
# Actor
# ---------------------------------------------------------------------------

class Actor(BaseModel):
    id: str
    role: RoleEnum
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.admin


# ---------------------------------------------------------------------------
# Booking request schemas
# ---------------------------------------------------------------------------

class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class OriginIn(BaseModel):
    address: str = Field(..., min_length=1, max_length=500)
    coordinates: Optional[Coordinates] = None
    contact: Optional[str] = None
    pickup_time: Optional[datetime] = None


class DestinationIn(BaseModel):
    address: str = Field(..., min_length=1, max_length=500)
    coordinates: Optional[Coordinates] = None
    contact: Optional[str] = None
    dropoff_time: Optional[datetime] = None


class CargoIn(BaseModel):
    type: str = Field(..., min_length=1, max_length=100)
    weight: float = Field(..., gt=0)
    volume: Optional[float] = Field(default=None, ge=0)
    description: Optional[str] = None
    is_delicate: bool = False


class BookingCreateRequest(BaseModel):
    truck_id: str
    origin: OriginIn
    destination: DestinationIn
    cargo: CargoIn
    special_instructions: Optional[str] = None
    payment_method: PaymentMethodEnum = PaymentMethodEnum.mpesa


class OriginPatch(BaseModel):
    address: Optional[str] = Field(default=None, min_length=1, max_length=500)
    coordinates: Optional[Coordinates] = None
    contact: Optional[str] = None
    pickup_time: Optional[datetime] = None


class DestinationPatch(BaseModel):
    address: Optional[str] = Field(default=None, min_length=1, max_length=500)
    coordinates: Optional[Coordinates] = None
    contact: Optional[str] = None
    dropoff_time: Optional[datetime] = None


class CargoPatch(BaseModel):
    type: Optional[str] = Field(default=None, min_length=1, max_length=100)
    weight: Optional[float] = Field(default=None, gt=0)
    volume: Optional[float] = Field(default=None, ge=0)
    description: Optional[str] = None
    is_delicate: Optional[bool] = None


class BookingEditRequest(BaseModel):
    origin: Optional[OriginPatch] = None
    destination: Optional[DestinationPatch] = None
    cargo: Optional[CargoPatch] = None
    special_instructions: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    # Plain string so unknown targets surface as a domain ValidationError.
    status: str
    cancellation_reason: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("status")
    @classmethod
    def strip_status(cls, v: str) -> str:
        return v.strip().lower()


class TrackingUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class GeocodeRequest(BaseModel):
    address: str = Field(..., min_length=1, max_length=500)


class GeocodeResponse(BaseModel):
    lat: float
    lng: float
    formatted_address: str


# ---------------------------------------------------------------------------
# Booking response schemas
# ---------------------------------------------------------------------------

class LocationOut(BaseModel):
    address: str
    coordinates: Optional[Coordinates] = None
    contact: Optional[str] = None
    time: Optional[datetime] = None


class CargoOut(BaseModel):
    type: str
    weight: float
    volume: Optional[float] = None
    description: Optional[str] = None
    is_delicate: bool = False


class PricingOut(BaseModel):
    distance_km: float
    rate_per_km: float
    estimated_amount: float
    currency: str = "KES"


class BookingPaymentOut(BaseModel):
    method: str
    status: BookingPaymentStatusEnum
    payment_id: Optional[str] = None


class TrackingOut(BaseModel):
    current_location: Optional[Coordinates] = None
    last_update: Optional[datetime] = None
    estimated_arrival: Optional[datetime] = None


class CancellationOut(BaseModel):
    reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class BookingWarning(BaseModel):
    message: str
    on_another_job: bool = True


class SequenceOut(BaseModel):
    position: int
    estimated_pickup_time: datetime


def _coords(lat: Optional[float], lng: Optional[float]) -> Optional[Coordinates]:
    if lat is None or lng is None:
        return None
    return Coordinates(lat=lat, lng=lng)


class BookingResponse(BaseModel):
    id: str
    customer_id: str
    trucker_id: str
    truck_id: str
    origin: LocationOut
    destination: LocationOut
    cargo: CargoOut
    special_instructions: Optional[str] = None
    pricing: PricingOut
    payment: BookingPaymentOut
    status: BookingStatusEnum
    tracking: Optional[TrackingOut] = None
    cancellation: Optional[CancellationOut] = None
    warning: Optional[BookingWarning] = None
    sequence: Optional[SequenceOut] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_booking(
        cls,
        booking,
        payment_status: Optional[str] = None,
        warning: Optional[BookingWarning] = None,
        sequence: Optional[SequenceOut] = None,
        currency: str = "KES",
    ) -> "BookingResponse":
        tracking = None
        if booking.tracking_updated_at is not None:
            tracking = TrackingOut(
                current_location=_coords(booking.current_lat, booking.current_lng),
                last_update=booking.tracking_updated_at,
                estimated_arrival=booking.estimated_arrival,
            )
        cancellation = None
        if booking.status == BookingStatusEnum.CANCELLED.value:
            cancellation = CancellationOut(
                reason=booking.cancellation_reason,
                cancelled_by=booking.cancelled_by,
                cancelled_at=booking.cancelled_at,
            )
        return cls(
            id=booking.id,
            customer_id=booking.customer_id,
            trucker_id=booking.trucker_id,
            truck_id=booking.truck_id,
            origin=LocationOut(
                address=booking.origin_address,
                coordinates=_coords(booking.origin_lat, booking.origin_lng),
                contact=booking.origin_contact,
                time=booking.pickup_time,
            ),
            destination=LocationOut(
                address=booking.destination_address,
                coordinates=_coords(booking.dest_lat, booking.dest_lng),
                contact=booking.destination_contact,
                time=booking.dropoff_time,
            ),
            cargo=CargoOut(
                type=booking.cargo_type,
                weight=booking.cargo_weight,
                volume=booking.cargo_volume,
                description=booking.cargo_description,
                is_delicate=bool(booking.is_delicate),
            ),
            special_instructions=booking.special_instructions,
            pricing=PricingOut(
                distance_km=float(booking.distance_km),
                rate_per_km=float(booking.rate_per_km),
                estimated_amount=float(booking.estimated_amount),
                currency=currency,
            ),
            payment=BookingPaymentOut(
                method=booking.payment_method,
                status=payment_status or booking.payment_status,
                payment_id=booking.payment_id,
            ),
            status=booking.status,
            tracking=tracking,
            cancellation=cancellation,
            warning=warning,
            sequence=sequence,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class TransitionResponse(BaseModel):
    booking: BookingResponse
    manual_refund_required: bool = False


# ---------------------------------------------------------------------------
# Payment schemas
# ---------------------------------------------------------------------------

class PaymentInitiateRequest(BaseModel):
    booking_id: str
    phone_number: str = Field(..., min_length=9, max_length=20)


class PaymentInitiateResponse(BaseModel):
    payment_id: str
    checkout_request_id: str
    customer_message: Optional[str] = None
    status: PaymentStatusEnum
    amount: float
    currency: str


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class PaymentResponse(BaseModel):
    payment_id: str
    booking_id: str
    amount: float
    currency: str
    status: PaymentStatusEnum
    escrow_status: EscrowStatusEnum
    requires_manual_processing: bool = False
    refund_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    @classmethod
    def from_payment(cls, payment) -> "PaymentResponse":
        return cls(
            payment_id=payment.id,
            booking_id=payment.booking_id,
            amount=float(payment.amount),
            currency=payment.currency,
            status=payment.status,
            escrow_status=payment.escrow_status,
            requires_manual_processing=bool(payment.requires_manual_processing),
            refund_reason=payment.refund_reason,
            paid_at=payment.paid_at,
            released_at=payment.released_at,
            refunded_at=payment.refunded_at,
        )


# ---------------------------------------------------------------------------
# Truck schemas
# ---------------------------------------------------------------------------

class TruckCreateRequest(BaseModel):
    truck_type: TruckTypeEnum
    registration_number: str = Field(..., min_length=3, max_length=30)
    capacity_weight: float = Field(..., gt=0)
    capacity_volume: Optional[float] = Field(default=None, gt=0)
    rate_per_km: Decimal = Field(..., gt=0)
    rate_per_hour: Optional[Decimal] = Field(default=None, gt=0)
    minimum_charge: Decimal = Field(..., gt=0)
    address: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class TruckResponse(BaseModel):
    id: str
    trucker_id: Optional[str] = None
    truck_type: str
    registration_number: str
    capacity_weight: float
    capacity_volume: Optional[float] = None
    rate_per_km: Optional[Decimal] = None
    rate_per_hour: Optional[Decimal] = None
    minimum_charge: Optional[Decimal] = None
    is_available: bool
    status: str
    address: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AvailabilityRequest(BaseModel):
    is_available: bool


class TruckActivityResponse(BaseModel):
    action: str
    performed_by: Optional[str] = None
    details: dict = Field(default_factory=dict)
    timestamp: datetime

    model_config = {"from_attributes": True}


class RemovalRequestCreate(BaseModel):
    reason: str = Field(..., max_length=1000)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 5:
            raise ValueError("reason must be at least 5 characters")
        return v


class RemovalRequestResponse(BaseModel):
    id: str
    truck_id: str
    trucker_id: str
    reason: str
    status: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
