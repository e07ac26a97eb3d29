import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Float, Boolean, Numeric, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
from freight.database import Base


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    trucker_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    truck_id: Mapped[str] = mapped_column(String, ForeignKey("trucks.id"), nullable=False, index=True)

    origin_address: Mapped[str] = mapped_column(String(500), nullable=False)
    origin_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    origin_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    origin_contact: Mapped[str | None] = mapped_column(String(50), nullable=True)
    pickup_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    destination_address: Mapped[str] = mapped_column(String(500), nullable=False)
    dest_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    dest_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    destination_contact: Mapped[str | None] = mapped_column(String(50), nullable=True)
    dropoff_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cargo_type: Mapped[str] = mapped_column(String(100), nullable=False)
    cargo_weight: Mapped[float] = mapped_column(Float, nullable=False)  # tons
    cargo_volume: Mapped[float | None] = mapped_column(Float, nullable=True)
    cargo_description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    is_delicate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    special_instructions: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    distance_km: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    rate_per_km: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    estimated_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # mpesa | cash | bank
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="mpesa")
    # Cached projection of the linked Payment: pending | processing | held | paid | refunded
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_id: Mapped[str | None] = mapped_column(String, nullable=True)

    # pending | confirmed | in-transit | completed | cancelled
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)

    current_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    tracking_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_arrival: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
