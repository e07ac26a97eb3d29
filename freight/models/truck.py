import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Float, Boolean, Numeric, DateTime, ForeignKey, JSON, func
from sqlalchemy.orm import Mapped, mapped_column
from freight.database import Base


class Truck(Base):
    __tablename__ = "trucks"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    trucker_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    # pickup | lorry | truck | container | flatbed
    truck_type: Mapped[str] = mapped_column(String(20), nullable=False)
    registration_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)

    capacity_weight: Mapped[float] = mapped_column(Float, nullable=False)   # tons
    capacity_volume: Mapped[float | None] = mapped_column(Float, nullable=True)  # m3

    rate_per_km: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    rate_per_hour: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    minimum_charge: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # active | maintenance | inactive
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class TruckActivity(Base):
    """Append-only audit trail for a truck; rows are never updated."""
    __tablename__ = "truck_activity"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    truck_id: Mapped[str] = mapped_column(String, ForeignKey("trucks.id"), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    performed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    details: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class RemovalRequest(Base):
    __tablename__ = "truck_removal_requests"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    truck_id: Mapped[str] = mapped_column(String, ForeignKey("trucks.id"), nullable=False, index=True)
    trucker_id: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    # pending | approved
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    admin_note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
