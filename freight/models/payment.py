import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Boolean, Numeric, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
from freight.database import Base


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id: Mapped[str] = mapped_column(String, ForeignKey("bookings.id"), nullable=False, index=True)
    customer_id: Mapped[str] = mapped_column(String, nullable=False)
    trucker_id: Mapped[str] = mapped_column(String, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(5), default="KES")
    method: Mapped[str] = mapped_column(String(20), nullable=False, default="mpesa")
    # pending | processing | completed | failed | cancelled | refunded
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    # held | released | refunded
    escrow_status: Mapped[str] = mapped_column(String(20), nullable=False, default="held", index=True)

    external_request_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    merchant_request_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    transaction_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    requires_manual_processing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    refund_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
