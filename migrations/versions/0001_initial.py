"""Initial schema: trucks, truck activity, removal requests, bookings, payments, notifications"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "trucks",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("trucker_id", sa.String, nullable=True),
        sa.Column("truck_type", sa.String(20), nullable=False),
        sa.Column("registration_number", sa.String(30), unique=True, nullable=False),
        sa.Column("capacity_weight", sa.Float, nullable=False),
        sa.Column("capacity_volume", sa.Float, nullable=True),
        sa.Column("rate_per_km", sa.Numeric(10, 2), nullable=True),
        sa.Column("rate_per_hour", sa.Numeric(10, 2), nullable=True),
        sa.Column("minimum_charge", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("lat", sa.Float, nullable=True),
        sa.Column("lng", sa.Float, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_trucks_trucker", "trucks", ["trucker_id"])

    op.create_table(
        "truck_activity",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("truck_id", sa.String, sa.ForeignKey("trucks.id"), nullable=False),
        sa.Column("action", sa.String(255), nullable=False),
        sa.Column("performed_by", sa.String, nullable=True),
        sa.Column("metadata", sa.JSON, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_truck_activity_truck", "truck_activity", ["truck_id"])

    op.create_table(
        "truck_removal_requests",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("truck_id", sa.String, sa.ForeignKey("trucks.id"), nullable=False),
        sa.Column("trucker_id", sa.String, nullable=False),
        sa.Column("reason", sa.String(1000), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("admin_note", sa.String(1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_removal_truck", "truck_removal_requests", ["truck_id"])
    op.create_index("idx_removal_status", "truck_removal_requests", ["status"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("customer_id", sa.String, nullable=False),
        sa.Column("trucker_id", sa.String, nullable=False),
        sa.Column("truck_id", sa.String, sa.ForeignKey("trucks.id"), nullable=False),
        sa.Column("origin_address", sa.String(500), nullable=False),
        sa.Column("origin_lat", sa.Float, nullable=True),
        sa.Column("origin_lng", sa.Float, nullable=True),
        sa.Column("origin_contact", sa.String(50), nullable=True),
        sa.Column("pickup_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("destination_address", sa.String(500), nullable=False),
        sa.Column("dest_lat", sa.Float, nullable=True),
        sa.Column("dest_lng", sa.Float, nullable=True),
        sa.Column("destination_contact", sa.String(50), nullable=True),
        sa.Column("dropoff_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cargo_type", sa.String(100), nullable=False),
        sa.Column("cargo_weight", sa.Float, nullable=False),
        sa.Column("cargo_volume", sa.Float, nullable=True),
        sa.Column("cargo_description", sa.String(2000), nullable=True),
        sa.Column("is_delicate", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("special_instructions", sa.String(2000), nullable=True),
        sa.Column("distance_km", sa.Numeric(10, 3), nullable=False),
        sa.Column("rate_per_km", sa.Numeric(10, 2), nullable=False),
        sa.Column("estimated_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(20), nullable=False, server_default="mpesa"),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_id", sa.String, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("tracking_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_arrival", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(1000), nullable=True),
        sa.Column("cancelled_by", sa.String, nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_bookings_customer", "bookings", ["customer_id"])
    op.create_index("idx_bookings_trucker_status", "bookings", ["trucker_id", "status"])
    op.create_index("idx_bookings_truck_status", "bookings", ["truck_id", "status"])
    op.create_index("idx_bookings_created", "bookings", ["created_at"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("booking_id", sa.String, sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("customer_id", sa.String, nullable=False),
        sa.Column("trucker_id", sa.String, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(5), server_default="KES"),
        sa.Column("method", sa.String(20), nullable=False, server_default="mpesa"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("escrow_status", sa.String(20), nullable=False, server_default="held"),
        sa.Column("external_request_id", sa.String(255), unique=True, nullable=True),
        sa.Column("merchant_request_id", sa.String(255), nullable=True),
        sa.Column("transaction_reference", sa.String(255), nullable=True),
        sa.Column("payer_phone", sa.String(20), nullable=True),
        sa.Column("requires_manual_processing", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("refund_reason", sa.String(1000), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_payments_booking", "payments", ["booking_id"])
    op.create_index("idx_payments_status", "payments", ["status"])
    op.create_index("idx_payments_escrow", "payments", ["escrow_status"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("user_id", sa.String, nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.String(2000), nullable=False),
        sa.Column("related_booking_id", sa.String, nullable=True),
        sa.Column("related_user_id", sa.String, nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_notifications_user", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("payments")
    op.drop_table("bookings")
    op.drop_table("truck_removal_requests")
    op.drop_table("truck_activity")
    op.drop_table("trucks")
