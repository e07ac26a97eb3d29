from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from freight.models.booking import Booking
from freight.schemas.schemas import ACTIVE_STATUSES


class BookingRepository:
    """SQLAlchemy-backed booking store. Every write is its own commit."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, booking_id: str) -> Optional[Booking]:
        return await self.db.get(Booking, booking_id)

    async def get_for_update(self, booking_id: str) -> Optional[Booking]:
        """Fresh read with a row lock, bypassing the identity map's cached state."""
        result = await self.db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def save(self, booking: Booking) -> Booking:
        self.db.add(booking)
        await self.db.commit()
        await self.db.refresh(booking)
        return booking

    async def count_active_for_truck(self, truck_id: str, exclude_id: Optional[str] = None) -> int:
        query = select(func.count(Booking.id)).where(
            Booking.truck_id == truck_id,
            Booking.status.in_(ACTIVE_STATUSES),
        )
        if exclude_id is not None:
            query = query.where(Booking.id != exclude_id)
        result = await self.db.execute(query)
        return int(result.scalar_one())

    async def list_for_trucker(self, trucker_id: str, statuses: Optional[Iterable[str]] = None) -> list[Booking]:
        query = select(Booking).where(Booking.trucker_id == trucker_id)
        if statuses is not None:
            query = query.where(Booking.status.in_(list(statuses)))
        result = await self.db.execute(query.order_by(Booking.created_at.asc(), Booking.id.asc()))
        return list(result.scalars().all())

    async def list_for_customer(self, customer_id: str) -> list[Booking]:
        result = await self.db.execute(
            select(Booking).where(Booking.customer_id == customer_id).order_by(Booking.created_at.desc())
        )
        return list(result.scalars().all())

    async def rollback(self, *instances) -> None:
        """Discard a failed transaction and reload the given rows so they stay readable."""
        await self.db.rollback()
        for instance in instances:
            if instance in self.db:
                await self.db.refresh(instance)
