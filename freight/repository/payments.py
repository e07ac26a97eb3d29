from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freight.models.payment import Payment


class PaymentRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, payment_id: str) -> Optional[Payment]:
        return await self.db.get(Payment, payment_id)

    async def get_for_update(self, payment_id: str) -> Optional[Payment]:
        """Row-locked fresh read; concurrent callbacks and refunds see each other's commits."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_request_id: str) -> Optional[Payment]:
        result = await self.db.execute(
            select(Payment).where(Payment.external_request_id == external_request_id)
        )
        return result.scalar_one_or_none()

    async def list_for_booking(self, booking_id: str) -> list[Payment]:
        result = await self.db.execute(
            select(Payment).where(Payment.booking_id == booking_id).order_by(Payment.created_at.asc())
        )
        return list(result.scalars().all())

    async def save(self, payment: Payment) -> Payment:
        self.db.add(payment)
        await self.db.commit()
        await self.db.refresh(payment)
        return payment

    async def rollback(self, *instances) -> None:
        """Discard a failed transaction and reload the given rows so they stay readable."""
        await self.db.rollback()
        for instance in instances:
            if instance in self.db:
                await self.db.refresh(instance)
