from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freight.models.truck import RemovalRequest, Truck, TruckActivity


class TruckRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, truck_id: str) -> Optional[Truck]:
        return await self.db.get(Truck, truck_id)

    async def get_by_registration(self, registration_number: str) -> Optional[Truck]:
        result = await self.db.execute(
            select(Truck).where(Truck.registration_number == registration_number)
        )
        return result.scalar_one_or_none()

    async def save(self, truck: Truck) -> Truck:
        self.db.add(truck)
        await self.db.commit()
        await self.db.refresh(truck)
        return truck

    async def set_availability(self, truck_id: str, available: bool) -> None:
        truck = await self.db.get(Truck, truck_id)
        if truck is None or truck.is_available == available:
            return
        truck.is_available = available
        await self.db.commit()

    async def append_activity(
        self,
        truck_id: str,
        action: str,
        performed_by: Optional[str],
        details: Optional[dict] = None,
    ) -> None:
        self.db.add(
            TruckActivity(
                truck_id=truck_id,
                action=action,
                performed_by=performed_by,
                details=details or {},
                timestamp=datetime.now(timezone.utc),
            )
        )
        await self.db.commit()

    async def list_activity(self, truck_id: str) -> list[TruckActivity]:
        result = await self.db.execute(
            select(TruckActivity)
            .where(TruckActivity.truck_id == truck_id)
            .order_by(TruckActivity.timestamp.asc())
        )
        return list(result.scalars().all())

    async def has_pending_removal(self, truck_id: str) -> bool:
        result = await self.db.execute(
            select(RemovalRequest.id).where(
                RemovalRequest.truck_id == truck_id,
                RemovalRequest.status == "pending",
            )
        )
        return result.first() is not None

    async def add_removal_request(self, request: RemovalRequest) -> RemovalRequest:
        self.db.add(request)
        await self.db.commit()
        await self.db.refresh(request)
        return request

    async def rollback(self, *instances) -> None:
        """Discard a failed transaction and reload the given rows so they stay readable."""
        await self.db.rollback()
        for instance in instances:
            if instance in self.db:
                await self.db.refresh(instance)
