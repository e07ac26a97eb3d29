"""
Trucks router: registration, availability toggle, activity log, removal requests.
"""
import logging

from fastapi import APIRouter, Depends, status

from freight.dependencies import get_truck_repository
from freight.errors import AuthorizationError, ConflictError, NotFoundError
from freight.middleware.auth import get_current_actor, get_current_trucker
from freight.models.truck import RemovalRequest, Truck
from freight.repository.trucks import TruckRepository
from freight.schemas.schemas import (
    Actor,
    AvailabilityRequest,
    RemovalRequestCreate,
    RemovalRequestResponse,
    RoleEnum,
    TruckActivityResponse,
    TruckCreateRequest,
    TruckResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/trucks", tags=["Trucks"])


async def _owned_truck(trucks: TruckRepository, truck_id: str, actor: Actor) -> Truck:
    truck = await trucks.get(truck_id)
    if truck is None:
        raise NotFoundError("Truck not found", truck_id=truck_id)
    if not actor.is_admin and truck.trucker_id != actor.id:
        raise AuthorizationError("Not authorized to manage this truck")
    return truck


@router.post("", status_code=status.HTTP_201_CREATED, response_model=TruckResponse)
async def register_truck(
    payload: TruckCreateRequest,
    actor: Actor = Depends(get_current_trucker),
    trucks: TruckRepository = Depends(get_truck_repository),
):
    registration = payload.registration_number.strip().upper()
    if await trucks.get_by_registration(registration):
        raise ConflictError("A truck with this registration number already exists",
                            registration_number=registration)

    truck = Truck(
        trucker_id=actor.id,
        truck_type=payload.truck_type.value,
        registration_number=registration,
        capacity_weight=payload.capacity_weight,
        capacity_volume=payload.capacity_volume,
        rate_per_km=payload.rate_per_km,
        rate_per_hour=payload.rate_per_hour,
        minimum_charge=payload.minimum_charge,
        is_available=True,
        status="active",
        address=payload.address,
        lat=payload.coordinates.lat if payload.coordinates else None,
        lng=payload.coordinates.lng if payload.coordinates else None,
    )
    truck = await trucks.save(truck)
    await trucks.append_activity(truck.id, "Truck registered", actor.id, {"registration_number": registration})
    logger.info("Truck %s registered by trucker=%s", truck.id, actor.id)
    return truck


@router.get("/{truck_id}", response_model=TruckResponse)
async def get_truck(
    truck_id: str,
    actor: Actor = Depends(get_current_actor),
    trucks: TruckRepository = Depends(get_truck_repository),
):
    truck = await trucks.get(truck_id)
    if truck is None:
        raise NotFoundError("Truck not found", truck_id=truck_id)
    return truck


@router.patch("/{truck_id}/availability", response_model=TruckResponse)
async def set_availability(
    truck_id: str,
    payload: AvailabilityRequest,
    actor: Actor = Depends(get_current_trucker),
    trucks: TruckRepository = Depends(get_truck_repository),
):
    truck = await _owned_truck(trucks, truck_id, actor)
    await trucks.set_availability(truck.id, payload.is_available)
    await trucks.append_activity(
        truck.id,
        "Availability changed",
        actor.id,
        {"is_available": payload.is_available},
    )
    return await trucks.get(truck.id)


@router.get("/{truck_id}/activity", response_model=list[TruckActivityResponse])
async def get_activity(
    truck_id: str,
    actor: Actor = Depends(get_current_actor),
    trucks: TruckRepository = Depends(get_truck_repository),
):
    truck = await _owned_truck(trucks, truck_id, actor)
    return await trucks.list_activity(truck.id)


@router.post("/{truck_id}/removal-request", status_code=status.HTTP_201_CREATED,
             response_model=RemovalRequestResponse)
async def request_removal(
    truck_id: str,
    payload: RemovalRequestCreate,
    actor: Actor = Depends(get_current_trucker),
    trucks: TruckRepository = Depends(get_truck_repository),
):
    if actor.role != RoleEnum.trucker:
        raise AuthorizationError("Only the truck owner can request removal")
    truck = await _owned_truck(trucks, truck_id, actor)
    if await trucks.has_pending_removal(truck.id):
        raise ConflictError("A removal request for this truck is already pending", truck_id=truck.id)

    request = await trucks.add_removal_request(
        RemovalRequest(truck_id=truck.id, trucker_id=actor.id, reason=payload.reason, status="pending")
    )
    await trucks.append_activity(truck.id, "Removal requested", actor.id, {"reason": payload.reason})
    return request
