"""
Vehicle API Endpoints.

Minimal registration and lookup of the vehicles that own trip ledgers,
with strict ownership enforcement.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Path
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from trip_ledger.app.db.session import get_db
from trip_ledger.app.models.vehicle import Vehicle
from trip_ledger.app.schemas.vehicle import VehicleCreate, VehicleResponse, VehicleListResponse
from trip_ledger.app.core.dependencies import get_current_user
from trip_ledger.app.services.audit import log_event, AuditAction
from trip_ledger.app.services.vehicle_locking import get_owned_vehicle

router = APIRouter(prefix="/vehicles", tags=["Vehicles"])


@router.post("", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
async def register_vehicle(
    vehicle_data: VehicleCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Register a vehicle.

    The vehicle is owned by the authenticated user.
    """
    existing = await db.execute(
        select(Vehicle).where(Vehicle.registration_number == vehicle_data.registration_number)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Vehicle with this registration number already exists"
        )

    vehicle = Vehicle(
        owner_id=current_user["user_id"],
        registration_number=vehicle_data.registration_number,
        vehicle_type=vehicle_data.vehicle_type,
        fuel_type=vehicle_data.fuel_type,
        is_active=True
    )

    db.add(vehicle)
    await db.commit()
    await db.refresh(vehicle)

    await log_event(
        db=db,
        event_type=AuditAction.VEHICLE_CREATED,
        entity_type="vehicle",
        entity_id=vehicle.id,
        summary=f"Vehicle {vehicle.registration_number} registered",
        actor_id=current_user["user_id"],
        owner_id=current_user["user_id"],
        after_state={"registration_number": vehicle.registration_number}
    )

    return VehicleResponse.model_validate(vehicle)


@router.get("", response_model=VehicleListResponse)
async def list_own_vehicles(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the authenticated user's vehicles."""
    result = await db.execute(
        select(Vehicle).where(Vehicle.owner_id == current_user["user_id"]).order_by(Vehicle.id)
    )
    vehicles = result.scalars().all()

    return VehicleListResponse(
        vehicles=[VehicleResponse.model_validate(v) for v in vehicles],
        total=len(vehicles)
    )


@router.get("/{vehicle_id}", response_model=VehicleResponse)
async def get_vehicle(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get one of the authenticated user's vehicles."""
    vehicle = await get_owned_vehicle(db, current_user["user_id"], vehicle_id)
    return VehicleResponse.model_validate(vehicle)
