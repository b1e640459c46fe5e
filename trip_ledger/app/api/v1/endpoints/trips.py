"""
Trip Ledger API Endpoints.

Every write goes through the ledger service, which validates it against
the vehicle's ledger and runs it as one atomic unit.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from trip_ledger.app.db.session import get_db
from trip_ledger.app.models.trip_correction import TripCorrection
from trip_ledger.app.schemas.trip import (
    TripCreate,
    TripUpdate,
    TripResponse,
    TripListResponse,
    TripWriteResponse,
    TripRecoverRequest,
    TripDeletionResponse,
    OdometerCorrectionRequest,
    OdometerPreviewRequest,
    CorrectionPreviewResponse,
    CorrectionResponse,
    FindingResponse,
    MileageUpdateResponse,
    TripCorrectionResponse,
)
from trip_ledger.app.core.dependencies import get_current_user, get_ledger_service
from trip_ledger.app.services.ledger_service import TripLedgerService
from trip_ledger.app.services.trip_store import TripStore
from trip_ledger.app.services.vehicle_locking import get_owned_vehicle

router = APIRouter(prefix="/trips", tags=["Trips"])


@router.post("", response_model=TripWriteResponse, status_code=status.HTTP_201_CREATED)
async def create_trip(
    trip_data: TripCreate,
    service: TripLedgerService = Depends(get_ledger_service)
):
    """
    Add a trip to a vehicle's ledger.

    Rejected with 422 when the trip breaks a value range, odometer
    continuity or overlaps another trip of the vehicle or driver. Warnings
    do not block and are returned in ``findings``.
    """
    result = await service.create_trip(trip_data.model_dump())
    return TripWriteResponse.model_validate(result)


@router.get("", response_model=TripListResponse)
async def list_trips(
    vehicle_id: Optional[int] = Query(None, description="Only trips of this vehicle"),
    driver_id: Optional[int] = Query(None, description="Only trips of this driver"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    include_deleted: bool = Query(False, description="Include soft-deleted trips"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the authenticated user's trips in ledger order."""
    owner_id = current_user["user_id"]
    if vehicle_id is not None:
        await get_owned_vehicle(db, owner_id, vehicle_id)

    trips = await TripStore.list_trips(
        db,
        owner_id,
        vehicle_id=vehicle_id,
        driver_id=driver_id,
        date_from=date_from,
        date_to=date_to,
        active_only=not include_deleted
    )

    return TripListResponse(
        trips=[TripResponse.model_validate(t) for t in trips],
        total=len(trips)
    )


@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get a trip (including soft-deleted ones)."""
    trip = await TripStore.get(db, current_user["user_id"], trip_id)
    return TripResponse.model_validate(trip)


@router.patch("/{trip_id}", response_model=TripWriteResponse)
async def update_trip(
    trip_id: int = Path(..., description="Trip ID"),
    trip_data: TripUpdate = ...,
    service: TripLedgerService = Depends(get_ledger_service)
):
    """
    Edit a trip.

    The full validation pipeline runs again, including forward continuity:
    raising a trip's end reading past the next trip's start is rejected;
    use an odometer correction instead.
    """
    patch = trip_data.model_dump(exclude_unset=True)
    if not patch:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update"
        )

    result = await service.update_trip(trip_id, patch)
    return TripWriteResponse.model_validate(result)


@router.delete("/{trip_id}", response_model=TripDeletionResponse)
async def delete_trip(
    trip_id: int = Path(..., description="Trip ID"),
    reason: Optional[str] = Query(None, max_length=500, description="Why the trip is deleted"),
    service: TripLedgerService = Depends(get_ledger_service)
):
    """
    Delete a trip.

    A refueling trip that later trips depend on for their mileage is
    soft-deleted instead (``outcome`` = ``soft_deleted``) and can be recovered.
    """
    result = await service.delete_trip(trip_id, reason)
    return TripDeletionResponse.model_validate(result)


@router.post("/{trip_id}/recover", response_model=TripWriteResponse)
async def recover_trip(
    trip_id: int = Path(..., description="Trip ID"),
    request: TripRecoverRequest = ...,
    service: TripLedgerService = Depends(get_ledger_service)
):
    """Recover a soft-deleted trip; it is re-validated against the current ledger."""
    result = await service.recover_trip(trip_id, request.reason)
    return TripWriteResponse.model_validate(result)


@router.post("/{trip_id}/odometer-correction/preview", response_model=CorrectionPreviewResponse)
async def preview_odometer_correction(
    trip_id: int = Path(..., description="Trip ID"),
    request: OdometerPreviewRequest = ...,
    service: TripLedgerService = Depends(get_ledger_service)
):
    """Show what correcting the trip's end reading would do. Nothing is written."""
    plan, findings = await service.preview_correction(trip_id, request.new_end_km)

    response = CorrectionPreviewResponse.model_validate(plan)
    response.blocking_findings = [FindingResponse.model_validate(f) for f in findings]
    return response


@router.post("/{trip_id}/odometer-correction", response_model=CorrectionResponse)
async def correct_odometer(
    trip_id: int = Path(..., description="Trip ID"),
    request: OdometerCorrectionRequest = ...,
    service: TripLedgerService = Depends(get_ledger_service)
):
    """
    Correct the trip's end reading.

    Every later trip of the vehicle is shifted by the same delta and
    refueling trips get their mileage recalculated, all in one transaction.
    """
    result = await service.correct_odometer(trip_id, request.new_end_km, request.reason)
    return CorrectionResponse.model_validate(result)


@router.get("/{trip_id}/corrections", response_model=List[TripCorrectionResponse])
async def list_trip_corrections(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Odometer corrections recorded for a trip, oldest first."""
    await TripStore.get(db, current_user["user_id"], trip_id)

    result = await db.execute(
        select(TripCorrection).where(TripCorrection.trip_id == trip_id).order_by(TripCorrection.id)
    )
    return [TripCorrectionResponse.model_validate(c) for c in result.scalars().all()]


@router.post("/{trip_id}/mileage/recalculate", response_model=MileageUpdateResponse)
async def recalculate_trip_mileage(
    trip_id: int = Path(..., description="Trip ID"),
    force: bool = Query(False, description="Write the value even if it did not drift"),
    service: TripLedgerService = Depends(get_ledger_service)
):
    """Recompute a trip's tank-to-tank fuel efficiency."""
    result = await service.recalculate_trip_mileage(trip_id, force=force)
    return MileageUpdateResponse.model_validate(result)
