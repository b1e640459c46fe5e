"""
Ledger Integrity API Endpoints.

Mileage chain maintenance and read-only integrity reports over the
authenticated user's ledgers, plus the audit trail.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from trip_ledger.app.db.session import get_db
from trip_ledger.app.schemas.trip import MileageUpdateResponse
from trip_ledger.app.schemas.ledger import (
    MileageRebuildResponse,
    MileageChainReport,
    ChainBreakResponse,
    OverlapPairResponse,
    ContinuityAnalysisResponse,
    AnomalyGroupResponse,
    AvailabilityRequest,
    AvailabilityResponse,
    AuditLogResponse,
)
from trip_ledger.app.core.dependencies import get_current_user, get_ledger_service
from trip_ledger.app.services.audit import get_audit_trail
from trip_ledger.app.services.ledger_service import TripLedgerService

router = APIRouter(prefix="/ledger", tags=["Ledger Integrity"])


def _rebuild_response(result: dict) -> MileageRebuildResponse:
    return MileageRebuildResponse(
        vehicle_id=result["vehicle_id"],
        trips_processed=result["trips_processed"],
        trips_updated=result["trips_updated"],
        status=result["status"],
        updates=[MileageUpdateResponse.model_validate(u) for u in result["updates"]],
    )


@router.post("/vehicles/{vehicle_id}/mileage/rebuild", response_model=MileageRebuildResponse)
async def rebuild_mileage_chain(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    service: TripLedgerService = Depends(get_ledger_service)
):
    """Recompute fuel efficiency for every refueling trip of a vehicle."""
    return _rebuild_response(await service.rebuild_mileage_chain(vehicle_id))


@router.get("/vehicles/{vehicle_id}/mileage/validate", response_model=MileageChainReport)
async def validate_mileage_chain(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    service: TripLedgerService = Depends(get_ledger_service)
):
    """Compare stored and expected fuel efficiency per trip. Read-only."""
    return await service.validate_mileage_chain(vehicle_id, date_from, date_to)


@router.post("/vehicles/{vehicle_id}/mileage/repair", response_model=MileageChainReport)
async def repair_mileage_chain(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    service: TripLedgerService = Depends(get_ledger_service)
):
    """Rebuild the mileage chain and return the post-repair validation report."""
    return await service.validate_mileage_chain(vehicle_id, date_from, date_to, repair=True)


@router.get("/vehicles/{vehicle_id}/mileage/breaks", response_model=List[ChainBreakResponse])
async def detect_chain_breaks(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    service: TripLedgerService = Depends(get_ledger_service)
):
    """Adjacent trips whose odometer readings do not meet."""
    return await service.detect_chain_breaks(vehicle_id)


@router.get("/vehicles/{vehicle_id}/continuity", response_model=ContinuityAnalysisResponse)
async def analyze_vehicle_continuity(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    service: TripLedgerService = Depends(get_ledger_service)
):
    """Odometer gap statistics and a 0-100 continuity score for a vehicle."""
    return await service.analyze_vehicle_continuity(vehicle_id, date_from, date_to)


@router.get("/overlaps", response_model=List[OverlapPairResponse])
async def find_overlaps(
    vehicle_id: Optional[int] = Query(None),
    driver_id: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    service: TripLedgerService = Depends(get_ledger_service)
):
    """Pairs of trips sharing a vehicle or driver at the same time."""
    return await service.find_overlaps(vehicle_id, driver_id, date_from, date_to)


@router.get("/anomalies", response_model=List[AnomalyGroupResponse])
async def analyze_value_anomalies(
    vehicle_id: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    include_edge_cases: bool = Query(True, description="Include maintenance, test and long haul trips"),
    service: TripLedgerService = Depends(get_ledger_service)
):
    """Stored trips grouped by value anomaly, most severe first."""
    return await service.analyze_value_anomalies(vehicle_id, date_from, date_to, include_edge_cases)


@router.post("/availability", response_model=AvailabilityResponse)
async def check_availability(
    request: AvailabilityRequest,
    service: TripLedgerService = Depends(get_ledger_service)
):
    """Whether a vehicle and/or driver is free for an interval."""
    return await service.check_availability(
        request.start_time,
        request.end_time,
        vehicle_id=request.vehicle_id,
        driver_id=request.driver_id,
        exclude_trip_id=request.exclude_trip_id,
    )


@router.get("/audit", response_model=List[AuditLogResponse])
async def read_audit_trail(
    entity_id: Optional[str] = Query(None, description="Filter by entity ID (e.g. a trip ID)"),
    event_type: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """The authenticated user's audit trail, newest first."""
    entries = await get_audit_trail(
        db,
        owner_id=current_user["user_id"],
        entity_id=entity_id,
        event_type=event_type,
        limit=limit
    )
    return [AuditLogResponse.model_validate(e) for e in entries]
