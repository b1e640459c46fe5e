"""
Ledger report Pydantic schemas.

Response models for mileage chain maintenance, integrity reports and the
audit trail.
"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional, List, Dict, Any

from trip_ledger.app.schemas.trip import MileageUpdateResponse, to_naive_utc


class MileageRebuildResponse(BaseModel):
    """Result of rebuilding a vehicle's mileage chain."""
    vehicle_id: int
    trips_processed: int
    trips_updated: int
    status: str
    updates: List[MileageUpdateResponse]


class MileageChainEntry(BaseModel):
    """Stored versus expected fuel efficiency of one trip."""
    trip_id: int
    trip_serial: str
    start_time: datetime
    refueling_done: bool
    distance_km: int
    fuel_quantity: Optional[float]
    stored_kmpl: Optional[float]
    expected_kmpl: Optional[float]
    method: str
    anchor_serial: Optional[str]
    chain_valid: bool
    unrealistic: bool
    message: str


class MileageChainReport(BaseModel):
    vehicle_id: int
    total_trips: int
    invalid_count: int
    unrealistic_count: int
    repaired: bool
    trips_repaired: int
    entries: List[MileageChainEntry]


class ChainBreakResponse(BaseModel):
    """Adjacent trips whose odometer readings do not meet."""
    previous_trip_id: int
    previous_trip_serial: str
    previous_end_km: int
    trip_id: int
    trip_serial: str
    start_km: int
    gap_km: int
    break_type: str
    suggested_action: str


class OverlapPairResponse(BaseModel):
    """Two trips sharing a vehicle or driver at the same time."""
    trip_id: int
    trip_serial: str
    conflicting_trip_id: int
    conflicting_trip_serial: str
    vehicle_id: int
    conflicting_vehicle_id: int
    driver_id: Optional[int]
    conflicting_driver_id: Optional[int]
    overlap_type: str
    conflict_scope: str
    overlap_hours: float
    severity: str
    suggested_fix: str


class ContinuityIssue(BaseModel):
    gap_class: str
    gap_km: int
    previous_trip_id: int
    previous_trip_serial: str
    trip_id: int
    trip_serial: str


class ContinuityAnalysisResponse(BaseModel):
    """Odometer continuity summary of a vehicle."""
    vehicle_id: int
    registration_number: str
    total_trips: int
    perfect_continuity_count: int
    small_gaps_count: int
    moderate_gaps_count: int
    large_gaps_count: int
    negative_gaps_count: int
    total_gap_km: int
    avg_gap_km: float
    max_gap_km: int
    continuity_score: int = Field(..., ge=0, le=100)
    issues: List[ContinuityIssue]
    recommendations: List[str]


class AnomalyGroupResponse(BaseModel):
    """Trips sharing one value anomaly."""
    anomaly_type: str
    severity: str
    trip_count: int
    trip_ids: List[int]
    trip_serials: List[str]
    details: Dict[str, Any]
    recommendation: str


class AvailabilityRequest(BaseModel):
    """Interval to check a vehicle and/or driver against."""
    start_time: datetime
    end_time: datetime
    vehicle_id: Optional[int] = None
    driver_id: Optional[int] = None
    exclude_trip_id: Optional[int] = Field(None, description="Trip being edited, ignored as a conflict")

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_timezone(cls, value):
        return to_naive_utc(value)


class AvailabilityConflict(BaseModel):
    trip_id: int
    trip_serial: str
    vehicle_id: int
    driver_id: Optional[int]
    start_time: datetime
    end_time: datetime
    conflict_type: str


class AvailabilityResponse(BaseModel):
    is_available: bool
    conflict_count: int
    conflicts: List[AvailabilityConflict]


class AuditLogResponse(BaseModel):
    """Schema for an audit trail entry."""
    id: int
    actor_id: Optional[int]
    event_type: str
    severity: str
    entity_type: str
    entity_id: Optional[str]
    summary: Optional[str]
    before_state: Optional[Dict[str, Any]]
    after_state: Optional[Dict[str, Any]]
    tags: Optional[List[str]]
    note: Optional[str]
    timestamp: datetime

    class Config:
        from_attributes = True
