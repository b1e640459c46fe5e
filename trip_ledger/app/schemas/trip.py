"""
Trip Pydantic schemas.

Defines request and response models for trip ledger writes. Incoming
timestamps are normalized to naive UTC, the form trips are stored in.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class TripFields(BaseModel):
    """Editable trip fields shared by create and update."""
    driver_id: Optional[int] = Field(None, description="Driver on the trip")
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    start_km: Optional[int] = Field(None, ge=0, description="Odometer at trip start (km)")
    end_km: Optional[int] = Field(None, ge=0, description="Odometer at trip end (km)")
    refueling_done: Optional[bool] = None
    fuel_quantity: Optional[float] = Field(None, ge=0, description="Fuel added (litres)")
    trip_type: Optional[str] = Field(None, max_length=50, description="e.g. regular, maintenance, test, long_haul")
    notes: Optional[str] = None
    fuel_expense: Optional[float] = Field(None, ge=0)
    driver_expense: Optional[float] = Field(None, ge=0)
    toll_expense: Optional[float] = Field(None, ge=0)
    miscellaneous_expense: Optional[float] = Field(None, ge=0)
    breakdown_expense: Optional[float] = Field(None, ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_timezone(cls, value):
        return to_naive_utc(value)


class TripCreate(TripFields):
    """Schema for adding a trip to a vehicle's ledger."""
    vehicle_id: int
    trip_serial_number: Optional[str] = Field(None, max_length=50, description="Generated when omitted")
    start_time: datetime
    end_time: datetime
    start_km: int = Field(..., ge=0)
    end_km: int = Field(..., ge=0)
    refueling_done: bool = False


class TripUpdate(TripFields):
    """Schema for editing a trip. The vehicle of a trip cannot change."""
    trip_serial_number: Optional[str] = Field(None, min_length=1, max_length=50)

    @model_validator(mode="after")
    def reject_explicit_nulls(self):
        # Readings and times can be changed but not cleared
        for name in ("start_time", "end_time", "start_km", "end_km", "refueling_done", "trip_serial_number"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class TripResponse(BaseModel):
    """Schema for trip response."""
    id: int
    owner_id: int
    vehicle_id: int
    driver_id: Optional[int]
    trip_serial_number: str
    start_time: datetime
    end_time: datetime
    start_km: int
    end_km: int
    distance_km: int
    refueling_done: bool
    fuel_quantity: Optional[float]
    calculated_kmpl: Optional[float]
    trip_type: Optional[str]
    notes: Optional[str]
    fuel_expense: Optional[float]
    driver_expense: Optional[float]
    toll_expense: Optional[float]
    miscellaneous_expense: Optional[float]
    breakdown_expense: Optional[float]
    deleted_at: Optional[datetime]
    deletion_reason: Optional[str]
    deleted_by: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TripListResponse(BaseModel):
    """Schema for a vehicle ledger listing."""
    trips: List[TripResponse]
    total: int


class FindingResponse(BaseModel):
    """A non-blocking validation finding (warning or info)."""
    severity: str
    code: str
    message: str
    context: Dict[str, Any] = {}
    tags: List[str] = []

    class Config:
        from_attributes = True


class MileageUpdateResponse(BaseModel):
    """A fuel efficiency value written by the mileage chain."""
    trip_id: Optional[int]
    trip_serial_number: str
    old_kmpl: Optional[float]
    new_kmpl: Optional[float]
    method: str
    method_label: str
    anchor_serial_number: Optional[str]
    changed: bool

    class Config:
        from_attributes = True


class TripWriteResponse(BaseModel):
    """Result of a create, update or recovery."""
    trip: TripResponse
    findings: List[FindingResponse]
    mileage_updates: List[MileageUpdateResponse]

    class Config:
        from_attributes = True


class TripRecoverRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class TripDeletionResponse(BaseModel):
    """What the deletion guard did with a delete request."""
    trip_id: int
    trip_serial_number: str
    outcome: str
    impact: str
    message: str
    later_trip_count: int
    affected_trips: List[str]
    mileage_updates: List[MileageUpdateResponse]

    class Config:
        from_attributes = True


class OdometerCorrectionRequest(BaseModel):
    """Schema for correcting a trip's end reading."""
    new_end_km: int = Field(..., ge=0, description="Corrected odometer at trip end (km)")
    reason: str = Field(..., min_length=1, max_length=500)


class OdometerPreviewRequest(BaseModel):
    new_end_km: int = Field(..., ge=0)


class CascadeShiftResponse(BaseModel):
    """Readings of one later trip before and after a cascade."""
    trip_id: Optional[int]
    trip_serial_number: str
    old_start_km: int
    old_end_km: int
    new_start_km: int
    new_end_km: int
    old_kmpl: Optional[float]
    projected_kmpl: Optional[float]

    class Config:
        from_attributes = True


class CorrectionPreviewResponse(BaseModel):
    """Would-be effect of an odometer correction."""
    trip_id: Optional[int]
    trip_serial_number: str
    old_end_km: int
    new_end_km: int
    delta: int
    old_kmpl: Optional[float]
    projected_kmpl: Optional[float]
    total_affected: int
    truncated: bool
    shifts: List[CascadeShiftResponse]
    blocking_findings: List[FindingResponse] = []

    class Config:
        from_attributes = True


class CorrectionResponse(BaseModel):
    """Result of a committed odometer correction."""
    trip: TripResponse
    delta: int
    shifted_count: int
    shifts: List[CascadeShiftResponse]
    findings: List[FindingResponse]
    mileage_updates: List[MileageUpdateResponse]

    class Config:
        from_attributes = True


class TripCorrectionResponse(BaseModel):
    """Schema for a recorded odometer correction."""
    id: int
    trip_id: int
    field_name: str
    old_value: Optional[str]
    new_value: Optional[str]
    correction_reason: Optional[str]
    affects_subsequent_trips: bool
    corrected_by: int
    corrected_at: datetime

    class Config:
        from_attributes = True
