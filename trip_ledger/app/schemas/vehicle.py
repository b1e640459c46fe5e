"""
Vehicle Pydantic schemas.

Defines request and response models for vehicle registration.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List


class VehicleCreate(BaseModel):
    """Schema for registering a vehicle."""
    registration_number: str = Field(..., min_length=1, max_length=100, description="Unique vehicle registration number")
    vehicle_type: Optional[str] = Field(None, max_length=100, description="Vehicle type (e.g., Truck, Van)")
    fuel_type: Optional[str] = Field(None, max_length=50, description="Fuel type (e.g., Diesel, Petrol)")


class VehicleResponse(BaseModel):
    """Schema for vehicle response."""
    id: int
    owner_id: int
    registration_number: str
    vehicle_type: Optional[str]
    fuel_type: Optional[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class VehicleListResponse(BaseModel):
    """Schema for listing vehicles."""
    vehicles: List[VehicleResponse]
    total: int
