"""
Vehicle database model.

Vehicles own a trip ledger. The engine only reads them, for ownership
checks, the registration shown in messages and the per-vehicle row lock.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from trip_ledger.app.db.session import Base


class Vehicle(Base):
    """
    Vehicle model.

    A vehicle is registered by its owner and keys the trip ledger.
    """
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership - Vehicle belongs to a fleet owner
    owner_id = Column(Integer, nullable=False, index=True)

    # Vehicle identification
    registration_number = Column(String(100), unique=True, nullable=False, index=True)
    vehicle_type = Column(String(100), nullable=True)  # e.g., "Truck", "Van"
    fuel_type = Column(String(50), nullable=True)  # e.g., "Diesel", "Petrol"

    # Status
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Vehicle(id={self.id}, registration='{self.registration_number}', owner_id={self.owner_id})>"
