"""
Trip database model.

A trip is one entry in a vehicle's ledger: a time interval with odometer
readings, an optional fuel event and the expenses booked against it.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, Text, ForeignKey, DateTime, Index
from sqlalchemy.sql import func
from trip_ledger.app.db.session import Base


EXPENSE_FIELDS = (
    "fuel_expense",
    "driver_expense",
    "toll_expense",
    "miscellaneous_expense",
    "breakdown_expense",
)


class Trip(Base):
    """
    Trip model.

    Trip times are stored as naive UTC. Deletion is logical: ``deleted_at``
    marks a soft-deleted trip that is kept for mileage chain integrity.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership - Trip belongs to the user who created it
    owner_id = Column(Integer, nullable=False, index=True)

    # Vehicle and driver
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    driver_id = Column(Integer, nullable=True, index=True)

    # Human-readable identifier used in messages
    trip_serial_number = Column(String(50), nullable=False)

    # Interval
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)

    # Odometer
    start_km = Column(Integer, nullable=False)
    end_km = Column(Integer, nullable=False)

    # Fuel event
    refueling_done = Column(Boolean, default=False, nullable=False)
    fuel_quantity = Column(Float, nullable=True)
    calculated_kmpl = Column(Float, nullable=True)

    # Classification
    trip_type = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    # Expenses
    fuel_expense = Column(Float, nullable=True)
    driver_expense = Column(Float, nullable=True)
    toll_expense = Column(Float, nullable=True)
    miscellaneous_expense = Column(Float, nullable=True)
    breakdown_expense = Column(Float, nullable=True)

    # Soft delete
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    deletion_reason = Column(Text, nullable=True)
    deleted_by = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_trips_owner_vehicle_start', 'owner_id', 'vehicle_id', 'start_time'),
    )

    @property
    def distance_km(self) -> int:
        return self.end_km - self.start_km

    @property
    def is_refueling(self) -> bool:
        """True when the trip takes part in the tank-to-tank mileage chain."""
        return bool(self.refueling_done) and (self.fuel_quantity or 0) > 0

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self):
        return f"<Trip(id={self.id}, serial='{self.trip_serial_number}', vehicle_id={self.vehicle_id}, km={self.start_km}-{self.end_km})>"
