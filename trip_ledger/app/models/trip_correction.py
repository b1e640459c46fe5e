"""
Trip Correction database model.

One row per trip touched by an odometer correction. Immutable.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, DateTime
from sqlalchemy.sql import func
from trip_ledger.app.db.session import Base


class TripCorrection(Base):
    """
    Trip Correction model.

    ``field_name`` is ``end_km`` for the corrected trip and
    ``odometer_cascade`` for every trip shifted by the cascade, in which case
    the values are ``"start-end"`` pairs.
    """
    __tablename__ = "trip_corrections"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_id = Column(Integer, ForeignKey('trips.id', ondelete="CASCADE"), nullable=False, index=True)

    field_name = Column(String(50), nullable=False)
    old_value = Column(String(100), nullable=True)
    new_value = Column(String(100), nullable=True)
    correction_reason = Column(Text, nullable=True)
    affects_subsequent_trips = Column(Boolean, default=False, nullable=False)

    corrected_by = Column(Integer, nullable=False, index=True)
    corrected_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<TripCorrection(trip_id={self.trip_id}, field='{self.field_name}', {self.old_value}->{self.new_value})>"
