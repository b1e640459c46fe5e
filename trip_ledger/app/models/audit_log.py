"""
Audit Log Database Model.

Append-only record of every ledger validation decision, warning and correction.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
from sqlalchemy.sql import func
from trip_ledger.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for ledger integrity events.

    Events logged:
    - TRIP_CREATED / TRIP_UPDATED / TRIP_WRITE_REJECTED
    - VALUE_RANGE_VALIDATION / ODOMETER_CONTINUITY_VALIDATION
    - TRIP_DELETED / TRIP_DELETION_PREVENTED / TRIP_RECOVERED
    - ODOMETER_CORRECTED / ODOMETER_CASCADE / MILEAGE_RECALCULATED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)

    # Tenant the entry belongs to
    owner_id = Column(Integer, index=True, nullable=True)

    # What happened
    event_type = Column(String(100), nullable=False, index=True)
    severity = Column(String(20), nullable=False, default="info", index=True)

    # What it happened to
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(100), nullable=True, index=True)
    summary = Column(String(255), nullable=True)

    # Change details (JSON for flexibility)
    before_state = Column(JSON, nullable=True)
    after_state = Column(JSON, nullable=True)
    tags = Column(JSON, nullable=True)
    note = Column(Text, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, event='{self.event_type}', entity={self.entity_type}:{self.entity_id}, severity={self.severity})>"
