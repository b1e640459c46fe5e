"""
Audit trail service for ledger integrity events.

Entries are buffered while a ledger write runs and written afterwards in a
separate session, whether the write committed or rolled back. A failing
audit write is logged and never fails the ledger write.
"""

import logging
from typing import Optional, Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select, desc

from trip_ledger.app.models.audit_log import AuditLog
from trip_ledger.app.models.trip import Trip, EXPENSE_FIELDS
from trip_ledger.app.models.trip_enums import Severity

logger = logging.getLogger("trip_ledger.audit")


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    TRIP_CREATED = "TRIP_CREATED"
    TRIP_UPDATED = "TRIP_UPDATED"
    TRIP_WRITE_REJECTED = "TRIP_WRITE_REJECTED"

    VALUE_RANGE_VALIDATION = "VALUE_RANGE_VALIDATION"
    ODOMETER_CONTINUITY_VALIDATION = "ODOMETER_CONTINUITY_VALIDATION"

    TRIP_DELETED = "TRIP_DELETED"
    TRIP_DELETION_PREVENTED = "TRIP_DELETION_PREVENTED"
    TRIP_RECOVERED = "TRIP_RECOVERED"

    ODOMETER_CORRECTED = "ODOMETER_CORRECTED"
    ODOMETER_CASCADE = "ODOMETER_CASCADE"
    MILEAGE_RECALCULATED = "MILEAGE_RECALCULATED"

    VEHICLE_CREATED = "VEHICLE_CREATED"


def trip_state(trip: Trip) -> Dict[str, Any]:
    """JSON-safe snapshot of a trip for before/after audit states."""
    state = {
        "trip_id": trip.id,
        "trip_serial_number": trip.trip_serial_number,
        "vehicle_id": trip.vehicle_id,
        "driver_id": trip.driver_id,
        "start_time": trip.start_time.isoformat() if trip.start_time else None,
        "end_time": trip.end_time.isoformat() if trip.end_time else None,
        "start_km": trip.start_km,
        "end_km": trip.end_km,
        "refueling_done": trip.refueling_done,
        "fuel_quantity": trip.fuel_quantity,
        "calculated_kmpl": trip.calculated_kmpl,
        "trip_type": trip.trip_type,
        "deleted_at": trip.deleted_at.isoformat() if trip.deleted_at else None,
    }
    for field_name in EXPENSE_FIELDS:
        state[field_name] = getattr(trip, field_name)
    return state


class AuditTrail:
    """
    Buffer of audit entries for one unit of work.

    Args:
        actor_id: User performing the operation
        owner_id: Tenant the entries belong to
    """

    def __init__(self, actor_id: Optional[int], owner_id: Optional[int]):
        self.actor_id = actor_id
        self.owner_id = owner_id
        self.entries: List[Dict[str, Any]] = []

    def record(
        self,
        event_type: str,
        entity_type: str,
        entity_id: Any,
        summary: str,
        before_state: Optional[Dict[str, Any]] = None,
        after_state: Optional[Dict[str, Any]] = None,
        severity: Severity = Severity.INFO,
        tags: Optional[List[str]] = None,
        note: Optional[str] = None
    ) -> None:
        self.entries.append({
            "actor_id": self.actor_id,
            "owner_id": self.owner_id,
            "event_type": event_type,
            "entity_type": entity_type,
            "entity_id": str(entity_id) if entity_id is not None else None,
            "summary": summary[:255],
            "before_state": before_state,
            "after_state": after_state,
            "severity": Severity(severity).value,
            "tags": tags or [],
            "note": note,
        })

    async def flush(self, db: AsyncSession) -> int:
        """
        Write buffered entries in a session of their own.

        Args:
            db: Session of the unit of work; only its bind is reused

        Returns:
            Number of entries written (0 when the write failed)
        """
        entries, self.entries = self.entries, []
        if not entries:
            return 0

        try:
            await self._write(db, entries)
        except SQLAlchemyError:
            logger.exception("Failed to write %d audit entries", len(entries))
            return 0
        return len(entries)

    @staticmethod
    async def _write(db: AsyncSession, entries: List[Dict[str, Any]]) -> None:
        async with AsyncSession(bind=db.bind, expire_on_commit=False) as audit_session:
            audit_session.add_all([AuditLog(**entry) for entry in entries])
            await audit_session.commit()


async def log_event(
    db: AsyncSession,
    event_type: str,
    entity_type: str,
    entity_id: Any,
    summary: str,
    actor_id: Optional[int] = None,
    owner_id: Optional[int] = None,
    after_state: Optional[Dict[str, Any]] = None
) -> int:
    """
    Log a single event outside a ledger unit of work.

    Args:
        db: Database session
        event_type: Event being recorded (use AuditAction constants)
        entity_type: Kind of record affected
        entity_id: ID of the record affected
        summary: One-line description
        actor_id: ID of user performing the action
        owner_id: Tenant the entry belongs to
        after_state: State of the record after the action

    Returns:
        Number of entries written
    """
    trail = AuditTrail(actor_id=actor_id, owner_id=owner_id)
    trail.record(event_type, entity_type, entity_id, summary, after_state=after_state)
    return await trail.flush(db)


async def get_audit_trail(
    db: AsyncSession,
    owner_id: int,
    entity_id: Optional[Any] = None,
    event_type: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve an owner's audit trail with optional filtering.

    Args:
        db: Database session
        owner_id: Tenant whose entries are returned
        entity_id: Filter by entity ID
        event_type: Filter by event type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).where(AuditLog.owner_id == owner_id).order_by(
        desc(AuditLog.timestamp), desc(AuditLog.id)
    )

    if entity_id is not None:
        query = query.where(AuditLog.entity_id == str(entity_id))

    if event_type:
        query = query.where(AuditLog.event_type == event_type)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
