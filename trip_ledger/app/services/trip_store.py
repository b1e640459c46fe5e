"""
Trip Store.

Owner-scoped persistence of trips. Every call takes the owner explicitly;
ledger rules are checked by the ledger service.
Mutations are flushed, never committed.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from trip_ledger.app.core.exceptions import AuthorizationError, ResourceNotFoundError
from trip_ledger.app.models.trip import Trip


def day_bounds(date_from: Optional[date], date_to: Optional[date]):
    """Turn an inclusive date range into ``[start, end)`` datetimes."""
    start = datetime.combine(date_from, time.min) if date_from else None
    end = datetime.combine(date_to + timedelta(days=1), time.min) if date_to else None
    return start, end


class TripStore:

    @staticmethod
    async def get(db: AsyncSession, owner_id: int, trip_id: int) -> Trip:
        """
        Fetch a trip, deleted or not.

        Raises:
            ResourceNotFoundError: If no trip has this ID
            AuthorizationError: If the trip belongs to another owner
        """
        result = await db.execute(select(Trip).where(Trip.id == trip_id))
        trip = result.scalar_one_or_none()

        if not trip:
            raise ResourceNotFoundError("Trip", trip_id)
        if trip.owner_id != owner_id:
            raise AuthorizationError(
                "You can only access your own trips",
                details={"trip_id": trip_id}
            )
        return trip

    @staticmethod
    async def get_vehicle_id(db: AsyncSession, owner_id: int, trip_id: int) -> int:
        """Resolve the vehicle of a trip without loading the trip itself."""
        result = await db.execute(
            select(Trip.vehicle_id, Trip.owner_id).where(Trip.id == trip_id)
        )
        row = result.one_or_none()

        if row is None:
            raise ResourceNotFoundError("Trip", trip_id)
        if row.owner_id != owner_id:
            raise AuthorizationError(
                "You can only access your own trips",
                details={"trip_id": trip_id}
            )
        return row.vehicle_id

    @staticmethod
    async def list_by_vehicle_ordered_by_start(
        db: AsyncSession,
        owner_id: int,
        vehicle_id: int,
        active_only: bool = True
    ) -> List[Trip]:
        query = select(Trip).where(
            Trip.owner_id == owner_id,
            Trip.vehicle_id == vehicle_id
        )
        if active_only:
            query = query.where(Trip.deleted_at.is_(None))

        result = await db.execute(query.order_by(Trip.start_time, Trip.id))
        return list(result.scalars().all())

    @staticmethod
    async def list_by_driver(
        db: AsyncSession,
        owner_id: int,
        driver_id: int,
        active_only: bool = True
    ) -> List[Trip]:
        query = select(Trip).where(
            Trip.owner_id == owner_id,
            Trip.driver_id == driver_id
        )
        if active_only:
            query = query.where(Trip.deleted_at.is_(None))

        result = await db.execute(query.order_by(Trip.start_time, Trip.id))
        return list(result.scalars().all())

    @staticmethod
    async def list_trips(
        db: AsyncSession,
        owner_id: int,
        vehicle_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        active_only: bool = True
    ) -> List[Trip]:
        """Owner's trips, filtered by vehicle, driver and start date."""
        query = select(Trip).where(Trip.owner_id == owner_id)

        if vehicle_id is not None:
            query = query.where(Trip.vehicle_id == vehicle_id)
        if driver_id is not None:
            query = query.where(Trip.driver_id == driver_id)
        if active_only:
            query = query.where(Trip.deleted_at.is_(None))

        start, end = day_bounds(date_from, date_to)
        if start is not None:
            query = query.where(Trip.start_time >= start)
        if end is not None:
            query = query.where(Trip.start_time < end)

        result = await db.execute(query.order_by(Trip.start_time, Trip.id))
        return list(result.scalars().all())

    @staticmethod
    async def next_serial(db: AsyncSession, owner_id: int, vehicle_id: int) -> str:
        """Next free ``T{vehicle}-{n}`` serial for a vehicle."""
        result = await db.execute(
            select(Trip.trip_serial_number).where(
                Trip.owner_id == owner_id,
                Trip.vehicle_id == vehicle_id
            )
        )
        taken = set(result.scalars().all())

        n = len(taken) + 1
        while f"T{vehicle_id}-{n:04d}" in taken:
            n += 1
        return f"T{vehicle_id}-{n:04d}"

    @staticmethod
    async def insert(db: AsyncSession, owner_id: int, trip: Trip) -> Trip:
        trip.owner_id = owner_id
        db.add(trip)
        await db.flush()
        return trip

    @staticmethod
    async def update(db: AsyncSession, owner_id: int, trip: Trip, patch: Dict[str, Any]) -> Trip:
        """Apply a field patch to an owned trip (in memory until flushed)."""
        if trip.owner_id != owner_id:
            raise AuthorizationError("You can only modify your own trips", details={"trip_id": trip.id})
        for field_name, value in patch.items():
            setattr(trip, field_name, value)
        return trip

    @staticmethod
    async def soft_delete(db: AsyncSession, owner_id: int, trip: Trip, reason: Optional[str]) -> Trip:
        if trip.owner_id != owner_id:
            raise AuthorizationError("You can only delete your own trips", details={"trip_id": trip.id})
        trip.deleted_at = datetime.now(timezone.utc)
        trip.deletion_reason = reason
        trip.deleted_by = owner_id
        await db.flush()
        return trip

    @staticmethod
    async def hard_delete(db: AsyncSession, owner_id: int, trip: Trip) -> None:
        if trip.owner_id != owner_id:
            raise AuthorizationError("You can only delete your own trips", details={"trip_id": trip.id})
        await db.delete(trip)
        await db.flush()

    @staticmethod
    async def restore(db: AsyncSession, owner_id: int, trip: Trip) -> Trip:
        """Clear soft-delete flags (in memory until flushed)."""
        if trip.owner_id != owner_id:
            raise AuthorizationError("You can only recover your own trips", details={"trip_id": trip.id})
        trip.deleted_at = None
        trip.deletion_reason = None
        trip.deleted_by = None
        return trip
