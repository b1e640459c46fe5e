"""
Vehicle locking service.

Serializes writes to a single vehicle's trip ledger. Within one process an
``asyncio.Lock`` per (owner, vehicle) queues concurrent writers; across
processes the vehicle row is locked with ``SELECT ... FOR UPDATE``.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from trip_ledger.app.core.exceptions import AuthorizationError, ResourceNotFoundError
from trip_ledger.app.models.vehicle import Vehicle

logger = logging.getLogger("trip_ledger.locking")


class VehicleLockRegistry:
    """
    Hands out one lock per (owner, vehicle) ledger.

    Locks are weakly referenced and disappear once no writer holds them.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Tuple[int, int], asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, owner_id: int, vehicle_id: int) -> asyncio.Lock:
        key = (owner_id, vehicle_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


vehicle_locks = VehicleLockRegistry()


async def get_owned_vehicle(
    db: AsyncSession,
    owner_id: int,
    vehicle_id: int,
    for_update: bool = False
) -> Vehicle:
    """
    Load a vehicle and enforce ownership.

    Raises:
        ResourceNotFoundError: If the vehicle does not exist
        AuthorizationError: If the vehicle belongs to another owner
    """
    query = select(Vehicle).where(Vehicle.id == vehicle_id)
    if for_update:
        query = query.with_for_update()

    result = await db.execute(query)
    vehicle = result.scalar_one_or_none()

    if not vehicle:
        raise ResourceNotFoundError("Vehicle", vehicle_id)
    if vehicle.owner_id != owner_id:
        raise AuthorizationError(
            "You can only access your own vehicles",
            details={"vehicle_id": vehicle_id}
        )
    return vehicle


@asynccontextmanager
async def vehicle_write_lock(
    db: AsyncSession,
    owner_id: int,
    vehicle_id: int
) -> AsyncIterator[Vehicle]:
    """
    Hold the write lock of a vehicle ledger for the duration of the block.

    Yields the vehicle row, locked for update in the session's transaction.
    """
    lock = vehicle_locks.lock_for(owner_id, vehicle_id)
    if lock.locked():
        logger.debug("Waiting for ledger lock of vehicle %s", vehicle_id)

    async with lock:
        vehicle = await get_owned_vehicle(db, owner_id, vehicle_id, for_update=True)
        yield vehicle
