"""
Deletion Guard.

Removing a refueling trip can leave later trips without an anchor for
their mileage. The guard decides whether a trip can be removed outright or
has to be kept as a soft-deleted record.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from trip_ledger.app.core.exceptions import IntegrityProtectionError
from trip_ledger.app.models.trip import Trip
from trip_ledger.app.models.trip_enums import DeletionImpact
from trip_ledger.app.domain.ledger.continuity import order_ledger


@dataclass
class DeletionPlan:
    trip: Trip
    hard_delete: bool
    impact: DeletionImpact
    message: str
    later_trip_count: int = 0
    dependents: List[Trip] = field(default_factory=list)
    next_refueling: Optional[Trip] = None

    @property
    def affected_serials(self) -> List[str]:
        return [t.trip_serial_number for t in self.dependents]


def assess_deletion(trips: List[Trip], trip: Trip) -> DeletionPlan:
    """Work out what deleting ``trip`` would do to the rest of the ledger."""
    later = [
        t for t in order_ledger(trips)
        if t is not trip and t.start_time >= trip.end_time
    ]

    if not trip.is_refueling:
        return DeletionPlan(
            trip=trip,
            hard_delete=True,
            impact=DeletionImpact.NONE,
            message=f"Trip {trip.trip_serial_number} deleted; {len(later)} later trip(s) unaffected",
            later_trip_count=len(later),
        )

    dependents = []
    next_refueling = None
    for t in later:
        if t.is_refueling:
            next_refueling = t
            break
        dependents.append(t)

    if next_refueling is not None:
        return DeletionPlan(
            trip=trip,
            hard_delete=True,
            impact=DeletionImpact.MODERATE,
            message=(
                f"Refueling trip {trip.trip_serial_number} deleted; mileage recalculated from "
                f"next refueling trip {next_refueling.trip_serial_number}"
            ),
            later_trip_count=len(later),
            dependents=dependents,
            next_refueling=next_refueling,
        )

    if dependents:
        return DeletionPlan(
            trip=trip,
            hard_delete=False,
            impact=DeletionImpact.HIGH,
            message=(
                f"Refueling trip {trip.trip_serial_number} was soft-deleted to preserve the mileage "
                f"chain of {len(dependents)} later trip(s)"
            ),
            later_trip_count=len(later),
            dependents=dependents,
        )

    return DeletionPlan(
        trip=trip,
        hard_delete=True,
        impact=DeletionImpact.LOW,
        message=f"Refueling trip {trip.trip_serial_number} deleted; no later trips depend on it",
        later_trip_count=len(later),
    )


def guard_hard_delete(plan: DeletionPlan) -> None:
    """Raise when removing the trip would break the mileage chain."""
    if plan.hard_delete:
        return
    raise IntegrityProtectionError(
        f"Deleting refueling trip {plan.trip.trip_serial_number} would orphan the mileage "
        f"of {len(plan.dependents)} later trip(s)",
        affected_trips=plan.affected_serials,
    )
