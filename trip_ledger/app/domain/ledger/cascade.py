"""
Correction Cascade Engine.

Correcting a trip's end reading by ``delta`` shifts both readings of every
later trip by the same ``delta``, so continuity gaps are preserved. Preview
and commit share the same traversal.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from trip_ledger.app.core.config import IntegrityThresholds
from trip_ledger.app.models.trip import Trip
from trip_ledger.app.domain.ledger.continuity import order_ledger
from trip_ledger.app.domain.ledger.findings import Finding, error
from trip_ledger.app.domain.ledger.mileage import Readings, chain_pass


@dataclass
class CascadeShift:
    trip: Trip
    old_start_km: int
    old_end_km: int
    new_start_km: int
    new_end_km: int
    old_kmpl: Optional[float] = None
    projected_kmpl: Optional[float] = None

    @property
    def trip_id(self) -> Optional[int]:
        return self.trip.id

    @property
    def trip_serial_number(self) -> str:
        return self.trip.trip_serial_number


@dataclass
class CascadePlan:
    trip: Trip
    old_end_km: int
    new_end_km: int
    shifts: List[CascadeShift] = field(default_factory=list)
    total_affected: int = 0
    truncated: bool = False
    old_kmpl: Optional[float] = None
    projected_kmpl: Optional[float] = None

    @property
    def delta(self) -> int:
        return self.new_end_km - self.old_end_km

    @property
    def trip_id(self) -> Optional[int]:
        return self.trip.id

    @property
    def trip_serial_number(self) -> str:
        return self.trip.trip_serial_number

    @property
    def readings(self) -> Readings:
        readings = {self.trip: (self.trip.start_km, self.new_end_km)}
        for shift in self.shifts:
            readings[shift.trip] = (shift.new_start_km, shift.new_end_km)
        return readings


def plan_cascade(
    trips: List[Trip],
    trip: Trip,
    new_end_km: int,
    thresholds: IntegrityThresholds,
) -> CascadePlan:
    """
    Compute the would-be readings of a correction without mutating anything.

    At most ``max_cascade_trips`` later trips are planned; ``truncated`` is set
    when more would be affected.
    """
    delta = new_end_km - trip.end_km
    plan = CascadePlan(trip=trip, old_end_km=trip.end_km, new_end_km=new_end_km)

    if delta != 0:
        later = [t for t in order_ledger(trips) if t is not trip and t.start_time >= trip.end_time]
        plan.total_affected = len(later)
        plan.truncated = len(later) > thresholds.max_cascade_trips
        for t in later[:thresholds.max_cascade_trips]:
            plan.shifts.append(CascadeShift(
                trip=t,
                old_start_km=t.start_km,
                old_end_km=t.end_km,
                new_start_km=t.start_km + delta,
                new_end_km=t.end_km + delta,
            ))

    # Projected mileage over the whole ledger with the planned readings
    ledger = list(trips) if trip in trips else list(trips) + [trip]
    projected = {row[0]: row[2] for row in chain_pass(ledger, plan.readings)}
    plan.old_kmpl = trip.calculated_kmpl
    plan.projected_kmpl = projected.get(trip)
    for shift in plan.shifts:
        shift.old_kmpl = shift.trip.calculated_kmpl
        shift.projected_kmpl = projected.get(shift.trip)

    return plan


def validate_cascade(plan: CascadePlan) -> List[Finding]:
    """Readings a cascade may not produce."""
    findings = []
    if plan.new_end_km < 0:
        findings.append(error(
            "negative_odometer",
            f"Corrected end reading cannot be negative ({plan.new_end_km} km)",
            new_end_km=plan.new_end_km,
        ))
    for shift in plan.shifts:
        if shift.new_start_km < 0:
            findings.append(error(
                "negative_cascade_reading",
                f"Correction would shift trip {shift.trip_serial_number} to a negative "
                f"start reading ({shift.new_start_km} km)",
                trip_id=shift.trip_id,
                new_start_km=shift.new_start_km,
            ))
    if plan.truncated:
        findings.append(error(
            "cascade_limit_exceeded",
            f"Correction would shift {plan.total_affected} trips; at most "
            f"{len(plan.shifts)} trips can be corrected at once",
            total_affected=plan.total_affected,
            limit=len(plan.shifts),
        ))
    return findings


def apply_cascade_plan(plan: CascadePlan) -> None:
    """Write the planned readings onto the trips."""
    plan.trip.end_km = plan.new_end_km
    for shift in plan.shifts:
        shift.trip.start_km = shift.new_start_km
        shift.trip.end_km = shift.new_end_km
