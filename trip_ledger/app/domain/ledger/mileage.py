"""
Mileage Chain Calculator.

Fuel efficiency is computed tank-to-tank: a refueling trip's km/L covers the
distance driven since the previous refueling (its anchor) divided by the
fuel put in. The first refueling of a vehicle has no anchor and falls back
to its own distance.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from trip_ledger.app.core.config import IntegrityThresholds
from trip_ledger.app.models.trip import Trip
from trip_ledger.app.models.trip_enums import ChainBreakType, MileageMethod
from trip_ledger.app.domain.ledger.continuity import order_ledger

Readings = Dict[Trip, Tuple[int, int]]


@dataclass
class MileageResult:
    trip: Trip
    old_kmpl: Optional[float]
    new_kmpl: Optional[float]
    method: MileageMethod
    anchor: Optional[Trip] = None
    changed: bool = False

    @property
    def trip_id(self) -> Optional[int]:
        return self.trip.id

    @property
    def trip_serial_number(self) -> str:
        return self.trip.trip_serial_number

    @property
    def anchor_serial_number(self) -> Optional[str]:
        return self.anchor.trip_serial_number if self.anchor is not None else None

    @property
    def method_label(self) -> str:
        if self.method == MileageMethod.TANK_TO_TANK:
            return f"tank_to_tank (from trip {self.anchor_serial_number})"
        if self.method == MileageMethod.SIMPLE:
            return "simple (first refueling)"
        return self.method.value


def _km(trip: Trip, readings: Optional[Readings]) -> Tuple[int, int]:
    if readings and trip in readings:
        return readings[trip]
    return trip.start_km, trip.end_km


def kmpl_differs(old: Optional[float], new: Optional[float], epsilon: float) -> bool:
    if old is None and new is None:
        return False
    if old is None or new is None:
        return True
    return abs(old - new) > epsilon


def compute_kmpl(
    trip: Trip,
    anchor: Optional[Trip],
    readings: Optional[Readings] = None,
) -> Tuple[Optional[float], MileageMethod]:
    if not trip.is_refueling:
        return None, MileageMethod.NOT_APPLICABLE

    start_km, end_km = _km(trip, readings)
    if anchor is not None:
        base = _km(anchor, readings)[1]
        method = MileageMethod.TANK_TO_TANK
    else:
        base = start_km
        method = MileageMethod.SIMPLE
    return round((end_km - base) / trip.fuel_quantity, 2), method


def find_anchor(trips: List[Trip], trip: Trip) -> Optional[Trip]:
    """Nearest earlier non-deleted refueling trip of the same vehicle."""
    candidates = [
        t for t in trips
        if t is not trip
        and not t.is_deleted
        and t.is_refueling
        and t.vehicle_id == trip.vehicle_id
        and t.start_time < trip.start_time
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda t: (t.start_time, t.id or 0))


def chain_pass(
    trips: List[Trip],
    readings: Optional[Readings] = None,
) -> List[Tuple[Trip, Optional[Trip], Optional[float], MileageMethod]]:
    """
    One time-ordered pass over the ledger carrying the anchor forward.

    Yields ``(trip, anchor, kmpl, method)`` for every non-deleted trip.
    ``readings`` overrides odometer values per trip without touching them.
    """
    rows = []
    anchor = None
    for trip in order_ledger(trips):
        kmpl, method = compute_kmpl(trip, anchor, readings)
        rows.append((trip, anchor if trip.is_refueling else None, kmpl, method))
        if trip.is_refueling:
            anchor = trip
    return rows


def recalculate(
    trips: List[Trip],
    trip: Trip,
    thresholds: IntegrityThresholds,
    force: bool = False,
) -> MileageResult:
    """
    Recompute one trip's km/L against its anchor.

    The stored value is only replaced when it drifted beyond the configured
    epsilon, or when ``force`` is set.
    """
    anchor = find_anchor(trips, trip) if trip.is_refueling else None
    new_kmpl, method = compute_kmpl(trip, anchor)
    old_kmpl = trip.calculated_kmpl
    changed = kmpl_differs(old_kmpl, new_kmpl, thresholds.mileage_epsilon)
    if changed or force:
        trip.calculated_kmpl = new_kmpl
    return MileageResult(trip, old_kmpl, new_kmpl, method, anchor, changed)


def rebuild_chain(trips: List[Trip], thresholds: IntegrityThresholds) -> List[MileageResult]:
    """
    Recompute every refueling trip of a ledger in one pass.

    Non-refueling trips holding a stale value are cleared. Returns one result
    per refueling trip plus one per cleared trip.
    """
    results = []
    for trip, anchor, new_kmpl, method in chain_pass(trips):
        old_kmpl = trip.calculated_kmpl
        if not trip.is_refueling and old_kmpl is None:
            continue
        changed = kmpl_differs(old_kmpl, new_kmpl, thresholds.mileage_epsilon)
        if changed:
            trip.calculated_kmpl = new_kmpl
        results.append(MileageResult(trip, old_kmpl, new_kmpl, method, anchor, changed))
    return results


def validate_chain(trips: List[Trip], thresholds: IntegrityThresholds) -> List[Dict[str, Any]]:
    """Per-trip comparison of stored and expected km/L. Read-only."""
    rows = []
    for trip, anchor, expected, method in chain_pass(trips):
        stored = trip.calculated_kmpl
        unrealistic = stored is not None and not (
            thresholds.unrealistic_kmpl_low <= stored <= thresholds.unrealistic_kmpl_high
        )

        if trip.is_refueling:
            base = anchor.end_km if anchor is not None else trip.start_km
            distance = trip.end_km - base
        else:
            distance = trip.distance_km

        chain_valid = not kmpl_differs(stored, expected, thresholds.mileage_epsilon)
        if not trip.is_refueling:
            message = "Not a refueling trip" if chain_valid else "Non-refueling trip carries a stale mileage value"
        elif chain_valid:
            message = "Mileage matches the tank-to-tank calculation"
        else:
            message = f"Stored mileage {stored} differs from expected {expected}; rebuild the chain"
        if unrealistic:
            message += f" (stored mileage {stored} km/L is outside the realistic range)"

        rows.append({
            "trip_id": trip.id,
            "trip_serial": trip.trip_serial_number,
            "start_time": trip.start_time,
            "refueling_done": trip.is_refueling,
            "distance_km": distance,
            "fuel_quantity": trip.fuel_quantity,
            "stored_kmpl": stored,
            "expected_kmpl": expected,
            "method": method.value,
            "anchor_serial": anchor.trip_serial_number if anchor is not None else None,
            "chain_valid": chain_valid,
            "unrealistic": unrealistic,
            "message": message,
        })
    return rows


def classify_chain_break(gap: int, thresholds: IntegrityThresholds) -> ChainBreakType:
    if gap < 0:
        return ChainBreakType.NEGATIVE
    if gap == 0:
        return ChainBreakType.CONTINUOUS
    if gap <= thresholds.chain_break_large_gap_km:
        return ChainBreakType.SMALL
    return ChainBreakType.LARGE


_BREAK_ACTIONS = {
    ChainBreakType.NEGATIVE: "Correct the odometer of {prev} with an odometer correction to restore continuity",
    ChainBreakType.SMALL: "Minor gap; verify whether a short trip after {prev} was not recorded",
    ChainBreakType.LARGE: "Large gap; add the missing trips between {prev} and {curr}",
}


def detect_chain_breaks(trips: List[Trip], thresholds: IntegrityThresholds) -> List[Dict[str, Any]]:
    """Adjacent trip pairs whose odometer readings do not meet."""
    ledger = order_ledger(trips)
    breaks = []
    for previous, current in zip(ledger, ledger[1:]):
        gap = current.start_km - previous.end_km
        if gap == 0:
            continue
        kind = classify_chain_break(gap, thresholds)
        breaks.append({
            "previous_trip_id": previous.id,
            "previous_trip_serial": previous.trip_serial_number,
            "previous_end_km": previous.end_km,
            "trip_id": current.id,
            "trip_serial": current.trip_serial_number,
            "start_km": current.start_km,
            "gap_km": gap,
            "break_type": kind.value,
            "suggested_action": _BREAK_ACTIONS[kind].format(
                prev=previous.trip_serial_number, curr=current.trip_serial_number
            ),
        })
    return breaks
