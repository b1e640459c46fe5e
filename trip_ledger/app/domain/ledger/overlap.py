"""
Overlap Detector.

A vehicle cannot be on two trips at once, and neither can a driver.
Intervals are half-open: a trip may start exactly when another ends.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from trip_ledger.app.core.config import IntegrityThresholds
from trip_ledger.app.models.trip import Trip
from trip_ledger.app.models.trip_enums import OverlapType, ConflictScope
from trip_ledger.app.domain.ledger.findings import Finding, error, trip_ref


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """
    Three-case overlap test.

    ``a`` starts inside ``b``, ends inside ``b``, or contains ``b``.
    """
    starts_inside = start_b <= start_a < end_b
    ends_inside = start_b < end_a <= end_b
    contains = start_a <= start_b and end_a >= end_b
    return starts_inside or ends_inside or contains


def overlap_hours(a: Trip, b: Trip) -> float:
    start = max(a.start_time, b.start_time)
    end = min(a.end_time, b.end_time)
    return max((end - start).total_seconds() / 3600.0, 0.0)


def classify_overlap(a: Trip, b: Trip) -> OverlapType:
    """How ``a`` relates to ``b``."""
    if a.start_time == b.start_time and a.end_time == b.end_time:
        return OverlapType.EXACT_DUPLICATE
    if a.start_time >= b.start_time and a.end_time <= b.end_time:
        return OverlapType.CONTAINED_WITHIN
    if a.start_time <= b.start_time and a.end_time >= b.end_time:
        return OverlapType.CONTAINS
    return OverlapType.PARTIAL_OVERLAP


def _conflicting(candidate: Trip, others: List[Trip], start: datetime, end: datetime) -> List[Trip]:
    return [
        t for t in others
        if t is not candidate
        and not t.is_deleted
        and (candidate.id is None or t.id != candidate.id)
        and intervals_overlap(start, end, t.start_time, t.end_time)
    ]


def _conflict_finding(code: str, scope: str, candidate: Trip, other: Trip) -> Finding:
    hours = overlap_hours(candidate, other)
    kind = classify_overlap(candidate, other)
    return error(
        code,
        f"{scope} is already on trip {other.trip_serial_number} from {other.start_time.isoformat()} "
        f"to {other.end_time.isoformat()} ({kind.value.replace('_', ' ')}, {hours:.2f} h overlap)",
        conflicting_trip=trip_ref(other),
        conflicting_owner_id=other.owner_id,
        overlap_type=kind.value,
        overlap_hours=round(hours, 2),
    )


def check_overlaps(
    candidate: Trip,
    vehicle_trips: List[Trip],
    driver_trips: Optional[List[Trip]] = None,
) -> List[Finding]:
    """Find trips of the same vehicle, or the same driver, that overlap the candidate."""
    findings = []

    for other in _conflicting(candidate, vehicle_trips, candidate.start_time, candidate.end_time):
        findings.append(_conflict_finding("vehicle_overlap", "Vehicle", candidate, other))

    if candidate.driver_id is not None and driver_trips:
        same_driver = [t for t in driver_trips if t.driver_id == candidate.driver_id]
        for other in _conflicting(candidate, same_driver, candidate.start_time, candidate.end_time):
            findings.append(_conflict_finding("driver_overlap", "Driver", candidate, other))

    return findings


def _suggested_fix(kind: OverlapType, first: Trip, second: Trip) -> str:
    if kind == OverlapType.EXACT_DUPLICATE:
        return f"Delete duplicate trip {second.trip_serial_number}"
    if kind in (OverlapType.CONTAINED_WITHIN, OverlapType.CONTAINS):
        return (
            f"Merge trips {first.trip_serial_number} and {second.trip_serial_number} "
            "or correct the inner trip's times"
        )
    return (
        f"Set the end time of {first.trip_serial_number} to {second.start_time.isoformat()} "
        f"or the start time of {second.trip_serial_number} to {first.end_time.isoformat()}"
    )


def find_overlapping_pairs(trips: List[Trip], thresholds: IntegrityThresholds) -> List[Dict[str, Any]]:
    """
    Report every pair of non-deleted trips sharing a vehicle or a driver
    during overlapping intervals. Each pair appears once.
    """
    ledger = sorted((t for t in trips if not t.is_deleted), key=lambda t: (t.start_time, t.id or 0))
    pairs = []

    for i, first in enumerate(ledger):
        for second in ledger[i + 1:]:
            # sorted by start: nothing after this can overlap ``first``
            if second.start_time >= first.end_time:
                break
            same_vehicle = first.vehicle_id == second.vehicle_id
            same_driver = first.driver_id is not None and first.driver_id == second.driver_id
            if not (same_vehicle or same_driver):
                continue

            if same_vehicle and same_driver:
                scope = ConflictScope.VEHICLE_AND_DRIVER
            elif same_vehicle:
                scope = ConflictScope.VEHICLE
            else:
                scope = ConflictScope.DRIVER

            kind = classify_overlap(first, second)
            hours = overlap_hours(first, second)
            if kind == OverlapType.EXACT_DUPLICATE:
                severity = "critical"
            elif hours > thresholds.overlap_high_severity_hours:
                severity = "high"
            else:
                severity = "medium"

            pairs.append({
                "trip_id": first.id,
                "trip_serial": first.trip_serial_number,
                "conflicting_trip_id": second.id,
                "conflicting_trip_serial": second.trip_serial_number,
                "vehicle_id": first.vehicle_id,
                "conflicting_vehicle_id": second.vehicle_id,
                "driver_id": first.driver_id,
                "conflicting_driver_id": second.driver_id,
                "overlap_type": kind.value,
                "conflict_scope": scope.value,
                "overlap_hours": round(hours, 2),
                "severity": severity,
                "suggested_fix": _suggested_fix(kind, first, second),
            })

    return pairs


def check_availability(
    trips: List[Trip],
    start_time: datetime,
    end_time: datetime,
    vehicle_id: Optional[int] = None,
    driver_id: Optional[int] = None,
    exclude_trip_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Whether a vehicle and/or driver is free for ``[start_time, end_time)``."""
    conflicts = []
    for trip in sorted(trips, key=lambda t: t.start_time):
        if trip.is_deleted or (exclude_trip_id is not None and trip.id == exclude_trip_id):
            continue
        vehicle_hit = vehicle_id is not None and trip.vehicle_id == vehicle_id
        driver_hit = driver_id is not None and trip.driver_id == driver_id
        if not (vehicle_hit or driver_hit):
            continue
        if not intervals_overlap(start_time, end_time, trip.start_time, trip.end_time):
            continue

        if vehicle_hit and driver_hit:
            conflict_type = ConflictScope.VEHICLE_AND_DRIVER
        elif vehicle_hit:
            conflict_type = ConflictScope.VEHICLE
        else:
            conflict_type = ConflictScope.DRIVER
        conflicts.append({
            "trip_id": trip.id,
            "trip_serial": trip.trip_serial_number,
            "vehicle_id": trip.vehicle_id,
            "driver_id": trip.driver_id,
            "start_time": trip.start_time,
            "end_time": trip.end_time,
            "conflict_type": conflict_type.value,
        })

    return {
        "is_available": not conflicts,
        "conflict_count": len(conflicts),
        "conflicts": conflicts,
    }
