"""
Edge-case classification.

Some trips legitimately fall outside the standard ranges: a workshop visit
barely moves, a refueling stop is a few kilometres, a declared long-haul run
may take days. Classification happens once per trip and the first match wins.
"""

from typing import Iterable, Optional

from trip_ledger.app.core.config import IntegrityThresholds
from trip_ledger.app.models.trip import Trip
from trip_ledger.app.models.trip_enums import EdgeCaseKind


def duration_hours(trip: Trip) -> float:
    return (trip.end_time - trip.start_time).total_seconds() / 3600.0


def _mentions(text: Optional[str], keywords: Iterable[str]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(keyword.lower() in lowered for keyword in keywords)


def _type_in(trip_type: Optional[str], types: Iterable[str]) -> bool:
    if not trip_type:
        return False
    return trip_type.lower() in {t.lower() for t in types}


def classify_edge_case(trip: Trip, thresholds: IntegrityThresholds) -> EdgeCaseKind:
    """
    Classify a trip as one of the recognised edge cases.

    Priority: maintenance, test drive, refueling stop, long haul.
    """
    distance = trip.distance_km

    if distance <= thresholds.maintenance_max_km and (
        _type_in(trip.trip_type, thresholds.maintenance_trip_types)
        or _mentions(trip.notes, thresholds.maintenance_keywords)
    ):
        return EdgeCaseKind.MAINTENANCE

    if distance < thresholds.test_drive_max_km and (
        _type_in(trip.trip_type, thresholds.test_trip_types)
        or _mentions(trip.notes, thresholds.test_keywords)
    ):
        return EdgeCaseKind.TEST

    if distance < thresholds.refuel_stop_max_km and trip.is_refueling:
        return EdgeCaseKind.REFUELING

    if (distance > thresholds.long_haul_min_km or duration_hours(trip) > thresholds.long_haul_min_hours) and (
        _type_in(trip.trip_type, thresholds.long_haul_trip_types)
        or _mentions(trip.notes, thresholds.long_haul_keywords)
    ):
        return EdgeCaseKind.LONG_HAUL

    return EdgeCaseKind.NONE


def is_edge_case_type(trip: Trip, thresholds: IntegrityThresholds) -> bool:
    """True when the declared trip type alone marks the trip as an edge case."""
    return _type_in(
        trip.trip_type,
        list(thresholds.maintenance_trip_types)
        + list(thresholds.test_trip_types)
        + list(thresholds.long_haul_trip_types),
    )
