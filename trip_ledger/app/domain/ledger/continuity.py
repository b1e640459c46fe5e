"""
Odometer Continuity Validator.

A vehicle's odometer only moves forward: each trip must start at or above
the reading the previous trip ended at, and must not end above the reading
the next trip starts at.

Trip intervals are half-open, so a trip ending exactly when the candidate
starts is its predecessor, and a trip starting exactly when the candidate
ends is its successor.
"""

from typing import Any, Dict, List, Optional

from trip_ledger.app.core.config import IntegrityThresholds
from trip_ledger.app.models.trip import Trip
from trip_ledger.app.models.trip_enums import GapClass
from trip_ledger.app.domain.ledger.findings import Finding, error, warning, info, trip_ref


def order_ledger(trips: List[Trip]) -> List[Trip]:
    """Non-deleted trips ordered by start time."""
    active = [t for t in trips if not t.is_deleted]
    return sorted(active, key=lambda t: (t.start_time, t.id or 0))


def _others(trips: List[Trip], candidate: Trip) -> List[Trip]:
    return [
        t for t in trips
        if t is not candidate
        and not t.is_deleted
        and (candidate.id is None or t.id != candidate.id)
    ]


def previous_trip(trips: List[Trip], candidate: Trip) -> Optional[Trip]:
    """Latest trip that ended no later than the candidate starts."""
    earlier = [t for t in _others(trips, candidate) if t.end_time <= candidate.start_time]
    if not earlier:
        return None
    return max(earlier, key=lambda t: (t.end_time, t.start_time, t.id or 0))


def next_trip(trips: List[Trip], candidate: Trip) -> Optional[Trip]:
    """Earliest trip that starts no earlier than the candidate ends."""
    later = [t for t in _others(trips, candidate) if t.start_time >= candidate.end_time]
    if not later:
        return None
    return min(later, key=lambda t: (t.start_time, t.id or 0))


def classify_gap(gap: int, thresholds: IntegrityThresholds) -> GapClass:
    if gap < 0:
        return GapClass.NEGATIVE
    if gap == 0:
        return GapClass.PERFECT
    if gap <= thresholds.acceptable_gap_km:
        return GapClass.SMALL
    if gap <= thresholds.moderate_gap_km:
        return GapClass.MODERATE
    return GapClass.LARGE


def check_continuity(trips: List[Trip], candidate: Trip, thresholds: IntegrityThresholds) -> List[Finding]:
    """Compare the candidate's start reading with the previous trip's end reading."""
    previous = previous_trip(trips, candidate)
    if previous is None:
        return [info("first_trip", "First trip for this vehicle; no previous odometer reading to compare")]

    gap = candidate.start_km - previous.end_km
    gap_class = classify_gap(gap, thresholds)
    ctx = {"gap_km": gap, "previous_trip": trip_ref(previous)}

    if gap_class == GapClass.NEGATIVE:
        return [error(
            "odometer_regression",
            f"Odometer regression: start reading {candidate.start_km} km is below the end reading "
            f"{previous.end_km} km of previous trip {previous.trip_serial_number} "
            f"(ended {previous.end_time.isoformat()})",
            **ctx,
        )]
    if gap_class == GapClass.PERFECT:
        return [info("perfect_continuity", "Odometer continues exactly from the previous trip", **ctx)]
    if gap_class == GapClass.SMALL:
        return [info(
            "small_gap_acceptable",
            f"Small odometer gap of {gap} km after trip {previous.trip_serial_number}",
            **ctx,
        )]
    if gap_class == GapClass.MODERATE:
        return [warning(
            "moderate_gap",
            f"Odometer gap of {gap} km after trip {previous.trip_serial_number}; "
            "there may be an unrecorded trip",
            **ctx,
        )]

    finding = warning(
        "large_gap_alert",
        f"Large odometer gap of {gap} km after trip {previous.trip_serial_number}; "
        "check for missing trips",
        requires_investigation=True,
        **ctx,
    )
    finding.tags.append("investigation_required")
    return [finding]


def check_forward_continuity(trips: List[Trip], candidate: Trip) -> List[Finding]:
    """Reject a candidate whose end reading passes the next trip's start reading."""
    following = next_trip(trips, candidate)
    if following is None or following.start_km >= candidate.end_km:
        return []

    return [error(
        "forward_continuity_violation",
        f"End reading {candidate.end_km} km is above the start reading {following.start_km} km "
        f"of the next trip {following.trip_serial_number}. Use an odometer correction to "
        "cascade the change to subsequent trips.",
        next_trip=trip_ref(following),
        overshoot_km=candidate.end_km - following.start_km,
    )]


def continuity_score(counts: Dict[str, int]) -> int:
    if counts["negative"] > 0:
        return 0
    if counts["large"] > 0:
        return max(50 - 10 * counts["large"], 0)
    if counts["moderate"] > 0:
        return max(70 - 5 * counts["moderate"], 0)
    if counts["small"] > 0:
        return max(90 - 2 * counts["small"], 0)
    return 100


def analyze_vehicle_continuity(trips: List[Trip], thresholds: IntegrityThresholds) -> Dict[str, Any]:
    """Summarise the odometer gaps between consecutive trips of one vehicle."""
    ledger = order_ledger(trips)
    counts = {c.value: 0 for c in GapClass}
    gaps = []
    issues = []

    for previous, current in zip(ledger, ledger[1:]):
        gap = current.start_km - previous.end_km
        gap_class = classify_gap(gap, thresholds)
        counts[gap_class.value] += 1
        gaps.append(abs(gap))
        if gap_class in (GapClass.NEGATIVE, GapClass.LARGE, GapClass.MODERATE):
            issues.append({
                "gap_class": gap_class.value,
                "gap_km": gap,
                "previous_trip_id": previous.id,
                "previous_trip_serial": previous.trip_serial_number,
                "trip_id": current.id,
                "trip_serial": current.trip_serial_number,
            })

    recommendations = []
    if counts["negative"]:
        recommendations.append(
            f"Correct {counts['negative']} odometer regression(s) using an odometer correction"
        )
    if counts["large"]:
        recommendations.append(f"Investigate {counts['large']} large gap(s) for unrecorded trips")
    if counts["moderate"]:
        recommendations.append(f"Review {counts['moderate']} moderate gap(s)")
    if not recommendations:
        recommendations.append("Odometer continuity is healthy")

    return {
        "total_trips": len(ledger),
        "perfect_continuity_count": counts["perfect"],
        "small_gaps_count": counts["small"],
        "moderate_gaps_count": counts["moderate"],
        "large_gaps_count": counts["large"],
        "negative_gaps_count": counts["negative"],
        "total_gap_km": sum(gaps),
        "avg_gap_km": round(sum(gaps) / len(gaps), 2) if gaps else 0.0,
        "max_gap_km": max(gaps) if gaps else 0,
        "continuity_score": continuity_score(counts),
        "issues": issues,
        "recommendations": recommendations,
    }
