"""
Odometer continuity tests.
"""

from datetime import timedelta

from trip_ledger.app.core.config import IntegrityThresholds
from trip_ledger.app.domain.ledger.continuity import (
    check_continuity,
    check_forward_continuity,
    analyze_vehicle_continuity,
    previous_trip,
    next_trip,
)
from trip_ledger.app.models.trip_enums import Severity

T = IntegrityThresholds()


def day(trip_factory, n, **kwargs):
    """Trip starting ``n`` days after the base time."""
    start = trip_factory().start_time + timedelta(days=n)
    return trip_factory(start=start, **kwargs)


def test_first_trip_is_info(trip_factory):
    candidate = day(trip_factory, 0)
    findings = check_continuity([], candidate, T)

    assert [f.code for f in findings] == ["first_trip"]
    assert findings[0].severity == Severity.INFO


def test_regression_names_previous_trip(trip_factory):
    earlier = day(trip_factory, 0, id=1, serial="T1-0001", start_km=1000, end_km=1200)
    candidate = day(trip_factory, 1, start_km=1150, end_km=1300)
    findings = check_continuity([earlier], candidate, T)

    assert len(findings) == 1
    finding = findings[0]
    assert finding.code == "odometer_regression"
    assert finding.is_error
    assert "1150" in finding.message and "1200" in finding.message and "T1-0001" in finding.message
    assert finding.context["previous_trip"]["trip_serial_number"] == "T1-0001"
    assert finding.context["gap_km"] == -50


def test_gap_bands(trip_factory):
    earlier = day(trip_factory, 0, id=1, start_km=1000, end_km=1200)

    def gap_code(start_km):
        candidate = day(trip_factory, 1, start_km=start_km, end_km=start_km + 100)
        return check_continuity([earlier], candidate, T)[0]

    assert gap_code(1200).code == "perfect_continuity"
    assert gap_code(1210).code == "small_gap_acceptable"
    moderate = gap_code(1230)
    assert moderate.code == "moderate_gap" and moderate.severity == Severity.WARNING
    large = gap_code(1300)
    assert large.code == "large_gap_alert"
    assert large.context["requires_investigation"] is True
    assert "investigation_required" in large.tags


def test_back_to_back_trips_are_neighbours(trip_factory):
    first = trip_factory(id=1, start_km=1000, end_km=1100, hours=2)
    second = trip_factory(id=2, start=first.end_time, start_km=1100, end_km=1200, hours=2)

    assert previous_trip([first], second) is first
    assert next_trip([second], first) is second
    assert check_continuity([first], second, T)[0].code == "perfect_continuity"


def test_backdated_insert_checks_both_neighbours(trip_factory):
    first = day(trip_factory, 0, id=1, start_km=1000, end_km=1100)
    third = day(trip_factory, 2, id=3, serial="T1-0003", start_km=1300, end_km=1400)
    ledger = [first, third]

    fits = day(trip_factory, 1, start_km=1100, end_km=1300)
    assert not any(f.is_error for f in check_continuity(ledger, fits, T))
    assert check_forward_continuity(ledger, fits) == []

    overshoots = day(trip_factory, 1, start_km=1100, end_km=1350)
    forward = check_forward_continuity(ledger, overshoots)
    assert [f.code for f in forward] == ["forward_continuity_violation"]
    assert forward[0].context["next_trip"]["trip_serial_number"] == "T1-0003"
    assert forward[0].context["overshoot_km"] == 50


def test_deleted_trips_are_ignored(trip_factory):
    deleted = day(trip_factory, 0, id=1, start_km=1000, end_km=5000)
    deleted.deleted_at = deleted.start_time
    candidate = day(trip_factory, 1, start_km=1000, end_km=1100)

    assert check_continuity([deleted], candidate, T)[0].code == "first_trip"


def test_vehicle_continuity_report(trip_factory):
    ledger = [
        day(trip_factory, 0, id=1, start_km=1000, end_km=1100),
        day(trip_factory, 1, id=2, start_km=1100, end_km=1200),   # perfect
        day(trip_factory, 2, id=3, start_km=1205, end_km=1300),   # small
        day(trip_factory, 3, id=4, start_km=1400, end_km=1500),   # large
    ]
    report = analyze_vehicle_continuity(ledger, T)

    assert report["total_trips"] == 4
    assert report["perfect_continuity_count"] == 1
    assert report["small_gaps_count"] == 1
    assert report["large_gaps_count"] == 1
    assert report["total_gap_km"] == 105
    assert report["max_gap_km"] == 100
    assert report["avg_gap_km"] == 35.0
    assert report["continuity_score"] == 40
    assert [i["gap_class"] for i in report["issues"]] == ["large"]


def test_continuity_score_bands(trip_factory):
    clean = [
        day(trip_factory, 0, id=1, start_km=0, end_km=100),
        day(trip_factory, 1, id=2, start_km=100, end_km=200),
    ]
    assert analyze_vehicle_continuity(clean, T)["continuity_score"] == 100

    regressed = [
        day(trip_factory, 0, id=1, start_km=0, end_km=100),
        day(trip_factory, 1, id=2, start_km=90, end_km=200),
    ]
    report = analyze_vehicle_continuity(regressed, T)
    assert report["continuity_score"] == 0
    assert report["negative_gaps_count"] == 1
