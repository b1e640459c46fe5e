"""
Value Range Validator.

Checks a single trip's readings, fuel event and expenses against the
configured plausibility ranges. Also hosts the value anomaly report, which
applies a coarser version of the same rules to trips already in the ledger.
"""

from collections import OrderedDict
from typing import Any, Dict, List, Optional

from trip_ledger.app.core.config import IntegrityThresholds
from trip_ledger.app.models.trip import Trip, EXPENSE_FIELDS
from trip_ledger.app.models.trip_enums import EdgeCaseKind
from trip_ledger.app.domain.ledger.edge_cases import classify_edge_case, duration_hours, is_edge_case_type
from trip_ledger.app.domain.ledger.findings import Finding, error, warning, info, errors_in


def _structural_checks(trip: Trip) -> List[Finding]:
    findings = []

    if trip.end_time <= trip.start_time:
        findings.append(error(
            "invalid_time_range",
            f"Trip end time ({trip.end_time.isoformat()}) must be after start time ({trip.start_time.isoformat()})",
            start_time=trip.start_time.isoformat(),
            end_time=trip.end_time.isoformat(),
        ))

    if trip.start_km < 0:
        findings.append(error(
            "negative_odometer",
            f"Start odometer reading cannot be negative ({trip.start_km} km)",
            start_km=trip.start_km,
        ))

    if trip.end_km < trip.start_km:
        findings.append(error(
            "odometer_decrease",
            f"End odometer ({trip.end_km} km) cannot be less than start odometer ({trip.start_km} km)",
            start_km=trip.start_km,
            end_km=trip.end_km,
        ))

    if trip.fuel_quantity is not None and trip.fuel_quantity < 0:
        findings.append(error(
            "negative_fuel_quantity",
            f"Fuel quantity cannot be negative ({trip.fuel_quantity} L)",
            fuel_quantity=trip.fuel_quantity,
        ))

    for field_name in EXPENSE_FIELDS:
        value = getattr(trip, field_name)
        if value is not None and value < 0:
            findings.append(error(
                "negative_expense",
                f"{field_name.replace('_', ' ').capitalize()} cannot be negative ({value})",
                field=field_name,
                value=value,
            ))

    return findings


def _standard_checks(trip: Trip, t: IntegrityThresholds) -> List[Finding]:
    findings = []
    distance = trip.distance_km
    hours = duration_hours(trip)

    # Distance
    if distance > t.max_trip_km:
        findings.append(error(
            "excessive_distance",
            f"Trip distance ({distance} km) exceeds the maximum of {t.max_trip_km} km. "
            "Split the trip or mark it as long haul.",
            distance_km=distance, limit_km=t.max_trip_km,
        ))
    elif distance > t.long_trip_warn_km:
        findings.append(warning(
            "long_distance",
            f"Trip distance ({distance} km) is unusually long",
            distance_km=distance, warn_km=t.long_trip_warn_km,
        ))
    elif distance == 0:
        findings.append(warning(
            "zero_distance",
            "Trip covers no distance. Mark it as maintenance if the vehicle did not move.",
            distance_km=distance,
        ))
    elif distance < t.short_trip_warn_km:
        findings.append(warning(
            "short_distance",
            f"Trip distance ({distance} km) is unusually short",
            distance_km=distance, warn_km=t.short_trip_warn_km,
        ))

    # Duration
    if hours > t.max_duration_hours:
        findings.append(error(
            "excessive_duration",
            f"Trip duration ({hours:.1f} h) exceeds the maximum of {t.max_duration_hours:g} h",
            duration_hours=round(hours, 2), limit_hours=t.max_duration_hours,
        ))
    elif hours > t.long_duration_warn_hours:
        findings.append(warning(
            "long_duration",
            f"Trip duration ({hours:.1f} h) is unusually long",
            duration_hours=round(hours, 2), warn_hours=t.long_duration_warn_hours,
        ))

    # Average speed
    if distance > t.speed_check_min_km and hours > 0:
        speed = distance / hours
        if speed > t.max_avg_speed_kmh:
            findings.append(error(
                "impossible_speed",
                f"Average speed ({speed:.1f} km/h) exceeds {t.max_avg_speed_kmh:g} km/h. Check trip times and odometer.",
                avg_speed_kmh=round(speed, 2), limit_kmh=t.max_avg_speed_kmh,
            ))
        elif speed > t.high_avg_speed_warn_kmh:
            findings.append(warning(
                "high_speed",
                f"Average speed ({speed:.1f} km/h) is unusually high",
                avg_speed_kmh=round(speed, 2),
            ))
        elif speed < t.low_avg_speed_warn_kmh and distance > t.low_speed_check_min_km:
            findings.append(warning(
                "low_speed",
                f"Average speed ({speed:.1f} km/h) is unusually low for {distance} km",
                avg_speed_kmh=round(speed, 2),
            ))

    return findings


def _long_haul_checks(trip: Trip, t: IntegrityThresholds) -> List[Finding]:
    findings = []
    distance = trip.distance_km
    hours = duration_hours(trip)

    if distance > t.max_long_haul_km:
        findings.append(error(
            "excessive_long_haul_distance",
            f"Long haul distance ({distance} km) exceeds the maximum of {t.max_long_haul_km} km",
            distance_km=distance, limit_km=t.max_long_haul_km,
        ))
    if hours > t.max_long_haul_hours:
        findings.append(error(
            "excessive_long_haul_duration",
            f"Long haul duration ({hours:.1f} h) exceeds the maximum of {t.max_long_haul_hours:g} h",
            duration_hours=round(hours, 2), limit_hours=t.max_long_haul_hours,
        ))
    return findings


def _fuel_checks(trip: Trip, edge_case: EdgeCaseKind, t: IntegrityThresholds) -> List[Finding]:
    findings = []
    quantity = trip.fuel_quantity or 0
    if quantity <= 0:
        return findings

    if quantity > t.max_fuel_quantity:
        findings.append(error(
            "excessive_fuel_quantity",
            f"Fuel quantity ({quantity:g} L) exceeds the maximum of {t.max_fuel_quantity:g} L",
            fuel_quantity=quantity, limit=t.max_fuel_quantity,
        ))
    elif quantity > t.large_fuel_warn_quantity:
        findings.append(warning(
            "large_fuel_quantity",
            f"Fuel quantity ({quantity:g} L) is unusually large",
            fuel_quantity=quantity,
        ))

    distance = trip.distance_km
    if distance <= 0:
        return findings

    kmpl = distance / quantity
    ctx = {"fuel_efficiency_kmpl": round(kmpl, 2), "distance_km": distance, "fuel_quantity": quantity}
    if kmpl < t.min_kmpl:
        findings.append(error(
            "impossible_fuel_efficiency",
            f"Fuel efficiency ({kmpl:.2f} km/L) is below {t.min_kmpl:g} km/L. Check fuel quantity and odometer.",
            **ctx,
        ))
    elif kmpl < t.min_kmpl_regular and edge_case == EdgeCaseKind.NONE:
        findings.append(error(
            "poor_fuel_efficiency",
            f"Fuel efficiency ({kmpl:.2f} km/L) is below {t.min_kmpl_regular:g} km/L for a regular trip",
            **ctx,
        ))
    elif kmpl < t.poor_kmpl_warn:
        findings.append(warning(
            "low_fuel_efficiency",
            f"Fuel efficiency ({kmpl:.2f} km/L) is low",
            **ctx,
        ))
    elif kmpl > t.max_kmpl:
        findings.append(error(
            "implausible_fuel_efficiency",
            f"Fuel efficiency ({kmpl:.2f} km/L) exceeds {t.max_kmpl:g} km/L. Check fuel quantity.",
            **ctx,
        ))
    elif kmpl > t.high_kmpl_warn:
        findings.append(warning(
            "high_fuel_efficiency",
            f"Fuel efficiency ({kmpl:.2f} km/L) is unusually high",
            **ctx,
        ))

    return findings


def _expense_checks(trip: Trip, t: IntegrityThresholds) -> List[Finding]:
    findings = []

    for field_name, limit in t.expense_limits.items():
        value = getattr(trip, field_name, None)
        if value is None:
            continue
        label = field_name.replace("_", " ").capitalize()
        if limit.error_above is not None and value > limit.error_above:
            findings.append(error(
                "excessive_expense",
                f"{label} ({value:g}) exceeds the maximum of {limit.error_above:g}",
                field=field_name, value=value, limit=limit.error_above,
            ))
        elif limit.warn_above is not None and value > limit.warn_above:
            findings.append(warning(
                "high_expense",
                f"{label} ({value:g}) is unusually high",
                field=field_name, value=value, warn_above=limit.warn_above,
            ))

    quantity = trip.fuel_quantity or 0
    if trip.fuel_expense and quantity > 0:
        rate = trip.fuel_expense / quantity
        if rate > t.fuel_rate_high_warn:
            findings.append(warning(
                "high_fuel_rate",
                f"Fuel rate ({rate:.2f} per litre) is unusually high",
                fuel_rate=round(rate, 2),
            ))
        elif rate < t.fuel_rate_low_warn:
            findings.append(warning(
                "low_fuel_rate",
                f"Fuel rate ({rate:.2f} per litre) is unusually low",
                fuel_rate=round(rate, 2),
            ))

    return findings


def validate_value_ranges(trip: Trip, thresholds: IntegrityThresholds) -> List[Finding]:
    """
    Validate a candidate trip's values.

    Structural checks run first; if any fails the remaining checks are
    skipped since distance and duration are meaningless. An edge case yields
    one info finding and replaces the standard checks with its own limits.
    """
    findings = _structural_checks(trip)
    if errors_in(findings):
        return findings

    edge_case = classify_edge_case(trip, thresholds)
    if edge_case == EdgeCaseKind.NONE:
        findings.extend(_standard_checks(trip, thresholds))
    else:
        findings.append(info(
            "edge_case_detected",
            f"Trip classified as {edge_case.value.replace('_', ' ')} trip; standard range checks relaxed",
            edge_case=edge_case.value,
        ))
        if edge_case == EdgeCaseKind.LONG_HAUL:
            findings.extend(_long_haul_checks(trip, thresholds))

    findings.extend(_fuel_checks(trip, edge_case, thresholds))
    findings.extend(_expense_checks(trip, thresholds))
    return findings


# Value anomaly report

ANOMALY_SEVERITY = {
    "negative_distance": "critical",
    "impossible_speed": "critical",
    "poor_efficiency": "critical",
    "excessive_distance": "high",
    "excessive_fuel": "high",
    "excessive_duration": "high",
    "zero_distance_non_maintenance": "high",
    "suspicious_efficiency": "medium",
    "high_fuel_expense": "medium",
    "high_driver_expense": "medium",
}

ANOMALY_RECOMMENDATIONS = {
    "negative_distance": "Critical: Review and correct odometer readings immediately",
    "zero_distance_non_maintenance": "Mark as maintenance trip or verify odometer readings",
    "excessive_distance": "Verify trip or split into multiple segments",
    "excessive_fuel": "Verify fuel quantity entry",
    "poor_efficiency": "Check vehicle condition or verify fuel/distance entries",
    "suspicious_efficiency": "Verify fuel quantity - efficiency seems too high",
    "excessive_duration": "Consider splitting into multiple trips",
    "high_fuel_expense": "Verify fuel expense amount",
    "high_driver_expense": "Review and validate driver expense",
    "impossible_speed": "Critical: Check trip times and distances",
}

_SEVERITY_RANK = {"critical": 1, "high": 2, "medium": 3}


def classify_anomaly(trip: Trip, t: IntegrityThresholds) -> Optional[str]:
    """Return the first anomaly a stored trip exhibits, or None."""
    distance = trip.distance_km
    hours = duration_hours(trip)
    quantity = trip.fuel_quantity or 0
    kmpl = distance / quantity if quantity > 0 else None
    maintenance_types = {x.lower() for x in t.maintenance_trip_types}
    fuel_limit = t.expense_limits.get("fuel_expense")
    driver_limit = t.expense_limits.get("driver_expense")

    if distance < 0:
        return "negative_distance"
    if distance == 0 and (trip.trip_type or "").lower() not in maintenance_types:
        return "zero_distance_non_maintenance"
    if distance > t.max_trip_km:
        return "excessive_distance"
    if quantity > t.anomaly_max_fuel_quantity:
        return "excessive_fuel"
    if kmpl is not None and kmpl < t.anomaly_poor_kmpl:
        return "poor_efficiency"
    if kmpl is not None and kmpl > t.anomaly_suspicious_kmpl:
        return "suspicious_efficiency"
    if hours > t.max_duration_hours:
        return "excessive_duration"
    if fuel_limit and fuel_limit.warn_above is not None and (trip.fuel_expense or 0) > fuel_limit.warn_above:
        return "high_fuel_expense"
    if driver_limit and driver_limit.warn_above is not None and (trip.driver_expense or 0) > driver_limit.warn_above:
        return "high_driver_expense"
    if distance > t.anomaly_speed_check_min_km and hours > 0 and distance / hours > t.max_avg_speed_kmh:
        return "impossible_speed"
    return None


def analyze_value_anomalies(
    trips: List[Trip],
    thresholds: IntegrityThresholds,
    include_edge_cases: bool = True,
) -> List[Dict[str, Any]]:
    """
    Group stored trips by anomaly type.

    Groups are ordered by severity, then by trip count descending.
    """
    groups: "OrderedDict[str, List[Trip]]" = OrderedDict()
    for trip in trips:
        if trip.is_deleted:
            continue
        anomaly = classify_anomaly(trip, thresholds)
        if anomaly is None:
            continue
        if not include_edge_cases and is_edge_case_type(trip, thresholds):
            continue
        groups.setdefault(anomaly, []).append(trip)

    report = []
    for anomaly, members in groups.items():
        distances = [m.distance_km for m in members]
        efficiencies = [m.distance_km / m.fuel_quantity for m in members if (m.fuel_quantity or 0) > 0]
        report.append({
            "anomaly_type": anomaly,
            "severity": ANOMALY_SEVERITY[anomaly],
            "trip_count": len(members),
            "trip_ids": [m.id for m in members],
            "trip_serials": [m.trip_serial_number for m in members],
            "details": {
                "avg_distance": round(sum(distances) / len(distances), 2),
                "max_distance": max(distances),
                "min_distance": min(distances),
                "avg_efficiency": round(sum(efficiencies) / len(efficiencies), 2) if efficiencies else None,
                "vehicles_affected": len({m.vehicle_id for m in members}),
                "date_from": min(m.start_time for m in members).isoformat(),
                "date_to": max(m.start_time for m in members).isoformat(),
            },
            "recommendation": ANOMALY_RECOMMENDATIONS[anomaly],
        })

    report.sort(key=lambda group: (_SEVERITY_RANK[group["severity"]], -group["trip_count"]))
    return report
