"""
Validation findings shared by the ledger validators.

A finding is one observation about a candidate trip. Errors block the write;
warnings and info are audited and returned to the caller.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from trip_ledger.app.models.trip import Trip
from trip_ledger.app.models.trip_enums import Severity


@dataclass
class Finding:
    severity: Severity
    code: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def as_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "tags": list(self.tags),
        }


def error(code: str, message: str, **context) -> Finding:
    return Finding(Severity.ERROR, code, message, context)


def warning(code: str, message: str, **context) -> Finding:
    return Finding(Severity.WARNING, code, message, context)


def info(code: str, message: str, **context) -> Finding:
    return Finding(Severity.INFO, code, message, context)


def errors_in(findings: Iterable[Finding]) -> List[Finding]:
    return [f for f in findings if f.is_error]


def non_errors_in(findings: Iterable[Finding]) -> List[Finding]:
    return [f for f in findings if not f.is_error]


def highest_severity(findings: Iterable[Finding]) -> Severity:
    """Most severe level among ``findings`` (info when empty)."""
    levels = [Severity.INFO, Severity.WARNING, Severity.ERROR]
    highest = Severity.INFO
    for finding in findings:
        if levels.index(finding.severity) > levels.index(highest):
            highest = finding.severity
    return highest


def trip_ref(trip: Trip) -> Dict[str, Any]:
    """Identity and readings of a trip, as embedded in finding payloads."""
    return {
        "trip_id": trip.id,
        "trip_serial_number": trip.trip_serial_number,
        "start_time": trip.start_time.isoformat() if trip.start_time else None,
        "end_time": trip.end_time.isoformat() if trip.end_time else None,
        "start_km": trip.start_km,
        "end_km": trip.end_km,
    }
