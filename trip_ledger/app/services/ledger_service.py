"""
Trip Ledger Service (Orchestration).

Runs every ledger operation as one unit of work:

1. Acquire the vehicle's write lock (in-process lock + row lock)
2. Load the vehicle's ledger
3. Validate (value ranges -> continuity -> overlaps)
4. Mutate and flush
5. Re-sync the mileage chain
6. Commit, or roll back everything on any error
7. Write the buffered audit entries

Read-only reports skip the lock.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from trip_ledger.app.core.config import IntegrityThresholds, settings
from trip_ledger.app.core.exceptions import (
    AppException,
    CascadeLimitExceededError,
    IntegrityProtectionError,
    LedgerValidationError,
    OdometerRegressionError,
    TripOverlapError,
    TripStateError,
)
from trip_ledger.app.domain.ledger.cascade import CascadePlan, apply_cascade_plan, plan_cascade, validate_cascade
from trip_ledger.app.domain.ledger.continuity import (
    analyze_vehicle_continuity,
    check_continuity,
    check_forward_continuity,
)
from trip_ledger.app.domain.ledger.deletion import assess_deletion, guard_hard_delete
from trip_ledger.app.domain.ledger.findings import Finding, errors_in, highest_severity, non_errors_in
from trip_ledger.app.domain.ledger.mileage import (
    MileageResult,
    detect_chain_breaks,
    rebuild_chain,
    recalculate,
    validate_chain,
)
from trip_ledger.app.domain.ledger.overlap import check_availability, check_overlaps, find_overlapping_pairs
from trip_ledger.app.domain.ledger.value_ranges import analyze_value_anomalies, validate_value_ranges
from trip_ledger.app.models.trip import Trip
from trip_ledger.app.models.trip_correction import TripCorrection
from trip_ledger.app.models.trip_enums import DeletionImpact, DeletionOutcome, Severity
from trip_ledger.app.services.audit import AuditAction, AuditTrail, trip_state
from trip_ledger.app.services.trip_store import TripStore, day_bounds
from trip_ledger.app.services.vehicle_locking import get_owned_vehicle, vehicle_write_lock

logger = logging.getLogger("trip_ledger.ledger")

ValidationStages = List[Tuple[str, List[Finding]]]


@dataclass
class WriteResult:
    trip: Trip
    findings: List[Finding] = field(default_factory=list)
    mileage_updates: List[MileageResult] = field(default_factory=list)


@dataclass
class DeletionResult:
    trip_id: int
    trip_serial_number: str
    outcome: DeletionOutcome
    impact: DeletionImpact
    message: str
    later_trip_count: int = 0
    affected_trips: List[str] = field(default_factory=list)
    mileage_updates: List[MileageResult] = field(default_factory=list)


@dataclass
class CorrectionResult:
    trip: Trip
    plan: CascadePlan
    findings: List[Finding] = field(default_factory=list)
    mileage_updates: List[MileageResult] = field(default_factory=list)

    @property
    def delta(self) -> int:
        return self.plan.delta

    @property
    def shifted_count(self) -> int:
        return len(self.plan.shifts)

    @property
    def shifts(self):
        return self.plan.shifts


class TripLedgerService:
    """
    Ledger operations for one owner.

    Args:
        db: Database session (transactions are managed here)
        owner_id: Owner whose ledgers are read and written
        thresholds: Integrity policy override; defaults to the deployment's
        actor_id: User recorded as actor in audit entries; defaults to the owner
    """

    def __init__(
        self,
        db: AsyncSession,
        owner_id: int,
        thresholds: Optional[IntegrityThresholds] = None,
        actor_id: Optional[int] = None
    ):
        self.db = db
        self.owner_id = owner_id
        self.actor_id = actor_id if actor_id is not None else owner_id
        self.thresholds = thresholds or settings.integrity
        self.audit = AuditTrail(actor_id=self.actor_id, owner_id=owner_id)

    # Unit of work

    @asynccontextmanager
    async def _atomic(self, vehicle_id: int):
        async with vehicle_write_lock(self.db, self.owner_id, vehicle_id) as vehicle:
            try:
                yield vehicle
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            finally:
                # Audit entries land in ledger order, committed or not
                await self.audit.flush(self.db)

    async def _ledger(self, vehicle_id: int) -> List[Trip]:
        return await TripStore.list_by_vehicle_ordered_by_start(self.db, self.owner_id, vehicle_id)

    async def _driver_trips(self, trip: Trip) -> List[Trip]:
        if trip.driver_id is None:
            return []
        return await TripStore.list_by_driver(self.db, self.owner_id, trip.driver_id)

    # Validation pipeline

    def _reject(self, trip: Trip, errors: List[Finding], exc_class=LedgerValidationError):
        exc = exc_class.from_findings(errors)
        logger.warning(
            "Rejected write of trip %s (vehicle %s): %s",
            trip.trip_serial_number, trip.vehicle_id, ", ".join(f.code for f in errors)
        )
        self.audit.record(
            AuditAction.TRIP_WRITE_REJECTED,
            "trip",
            trip.id,
            f"Rejected write of trip {trip.trip_serial_number}: {errors[0].code}",
            after_state=trip_state(trip),
            severity=Severity.ERROR,
            tags=[f.code for f in errors],
            note=exc.message,
        )
        raise exc

    def _raise_on_errors(self, trip: Trip, findings: List[Finding], exc_class=LedgerValidationError):
        errors = errors_in(findings)
        if errors:
            self._reject(trip, errors, exc_class)

    async def _validate_write(self, trip: Trip, ledger: List[Trip]) -> ValidationStages:
        """
        Run the full write pipeline against the vehicle's current ledger.

        Raises on the first stage that produces an error; otherwise returns
        the non-blocking findings of each stage for auditing.
        """
        value_findings = validate_value_ranges(trip, self.thresholds)
        self._raise_on_errors(trip, value_findings)

        continuity_findings = check_continuity(ledger, trip, self.thresholds)
        continuity_findings += check_forward_continuity(ledger, trip)
        self._raise_on_errors(trip, continuity_findings, OdometerRegressionError)

        driver_trips = await self._driver_trips(trip)
        overlap_findings = check_overlaps(trip, ledger, driver_trips)
        self._raise_on_errors(trip, overlap_findings, TripOverlapError)

        return [
            (AuditAction.VALUE_RANGE_VALIDATION, value_findings),
            (AuditAction.ODOMETER_CONTINUITY_VALIDATION, continuity_findings),
        ]

    def _record_validation(self, trip: Trip, stages: ValidationStages) -> List[Finding]:
        recorded = []
        for event_type, findings in stages:
            findings = non_errors_in(findings)
            if not findings:
                continue
            tags = sorted({tag for f in findings for tag in f.tags} | {f.code for f in findings})
            self.audit.record(
                event_type,
                "trip",
                trip.id,
                f"Trip {trip.trip_serial_number}: " + "; ".join(f.code for f in findings),
                after_state={"findings": [f.as_dict() for f in findings]},
                severity=highest_severity(findings),
                tags=tags,
            )
            recorded.extend(findings)
        return recorded

    async def _sync_mileage(self, ledger: List[Trip]) -> List[MileageResult]:
        """Rebuild the vehicle's mileage chain; audit and flush drifted values."""
        results = rebuild_chain(ledger, self.thresholds)
        for result in results:
            if result.changed:
                self._record_mileage(result)
        await self.db.flush()
        return results

    def _record_mileage(self, result: MileageResult) -> None:
        self.audit.record(
            AuditAction.MILEAGE_RECALCULATED,
            "trip",
            result.trip_id,
            f"Mileage of trip {result.trip_serial_number}: {result.old_kmpl} -> {result.new_kmpl} km/L",
            before_state={"calculated_kmpl": result.old_kmpl},
            after_state={
                "calculated_kmpl": result.new_kmpl,
                "method": result.method_label,
                "anchor_trip": result.anchor_serial_number,
            },
        )

    # Trip writes

    async def create_trip(self, data: Dict[str, Any]) -> WriteResult:
        """Insert a trip into its vehicle's ledger."""
        vehicle_id = data["vehicle_id"]

        async with self._atomic(vehicle_id) as vehicle:
            ledger = await self._ledger(vehicle_id)

            trip = Trip(**data)
            trip.owner_id = self.owner_id
            if not trip.trip_serial_number:
                trip.trip_serial_number = await TripStore.next_serial(self.db, self.owner_id, vehicle_id)

            stages = await self._validate_write(trip, ledger)
            await TripStore.insert(self.db, self.owner_id, trip)
            findings = self._record_validation(trip, stages)

            self.audit.record(
                AuditAction.TRIP_CREATED,
                "trip",
                trip.id,
                f"Trip {trip.trip_serial_number} created for vehicle {vehicle.registration_number}",
                after_state=trip_state(trip),
            )
            mileage = await self._sync_mileage(ledger + [trip])

        await self.db.refresh(trip)
        logger.info("Trip %s created for vehicle %s", trip.trip_serial_number, vehicle_id)
        return WriteResult(trip, findings, [m for m in mileage if m.changed])

    async def update_trip(self, trip_id: int, patch: Dict[str, Any]) -> WriteResult:
        """Edit a trip and re-run the full validation pipeline."""
        vehicle_id = await TripStore.get_vehicle_id(self.db, self.owner_id, trip_id)

        async with self._atomic(vehicle_id):
            trip = await TripStore.get(self.db, self.owner_id, trip_id)
            if trip.is_deleted:
                raise TripStateError(
                    f"Trip {trip.trip_serial_number} is deleted; recover it before editing",
                    details={"trip_id": trip_id}
                )

            ledger = await self._ledger(vehicle_id)
            before = trip_state(trip)
            await TripStore.update(self.db, self.owner_id, trip, patch)

            stages = await self._validate_write(trip, ledger)
            await self.db.flush()
            findings = self._record_validation(trip, stages)

            self.audit.record(
                AuditAction.TRIP_UPDATED,
                "trip",
                trip.id,
                f"Trip {trip.trip_serial_number} updated: {', '.join(sorted(patch))}",
                before_state=before,
                after_state=trip_state(trip),
            )
            mileage = await self._sync_mileage(ledger)

        await self.db.refresh(trip)
        logger.info("Trip %s updated", trip.trip_serial_number)
        return WriteResult(trip, findings, [m for m in mileage if m.changed])

    async def delete_trip(self, trip_id: int, reason: Optional[str] = None) -> DeletionResult:
        """
        Delete a trip through the deletion guard.

        A refueling trip whose removal would orphan later trips' mileage is
        soft-deleted instead; the result reports which one happened.
        """
        vehicle_id = await TripStore.get_vehicle_id(self.db, self.owner_id, trip_id)

        async with self._atomic(vehicle_id):
            trip = await TripStore.get(self.db, self.owner_id, trip_id)
            if trip.is_deleted:
                raise TripStateError(
                    f"Trip {trip.trip_serial_number} is already deleted",
                    details={"trip_id": trip_id}
                )

            ledger = await self._ledger(vehicle_id)
            plan = assess_deletion(ledger, trip)
            before = trip_state(trip)
            serial = trip.trip_serial_number

            try:
                guard_hard_delete(plan)
            except IntegrityProtectionError as exc:
                logger.warning("Converted delete of trip %s into soft delete: %s", serial, exc.message)
                await TripStore.soft_delete(self.db, self.owner_id, trip, reason)
                outcome = DeletionOutcome.SOFT_DELETED
                self.audit.record(
                    AuditAction.TRIP_DELETION_PREVENTED,
                    "trip",
                    trip_id,
                    f"Hard delete of refueling trip {serial} prevented; soft-deleted instead",
                    before_state=before,
                    after_state={**trip_state(trip), "affected_trips": plan.affected_serials},
                    severity=Severity.WARNING,
                    tags=["integrity_protection"],
                    note=reason,
                )
            else:
                await TripStore.hard_delete(self.db, self.owner_id, trip)
                outcome = DeletionOutcome.HARD_DELETED
                self.audit.record(
                    AuditAction.TRIP_DELETED,
                    "trip",
                    trip_id,
                    f"Trip {serial} deleted ({plan.later_trip_count} later trip(s))",
                    before_state=before,
                    after_state={"impact": plan.impact.value, "later_trip_count": plan.later_trip_count},
                    note=reason,
                )

            remaining = [t for t in ledger if t is not trip]
            mileage = await self._sync_mileage(remaining)

        return DeletionResult(
            trip_id=trip_id,
            trip_serial_number=serial,
            outcome=outcome,
            impact=plan.impact,
            message=plan.message,
            later_trip_count=plan.later_trip_count,
            affected_trips=plan.affected_serials,
            mileage_updates=[m for m in mileage if m.changed],
        )

    async def recover_trip(self, trip_id: int, reason: Optional[str] = None) -> WriteResult:
        """
        Bring a soft-deleted trip back into the ledger.

        The trip is validated like a new insert; on failure it stays deleted.
        """
        vehicle_id = await TripStore.get_vehicle_id(self.db, self.owner_id, trip_id)

        async with self._atomic(vehicle_id):
            trip = await TripStore.get(self.db, self.owner_id, trip_id)
            if not trip.is_deleted:
                raise TripStateError(
                    f"Trip {trip.trip_serial_number} is not deleted",
                    details={"trip_id": trip_id}
                )

            ledger = await self._ledger(vehicle_id)
            before = trip_state(trip)
            await TripStore.restore(self.db, self.owner_id, trip)

            stages = await self._validate_write(trip, ledger)
            await self.db.flush()
            findings = self._record_validation(trip, stages)

            self.audit.record(
                AuditAction.TRIP_RECOVERED,
                "trip",
                trip.id,
                f"Trip {trip.trip_serial_number} recovered",
                before_state=before,
                after_state=trip_state(trip),
                note=reason,
            )
            mileage = await self._sync_mileage(ledger + [trip])

        await self.db.refresh(trip)
        logger.info("Trip %s recovered", trip.trip_serial_number)
        return WriteResult(trip, findings, [m for m in mileage if m.changed])

    # Corrections

    async def _load_active_trip(self, trip_id: int) -> Trip:
        trip = await TripStore.get(self.db, self.owner_id, trip_id)
        if trip.is_deleted:
            raise TripStateError(
                f"Trip {trip.trip_serial_number} is deleted",
                details={"trip_id": trip_id}
            )
        return trip

    async def preview_correction(self, trip_id: int, new_end_km: int) -> Tuple[CascadePlan, List[Finding]]:
        """Would-be effect of an odometer correction. Nothing is written."""
        trip = await self._load_active_trip(trip_id)
        ledger = await self._ledger(trip.vehicle_id)
        plan = plan_cascade(ledger, trip, new_end_km, self.thresholds)
        return plan, validate_cascade(plan)

    async def correct_odometer(self, trip_id: int, new_end_km: int, reason: str) -> CorrectionResult:
        """
        Correct a trip's end reading and shift every later trip by the same delta.

        All or nothing: a correction touching more trips than the cascade
        limit, or producing a negative reading, changes nothing.
        """
        vehicle_id = await TripStore.get_vehicle_id(self.db, self.owner_id, trip_id)

        async with self._atomic(vehicle_id):
            trip = await self._load_active_trip(trip_id)
            ledger = await self._ledger(vehicle_id)

            plan = plan_cascade(ledger, trip, new_end_km, self.thresholds)
            cascade_errors = validate_cascade(plan)
            if plan.truncated:
                self._reject(trip, errors_in(cascade_errors), CascadeLimitExceededError)
            self._raise_on_errors(trip, cascade_errors)

            trip_before = trip_state(trip)
            shifted_before = {shift.trip: trip_state(shift.trip) for shift in plan.shifts}
            apply_cascade_plan(plan)

            findings = validate_value_ranges(trip, self.thresholds)
            self._raise_on_errors(trip, findings)
            findings = self._record_validation(trip, [(AuditAction.VALUE_RANGE_VALIDATION, findings)])

            self.db.add(TripCorrection(
                trip_id=trip.id,
                field_name="end_km",
                old_value=str(plan.old_end_km),
                new_value=str(plan.new_end_km),
                correction_reason=reason,
                affects_subsequent_trips=bool(plan.shifts),
                corrected_by=self.actor_id,
            ))
            self.audit.record(
                AuditAction.ODOMETER_CORRECTED,
                "trip",
                trip.id,
                f"End reading of trip {trip.trip_serial_number} corrected "
                f"{plan.old_end_km} -> {plan.new_end_km} km ({len(plan.shifts)} later trip(s) shifted)",
                before_state=trip_before,
                after_state=trip_state(trip),
                note=reason,
            )

            for shift in plan.shifts:
                self.db.add(TripCorrection(
                    trip_id=shift.trip_id,
                    field_name="odometer_cascade",
                    old_value=f"{shift.old_start_km}-{shift.old_end_km}",
                    new_value=f"{shift.new_start_km}-{shift.new_end_km}",
                    correction_reason=f"Cascade from trip {trip.trip_serial_number}: {reason}",
                    affects_subsequent_trips=False,
                    corrected_by=self.actor_id,
                ))
                self.audit.record(
                    AuditAction.ODOMETER_CASCADE,
                    "trip",
                    shift.trip_id,
                    f"Trip {shift.trip_serial_number} shifted by {plan.delta:+d} km "
                    f"after correction of {trip.trip_serial_number}",
                    before_state=shifted_before[shift.trip],
                    after_state=trip_state(shift.trip),
                    tags=["cascade"],
                    note=reason,
                )

            await self.db.flush()
            mileage = await self._sync_mileage(ledger)

        await self.db.refresh(trip)
        logger.info(
            "Odometer of trip %s corrected by %+d km, %d later trip(s) shifted",
            trip.trip_serial_number, plan.delta, len(plan.shifts)
        )
        return CorrectionResult(trip, plan, findings, [m for m in mileage if m.changed])

    # Mileage chain

    async def recalculate_trip_mileage(self, trip_id: int, force: bool = False) -> MileageResult:
        """Recompute one trip's km/L; writes only when it drifted (or ``force``)."""
        vehicle_id = await TripStore.get_vehicle_id(self.db, self.owner_id, trip_id)

        async with self._atomic(vehicle_id):
            trip = await self._load_active_trip(trip_id)
            ledger = await self._ledger(vehicle_id)
            result = recalculate(ledger, trip, self.thresholds, force=force)
            if result.changed or force:
                self._record_mileage(result)
                await self.db.flush()

        return result

    async def rebuild_mileage_chain(self, vehicle_id: int) -> Dict[str, Any]:
        """Recompute every refueling trip of a vehicle in one pass."""
        async with self._atomic(vehicle_id):
            ledger = await self._ledger(vehicle_id)
            results = await self._sync_mileage(ledger)

        processed = sum(1 for r in results if r.trip.is_refueling)
        updated = [r for r in results if r.changed]
        if updated:
            message = f"Mileage chain rebuilt: {len(updated)} of {processed} refueling trip(s) updated"
        else:
            message = f"Mileage chain consistent: {processed} refueling trip(s) checked"
        logger.info("Vehicle %s: %s", vehicle_id, message)

        return {
            "vehicle_id": vehicle_id,
            "trips_processed": processed,
            "trips_updated": len(updated),
            "status": message,
            "updates": updated,
        }

    async def validate_mileage_chain(
        self,
        vehicle_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        repair: bool = False
    ) -> Dict[str, Any]:
        """
        Compare stored and expected km/L for a vehicle.

        With ``repair`` the chain is rebuilt first and the report reflects
        the repaired ledger.
        """
        trips_repaired = 0
        if repair:
            rebuilt = await self.rebuild_mileage_chain(vehicle_id)
            trips_repaired = rebuilt["trips_updated"]
        else:
            await get_owned_vehicle(self.db, self.owner_id, vehicle_id)

        ledger = await self._ledger(vehicle_id)
        rows = validate_chain(ledger, self.thresholds)

        start, end = day_bounds(date_from, date_to)
        rows = [
            row for row in rows
            if (start is None or row["start_time"] >= start) and (end is None or row["start_time"] < end)
        ]

        return {
            "vehicle_id": vehicle_id,
            "total_trips": len(rows),
            "invalid_count": sum(1 for row in rows if not row["chain_valid"]),
            "unrealistic_count": sum(1 for row in rows if row["unrealistic"]),
            "repaired": repair,
            "trips_repaired": trips_repaired,
            "entries": rows,
        }

    async def detect_chain_breaks(self, vehicle_id: int) -> List[Dict[str, Any]]:
        await get_owned_vehicle(self.db, self.owner_id, vehicle_id)
        ledger = await self._ledger(vehicle_id)
        return detect_chain_breaks(ledger, self.thresholds)

    # Reports

    async def find_overlaps(
        self,
        vehicle_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> List[Dict[str, Any]]:
        """Overlapping trip pairs of the owner, optionally narrowed to a vehicle or driver."""
        if vehicle_id is not None:
            await get_owned_vehicle(self.db, self.owner_id, vehicle_id)

        trips = await TripStore.list_trips(self.db, self.owner_id, date_from=date_from, date_to=date_to)
        pairs = find_overlapping_pairs(trips, self.thresholds)

        if vehicle_id is not None:
            pairs = [p for p in pairs if vehicle_id in (p["vehicle_id"], p["conflicting_vehicle_id"])]
        if driver_id is not None:
            pairs = [p for p in pairs if driver_id in (p["driver_id"], p["conflicting_driver_id"])]
        return pairs

    async def analyze_vehicle_continuity(
        self,
        vehicle_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> Dict[str, Any]:
        vehicle = await get_owned_vehicle(self.db, self.owner_id, vehicle_id)
        trips = await TripStore.list_trips(
            self.db, self.owner_id, vehicle_id=vehicle_id, date_from=date_from, date_to=date_to
        )
        report = analyze_vehicle_continuity(trips, self.thresholds)
        report["vehicle_id"] = vehicle.id
        report["registration_number"] = vehicle.registration_number
        return report

    async def analyze_value_anomalies(
        self,
        vehicle_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        include_edge_cases: bool = True
    ) -> List[Dict[str, Any]]:
        if vehicle_id is not None:
            await get_owned_vehicle(self.db, self.owner_id, vehicle_id)
        trips = await TripStore.list_trips(
            self.db, self.owner_id, vehicle_id=vehicle_id, date_from=date_from, date_to=date_to
        )
        return analyze_value_anomalies(trips, self.thresholds, include_edge_cases)

    async def check_availability(
        self,
        start_time: datetime,
        end_time: datetime,
        vehicle_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        exclude_trip_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """Whether a vehicle and/or driver is free for an interval."""
        if vehicle_id is None and driver_id is None:
            raise AppException(
                "Provide a vehicle_id or a driver_id",
                "ERR_BAD_REQUEST",
                status.HTTP_400_BAD_REQUEST
            )
        if end_time <= start_time:
            raise AppException(
                "end_time must be after start_time",
                "ERR_BAD_REQUEST",
                status.HTTP_400_BAD_REQUEST
            )

        trips: Dict[int, Trip] = {}
        if vehicle_id is not None:
            await get_owned_vehicle(self.db, self.owner_id, vehicle_id)
            for trip in await self._ledger(vehicle_id):
                trips[trip.id] = trip
        if driver_id is not None:
            for trip in await TripStore.list_by_driver(self.db, self.owner_id, driver_id):
                trips[trip.id] = trip

        return check_availability(
            list(trips.values()),
            start_time,
            end_time,
            vehicle_id=vehicle_id,
            driver_id=driver_id,
            exclude_trip_id=exclude_trip_id,
        )
