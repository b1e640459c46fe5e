"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from trip_ledger.app.api.v1.endpoints import vehicles, trips, ledger_reports

router = APIRouter()

router.include_router(vehicles.router)

# Trip ledger writes, deletion guard and odometer corrections
router.include_router(trips.router)

# Mileage chain maintenance and integrity reports
router.include_router(ledger_reports.router)
