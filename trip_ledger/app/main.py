"""
FastAPI Application Entry Point.

This is the main application file for the Trip Ledger Integrity Service.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from trip_ledger.app.core.config import settings
from trip_ledger.app.api.v1.router import router as api_v1_router
from trip_ledger.app.core.jwt import create_access_token
from trip_ledger.app.core.observability import ObservabilityMiddleware, configure_logging
from trip_ledger.app.db.session import engine, Base
from trip_ledger.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from trip_ledger.app.models.vehicle import Vehicle
from trip_ledger.app.models.trip import Trip
from trip_ledger.app.models.trip_correction import TripCorrection
from trip_ledger.app.models.audit_log import AuditLog

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Validation, continuity and mileage integrity for vehicle trip ledgers",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to the Trip Ledger Integrity API",
        "docs": "/docs",
        "health": "/health",
    }


# Token helpers for local development; real tokens come from the identity service
@app.post("/auth/test-token", tags=["Authentication"])
async def generate_test_token(user_id: int = 1, username: str = "test_user"):
    """Generate a test JWT token."""
    if not settings.debug:
        raise HTTPException(status_code=404, detail="Not Found")
    token = create_access_token(data={"sub": username, "user_id": user_id})
    return {
        "access_token": token,
        "token_type": "bearer",
        "user_id": user_id,
        "username": username,
    }

