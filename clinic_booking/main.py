# clinic_booking/main.py
from __future__ import annotations

# Load .env early so settings and os.getenv agree
from dotenv import load_dotenv
load_dotenv()

import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_booking.core.config import settings
from clinic_booking.core.errors import BookingError, ErrorSeverity, error_aggregator, log_error
from clinic_booking.core.logging import LoggingMiddleware, get_logger, setup_logging
from clinic_booking.crud.store import BookingStore
from clinic_booking.api.deps import get_store
from clinic_booking.schemas.booking import validation_error_from

# Set up structured logging
setup_logging(debug=settings.is_development, max_log_length=settings.MAX_LOG_LENGTH, level=settings.LOG_LEVEL)
logger = get_logger(__name__)

from clinic_booking.api.routes.admin import router as admin_router
from clinic_booking.api.routes.availability import router as availability_router
from clinic_booking.api.routes.bookings import router as bookings_router
from clinic_booking.api.routes.catalog import router as catalog_router
from clinic_booking.api.routes.cancel import router as cancel_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("application_startup", store_backend=settings.STORE_BACKEND, app_env=settings.APP_ENV)
    yield
    logger.info("application_shutdown")


app = FastAPI(
    title="Clinic Booking",
    description="Slot availability, booking lifecycle and cancellation for a medical practice",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)
app.middleware("http")(LoggingMiddleware(log_requests=settings.LOG_REQUESTS))


# -------- Error mapping --------

@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    log_error(exc, {"endpoint": request.url.path, "error_key": exc.error_key})
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    err = validation_error_from(exc)
    log_error(err, {"endpoint": request.url.path, "error_key": err.error_key}, ErrorSeverity.LOW)
    return JSONResponse(err.to_dict(), status_code=err.status_code)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    log_error(exc, {"endpoint": request.url.path, "component": "api"}, ErrorSeverity.HIGH)
    return JSONResponse({"success": False, "error_key": BookingError.error_key}, status_code=500)


# -------- Health / readiness (public) --------

@app.get("/healthz", include_in_schema=False)
async def healthz():
    return {"ok": True}


@app.get("/readyz", include_in_schema=False)
async def readyz(store: BookingStore = Depends(get_store)):
    await store.ping()
    return {"store": "ok", "backend": settings.STORE_BACKEND}


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Internal metrics endpoint for monitoring."""
    return {
        "status": "healthy",
        "errors": error_aggregator.get_error_summary(),
        "timestamp": time.time(),
    }


# -------- Include routers --------
app.include_router(catalog_router)
app.include_router(availability_router)
app.include_router(bookings_router)
app.include_router(cancel_router)
app.include_router(admin_router)
