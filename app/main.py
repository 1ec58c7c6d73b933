import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.config import CORS_ORIGINS, SEED_DOCTORS
from app.exceptions import (
    AuthorizationError,
    DoctorUnavailableError,
    EmergencyLaneFullError,
    IllegalTransitionError,
    InternalError,
    NoChangeError,
    NoWorkingHoursError,
    NotFoundError,
    PartitionLockTimeout,
    PastDateError,
    SchedulingError,
    TooFarAheadError,
    ValidationError,
)
from app.routes import appointment, doctor, queue


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


STATUS_CODES = {
    ValidationError: 400,
    PastDateError: 400,
    TooFarAheadError: 400,
    NoChangeError: 400,
    AuthorizationError: 403,
    NotFoundError: 404,
    DoctorUnavailableError: 409,
    NoWorkingHoursError: 409,
    EmergencyLaneFullError: 409,
    IllegalTransitionError: 409,
    PartitionLockTimeout: 503,
    InternalError: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize DB
    from app.db import init_db
    init_db()

    # Seed doctors data
    if SEED_DOCTORS:
        try:
            from seed_doctors import seed_doctors
            seed_doctors()
        except Exception as e:
            logger.warning(f"Failed to seed doctors: {e}")
    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Clinic Queue Booking Service", docs_url="/docs", redoc_url="/redoc", lifespan=lifespan)


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(appointment.router, prefix="/api")
app.include_router(queue.router, prefix="/api")
app.include_router(doctor.router, prefix="/api")


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    status_code = STATUS_CODES.get(type(exc), 400)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}: {exc.message}")
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


@app.get("/")
async def home():
    return {"status": "ok", "message": "Clinic Queue Booking Service: visit /docs"}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
