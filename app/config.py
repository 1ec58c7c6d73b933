import os
from dotenv import load_dotenv


load_dotenv()

# Use SQLite for development, but allow override for production
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./appointments.db")

# All wall-clock times (working hours, "today") are in the clinic's local zone
CLINIC_TIMEZONE = os.environ.get("CLINIC_TIMEZONE", "UTC")

# Patients may book at most this many days ahead (3 months in the booking form)
BOOKING_HORIZON_DAYS = int(os.environ.get("BOOKING_HORIZON_DAYS", "90"))

# Bounded wait for the per-partition and per-appointment locks
LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))

# Retried booking requests with the same key inside this window are deduplicated
IDEMPOTENCY_WINDOW_SECONDS = int(os.environ.get("IDEMPOTENCY_WINDOW_SECONDS", "600"))

# 0 means the emergency lane is unbounded
MAX_EMERGENCY_SLOTS = int(os.environ.get("MAX_EMERGENCY_SLOTS", "0"))

# Used for the patient-facing estimated wait
AVERAGE_CONSULTATION_MINUTES = int(os.environ.get("AVERAGE_CONSULTATION_MINUTES", "15"))

CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]

SEED_DOCTORS = os.environ.get("SEED_DOCTORS", "true").lower() == "true"
