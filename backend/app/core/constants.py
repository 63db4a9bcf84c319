"""Application-wide constants for the TutorHub scheduling engine."""

from __future__ import annotations

BRAND_NAME = "TutorHub"
API_VERSION = "1.0.0"

# Booking duration constraints
MIN_BOOKING_MINUTES = 15  # minutes
MAX_BOOKING_MINUTES = 480  # minutes (8 hours)

# Availability expansion
DEFAULT_EXPANSION_WEEKS = 4
MAX_EXPANSION_WEEKS = 52
DAYS_PER_WEEK = 7

# Ledger
DEFAULT_PAYMENT_INTERVAL_HOURS = 10
# Reminders fire this many hours before the billing threshold is reached
PAYMENT_REMINDER_LEAD_HOURS = 1

# Text constraints
MAX_SUBJECT_LENGTH = 100
MAX_NOTES_LENGTH = 2000
MAX_REASON_LENGTH = 255

# Query limits
DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 500

# API metadata
API_TITLE = f"{BRAND_NAME} Scheduling & Ledger API"
API_DESCRIPTION = (
    "Availability, booking, appointment lifecycle and lecture-hour ledger "
    "endpoints for the tutoring marketplace."
)
