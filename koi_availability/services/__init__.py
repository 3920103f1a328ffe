"""
Koi Availability Services Module

Schedule ingestion, availability resolution, resilient backend fetching and
refresh coordination for the consultation booking calendar.
"""

# === Occupancy & Availability ===
from .schedule_ingestor_service import ScheduleIngestorService, parse_booking_records
from .availability_service import AvailabilityResolver, AvailabilityService, compute_availability

# === Backend Fetching ===
from .schedule_fetch_service import FetchOutcome, ScheduleFetchService, retry_with_backoff

# === UI Refresh Coordination ===
from .schedule_refresh_service import ScheduleRefreshService

# === Exported Interface ===
__all__ = [
    "ScheduleIngestorService",
    "parse_booking_records",
    "AvailabilityResolver",
    "AvailabilityService",
    "compute_availability",
    "FetchOutcome",
    "ScheduleFetchService",
    "retry_with_backoff",
    "ScheduleRefreshService",
]
