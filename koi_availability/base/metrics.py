from prometheus_client import Counter, Histogram


# === Schedule Fetch Metrics ===

schedule_fetch_attempts = Counter(
    "schedule_fetch_attempts_total", "Backend schedule fetch attempts",
    ["strategy", "outcome"]
)

schedule_fetch_degraded = Counter(
    "schedule_fetch_degraded_total", "Fetches that fell back to a non-network source",
    ["source"]
)

# === Availability Metrics ===

availability_computation_seconds = Histogram(
    "availability_computation_seconds", "Time spent ingesting and resolving availability"
)

superseded_refresh_count = Counter(
    "superseded_refresh_total", "Refreshes discarded because a newer one replaced them"
)

# === API Metrics ===

api_exception_counter = Counter(
    "api_exception_count", "Total API exceptions by type",
    ["type"]
)
