# koi_availability/services/schedule_fetch_service.py

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from pydantic import ValidationError

from koi_availability.base.config import settings
from koi_availability.base.exceptions import ScheduleFetchError
from koi_availability.base.metrics import schedule_fetch_attempts, schedule_fetch_degraded
from koi_availability.base.models import ALL_MASTERS, Master
from koi_availability.models.backend_wrapper import BookingBackendClient
from koi_availability.utils.schedule_cache import ROSTER_KEY, ScheduleCache

logger = logging.getLogger("schedule_fetch")

T = TypeVar("T")

ADVISORY_STALE = "Could not refresh schedule, showing last known data"
ADVISORY_EMPTY = "Could not refresh schedule, availability may be incomplete"


@dataclass
class FetchOutcome:
    records: List[Dict[str, Any]]
    source: str  # network, cache or empty
    strategy: Optional[str] = None
    stale: bool = False
    advisory: Optional[str] = None


@dataclass
class StrategyResult:
    records: List[Dict[str, Any]]
    groups: Dict[str, List[Dict[str, Any]]]  # fresh payload per cache key
    failed_masters: List[str] = field(default_factory=list)


def retry_with_backoff(
    operation: Callable[[], T],
    label: str,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Runs ``operation`` until it succeeds or the attempt budget is spent.

    Only transient ScheduleFetchErrors are retried. After failed attempt n
    the wait is ``n * base_delay`` seconds.
    """
    max_attempts = max(1, max_attempts or settings.FETCH_MAX_ATTEMPTS)
    base_delay = settings.FETCH_BASE_DELAY_SECONDS if base_delay is None else base_delay

    for attempt in range(1, max_attempts + 1):
        try:
            result = operation()
            schedule_fetch_attempts.labels(strategy=label, outcome="success").inc()
            return result
        except ScheduleFetchError as e:
            if not e.transient:
                schedule_fetch_attempts.labels(strategy=label, outcome="fatal").inc()
                logger.warning(f"[Fetch] {label} failed permanently: {e}")
                raise
            schedule_fetch_attempts.labels(strategy=label, outcome="transient").inc()
            if attempt == max_attempts:
                logger.warning(f"[Fetch] {label} gave up after {attempt} attempts: {e}")
                raise
            delay = attempt * base_delay
            logger.info(f"[Fetch] {label} attempt {attempt}/{max_attempts} failed ({e}); retrying in {delay:.1f}s")
            sleep(delay)


def _group_by_master(records: Sequence[Any]) -> Dict[str, List[Dict[str, Any]]]:
    groups: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for raw in records:
        if not isinstance(raw, dict):
            continue
        master_id = raw.get("masterId") or raw.get("master_id")
        groups[str(master_id).strip() if master_id else ALL_MASTERS].append(raw)
    return dict(groups)


# === Fetch strategies, tried in order ===

class FetchStrategy:
    name = "base"

    def applies(self, master_id: Optional[str]) -> bool:
        return True

    def fetch(self, service: "ScheduleFetchService", master_id: Optional[str], roster: List[str]) -> StrategyResult:
        raise NotImplementedError


class MasterScheduleStrategy(FetchStrategy):
    """Dedicated per-master endpoint; only meaningful when a master is selected."""
    name = "master_schedule"

    def applies(self, master_id: Optional[str]) -> bool:
        return bool(master_id)

    def fetch(self, service, master_id, roster):
        records = service.call(self.name, lambda: service.client.get_master_schedule(master_id))
        return StrategyResult(records=records, groups={master_id: records})


class AllSchedulesStrategy(FetchStrategy):
    """Generic endpoint returning every master's schedule."""
    name = "all_schedules"

    def fetch(self, service, master_id, roster):
        records = service.call(self.name, lambda: service.client.get_all_schedules())
        groups = _group_by_master(records)
        for known in roster:
            groups.setdefault(known, [])

        if master_id:
            selected = groups.get(master_id, []) + groups.get(ALL_MASTERS, [])
            groups.setdefault(master_id, [])
            return StrategyResult(records=selected, groups=groups)
        return StrategyResult(records=[r for group in groups.values() for r in group], groups=groups)


class PerMasterLoopStrategy(FetchStrategy):
    """
    Any-master fallback: hits the per-master endpoint for each roster master.
    Masters that keep failing contribute their cached entry, if any.
    """
    name = "per_master_loop"

    def applies(self, master_id: Optional[str]) -> bool:
        return not master_id

    def fetch(self, service, master_id, roster):
        if not roster:
            raise ScheduleFetchError("No roster available for per-master fetch")

        records: List[Dict[str, Any]] = []
        groups: Dict[str, List[Dict[str, Any]]] = {}
        failed: List[str] = []
        for known in roster:
            try:
                fetched = service.call(self.name, lambda m=known: service.client.get_master_schedule(m))
            except ScheduleFetchError:
                failed.append(known)
                records.extend(service.cache.get(known) or [])
                continue
            groups[known] = fetched
            records.extend(fetched)

        if not groups:
            raise ScheduleFetchError(f"Per-master fetch failed for all {len(roster)} masters")
        return StrategyResult(records=records, groups=groups, failed_masters=failed)


DEFAULT_STRATEGIES: List[FetchStrategy] = [
    MasterScheduleStrategy(),
    AllSchedulesStrategy(),
    PerMasterLoopStrategy(),
]


class ScheduleFetchService:
    """
    Fetches booking records and the master roster with bounded retry,
    then falls back to the local cache, then to an empty set.
    Never raises to its caller.
    """

    def __init__(
        self,
        client: Optional[BookingBackendClient] = None,
        cache: Optional[ScheduleCache] = None,
        strategies: Optional[List[FetchStrategy]] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client or BookingBackendClient()
        self.cache = cache if cache is not None else ScheduleCache(settings.SCHEDULE_CACHE_PATH)
        self.strategies = strategies if strategies is not None else list(DEFAULT_STRATEGIES)
        self.max_attempts = max_attempts or settings.FETCH_MAX_ATTEMPTS
        self.base_delay = settings.FETCH_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self.sleep = sleep

    def call(self, label: str, operation: Callable[[], T]) -> T:
        return retry_with_backoff(operation, label, self.max_attempts, self.base_delay, self.sleep)

    # === Roster ===

    def fetch_roster(self, pending: Optional[Dict[str, List[Any]]] = None) -> List[Master]:
        """
        Active masters: network, else cached roster, else empty.

        When ``pending`` is given the fresh payload is staged there instead of
        being written to the cache; the caller decides whether to ``commit``.
        """
        try:
            raw = self.call("roster", self.client.get_all_masters)
            self._stage(ROSTER_KEY, raw, pending)
            return self._parse_roster(raw)
        except ScheduleFetchError as e:
            logger.warning(f"[Fetch] Roster unavailable: {e}")

        cached = self.cache.get(ROSTER_KEY)
        if cached is not None:
            schedule_fetch_degraded.labels(source="cache").inc()
            logger.warning(f"[Fetch] Using cached roster from {self.cache.stored_at(ROSTER_KEY)}")
            return self._parse_roster(cached)

        schedule_fetch_degraded.labels(source="empty").inc()
        logger.warning("[Fetch] No roster known; any-master aggregate rule disabled")
        return []

    def _parse_roster(self, raw: Sequence[Any]) -> List[Master]:
        masters = []
        for entry in raw:
            try:
                masters.append(Master.model_validate(entry))
            except ValidationError:
                logger.warning(f"[Fetch] Skipping malformed roster entry: {entry!r}")
        return masters

    # === Booking records ===

    def fetch_schedule(
        self,
        master_id: Optional[str] = None,
        roster: Optional[List[str]] = None,
        pending: Optional[Dict[str, List[Any]]] = None,
    ) -> FetchOutcome:
        if roster is None:
            roster = [m.master_id for m in self.fetch_roster(pending)]

        for strategy in self.strategies:
            if not strategy.applies(master_id):
                continue
            try:
                result = strategy.fetch(self, master_id, roster)
            except ScheduleFetchError as e:
                logger.warning(f"[Fetch] Strategy {strategy.name} failed: {e}")
                continue

            for key, records in result.groups.items():
                self._stage(key, records, pending)

            stale = bool(result.failed_masters)
            logger.info(
                f"[Fetch] {strategy.name} -> {len(result.records)} records"
                + (f" (stale for {result.failed_masters})" if stale else "")
            )
            return FetchOutcome(
                records=result.records,
                source="network",
                strategy=strategy.name,
                stale=stale,
                advisory=ADVISORY_STALE if stale else None,
            )

        return self._degrade(master_id, roster)

    def commit(self, pending: Dict[str, List[Any]]) -> None:
        """Writes staged payloads to the cache."""
        for key, records in pending.items():
            self.cache.set(key, records)

    def _stage(self, key: str, records: List[Any], pending: Optional[Dict[str, List[Any]]]) -> None:
        if pending is None:
            self.cache.set(key, records)
        else:
            pending[key] = records

    def _degrade(self, master_id: Optional[str], roster: List[str]) -> FetchOutcome:
        if master_id:
            keys = [master_id]
        else:
            keys = list(roster) or [k for k in self.cache.keys() if k not in (ROSTER_KEY, ALL_MASTERS)]

        hits = [cached for cached in (self.cache.get(key) for key in keys) if cached is not None]
        if hits:
            records = [r for cached in hits for r in cached] + (self.cache.get(ALL_MASTERS) or [])
            schedule_fetch_degraded.labels(source="cache").inc()
            logger.warning(f"[Fetch] All strategies failed; serving {len(records)} cached records (master={master_id})")
            return FetchOutcome(records=records, source="cache", stale=True, advisory=ADVISORY_STALE)

        schedule_fetch_degraded.labels(source="empty").inc()
        logger.warning(f"[Fetch] All strategies failed and nothing cached (master={master_id}); treating as open")
        return FetchOutcome(records=[], source="empty", stale=True, advisory=ADVISORY_EMPTY)
