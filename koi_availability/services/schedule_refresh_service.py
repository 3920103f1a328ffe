# koi_availability/services/schedule_refresh_service.py

import asyncio
import itertools
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from koi_availability.base.metrics import superseded_refresh_count
from koi_availability.base.models import Master, MonthAvailability, SlotsResponse
from koi_availability.services.availability_service import AvailabilityService
from koi_availability.services.schedule_fetch_service import FetchOutcome, ScheduleFetchService

logger = logging.getLogger("schedule_refresh")

Fetched = Tuple[List[Master], FetchOutcome]


class ScheduleRefreshService:
    """
    Coordinates fetch + recompute for UI events (date pick, master change,
    pull-to-refresh).

    Keys are scoped to a caller (``client_id``) plus date/month and master.
    At most one fetch per key is live: a newer call for the same key cancels
    the older one, and the older caller gets ``None`` instead of a result.
    Cache writes from a fetch are applied only if its call is still current.
    """

    def __init__(
        self,
        fetch_service: Optional[ScheduleFetchService] = None,
        availability_service: Optional[AvailabilityService] = None,
    ):
        self.fetch_service = fetch_service or ScheduleFetchService()
        self.availability = availability_service or AvailabilityService()
        self._tokens = itertools.count(1)
        self._generations: Dict[str, int] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    async def refresh(
        self,
        target_date: date,
        master_id: Optional[str] = None,
        today: Optional[date] = None,
        client_id: Optional[str] = None,
    ) -> Optional[SlotsResponse]:
        fetched = await self._run(self.day_key(target_date, master_id, client_id), master_id)
        if fetched is None:
            return None

        roster, outcome = fetched
        self.availability.load(outcome.records, roster, master_id)
        result = self.availability.available_slots(target_date, master_id, today)
        return SlotsResponse(
            **result.model_dump(),
            source=outcome.source,
            stale=outcome.stale,
            advisory=outcome.advisory,
        )

    async def refresh_month(
        self,
        year: int,
        month: int,
        master_id: Optional[str] = None,
        today: Optional[date] = None,
        client_id: Optional[str] = None,
    ) -> Optional[MonthAvailability]:
        fetched = await self._run(self.month_key(year, month, master_id, client_id), master_id)
        if fetched is None:
            return None

        roster, outcome = fetched
        self.availability.load(outcome.records, roster, master_id)
        month_view = self.availability.month_availability(year, month, master_id, today)
        return month_view.model_copy(update={
            "source": outcome.source,
            "stale": outcome.stale,
            "advisory": outcome.advisory,
        })

    def cancel(self, key: str) -> bool:
        """Drops whatever is in flight for ``key`` (user navigated away)."""
        self._generations.pop(key, None)
        task = self._inflight.pop(key, None)
        if task is not None and not task.done():
            task.cancel()
            return True
        return False

    def cancel_all(self) -> int:
        return sum(1 for key in list(self._inflight) if self.cancel(key))

    @staticmethod
    def day_key(target_date: date, master_id: Optional[str] = None, client_id: Optional[str] = None) -> str:
        return f"{client_id or ''}|{target_date.isoformat()}|{master_id or '*'}"

    @staticmethod
    def month_key(year: int, month: int, master_id: Optional[str] = None, client_id: Optional[str] = None) -> str:
        return f"{client_id or ''}|{year:04d}-{month:02d}|{master_id or '*'}"

    # === Internal ===

    def _fetch(self, master_id: Optional[str]) -> Tuple[List[Master], FetchOutcome, Dict[str, List[Any]]]:
        pending: Dict[str, List[Any]] = {}
        roster = self.fetch_service.fetch_roster(pending)
        outcome = self.fetch_service.fetch_schedule(master_id, [m.master_id for m in roster], pending)
        return roster, outcome, pending

    async def _run(self, key: str, master_id: Optional[str]) -> Optional[Fetched]:
        generation = next(self._tokens)
        self._generations[key] = generation

        previous = self._inflight.get(key)
        if previous is not None and not previous.done():
            logger.info(f"[Refresh] Superseding in-flight fetch for {key}")
            previous.cancel()

        task = asyncio.ensure_future(asyncio.to_thread(self._fetch, master_id))
        self._inflight[key] = task
        try:
            roster, outcome, pending = await task
        except asyncio.CancelledError:
            if self._is_current(key, generation):
                self._retire(key, generation)
                raise
            return self._discard(key, generation)
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

        if not self._is_current(key, generation):
            return self._discard(key, generation)

        self.fetch_service.commit(pending)
        self._retire(key, generation)
        return roster, outcome

    def _is_current(self, key: str, generation: int) -> bool:
        return self._generations.get(key) == generation

    def _retire(self, key: str, generation: int) -> None:
        if self._is_current(key, generation):
            del self._generations[key]

    def _discard(self, key: str, generation: int) -> None:
        superseded_refresh_count.inc()
        logger.info(f"[Refresh] Discarded result for {key} (generation {generation})")
        return None
