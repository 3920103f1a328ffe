# koi_availability/services/availability_service.py

import calendar
import logging
import threading
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from koi_availability.base.metrics import availability_computation_seconds
from koi_availability.base.models import (
    ALL_MASTERS,
    AvailabilityResult,
    BookingKind,
    DayOccupancy,
    Master,
    MonthAvailability,
    MonthDay,
    SlotAvailability,
    SlotReason,
    TimeSlot,
)
from koi_availability.base.utils.slot_templates import FIXED_SLOTS, get_slot
from koi_availability.base.utils.time_utils import today_local
from koi_availability.services.schedule_ingestor_service import (
    ScheduleIngestorService,
    parse_booking_records,
)

logger = logging.getLogger("availability")

OccupancyMap = Dict[str, DayOccupancy]
ANY_MASTER_KEY = "*"


def roster_ids(roster: Iterable[Union[Master, Dict[str, Any], str]]) -> List[str]:
    """Master ids from Master models, raw backend dicts or plain ids."""
    ids = []
    for entry in roster or []:
        if isinstance(entry, Master):
            ids.append(entry.master_id)
        elif isinstance(entry, dict):
            master_id = entry.get("masterId") or entry.get("master_id")
            if master_id:
                ids.append(str(master_id).strip())
        elif entry:
            ids.append(str(entry).strip())
    return ids


class AvailabilityResolver:
    """
    Decides slot and day availability from an occupancy map.

    Missing occupancy for a date means "nothing known", which resolves to
    available. Dates up to and including today are always past the cutoff.
    """

    def is_slot_available(
        self,
        occupancy: OccupancyMap,
        target_date: date,
        slot: Union[TimeSlot, str],
        selected_master_id: Optional[str] = None,
        roster: Iterable[str] = (),
        today: Optional[date] = None,
    ) -> SlotAvailability:
        slot = self._as_slot(slot)
        today = today or today_local()

        if target_date <= today:
            return self._unavailable(slot, SlotReason.PAST_CUTOFF)

        day = occupancy.get(target_date.isoformat())
        if day is None:
            return self._available(slot)

        if selected_master_id:
            if day.is_day_blocked_for(selected_master_id):
                return self._unavailable(slot, SlotReason.BLOCKED_FOR_ALL_MASTERS)
        elif day.blocked_for_all or ALL_MASTERS in day.blocked_masters:
            return self._unavailable(slot, SlotReason.BLOCKED_FOR_ALL_MASTERS)

        busy = day.busy_masters(slot.start)
        if ALL_MASTERS in busy:
            return self._unavailable(slot, SlotReason.BLOCKED_FOR_ALL_MASTERS)

        if selected_master_id:
            if selected_master_id in busy:
                kinds = day.kinds_for(slot.start, selected_master_id)
                if BookingKind.ONLINE in kinds:
                    return self._unavailable(slot, SlotReason.BOOKED_BY_SAME_MASTER)
                return self._unavailable(slot, SlotReason.BLOCKED_BY_OTHER_ACTIVITY)
            return self._available(slot)

        known = set(roster)
        if known and known <= (busy | day.blocked_masters):
            return self._unavailable(slot, SlotReason.BLOCKED_FOR_ALL_MASTERS)
        return self._available(slot)

    def resolve_day(
        self,
        occupancy: OccupancyMap,
        target_date: date,
        selected_master_id: Optional[str] = None,
        roster: Iterable[str] = (),
        today: Optional[date] = None,
    ) -> List[SlotAvailability]:
        roster = list(roster)
        today = today or today_local()
        return [
            self.is_slot_available(occupancy, target_date, slot, selected_master_id, roster, today)
            for slot in FIXED_SLOTS
        ]

    def is_day_available(
        self,
        occupancy: OccupancyMap,
        target_date: date,
        selected_master_id: Optional[str] = None,
        roster: Iterable[str] = (),
        today: Optional[date] = None,
    ) -> bool:
        slots = self.resolve_day(occupancy, target_date, selected_master_id, roster, today)
        return any(slot.is_available for slot in slots)

    def _as_slot(self, slot: Union[TimeSlot, str]) -> TimeSlot:
        if isinstance(slot, TimeSlot):
            return slot
        resolved = get_slot(slot)
        if resolved is None:
            raise ValueError(f"Not a bookable slot: {slot!r}")
        return resolved

    def _available(self, slot: TimeSlot) -> SlotAvailability:
        return SlotAvailability(slot_start=slot.start, slot_end=slot.end, is_available=True)

    def _unavailable(self, slot: TimeSlot, reason: SlotReason) -> SlotAvailability:
        return SlotAvailability(slot_start=slot.start, slot_end=slot.end, is_available=False, reason=reason)


def compute_availability(
    records: Iterable[Any],
    roster: Iterable[Union[Master, Dict[str, Any], str]],
    target_date: date,
    master_id: Optional[str] = None,
    today: Optional[date] = None,
) -> AvailabilityResult:
    """
    Pure availability computation for one date.

    Args:
        records: raw backend dicts or BookingRecords (malformed ones are skipped)
        roster: all active masters, needed for the any-master aggregate rule
        target_date: calendar date to evaluate
        master_id: selected master, or None for any-master mode
        today: current calendar day, defaults to today in the business timezone

    Returns:
        AvailabilityResult with the 4 fixed slots and the derived day flag
    """
    with availability_computation_seconds.time():
        ids = roster_ids(roster)
        occupancy = ScheduleIngestorService().ingest(parse_booking_records(records), ids, master_id)
        slots = AvailabilityResolver().resolve_day(occupancy, target_date, master_id, ids, today)
    return AvailabilityResult(
        date=target_date,
        master_id=master_id,
        is_available=any(slot.is_available for slot in slots),
        slots=slots,
    )


class AvailabilityService:
    """
    Holds the latest occupancy snapshot per master-selection mode and
    answers slot/day questions for the UI, caching day flags per date key.
    """

    def __init__(
        self,
        ingestor: Optional[ScheduleIngestorService] = None,
        resolver: Optional[AvailabilityResolver] = None,
    ):
        self.ingestor = ingestor or ScheduleIngestorService()
        self.resolver = resolver or AvailabilityResolver()
        self._snapshots: Dict[str, Tuple[OccupancyMap, List[str]]] = {}
        self._day_cache: Dict[Tuple[str, str, str], bool] = {}
        self.lock = threading.Lock()

    def load(
        self,
        records: Iterable[Any],
        roster: Iterable[Union[Master, Dict[str, Any], str]],
        master_id: Optional[str] = None,
    ) -> None:
        """Replaces the snapshot for one mode and drops its cached day flags."""
        mode = self._mode(master_id)
        ids = roster_ids(roster)
        with availability_computation_seconds.time():
            occupancy = self.ingestor.ingest(parse_booking_records(records), ids, master_id)
        with self.lock:
            self._snapshots[mode] = (occupancy, ids)
            self._day_cache = {k: v for k, v in self._day_cache.items() if k[1] != mode}
        logger.info(f"[Availability] Loaded {len(occupancy)} days for mode={mode}, roster={len(ids)}")

    def available_slots(
        self,
        target_date: date,
        master_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> AvailabilityResult:
        today = today or today_local()
        mode = self._mode(master_id)
        with self.lock:
            occupancy, ids = self._snapshots.get(mode, ({}, []))

        slots = self.resolver.resolve_day(occupancy, target_date, master_id, ids, today)
        is_available = any(slot.is_available for slot in slots)

        with self.lock:
            self._day_cache[(target_date.isoformat(), mode, today.isoformat())] = is_available

        return AvailabilityResult(
            date=target_date,
            master_id=master_id,
            is_available=is_available,
            slots=slots,
        )

    def is_date_available(
        self,
        target_date: date,
        master_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> bool:
        today = today or today_local()
        key = (target_date.isoformat(), self._mode(master_id), today.isoformat())
        with self.lock:
            cached = self._day_cache.get(key)
        if cached is not None:
            return cached
        return self.available_slots(target_date, master_id, today).is_available

    def month_availability(
        self,
        year: int,
        month: int,
        master_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> MonthAvailability:
        today = today or today_local()
        _, days_in_month = calendar.monthrange(year, month)
        days = []
        for day_number in range(1, days_in_month + 1):
            current = date(year, month, day_number)
            days.append(MonthDay(date=current, is_available=self.is_date_available(current, master_id, today)))

        return MonthAvailability(
            year=year,
            month=month,
            master_id=master_id,
            days=days,
            unavailable_dates=[d.date for d in days if not d.is_available],
        )

    def _mode(self, master_id: Optional[str]) -> str:
        return master_id or ANY_MASTER_KEY
