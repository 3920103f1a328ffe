# koi_availability/services/schedule_ingestor_service.py

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from koi_availability.base.exceptions import MalformedRecordError
from koi_availability.base.models import ALL_MASTERS, BookingKind, BookingRecord, DayOccupancy
from koi_availability.base.utils.slot_templates import FIXED_SLOTS, SLOT_STARTS, workshop_half
from koi_availability.base.utils.time_utils import is_time_overlap

logger = logging.getLogger("schedule_ingestor")


def parse_booking_records(raw_records: Iterable[Any]) -> List[BookingRecord]:
    """
    Validates raw backend dicts into BookingRecords.

    Malformed entries are logged and skipped; the rest of the batch is kept.
    """
    records: List[BookingRecord] = []
    skipped = 0
    for index, raw in enumerate(raw_records or []):
        if isinstance(raw, BookingRecord):
            records.append(raw)
            continue
        try:
            records.append(BookingRecord.model_validate(raw))
        except ValidationError as e:
            skipped += 1
            logger.warning(f"[Ingest] Skipping malformed record #{index}: {e.errors()[0].get('msg')}")
    if skipped:
        logger.info(f"[Ingest] Parsed {len(records)} records, skipped {skipped}")
    return records


class ScheduleIngestorService:
    """
    Turns booking records into per-day slot occupancy.

    Output is keyed by ISO date string. Input records are never mutated, so
    ingesting the same batch twice yields equal occupancy maps.
    """

    def ingest(
        self,
        records: Sequence[BookingRecord],
        roster_ids: Iterable[str] = (),
        selected_master_id: Optional[str] = None,
    ) -> Dict[str, DayOccupancy]:
        roster = set(roster_ids)
        by_date: Dict[str, List[BookingRecord]] = defaultdict(list)
        for record in records:
            by_date[record.booking_date.isoformat()].append(record)

        occupancy: Dict[str, DayOccupancy] = {}
        for date_key in sorted(by_date):
            day_records = by_date[date_key]
            day = DayOccupancy(day=day_records[0].booking_date, slots={start: {} for start in SLOT_STARTS})

            for record in day_records:
                try:
                    self._apply_record(day, record)
                except MalformedRecordError as e:
                    logger.warning(f"[Ingest] Skipping record on {date_key}: {e}")

            if selected_master_id is None:
                day.blocked_for_all = self._all_masters_busy(day, roster)

            occupancy[date_key] = day

        logger.debug(f"[Ingest] {len(records)} records -> {len(occupancy)} days")
        return occupancy

    # === Per-record rules ===

    def _apply_record(self, day: DayOccupancy, record: BookingRecord) -> None:
        if record.kind == BookingKind.BLOCKED_FOR_ALL:
            self._apply_block_for_all(day, record)
        elif record.kind == BookingKind.OFFLINE and not record.has_times:
            day.blocked_masters.add(record.master_id)
        elif record.kind == BookingKind.WORKSHOP:
            for slot_start in workshop_half(record.start_time):
                day.occupy(slot_start, record.master_id, record.kind)
        elif record.has_times:
            self._occupy_overlapping(day, record, record.master_id)
        else:
            raise MalformedRecordError(f"{record.kind.value} record for {record.master_id} has no times")

    def _apply_block_for_all(self, day: DayOccupancy, record: BookingRecord) -> None:
        if record.has_times:
            self._occupy_overlapping(day, record, ALL_MASTERS)
        else:
            day.blocked_masters.add(ALL_MASTERS)

    def _occupy_overlapping(self, day: DayOccupancy, record: BookingRecord, master_id: str) -> None:
        hits = 0
        for slot in FIXED_SLOTS:
            if is_time_overlap(record.start_time, record.end_time, slot.start, slot.end):
                day.occupy(slot.start, master_id, record.kind)
                hits += 1
        if not hits:
            logger.debug(
                f"[Ingest] {record.kind.value} {record.start_time}-{record.end_time} "
                f"on {record.booking_date} touches no fixed slot"
            )

    # === Aggregate rule (any-master mode) ===

    def _all_masters_busy(self, day: DayOccupancy, roster: set) -> bool:
        if ALL_MASTERS in day.blocked_masters:
            return True
        if not roster:
            return False
        for slot_start in SLOT_STARTS:
            busy = day.busy_masters(slot_start)
            if ALL_MASTERS in busy:
                continue
            busy |= day.blocked_masters
            if not roster <= busy:
                return False
        return True
