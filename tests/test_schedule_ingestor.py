"""
Tests for services/schedule_ingestor_service.py

Record parsing, per-kind placement rules and the any-master aggregate flag.
"""

import unittest
from datetime import date

from koi_availability.base.models import ALL_MASTERS, BookingKind, BookingRecord
from koi_availability.services.schedule_ingestor_service import (
    ScheduleIngestorService,
    parse_booking_records,
)

DAY = "2025-03-20"


def record(master_id="M1", kind="Online", start="09:30", end="11:45", day=DAY):
    raw = {"masterId": master_id, "date": day, "type": kind}
    if start is not None:
        raw["startTime"] = start
    if end is not None:
        raw["endTime"] = end
    return raw


class TestParseBookingRecords(unittest.TestCase):

    def test_backend_shape_is_accepted(self):
        parsed = parse_booking_records([
            {"masterId": " M1 ", "date": "2025-03-20T00:00:00", "startTime": "09:30:00",
             "endTime": "11:45:00", "type": "online"},
        ])
        self.assertEqual(len(parsed), 1)
        self.assertEqual(parsed[0].master_id, "M1")
        self.assertEqual(parsed[0].booking_date, date(2025, 3, 20))
        self.assertEqual(parsed[0].start_time, "09:30")
        self.assertEqual(parsed[0].kind, BookingKind.ONLINE)

    def test_malformed_records_are_skipped_not_fatal(self):
        raw = [
            record(),
            record(start="11:00", end="10:00"),          # start after end
            record(end=None),                              # lone start
            record(kind="Vacation"),                       # unknown kind
            record(kind="Workshop", start=None, end=None),  # workshop without start
            record(master_id=None),                        # no master on a personal booking
            {"masterId": "M1", "type": "Online"},          # no date
            "not a record",
        ]
        parsed = parse_booking_records(raw)
        self.assertEqual(len(parsed), 1)

    def test_sentinel_kind_needs_no_master(self):
        parsed = parse_booking_records([record(master_id=None, kind="BlockedForAllMasters", start=None, end=None)])
        self.assertEqual(len(parsed), 1)
        self.assertIsNone(parsed[0].master_id)


class TestIngest(unittest.TestCase):

    def setUp(self):
        self.ingestor = ScheduleIngestorService()

    def ingest(self, raw, roster=(), selected=None):
        return self.ingestor.ingest(parse_booking_records(raw), roster, selected)

    def test_days_start_with_all_four_slots_free(self):
        day = self.ingest([record(start="18:00", end="19:00")])[DAY]
        self.assertEqual(sorted(day.slots), ["07:00", "09:30", "12:30", "15:00"])
        self.assertTrue(all(not busy for busy in day.slots.values()))

    def test_online_booking_occupies_its_slot(self):
        day = self.ingest([record()])[DAY]
        self.assertEqual(day.busy_masters("09:30"), {"M1"})
        self.assertEqual(day.kinds_for("09:30", "M1"), {BookingKind.ONLINE})
        self.assertEqual(day.busy_masters("07:00"), set())

    def test_long_booking_occupies_every_overlapping_slot(self):
        day = self.ingest([record(kind="Offline", start="08:00", end="13:00")])[DAY]
        self.assertEqual(day.busy_masters("07:00"), {"M1"})
        self.assertEqual(day.busy_masters("09:30"), {"M1"})
        self.assertEqual(day.busy_masters("12:30"), {"M1"})
        self.assertEqual(day.busy_masters("15:00"), set())

    def test_booking_in_gap_touches_no_slot(self):
        day = self.ingest([record(start="09:15", end="09:30")])[DAY]
        self.assertTrue(all(not busy for busy in day.slots.values()))

    def test_workshop_am_half(self):
        day = self.ingest([record(kind="Workshop", start="07:00", end="08:00")])[DAY]
        self.assertEqual(day.busy_masters("07:00"), {"M1"})
        self.assertEqual(day.busy_masters("09:30"), {"M1"})
        self.assertEqual(day.busy_masters("12:30"), set())

    def test_workshop_pm_half_ignores_end_time(self):
        day = self.ingest([record(kind="Workshop", start="15:00", end="15:30")])[DAY]
        self.assertEqual(day.busy_masters("12:30"), {"M1"})
        self.assertEqual(day.busy_masters("15:00"), {"M1"})
        self.assertEqual(day.busy_masters("09:30"), set())

    def test_offline_without_times_blocks_whole_day(self):
        day = self.ingest([record(kind="Offline", start=None, end=None)])[DAY]
        self.assertIn("M1", day.blocked_masters)
        self.assertTrue(day.is_day_blocked_for("M1"))
        self.assertFalse(day.is_day_blocked_for("M2"))

    def test_online_without_times_is_skipped(self):
        day = self.ingest([record(kind="Online", start=None, end=None), record(master_id="M2")])[DAY]
        self.assertEqual(day.blocked_masters, set())
        self.assertEqual(day.busy_masters("09:30"), {"M2"})

    def test_timed_sentinel_occupies_overlapping_slots(self):
        day = self.ingest([record(master_id=None, kind="BlockedForAllMasters", start="12:30", end="17:15")])[DAY]
        self.assertEqual(day.busy_masters("12:30"), {ALL_MASTERS})
        self.assertEqual(day.busy_masters("15:00"), {ALL_MASTERS})
        self.assertEqual(day.busy_masters("07:00"), set())

    def test_untimed_sentinel_blocks_day_for_everyone(self):
        occupancy = self.ingest([record(master_id=None, kind="BlockedForAllMasters", start=None, end=None)])
        day = occupancy[DAY]
        self.assertTrue(day.is_day_blocked_for("anyone"))
        self.assertTrue(day.blocked_for_all)

    def test_records_grouped_by_date(self):
        occupancy = self.ingest([record(), record(day="2025-03-21", start="07:00", end="09:15")])
        self.assertEqual(sorted(occupancy), ["2025-03-20", "2025-03-21"])
        self.assertEqual(occupancy["2025-03-21"].busy_masters("07:00"), {"M1"})

    def test_ingest_is_idempotent(self):
        parsed = parse_booking_records([record(), record(master_id="M2", kind="Workshop", start="12:30", end="17:15")])
        first = self.ingestor.ingest(parsed, ["M1", "M2"])
        second = self.ingestor.ingest(parsed, ["M1", "M2"])
        self.assertEqual(first, second)
        self.assertEqual(parsed[0].start_time, "09:30")


class TestAggregateRule(unittest.TestCase):
    """Any-master mode: a day is fully blocked only if every roster master is busy everywhere."""

    def setUp(self):
        self.ingestor = ScheduleIngestorService()

    def full_day(self, master_id):
        return record(master_id=master_id, kind="Offline", start="07:00", end="17:15")

    def test_all_roster_masters_busy_blocks_day(self):
        records = parse_booking_records([self.full_day("M1"), self.full_day("M2")])
        day = self.ingestor.ingest(records, ["M1", "M2"])[DAY]
        self.assertTrue(day.blocked_for_all)

    def test_one_free_master_keeps_day_open(self):
        records = parse_booking_records([self.full_day("M1")])
        day = self.ingestor.ingest(records, ["M1", "M2"])[DAY]
        self.assertFalse(day.blocked_for_all)

    def test_all_day_block_counts_as_busy(self):
        records = parse_booking_records([
            self.full_day("M1"),
            record(master_id="M2", kind="Offline", start=None, end=None),
        ])
        day = self.ingestor.ingest(records, ["M1", "M2"])[DAY]
        self.assertTrue(day.blocked_for_all)

    def test_empty_roster_disables_rule(self):
        records = parse_booking_records([self.full_day("M1")])
        day = self.ingestor.ingest(records, [])[DAY]
        self.assertFalse(day.blocked_for_all)

    def test_master_outside_roster_does_not_count(self):
        records = parse_booking_records([self.full_day("M1"), self.full_day("M9")])
        day = self.ingestor.ingest(records, ["M1", "M2"])[DAY]
        self.assertFalse(day.blocked_for_all)

    def test_rule_not_applied_for_selected_master(self):
        records = parse_booking_records([self.full_day("M1")])
        day = self.ingestor.ingest(records, ["M1"], selected_master_id="M1")[DAY]
        self.assertFalse(day.blocked_for_all)


class TestBookingRecordModel(unittest.TestCase):

    def test_blocked_alias_maps_to_sentinel_kind(self):
        parsed = BookingRecord.model_validate({"date": DAY, "type": "Blocked"})
        self.assertEqual(parsed.kind, BookingKind.BLOCKED_FOR_ALL)
        self.assertFalse(parsed.has_times)


if __name__ == "__main__":
    unittest.main()
