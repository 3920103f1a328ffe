"""
Tests for services/availability_service.py

Slot and day resolution, the same-day cutoff, the pure compute entry point
and the stateful service with its per-date day cache.
"""

import unittest
from datetime import date, timedelta

from koi_availability.base.models import Master, SlotReason
from koi_availability.base.utils.slot_templates import FIXED_SLOTS
from koi_availability.services.availability_service import (
    AvailabilityResolver,
    AvailabilityService,
    compute_availability,
    roster_ids,
)

TODAY = date(2025, 3, 19)
TARGET = date(2025, 3, 20)
ROSTER = [Master(master_id="M1", master_name="Master One"), Master(master_id="M2")]


def record(master_id="M1", kind="Online", start="09:30", end="11:45", day="2025-03-20"):
    raw = {"masterId": master_id, "date": day, "type": kind}
    if start is not None:
        raw["startTime"] = start
        raw["endTime"] = end
    return raw


def by_start(result):
    return {slot.slot_start: slot for slot in result.slots}


class TestComputeAvailability(unittest.TestCase):

    def test_selected_master_booked_slot(self):
        result = compute_availability([record()], ROSTER, TARGET, master_id="M1", today=TODAY)
        slots = by_start(result)
        self.assertFalse(slots["09:30"].is_available)
        self.assertEqual(slots["09:30"].reason, SlotReason.BOOKED_BY_SAME_MASTER)
        for start in ("07:00", "12:30", "15:00"):
            self.assertTrue(slots[start].is_available)
            self.assertEqual(slots[start].reason, SlotReason.NONE)
        self.assertTrue(result.is_available)

    def test_any_master_mode_ignores_single_busy_master(self):
        result = compute_availability([record()], ROSTER, TARGET, today=TODAY)
        self.assertTrue(all(slot.is_available for slot in result.slots))

    def test_other_activity_reason(self):
        result = compute_availability(
            [record(kind="Workshop", start="07:00", end="09:00")], ROSTER, TARGET, master_id="M1", today=TODAY
        )
        slots = by_start(result)
        self.assertEqual(slots["07:00"].reason, SlotReason.BLOCKED_BY_OTHER_ACTIVITY)
        self.assertEqual(slots["09:30"].reason, SlotReason.BLOCKED_BY_OTHER_ACTIVITY)
        self.assertTrue(slots["12:30"].is_available)

    def test_other_master_booking_does_not_affect_selected(self):
        result = compute_availability([record(master_id="M2")], ROSTER, TARGET, master_id="M1", today=TODAY)
        self.assertTrue(all(slot.is_available for slot in result.slots))

    def test_today_and_past_are_cut_off(self):
        for target in (TODAY, TODAY - timedelta(days=1)):
            with self.subTest(target=target):
                result = compute_availability([], ROSTER, target, today=TODAY)
                self.assertFalse(result.is_available)
                self.assertTrue(all(slot.reason == SlotReason.PAST_CUTOFF for slot in result.slots))

    def test_missing_data_means_available(self):
        result = compute_availability([], [], TARGET, master_id="M1", today=TODAY)
        self.assertTrue(result.is_available)
        self.assertEqual(len(result.slots), len(FIXED_SLOTS))

    def test_day_available_iff_some_slot_available(self):
        full_day = [record(kind="Offline", start="07:00", end="17:15")]
        result = compute_availability(full_day, ROSTER, TARGET, master_id="M1", today=TODAY)
        self.assertFalse(result.is_available)
        self.assertEqual(result.is_available, any(slot.is_available for slot in result.slots))

    def test_whole_day_offline_blocks_selected_master(self):
        result = compute_availability(
            [record(kind="Offline", start=None)], ROSTER, TARGET, master_id="M1", today=TODAY
        )
        self.assertFalse(result.is_available)
        self.assertTrue(all(slot.reason == SlotReason.BLOCKED_FOR_ALL_MASTERS for slot in result.slots))

    def test_sentinel_blocks_selected_master_too(self):
        result = compute_availability(
            [record(master_id=None, kind="BlockedForAllMasters", start="12:30", end="14:45")],
            ROSTER, TARGET, master_id="M1", today=TODAY,
        )
        slots = by_start(result)
        self.assertEqual(slots["12:30"].reason, SlotReason.BLOCKED_FOR_ALL_MASTERS)
        self.assertTrue(slots["15:00"].is_available)

    def test_single_master_roster_any_master_mode(self):
        slots = by_start(compute_availability([record()], [Master(master_id="M1")], TARGET, today=TODAY))
        self.assertEqual(slots["09:30"].reason, SlotReason.BLOCKED_FOR_ALL_MASTERS)
        self.assertEqual([s.is_available for s in slots.values()], [True, False, True, True])

    def test_all_masters_busy_in_one_slot(self):
        records = [record(master_id="M1"), record(master_id="M2")]
        slots = by_start(compute_availability(records, ROSTER, TARGET, today=TODAY))
        self.assertFalse(slots["09:30"].is_available)
        self.assertEqual(slots["09:30"].reason, SlotReason.BLOCKED_FOR_ALL_MASTERS)
        self.assertTrue(slots["07:00"].is_available)

    def test_all_masters_busy_whole_day(self):
        records = [
            record(master_id="M1", kind="Offline", start=None),
            record(master_id="M2", kind="Offline", start="07:00", end="17:15"),
        ]
        result = compute_availability(records, ROSTER, TARGET, today=TODAY)
        self.assertFalse(result.is_available)

    def test_empty_roster_never_blocks_any_master_mode(self):
        records = [record(master_id="M1", kind="Offline", start="07:00", end="17:15")]
        result = compute_availability(records, [], TARGET, today=TODAY)
        self.assertTrue(result.is_available)

    def test_roster_accepts_backend_dicts(self):
        self.assertEqual(roster_ids([{"masterId": "M1"}, ROSTER[1], "M3", {"masterName": "x"}]), ["M1", "M2", "M3"])


class TestResolver(unittest.TestCase):

    def test_unknown_slot_start_raises(self):
        with self.assertRaises(ValueError):
            AvailabilityResolver().is_slot_available({}, TARGET, "10:00", today=TODAY)

    def test_slot_by_start_string(self):
        slot = AvailabilityResolver().is_slot_available({}, TARGET, "15:00", today=TODAY)
        self.assertTrue(slot.is_available)
        self.assertEqual(slot.slot_end, "17:15")


class TestAvailabilityService(unittest.TestCase):

    def setUp(self):
        self.service = AvailabilityService()
        self.service.load([record(kind="Offline", start="07:00", end="17:15")], ROSTER, master_id="M1")

    def test_available_slots_uses_loaded_snapshot(self):
        result = self.service.available_slots(TARGET, "M1", today=TODAY)
        self.assertFalse(result.is_available)
        self.assertEqual(result.master_id, "M1")

    def test_modes_are_independent(self):
        self.assertTrue(self.service.is_date_available(TARGET, None, today=TODAY))
        self.assertFalse(self.service.is_date_available(TARGET, "M1", today=TODAY))

    def test_day_flag_is_cached_per_key(self):
        self.assertFalse(self.service.is_date_available(TARGET, "M1", today=TODAY))
        self.service._snapshots["M1"] = ({}, [])
        self.assertFalse(self.service.is_date_available(TARGET, "M1", today=TODAY))

    def test_load_invalidates_cached_flags_for_mode(self):
        self.assertFalse(self.service.is_date_available(TARGET, "M1", today=TODAY))
        self.service.load([], ROSTER, master_id="M1")
        self.assertTrue(self.service.is_date_available(TARGET, "M1", today=TODAY))

    def test_cache_key_includes_today(self):
        self.assertFalse(self.service.is_date_available(TARGET, "M1", today=TODAY))
        self.assertFalse(self.service.is_date_available(TARGET, "M1", today=TARGET))
        self.service.load([], ROSTER, master_id="M1")
        self.assertFalse(self.service.is_date_available(TARGET, "M1", today=TARGET))

    def test_month_availability(self):
        month = self.service.month_availability(2025, 3, "M1", today=TODAY)
        self.assertEqual(len(month.days), 31)
        self.assertIn(TARGET, month.unavailable_dates)
        self.assertIn(date(2025, 3, 19), month.unavailable_dates)
        self.assertIn(date(2025, 3, 1), month.unavailable_dates)
        self.assertNotIn(date(2025, 3, 21), month.unavailable_dates)
        self.assertEqual(len(month.unavailable_dates), 20)


if __name__ == "__main__":
    unittest.main()
