# koi_availability/base/utils/slot_templates.py

from typing import Optional, Tuple

from koi_availability.base.models import TimeSlot
from koi_availability.base.utils.time_utils import normalize_time, to_minutes


# === Fixed daily consultation windows ===
FIXED_SLOTS: Tuple[TimeSlot, ...] = (
    TimeSlot(start="07:00", end="09:15"),
    TimeSlot(start="09:30", end="11:45"),
    TimeSlot(start="12:30", end="14:45"),
    TimeSlot(start="15:00", end="17:15"),
)

SLOT_STARTS: Tuple[str, ...] = tuple(slot.start for slot in FIXED_SLOTS)

# === Workshop halves (a workshop always takes both slots of one half) ===
AM_HALF: Tuple[str, str] = ("07:00", "09:30")
PM_HALF: Tuple[str, str] = ("12:30", "15:00")

NOON_MINUTES = 12 * 60


def get_slot(start: str) -> Optional[TimeSlot]:
    try:
        key = normalize_time(start)
    except ValueError:
        return None
    for slot in FIXED_SLOTS:
        if slot.start == key:
            return slot
    return None


def workshop_half(start_time: str) -> Tuple[str, str]:
    """
    Picks the half-day a workshop blocks from its start time.

    Known starts map directly; any other start is split at noon.
    """
    key = normalize_time(start_time)
    if key in AM_HALF:
        return AM_HALF
    if key in PM_HALF:
        return PM_HALF
    return AM_HALF if to_minutes(key) < NOON_MINUTES else PM_HALF
