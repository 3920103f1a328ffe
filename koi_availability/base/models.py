from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from koi_availability.base.utils.time_utils import normalize_time, parse_iso_date, to_minutes


# Sentinel master id for records that block a slot for every master
ALL_MASTERS = "ALL"


class BookingKind(str, Enum):
    ONLINE = "Online"
    OFFLINE = "Offline"
    WORKSHOP = "Workshop"
    BLOCKED_FOR_ALL = "BlockedForAllMasters"


class SlotReason(str, Enum):
    NONE = "none"
    BOOKED_BY_SAME_MASTER = "booked-by-same-master"
    BLOCKED_BY_OTHER_ACTIVITY = "blocked-by-other-activity"
    BLOCKED_FOR_ALL_MASTERS = "blocked-for-all-masters"
    PAST_CUTOFF = "past-cutoff"


_KIND_LOOKUP = {
    "online": BookingKind.ONLINE,
    "offline": BookingKind.OFFLINE,
    "workshop": BookingKind.WORKSHOP,
    "blockedforallmasters": BookingKind.BLOCKED_FOR_ALL,
    "blocked": BookingKind.BLOCKED_FOR_ALL,
}


# === 📅 Booking Records (backend input) ===

class BookingRecord(BaseModel):
    """One existing appointment or event, as returned by the booking backend."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    master_id: Optional[str] = Field(None, validation_alias=AliasChoices("master_id", "masterId"))
    booking_date: date = Field(..., validation_alias=AliasChoices("booking_date", "date", "bookingDate"))
    start_time: Optional[str] = Field(None, validation_alias=AliasChoices("start_time", "startTime"))
    end_time: Optional[str] = Field(None, validation_alias=AliasChoices("end_time", "endTime"))
    kind: BookingKind = Field(..., validation_alias=AliasChoices("kind", "type"))

    @field_validator("master_id", mode="before")
    def clean_master_id(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("booking_date", mode="before")
    def parse_booking_date(cls, value):
        return parse_iso_date(value)

    @field_validator("start_time", "end_time", mode="before")
    def parse_time_of_day(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return normalize_time(value)

    @field_validator("kind", mode="before")
    def parse_kind(cls, value):
        if isinstance(value, BookingKind):
            return value
        kind = _KIND_LOOKUP.get(str(value).strip().lower())
        if kind is None:
            raise ValueError(f"Unknown booking type: {value!r}")
        return kind

    @model_validator(mode="after")
    def check_consistency(self):
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("startTime and endTime must be given together")
        if self.has_times and to_minutes(self.start_time) >= to_minutes(self.end_time):
            raise ValueError("startTime must be before endTime")
        if self.kind == BookingKind.WORKSHOP and self.start_time is None:
            raise ValueError("Workshop records need a start time")
        if self.master_id is None and self.kind != BookingKind.BLOCKED_FOR_ALL:
            raise ValueError("masterId is required for this booking type")
        return self

    @property
    def has_times(self) -> bool:
        return self.start_time is not None and self.end_time is not None


class Master(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    master_id: str = Field(..., validation_alias=AliasChoices("master_id", "masterId"))
    master_name: Optional[str] = Field(None, validation_alias=AliasChoices("master_name", "masterName"))
    rating: Optional[float] = None

    @field_validator("master_id", mode="before")
    def clean_master_id(cls, value):
        cleaned = str(value).strip() if value is not None else ""
        if not cleaned:
            raise ValueError("masterId must not be empty")
        return cleaned


class TimeSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: str
    end: str


# === 🧮 Derived occupancy ===

@dataclass
class DayOccupancy:
    """Busy masters per fixed slot for one calendar date."""
    day: date
    slots: Dict[str, Dict[str, Set[BookingKind]]] = field(default_factory=dict)
    blocked_masters: Set[str] = field(default_factory=set)
    blocked_for_all: bool = False

    def occupy(self, slot_start: str, master_id: str, kind: BookingKind) -> None:
        self.slots.setdefault(slot_start, {}).setdefault(master_id, set()).add(kind)

    def busy_masters(self, slot_start: str) -> Set[str]:
        return set(self.slots.get(slot_start, {}))

    def kinds_for(self, slot_start: str, master_id: str) -> Set[BookingKind]:
        return set(self.slots.get(slot_start, {}).get(master_id, set()))

    def is_day_blocked_for(self, master_id: str) -> bool:
        return master_id in self.blocked_masters or ALL_MASTERS in self.blocked_masters


# === ✅ Availability output ===

class SlotAvailability(BaseModel):
    slot_start: str
    slot_end: str
    is_available: bool
    reason: SlotReason = SlotReason.NONE


class AvailabilityResult(BaseModel):
    date: date
    master_id: Optional[str] = None
    is_available: bool
    slots: List[SlotAvailability]


class SlotsResponse(AvailabilityResult):
    source: str = Field("network", description="network, cache or empty")
    stale: bool = False
    advisory: Optional[str] = None


class DayAvailabilityResponse(BaseModel):
    date: date
    master_id: Optional[str] = None
    is_available: bool


class MonthDay(BaseModel):
    date: date
    is_available: bool


class MonthAvailability(BaseModel):
    year: int
    month: int
    master_id: Optional[str] = None
    days: List[MonthDay]
    unavailable_dates: List[date]
    source: str = "network"
    stale: bool = False
    advisory: Optional[str] = None


class ComputeAvailabilityRequest(BaseModel):
    records: List[Dict[str, Any]] = Field(default_factory=list, description="Raw booking records as sent by the backend")
    roster: List[Master] = Field(default_factory=list, description="All active masters")
    date: date
    master_id: Optional[str] = None
    today: Optional[date] = Field(None, description="Overrides the business-timezone current day")
