"""
Schedule CSV parsing.

Expected layout (anything before the header other than Start/End is ignored):

    Start,"Sept 2, 2025"
    End,"Dec 21, 2025"
    Place,Day,Time,Swim
    Gellert,Monday,6:30-7:30am,Adult
    ,,12-1pm,Lane
    ,Wednesday,7-8pm,Family

Blank Place/Day cells repeat the last non-blank value above them.
"""

from __future__ import annotations

import csv
import dataclasses
import io
import re
from datetime import date
from typing import Iterable, List, Optional, Tuple

from dateutil import parser as dateparser

from pool_schedule.errors import MalformedInput


# -----------------------------
# Weekdays
# -----------------------------

# name -> (display name, RRULE BYDAY code)
WEEKDAYS = {
    "sunday": ("Sunday", "SU"),
    "monday": ("Monday", "MO"),
    "tuesday": ("Tuesday", "TU"),
    "wednesday": ("Wednesday", "WE"),
    "thursday": ("Thursday", "TH"),
    "friday": ("Friday", "FR"),
    "saturday": ("Saturday", "SA"),
}

# BYDAY code -> date.weekday() index (Monday=0)
WEEKDAY_INDEX = {"MO": 0, "TU": 1, "WE": 2, "TH": 3, "FR": 4, "SA": 5, "SU": 6}


def lookup_weekday(name: str) -> Tuple[str, str]:
    """Returns (display name, code) for a weekday name, case-insensitively."""
    try:
        return WEEKDAYS[name.strip().lower()]
    except KeyError:
        raise MalformedInput(f'Unrecognized day "{name}"') from None


# -----------------------------
# Data types
# -----------------------------

@dataclasses.dataclass(frozen=True)
class Season:
    start: date
    end: date  # inclusive


@dataclasses.dataclass(frozen=True)
class ClockTime:
    hour: int
    minute: int

    def __post_init__(self):
        if not 0 <= self.hour <= 23 or not 0 <= self.minute <= 59:
            raise MalformedInput(f"Clock time out of range: {self.hour}:{self.minute:02d}")

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclasses.dataclass(frozen=True)
class TimeRange:
    start: ClockTime
    end: ClockTime


@dataclasses.dataclass(frozen=True)
class ScheduleRow:
    place: str
    weekday: str  # display name, e.g. "Monday"
    weekday_code: str  # e.g. "MO"
    time_range_text: str
    label: str


@dataclasses.dataclass(frozen=True)
class ParsedSchedule:
    season: Season
    rows: List[ScheduleRow]


@dataclasses.dataclass(frozen=True)
class ScheduleRule:
    """One row with its time range resolved, ready for the recurrence compiler."""
    summary: str
    description: str
    place: str
    time_range: TimeRange
    by_day: Tuple[str, ...]
    season: Season

    @property
    def start_time(self) -> str:
        return str(self.time_range.start)

    @property
    def end_time(self) -> str:
        return str(self.time_range.end)


# -----------------------------
# Time ranges
# -----------------------------

TIME_RANGE_RE = re.compile(
    r"^(\d{1,2})(?::(\d{2}))?\s*-\s*(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$",
    re.IGNORECASE,
)


def parse_time_range(text: str) -> TimeRange:
    """
    Parses strings like:
      "6:30-7:30am"  -> 06:30..07:30
      "1-2pm"        -> 13:00..14:00
      "11-12pm"      -> 11:00..12:00 (range running into noon)
      "18:00-19:30"  -> taken as 24-hour when there is no suffix
    The am/pm suffix applies to the whole range.
    """
    m = TIME_RANGE_RE.match(text.strip())
    if not m:
        raise MalformedInput(f'Unrecognized time range: "{text}"')

    h1, m1 = int(m.group(1)), int(m.group(2) or 0)
    h2, m2 = int(m.group(3)), int(m.group(4) or 0)
    suffix = (m.group(5) or "").lower()

    if suffix == "am":
        h1 = 0 if h1 == 12 else h1
        h2 = 0 if h2 == 12 else h2
    elif suffix == "pm":
        # An end of 12pm is noon, so the start stays in the morning ("11-12pm").
        if h2 != 12 and h1 != 12:
            h1 += 12
        if h2 != 12:
            h2 += 12

    return TimeRange(start=ClockTime(h1, m1), end=ClockTime(h2, m2))


# -----------------------------
# CSV parsing
# -----------------------------

def read_records(text: str) -> List[List[str]]:
    reader = csv.reader(io.StringIO(text), skipinitialspace=True)
    return [[(cell or "").strip() for cell in record] for record in reader]


def parse_loose_date(text: str) -> date:
    """
    Parses strings like:
      "Sept 2, 2025"
      "2025-12-21"
      "12/21/2025"
    """
    cleaned = text.strip().strip('"')
    try:
        return dateparser.parse(cleaned).date()
    except (ValueError, OverflowError):
        raise MalformedInput(f'Could not parse date: "{text}"') from None


def is_header(cells: List[str]) -> bool:
    padded = (cells + ["", "", ""])[:3]
    return [c.lower() for c in padded] == ["place", "day", "time"]


@dataclasses.dataclass(frozen=True)
class CarryForward:
    """Last non-blank Place/Day values seen while scanning data rows."""
    place: str = ""
    day: str = ""


def carry_forward(
    state: CarryForward, cells: List[str], row_number: int
) -> Tuple[CarryForward, Optional[ScheduleRow]]:
    """
    One fold step over a data row. Returns the next state and the materialized
    row, or None when the row produces no event.
    """
    place_raw, day_raw, time_raw, label_raw = (cells + ["", "", "", ""])[:4]
    if not (place_raw or day_raw or time_raw or label_raw):
        return state, None

    state = CarryForward(place=place_raw or state.place, day=day_raw or state.day)
    if state.day:
        try:
            display, code = lookup_weekday(state.day)
        except MalformedInput:
            raise MalformedInput(f'Unrecognized day "{state.day}" at row {row_number}') from None
    if not (state.place and state.day and time_raw):
        return state, None

    row = ScheduleRow(
        place=state.place,
        weekday=display,
        weekday_code=code,
        time_range_text=time_raw,
        label=label_raw,
    )
    return state, row


def parse_schedule(text: str) -> ParsedSchedule:
    records = read_records(text)
    if not records:
        raise MalformedInput("Empty CSV")

    season_start: Optional[date] = None
    season_end: Optional[date] = None
    header_index = -1

    for i, cells in enumerate(records):
        first = cells[0].lower() if cells else ""
        second = cells[1] if len(cells) > 1 else ""
        if first == "start" and second:
            season_start = parse_loose_date(second)
        elif first == "end" and second:
            season_end = parse_loose_date(second)
        elif is_header(cells):
            header_index = i
            break

    if season_start is None or season_end is None:
        raise MalformedInput("CSV must include Start and End rows.")
    if header_index == -1:
        raise MalformedInput('CSV must include a header row: "Place,Day,Time,Swim".')
    if season_end < season_start:
        raise MalformedInput(f"Season ends ({season_end}) before it starts ({season_start}).")

    rows: List[ScheduleRow] = []
    state = CarryForward()
    for row_number, cells in enumerate(records[header_index + 1:], start=header_index + 2):
        state, row = carry_forward(state, cells, row_number)
        if row is not None:
            rows.append(row)

    return ParsedSchedule(season=Season(start=season_start, end=season_end), rows=rows)


def expand_rows(rows: Iterable[ScheduleRow], season: Season) -> List[ScheduleRule]:
    rules = []
    for r in rows:
        rules.append(
            ScheduleRule(
                summary=f"{r.label} Swim" if r.label else "Swim",
                description=r.label,
                place=r.place,
                time_range=parse_time_range(r.time_range_text),
                by_day=(r.weekday_code,),
                season=season,
            )
        )
    return rules
