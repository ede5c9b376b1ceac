"""
Recurrence compiler.

Turns schedule rules into weekly recurring Google Calendar event templates.

Notes / assumptions
- Event start/end are sent as local wall time together with the IANA timezone;
  Google does the UTC materialization for each occurrence, so DST changes
  inside the season keep the same local clock time.
- Only the RRULE UNTIL bound is converted to UTC here. It uses the offset in
  effect on the season end date itself, not today's offset.
- Every event carries two private extended properties, source and key. The key
  is a pure function of the rule and season so re-imports are recognisable and
  clear runs can filter on it.
"""

from __future__ import annotations

import dataclasses
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List

from dateutil import tz

from pool_schedule import SOURCE_TAG
from pool_schedule.config import CalendarConfig
from pool_schedule.errors import MalformedInput
from pool_schedule.schedule import WEEKDAY_INDEX, ParsedSchedule, ScheduleRule, expand_rows

LOCAL_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}$")
UNTIL_RE = re.compile(r"^\d{8}T\d{6}Z$")


# -----------------------------
# Date arithmetic
# -----------------------------

def first_occurrence_on_or_after(start: date, weekday_code: str) -> date:
    try:
        target = WEEKDAY_INDEX[weekday_code]
    except KeyError:
        raise MalformedInput(f"Unsupported BYDAY value: {weekday_code}") from None
    return start + timedelta(days=(target - start.weekday()) % 7)


def local_datetime_string(d: date, t: time) -> str:
    return datetime.combine(d, t).strftime("%Y-%m-%dT%H:%M:%S")


def until_utc(end_date: date, timezone: str) -> str:
    """
    End date at 23:59:59 local time, as an RRULE UNTIL value:
      date(2025, 12, 21), "America/Toronto" -> "20251222T045959Z"
    """
    zone = tz.gettz(timezone)
    if zone is None:
        raise MalformedInput(f'Unknown timezone "{timezone}"')
    local = datetime.combine(end_date, time(23, 59, 59), tzinfo=zone)
    return local.astimezone(tz.UTC).strftime("%Y%m%dT%H%M%SZ")


def make_private_key(
    summary: str,
    place: str,
    weekday_code: str,
    start_time: str,
    end_time: str,
    season_start: date,
    season_end: date,
) -> str:
    return "-".join(
        [
            summary,
            place,
            weekday_code,
            start_time,
            end_time,
            season_start.isoformat(),
            season_end.isoformat(),
        ]
    )


# -----------------------------
# Event template
# -----------------------------

@dataclasses.dataclass(frozen=True)
class EventTemplate:
    summary: str
    description: str
    place: str
    weekday_code: str
    start_local: str  # YYYY-MM-DDTHH:MM:SS, no offset
    end_local: str
    timezone: str
    location: str
    color_id: str
    until: str  # YYYYMMDDTHHMMSSZ
    key: str

    def __post_init__(self):
        if not self.summary:
            raise MalformedInput("Event summary is empty")
        if self.weekday_code not in WEEKDAY_INDEX:
            raise MalformedInput(f"Unsupported BYDAY value: {self.weekday_code}")
        for name in ("start_local", "end_local"):
            value = getattr(self, name)
            if not LOCAL_DATETIME_RE.match(value or ""):
                raise MalformedInput(f"Invalid time range parsed for {self.summary}: {name}={value!r}")
        if not UNTIL_RE.match(self.until or ""):
            raise MalformedInput(f"Invalid UNTIL value: {self.until!r}")
        if not self.key:
            raise MalformedInput(f"Missing idempotency key for {self.summary}")

    @property
    def recurrence_rule(self) -> str:
        return f"RRULE:FREQ=WEEKLY;BYDAY={self.weekday_code};UNTIL={self.until}"

    def to_event_body(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "description": self.description,
            "location": self.location,
            "colorId": self.color_id,
            "start": {"dateTime": self.start_local, "timeZone": self.timezone},
            "end": {"dateTime": self.end_local, "timeZone": self.timezone},
            "recurrence": [self.recurrence_rule],
            "extendedProperties": {
                "private": {"source": SOURCE_TAG, "key": self.key},
            },
        }

    def preview_line(self) -> str:
        return (
            f"[DRY RUN] {self.summary} | {self.place} | BYDAY={self.weekday_code} | "
            f"{self.start_local} -> {self.end_local} ({self.timezone}) | "
            f'location="{self.location}" colorId={self.color_id} | '
            f"{self.recurrence_rule}, key: {self.key}"
        )


# -----------------------------
# Compilation
# -----------------------------

def compile_rule(rule: ScheduleRule, config: CalendarConfig) -> List[EventTemplate]:
    """One template per weekday code in the rule (normally exactly one)."""
    season = rule.season
    start = rule.time_range.start
    end = rule.time_range.end
    until = until_utc(season.end, config.timezone)
    location = config.resolve_location(rule.place)
    color_id = config.resolve_color_id(rule.place)

    templates = []
    for code in rule.by_day:
        first = first_occurrence_on_or_after(season.start, code)
        templates.append(
            EventTemplate(
                summary=rule.summary,
                description=rule.description or "",
                place=rule.place,
                weekday_code=code,
                start_local=local_datetime_string(first, time(start.hour, start.minute)),
                end_local=local_datetime_string(first, time(end.hour, end.minute)),
                timezone=config.timezone,
                location=location,
                color_id=color_id,
                until=until,
                key=make_private_key(
                    rule.summary,
                    rule.place,
                    code,
                    rule.start_time,
                    rule.end_time,
                    season.start,
                    season.end,
                ),
            )
        )
    return templates


def compile_schedule(parsed: ParsedSchedule, config: CalendarConfig) -> List[EventTemplate]:
    templates: List[EventTemplate] = []
    for rule in expand_rows(parsed.rows, parsed.season):
        templates.extend(compile_rule(rule, config))
    return templates
