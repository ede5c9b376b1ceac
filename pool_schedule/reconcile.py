"""
Clearing events from a calendar window.

What it does
- Lists events overlapping [start 00:00 local, end 00:00 local), optionally only
  those carrying a private extended property key=value.
- Classifies each listed occurrence:
    - deleteSeries and the occurrence belongs to a recurring series -> delete the series
      (once, however many of its occurrences are in the window)
    - otherwise -> delete just that occurrence
- Without confirm the plan is only reported.
- Deletions are best-effort: each id is retried on transient store failures and a
  failure is logged without stopping the remaining ids.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional, Tuple

from dateutil import tz

from pool_schedule.errors import MalformedInput, StoreError, TransientStoreFailure
from pool_schedule.gcal import DeleteOutcome, RemoteEvent

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
INITIAL_DELAY = 1.0
MAX_DELAY = 10.0


# -----------------------------
# Window & filter
# -----------------------------

def local_midnight_utc(d: date, timezone: str) -> str:
    """
    Local midnight of `d` in `timezone` as RFC 3339 UTC:
      date(2025, 11, 1), "America/Toronto" -> "2025-11-01T04:00:00Z"
    """
    zone = tz.gettz(timezone)
    if zone is None:
        raise MalformedInput(f'Unknown timezone "{timezone}"')
    local = datetime(d.year, d.month, d.day, tzinfo=zone)
    return local.astimezone(tz.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclasses.dataclass(frozen=True)
class DeletionWindow:
    start: date  # inclusive, local midnight
    end: date  # exclusive, local midnight
    timezone: str
    time_min: str
    time_max: str

    @classmethod
    def from_dates(cls, start: date, end: date, timezone: str) -> "DeletionWindow":
        if end <= start:
            raise MalformedInput(f"Window end {end} must be after start {start}.")
        return cls(
            start=start,
            end=end,
            timezone=timezone,
            time_min=local_midnight_utc(start, timezone),
            time_max=local_midnight_utc(end, timezone),
        )


def parse_private_filter(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    key, sep, value = text.partition("=")
    key, value = key.strip(), value.strip()
    if not sep or not key or not value:
        raise MalformedInput("--private-key must be key=value")
    return f"{key}={value}"


# -----------------------------
# Plan
# -----------------------------

@dataclasses.dataclass(frozen=True)
class DeletionPlan:
    instance_ids: Tuple[str, ...] = ()
    series_ids: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.instance_ids and not self.series_ids


def build_deletion_plan(events: Iterable[RemoteEvent], delete_series: bool) -> DeletionPlan:
    # dicts keep first-seen order while deduplicating
    instances = {}
    series = {}
    for ev in events:
        if delete_series and ev.recurring_event_id:
            series[ev.recurring_event_id] = None
        else:
            instances[ev.id] = None
    return DeletionPlan(instance_ids=tuple(instances), series_ids=tuple(series))


@dataclasses.dataclass
class ReconcileReport:
    plan: DeletionPlan
    events_found: int = 0
    deleted: List[str] = dataclasses.field(default_factory=list)
    not_found: List[str] = dataclasses.field(default_factory=list)
    failed: List[str] = dataclasses.field(default_factory=list)
    executed: bool = False


# -----------------------------
# Execution
# -----------------------------

def delete_with_retry(
    store,
    calendar_id: str,
    event_id: str,
    max_retries: int = MAX_RETRIES,
    initial_delay: float = INITIAL_DELAY,
    max_delay: float = MAX_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> DeleteOutcome:
    """
    Deletes one event, retrying up to `max_retries` more times on
    TransientStoreFailure with delays 1, 2, 4, 8, 10... seconds. Any other store
    error, or the last transient one, is raised.
    """
    attempt = 0
    while True:
        try:
            return store.delete(calendar_id, event_id)
        except TransientStoreFailure as e:
            if attempt >= max_retries:
                raise
            delay = min(initial_delay * 2 ** attempt, max_delay)
            logger.warning(
                "Delete %s hit HTTP %s, retrying in %.0fs (attempt %d/%d)",
                event_id, e.status, delay, attempt + 1, max_retries,
            )
            sleep(delay)
            attempt += 1


def execute_plan(
    store,
    calendar_id: str,
    plan: DeletionPlan,
    report: ReconcileReport,
    sleep: Callable[[float], None] = time.sleep,
) -> ReconcileReport:
    batches = [("instance", plan.instance_ids), ("series", plan.series_ids)]
    for kind, ids in batches:
        for event_id in ids:
            try:
                outcome = delete_with_retry(store, calendar_id, event_id, sleep=sleep)
            except StoreError as e:
                logger.error("Failed to delete %s %s: %s", kind, event_id, e)
                report.failed.append(event_id)
                continue
            except Exception as e:
                logger.error("Failed to delete %s %s: %s", kind, event_id, e, exc_info=True)
                report.failed.append(event_id)
                continue
            if outcome is DeleteOutcome.NOT_FOUND:
                logger.info("Already gone: %s %s", kind, event_id)
                report.not_found.append(event_id)
            else:
                logger.info("Deleted %s: %s", kind, event_id)
                report.deleted.append(event_id)
    report.executed = True
    return report


def reconcile(
    store,
    calendar_id: str,
    window: DeletionWindow,
    private_filter: Optional[str] = None,
    confirm: bool = False,
    delete_series: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> ReconcileReport:
    events = []
    for ev in store.list_events(calendar_id, window.time_min, window.time_max, private_filter):
        series_note = f"  recurringEventId={ev.recurring_event_id}" if ev.is_recurring_instance else ""
        logger.info("- %s  [%s -> %s]  id=%s%s", ev.summary, ev.start, ev.end, ev.id, series_note)
        events.append(ev)

    plan = build_deletion_plan(events, delete_series)
    report = ReconcileReport(plan=plan, events_found=len(events))
    logger.debug(
        "Planned deletions: %d instance(s), %d series",
        len(plan.instance_ids), len(plan.series_ids),
    )

    if not confirm or plan.is_empty:
        return report
    return execute_plan(store, calendar_id, plan, report, sleep=sleep)
