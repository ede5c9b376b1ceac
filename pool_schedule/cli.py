#!/usr/bin/env python3
"""
Command line entry points.

  pool-schedule create config.json schedule.csv [--confirm]
      Without --confirm nothing is authorized or created; each event is printed.

  pool-schedule clear --calendar-id CAL --start 2025-11-01 --end 2026-01-31 \
      [--private-key source=pool-schedule] [--delete-series] [--confirm]
      --start is inclusive at 00:00 local time, --end is exclusive at 00:00 local time.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from typing import List, Optional

from googleapiclient.errors import HttpError

from pool_schedule import SOURCE_TAG
from pool_schedule.config import load_config
from pool_schedule.errors import MalformedInput, PoolScheduleError, StoreError
from pool_schedule.gcal import GoogleCalendarStore, get_calendar_service
from pool_schedule.reconcile import DeletionWindow, parse_private_filter, reconcile
from pool_schedule.recurrence import compile_schedule
from pool_schedule.schedule import parse_schedule

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Toronto"


def iso_date(text: str) -> date:
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {text!r}") from None


def private_filter(text: str) -> str:
    try:
        return parse_private_filter(text)
    except MalformedInput as e:
        raise argparse.ArgumentTypeError(str(e)) from None


# -----------------------------
# Commands
# -----------------------------

def run_create(args, service_factory=get_calendar_service) -> int:
    cfg = load_config(args.config)
    with open(args.csv, "r", encoding="utf-8-sig") as f:
        parsed = parse_schedule(f.read())
    templates = compile_schedule(parsed, cfg)

    print(f"Season: {parsed.season.start} .. {parsed.season.end} ({cfg.timezone})")
    print(f"Rows: {len(parsed.rows)}, events: {len(templates)}")
    print()

    if not args.confirm:
        print("DRY RUN: no OAuth, no events will be created. Preview only.\n")
        for template in templates:
            print(template.preview_line())
        print("\nDry run complete. Re-run with --confirm to create events.")
        return 0

    store = GoogleCalendarStore(service_factory(args.credentials, args.token))
    for template in templates:
        store.insert(cfg.calendar_id, template)
        print(
            f"Created: {template.summary} | {template.place} | {template.weekday_code} "
            f"{template.start_local[11:16]}-{template.end_local[11:16]} | color={template.color_id}"
        )

    print(f"\nAll {len(templates)} events created from CSV.")
    return 0


def run_clear(args, service_factory=get_calendar_service) -> int:
    window = DeletionWindow.from_dates(args.start, args.end, args.timezone)

    print(f"\nScanning events in {args.calendar_id}")
    print(f" Window: {window.start} -> {window.end} ({window.timezone})")
    print(
        f" Mode: {'DELETE' if args.confirm else 'DRY RUN'}; "
        f"{'delete whole series' if args.delete_series else 'delete instances only'}"
    )
    if args.private_key:
        print(f" Filter: privateExtendedProperty={args.private_key}")

    store = GoogleCalendarStore(service_factory(args.credentials, args.token))
    report = reconcile(
        store,
        args.calendar_id,
        window,
        private_filter=args.private_key,
        confirm=args.confirm,
        delete_series=args.delete_series,
    )

    if not report.events_found:
        print("\nNo events found in the specified window.")
        return 0

    plan = report.plan
    print(f"\nPlanned deletions: {len(plan.instance_ids)} instance(s), {len(plan.series_ids)} series")
    if not args.confirm:
        print("\nDry run complete. Re-run with --confirm to perform deletions.")
        return 0

    print(
        f"\nDeleted {len(report.deleted)}, already gone {len(report.not_found)}, "
        f"failed {len(report.failed)}."
    )
    for event_id in report.failed:
        print(f"  Failed: {event_id}")
    print("\nDone.")
    return 0


# -----------------------------
# Main
# -----------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="pool-schedule", description="Pool schedule CSV to Google Calendar.")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = ap.add_subparsers(dest="command", required=True)

    def add_auth_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--credentials", type=str, default="credentials.json", help="OAuth credentials JSON path.")
        p.add_argument("--token", type=str, default="token.json", help="OAuth token cache path.")

    create = sub.add_parser("create", help="Create weekly recurring events from a schedule CSV.")
    create.add_argument("config", type=str, help="Calendar config JSON (calendarId, timezone, places).")
    create.add_argument("csv", type=str, help="Schedule CSV with Start/End rows and a Place,Day,Time,Swim header.")
    create.add_argument("--confirm", action="store_true", help="Actually create events (otherwise dry run).")
    add_auth_args(create)
    create.set_defaults(func=run_create)

    clear = sub.add_parser("clear", help="Delete events in a date window.")
    clear.add_argument("--calendar-id", type=str, required=True, help="Target Google Calendar ID.")
    clear.add_argument("--start", type=iso_date, required=True, help="Start date (YYYY-MM-DD, inclusive).")
    clear.add_argument("--end", type=iso_date, required=True, help="End date (YYYY-MM-DD, exclusive).")
    clear.add_argument("--timezone", type=str, default=DEFAULT_TIMEZONE, help="Timezone for the window.")
    clear.add_argument("--confirm", action="store_true", help="Actually delete (otherwise dry run).")
    clear.add_argument(
        "--delete-series",
        action="store_true",
        help="Delete the entire recurring series if any instance falls in the window.",
    )
    clear.add_argument(
        "--private-key",
        type=private_filter,
        default=None,
        help=f"Filter by private extended property key=value (e.g. source={SOURCE_TAG}).",
    )
    add_auth_args(clear)
    clear.set_defaults(func=run_clear)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    try:
        return args.func(args)
    except (PoolScheduleError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (StoreError, HttpError) as e:
        logger.debug("Store failure", exc_info=True)
        print(f"Calendar API error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
