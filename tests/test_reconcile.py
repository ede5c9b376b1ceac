"""Unit tests for the reconciliation engine."""
from datetime import date

import pytest

from pool_schedule.errors import MalformedInput, StoreError, TransientStoreFailure
from pool_schedule.gcal import DeleteOutcome, RemoteEvent
from pool_schedule.reconcile import (
    DeletionPlan,
    DeletionWindow,
    build_deletion_plan,
    delete_with_retry,
    local_midnight_utc,
    parse_private_filter,
    reconcile,
)


class FakeStore:
    """In-memory event store; `failures` maps an id to errors raised before success."""

    def __init__(self, events=(), failures=None, missing=()):
        self.events = list(events)
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.missing = set(missing)
        self.list_calls = []
        self.delete_calls = []

    def list_events(self, calendar_id, time_min, time_max, private_filter=None):
        self.list_calls.append((calendar_id, time_min, time_max, private_filter))
        return iter(self.events)

    def delete(self, calendar_id, event_id):
        self.delete_calls.append(event_id)
        pending = self.failures.get(event_id)
        if pending:
            raise pending.pop(0)
        if event_id in self.missing:
            return DeleteOutcome.NOT_FOUND
        return DeleteOutcome.DELETED


def instance(event_id, series=None):
    return RemoteEvent(
        id=event_id,
        summary="Adult Swim",
        start="2025-11-03T06:30:00-05:00",
        end="2025-11-03T07:30:00-05:00",
        recurring_event_id=series,
    )


@pytest.fixture
def window():
    return DeletionWindow.from_dates(date(2025, 11, 1), date(2026, 1, 31), "America/Toronto")


@pytest.fixture
def sleeps():
    return []


class TestWindow:
    """Test cases for window and filter parsing."""

    def test_local_midnight_utc(self):
        assert local_midnight_utc(date(2025, 11, 1), "America/Toronto") == "2025-11-01T04:00:00Z"
        assert local_midnight_utc(date(2026, 1, 31), "America/Toronto") == "2026-01-31T05:00:00Z"

    def test_window_bounds(self, window):
        assert window.time_min == "2025-11-01T04:00:00Z"
        assert window.time_max == "2026-01-31T05:00:00Z"

    def test_window_must_be_forward(self):
        with pytest.raises(MalformedInput):
            DeletionWindow.from_dates(date(2025, 11, 1), date(2025, 11, 1), "America/Toronto")

    def test_private_filter(self):
        assert parse_private_filter(" source = pool-schedule ") == "source=pool-schedule"
        assert parse_private_filter(None) is None

    @pytest.mark.parametrize("text", ["source", "=x", "source="])
    def test_private_filter_invalid(self, text):
        with pytest.raises(MalformedInput):
            parse_private_filter(text)


class TestBuildDeletionPlan:
    """Test cases for instance/series classification."""

    def test_series_deduplicated(self):
        plan = build_deletion_plan([instance("a", "S1"), instance("b", "S1")], delete_series=True)
        assert plan == DeletionPlan(instance_ids=(), series_ids=("S1",))

    def test_instances_without_delete_series(self):
        plan = build_deletion_plan([instance("a", "S1"), instance("b", "S1")], delete_series=False)
        assert plan == DeletionPlan(instance_ids=("a", "b"), series_ids=())

    def test_mixed(self):
        events = [instance("single"), instance("a", "S1"), instance("b", "S2"), instance("c", "S1")]
        plan = build_deletion_plan(events, delete_series=True)
        assert plan.instance_ids == ("single",)
        assert plan.series_ids == ("S1", "S2")

    def test_empty(self):
        assert build_deletion_plan([], delete_series=True).is_empty


class TestDeleteWithRetry:
    """Test cases for retry policy."""

    def test_succeeds_after_three_transient_failures(self, sleeps):
        store = FakeStore(failures={"a": [TransientStoreFailure("busy", 503)] * 3})

        outcome = delete_with_retry(store, "cal", "a", sleep=sleeps.append)

        assert outcome is DeleteOutcome.DELETED
        assert store.delete_calls == ["a"] * 4
        assert sleeps == [1.0, 2.0, 4.0]

    def test_gives_up_after_max_retries(self, sleeps):
        store = FakeStore(failures={"a": [TransientStoreFailure("slow down", 429)] * 10})

        with pytest.raises(TransientStoreFailure):
            delete_with_retry(store, "cal", "a", sleep=sleeps.append)

        assert len(store.delete_calls) == 6
        assert sleeps == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_terminal_error_not_retried(self, sleeps):
        store = FakeStore(failures={"a": [StoreError("bad request", 400)]})

        with pytest.raises(StoreError):
            delete_with_retry(store, "cal", "a", sleep=sleeps.append)

        assert store.delete_calls == ["a"]
        assert sleeps == []

    def test_not_found_is_success(self, sleeps):
        store = FakeStore(missing={"a"})
        assert delete_with_retry(store, "cal", "a", sleep=sleeps.append) is DeleteOutcome.NOT_FOUND


class TestReconcile:
    """Test cases for reconcile."""

    def test_dry_run_never_deletes(self, window, sleeps):
        store = FakeStore(events=[instance(str(i), "S1") for i in range(50)])

        report = reconcile(store, "cal", window, confirm=False, delete_series=True, sleep=sleeps.append)

        assert store.delete_calls == []
        assert report.events_found == 50
        assert report.plan.series_ids == ("S1",)
        assert not report.executed

    def test_passes_window_and_filter(self, window):
        store = FakeStore()

        report = reconcile(store, "cal", window, private_filter="source=pool-schedule")

        assert store.list_calls == [
            ("cal", "2025-11-01T04:00:00Z", "2026-01-31T05:00:00Z", "source=pool-schedule")
        ]
        assert report.events_found == 0

    def test_instances_then_series(self, window, sleeps):
        store = FakeStore(events=[instance("s1a", "S1"), instance("single"), instance("s1b", "S1")])

        report = reconcile(store, "cal", window, confirm=True, delete_series=True, sleep=sleeps.append)

        assert store.delete_calls == ["single", "S1"]
        assert report.deleted == ["single", "S1"]
        assert report.executed

    def test_failure_does_not_stop_batch(self, window, sleeps):
        store = FakeStore(
            events=[instance("a"), instance("b"), instance("c")],
            failures={"b": [StoreError("forbidden", 401)]},
            missing={"c"},
        )

        report = reconcile(store, "cal", window, confirm=True, sleep=sleeps.append)

        assert store.delete_calls == ["a", "b", "c"]
        assert report.deleted == ["a"]
        assert report.failed == ["b"]
        assert report.not_found == ["c"]

    def test_connection_error_does_not_stop_batch(self, window, sleeps):
        """A transport-level failure on one id is recorded and the rest still run."""
        store = FakeStore(
            events=[instance("a"), instance("b"), instance("c")],
            failures={"b": [TimeoutError("The read operation timed out")]},
        )

        report = reconcile(store, "cal", window, confirm=True, sleep=sleeps.append)

        assert store.delete_calls == ["a", "b", "c"]
        assert report.deleted == ["a", "c"]
        assert report.failed == ["b"]
        assert sleeps == []
        assert report.executed

    def test_exhausted_retries_reported_as_failure(self, window, sleeps):
        store = FakeStore(
            events=[instance("a"), instance("b")],
            failures={"a": [TransientStoreFailure("busy", 503)] * 6},
        )

        report = reconcile(store, "cal", window, confirm=True, sleep=sleeps.append)

        assert report.failed == ["a"]
        assert report.deleted == ["b"]
        assert len(sleeps) == 5
