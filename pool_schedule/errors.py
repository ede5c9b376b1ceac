"""Exception types shared by the parser, compiler and reconciliation engine."""

from __future__ import annotations

from typing import Optional


class PoolScheduleError(Exception):
    """Base class for errors that abort a run before any remote effect."""


class MalformedInput(PoolScheduleError):
    """Schedule text, a time range, a date or a filter could not be interpreted."""


class ConfigurationError(PoolScheduleError):
    """Required configuration is absent or invalid."""


class StoreError(Exception):
    """
    Failure reported by the calendar event store.

    `status` is the HTTP status when the store produced one.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientStoreFailure(StoreError):
    """Rate limiting or a server-side error; safe to retry."""
