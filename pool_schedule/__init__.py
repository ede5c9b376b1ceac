"""
Pool schedule to Google Calendar.

Compiles a season's swim-schedule CSV into weekly recurring events, and
clears previously created events (or whole series) from a date window.
"""

__version__ = "0.3.0"

SOURCE_TAG = "pool-schedule"
