"""
Weekly usage: how many questions were asked since Monday.

Queries used to be counted from the user messages embedded in conversations;
they are now recorded in the dedicated query log, which also sees guests.
During the changeover both hold the same authenticated queries, so the
count is taken in two phases:

  1. log phase:    query-log entries since the start of the week
  2. legacy phase: user messages since the start of the week that are older
                   than the very first log entry (so cannot be in the log)

With no log entries at all, the legacy phase covers the whole week.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from lawline.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

_UNSET = object()


def start_of_week(now: datetime | None = None) -> datetime:
    """
    Monday 00:00:00.000 of the week containing `now`, local time.
    Sunday belongs to the week that started six days earlier.
    Naive datetimes are taken as local time.
    """
    now = now or datetime.now()
    # Work on the local wall clock so a DST change during the week does not
    # shift midnight; astimezone() re-attaches Monday's own UTC offset.
    wall = (now.astimezone() if now.tzinfo else now).replace(tzinfo=None)
    monday = wall - timedelta(days=wall.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0).astimezone()


class WeeklyUsageReporter:
    """Counts user queries for the current week across both logging schemes."""

    def __init__(self, sqlite: SQLiteStore):
        self.sqlite = sqlite

    def log_count(self, since: datetime) -> int:
        return self.sqlite.count_queries_since(since)

    def legacy_count(self, since: datetime, first_log: datetime | None) -> int:
        """User messages from before the query log existed."""
        if first_log is None:
            return self.sqlite.count_user_messages(since)
        if first_log.tzinfo is None:
            first_log = first_log.astimezone()
        if first_log <= since:
            return 0
        return self.sqlite.count_user_messages(since, before=first_log)

    def weekly_count(self, now: datetime | None = None, first_log=_UNSET) -> int:
        """
        Total queries since the start of the week. `now` and `first_log` can be
        pinned for reproducible results; by default both come from the clock
        and the store.
        """
        since = start_of_week(now)
        if first_log is _UNSET:
            first_log = self.sqlite.first_query_timestamp()

        logged = self.log_count(since) if first_log is not None else 0
        legacy = self.legacy_count(since, first_log)
        logger.debug(
            "Weekly queries since %s: log=%d legacy=%d (first log %s)",
            since.isoformat(), logged, legacy, first_log,
        )
        return logged + legacy
