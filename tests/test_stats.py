"""
Tests for weekly usage reporting.
`now` and the first-log timestamp are pinned so nothing depends on the clock.
"""

from datetime import datetime, timedelta

import pytest

from lawline.stats import WeeklyUsageReporter, start_of_week
from lawline.storage.models import Conversation, Message, UsageLogEntry, to_iso

# Wednesday of a week whose Monday is 2026-10-19 (local time)
NOW = datetime(2026, 10, 21, 18, 0).astimezone()
MONDAY = datetime(2026, 10, 19, 0, 0).astimezone()


def _at(day: int, hour: int = 12) -> datetime:
    """Local time on 2026-10-<day>."""
    return datetime(2026, 10, day, hour, 0).astimezone()


def _log(store, when: datetime, guest: bool = False):
    store.log_query(UsageLogEntry(actor_id="g" if guest else "zhang", is_guest=guest, timestamp=to_iso(when)))


def _message(store, conv_id: str, role: str, when: datetime):
    if store.get_conversation(conv_id) is None:
        store.create_conversation(Conversation(id=conv_id, title="t", owner_id="acct"))
    store.append_message(conv_id, Message(role=role, content="x", timestamp=to_iso(when)))


# ---------------------------------------------------------------------------
# start_of_week
# ---------------------------------------------------------------------------

class TestStartOfWeek:
    def test_midweek(self):
        assert start_of_week(NOW) == MONDAY

    def test_sunday_maps_to_previous_monday(self):
        sunday = datetime(2026, 10, 25, 23, 59, 59).astimezone()
        start = start_of_week(sunday)
        assert start == MONDAY
        assert (start.hour, start.minute, start.second, start.microsecond) == (0, 0, 0, 0)

    def test_monday_midnight_is_its_own_start(self):
        assert start_of_week(MONDAY) == MONDAY

    def test_naive_now_is_local(self):
        start = start_of_week(datetime(2026, 10, 22, 9, 30))
        assert start.tzinfo is not None
        assert start == MONDAY

    def test_default_is_current_week(self):
        start = start_of_week()
        now = datetime.now().astimezone()
        assert start <= now
        assert now - start < timedelta(days=7)
        assert start.weekday() == 0


# ---------------------------------------------------------------------------
# Two-phase counting
# ---------------------------------------------------------------------------

class TestWeeklyCount:
    def test_log_plus_pre_cutover_legacy_without_double_count(self, store):
        cutover = _at(20, 10)   # first log entry ever: Tuesday 10:00

        # Before the cutover: only in conversations
        _message(store, "old", "user", _at(19, 9))
        _message(store, "old", "assistant", _at(19, 9))
        _message(store, "old", "user", _at(20, 8))
        _message(store, "old", "system", _at(20, 8))
        # Last week's question does not count
        _message(store, "older", "user", _at(16, 12))

        # After the cutover: authenticated questions are in both places
        for day in (20, 21, 21):
            _message(store, "new", "user", _at(day, 15))
        for day in (20, 21, 21):
            _log(store, _at(day, 15))
        # Guests only ever reach the log
        _log(store, cutover, guest=True)
        _log(store, _at(21, 16), guest=True)

        reporter = WeeklyUsageReporter(store)
        assert reporter.log_count(MONDAY) == 5
        assert reporter.legacy_count(MONDAY, cutover) == 2
        assert reporter.weekly_count(now=NOW) == 7

    def test_injected_first_log(self, store):
        for day in (19, 20):
            _message(store, "c", "user", _at(day))
        for _ in range(5):
            _log(store, _at(21))

        reporter = WeeklyUsageReporter(store)
        assert reporter.weekly_count(now=NOW, first_log=_at(21, 0)) == 7
        assert reporter.weekly_count(now=NOW, first_log=_at(20, 0)) == 6

    def test_no_log_falls_back_to_conversations(self, store):
        _message(store, "c", "user", _at(19))
        _message(store, "c", "assistant", _at(19))
        _message(store, "c", "user", _at(21))
        _message(store, "c", "user", _at(12))

        assert WeeklyUsageReporter(store).weekly_count(now=NOW) == 2

    def test_log_started_before_this_week(self, store):
        _log(store, _at(12))
        _log(store, _at(20))
        _log(store, _at(21))
        _message(store, "c", "user", _at(20))
        _message(store, "c", "user", _at(21))

        assert WeeklyUsageReporter(store).weekly_count(now=NOW) == 2

    def test_empty_store(self, store):
        assert WeeklyUsageReporter(store).weekly_count(now=NOW) == 0

    def test_naive_first_log_accepted(self, store):
        _message(store, "c", "user", _at(19))
        assert WeeklyUsageReporter(store).legacy_count(MONDAY, datetime(2026, 10, 20, 0, 0)) == 1

    def test_store_failure_propagates(self, store, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(store, "count_queries_since", boom)
        _log(store, _at(20))
        with pytest.raises(RuntimeError):
            WeeklyUsageReporter(store).weekly_count(now=NOW)
