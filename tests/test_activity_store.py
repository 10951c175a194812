"""Unit tests for activity/store.py -- ActivityStore.

Covers:
- log_activity() appends and returns an id
- log_activity() is best effort: a failing insert returns None, never raises
- list_for_user() pagination metadata and newest-first ordering
- summary_for_user() recent entries, per-type counts, last login
- cleanup_for_user() removes only entries older than the window
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from activity.models import LOGIN, LOGIN_FAILED, PROFILE_UPDATED
from activity.store import ActivityStore, _activity


@pytest.fixture
def store():
    s = ActivityStore("sqlite:///:memory:")
    yield s
    s.close()


def _backdate(store: ActivityStore, entry_id: int, days: int) -> None:
    old = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
    with store.engine.connect() as conn:
        conn.execute(_activity.update().where(_activity.c.id == entry_id).values(timestamp=old))
        conn.commit()


class TestLogActivity:
    def test_appends_entry(self, store):
        entry_id = store.log_activity(1, LOGIN, "Logged in", ip_address="10.0.0.1", user_agent="pytest")
        assert entry_id is not None
        entries, _ = store.list_for_user(1)
        assert len(entries) == 1
        assert entries[0].activity_type == LOGIN
        assert entries[0].ip_address == "10.0.0.1"
        assert entries[0].user_agent == "pytest"

    def test_failure_is_swallowed(self, store):
        """A broken database must not propagate out of log_activity()."""
        with patch.object(store.engine, "connect", side_effect=RuntimeError("db gone")):
            assert store.log_activity(1, LOGIN, "Logged in") is None


class TestListForUser:
    def test_pagination(self, store):
        for i in range(5):
            store.log_activity(1, LOGIN, f"login {i}")
        store.log_activity(2, LOGIN, "someone else")

        entries, page = store.list_for_user(1, page=1, limit=2)
        assert len(entries) == 2
        assert page == {
            "current_page": 1,
            "total_pages": 3,
            "total_activities": 5,
            "has_next": True,
            "has_prev": False,
        }

        entries, page = store.list_for_user(1, page=3, limit=2)
        assert len(entries) == 1
        assert page["has_next"] is False
        assert page["has_prev"] is True

    def test_newest_first(self, store):
        store.log_activity(1, LOGIN, "first")
        store.log_activity(1, LOGIN, "second")
        entries, _ = store.list_for_user(1)
        assert [e.description for e in entries] == ["second", "first"]

    def test_empty(self, store):
        entries, page = store.list_for_user(42)
        assert entries == []
        assert page["total_pages"] == 0
        assert page["has_next"] is False


class TestSummary:
    def test_summary(self, store):
        for _ in range(3):
            store.log_activity(1, LOGIN)
        store.log_activity(1, LOGIN_FAILED)
        for _ in range(3):
            store.log_activity(1, PROFILE_UPDATED)

        summary = store.summary_for_user(1)
        assert len(summary["recent_activities"]) == 5
        assert summary["activity_counts"] == {LOGIN: 3, LOGIN_FAILED: 1, PROFILE_UPDATED: 3}
        assert summary["last_login"] is not None

    def test_counts_ignore_entries_older_than_30_days(self, store):
        old_id = store.log_activity(1, LOGIN)
        store.log_activity(1, LOGIN)
        _backdate(store, old_id, 45)
        assert store.summary_for_user(1)["activity_counts"] == {LOGIN: 1}

    def test_no_login_yet(self, store):
        store.log_activity(1, PROFILE_UPDATED)
        assert store.summary_for_user(1)["last_login"] is None


class TestCleanup:
    def test_removes_only_old_entries_for_that_user(self, store):
        old_id = store.log_activity(1, LOGIN, "old")
        store.log_activity(1, LOGIN, "new")
        other_old = store.log_activity(2, LOGIN, "other user's old entry")
        _backdate(store, old_id, 100)
        _backdate(store, other_old, 100)

        assert store.cleanup_for_user(1, days_to_keep=90) == 1
        entries, _ = store.list_for_user(1)
        assert [e.description for e in entries] == ["new"]
        assert store.list_for_user(2)[1]["total_activities"] == 1
