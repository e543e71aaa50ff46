"""Tests for pruning, last-session lookup and auto-save in highclaw/session/maintenance.py."""

from datetime import datetime, timedelta, timezone

from highclaw.session.errors import SessionIOError
from highclaw.session.maintenance import autosave, last_session_key, prune_stale
from highclaw.session.manager import SessionManager
from highclaw.session.session import Session

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _seed(store, days_ago):
    """One snapshot per entry, key ``s<days>``, last active ``days`` days before NOW."""
    for days in days_ago:
        stamp = NOW - timedelta(days=days)
        store.save(Session(key=f"s{days}", created_at=stamp, last_activity_at=stamp))


# ---------------------------------------------------------------------------
# TestPruneStale
# ---------------------------------------------------------------------------

class TestPruneStale:
    def test_age_and_count(self, store):
        # 10 sessions active 0, 2, 4 ... 18 days ago
        _seed(store, range(0, 20, 2))
        result = prune_stale(store, None, max_age_days=7, max_count=3, now=NOW)

        # 8..18 are older than 7 days; of 0, 2, 4, 6 only the newest 3 survive
        assert result.pruned == 6
        assert result.capped == 1
        assert sorted(s.key for s in store.load_all()) == ["s0", "s2", "s4"]

    def test_zero_disables_limits(self, store):
        _seed(store, [1, 50, 400])
        result = prune_stale(store, None, max_age_days=0, max_count=0, now=NOW)
        assert result.total == 0
        assert len(store.load_all()) == 3

    def test_count_only(self, store):
        _seed(store, [1, 2, 3, 4])
        result = prune_stale(store, None, max_age_days=0, max_count=2, now=NOW)
        assert result.to_dict() == {"pruned": 0, "capped": 2}
        assert sorted(s.key for s in store.load_all()) == ["s1", "s2"]

    def test_pruned_sessions_leave_the_registry(self, store):
        _seed(store, [1, 30])
        manager = SessionManager()
        manager.put(store.load("s30"))
        prune_stale(store, manager, max_age_days=7, max_count=0, now=NOW)
        assert "s30" not in manager
        assert not store.exists("s30")

    def test_in_memory_activity_overrides_disk(self, store):
        _seed(store, [30])
        manager = SessionManager()
        live = manager.put(store.load("s30"))
        live.last_activity_at = NOW
        result = prune_stale(store, manager, max_age_days=7, max_count=0, now=NOW)
        assert result.total == 0
        assert store.exists("s30")

    def test_unsaved_memory_sessions_are_counted(self, store):
        manager = SessionManager()
        stale = NOW - timedelta(days=90)
        manager.put(Session(key="ghost", created_at=stale, last_activity_at=stale))
        result = prune_stale(store, manager, max_age_days=7, max_count=0, now=NOW)
        assert result.pruned == 1
        assert "ghost" not in manager


# ---------------------------------------------------------------------------
# TestLastSessionKey
# ---------------------------------------------------------------------------

class TestLastSessionKey:
    def test_empty(self, store):
        assert last_session_key(store) == ""

    def test_most_recent_snapshot(self, store):
        _seed(store, [5, 1, 9])
        assert last_session_key(store) == "s1"

    def test_memory_session_counts(self, store):
        _seed(store, [1])
        manager = SessionManager()
        manager.get_or_create("fresh").add_message("user", "now")
        assert last_session_key(store, manager) == "fresh"


# ---------------------------------------------------------------------------
# TestAutosave
# ---------------------------------------------------------------------------

class TestAutosave:
    def test_writes_every_registered_session(self, store):
        manager = SessionManager()
        manager.get_or_create("a").add_message("user", "hi")
        manager.get_or_create("b")
        assert autosave(store, manager) == []
        assert store.load("a").message_count == 1
        assert store.exists("b")

    def test_one_failure_does_not_stop_others(self, store, monkeypatch):
        manager = SessionManager()
        manager.get_or_create("bad")
        manager.get_or_create("good")
        real_save = store.save

        def flaky_save(session):
            if session.key == "bad":
                raise SessionIOError("disk full")
            return real_save(session)

        monkeypatch.setattr(store, "save", flaky_save)
        failures = autosave(store, manager)
        assert [key for key, _ in failures] == ["bad"]
        assert store.exists("good")
