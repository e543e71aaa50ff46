"""Tests for on-disk persistence in highclaw/session/store.py."""

import json
import os
import stat

import pytest

from highclaw.session.errors import InvalidInputError, SessionIOError, SessionNotFoundError
from highclaw.session.session import Session
from highclaw.session.store import (
    DEFAULT_SESSION_KEY,
    SessionStore,
    sanitize_filename,
)


def _session(key="agent:main:main", *turns):
    s = Session(key=key, channel="cli")
    for role, content in turns:
        s.add_message(role, content)
    return s


# ---------------------------------------------------------------------------
# TestSanitizeFilename
# ---------------------------------------------------------------------------

class TestSanitizeFilename:
    def test_replaces_unsafe_chars(self):
        name = sanitize_filename('agent:main:a/b\\c*d?e"f<g>h|i')
        for ch in '/\\:*?"<>|':
            assert ch not in name

    def test_session_key_colons(self):
        assert sanitize_filename("agent:main:main") == "agent_main_main"

    def test_truncates_to_200_bytes(self):
        assert len(sanitize_filename("x" * 500).encode("utf-8")) <= 200

    def test_truncation_respects_multibyte_chars(self):
        name = sanitize_filename("会话" * 100)
        assert len(name.encode("utf-8")) <= 200
        name.encode("utf-8").decode("utf-8")

    def test_plain_keys_map_without_hash(self):
        assert sanitize_filename("agent:main:whatsapp:group:fam") == "agent_main_whatsapp_group_fam"

    def test_ambiguous_keys_get_distinct_names(self):
        names = {sanitize_filename(k) for k in ("a:b", "a_b", "a/b", "a|b")}
        assert len(names) == 4
        assert "a_b" in names

    def test_truncated_keys_get_distinct_names(self):
        a, b = sanitize_filename("x" * 300 + "1"), sanitize_filename("x" * 300 + "2")
        assert a != b
        assert len(a.encode("utf-8")) <= 200


# ---------------------------------------------------------------------------
# TestSaveLoad
# ---------------------------------------------------------------------------

class TestSaveLoad:
    def test_round_trip_after_restart(self, tmp_path):
        root = tmp_path / "data"
        original = _session("agent:main:main", ("user", "hi"), ("assistant", "hello"))
        SessionStore(root).save(original)

        loaded = SessionStore(root).load("agent:main:main")
        assert [(m.role, m.content) for m in loaded.get_messages()] == [
            ("user", "hi"), ("assistant", "hello"),
        ]
        assert loaded.message_count == 2
        assert loaded.created_at == original.created_at
        assert loaded.channel == "cli"

    def test_write_through_file_matches_memory(self, store):
        s = _session("k", ("user", "one"))
        store.save(s)
        msg = s.add_message("assistant", "two")
        store.save(s)

        data = json.loads(store.session_path("k").read_text(encoding="utf-8"))
        assert data["messageCount"] == 2
        assert data["history"][-1]["content"] == "two"
        assert data["history"][-1]["timestamp"] == msg.timestamp
        assert data["history"][-1]["timestamp"] >= data["history"][0]["timestamp"]

    def test_snapshot_file_mode(self, store):
        path = store.save(_session("k"))
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o644

    def test_custom_file_mode(self, tmp_path):
        store = SessionStore(tmp_path, file_mode=0o600)
        path = store.save(_session("k"))
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_no_temp_files_left(self, store):
        store.save(_session("k", ("user", "x")))
        store.save(_session("k", ("user", "y")))
        assert [p.name for p in store.sessions_dir.iterdir()] == ["k.json"]

    def test_load_missing_raises_not_found(self, store):
        with pytest.raises(SessionNotFoundError):
            store.load("agent:main:nobody")

    def test_load_corrupt_raises_io_error(self, store):
        store.sessions_dir.mkdir(parents=True)
        store.session_path("bad").write_text("{not json", encoding="utf-8")
        with pytest.raises(SessionIOError):
            store.load("bad")
        assert store.try_load("bad") is None

    def test_load_rejects_snapshot_of_another_key(self, store):
        path = store.save(_session("a:b"))
        path.rename(store.session_path("c:d"))
        with pytest.raises(SessionNotFoundError):
            store.load("c:d")

    def test_keys_that_sanitize_alike_keep_separate_files(self, store):
        for key in ("agent:main:x/y", "agent:main:x_y", "agent:main:x:y"):
            store.save(_session(key, ("user", key)))
        for key in ("agent:main:x/y", "agent:main:x_y", "agent:main:x:y"):
            assert store.load(key).get_messages()[0].content == key
        assert len(list(store.sessions_dir.iterdir())) == 3

    def test_long_keys_with_common_prefix_keep_separate_files(self, store):
        prefix = "agent:main:whatsapp:biz:direct:" + "9" * 200
        store.save(_session(prefix + "1", ("user", "one")))
        store.save(_session(prefix + "2", ("user", "two")))
        assert store.load(prefix + "1").get_messages()[0].content == "one"
        assert store.load(prefix + "2").get_messages()[0].content == "two"

    def test_control_characters_raise_io_error(self, store):
        with pytest.raises(SessionIOError):
            store.save(_session("agent:main:a\x00b"))
        assert not any(store.sessions_dir.glob(".*.tmp"))

    def test_load_all_skips_bad_files(self, store):
        store.save(_session("one"))
        store.save(_session("two"))
        store.session_path("broken").write_text("[]", encoding="utf-8")
        assert sorted(s.key for s in store.load_all()) == ["one", "two"]

    def test_load_all_on_missing_dir(self, store):
        assert store.load_all() == []

    def test_delete_is_idempotent(self, store):
        store.save(_session("k"))
        store.delete("k")
        store.delete("k")
        assert not store.exists("k")


# ---------------------------------------------------------------------------
# TestSaveFromHistory
# ---------------------------------------------------------------------------

class TestSaveFromHistory:
    def test_writes_history_and_sets_current(self, store):
        history = [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "tool", "content": "ignored"},
            {"role": "user", "content": "   "},
            {"role": "", "content": "no role"},
        ]
        s = store.save_from_history("agent:main:tui", "", "", "gpt-x", history)
        assert [m.content for m in s.get_messages()] == ["hi", "hello"]
        assert (s.channel, s.agent_id, s.model) == ("cli", "main", "gpt-x")
        assert store.current().key == "agent:main:tui"

        reloaded = store.load("agent:main:tui")
        assert reloaded.message_count == 2

    def test_preserves_created_at(self, store):
        first = store.save_from_history("k", history=[{"role": "user", "content": "a"}])
        second = store.save_from_history("k", history=[{"role": "user", "content": "b"}])
        assert second.created_at == first.created_at
        assert [m.content for m in store.load("k").get_messages()] == ["b"]

    def test_requires_key(self, store):
        with pytest.raises(InvalidInputError):
            store.save_from_history("  ")


# ---------------------------------------------------------------------------
# TestBindings
# ---------------------------------------------------------------------------

class TestBindings:
    def test_resolve_without_binding_returns_default(self, store):
        assert store.resolve_session("telegram", "chat1") == DEFAULT_SESSION_KEY
        assert store.resolve_session("", "chat1") == DEFAULT_SESSION_KEY

    def test_bind_and_resolve(self, store):
        store.set_binding("Telegram", "chat1", "agent:main:ops")
        assert store.resolve_session("telegram", "chat1") == "agent:main:ops"
        assert store.resolve_session("TELEGRAM", "chat1") == "agent:main:ops"

    def test_file_layout(self, store):
        store.set_binding("Slack", "C1", "agent:main:team")
        data = json.loads(store.bindings_path.read_text(encoding="utf-8"))
        assert data == {"bindings": {"slack|C1": "agent:main:team"}}

    def test_remove(self, store):
        store.set_binding("slack", "C1", "k")
        assert store.remove_binding("slack", "C1") is True
        assert store.remove_binding("slack", "C1") is False
        assert store.list_bindings() == []

    def test_list_sorted(self, store):
        store.set_binding("telegram", "b", "k2")
        store.set_binding("slack", "z", "k3")
        store.set_binding("telegram", "a", "k1")
        assert [(b.channel, b.conversation) for b in store.list_bindings()] == [
            ("slack", "z"), ("telegram", "a"), ("telegram", "b"),
        ]

    def test_blank_arguments_rejected(self, store):
        with pytest.raises(InvalidInputError):
            store.set_binding("slack", "", "k")

    def test_corrupt_bindings_fall_back_to_default(self, store):
        store.state_dir.mkdir(parents=True)
        store.bindings_path.write_text("garbage", encoding="utf-8")
        assert store.resolve_session("slack", "C1") == DEFAULT_SESSION_KEY


# ---------------------------------------------------------------------------
# TestCurrentPointer
# ---------------------------------------------------------------------------

class TestCurrentPointer:
    def test_unset(self, store):
        assert store.current() is None

    def test_set_and_read(self, store):
        store.set_current("agent:main:main")
        pointer = store.current()
        assert pointer.key == "agent:main:main"
        assert pointer.updated_at > 0
        data = json.loads(store.current_path.read_text(encoding="utf-8"))
        assert set(data) == {"key", "updatedAt"}

    def test_empty_key_deletes_pointer(self, store):
        store.set_current("k")
        store.set_current("")
        assert not store.current_path.exists()
        assert store.current() is None
