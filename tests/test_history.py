import pytest

from shopbot.history import (
    MemoryHistoryStore,
    MessageRecord,
    SqliteHistoryStore,
    build_conversation_digest,
    build_recent_digest,
    collect_users,
    create_history_store,
)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield MemoryHistoryStore(max_per_user=3)
        return
    sqlite_store = SqliteHistoryStore(str(tmp_path / "nested" / "chat.db"), max_per_user=3)
    yield sqlite_store
    sqlite_store.close()


def test_recent_returns_oldest_first_and_respects_limit(store):
    for index in range(3):
        store.append("u1", "alice", f"q{index}", f"a{index}")
    assert [record.text for record in store.recent("u1", 2)] == ["q1", "q2"]
    assert [record.text for record in store.recent("u1", 0)] == ["q0", "q1", "q2"]


def test_retention_cap_drops_oldest(store):
    for index in range(5):
        store.append("u1", "alice", f"q{index}", f"a{index}")
    assert [record.text for record in store.recent("u1", 0)] == ["q2", "q3", "q4"]


def test_clear_is_per_user_and_clear_all_empties(store):
    store.append("u1", "alice", "hi", "hello")
    store.append("u2", "bob", "yo", "hey")
    store.clear("u1")
    assert store.recent("u1", 0) == []
    assert len(store.recent("u2", 0)) == 1
    store.clear_all()
    assert store.all_messages() == []


def test_all_messages_newest_first(store):
    store.append("u1", "alice", "first", "r1")
    store.append("u2", "bob", "second", "r2")
    assert [record.text for record in store.all_messages(1)] == ["second"]


def test_sqlite_history_survives_reopen(tmp_path):
    path = str(tmp_path / "chat.db")
    first = SqliteHistoryStore(path)
    first.append("u1", "alice", "remember me", "ok")
    first.close()

    second = SqliteHistoryStore(path)
    try:
        assert [record.text for record in second.recent("u1", 0)] == ["remember me"]
    finally:
        second.close()


def test_create_history_store_picks_backend(tmp_path):
    assert isinstance(create_history_store("", 10), MemoryHistoryStore)
    sqlite_store = create_history_store(str(tmp_path / "chat.db"), 10)
    try:
        assert isinstance(sqlite_store, SqliteHistoryStore)
    finally:
        sqlite_store.close()


def _record(user_id, username, text, ts, response="ok"):
    return MessageRecord(user_id=user_id, text=text, response=response, username=username, ts=ts)


def test_collect_users_orders_by_latest_activity():
    users = collect_users(
        [
            _record("u1", "alice", "a", 10),
            _record("u2", "bob", "b", 30),
            _record("u1", "alice", "c", 20),
        ]
    )
    assert [(user.user_id, user.count, user.last_at) for user in users] == [("u2", 1, 30), ("u1", 2, 20)]


def test_conversation_digest_truncates_and_caps():
    records = [_record("u1", "alice", "x" * 500, 100 + index) for index in range(40)]
    digest = build_conversation_digest(records, max_len=1000)
    assert len(digest) <= 1000
    first_line = digest.splitlines()[0]
    assert first_line.endswith("...")
    assert "@alice" in first_line


def test_recent_digest_limits_entries_per_user():
    records = [_record("u1", "", f"msg{index}", index) for index in range(5)]
    digest = build_recent_digest(records)
    lines = digest.splitlines()
    assert lines[0] == "u1 (u1), messages: 5"
    assert lines[1:] == ["  - msg4", "  - msg3", "  - msg2"]
