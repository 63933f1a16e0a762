import sqlite3
from pathlib import Path

import pytest

from dashsync.store import (
    FocusLine,
    Habit,
    HabitCompletion,
    JournalEntry,
    RemoteStore,
    Settings,
    Snapshot,
)
from dashsync.store import remote as remote_module


def _habit(habit_id: str, name: str) -> Habit:
    return Habit(id=habit_id, name=name, created_at="2026-01-01T00:00:00+00:00", tags=["t"])


def _completion(completion_id: str, habit_id: str, date: str, completed: bool = True):
    return HabitCompletion(
        id=completion_id,
        habit_id=habit_id,
        date=date,
        completed=completed,
        timestamp=f"{date}T08:00:00+00:00",
    )


@pytest.fixture
def store(tmp_path: Path):
    remote = RemoteStore(tmp_path / "server.sqlite")
    try:
        yield remote
    finally:
        remote.close()


def test_upsert_then_fetch_returns_same_entities(store: RemoteStore) -> None:
    snapshot = Snapshot(
        habits=[_habit("h1", "Read")],
        habit_completions=[_completion("c1", "h1", "2026-03-15")],
        journal_entries=[
            JournalEntry(
                id="j1",
                date="2026-03-15",
                content="hi",
                created_at="2026-03-15T09:00:00+00:00",
                updated_at="2026-03-15T09:00:00+00:00",
                mood=3,
            )
        ],
        focus_lines=[
            FocusLine(id="f1", date="2026-03-15", text="focus", created_at="2026-03-15T09:00:00+00:00")
        ],
        settings=Settings(theme="dark"),
    )

    synced_at = store.upsert_all("me@example.com", snapshot)
    fetched = store.fetch_all("me@example.com")

    assert synced_at
    assert fetched.synced_at
    assert fetched.snapshot == snapshot


def test_fetch_for_new_user_is_empty(store: RemoteStore) -> None:
    fetched = store.fetch_all("new@example.com")

    assert fetched.snapshot == Snapshot()


def test_users_are_isolated(store: RemoteStore) -> None:
    store.upsert_all("a@example.com", Snapshot(habits=[_habit("h1", "Read")]))

    assert store.fetch_all("b@example.com").snapshot.habits == []


def test_last_write_wins_per_record_and_other_records_survive(store: RemoteStore) -> None:
    store.upsert_all("me@example.com", Snapshot(habits=[_habit("h1", "Read"), _habit("h2", "Run")]))
    store.upsert_all("me@example.com", Snapshot(habits=[_habit("h1", "Read daily")]))

    habits = store.fetch_all("me@example.com").snapshot.habits

    assert {h.id: h.name for h in habits} == {"h1": "Read daily", "h2": "Run"}


def test_completions_conflict_on_habit_and_date(store: RemoteStore) -> None:
    store.upsert_all(
        "me@example.com",
        Snapshot(habit_completions=[_completion("device-a", "h1", "2026-03-15")]),
    )
    store.upsert_all(
        "me@example.com",
        Snapshot(habit_completions=[_completion("device-b", "h1", "2026-03-15", completed=False)]),
    )

    completions = store.fetch_all("me@example.com").snapshot.habit_completions

    assert len(completions) == 1
    assert completions[0].id == "device-a"
    assert completions[0].completed is False


def test_journal_and_focus_conflict_on_date(store: RemoteStore) -> None:
    def _entry(entry_id: str, content: str) -> JournalEntry:
        return JournalEntry(
            id=entry_id,
            date="2026-03-15",
            content=content,
            created_at="2026-03-15T09:00:00+00:00",
            updated_at="2026-03-15T09:00:00+00:00",
        )

    store.upsert_all("me@example.com", Snapshot(journal_entries=[_entry("j1", "first")]))
    store.upsert_all("me@example.com", Snapshot(journal_entries=[_entry("j2", "second")]))

    entries = store.fetch_all("me@example.com").snapshot.journal_entries

    assert [(e.id, e.content) for e in entries] == [("j1", "second")]


def test_missing_settings_leave_stored_settings_untouched(store: RemoteStore) -> None:
    store.upsert_all("me@example.com", Snapshot(settings=Settings(theme="dark")))
    store.upsert_all("me@example.com", Snapshot())

    assert store.fetch_all("me@example.com").snapshot.settings == Settings(theme="dark")


def test_repeated_push_of_same_snapshot_is_idempotent(store: RemoteStore) -> None:
    snapshot = Snapshot(
        habits=[_habit("h1", "Read")],
        habit_completions=[_completion("c1", "h1", "2026-03-15")],
    )

    store.upsert_all("me@example.com", snapshot)
    first = store.fetch_all("me@example.com")
    store.upsert_all("me@example.com", snapshot, first.synced_at)
    second = store.fetch_all("me@example.com")

    assert second.snapshot == first.snapshot
    assert second.synced_at >= first.synced_at


def test_fetch_orders_completions_newest_first_and_applies_limit(
    store: RemoteStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(remote_module, "COMPLETION_FETCH_LIMIT", 2)
    completions = [
        _completion(f"c{day}", "h1", f"2026-03-{day:02d}") for day in (10, 12, 11)
    ]
    store.upsert_all("me@example.com", Snapshot(habit_completions=completions))

    fetched = store.fetch_all("me@example.com").snapshot.habit_completions

    assert [c.date for c in fetched] == ["2026-03-12", "2026-03-11"]


def test_failed_upsert_rolls_back_whole_push(store: RemoteStore) -> None:
    bad = Snapshot(
        habits=[_habit("h1", "Read"), Habit(id="h2", name=None, created_at="x")]  # type: ignore[arg-type]
    )

    with pytest.raises(sqlite3.IntegrityError):
        store.upsert_all("me@example.com", bad)

    assert store.fetch_all("me@example.com").snapshot.habits == []
