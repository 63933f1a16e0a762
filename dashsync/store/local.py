from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from typing import Any

from .storage import DurableStorage
from .types import (
    FocusLine,
    Habit,
    HabitCompletion,
    InterestArea,
    JournalEntry,
    MutationEvent,
    Settings,
    Snapshot,
)
from .utils import generate_id, normalize_day, normalize_user_id, now_iso, today_str

logger = logging.getLogger(__name__)

MutationListener = Callable[[MutationEvent], None]


class LocalStore:
    """Client replica of the dashboard collections.

    Every mutation is written through to durable storage and then announced to
    subscribers, which is how the sync orchestrator learns that a push is due.
    """

    def __init__(self, storage: DurableStorage):
        self.storage = storage
        self.habits: list[Habit] = []
        self.habit_completions: list[HabitCompletion] = []
        self.journal_entries: list[JournalEntry] = []
        self.focus_lines: list[FocusLine] = []
        self.interest_areas: list[InterestArea] = []
        self.settings = Settings()
        self.user_id: str | None = None
        self.last_synced_at: str | None = None
        self.hydrated = False
        self._listeners: list[MutationListener] = []

    # -- plumbing ---------------------------------------------------------

    def subscribe(self, listener: MutationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, collection: str, action: str, origin: str = "local") -> None:
        event = MutationEvent(collection=collection, action=action, origin=origin)
        for listener in list(self._listeners):
            listener(event)

    def _persist(self) -> None:
        self.storage.save(
            {
                "snapshot": self.snapshot().to_payload(),
                "lastSyncedAt": self.last_synced_at,
                "userId": self.user_id,
            }
        )

    def _commit(self, collection: str, action: str) -> None:
        self._persist()
        self._emit(collection, action)

    def hydrate(self) -> None:
        state = self.storage.load() or {}
        snapshot_data = state.get("snapshot")
        if isinstance(snapshot_data, dict):
            snapshot = Snapshot.from_payload(snapshot_data)
            self._apply_snapshot(snapshot, keep_settings=False)
        self.last_synced_at = state.get("lastSyncedAt")
        self.user_id = normalize_user_id(state.get("userId"))
        self.hydrated = True
        logger.debug(
            "hydrated local store: %d habits, %d completions",
            len(self.habits),
            len(self.habit_completions),
        )
        self._emit("*", "hydrate", origin="hydrate")

    def snapshot(self) -> Snapshot:
        return Snapshot(
            habits=list(self.habits),
            habit_completions=list(self.habit_completions),
            journal_entries=list(self.journal_entries),
            focus_lines=list(self.focus_lines),
            interest_areas=list(self.interest_areas),
            settings=self.settings,
        )

    def _apply_snapshot(self, snapshot: Snapshot, *, keep_settings: bool) -> None:
        self.habits = list(snapshot.habits)
        self.habit_completions = list(snapshot.habit_completions)
        self.journal_entries = list(snapshot.journal_entries)
        self.focus_lines = list(snapshot.focus_lines)
        self.interest_areas = list(snapshot.interest_areas)
        if snapshot.settings is not None:
            self.settings = snapshot.settings
        elif not keep_settings:
            self.settings = Settings()

    def replace_from_remote(self, snapshot: Snapshot, synced_at: str | None) -> None:
        """Overwrite the watched collections with server state."""

        self._apply_snapshot(snapshot, keep_settings=True)
        self.last_synced_at = synced_at
        self._persist()
        self._emit("*", "replace", origin="remote")

    def set_last_synced_at(self, value: str | None) -> None:
        self.last_synced_at = value
        self._persist()

    def set_user_id(self, user_id: str | None) -> None:
        self.user_id = normalize_user_id(user_id)
        self._persist()

    # -- habits -----------------------------------------------------------

    def get_habit(self, habit_id: str) -> Habit | None:
        return next((h for h in self.habits if h.id == habit_id), None)

    def add_habit(self, name: str, **fields: Any) -> Habit:
        habit = Habit(id=generate_id(), name=name, created_at=now_iso(), **fields)
        self.habits = [*self.habits, habit]
        self._commit("habits", "add")
        return habit

    def update_habit(self, habit_id: str, **updates: Any) -> Habit | None:
        current = self.get_habit(habit_id)
        if current is None:
            return None
        updated = current.updated(**updates)
        self.habits = [updated if h.id == habit_id else h for h in self.habits]
        self._commit("habits", "update")
        return updated

    def delete_habit(self, habit_id: str) -> bool:
        if self.get_habit(habit_id) is None:
            return False
        self.habits = [h for h in self.habits if h.id != habit_id]
        self.habit_completions = [c for c in self.habit_completions if c.habit_id != habit_id]
        self._commit("habits", "delete")
        return True

    def completion_for(self, habit_id: str, date: str | dt.date) -> HabitCompletion | None:
        key = (habit_id, normalize_day(date))
        return next(
            (c for c in self.habit_completions if c.key == key),
            None,
        )

    def toggle_habit_completion(
        self, habit_id: str, date: str | dt.date | None = None
    ) -> HabitCompletion:
        day = normalize_day(date) if date is not None else today_str()
        existing = self.completion_for(habit_id, day)
        if existing is not None:
            result = existing.updated(completed=not existing.completed)
            self.habit_completions = [
                result if c.id == existing.id else c for c in self.habit_completions
            ]
        else:
            result = HabitCompletion(
                id=generate_id(),
                habit_id=habit_id,
                date=day,
                completed=True,
                timestamp=now_iso(),
            )
            self.habit_completions = [*self.habit_completions, result]
        self._commit("habit_completions", "toggle")
        return result

    def set_habit_value(
        self, habit_id: str, value: float, date: str | dt.date | None = None
    ) -> HabitCompletion:
        day = normalize_day(date) if date is not None else today_str()
        existing = self.completion_for(habit_id, day)
        if existing is not None:
            result = existing.updated(value=value, completed=value > 0)
            self.habit_completions = [
                result if c.id == existing.id else c for c in self.habit_completions
            ]
        else:
            result = HabitCompletion(
                id=generate_id(),
                habit_id=habit_id,
                date=day,
                completed=value > 0,
                value=value,
                timestamp=now_iso(),
            )
            self.habit_completions = [*self.habit_completions, result]
        self._commit("habit_completions", "set_value")
        return result

    # -- journal ----------------------------------------------------------

    def entry_for_date(self, date: str | dt.date | None = None) -> JournalEntry | None:
        day = normalize_day(date) if date is not None else today_str()
        return next((e for e in self.journal_entries if e.date == day), None)

    def add_journal_entry(
        self, content: str, date: str | dt.date | None = None, **fields: Any
    ) -> JournalEntry:
        now = now_iso()
        entry = JournalEntry(
            id=generate_id(),
            date=normalize_day(date) if date is not None else today_str(),
            content=content,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.journal_entries = [*self.journal_entries, entry]
        self._commit("journal_entries", "add")
        return entry

    def update_journal_entry(self, entry_id: str, **updates: Any) -> JournalEntry | None:
        current = next((e for e in self.journal_entries if e.id == entry_id), None)
        if current is None:
            return None
        updated = current.updated(**updates, updated_at=now_iso())
        self.journal_entries = [updated if e.id == entry_id else e for e in self.journal_entries]
        self._commit("journal_entries", "update")
        return updated

    def delete_journal_entry(self, entry_id: str) -> bool:
        before = len(self.journal_entries)
        self.journal_entries = [e for e in self.journal_entries if e.id != entry_id]
        if len(self.journal_entries) == before:
            return False
        self._commit("journal_entries", "delete")
        return True

    # -- focus lines ------------------------------------------------------

    def focus_line_for_date(self, date: str | dt.date | None = None) -> FocusLine | None:
        day = normalize_day(date) if date is not None else today_str()
        return next((f for f in self.focus_lines if f.date == day), None)

    def set_focus_line(self, text: str, date: str | dt.date | None = None) -> FocusLine:
        day = normalize_day(date) if date is not None else today_str()
        existing = self.focus_line_for_date(day)
        if existing is not None:
            line = existing.updated(text=text)
            self.focus_lines = [line if f.id == existing.id else f for f in self.focus_lines]
        else:
            line = FocusLine(id=generate_id(), date=day, text=text, created_at=now_iso())
            self.focus_lines = [*self.focus_lines, line]
        self._commit("focus_lines", "set")
        return line

    # -- interest areas ---------------------------------------------------

    def add_interest_area(self, name: str, **fields: Any) -> InterestArea:
        area = InterestArea(id=generate_id(), name=name, **fields)
        self.interest_areas = [*self.interest_areas, area]
        self._commit("interest_areas", "add")
        return area

    def update_interest_area(self, area_id: str, **updates: Any) -> InterestArea | None:
        current = next((a for a in self.interest_areas if a.id == area_id), None)
        if current is None:
            return None
        updated = current.updated(**updates)
        self.interest_areas = [updated if a.id == area_id else a for a in self.interest_areas]
        self._commit("interest_areas", "update")
        return updated

    def delete_interest_area(self, area_id: str) -> bool:
        before = len(self.interest_areas)
        self.interest_areas = [a for a in self.interest_areas if a.id != area_id]
        if len(self.interest_areas) == before:
            return False
        self._commit("interest_areas", "delete")
        return True

    # -- settings / housekeeping -----------------------------------------

    def update_settings(self, **updates: Any) -> Settings:
        self.settings = self.settings.updated(**updates)
        self._commit("settings", "update")
        return self.settings

    def clear_all_data(self) -> None:
        self._apply_snapshot(Snapshot(), keep_settings=False)
        self.last_synced_at = None
        self.user_id = None
        self._commit("*", "clear")
