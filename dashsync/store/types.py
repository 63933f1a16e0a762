from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, TypedDict

from .utils import normalize_day, to_camel, to_snake


class _Entity:
    """Shared wire conversion for the entity dataclasses."""

    LIST_FIELDS: frozenset[str] = frozenset()

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if isinstance(value, list):
                value = list(value)
            payload[to_camel(f.name)] = value
        return payload

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Any:
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = to_snake(key)
            if name not in known:
                continue
            if name in cls.LIST_FIELDS:
                value = list(value or [])
            kwargs[name] = value
        return cls(**kwargs)

    def updated(self, **changes: Any) -> Any:
        changes.pop("id", None)
        return replace(self, **changes)  # type: ignore[type-var]


@dataclass
class Habit(_Entity):
    id: str
    name: str
    created_at: str
    description: str | None = None
    schedule: str = "daily"
    custom_days: list[int] | None = None
    target_type: str = "binary"
    target_value: float | None = None
    target_unit: str | None = None
    tags: list[str] = field(default_factory=list)
    color: str | None = None
    icon: str | None = None

    LIST_FIELDS = frozenset({"tags"})


@dataclass
class HabitCompletion(_Entity):
    id: str
    habit_id: str
    date: str
    completed: bool
    timestamp: str
    value: float | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        self.date = normalize_day(self.date)
        self.completed = bool(self.completed)

    @property
    def key(self) -> tuple[str, str]:
        return self.habit_id, self.date


@dataclass
class JournalEntry(_Entity):
    id: str
    date: str
    content: str
    created_at: str
    updated_at: str
    mood: int | None = None
    energy: int | None = None
    tags: list[str] = field(default_factory=list)
    prompt_used: str | None = None
    ai_reflection: str | None = None

    LIST_FIELDS = frozenset({"tags"})

    def __post_init__(self) -> None:
        self.date = normalize_day(self.date)


@dataclass
class FocusLine(_Entity):
    id: str
    date: str
    text: str
    created_at: str

    def __post_init__(self) -> None:
        self.date = normalize_day(self.date)


@dataclass
class InterestArea(_Entity):
    id: str
    name: str
    keywords: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    enabled: bool = True

    LIST_FIELDS = frozenset({"keywords", "sources"})


@dataclass
class Settings(_Entity):
    theme: str = "light"
    show_weather: bool = False
    weather_location: str | None = None
    daily_brief_length: str = "medium"
    journal_prompt_style: str = "mixed"
    computer_access_enabled: bool = False
    ai_analysis_enabled: bool = True
    data_export_format: str = "json"


class SnapshotPayload(TypedDict):
    habits: list[dict[str, Any]]
    habitCompletions: list[dict[str, Any]]
    journalEntries: list[dict[str, Any]]
    focusLines: list[dict[str, Any]]
    settings: dict[str, Any] | None
    interestAreas: list[dict[str, Any]]


@dataclass
class Snapshot:
    habits: list[Habit] = field(default_factory=list)
    habit_completions: list[HabitCompletion] = field(default_factory=list)
    journal_entries: list[JournalEntry] = field(default_factory=list)
    focus_lines: list[FocusLine] = field(default_factory=list)
    interest_areas: list[InterestArea] = field(default_factory=list)
    settings: Settings | None = None

    def to_payload(self) -> SnapshotPayload:
        return {
            "habits": [h.to_payload() for h in self.habits],
            "habitCompletions": [c.to_payload() for c in self.habit_completions],
            "journalEntries": [e.to_payload() for e in self.journal_entries],
            "focusLines": [f.to_payload() for f in self.focus_lines],
            "settings": self.settings.to_payload() if self.settings else None,
            "interestAreas": [a.to_payload() for a in self.interest_areas],
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Snapshot:
        settings = data.get("settings")
        return cls(
            habits=[Habit.from_payload(h) for h in data.get("habits") or []],
            habit_completions=[
                HabitCompletion.from_payload(c) for c in data.get("habitCompletions") or []
            ],
            journal_entries=[
                JournalEntry.from_payload(e) for e in data.get("journalEntries") or []
            ],
            focus_lines=[FocusLine.from_payload(f) for f in data.get("focusLines") or []],
            interest_areas=[
                InterestArea.from_payload(a) for a in data.get("interestAreas") or []
            ],
            settings=Settings.from_payload(settings) if isinstance(settings, dict) else None,
        )


@dataclass(frozen=True)
class RemoteSnapshot:
    snapshot: Snapshot
    synced_at: str


@dataclass(frozen=True)
class MutationEvent:
    collection: str
    action: str
    origin: str = "local"
