from __future__ import annotations

from .local import LocalStore
from .remote import RemoteStore
from .storage import LocalStorage, MemoryStorage
from .types import (
    FocusLine,
    Habit,
    HabitCompletion,
    InterestArea,
    JournalEntry,
    MutationEvent,
    RemoteSnapshot,
    Settings,
    Snapshot,
)

__all__ = [
    "FocusLine",
    "Habit",
    "HabitCompletion",
    "InterestArea",
    "JournalEntry",
    "LocalStorage",
    "LocalStore",
    "MemoryStorage",
    "MutationEvent",
    "RemoteSnapshot",
    "RemoteStore",
    "Settings",
    "Snapshot",
]
