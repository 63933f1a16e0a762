from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from .. import db
from .types import RemoteSnapshot, Snapshot
from .utils import now_iso

logger = logging.getLogger(__name__)

COMPLETION_FETCH_LIMIT = 1000
JOURNAL_FETCH_LIMIT = 365
FOCUS_LINE_FETCH_LIMIT = 30


def _json_list(value: str | None) -> list[Any]:
    if not value:
        return []
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return []
    return data if isinstance(data, list) else []


def _dump_list(value: list[Any] | None) -> str:
    return json.dumps(list(value or []), ensure_ascii=False)


class RemoteStore:
    """Server-side store of record, one row per entity per user.

    Writes are upserts keyed the same way the client identifies records, so the
    last push to touch a record wins and unrelated records from other devices
    survive.
    """

    def __init__(self, db_path: Path | str = db.DEFAULT_SERVER_DB_PATH, *, check_same_thread: bool = True):
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_remote_schema(self.conn)

    def close(self) -> None:
        self.conn.close()

    def ensure_user(self, user_id: str) -> None:
        self.conn.execute(
            "INSERT INTO users(id, email, created_at) VALUES (?, ?, ?) ON CONFLICT(id) DO NOTHING",
            (user_id, user_id, now_iso()),
        )

    def fetch_all(self, user_id: str) -> RemoteSnapshot:
        self.ensure_user(user_id)
        self.conn.commit()
        habits = self.conn.execute(
            "SELECT * FROM habits WHERE user_id = ? ORDER BY created_at", (user_id,)
        ).fetchall()
        completions = self.conn.execute(
            "SELECT * FROM habit_completions WHERE user_id = ? ORDER BY date DESC LIMIT ?",
            (user_id, COMPLETION_FETCH_LIMIT),
        ).fetchall()
        journals = self.conn.execute(
            "SELECT * FROM journal_entries WHERE user_id = ? ORDER BY date DESC LIMIT ?",
            (user_id, JOURNAL_FETCH_LIMIT),
        ).fetchall()
        focus_lines = self.conn.execute(
            "SELECT * FROM focus_lines WHERE user_id = ? ORDER BY date DESC LIMIT ?",
            (user_id, FOCUS_LINE_FETCH_LIMIT),
        ).fetchall()
        settings = self.conn.execute(
            "SELECT * FROM user_settings WHERE user_id = ?", (user_id,)
        ).fetchone()
        interests = self.conn.execute(
            "SELECT * FROM interest_areas WHERE user_id = ? ORDER BY rowid", (user_id,)
        ).fetchall()

        payload: dict[str, Any] = {
            "habits": [
                {
                    "id": h["id"],
                    "name": h["name"],
                    "description": h["description"],
                    "schedule": h["schedule"],
                    "customDays": json.loads(h["custom_days"]) if h["custom_days"] else None,
                    "targetType": h["target_type"],
                    "targetValue": h["target_value"],
                    "targetUnit": h["target_unit"],
                    "tags": _json_list(h["tags"]),
                    "color": h["color"],
                    "icon": h["icon"],
                    "createdAt": h["created_at"],
                }
                for h in habits
            ],
            "habitCompletions": [
                {
                    "id": c["id"],
                    "habitId": c["habit_id"],
                    "date": c["date"],
                    "completed": bool(c["completed"]),
                    "value": c["value"],
                    "note": c["note"],
                    "timestamp": c["timestamp"],
                }
                for c in completions
            ],
            "journalEntries": [
                {
                    "id": j["id"],
                    "date": j["date"],
                    "content": j["content"],
                    "mood": j["mood"],
                    "energy": j["energy"],
                    "tags": _json_list(j["tags"]),
                    "promptUsed": j["prompt_used"],
                    "aiReflection": j["ai_reflection"],
                    "createdAt": j["created_at"],
                    "updatedAt": j["updated_at"],
                }
                for j in journals
            ],
            "focusLines": [
                {
                    "id": f["id"],
                    "date": f["date"],
                    "text": f["text"],
                    "createdAt": f["created_at"],
                }
                for f in focus_lines
            ],
            "settings": (
                {
                    "theme": settings["theme"],
                    "showWeather": bool(settings["show_weather"]),
                    "weatherLocation": settings["weather_location"],
                    "dailyBriefLength": settings["daily_brief_length"],
                    "journalPromptStyle": settings["journal_prompt_style"],
                    "computerAccessEnabled": bool(settings["computer_access_enabled"]),
                    "aiAnalysisEnabled": bool(settings["ai_analysis_enabled"]),
                    "dataExportFormat": settings["data_export_format"],
                }
                if settings is not None
                else None
            ),
            "interestAreas": [
                {
                    "id": i["id"],
                    "name": i["name"],
                    "keywords": _json_list(i["keywords"]),
                    "sources": _json_list(i["sources"]),
                    "enabled": bool(i["enabled"]),
                }
                for i in interests
            ],
        }
        return RemoteSnapshot(snapshot=Snapshot.from_payload(payload), synced_at=now_iso())

    def upsert_all(
        self,
        user_id: str,
        snapshot: Snapshot,
        last_synced_at: str | None = None,
    ) -> str:
        # last_synced_at is accepted for staleness diagnostics only; stale
        # pushes are applied like any other.
        logger.debug("upsert for %s (client watermark %s)", user_id, last_synced_at)
        now = now_iso()
        try:
            self.ensure_user(user_id)
            self._upsert_habits(user_id, snapshot, now)
            self._upsert_completions(user_id, snapshot)
            self._upsert_journal_entries(user_id, snapshot)
            self._upsert_focus_lines(user_id, snapshot)
            self._upsert_settings(user_id, snapshot, now)
            self._upsert_interest_areas(user_id, snapshot)
        except sqlite3.Error:
            self.conn.rollback()
            raise
        self.conn.commit()
        return now_iso()

    def _upsert_habits(self, user_id: str, snapshot: Snapshot, now: str) -> None:
        for habit in snapshot.habits:
            self.conn.execute(
                """
                INSERT INTO habits(
                    id, user_id, name, description, schedule, custom_days, target_type,
                    target_value, target_unit, tags, color, icon, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    schedule = excluded.schedule,
                    custom_days = excluded.custom_days,
                    target_type = excluded.target_type,
                    target_value = excluded.target_value,
                    target_unit = excluded.target_unit,
                    tags = excluded.tags,
                    color = excluded.color,
                    icon = excluded.icon,
                    updated_at = ?
                """,
                (
                    habit.id,
                    user_id,
                    habit.name,
                    habit.description,
                    habit.schedule,
                    _dump_list(habit.custom_days) if habit.custom_days is not None else None,
                    habit.target_type,
                    habit.target_value,
                    habit.target_unit,
                    _dump_list(habit.tags),
                    habit.color,
                    habit.icon,
                    habit.created_at,
                    now,
                ),
            )

    def _upsert_completions(self, user_id: str, snapshot: Snapshot) -> None:
        for completion in snapshot.habit_completions:
            self.conn.execute(
                """
                INSERT INTO habit_completions(
                    id, habit_id, user_id, date, completed, value, note, timestamp
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(habit_id, date) DO UPDATE SET
                    completed = excluded.completed,
                    value = excluded.value,
                    note = excluded.note,
                    timestamp = excluded.timestamp
                """,
                (
                    completion.id,
                    completion.habit_id,
                    user_id,
                    completion.date,
                    1 if completion.completed else 0,
                    completion.value,
                    completion.note,
                    completion.timestamp,
                ),
            )

    def _upsert_journal_entries(self, user_id: str, snapshot: Snapshot) -> None:
        for entry in snapshot.journal_entries:
            self.conn.execute(
                """
                INSERT INTO journal_entries(
                    id, user_id, date, content, mood, energy, tags, prompt_used,
                    ai_reflection, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, date) DO UPDATE SET
                    content = excluded.content,
                    mood = excluded.mood,
                    energy = excluded.energy,
                    tags = excluded.tags,
                    prompt_used = excluded.prompt_used,
                    ai_reflection = excluded.ai_reflection,
                    updated_at = excluded.updated_at
                """,
                (
                    entry.id,
                    user_id,
                    entry.date,
                    entry.content,
                    entry.mood,
                    entry.energy,
                    _dump_list(entry.tags),
                    entry.prompt_used,
                    entry.ai_reflection,
                    entry.created_at,
                    entry.updated_at,
                ),
            )

    def _upsert_focus_lines(self, user_id: str, snapshot: Snapshot) -> None:
        for line in snapshot.focus_lines:
            self.conn.execute(
                """
                INSERT INTO focus_lines(id, user_id, date, text, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, date) DO UPDATE SET
                    text = excluded.text
                """,
                (line.id, user_id, line.date, line.text, line.created_at),
            )

    def _upsert_settings(self, user_id: str, snapshot: Snapshot, now: str) -> None:
        s = snapshot.settings
        if s is None:
            return
        self.conn.execute(
            """
            INSERT INTO user_settings(
                user_id, theme, show_weather, weather_location, daily_brief_length,
                journal_prompt_style, computer_access_enabled, ai_analysis_enabled,
                data_export_format, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                theme = excluded.theme,
                show_weather = excluded.show_weather,
                weather_location = excluded.weather_location,
                daily_brief_length = excluded.daily_brief_length,
                journal_prompt_style = excluded.journal_prompt_style,
                computer_access_enabled = excluded.computer_access_enabled,
                ai_analysis_enabled = excluded.ai_analysis_enabled,
                data_export_format = excluded.data_export_format,
                updated_at = excluded.updated_at
            """,
            (
                user_id,
                s.theme,
                1 if s.show_weather else 0,
                s.weather_location,
                s.daily_brief_length,
                s.journal_prompt_style,
                1 if s.computer_access_enabled else 0,
                1 if s.ai_analysis_enabled else 0,
                s.data_export_format,
                now,
            ),
        )

    def _upsert_interest_areas(self, user_id: str, snapshot: Snapshot) -> None:
        for area in snapshot.interest_areas:
            self.conn.execute(
                """
                INSERT INTO interest_areas(id, user_id, name, keywords, sources, enabled)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    keywords = excluded.keywords,
                    sources = excluded.sources,
                    enabled = excluded.enabled
                """,
                (
                    area.id,
                    user_id,
                    area.name,
                    _dump_list(area.keywords),
                    _dump_list(area.sources),
                    1 if area.enabled else 0,
                ),
            )
