from __future__ import annotations

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = Path.home() / ".dashsync" / "local.sqlite"
DEFAULT_SERVER_DB_PATH = Path.home() / ".dashsync" / "server.sqlite"


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_local_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS local_state (
            key TEXT PRIMARY KEY,
            value_json TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
    )
    conn.commit()


def initialize_remote_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS habits (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            description TEXT,
            schedule TEXT NOT NULL DEFAULT 'daily',
            custom_days TEXT,
            target_type TEXT NOT NULL DEFAULT 'binary',
            target_value REAL,
            target_unit TEXT,
            tags TEXT NOT NULL DEFAULT '[]',
            color TEXT,
            icon TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_habits_user ON habits(user_id, created_at);

        CREATE TABLE IF NOT EXISTS habit_completions (
            id TEXT NOT NULL,
            habit_id TEXT NOT NULL,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            date TEXT NOT NULL,
            completed INTEGER NOT NULL DEFAULT 0,
            value REAL,
            note TEXT,
            timestamp TEXT NOT NULL,
            PRIMARY KEY (habit_id, date)
        );
        CREATE INDEX IF NOT EXISTS idx_habit_completions_user_date
            ON habit_completions(user_id, date DESC);

        CREATE TABLE IF NOT EXISTS journal_entries (
            id TEXT NOT NULL,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            date TEXT NOT NULL,
            content TEXT NOT NULL DEFAULT '',
            mood INTEGER,
            energy INTEGER,
            tags TEXT NOT NULL DEFAULT '[]',
            prompt_used TEXT,
            ai_reflection TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (user_id, date)
        );

        CREATE TABLE IF NOT EXISTS focus_lines (
            id TEXT NOT NULL,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            date TEXT NOT NULL,
            text TEXT NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (user_id, date)
        );

        CREATE TABLE IF NOT EXISTS user_settings (
            user_id TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            theme TEXT NOT NULL,
            show_weather INTEGER NOT NULL,
            weather_location TEXT,
            daily_brief_length TEXT NOT NULL,
            journal_prompt_style TEXT NOT NULL,
            computer_access_enabled INTEGER NOT NULL,
            ai_analysis_enabled INTEGER NOT NULL,
            data_export_format TEXT NOT NULL,
            updated_at TEXT
        );

        CREATE TABLE IF NOT EXISTS interest_areas (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            keywords TEXT NOT NULL DEFAULT '[]',
            sources TEXT NOT NULL DEFAULT '[]',
            enabled INTEGER NOT NULL DEFAULT 1
        );
        """
    )
    conn.commit()
