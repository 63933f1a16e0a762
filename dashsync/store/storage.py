from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Protocol

from .. import db
from .utils import now_iso

STATE_KEY = "dashboard"


class DurableStorage(Protocol):
    def load(self) -> dict[str, Any] | None: ...

    def save(self, state: dict[str, Any]) -> None: ...


class LocalStorage:
    """SQLite key/value persistence for the client replica."""

    def __init__(self, db_path: Path | str = db.DEFAULT_DB_PATH, *, key: str = STATE_KEY):
        self.db_path = Path(db_path).expanduser()
        self.key = key
        self.conn = db.connect(self.db_path)
        db.initialize_local_schema(self.conn)

    def load(self) -> dict[str, Any] | None:
        row = self.conn.execute(
            "SELECT value_json FROM local_state WHERE key = ?", (self.key,)
        ).fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row["value_json"])
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    def save(self, state: dict[str, Any]) -> None:
        self.conn.execute(
            """
            INSERT INTO local_state(key, value_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value_json = excluded.value_json,
                updated_at = excluded.updated_at
            """,
            (self.key, json.dumps(state, ensure_ascii=False), now_iso()),
        )
        self.conn.commit()

    def close(self) -> None:
        try:
            self.conn.close()
        except sqlite3.Error:
            return


class MemoryStorage:
    def __init__(self, state: dict[str, Any] | None = None) -> None:
        self.state = json.loads(json.dumps(state)) if state is not None else None
        self.saves = 0

    def load(self) -> dict[str, Any] | None:
        if self.state is None:
            return None
        return json.loads(json.dumps(self.state))

    def save(self, state: dict[str, Any]) -> None:
        self.state = json.loads(json.dumps(state))
        self.saves += 1

    def close(self) -> None:
        return None
