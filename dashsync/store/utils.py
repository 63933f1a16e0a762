from __future__ import annotations

import datetime as dt
import re
import uuid

_CAMEL_RE = re.compile(r"_([a-z0-9])")
_SNAKE_RE = re.compile(r"(?<!^)(?=[A-Z])")


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def today_str(today: dt.date | None = None) -> str:
    return (today or dt.date.today()).isoformat()


def generate_id() -> str:
    return uuid.uuid4().hex[:13]


def to_camel(name: str) -> str:
    return _CAMEL_RE.sub(lambda m: m.group(1).upper(), name)


def to_snake(name: str) -> str:
    return _SNAKE_RE.sub("_", name).lower()


def parse_day(value: str | dt.date) -> dt.date | None:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    raw = str(value or "").strip()
    if len(raw) < 10:
        return None
    try:
        return dt.date.fromisoformat(raw[:10])
    except ValueError:
        return None


def normalize_day(value: object) -> str:
    parsed = parse_day(value)  # type: ignore[arg-type]
    if parsed is None:
        raise ValueError(f"invalid date: {value!r}")
    return parsed.isoformat()


def normalize_user_id(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    return normalized or None
