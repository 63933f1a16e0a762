from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/dashsync/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "user_id": "DASHSYNC_USER_ID",
    "remote_url": "DASHSYNC_REMOTE_URL",
    "db_path": "DASHSYNC_DB",
    "server_db_path": "DASHSYNC_SERVER_DB",
    "server_host": "DASHSYNC_SERVER_HOST",
    "server_port": "DASHSYNC_SERVER_PORT",
    "push_debounce_ms": "DASHSYNC_PUSH_DEBOUNCE_MS",
    "pull_cooldown_ms": "DASHSYNC_PULL_COOLDOWN_MS",
    "startup_grace_ms": "DASHSYNC_STARTUP_GRACE_MS",
    "startup_pull_delay_ms": "DASHSYNC_STARTUP_PULL_DELAY_MS",
    "request_timeout_s": "DASHSYNC_REQUEST_TIMEOUT_S",
    "max_sync_body_bytes": "DASHSYNC_MAX_SYNC_BODY_BYTES",
    "log_level": "DASHSYNC_LOG_LEVEL",
    "log_file": "DASHSYNC_LOG_FILE",
}

INT_KEYS = {
    "server_port",
    "push_debounce_ms",
    "pull_cooldown_ms",
    "startup_grace_ms",
    "startup_pull_delay_ms",
    "max_sync_body_bytes",
}
FLOAT_KEYS = {"request_timeout_s"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("DASHSYNC_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def _strip_jsonc(raw: str) -> str:
    out: list[str] = []
    i = 0
    length = len(raw)
    in_string = False
    while i < length:
        ch = raw[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < length:
                out.append(raw[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
            continue
        if raw.startswith("//", i):
            end = raw.find("\n", i)
            i = length if end == -1 else end
            continue
        if raw.startswith("/*", i):
            end = raw.find("*/", i + 2)
            if end == -1:
                raise ValueError("invalid config json")
            i = end + 2
            continue
        out.append(ch)
        i += 1
    return _strip_trailing_commas("".join(out))


def _strip_trailing_commas(text: str) -> str:
    out: list[str] = []
    in_string = False
    i = 0
    while i < len(text):
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < len(text):
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < len(text) and text[j].isspace():
                j += 1
            if j < len(text) and text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(_strip_jsonc(raw))
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class DashsyncConfig:
    user_id: str | None = None
    remote_url: str | None = None
    db_path: str = "~/.dashsync/local.sqlite"
    server_db_path: str = "~/.dashsync/server.sqlite"
    server_host: str = "127.0.0.1"
    server_port: int = 8787
    push_debounce_ms: int = 2000
    pull_cooldown_ms: int = 5000
    startup_grace_ms: int = 3000
    startup_pull_delay_ms: int = 500
    request_timeout_s: float = 10.0
    max_sync_body_bytes: int = 5 * 1024 * 1024
    log_level: str = "WARNING"
    log_file: str | None = "~/.dashsync/sync-server.log"


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def load_config(path: Path | None = None) -> DashsyncConfig:
    cfg = DashsyncConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = read_config_file(config_path)
        except ValueError:
            warnings.warn(f"Ignoring unreadable config: {config_path}", RuntimeWarning, stacklevel=2)
            data = {}
        cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: DashsyncConfig, data: dict[str, Any]) -> DashsyncConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key in {"user_id", "remote_url", "log_file"}:
            setattr(cfg, key, _coerce_optional_str(value))
            continue
        setattr(cfg, key, value)
    return cfg
