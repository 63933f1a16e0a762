from __future__ import annotations

import json
import logging
import os
import sqlite3
from http.server import BaseHTTPRequestHandler
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse

from .db import DEFAULT_SERVER_DB_PATH
from .store.remote import RemoteStore
from .store.types import Snapshot
from .store.utils import normalize_user_id

logger = logging.getLogger(__name__)

SYNC_PATH = "/sync"
DEFAULT_MAX_SYNC_BODY_BYTES = 5 * 1024 * 1024


class PayloadTooLarge(ValueError):
    pass


class InvalidContentLength(ValueError):
    pass


def _read_body(handler: BaseHTTPRequestHandler, max_bytes: int) -> bytes:
    try:
        length = int(handler.headers.get("Content-Length", "0") or 0)
    except ValueError as exc:
        raise InvalidContentLength("invalid_content_length") from exc
    if length <= 0:
        return b""
    if length > max_bytes:
        raise PayloadTooLarge("payload_too_large")
    return handler.rfile.read(length)


def _parse_json_body(raw: bytes) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        data = json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _send_json(handler: BaseHTTPRequestHandler, payload: dict[str, Any], status: int = 200) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def _sync_failed(handler: BaseHTTPRequestHandler, exc: Exception) -> None:
    _send_json(handler, {"error": "Sync failed", "details": str(exc)}, status=500)


def build_sync_handler(
    db_path: Path | None = None,
    *,
    max_body_bytes: int = DEFAULT_MAX_SYNC_BODY_BYTES,
):
    resolved_db = Path(db_path or os.environ.get("DASHSYNC_SERVER_DB") or DEFAULT_SERVER_DB_PATH)

    class SyncHandler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: object) -> None:  # noqa: A003
            logger.debug("%s - %s", self.address_string(), format % args)

        def _store(self) -> RemoteStore:
            return RemoteStore(resolved_db)

        def _method_not_allowed(self) -> None:
            parsed = urlparse(self.path)
            if parsed.path != SYNC_PATH:
                _send_json(self, {"error": "not_found"}, status=404)
                return
            _send_json(self, {"error": "Method not allowed"}, status=405)

        def do_GET(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            if parsed.path != SYNC_PATH:
                _send_json(self, {"error": "not_found"}, status=404)
                return
            params = parse_qs(parsed.query)
            user_id = normalize_user_id(params.get("userId", [""])[0])
            if not user_id:
                _send_json(self, {"error": "userId is required"}, status=400)
                return
            try:
                store = self._store()
            except (OSError, sqlite3.Error) as exc:
                logger.exception("sync store unavailable")
                _sync_failed(self, exc)
                return
            try:
                remote = store.fetch_all(user_id)
            except sqlite3.Error as exc:
                logger.exception("sync fetch failed for %s", user_id)
                _sync_failed(self, exc)
            else:
                payload: dict[str, Any] = dict(remote.snapshot.to_payload())
                payload["syncedAt"] = remote.synced_at
                _send_json(self, payload)
            finally:
                store.close()

        def do_POST(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            if parsed.path != SYNC_PATH:
                _send_json(self, {"error": "not_found"}, status=404)
                return
            try:
                raw = _read_body(self, max_body_bytes)
            except PayloadTooLarge:
                _send_json(self, {"error": "payload_too_large"}, status=413)
                return
            except InvalidContentLength:
                _send_json(self, {"error": "invalid_content_length"}, status=400)
                return
            if not raw:
                _send_json(self, {"error": "Request body is required"}, status=400)
                return
            data = _parse_json_body(raw)
            if data is None:
                _send_json(self, {"error": "invalid_json"}, status=400)
                return
            user_id = normalize_user_id(str(data.get("userId") or ""))
            if not user_id:
                _send_json(self, {"error": "userId is required"}, status=400)
                return
            try:
                snapshot = Snapshot.from_payload(data)
            except (AttributeError, TypeError, ValueError) as exc:
                _send_json(self, {"error": "invalid_payload", "details": str(exc)}, status=400)
                return
            last_synced_at = data.get("lastSyncedAt")
            try:
                store = self._store()
            except (OSError, sqlite3.Error) as exc:
                logger.exception("sync store unavailable")
                _sync_failed(self, exc)
                return
            try:
                synced_at = store.upsert_all(
                    user_id,
                    snapshot,
                    last_synced_at if isinstance(last_synced_at, str) else None,
                )
            except sqlite3.Error as exc:
                logger.exception("sync upsert failed for %s", user_id)
                _sync_failed(self, exc)
            else:
                _send_json(self, {"success": True, "syncedAt": synced_at})
            finally:
                store.close()

        do_PUT = _method_not_allowed  # noqa: N815
        do_DELETE = _method_not_allowed  # noqa: N815
        do_PATCH = _method_not_allowed  # noqa: N815

    return SyncHandler
