from __future__ import annotations

import contextlib
import datetime as dt
import logging
import socket
import threading
import traceback
from http.server import HTTPServer
from pathlib import Path

from .sync_api import DEFAULT_MAX_SYNC_BODY_BYTES, build_sync_handler

logger = logging.getLogger(__name__)


def make_sync_server(
    host: str,
    port: int,
    *,
    db_path: Path | None = None,
    max_body_bytes: int = DEFAULT_MAX_SYNC_BODY_BYTES,
) -> HTTPServer:
    handler = build_sync_handler(db_path, max_body_bytes=max_body_bytes)

    class Server(HTTPServer):
        address_family = socket.AF_INET6 if ":" in host else socket.AF_INET

        def server_bind(self) -> None:
            if self.address_family == socket.AF_INET6:
                with contextlib.suppress(OSError):
                    self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            super().server_bind()

        def handle_error(self, request, client_address) -> None:  # type: ignore[no-untyped-def]
            tb = traceback.format_exc()
            logger.error("sync request from %s failed\n%s", client_address, tb)
            _append_sync_server_log(self.log_path, tb)

    server = Server((host, port), handler)
    server.log_path = None  # type: ignore[attr-defined]
    return server


def run_sync_server(
    host: str,
    port: int,
    *,
    db_path: Path | None = None,
    max_body_bytes: int = DEFAULT_MAX_SYNC_BODY_BYTES,
    log_path: Path | None = None,
    stop_event: threading.Event | None = None,
) -> None:
    server = make_sync_server(host, port, db_path=db_path, max_body_bytes=max_body_bytes)
    server.log_path = log_path  # type: ignore[attr-defined]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    logger.info("sync server listening on %s:%s", host, server.server_address[1])
    stop = stop_event or threading.Event()
    try:
        while not stop.wait(1.0):
            continue
    finally:
        server.shutdown()
        server.server_close()
        logger.info("sync server stopped")


def _append_sync_server_log(log_path: Path | None, message: str) -> None:
    if log_path is None:
        return
    try:
        path = Path(log_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        ts = dt.datetime.now(dt.UTC).isoformat()
        with path.open("a", encoding="utf-8", errors="ignore") as handle:
            handle.write(f"\n[{ts}]\n{message}\n")
    except OSError:
        return
