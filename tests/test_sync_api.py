import asyncio
import http.client
import json
import threading
from http.server import HTTPServer
from pathlib import Path

from dashsync.store import Habit, LocalStore, MemoryStorage, Snapshot
from dashsync.sync import HttpTransport, SyncOrchestrator, SyncTimings
from dashsync.sync_api import build_sync_handler
from dashsync.sync_server import _append_sync_server_log, make_sync_server


def _start_server(db_path: Path, max_body_bytes: int = 1024 * 1024) -> tuple[HTTPServer, int]:
    handler = build_sync_handler(db_path, max_body_bytes=max_body_bytes)
    server = HTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, int(server.server_address[1])


def _request(
    port: int, method: str, path: str, body: bytes | None = None
) -> tuple[int, dict]:
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=2)
    try:
        headers = {"Content-Type": "application/json"} if body is not None else {}
        conn.request(method, path, body=body, headers=headers)
        resp = conn.getresponse()
        raw = resp.read()
        return resp.status, json.loads(raw.decode("utf-8")) if raw else {}
    finally:
        conn.close()


def _push_body(user_id: str, **collections) -> bytes:
    payload = {"userId": user_id, **Snapshot(**collections).to_payload(), "lastSyncedAt": None}
    return json.dumps(payload).encode("utf-8")


def test_post_then_get_roundtrip(tmp_path: Path) -> None:
    server, port = _start_server(tmp_path / "server.sqlite")
    try:
        habit = Habit(id="h1", name="Read", created_at="2026-01-01T00:00:00+00:00")
        status, payload = _request(port, "POST", "/sync", _push_body("Me@Example.com", habits=[habit]))
        assert status == 200
        assert payload["success"] is True
        assert payload["syncedAt"]

        status, payload = _request(port, "GET", "/sync?userId=me@example.com")
        assert status == 200
        assert [h["name"] for h in payload["habits"]] == ["Read"]
        assert payload["settings"] is None
        assert payload["syncedAt"]
    finally:
        server.shutdown()


def test_get_requires_user_id(tmp_path: Path) -> None:
    server, port = _start_server(tmp_path / "server.sqlite")
    try:
        status, payload = _request(port, "GET", "/sync")
        assert status == 400
        assert payload == {"error": "userId is required"}
    finally:
        server.shutdown()


def test_post_validation_errors(tmp_path: Path) -> None:
    server, port = _start_server(tmp_path / "server.sqlite")
    try:
        assert _request(port, "POST", "/sync", b"")[0] == 400
        assert _request(port, "POST", "/sync", b"{nope")[1] == {"error": "invalid_json"}
        status, payload = _request(port, "POST", "/sync", json.dumps({"habits": []}).encode())
        assert (status, payload) == (400, {"error": "userId is required"})
        status, payload = _request(
            port,
            "POST",
            "/sync",
            json.dumps({"userId": "me@example.com", "habits": ["not-an-object"]}).encode(),
        )
        assert status == 400
        assert payload["error"] == "invalid_payload"
    finally:
        server.shutdown()


def test_post_rejects_oversized_body(tmp_path: Path) -> None:
    server, port = _start_server(tmp_path / "server.sqlite", max_body_bytes=64)
    try:
        body = _push_body(
            "me@example.com",
            habits=[Habit(id="h1", name="x" * 200, created_at="2026-01-01T00:00:00+00:00")],
        )
        status, payload = _request(port, "POST", "/sync", body)
        assert status == 413
        assert payload == {"error": "payload_too_large"}
    finally:
        server.shutdown()


def test_post_rejects_non_numeric_content_length(tmp_path: Path) -> None:
    server, port = _start_server(tmp_path / "server.sqlite")
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=2)
    try:
        conn.putrequest("POST", "/sync")
        conn.putheader("Content-Type", "application/json")
        conn.putheader("Content-Length", "abc")
        conn.endheaders()
        resp = conn.getresponse()
        assert resp.status == 400
        assert json.loads(resp.read().decode("utf-8")) == {"error": "invalid_content_length"}
    finally:
        conn.close()
        server.shutdown()


def test_unknown_path_and_method(tmp_path: Path) -> None:
    server, port = _start_server(tmp_path / "server.sqlite")
    try:
        assert _request(port, "GET", "/elsewhere")[0] == 404
        status, payload = _request(port, "DELETE", "/sync")
        assert status == 405
        assert payload == {"error": "Method not allowed"}
    finally:
        server.shutdown()


def test_store_failure_returns_sync_failed(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    server, port = _start_server(blocker / "server.sqlite")
    try:
        status, payload = _request(port, "GET", "/sync?userId=me@example.com")
    finally:
        server.shutdown()

    assert status == 500
    assert payload["error"] == "Sync failed"
    assert "details" in payload


def test_two_devices_converge_through_http(tmp_path: Path) -> None:
    server = make_sync_server("127.0.0.1", 0, db_path=tmp_path / "server.sqlite")
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    url = f"127.0.0.1:{server.server_address[1]}"
    timings = SyncTimings(push_debounce_s=0, pull_cooldown_s=0, startup_grace_s=0, startup_pull_delay_s=0)

    async def scenario() -> list[str]:
        device_a = LocalStore(MemoryStorage())
        device_a.hydrate()
        device_b = LocalStore(MemoryStorage())
        device_b.hydrate()
        transport_a = HttpTransport(url)
        transport_b = HttpTransport(url)
        try:
            orch_a = SyncOrchestrator("me@example.com", device_a, transport_a, timings=timings)
            orch_b = SyncOrchestrator("me@example.com", device_b, transport_b, timings=timings)
            habit = device_a.add_habit("Read")
            device_a.toggle_habit_completion(habit.id, "2026-03-15")
            assert (await orch_a.push()).ok
            assert (await orch_b.pull()).ok
            return [h.name for h in device_b.habits] + [c.date for c in device_b.habit_completions]
        finally:
            await transport_a.aclose()
            await transport_b.aclose()

    try:
        assert asyncio.run(scenario()) == ["Read", "2026-03-15"]
    finally:
        server.shutdown()
        server.server_close()


def test_append_sync_server_log_writes_timestamped_entry(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "sync-server.log"

    _append_sync_server_log(log_path, "Traceback: boom")
    _append_sync_server_log(None, "ignored")

    text = log_path.read_text()
    assert "Traceback: boom" in text
    assert text.count("[") == 1
