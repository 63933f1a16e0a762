from __future__ import annotations

import json
from typing import Any
from urllib.parse import urlparse

import httpx

from ..errors import TransportFailure
from ..store.types import RemoteSnapshot, Snapshot

SYNC_PATH = "/sync"


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"http://{trimmed}"


def _error_detail(payload: dict[str, Any] | None) -> str | None:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    details = payload.get("details")
    if isinstance(error, str) and isinstance(details, str):
        return f"{error}:{details}"
    if isinstance(error, str):
        return error
    return None


def _decode(response: httpx.Response) -> dict[str, Any] | None:
    raw = response.content
    if not raw:
        return None
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        snippet = raw[:240].decode("utf-8", errors="replace").strip()
        return {"error": f"non_json_response: {snippet}" if snippet else "non_json_response"}
    if isinstance(payload, dict):
        return payload
    return {"error": f"unexpected_json_type: {type(payload).__name__}"}


class HttpTransport:
    """Remote transport speaking the JSON sync API over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = build_base_url(base_url)
        if not self.base_url:
            raise ValueError("missing remote url")
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    @property
    def sync_url(self) -> str:
        return f"{self.base_url}{SYNC_PATH}"

    async def _request(
        self,
        method: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method,
                self.sync_url,
                params=params,
                json=body,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            detail = str(exc).strip() or exc.__class__.__name__
            raise TransportFailure(f"sync {method} failed: {detail}") from exc
        payload = _decode(response)
        if response.status_code != 200 or payload is None:
            detail = _error_detail(payload)
            suffix = (
                f" ({response.status_code}: {detail})" if detail else f" ({response.status_code})"
            )
            raise TransportFailure(f"sync {method} failed{suffix}", status=response.status_code)
        return payload

    async def fetch_all(self, user_id: str) -> RemoteSnapshot:
        payload = await self._request("GET", params={"userId": user_id})
        synced_at = payload.get("syncedAt")
        if not isinstance(synced_at, str) or not synced_at:
            raise TransportFailure("invalid sync response: missing syncedAt")
        try:
            snapshot = Snapshot.from_payload(payload)
        except (TypeError, ValueError) as exc:
            raise TransportFailure(f"invalid sync response: {exc}") from exc
        return RemoteSnapshot(snapshot=snapshot, synced_at=synced_at)

    async def upsert_all(
        self, user_id: str, snapshot: Snapshot, last_synced_at: str | None
    ) -> str:
        body: dict[str, Any] = {"userId": user_id, **snapshot.to_payload()}
        body["lastSyncedAt"] = last_synced_at
        payload = await self._request("POST", body=body)
        synced_at = payload.get("syncedAt")
        if not isinstance(synced_at, str) or not synced_at:
            raise TransportFailure("invalid sync response: missing syncedAt")
        return synced_at

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
