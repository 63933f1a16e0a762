from __future__ import annotations

import asyncio
import sqlite3
from typing import Protocol

from ..errors import TransportFailure
from ..store.remote import RemoteStore
from ..store.types import RemoteSnapshot, Snapshot


class RemoteTransport(Protocol):
    async def fetch_all(self, user_id: str) -> RemoteSnapshot: ...

    async def upsert_all(
        self, user_id: str, snapshot: Snapshot, last_synced_at: str | None
    ) -> str: ...

    async def aclose(self) -> None: ...


class LocalTransport:
    """In-process transport talking to a RemoteStore directly.

    Store calls run in a worker thread, so the store must be opened with
    ``check_same_thread=False``.
    """

    def __init__(self, store: RemoteStore, *, close_store: bool = False):
        self.store = store
        self._close_store = close_store

    async def fetch_all(self, user_id: str) -> RemoteSnapshot:
        try:
            return await asyncio.to_thread(self.store.fetch_all, user_id)
        except sqlite3.Error as exc:
            raise TransportFailure(f"remote fetch failed: {exc}") from exc

    async def upsert_all(
        self, user_id: str, snapshot: Snapshot, last_synced_at: str | None
    ) -> str:
        try:
            return await asyncio.to_thread(
                self.store.upsert_all, user_id, snapshot, last_synced_at
            )
        except sqlite3.Error as exc:
            raise TransportFailure(f"remote upsert failed: {exc}") from exc

    async def aclose(self) -> None:
        if self._close_store:
            self.store.close()
