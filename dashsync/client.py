from __future__ import annotations

import datetime as dt
import logging
import time
from collections.abc import Callable
from typing import Any

from . import metrics
from .errors import NotConfigured
from .store.local import LocalStore
from .store.utils import normalize_user_id
from .sync.orchestrator import SyncOrchestrator
from .sync.state import SyncResult, SyncStatus, SyncTimings
from .sync.transport import RemoteTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], RemoteTransport]


class DashboardClient:
    """Local dashboard state plus an optional sync session.

    Sync is on exactly when the store carries a user id and a transport
    factory is available. Enabling sync builds a fresh orchestrator; disabling
    it closes and drops the current one.
    """

    def __init__(
        self,
        store: LocalStore,
        transport_factory: TransportFactory | None = None,
        *,
        timings: SyncTimings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.transport_factory = transport_factory
        self.timings = timings or SyncTimings()
        self._clock = clock
        self.orchestrator: SyncOrchestrator | None = None
        self._transport: RemoteTransport | None = None
        self._started_at: float | None = None

    @property
    def sync_enabled(self) -> bool:
        return self.orchestrator is not None

    async def start(self, *, initial_pull: bool = True) -> None:
        self._started_at = self._clock()
        if not self.store.hydrated:
            self.store.hydrate()
        if self.store.user_id:
            self._start_sync(self.store.user_id, initial_pull=initial_pull)

    def _start_sync(self, user_id: str, *, initial_pull: bool) -> None:
        if self.transport_factory is None:
            logger.debug("no transport configured; sync stays off")
            return
        transport = self.transport_factory()
        try:
            orchestrator = SyncOrchestrator(
                user_id,
                self.store,
                transport,
                timings=self.timings,
                clock=self._clock,
            )
        except NotConfigured:
            logger.debug("sync not configured; staying local")
            return
        orchestrator.start(initial_pull=initial_pull, started_at=self._started_at)
        self.orchestrator = orchestrator
        self._transport = transport

    async def enable_sync(self, user_id: str, *, initial_pull: bool = True) -> bool:
        normalized = normalize_user_id(user_id)
        if not normalized:
            return False
        if self.orchestrator is not None and self.orchestrator.state.user_id == normalized:
            return True
        await self._stop_sync()
        if self.store.user_id != normalized:
            self.store.set_last_synced_at(None)
        self.store.set_user_id(normalized)
        self._start_sync(normalized, initial_pull=initial_pull)
        return self.orchestrator is not None

    async def disable_sync(self) -> None:
        """Stop syncing and forget the user id and its watermark."""

        await self._stop_sync()
        self.store.set_user_id(None)
        self.store.set_last_synced_at(None)

    async def _stop_sync(self) -> None:
        orchestrator, transport = self.orchestrator, self._transport
        self.orchestrator = None
        self._transport = None
        if orchestrator is not None:
            await orchestrator.close()
        if transport is not None:
            await transport.aclose()

    async def push(self) -> SyncResult:
        if self.orchestrator is None:
            return SyncResult.not_configured()
        return await self.orchestrator.push()

    async def pull(self) -> SyncResult:
        if self.orchestrator is None:
            return SyncResult.not_configured()
        return await self.orchestrator.pull()

    async def sync_now(self) -> SyncResult:
        if self.orchestrator is None:
            return SyncResult.not_configured()
        return await self.orchestrator.sync_now()

    def status(self) -> dict[str, Any]:
        if self.orchestrator is None:
            return {
                "enabled": False,
                "user_id": self.store.user_id,
                "status": SyncStatus.IDLE.value,
                "last_synced_at": self.store.last_synced_at,
                "pending_pushes": 0,
            }
        return {"enabled": True, **self.orchestrator.state.as_dict()}

    def habits_with_stats(self, today: dt.date | None = None) -> list[metrics.HabitStats]:
        return metrics.habits_with_stats(self.store.habits, self.store.habit_completions, today)

    async def close(self) -> None:
        await self._stop_sync()
