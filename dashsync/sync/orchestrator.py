from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from ..errors import NotConfigured, TransportFailure
from ..store.local import LocalStore
from ..store.types import MutationEvent, Snapshot
from ..store.utils import normalize_user_id
from .state import PendingPush, SyncResult, SyncState, SyncStatus, SyncTimings
from .transport import RemoteTransport

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Keeps one user's local replica and the remote store convergent.

    Pushes are debounced on local mutations and serialized through a single
    in-flight slot; pulls share that slot, so a push and a pull never overlap.
    A completed pull opens a cooldown window during which scheduled pushes are
    deferred, so freshly pulled data is not immediately overwritten by a push.

    One instance exists per sync-enabled session. Disabling sync means closing
    the instance and dropping it.
    """

    def __init__(
        self,
        user_id: str,
        store: LocalStore,
        transport: RemoteTransport,
        *,
        timings: SyncTimings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        normalized = normalize_user_id(user_id)
        if not normalized:
            raise NotConfigured("sync requires a user id")
        self.store = store
        self.transport = transport
        self.timings = timings or SyncTimings()
        self.state = SyncState(user_id=normalized, last_synced_at=store.last_synced_at)
        self._clock = clock
        self._started_at: float | None = None
        self._first_mutation_seen = False
        self._push_deadline: float | None = None
        self._debounce_task: asyncio.Task[None] | None = None
        self._startup_task: asyncio.Task[None] | None = None
        self._startup_pull_pending = False
        self._startup_pull_started = False
        self._last_pull_at: float | None = None
        self._in_flight = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._handoff_tasks: set[asyncio.Task[None]] = set()
        self._closed = False
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def status(self) -> SyncStatus:
        return self.state.status

    @property
    def last_synced_at(self) -> str | None:
        return self.state.last_synced_at

    @property
    def push_deadline(self) -> float | None:
        return self._push_deadline

    @property
    def startup_pull_pending(self) -> bool:
        return self._startup_pull_pending

    def start(self, *, initial_pull: bool = True, started_at: float | None = None) -> None:
        """Begin observing the local store; must run inside the event loop.

        The startup grace period runs from ``started_at`` (a clock reading
        taken when the owning client started) or, when omitted, from now.
        """

        loop = asyncio.get_running_loop()
        self._started_at = self._clock() if started_at is None else started_at
        # A store hydrated before we subscribed has already produced its
        # hydration mutation; only an unseen hydration needs skipping.
        self._first_mutation_seen = self.store.hydrated
        self._unsubscribe = self.store.subscribe(self._on_mutation)
        if initial_pull:
            self._startup_pull_pending = True
            self._startup_task = loop.create_task(self._startup_pull())
        logger.info("sync started for %s", self.state.user_id)

    # -- scheduling -------------------------------------------------------

    def _on_mutation(self, event: MutationEvent) -> None:
        if event.origin == "remote":
            return
        self.schedule_push(event)

    def schedule_push(self, event: MutationEvent | None = None) -> bool:
        if self._closed or self._started_at is None:
            return False
        if not self._first_mutation_seen:
            self._first_mutation_seen = True
            logger.debug("ignoring first observed mutation (hydration)")
            return False
        if event is not None and event.origin == "hydrate":
            return False
        return self._schedule()

    def _schedule(self) -> bool:
        if self._closed or self._started_at is None:
            return False
        now = self._clock()
        if now - self._started_at < self.timings.startup_grace_s:
            logger.debug("push skipped: startup grace period")
            return False
        if self.state.status is SyncStatus.SYNCING:
            logger.debug("push skipped: sync in progress")
            return False
        deadline = now + self.timings.push_debounce_s
        cooldown_end = self._cooldown_end()
        if cooldown_end is not None and cooldown_end > deadline:
            logger.debug("push deferred: %.3fs left in pull cooldown", cooldown_end - now)
            deadline = cooldown_end
        self._arm(deadline)
        return True

    def _cooldown_end(self) -> float | None:
        if self._last_pull_at is None:
            return None
        return self._last_pull_at + self.timings.pull_cooldown_s

    def _arm(self, deadline: float) -> None:
        self._push_deadline = deadline
        if self._debounce_task is None or self._debounce_task.done():
            loop = asyncio.get_running_loop()
            self._debounce_task = loop.create_task(self._debounce_loop())

    def _ready_to_fire(self) -> bool:
        now = self._clock()
        if self._startup_pull_pending:
            self._push_deadline = now + self.timings.push_debounce_s
            return False
        if self.state.status is SyncStatus.SYNCING:
            logger.debug("push cancelled: sync in progress")
            return False
        cooldown_end = self._cooldown_end()
        if cooldown_end is not None and cooldown_end > now:
            self._push_deadline = cooldown_end
            return False
        return True

    async def _debounce_loop(self) -> None:
        while self._push_deadline is not None and not self._closed:
            delay = self._push_deadline - self._clock()
            if delay > 0:
                await asyncio.sleep(delay)
                continue
            self._push_deadline = None
            if not self._ready_to_fire():
                continue
            try:
                await self.push()
            except Exception:
                logger.exception("scheduled push failed")

    # -- round-trips ------------------------------------------------------

    def _acquire(self) -> None:
        self._in_flight = True
        self._idle.clear()

    def _release(self) -> None:
        if self.state.pending_push_queue:
            pending = self.state.pending_push_queue.popleft()
            task = asyncio.get_running_loop().create_task(self._run_pending(pending))
            self._handoff_tasks.add(task)
            task.add_done_callback(self._handoff_tasks.discard)
            return
        self._in_flight = False
        self._idle.set()

    def _set_status(self, status: SyncStatus) -> None:
        if self.state.status is not status:
            logger.debug("sync status %s -> %s", self.state.status.value, status.value)
        self.state.status = status

    def _record_watermark(self, synced_at: str) -> None:
        self.state.last_synced_at = synced_at
        self.store.set_last_synced_at(synced_at)

    async def push(self, snapshot: Snapshot | None = None) -> SyncResult:
        if self._closed:
            return SyncResult.not_configured()
        payload = snapshot if snapshot is not None else self.store.snapshot()
        if self._in_flight:
            waiter: asyncio.Future[SyncResult] = asyncio.get_running_loop().create_future()
            self.state.pending_push_queue.append(PendingPush(snapshot=payload, waiter=waiter))
            logger.debug("push queued (%d pending)", len(self.state.pending_push_queue))
            return await waiter
        self._acquire()
        return await self._run_push(payload)

    async def _run_pending(self, pending: PendingPush) -> None:
        try:
            result = await self._run_push(pending.snapshot)
        except Exception as exc:
            if not pending.waiter.done():
                pending.waiter.set_exception(exc)
            return
        if not pending.waiter.done():
            pending.waiter.set_result(result)

    async def _run_push(self, snapshot: Snapshot) -> SyncResult:
        self._set_status(SyncStatus.SYNCING)
        try:
            synced_at = await self.transport.upsert_all(
                self.state.user_id, snapshot, self.state.last_synced_at
            )
        except TransportFailure as exc:
            logger.warning("push failed: %s", exc)
            self._set_status(SyncStatus.ERROR)
            result = SyncResult(ok=False, error=str(exc))
        except Exception:
            logger.exception("push failed")
            self._set_status(SyncStatus.ERROR)
            raise
        else:
            self._record_watermark(synced_at)
            self._set_status(SyncStatus.IDLE)
            logger.info("pushed local state (synced_at=%s)", synced_at)
            result = SyncResult(ok=True, synced_at=synced_at)
        finally:
            self._release()
        return result

    async def pull(self) -> SyncResult:
        if self._closed:
            return SyncResult.not_configured()
        if self._in_flight or self.state.status is SyncStatus.SYNCING:
            logger.debug("pull skipped: sync in progress")
            return SyncResult(ok=False, error="sync_in_progress", skipped=True)
        self._acquire()
        self._set_status(SyncStatus.SYNCING)
        try:
            remote = await self.transport.fetch_all(self.state.user_id)
            self.store.replace_from_remote(remote.snapshot, remote.synced_at)
        except TransportFailure as exc:
            logger.warning("pull failed: %s", exc)
            self._set_status(SyncStatus.ERROR)
            result = SyncResult(ok=False, error=str(exc))
        except Exception:
            logger.exception("pull failed")
            self._set_status(SyncStatus.ERROR)
            raise
        else:
            self.state.last_synced_at = remote.synced_at
            self._last_pull_at = self._clock()
            self._set_status(SyncStatus.IDLE)
            logger.info("pulled remote state (synced_at=%s)", remote.synced_at)
            result = SyncResult(ok=True, synced_at=remote.synced_at)
        finally:
            self._release()
        return result

    async def _startup_pull(self) -> None:
        try:
            await asyncio.sleep(self.timings.startup_pull_delay_s)
            while self._in_flight:
                await self._idle.wait()
            if self._closed:
                return
            self._startup_pull_started = True
            await self.pull()
        except Exception:
            logger.exception("startup pull failed")
        finally:
            self._startup_pull_pending = False

    async def sync_now(self) -> SyncResult:
        """Push local state, then pull the server's resolved state."""

        if self._closed:
            return SyncResult.not_configured()
        pushed = await self.push()
        await self.wait_idle()
        pulled = await self.pull()
        if not pushed.ok:
            return pushed
        return pulled

    async def wait_idle(self) -> None:
        while self._in_flight:
            await self._idle.wait()

    async def drain(self) -> None:
        """Wait until no timer is armed and no round-trip is in flight."""

        while True:
            startup = self._startup_task
            if startup is not None and not startup.done():
                await asyncio.wait({startup})
                continue
            debounce = self._debounce_task
            if debounce is not None and not debounce.done():
                await asyncio.wait({debounce})
                continue
            if self._in_flight:
                await self.wait_idle()
                continue
            if self._push_deadline is not None and not self._closed:
                self._arm(self._push_deadline)
                continue
            return

    async def close(self) -> None:
        """Stop scheduling; an in-flight round-trip still runs to completion."""

        if self._closed:
            return
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._push_deadline = None
        startup = self._startup_task
        if startup is not None and not startup.done() and not self._startup_pull_started:
            startup.cancel()
        debounce = self._debounce_task
        if debounce is not None and not debounce.done() and not self._in_flight:
            debounce.cancel()
        pending = [t for t in (startup, debounce) if t is not None and not t.done()]
        if pending:
            await asyncio.wait(pending)
        await self.wait_idle()
        logger.info("sync stopped for %s", self.state.user_id)
