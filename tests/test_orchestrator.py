import asyncio
import time

import pytest

from dashsync.errors import NotConfigured, TransportFailure
from dashsync.store import LocalStore, MemoryStorage, MutationEvent, RemoteSnapshot, Snapshot
from dashsync.sync import SyncOrchestrator, SyncResult, SyncStatus, SyncTimings


class RecordingTransport:
    def __init__(self, remote: Snapshot | None = None) -> None:
        self.remote = remote or Snapshot()
        self.calls: list[str] = []
        self.pushed: list[Snapshot] = []
        self.gate: asyncio.Event | None = None
        self.fail_with: Exception | None = None
        self.active = 0
        self.max_active = 0
        self._stamps = 0

    def _stamp(self) -> str:
        self._stamps += 1
        return f"2026-03-15T00:00:{self._stamps:02d}+00:00"

    async def _round_trip(self, name: str) -> None:
        self.calls.append(name)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if self.fail_with is not None:
                raise self.fail_with
        finally:
            self.active -= 1

    async def fetch_all(self, user_id: str) -> RemoteSnapshot:
        await self._round_trip("fetch")
        return RemoteSnapshot(snapshot=self.remote, synced_at=self._stamp())

    async def upsert_all(self, user_id: str, snapshot: Snapshot, last_synced_at: str | None) -> str:
        await self._round_trip("upsert")
        self.pushed.append(snapshot)
        return self._stamp()

    async def aclose(self) -> None:
        return None


def _timings(**overrides: float) -> SyncTimings:
    values = {
        "push_debounce_s": 0.05,
        "pull_cooldown_s": 0.0,
        "startup_grace_s": 0.0,
        "startup_pull_delay_s": 0.01,
    }
    values.update(overrides)
    return SyncTimings(**values)


def _hydrated_store() -> LocalStore:
    store = LocalStore(MemoryStorage())
    store.hydrate()
    return store


def test_requires_user_id() -> None:
    with pytest.raises(NotConfigured):
        SyncOrchestrator("   ", _hydrated_store(), RecordingTransport())


def test_user_id_is_normalized() -> None:
    orch = SyncOrchestrator(" Me@Example.COM ", _hydrated_store(), RecordingTransport())

    assert orch.state.user_id == "me@example.com"
    assert orch.status is SyncStatus.IDLE


def test_burst_of_mutations_coalesces_into_one_push() -> None:
    store = _hydrated_store()
    transport = RecordingTransport()

    async def scenario() -> SyncOrchestrator:
        orch = SyncOrchestrator("me@example.com", store, transport, timings=_timings(push_debounce_s=0.1))
        orch.start(initial_pull=False)
        for i in range(5):
            store.add_habit(f"habit {i}")
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.3)
        await orch.close()
        return orch

    orch = asyncio.run(scenario())

    assert transport.calls == ["upsert"]
    assert len(transport.pushed[0].habits) == 5
    assert orch.last_synced_at == store.last_synced_at
    assert store.storage.state["lastSyncedAt"] == orch.last_synced_at


def test_first_observed_mutation_is_ignored() -> None:
    async def scenario() -> list[bool]:
        store = LocalStore(MemoryStorage())
        orch = SyncOrchestrator("me@example.com", store, RecordingTransport(), timings=_timings())
        orch.start(initial_pull=False)
        event = MutationEvent(collection="habits", action="add")
        results = [orch.schedule_push(event), orch.schedule_push(event)]
        await orch.close()
        return results

    assert asyncio.run(scenario()) == [False, True]


def test_hydration_before_start_counts_as_first_mutation() -> None:
    async def scenario() -> bool:
        store = _hydrated_store()
        orch = SyncOrchestrator("me@example.com", store, RecordingTransport(), timings=_timings())
        orch.start(initial_pull=False)
        armed = orch.schedule_push(MutationEvent(collection="habits", action="add"))
        await orch.close()
        return armed

    assert asyncio.run(scenario()) is True


def test_mutations_during_startup_grace_do_not_schedule() -> None:
    async def scenario() -> float | None:
        store = _hydrated_store()
        orch = SyncOrchestrator(
            "me@example.com", store, RecordingTransport(), timings=_timings(startup_grace_s=10)
        )
        orch.start(initial_pull=False)
        store.add_habit("too early")
        deadline = orch.push_deadline
        await orch.close()
        return deadline

    assert asyncio.run(scenario()) is None


def test_startup_grace_runs_from_the_given_start_time() -> None:
    async def scenario() -> tuple[bool, bool]:
        timings = _timings(startup_grace_s=10)
        event = MutationEvent(collection="habits", action="add")
        late = SyncOrchestrator(
            "me@example.com", _hydrated_store(), RecordingTransport(), timings=timings
        )
        late.start(initial_pull=False, started_at=time.monotonic() - 60)
        fresh = SyncOrchestrator(
            "me@example.com", _hydrated_store(), RecordingTransport(), timings=timings
        )
        fresh.start(initial_pull=False)
        armed = (late.schedule_push(event), fresh.schedule_push(event))
        await late.close()
        await fresh.close()
        return armed

    assert asyncio.run(scenario()) == (True, False)


def test_remote_replacement_does_not_schedule_push() -> None:
    async def scenario() -> float | None:
        store = _hydrated_store()
        orch = SyncOrchestrator("me@example.com", store, RecordingTransport(), timings=_timings())
        orch.start(initial_pull=False)
        store.replace_from_remote(Snapshot(), "2026-03-15T00:00:00+00:00")
        deadline = orch.push_deadline
        await orch.close()
        return deadline

    assert asyncio.run(scenario()) is None


def test_pushes_are_single_flight_and_queued_in_order() -> None:
    transport = RecordingTransport()

    async def scenario() -> tuple[SyncResult, SyncResult, SyncResult]:
        transport.gate = asyncio.Event()
        store = _hydrated_store()
        orch = SyncOrchestrator("me@example.com", store, transport, timings=_timings())
        first = asyncio.create_task(orch.push())
        await asyncio.sleep(0.01)
        store.add_habit("queued")
        second = asyncio.create_task(orch.push())
        pull = asyncio.create_task(orch.pull())
        await asyncio.sleep(0.01)
        assert transport.calls == ["upsert"]
        assert len(orch.state.pending_push_queue) == 1
        assert orch.status is SyncStatus.SYNCING
        transport.gate.set()
        results = await asyncio.gather(first, second, pull)
        await asyncio.sleep(0.01)
        assert not orch._handoff_tasks
        await orch.close()
        return results

    first, second, pull = asyncio.run(scenario())

    assert transport.max_active == 1
    assert transport.calls == ["upsert", "upsert"]
    assert [len(s.habits) for s in transport.pushed] == [0, 1]
    assert first.ok and second.ok
    assert first.synced_at < second.synced_at
    assert pull.skipped is True
    assert pull.error == "sync_in_progress"


def test_push_after_pull_waits_for_cooldown() -> None:
    transport = RecordingTransport()

    async def scenario() -> list[list[str]]:
        store = _hydrated_store()
        orch = SyncOrchestrator(
            "me@example.com",
            store,
            transport,
            timings=_timings(push_debounce_s=0.02, pull_cooldown_s=0.3),
        )
        orch.start(initial_pull=False)
        await orch.pull()
        store.add_habit("after pull")
        await asyncio.sleep(0.15)
        during = list(transport.calls)
        await asyncio.sleep(0.35)
        after = list(transport.calls)
        await orch.close()
        return [during, after]

    during, after = asyncio.run(scenario())

    assert during == ["fetch"]
    assert after == ["fetch", "upsert"]


def test_no_push_before_startup_pull_completes() -> None:
    transport = RecordingTransport()

    async def scenario() -> list[list[str]]:
        transport.gate = asyncio.Event()
        store = _hydrated_store()
        orch = SyncOrchestrator(
            "me@example.com",
            store,
            transport,
            timings=_timings(push_debounce_s=0.01, startup_pull_delay_s=0.05),
        )
        orch.start()
        store.add_habit("edited before first pull")
        await asyncio.sleep(0.15)
        blocked = list(transport.calls)
        assert orch.startup_pull_pending is True
        transport.gate.set()
        await asyncio.sleep(0.15)
        done = list(transport.calls)
        await orch.close()
        return [blocked, done]

    blocked, done = asyncio.run(scenario())

    assert blocked == ["fetch"]
    assert done == ["fetch", "upsert"]


def test_failed_startup_pull_clears_pending_flag() -> None:
    transport = RecordingTransport()
    transport.fail_with = TransportFailure("offline")

    async def scenario() -> SyncOrchestrator:
        orch = SyncOrchestrator("me@example.com", _hydrated_store(), transport, timings=_timings())
        orch.start()
        await orch.drain()
        await orch.close()
        return orch

    orch = asyncio.run(scenario())

    assert transport.calls == ["fetch"]
    assert orch.startup_pull_pending is False
    assert orch.status is SyncStatus.ERROR


def test_transport_failure_sets_error_then_recovers() -> None:
    transport = RecordingTransport()

    async def scenario() -> tuple[SyncResult, SyncStatus, SyncResult, SyncStatus]:
        orch = SyncOrchestrator("me@example.com", _hydrated_store(), transport, timings=_timings())
        transport.fail_with = TransportFailure("sync POST failed (500)", status=500)
        failed = await orch.push()
        failed_status = orch.status
        transport.fail_with = None
        recovered = await orch.push()
        return failed, failed_status, recovered, orch.status

    failed, failed_status, recovered, status = asyncio.run(scenario())

    assert failed.ok is False
    assert failed.error == "sync POST failed (500)"
    assert failed_status is SyncStatus.ERROR
    assert recovered.ok is True
    assert status is SyncStatus.IDLE


def test_unexpected_errors_propagate_and_release_the_slot() -> None:
    transport = RecordingTransport()
    transport.fail_with = RuntimeError("bug")

    async def scenario() -> tuple[SyncStatus, SyncResult]:
        orch = SyncOrchestrator("me@example.com", _hydrated_store(), transport, timings=_timings())
        with pytest.raises(RuntimeError, match="bug"):
            await orch.pull()
        status = orch.status
        transport.fail_with = None
        return status, await orch.pull()

    status, result = asyncio.run(scenario())

    assert status is SyncStatus.ERROR
    assert result.ok is True


def test_mutation_during_push_is_not_rescheduled() -> None:
    transport = RecordingTransport()

    async def scenario() -> None:
        transport.gate = asyncio.Event()
        store = _hydrated_store()
        orch = SyncOrchestrator(
            "me@example.com", store, transport, timings=_timings(push_debounce_s=0.02)
        )
        orch.start(initial_pull=False)
        push = asyncio.create_task(orch.push())
        await asyncio.sleep(0.01)
        store.add_habit("during push")
        assert orch.push_deadline is None
        transport.gate.set()
        await push
        assert orch.push_deadline is None
        await asyncio.sleep(0.1)
        await orch.drain()
        await orch.close()

    asyncio.run(scenario())

    assert transport.calls == ["upsert"]
    assert transport.pushed[0].habits == []


def test_pull_replaces_local_state_and_records_watermark() -> None:
    remote = Snapshot.from_payload(
        {"habits": [{"id": "r1", "name": "Remote", "createdAt": "2026-01-01T00:00:00+00:00"}]}
    )
    transport = RecordingTransport(remote)
    store = _hydrated_store()
    store.add_habit("local only")

    async def scenario() -> SyncResult:
        orch = SyncOrchestrator("me@example.com", store, transport, timings=_timings())
        return await orch.pull()

    result = asyncio.run(scenario())

    assert result.ok
    assert [h.name for h in store.habits] == ["Remote"]
    assert store.last_synced_at == result.synced_at


def test_sync_now_pushes_then_pulls() -> None:
    transport = RecordingTransport()

    async def scenario() -> SyncResult:
        orch = SyncOrchestrator("me@example.com", _hydrated_store(), transport, timings=_timings())
        return await orch.sync_now()

    result = asyncio.run(scenario())

    assert transport.calls == ["upsert", "fetch"]
    assert result.ok


def test_closed_orchestrator_is_inert() -> None:
    transport = RecordingTransport()

    async def scenario() -> tuple[bool, SyncResult, SyncResult]:
        store = _hydrated_store()
        orch = SyncOrchestrator("me@example.com", store, transport, timings=_timings())
        orch.start()
        await orch.close()
        store.add_habit("after close")
        armed = orch.schedule_push(MutationEvent(collection="habits", action="add"))
        return armed, await orch.push(), await orch.pull()

    armed, pushed, pulled = asyncio.run(scenario())

    assert armed is False
    assert pushed.error == "not_configured"
    assert pulled.error == "not_configured"
    assert transport.calls == []
