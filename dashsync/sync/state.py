from __future__ import annotations

import asyncio
import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from ..config import DashsyncConfig
from ..store.types import Snapshot


class SyncStatus(str, enum.Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass
class PendingPush:
    snapshot: Snapshot
    waiter: asyncio.Future[SyncResult]


@dataclass
class SyncState:
    user_id: str
    last_synced_at: str | None = None
    status: SyncStatus = SyncStatus.IDLE
    pending_push_queue: deque[PendingPush] = field(default_factory=deque)

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "last_synced_at": self.last_synced_at,
            "status": self.status.value,
            "pending_pushes": len(self.pending_push_queue),
        }


@dataclass(frozen=True)
class SyncResult:
    ok: bool
    synced_at: str | None = None
    error: str | None = None
    skipped: bool = False

    @classmethod
    def not_configured(cls) -> SyncResult:
        return cls(ok=False, error="not_configured", skipped=True)


@dataclass(frozen=True)
class SyncTimings:
    """Orchestrator delays, in seconds."""

    push_debounce_s: float = 2.0
    pull_cooldown_s: float = 5.0
    startup_grace_s: float = 3.0
    startup_pull_delay_s: float = 0.5

    @classmethod
    def from_config(cls, cfg: DashsyncConfig) -> SyncTimings:
        return cls(
            push_debounce_s=max(0, cfg.push_debounce_ms) / 1000,
            pull_cooldown_s=max(0, cfg.pull_cooldown_ms) / 1000,
            startup_grace_s=max(0, cfg.startup_grace_ms) / 1000,
            startup_pull_delay_s=max(0, cfg.startup_pull_delay_ms) / 1000,
        )
