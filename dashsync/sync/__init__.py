from __future__ import annotations

from .http_client import HttpTransport
from .orchestrator import SyncOrchestrator
from .state import SyncResult, SyncState, SyncStatus, SyncTimings
from .transport import LocalTransport, RemoteTransport

__all__ = [
    "HttpTransport",
    "LocalTransport",
    "RemoteTransport",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "SyncTimings",
]
