from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for sync failures."""


class TransportFailure(SyncError):
    """Network or server error during a push or pull round-trip."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class NotConfigured(SyncError):
    """Sync was attempted without a user id.

    Callers treat this as "sync is off", never as a user-facing error.
    """


# Two devices editing the same record between pulls: the later push wins and
# the other edit is lost without notice. There is no exception for this case;
# last-writer-wins per record is the accepted contract of the remote store.
