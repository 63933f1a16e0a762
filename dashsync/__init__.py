"""dashsync: personal dashboard state with cross-device sync."""

__version__ = "0.1.0"
