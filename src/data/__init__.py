"""Data layer: RTDS tick feed and signal storage."""

from __future__ import annotations

from src.data.memory_store import MemorySignalStore
from src.data.rtds_ws import RTDSError, RTDSErrorCode, RTDSFeed
from src.data.timescaledb import TimescaleSignalStore

__all__ = [
    "MemorySignalStore",
    "RTDSError",
    "RTDSErrorCode",
    "RTDSFeed",
    "TimescaleSignalStore",
]
