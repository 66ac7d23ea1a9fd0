"""Price feed models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

SUPPORTED_SYMBOLS: tuple[str, ...] = ("btc", "eth", "sol", "xrp")


class Feed(str, Enum):
    """Which price stream a tick belongs to."""

    SPOT = "spot"
    ORACLE = "oracle"


@dataclass(frozen=True)
class Tick:
    """One price update delivered by a tick source.

    Unvalidated. Bad prices are rejected by the buffer they are routed
    into, so a malformed tick never raises on the ingestion path.
    """

    symbol: str
    price: float
    timestamp: int
    feed: Feed


@dataclass(frozen=True)
class PricePoint:
    """A stored (price, timestamp) sample. Timestamp is epoch milliseconds."""

    price: float
    timestamp: int
