"""Protocol interfaces for lag tracker collaborators.

The service codes against these contracts; the RTDS feed and the
TimescaleDB store are the production implementations.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from src.models.signal import SignalRow
    from src.models.tick import Tick

TickCallback = Callable[["Tick"], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class TickSource(Protocol):
    """Market data client delivering spot and oracle ticks per instrument."""

    def subscribe(self, symbol: str, callback: TickCallback) -> Unsubscribe: ...


@runtime_checkable
class SignalStore(Protocol):
    """Persistence for scored lag signals.

    ``insert_signals`` must be all-or-nothing: either every row commits or
    the call raises and nothing is written.
    """

    async def insert_signals(self, rows: Sequence[SignalRow]) -> None: ...
