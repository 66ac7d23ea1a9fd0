"""Tracker runner: wires the RTDS feed, signal store and lag tracker service.

Starts the feed, initializes the service, periodically analyzes every
instrument and logs a status snapshot until SIGINT/SIGTERM, then shuts
the components down in reverse order.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from typing import TYPE_CHECKING, Any

from src.config.loader import ConfigLoader
from src.config.settings import LagTrackerConfig
from src.core.logging import get_logger
from src.data.memory_store import MemorySignalStore
from src.data.rtds_ws import RTDSFeed
from src.data.timescaledb import TimescaleSignalStore
from src.engine.lag_service import LagTrackerService

if TYPE_CHECKING:
    from src.interfaces import SignalStore

logger = get_logger(__name__)


class TrackerRunner:
    """Main process loop: feed -> lag tracker -> signal store."""

    def __init__(
        self,
        config: ConfigLoader,
        dry_run: bool = False,
        feed: RTDSFeed | None = None,
        store: SignalStore | None = None,
    ) -> None:
        self._config = config
        self._dry_run = dry_run
        self._status_interval = float(config.get("runner.status_interval_seconds", 30.0))
        self._feed = feed
        self._store = store
        self._service: LagTrackerService | None = None
        self._shutdown_event = asyncio.Event()

    @property
    def service(self) -> LagTrackerService | None:
        return self._service

    def _build_feed(self) -> RTDSFeed:
        rtds = self._config.section("rtds")
        return RTDSFeed(
            ws_url=rtds.get("url", "wss://ws-live-data.polymarket.com"),
            reconnect_interval_ms=int(rtds.get("reconnect_interval_ms", 1000)),
            max_reconnect_interval_ms=int(rtds.get("max_reconnect_interval_ms", 30_000)),
            max_message_size_bytes=int(rtds.get("max_message_size_bytes", 65_536)),
        )

    async def _open_store(self) -> SignalStore:
        if self._dry_run:
            logger.info("runner_dry_run", store="memory")
            return MemorySignalStore()
        persistence = self._config.section("persistence")
        store = TimescaleSignalStore(
            min_pool=int(persistence.get("min_pool", 1)),
            max_pool=int(persistence.get("max_pool", 4)),
        )
        await store.open()
        if persistence.get("create_tables", True):
            await store.create_tables()
        return store

    async def start(self) -> int:
        """Initialize components and run until shutdown is requested."""
        tracker_config = LagTrackerConfig.from_mapping(self._config.section("lag_tracker"))

        if self._store is None:
            self._store = await self._open_store()
        if self._feed is None:
            self._feed = self._build_feed()

        self._service = LagTrackerService(self._feed, self._store)
        await self._feed.connect()
        await self._service.init(tracker_config)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown, sig)

        logger.info("runner_ready", env=self._config.env, dry_run=self._dry_run)

        try:
            await self._status_loop()
        except asyncio.CancelledError:
            logger.info("runner_cancelled")
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                with contextlib.suppress(Exception):
                    loop.remove_signal_handler(sig)
            await self._cleanup()

        return 0

    def request_shutdown(self, sig: signal.Signals | None = None) -> None:
        """Handle OS signal for graceful shutdown."""
        logger.info("shutdown_requested", signal=sig.name if sig is not None else None)
        self._shutdown_event.set()

    async def _status_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                self.log_status()
            except Exception:
                logger.exception("status_error")

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._status_interval)
                break
            except TimeoutError:
                continue

    def log_status(self) -> dict[str, Any]:
        """Analyze every instrument and log one status snapshot."""
        assert self._service is not None
        lags: dict[str, Any] = {}
        for symbol in self._service.symbols:
            result = self._service.analyze(symbol)
            lags[symbol] = (
                None
                if result is None
                else {
                    "tau_star_ms": result.tau_star_ms,
                    "correlation": round(result.correlation, 4),
                    "significant": result.significant,
                }
            )
        state = self._service.get_state()
        logger.info(
            "runner_status",
            lags=lags,
            signals=state["signals"],
            flush=state["module_stats"],
            feed=self._feed.stats if self._feed is not None else None,
        )
        return lags

    async def _cleanup(self) -> None:
        """Shut down service, feed and store in that order."""
        logger.info("runner_shutdown")
        if self._service is not None:
            await self._service.shutdown()
        if self._feed is not None:
            await self._feed.disconnect()
        close = getattr(self._store, "close", None)
        if close is not None:
            await close()


def run_tracker(config_dir: str = "config", env: str | None = None, dry_run: bool = False) -> int:
    """Run the lag tracker.

    Args:
        config_dir: Path to config directory.
        env: Environment name.
        dry_run: Keep signals in memory instead of TimescaleDB.

    Returns:
        Exit code (0 = success).
    """
    config = ConfigLoader(config_dir=config_dir, env=env)
    config.load()
    config.validate_ranges()

    runner = TrackerRunner(config=config, dry_run=dry_run)
    return asyncio.run(runner.start())
