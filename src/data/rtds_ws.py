"""Polymarket real-time data socket (RTDS) feed for spot and oracle prices."""

from __future__ import annotations

import asyncio
import contextlib
import json
import math
import time
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import websockets

from src.core.logging import get_logger
from src.models.tick import SUPPORTED_SYMBOLS, Feed, PricePoint, Tick

if TYPE_CHECKING:
    from src.interfaces import TickCallback, Unsubscribe

log = get_logger(__name__)

ALLOWED_HOSTS = ("ws-live-data.polymarket.com",)

TOPIC_FEEDS: dict[str, Feed] = {
    "crypto_prices": Feed.SPOT,
    "crypto_prices_chainlink": Feed.ORACLE,
}

# Venue symbol per topic, keyed by instrument.
SYMBOL_MAPPING: dict[str, dict[str, str]] = {
    "crypto_prices": {"btc": "btcusdt", "eth": "ethusdt", "sol": "solusd", "xrp": "xrpusdt"},
    "crypto_prices_chainlink": {"btc": "btc/usd", "eth": "eth/usd", "sol": "sol/usd", "xrp": "xrp/usd"},
}

REVERSE_SYMBOL_MAPPING: dict[str, str] = {
    venue: symbol for mapping in SYMBOL_MAPPING.values() for symbol, venue in mapping.items()
}


class RTDSErrorCode(str, Enum):
    INVALID_URL = "RTDS_INVALID_URL"
    INVALID_SYMBOL = "RTDS_INVALID_SYMBOL"
    INVALID_TOPIC = "RTDS_INVALID_TOPIC"


class RTDSError(Exception):
    def __init__(self, code: RTDSErrorCode, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.context = dict(context or {})


def validate_url(url: str) -> str:
    """Ensure the socket URL is wss/ws and points at an allowed host."""
    parsed = urlparse(url)
    if parsed.scheme not in ("ws", "wss"):
        raise RTDSError(RTDSErrorCode.INVALID_URL, f"Unsupported URL scheme: {url}", {"url": url})
    if parsed.hostname not in ALLOWED_HOSTS:
        raise RTDSError(
            RTDSErrorCode.INVALID_URL,
            f"Host not allowed: {parsed.hostname}",
            {"url": url, "allowed": list(ALLOWED_HOSTS)},
        )
    return url


def normalize_symbol(raw: str) -> str | None:
    """Map a venue symbol such as ``btcusdt`` or ``BTC/USD`` to an instrument."""
    return REVERSE_SYMBOL_MAPPING.get(raw) or REVERSE_SYMBOL_MAPPING.get(raw.lower())


def _parse_timestamp(raw: Any) -> int | None:
    """Epoch milliseconds from a numeric or ISO-8601 timestamp."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, int | float):
        return int(raw) if math.isfinite(raw) else None
    if isinstance(raw, str):
        with contextlib.suppress(ValueError, OverflowError):
            return int(float(raw))
        with contextlib.suppress(ValueError):
            return int(datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp() * 1000)
    return None


class RTDSFeed:
    """WebSocket subscriber for RTDS crypto price topics.

    Implements the TickSource protocol from src.interfaces.

    Subscribes to every supported instrument on both topics:
      {"action": "subscribe",
       "subscriptions": [{"topic": ..., "type": "*", "filters": "{\"symbol\": ...}"}]}
    """

    def __init__(
        self,
        ws_url: str = "wss://ws-live-data.polymarket.com",
        reconnect_interval_ms: int = 1000,
        max_reconnect_interval_ms: int = 30_000,
        max_message_size_bytes: int = 65_536,
    ) -> None:
        self._ws_url = validate_url(ws_url)
        self._base_backoff = reconnect_interval_ms / 1000.0
        self._max_backoff = max_reconnect_interval_ms / 1000.0
        self._backoff = self._base_backoff
        self._max_message_size = max_message_size_bytes
        self._ws: Any = None
        self._connected = False
        self._running = False
        self._recv_task: asyncio.Task[None] | None = None
        self._subscribers: dict[str, list[TickCallback]] = {s: [] for s in SUPPORTED_SYMBOLS}
        self._prices: dict[str, dict[Feed, PricePoint]] = {s: {} for s in SUPPORTED_SYMBOLS}
        self._stats: dict[str, int] = {
            "messages_received": 0,
            "messages_unrecognized": 0,
            "ticks_received": 0,
            "errors": 0,
            "reconnects": 0,
        }

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    async def connect(self) -> None:
        """Start the connection loop."""
        self._running = True
        self._recv_task = asyncio.create_task(self._connection_loop())
        log.info("rtds_ws.starting", url=self._ws_url)

    async def disconnect(self) -> None:
        """Disconnect and clean up."""
        self._running = False
        if self._recv_task is not None:
            self._recv_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._recv_task
            self._recv_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self._connected = False
        log.info("rtds_ws.disconnected")

    def subscribe(self, symbol: str, callback: TickCallback) -> Unsubscribe:
        """Register a per-instrument tick callback; returns its unsubscribe."""
        normalized = symbol.lower()
        if normalized not in self._subscribers:
            raise RTDSError(
                RTDSErrorCode.INVALID_SYMBOL,
                f"Unsupported symbol: {symbol}",
                {"symbol": symbol, "supported": list(SUPPORTED_SYMBOLS)},
            )
        subscribers = self._subscribers[normalized]
        subscribers.append(callback)
        log.info("rtds_ws.subscriber_added", symbol=normalized, subscriber_count=len(subscribers))

        def unsubscribe() -> None:
            if callback in subscribers:
                subscribers.remove(callback)
                log.info("rtds_ws.subscriber_removed", symbol=normalized, subscriber_count=len(subscribers))

        return unsubscribe

    def get_current_price(self, symbol: str, topic: str) -> PricePoint | None:
        """Latest price seen for an instrument on a topic."""
        normalized = symbol.lower()
        if normalized not in self._prices:
            raise RTDSError(RTDSErrorCode.INVALID_SYMBOL, f"Unsupported symbol: {symbol}", {"symbol": symbol})
        feed = TOPIC_FEEDS.get(topic)
        if feed is None:
            raise RTDSError(
                RTDSErrorCode.INVALID_TOPIC,
                f"Unsupported topic: {topic}",
                {"topic": topic, "supported": list(TOPIC_FEEDS)},
            )
        return self._prices[normalized].get(feed)

    def subscription_message(self) -> str:
        subscriptions = [
            {"topic": topic, "type": "*", "filters": json.dumps({"symbol": venue})}
            for topic, mapping in SYMBOL_MAPPING.items()
            for venue in mapping.values()
        ]
        return json.dumps({"action": "subscribe", "subscriptions": subscriptions})

    async def _send_subscribe(self) -> None:
        if self._ws is None:
            return
        try:
            await asyncio.wait_for(self._ws.send(self.subscription_message()), timeout=5.0)
            log.info("rtds_ws.subscribed", topics=list(SYMBOL_MAPPING))
        except Exception:
            log.warning("rtds_ws.subscribe_send_failed", exc_info=True)

    async def _connection_loop(self) -> None:
        """Main loop: connect, receive, reconnect on failure."""
        while self._running:
            try:
                async with websockets.connect(
                    self._ws_url,
                    ping_interval=10,
                    ping_timeout=10,
                    max_size=None,
                ) as ws:
                    self._ws = ws
                    self._connected = True
                    self._backoff = self._base_backoff
                    log.info("rtds_ws.connected", url=self._ws_url)

                    await self._send_subscribe()

                    async for raw_msg in ws:
                        if not self._running:
                            break
                        self._handle_message(raw_msg)

            except asyncio.CancelledError:
                break
            except Exception:
                log.warning("rtds_ws.connection_error", exc_info=True)

            self._connected = False
            self._ws = None
            if not self._running:
                break
            self._stats["reconnects"] += 1
            log.info("rtds_ws.reconnecting", backoff_s=self._backoff)
            await asyncio.sleep(self._backoff)
            self._backoff = min(self._backoff * 2, self._max_backoff)

        self._connected = False

    def _handle_message(self, raw_msg: str | bytes) -> None:
        """Parse one frame and route price payloads to subscribers."""
        size = len(raw_msg) if isinstance(raw_msg, bytes) else len(raw_msg.encode())
        if size > self._max_message_size:
            self._stats["errors"] += 1
            log.warning("rtds_ws.message_too_large", size=size, max=self._max_message_size)
            return

        try:
            data = json.loads(raw_msg)
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._stats["errors"] += 1
            log.warning("rtds_ws.invalid_json", raw=str(raw_msg)[:200])
            return

        self._stats["messages_received"] += 1
        if not isinstance(data, dict):
            self._stats["messages_unrecognized"] += 1
            return

        if isinstance(data.get("payload"), dict):
            self._handle_price(data)
        elif data.get("type") == "error":
            self._stats["errors"] += 1
            log.error("rtds_ws.server_error", error=data.get("message"))
        else:
            self._stats["messages_unrecognized"] += 1
            log.debug("rtds_ws.message_unrecognized", type=data.get("type"), keys=sorted(data))

    def _handle_price(self, message: dict[str, Any]) -> None:
        topic = message.get("topic")
        feed = TOPIC_FEEDS.get(topic) if isinstance(topic, str) else None
        if feed is None:
            log.warning("rtds_ws.invalid_topic", topic=topic)
            return

        payload: dict[str, Any] = message["payload"]
        raw_symbol = payload.get("symbol")
        if not isinstance(raw_symbol, str):
            return
        symbol = normalize_symbol(raw_symbol)
        if symbol is None:
            return

        raw_price = payload.get("value", payload.get("price"))
        try:
            price = float(raw_price)
        except (TypeError, ValueError):
            return
        if not math.isfinite(price) or price <= 0:
            return

        timestamp = _parse_timestamp(payload.get("timestamp"))
        if timestamp is None:
            timestamp = _parse_timestamp(message.get("timestamp"))
        if timestamp is None:
            timestamp = int(time.time() * 1000)

        self._prices[symbol][feed] = PricePoint(price=price, timestamp=timestamp)
        self._stats["ticks_received"] += 1

        tick = Tick(symbol=symbol, price=price, timestamp=timestamp, feed=feed)
        for callback in list(self._subscribers[symbol]):
            try:
                callback(tick)
            except Exception:
                log.error("rtds_ws.subscriber_error", symbol=symbol, exc_info=True)
