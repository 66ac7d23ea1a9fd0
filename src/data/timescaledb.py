"""TimescaleDB storage for scored lag signals."""

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Any

import psycopg
import psycopg.rows
from psycopg_pool import AsyncConnectionPool

from src.core.logging import get_logger
from src.models.signal import Direction, SignalRow

log = get_logger(__name__)

CREATE_LAG_SIGNALS_TABLE = """
CREATE TABLE IF NOT EXISTS lag_signals (
    timestamp               TIMESTAMPTZ      NOT NULL,
    symbol                  TEXT             NOT NULL,
    spot_price_at_signal    DOUBLE PRECISION NOT NULL,
    spot_move_direction     TEXT             NOT NULL,
    spot_move_magnitude     DOUBLE PRECISION NOT NULL,
    oracle_price_at_signal  DOUBLE PRECISION NOT NULL,
    predicted_direction     TEXT             NOT NULL,
    predicted_tau_ms        INTEGER          NOT NULL,
    correlation_at_tau      DOUBLE PRECISION NOT NULL,
    window_id               TEXT,
    outcome_direction       TEXT,
    prediction_correct      BOOLEAN,
    pnl                     DOUBLE PRECISION
);
"""

CREATE_HYPERTABLE = """
SELECT create_hypertable('lag_signals', 'timestamp', if_not_exists => TRUE);
"""

INSERT_SIGNAL = """
INSERT INTO lag_signals (
    timestamp, symbol, spot_price_at_signal, spot_move_direction, spot_move_magnitude,
    oracle_price_at_signal, predicted_direction, predicted_tau_ms, correlation_at_tau,
    window_id, outcome_direction, prediction_correct, pnl
)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s);
"""

SELECT_RECENT_SIGNALS = """
SELECT timestamp, symbol, spot_price_at_signal, spot_move_direction, spot_move_magnitude,
       oracle_price_at_signal, predicted_direction, predicted_tau_ms, correlation_at_tau,
       window_id, outcome_direction, prediction_correct, pnl
FROM lag_signals
WHERE symbol = %s
ORDER BY timestamp DESC
LIMIT %s;
"""


class TimescaleSignalStore:
    """Async TimescaleDB store for lag signal rows.

    Reads connection URL from TIMESCALEDB_URL env var.
    """

    def __init__(self, dsn: str | None = None, min_pool: int = 1, max_pool: int = 4) -> None:
        self._dsn = dsn or os.environ.get("TIMESCALEDB_URL", "")
        self._min_pool = min_pool
        self._max_pool = max_pool
        self._pool: AsyncConnectionPool[psycopg.AsyncConnection[Any]] | None = None

    async def open(self) -> None:
        """Open connection pool."""
        self._pool = AsyncConnectionPool(
            conninfo=self._dsn,
            min_size=self._min_pool,
            max_size=self._max_pool,
            open=False,
        )
        await self._pool.open()
        log.info("timescaledb.pool_opened", min_pool=self._min_pool, max_pool=self._max_pool)

    async def close(self) -> None:
        """Close connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            log.info("timescaledb.pool_closed")

    async def create_tables(self) -> None:
        """Create lag_signals table and hypertable."""
        assert self._pool is not None
        async with self._pool.connection() as conn:
            await conn.execute(CREATE_LAG_SIGNALS_TABLE)
            await conn.execute(CREATE_HYPERTABLE)
            await conn.commit()
        log.info("timescaledb.tables_created")

    async def insert_signals(self, rows: Sequence[SignalRow]) -> None:
        """Insert a batch of rows in a single transaction.

        Any failure rolls back the whole batch and propagates.
        """
        if not rows:
            return
        assert self._pool is not None
        async with self._pool.connection() as conn, conn.transaction():
            async with conn.cursor() as cur:
                await cur.executemany(INSERT_SIGNAL, [row.as_params() for row in rows])

    async def get_recent_signals(self, symbol: str, limit: int = 100) -> list[SignalRow]:
        """Fetch the newest persisted signals for an instrument."""
        assert self._pool is not None
        async with (
            self._pool.connection() as conn,
            conn.cursor(row_factory=psycopg.rows.dict_row) as cur,
        ):
            await cur.execute(SELECT_RECENT_SIGNALS, (symbol, limit))
            records: list[dict[str, Any]] = await cur.fetchall()

        return [
            SignalRow(
                timestamp=rec["timestamp"],
                symbol=rec["symbol"],
                spot_price_at_signal=rec["spot_price_at_signal"],
                spot_move_direction=Direction(rec["spot_move_direction"]),
                spot_move_magnitude=rec["spot_move_magnitude"],
                oracle_price_at_signal=rec["oracle_price_at_signal"],
                predicted_direction=Direction(rec["predicted_direction"]),
                predicted_tau_ms=rec["predicted_tau_ms"],
                correlation_at_tau=rec["correlation_at_tau"],
                window_id=rec.get("window_id"),
                outcome_direction=(
                    Direction(rec["outcome_direction"]) if rec.get("outcome_direction") else None
                ),
                prediction_correct=rec.get("prediction_correct"),
                pnl=rec.get("pnl"),
            )
            for rec in records
        ]
