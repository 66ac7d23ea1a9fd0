"""Typed errors raised by the lag tracker service."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any


class LagTrackerErrorCode(str, Enum):
    NOT_INITIALIZED = "LAG_TRACKER_NOT_INITIALIZED"
    INVALID_SYMBOL = "LAG_TRACKER_INVALID_SYMBOL"
    PERSISTENCE_ERROR = "LAG_TRACKER_PERSISTENCE_ERROR"


class LagTrackerError(Exception):
    """Integration error from the lag tracker query API.

    Raised for programmer mistakes (querying before init, unsupported
    symbol), never for missing data.
    """

    def __init__(
        self,
        code: LagTrackerErrorCode,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = dict(context or {})
        self.timestamp = datetime.now(UTC)

    def to_log(self) -> dict[str, Any]:
        return {
            "error_code": self.code.value,
            "error_message": self.message,
            "error_context": self.context,
            "error_timestamp": self.timestamp.isoformat(),
        }
