from src.models.lag import AccuracyStats, LagAnalysisResult, LagSignalReading, StabilityReport
from src.models.signal import Direction, LagSignal, SignalRow
from src.models.tick import SUPPORTED_SYMBOLS, Feed, PricePoint, Tick

__all__ = [
    "SUPPORTED_SYMBOLS",
    "AccuracyStats",
    "Direction",
    "Feed",
    "LagAnalysisResult",
    "LagSignal",
    "LagSignalReading",
    "PricePoint",
    "SignalRow",
    "StabilityReport",
    "Tick",
]
