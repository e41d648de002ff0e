"""Result types returned by the market data layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(frozen=True, slots=True)
class PricePoint:
    timestamp: int
    close: float


@dataclass(frozen=True, slots=True)
class TickerResolution:
    ok: bool
    ticker: str | None = None
    reason: str | None = None

    def __post_init__(self) -> None:
        if self.ok and not self.ticker:
            raise ValueError("successful resolution requires a ticker")

    @classmethod
    def success(cls, ticker: str) -> TickerResolution:
        return cls(ok=True, ticker=ticker)

    @classmethod
    def failure(cls, reason: str) -> TickerResolution:
        return cls(ok=False, reason=reason)


@dataclass(frozen=True, slots=True)
class SeriesResult:
    success: bool
    points: tuple[PricePoint, ...] = ()
    company: str | None = None
    message: str | None = None
    ticker: str | None = None


@dataclass(frozen=True, slots=True)
class PredictionResult(SeriesResult):
    prediction: tuple[PricePoint, ...] = ()


@dataclass(frozen=True, slots=True)
class TrainingResult:
    success: bool
    message: str
    ticker: str | None = None


@dataclass(frozen=True, slots=True)
class StockListResult:
    success: bool
    stocks: tuple[Any, ...] = ()
    message: str | None = None


@dataclass(frozen=True, slots=True)
class DisplaySummary:
    current: float = 0.0
    change: float = 0.0
    data: tuple[tuple[int, float], ...] = ()


class ChannelState(str, Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
