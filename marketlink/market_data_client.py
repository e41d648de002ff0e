"""Resolve-then-fetch client for live series, predictions and training."""

from __future__ import annotations

from typing import Any

from loguru import logger as default_logger

from marketlink.http_client import BackendHttpClient
from marketlink.models import (
    PredictionResult,
    SeriesResult,
    StockListResult,
    TickerResolution,
    TrainingResult,
)
from marketlink.normalizer import parse_points
from marketlink.symbol_resolver import SymbolResolver

NO_DATA_MESSAGE = "No data available"


def error_message(exc: BaseException) -> str:
    return str(exc) or "An error occurred"


def failure_from_error(exc: BaseException, ticker: str | None = None, result_type: type = SeriesResult) -> Any:
    """Failed result of *result_type* carrying the error text and no data."""
    return result_type(success=False, message=error_message(exc), ticker=ticker)


def _resolution_message(symbol_or_name: str, resolution: TickerResolution) -> str:
    return f"Could not resolve ticker for {symbol_or_name!r}: {resolution.reason}"


def _has_rows(data: Any, key: str) -> bool:
    return isinstance(data, dict) and isinstance(data.get(key), list) and len(data[key]) > 0


class MarketDataClient:
    """Every operation resolves its input to a ticker before the domain request.

    Failures of any kind come back as unsuccessful result objects; nothing is
    raised to the caller.
    """

    def __init__(
        self,
        http: BackendHttpClient,
        resolver: SymbolResolver | None = None,
        logger: Any | None = None,
    ) -> None:
        self.http = http
        self.logger = logger or default_logger
        self.resolver = resolver or SymbolResolver(http, logger=self.logger)

    async def get_live_data(self, symbol_or_name: str, timeframe: str) -> SeriesResult:
        resolution = await self.resolver.resolve(symbol_or_name)
        if not resolution.ok:
            return SeriesResult(success=False, message=_resolution_message(symbol_or_name, resolution))

        ticker = resolution.ticker
        try:
            data = await self.http.post_json("/getlivedata", {"ticker": ticker, "timeframe": timeframe})
            if not _has_rows(data, "liveData"):
                return SeriesResult(success=False, message=NO_DATA_MESSAGE, ticker=ticker)
            return SeriesResult(
                success=True,
                points=parse_points(data["liveData"]),
                company=data.get("company"),
                ticker=ticker,
            )
        except Exception as exc:  # noqa: BLE001
            self._log_error("get_live_data", ticker, exc)
            return failure_from_error(exc, ticker=ticker)

    async def get_prediction(self, symbol_or_name: str, timeframe: str) -> PredictionResult:
        resolution = await self.resolver.resolve(symbol_or_name)
        if not resolution.ok:
            return PredictionResult(success=False, message=_resolution_message(symbol_or_name, resolution))

        ticker = resolution.ticker
        try:
            data = await self.http.post_json(
                "/predictionOnTechnical",
                {"ticker": ticker, "timeframe": timeframe},
            )
            if not _has_rows(data, "liveData"):
                return PredictionResult(success=False, message=NO_DATA_MESSAGE, ticker=ticker)
            return PredictionResult(
                success=True,
                points=parse_points(data["liveData"]),
                company=data.get("company"),
                prediction=parse_points(data.get("prediction") or []),
                ticker=ticker,
            )
        except Exception as exc:  # noqa: BLE001
            self._log_error("get_prediction", ticker, exc)
            return failure_from_error(exc, ticker=ticker, result_type=PredictionResult)

    async def trigger_training(self, symbol_or_name: str) -> TrainingResult:
        resolution = await self.resolver.resolve(symbol_or_name)
        if not resolution.ok:
            return TrainingResult(success=False, message=_resolution_message(symbol_or_name, resolution))

        ticker = resolution.ticker
        try:
            await self.http.post_json("/trainingOnTechnical", {"ticker": ticker}, decode=False)
        except Exception as exc:  # noqa: BLE001
            self._log_error("trigger_training", ticker, exc)
            return failure_from_error(exc, ticker=ticker, result_type=TrainingResult)

        self.logger.info("Training requested ticker={}", ticker)
        return TrainingResult(success=True, message="Training Done", ticker=ticker)

    async def get_stocks(self) -> StockListResult:
        try:
            data = await self.http.get_json("/getstocks")
        except Exception as exc:  # noqa: BLE001
            self._log_error("get_stocks", None, exc)
            return StockListResult(success=False, message=error_message(exc))

        if not isinstance(data, dict):
            return StockListResult(success=False, message="Malformed stock list response")
        stocks = data.get("stocks")
        if not data.get("success") or not isinstance(stocks, list):
            return StockListResult(success=False, message=data.get("message") or "Stock list unavailable")
        return StockListResult(success=True, stocks=tuple(stocks))

    def _log_error(self, scope: str, ticker: str | None, exc: Exception) -> None:
        self.logger.error("Market data error [{}] ticker={}: {}", scope, ticker, exc)
