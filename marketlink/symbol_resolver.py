"""Company name to ticker resolution."""

from __future__ import annotations

from typing import Any

from loguru import logger as default_logger

from marketlink.http_client import BackendHttpClient
from marketlink.models import TickerResolution


class SymbolResolver:
    def __init__(self, http: BackendHttpClient, logger: Any | None = None) -> None:
        self.http = http
        self.logger = logger or default_logger

    async def resolve(self, company_name: str) -> TickerResolution:
        try:
            data = await self.http.post_json("/getTicker", {"companyName": company_name})
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Ticker resolution failed name={!r}: {}", company_name, exc)
            return TickerResolution.failure(str(exc))

        ticker = data.get("ticker") if isinstance(data, dict) else None
        if not isinstance(ticker, str) or not ticker.strip():
            self.logger.error("Ticker resolution returned no ticker name={!r}", company_name)
            return TickerResolution.failure("No ticker in response")

        ticker = ticker.strip()
        self.logger.debug("Resolved name={!r} ticker={}", company_name, ticker)
        return TickerResolution.success(ticker)
