"""Async JSON-over-HTTP transport for the prediction backend."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from loguru import logger as default_logger


class BackendError(RuntimeError):
    """Base class for failed backend exchanges."""


class BackendTransportError(BackendError):
    """The request never produced an HTTP response (DNS, refused, timeout)."""


class BackendStatusError(BackendError):
    def __init__(self, status: int) -> None:
        super().__init__(f"HTTP error! status: {status}")
        self.status = status


class BackendPayloadError(BackendError):
    """The response body could not be decoded as JSON."""


class BackendHttpClient:
    """Runs blocking urllib requests in worker threads so callers can await them."""

    def __init__(self, base_url: str, timeout_sec: float = 10.0, logger: Any | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.logger = logger or default_logger

    async def get_json(self, path: str) -> Any:
        return await self.request("GET", path)

    async def post_json(self, path: str, payload: dict[str, Any], decode: bool = True) -> Any:
        return await self.request("POST", path, payload, decode=decode)

    async def request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        decode: bool = True,
    ) -> Any:
        return await asyncio.to_thread(self._request_sync, method, path, payload, decode)

    def _request_sync(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None,
        decode: bool,
    ) -> Any:
        url = f"{self.base_url}{path}"
        method = method.upper()
        headers = {"Accept": "application/json"}
        data = None

        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"

        req = Request(url=url, data=data, method=method, headers=headers)
        self.logger.debug("Backend request {} {}", method, url)

        try:
            with urlopen(req, timeout=self.timeout_sec) as resp:
                status = getattr(resp, "status", 200)
                raw = resp.read().decode("utf-8")
        except HTTPError as exc:
            raise BackendStatusError(exc.code) from exc
        except URLError as exc:
            raise BackendTransportError(f"URLError: {exc.reason}") from exc
        except (TimeoutError, OSError) as exc:
            raise BackendTransportError(f"{type(exc).__name__}: {exc}") from exc

        if not 200 <= status < 300:
            raise BackendStatusError(status)
        if not decode:
            return None

        try:
            return json.loads(raw or "null")
        except json.JSONDecodeError as exc:
            raise BackendPayloadError(f"Invalid JSON from {path}: {exc}") from exc
