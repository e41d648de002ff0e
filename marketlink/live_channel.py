"""Single-symbol live update channel over WebSocket with optional reconnect."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import websockets
from loguru import logger as default_logger

from marketlink.config import LiveConfig, ReconnectPolicy
from marketlink.models import ChannelState

UpdateCallback = Callable[[Any], None]
ConnectFactory = Callable[[str], Any]


class MessageContract:
    """Wire protocol spoken by a push backend."""

    name = "base"

    def url_for(self, ws_base_url: str, symbol: str) -> str:
        raise NotImplementedError

    async def on_open(self, connection: Any, symbol: str) -> None:
        return None

    def accepts(self, message: Any) -> bool:
        return True

    def payload(self, message: Any) -> Any:
        return message


class EnvelopedContract(MessageContract):
    """Per-symbol endpoint; only ``{"success": true, "data": {...}}`` messages carry updates."""

    name = "enveloped"

    def url_for(self, ws_base_url: str, symbol: str) -> str:
        return f"{ws_base_url}/ws/{symbol}"

    def accepts(self, message: Any) -> bool:
        return isinstance(message, dict) and bool(message.get("success")) and bool(message.get("data"))

    def payload(self, message: Any) -> Any:
        return message["data"]


class RawContract(MessageContract):
    """Shared endpoint with a subscribe handshake; every message is delivered as-is."""

    name = "raw"

    def url_for(self, ws_base_url: str, symbol: str) -> str:
        return f"{ws_base_url}/ws"

    async def on_open(self, connection: Any, symbol: str) -> None:
        await connection.send(json.dumps({"action": "subscribe", "symbol": symbol}))


CONTRACTS: dict[str, type[MessageContract]] = {
    EnvelopedContract.name: EnvelopedContract,
    RawContract.name: RawContract,
}


class LiveUpdateChannel:
    """Owns at most one push connection at a time.

    Each subscription gets a generation number; a connection task whose
    generation is no longer current stops touching state and delivers nothing.
    """

    def __init__(
        self,
        config: LiveConfig,
        contract: MessageContract | None = None,
        policy: ReconnectPolicy | None = None,
        connect: ConnectFactory | None = None,
        on_state: Callable[[ChannelState], None] | None = None,
        logger: Any | None = None,
    ) -> None:
        self.ws_base_url = config.ws_base_url.rstrip("/")
        self.contract = contract or CONTRACTS[config.variant]()
        self.policy = policy or config.resolved_policy()
        self.logger = logger or default_logger
        self.symbol: str | None = None

        self._connect = connect or websockets.connect
        self._on_state = on_state
        self._lock = asyncio.Lock()
        self._state = ChannelState.CLOSED
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._connection: Any | None = None

    @property
    def state(self) -> ChannelState:
        return self._state

    async def subscribe(self, symbol: str, on_update: UpdateCallback) -> None:
        """Replace any active subscription with one for *symbol*."""
        if not symbol:
            raise ValueError("symbol must be a resolved, non-empty ticker")

        async with self._lock:
            await self._close_current()
            self._generation += 1
            generation = self._generation
            self.symbol = symbol
            self._set_state(ChannelState.CONNECTING)
            self._task = asyncio.create_task(
                self._run(generation, symbol, on_update),
                name=f"live-channel-{symbol}",
            )

    async def unsubscribe(self) -> None:
        async with self._lock:
            await self._close_current()

    async def wait_closed(self) -> None:
        """Wait for the current connection task to finish without cancelling it."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    async def _close_current(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        connection, self._connection = self._connection, None

        if connection is not None:
            try:
                await connection.close()
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Live channel close error: {}", exc)

        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if self._state is not ChannelState.CLOSED:
            self.logger.info("Live channel closed symbol={}", self.symbol)
            self._set_state(ChannelState.CLOSED)
        self.symbol = None

    async def _run(self, generation: int, symbol: str, on_update: UpdateCallback) -> None:
        try:
            await self._run_loop(generation, symbol, on_update)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.exception("Live channel task failed symbol={}: {}", symbol, exc)
            if generation == self._generation:
                self._state = ChannelState.CLOSED

        if generation == self._generation:
            self._connection = None
            self.symbol = None

    async def _run_loop(self, generation: int, symbol: str, on_update: UpdateCallback) -> None:
        url = self.contract.url_for(self.ws_base_url, symbol)
        attempt = 0

        while True:
            try:
                async with self._connect(url) as connection:
                    if generation != self._generation:
                        return
                    self._connection = connection
                    attempt = 0
                    self._set_state(ChannelState.OPEN)
                    self.logger.info("Live channel connected symbol={} url={}", symbol, url)
                    await self.contract.on_open(connection, symbol)

                    async for raw in connection:
                        if generation != self._generation:
                            return
                        self._dispatch(raw, on_update)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                if generation != self._generation:
                    return
                self.logger.error("Live channel error symbol={}: {}", symbol, exc)

            if generation != self._generation:
                return
            self._connection = None
            self._set_state(ChannelState.CLOSED)
            self.logger.info("Live channel disconnected symbol={}", symbol)

            attempt += 1
            delay = self.policy.delay_for(attempt)
            if delay is None:
                return

            self._set_state(ChannelState.RECONNECTING)
            self.logger.info("Live channel reconnect #{} symbol={} in {}s", attempt, symbol, delay)
            await asyncio.sleep(delay)
            if generation != self._generation:
                return
            self._set_state(ChannelState.CONNECTING)

    def _dispatch(self, raw: str | bytes, on_update: UpdateCallback) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as exc:
            self.logger.warning("Dropping malformed live message: {}", exc)
            return

        if not self.contract.accepts(message):
            return
        try:
            on_update(self.contract.payload(message))
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Live update callback failed: {}", exc)

    def _set_state(self, state: ChannelState) -> None:
        self._state = state
        if self._on_state is None:
            return
        try:
            self._on_state(state)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Live channel state observer failed state={}: {}", state.value, exc)


def build_live_channel(
    config: LiveConfig,
    connect: ConnectFactory | None = None,
    on_state: Callable[[ChannelState], None] | None = None,
    logger: Any | None = None,
) -> LiveUpdateChannel:
    """Channel for the configured backend variant and its reconnect policy."""
    return LiveUpdateChannel(
        config,
        contract=CONTRACTS[config.variant](),
        policy=config.resolved_policy(),
        connect=connect,
        on_state=on_state,
        logger=logger,
    )
