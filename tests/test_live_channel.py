import asyncio
import json

import pytest

from fakes import FakeConnector, wait_until
from marketlink.config import LiveConfig, ReconnectPolicy
from marketlink.live_channel import (
    EnvelopedContract,
    LiveUpdateChannel,
    RawContract,
    build_live_channel,
)
from marketlink.models import ChannelState

FAST_RETRY = ReconnectPolicy(enabled=True, delay_sec=0.01)


def make_channel(connector, variant="enveloped", policy=None):
    states = []
    config = LiveConfig(ws_base_url="ws://feed.test:8000/", variant=variant)
    channel = LiveUpdateChannel(config, policy=policy, connect=connector, on_state=states.append)
    return channel, states


async def open_channel(channel, connector, symbol="AAPL", updates=None):
    updates = [] if updates is None else updates
    await channel.subscribe(symbol, updates.append)
    await wait_until(lambda: channel.state is ChannelState.OPEN)
    return connector.latest, updates


async def test_enveloped_delivers_only_success_data(connector):
    channel, states = make_channel(connector)
    connection, updates = await open_channel(channel, connector)

    connection.push({"success": True, "data": {"price": 101.5}})
    connection.push({"success": False, "data": {"price": 1}})
    connection.push({"success": True})
    connection.push({"data": {"price": 2}})
    connection.push([1, 2, 3])
    connection.push({"success": True, "data": {"price": 102.0}})
    await wait_until(lambda: len(updates) == 2)

    assert updates == [{"price": 101.5}, {"price": 102.0}]
    assert connection.url == "ws://feed.test:8000/ws/AAPL"
    assert connection.sent == []
    assert states[:2] == [ChannelState.CONNECTING, ChannelState.OPEN]
    await channel.unsubscribe()


async def test_malformed_message_is_dropped_without_state_change(connector):
    channel, states = make_channel(connector)
    connection, updates = await open_channel(channel, connector)
    seen_states = list(states)

    connection.push("{not json")
    connection.push(b"\xff\xfe")
    connection.push({"success": True, "data": {"ok": 1}})
    await wait_until(lambda: updates)

    assert updates == [{"ok": 1}]
    assert channel.state is ChannelState.OPEN
    assert states == seen_states
    await channel.unsubscribe()


async def test_raw_contract_handshake_and_passthrough(connector):
    channel, _ = make_channel(connector, variant="raw", policy=ReconnectPolicy(enabled=False))
    connection, updates = await open_channel(channel, connector, symbol="TSLA")

    connection.push({"symbol": "TSLA", "price": 250})
    connection.push({"anything": True})
    await wait_until(lambda: len(updates) == 2)

    assert connection.url == "ws://feed.test:8000/ws"
    assert [json.loads(msg) for msg in connection.sent] == [{"action": "subscribe", "symbol": "TSLA"}]
    assert updates == [{"symbol": "TSLA", "price": 250}, {"anything": True}]
    await channel.unsubscribe()


async def test_resubscribe_closes_previous_before_opening(connector):
    channel, states = make_channel(connector)
    first, first_updates = await open_channel(channel, connector, symbol="AAPL")
    states.clear()

    second, second_updates = await open_channel(channel, connector, symbol="MSFT")

    assert first.closed is True
    assert states == [ChannelState.CLOSED, ChannelState.CONNECTING, ChannelState.OPEN]
    assert channel.symbol == "MSFT"

    first.push({"success": True, "data": {"stale": True}})
    second.push({"success": True, "data": {"fresh": True}})
    await wait_until(lambda: second_updates)
    await asyncio.sleep(0.02)

    assert first_updates == []
    assert second_updates == [{"fresh": True}]
    await channel.unsubscribe()


async def test_callback_error_keeps_channel_open(connector):
    channel, _ = make_channel(connector)
    delivered = []

    def flaky(payload):
        delivered.append(payload)
        if len(delivered) == 1:
            raise RuntimeError("render failed")

    await channel.subscribe("AAPL", flaky)
    await wait_until(lambda: channel.state is ChannelState.OPEN)
    connector.latest.push({"success": True, "data": {"n": 1}})
    connector.latest.push({"success": True, "data": {"n": 2}})
    await wait_until(lambda: len(delivered) == 2)

    assert channel.state is ChannelState.OPEN
    await channel.unsubscribe()


async def test_unsubscribe_is_idempotent(connector):
    channel, states = make_channel(connector)
    await channel.unsubscribe()
    assert states == []

    connection, _ = await open_channel(channel, connector)
    await channel.unsubscribe()
    await channel.unsubscribe()

    assert connection.closed is True
    assert channel.state is ChannelState.CLOSED
    assert states.count(ChannelState.CLOSED) == 1
    assert channel.symbol is None


async def test_enveloped_close_does_not_reconnect(connector):
    channel, states = make_channel(connector)
    connection, _ = await open_channel(channel, connector)

    connection.drop()
    await wait_until(lambda: channel.state is ChannelState.CLOSED)
    await channel.wait_closed()

    assert len(connector.connections) == 1
    assert ChannelState.RECONNECTING not in states
    assert channel.symbol is None


async def test_raw_reconnects_once_per_close(connector):
    channel, states = make_channel(connector, variant="raw", policy=FAST_RETRY)
    await open_channel(channel, connector)

    for expected in (2, 3, 4):
        connector.latest.drop()
        await wait_until(lambda: len(connector.connections) == expected and channel.state is ChannelState.OPEN)
        await asyncio.sleep(0.05)
        assert len(connector.connections) == expected

    assert states.count(ChannelState.RECONNECTING) == 3
    reconnect_at = states.index(ChannelState.RECONNECTING)
    assert states[reconnect_at - 1 : reconnect_at + 3] == [
        ChannelState.CLOSED,
        ChannelState.RECONNECTING,
        ChannelState.CONNECTING,
        ChannelState.OPEN,
    ]
    for connection in connector.connections:
        assert json.loads(connection.sent[0]) == {"action": "subscribe", "symbol": "AAPL"}
    await channel.unsubscribe()


async def test_reconnect_respects_max_attempts():
    connector = FakeConnector(refuse=True)
    policy = ReconnectPolicy(enabled=True, delay_sec=0, max_attempts=2)
    channel, states = make_channel(connector, variant="raw", policy=policy)

    await channel.subscribe("AAPL", lambda payload: None)
    await channel.wait_closed()

    assert len(connector.connections) == 3
    assert channel.state is ChannelState.CLOSED
    assert ChannelState.OPEN not in states
    assert channel.symbol is None


async def test_unsubscribe_during_reconnect_delay_stops_retrying(connector):
    policy = ReconnectPolicy(enabled=True, delay_sec=0.2)
    channel, _ = make_channel(connector, variant="raw", policy=policy)
    connection, _ = await open_channel(channel, connector)

    connection.drop()
    await wait_until(lambda: channel.state is ChannelState.RECONNECTING)
    await channel.unsubscribe()
    await asyncio.sleep(0.3)

    assert len(connector.connections) == 1
    assert channel.state is ChannelState.CLOSED


async def test_subscribe_requires_symbol(connector):
    channel, _ = make_channel(connector)
    with pytest.raises(ValueError):
        await channel.subscribe("", lambda payload: None)


def test_factory_picks_contract_and_policy():
    enveloped = build_live_channel(LiveConfig(variant="enveloped"))
    raw = build_live_channel(LiveConfig(variant="raw"))

    assert isinstance(enveloped.contract, EnvelopedContract)
    assert enveloped.policy.delay_for(1) is None
    assert isinstance(raw.contract, RawContract)
    assert raw.policy.delay_for(1) == 5.0
    assert raw.policy.delay_for(1000) == 5.0


async def test_resubscribe_while_first_is_still_connecting():
    connector = FakeConnector(stall_first=True)
    channel, states = make_channel(connector)
    stale_updates = []

    await channel.subscribe("AAPL", stale_updates.append)
    await wait_until(lambda: connector.connections and connector.connections[0].entered)
    assert channel.state is ChannelState.CONNECTING

    second, fresh_updates = await open_channel(channel, connector, symbol="MSFT")
    second.push({"success": True, "data": {"symbol": "MSFT"}})
    await wait_until(lambda: fresh_updates)

    first = connector.connections[0]
    assert first.cancelled is True
    assert states == [
        ChannelState.CONNECTING,
        ChannelState.CLOSED,
        ChannelState.CONNECTING,
        ChannelState.OPEN,
    ]
    assert second.url == "ws://feed.test:8000/ws/MSFT"
    assert stale_updates == []
    assert fresh_updates == [{"symbol": "MSFT"}]
    await channel.unsubscribe()


async def test_growing_backoff_survives_long_outage():
    connector = FakeConnector(refuse=True)
    policy = ReconnectPolicy(enabled=True, delay_sec=0, backoff_multiplier=2, max_delay_sec=0)
    channel, _ = make_channel(connector, variant="raw", policy=policy)

    await channel.subscribe("AAPL", lambda payload: None)
    await wait_until(lambda: len(connector.connections) > 1100, timeout=20.0)

    assert not channel._task.done()
    assert channel.state in (ChannelState.CONNECTING, ChannelState.RECONNECTING, ChannelState.CLOSED)
    await channel.unsubscribe()
    assert channel.state is ChannelState.CLOSED


async def test_failing_state_observer_does_not_stop_channel(connector):
    seen = []

    def observer(state):
        seen.append(state)
        raise RuntimeError("observer broke")

    channel = LiveUpdateChannel(LiveConfig(ws_base_url="ws://feed.test"), connect=connector, on_state=observer)
    connection, updates = await open_channel(channel, connector)
    connection.push({"success": True, "data": {"price": 1}})
    await wait_until(lambda: updates)

    assert seen[:2] == [ChannelState.CONNECTING, ChannelState.OPEN]
    assert channel.state is ChannelState.OPEN
    await channel.unsubscribe()
    assert channel.state is ChannelState.CLOSED
