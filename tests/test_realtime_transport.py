import asyncio
import json
from uuid import uuid4

import pytest

from conftest import FakeRedis, settle
from dartscore.realtime_transport import ConnectionState, SnapshotSyncTransport
from test_realtime_envelope import snapshot_payload


def snapshot_message(remaining: int = 441) -> str:
    payload = snapshot_payload()
    payload["players"][0]["remaining"] = remaining
    return json.dumps({"type": "GAME_SNAPSHOT", "payload": payload})


def make_transport(redis, received, states, **kwargs):
    kwargs.setdefault("max_reconnect_attempts", 5)
    kwargs.setdefault("base_reconnect_delay", 0)
    return SnapshotSyncTransport(
        redis,
        uuid4(),
        on_snapshot=received.append,
        on_state_change=states.append,
        **kwargs,
    )


def test_connect_subscribes_to_the_game_channel():
    async def scenario():
        redis, received, states = FakeRedis(), [], []
        transport = make_transport(redis, received, states)
        await transport.connect()
        await transport.connect()
        assert transport.state == ConnectionState.connected
        assert states == [ConnectionState.connecting, ConnectionState.connected]
        assert redis.subscribe_calls == 1
        assert transport.channel in redis.subscribers
        assert transport.channel.startswith("game:")
        await transport.disconnect()

    asyncio.run(scenario())


def test_only_valid_snapshots_reach_the_handler():
    async def scenario():
        redis, received, states = FakeRedis(), [], []
        transport = make_transport(redis, received, states)
        await transport.connect()

        await redis.publish(transport.channel, "garbage")
        await redis.publish(transport.channel, json.dumps({"type": "TURN_ADDED", "payload": {}}))
        await redis.publish(transport.channel, json.dumps({"type": "GAME_SNAPSHOT", "payload": {"x": 1}}))
        await redis.publish(transport.channel, snapshot_message(300))
        await settle()

        assert [snapshot.players[0].remaining for snapshot in received] == [300]
        assert transport.state == ConnectionState.connected
        await transport.disconnect()

    asyncio.run(scenario())


def test_handler_errors_do_not_end_the_subscription():
    async def scenario():
        redis, received, states = FakeRedis(), [], []

        async def handler(snapshot):
            if not received:
                received.append(None)
                raise RuntimeError("render failed")
            received.append(snapshot)

        transport = SnapshotSyncTransport(
            redis, uuid4(), on_snapshot=handler, on_state_change=states.append, base_reconnect_delay=0
        )
        await transport.connect()
        await redis.publish(transport.channel, snapshot_message(300))
        await redis.publish(transport.channel, snapshot_message(200))
        await settle()

        assert received[0] is None
        assert received[1].players[0].remaining == 200
        assert transport.state == ConnectionState.connected
        await transport.disconnect()

    asyncio.run(scenario())


def test_unexpected_close_reconnects():
    async def scenario():
        redis, received, states = FakeRedis(), [], []
        transport = make_transport(redis, received, states)
        await transport.connect()

        redis.pubsubs[0].drop()
        await settle()

        assert transport.state == ConnectionState.connected
        assert redis.subscribe_calls == 2
        assert redis.pubsubs[0].closed
        assert transport.reconnect_attempts == 0
        assert states == [
            ConnectionState.connecting,
            ConnectionState.connected,
            ConnectionState.error,
            ConnectionState.connecting,
            ConnectionState.connected,
        ]

        await redis.publish(transport.channel, snapshot_message(250))
        await settle()
        assert received[-1].players[0].remaining == 250
        await transport.disconnect()

    asyncio.run(scenario())


def test_backoff_doubles_until_fallback():
    async def scenario():
        redis, received, states = FakeRedis(), [], []
        redis.fail_subscribe = 100
        transport = make_transport(redis, received, states, base_reconnect_delay=0.001)
        delays = []

        def record(state):
            if state == ConnectionState.connecting:
                delays.append(transport.last_reconnect_delay)
            states.append(state)

        transport.on_state_change = record

        await transport.connect()
        for _ in range(100):
            if transport.state == ConnectionState.fallback:
                break
            await asyncio.sleep(0.01)

        assert transport.state == ConnectionState.fallback
        assert delays[1:] == pytest.approx([0.001, 0.002, 0.004, 0.008, 0.016])
        assert redis.subscribe_calls == 6
        assert not transport.reconnect_pending

        await asyncio.sleep(0.05)
        assert redis.subscribe_calls == 6
        assert transport.state == ConnectionState.fallback

    asyncio.run(scenario())


def test_connect_from_fallback_resets_the_attempts():
    async def scenario():
        redis, received, states = FakeRedis(), [], []
        redis.fail_subscribe = 1
        transport = make_transport(redis, received, states, max_reconnect_attempts=0)

        await transport.connect()
        assert transport.state == ConnectionState.fallback
        assert not transport.reconnect_pending

        await transport.connect()
        assert transport.state == ConnectionState.connected
        assert transport.reconnect_attempts == 0
        await transport.disconnect()

    asyncio.run(scenario())


def test_disconnect_cancels_the_pending_reconnect():
    async def scenario():
        redis, received, states = FakeRedis(), [], []
        redis.fail_subscribe = 100
        transport = make_transport(redis, received, states, base_reconnect_delay=10)

        await transport.connect()
        assert transport.state == ConnectionState.error
        assert transport.reconnect_pending
        assert transport.last_reconnect_delay == 10
        assert transport.reconnect_attempts == 1

        await transport.disconnect()
        assert transport.state == ConnectionState.disconnected
        assert not transport.reconnect_pending
        assert transport.reconnect_attempts == 0
        assert redis.subscribe_calls == 1

    asyncio.run(scenario())


def test_disconnect_wins_over_a_connect_in_progress():
    async def scenario():
        redis, received, states = FakeRedis(), [], []
        redis.subscribe_gate = asyncio.Event()
        transport = make_transport(redis, received, states)

        connecting = asyncio.create_task(transport.connect())
        await settle()
        assert transport.state == ConnectionState.connecting

        await transport.disconnect()
        redis.subscribe_gate.set()
        await connecting
        await settle()

        assert transport.state == ConnectionState.disconnected
        assert ConnectionState.connected not in states
        assert redis.subscribers[transport.channel] == []
        assert redis.pubsubs[0].closed

        await redis.publish(transport.channel, snapshot_message())
        await settle()
        assert received == []

    asyncio.run(scenario())


def test_disconnect_during_a_scheduled_reconnect_closes_its_channel():
    async def scenario():
        redis, received, states = FakeRedis(), [], []
        redis.fail_subscribe = 1
        transport = make_transport(redis, received, states)

        await transport.connect()
        redis.subscribe_gate = asyncio.Event()
        await settle()
        assert transport.state == ConnectionState.connecting
        assert redis.subscribe_calls == 2

        await transport.disconnect()
        redis.subscribe_gate.set()
        await settle()

        assert transport.state == ConnectionState.disconnected
        assert not transport.reconnect_pending
        assert all(pubsub.closed for pubsub in redis.pubsubs)
        assert redis.subscribers.get(transport.channel, []) == []

    asyncio.run(scenario())


def test_disconnect_closes_the_channel():
    async def scenario():
        redis, received, states = FakeRedis(), [], []
        transport = make_transport(redis, received, states)
        await transport.connect()
        await transport.disconnect()

        pubsub = redis.pubsubs[0]
        assert pubsub.closed
        assert redis.subscribers[transport.channel] == []
        assert transport.state == ConnectionState.disconnected

        await redis.publish(transport.channel, snapshot_message())
        await settle()
        assert received == []

    asyncio.run(scenario())
