import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from dartscore.crud import CreateData
from dartscore.services.game_db import GameBackendService


class FakePubSub:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.queue: asyncio.Queue = asyncio.Queue()
        self.channels = set()
        self.closed = False

    async def subscribe(self, channel: str):
        self.redis.subscribe_calls += 1
        if self.redis.subscribe_gate is not None:
            await self.redis.subscribe_gate.wait()
        if self.redis.fail_subscribe > 0:
            self.redis.fail_subscribe -= 1
            raise RedisConnectionError("Connection refused")
        self.channels.add(channel)
        self.redis.subscribers.setdefault(channel, []).append(self)

    async def unsubscribe(self, channel: str):
        self.channels.discard(channel)
        subscribers = self.redis.subscribers.get(channel, [])
        if self in subscribers:
            subscribers.remove(self)

    async def aclose(self):
        self.closed = True

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout=None):
        item = await self.queue.get()
        if isinstance(item, Exception):
            raise item
        return {"type": "message", "channel": next(iter(self.channels), None), "data": item}

    def drop(self):
        """Simulate the server closing the connection."""
        self.queue.put_nowait(RedisConnectionError("Connection closed by server."))


class FakeRedis:
    """Just enough of redis.asyncio.Redis for publish and pubsub."""

    def __init__(self):
        self.published = []
        self.subscribers = {}
        self.pubsubs = []
        self.subscribe_calls = 0
        self.fail_subscribe = 0
        # When set, subscribe() blocks until the event fires
        self.subscribe_gate: asyncio.Event | None = None

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        receivers = list(self.subscribers.get(channel, []))
        for pubsub in receivers:
            pubsub.queue.put_nowait(message)
        return len(receivers)

    def pubsub(self) -> FakePubSub:
        pubsub = FakePubSub(self)
        self.pubsubs.append(pubsub)
        return pubsub


async def settle(rounds: int = 50):
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def session_factory(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dartscore_test.sqlite3'}",
        poolclass=NullPool,
    )
    asyncio.run(CreateData.create_table(engine))
    yield async_sessionmaker(
        autocommit=False,
        class_=AsyncSession,
        autoflush=True,
        bind=engine,
        expire_on_commit=False,
    )
    asyncio.run(engine.dispose())


@pytest.fixture()
def service(session_factory, fake_redis):
    return GameBackendService(session_factory, publisher=fake_redis, turn_window=10)
