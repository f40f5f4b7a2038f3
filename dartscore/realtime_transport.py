import asyncio
import inspect
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Union
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError

from dartscore.load_secrets import base_reconnect_delay, max_reconnect_attempts
from dartscore.models.schema_models import GameSnapshotSchema
from dartscore.realtime_envelope import (
    game_channel,
    is_game_snapshot_event,
    parse_realtime_event,
    parse_snapshot_payload,
)

SnapshotHandler = Callable[[GameSnapshotSchema], Union[None, Awaitable[None]]]


class ConnectionState(str, Enum):
    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"
    error = "error"
    fallback = "fallback"


class SnapshotSyncTransport:
    """Subscription to the channel of one game, delivering authoritative snapshots."""

    def __init__(
        self,
        redis: Redis,
        game_id: UUID | str,
        on_snapshot: SnapshotHandler,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        max_reconnect_attempts: int = max_reconnect_attempts,
        base_reconnect_delay: float = base_reconnect_delay,
    ):
        """Initialize the transport. Nothing is opened until connect() is awaited.

        Args:
            redis (Redis): Pub/sub connection object
            game_id (UUID | str): Game whose channel is followed
            on_snapshot (SnapshotHandler): Receives every valid GAME_SNAPSHOT payload, may be a coroutine function
            on_state_change (Optional[Callable[[ConnectionState], None]]): Notified on every state change
            max_reconnect_attempts (int): Scheduled reconnects before falling back
            base_reconnect_delay (float): Delay of the first reconnect in seconds, doubled on every attempt
        """
        self.redis: Redis = redis
        self.channel: str = game_channel(game_id)
        self.on_snapshot: SnapshotHandler = on_snapshot
        self.on_state_change = on_state_change
        self.max_reconnect_attempts: int = max_reconnect_attempts
        self.base_reconnect_delay: float = base_reconnect_delay

        self.state: ConnectionState = ConnectionState.disconnected
        self.reconnect_attempts: int = 0
        self.last_reconnect_delay: float | None = None
        self._pubsub = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        # Bumped by disconnect() so a subscribe still in flight knows it was abandoned
        self._generation: int = 0

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def connect(self) -> None:
        """Open the channel. No-op while connecting or connected."""
        if self.state in (ConnectionState.connecting, ConnectionState.connected):
            return
        self._cancel_reconnect()
        self.reconnect_attempts = 0
        await self._open()

    async def disconnect(self) -> None:
        self._generation += 1
        self._cancel_reconnect()
        self.reconnect_attempts = 0
        await self._close_channel()
        self._set_state(ConnectionState.disconnected)
        logging.info(f"Disconnected from {self.channel}")

    async def _open(self) -> None:
        generation = self._generation
        self._set_state(ConnectionState.connecting)
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self.channel)
        except asyncio.CancelledError:
            await self._close_pubsub(pubsub)
            raise
        except (RedisError, OSError) as e:
            await self._close_pubsub(pubsub)
            if generation == self._generation:
                logging.warning(f"Failed to subscribe to {self.channel}: {e}")
                self._handle_connection_error()
            return

        if generation != self._generation:
            logging.info(f"Dropping subscription to {self.channel}, disconnected while connecting")
            await self._close_pubsub(pubsub)
            return

        self._pubsub = pubsub
        self.reconnect_attempts = 0
        self._set_state(ConnectionState.connected)
        logging.info(f"Connected to {self.channel}")
        self._reader_task = asyncio.create_task(self._read_messages(pubsub))

    async def _read_messages(self, pubsub) -> None:
        try:
            while True:
                msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=None)
                if msg and msg["type"] == "message":
                    await self._dispatch(msg["data"])
        except (RedisError, OSError) as e:
            if pubsub is not self._pubsub:
                return
            logging.warning(f"Lost connection to {self.channel}: {e}")
            self._pubsub = None
            self._reader_task = None
            await self._close_pubsub(pubsub)
            self._handle_connection_error()

    async def _dispatch(self, data) -> None:
        event = parse_realtime_event(data)
        if event is None or not is_game_snapshot_event(event):
            return
        snapshot = parse_snapshot_payload(event)
        if snapshot is None:
            return
        try:
            result = self.on_snapshot(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # A failing handler must not end the subscription
            logging.error(f"Snapshot handler failed on {self.channel}: {e}")

    def _handle_connection_error(self) -> None:
        self._set_state(ConnectionState.error)
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logging.warning(
                f"Max reconnection attempts reached for {self.channel}. Falling back to request/response mode."
            )
            self._set_state(ConnectionState.fallback)
            return

        self.reconnect_attempts += 1
        delay = self.base_reconnect_delay * 2 ** (self.reconnect_attempts - 1)
        self.last_reconnect_delay = delay
        logging.warning(
            f"Scheduling reconnect attempt {self.reconnect_attempts}/{self.max_reconnect_attempts} in {delay}s"
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._open()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

    async def _close_channel(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        reader_task, self._reader_task = self._reader_task, None
        if reader_task is not None and reader_task is not asyncio.current_task():
            reader_task.cancel()
            try:
                await reader_task
            except asyncio.CancelledError:
                pass
        if pubsub is not None:
            await self._close_pubsub(pubsub)

    async def _close_pubsub(self, pubsub) -> None:
        try:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            logging.debug(f"Ignoring error while closing {self.channel}: {e}")

    def _set_state(self, state: ConnectionState) -> None:
        if self.state == state:
            return
        self.state = state
        if self.on_state_change is not None:
            self.on_state_change(state)
