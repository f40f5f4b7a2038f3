"""Scorer-side coordination between the local engine, the game backend and the realtime channel.

Local turns are applied optimistically, stored through the backend, and then
replaced in full by the authoritative snapshot. Snapshots pushed over the
channel go through the same path, last write wins.
"""

import logging
from typing import List
from uuid import UUID

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from redis.asyncio import Redis

from dartscore.converter import DataConverter
from dartscore.domain import score_engine
from dartscore.exceptions import (
    AnonymousCallerError,
    BackendError,
    NotFoundError,
    UnauthorizedError,
)
from dartscore.load_secrets import (
    base_reconnect_delay,
    fallback_poll_interval,
    max_reconnect_attempts,
)
from dartscore.models.dc_models import (
    ApplyTurnResult,
    DartModel,
    GameModel,
    GameSettingsModel,
    RoomResult,
    ScoreMutationResult,
)
from dartscore.models.schema_models import GameSnapshotSchema, RoomSchema
from dartscore.realtime_transport import ConnectionState, SnapshotSyncTransport
from dartscore.services.game_db import GameBackend

INVALID_TOKEN_MESSAGE = "Invalid admin token. Please check your scorer token."
TOKEN_REQUIRED_MESSAGE = "Admin token required. Please enter your scorer token."
OPERATION_FAILED_MESSAGE = "Operation failed. Please try again."
NO_ROOM_MESSAGE = "Create or join a room first."
NO_GAME_MESSAGE = "No game in progress."
NOTHING_TO_UNDO_MESSAGE = "No turn to undo."

data_converter = DataConverter()


def normalize_backend_error(error: Exception) -> str:
    """Turn a backend failure into a message for the scorer"""
    if isinstance(error, UnauthorizedError):
        return INVALID_TOKEN_MESSAGE
    if isinstance(error, AnonymousCallerError):
        return TOKEN_REQUIRED_MESSAGE
    if isinstance(error, NotFoundError):
        return str(error)
    return OPERATION_FAILED_MESSAGE


class GameCoordinator:
    def __init__(
        self,
        backend: GameBackend,
        redis: Redis | None = None,
        scheduler: AsyncIOScheduler | None = None,
        poll_interval: float = fallback_poll_interval,
        max_reconnect_attempts: int = max_reconnect_attempts,
        base_reconnect_delay: float = base_reconnect_delay,
    ):
        """Coordinator for one scorer device

        Args:
            backend (GameBackend): Game backend storing rooms, games and turns
            redis (Redis | None): Pub/sub client for the realtime channel, None means polling only
            scheduler (AsyncIOScheduler | None): Scheduler running the fallback polling job
            poll_interval (float): Seconds between snapshot polls while the channel is unavailable
            max_reconnect_attempts (int): Reconnects of the realtime channel before polling
            base_reconnect_delay (float): First reconnect delay in seconds
        """
        self.backend: GameBackend = backend
        self.redis: Redis | None = redis
        self.scheduler: AsyncIOScheduler = scheduler or AsyncIOScheduler()
        self.poll_interval: float = poll_interval
        self.max_reconnect_attempts: int = max_reconnect_attempts
        self.base_reconnect_delay: float = base_reconnect_delay

        self.room: RoomSchema | None = None
        self.room_code: str | None = None
        self.admin_token: str | None = None
        self.game_id: UUID | None = None
        self.snapshot: GameSnapshotSchema | None = None
        self.game: GameModel | None = None
        self.player_ids: List[UUID] = []
        self.transport: SnapshotSyncTransport | None = None
        self.realtime_open: bool = False
        self.poll_job_id: str | None = None

    # ==== rooms ====

    async def create_room(self) -> RoomResult:
        try:
            room, admin_token = await self.backend.create_room()
        except BackendError as e:
            logging.error(f"Failed to create room: {e}")
            return RoomResult(ok=False, message=normalize_backend_error(e))

        self._set_room(room, admin_token)
        return RoomResult(ok=True, code=room.code, admin_token=admin_token)

    async def join_room(self, room_code: str, admin_token: str | None = None) -> RoomResult:
        """Look up a room by code and follow its latest game. The token is only checked on mutations."""
        try:
            room = await self.backend.get_room_by_code(room_code)
            if room is None:
                return RoomResult(ok=False, message="Room not found")
            games = await self.backend.get_games_by_room(room.room_id)
        except BackendError as e:
            logging.error(f"Failed to join room {room_code}: {e}")
            return RoomResult(ok=False, message=normalize_backend_error(e))

        self._set_room(room, admin_token)
        if games:
            self.game_id = games[-1].game_id
            await self.refresh()
        return RoomResult(ok=True, code=room.code, admin_token=admin_token)

    # ==== games ====

    async def start_game(self, settings: GameSettingsModel) -> ScoreMutationResult:
        failure = self._check_room()
        if failure is not None:
            return failure

        try:
            game = await self.backend.create_game(
                self.room.room_id, settings.starting_score, settings.double_out, self.admin_token
            )
            for seat, name in enumerate(settings.players):
                await self.backend.add_player(game.game_id, name, self.admin_token, is_host=seat == 0)
            snapshot = await self.backend.get_snapshot(game.game_id)
        except BackendError as e:
            logging.error(f"Failed to start game: {e}")
            return ScoreMutationResult(ok=False, game=self.game, message=normalize_backend_error(e))

        previous_game_id = self.game_id
        self.game_id = game.game_id
        self.snapshot = None
        self.apply_snapshot(snapshot)
        logging.info(f"Game started: {game.game_id}")
        if self.realtime_open and previous_game_id != self.game_id:
            await self.open_realtime()
        return ScoreMutationResult(ok=True, game=self.game)

    async def rematch(self) -> ScoreMutationResult:
        """Start a new game in the same room with the same settings"""
        if self.game is None:
            return ScoreMutationResult(ok=False, message=NO_GAME_MESSAGE)
        return await self.start_game(self.game.settings)

    # ==== turns ====

    async def submit_total(self, points: int) -> ScoreMutationResult:
        failure = self._check_game()
        if failure is not None:
            return failure
        return await self._store_turn(score_engine.apply_total_turn(self.game, points))

    async def submit_darts(self, darts: List[DartModel]) -> ScoreMutationResult:
        failure = self._check_game()
        if failure is not None:
            return failure
        return await self._store_turn(score_engine.apply_dart_turn(self.game, darts))

    async def undo_last_turn(self) -> ScoreMutationResult:
        failure = self._check_game()
        if failure is not None:
            return failure
        if self.game.last_turn is None:
            return ScoreMutationResult(ok=False, game=self.game, message=NOTHING_TO_UNDO_MESSAGE)

        self.game = score_engine.undo_last_turn(self.game)
        try:
            await self.backend.delete_last_turn(self.game_id, self.admin_token)
            snapshot = await self.backend.get_snapshot(self.game_id)
        except BackendError as e:
            return self._restore(e)

        self.apply_snapshot(snapshot)
        return ScoreMutationResult(ok=True, game=self.game)

    async def edit_last_turn(self, points: int) -> ScoreMutationResult:
        """Replace the last turn with a total-mode turn of the given points"""
        failure = self._check_game()
        if failure is not None:
            return failure
        if self.game.last_turn is None:
            return ScoreMutationResult(ok=False, game=self.game, message=NOTHING_TO_UNDO_MESSAGE)

        result = score_engine.apply_total_turn(score_engine.undo_last_turn(self.game), points)
        if not result.success:
            return ScoreMutationResult(ok=False, game=self.game, error=result.error, message=result.message)

        self.game = result.game
        turn = result.game.last_turn
        try:
            await self.backend.delete_last_turn(self.game_id, self.admin_token)
            await self.backend.create_turn(
                self.game_id,
                data_converter.convert_turn_to_turn_input(turn, self.player_ids[turn.player_index]),
                self.admin_token,
            )
            snapshot = await self.backend.get_snapshot(self.game_id)
        except BackendError as e:
            return self._restore(e)

        self.apply_snapshot(snapshot)
        return ScoreMutationResult(ok=True, game=self.game)

    async def _store_turn(self, result: ApplyTurnResult) -> ScoreMutationResult:
        if not result.success:
            return ScoreMutationResult(ok=False, game=self.game, error=result.error, message=result.message)

        self.game = result.game
        turn = result.game.last_turn
        try:
            await self.backend.create_turn(
                self.game_id,
                data_converter.convert_turn_to_turn_input(turn, self.player_ids[turn.player_index]),
                self.admin_token,
            )
            snapshot = await self.backend.get_snapshot(self.game_id)
        except BackendError as e:
            return self._restore(e)

        self.apply_snapshot(snapshot)
        return ScoreMutationResult(ok=True, game=self.game)

    # ==== snapshots ====

    async def refresh(self) -> ScoreMutationResult:
        """Fetch the authoritative snapshot over request/response"""
        if self.game_id is None:
            return ScoreMutationResult(ok=False, message=NO_GAME_MESSAGE)
        try:
            snapshot = await self.backend.get_snapshot(self.game_id)
        except BackendError as e:
            logging.error(f"Failed to refresh game {self.game_id}: {e}")
            return ScoreMutationResult(ok=False, game=self.game, message=normalize_backend_error(e))

        self.apply_snapshot(snapshot)
        return ScoreMutationResult(ok=True, game=self.game)

    def apply_snapshot(self, snapshot: GameSnapshotSchema) -> None:
        """Replace the local state with the snapshot, without merging any field"""
        if self.game_id is not None and snapshot.game.id != self.game_id:
            logging.debug(f"Ignoring snapshot of game {snapshot.game.id}")
            return
        self.game_id = snapshot.game.id
        self.snapshot = snapshot
        self.player_ids = [player.id for player in sorted(snapshot.players, key=lambda p: p.seat_order)]
        self.game = data_converter.convert_snapshot_to_game(snapshot)

    # ==== realtime ====

    async def open_realtime(self) -> ConnectionState:
        """Follow the current game over the realtime channel, or poll when there is no channel"""
        if self.game_id is None:
            return ConnectionState.disconnected
        await self._close_transport()
        self.realtime_open = True

        if self.redis is None:
            self._start_polling()
            return ConnectionState.fallback

        self.transport = SnapshotSyncTransport(
            self.redis,
            self.game_id,
            on_snapshot=self.apply_snapshot,
            on_state_change=self._on_transport_state,
            max_reconnect_attempts=self.max_reconnect_attempts,
            base_reconnect_delay=self.base_reconnect_delay,
        )
        await self.transport.connect()
        return self.transport.state

    async def close(self) -> None:
        await self._close_transport()
        self.realtime_open = False
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def _on_transport_state(self, state: ConnectionState) -> None:
        if state == ConnectionState.fallback:
            self._start_polling()
        else:
            self._stop_polling()

    def _start_polling(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
        self.poll_job_id = f"fallback-poll-{self.game_id}"
        self.scheduler.add_job(
            self.refresh,
            "interval",
            seconds=self.poll_interval,
            id=self.poll_job_id,
            replace_existing=True,
        )
        logging.warning(f"Polling game {self.game_id} every {self.poll_interval}s")

    def _stop_polling(self) -> None:
        if self.poll_job_id is None:
            return
        if self.scheduler.get_job(self.poll_job_id) is not None:
            self.scheduler.remove_job(self.poll_job_id)
        self.poll_job_id = None

    async def _close_transport(self) -> None:
        self._stop_polling()
        if self.transport is not None:
            transport, self.transport = self.transport, None
            await transport.disconnect()

    # ==== helpers ====

    def _set_room(self, room: RoomSchema, admin_token: str | None) -> None:
        self.room = room
        self.room_code = room.code
        self.admin_token = admin_token
        self.game_id = None
        self.snapshot = None
        self.game = None
        self.player_ids = []

    def _check_room(self) -> ScoreMutationResult | None:
        if self.room is None:
            return ScoreMutationResult(ok=False, message=NO_ROOM_MESSAGE)
        if not self.admin_token:
            return ScoreMutationResult(ok=False, game=self.game, message=TOKEN_REQUIRED_MESSAGE)
        return None

    def _check_game(self) -> ScoreMutationResult | None:
        failure = self._check_room()
        if failure is not None:
            return failure
        if self.game is None:
            return ScoreMutationResult(ok=False, message=NO_GAME_MESSAGE)
        return None

    def _restore(self, error: BackendError) -> ScoreMutationResult:
        logging.error(f"Backend rejected change on game {self.game_id}: {error}")
        if self.snapshot is not None:
            self.game = data_converter.convert_snapshot_to_game(self.snapshot)
        return ScoreMutationResult(ok=False, game=self.game, message=normalize_backend_error(error))
