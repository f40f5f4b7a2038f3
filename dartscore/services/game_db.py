"""DB service layer for the game backend.

- Routers and the coordinator call this module, never the DB sessions directly.
- This layer owns session/transaction boundaries.
- Every committed mutation is published on the game channel: first the
  lightweight event, then the full snapshot.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Protocol, Tuple
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import async_sessionmaker
from uuid6 import uuid7

from dartscore.authentication.admin_token import (
    check_admin_token,
    generate_admin_token,
    generate_room_code,
    hash_admin_token,
)
from dartscore.converter import DataConverter
from dartscore.crud import CreateData, DeleteData, ReadData, UpdateData
from dartscore.exceptions import ConflictError, NotFoundError
from dartscore.load_secrets import room_ttl_hours, snapshot_turn_window
from dartscore.models.dc_models import MAX_PLAYERS, STARTING_SCORES, GameModel
from dartscore.models.schema_models import (
    GameSchema,
    GameSnapshotSchema,
    GameStatusModel,
    PlayerSchema,
    RealtimeEventType,
    RoomSchema,
    RoomStatusModel,
    TurnInputSchema,
    TurnSchema,
)
from dartscore.realtime_envelope import build_event, game_channel

ROOM_CODE_RETRIES = 5

data_converter = DataConverter()


class GameBackend(Protocol):
    """Operations the scorer relies on. Mutations take the room's admin token."""

    async def create_room(self, host_id: str = "host") -> Tuple[RoomSchema, str]: ...

    async def get_room_by_code(self, code: str) -> RoomSchema | None: ...

    async def create_game(
        self, room_id: UUID, mode: int, double_out: bool, admin_token: str | None
    ) -> GameSchema: ...

    async def add_player(
        self,
        game_id: UUID,
        display_name: str,
        admin_token: str | None,
        user_id: str | None = None,
        is_host: bool = False,
    ) -> PlayerSchema: ...

    async def create_turn(
        self, game_id: UUID, turn: TurnInputSchema, admin_token: str | None
    ) -> TurnSchema: ...

    async def delete_last_turn(self, game_id: UUID, admin_token: str | None) -> TurnSchema | None: ...

    async def update_player_remaining(
        self, player_id: UUID, remaining: int, admin_token: str | None
    ) -> PlayerSchema: ...

    async def update_game_status(
        self,
        game_id: UUID,
        status: GameStatusModel,
        admin_token: str | None,
        winner_player_id: UUID | None = None,
    ) -> GameSchema: ...

    async def get_game(self, game_id: UUID) -> GameSchema: ...

    async def get_games_by_room(self, room_id: UUID) -> List[GameSchema]: ...

    async def get_players(self, game_id: UUID) -> List[PlayerSchema]: ...

    async def get_turns(
        self, game_id: UUID, limit: int | None = None, offset: int = 0
    ) -> List[TurnSchema]: ...

    async def get_snapshot(self, game_id: UUID) -> GameSnapshotSchema: ...


class GameBackendService:
    def __init__(
        self,
        Session: async_sessionmaker,
        publisher: Redis | None = None,
        turn_window: int = snapshot_turn_window,
    ):
        """Game backend over an async session factory

        Args:
            Session (async_sessionmaker): Session factory bound to the game database
            publisher (Redis | None): Pub/sub client used to broadcast changes, None disables broadcasting
            turn_window (int): Number of recent turns carried in a snapshot
        """
        self.Session: async_sessionmaker = Session
        self.publisher: Redis | None = publisher
        self.turn_window: int = turn_window

    # ==== rooms ====

    async def create_room(self, host_id: str = "host") -> Tuple[RoomSchema, str]:
        """Create a room with a fresh code and scorer token

        Returns:
            Tuple[RoomSchema, str]: Stored room and the plain admin token, which is never stored
        """
        admin_token = generate_admin_token()
        salt = secrets.token_hex(16)
        async with self.Session() as session:
            code = generate_room_code()
            for _ in range(ROOM_CODE_RETRIES):
                if await ReadData.read_room_by_code(code, session) is None:
                    break
                code = generate_room_code()
            else:
                raise ConflictError("Could not allocate a room code")

            room = RoomSchema(
                room_id=uuid7(),
                code=code,
                host_id=host_id,
                status=RoomStatusModel.open,
                admin_token_hash=hash_admin_token(admin_token, salt),
                salt=salt,
                created_at=datetime.now(),
            )
            await CreateData.create_room_data(room, session)
        logging.info(f"Room created: {room.code}")
        return room, admin_token

    async def get_room_by_code(self, code: str) -> RoomSchema | None:
        async with self.Session() as session:
            return await ReadData.read_room_by_code(code.strip().upper(), session)

    async def close_expired_rooms(self, ttl_hours: int = room_ttl_hours) -> int:
        """Close rooms which have been open longer than the ttl

        Returns:
            int: Number of closed rooms
        """
        created_before = datetime.now() - timedelta(hours=ttl_hours)
        async with self.Session() as session:
            expired_rooms = await ReadData.read_expired_rooms(created_before, session)
            for room in expired_rooms:
                await UpdateData.update_room_status(room.room_id, RoomStatusModel.closed, session)
        if expired_rooms:
            logging.info(f"Closed {len(expired_rooms)} expired rooms")
        return len(expired_rooms)

    # ==== games ====

    async def create_game(
        self, room_id: UUID, mode: int, double_out: bool, admin_token: str | None
    ) -> GameSchema:
        if mode not in STARTING_SCORES:
            raise ConflictError(f"Mode must be one of {STARTING_SCORES}")
        async with self.Session() as session:
            room = await self._read_authorized_room(room_id, admin_token, session)
            if room.status == RoomStatusModel.closed:
                raise ConflictError("Room is closed")

            game = GameSchema(
                game_id=uuid7(),
                room_id=room.room_id,
                mode=mode,
                double_out=double_out,
                status=GameStatusModel.pending,
                current_player_id=None,
                winner_player_id=None,
                started_at=None,
                finished_at=None,
            )
            await CreateData.create_game_data(game, session)
            await UpdateData.update_room_status(room.room_id, RoomStatusModel.in_progress, session)
        logging.info(f"Game created: {game.game_id} in room {room.code}")
        return game

    async def add_player(
        self,
        game_id: UUID,
        display_name: str,
        admin_token: str | None,
        user_id: str | None = None,
        is_host: bool = False,
    ) -> PlayerSchema:
        async with self.Session() as session:
            game = await self._read_authorized_game(game_id, admin_token, session)
            if game.status != GameStatusModel.pending:
                raise ConflictError("Players can only join before the first turn")
            players = await ReadData.read_players(game_id, session)
            if len(players) >= MAX_PLAYERS:
                raise ConflictError(f"A game has at most {MAX_PLAYERS} players")

            player = PlayerSchema(
                player_id=uuid7(),
                game_id=game.game_id,
                room_id=game.room_id,
                display_name=display_name.strip() or f"Player {len(players) + 1}",
                user_id=user_id,
                remaining=game.mode,
                seat_order=len(players),
                is_host=is_host,
                joined_at=datetime.now(),
            )
            await CreateData.create_player_data(player, session)
            if game.current_player_id is None:
                await UpdateData.update_game_progress(
                    game_id, session, GameStatusModel.pending, player.player_id
                )
        await self._publish_snapshot(game_id)
        return player

    async def update_game_status(
        self,
        game_id: UUID,
        status: GameStatusModel,
        admin_token: str | None,
        winner_player_id: UUID | None = None,
    ) -> GameSchema:
        async with self.Session() as session:
            game = await self._read_authorized_game(game_id, admin_token, session)
            current_player_id = game.current_player_id
            if status == GameStatusModel.completed:
                if winner_player_id is not None:
                    await self._read_game_player(game_id, winner_player_id, session)
                current_player_id = None
            elif current_player_id is None:
                players = await ReadData.read_players(game_id, session)
                current_player_id = players[0].player_id if players else None
            game = await UpdateData.update_game_progress(
                game_id, session, status, current_player_id, winner_player_id
            )
        await self._publish_snapshot(game_id)
        return game

    async def get_game(self, game_id: UUID) -> GameSchema:
        async with self.Session() as session:
            return await self._read_game(game_id, session)

    async def get_games_by_room(self, room_id: UUID) -> List[GameSchema]:
        async with self.Session() as session:
            return await ReadData.read_games_by_room(room_id, session)

    # ==== players ====

    async def get_players(self, game_id: UUID) -> List[PlayerSchema]:
        async with self.Session() as session:
            await self._read_game(game_id, session)
            return await ReadData.read_players(game_id, session)

    async def update_player_remaining(
        self, player_id: UUID, remaining: int, admin_token: str | None
    ) -> PlayerSchema:
        async with self.Session() as session:
            player = await ReadData.read_player(player_id, session)
            if player is None:
                raise NotFoundError("Player not found")
            game = await self._read_authorized_game(player.game_id, admin_token, session)
            if not 0 <= remaining <= game.mode:
                raise ConflictError(f"Remaining must be between 0 and {game.mode}")
            player = await UpdateData.update_player_remaining(player_id, remaining, session)
        await self._publish_snapshot(player.game_id)
        return player

    # ==== turns ====

    async def create_turn(
        self, game_id: UUID, turn: TurnInputSchema, admin_token: str | None
    ) -> TurnSchema:
        """Store a turn and apply its effects on the game in one transaction

        Args:
            game_id (UUID): To identify the game
            turn (TurnInputSchema): Turn computed by the scorer
            admin_token (str | None): Scorer token of the room

        Raises:
            ConflictError: The game is completed, the turn index is not the next one,
                or the turn does not match the thrower and the stored remaining

        Returns:
            TurnSchema: Stored turn
        """
        async with self.Session() as session:
            async with session.begin():
                game = await self._read_authorized_game(game_id, admin_token, session)
                if game.status == GameStatusModel.completed:
                    raise ConflictError("Game is already completed")
                player = await self._read_game_player(game_id, turn.player_id, session)
                self._check_turn_fits(game, player, turn)

                last_turn = await ReadData.read_last_turn(game_id, session)
                expected_index = last_turn.turn_index + 1 if last_turn is not None else 0
                if turn.turn_index != expected_index:
                    raise ConflictError(
                        f"Turn index {turn.turn_index} does not follow the stored turns, expected {expected_index}"
                    )

                players = await ReadData.read_players(game_id, session)
                stored_turn = TurnSchema(
                    turn_id=uuid7(),
                    game_id=game_id,
                    created_at=datetime.now(),
                    **turn.model_dump(),
                )
                await CreateData.add_turn_data(stored_turn, session)
                await UpdateData.set_player_remaining_no_commit(
                    turn.player_id, turn.remaining_after, session
                )
                if turn.is_win:
                    await UpdateData.set_game_progress_no_commit(
                        game_id, session, GameStatusModel.completed, None, turn.player_id
                    )
                else:
                    await UpdateData.set_game_progress_no_commit(
                        game_id, session, GameStatusModel.active, self._next_player_id(players, turn.player_id)
                    )
        logging.info(f"Turn stored: game {game_id}, turn {stored_turn.turn_index}")
        await self._publish(game_id, RealtimeEventType.turn_added, stored_turn.model_dump(mode="json"))
        await self._publish_snapshot(game_id)
        return stored_turn

    async def delete_last_turn(self, game_id: UUID, admin_token: str | None) -> TurnSchema | None:
        """Remove the last turn and restore the thrower's remaining and the turn order

        Returns:
            TurnSchema | None: Removed turn, None if there was nothing to undo
        """
        async with self.Session() as session:
            async with session.begin():
                await self._read_authorized_game(game_id, admin_token, session)
                last_turn = await ReadData.read_last_turn(game_id, session)
                if last_turn is None:
                    return None

                await DeleteData.remove_turn_no_commit(last_turn.turn_id, session)
                await UpdateData.set_player_remaining_no_commit(
                    last_turn.player_id, last_turn.remaining_before, session
                )
                await UpdateData.set_game_progress_no_commit(
                    game_id, session, GameStatusModel.active, last_turn.player_id
                )
        logging.info(f"Turn removed: game {game_id}, turn {last_turn.turn_index}")
        await self._publish(game_id, RealtimeEventType.turn_undone, last_turn.model_dump(mode="json"))
        await self._publish_snapshot(game_id)
        return last_turn

    async def get_turns(
        self, game_id: UUID, limit: int | None = None, offset: int = 0
    ) -> List[TurnSchema]:
        async with self.Session() as session:
            await self._read_game(game_id, session)
            return await ReadData.read_turns(game_id, session, limit, offset)

    # ==== snapshot ====

    async def get_snapshot(self, game_id: UUID) -> GameSnapshotSchema:
        async with self.Session() as session:
            game = await self._read_game(game_id, session)
            players = await ReadData.read_players(game_id, session)
            turns = await ReadData.read_latest_turns(game_id, self.turn_window, session)
        return data_converter.convert_rows_to_snapshot(game, players, turns)

    async def get_game_model(self, game_id: UUID) -> GameModel | None:
        """Local game value over the complete turn history, used for statistics"""
        async with self.Session() as session:
            game = await self._read_game(game_id, session)
            players = await ReadData.read_players(game_id, session)
            turns = await ReadData.read_turns(game_id, session)
        snapshot = data_converter.convert_rows_to_snapshot(game, players, turns)
        return data_converter.convert_snapshot_to_game(snapshot)

    # ==== helpers ====

    @staticmethod
    def _next_player_id(players: List[PlayerSchema], player_id: UUID) -> UUID:
        seat = next(i for i, player in enumerate(players) if player.player_id == player_id)
        return players[(seat + 1) % len(players)].player_id

    @staticmethod
    async def _read_game(game_id: UUID, session) -> GameSchema:
        game = await ReadData.read_game(game_id, session)
        if game is None:
            raise NotFoundError("Game not found")
        return game

    @staticmethod
    async def _read_game_player(game_id: UUID, player_id: UUID, session) -> PlayerSchema:
        player = await ReadData.read_player(player_id, session)
        if player is None or player.game_id != game_id:
            raise NotFoundError("Player not found")
        return player

    @staticmethod
    def _check_turn_fits(game: GameSchema, player: PlayerSchema, turn: TurnInputSchema) -> None:
        if game.current_player_id is not None and turn.player_id != game.current_player_id:
            raise ConflictError("It is not this player's turn")
        for remaining in (turn.remaining_before, turn.remaining_after):
            if not 0 <= remaining <= game.mode:
                raise ConflictError(f"Remaining must be between 0 and {game.mode}")
        if turn.remaining_before != player.remaining:
            raise ConflictError(
                f"Turn starts from {turn.remaining_before} but the player has {player.remaining} remaining"
            )

    @staticmethod
    async def _read_authorized_room(room_id: UUID, admin_token: str | None, session) -> RoomSchema:
        room = await ReadData.read_room(room_id, session)
        if room is None:
            raise NotFoundError("Room not found")
        check_admin_token(room, admin_token)
        return room

    async def _read_authorized_game(self, game_id: UUID, admin_token: str | None, session) -> GameSchema:
        game = await self._read_game(game_id, session)
        await self._read_authorized_room(game.room_id, admin_token, session)
        return game

    async def _publish_snapshot(self, game_id: UUID) -> None:
        snapshot = await self.get_snapshot(game_id)
        await self._publish(game_id, RealtimeEventType.game_snapshot, snapshot)

    async def _publish(self, game_id: UUID, event_type: RealtimeEventType, payload) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.publish(game_channel(game_id), build_event(event_type, payload))
        except RedisError as e:
            # The change is committed, devices catch up by polling the snapshot
            logging.error(f"Failed to publish {event_type.value} for game {game_id}: {e}")
