from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy import select, desc, delete
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
from typing import List
import logging

from dartscore.models.schema_models import (
    GameSchema,
    GameStatusModel,
    PlayerSchema,
    RoomSchema,
    RoomStatusModel,
    TurnSchema,
)
from dartscore.models.schemas import Base, Room, Game, Player, Turn
from uuid import UUID


class UpdateData:
    @staticmethod
    async def set_player_remaining_no_commit(
        player_id: UUID, remaining: int, session: AsyncSession
    ) -> PlayerSchema | None:
        """Set the remaining score of a player inside the caller's transaction

        Args:
            player_id (UUID): To identify the player
            remaining (int): New remaining score

        Returns:
            PlayerSchema | None: Updated player, None if the player does not exist
        """
        stmt = select(Player).where(Player.player_id == player_id)
        result = await session.execute(stmt)
        result = result.scalars().first()

        if result is None:
            return None

        result.remaining = remaining
        await session.flush()
        return PlayerSchema.model_validate(result)

    @staticmethod
    async def update_player_remaining(player_id: UUID, remaining: int, session: AsyncSession) -> PlayerSchema | None:
        try:
            player = await UpdateData.set_player_remaining_no_commit(player_id, remaining, session)
            await session.commit()
            return player
        except SQLAlchemyError as e:
            await session.rollback()
            logging.error(f"Failed to update player remaining: {e}")
            raise

    @staticmethod
    async def set_game_progress_no_commit(
        game_id: UUID,
        session: AsyncSession,
        status: GameStatusModel,
        current_player_id: UUID | None,
        winner_player_id: UUID | None = None,
    ) -> GameSchema | None:
        """Set status, current player and winner of a game inside the caller's transaction.
        started_at is set the first time the game leaves pending, finished_at follows completion.

        Args:
            game_id (UUID): To identify the game
            status (GameStatusModel): New status
            current_player_id (UUID | None): Player whose turn it is, None once completed
            winner_player_id (UUID | None): Winner, only kept while completed
        """
        stmt = select(Game).where(Game.game_id == game_id)
        result = await session.execute(stmt)
        result = result.scalars().first()

        if result is None:
            return None

        result.status = status.value
        result.current_player_id = current_player_id
        if status == GameStatusModel.completed:
            result.winner_player_id = winner_player_id
            result.finished_at = result.finished_at or datetime.now()
        else:
            result.winner_player_id = None
            result.finished_at = None
        if status != GameStatusModel.pending and result.started_at is None:
            result.started_at = datetime.now()
        await session.flush()
        return GameSchema.model_validate(result)

    @staticmethod
    async def update_game_progress(
        game_id: UUID,
        session: AsyncSession,
        status: GameStatusModel,
        current_player_id: UUID | None,
        winner_player_id: UUID | None = None,
    ) -> GameSchema | None:
        try:
            game = await UpdateData.set_game_progress_no_commit(
                game_id, session, status, current_player_id, winner_player_id
            )
            await session.commit()
            return game
        except SQLAlchemyError as e:
            await session.rollback()
            logging.error(f"Failed to update game progress: {e}")
            raise

    @staticmethod
    async def update_room_status(room_id: UUID, status: RoomStatusModel, session: AsyncSession):
        try:
            stmt = select(Room).where(Room.room_id == room_id)
            result = await session.execute(stmt)
            result = result.scalars().first()

            if result is None:
                return None

            result.status = status.value
            await session.commit()
            return RoomSchema.model_validate(result)
        except SQLAlchemyError as e:
            await session.rollback()
            logging.error(f"Failed to update room status: {e}")
            raise


class ReadData:
    @staticmethod
    async def read_room_by_code(code: str, session: AsyncSession) -> RoomSchema | None:
        try:
            stmt = select(Room).where(Room.code == code)
            result = await session.execute(stmt)
            result = result.scalars().first()
            if result is None:
                return None
            return RoomSchema.model_validate(result)
        except SQLAlchemyError as e:
            logging.error(f"Failed to read room data: {e}")
            raise

    @staticmethod
    async def read_room(room_id: UUID, session: AsyncSession) -> RoomSchema | None:
        try:
            stmt = select(Room).where(Room.room_id == room_id)
            result = await session.execute(stmt)
            result = result.scalars().first()
            if result is None:
                return None
            return RoomSchema.model_validate(result)
        except SQLAlchemyError as e:
            logging.error(f"Failed to read room data: {e}")
            raise

    @staticmethod
    async def read_expired_rooms(created_before: datetime, session: AsyncSession) -> List[RoomSchema]:
        """Read rooms which are still open but were created before the given time

        Args:
            created_before (datetime): Rooms older than this are expired

        Returns:
            List[RoomSchema]: Expired rooms
        """
        try:
            stmt = (
                select(Room)
                .where(Room.created_at < created_before)
                .where(Room.status != RoomStatusModel.closed.value)
            )
            result = await session.execute(stmt)
            return [RoomSchema.model_validate(room) for room in result.scalars().all()]
        except SQLAlchemyError as e:
            logging.error(f"Failed to read expired rooms: {e}")
            raise

    @staticmethod
    async def read_game(game_id: UUID, session: AsyncSession) -> GameSchema | None:
        try:
            stmt = select(Game).where(Game.game_id == game_id)
            result = await session.execute(stmt)
            result = result.scalars().first()
            if result is None:
                return None
            return GameSchema.model_validate(result)
        except SQLAlchemyError as e:
            logging.error(f"Failed to read game data: {e}")
            raise

    @staticmethod
    async def read_games_by_room(room_id: UUID, session: AsyncSession) -> List[GameSchema]:
        """Read every game of a room, the latest one last"""
        try:
            stmt = select(Game).where(Game.room_id == room_id).order_by(Game.game_id)
            result = await session.execute(stmt)
            return [GameSchema.model_validate(game) for game in result.scalars().all()]
        except SQLAlchemyError as e:
            logging.error(f"Failed to read games of room: {e}")
            raise

    @staticmethod
    async def read_player(player_id: UUID, session: AsyncSession) -> PlayerSchema | None:
        try:
            stmt = select(Player).where(Player.player_id == player_id)
            result = await session.execute(stmt)
            result = result.scalars().first()
            if result is None:
                return None
            return PlayerSchema.model_validate(result)
        except SQLAlchemyError as e:
            logging.error(f"Failed to read player data: {e}")
            raise

    @staticmethod
    async def read_players(game_id: UUID, session: AsyncSession) -> List[PlayerSchema]:
        """Read players of the game in seat order"""
        try:
            stmt = select(Player).where(Player.game_id == game_id).order_by(Player.seat_order)
            result = await session.execute(stmt)
            return [PlayerSchema.model_validate(player) for player in result.scalars().all()]
        except SQLAlchemyError as e:
            logging.error(f"Failed to read players data: {e}")
            raise

    @staticmethod
    async def read_turns(
        game_id: UUID, session: AsyncSession, limit: int | None = None, offset: int = 0
    ) -> List[TurnSchema]:
        """Read turns of the game ordered by turn index

        Args:
            game_id (UUID): To identify the game
            limit (int | None): Maximum number of turns, None reads all of them
            offset (int): Number of turns to skip from the first one

        Returns:
            List[TurnSchema]: Turns, oldest first
        """
        try:
            stmt = select(Turn).where(Turn.game_id == game_id).order_by(Turn.turn_index).offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await session.execute(stmt)
            return [TurnSchema.model_validate(turn) for turn in result.scalars().all()]
        except SQLAlchemyError as e:
            logging.error(f"Failed to read turns data: {e}")
            raise

    @staticmethod
    async def read_latest_turns(game_id: UUID, limit: int, session: AsyncSession) -> List[TurnSchema]:
        """Read the most recent turns of the game

        Args:
            game_id (UUID): To identify the game
            limit (int): Size of the window

        Returns:
            List[TurnSchema]: Latest turns, oldest first
        """
        try:
            stmt = (
                select(Turn)
                .where(Turn.game_id == game_id)
                .order_by(desc(Turn.turn_index))
                .limit(limit)
            )
            result = await session.execute(stmt)
            turns = [TurnSchema.model_validate(turn) for turn in result.scalars().all()]
            turns.reverse()
            return turns
        except SQLAlchemyError as e:
            logging.error(f"Failed to read latest turns data: {e}")
            raise

    @staticmethod
    async def read_last_turn(game_id: UUID, session: AsyncSession) -> TurnSchema | None:
        try:
            stmt = (
                select(Turn)
                .where(Turn.game_id == game_id)
                .order_by(desc(Turn.turn_index))
            )
            result = await session.execute(stmt)
            result = result.scalars().first()
            if result is None:
                return None
            return TurnSchema.model_validate(result)
        except SQLAlchemyError as e:
            logging.error(f"Failed to read last turn data: {e}")
            raise


class CreateData:
    @staticmethod
    async def create_table(engine: AsyncEngine) -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @staticmethod
    async def create_room_data(room: RoomSchema, session: AsyncSession) -> None:
        """Create room data

        Args:
            room (RoomSchema): Room with the hashed admin token
        """
        try:
            room_data = Room(
                room_id=room.room_id,
                code=room.code,
                host_id=room.host_id,
                status=room.status.value,
                admin_token_hash=room.admin_token_hash,
                salt=room.salt,
                created_at=room.created_at,
            )
            session.add(room_data)
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logging.error(f"Failed to create room data: {e}")
            raise

    @staticmethod
    async def create_game_data(game: GameSchema, session: AsyncSession) -> None:
        try:
            game_data = Game(
                game_id=game.game_id,
                room_id=game.room_id,
                mode=game.mode,
                double_out=game.double_out,
                status=game.status.value,
                current_player_id=game.current_player_id,
                winner_player_id=game.winner_player_id,
                started_at=game.started_at,
                finished_at=game.finished_at,
            )
            session.add(game_data)
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logging.error(f"Failed to create game data: {e}")
            raise

    @staticmethod
    async def create_player_data(player: PlayerSchema, session: AsyncSession) -> None:
        try:
            player_data = Player(
                player_id=player.player_id,
                game_id=player.game_id,
                room_id=player.room_id,
                display_name=player.display_name,
                user_id=player.user_id,
                remaining=player.remaining,
                seat_order=player.seat_order,
                is_host=player.is_host,
                joined_at=player.joined_at,
            )
            session.add(player_data)
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logging.error(f"Failed to create player data: {e}")
            raise

    @staticmethod
    async def add_turn_data(turn: TurnSchema, session: AsyncSession) -> None:
        """Add turn data inside the caller's transaction. Darts are stored as a JSON list of {mult, value}

        Args:
            turn (TurnSchema): Turn computed by the scorer
        """
        turn_data = Turn(
            turn_id=turn.turn_id,
            game_id=turn.game_id,
            player_id=turn.player_id,
            turn_index=turn.turn_index,
            scored_total=turn.scored_total,
            turn_total=turn.turn_total,
            is_bust=turn.is_bust,
            is_win=turn.is_win,
            remaining_before=turn.remaining_before,
            remaining_after=turn.remaining_after,
            darts=(
                [dart.model_dump(mode="json") for dart in turn.darts]
                if turn.darts is not None
                else None
            ),
            finish_dart=turn.finish_dart,
            created_at=turn.created_at,
        )
        session.add(turn_data)
        await session.flush()


class DeleteData:
    @staticmethod
    async def remove_turn_no_commit(turn_id: UUID, session: AsyncSession) -> None:
        stmt = delete(Turn).where(Turn.turn_id == turn_id)
        await session.execute(stmt)
