import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from dartscore.db import Session
from dartscore.domain.stats import compute_stats
from dartscore.exceptions import (
    AnonymousCallerError,
    BackendError,
    ConflictError,
    NotFoundError,
    UnauthorizedError,
)
from dartscore.load_secrets import redis_host, redis_port
from dartscore.models.dc_models import PlayerStatsModel
from dartscore.models.schema_models import (
    AddPlayerModel,
    CreatedRoomSchema,
    CreateGameModel,
    CreateRoomModel,
    GameSchema,
    GameSnapshotSchema,
    PlayerSchema,
    PublicRoomSchema,
    TurnInputSchema,
    TurnSchema,
    UpdateGameStatusModel,
    UpdateRemainingModel,
)
from dartscore.services.game_db import GameBackendService

redis = Redis(host=redis_host, port=redis_port, decode_responses=True, health_check_interval=30)

game_router = APIRouter()
game_service = GameBackendService(Session, publisher=redis)

ERROR_STATUS = {
    AnonymousCallerError: status.HTTP_401_UNAUTHORIZED,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
}


def get_game_service() -> GameBackendService:
    return game_service


async def backend_error_handler(request: Request, exc: BackendError) -> JSONResponse:
    """Map backend errors onto HTTP status codes"""
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    logging.info(f"{request.method} {request.url.path} rejected with {status_code}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def read_room_or_404(code: str, service: GameBackendService) -> PublicRoomSchema:
    room = await service.get_room_by_code(code)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return PublicRoomSchema.model_validate(room)


class RoomAPI:
    @staticmethod
    @game_router.post("/rooms", response_model=CreatedRoomSchema, status_code=status.HTTP_201_CREATED)
    async def create_room(
        body: CreateRoomModel,
        service: GameBackendService = Depends(get_game_service),
    ):
        room, admin_token = await service.create_room(body.host_id)
        return CreatedRoomSchema(room_id=room.room_id, code=room.code, admin_token=admin_token)

    @staticmethod
    @game_router.get("/rooms/{code}", response_model=PublicRoomSchema)
    async def get_room(code: str, service: GameBackendService = Depends(get_game_service)):
        return await read_room_or_404(code, service)

    @staticmethod
    @game_router.post("/rooms/{code}/games", response_model=GameSchema, status_code=status.HTTP_201_CREATED)
    async def create_game(
        code: str,
        body: CreateGameModel,
        admin_token: str | None = Header(default=None, alias="X-ADMIN-TOKEN"),
        service: GameBackendService = Depends(get_game_service),
    ):
        room = await read_room_or_404(code, service)
        return await service.create_game(room.room_id, body.mode, body.double_out, admin_token)

    @staticmethod
    @game_router.get("/rooms/{code}/games", response_model=List[GameSchema])
    async def get_games(code: str, service: GameBackendService = Depends(get_game_service)):
        room = await read_room_or_404(code, service)
        return await service.get_games_by_room(room.room_id)


class GameAPI:
    @staticmethod
    @game_router.get("/games/{game_id}", response_model=GameSchema)
    async def get_game(game_id: UUID, service: GameBackendService = Depends(get_game_service)):
        return await service.get_game(game_id)

    @staticmethod
    @game_router.put("/games/{game_id}/status", response_model=GameSchema)
    async def update_game_status(
        game_id: UUID,
        body: UpdateGameStatusModel,
        admin_token: str | None = Header(default=None, alias="X-ADMIN-TOKEN"),
        service: GameBackendService = Depends(get_game_service),
    ):
        return await service.update_game_status(game_id, body.status, admin_token, body.winner_player_id)

    @staticmethod
    @game_router.get("/games/{game_id}/snapshot", response_model=GameSnapshotSchema)
    async def get_snapshot(game_id: UUID, service: GameBackendService = Depends(get_game_service)):
        return await service.get_snapshot(game_id)

    @staticmethod
    @game_router.get("/games/{game_id}/stats", response_model=List[PlayerStatsModel])
    async def get_stats(game_id: UUID, service: GameBackendService = Depends(get_game_service)):
        game = await service.get_game_model(game_id)
        if game is None:
            return []
        return compute_stats(game)


class PlayerAPI:
    @staticmethod
    @game_router.post("/games/{game_id}/players", response_model=PlayerSchema, status_code=status.HTTP_201_CREATED)
    async def add_player(
        game_id: UUID,
        body: AddPlayerModel,
        admin_token: str | None = Header(default=None, alias="X-ADMIN-TOKEN"),
        service: GameBackendService = Depends(get_game_service),
    ):
        return await service.add_player(game_id, body.display_name, admin_token, body.user_id, body.is_host)

    @staticmethod
    @game_router.get("/games/{game_id}/players", response_model=List[PlayerSchema])
    async def get_players(game_id: UUID, service: GameBackendService = Depends(get_game_service)):
        return await service.get_players(game_id)

    @staticmethod
    @game_router.put("/players/{player_id}/remaining", response_model=PlayerSchema)
    async def update_remaining(
        player_id: UUID,
        body: UpdateRemainingModel,
        admin_token: str | None = Header(default=None, alias="X-ADMIN-TOKEN"),
        service: GameBackendService = Depends(get_game_service),
    ):
        return await service.update_player_remaining(player_id, body.remaining, admin_token)


class TurnAPI:
    @staticmethod
    @game_router.post("/games/{game_id}/turns", response_model=TurnSchema, status_code=status.HTTP_201_CREATED)
    async def create_turn(
        game_id: UUID,
        body: TurnInputSchema,
        admin_token: str | None = Header(default=None, alias="X-ADMIN-TOKEN"),
        service: GameBackendService = Depends(get_game_service),
    ):
        return await service.create_turn(game_id, body, admin_token)

    @staticmethod
    @game_router.get("/games/{game_id}/turns", response_model=List[TurnSchema])
    async def get_turns(
        game_id: UUID,
        limit: int | None = None,
        offset: int = 0,
        service: GameBackendService = Depends(get_game_service),
    ):
        return await service.get_turns(game_id, limit, offset)

    @staticmethod
    @game_router.delete("/games/{game_id}/turns/last", response_model=TurnSchema | None)
    async def delete_last_turn(
        game_id: UUID,
        admin_token: str | None = Header(default=None, alias="X-ADMIN-TOKEN"),
        service: GameBackendService = Depends(get_game_service),
    ):
        return await service.delete_last_turn(game_id, admin_token)
