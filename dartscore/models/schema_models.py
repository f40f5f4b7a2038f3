from pydantic import BaseModel
from enum import Enum
from typing import Any, List, Optional
from uuid import UUID
from datetime import datetime

from dartscore.models.dc_models import DartMultiplier


class RoomStatusModel(str, Enum):
    open = "open"
    in_progress = "in_progress"
    closed = "closed"


class GameStatusModel(str, Enum):
    pending = "pending"
    active = "active"
    completed = "completed"


class RoomSchema(BaseModel):
    room_id: UUID
    code: str
    host_id: str
    status: RoomStatusModel
    admin_token_hash: str
    salt: str
    created_at: datetime

    class Config:
        from_attributes = True


class GameSchema(BaseModel):
    game_id: UUID
    room_id: UUID
    mode: int
    double_out: bool
    status: GameStatusModel
    current_player_id: UUID | None
    winner_player_id: UUID | None
    started_at: datetime | None
    finished_at: datetime | None

    class Config:
        from_attributes = True


class PlayerSchema(BaseModel):
    player_id: UUID
    game_id: UUID
    room_id: UUID
    display_name: str
    user_id: str | None
    remaining: int
    seat_order: int
    is_host: bool
    joined_at: datetime

    class Config:
        from_attributes = True


class DartSchema(BaseModel):
    mult: DartMultiplier
    value: int


class TurnSchema(BaseModel):
    turn_id: UUID
    game_id: UUID
    player_id: UUID
    turn_index: int
    scored_total: int
    turn_total: int
    is_bust: bool
    is_win: bool
    remaining_before: int
    remaining_after: int
    darts: Optional[List[DartSchema]] = None
    finish_dart: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class TurnInputSchema(BaseModel):
    """Turn as computed by the scorer, before the backend assigns ids."""

    player_id: UUID
    turn_index: int
    scored_total: int
    turn_total: int
    is_bust: bool
    is_win: bool
    remaining_before: int
    remaining_after: int
    darts: Optional[List[DartSchema]] = None
    finish_dart: str | None = None


# ==============================================================================
# ==== Snapshot (wire contract shared by the backend and every device) ========
# ==============================================================================


class SnapshotGameSchema(BaseModel):
    id: UUID
    mode: int
    double_out: bool
    status: GameStatusModel
    current_player_id: UUID | None = None
    room_id: UUID | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    winner_player_id: UUID | None = None


class SnapshotPlayerSchema(BaseModel):
    id: UUID
    name: str
    displayName: str | None = None
    userId: str | None = None
    remaining: int
    seat_order: int


class SnapshotTurnSchema(BaseModel):
    id: UUID
    turn_index: int
    player_id: UUID
    scored_total: int
    turn_total: int
    is_bust: bool
    is_win: bool
    remaining_before: int
    remaining_after: int
    darts: Optional[List[DartSchema]] = None
    finish_dart: str | None = None


class GameSnapshotSchema(BaseModel):
    game: SnapshotGameSchema
    players: List[SnapshotPlayerSchema]
    last_turns: List[SnapshotTurnSchema] = []


class RealtimeEventType(str, Enum):
    game_snapshot = "GAME_SNAPSHOT"
    turn_added = "TURN_ADDED"
    turn_undone = "TURN_UNDONE"
    turn_edited = "TURN_EDITED"


class RealtimeEventEnvelope(BaseModel):
    type: RealtimeEventType
    payload: Any = None


# ==============================================================================
# ==== Request bodies ==========================================================
# ==============================================================================


class CreateRoomModel(BaseModel):
    host_id: str = "host"


class CreateGameModel(BaseModel):
    mode: int = 501
    double_out: bool = False


class AddPlayerModel(BaseModel):
    display_name: str
    user_id: str | None = None
    is_host: bool = False


class UpdateRemainingModel(BaseModel):
    remaining: int


class UpdateGameStatusModel(BaseModel):
    status: GameStatusModel
    winner_player_id: UUID | None = None


# ==============================================================================
# ==== Responses ===============================================================
# ==============================================================================


class CreatedRoomSchema(BaseModel):
    """The only response carrying the plain admin token."""

    room_id: UUID
    code: str
    admin_token: str


class PublicRoomSchema(BaseModel):
    room_id: UUID
    code: str
    host_id: str
    status: RoomStatusModel
    created_at: datetime

    class Config:
        from_attributes = True
