from pydantic import BaseModel, field_validator, model_validator
from enum import Enum
from typing import Optional, Tuple

MAX_TURN_SCORE = 180
MAX_DARTS_PER_TURN = 3
STARTING_SCORES = (301, 501)
MAX_PLAYERS = 4


class GamePhase(str, Enum):
    in_progress = "in-progress"
    game_over = "game-over"


class DartMultiplier(str, Enum):
    single = "S"
    double = "D"
    triple = "T"
    outer_bull = "OB"
    bull = "B"


class TurnErrorModel(str, Enum):
    invalid_score = "INVALID_SCORE"
    empty_turn = "EMPTY_TURN"
    too_many_darts = "TOO_MANY_DARTS"
    game_over = "GAME_OVER"


class GameSettingsModel(BaseModel):
    starting_score: int = 501
    double_out: bool = False
    players: Tuple[str, ...] = ("Player 1", "Player 2")

    class Config:
        frozen = True

    @field_validator("starting_score")
    @classmethod
    def check_starting_score(cls, value: int) -> int:
        if value not in STARTING_SCORES:
            raise ValueError("starting_score must be 301 or 501")
        return value

    @field_validator("players")
    @classmethod
    def check_players(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        if not 1 <= len(value) <= MAX_PLAYERS:
            raise ValueError("a game needs between 1 and 4 players")
        # Blank names fall back to their seat label
        return tuple(name.strip() or f"Player {i + 1}" for i, name in enumerate(value))


class DartModel(BaseModel):
    mult: DartMultiplier
    value: int

    class Config:
        frozen = True

    @model_validator(mode="after")
    def check_value(self) -> "DartModel":
        if self.mult == DartMultiplier.outer_bull and self.value != 25:
            raise ValueError("outer bull must have value 25")
        if self.mult == DartMultiplier.bull and self.value != 50:
            raise ValueError("bull must have value 50")
        if self.mult in (DartMultiplier.single, DartMultiplier.double, DartMultiplier.triple):
            if not 1 <= self.value <= 20:
                raise ValueError("value must be between 1 and 20")
        return self

    @property
    def points(self) -> int:
        if self.mult == DartMultiplier.outer_bull:
            return 25
        if self.mult == DartMultiplier.bull:
            return 50
        factor = {"S": 1, "D": 2, "T": 3}[self.mult.value]
        return self.value * factor

    @property
    def is_double_finish(self) -> bool:
        return self.mult in (DartMultiplier.double, DartMultiplier.bull)

    @property
    def label(self) -> str:
        if self.mult == DartMultiplier.outer_bull:
            return "OB"
        if self.mult == DartMultiplier.bull:
            return "Bull"
        return f"{self.mult.value}{self.value}"


class PlayerModel(BaseModel):
    name: str
    remaining: int

    class Config:
        frozen = True


class TurnModel(BaseModel):
    turn_number: int
    player_index: int
    player_name: str
    darts: Tuple[DartModel, ...] = ()
    turn_total: int
    scored_points: int
    remaining_after: int
    is_bust: bool = False
    is_confirmed_win: bool = False
    finish_dart: Optional[str] = None
    # Snapshot for undo
    previous_remaining: int
    previous_player_index: int

    class Config:
        frozen = True


class WinnerModel(BaseModel):
    player_index: int
    player_name: str
    turns: int

    class Config:
        frozen = True


class GameModel(BaseModel):
    settings: GameSettingsModel
    players: Tuple[PlayerModel, ...]
    current_player_index: int = 0
    turn_history: Tuple[TurnModel, ...] = ()
    phase: GamePhase = GamePhase.in_progress
    winner: Optional[WinnerModel] = None

    class Config:
        frozen = True

    @property
    def current_player(self) -> Optional[PlayerModel]:
        """The player to throw next, None once the game is over."""
        if self.phase == GamePhase.game_over:
            return None
        return self.players[self.current_player_index]

    @property
    def last_turn(self) -> Optional[TurnModel]:
        return self.turn_history[-1] if self.turn_history else None


class ApplyTurnResult(BaseModel):
    success: bool
    error: Optional[TurnErrorModel] = None
    message: Optional[str] = None
    game: Optional[GameModel] = None


class PlayerStatsModel(BaseModel):
    player_name: str
    player_index: int
    average: float = 0.0
    first_nine_average: Optional[float] = None
    count_180s: int = 0
    checkout_percentage: Optional[float] = None
    busts: int = 0


class RoomResult(BaseModel):
    ok: bool
    code: Optional[str] = None
    admin_token: Optional[str] = None
    message: Optional[str] = None


class ScoreMutationResult(BaseModel):
    """Outcome of a coordinator operation. The game is the state to display afterwards."""

    ok: bool
    game: Optional[GameModel] = None
    error: Optional[TurnErrorModel] = None
    message: Optional[str] = None
