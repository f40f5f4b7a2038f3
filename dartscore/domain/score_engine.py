"""Turn scoring rules that are independent from HTTP, DB and Redis.

Every function takes a GameModel and returns a new one; nothing here mutates
its input, so a failed operation leaves the caller's state untouched.

Rule of thumb:
- OK: bust/finish arithmetic, validation, history bookkeeping.
- Not OK: persistence, network calls, datetime.now(), etc.
"""

from typing import List, Sequence

from dartscore.models.dc_models import (
    MAX_DARTS_PER_TURN,
    MAX_TURN_SCORE,
    ApplyTurnResult,
    DartModel,
    GameModel,
    GamePhase,
    GameSettingsModel,
    PlayerModel,
    TurnErrorModel,
    TurnModel,
    WinnerModel,
)


def start_game(settings: GameSettingsModel) -> GameModel:
    """Initialize a new game from settings."""
    return GameModel(
        settings=settings,
        players=tuple(
            PlayerModel(name=name, remaining=settings.starting_score)
            for name in settings.players
        ),
        current_player_index=0,
        turn_history=(),
        phase=GamePhase.in_progress,
        winner=None,
    )


def is_bust(remaining: int, double_out: bool) -> bool:
    """Arithmetic bust check shared by both entry modes.

    A player can never go below zero, and under double-out a single point
    left cannot be finished on a double.
    """
    return remaining < 0 or (double_out and remaining == 1)


def _failure(error: TurnErrorModel, message: str) -> ApplyTurnResult:
    return ApplyTurnResult(success=False, error=error, message=message)


def _next_turn_number(game: GameModel) -> int:
    # History may be a window of a longer game (see DataConverter), so number
    # from the last recorded turn rather than from the history length.
    if not game.turn_history:
        return 1
    return game.turn_history[-1].turn_number + 1


def _commit_turn(game: GameModel, turn: TurnModel) -> GameModel:
    """Append the turn and move the game to its post-turn state."""
    players = tuple(
        PlayerModel(name=player.name, remaining=turn.remaining_after)
        if index == turn.player_index
        else player
        for index, player in enumerate(game.players)
    )

    if turn.is_confirmed_win:
        return game.model_copy(
            update={
                "players": players,
                "turn_history": game.turn_history + (turn,),
                "phase": GamePhase.game_over,
                "winner": WinnerModel(
                    player_index=turn.player_index,
                    player_name=turn.player_name,
                    turns=turn.turn_number,
                ),
            }
        )

    return game.model_copy(
        update={
            "players": players,
            "current_player_index": (game.current_player_index + 1) % len(game.players),
            "turn_history": game.turn_history + (turn,),
            "phase": GamePhase.in_progress,
            "winner": None,
        }
    )


def apply_total_turn(game: GameModel, scored_points: int) -> ApplyTurnResult:
    """Apply one aggregate score for the current player.

    Aggregate mode cannot tell which dart finished the leg, so under
    double-out an exact finish is treated as a bust.

    Args:
        game (GameModel): Current game state
        scored_points (int): Total scored with up to three darts (0-180)

    Returns:
        ApplyTurnResult: The new game on success, an error code otherwise
    """
    if game.phase == GamePhase.game_over:
        return _failure(TurnErrorModel.game_over, "The game is already over")
    if scored_points < 0 or scored_points > MAX_TURN_SCORE:
        return _failure(
            TurnErrorModel.invalid_score, f"Score must be between 0 and {MAX_TURN_SCORE}"
        )

    double_out = game.settings.double_out
    player = game.players[game.current_player_index]
    new_remaining = player.remaining - scored_points

    bust = is_bust(new_remaining, double_out) or (double_out and new_remaining == 0)
    win = not bust and new_remaining == 0

    turn = TurnModel(
        turn_number=_next_turn_number(game),
        player_index=game.current_player_index,
        player_name=player.name,
        darts=(),
        turn_total=scored_points,
        scored_points=0 if bust else scored_points,
        remaining_after=player.remaining if bust else new_remaining,
        is_bust=bust,
        is_confirmed_win=win,
        finish_dart=None,
        previous_remaining=player.remaining,
        previous_player_index=game.current_player_index,
    )
    return ApplyTurnResult(success=True, game=_commit_turn(game, turn))


def apply_dart_turn(game: GameModel, darts: Sequence[DartModel]) -> ApplyTurnResult:
    """Apply up to three darts one by one for the current player.

    Each dart is checked for bust and finish as it lands. Processing stops at
    the first bust or at the winning dart; darts after that point are not
    stored, but still count towards turn_total.

    Args:
        game (GameModel): Current game state
        darts (Sequence[DartModel]): Darts in the order they were thrown

    Returns:
        ApplyTurnResult: The new game on success, an error code otherwise
    """
    if game.phase == GamePhase.game_over:
        return _failure(TurnErrorModel.game_over, "The game is already over")
    if len(darts) == 0:
        return _failure(TurnErrorModel.empty_turn, "Enter at least one dart")
    if len(darts) > MAX_DARTS_PER_TURN:
        return _failure(
            TurnErrorModel.too_many_darts, f"A turn has at most {MAX_DARTS_PER_TURN} darts"
        )

    double_out = game.settings.double_out
    player = game.players[game.current_player_index]
    turn_total = sum(dart.points for dart in darts)

    running = player.remaining
    applied: List[DartModel] = []
    bust = False
    finish_dart = None
    for dart in darts:
        running -= dart.points
        applied.append(dart)
        if is_bust(running, double_out):
            bust = True
            break
        if running == 0:
            if double_out and not dart.is_double_finish:
                bust = True
            else:
                finish_dart = dart.label
            break

    win = finish_dart is not None
    turn = TurnModel(
        turn_number=_next_turn_number(game),
        player_index=game.current_player_index,
        player_name=player.name,
        darts=tuple(applied),
        turn_total=turn_total,
        scored_points=0 if bust else player.remaining - running,
        remaining_after=player.remaining if bust else running,
        is_bust=bust,
        is_confirmed_win=win,
        finish_dart=finish_dart,
        previous_remaining=player.remaining,
        previous_player_index=game.current_player_index,
    )
    return ApplyTurnResult(success=True, game=_commit_turn(game, turn))


def undo_last_turn(game: GameModel) -> GameModel:
    """Remove the most recent turn and restore the state from before it.

    Undo is also the only way out of game-over: the phase always returns to
    in-progress and the winner is cleared.
    """
    if not game.turn_history:
        return game

    last_turn = game.turn_history[-1]
    players = tuple(
        PlayerModel(name=player.name, remaining=last_turn.previous_remaining)
        if index == last_turn.player_index
        else player
        for index, player in enumerate(game.players)
    )
    return game.model_copy(
        update={
            "players": players,
            "current_player_index": last_turn.previous_player_index,
            "turn_history": game.turn_history[:-1],
            "phase": GamePhase.in_progress,
            "winner": None,
        }
    )
