"""Per-player statistics derived from a game's turn history."""

from typing import Dict, List

import numpy as np

from dartscore.models.dc_models import GameModel, PlayerStatsModel, TurnModel

FIRST_NINE_TURNS = 3
MAX_TURN_TOTAL = 180
# Highest score that can be checked out with three darts
MAX_CHECKOUT = 170


def _average(turns: List[TurnModel]) -> float:
    return float(np.mean([turn.scored_points for turn in turns]))


def is_checkout_attempt(turn: TurnModel) -> bool:
    """Heuristic: the player started the turn on a finishable score.

    Confirmed wins always count. Otherwise the pre-turn remaining must be in
    (1, 170] and the turn must not have scored exactly the remaining.
    """
    if turn.is_confirmed_win:
        return True
    had_finishable_score = 1 < turn.previous_remaining <= MAX_CHECKOUT
    return had_finishable_score and turn.previous_remaining - turn.scored_points != 0


def compute_stats(game: GameModel) -> List[PlayerStatsModel]:
    """Compute per-player statistics from the game state

    Args:
        game (GameModel): Current game state

    Returns:
        List[PlayerStatsModel]: One entry per player, in seat order
    """
    turns_by_player: Dict[int, List[TurnModel]] = {
        index: [] for index in range(len(game.players))
    }
    for turn in game.turn_history:
        turns_by_player[turn.player_index].append(turn)

    stats_list: List[PlayerStatsModel] = []
    for index, player in enumerate(game.players):
        turns = turns_by_player[index]
        if not turns:
            stats_list.append(
                PlayerStatsModel(
                    player_name=player.name,
                    player_index=index,
                    checkout_percentage=0.0 if game.settings.double_out else None,
                )
            )
            continue

        checkout_percentage = None
        if game.settings.double_out:
            attempts = [turn for turn in turns if is_checkout_attempt(turn)]
            successes = [turn for turn in turns if turn.is_confirmed_win]
            checkout_percentage = (
                len(successes) / len(attempts) * 100 if attempts else 0.0
            )

        stats_list.append(
            PlayerStatsModel(
                player_name=player.name,
                player_index=index,
                average=_average(turns),
                first_nine_average=_average(turns[:FIRST_NINE_TURNS]),
                count_180s=sum(
                    1 for turn in turns if turn.turn_total == MAX_TURN_TOTAL and not turn.is_bust
                ),
                checkout_percentage=checkout_percentage,
                busts=sum(1 for turn in turns if turn.is_bust),
            )
        )
    return stats_list
