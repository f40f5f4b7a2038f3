import logging
from typing import Dict, List
from uuid import UUID

from dartscore.models.dc_models import (
    DartModel,
    GameModel,
    GamePhase,
    GameSettingsModel,
    PlayerModel,
    TurnModel,
    WinnerModel,
)
from dartscore.models.schema_models import (
    DartSchema,
    GameSchema,
    GameSnapshotSchema,
    GameStatusModel,
    PlayerSchema,
    SnapshotGameSchema,
    SnapshotPlayerSchema,
    SnapshotTurnSchema,
    TurnInputSchema,
    TurnSchema,
)


class DataConverter:
    """This class is used to convert data between the backend rows, the wire snapshot and the local game."""

    def convert_rows_to_snapshot(
        self, game: GameSchema, players: List[PlayerSchema], turns: List[TurnSchema]
    ) -> GameSnapshotSchema:
        """Build the canonical snapshot sent to every device

        Args:
            game (GameSchema): The game row
            players (List[PlayerSchema]): Players of the game in seat order
            turns (List[TurnSchema]): The most recent turns, oldest first

        Returns:
            GameSnapshotSchema: Authoritative state of the game
        """
        return GameSnapshotSchema(
            game=SnapshotGameSchema(
                id=game.game_id,
                mode=game.mode,
                double_out=game.double_out,
                status=game.status,
                current_player_id=game.current_player_id,
                room_id=game.room_id,
                started_at=game.started_at,
                finished_at=game.finished_at,
                winner_player_id=game.winner_player_id,
            ),
            players=[
                SnapshotPlayerSchema(
                    id=player.player_id,
                    name=player.display_name,
                    displayName=player.display_name,
                    userId=player.user_id,
                    remaining=player.remaining,
                    seat_order=player.seat_order,
                )
                for player in players
            ],
            last_turns=[
                SnapshotTurnSchema(
                    id=turn.turn_id,
                    turn_index=turn.turn_index,
                    player_id=turn.player_id,
                    scored_total=turn.scored_total,
                    turn_total=turn.turn_total,
                    is_bust=turn.is_bust,
                    is_win=turn.is_win,
                    remaining_before=turn.remaining_before,
                    remaining_after=turn.remaining_after,
                    darts=turn.darts,
                    finish_dart=turn.finish_dart,
                )
                for turn in turns
            ],
        )

    def convert_snapshot_to_game(self, snapshot: GameSnapshotSchema) -> GameModel | None:
        """Project an authoritative snapshot onto a local game value.

        The turn history only covers the snapshot's window of recent turns.
        Returns None while the game has no players yet.
        """
        players = sorted(snapshot.players, key=lambda p: p.seat_order)
        if not players:
            return None

        index_by_id: Dict[UUID, int] = {player.id: i for i, player in enumerate(players)}
        names = [player.displayName or player.name for player in players]
        settings = GameSettingsModel(
            starting_score=snapshot.game.mode,
            double_out=snapshot.game.double_out,
            players=tuple(names),
        )

        turn_history = []
        for turn in sorted(snapshot.last_turns, key=lambda t: t.turn_index):
            player_index = index_by_id.get(turn.player_id)
            if player_index is None:
                logging.warning(f"Skipping turn {turn.turn_index} of unknown player {turn.player_id}")
                continue
            turn_history.append(
                TurnModel(
                    turn_number=turn.turn_index + 1,
                    player_index=player_index,
                    player_name=names[player_index],
                    darts=tuple(DartModel(mult=d.mult, value=d.value) for d in turn.darts or []),
                    turn_total=turn.turn_total,
                    scored_points=turn.scored_total,
                    remaining_after=turn.remaining_after,
                    is_bust=turn.is_bust,
                    is_confirmed_win=turn.is_win,
                    finish_dart=turn.finish_dart,
                    previous_remaining=turn.remaining_before,
                    # A turn is always thrown by the player whose turn it was
                    previous_player_index=player_index,
                )
            )

        winner = None
        winner_id = snapshot.game.winner_player_id
        if snapshot.game.status == GameStatusModel.completed and winner_id in index_by_id:
            winner_index = index_by_id[winner_id]
            winning_turns = [
                t for t in turn_history if t.is_confirmed_win and t.player_index == winner_index
            ]
            last_turn_number = turn_history[-1].turn_number if turn_history else 0
            winner = WinnerModel(
                player_index=winner_index,
                player_name=names[winner_index],
                turns=winning_turns[-1].turn_number if winning_turns else last_turn_number,
            )

        current_index = index_by_id.get(snapshot.game.current_player_id, 0)
        if winner is not None:
            current_index = winner.player_index

        return GameModel(
            settings=settings,
            players=tuple(PlayerModel(name=names[i], remaining=p.remaining) for i, p in enumerate(players)),
            current_player_index=current_index,
            turn_history=tuple(turn_history),
            phase=GamePhase.game_over if winner is not None else GamePhase.in_progress,
            winner=winner,
        )

    def convert_turn_to_turn_input(self, turn: TurnModel, player_id: UUID) -> TurnInputSchema:
        """Convert an engine turn into the payload stored by the backend"""
        return TurnInputSchema(
            player_id=player_id,
            turn_index=turn.turn_number - 1,
            scored_total=turn.scored_points,
            turn_total=turn.turn_total,
            is_bust=turn.is_bust,
            is_win=turn.is_confirmed_win,
            remaining_before=turn.previous_remaining,
            remaining_after=turn.remaining_after,
            darts=[DartSchema(mult=d.mult, value=d.value) for d in turn.darts],
            finish_dart=turn.finish_dart,
        )
