from uuid import uuid4

from dartscore.converter import DataConverter
from dartscore.models.dc_models import GamePhase
from dartscore.models.schema_models import GameSnapshotSchema

data_converter = DataConverter()


def make_snapshot(status="active", winner=None, current=None, turns=()):
    ann, bob = uuid4(), uuid4()
    ids = {"ann": ann, "bob": bob}
    return ids, GameSnapshotSchema.model_validate(
        {
            "game": {
                "id": str(uuid4()),
                "mode": 301,
                "double_out": True,
                "status": status,
                "current_player_id": str(ids[current]) if current else None,
                "winner_player_id": str(ids[winner]) if winner else None,
            },
            # Deliberately out of seat order
            "players": [
                {"id": str(bob), "name": "bob", "displayName": "Bob", "remaining": 200, "seat_order": 1},
                {"id": str(ann), "name": "ann", "remaining": 40, "seat_order": 0},
            ],
            "last_turns": [
                {
                    "id": str(uuid4()),
                    "turn_index": index,
                    "player_id": str(ids[who]),
                    "scored_total": scored,
                    "turn_total": scored,
                    "is_bust": False,
                    "is_win": win,
                    "remaining_before": before,
                    "remaining_after": before - scored,
                    "darts": [{"mult": "D", "value": 20}] if win else [],
                    "finish_dart": "D20" if win else None,
                }
                for index, who, before, scored, win in turns
            ],
        }
    )


def test_players_follow_seat_order_and_display_name():
    _, snapshot = make_snapshot(current="bob")
    game = data_converter.convert_snapshot_to_game(snapshot)
    assert [p.name for p in game.players] == ["ann", "Bob"]
    assert [p.remaining for p in game.players] == [40, 200]
    assert game.settings.starting_score == 301
    assert game.settings.double_out
    assert game.current_player_index == 1
    assert game.phase == GamePhase.in_progress


def test_completed_snapshot_has_a_winner():
    turns = [(6, "bob", 301, 101, False), (7, "ann", 40, 40, True)]
    _, snapshot = make_snapshot(status="completed", winner="ann", turns=turns)
    game = data_converter.convert_snapshot_to_game(snapshot)
    assert game.phase == GamePhase.game_over
    assert game.winner.player_name == "ann"
    assert game.winner.turns == 8
    assert game.current_player_index == 0
    assert [t.turn_number for t in game.turn_history] == [7, 8]
    assert game.last_turn.finish_dart == "D20"


def test_completed_without_winner_stays_in_progress():
    _, snapshot = make_snapshot(status="completed")
    game = data_converter.convert_snapshot_to_game(snapshot)
    assert game.phase == GamePhase.in_progress
    assert game.winner is None


def test_snapshot_without_players():
    _, snapshot = make_snapshot()
    snapshot = snapshot.model_copy(update={"players": []})
    assert data_converter.convert_snapshot_to_game(snapshot) is None


def test_turn_input_uses_zero_based_index():
    turns = [(0, "ann", 301, 60, False)]
    ids, snapshot = make_snapshot(turns=turns)
    game = data_converter.convert_snapshot_to_game(snapshot)
    turn_input = data_converter.convert_turn_to_turn_input(game.last_turn, ids["ann"])
    assert turn_input.turn_index == 0
    assert turn_input.remaining_before == 301
    assert turn_input.remaining_after == 241


def test_turn_of_an_unknown_player_is_skipped():
    turns = [(0, "ann", 301, 60, False), (1, "bob", 301, 45, False)]
    _, snapshot = make_snapshot(turns=turns)
    stray = snapshot.last_turns[1].model_copy(update={"player_id": uuid4()})
    snapshot = snapshot.model_copy(update={"last_turns": [snapshot.last_turns[0], stray]})

    game = data_converter.convert_snapshot_to_game(snapshot)
    assert [t.turn_number for t in game.turn_history] == [1]
    assert game.last_turn.player_name == "ann"
