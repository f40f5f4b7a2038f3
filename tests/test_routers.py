import json
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from dartscore.main import app
from dartscore.routers.game import get_game_service


@pytest.fixture()
def client(service):
    app.dependency_overrides[get_game_service] = lambda: service
    # No context manager: the lifespan would touch the configured database
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_room(client):
    res = client.post("/rooms", json={"host_id": "host"})
    assert res.status_code == 201
    return res.json()


def create_game(client, room, players=("Ann", "Bob"), mode=501):
    headers = {"X-ADMIN-TOKEN": room["admin_token"]}
    res = client.post(f"/rooms/{room['code']}/games", json={"mode": mode, "double_out": False}, headers=headers)
    assert res.status_code == 201
    game = res.json()
    player_list = []
    for name in players:
        res = client.post(f"/games/{game['game_id']}/players", json={"display_name": name}, headers=headers)
        assert res.status_code == 201
        player_list.append(res.json())
    return game, player_list, headers


def turn_body(player, turn_index, before, scored):
    return {
        "player_id": player["player_id"],
        "turn_index": turn_index,
        "scored_total": scored,
        "turn_total": scored,
        "is_bust": False,
        "is_win": before == scored,
        "remaining_before": before,
        "remaining_after": before - scored,
        "darts": [],
    }


def test_create_and_read_room(client):
    room = create_room(client)
    assert len(room["code"]) == 6
    assert len(room["admin_token"]) == 32

    res = client.get(f"/rooms/{room['code']}")
    assert res.status_code == 200
    body = res.json()
    assert body["code"] == room["code"]
    assert body["status"] == "open"
    assert "admin_token_hash" not in body
    assert "salt" not in body

    assert client.get("/rooms/NOPE22").status_code == 404


def test_mutations_need_the_room_token(client):
    room = create_room(client)
    url = f"/rooms/{room['code']}/games"
    assert client.post(url, json={"mode": 501}).status_code == 401
    assert client.post(url, json={"mode": 501}, headers={"X-ADMIN-TOKEN": "wrong"}).status_code == 403
    res = client.post(url, json={"mode": 401}, headers={"X-ADMIN-TOKEN": room["admin_token"]})
    assert res.status_code == 409


def test_turn_flow(client, fake_redis):
    room = create_room(client)
    game, (ann, bob), headers = create_game(client, room)
    game_id = game["game_id"]
    fake_redis.published.clear()

    res = client.post(f"/games/{game_id}/turns", json=turn_body(ann, 0, 501, 100), headers=headers)
    assert res.status_code == 201
    assert res.json()["turn_index"] == 0

    published = [(channel, json.loads(message)["type"]) for channel, message in fake_redis.published]
    assert published == [(f"game:{game_id}", "TURN_ADDED"), (f"game:{game_id}", "GAME_SNAPSHOT")]

    res = client.post(f"/games/{game_id}/turns", json=turn_body(bob, 0, 501, 100), headers=headers)
    assert res.status_code == 409

    snapshot = client.get(f"/games/{game_id}/snapshot").json()
    assert snapshot["game"]["status"] == "active"
    assert snapshot["game"]["current_player_id"] == bob["player_id"]
    assert [p["remaining"] for p in snapshot["players"]] == [401, 501]
    assert [p["displayName"] for p in snapshot["players"]] == ["Ann", "Bob"]
    assert len(snapshot["last_turns"]) == 1

    turns = client.get(f"/games/{game_id}/turns", params={"limit": 5}).json()
    assert [t["scored_total"] for t in turns] == [100]

    res = client.delete(f"/games/{game_id}/turns/last", headers=headers)
    assert res.status_code == 200
    assert res.json()["turn_index"] == 0
    snapshot = client.get(f"/games/{game_id}/snapshot").json()
    assert [p["remaining"] for p in snapshot["players"]] == [501, 501]
    assert snapshot["game"]["current_player_id"] == ann["player_id"]


def test_games_of_a_room(client):
    room = create_room(client)
    game, _, _ = create_game(client, room)
    games = client.get(f"/rooms/{room['code']}/games").json()
    assert [g["game_id"] for g in games] == [game["game_id"]]
    assert client.get(f"/games/{game['game_id']}").json()["mode"] == 501
    assert client.get(f"/games/{uuid4()}").status_code == 404
    assert client.get(f"/games/{uuid4()}/snapshot").status_code == 404


def test_players_remaining_and_status(client):
    room = create_room(client)
    game, (ann, bob), headers = create_game(client, room)

    res = client.put(f"/players/{bob['player_id']}/remaining", json={"remaining": 120}, headers=headers)
    assert res.status_code == 200
    assert res.json()["remaining"] == 120
    assert client.put(f"/players/{bob['player_id']}/remaining", json={"remaining": 120}).status_code == 401

    players = client.get(f"/games/{game['game_id']}/players").json()
    assert [p["remaining"] for p in players] == [501, 120]

    res = client.put(
        f"/games/{game['game_id']}/status",
        json={"status": "completed", "winner_player_id": ann["player_id"]},
        headers=headers,
    )
    assert res.status_code == 200
    assert res.json()["winner_player_id"] == ann["player_id"]


def test_stats(client):
    room = create_room(client)
    game, (ann, bob), headers = create_game(client, room, mode=301)
    game_id = game["game_id"]
    for index, (player, before, scored) in enumerate(
        [(ann, 301, 180), (bob, 301, 60), (ann, 121, 81), (bob, 241, 60)]
    ):
        res = client.post(f"/games/{game_id}/turns", json=turn_body(player, index, before, scored), headers=headers)
        assert res.status_code == 201

    stats = client.get(f"/games/{game_id}/stats").json()
    assert [s["player_name"] for s in stats] == ["Ann", "Bob"]
    assert stats[0]["average"] == pytest.approx(130.5)
    assert stats[0]["count_180s"] == 1
    assert stats[1]["average"] == pytest.approx(60.0)
    assert stats[0]["checkout_percentage"] is None
