"""Tests for the FastAPI endpoints."""

from concurrent.futures import Future
import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

import api
from xiangqi import Move, Side, BotTask


@pytest.fixture(autouse=True)
def no_rate_limit(monkeypatch):
    monkeypatch.setattr(api, "RATE_LIMIT_MAX_REQUESTS", 10_000)
    api.rate_limit_data.clear()


@pytest.fixture
def client():
    # No context manager: the lifespan would shut down the shared executor
    return TestClient(api.app)


def new_game(client, **kwargs):
    body = {"difficulty": "easy", "depth": 1, "seed": 0}
    body.update(kwargs)
    response = client.post("/api/new-game", json=body)
    assert response.status_code == 200
    return response.json()["game_id"]


class TestNewGame:
    """Test game creation."""

    def test_generated_id(self, client):
        response = client.post("/api/new-game", json={})

        assert response.status_code == 200
        data = response.json()
        assert data["game_id"]
        assert data["difficulty"] == api.DEFAULT_DIFFICULTY

    def test_explicit_id(self, client):
        game_id = new_game(client, game_id="my-game")

        assert game_id == "my-game"
        assert "my-game" in api.games

    def test_unknown_difficulty(self, client):
        response = client.post("/api/new-game", json={"difficulty": "impossible"})

        assert response.status_code == 400

    def test_from_fen(self, client):
        game_id = new_game(client, fen="4k4/9/9/9/9/9/9/9/9/3K5 b")

        board = client.get(f"/api/board/{game_id}").json()
        assert board["side_to_move"] == "black"
        assert board["board"][0][4] == "k"

    def test_from_finished_fen(self, client):
        game_id = new_game(client, fen="4k3R/R8/9/9/9/9/9/9/9/3K5 b")

        board = client.get(f"/api/board/{game_id}").json()
        assert board["game_over"]
        assert board["winner"] == "red"
        assert client.post(f"/api/ai-move/{game_id}").status_code == 400

    def test_bad_fen(self, client):
        response = client.post("/api/new-game", json={"fen": "not a fen"})

        assert response.status_code == 400

    def test_custom_setup(self, client):
        game_id = new_game(client, custom_setup={"e0": "K", "e9": "k", "a0": "R"})

        board = client.get(f"/api/board/{game_id}").json()
        assert board["board"][9][0] == "R"


class TestBoardEndpoints:
    """Test read-only board endpoints."""

    def test_initial_board(self, client):
        game_id = new_game(client)

        response = client.get(f"/api/board/{game_id}")

        assert response.status_code == 200
        board = response.json()
        assert board["board"][9][4] == "K"
        assert board["board"][0][4] == "k"
        assert board["board"][4][4] is None
        assert board["side_to_move"] == "red"
        assert not board["game_over"]
        assert not board["can_undo"]
        assert board["last_move"] is None

    def test_unknown_game(self, client):
        assert client.get("/api/board/nope").status_code == 404

    def test_legal_moves(self, client):
        game_id = new_game(client)

        response = client.get(f"/api/legal-moves/{game_id}", params={"row": 6, "col": 0})

        assert response.status_code == 200
        assert response.json()["moves"] == [{"row": 5, "col": 0}]

    def test_legal_moves_wrong_side(self, client):
        game_id = new_game(client)

        response = client.get(f"/api/legal-moves/{game_id}", params={"row": 3, "col": 0})

        assert response.json()["moves"] == []


class TestMoves:
    """Test making and undoing moves."""

    def test_move_by_coordinates(self, client):
        game_id = new_game(client)

        response = client.post("/api/move", json={
            "game_id": game_id, "from_row": 6, "from_col": 0, "to_row": 5, "to_col": 0,
        })

        assert response.status_code == 200
        data = response.json()
        assert data["move"]["iccs"] == "a3a4"
        assert data["side_to_move"] == "black"

    def test_move_by_squares(self, client):
        game_id = new_game(client)

        response = client.post("/api/move", json={
            "game_id": game_id, "from_square": "h2", "to_square": "e2",
        })

        assert response.status_code == 200
        board = client.get(f"/api/board/{game_id}").json()
        assert board["board"][7][4] == "C"
        assert board["last_move"]["iccs"] == "h2e2"
        assert board["can_undo"]

    def test_illegal_move(self, client):
        game_id = new_game(client)

        response = client.post("/api/move", json={
            "game_id": game_id, "from_row": 6, "from_col": 0, "to_row": 4, "to_col": 0,
        })

        assert response.status_code == 400

    def test_bad_square(self, client):
        game_id = new_game(client)

        response = client.post("/api/move", json={
            "game_id": game_id, "from_square": "z9", "to_square": "a1",
        })

        assert response.status_code == 400

    def test_trailing_square_characters(self, client):
        game_id = new_game(client)

        response = client.post("/api/move", json={
            "game_id": game_id, "from_square": "a3", "to_square": "a4x",
        })

        assert response.status_code == 400
        assert client.get(f"/api/board/{game_id}").json()["move_count"] == 0

    def test_missing_coordinates(self, client):
        game_id = new_game(client)

        response = client.post("/api/move", json={"game_id": game_id, "from_row": 6})

        assert response.status_code == 400

    def test_move_unknown_game(self, client):
        response = client.post("/api/move", json={
            "game_id": "nope", "from_row": 6, "from_col": 0, "to_row": 5, "to_col": 0,
        })

        assert response.status_code == 404

    def test_undo(self, client):
        game_id = new_game(client)
        client.post("/api/move", json={"game_id": game_id, "from_square": "a3", "to_square": "a4"})

        response = client.post(f"/api/undo/{game_id}")

        assert response.status_code == 200
        assert response.json()["side_to_move"] == "red"
        assert client.post(f"/api/undo/{game_id}").status_code == 400

    def test_undo_pair(self, client):
        game_id = new_game(client)
        assert client.post(f"/api/undo-pair/{game_id}").status_code == 400

        client.post("/api/move", json={"game_id": game_id, "from_square": "a3", "to_square": "a4"})
        client.post("/api/move", json={"game_id": game_id, "from_square": "a6", "to_square": "a5"})
        response = client.post(f"/api/undo-pair/{game_id}")

        assert response.status_code == 200
        board = client.get(f"/api/board/{game_id}").json()
        assert board["move_count"] == 0
        assert board["side_to_move"] == "red"


class TestAiMove:
    """Test the bot endpoint."""

    def test_ai_plays_a_move(self, client):
        game_id = new_game(client)

        response = client.post(f"/api/ai-move/{game_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["side_to_move"] == "black"
        assert data["nodes_searched"] > 0
        assert not api.games[game_id].is_processing

    def test_ai_replies_to_player(self, client):
        game_id = new_game(client)
        client.post("/api/move", json={"game_id": game_id, "from_square": "h2", "to_square": "e2"})

        response = client.post(f"/api/ai-move/{game_id}")

        assert response.status_code == 200
        assert response.json()["side_to_move"] == "red"

    def test_already_processing(self, client):
        game_id = new_game(client)
        api.games[game_id].is_processing = True

        response = client.post(f"/api/ai-move/{game_id}")

        assert response.status_code == 409

    def test_stale_result(self, client, monkeypatch):
        """Test a bot move computed for an older position is refused."""
        game_id = new_game(client)
        session = api.games[game_id]

        def outdated_search(game, executor=None):
            future = Future()
            future.set_result(Move(6, 0, 5, 0))
            return BotTask(future, Side.RED, game.ply + 1, "outdated")

        monkeypatch.setattr(session.engine, "search_async", outdated_search)

        response = client.post(f"/api/ai-move/{game_id}")

        assert response.status_code == 409
        assert session.game.ply == 0
        assert not session.is_processing

    def test_game_over(self, client):
        game_id = new_game(client, custom_setup={"e9": "k", "d0": "K", "a8": "R", "i4": "R"})
        client.post("/api/move", json={
            "game_id": game_id, "from_row": 5, "from_col": 8, "to_row": 0, "to_col": 8,
        })

        board = client.get(f"/api/board/{game_id}").json()
        assert board["game_over"]
        assert board["winner"] == "red"
        assert board["lose_reason"] == "checkmate"
        assert client.post(f"/api/ai-move/{game_id}").status_code == 400


class TestSaveLoad:
    """Test saving and restoring games."""

    def test_save_and_load(self, client):
        game_id = new_game(client)
        client.post("/api/move", json={"game_id": game_id, "from_square": "h2", "to_square": "e2"})

        saved = client.get(f"/api/save/{game_id}").json()
        response = client.post("/api/load", json={"snapshot": saved["snapshot"]})

        assert response.status_code == 200
        data = response.json()
        assert data["restored"]
        assert data["side_to_move"] == "black"
        original = client.get(f"/api/board/{game_id}").json()
        restored = client.get(f"/api/board/{data['game_id']}").json()
        assert restored["board"] == original["board"]
        assert restored["move_count"] == 1

    def test_load_garbage_starts_fresh(self, client):
        response = client.post("/api/load", json={"snapshot": {"board": "nope"}})

        assert response.status_code == 200
        data = response.json()
        assert not data["restored"]
        assert data["side_to_move"] == "red"

    def test_save_unknown_game(self, client):
        assert client.get("/api/save/nope").status_code == 404


class TestRateLimit:
    """Test request throttling."""

    def test_too_many_requests(self, client, monkeypatch):
        monkeypatch.setattr(api, "RATE_LIMIT_MAX_REQUESTS", 2)
        game_id = new_game(client)

        assert client.get(f"/api/board/{game_id}").status_code == 200
        assert client.get(f"/api/board/{game_id}").status_code == 429


class TestMultiplayerEndpoints:
    """Test multiplayer REST and WebSocket endpoints."""

    def test_generate_player_id(self, client):
        first = client.post("/api/multiplayer/generate-player-id").json()["player_id"]
        second = client.post("/api/multiplayer/generate-player-id").json()["player_id"]

        assert first != second

    def test_unknown_room(self, client):
        assert client.get("/api/multiplayer/room/abcdef").status_code == 404

    def test_stale_rooms_removed_on_connect(self, client, monkeypatch):
        """Test a new connection sweeps rooms left waiting too long."""
        monkeypatch.setattr(api, "ROOM_MAX_IDLE_TIME", -1)

        with client.websocket_connect("/ws/multiplayer/ws-host") as host:
            host.send_json({"type": "create_room"})
            room_id = host.receive_json()["room_id"]

            with client.websocket_connect("/ws/multiplayer/ws-late") as late:
                late.send_json({"type": "ping"})
                assert late.receive_json()["type"] == "pong"

                assert client.get(f"/api/multiplayer/room/{room_id}").status_code == 404

    def test_websocket_game(self, client):
        with client.websocket_connect("/ws/multiplayer/ws-red") as red:
            red.send_json({"type": "create_room", "nickname": "Red"})
            created = red.receive_json()
            assert created["type"] == "room_created"
            room_id = created["room_id"]

            info = client.get(f"/api/multiplayer/room/{room_id}").json()
            assert info["room"]["status"] == "waiting"

            with client.websocket_connect("/ws/multiplayer/ws-black") as black:
                black.send_json({"type": "join_room", "room_id": room_id, "nickname": "Black"})
                assert black.receive_json()["type"] == "game_start"
                assert red.receive_json()["type"] == "game_start"

                red.send_json({
                    "type": "make_move",
                    "from_row": 6, "from_col": 0, "to_row": 5, "to_col": 0,
                })
                relayed = black.receive_json()
                assert relayed["type"] == "opponent_move"
                assert relayed["to_row"] == 5

                black.send_text("not json")
                assert black.receive_json()["type"] == "error"

                black.send_json({"type": "ping"})
                assert black.receive_json()["type"] == "pong"

            assert red.receive_json()["type"] == "opponent_disconnect"
