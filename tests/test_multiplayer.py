"""Unit tests for the multiplayer relay."""

import asyncio
import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from xiangqi import Side, ConnectionManager, RoomStatus
from xiangqi.multiplayer import ALLOWED_EMOTES


class FakeWebSocket:
    """Records everything the server sends."""

    def __init__(self):
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        self.sent.append(message)

    def types(self):
        return [m["type"] for m in self.sent]

    def last(self):
        return self.sent[-1]


class BrokenWebSocket(FakeWebSocket):
    async def send_json(self, message):
        raise RuntimeError("connection closed")


async def connect(manager, player_id, websocket=None):
    websocket = websocket or FakeWebSocket()
    await manager.connect(websocket, player_id)
    return websocket


async def start_game(manager):
    """Connect two players and seat them. Returns (red_ws, black_ws, room_id)."""
    red = await connect(manager, "alice")
    black = await connect(manager, "bob")
    await manager.handle_message("alice", {"type": "create_room", "nickname": "Alice"})
    room_id = red.last()["room_id"]
    await manager.handle_message("bob", {"type": "join_room", "room_id": room_id, "nickname": "Bob"})
    return red, black, room_id


def move_message(from_row, from_col, to_row, to_col):
    return {
        "type": "make_move",
        "from_row": from_row,
        "from_col": from_col,
        "to_row": to_row,
        "to_col": to_col,
    }


class TestRooms:
    """Test room creation and joining."""

    def test_connect_accepts(self):
        async def scenario():
            manager = ConnectionManager()
            ws = await connect(manager, "alice")
            return ws, manager

        ws, manager = asyncio.run(scenario())

        assert ws.accepted
        assert "alice" in manager.active_connections

    def test_create_room(self):
        """Test the creator gets a 6-hex room id and plays red."""
        async def scenario():
            manager = ConnectionManager()
            ws = await connect(manager, "alice")
            await manager.handle_message("alice", {"type": "create_room"})
            return ws, manager

        ws, manager = asyncio.run(scenario())

        message = ws.last()
        assert message["type"] == "room_created"
        assert message["your_side"] == "red"
        assert len(message["room_id"]) == 6
        int(message["room_id"], 16)
        room = manager.room_manager.get_room(message["room_id"])
        assert room.status == RoomStatus.WAITING
        assert room.players["alice"].nickname == "Anonymous"

    def test_join_starts_game(self):
        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            return red, black, room_id, manager

        red, black, room_id, manager = asyncio.run(scenario())

        for ws in (red, black):
            start = ws.last()
            assert start["type"] == "game_start"
            assert start["red"] == "alice"
            assert start["black"] == "bob"
            assert start["red_name"] == "Alice"
            assert start["black_name"] == "Bob"
        room = manager.room_manager.get_room(room_id)
        assert room.status == RoomStatus.PLAYING
        assert room.players["bob"].side == Side.BLACK

    def test_join_unknown_room(self):
        async def scenario():
            manager = ConnectionManager()
            ws = await connect(manager, "bob")
            await manager.handle_message("bob", {"type": "join_room", "room_id": "ffffff"})
            return ws

        ws = asyncio.run(scenario())

        assert ws.last()["type"] == "join_error"
        assert "not found" in ws.last()["message"]

    def test_join_own_room(self):
        async def scenario():
            manager = ConnectionManager()
            ws = await connect(manager, "alice")
            await manager.handle_message("alice", {"type": "create_room"})
            room_id = ws.last()["room_id"]
            await manager.handle_message("alice", {"type": "join_room", "room_id": room_id})
            return ws

        ws = asyncio.run(scenario())

        assert ws.last()["type"] == "join_error"
        assert "own room" in ws.last()["message"]

    def test_join_full_room(self):
        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            carol = await connect(manager, "carol")
            await manager.handle_message("carol", {"type": "join_room", "room_id": room_id})
            return carol

        carol = asyncio.run(scenario())

        assert carol.last()["type"] == "join_error"
        assert "full" in carol.last()["message"]

    def test_host_cannot_join_second_room(self):
        """Test a player seated in one room is kept out of every other room."""
        async def scenario():
            manager = ConnectionManager()
            alice = await connect(manager, "alice")
            bob = await connect(manager, "bob")
            carol = await connect(manager, "carol")
            await manager.handle_message("alice", {"type": "create_room"})
            first = alice.last()["room_id"]
            await manager.handle_message("bob", {"type": "create_room"})
            second = bob.last()["room_id"]

            await manager.handle_message("alice", {"type": "join_room", "room_id": second})
            rejected = alice.last()
            await manager.handle_message("carol", {"type": "join_room", "room_id": first})
            await manager.handle_message("carol", move_message(3, 0, 4, 0))
            return alice, bob, rejected, first, second, manager

        alice, bob, rejected, first, second, manager = asyncio.run(scenario())

        assert rejected["type"] == "join_error"
        assert "already" in rejected["message"]
        assert alice.types() == ["room_created", "join_error", "game_start", "opponent_move"]
        assert bob.types() == ["room_created"]
        assert manager.room_manager.get_player_room("alice").room_id == first
        assert manager.room_manager.get_room(second).status == RoomStatus.WAITING
        assert "alice" not in manager.room_manager.get_room(second).players

    def test_create_again_replaces_room(self):
        async def scenario():
            manager = ConnectionManager()
            ws = await connect(manager, "alice")
            await manager.handle_message("alice", {"type": "create_room"})
            await manager.handle_message("alice", {"type": "create_room"})
            return manager

        manager = asyncio.run(scenario())

        assert len(manager.room_manager.rooms) == 1


class TestMoveRelay:
    """Test move relaying."""

    def test_move_goes_to_opponent_only(self):
        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            red_count = len(red.sent)
            await manager.handle_message("alice", move_message(6, 0, 5, 0))
            return red, black, red_count, manager.room_manager.get_room(room_id)

        red, black, red_count, room = asyncio.run(scenario())

        assert len(red.sent) == red_count
        assert black.last() == {
            "type": "opponent_move", "from_row": 6, "from_col": 0, "to_row": 5, "to_col": 0,
        }
        assert room.moves == [
            {"from_row": 6, "from_col": 0, "to_row": 5, "to_col": 0, "side": "red"}
        ]

    def test_moves_keep_order(self):
        """Test concurrent submissions arrive in submission order."""
        moves = [(6, 0, 5, 0), (3, 0, 4, 0), (6, 2, 5, 2), (3, 2, 4, 2)]

        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            await asyncio.gather(*[
                manager.handle_message("alice", move_message(*m)) for m in moves
            ])
            return black

        black = asyncio.run(scenario())

        relayed = [
            (m["from_row"], m["from_col"], m["to_row"], m["to_col"])
            for m in black.sent if m["type"] == "opponent_move"
        ]
        assert relayed == moves

    def test_invalid_move_payload(self):
        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            black_count = len(black.sent)
            await manager.handle_message("alice", move_message(6, 0, 12, 0))
            await manager.handle_message("alice", {"type": "make_move", "from_row": "x"})
            return red, black, black_count

        red, black, black_count = asyncio.run(scenario())

        assert red.types()[-2:] == ["error", "error"]
        assert len(black.sent) == black_count

    def test_move_before_game_starts(self):
        async def scenario():
            manager = ConnectionManager()
            ws = await connect(manager, "alice")
            await manager.handle_message("alice", {"type": "create_room"})
            await manager.handle_message("alice", move_message(6, 0, 5, 0))
            return ws

        ws = asyncio.run(scenario())

        assert ws.last()["type"] == "error"


class TestEmotesAndRestart:
    """Test emotes and restart negotiation."""

    def test_allowed_emote(self):
        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            await manager.handle_message("bob", {"type": "send_emote", "emote": ALLOWED_EMOTES[0]})
            return red

        red = asyncio.run(scenario())

        assert red.last() == {"type": "opponent_emote", "emote": ALLOWED_EMOTES[0], "from": "black"}

    def test_disallowed_emote_dropped(self):
        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            count = len(red.sent)
            await manager.handle_message("bob", {"type": "send_emote", "emote": "<script>"})
            return red, count

        red, count = asyncio.run(scenario())

        assert len(red.sent) == count

    def test_restart_accepted(self):
        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            await manager.handle_message("alice", move_message(6, 0, 5, 0))
            await manager.handle_message("alice", {"type": "request_restart"})
            request = black.last()
            await manager.handle_message("bob", {"type": "accept_restart"})
            return red, black, request, manager.room_manager.get_room(room_id)

        red, black, request, room = asyncio.run(scenario())

        assert request == {"type": "restart_request", "from": "red"}
        assert red.last()["type"] == "game_restart"
        assert black.last()["type"] == "game_restart"
        assert room.moves == []

    def test_restart_declined(self):
        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            await manager.handle_message("alice", {"type": "request_restart"})
            await manager.handle_message("bob", {"type": "decline_restart"})
            return red

        red = asyncio.run(scenario())

        assert red.last()["type"] == "restart_declined"


class TestDisconnect:
    """Test leaving and disconnecting."""

    def test_disconnect_notifies_opponent_once(self):
        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            await asyncio.gather(manager.disconnect("alice"), manager.disconnect("bob"))
            await manager.disconnect("alice")
            return red, black, room_id, manager

        red, black, room_id, manager = asyncio.run(scenario())

        notices = black.types().count("opponent_disconnect") + red.types().count("opponent_disconnect")
        assert notices <= 1
        assert manager.room_manager.get_room(room_id) is None
        assert manager.room_manager.player_to_room == {}

    def test_disconnect_deletes_room(self):
        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            await manager.disconnect("alice")
            await manager.disconnect("alice")
            return black, room_id, manager

        black, room_id, manager = asyncio.run(scenario())

        assert black.types().count("opponent_disconnect") == 1
        assert manager.room_manager.get_room(room_id) is None
        assert manager.room_manager.get_player_room("bob") is None
        assert "alice" not in manager.active_connections

    def test_leave_room(self):
        async def scenario():
            manager = ConnectionManager()
            red, black, room_id = await start_game(manager)
            await manager.handle_message("bob", {"type": "leave_room"})
            return red, black, room_id, manager

        red, black, room_id, manager = asyncio.run(scenario())

        assert black.last()["type"] == "room_left"
        assert red.last()["type"] == "opponent_disconnect"
        assert manager.room_manager.get_room(room_id) is None

    def test_host_leaves_waiting_room(self):
        async def scenario():
            manager = ConnectionManager()
            ws = await connect(manager, "alice")
            await manager.handle_message("alice", {"type": "create_room"})
            room_id = ws.last()["room_id"]
            await manager.disconnect("alice")
            return room_id, manager

        room_id, manager = asyncio.run(scenario())

        assert manager.room_manager.get_room(room_id) is None

    def test_send_failure_is_reported(self):
        async def scenario():
            manager = ConnectionManager()
            await connect(manager, "alice", BrokenWebSocket())
            return await manager.send_personal("alice", {"type": "pong"})

        assert asyncio.run(scenario()) is False


class TestMisc:
    """Test keep-alive and unknown messages."""

    def test_ping(self):
        async def scenario():
            manager = ConnectionManager()
            ws = await connect(manager, "alice")
            await manager.handle_message("alice", {"type": "ping"})
            return ws

        ws = asyncio.run(scenario())

        assert ws.last()["type"] == "pong"

    @pytest.mark.parametrize("data", [{"type": "launch_missiles"}, {}, ["ping"]])
    def test_unknown_message(self, data):
        async def scenario():
            manager = ConnectionManager()
            ws = await connect(manager, "alice")
            await manager.handle_message("alice", data)
            return ws

        ws = asyncio.run(scenario())

        assert ws.last()["type"] == "error"

    def test_cleanup_stale_rooms(self):
        async def scenario():
            manager = ConnectionManager()
            ws = await connect(manager, "alice")
            await manager.handle_message("alice", {"type": "create_room"})
            removed = await manager.room_manager.cleanup_stale_rooms(max_idle_seconds=-1)
            return removed, manager

        removed, manager = asyncio.run(scenario())

        assert removed == 1
        assert manager.room_manager.rooms == {}
