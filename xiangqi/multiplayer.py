"""WebSocket-based multiplayer relay for Xiangqi.

Pairs two players in a room and relays moves between them. The server keeps
the move list for the room but does not check legality; each client validates
moves locally.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from time import time

from fastapi import WebSocket
from pydantic import BaseModel, Field, ValidationError

from .board import Side

logger = logging.getLogger(__name__)

ALLOWED_EMOTES = ["👋", "😊", "😂", "🤔", "👍", "👎", "😤", "😡", "🎉", "💪"]
DEFAULT_NICKNAME = "Anonymous"


class RoomStatus(Enum):
    """Room status states."""
    WAITING = "waiting"        # Waiting for second player
    PLAYING = "playing"        # Game in progress


class RelayMove(BaseModel):
    """Move payload relayed between players."""
    from_row: int = Field(ge=0, le=9)
    from_col: int = Field(ge=0, le=8)
    to_row: int = Field(ge=0, le=9)
    to_col: int = Field(ge=0, le=8)


@dataclass
class Player:
    """Represents a connected player."""
    player_id: str
    nickname: str
    websocket: WebSocket
    side: Optional[Side] = None
    connected_at: float = field(default_factory=time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (without websocket)."""
        return {
            "player_id": self.player_id,
            "nickname": self.nickname,
            "side": self.side.value if self.side else None,
        }


@dataclass
class GameRoom:
    """Represents a multiplayer game room."""
    room_id: str
    created_at: float = field(default_factory=time)
    status: RoomStatus = RoomStatus.WAITING
    players: Dict[str, Player] = field(default_factory=dict)  # player_id -> Player
    host_id: Optional[str] = None
    moves: List[Dict[str, Any]] = field(default_factory=list)
    # Serializes move relay so both clients see moves in submission order
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def get_player_by_side(self, side: Side) -> Optional[Player]:
        """Get player by their side."""
        for player in self.players.values():
            if player.side == side:
                return player
        return None

    def get_opponent(self, player_id: str) -> Optional[Player]:
        """Get the opponent of a player."""
        player = self.players.get(player_id)
        if not player or not player.side:
            return None
        return self.get_player_by_side(player.side.opponent)

    def is_full(self) -> bool:
        """Check if room has two players."""
        return len(self.players) >= 2

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "room_id": self.room_id,
            "status": self.status.value,
            "players": {pid: p.to_dict() for pid, p in self.players.items()},
            "host_id": self.host_id,
            "move_count": len(self.moves),
        }


class RoomManager:
    """Manages multiplayer game rooms."""

    def __init__(self):
        self.rooms: Dict[str, GameRoom] = {}
        self.player_to_room: Dict[str, str] = {}  # player_id -> room_id
        self._lock = asyncio.Lock()

    def _new_room_id(self) -> str:
        room_id = secrets.token_hex(3)
        while room_id in self.rooms:
            room_id = secrets.token_hex(3)
        return room_id

    async def create_room(self, host: Player) -> GameRoom:
        """Create a new game room. The host plays red."""
        async with self._lock:
            room = GameRoom(room_id=self._new_room_id(), host_id=host.player_id)
            host.side = Side.RED
            room.players[host.player_id] = host

            self.rooms[room.room_id] = room
            self.player_to_room[host.player_id] = room.room_id
            logger.info("Room %s created by %s", room.room_id, host.nickname)
            return room

    async def join_room(self, room_id: str, player: Player) -> Tuple[Optional[GameRoom], Optional[str]]:
        """Join an existing room as black.

        Returns (room, None) on success or (None, error message).
        """
        async with self._lock:
            room = self.rooms.get(room_id)

            if not room:
                return None, "Room not found. Check the code and try again."
            if player.player_id in room.players:
                return None, "You cannot join your own room."
            if player.player_id in self.player_to_room:
                return None, "You are already in another room. Leave it first."
            if room.is_full() or room.status != RoomStatus.WAITING:
                return None, "Room is full. The game has already started."

            player.side = Side.BLACK
            room.players[player.player_id] = player
            room.status = RoomStatus.PLAYING
            self.player_to_room[player.player_id] = room_id
            logger.info("Room %s started", room_id)
            return room, None

    async def leave_room(self, player_id: str) -> Optional[Tuple[GameRoom, Optional[Player]]]:
        """Close the player's room.

        The room is deleted as soon as either member leaves. Returns the room
        and the remaining player (if any) to the first caller only; later calls
        for the same room return None.
        """
        async with self._lock:
            room_id = self.player_to_room.pop(player_id, None)
            if not room_id:
                return None

            room = self.rooms.pop(room_id, None)
            if not room:
                return None

            remaining = room.get_opponent(player_id)
            for other_id in room.players:
                self.player_to_room.pop(other_id, None)
            logger.info("Room %s closed (player %s left)", room_id, player_id)
            return room, remaining

    def get_room(self, room_id: str) -> Optional[GameRoom]:
        """Get a room by ID."""
        return self.rooms.get(room_id)

    def get_player_room(self, player_id: str) -> Optional[GameRoom]:
        """Get the room a player is in."""
        room_id = self.player_to_room.get(player_id)
        if room_id:
            return self.rooms.get(room_id)
        return None

    async def cleanup_stale_rooms(self, max_idle_seconds: int = 3600) -> int:
        """Remove rooms that never found a second player. Returns how many."""
        async with self._lock:
            current_time = time()
            to_remove = [
                room_id
                for room_id, room in self.rooms.items()
                if room.status == RoomStatus.WAITING
                and current_time - room.created_at > max_idle_seconds
            ]
            for room_id in to_remove:
                room = self.rooms.pop(room_id)
                for player_id in room.players:
                    self.player_to_room.pop(player_id, None)
            return len(to_remove)


class ConnectionManager:
    """Manages WebSocket connections for multiplayer."""

    def __init__(self):
        self.room_manager = RoomManager()
        self.active_connections: Dict[str, WebSocket] = {}  # player_id -> websocket
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, player_id: str) -> None:
        """Accept a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self.active_connections[player_id] = websocket

    async def disconnect(self, player_id: str) -> None:
        """Handle player disconnection."""
        async with self._lock:
            self.active_connections.pop(player_id, None)

        await self._close_room(player_id)

    async def _close_room(self, player_id: str) -> Optional[GameRoom]:
        """Free the player's room and tell the other member, once."""
        result = await self.room_manager.leave_room(player_id)
        if not result:
            return None

        room, remaining = result
        if remaining:
            await self.send_personal(remaining.player_id, {
                "type": "opponent_disconnect",
                "room_id": room.room_id,
            })
        return room

    async def send_personal(self, player_id: str, message: Dict) -> bool:
        """Send a message to a specific player."""
        websocket = self.active_connections.get(player_id)
        if websocket:
            try:
                await websocket.send_json(message)
                return True
            except Exception as e:
                logger.warning("Failed to send %s to %s: %s", message.get("type"), player_id, e)
        return False

    async def send_to_opponent(self, player_id: str, message: Dict) -> bool:
        """Send a message to the other member of the player's room."""
        room = self.room_manager.get_player_room(player_id)
        if not room:
            return False
        opponent = room.get_opponent(player_id)
        if not opponent:
            return False
        return await self.send_personal(opponent.player_id, message)

    async def broadcast_to_room(self, room_id: str, message: Dict, exclude: Optional[str] = None) -> None:
        """Broadcast a message to all players in a room."""
        room = self.room_manager.get_room(room_id)
        if not room:
            return

        for player_id in list(room.players):
            if player_id != exclude:
                await self.send_personal(player_id, message)

    async def handle_message(self, player_id: str, data: Dict) -> None:
        """Handle incoming WebSocket message."""
        msg_type = data.get("type") if isinstance(data, dict) else None

        handlers = {
            "create_room": self._handle_create_room,
            "join_room": self._handle_join_room,
            "leave_room": self._handle_leave_room,
            "make_move": self._handle_make_move,
            "send_emote": self._handle_send_emote,
            "request_restart": self._handle_request_restart,
            "accept_restart": self._handle_accept_restart,
            "decline_restart": self._handle_decline_restart,
            "ping": self._handle_ping,
        }

        handler = handlers.get(msg_type)
        if handler:
            await handler(player_id, data)
        else:
            await self.send_personal(player_id, {
                "type": "error",
                "message": f"Unknown message type: {msg_type}",
            })

    def _make_player(self, player_id: str, data: Dict) -> Optional[Player]:
        websocket = self.active_connections.get(player_id)
        if not websocket:
            return None
        nickname = str(data.get("nickname") or DEFAULT_NICKNAME)[:32]
        return Player(player_id=player_id, nickname=nickname, websocket=websocket)

    async def _handle_create_room(self, player_id: str, data: Dict) -> None:
        """Handle room creation request."""
        if self.room_manager.get_player_room(player_id):
            await self._close_room(player_id)

        player = self._make_player(player_id, data)
        if not player:
            return

        room = await self.room_manager.create_room(player)

        await self.send_personal(player_id, {
            "type": "room_created",
            "room_id": room.room_id,
            "your_side": player.side.value,
        })

    async def _handle_join_room(self, player_id: str, data: Dict) -> None:
        """Handle room join request."""
        player = self._make_player(player_id, data)
        if not player:
            return

        room, error = await self.room_manager.join_room(str(data.get("room_id", "")), player)
        if not room:
            await self.send_personal(player_id, {
                "type": "join_error",
                "message": error,
            })
            return

        red = room.get_player_by_side(Side.RED)
        black = room.get_player_by_side(Side.BLACK)
        await self.broadcast_to_room(room.room_id, {
            "type": "game_start",
            "room_id": room.room_id,
            "red": red.player_id,
            "black": black.player_id,
            "red_name": red.nickname,
            "black_name": black.nickname,
        })

    async def _handle_leave_room(self, player_id: str, data: Dict) -> None:
        """Handle room leave request."""
        await self._close_room(player_id)
        await self.send_personal(player_id, {"type": "room_left"})

    async def _handle_make_move(self, player_id: str, data: Dict) -> None:
        """Record a move and relay it to the opponent."""
        room = self.room_manager.get_player_room(player_id)
        if not room or room.status != RoomStatus.PLAYING:
            await self.send_personal(player_id, {
                "type": "error",
                "message": "Game is not in progress.",
            })
            return

        try:
            move = RelayMove.model_validate(data)
        except ValidationError:
            await self.send_personal(player_id, {
                "type": "error",
                "message": "Invalid move data.",
            })
            return

        player = room.players[player_id]
        async with room.lock:
            room.moves.append({**move.model_dump(), "side": player.side.value})
            await self.send_to_opponent(player_id, {
                "type": "opponent_move",
                **move.model_dump(),
            })

    async def _handle_send_emote(self, player_id: str, data: Dict) -> None:
        """Relay an emote from the allow-list."""
        emote = data.get("emote")
        room = self.room_manager.get_player_room(player_id)
        if not room or emote not in ALLOWED_EMOTES:
            return

        player = room.players[player_id]
        await self.send_to_opponent(player_id, {
            "type": "opponent_emote",
            "emote": emote,
            "from": player.side.value,
        })

    async def _handle_request_restart(self, player_id: str, data: Dict) -> None:
        room = self.room_manager.get_player_room(player_id)
        if not room:
            return
        await self.send_to_opponent(player_id, {
            "type": "restart_request",
            "from": room.players[player_id].side.value,
        })

    async def _handle_accept_restart(self, player_id: str, data: Dict) -> None:
        room = self.room_manager.get_player_room(player_id)
        if not room:
            return
        async with room.lock:
            room.moves = []
        await self.broadcast_to_room(room.room_id, {"type": "game_restart"})

    async def _handle_decline_restart(self, player_id: str, data: Dict) -> None:
        await self.send_to_opponent(player_id, {"type": "restart_declined"})

    async def _handle_ping(self, player_id: str, data: Dict) -> None:
        """Handle ping for connection keep-alive."""
        await self.send_personal(player_id, {
            "type": "pong",
            "timestamp": time(),
        })


# Global connection manager instance
_connection_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """Get or create the global ConnectionManager instance."""
    global _connection_manager
    if _connection_manager is None:
        _connection_manager = ConnectionManager()
    return _connection_manager
