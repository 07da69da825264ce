"""FastAPI backend for Xiangqi game."""

import os
import json
import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel
from typing import Optional, List, Dict, Any, Tuple
from time import time

from xiangqi.board import Board, Move, Piece
from xiangqi.engine import Engine, DIFFICULTY_LEVELS
from xiangqi.game import GameState
from xiangqi.multiplayer import get_connection_manager
from xiangqi.persistence import SnapshotError, decode_game, encode_game

logger = logging.getLogger(__name__)

DEFAULT_DIFFICULTY = os.environ.get("XIANGQI_DIFFICULTY", "medium")
BOT_WORKERS = int(os.environ.get("XIANGQI_BOT_WORKERS", "4"))

if DEFAULT_DIFFICULTY not in DIFFICULTY_LEVELS:
    logger.warning("Unknown XIANGQI_DIFFICULTY %r, using medium", DEFAULT_DIFFICULTY)
    DEFAULT_DIFFICULTY = "medium"


# Thread pool for CPU-intensive AI operations
executor = ThreadPoolExecutor(max_workers=BOT_WORKERS, thread_name_prefix="xiangqi-api-bot")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    yield
    # Cleanup: shutdown thread pool on app shutdown
    executor.shutdown(wait=True)


app = FastAPI(title="Xiangqi Engine", lifespan=lifespan)


class GameSession:
    """A local game against the bot, guarded by its own lock."""

    def __init__(self, game: GameState, engine: Engine, difficulty: str):
        self.game = game
        self.engine = engine
        self.difficulty = difficulty
        self.lock = asyncio.Lock()
        self.last_access = time()
        self.is_processing = False  # Bot search in flight


# Global game state with proper locking
games: Dict[str, GameSession] = {}
games_lock = asyncio.Lock()

# Rate limiting configuration
RATE_LIMIT_WINDOW = 1.0  # seconds
RATE_LIMIT_MAX_REQUESTS = 10  # per window per client
rate_limit_data: Dict[str, List[float]] = {}  # client ip -> request timestamps


async def check_rate_limit(request: Request) -> bool:
    """Check if request should be rate limited."""
    client_ip = request.client.host if request.client else "unknown"
    current_time = time()

    if client_ip not in rate_limit_data:
        rate_limit_data[client_ip] = []

    rate_limit_data[client_ip] = [
        t for t in rate_limit_data[client_ip] if current_time - t < RATE_LIMIT_WINDOW
    ]

    if len(rate_limit_data[client_ip]) >= RATE_LIMIT_MAX_REQUESTS:
        return False

    rate_limit_data[client_ip].append(current_time)
    return True


async def enforce_rate_limit(request: Request) -> None:
    if not await check_rate_limit(request):
        raise HTTPException(
            status_code=429, detail="Too many requests. Please slow down."
        )


async def get_session(game_id: str) -> GameSession:
    """Get game session with proper error handling."""
    async with games_lock:
        if game_id not in games:
            raise HTTPException(status_code=404, detail="Game not found")
        session = games[game_id]
        session.last_access = time()
        return session


async def cleanup_old_games():
    """Clean up games that haven't been accessed for a long time."""
    current_time = time()
    MAX_IDLE_TIME = 3600

    async with games_lock:
        to_remove = [
            game_id
            for game_id, session in games.items()
            if current_time - session.last_access > MAX_IDLE_TIME
        ]
        for game_id in to_remove:
            del games[game_id]
    if to_remove:
        logger.info("Removed %d idle games", len(to_remove))


ROOM_MAX_IDLE_TIME = 3600  # seconds a room may wait for its second player


async def cleanup_stale_rooms():
    """Clean up multiplayer rooms that never found an opponent."""
    manager = get_connection_manager()
    removed = await manager.room_manager.cleanup_stale_rooms(ROOM_MAX_IDLE_TIME)
    if removed:
        logger.info("Removed %d stale rooms", removed)


def _make_engine(difficulty: Optional[str], depth: Optional[int], seed: Optional[int]) -> Tuple[Engine, str]:
    name = difficulty or DEFAULT_DIFFICULTY
    try:
        engine = Engine.for_difficulty(name, seed=seed)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if depth is not None:
        engine.depth = max(1, depth)
    return engine, name


async def _register(game_id: Optional[str], session: GameSession) -> str:
    game_id = game_id or str(uuid.uuid4())
    async with games_lock:
        games[game_id] = session
    # Cleanup runs in the background
    asyncio.create_task(cleanup_old_games())
    return game_id


class NewGameRequest(BaseModel):
    """Request model for creating a new game."""

    game_id: Optional[str] = None  # Generated when omitted
    difficulty: Optional[str] = None  # "easy", "medium" or "hard"
    depth: Optional[int] = None  # Overrides the difficulty's depth
    seed: Optional[int] = None
    fen: Optional[str] = None
    custom_setup: Optional[Dict[str, str]] = None  # e.g., {"e0": "K", "e9": "k"}


class MoveRequest(BaseModel):
    """Request model for making a move.

    Either ICCS squares (``from_square``/``to_square``, e.g. "h2"/"e2") or
    board coordinates (``from_row`` ... ``to_col``) must be given.
    """

    game_id: str
    from_square: Optional[str] = None
    to_square: Optional[str] = None
    from_row: Optional[int] = None
    from_col: Optional[int] = None
    to_row: Optional[int] = None
    to_col: Optional[int] = None


class LoadRequest(BaseModel):
    """Request model for restoring a saved game."""

    game_id: Optional[str] = None
    snapshot: Any = None
    difficulty: Optional[str] = None


class BoardResponse(BaseModel):
    """Response model for board state."""

    board: List[List[Optional[str]]]  # FEN letters, uppercase = red
    fen: str
    side_to_move: str
    last_move: Optional[Dict[str, Any]] = None
    in_check: bool
    game_over: bool
    winner: Optional[str] = None
    lose_reason: Optional[str] = None
    check_limit_reached: bool = False
    move_count: int = 0
    can_undo: bool = False


def piece_to_string(piece: Optional[Piece]) -> Optional[str]:
    """Convert piece to its FEN letter."""
    if piece is None:
        return None
    return piece.code()


def move_to_dict(move: Move) -> Dict[str, Any]:
    return {
        "from_row": move.from_row,
        "from_col": move.from_col,
        "to_row": move.to_row,
        "to_col": move.to_col,
        "iccs": move.to_iccs(),
    }


def _resolve_move(request: MoveRequest) -> Tuple[int, int, int, int]:
    """Turn a move request into (from_row, from_col, to_row, to_col)."""
    if request.from_square and request.to_square:
        try:
            move = Move.from_iccs(request.from_square + request.to_square)
        except (ValueError, IndexError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid square notation: {e}")
        return move.from_row, move.from_col, move.to_row, move.to_col

    coords = (request.from_row, request.from_col, request.to_row, request.to_col)
    if any(c is None for c in coords):
        raise HTTPException(
            status_code=400, detail="Give from_square/to_square or all four coordinates"
        )
    return coords


def _board_response(game: GameState) -> BoardResponse:
    return BoardResponse(
        board=[[piece_to_string(p) for p in row] for row in game.board.grid],
        fen=game.board.to_fen(game.current_turn),
        side_to_move=game.current_turn.value,
        last_move=move_to_dict(game.last_move) if game.last_move else None,
        in_check=game.in_check,
        game_over=game.game_over,
        winner=game.winner.value if game.winner else None,
        lose_reason=game.lose_reason,
        check_limit_reached=game.check_limit_reached,
        move_count=game.ply,
        can_undo=game.ply > 0,
    )


def _status(game: GameState) -> Dict[str, Any]:
    return {
        "side_to_move": game.current_turn.value,
        "in_check": game.in_check,
        "game_over": game.game_over,
        "winner": game.winner.value if game.winner else None,
        "lose_reason": game.lose_reason,
    }


@app.post("/api/new-game")
async def new_game(request: NewGameRequest, req: Request):
    """Create a new game."""
    await enforce_rate_limit(req)

    if request.fen:
        try:
            board, side = Board.from_fen(request.fen)
        except (ValueError, IndexError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid FEN: {e}")
        game = GameState.from_board(board, side)
    elif request.custom_setup:
        game = GameState.from_board(Board(custom_setup=request.custom_setup))
    else:
        game = GameState()

    engine, difficulty = _make_engine(request.difficulty, request.depth, request.seed)
    game_id = await _register(request.game_id, GameSession(game, engine, difficulty))
    logger.info("New game %s (difficulty %s, depth %d)", game_id, difficulty, engine.depth)

    return {
        "status": "ok",
        "game_id": game_id,
        "difficulty": difficulty,
        "depth": engine.depth,
    }


@app.get("/api/board/{game_id}")
async def get_board(game_id: str, req: Request):
    """Get current board state."""
    await enforce_rate_limit(req)

    session = await get_session(game_id)
    async with session.lock:
        return _board_response(session.game)


@app.get("/api/legal-moves/{game_id}")
async def get_legal_moves(game_id: str, row: int, col: int, req: Request):
    """Get legal destinations for the piece at (row, col)."""
    await enforce_rate_limit(req)

    session = await get_session(game_id)
    async with session.lock:
        game = session.game
        piece = game.board.get_piece(row, col)
        if piece is None or piece.side != game.current_turn or game.game_over:
            destinations = []
        else:
            destinations = game.legal_moves(row, col)

    return {
        "row": row,
        "col": col,
        "moves": [{"row": r, "col": c} for r, c in destinations],
    }


@app.post("/api/move")
async def make_move(request: MoveRequest, req: Request):
    """Make a move."""
    await enforce_rate_limit(req)

    session = await get_session(request.game_id)
    from_row, from_col, to_row, to_col = _resolve_move(request)

    async with session.lock:
        game = session.game
        if not game.execute_move(from_row, from_col, to_row, to_col):
            raise HTTPException(status_code=400, detail="Illegal move")
        move = Move(from_row, from_col, to_row, to_col)
        return {"status": "ok", "move": move_to_dict(move), **_status(game)}


@app.post("/api/undo/{game_id}")
async def undo_move(game_id: str, req: Request):
    """Undo the last move."""
    await enforce_rate_limit(req)

    session = await get_session(game_id)
    async with session.lock:
        if not session.game.undo_move():
            raise HTTPException(status_code=400, detail="No moves to undo")
        return {"status": "ok", "message": "Move undone successfully", **_status(session.game)}


@app.post("/api/undo-pair/{game_id}")
async def undo_move_pair(game_id: str, req: Request):
    """Undo the last two moves (player's move and AI's move)."""
    await enforce_rate_limit(req)

    session = await get_session(game_id)
    async with session.lock:
        game = session.game
        if game.ply < 2:
            raise HTTPException(status_code=400, detail="Not enough moves to undo")
        game.undo_move()  # AI's move
        game.undo_move()  # Player's move
        return {"status": "ok", "message": "Two moves undone successfully", **_status(game)}


@app.post("/api/ai-move/{game_id}")
async def ai_move(game_id: str, req: Request):
    """Let the bot play the side to move."""
    await enforce_rate_limit(req)

    session = await get_session(game_id)

    async with session.lock:
        if session.is_processing:
            raise HTTPException(
                status_code=409, detail="AI is already processing a move. Please wait."
            )
        if session.game.game_over:
            raise HTTPException(status_code=400, detail="Game is over")
        session.is_processing = True
        # The search runs on a private copy so other requests can use the game
        task = session.engine.search_async(session.game, executor)

    try:
        best_move = await asyncio.wrap_future(task.future)

        if best_move is None:
            raise HTTPException(status_code=400, detail="No legal moves available")

        async with session.lock:
            game = session.game
            if task.is_stale(game):
                raise HTTPException(
                    status_code=409, detail="Position changed while the AI was thinking"
                )
            if not game.execute_move(
                best_move.from_row, best_move.from_col, best_move.to_row, best_move.to_col
            ):
                raise HTTPException(status_code=500, detail="AI generated illegal move")

            return {
                "status": "ok",
                "move": move_to_dict(best_move),
                "nodes_searched": session.engine.nodes_searched,
                "score": session.engine.last_score,
                **_status(game),
            }
    finally:
        async with session.lock:
            session.is_processing = False


@app.get("/api/save/{game_id}")
async def save_game(game_id: str, req: Request):
    """Export the game as a JSON snapshot."""
    await enforce_rate_limit(req)

    session = await get_session(game_id)
    async with session.lock:
        snapshot = encode_game(session.game)
    return {"game_id": game_id, "difficulty": session.difficulty, "snapshot": snapshot}


@app.post("/api/load")
async def load_game(request: LoadRequest, req: Request):
    """Restore a game from a snapshot, or start fresh if it is unusable."""
    await enforce_rate_limit(req)

    try:
        game = decode_game(request.snapshot)
        restored = True
    except SnapshotError as e:
        logger.warning("Discarding saved game, starting fresh: %s", e)
        game = GameState()
        restored = False

    engine, difficulty = _make_engine(request.difficulty, None, None)
    game_id = await _register(request.game_id, GameSession(game, engine, difficulty))

    return {"status": "ok", "game_id": game_id, "restored": restored, **_status(game)}


# ============================================
# WebSocket Multiplayer Endpoints
# ============================================

@app.websocket("/ws/multiplayer/{player_id}")
async def websocket_multiplayer(websocket: WebSocket, player_id: str):
    """WebSocket endpoint for multiplayer games."""
    manager = get_connection_manager()
    await manager.connect(websocket, player_id)
    # Cleanup runs in the background
    asyncio.create_task(cleanup_stale_rooms())

    try:
        while True:
            text = await websocket.receive_text()
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                await manager.send_personal(player_id, {
                    "type": "error",
                    "message": "Messages must be JSON objects.",
                })
                continue
            await manager.handle_message(player_id, data)
    except WebSocketDisconnect:
        await manager.disconnect(player_id)
    except Exception as e:
        logger.warning("WebSocket error for player %s: %s", player_id, e)
        await manager.disconnect(player_id)


@app.get("/api/multiplayer/room/{room_id}")
async def get_room_info(room_id: str):
    """Get information about a specific room."""
    manager = get_connection_manager()
    room = manager.room_manager.get_room(room_id)

    if not room:
        raise HTTPException(status_code=404, detail="Room not found")

    return {"room": room.to_dict()}


@app.post("/api/multiplayer/generate-player-id")
async def generate_player_id():
    """Generate a unique player ID for WebSocket connection."""
    player_id = str(uuid.uuid4())
    return {"player_id": player_id}
