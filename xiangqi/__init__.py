"""Xiangqi (Chinese Chess) rules engine, search bot and relay server."""

from .board import Board, Move, Side, PieceType, Piece, Position, INITIAL_FEN
from .game import GameState, HistoryEntry, LOSE_CHECKMATE, LOSE_PERPETUAL_CHECK
from .rules import (
    CheckRecord, PERPETUAL_CHECK_LIMIT,
    find_king, is_in_check, is_flying_general, legal_moves, all_legal_moves,
)
from .pieces import moves_for
from .evaluation import Evaluator, PIECE_VALUES
from .engine import Engine, BotTask, DIFFICULTY_LEVELS, MATE_SCORE
from .persistence import (
    GameSnapshot, SnapshotError,
    encode_game, decode_game, restore_or_reset, dumps_game, loads_game,
)
from .multiplayer import (
    ConnectionManager, RoomManager, GameRoom, Player,
    RoomStatus, RelayMove, get_connection_manager,
)

__all__ = [
    # Board and game
    'Board', 'Move', 'Side', 'PieceType', 'Piece', 'Position', 'INITIAL_FEN',
    'GameState', 'HistoryEntry', 'LOSE_CHECKMATE', 'LOSE_PERPETUAL_CHECK',
    # Rules
    'CheckRecord', 'PERPETUAL_CHECK_LIMIT',
    'find_king', 'is_in_check', 'is_flying_general', 'legal_moves', 'all_legal_moves',
    'moves_for',
    # Search
    'Evaluator', 'PIECE_VALUES',
    'Engine', 'BotTask', 'DIFFICULTY_LEVELS', 'MATE_SCORE',
    # Persistence
    'GameSnapshot', 'SnapshotError',
    'encode_game', 'decode_game', 'restore_or_reset', 'dumps_game', 'loads_game',
    # Multiplayer
    'ConnectionManager', 'RoomManager', 'GameRoom', 'Player',
    'RoomStatus', 'RelayMove', 'get_connection_manager',
]
