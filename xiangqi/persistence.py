"""Save/load of game state as plain JSON-compatible data.

Snapshots written by older versions may lack fields; those are filled with
defaults. Corrupt optional fields are replaced by their defaults too. Only a
missing or corrupt board / side to move makes a snapshot unusable.
"""

import json
import logging
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .board import Board, Move, Piece, PieceType, Side
from .game import GameState, HistoryEntry
from .rules import CheckRecord, PERPETUAL_CHECK_LIMIT

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class SnapshotError(ValueError):
    """Raised when a snapshot cannot be turned back into a game."""


class PieceModel(BaseModel):
    type: PieceType
    side: Side


class MoveModel(BaseModel):
    from_row: int = Field(ge=0, le=9)
    from_col: int = Field(ge=0, le=8)
    to_row: int = Field(ge=0, le=9)
    to_col: int = Field(ge=0, le=8)
    captured: Optional[PieceModel] = None


class CheckRecordModel(BaseModel):
    piece_type: PieceType
    from_row: int
    from_col: int
    to_row: int
    to_col: int


BoardModel = List[List[Optional[PieceModel]]]


def _check_board_shape(rows: BoardModel) -> BoardModel:
    if len(rows) != Board.ROWS or any(len(row) != Board.COLS for row in rows):
        raise ValueError(f"board must be {Board.ROWS}x{Board.COLS}")
    return rows


def _default_counters() -> Dict[Side, int]:
    return {Side.RED: 0, Side.BLACK: 0}


def _default_check_history() -> Dict[Side, List[CheckRecordModel]]:
    return {Side.RED: [], Side.BLACK: []}


class _RepairingModel(BaseModel):
    """Base for models whose non-core fields fall back to defaults."""

    core_fields: ClassVar[Tuple[str, ...]] = ()

    @field_validator("*", mode="wrap")
    @classmethod
    def _repair_field(cls, value, handler, info):
        try:
            return handler(value)
        except ValidationError:
            if info.field_name in cls.core_fields:
                raise
            logger.warning("Snapshot field %r is corrupt; using default", info.field_name)
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)

    @model_validator(mode="after")
    def _fill_missing_sides(self):
        for name in ("consecutive_checks", "prev_consecutive_checks"):
            counters = getattr(self, name, None)
            if counters is not None:
                for side in Side:
                    counters.setdefault(side, 0)
        for name in ("check_history", "prev_check_history"):
            history = getattr(self, name, None)
            if history is not None:
                for side in Side:
                    history.setdefault(side, [])
        return self


class HistoryEntryModel(_RepairingModel):
    core_fields: ClassVar[Tuple[str, ...]] = ("move", "piece", "board")

    move: MoveModel
    piece: PieceModel
    board: BoardModel
    prev_consecutive_checks: Dict[Side, int] = Field(default_factory=_default_counters)
    prev_check_history: Dict[Side, List[CheckRecordModel]] = Field(
        default_factory=_default_check_history
    )

    @field_validator("board")
    @classmethod
    def _board_shape(cls, value):
        return _check_board_shape(value)


class GameSnapshot(_RepairingModel):
    """Serializable form of a GameState."""

    core_fields: ClassVar[Tuple[str, ...]] = ("board", "current_turn")

    version: int = SNAPSHOT_VERSION
    board: BoardModel
    current_turn: Side
    move_history: List[HistoryEntryModel] = Field(default_factory=list)
    last_move: Optional[MoveModel] = None
    game_over: bool = False
    winner: Optional[Side] = None
    lose_reason: Optional[str] = None
    in_check: bool = False
    consecutive_checks: Dict[Side, int] = Field(default_factory=_default_counters)
    check_history: Dict[Side, List[CheckRecordModel]] = Field(
        default_factory=_default_check_history
    )

    @field_validator("board")
    @classmethod
    def _board_shape(cls, value):
        return _check_board_shape(value)


# --- GameState -> models ---------------------------------------------------

def _piece_model(piece: Optional[Piece]) -> Optional[PieceModel]:
    if piece is None:
        return None
    return PieceModel(type=piece.piece_type, side=piece.side)


def _board_model(board: Board) -> BoardModel:
    return [[_piece_model(piece) for piece in row] for row in board.grid]


def _move_model(move: Optional[Move]) -> Optional[MoveModel]:
    if move is None:
        return None
    return MoveModel(
        from_row=move.from_row,
        from_col=move.from_col,
        to_row=move.to_row,
        to_col=move.to_col,
        captured=_piece_model(move.captured),
    )


def _history_model(history: Dict[Side, List[CheckRecord]]) -> Dict[Side, List[CheckRecordModel]]:
    return {
        side: [
            CheckRecordModel(
                piece_type=r.piece_type,
                from_row=r.from_row,
                from_col=r.from_col,
                to_row=r.to_row,
                to_col=r.to_col,
            )
            for r in records
        ]
        for side, records in history.items()
    }


def to_snapshot(game: GameState) -> GameSnapshot:
    return GameSnapshot(
        board=_board_model(game.board),
        current_turn=game.current_turn,
        move_history=[
            HistoryEntryModel(
                move=_move_model(entry.move),
                piece=_piece_model(entry.piece),
                board=_board_model(entry.board),
                prev_consecutive_checks=dict(entry.prev_consecutive_checks),
                prev_check_history=_history_model(entry.prev_check_history),
            )
            for entry in game.move_history
        ],
        last_move=_move_model(game.last_move),
        game_over=game.game_over,
        winner=game.winner,
        lose_reason=game.lose_reason,
        in_check=game.in_check,
        consecutive_checks=dict(game.consecutive_checks),
        check_history=_history_model(game.check_history),
    )


# --- models -> GameState ---------------------------------------------------

def _piece(model: Optional[PieceModel]) -> Optional[Piece]:
    if model is None:
        return None
    return Piece(model.type, model.side)


def _board(rows: BoardModel) -> Board:
    board = Board(empty=True)
    for r, row in enumerate(rows):
        for c, cell in enumerate(row):
            board.grid[r][c] = _piece(cell)
    return board


def _move(model: Optional[MoveModel]) -> Optional[Move]:
    if model is None:
        return None
    return Move(model.from_row, model.from_col, model.to_row, model.to_col, _piece(model.captured))


def _check_history(models: Dict[Side, List[CheckRecordModel]]) -> Dict[Side, List[CheckRecord]]:
    return {
        side: [
            CheckRecord(r.piece_type, r.from_row, r.from_col, r.to_row, r.to_col)
            for r in records
        ]
        for side, records in models.items()
    }


def from_snapshot(snapshot: GameSnapshot) -> GameState:
    game = GameState()
    game.board = _board(snapshot.board)
    game.current_turn = snapshot.current_turn
    game.move_history = [
        HistoryEntry(
            move=_move(entry.move),
            piece=_piece(entry.piece),
            board=_board(entry.board),
            prev_consecutive_checks=dict(entry.prev_consecutive_checks),
            prev_check_history=_check_history(entry.prev_check_history),
        )
        for entry in snapshot.move_history
    ]
    game.last_move = _move(snapshot.last_move)
    game.game_over = snapshot.game_over
    game.winner = snapshot.winner
    game.lose_reason = snapshot.lose_reason
    game.in_check = snapshot.in_check
    game.consecutive_checks = dict(snapshot.consecutive_checks)
    game.check_history = _check_history(snapshot.check_history)
    game.check_limit_reached = game.consecutive_checks[game.current_turn] >= PERPETUAL_CHECK_LIMIT
    return game


# --- public API ------------------------------------------------------------

def encode_game(game: GameState) -> Dict[str, Any]:
    """Convert a game into JSON-compatible data."""
    return to_snapshot(game).model_dump(mode="json")


def decode_game(data: Any) -> GameState:
    """Rebuild a game from ``encode_game`` output.

    Raises:
        SnapshotError: if the board or side to move is missing or invalid.
    """
    if not isinstance(data, dict):
        raise SnapshotError(f"Snapshot must be a mapping, got {type(data).__name__}")
    for key in GameSnapshot.core_fields:
        if data.get(key) is None:
            raise SnapshotError(f"Snapshot is missing {key!r}")
    try:
        snapshot = GameSnapshot.model_validate(data)
    except ValidationError as e:
        raise SnapshotError(f"Invalid snapshot: {e}") from e
    return from_snapshot(snapshot)


def restore_or_reset(data: Any) -> GameState:
    """Decode a snapshot, or start a fresh game if it is unusable."""
    try:
        return decode_game(data)
    except SnapshotError as e:
        logger.warning("Discarding saved game, starting fresh: %s", e)
        return GameState()


def dumps_game(game: GameState) -> str:
    """Serialize a game to a JSON string."""
    return to_snapshot(game).model_dump_json()


def loads_game(text: str) -> GameState:
    """Parse a JSON string produced by ``dumps_game``."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SnapshotError(f"Snapshot is not valid JSON: {e}") from e
    return decode_game(data)
