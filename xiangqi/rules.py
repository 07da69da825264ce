"""Check detection and legal move filtering."""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .board import Board, Move, PieceType, Position, Side
from .pieces import moves_for

# Consecutive checks after which a side may not repeat a check pattern
PERPETUAL_CHECK_LIMIT = 3


@dataclass(frozen=True)
class CheckRecord:
    """A checking move: which piece (type + origin) went where."""

    piece_type: PieceType
    from_row: int
    from_col: int
    to_row: int
    to_col: int


def find_king(board: Board, side: Side) -> Optional[Position]:
    """Get king position for given side."""
    for row, col, piece in board.pieces(side):
        if piece.piece_type == PieceType.KING:
            return Position(row, col)
    return None


def is_in_check(board: Board, side: Side) -> bool:
    """Check if the given side's king is attacked.

    A missing king counts as being in check.
    """
    king = find_king(board, side)
    if king is None:
        return True

    for row, col, _ in board.pieces(side.opponent):
        if king in moves_for(board, row, col):
            return True
    return False


def is_flying_general(board: Board) -> bool:
    """Check if both kings face each other on an open column."""
    red_king = find_king(board, Side.RED)
    black_king = find_king(board, Side.BLACK)
    if red_king is None or black_king is None:
        return False
    if red_king.col != black_king.col:
        return False

    top, bottom = sorted((red_king.row, black_king.row))
    for row in range(top + 1, bottom):
        if board.grid[row][red_king.col] is not None:
            return False
    return True


def _repeats_check(history: Sequence[CheckRecord], piece_type: PieceType, row: int, col: int, dest: Position) -> bool:
    for record in history:
        if (
            record.piece_type == piece_type
            and record.from_row == row
            and record.from_col == col
            and record.to_row == dest.row
            and record.to_col == dest.col
        ):
            return True
    return False


def legal_moves(board: Board, row: int, col: int, state=None, enforce_repeat: bool = True) -> List[Position]:
    """Get the legal destinations for the piece at (row, col).

    Every candidate is tried on a scratch copy of the board; the board passed
    in is never modified.

    Args:
        board: Position to analyse
        row, col: Square of the piece to move
        state: Optional object with ``consecutive_checks`` and
            ``check_history`` dicts keyed by Side (normally a GameState).
            When given, the repeat-check restriction is applied.
        enforce_repeat: Set False to skip the repeat-check restriction even
            when ``state`` is given.
    """
    piece = board.get_piece(row, col)
    if piece is None:
        return []

    side = piece.side
    opponent = side.opponent
    history: Sequence[CheckRecord] = ()
    must_avoid_repeat = False
    if state is not None and enforce_repeat:
        must_avoid_repeat = state.consecutive_checks[side] >= PERPETUAL_CHECK_LIMIT
        history = state.check_history[side]

    result = []
    for dest in moves_for(board, row, col):
        scratch = board.clone()
        scratch.apply_move(row, col, dest.row, dest.col)

        if is_in_check(scratch, side) or is_flying_general(scratch):
            continue

        if must_avoid_repeat and is_in_check(scratch, opponent):
            if _repeats_check(history, piece.piece_type, row, col, dest):
                continue

        result.append(dest)
    return result


def all_legal_moves(board: Board, side: Side, state=None, enforce_repeat: bool = True) -> List[Move]:
    """Generate all legal moves for a side, in row-major piece order."""
    moves = []
    for row, col, _ in board.pieces(side):
        for dest in legal_moves(board, row, col, state, enforce_repeat):
            moves.append(Move(row, col, dest.row, dest.col))
    return moves


def has_legal_move(board: Board, side: Side, state=None, enforce_repeat: bool = True) -> bool:
    """Check if a side has at least one legal move (stops at the first one)."""
    for row, col, _ in board.pieces(side):
        if legal_moves(board, row, col, state, enforce_repeat):
            return True
    return False


def empty_check_counters() -> Dict[Side, int]:
    return {Side.RED: 0, Side.BLACK: 0}


def empty_check_history() -> Dict[Side, List[CheckRecord]]:
    return {Side.RED: [], Side.BLACK: []}
