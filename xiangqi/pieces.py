"""Pseudo-legal movement rules for each piece type.

Generators ignore whether the mover's own king ends up in check; that is the
legality filter's job (see ``rules.py``). No generator yields a square held
by a piece of the mover's own side.
"""

from typing import Callable, Dict, List

from .board import Board, PieceType, Position, Side

ORTHOGONAL = [(0, 1), (0, -1), (1, 0), (-1, 0)]
DIAGONAL = [(1, 1), (1, -1), (-1, 1), (-1, -1)]

# Horse: orthogonal leg, then the two outward diagonal destinations
HORSE_PATTERNS = [
    ((-1, 0), [(-2, -1), (-2, 1)]),
    ((1, 0), [(2, -1), (2, 1)]),
    ((0, -1), [(-1, -2), (1, -2)]),
    ((0, 1), [(-1, 2), (1, 2)]),
]


def in_palace(row: int, col: int, side: Side) -> bool:
    """Check if a square is inside the given side's palace."""
    if col < 3 or col > 5:
        return False
    if side == Side.RED:
        return 7 <= row <= 9
    return 0 <= row <= 2


def has_crossed_river(row: int, side: Side) -> bool:
    """Check if a row lies on the opponent's half of the board."""
    if side == Side.RED:
        return row <= 4
    return row >= 5


def _can_land(board: Board, row: int, col: int, side: Side) -> bool:
    target = board.grid[row][col]
    return target is None or target.side != side


def _king_moves(board: Board, row: int, col: int, side: Side) -> List[Position]:
    moves = []
    for dr, dc in ORTHOGONAL:
        nr, nc = row + dr, col + dc
        if in_palace(nr, nc, side) and _can_land(board, nr, nc, side):
            moves.append(Position(nr, nc))

    # Flying general: the opposing king on an open column counts as reachable
    step = -1 if side == Side.RED else 1
    r = row + step
    while Board.in_bounds(r, col):
        piece = board.grid[r][col]
        if piece is not None:
            if piece.piece_type == PieceType.KING and piece.side != side:
                moves.append(Position(r, col))
            break
        r += step

    return moves


def _advisor_moves(board: Board, row: int, col: int, side: Side) -> List[Position]:
    moves = []
    for dr, dc in DIAGONAL:
        nr, nc = row + dr, col + dc
        if in_palace(nr, nc, side) and _can_land(board, nr, nc, side):
            moves.append(Position(nr, nc))
    return moves


def _elephant_moves(board: Board, row: int, col: int, side: Side) -> List[Position]:
    moves = []
    for dr, dc in DIAGONAL:
        nr, nc = row + 2 * dr, col + 2 * dc
        if not Board.in_bounds(nr, nc):
            continue
        # Elephants never cross the river
        if has_crossed_river(nr, side):
            continue
        # Blocked eye
        if board.grid[row + dr][col + dc] is not None:
            continue
        if _can_land(board, nr, nc, side):
            moves.append(Position(nr, nc))
    return moves


def _horse_moves(board: Board, row: int, col: int, side: Side) -> List[Position]:
    moves = []
    for (lr, lc), targets in HORSE_PATTERNS:
        leg_row, leg_col = row + lr, col + lc
        if not Board.in_bounds(leg_row, leg_col):
            continue
        # Hobbled leg
        if board.grid[leg_row][leg_col] is not None:
            continue
        for dr, dc in targets:
            nr, nc = row + dr, col + dc
            if Board.in_bounds(nr, nc) and _can_land(board, nr, nc, side):
                moves.append(Position(nr, nc))
    return moves


def _chariot_moves(board: Board, row: int, col: int, side: Side) -> List[Position]:
    moves = []
    for dr, dc in ORTHOGONAL:
        nr, nc = row + dr, col + dc
        while Board.in_bounds(nr, nc):
            target = board.grid[nr][nc]
            if target is None:
                moves.append(Position(nr, nc))
            else:
                if target.side != side:
                    moves.append(Position(nr, nc))
                break
            nr += dr
            nc += dc
    return moves


def _cannon_moves(board: Board, row: int, col: int, side: Side) -> List[Position]:
    """Cannon slides like a chariot but captures only by jumping one platform."""
    moves = []
    for dr, dc in ORTHOGONAL:
        nr, nc = row + dr, col + dc
        jumped = False
        while Board.in_bounds(nr, nc):
            target = board.grid[nr][nc]
            if not jumped:
                if target is None:
                    moves.append(Position(nr, nc))
                else:
                    jumped = True  # platform
            elif target is not None:
                if target.side != side:
                    moves.append(Position(nr, nc))
                break
            nr += dr
            nc += dc
    return moves


def _soldier_moves(board: Board, row: int, col: int, side: Side) -> List[Position]:
    moves = []
    forward = -1 if side == Side.RED else 1

    nr = row + forward
    if Board.in_bounds(nr, col) and _can_land(board, nr, col, side):
        moves.append(Position(nr, col))

    if has_crossed_river(row, side):
        for dc in (-1, 1):
            nc = col + dc
            if Board.in_bounds(row, nc) and _can_land(board, row, nc, side):
                moves.append(Position(row, nc))

    return moves


MoveGenerator = Callable[[Board, int, int, Side], List[Position]]

MOVE_GENERATORS: Dict[PieceType, MoveGenerator] = {
    PieceType.KING: _king_moves,
    PieceType.ADVISOR: _advisor_moves,
    PieceType.ELEPHANT: _elephant_moves,
    PieceType.HORSE: _horse_moves,
    PieceType.CHARIOT: _chariot_moves,
    PieceType.CANNON: _cannon_moves,
    PieceType.SOLDIER: _soldier_moves,
}


def moves_for(board: Board, row: int, col: int) -> List[Position]:
    """Get all pseudo-legal destinations for the piece at (row, col)."""
    piece = board.get_piece(row, col)
    if piece is None:
        return []
    return MOVE_GENERATORS[piece.piece_type](board, row, col, piece.side)
