"""Static position evaluation for the search bot."""

import numpy as np

from .board import Board, PieceType, Side

PIECE_VALUES = {
    PieceType.KING: 10000,
    PieceType.CHARIOT: 900,
    PieceType.CANNON: 450,
    PieceType.HORSE: 400,
    PieceType.ELEPHANT: 200,
    PieceType.ADVISOR: 200,
    PieceType.SOLDIER: 100,
}

# Flat bonus for a soldier past the river, plus this much per row beyond it
SOLDIER_ADVANCE_BONUS = 80
SOLDIER_STEP_BONUS = 10

# Positional bonus tables indexed [row, col]; both are symmetric top/bottom
# so the same table serves both sides.
POSITION_BONUS = {
    PieceType.HORSE: np.array([
        [0, -4, 0, 0, 0, 0, 0, -4, 0],
        [0, 2, 4, 4, 4, 4, 4, 2, 0],
        [0, 2, 4, 6, 6, 6, 4, 2, 0],
        [0, 2, 6, 8, 8, 8, 6, 2, 0],
        [0, 4, 6, 8, 10, 8, 6, 4, 0],
        [0, 4, 6, 8, 10, 8, 6, 4, 0],
        [0, 2, 6, 8, 8, 8, 6, 2, 0],
        [0, 2, 4, 6, 6, 6, 4, 2, 0],
        [0, 2, 4, 4, 4, 4, 4, 2, 0],
        [0, -4, 0, 0, 0, 0, 0, -4, 0],
    ], dtype=np.int32),
    PieceType.CANNON: np.array([
        [0, 0, 2, 4, 4, 4, 2, 0, 0],
        [0, 2, 4, 4, 4, 4, 4, 2, 0],
        [2, 2, 2, 2, 2, 2, 2, 2, 2],
        [0, 0, 0, 0, 0, 0, 0, 0, 0],
        [0, 0, 0, 0, 0, 0, 0, 0, 0],
        [0, 0, 0, 0, 0, 0, 0, 0, 0],
        [0, 0, 0, 0, 0, 0, 0, 0, 0],
        [2, 2, 2, 2, 2, 2, 2, 2, 2],
        [0, 2, 4, 4, 4, 4, 4, 2, 0],
        [0, 0, 2, 4, 4, 4, 2, 0, 0],
    ], dtype=np.int32),
}


def soldier_bonus(row: int, side: Side) -> int:
    """Advancement bonus for a soldier; zero before it crosses the river."""
    if side == Side.RED and row <= 4:
        return SOLDIER_ADVANCE_BONUS + (4 - row) * SOLDIER_STEP_BONUS
    if side == Side.BLACK and row >= 5:
        return SOLDIER_ADVANCE_BONUS + (row - 5) * SOLDIER_STEP_BONUS
    return 0


class Evaluator:
    """Material + positional evaluator."""

    @staticmethod
    def piece_score(piece_type: PieceType, side: Side, row: int, col: int) -> int:
        value = PIECE_VALUES[piece_type]
        table = POSITION_BONUS.get(piece_type)
        if table is not None:
            value += int(table[row, col])
        if piece_type == PieceType.SOLDIER:
            value += soldier_bonus(row, side)
        return value

    @staticmethod
    def evaluate(board: Board, side: Side) -> float:
        """Evaluate board from ``side``'s perspective (own minus opponent)."""
        score = 0
        for row in range(board.ROWS):
            for col in range(board.COLS):
                piece = board.grid[row][col]  # Direct access (faster)
                if piece is None:
                    continue
                value = Evaluator.piece_score(piece.piece_type, piece.side, row, col)
                if piece.side == side:
                    score += value
                else:
                    score -= value
        return float(score)
