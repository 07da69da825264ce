"""Game state machine: turn, history, check streaks and game over."""

import copy
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .board import Board, Move, Piece, Position, Side
from . import rules
from .rules import CheckRecord, PERPETUAL_CHECK_LIMIT

logger = logging.getLogger(__name__)

LOSE_CHECKMATE = "checkmate"
LOSE_PERPETUAL_CHECK = "perpetual-check"


@dataclass
class HistoryEntry:
    """Everything needed to undo one move."""

    move: Move  # carries the captured piece
    piece: Piece
    board: Board  # snapshot taken before the move
    prev_consecutive_checks: Dict[Side, int]
    prev_check_history: Dict[Side, List[CheckRecord]]


class GameState:
    """A single Xiangqi game.

    Mutated only through ``execute_move`` and ``undo_move``. Not safe for
    concurrent use; callers serialize move submission.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        """Start a new game from the initial position."""
        self.board = Board()
        self.current_turn = Side.RED
        self.move_history: List[HistoryEntry] = []
        self.last_move: Optional[Move] = None
        self.game_over = False
        self.winner: Optional[Side] = None
        self.lose_reason: Optional[str] = None
        self.in_check = False
        self.consecutive_checks = rules.empty_check_counters()
        self.check_history = rules.empty_check_history()
        self.check_limit_reached = False

    @classmethod
    def from_board(cls, board: Board, current_turn: Side = Side.RED) -> "GameState":
        """Start a game from an arbitrary position."""
        game = cls()
        game.board = board
        game.current_turn = current_turn
        game.in_check = rules.is_in_check(board, current_turn)
        game._update_game_over(current_turn.opponent)
        return game

    @property
    def ply(self) -> int:
        """Number of moves played."""
        return len(self.move_history)

    def copy(self) -> "GameState":
        """Deep, independent copy of this game."""
        return copy.deepcopy(self)

    def legal_moves(self, row: int, col: int) -> List[Position]:
        """Legal destinations for the piece at (row, col) in this game."""
        return rules.legal_moves(self.board, row, col, self)

    def all_legal_moves(self, side: Optional[Side] = None) -> List[Move]:
        """All legal moves for a side (default: side to move)."""
        return rules.all_legal_moves(self.board, side or self.current_turn, self)

    def execute_move(self, from_row: int, from_col: int, to_row: int, to_col: int) -> bool:
        """Make a move. Returns True if legal, False otherwise (state untouched)."""
        if self.game_over:
            return False
        if not (Board.in_bounds(from_row, from_col) and Board.in_bounds(to_row, to_col)):
            return False

        piece = self.board.get_piece(from_row, from_col)
        if piece is None or piece.side != self.current_turn:
            return False

        if Position(to_row, to_col) not in self.legal_moves(from_row, from_col):
            return False

        captured = self.board.get_piece(to_row, to_col)
        move = Move(from_row, from_col, to_row, to_col, captured)
        self.move_history.append(
            HistoryEntry(
                move=move,
                piece=piece,
                board=self.board.clone(),
                prev_consecutive_checks=dict(self.consecutive_checks),
                prev_check_history={side: list(h) for side, h in self.check_history.items()},
            )
        )

        self.board.apply_move(from_row, from_col, to_row, to_col)
        self.last_move = Move(from_row, from_col, to_row, to_col)
        mover = piece.side
        self.current_turn = mover.opponent

        self.in_check = rules.is_in_check(self.board, self.current_turn)
        if self.in_check:
            self.consecutive_checks[mover] += 1
            self.check_history[mover].append(
                CheckRecord(piece.piece_type, from_row, from_col, to_row, to_col)
            )
        else:
            self.consecutive_checks[mover] = 0
            self.check_history[mover] = []

        self.check_limit_reached = self.consecutive_checks[self.current_turn] >= PERPETUAL_CHECK_LIMIT
        self._update_game_over(mover)
        return True

    def _update_game_over(self, winner: Side) -> None:
        """End the game if the side to move has no legal move."""
        if rules.has_legal_move(self.board, self.current_turn, self):
            return

        self.game_over = True
        self.winner = winner
        if self.check_limit_reached and rules.has_legal_move(
            self.board, self.current_turn, self, enforce_repeat=False
        ):
            self.lose_reason = LOSE_PERPETUAL_CHECK
        else:
            self.lose_reason = LOSE_CHECKMATE
        logger.info(
            "Game over after %d moves: %s wins by %s",
            self.ply, self.winner.value, self.lose_reason,
        )

    def undo_move(self) -> bool:
        """Undo the last move. Returns False if there is nothing to undo."""
        if not self.move_history:
            return False

        entry = self.move_history.pop()
        self.board = entry.board
        self.current_turn = entry.piece.side
        self.game_over = False
        self.winner = None
        self.lose_reason = None

        self.consecutive_checks = entry.prev_consecutive_checks
        self.check_history = entry.prev_check_history
        self.check_limit_reached = self.consecutive_checks[self.current_turn] >= PERPETUAL_CHECK_LIMIT

        if self.move_history:
            prev = self.move_history[-1].move
            self.last_move = Move(prev.from_row, prev.from_col, prev.to_row, prev.to_col)
        else:
            self.last_move = None

        self.in_check = rules.is_in_check(self.board, self.current_turn)
        return True
