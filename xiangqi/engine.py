"""Xiangqi AI engine with minimax search."""

import logging
import random
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import List, Optional, Tuple

from .board import Board, Move, Piece, Side
from .evaluation import Evaluator, PIECE_VALUES
from .game import GameState
from . import rules

logger = logging.getLogger(__name__)

MATE_SCORE = 99999.0
# Scores beyond this are forced mates
MATE_THRESHOLD = MATE_SCORE - 1000

DIFFICULTY_LEVELS = {
    "easy": {"depth": 2, "deviation": 0.3},
    "medium": {"depth": 3, "deviation": 0.1},
    "hard": {"depth": 4, "deviation": 0.0},
}


class Engine:
    """Fixed-depth minimax search with alpha-beta pruning."""

    def __init__(
        self,
        depth: int = 3,
        deviation: float = 0.0,
        deviation_width: int = 3,
        seed: Optional[int] = None,
    ):
        """Initialize engine.

        Args:
            depth: Search depth in plies (minimum 1)
            deviation: Probability of playing one of the next-best root moves
                instead of the best one
            deviation_width: How many next-best moves are eligible when deviating
            seed: Seed for the deviation RNG (None = nondeterministic)
        """
        self.depth = max(1, depth)
        self.deviation = deviation
        self.deviation_width = max(1, deviation_width)
        self.evaluator = Evaluator()
        self.nodes_searched = 0
        self.last_score: Optional[float] = None
        self._rng = random.Random(seed)

    @classmethod
    def for_difficulty(cls, name: str, seed: Optional[int] = None) -> "Engine":
        """Build an engine for a named difficulty tier."""
        try:
            level = DIFFICULTY_LEVELS[name]
        except KeyError:
            raise ValueError(
                f"Unknown difficulty {name!r}; expected one of {sorted(DIFFICULTY_LEVELS)}"
            ) from None
        return cls(depth=level["depth"], deviation=level["deviation"], seed=seed)

    def search(self, game: GameState) -> Optional[Move]:
        """Search for the best move for the side to move. None if there is none."""
        self.nodes_searched = 0
        self.last_score = None

        if game.game_over:
            return None

        side = game.current_turn
        # Root moves go through the game so the repeat-check restriction applies
        moves = game.all_legal_moves(side)
        if not moves:
            return None

        moves = self._order_moves(game.board, moves)

        # Deviation needs exact scores for the runner-up moves
        full_window = self.deviation > 0
        scored: List[Tuple[float, Move]] = []
        best_move = None
        best_value = float('-inf')
        alpha = float('-inf')
        beta = float('inf')

        for move in moves:
            scratch = game.board.clone()
            scratch.apply_move(move.from_row, move.from_col, move.to_row, move.to_col)

            value = self._minimax(
                scratch,
                self.depth - 1,
                float('-inf') if full_window else alpha,
                beta,
                False,
                side,
                1,
            )
            scored.append((value, move))

            if value > best_value:
                best_value = value
                best_move = move
            if not full_window:
                alpha = max(alpha, best_value)

        chosen = self._maybe_deviate(scored, best_move)
        self.last_score = next(score for score, move in scored if move is chosen)
        logger.debug(
            "Searched %d nodes at depth %d for %s: %s (score %.1f)",
            self.nodes_searched, self.depth, side.value, chosen, self.last_score,
        )
        return chosen

    def _maybe_deviate(self, scored: List[Tuple[float, Move]], best_move: Move) -> Move:
        """Occasionally trade the best move for a runner-up."""
        if self.deviation <= 0 or len(scored) < 2:
            return best_move
        if self._rng.random() >= self.deviation:
            return best_move

        ranked = sorted(scored, key=lambda item: -item[0])
        candidates = [
            move
            for score, move in ranked
            if move is not best_move and score > -MATE_THRESHOLD
        ][: self.deviation_width]
        if not candidates:
            return best_move
        return self._rng.choice(candidates)

    def _order_moves(self, board: Board, moves: List[Move]) -> List[Move]:
        """Order moves for better alpha-beta pruning (most valuable captures first)."""
        return sorted(
            moves,
            key=lambda m: -self._get_capture_value(board.grid[m.to_row][m.to_col]),
        )

    def _get_capture_value(self, target: Optional[Piece]) -> int:
        """Get value of capturing a piece (0 for an empty square)."""
        if target is None:
            return 0
        return PIECE_VALUES[target.piece_type]

    def _minimax(
        self,
        board: Board,
        depth: int,
        alpha: float,
        beta: float,
        maximizing: bool,
        root_side: Side,
        ply: int,
    ) -> float:
        """Minimax algorithm with alpha-beta pruning on scratch boards."""
        self.nodes_searched += 1

        if depth == 0:
            return self._evaluate(board, root_side)

        to_move = root_side if maximizing else root_side.opponent
        moves = rules.all_legal_moves(board, to_move)
        if not moves:
            # Side to move is mated; nearer mates score further from zero
            return -MATE_SCORE + ply if maximizing else MATE_SCORE - ply

        moves = self._order_moves(board, moves)

        if maximizing:
            max_eval = float('-inf')
            for move in moves:
                child = board.clone()
                child.apply_move(move.from_row, move.from_col, move.to_row, move.to_col)
                eval_score = self._minimax(child, depth - 1, alpha, beta, False, root_side, ply + 1)
                max_eval = max(max_eval, eval_score)
                alpha = max(alpha, eval_score)
                if beta <= alpha:
                    break
            return max_eval
        else:
            min_eval = float('inf')
            for move in moves:
                child = board.clone()
                child.apply_move(move.from_row, move.from_col, move.to_row, move.to_col)
                eval_score = self._minimax(child, depth - 1, alpha, beta, True, root_side, ply + 1)
                min_eval = min(min_eval, eval_score)
                beta = min(beta, eval_score)
                if beta <= alpha:
                    break
            return min_eval

    def _evaluate(self, board: Board, side: Side) -> float:
        """Evaluate board position from ``side``'s point of view."""
        return self.evaluator.evaluate(board, side)

    def search_async(self, game: GameState, executor: Optional[Executor] = None) -> "BotTask":
        """Run ``search`` in the background on a private copy of the game."""
        snapshot = game.copy()
        pool = executor or get_executor()
        future = pool.submit(self.search, snapshot)
        return BotTask(future, snapshot.current_turn, snapshot.ply, _fingerprint(snapshot))


def _fingerprint(game: GameState) -> str:
    return game.board.to_fen(game.current_turn)


class BotTask:
    """Handle for a background search.

    The result only applies to the position it was computed for; use
    ``is_stale`` or ``apply_to`` before playing it.
    """

    def __init__(self, future: Future, turn: Side, ply: int, fingerprint: str):
        self.future = future
        self.turn = turn
        self.ply = ply
        self.fingerprint = fingerprint

    def done(self) -> bool:
        return self.future.done()

    def cancel(self) -> bool:
        return self.future.cancel()

    def result(self, timeout: Optional[float] = None) -> Optional[Move]:
        return self.future.result(timeout)

    def is_stale(self, game: GameState) -> bool:
        """Check if the live game has moved on since the search started."""
        return (
            game.game_over
            or game.current_turn != self.turn
            or game.ply != self.ply
            or _fingerprint(game) != self.fingerprint
        )

    def apply_to(self, game: GameState, timeout: Optional[float] = None) -> bool:
        """Play the computed move on ``game`` if it is still current."""
        move = self.result(timeout)
        if move is None:
            return False
        if self.is_stale(game):
            logger.debug("Discarding stale bot move %s", move)
            return False
        return game.execute_move(move.from_row, move.from_col, move.to_row, move.to_col)


# Shared pool for background searches
_executor: Optional[ThreadPoolExecutor] = None


def get_executor() -> ThreadPoolExecutor:
    """Get or create the shared search thread pool."""
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="xiangqi-bot")
    return _executor
