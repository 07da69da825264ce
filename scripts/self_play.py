#!/usr/bin/env python3
"""Bot-versus-bot Xiangqi game from the command line.

Usage:
    python scripts/self_play.py
    python scripts/self_play.py --red hard --black easy --max-moves 150
    python scripts/self_play.py --fen "4k4/9/9/9/9/9/9/9/4R4/3K5 w" --seed 7
    python scripts/self_play.py --save game.json
"""

import argparse
import logging
import os
import sys
import time

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from xiangqi.board import Board, Side
from xiangqi.engine import Engine, DIFFICULTY_LEVELS
from xiangqi.game import GameState
from xiangqi.persistence import dumps_game

DEFAULT_MAX_MOVES = 200


def play_game(
    red: Engine,
    black: Engine,
    game: GameState,
    max_moves: int = DEFAULT_MAX_MOVES,
    verbose: bool = True,
) -> GameState:
    """Play until the game ends or ``max_moves`` plies have been made."""
    engines = {Side.RED: red, Side.BLACK: black}

    for _ in range(max_moves):
        if game.game_over:
            break

        side = game.current_turn
        engine = engines[side]
        start = time.time()
        move = engine.search(game)
        elapsed = time.time() - start

        if move is None:
            break

        game.execute_move(move.from_row, move.from_col, move.to_row, move.to_col)

        if verbose:
            check = " +" if game.in_check else ""
            print(
                f"{game.ply:3d}. {side.value:<5} {move.to_iccs()}{check}"
                f"  (score {engine.last_score:.0f}, {engine.nodes_searched} nodes, {elapsed:.2f}s)"
            )

    return game


def main():
    parser = argparse.ArgumentParser(description="Xiangqi bot self-play")
    parser.add_argument(
        "--red", choices=sorted(DIFFICULTY_LEVELS), default="medium", help="Red difficulty"
    )
    parser.add_argument(
        "--black", choices=sorted(DIFFICULTY_LEVELS), default="medium", help="Black difficulty"
    )
    parser.add_argument(
        "--max-moves", type=int, default=DEFAULT_MAX_MOVES, help="Ply limit before a draw"
    )
    parser.add_argument("--fen", type=str, default=None, help="Starting position")
    parser.add_argument("--seed", type=int, default=None, help="Seed for bot deviation")
    parser.add_argument("--save", type=str, default=None, help="Write the final game as JSON")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only print the result")
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level")

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.fen:
        board, side = Board.from_fen(args.fen)
        game = GameState.from_board(board, side)
    else:
        game = GameState()

    red = Engine.for_difficulty(args.red, seed=args.seed)
    black_seed = None if args.seed is None else args.seed + 1
    black = Engine.for_difficulty(args.black, seed=black_seed)

    print(f"Red: {args.red} (depth {red.depth})  Black: {args.black} (depth {black.depth})")
    print(f"Start: {game.board.to_fen(game.current_turn)}")
    print("=" * 60)

    play_game(red, black, game, max_moves=args.max_moves, verbose=not args.quiet)

    print("=" * 60)
    if game.game_over:
        print(f"Result: {game.winner.value} wins by {game.lose_reason} after {game.ply} moves")
    else:
        print(f"Result: no decision after {game.ply} moves")
    print(f"Final: {game.board.to_fen(game.current_turn)}")

    if args.save:
        with open(args.save, "w", encoding="utf-8") as f:
            f.write(dumps_game(game))
        print(f"Saved game to {args.save}")


if __name__ == "__main__":
    main()
