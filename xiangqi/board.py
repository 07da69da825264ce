"""Xiangqi board representation."""

from enum import Enum
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple
from dataclasses import dataclass


class Side(Enum):
    """Player sides."""

    RED = "red"  # Bottom side, moves first
    BLACK = "black"  # Top side

    @property
    def opponent(self) -> "Side":
        return Side.BLACK if self is Side.RED else Side.RED


class PieceType(Enum):
    """Piece types."""

    KING = "king"
    ADVISOR = "advisor"
    ELEPHANT = "elephant"
    HORSE = "horse"
    CHARIOT = "chariot"
    CANNON = "cannon"
    SOLDIER = "soldier"


# Single-letter codes used by custom setups and FEN (uppercase = red)
PIECE_CODES: Dict[PieceType, str] = {
    PieceType.KING: "K",
    PieceType.ADVISOR: "A",
    PieceType.ELEPHANT: "B",
    PieceType.HORSE: "N",
    PieceType.CHARIOT: "R",
    PieceType.CANNON: "C",
    PieceType.SOLDIER: "P",
}
CODE_TO_PIECE_TYPE: Dict[str, PieceType] = {v: k for k, v in PIECE_CODES.items()}


@dataclass(frozen=True)
class Piece:
    """Represents a piece on the board."""

    piece_type: PieceType
    side: Side

    def __str__(self) -> str:
        return f"{self.side.value}_{self.piece_type.value}"

    def code(self) -> str:
        """FEN letter for this piece."""
        letter = PIECE_CODES[self.piece_type]
        return letter if self.side == Side.RED else letter.lower()

    @classmethod
    def from_code(cls, letter: str) -> "Piece":
        side = Side.RED if letter.isupper() else Side.BLACK
        return cls(CODE_TO_PIECE_TYPE[letter.upper()], side)


class Position(NamedTuple):
    """A board square."""

    row: int  # 0-9, row 0 is black's back rank
    col: int  # 0-8


FILES = "abcdefghi"


def square_to_position(square: str) -> Position:
    """Convert ICCS square notation (e.g. 'e0') to a Position."""
    col = FILES.index(square[0])
    rank = int(square[1:])
    if not 0 <= rank <= 9:
        raise ValueError(f"Rank out of range: {square}")
    return Position(9 - rank, col)


def position_to_square(row: int, col: int) -> str:
    """Convert (row, col) to ICCS square notation."""
    return f"{FILES[col]}{9 - row}"


@dataclass
class Move:
    """Represents a move."""

    from_row: int
    from_col: int
    to_row: int
    to_col: int
    captured: Optional[Piece] = None  # For history/undo

    def __str__(self) -> str:
        return self.to_iccs()

    @property
    def source(self) -> Position:
        return Position(self.from_row, self.from_col)

    @property
    def destination(self) -> Position:
        return Position(self.to_row, self.to_col)

    def same_squares(self, other: "Move") -> bool:
        """Compare coordinates only, ignoring the captured piece."""
        return (
            self.from_row == other.from_row
            and self.from_col == other.from_col
            and self.to_row == other.to_row
            and self.to_col == other.to_col
        )

    def to_iccs(self) -> str:
        """Convert to ICCS notation (e.g. 'h2e2')."""
        return position_to_square(self.from_row, self.from_col) + position_to_square(
            self.to_row, self.to_col
        )

    @classmethod
    def from_iccs(cls, text: str) -> "Move":
        """Parse ICCS notation."""
        if len(text) != 4:
            raise ValueError(f"Invalid ICCS move: {text!r}")
        src = square_to_position(text[:2])
        dst = square_to_position(text[2:4])
        return cls(src.row, src.col, dst.row, dst.col)


INITIAL_FEN = "rnbakabnr/9/1c5c1/p1p1p1p1p/9/9/P1P1P1P1P/1C5C1/9/RNBAKABNR w"


class Board:
    """Xiangqi board: a 10x9 grid of optional pieces.

    ``grid[row][col]`` with row 0 at black's back rank and row 9 at red's.
    """

    ROWS = 10
    COLS = 9

    def __init__(self, custom_setup: Optional[Dict[str, str]] = None, empty: bool = False):
        """Initialize board.

        Args:
            custom_setup: Optional mapping of ICCS squares to piece codes,
                e.g. {"e0": "K", "e9": "k", "a0": "R"}. Uppercase is red.
            empty: Start from an empty grid instead of the initial layout.
        """
        self.grid: List[List[Optional[Piece]]] = [
            [None for _ in range(self.COLS)] for _ in range(self.ROWS)
        ]
        if custom_setup:
            self._initialize_custom_position(custom_setup)
        elif not empty:
            self._load_fen_placement(INITIAL_FEN.split()[0])

    def _initialize_custom_position(self, custom_setup: Dict[str, str]) -> None:
        for square, code in custom_setup.items():
            try:
                row, col = square_to_position(square)
                piece = Piece.from_code(code)
            except (ValueError, IndexError, KeyError):
                continue
            self.grid[row][col] = piece

    def _load_fen_placement(self, placement: str) -> None:
        rows = placement.split("/")
        if len(rows) != self.ROWS:
            raise ValueError(f"Expected {self.ROWS} rows, got {len(rows)}")
        for row, text in enumerate(rows):
            col = 0
            for ch in text:
                if ch.isdigit():
                    col += int(ch)
                    continue
                if col >= self.COLS:
                    raise ValueError(f"Row {row} overflows: {text}")
                self.grid[row][col] = Piece.from_code(ch)
                col += 1
            if col != self.COLS:
                raise ValueError(f"Row {row} has {col} columns: {text}")

    @classmethod
    def from_fen(cls, fen: str) -> Tuple["Board", Side]:
        """Build a board from a FEN string. Returns (board, side to move)."""
        parts = fen.split()
        board = cls(empty=True)
        try:
            board._load_fen_placement(parts[0])
        except KeyError as e:
            raise ValueError(f"Unknown piece letter in FEN: {e}") from e
        side = Side.BLACK if len(parts) > 1 and parts[1] in ("b", "black") else Side.RED
        return board, side

    def to_fen(self, side_to_move: Side = Side.RED) -> str:
        """Convert board to FEN string."""
        fen_rows = []
        for row in self.grid:
            text = ""
            empty_count = 0
            for piece in row:
                if piece is None:
                    empty_count += 1
                    continue
                if empty_count:
                    text += str(empty_count)
                    empty_count = 0
                text += piece.code()
            if empty_count:
                text += str(empty_count)
            fen_rows.append(text)
        side_char = "w" if side_to_move == Side.RED else "b"
        return "/".join(fen_rows) + f" {side_char}"

    @classmethod
    def in_bounds(cls, row: int, col: int) -> bool:
        return 0 <= row < cls.ROWS and 0 <= col < cls.COLS

    def get_piece(self, row: int, col: int) -> Optional[Piece]:
        """Get piece at given coordinates."""
        if self.in_bounds(row, col):
            return self.grid[row][col]
        return None

    def set_piece(self, row: int, col: int, piece: Optional[Piece]) -> None:
        self.grid[row][col] = piece

    def apply_move(self, from_row: int, from_col: int, to_row: int, to_col: int) -> Optional[Piece]:
        """Relocate a piece without any legality check. Returns the captured piece."""
        captured = self.grid[to_row][to_col]
        self.grid[to_row][to_col] = self.grid[from_row][from_col]
        self.grid[from_row][from_col] = None
        return captured

    def clone(self) -> "Board":
        """Independent copy. Pieces are immutable so rows are copied shallowly."""
        board = Board.__new__(Board)
        board.grid = [list(row) for row in self.grid]
        return board

    def pieces(self, side: Optional[Side] = None) -> Iterator[Tuple[int, int, Piece]]:
        """Iterate (row, col, piece) in row-major order."""
        for row in range(self.ROWS):
            for col in range(self.COLS):
                piece = self.grid[row][col]
                if piece is not None and (side is None or piece.side == side):
                    yield row, col, piece

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Board):
            return NotImplemented
        return self.grid == other.grid

    def __repr__(self) -> str:
        return f"Board('{self.to_fen()}')"
