"""
Fallback policy abstraction.

When the AI move is missing or illegal the session still has to move. A
FallbackPolicy picks one move from the full legal-move set of the board; the
choice may be naive or heuristic, but it is always legal.
"""
from __future__ import annotations

import chess


class NoLegalMoves(ValueError):
    """Raised when asked to choose on a board with no legal moves (a terminal position)."""


class FallbackPolicy:
    """Interface for choosing a replacement move."""

    name: str = "base"

    def choose(self, board: chess.Board) -> chess.Move:
        legal = list(board.legal_moves)
        if not legal:
            raise NoLegalMoves(f"No legal moves in {board.fen()}")
        return self.pick(board, legal)

    def pick(self, board: chess.Board, legal: list[chess.Move]) -> chess.Move:
        """Pick from a non-empty list of legal moves."""
        raise NotImplementedError
