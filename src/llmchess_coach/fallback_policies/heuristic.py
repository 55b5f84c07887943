"""
HeuristicLegalPolicy: a one-ply greedy choice.

Scores each legal move by mate > material won on capture (MVV-LVA) > promotion
> check, and breaks ties at random so repeated fallbacks do not look scripted.
"""
from __future__ import annotations

import random
from typing import Optional

import chess

from .base import FallbackPolicy

PIECE_VALUES = {
    chess.PAWN: 1,
    chess.KNIGHT: 3,
    chess.BISHOP: 3,
    chess.ROOK: 5,
    chess.QUEEN: 9,
    chess.KING: 0,
}
MATE_SCORE = 1000


class HeuristicLegalPolicy(FallbackPolicy):
    name = "heuristic"

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()

    def score(self, board: chess.Board, mv: chess.Move) -> int:
        score = 0
        if board.is_capture(mv):
            if board.is_en_passant(mv):
                victim = chess.PAWN
            else:
                victim = board.piece_type_at(mv.to_square)
            attacker = board.piece_type_at(mv.from_square)
            score += 10 * PIECE_VALUES.get(victim, 0) - PIECE_VALUES.get(attacker, 0)
        if mv.promotion:
            score += 8 * PIECE_VALUES.get(mv.promotion, 0)
        if board.gives_check(mv):
            board.push(mv)
            mated = board.is_checkmate()
            board.pop()
            score += MATE_SCORE if mated else 2
        return score

    def pick(self, board: chess.Board, legal: list[chess.Move]) -> chess.Move:
        scored = [(self.score(board, mv), mv) for mv in legal]
        best = max(s for s, _ in scored)
        return self.rng.choice([mv for s, mv in scored if s == best])
