"""
Naive fallback policies.

- FirstLegalPolicy: deterministic; the first legal move in UCI order.
- RandomLegalPolicy: uniformly random legal move (what the board UI always did).
"""
from __future__ import annotations

import random
from typing import Optional

import chess

from .base import FallbackPolicy


class FirstLegalPolicy(FallbackPolicy):
    name = "first"

    def pick(self, board: chess.Board, legal: list[chess.Move]) -> chess.Move:
        return min(legal, key=lambda m: m.uci())


class RandomLegalPolicy(FallbackPolicy):
    name = "random"

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()

    def pick(self, board: chess.Board, legal: list[chess.Move]) -> chess.Move:
        return self.rng.choice(legal)
