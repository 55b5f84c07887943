"""Conditions a game session reports back to the presentation layer.

Only human-side rule violations and misuse of the session surface as exceptions.
Failures on the AI side (provider errors, illegal suggestions, stale replies)
are absorbed by the session and never raised.
"""
from __future__ import annotations


class SessionError(Exception):
    """Base class for user-visible session rejections."""

    code = "session_error"


class IllegalMove(SessionError):
    code = "illegal_move"


class TurnNotYours(SessionError):
    code = "turn_not_yours"


class GameIsOver(SessionError):
    code = "game_over"


class DifficultyLocked(SessionError):
    """Difficulty may not change while an AI move request is outstanding."""

    code = "difficulty_locked"


class InvalidDifficulty(SessionError, ValueError):
    code = "invalid_difficulty"
