"""
Session data model.

Every type here is immutable. The orchestrator in game.py owns exactly one
SessionState at a time and replaces it wholesale on each transition
(dataclasses.replace), so a reader never sees a half-applied move.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

STARTING_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"

MIN_DIFFICULTY = 100
MAX_DIFFICULTY = 4000

SQUARE_RE = re.compile(r"^[a-h][1-8]$")
PROMOTIONS = ("q", "r", "b", "n")


class TurnState(str, Enum):
    HUMAN_TO_MOVE = "human_to_move"
    AI_TURN_IN_FLIGHT = "ai_turn_in_flight"
    GAME_OVER = "game_over"


class TerminalKind(str, Enum):
    NONE = "none"
    CHECKMATE = "checkmate"
    DRAW = "draw"


@dataclass(frozen=True)
class Terminal:
    kind: TerminalKind = TerminalKind.NONE
    winner: Optional[str] = None  # "white" | "black" for checkmate
    reason: Optional[str] = None  # e.g. "stalemate", "threefold_repetition"

    @property
    def is_over(self) -> bool:
        return self.kind is not TerminalKind.NONE

    @property
    def summary(self) -> Optional[str]:
        if self.kind is TerminalKind.CHECKMATE:
            return f"Checkmate! {str(self.winner).capitalize()} wins."
        if self.kind is TerminalKind.DRAW:
            if self.reason:
                return f"Draw by {self.reason.replace('_', ' ')}."
            return "Draw!"
        return None


NOT_TERMINAL = Terminal()


@dataclass(frozen=True)
class Position:
    """Board state as FEN, plus the UCI moves played from start_fen to reach it.

    The move list lets the rules adapter rebuild the full move stack, which
    repetition draws depend on.
    """

    fen: str = STARTING_FEN
    start_fen: str = STARTING_FEN
    moves: tuple[str, ...] = ()

    @property
    def side_to_move(self) -> str:
        parts = self.fen.split()
        return "black" if len(parts) > 1 and parts[1] == "b" else "white"

    @property
    def last_move(self) -> Optional[str]:
        return self.moves[-1] if self.moves else None


@dataclass(frozen=True)
class MoveRequest:
    from_square: str
    to_square: str
    promotion: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "from_square", (self.from_square or "").strip().lower())
        object.__setattr__(self, "to_square", (self.to_square or "").strip().lower())
        if self.promotion:
            object.__setattr__(self, "promotion", self.promotion.strip().lower())

    @classmethod
    def from_uci(cls, uci: str) -> "MoveRequest":
        uci = (uci or "").strip().lower()
        return cls(uci[0:2], uci[2:4], uci[4:5] or None)

    @property
    def is_well_formed(self) -> bool:
        if not SQUARE_RE.match(self.from_square) or not SQUARE_RE.match(self.to_square):
            return False
        return self.promotion is None or self.promotion in PROMOTIONS

    @property
    def uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"


@dataclass(frozen=True)
class MoveRecord:
    san: str
    uci: str
    actor: str  # "human" | "ai"
    source: str = "human"  # "human" | "provider" | "fallback"
    note: Optional[str] = None  # fallback reason

    def to_dict(self) -> dict:
        return {"san": self.san, "uci": self.uci, "actor": self.actor, "source": self.source, "note": self.note}


@dataclass(frozen=True)
class ChatMessage:
    role: str  # "user" | "assistant"
    text: str

    def to_dict(self) -> dict:
        return {"role": self.role, "text": self.text}


def new_session_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class SessionState:
    position: Position
    difficulty: int
    human_color: str = "white"
    history: tuple[MoveRecord, ...] = ()
    turn: TurnState = TurnState.HUMAN_TO_MOVE
    terminal: Terminal = NOT_TERMINAL
    chat_log: tuple[ChatMessage, ...] = ()
    analysis: str = "Make a move to see AI analysis."
    ai_thinking: bool = False
    session_id: str = field(default_factory=new_session_id)

    @property
    def ply(self) -> int:
        return len(self.history)

    @property
    def ai_color(self) -> str:
        return "black" if self.human_color == "white" else "white"


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view handed to the presentation layer."""

    session_id: str
    fen: str
    side_to_move: str
    in_check: bool
    turn: TurnState
    terminal_summary: Optional[str]
    analysis: str
    ai_thinking: bool
    difficulty: int
    human_color: str
    history: tuple[str, ...]
    chat_log: tuple[ChatMessage, ...]
    selected_square: Optional[str] = None
    legal_destinations: tuple[str, ...] = ()

    @property
    def ply(self) -> int:
        return len(self.history)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "fen": self.fen,
            "side_to_move": self.side_to_move,
            "in_check": self.in_check,
            "turn": self.turn.value,
            "terminal_summary": self.terminal_summary,
            "analysis": self.analysis,
            "ai_thinking": self.ai_thinking,
            "difficulty": self.difficulty,
            "human_color": self.human_color,
            "history": list(self.history),
            "ply": self.ply,
            "chat_log": [m.to_dict() for m in self.chat_log],
            "selected_square": self.selected_square,
            "legal_destinations": list(self.legal_destinations),
        }
