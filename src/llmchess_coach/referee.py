"""
Referee: the rules-engine adapter over python-chess.

- Stateless: every call takes an immutable Position and returns a new one; nothing is pushed in place.
- apply() validates and applies a MoveRequest, returning (Position, SAN) or raising IllegalMove.
- terminal() reports checkmate/draw (claimable draws included, as the board UI treats them as game over).
- legal_destinations() serves square highlighting; pgn() serializes a finished or ongoing game.

Used by GameSession for every legality decision; no other module interprets chess rules.
"""
from __future__ import annotations

import datetime
import logging
from functools import lru_cache
from typing import Iterable, Optional

import chess
import chess.pgn

from .errors import IllegalMove
from .session import MoveRequest, NOT_TERMINAL, Position, STARTING_FEN, Terminal, TerminalKind

log = logging.getLogger("referee")


@lru_cache(maxsize=512)
def _replay(start_fen: str, moves: tuple[str, ...]) -> chess.Board:
    board = chess.Board(fen=start_fen)
    for uci in moves:
        board.push(chess.Move.from_uci(uci))
    return board


def _color_name(color: bool) -> str:
    return "white" if color == chess.WHITE else "black"


class Referee:
    """Plain chess referee around python-chess Board and PGN export."""

    def initial_position(self, start_fen: str | None = None) -> Position:
        fen = start_fen or STARTING_FEN
        try:
            board = chess.Board(fen=fen)
        except ValueError as exc:
            raise ValueError(f"Invalid start FEN: {fen!r}") from exc
        return Position(fen=board.fen(), start_fen=board.fen())

    def board(self, position: Position) -> chess.Board:
        """Return a private copy of the full board (move stack included) for the position."""
        return _replay(position.start_fen, position.moves).copy()

    # ---------------- Move Application -----------------
    def to_move(self, position: Position, req: MoveRequest) -> chess.Move:
        """Resolve a MoveRequest to a legal python-chess Move or raise IllegalMove.

        A pawn reaching the last rank without an explicit promotion promotes to a queen.
        """
        if not req.is_well_formed:
            raise IllegalMove(f"Malformed move {req.uci!r}")
        board = self.board(position)
        try:
            mv = chess.Move.from_uci(req.uci)
        except ValueError as exc:
            raise IllegalMove(f"Malformed move {req.uci!r}") from exc
        if mv in board.legal_moves:
            return mv
        if req.promotion is None:
            queened = chess.Move(mv.from_square, mv.to_square, promotion=chess.QUEEN)
            if queened in board.legal_moves:
                return queened
        raise IllegalMove(f"Illegal move {req.uci} in {position.fen}")

    def apply(self, position: Position, req: MoveRequest) -> tuple[Position, str]:
        mv = self.to_move(position, req)
        board = self.board(position)
        san = board.san(mv)
        board.push(mv)
        return Position(fen=board.fen(), start_fen=position.start_fen, moves=position.moves + (mv.uci(),)), san

    def legal_moves(self, position: Position) -> list[chess.Move]:
        return list(self.board(position).legal_moves)

    def legal_destinations(self, position: Position, square: str) -> list[str]:
        """Destination squares reachable from `square` for the side to move (empty if none/invalid)."""
        try:
            from_sq = chess.parse_square((square or "").strip().lower())
        except ValueError:
            return []
        board = self.board(position)
        return sorted({chess.square_name(m.to_square) for m in board.legal_moves if m.from_square == from_sq})

    # ---------------- Status -----------------
    def side_to_move(self, position: Position) -> str:
        return position.side_to_move

    def in_check(self, position: Position) -> bool:
        return self.board(position).is_check()

    def terminal(self, position: Position) -> Terminal:
        outcome = self.board(position).outcome(claim_draw=True)
        if outcome is None:
            return NOT_TERMINAL
        reason = outcome.termination.name.lower()
        if outcome.termination == chess.Termination.CHECKMATE:
            return Terminal(TerminalKind.CHECKMATE, winner=_color_name(outcome.winner), reason=reason)
        return Terminal(TerminalKind.DRAW, reason=reason)

    def result(self, position: Position) -> str:
        outcome = self.board(position).outcome(claim_draw=True)
        return outcome.result() if outcome else "*"

    # ---------------- Replay / PGN -----------------
    def replay_san(self, sans: Iterable[str], start_fen: str = STARTING_FEN) -> Position:
        """Rebuild a Position by applying SAN moves in order; raises IllegalMove on the first bad one."""
        board = chess.Board(fen=start_fen)
        start = board.fen()
        ucis: list[str] = []
        for san in sans:
            try:
                mv = board.parse_san(san)
            except ValueError as exc:
                raise IllegalMove(f"Cannot replay {san!r} at ply {len(ucis) + 1}") from exc
            board.push(mv)
            ucis.append(mv.uci())
        return Position(fen=board.fen(), start_fen=start, moves=tuple(ucis))

    def pgn(self, position: Position, white: str = "?", black: str = "?",
            event: str = "LLM Chess Coach", comment: Optional[str] = None) -> str:
        game = chess.pgn.Game()
        game.headers["Event"] = event
        game.headers["Date"] = datetime.date.today().strftime("%Y.%m.%d")
        game.headers["White"] = white
        game.headers["Black"] = black
        game.headers["Result"] = self.result(position)
        if position.start_fen != STARTING_FEN:
            game.setup(chess.Board(fen=position.start_fen))
        node = game
        for uci in position.moves:
            node = node.add_variation(chess.Move.from_uci(uci))
        if comment:
            game.comment = comment
        exporter = chess.pgn.StringExporter(headers=True, variations=False, comments=bool(comment))
        return game.accept(exporter)
