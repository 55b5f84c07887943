"""
Move parsing/validation helpers for LLM replies.

The model is asked for a single SAN move, but replies arrive in every shape:
fenced code, move numbers ("12... Nf6"), trailing commentary, UCI, zero-castling.
extract_move_token() reduces a reply to one candidate token; parse_ai_move()
turns a token into a legal move for a given board or reports why it cannot.
Nothing here trusts the text: legality is always decided by python-chess.
"""
from __future__ import annotations

import re
from typing import TypedDict

import chess

UCI_RE = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$", re.I)
SAN_RE = re.compile(r"^(?:O-O(?:-O)?|[KQRBN]?[a-h]?[1-8]?x?[a-h][1-8](?:=?[QRBNqrbn])?)[+#]?$")
MOVE_NUMBER_RE = re.compile(r"^\d+\.+")
CASTLE_ZERO = {"0-0": "O-O", "0-0-0": "O-O-O", "o-o": "O-O", "o-o-o": "O-O-O"}
TRAILING_PUNCT = ".,;:!?*\"'`)]}"


class ParsedMove(TypedDict, total=False):
    ok: bool
    uci: str
    san: str
    reason: str
    token: str


def _strip_code_fence(text: str) -> str:
    """Remove simple ``` fences if present."""
    text = text.strip()
    if text.startswith("```") and text.endswith("```"):
        inner = text.split("\n", 1)
        if len(inner) == 2:
            return inner[1].rsplit("\n", 1)[0].strip()
        return text.strip("`").strip()
    return text


def _clean_token(tok: str) -> str:
    tok = tok.strip().strip("*`\"'([{")
    tok = MOVE_NUMBER_RE.sub("", tok)
    tok = tok.rstrip(TRAILING_PUNCT)
    tok = tok.replace("!", "").replace("?", "")
    return CASTLE_ZERO.get(tok.lower(), tok)


def looks_like_move(tok: str) -> bool:
    return bool(tok) and (bool(SAN_RE.match(tok)) or bool(UCI_RE.match(tok)))


def extract_move_token(raw_text: str | None) -> str:
    """Return the first move-looking token in an LLM reply, or '' if there is none."""
    if not raw_text:
        return ""
    text = _strip_code_fence(raw_text)
    for tok in text.replace("\n", " ").split():
        cand = _clean_token(tok)
        if looks_like_move(cand):
            return cand
    return ""


def parse_ai_move(token: str | None, board: chess.Board) -> ParsedMove:
    """
    Resolve a candidate token against the board: SAN first, then UCI.
    Returns ParsedMove with ok/uci/san, or ok=False with a reason.
    """
    token = _clean_token(token or "")
    if not token:
        return {"ok": False, "reason": "empty_reply", "token": token}

    try:
        mv = board.parse_san(token)
    except ValueError:
        mv = None
    # parse_san accepts "--", "Z0", "0000" and "@@@@" as a null move
    if mv is not None and not mv:
        return {"ok": False, "reason": "null_move", "token": token}
    if mv is None and UCI_RE.match(token):
        try:
            mv = chess.Move.from_uci(token.lower())
        except ValueError:
            return {"ok": False, "reason": "bad_uci_parse", "token": token}
        if mv not in board.legal_moves:
            return {"ok": False, "reason": "illegal_move", "token": token}
    if mv is None:
        reason = "bad_san" if looks_like_move(token) else "not_a_move"
        return {"ok": False, "reason": reason, "token": token}
    return {"ok": True, "uci": mv.uci(), "san": board.san(mv), "token": token}


__all__ = [
    "ParsedMove",
    "extract_move_token",
    "looks_like_move",
    "parse_ai_move",
]
