"""Interactive terminal game against the AI, with coach chat.

Commands at the prompt:
  e4 / e2e4      play a move (SAN or UCI)
  /chat <text>   talk to the coach
  /elo <n>       change AI difficulty
  /moves <sq>    list legal destinations from a square
  /new [black]   start a new game
  /pgn           print the game so far
  /quit          leave
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Optional

import chess

from .config import SETTINGS
from .errors import SessionError
from .game import GameConfig, GameSession
from .providers import AiAnalysisProvider, AiChatProvider, AiMoveProvider
from .session import MoveRequest, TurnState

log = logging.getLogger("play")


def load_json_config(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        log.error("Failed to read config %s: %s", path, e)
        return {}


def parse_user_move(raw: str, board: chess.Board) -> Optional[MoveRequest]:
    """Accept UCI or SAN; return None if the text is not a move on this board."""
    raw = raw.strip()
    try:
        mv = chess.Move.from_uci(raw) if len(raw) >= 4 else None
    except ValueError:
        mv = None
    if not mv:
        try:
            mv = board.parse_san(raw)
        except ValueError:
            mv = None
    return MoveRequest.from_uci(mv.uci()) if mv else None


def print_state(session: GameSession) -> None:
    snap = session.snapshot()
    board = session.referee.board(session.state.position)
    print()
    orientation = chess.WHITE if snap.human_color == "white" else chess.BLACK
    print(board.unicode(invert_color=True, orientation=orientation))
    print(f"Moves: {' '.join(snap.history[-8:]) or '(none)'}   Turn: {snap.side_to_move}"
          f"{'  CHECK' if snap.in_check else ''}   AI: {snap.difficulty} Elo")
    print(f"AI insight: {snap.analysis}")
    if snap.terminal_summary:
        print(f"*** {snap.terminal_summary} ***")


async def run(session: GameSession) -> None:
    await session.start()
    await session.wait_idle()
    print_state(session)
    shown_chat = len(session.state.chat_log)
    while True:
        raw = (await asyncio.to_thread(input, "\n> ")).strip()
        if not raw:
            continue
        cmd, _, rest = raw.partition(" ")
        try:
            if cmd in ("/quit", "/exit"):
                return
            if cmd == "/chat":
                await session.send_chat_message(rest)
            elif cmd == "/elo":
                await session.set_difficulty(rest)
            elif cmd == "/moves":
                print("Destinations:", ", ".join(session.legal_destinations(rest)) or "(none)")
                continue
            elif cmd == "/new":
                await session.new_game(human_color=rest or None)
            elif cmd == "/pgn":
                print(session.export_pgn())
                continue
            else:
                board = session.referee.board(session.state.position)
                move = parse_user_move(raw, board)
                if move is None:
                    print("Illegal move. Please try again with a legal move.")
                    continue
                await session.submit_human_move(move)
                if session.state.turn is TurnState.AI_TURN_IN_FLIGHT:
                    print("AI is thinking...")
        except SessionError as exc:
            print(f"Rejected ({exc.code}): {exc}")
            continue
        except ValueError as exc:
            print(f"Rejected: {exc}")
            continue
        await session.wait_idle()
        chat = session.state.chat_log
        for msg in chat[shown_chat:]:
            print(f"[{'you' if msg.role == 'user' else 'coach'}] {msg.text}")
        shown_chat = len(chat)
        print_state(session)


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(description="Play chess against an LLM with a chat coach.")
    ap.add_argument("--config", default=None, help="Optional JSON config file to load defaults from.")
    ap.add_argument("--model", default=None, help="Model for moves, analysis and chat (overrides settings)")
    ap.add_argument("--color", choices=["white", "black"], default=None, help="Which side you play")
    ap.add_argument("--elo", type=int, default=None, help="AI difficulty (100-4000)")
    ap.add_argument("--fallback", choices=["first", "random", "heuristic"], default=None,
                    help="How to pick a move when the AI suggestion is unusable")
    ap.add_argument("--no-analysis", action="store_true", help="Skip per-move AI commentary")
    ap.add_argument("--log-level", default=None, help="Python logging level (e.g., INFO, DEBUG)")
    args = ap.parse_args(argv)

    cfg_dict = load_json_config(args.config) if args.config else {}

    # Resolve values with precedence: CLI arg if provided -> config -> default
    def pick(key, default=None):
        v = getattr(args, key, None)
        if v is not None:
            return v
        if cfg_dict.get(key) is not None:
            return cfg_dict[key]
        return default

    log_level = str(pick("log_level", default="WARNING")).upper()
    logging.basicConfig(level=getattr(logging, log_level, logging.WARNING), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    model = pick("model", default=None)
    gcfg = GameConfig(
        human_color=pick("color", default="white"),
        difficulty=int(pick("elo", default=SETTINGS.default_difficulty)),
        fallback_policy=pick("fallback", default=SETTINGS.fallback_policy),
        analyze_moves=not (args.no_analysis or bool(cfg_dict.get("no_analysis", False))),
    )
    session = GameSession(
        AiMoveProvider(model=model),
        AiAnalysisProvider(model=model),
        AiChatProvider(model=model),
        cfg=gcfg,
    )
    log.info("Starting game: model=%s color=%s elo=%d", model or SETTINGS.model, gcfg.human_color, gcfg.difficulty)
    try:
        asyncio.run(run(session))
    except (KeyboardInterrupt, EOFError):
        pass
    print(session.export_pgn())


if __name__ == "__main__":
    main()
