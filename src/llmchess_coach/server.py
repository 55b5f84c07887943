"""
Minimal Flask API that puts GameSession behind HTTP for a board UI.

Endpoints:
- POST /api/sessions                     -> start a human vs AI session {human_plays, difficulty}
- GET  /api/sessions/<id>                -> snapshot; ?square=e2 adds legal destinations for highlighting
- POST /api/sessions/<id>/move           -> submit {from, to, promotion} or {move: "e2e4"}; AI replies in the background
- POST /api/sessions/<id>/chat           -> send {message} to the coach and receive the reply
- POST /api/sessions/<id>/difficulty     -> set {difficulty} (Elo 100-4000)
- POST /api/sessions/<id>/new-game       -> replace the game {human_plays?, difficulty?}
- GET  /api/sessions/<id>/pgn            -> PGN of the current game
- GET  /api/sessions/<id>/metrics        -> per-game counters (fallbacks, stale replies, latency)

Sessions live in memory only. All session state is touched from a single asyncio loop
thread (SessionHost); request threads hand coroutines to it and wait for the result.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import threading
import time
import uuid
from typing import Callable, Dict, Optional

from flask import Flask, jsonify, request

from .config import SETTINGS
from .errors import SessionError
from .game import GameConfig, GameSession
from .providers import AiAnalysisProvider, AiChatProvider, AiMoveProvider
from .session import MoveRequest

log = logging.getLogger("server")

SESSION_TTL_S = 3600  # drop inactive sessions after an hour to avoid leaks
REQUEST_TIMEOUT_S = SETTINGS.responses_timeout_s * (SETTINGS.responses_retries + 1) + 15

CONFLICT_CODES = {"turn_not_yours", "game_over", "difficulty_locked"}

SessionFactory = Callable[[GameConfig], GameSession]


def default_session_factory(cfg: GameConfig) -> GameSession:
    return GameSession(AiMoveProvider(), AiAnalysisProvider(), AiChatProvider(), cfg=cfg)


class SessionHost:
    """Owns the event loop thread and the in-memory session table."""

    def __init__(self, session_factory: SessionFactory | None = None):
        self.session_factory = session_factory or default_session_factory
        self.sessions: Dict[str, dict] = {}
        self._lock = threading.Lock()
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name="session-loop", daemon=True)
        self._thread.start()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def run(self, coro, timeout: float | None = REQUEST_TIMEOUT_S):
        """Run a coroutine on the session loop and block the calling thread for its result."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    def call(self, fn: Callable, *args, **kwargs):
        """Run a plain callable on the session loop (reads must not race with transitions)."""
        async def _invoke():
            return fn(*args, **kwargs)
        return self.run(_invoke())

    def create(self, cfg: GameConfig) -> tuple[str, GameSession]:
        async def _create() -> GameSession:
            sess = self.session_factory(cfg)
            await sess.start()
            return sess
        sess = self.run(_create())
        host_id = f"game_{int(time.time())}_{uuid.uuid4().hex[:6]}"
        with self._lock:
            self.sessions[host_id] = {"session": sess, "updated_at": time.time()}
        return host_id, sess

    def get(self, host_id: str) -> Optional[GameSession]:
        with self._lock:
            entry = self.sessions.get(host_id)
            if not entry:
                return None
            entry["updated_at"] = time.time()
            return entry["session"]

    def cleanup(self, max_age_s: int = SESSION_TTL_S) -> None:
        now = time.time()
        with self._lock:
            expired = [sid for sid, entry in self.sessions.items() if now - entry["updated_at"] > max_age_s]
            for sid in expired:
                self.sessions.pop(sid, None)
        if expired:
            log.info("Dropped %d inactive sessions", len(expired))

    def close(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)


def _error(code: str, message: str, status: int):
    return jsonify({"error": code, "message": message}), status


def _session_error(exc: SessionError):
    status = 409 if exc.code in CONFLICT_CODES else 400
    return _error(exc.code, str(exc), status)


def _move_from_payload(data: dict) -> Optional[MoveRequest]:
    raw = data.get("move")
    if isinstance(raw, str) and raw.strip():
        return MoveRequest.from_uci(raw)
    if data.get("from") and data.get("to"):
        return MoveRequest(str(data["from"]), str(data["to"]), data.get("promotion") or None)
    return None


def create_app(session_factory: SessionFactory | None = None, host: SessionHost | None = None) -> Flask:
    app = Flask(__name__)
    host = host or SessionHost(session_factory)
    app.config["SESSION_HOST"] = host

    def _lookup(host_id: str):
        host.cleanup()
        return host.get(host_id)

    def _snapshot(sess: GameSession, square: str | None = None) -> dict:
        return host.call(sess.snapshot, square).to_dict()

    @app.route("/api/sessions", methods=["POST"])
    def create_session():
        data = request.get_json(silent=True) or {}
        human_side = "black" if str(data.get("human_plays", "white")).lower() == "black" else "white"
        cfg = GameConfig(human_color=human_side)
        if data.get("difficulty") is not None:
            cfg.difficulty = data["difficulty"]
        try:
            host_id, sess = host.create(cfg)
        except SessionError as exc:
            return _session_error(exc)
        log.info("Started session %s (human=%s)", host_id, human_side)
        return jsonify({"id": host_id, "session": _snapshot(sess)}), 201

    @app.route("/api/sessions/<host_id>", methods=["GET"])
    def get_session(host_id: str):
        sess = _lookup(host_id)
        if sess is None:
            return _error("not_found", "unknown session", 404)
        return jsonify({"id": host_id, "session": _snapshot(sess, request.args.get("square"))})

    @app.route("/api/sessions/<host_id>/move", methods=["POST"])
    def submit_move(host_id: str):
        sess = _lookup(host_id)
        if sess is None:
            return _error("not_found", "unknown session", 404)
        move = _move_from_payload(request.get_json(silent=True) or {})
        if move is None:
            return _error("missing_move", "provide 'move' or 'from'/'to'", 400)
        try:
            record = host.run(sess.submit_human_move(move))
        except SessionError as exc:
            return _session_error(exc)
        return jsonify({"id": host_id, "move": record.to_dict(), "session": _snapshot(sess)})

    @app.route("/api/sessions/<host_id>/chat", methods=["POST"])
    def send_chat(host_id: str):
        sess = _lookup(host_id)
        if sess is None:
            return _error("not_found", "unknown session", 404)
        message = (request.get_json(silent=True) or {}).get("message") or ""
        if not str(message).strip():
            return _error("missing_message", "message is required", 400)
        reply = host.run(sess.send_chat_message(str(message)))
        return jsonify({"id": host_id, "reply": reply, "session": _snapshot(sess)})

    @app.route("/api/sessions/<host_id>/difficulty", methods=["POST"])
    def set_difficulty(host_id: str):
        sess = _lookup(host_id)
        if sess is None:
            return _error("not_found", "unknown session", 404)
        data = request.get_json(silent=True) or {}
        try:
            host.run(sess.set_difficulty(data.get("difficulty")))
        except SessionError as exc:
            return _session_error(exc)
        return jsonify({"id": host_id, "session": _snapshot(sess)})

    @app.route("/api/sessions/<host_id>/new-game", methods=["POST"])
    def new_game(host_id: str):
        sess = _lookup(host_id)
        if sess is None:
            return _error("not_found", "unknown session", 404)
        data = request.get_json(silent=True) or {}
        human_plays = data.get("human_plays")
        if human_plays is not None:
            human_plays = "black" if str(human_plays).lower() == "black" else "white"
        try:
            snap = host.run(sess.new_game(human_color=human_plays, difficulty=data.get("difficulty")))
        except SessionError as exc:
            return _session_error(exc)
        return jsonify({"id": host_id, "session": snap.to_dict()})

    @app.route("/api/sessions/<host_id>/pgn", methods=["GET"])
    def export_pgn(host_id: str):
        sess = _lookup(host_id)
        if sess is None:
            return _error("not_found", "unknown session", 404)
        return jsonify({"id": host_id, "pgn": host.call(sess.export_pgn)})

    @app.route("/api/sessions/<host_id>/metrics", methods=["GET"])
    def session_metrics(host_id: str):
        sess = _lookup(host_id)
        if sess is None:
            return _error("not_found", "unknown session", 404)
        return jsonify({"id": host_id, "metrics": host.call(sess.metrics)})

    return app


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(description="Serve the LLM Chess Coach JSON API.")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=5000)
    ap.add_argument("--log-level", default="INFO", help="Python logging level (e.g., INFO, DEBUG)")
    args = ap.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = create_app()
    app.run(host=args.host, port=args.port, threaded=True)


if __name__ == "__main__":
    main()
