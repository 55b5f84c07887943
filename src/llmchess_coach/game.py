"""
Single-game session and config.

- GameConfig: knobs for side, difficulty, AI pacing, analysis window and fallback policy.
- GameSession: orchestrates one human-vs-AI game on a single asyncio event loop.
  - Human moves are validated and applied through the Referee; the AI turn then runs as a
    background task: short pause, move request, parse/validate, fallback policy on failure.
  - Every applied move schedules a best-effort analysis request; chat runs alongside.
  - State lives in one immutable SessionState replaced on every transition. Background
    replies carry a (session_id, ply) token and are dropped if the game moved on.
  - Exposes snapshot() for presentation plus PGN export, history verification and metrics.
"""
from __future__ import annotations

import asyncio
import logging
import statistics
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Optional, Union

from .config import SETTINGS
from .errors import DifficultyLocked, GameIsOver, IllegalMove, InvalidDifficulty, TurnNotYours
from .fallback_policies import FallbackPolicy, create_fallback_policy
from .moderation import ContentClassifier, KeywordClassifier
from .move_validator import parse_ai_move
from .providers import ANALYSIS_FAILED, CHAT_FAILED
from .referee import Referee
from .session import (
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    ChatMessage,
    MoveRecord,
    MoveRequest,
    Position,
    SessionSnapshot,
    SessionState,
    Terminal,
    TurnState,
    new_session_id,
)

Token = tuple[str, int]

COLORS = ("white", "black")


def validate_difficulty(value) -> int:
    try:
        elo = int(value)
    except (TypeError, ValueError):
        raise InvalidDifficulty(f"Difficulty must be an integer, got {value!r}") from None
    if not MIN_DIFFICULTY <= elo <= MAX_DIFFICULTY:
        raise InvalidDifficulty(f"Difficulty must be between {MIN_DIFFICULTY} and {MAX_DIFFICULTY}, got {elo}")
    return elo


def _validate_color(value: str) -> str:
    color = str(value or "").strip().lower()
    if color not in COLORS:
        raise ValueError(f"human_color must be 'white' or 'black', got {value!r}")
    return color


@dataclass
class GameConfig:
    human_color: str = "white"
    start_fen: str | None = None
    difficulty: int = field(default_factory=lambda: SETTINGS.default_difficulty)
    # pause between the human move and the AI request so the board can render first
    ai_move_delay_s: float = field(default_factory=lambda: SETTINGS.ai_move_delay_s)
    analysis_history_plies: int = 5
    analyze_moves: bool = True
    fallback_policy: str = field(default_factory=lambda: SETTINGS.fallback_policy)
    human_name: str = "Human"
    ai_name: str = "AI"


class GameSession:
    def __init__(self, move_provider, analysis_provider, chat_provider, cfg: GameConfig | None = None,
                 referee: Referee | None = None, fallback: FallbackPolicy | None = None,
                 classifier: ContentClassifier | None = None):
        self.log = logging.getLogger("GameSession")
        self.cfg = cfg or GameConfig()
        self.move_provider = move_provider
        self.analysis_provider = analysis_provider
        self.chat_provider = chat_provider
        self.referee = referee or Referee()
        self.fallback = fallback or create_fallback_policy(self.cfg.fallback_policy)
        self.classifier = classifier or KeywordClassifier()
        self._tasks: set[asyncio.Task] = set()
        self._ai_token: Optional[Token] = None
        self.counters: Counter = Counter()
        self._latencies_ms: list[int] = []
        self._state = self._fresh_state(
            _validate_color(self.cfg.human_color),
            validate_difficulty(self.cfg.difficulty),
            analysis="Make a move to see AI analysis.",
        )

    # ---------------- State -----------------
    @property
    def state(self) -> SessionState:
        return self._state

    def _fresh_state(self, human_color: str, difficulty: int, analysis: str) -> SessionState:
        position = self.referee.initial_position(self.cfg.start_fen)
        terminal = self.referee.terminal(position)
        return SessionState(
            position=position,
            difficulty=difficulty,
            human_color=human_color,
            turn=self._derive_turn(position, terminal, human_color),
            terminal=terminal,
            analysis=analysis,
            session_id=new_session_id(),
        )

    @staticmethod
    def _derive_turn(position: Position, terminal: Terminal, human_color: str) -> TurnState:
        if terminal.is_over:
            return TurnState.GAME_OVER
        if position.side_to_move == human_color:
            return TurnState.HUMAN_TO_MOVE
        return TurnState.AI_TURN_IN_FLIGHT

    def _commit(self, new_state: SessionState) -> None:
        self._state = new_state

    def _token(self) -> Token:
        return self._state.session_id, self._state.ply

    def _is_current(self, token: Token) -> bool:
        return token == self._token()

    # ---------------- Background tasks -----------------
    def _schedule(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.log.error("Background task failed", exc_info=task.exception())

    def _schedule_ai_turn(self) -> None:
        token = self._token()
        if token == self._ai_token:
            return
        self._ai_token = token
        self._schedule(self._play_ai_turn(token))

    async def start(self) -> None:
        """Kick off the AI's move if it is to play first (human plays black)."""
        if self._state.turn is TurnState.AI_TURN_IN_FLIGHT:
            self._schedule_ai_turn()

    async def wait_idle(self) -> None:
        """Wait until no AI turn, analysis or other background task is outstanding."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ---------------- Transitions -----------------
    def _record_move(self, position: Position, record: MoveRecord) -> None:
        """Commit an applied move and schedule whatever follows it."""
        state = self._state
        terminal = self.referee.terminal(position)
        turn = self._derive_turn(position, terminal, state.human_color)
        chat_log = state.chat_log
        if terminal.is_over:
            chat_log = chat_log + (ChatMessage("assistant", f"Game Over. {terminal.summary}"),)
            self.log.info("Game finished: %s (plies=%d)", terminal.summary, state.ply + 1)
        self._commit(replace(
            state,
            position=position,
            history=state.history + (record,),
            turn=turn,
            terminal=terminal,
            chat_log=chat_log,
            ai_thinking=False,
        ))
        if self.cfg.analyze_moves:
            self._schedule(self._refresh_analysis(self._token(), self._state))
        if turn is TurnState.AI_TURN_IN_FLIGHT:
            self._schedule_ai_turn()

    async def submit_human_move(self, move: Union[MoveRequest, str]) -> MoveRecord:
        """Apply the human's move, or raise GameIsOver / TurnNotYours / IllegalMove without touching state."""
        if isinstance(move, str):
            move = MoveRequest.from_uci(move)
        state = self._state
        if state.turn is TurnState.GAME_OVER:
            raise GameIsOver(state.terminal.summary or "The game is over.")
        if state.turn is TurnState.AI_TURN_IN_FLIGHT:
            raise TurnNotYours("Wait for the AI to move.")
        position, san = self.referee.apply(state.position, move)
        record = MoveRecord(san=san, uci=position.last_move, actor="human", source="human")
        self.log.info("[ply %d] Human: move=%s (%s)", state.ply + 1, san, record.uci)
        self._record_move(position, record)
        return record

    async def _play_ai_turn(self, token: Token) -> None:
        if self.cfg.ai_move_delay_s > 0:
            await asyncio.sleep(self.cfg.ai_move_delay_s)
        if not self._is_current(token):
            return
        state = replace(self._state, ai_thinking=True)
        self._commit(state)
        t0 = time.monotonic()
        try:
            suggestion = await self.move_provider.suggest_move(state.position, state.difficulty)
        except Exception:
            self.log.exception("Move provider raised; treating as provider failure")
            suggestion = None
        ms = int((time.monotonic() - t0) * 1000)
        if not self._is_current(token):
            self.counters["stale_responses"] += 1
            self.log.info("Discarding AI move %r for a superseded position", suggestion)
            return
        self._latencies_ms.append(ms)
        try:
            position, record = self._resolve_ai_move(self._state.position, suggestion)
        except Exception:
            # No legal move could be produced; release the turn so start() can retry it.
            self.log.exception("AI turn failed at ply %d", token[1])
            self._ai_token = None
            self._commit(replace(self._state, ai_thinking=False))
            return
        self.log.info("[ply %d] AI: move=%s source=%s time_ms=%d raw=%r",
                      token[1] + 1, record.san, record.source, ms, suggestion)
        self._record_move(position, record)

    def _resolve_ai_move(self, position: Position, suggestion: Optional[str]) -> tuple[Position, MoveRecord]:
        """Apply the suggested move if legal, otherwise a move chosen by the fallback policy."""
        if suggestion is None:
            reason = "provider_failure"
        else:
            reason = "illegal_suggestion"
            try:
                parsed = parse_ai_move(suggestion, self.referee.board(position))
                if parsed.get("ok"):
                    new_position, san = self.referee.apply(position, MoveRequest.from_uci(parsed["uci"]))
                    return new_position, MoveRecord(san=san, uci=parsed["uci"], actor="ai", source="provider")
                self.log.warning("AI suggested unusable move %r (%s); using fallback", suggestion, parsed.get("reason"))
            except Exception:
                self.log.exception("Could not apply AI suggestion %r; using fallback", suggestion)
        self.counters[reason] += 1
        self.counters["fallback_moves"] += 1
        mv = self.fallback.choose(self.referee.board(position))
        new_position, san = self.referee.apply(position, MoveRequest.from_uci(mv.uci()))
        return new_position, MoveRecord(san=san, uci=mv.uci(), actor="ai", source="fallback", note=reason)

    async def _refresh_analysis(self, token: Token, state: SessionState) -> None:
        n = self.cfg.analysis_history_plies
        recent = [r.san for r in state.history[-n:]] if n > 0 else []
        try:
            text = await self.analysis_provider.analyze(state.position, recent, state.difficulty)
        except Exception:
            self.log.exception("Analysis provider raised")
            text = ANALYSIS_FAILED
        if not self._is_current(token):
            self.counters["stale_responses"] += 1
            self.log.debug("Discarding stale analysis for ply %d", token[1])
            return
        self._commit(replace(self._state, analysis=text))

    # ---------------- Chat / settings -----------------
    async def send_chat_message(self, text: str) -> Optional[str]:
        """Append the user's message, fetch the coach reply and append it. Blank text is ignored."""
        text = (text or "").strip()
        if not text:
            return None
        state = replace(self._state, chat_log=self._state.chat_log + (ChatMessage("user", text),))
        self._commit(state)
        signal = self.classifier.classify(text)
        if signal.hostile:
            self.log.info("Hostile chat message (matched %s); using roast persona", ", ".join(signal.matched))
        try:
            reply = await self.chat_provider.reply(text, state.position, state.difficulty, hostile=signal.hostile)
        except Exception:
            self.log.exception("Chat provider raised")
            reply = CHAT_FAILED
        current = self._state
        if current.session_id != state.session_id:
            self.counters["stale_responses"] += 1
            self.log.debug("Discarding chat reply for a replaced session")
            return None
        self._commit(replace(current, chat_log=current.chat_log + (ChatMessage("assistant", reply),)))
        return reply

    async def set_difficulty(self, value) -> int:
        state = self._state
        if state.turn is TurnState.AI_TURN_IN_FLIGHT:
            raise DifficultyLocked("Difficulty cannot change while the AI is moving.")
        elo = validate_difficulty(value)
        self._commit(replace(state, difficulty=elo))
        self.log.info("Difficulty set to %d", elo)
        return elo

    async def new_game(self, human_color: str | None = None, difficulty=None) -> SessionSnapshot:
        """Replace the whole session; replies still in flight for the old one are dropped on arrival."""
        color = _validate_color(human_color or self._state.human_color)
        elo = self._state.difficulty if difficulty is None else validate_difficulty(difficulty)
        self._commit(self._fresh_state(color, elo, analysis=f"New game started. You are {color.capitalize()}."))
        self.counters.clear()
        self._latencies_ms = []
        self.log.info("New game %s: human=%s difficulty=%d", self._state.session_id, color, elo)
        await self.start()
        return self.snapshot()

    # ---------------- Presentation -----------------
    def legal_destinations(self, square: str) -> list[str]:
        state = self._state
        if state.turn is not TurnState.HUMAN_TO_MOVE:
            return []
        return self.referee.legal_destinations(state.position, square)

    def snapshot(self, selected_square: str | None = None) -> SessionSnapshot:
        state = self._state
        dests = tuple(self.legal_destinations(selected_square)) if selected_square else ()
        return SessionSnapshot(
            session_id=state.session_id,
            fen=state.position.fen,
            side_to_move=state.position.side_to_move,
            in_check=self.referee.in_check(state.position),
            turn=state.turn,
            terminal_summary=state.terminal.summary,
            analysis=state.analysis,
            ai_thinking=state.ai_thinking,
            difficulty=state.difficulty,
            human_color=state.human_color,
            history=tuple(r.san for r in state.history),
            chat_log=state.chat_log,
            selected_square=selected_square,
            legal_destinations=dests,
        )

    # ---------------- Export / Verification -----------------
    def export_pgn(self) -> str:
        state = self._state
        ai_label = f"{self.cfg.ai_name} ({state.difficulty} Elo)"
        white, black = (self.cfg.human_name, ai_label) if state.human_color == "white" else (ai_label, self.cfg.human_name)
        comment = f"Termination: {state.terminal.reason}" if state.terminal.is_over else None
        return self.referee.pgn(state.position, white=white, black=black, comment=comment)

    def verify_history(self) -> dict:
        """Replay the SAN history from the start position and compare with the current position."""
        state = self._state
        try:
            replayed = self.referee.replay_san([r.san for r in state.history], state.position.start_fen)
        except IllegalMove as exc:
            return {"ok": False, "error": str(exc)}
        return {"ok": replayed.fen == state.position.fen, "replayed_fen": replayed.fen, "fen": state.position.fen}

    def metrics(self) -> dict:
        state = self._state
        ai_moves = [r for r in state.history if r.actor == "ai"]
        lat = self._latencies_ms
        return {
            "plies_total": state.ply,
            "plies_ai": len(ai_moves),
            "ai_provider_moves": sum(1 for r in ai_moves if r.source == "provider"),
            "ai_fallback_moves": self.counters["fallback_moves"],
            "ai_provider_failures": self.counters["provider_failure"],
            "ai_illegal_suggestions": self.counters["illegal_suggestion"],
            "stale_responses_discarded": self.counters["stale_responses"],
            "latency_ms_avg": statistics.mean(lat) if lat else 0,
            "result": self.referee.result(state.position),
            "terminal": state.terminal.kind.value,
            "difficulty": state.difficulty,
        }
