"""
Agent-backed normalizer for raw LLM move replies.

Flow:
1) Quick scan for a SAN/UCI-looking token (move_validator.extract_move_token).
2) If none is found and the guard agent is enabled (LLMCHESS_USE_GUARD_AGENT), ask a tiny
   guard Agent (Agents SDK) to return one move or NONE.

Returns the candidate token, or an empty string. The token is never trusted: the
session validates it against the board before applying anything.
"""
from __future__ import annotations
import logging
from agents import Agent, Runner, ModelSettings
from .config import SETTINGS
from .move_validator import extract_move_token, looks_like_move

log = logging.getLogger("agent_normalizer")

INSTRUCTIONS = (
    "You receive a raw reply from a chess player.\n"
    "Find the single chess move it proposes and avoid any other text.\n"
    "Output ONLY that move in SAN (e.g. Nf3, exd5, O-O, e8=Q). If no move is present, output the single word NONE."
)

move_guard = Agent(
    name="MoveGuard",
    instructions=INSTRUCTIONS,
    model=SETTINGS.model,
    model_settings=ModelSettings(temperature=0.0),
)


async def _agent_suggest(raw_reply: str) -> str:
    user = f"RAW REPLY: {raw_reply}\nReturn only the move in SAN or NONE:"
    result = await Runner.run(move_guard, user)
    return (result.final_output or "").strip()


async def normalize_with_agent(raw_reply: str, use_agent: bool | None = None) -> str:
    cand = extract_move_token(raw_reply)
    if cand:
        return cand
    if not (SETTINGS.use_guard_agent if use_agent is None else use_agent):
        return ""
    try:
        suggestion = await _agent_suggest(raw_reply)
    except Exception:
        log.exception("Guard agent failed")
        return ""
    token = extract_move_token(suggestion)
    if token and looks_like_move(token):
        return token
    return ""
