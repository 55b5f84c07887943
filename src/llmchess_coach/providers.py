"""
AI providers: move suggestion, position analysis, coach chat.

Each provider wraps one request kind over llm_client.complete (injectable for
tests) and owns its failure policy, so nothing raised by the transport ever
reaches the session:

- AiMoveProvider.suggest_move()  -> move token or None
- AiAnalysisProvider.analyze()   -> text, or a fixed fallback string
- AiChatProvider.reply()         -> text, or a fixed fallback string
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from . import llm_client
from .agent_normalizer import normalize_with_agent
from .config import SETTINGS
from .prompting import (
    PromptConfig,
    build_analysis_messages,
    build_chat_messages,
    build_move_messages,
)
from .session import Position

CompleteFn = Callable[..., Awaitable[str]]

ANALYSIS_EMPTY = "Analysis unavailable."
ANALYSIS_FAILED = "Failed to get AI analysis."
CHAT_EMPTY = "I'm not sure about that."
CHAT_FAILED = "Even the API is embarrassed by that request."

log = logging.getLogger("providers")


class _Provider:
    def __init__(self, model: Optional[str] = None, complete: Optional[CompleteFn] = None,
                 prompt_cfg: Optional[PromptConfig] = None) -> None:
        self.model = model
        self._complete = complete or llm_client.complete
        self.prompt_cfg = prompt_cfg or PromptConfig()

    async def _ask(self, messages: List[Dict[str, str]]) -> str:
        return await self._complete(messages, model=self.model)


class AiMoveProvider(_Provider):
    """Asks the model for one move. No legality guarantee; failures become None."""

    def __init__(self, model: Optional[str] = None, complete: Optional[CompleteFn] = None,
                 prompt_cfg: Optional[PromptConfig] = None, use_guard_agent: Optional[bool] = None) -> None:
        super().__init__(model or SETTINGS.model, complete, prompt_cfg)
        self.use_guard_agent = SETTINGS.use_guard_agent if use_guard_agent is None else use_guard_agent

    async def suggest_move(self, position: Position, difficulty: int) -> Optional[str]:
        messages = build_move_messages(self.prompt_cfg, position.fen, difficulty)
        try:
            raw = await self._ask(messages)
        except Exception:
            log.warning("Move request failed for %s", position.fen, exc_info=True)
            return None
        token = await normalize_with_agent(raw, use_agent=self.use_guard_agent)
        if not token:
            log.info("No move token in reply %r", (raw or "")[:140])
            return None
        return token


class AiAnalysisProvider(_Provider):
    def __init__(self, model: Optional[str] = None, complete: Optional[CompleteFn] = None,
                 prompt_cfg: Optional[PromptConfig] = None) -> None:
        super().__init__(model or SETTINGS.analysis_model, complete, prompt_cfg)

    async def analyze(self, position: Position, recent_sans: Sequence[str], difficulty: int) -> str:
        messages = build_analysis_messages(self.prompt_cfg, position.fen, recent_sans, difficulty)
        try:
            text = await self._ask(messages)
        except Exception:
            log.warning("Analysis request failed", exc_info=True)
            return ANALYSIS_FAILED
        return (text or "").strip() or ANALYSIS_EMPTY


class AiChatProvider(_Provider):
    def __init__(self, model: Optional[str] = None, complete: Optional[CompleteFn] = None,
                 prompt_cfg: Optional[PromptConfig] = None) -> None:
        super().__init__(model or SETTINGS.chat_model, complete, prompt_cfg)

    async def reply(self, message: str, position: Position, difficulty: int, hostile: bool = False) -> str:
        messages = build_chat_messages(self.prompt_cfg, message, position.fen, difficulty, hostile)
        try:
            text = await self._ask(messages)
        except Exception:
            log.warning("Chat request failed (hostile=%s)", hostile, exc_info=True)
            return CHAT_FAILED
        return (text or "").strip() or CHAT_EMPTY
