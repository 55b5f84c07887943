"""
LLM client facade over an OpenAI-compatible endpoint (configurable base URL).

The rest of the code should not care which SDK is in use. This module talks to
the endpoint with `model` + `messages` and returns raw text responses; after
exhausting retries it raises LLMClientError so callers can pick their own
fallback.
"""
from __future__ import annotations

import asyncio
import logging
import random
from typing import Dict, List, Optional

from openai import AsyncOpenAI

from .config import SETTINGS

log = logging.getLogger("llm_client")

_CLIENT: Optional[AsyncOpenAI] = None


class LLMClientError(Exception):
    """The endpoint failed or returned no text after all retries."""


def _client() -> AsyncOpenAI:
    # Built on first use so importing the package never needs credentials.
    global _CLIENT
    if _CLIENT is None:
        _CLIENT = AsyncOpenAI(api_key=SETTINGS.llm_api_key or None, base_url=SETTINGS.api_base or None)
    return _CLIENT


# ------------------------- Chat wrapper -------------------------
async def complete(
    messages: List[Dict[str, str]],
    model: Optional[str] = None,
    timeout_s: Optional[float] = None,
    retries: Optional[int] = None,
) -> str:
    """Send a chat-style conversation and return the stripped reply text."""
    model = model or SETTINGS.model
    if not model:
        raise ValueError("Model is required; set LLMCHESS_MODEL in settings.yml or the environment.")
    timeout = SETTINGS.responses_timeout_s if timeout_s is None else timeout_s
    retries = SETTINGS.responses_retries if retries is None else retries
    delay = 0.5
    for attempt in range(retries + 1):
        try:
            rsp = await _client().chat.completions.create(
                model=model,
                messages=messages,
                timeout=timeout,
            )
            text = _extract_text(rsp)
            if text:
                return text.strip()
            log.warning("Empty reply from %s (attempt %d)", model, attempt + 1)
        except Exception:
            if attempt >= retries:
                log.exception("Chat request failed after %d attempts", attempt + 1)
                break
            log.debug("Chat request attempt %d failed; retrying", attempt + 1, exc_info=True)
        if attempt < retries:
            sleep_s = delay * (2 ** attempt) * (0.8 + 0.4 * random.random())
            await asyncio.sleep(min(sleep_s, 10.0))
    raise LLMClientError(f"No reply from {model} after {retries + 1} attempts")


def _extract_text(rsp) -> str:
    """Assistant text from a chat completion; content may be a string or a list of text parts."""
    choices = getattr(rsp, "choices", None) or []
    if not choices:
        return ""
    content = getattr(choices[0].message, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [p.get("text") if isinstance(p, dict) else getattr(p, "text", None) for p in content]
        return "\n".join(t for t in texts if isinstance(t, str))
    return ""
