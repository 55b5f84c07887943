"""
Configuration and environment loading for LLM Chess Coach.

- Loads settings.yml (YAML) from repo root (or the file named by LLMCHESS_SETTINGS) if present;
  falls back to environment variables, then to defaults.
- Exposes SETTINGS with keys used across the project (API access, model names, tuning knobs,
  the hostile-content keyword list).
"""
from dataclasses import dataclass
import logging
import os
from typing import Any, Callable

import yaml
from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger("config")

DEFAULT_HOSTILE_KEYWORDS = (
    "fuck", "shit", "ass", "bitch", "dick", "pussy", "cunt", "idiot", "stupid", "bastard",
)


def _repo_root() -> str:
    # this file: src/llmchess_coach/config.py → repo root is three levels up
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


def _load_yaml(path: str) -> dict:
    if not os.path.isfile(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        log.exception("Failed to read settings file %s; using environment only", path)
        return {}
    return data if isinstance(data, dict) else {}


_cfg = _load_yaml(os.environ.get("LLMCHESS_SETTINGS") or os.path.join(_repo_root(), "settings.yml"))


def _get(name: str, default: Any, cast: Callable[[Any], Any] | None = None) -> Any:
    if name in _cfg:
        val = _cfg[name]
        return cast(val) if cast else val
    env = os.environ.get(name)
    if env is not None:
        return cast(env) if cast else env
    return default


def _flag(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _keywords(val: Any) -> tuple[str, ...]:
    # YAML gives a list; env gives a comma separated string
    items = val if isinstance(val, (list, tuple)) else str(val).split(",")
    return tuple(str(k).strip().lower() for k in items if str(k).strip())


@dataclass(frozen=True)
class Settings:
    # Auth / endpoint (OpenAI-compatible wire format)
    llm_api_key: str
    api_base: str

    # Models per request kind
    model: str
    analysis_model: str
    chat_model: str

    # Tuning knobs
    responses_timeout_s: float
    responses_retries: int
    use_guard_agent: bool

    # Game defaults
    default_difficulty: int
    ai_move_delay_s: float
    fallback_policy: str

    # Moderation
    hostile_keywords: tuple[str, ...]


_model = _get("LLMCHESS_MODEL", "gpt-4o-mini")

SETTINGS = Settings(
    llm_api_key=_get("LLMCHESS_LLM_API_KEY", _get("OPENAI_API_KEY", "")),
    api_base=_get("LLMCHESS_LLM_BASE_URL", _get("OPENAI_BASE_URL", "")),
    model=_model,
    analysis_model=_get("LLMCHESS_ANALYSIS_MODEL", _model),
    chat_model=_get("LLMCHESS_CHAT_MODEL", _model),
    responses_timeout_s=float(_get("LLMCHESS_RESPONSES_TIMEOUT_S", 30.0, cast=float)),
    responses_retries=int(_get("LLMCHESS_RESPONSES_RETRIES", 2, cast=int)),
    use_guard_agent=_get("LLMCHESS_USE_GUARD_AGENT", False, cast=_flag),
    default_difficulty=int(_get("LLMCHESS_DEFAULT_DIFFICULTY", 1500, cast=int)),
    ai_move_delay_s=float(_get("LLMCHESS_AI_MOVE_DELAY_S", 0.5, cast=float)),
    fallback_policy=str(_get("LLMCHESS_FALLBACK_POLICY", "random")),
    hostile_keywords=_get("LLMCHESS_HOSTILE_KEYWORDS", DEFAULT_HOSTILE_KEYWORDS, cast=_keywords),
)
