"""
Prompt builders for the three request kinds: move, analysis, chat.

Templates use {PLACEHOLDER} tokens substituted per request, so callers can
override wording through PromptConfig without touching the providers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Sequence

DEFAULT_MOVE_SYSTEM = "You are a chess player. When asked for a move, provide only one legal move in SAN."
DEFAULT_MOVE_TEMPLATE = """Current Chess Position (FEN): {FEN}.
You are playing as a player with {ELO} Elo ({ELO_LABEL}).
Your task: Return the best legal move for the current side.
If your Elo is low (<800), you might make simple mistakes or ignore hanging pieces.
If your Elo is high (>2500), you must find the most precise grandmaster move.
IMPORTANT: Only return the move in Standard Algebraic Notation (SAN), e.g., "e4", "Nf3", "O-O", "Bxf7+". Do not include any other text."""

DEFAULT_ANALYSIS_TEMPLATE = """Analyze this chess position (FEN: {FEN}). Skill level: Elo {ELO} ({ELO_LABEL}).
Recent move history: {RECENT_MOVES}.
Provide a brief strategic insight (max 2 sentences) fitting this Elo."""

DEFAULT_COACH_SYSTEM = """You are a chess coach representing a player with an Elo of {ELO} ({ELO_LABEL}).
Current FEN: {FEN}. User asks: "{MESSAGE}".
Answer concisely at a depth matching {ELO} Elo."""

DEFAULT_ROAST_SYSTEM = """The user just cursed or was rude. You are a savage, badass chess grandmaster with {ELO} Elo.
Roast them for their low-level behavior and their chess skills. Be witty, cold, and absolutely savage.
Keep it under 3 sentences. No filters, just pure high-IQ arrogance."""

# (upper bound exclusive, label)
ELO_BANDS = (
    (800, "Beginner - prone to blunders"),
    (1200, "Casual Player"),
    (1600, "Club Player"),
    (2000, "Expert"),
    (2500, "Master"),
    (3500, "Grandmaster"),
)
TOP_ELO_LABEL = "Super-Engine / Chess God"


def elo_description(elo: int) -> str:
    for bound, label in ELO_BANDS:
        if elo < bound:
            return label
    return TOP_ELO_LABEL


@dataclass
class PromptConfig:
    """Wording for every request the providers send."""

    move_system: str = DEFAULT_MOVE_SYSTEM
    move_template: str = DEFAULT_MOVE_TEMPLATE
    analysis_template: str = DEFAULT_ANALYSIS_TEMPLATE
    coach_system: str = DEFAULT_COACH_SYSTEM
    roast_system: str = DEFAULT_ROAST_SYSTEM


def render_custom_prompt(template: str, values: Dict[str, str]) -> str:
    """Replace known placeholders in the template. Unknown tokens are left intact."""
    rendered = template or ""
    for key, val in values.items():
        rendered = rendered.replace(f"{{{key}}}", val)
    return rendered


def _base_values(fen: str, elo: int) -> Dict[str, str]:
    return {"FEN": fen, "ELO": str(elo), "ELO_LABEL": elo_description(elo)}


def build_move_messages(cfg: PromptConfig, fen: str, elo: int) -> list[dict]:
    return [
        {"role": "system", "content": cfg.move_system},
        {"role": "user", "content": render_custom_prompt(cfg.move_template, _base_values(fen, elo))},
    ]


def build_analysis_messages(cfg: PromptConfig, fen: str, recent_sans: Sequence[str], elo: int) -> list[dict]:
    values = _base_values(fen, elo)
    values["RECENT_MOVES"] = ", ".join(recent_sans) or "(none)"
    return [{"role": "user", "content": render_custom_prompt(cfg.analysis_template, values)}]


def build_chat_messages(cfg: PromptConfig, message: str, fen: str, elo: int, hostile: bool) -> list[dict]:
    values = _base_values(fen, elo)
    values["MESSAGE"] = message
    system = cfg.roast_system if hostile else cfg.coach_system
    return [
        {"role": "system", "content": render_custom_prompt(system, values)},
        {"role": "user", "content": message},
    ]
