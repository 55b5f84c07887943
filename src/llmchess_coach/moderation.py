"""
Content classification for chat messages.

The session only needs one bit: should the reply switch to the roast persona?
ContentClassifier is the seam; KeywordClassifier is the default implementation
backed by a configurable term list (SETTINGS.hostile_keywords).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .config import SETTINGS


@dataclass(frozen=True)
class ModerationSignal:
    hostile: bool
    matched: tuple[str, ...] = ()


class ContentClassifier:
    """Interface: classify a user chat message."""

    def classify(self, text: str) -> ModerationSignal:
        raise NotImplementedError


class KeywordClassifier(ContentClassifier):
    """Case-insensitive substring match against a fixed term list."""

    def __init__(self, keywords: Optional[Iterable[str]] = None) -> None:
        source = SETTINGS.hostile_keywords if keywords is None else keywords
        self.keywords = tuple(k.lower() for k in source if k)

    def classify(self, text: str) -> ModerationSignal:
        lowered = (text or "").lower()
        matched = tuple(k for k in self.keywords if k in lowered)
        return ModerationSignal(hostile=bool(matched), matched=matched)
