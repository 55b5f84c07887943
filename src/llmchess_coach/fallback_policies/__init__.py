from __future__ import annotations

from typing import Dict, Type

from .base import FallbackPolicy, NoLegalMoves
from .heuristic import HeuristicLegalPolicy
from .simple import FirstLegalPolicy, RandomLegalPolicy

_FALLBACK_POLICIES: Dict[str, Type[FallbackPolicy]] = {
    FirstLegalPolicy.name: FirstLegalPolicy,
    RandomLegalPolicy.name: RandomLegalPolicy,
    "default": RandomLegalPolicy,
    HeuristicLegalPolicy.name: HeuristicLegalPolicy,
}


def create_fallback_policy(name: str | None) -> FallbackPolicy:
    key = (name or "random").lower()
    cls = _FALLBACK_POLICIES.get(key, RandomLegalPolicy)
    return cls()


__all__ = [
    "FallbackPolicy",
    "FirstLegalPolicy",
    "HeuristicLegalPolicy",
    "NoLegalMoves",
    "RandomLegalPolicy",
    "create_fallback_policy",
]
