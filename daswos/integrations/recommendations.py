# daswos/integrations/recommendations.py
"""
AI shopping recommendations: interface only.

The marketplace plugs a real model-backed provider in here; the bundled
StubRecommendationProvider returns a fixed-shape answer.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Optional, Protocol


@dataclass(frozen=True)
class Recommendation:
    product_id: str
    confidence: float
    reasoning: str
    alternatives: list["Recommendation"] = field(default_factory=list)


class RecommendationProvider(Protocol):
    async def recommend(self, query: str, *, user_id: Optional[int] = None) -> Recommendation: ...


class StubRecommendationProvider:
    """Deterministic: the same query always yields the same product ids."""

    def __init__(self, alternatives: int = 2) -> None:
        self.alternatives = alternatives

    @staticmethod
    def _product_id(query: str, salt: int) -> str:
        digest = hashlib.sha1(f"{salt}:{query.strip().lower()}".encode("utf-8")).hexdigest()
        return f"prod_{digest[:10]}"

    async def recommend(self, query: str, *, user_id: Optional[int] = None) -> Recommendation:
        alts = [
            Recommendation(
                product_id=self._product_id(query, i),
                confidence=round(0.5 - 0.1 * i, 2),
                reasoning="Alternative match for your search",
            )
            for i in range(1, self.alternatives + 1)
        ]
        return Recommendation(
            product_id=self._product_id(query, 0),
            confidence=0.75,
            reasoning=f"Best match for '{query.strip()}'",
            alternatives=alts,
        )


__all__ = ["Recommendation", "RecommendationProvider", "StubRecommendationProvider"]
