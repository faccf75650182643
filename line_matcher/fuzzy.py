"""Fuzzy Candidate Engine.

Default in-memory implementation of the fuzzy candidate source consumed by
the line match resolver. Scores a search string against an inventory
catalog in phases:

1. Exact alias: a catalog alias equal to the normalized text (score 1.0)
2. Trigram similarity against aliases and item names (pg_trgm-compatible)
3. Word overlap against item names, for abbreviated receipt text such as
   "CHK BRST"

Candidates are deduplicated per item (best score wins) and ranked.
Catalog sizes this is meant for are small-business scale; large catalogs
should implement the same protocol on top of a database trigram index.
"""

from typing import Dict, Iterable, List, Optional, Set

from core.config import FuzzyMatchConfig, MatchBandConfig
from line_matcher.models import (
    CatalogItem,
    MatchCandidate,
    MatchConfidence,
    MatchSource,
)
from line_matcher.normalize import normalize_text


DEFAULT_BANDS = MatchBandConfig()
DEFAULT_FUZZY_CONFIG = FuzzyMatchConfig()


def score_to_confidence(score: float, bands: MatchBandConfig = DEFAULT_BANDS) -> MatchConfidence:
    """Map a 0-1 score onto a confidence band.

    Monotone: a higher score never yields a lower band.
    """
    if score >= bands.high:
        return MatchConfidence.HIGH
    if score >= bands.medium:
        return MatchConfidence.MEDIUM
    if score >= bands.low:
        return MatchConfidence.LOW
    return MatchConfidence.NONE


def trigrams(text: str) -> Set[str]:
    """Trigram set of a string, padded like PostgreSQL pg_trgm.

    "chicken" -> {"  c", " ch", "chi", "hic", "ick", "cke", "ken", "en "}
    """
    padded = f"  {text.lower().strip()} "
    return {padded[i:i + 3] for i in range(len(padded) - 2)}


def similarity(a: str, b: str) -> float:
    """Trigram similarity (Jaccard over trigram sets), 0..1."""
    tri_a = trigrams(a)
    tri_b = trigrams(b)
    intersection = len(tri_a & tri_b)
    union = len(tri_a) + len(tri_b) - intersection
    return 0.0 if union == 0 else intersection / union


def word_overlap(query: str, target: str) -> float:
    """Share of significant words of query found (as substrings) in target.

    Words shorter than two characters are ignored. The denominator is the
    larger word count, so a short query does not fully match a long name.
    """
    q_words = [w for w in normalize_text(query).split(" ") if len(w) > 1]
    t_words = {w for w in normalize_text(target).split(" ") if len(w) > 1}

    if not q_words:
        return 0.0

    matches = 0
    for w in q_words:
        if any(tw in w or w in tw for tw in t_words):
            matches += 1

    return matches / max(len(q_words), len(t_words))


class CatalogTextMatcher:
    """Fuzzy candidate source over an in-memory inventory catalog.

    Example:
        matcher = CatalogTextMatcher([
            CatalogItem(id="item-1", name="Chicken Breast", aliases=["chk brst"]),
        ])
        candidates = await matcher.match_text_candidates("CHK BRST 2LB")
    """

    def __init__(
        self,
        catalog: Iterable[CatalogItem],
        config: FuzzyMatchConfig = DEFAULT_FUZZY_CONFIG,
        bands: MatchBandConfig = DEFAULT_BANDS,
    ):
        self.items = [item for item in catalog if item.is_active]
        self.config = config
        self.bands = bands

    async def match_text_candidates(
        self,
        search_text: str,
        limit: Optional[int] = None,
    ) -> List[MatchCandidate]:
        """Async entry point matching the resolver's candidate source protocol."""
        return self.match(search_text, limit=limit)

    def match(self, search_text: str, limit: Optional[int] = None) -> List[MatchCandidate]:
        """Rank catalog items against search text.

        Returns:
            Candidates sorted by score descending (possibly empty)
        """
        limit = limit or self.config.max_candidates
        normalized = normalize_text(search_text)
        if not normalized:
            return []

        exact = self._exact_alias(normalized)
        if exact is not None:
            return [exact]

        candidates: List[MatchCandidate] = []

        for item in self.items:
            for alias in item.aliases:
                score = similarity(normalized, normalize_text(alias))
                if score >= self.config.min_similarity:
                    candidates.append(self._candidate(item, score, MatchSource.FUZZY_ALIAS))

            score = similarity(normalized, item.name)
            if score >= self.config.min_similarity:
                candidates.append(self._candidate(item, score, MatchSource.FUZZY_NAME))

            overlap = word_overlap(normalized, item.name)
            if overlap >= self.config.min_word_overlap:
                candidates.append(
                    self._candidate(
                        item,
                        overlap * self.config.word_overlap_weight,
                        MatchSource.WORD_OVERLAP,
                    )
                )

        best_by_item: Dict[str, MatchCandidate] = {}
        for candidate in candidates:
            existing = best_by_item.get(candidate.inventory_item_id)
            if existing is None or candidate.score > existing.score:
                best_by_item[candidate.inventory_item_id] = candidate

        ranked = sorted(best_by_item.values(), key=lambda c: c.score, reverse=True)
        return ranked[:limit]

    def _exact_alias(self, normalized: str) -> Optional[MatchCandidate]:
        for item in self.items:
            for alias in item.aliases:
                if normalize_text(alias) == normalized:
                    return MatchCandidate(
                        inventory_item_id=item.id,
                        item_name=item.name,
                        score=1.0,
                        confidence=MatchConfidence.HIGH,
                        match_source=MatchSource.EXACT_ALIAS,
                    )
        return None

    def _candidate(self, item: CatalogItem, score: float, source: MatchSource) -> MatchCandidate:
        score = min(1.0, max(0.0, score))
        return MatchCandidate(
            inventory_item_id=item.id,
            item_name=item.name,
            score=score,
            confidence=score_to_confidence(score, self.bands),
            match_source=source,
        )
