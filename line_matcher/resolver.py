"""Line Match Resolver.

This module implements the cascade that resolves one raw receipt line to
an inventory item:
1. Store line code alias (when the line starts with a plausible code)
2. Store text alias for the parsed name, or the raw text
3. Fuzzy candidate source, top-ranked candidate

The first hit wins. Store codes are the least ambiguous signal, so a code
alias hit short-circuits everything else.

`resolve_line_match_core` is the pure cascade over injected callables;
`LineMatchResolver` binds it to an alias store and a candidate source for
one business and store location, with fail-open lookups.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Protocol

from core.config import LookupConfig
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import MetricsCollector, get_metrics
from line_matcher.aliases import AliasStore, build_alias_lookup_key
from line_matcher.models import (
    LookupResult,
    MatchCandidate,
    MatchConfidence,
    MatchProfile,
    MatchSource,
    MatchStatus,
    ResolvedMatch,
)
from line_matcher.normalize import extract_store_line_code


logger = get_logger(__name__)

FindAliasMatch = Callable[[str], Awaitable[Optional[MatchCandidate]]]
MatchTextCandidates = Callable[[str], Awaitable[List[MatchCandidate]]]

DEFAULT_LOOKUP_CONFIG = LookupConfig()


class TextCandidateSource(Protocol):
    """Protocol for the fuzzy/text candidate engine.

    line_matcher.fuzzy.CatalogTextMatcher implements this in memory.
    """

    async def match_text_candidates(self, search_text: str) -> List[MatchCandidate]:
        """Return ranked candidates (any length, including empty)."""
        ...


def map_to_status(top_match: Optional[MatchCandidate], profile: MatchProfile) -> MatchStatus:
    """Decide what the caller may do with the top candidate.

    - no candidate -> unresolved
    - high -> matched
    - medium under the receipt profile -> suggested (a human reviews receipts)
    - anything else, including medium under shopping -> unresolved
    """
    if top_match is None:
        return MatchStatus.UNRESOLVED
    if top_match.confidence == MatchConfidence.HIGH:
        return MatchStatus.MATCHED
    if profile == MatchProfile.RECEIPT and top_match.confidence == MatchConfidence.MEDIUM:
        return MatchStatus.SUGGESTED
    return MatchStatus.UNRESOLVED


def _from_candidate(candidate: Optional[MatchCandidate], profile: MatchProfile) -> ResolvedMatch:
    if candidate is None:
        return ResolvedMatch.no_match()
    return ResolvedMatch(
        matched_item_id=candidate.inventory_item_id,
        confidence=candidate.confidence,
        status=map_to_status(candidate, profile),
        top_match=candidate,
    )


async def resolve_line_match_core(
    raw_text: str,
    parsed_name: Optional[str],
    profile: MatchProfile,
    find_place_alias_match: FindAliasMatch,
    match_text_candidates: MatchTextCandidates,
    find_place_code_alias_match: Optional[FindAliasMatch] = None,
) -> ResolvedMatch:
    """Run the cascade over injected lookups, stopping at the first hit.

    Args:
        raw_text: Raw receipt line
        parsed_name: Cleaned product name from the parser, if any
        profile: Commit path the result feeds
        find_place_alias_match: Store text alias lookup
        match_text_candidates: Fuzzy candidate source
        find_place_code_alias_match: Store line code alias lookup (optional)

    Returns:
        ResolvedMatch (no match anywhere -> ResolvedMatch.no_match())
    """
    profile = MatchProfile(profile)

    if find_place_code_alias_match is not None:
        line_code = extract_store_line_code(raw_text)
        if line_code:
            code_match = await find_place_code_alias_match(line_code)
            if code_match is not None:
                return _from_candidate(code_match, profile)

    search_text = parsed_name if parsed_name is not None else raw_text

    alias_match = await find_place_alias_match(search_text)
    if alias_match is not None:
        return _from_candidate(alias_match, profile)

    matches = await match_text_candidates(search_text)
    top_match = matches[0] if matches else None
    return _from_candidate(top_match, profile)


class LineMatchResolver:
    """Resolves receipt lines for one business, scoped by store location.

    Alias lookups are skipped when no place id is known; aliases are store
    specific and are never searched globally. Failures of the alias store or
    the candidate source (including timeouts) are logged and treated as "no
    result" so a degraded signal source never aborts the cascade.

    Example:
        resolver = LineMatchResolver(alias_store, CatalogTextMatcher(catalog))
        match = await resolver.resolve(
            "5523795 TERRA DATES $9.49",
            profile=MatchProfile.RECEIPT,
            business_id="biz-1",
            google_place_id="ChIJ...",
        )
    """

    def __init__(
        self,
        alias_store: Optional[AliasStore],
        candidate_source: TextCandidateSource,
        lookup_config: LookupConfig = DEFAULT_LOOKUP_CONFIG,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.alias_store = alias_store
        self.candidate_source = candidate_source
        self.lookup_config = lookup_config
        self.metrics = metrics or get_metrics()

    async def _bounded(self, awaitable):
        timeout = self.lookup_config.timeout_seconds
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=timeout)

    async def lookup_place_alias(
        self,
        business_id: str,
        google_place_id: Optional[str],
        search_text: str,
        source: MatchSource = MatchSource.RECEIPT_PLACE_ALIAS,
    ) -> LookupResult:
        """Look up a store alias, reporting failures instead of raising."""
        key = build_alias_lookup_key(business_id, google_place_id, search_text)
        if key is None or self.alias_store is None:
            return LookupResult.missing()

        try:
            candidate = await self._bounded(self.alias_store.find_alias(key))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return LookupResult.failed(f"{type(e).__name__}: {e}")

        if candidate is None:
            return LookupResult.missing()
        return LookupResult.found(candidate.model_copy(update={"match_source": source}))

    async def lookup_text_candidates(self, search_text: str) -> List[MatchCandidate]:
        """Query the candidate source; a failure yields no candidates."""
        try:
            return list(await self._bounded(
                self.candidate_source.match_text_candidates(search_text)
            ))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._record_failure("text_candidates", f"{type(e).__name__}: {e}")
            return []

    def _record_failure(self, lookup: str, error: str):
        self.metrics.record_lookup_failure(lookup)
        logger.warning(
            f"Lookup failed, continuing without it: {lookup}",
            extra_fields={"lookup": lookup, "error": error},
        )

    def _fail_open(self, lookup: str, result: LookupResult) -> Optional[MatchCandidate]:
        if result.is_failure:
            self._record_failure(lookup, result.error)
        return result.or_none()

    async def resolve(
        self,
        raw_text: str,
        parsed_name: Optional[str] = None,
        profile: MatchProfile = MatchProfile.RECEIPT,
        *,
        business_id: str,
        google_place_id: Optional[str] = None,
    ) -> ResolvedMatch:
        """Resolve one raw line to a match decision.

        Args:
            raw_text: Raw receipt line
            parsed_name: Cleaned product name, if the parser produced one
            profile: receipt (human review) or shopping (strict commit)
            business_id: Business the line belongs to
            google_place_id: Store location, if known

        Returns:
            ResolvedMatch
        """
        async def find_code_alias(line_code: str) -> Optional[MatchCandidate]:
            result = await self.lookup_place_alias(
                business_id, google_place_id, line_code,
                source=MatchSource.RECEIPT_PLACE_CODE_ALIAS,
            )
            return self._fail_open("place_code_alias", result)

        async def find_text_alias(search_text: str) -> Optional[MatchCandidate]:
            result = await self.lookup_place_alias(business_id, google_place_id, search_text)
            return self._fail_open("place_alias", result)

        with with_correlation(business_id=business_id, google_place_id=google_place_id):
            resolved = await resolve_line_match_core(
                raw_text=raw_text,
                parsed_name=parsed_name,
                profile=profile,
                find_place_alias_match=find_text_alias,
                match_text_candidates=self.lookup_text_candidates,
                find_place_code_alias_match=find_code_alias,
            )

            source = resolved.top_match.match_source.value if resolved.top_match else None
            self.metrics.record_line_match(source, resolved.status.value)
            logger.debug(
                "Line resolved",
                extra_fields={
                    "status": resolved.status.value,
                    "confidence": resolved.confidence.value,
                    "match_source": source,
                },
            )

        return resolved
