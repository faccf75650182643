"""Line Matcher - resolve raw receipt lines to inventory items.

This package provides the receipt line matching cascade:
- Store line code aliases (SKU printed at the start of the line)
- Store text aliases learned from human confirmations
- Fuzzy catalog matching (trigram + word overlap)

Key Features:
- One idempotent normalization shared by lookups and writes
- Aliases scoped per business and physical store (Google place id)
- Fail-open lookups: a degraded alias store never blocks resolution
- Profile-aware status (receipt review vs shopping commit)

Usage:
    from line_matcher import LineMatchResolver, CatalogTextMatcher, MatchProfile

    resolver = LineMatchResolver(alias_store, CatalogTextMatcher(catalog))
    match = await resolver.resolve(
        "5523795 TERRA DATES $9.49",
        profile=MatchProfile.RECEIPT,
        business_id="biz-1",
        google_place_id="ChIJ...",
    )

    if match.status == MatchStatus.MATCHED:
        commit(match.matched_item_id)
"""

from line_matcher.models import (
    AliasKey,
    AliasUpdate,
    AliasUpsert,
    CatalogItem,
    ItemAlias,
    LookupResult,
    MatchCandidate,
    MatchConfidence,
    MatchProfile,
    MatchSource,
    MatchStatus,
    ResolvedMatch,
)
from line_matcher.normalize import (
    normalize_text,
    normalize_alias_text,
    extract_store_line_code,
)
from line_matcher.aliases import (
    AliasLearner,
    AliasStore,
    build_alias_lookup_key,
    build_alias_upsert_args,
    build_alias_learning_upserts,
)
from line_matcher.fuzzy import (
    CatalogTextMatcher,
    score_to_confidence,
    similarity,
    word_overlap,
)
from line_matcher.resolver import (
    LineMatchResolver,
    TextCandidateSource,
    map_to_status,
    resolve_line_match_core,
)
from line_matcher.db import (
    SQLiteAliasStore,
    init_line_matcher_db,
    add_inventory_item,
    load_catalog,
)

__all__ = [
    # Models
    "AliasKey",
    "AliasUpdate",
    "AliasUpsert",
    "CatalogItem",
    "ItemAlias",
    "LookupResult",
    "MatchCandidate",
    "MatchConfidence",
    "MatchProfile",
    "MatchSource",
    "MatchStatus",
    "ResolvedMatch",
    # Normalization
    "normalize_text",
    "normalize_alias_text",
    "extract_store_line_code",
    # Aliases
    "AliasLearner",
    "AliasStore",
    "build_alias_lookup_key",
    "build_alias_upsert_args",
    "build_alias_learning_upserts",
    # Fuzzy
    "CatalogTextMatcher",
    "score_to_confidence",
    "similarity",
    "word_overlap",
    # Resolver
    "LineMatchResolver",
    "TextCandidateSource",
    "map_to_status",
    "resolve_line_match_core",
    # Database
    "SQLiteAliasStore",
    "init_line_matcher_db",
    "add_inventory_item",
    "load_catalog",
]
