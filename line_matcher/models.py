"""Line Matcher Data Models.

This module defines the Pydantic models for receipt line matching:
- MatchCandidate: A scored inventory item candidate for a line of text
- ResolvedMatch: The decision returned for one line
- ItemAlias / AliasKey / AliasUpsert: Learned per-store text -> item mappings
- LookupResult: Outcome of a read-only collaborator lookup
- CatalogItem: Inventory item fed to the in-memory fuzzy matcher
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class MatchConfidence(str, Enum):
    """Confidence band summarizing a match's reliability."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class MatchStatus(str, Enum):
    """What the caller should do with a resolved line."""
    MATCHED = "matched"        # Commit without asking
    SUGGESTED = "suggested"    # Pre-fill, human confirms
    UNRESOLVED = "unresolved"  # Human must pick


class MatchProfile(str, Enum):
    """Which commit path the resolution feeds."""
    RECEIPT = "receipt"    # Human-gated receipt review screen
    SHOPPING = "shopping"  # Stricter shopping-session commit path


class MatchSource(str, Enum):
    """Where a candidate came from."""
    RECEIPT_PLACE_CODE_ALIAS = "receipt_place_code_alias"  # Store line code alias
    RECEIPT_PLACE_ALIAS = "receipt_place_alias"            # Store text alias
    EXACT_ALIAS = "exact_alias"                            # Catalog alias, exact
    FUZZY_ALIAS = "fuzzy_alias"                            # Catalog alias, trigram
    FUZZY_NAME = "fuzzy_name"                              # Item name, trigram
    WORD_OVERLAP = "word_overlap"                          # Item name, word overlap


class MatchCandidate(BaseModel):
    """A candidate inventory item for a line of text.

    Ephemeral: produced per call and never persisted by the matcher.
    """
    inventory_item_id: str = Field(..., description="Inventory item ID")
    item_name: str = Field(..., description="Inventory item display name")
    score: float = Field(..., ge=0, le=1, description="Match score (0-1)")
    confidence: MatchConfidence = Field(..., description="Confidence band")
    match_source: MatchSource = Field(..., description="Where the candidate came from")


class ResolvedMatch(BaseModel):
    """Result of resolving one raw line.

    `matched_item_id` is set whenever a top candidate exists, even when the
    status is `unresolved`; the status alone decides whether it may be
    committed.
    """
    matched_item_id: Optional[str] = None
    confidence: MatchConfidence = MatchConfidence.NONE
    status: MatchStatus = MatchStatus.UNRESOLVED
    top_match: Optional[MatchCandidate] = None

    @classmethod
    def no_match(cls) -> "ResolvedMatch":
        return cls()


# =============================================================================
# Aliases
# =============================================================================

class AliasKey(BaseModel):
    """Composite key of a store alias. Immutable once written."""
    business_id: str
    google_place_id: str
    alias_text: str = Field(..., description="Normalized alias text")

    class Config:
        frozen = True


class ItemAlias(BaseModel):
    """A learned mapping from normalized store text to an inventory item.

    One alias exists per (business_id, google_place_id, alias_text).

    Attributes:
        id: Store row ID
        business_id: Owning business
        google_place_id: Physical store location the alias was learned at
        alias_text: Normalized line text or store line code
        inventory_item_id: Item the text denotes at this store
        confidence: Confidence recorded when the alias was confirmed
    """
    id: Optional[int] = None
    business_id: str
    google_place_id: str
    alias_text: str
    inventory_item_id: str
    confidence: MatchConfidence = MatchConfidence.HIGH
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def key(self) -> AliasKey:
        return AliasKey(
            business_id=self.business_id,
            google_place_id=self.google_place_id,
            alias_text=self.alias_text,
        )


class AliasUpdate(BaseModel):
    """Fields overwritten when an alias key already exists."""
    inventory_item_id: str
    confidence: MatchConfidence


class AliasUpsert(BaseModel):
    """Upsert arguments: the key, the row to create, the fields to update."""
    where: AliasKey
    create: ItemAlias
    update: AliasUpdate


# =============================================================================
# Lookups
# =============================================================================

class LookupResult(BaseModel):
    """Outcome of one read-only collaborator lookup.

    Exactly one of three shapes:
    - found: candidate set, error None
    - missing: candidate None, error None
    - failed: candidate None, error set (store down, timeout, ...)
    """
    candidate: Optional[MatchCandidate] = None
    error: Optional[str] = None

    @classmethod
    def found(cls, candidate: MatchCandidate) -> "LookupResult":
        return cls(candidate=candidate)

    @classmethod
    def missing(cls) -> "LookupResult":
        return cls()

    @classmethod
    def failed(cls, error: str) -> "LookupResult":
        return cls(error=error)

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    def or_none(self) -> Optional[MatchCandidate]:
        """Treat a failed lookup the same as a miss."""
        return self.candidate


# =============================================================================
# Catalog
# =============================================================================

class CatalogItem(BaseModel):
    """An inventory item as seen by the fuzzy matcher."""
    id: str
    name: str
    aliases: List[str] = Field(default_factory=list, description="Global (non-store) aliases")
    is_active: bool = True
