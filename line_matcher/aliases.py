"""Store Alias Key Builders and Alias Learning.

Aliases are scoped to a business and a physical store (Google place id):
the same printed text can denote different products at different stores,
so nothing here ever builds a key without a place id.

Write path:
    When a human confirms a match at a store, `AliasLearner.learn` upserts
    an alias for the normalized line text and, when the line starts with a
    store line code, a second alias for the code itself. Future lines then
    match on whichever signal is present.
"""

from typing import List, Optional, Protocol

from core.audit import AuditEventType, AuditLogger
from core.observability.logging import get_logger
from line_matcher.models import (
    AliasKey,
    AliasUpdate,
    AliasUpsert,
    ItemAlias,
    MatchCandidate,
    MatchConfidence,
)
from line_matcher.normalize import extract_store_line_code, normalize_alias_text


logger = get_logger(__name__)


class AliasStore(Protocol):
    """Protocol for store-scoped alias persistence.

    The persistence-owning caller implements this (see line_matcher.db for
    the SQLite reference implementation).
    """

    async def find_alias(self, key: AliasKey) -> Optional[MatchCandidate]:
        """Return the candidate for an alias whose item is active in the business."""
        ...

    async def upsert_alias(self, upsert: AliasUpsert) -> ItemAlias:
        """Create the alias or overwrite its item/confidence on key conflict."""
        ...


def build_alias_lookup_key(
    business_id: str,
    google_place_id: Optional[str],
    search_text: str,
) -> Optional[AliasKey]:
    """Build the lookup key for a store alias.

    Returns:
        AliasKey, or None when no place is known or the text normalizes to
        nothing (lookup is skipped rather than searched globally)
    """
    if not google_place_id:
        return None

    normalized = normalize_alias_text(search_text)
    if not normalized:
        return None

    return AliasKey(
        business_id=business_id,
        google_place_id=google_place_id,
        alias_text=normalized,
    )


def build_alias_upsert_args(
    business_id: str,
    google_place_id: Optional[str],
    inventory_item_id: str,
    raw_text: str,
    confidence: Optional[MatchConfidence] = None,
) -> Optional[AliasUpsert]:
    """Build the upsert arguments for one alias.

    The key is (business_id, google_place_id, normalize(raw_text)); on
    conflict only inventory_item_id and confidence are overwritten.

    Args:
        business_id: Owning business
        google_place_id: Store location; None means no alias can be learned
        inventory_item_id: Confirmed item
        raw_text: Line text or store line code
        confidence: Recorded confidence (defaults to high)

    Returns:
        AliasUpsert, or None if the place id is missing or text is empty
    """
    key = build_alias_lookup_key(business_id, google_place_id, raw_text)
    if key is None:
        return None

    confidence = MatchConfidence(confidence) if confidence else MatchConfidence.HIGH

    return AliasUpsert(
        where=key,
        create=ItemAlias(
            business_id=key.business_id,
            google_place_id=key.google_place_id,
            alias_text=key.alias_text,
            inventory_item_id=inventory_item_id,
            confidence=confidence,
        ),
        update=AliasUpdate(
            inventory_item_id=inventory_item_id,
            confidence=confidence,
        ),
    )


def build_alias_learning_upserts(
    business_id: str,
    google_place_id: Optional[str],
    inventory_item_id: str,
    raw_text: str,
    confidence: Optional[MatchConfidence] = None,
) -> List[AliasUpsert]:
    """Build the text upsert plus, when distinct, the store line code upsert."""
    text_upsert = build_alias_upsert_args(
        business_id, google_place_id, inventory_item_id, raw_text, confidence
    )
    if text_upsert is None:
        return []

    upserts = [text_upsert]

    line_code = extract_store_line_code(raw_text)
    if line_code and line_code != text_upsert.where.alias_text:
        code_upsert = build_alias_upsert_args(
            business_id, google_place_id, inventory_item_id, line_code, confidence
        )
        if code_upsert is not None:
            upserts.append(code_upsert)

    return upserts


class AliasLearner:
    """Writes confirmed line matches back to the alias store.

    Example:
        learner = AliasLearner(alias_store)
        await learner.learn(
            business_id="biz-1",
            google_place_id="ChIJ...",
            inventory_item_id="item-dates",
            raw_text="5523795 TERRA DATES $9.49",
        )
        # -> aliases for "5523795 terra dates 9 49" and "5523795"
    """

    def __init__(self, store: AliasStore, audit_logger: Optional[AuditLogger] = None):
        self.store = store
        self.audit = audit_logger or AuditLogger.in_memory()

    async def learn(
        self,
        business_id: str,
        google_place_id: Optional[str],
        inventory_item_id: str,
        raw_text: str,
        confidence: Optional[MatchConfidence] = None,
    ) -> List[ItemAlias]:
        """Upsert aliases for a human-confirmed match.

        Store errors propagate: a confirmation that was not saved must not
        look saved.

        Returns:
            The aliases as written, in order (empty when nothing applies)
        """
        upserts = build_alias_learning_upserts(
            business_id, google_place_id, inventory_item_id, raw_text, confidence
        )
        if not upserts:
            logger.debug(
                "Alias learning skipped",
                extra_fields={"reason": "no_place_or_empty_text"},
            )
            return []

        written = []
        for upsert in upserts:
            written.append(await self.store.upsert_alias(upsert))

        alias_texts = [u.where.alias_text for u in upserts]
        self.audit.log_info(
            AuditEventType.ALIAS_LEARNED,
            f"Learned {len(written)} alias(es) for item {inventory_item_id}",
            business_id=business_id,
            details={
                "google_place_id": google_place_id,
                "inventory_item_id": inventory_item_id,
                "alias_texts": alias_texts,
            },
        )
        logger.info(
            "Aliases learned",
            extra_fields={"inventory_item_id": inventory_item_id, "alias_texts": alias_texts},
        )
        return written
