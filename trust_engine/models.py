"""Trust Engine Data Models.

This module defines the Pydantic models for the document trust layer:
- VendorProfile: Per-vendor trust state read from the caller's store
- DocumentDraft: A parsed document, validated on read
- ParsedDraftFields: The fields the anomaly rules look at
- AutoPostEligibility / AttemptAutoPostResult: Decisions returned to callers

Drafts arrive from storage with loosely-typed JSON columns (totals as
strings or decimals, line items as arbitrary JSON, flags as string arrays).
The Annotated value types below coerce those on read: numbers that cannot
be parsed or are not finite become None, malformed line items are dropped,
unknown anomaly flags are dropped and duplicates removed.
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Enums
# =============================================================================

class TrustState(str, Enum):
    """Per-vendor lifecycle stage gating automation."""
    UNVERIFIED = "unverified"
    LEARNING = "learning"
    TRUSTED = "trusted"
    BLOCKED = "blocked"


class DraftStatus(str, Enum):
    """Document draft lifecycle."""
    RECEIVED = "received"
    PARSING = "parsing"
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    POSTED = "posted"
    REJECTED = "rejected"


class AnomalyFlag(str, Enum):
    """Ways a parsed document can deviate from its vendor's history."""
    LARGE_TOTAL = "large_total"
    NEW_FORMAT = "new_format"
    VENDOR_NAME_MISMATCH = "vendor_name_mismatch"
    UNUSUAL_LINE_COUNT = "unusual_line_count"
    DUPLICATE_SUSPECTED = "duplicate_suspected"


class AutoPostReason(str, Enum):
    """Why a draft was not posted automatically."""
    # Eligibility guards, in evaluation order
    VENDOR_BLOCKED = "vendor_blocked"
    AUTO_POST_DISABLED = "auto_post_disabled"
    BELOW_TRUST_THRESHOLD = "below_trust_threshold"
    LOW_CONFIDENCE = "low_confidence"
    ANOMALY_DETECTED = "anomaly_detected"

    # Orchestration outcomes
    DRAFT_NOT_FOUND = "draft_not_found"
    DRAFT_NOT_ELIGIBLE_STATE = "draft_not_eligible_state"  # not draft or pending_review
    VENDOR_UNLINKED = "vendor_unlinked"


# =============================================================================
# Value Parsers (tolerate whatever the storage layer hands back)
# =============================================================================

def to_number(value: Any) -> Optional[float]:
    """Coerce a stored numeric value to a finite float, or None.

    Accepts ints, floats, Decimals and numeric strings (with optional "$"
    and thousands separators). Booleans, unparseable strings and
    non-finite values (NaN, infinity) yield None rather than raising.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except (ValueError, InvalidOperation, OverflowError):
            # ints beyond float range overflow instead of becoming inf
            return None
    elif isinstance(value, str):
        s = value.strip().replace("$", "").replace(",", "")
        if s == "":
            return None
        try:
            number = float(s)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def to_datetime(value: Any) -> Optional[datetime]:
    """Coerce a stored date to an aware UTC datetime, or None.

    Naive datetimes are taken to be UTC; plain dates become midnight UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(s)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_line_items(value: Any) -> List["ParsedLineItem"]:
    """Keep only line items that are objects with a non-blank description."""
    if not isinstance(value, (list, tuple)):
        return []
    items = []
    for raw in value:
        if isinstance(raw, ParsedLineItem):
            items.append(raw)
            continue
        if not isinstance(raw, dict):
            continue
        description = raw.get("description")
        if not isinstance(description, str) or not description.strip():
            continue
        items.append(ParsedLineItem(
            description=description.strip(),
            quantity=raw.get("quantity"),
            unit_cost=raw.get("unit_cost"),
            line_total=raw.get("line_total"),
        ))
    return items


def to_anomaly_flags(value: Any) -> List[AnomalyFlag]:
    """Parse stored flags into a deduplicated list; unknown entries are dropped."""
    if not isinstance(value, (list, tuple, set, frozenset)):
        return []
    flags: List[AnomalyFlag] = []
    for raw in value:
        try:
            flag = AnomalyFlag(raw)
        except ValueError:
            continue
        if flag not in flags:
            flags.append(flag)
    return flags


# Annotated types for automatic parsing
NumberValue = Annotated[Optional[float], BeforeValidator(to_number)]
DateTimeValue = Annotated[Optional[datetime], BeforeValidator(to_datetime)]
AnomalyFlagsValue = Annotated[List[AnomalyFlag], BeforeValidator(to_anomaly_flags)]


# =============================================================================
# Base Model
# =============================================================================

class TrustModel(BaseModel):
    """Base model for trust engine records."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True, use_enum_values=False)


# =============================================================================
# Records
# =============================================================================

class ParsedLineItem(TrustModel):
    """One parsed document line."""
    description: str
    quantity: NumberValue = None
    unit_cost: NumberValue = None
    line_total: NumberValue = None


LineItemsValue = Annotated[List[ParsedLineItem], BeforeValidator(to_line_items)]


class VendorProfile(TrustModel):
    """A vendor as known to one business.

    trust_state and total_posted are maintained by the posting side of the
    system; this package only reads them.
    """
    id: str
    business_id: str
    vendor_name: str
    trust_state: TrustState = TrustState.UNVERIFIED
    total_posted: int = Field(default=0, ge=0)
    trust_threshold_override: Optional[int] = None
    auto_post_enabled: bool = False
    trust_threshold_met_at: DateTimeValue = None
    last_document_at: DateTimeValue = None


class DocumentDraft(TrustModel):
    """A parsed document awaiting review or posting."""
    id: str
    business_id: str
    vendor_profile_id: Optional[str] = None
    status: DraftStatus = DraftStatus.DRAFT
    parsed_vendor_name: Optional[str] = None
    parsed_date: DateTimeValue = None
    parsed_total: NumberValue = None
    parsed_tax: NumberValue = None
    parsed_line_items: LineItemsValue = Field(default_factory=list)
    confidence_score: NumberValue = None
    anomaly_flags: AnomalyFlagsValue = Field(default_factory=list)


class ParsedDraftFields(TrustModel):
    """Fields of the current document that the anomaly rules compare."""
    vendor_name: Optional[str] = None
    parsed_date: DateTimeValue = None
    parsed_total: NumberValue = None
    confidence_score: NumberValue = None
    parsed_line_items: LineItemsValue = Field(default_factory=list)

    @classmethod
    def from_draft(cls, draft: DocumentDraft) -> "ParsedDraftFields":
        return cls(
            vendor_name=draft.parsed_vendor_name,
            parsed_date=draft.parsed_date,
            parsed_total=draft.parsed_total,
            confidence_score=draft.confidence_score,
            parsed_line_items=draft.parsed_line_items,
        )


class DraftUpdate(TrustModel):
    """Partial update written back to a draft; None fields are left alone."""
    status: Optional[DraftStatus] = None
    anomaly_flags: Optional[List[AnomalyFlag]] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, mode="json")


# =============================================================================
# Decisions
# =============================================================================

class AutoPostEligibility(TrustModel):
    """Verdict of the eligibility guard chain."""
    eligible: bool
    reason: Optional[AutoPostReason] = None


class PostDraftResult(TrustModel):
    """What the posting delegate reports back."""
    financial_transaction_id: str
    inventory_transactions_created: int = 0


class AttemptAutoPostResult(TrustModel):
    """Outcome of one auto-post attempt."""
    auto_posted: bool
    reason: Optional[AutoPostReason] = None
    anomaly_flags: List[AnomalyFlag] = Field(default_factory=list)
    post_result: Optional[PostDraftResult] = None


class TrustTransition(TrustModel):
    """Trust state a vendor should move to given its posting history."""
    previous: TrustState
    current: TrustState
    changed: bool = False
    updates: Dict[str, Any] = Field(default_factory=dict)
