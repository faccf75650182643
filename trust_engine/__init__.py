"""Trust Engine - decide whether a parsed document may post without review.

This package provides:
- Anomaly detection against the vendor's recent posting history
- An ordered eligibility guard chain (blocked, disabled, threshold,
  confidence, anomalies)
- The auto-post orchestrator that persists flags, routes rejected drafts to
  pending_review and calls the posting delegate
- Vendor trust-state progression

Usage:
    from trust_engine import TrustService

    service = TrustService(drafts, vendors, post_draft)
    result = await service.attempt_auto_post("biz-1", "draft-9")
"""

from trust_engine.models import (
    AnomalyFlag,
    AttemptAutoPostResult,
    AutoPostEligibility,
    AutoPostReason,
    DocumentDraft,
    DraftStatus,
    DraftUpdate,
    ParsedDraftFields,
    ParsedLineItem,
    PostDraftResult,
    TrustState,
    TrustTransition,
    VendorProfile,
    to_number,
)
from trust_engine.errors import TrustEngineError, VendorProfileNotFound
from trust_engine.repository import DraftRepository, PostDraft, VendorProfileRepository
from trust_engine.anomalies import (
    AnomalyDetector,
    detect_anomalies,
    dice_similarity,
    percentile,
)
from trust_engine.eligibility import (
    effective_trust_threshold,
    evaluate_auto_post_eligibility,
    next_trust_state,
)
from trust_engine.service import TrustService

__all__ = [
    # Models
    "AnomalyFlag",
    "AttemptAutoPostResult",
    "AutoPostEligibility",
    "AutoPostReason",
    "DocumentDraft",
    "DraftStatus",
    "DraftUpdate",
    "ParsedDraftFields",
    "ParsedLineItem",
    "PostDraftResult",
    "TrustState",
    "TrustTransition",
    "VendorProfile",
    "to_number",
    # Errors
    "TrustEngineError",
    "VendorProfileNotFound",
    # Collaborators
    "DraftRepository",
    "PostDraft",
    "VendorProfileRepository",
    # Anomalies
    "AnomalyDetector",
    "detect_anomalies",
    "dice_similarity",
    "percentile",
    # Eligibility
    "effective_trust_threshold",
    "evaluate_auto_post_eligibility",
    "next_trust_state",
    # Orchestration
    "TrustService",
]
