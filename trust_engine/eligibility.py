"""Trust eligibility and trust-state progression.

Both functions here are pure: they read a vendor profile (and a draft) and
return a decision without touching storage.
"""

from datetime import datetime, timezone
from typing import Optional

from core.config import TrustConfig
from trust_engine.models import (
    AutoPostEligibility,
    AutoPostReason,
    DocumentDraft,
    TrustState,
    TrustTransition,
    VendorProfile,
)


DEFAULT_TRUST_CONFIG = TrustConfig()


def effective_trust_threshold(vendor: VendorProfile, global_threshold: int) -> int:
    """Per-vendor override if set, else the global threshold."""
    if vendor.trust_threshold_override is not None:
        return vendor.trust_threshold_override
    return global_threshold


def evaluate_auto_post_eligibility(
    vendor: VendorProfile,
    draft: DocumentDraft,
    config: TrustConfig = DEFAULT_TRUST_CONFIG,
) -> AutoPostEligibility:
    """Run the guard chain; the first failing guard decides the reason.

    Guards, in order:
    1. vendor blocked
    2. auto-post disabled for the vendor
    3. fewer posted documents than the trust threshold
    4. parse confidence below the auto-post minimum (missing counts as 0)
    5. any anomaly flag on the draft
    """
    if vendor.trust_state == TrustState.BLOCKED:
        return AutoPostEligibility(eligible=False, reason=AutoPostReason.VENDOR_BLOCKED)

    if not vendor.auto_post_enabled:
        return AutoPostEligibility(eligible=False, reason=AutoPostReason.AUTO_POST_DISABLED)

    if vendor.total_posted < effective_trust_threshold(vendor, config.global_trust_threshold):
        return AutoPostEligibility(eligible=False, reason=AutoPostReason.BELOW_TRUST_THRESHOLD)

    confidence = draft.confidence_score if draft.confidence_score is not None else 0.0
    if confidence < config.auto_post_confidence_min:
        return AutoPostEligibility(eligible=False, reason=AutoPostReason.LOW_CONFIDENCE)

    if draft.anomaly_flags:
        return AutoPostEligibility(eligible=False, reason=AutoPostReason.ANOMALY_DETECTED)

    return AutoPostEligibility(eligible=True, reason=None)


def next_trust_state(
    vendor: VendorProfile,
    global_threshold: int = DEFAULT_TRUST_CONFIG.global_trust_threshold,
    now: Optional[datetime] = None,
) -> TrustTransition:
    """Trust state the vendor has earned from its posted-document count.

    Blocked vendors never move. Reaching the threshold makes a vendor
    trusted and turns auto-post on; any posting history moves an
    unverified vendor to learning.

    Returns:
        TrustTransition whose updates hold only the fields that change
    """
    previous = vendor.trust_state
    updates = {}

    if previous == TrustState.BLOCKED:
        pass
    elif (
        vendor.total_posted >= effective_trust_threshold(vendor, global_threshold)
        and previous != TrustState.TRUSTED
    ):
        updates["trust_state"] = TrustState.TRUSTED
        updates["auto_post_enabled"] = True
        if vendor.trust_threshold_met_at is None:
            updates["trust_threshold_met_at"] = now or datetime.now(timezone.utc)
    elif vendor.total_posted > 0 and previous == TrustState.UNVERIFIED:
        updates["trust_state"] = TrustState.LEARNING

    return TrustTransition(
        previous=previous,
        current=updates.get("trust_state", previous),
        changed=bool(updates),
        updates=updates,
    )
