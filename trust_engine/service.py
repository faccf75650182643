"""Auto-Post Orchestrator.

TrustService ties the anomaly detector and the eligibility guard chain to
the caller's draft store, vendor store and posting delegate.

Attempt flow for one draft:
1. Load the draft (missing -> draft_not_found; any status other than draft
   or pending_review -> draft_not_eligible_state, status left untouched)
2. Load its vendor (unlinked or missing -> pending_review, vendor_unlinked)
3. Compute anomaly flags and persist them on the draft
4. Evaluate eligibility with the fresh flags
5. Ineligible -> pending_review; eligible -> post through the delegate

Every attemptable document that is not posted ends in pending_review with
a reason.
Posting delegate failures propagate to the caller.
"""

from typing import List, Optional

from core.audit import AuditEventType, AuditLogger
from core.config import AnomalyConfig, TrustConfig
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import MetricsCollector, get_metrics
from trust_engine.anomalies import (
    DEFAULT_ANOMALY_CONFIG,
    AnomalyDetector,
    Clock,
    utc_now,
)
from trust_engine.eligibility import (
    DEFAULT_TRUST_CONFIG,
    evaluate_auto_post_eligibility,
    next_trust_state,
)
from trust_engine.errors import VendorProfileNotFound
from trust_engine.models import (
    AnomalyFlag,
    AttemptAutoPostResult,
    AutoPostEligibility,
    AutoPostReason,
    DocumentDraft,
    DraftStatus,
    DraftUpdate,
    ParsedDraftFields,
    PostDraftResult,
    TrustTransition,
    VendorProfile,
)
from trust_engine.repository import DraftRepository, PostDraft, VendorProfileRepository


logger = get_logger(__name__)

ATTEMPTABLE_STATUSES = (DraftStatus.DRAFT, DraftStatus.PENDING_REVIEW)


class TrustService:
    """Anomaly detection, eligibility and auto-posting for one deployment.

    Args:
        drafts: Draft store
        vendors: Vendor profile store
        post_draft: Posting delegate
        config: Auto-post gates
        anomaly_config: Anomaly rule thresholds
        audit_logger: Audit sink (in-memory when omitted)
        clock: Returns the current UTC time
        metrics: Metrics collector (process-wide when omitted)

    Example:
        service = TrustService(drafts, vendors, post_draft)
        result = await service.attempt_auto_post("biz-1", "draft-9")
        if not result.auto_posted:
            notify_reviewer(result.reason)
    """

    def __init__(
        self,
        drafts: DraftRepository,
        vendors: VendorProfileRepository,
        post_draft: PostDraft,
        config: TrustConfig = DEFAULT_TRUST_CONFIG,
        anomaly_config: AnomalyConfig = DEFAULT_ANOMALY_CONFIG,
        audit_logger: Optional[AuditLogger] = None,
        clock: Clock = utc_now,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.drafts = drafts
        self.vendors = vendors
        self.post_draft = post_draft
        self.config = config
        self.clock = clock
        self.audit = audit_logger or AuditLogger.in_memory()
        self.metrics = metrics or get_metrics()
        self.detector = AnomalyDetector(drafts, vendors, anomaly_config, clock)

    # =========================================================================
    # Reads
    # =========================================================================

    async def _load_draft(self, business_id: str, draft_id: str) -> Optional[DocumentDraft]:
        row = await self.drafts.find_draft(business_id, draft_id)
        return DocumentDraft.model_validate(row) if row is not None else None

    async def _load_vendor(self, business_id: str, vendor_profile_id: str) -> Optional[VendorProfile]:
        row = await self.vendors.find_vendor_profile(business_id, vendor_profile_id)
        return VendorProfile.model_validate(row) if row is not None else None

    # =========================================================================
    # Public Operations
    # =========================================================================

    async def compute_anomaly_flags(
        self,
        business_id: str,
        vendor_profile_id: str,
        fields: ParsedDraftFields,
    ) -> List[AnomalyFlag]:
        """Anomaly flags for parsed fields; an unknown vendor yields none."""
        return await self.detector.compute_anomaly_flags(business_id, vendor_profile_id, fields)

    def evaluate_auto_post_eligibility(
        self,
        vendor: VendorProfile,
        draft: DocumentDraft,
    ) -> AutoPostEligibility:
        return evaluate_auto_post_eligibility(vendor, draft, self.config)

    async def evaluate_trust_state(self, business_id: str, vendor_profile_id: str) -> TrustTransition:
        """Trust transition the vendor has earned; nothing is persisted.

        Raises:
            VendorProfileNotFound: If the vendor does not exist for the business
        """
        vendor = await self._load_vendor(business_id, vendor_profile_id)
        if vendor is None:
            raise VendorProfileNotFound(business_id, vendor_profile_id)

        transition = next_trust_state(vendor, self.config.global_trust_threshold, self.clock())
        if transition.changed:
            self.audit.log_info(
                AuditEventType.TRUST_STATE_EVALUATED,
                f"Vendor trust {transition.previous.value} -> {transition.current.value}",
                business_id=business_id,
                vendor_profile_id=vendor_profile_id,
                details={"total_posted": vendor.total_posted},
                timestamp=self.clock(),
            )
        return transition

    async def attempt_auto_post(self, business_id: str, draft_id: str) -> AttemptAutoPostResult:
        """Post a draft automatically if its vendor and content allow it.

        Returns:
            AttemptAutoPostResult; auto_posted is False with a reason for
            every outcome other than a successful post

        Raises:
            Whatever the posting delegate raises
        """
        with with_correlation(business_id=business_id, draft_id=draft_id):
            self.audit.log_info(
                AuditEventType.AUTO_POST_ATTEMPTED,
                "Auto-post attempt started",
                business_id=business_id,
                draft_id=draft_id,
                timestamp=self.clock(),
            )

            draft = await self._load_draft(business_id, draft_id)
            if draft is None:
                return self._rejected(
                    business_id, draft_id, None, AutoPostReason.DRAFT_NOT_FOUND, [],
                    left_for_review=False,
                )

            # Other statuses (posted, rejected, still parsing) are left untouched
            if draft.status not in ATTEMPTABLE_STATUSES:
                return self._rejected(
                    business_id, draft_id, draft.vendor_profile_id,
                    AutoPostReason.DRAFT_NOT_ELIGIBLE_STATE, draft.anomaly_flags,
                    left_for_review=False,
                )

            vendor = None
            if draft.vendor_profile_id:
                vendor = await self._load_vendor(business_id, draft.vendor_profile_id)
            if vendor is None:
                await self.drafts.update_draft(
                    draft_id, DraftUpdate(status=DraftStatus.PENDING_REVIEW)
                )
                return self._rejected(
                    business_id, draft_id, draft.vendor_profile_id,
                    AutoPostReason.VENDOR_UNLINKED, [],
                )

            with with_correlation(vendor_profile_id=vendor.id):
                return await self._attempt_for_vendor(business_id, draft, vendor)

    async def _attempt_for_vendor(
        self,
        business_id: str,
        draft: DocumentDraft,
        vendor: VendorProfile,
    ) -> AttemptAutoPostResult:
        flags = await self.detector.compute_anomaly_flags(
            business_id,
            vendor.id,
            ParsedDraftFields.from_draft(draft),
            vendor=vendor,
        )
        await self.drafts.update_draft(draft.id, DraftUpdate(anomaly_flags=flags))

        eligibility = self.evaluate_auto_post_eligibility(
            vendor, draft.model_copy(update={"anomaly_flags": flags})
        )

        logger.info(
            "auto_post_attempt",
            extra_fields={
                "event": "auto_post_attempt",
                "eligible": eligibility.eligible,
                "reason": eligibility.reason.value if eligibility.reason else None,
                "anomaly_flags": [f.value for f in flags],
                "timestamp": self.clock().isoformat(),
            },
        )

        if not eligibility.eligible:
            await self.drafts.update_draft(
                draft.id, DraftUpdate(status=DraftStatus.PENDING_REVIEW)
            )
            return self._rejected(business_id, draft.id, vendor.id, eligibility.reason, flags)

        try:
            raw_result = await self.post_draft(
                business_id,
                draft.id,
                self.config.system_user_id,
                auto_posted=True,
            )
        except Exception as e:
            logger.error(
                f"Auto-post delegate failed: {e}",
                extra_fields={"error_type": type(e).__name__},
            )
            raise

        post_result = PostDraftResult.model_validate(raw_result)
        self.metrics.record_auto_post(True, None, flags)
        self.audit.log_info(
            AuditEventType.AUTO_POST_COMPLETED,
            "Draft posted automatically",
            business_id=business_id,
            draft_id=draft.id,
            vendor_profile_id=vendor.id,
            details={"financial_transaction_id": post_result.financial_transaction_id},
            actor=self.config.system_user_id,
            timestamp=self.clock(),
        )
        return AttemptAutoPostResult(
            auto_posted=True,
            reason=None,
            anomaly_flags=flags,
            post_result=post_result,
        )

    def _rejected(
        self,
        business_id: str,
        draft_id: str,
        vendor_profile_id: Optional[str],
        reason: AutoPostReason,
        flags: list,
        left_for_review: bool = True,
    ) -> AttemptAutoPostResult:
        flag_values = [AnomalyFlag(f).value for f in flags]
        self.metrics.record_auto_post(False, reason.value, flag_values)
        self.audit.log_warning(
            AuditEventType.AUTO_POST_REJECTED,
            f"Auto-post rejected: {reason.value}",
            business_id=business_id,
            draft_id=draft_id,
            vendor_profile_id=vendor_profile_id,
            details={"reason": reason.value, "anomaly_flags": flag_values},
            timestamp=self.clock(),
        )
        if left_for_review:
            message = f"Draft left for review: {reason.value}"
        else:
            message = f"Auto-post skipped: {reason.value}"
        logger.info(message, extra_fields={"reason": reason.value})
        return AttemptAutoPostResult(auto_posted=False, reason=reason, anomaly_flags=flags)
