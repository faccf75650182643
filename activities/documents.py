"""Document activities.

Temporal activities that run receipt line matching and the auto-post
attempt. Both are methods on DocumentActivities so the worker can bind them
to the collaborators (stores, posting delegate) it was started with:

    acts = DocumentActivities(service, resolver)
    Worker(client, task_queue=TASK_QUEUE, activities=[
        acts.resolve_receipt_lines,
        acts.attempt_auto_post,
    ])
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from temporalio import activity

from core.observability.logging import activity_correlation
from line_matcher import LineMatchResolver, MatchProfile
from trust_engine import TrustService


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class ReceiptLineInput:
    """One raw line to resolve.

    Attributes:
        raw_text: Line as printed on the receipt
        parsed_name: Product name extracted by the parser, if any
    """
    raw_text: str
    parsed_name: Optional[str] = None


@dataclass
class ResolveReceiptLinesInput:
    """Input for resolve_receipt_lines activity."""
    business_id: str
    lines: List[ReceiptLineInput]
    google_place_id: Optional[str] = None
    profile: str = MatchProfile.RECEIPT.value


@dataclass
class ResolveReceiptLinesOutput:
    """Output from resolve_receipt_lines activity.

    Attributes:
        matches: One serialized ResolvedMatch per input line, in order
        matched_count: Lines with status "matched"
    """
    matches: List[Dict[str, Any]] = field(default_factory=list)
    matched_count: int = 0


@dataclass
class AttemptAutoPostInput:
    """Input for attempt_auto_post activity."""
    business_id: str
    draft_id: str


@dataclass
class AttemptAutoPostOutput:
    """Output from attempt_auto_post activity."""
    auto_posted: bool
    reason: Optional[str] = None
    anomaly_flags: List[str] = field(default_factory=list)
    financial_transaction_id: Optional[str] = None
    inventory_transactions_created: int = 0


# =============================================================================
# Activities
# =============================================================================

class DocumentActivities:
    """Activity implementations bound to injected collaborators."""

    def __init__(self, service: TrustService, resolver: LineMatchResolver):
        self.service = service
        self.resolver = resolver

    @activity.defn
    async def resolve_receipt_lines(self, input: ResolveReceiptLinesInput) -> ResolveReceiptLinesOutput:
        """Resolve each line through the match cascade.

        An unknown profile raises ValueError, which workflows treat as
        non-retryable.
        """
        profile = MatchProfile(input.profile)
        activity.logger.info(
            f"Resolving {len(input.lines)} receipt lines for business={input.business_id}"
        )

        matches = []
        with activity_correlation():
            for line in input.lines:
                # Lines may arrive as plain dicts depending on the payload converter
                if isinstance(line, dict):
                    line = ReceiptLineInput(**line)
                resolved = await self.resolver.resolve(
                    line.raw_text,
                    line.parsed_name,
                    profile,
                    business_id=input.business_id,
                    google_place_id=input.google_place_id,
                )
                matches.append(resolved.model_dump(mode="json"))

        matched = sum(1 for m in matches if m["status"] == "matched")
        activity.logger.info(f"Resolved lines: {matched}/{len(matches)} matched")
        return ResolveReceiptLinesOutput(matches=matches, matched_count=matched)

    @activity.defn
    async def attempt_auto_post(self, input: AttemptAutoPostInput) -> AttemptAutoPostOutput:
        """Try to post a draft without review."""
        with activity_correlation(business_id=input.business_id, draft_id=input.draft_id):
            result = await self.service.attempt_auto_post(input.business_id, input.draft_id)

        activity.logger.info(
            f"Auto-post for draft={input.draft_id}: posted={result.auto_posted}"
            f" reason={result.reason.value if result.reason else None}"
        )

        return AttemptAutoPostOutput(
            auto_posted=result.auto_posted,
            reason=result.reason.value if result.reason else None,
            anomaly_flags=[f.value for f in result.anomaly_flags],
            financial_transaction_id=(
                result.post_result.financial_transaction_id if result.post_result else None
            ),
            inventory_transactions_created=(
                result.post_result.inventory_transactions_created if result.post_result else 0
            ),
        )
