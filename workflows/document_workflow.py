"""
Document Posting Workflow

Per-document workflow that orchestrates:
RESOLVE_LINES → ATTEMPT_AUTO_POST

Line resolution is skipped when no lines are supplied. The auto-post
attempt either posts the draft or leaves it in pending_review with a reason;
both are successful workflow outcomes. Only a failing posting delegate or
store fails the activity, and those failures are retried.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.documents import (
        AttemptAutoPostInput,
        DocumentActivities,
        ReceiptLineInput,
        ResolveReceiptLinesInput,
    )


TASK_QUEUE = "documents"

# Input-shape errors will not heal on retry
NON_RETRYABLE_ERRORS = ["ValueError", "ValidationError", "TypeError"]


# =============================================================================
# Workflow Input/Output
# =============================================================================

@dataclass
class DocumentPostingInput:
    """Input for the document posting workflow"""
    business_id: str
    draft_id: str

    # Receipt lines to resolve before posting (optional)
    lines: List[ReceiptLineInput] = field(default_factory=list)
    google_place_id: Optional[str] = None
    profile: str = "receipt"

    # Resolve lines only, leave the draft for review
    skip_auto_post: bool = False


@dataclass
class DocumentPostingOutput:
    """Output from the document posting workflow"""
    business_id: str
    draft_id: str
    line_matches: List[Dict[str, Any]] = field(default_factory=list)
    matched_line_count: int = 0

    auto_posted: bool = False
    reason: Optional[str] = None
    anomaly_flags: List[str] = field(default_factory=list)
    financial_transaction_id: Optional[str] = None


# =============================================================================
# Document Posting Workflow
# =============================================================================

@workflow.defn
class DocumentPostingWorkflow:
    """
    Resolve receipt lines, then attempt to post the draft automatically.
    """

    def __init__(self):
        self.stage = "PENDING"

    @workflow.query
    def current_stage(self) -> str:
        return self.stage

    @workflow.run
    async def run(self, input: DocumentPostingInput) -> DocumentPostingOutput:
        workflow.logger.info(f"Starting document workflow for draft {input.draft_id}")

        output = DocumentPostingOutput(business_id=input.business_id, draft_id=input.draft_id)

        # Lookups fail open inside the activity, so retries here cover worker loss
        lookup_options = {
            "start_to_close_timeout": timedelta(minutes=1),
            "retry_policy": RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(seconds=1),
                backoff_coefficient=2.0,
                non_retryable_error_types=NON_RETRYABLE_ERRORS,
            ),
        }

        posting_options = {
            "start_to_close_timeout": timedelta(minutes=2),
            "retry_policy": RetryPolicy(
                maximum_attempts=5,
                initial_interval=timedelta(seconds=2),
                maximum_interval=timedelta(minutes=1),
                backoff_coefficient=2.0,
                non_retryable_error_types=NON_RETRYABLE_ERRORS,
            ),
        }

        # =================================================================
        # Stage: RESOLVE_LINES
        # =================================================================
        if input.lines:
            self.stage = "RESOLVE_LINES"
            lines_result = await workflow.execute_activity_method(
                DocumentActivities.resolve_receipt_lines,
                ResolveReceiptLinesInput(
                    business_id=input.business_id,
                    lines=input.lines,
                    google_place_id=input.google_place_id,
                    profile=input.profile,
                ),
                **lookup_options,
            )
            output.line_matches = lines_result.matches
            output.matched_line_count = lines_result.matched_count

        if input.skip_auto_post:
            self.stage = "COMPLETED"
            return output

        # =================================================================
        # Stage: ATTEMPT_AUTO_POST
        # =================================================================
        self.stage = "ATTEMPT_AUTO_POST"
        post_result = await workflow.execute_activity_method(
            DocumentActivities.attempt_auto_post,
            AttemptAutoPostInput(business_id=input.business_id, draft_id=input.draft_id),
            **posting_options,
        )

        output.auto_posted = post_result.auto_posted
        output.reason = post_result.reason
        output.anomaly_flags = post_result.anomaly_flags
        output.financial_transaction_id = post_result.financial_transaction_id

        self.stage = "COMPLETED"
        workflow.logger.info(
            f"Document workflow finished: draft={input.draft_id} "
            f"auto_posted={output.auto_posted} reason={output.reason}"
        )
        return output
