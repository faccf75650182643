"""
Auto-Post Orchestrator Tests

Drives TrustService against in-memory draft/vendor stores and a mocked
posting delegate.

Pass criteria:
- A draft that is not posted always ends in pending_review with a reason
- Anomaly flags are persisted before eligibility is decided
- Posting delegate failures surface to the caller
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock

from core.audit import AuditEventType, AuditLogger
from core.config import TrustConfig
from core.observability.metrics import MetricsCollector
from trust_engine import (
    AnomalyFlag,
    AutoPostReason,
    DraftStatus,
    ParsedDraftFields,
    TrustService,
    TrustState,
    VendorProfileNotFound,
)


NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


class InMemoryDrafts:
    """Draft store holding raw row dicts, as a database adapter would return them."""

    def __init__(self, rows=None):
        self.rows = {row["id"]: dict(row) for row in (rows or [])}
        self.updates = []
        self.history_queries = []

    async def find_draft(self, business_id, draft_id):
        row = self.rows.get(draft_id)
        if row is None or row["business_id"] != business_id:
            return None
        return row

    async def list_posted_drafts(self, business_id, vendor_profile_id, since, limit):
        self.history_queries.append((business_id, vendor_profile_id, since, limit))
        rows = [
            r for r in self.rows.values()
            if r["business_id"] == business_id
            and r.get("vendor_profile_id") == vendor_profile_id
            and r.get("status") == "posted"
            and r.get("parsed_date") is not None
            and r["parsed_date"] >= since
        ]
        rows.sort(key=lambda r: r["parsed_date"], reverse=True)
        return rows[:limit]

    async def update_draft(self, draft_id, update):
        changes = update.changes()
        self.updates.append((draft_id, changes))
        self.rows[draft_id].update(changes)


class InMemoryVendors:

    def __init__(self, rows=None):
        self.rows = {row["id"]: row for row in (rows or [])}

    async def find_vendor_profile(self, business_id, vendor_profile_id):
        row = self.rows.get(vendor_profile_id)
        if row is None or row["business_id"] != business_id:
            return None
        return row


def vendor_row(**overrides):
    row = {
        "id": "vendor-1",
        "business_id": "biz-1",
        "vendor_name": "Acme Produce",
        "trust_state": "trusted",
        "total_posted": 10,
        "trust_threshold_override": None,
        "auto_post_enabled": True,
    }
    row.update(overrides)
    return row


def draft_row(draft_id="draft-1", **overrides):
    row = {
        "id": draft_id,
        "business_id": "biz-1",
        "vendor_profile_id": "vendor-1",
        "status": "draft",
        "parsed_vendor_name": "Acme Produce",
        "parsed_total": "120.00",
        "parsed_date": NOW,
        "confidence_score": "0.92",
        "parsed_line_items": [],
        "anomaly_flags": [],
    }
    row.update(overrides)
    return row


def posted_history(totals):
    return [
        draft_row(
            f"hist-{i}",
            status="posted",
            parsed_total=str(total),
            parsed_date=NOW - timedelta(days=1 + i),
        )
        for i, total in enumerate(totals)
    ]


class Harness:
    """Service plus its collaborators."""

    def __init__(self, drafts, vendors, post_result=None, post_error=None, config=None):
        self.drafts = InMemoryDrafts(drafts)
        self.vendors = InMemoryVendors(vendors)
        self.post_draft = AsyncMock(
            return_value=post_result or {"financial_transaction_id": "ftx-1", "inventory_transactions_created": 2},
            side_effect=post_error,
        )
        self.audit = AuditLogger.in_memory()
        self.metrics = MetricsCollector()
        self.service = TrustService(
            self.drafts,
            self.vendors,
            self.post_draft,
            config=config or TrustConfig(),
            audit_logger=self.audit,
            clock=lambda: NOW,
            metrics=self.metrics,
        )

    def attempt(self, draft_id="draft-1", business_id="biz-1"):
        return asyncio.run(self.service.attempt_auto_post(business_id, draft_id))

    def status(self, draft_id="draft-1"):
        return self.drafts.rows[draft_id]["status"]

    def audit_types(self):
        return [e.event_type for e in self.audit.query()]


class TestAttemptAutoPost:

    def test_trusted_vendor_posts_once(self):
        h = Harness([draft_row()], [vendor_row()])

        result = h.attempt()

        assert result.auto_posted is True
        assert result.reason is None
        assert result.anomaly_flags == []
        assert result.post_result.financial_transaction_id == "ftx-1"
        assert result.post_result.inventory_transactions_created == 2
        h.post_draft.assert_awaited_once_with("biz-1", "draft-1", "system:auto-post", auto_posted=True)

    def test_draft_not_found(self):
        h = Harness([], [vendor_row()])

        result = h.attempt("missing")

        assert result.auto_posted is False
        assert result.reason == AutoPostReason.DRAFT_NOT_FOUND
        assert h.drafts.updates == []
        h.post_draft.assert_not_called()

    def test_draft_from_other_business_not_found(self):
        h = Harness([draft_row()], [vendor_row()])
        result = h.attempt(business_id="biz-2")
        assert result.reason == AutoPostReason.DRAFT_NOT_FOUND

    def test_missing_vendor_link(self):
        h = Harness([draft_row(vendor_profile_id=None)], [vendor_row()])

        result = h.attempt()

        assert result.auto_posted is False
        assert result.reason == AutoPostReason.VENDOR_UNLINKED
        assert h.status() == DraftStatus.PENDING_REVIEW.value
        h.post_draft.assert_not_called()

    def test_vendor_link_to_unknown_vendor(self):
        h = Harness([draft_row(vendor_profile_id="vendor-gone")], [vendor_row()])

        result = h.attempt()

        assert result.reason == AutoPostReason.VENDOR_UNLINKED
        assert h.status() == "pending_review"
        h.post_draft.assert_not_called()

    def test_blocked_vendor(self):
        h = Harness([draft_row()], [vendor_row(trust_state="blocked", total_posted=0)])

        result = h.attempt()

        assert result.reason == AutoPostReason.VENDOR_BLOCKED
        assert h.status() == "pending_review"
        h.post_draft.assert_not_called()

    def test_low_confidence_goes_to_review(self):
        h = Harness([draft_row(confidence_score="0.80")], [vendor_row()])

        result = h.attempt()

        assert result.reason == AutoPostReason.LOW_CONFIDENCE
        assert h.status() == "pending_review"

    def test_anomaly_blocks_and_is_persisted(self):
        history = posted_history([100, 110, 105, 95, 100])
        h = Harness([draft_row(parsed_total="5000")] + history, [vendor_row()])

        result = h.attempt()

        assert result.auto_posted is False
        assert result.reason == AutoPostReason.ANOMALY_DETECTED
        assert result.anomaly_flags == [AnomalyFlag.LARGE_TOTAL]
        assert h.drafts.rows["draft-1"]["anomaly_flags"] == ["large_total"]
        assert h.status() == "pending_review"
        h.post_draft.assert_not_called()

    def test_flags_persisted_even_when_ineligible_for_other_reasons(self):
        history = posted_history([120])
        h = Harness(
            [draft_row(parsed_vendor_name="Sysco Foods")] + history,
            [vendor_row(auto_post_enabled=False)],
        )

        result = h.attempt()

        assert result.reason == AutoPostReason.AUTO_POST_DISABLED
        assert result.anomaly_flags == [AnomalyFlag.VENDOR_NAME_MISMATCH, AnomalyFlag.DUPLICATE_SUSPECTED]
        first_update = h.drafts.updates[0]
        assert first_update == ("draft-1", {"anomaly_flags": ["vendor_name_mismatch", "duplicate_suspected"]})

    def test_stale_flags_cleared(self):
        h = Harness([draft_row(anomaly_flags=["large_total"])], [vendor_row()])

        result = h.attempt()

        assert result.auto_posted is True
        assert h.drafts.updates[0] == ("draft-1", {"anomaly_flags": []})

    def test_history_window(self):
        h = Harness([draft_row()], [vendor_row()])
        h.attempt()

        business_id, vendor_id, since, limit = h.drafts.history_queries[0]
        assert (business_id, vendor_id) == ("biz-1", "vendor-1")
        assert since == NOW - timedelta(days=30)
        assert limit == 200

    def test_posting_failure_propagates(self):
        h = Harness([draft_row()], [vendor_row()], post_error=ConnectionError("ledger unavailable"))

        with pytest.raises(ConnectionError, match="ledger unavailable"):
            h.attempt()

        assert h.status() == "draft"
        assert AuditEventType.AUTO_POST_COMPLETED.value not in h.audit_types()

    def test_custom_system_user(self):
        h = Harness([draft_row()], [vendor_row()], config=TrustConfig(system_user_id="svc:poster"))
        h.attempt()
        assert h.post_draft.await_args.args[2] == "svc:poster"

    @pytest.mark.parametrize("status", ["posted", "rejected", "parsing"])
    def test_non_attemptable_status_left_untouched(self, status):
        h = Harness([draft_row(status=status, confidence_score=0.1)], [vendor_row()])

        result = h.attempt()

        assert result.auto_posted is False
        assert result.reason == AutoPostReason.DRAFT_NOT_ELIGIBLE_STATE
        assert h.status() == status
        assert h.drafts.updates == []
        assert h.drafts.history_queries == []
        h.post_draft.assert_not_called()

    def test_retry_after_post_does_not_reopen_draft(self):
        history = posted_history([250])
        h = Harness([draft_row(parsed_total="120.00")] + history, [vendor_row()])

        def post_and_mark(business_id, draft_id, acting_user_id, auto_posted):
            h.drafts.rows[draft_id]["status"] = "posted"
            return {"financial_transaction_id": "ftx-1"}

        h.post_draft.side_effect = post_and_mark

        first = h.attempt()
        second = h.attempt()

        assert first.auto_posted is True
        assert second.reason == AutoPostReason.DRAFT_NOT_ELIGIBLE_STATE
        assert h.status() == "posted"
        assert h.post_draft.await_count == 1

    def test_pending_review_draft_is_attempted(self):
        h = Harness([draft_row(status="pending_review")], [vendor_row()])
        assert h.attempt().auto_posted is True


class TestAutoPostObservability:

    def test_audit_trail_on_success(self):
        h = Harness([draft_row()], [vendor_row()])
        h.attempt()
        assert h.audit_types() == [
            AuditEventType.AUTO_POST_ATTEMPTED.value,
            AuditEventType.AUTO_POST_COMPLETED.value,
        ]

    def test_audit_trail_on_rejection(self):
        h = Harness([draft_row(confidence_score=0.1)], [vendor_row()])
        h.attempt()

        events = h.audit.query(event_type=AuditEventType.AUTO_POST_REJECTED.value)
        assert len(events) == 1
        assert events[0].details["reason"] == "low_confidence"
        assert events[0].draft_id == "draft-1"

    def test_metrics(self):
        h = Harness([draft_row(), draft_row("draft-2", confidence_score=0.1)], [vendor_row()])
        h.attempt("draft-1")
        h.attempt("draft-2")

        summary = h.metrics.get_summary()["auto_post"]
        assert summary["attempted"] == 2
        assert summary["posted"] == 1
        assert summary["rejected"] == 1
        assert summary["by_reason"] == {"posted": 1, "low_confidence": 1}

    def test_attempt_logged(self, caplog):
        caplog.set_level(logging.INFO)
        h = Harness([draft_row()], [vendor_row()])

        h.attempt()

        records = [r for r in caplog.records if r.getMessage() == "auto_post_attempt"]
        assert len(records) == 1
        fields = records[0].extra_fields
        assert fields["event"] == "auto_post_attempt"
        assert fields["eligible"] is True
        assert fields["reason"] is None
        assert fields["anomaly_flags"] == []

    def test_missing_draft_not_logged_as_left_for_review(self, caplog):
        caplog.set_level(logging.INFO)
        h = Harness([], [vendor_row()])

        h.attempt("missing")

        messages = [r.getMessage() for r in caplog.records]
        assert "Auto-post skipped: draft_not_found" in messages
        assert not any(m.startswith("Draft left for review") for m in messages)

    def test_rejection_logged_as_left_for_review(self, caplog):
        caplog.set_level(logging.INFO)
        h = Harness([draft_row(confidence_score=0.1)], [vendor_row()])

        h.attempt()

        messages = [r.getMessage() for r in caplog.records]
        assert "Draft left for review: low_confidence" in messages


class TestServiceOperations:

    def test_compute_anomaly_flags_unknown_vendor(self):
        h = Harness([], [])
        flags = asyncio.run(h.service.compute_anomaly_flags(
            "biz-1", "vendor-x", ParsedDraftFields(vendor_name="Anything", parsed_total=5),
        ))
        assert flags == []

    def test_compute_anomaly_flags(self):
        h = Harness(posted_history([100, 110, 105, 95, 100]), [vendor_row()])
        flags = asyncio.run(h.service.compute_anomaly_flags(
            "biz-1", "vendor-1", ParsedDraftFields(vendor_name="Acme Produce", parsed_total=999),
        ))
        assert flags == [AnomalyFlag.LARGE_TOTAL]

    def test_evaluate_trust_state(self):
        h = Harness([], [vendor_row(trust_state="learning", total_posted=5, auto_post_enabled=False)])

        transition = asyncio.run(h.service.evaluate_trust_state("biz-1", "vendor-1"))

        assert transition.current == TrustState.TRUSTED
        assert transition.updates["trust_threshold_met_at"] == NOW
        assert AuditEventType.TRUST_STATE_EVALUATED.value in h.audit_types()

    def test_evaluate_trust_state_unknown_vendor(self):
        h = Harness([], [])
        with pytest.raises(VendorProfileNotFound):
            asyncio.run(h.service.evaluate_trust_state("biz-1", "vendor-x"))
