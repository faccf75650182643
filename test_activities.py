"""
Activity and Worker Wiring Tests

Runs the document activities inside Temporal's ActivityEnvironment (no
server needed) and checks the worker's factory loading.
"""

import asyncio
import types
from datetime import datetime, timezone

import pytest
from temporalio.testing import ActivityEnvironment
from unittest.mock import AsyncMock

from activities import (
    AttemptAutoPostInput,
    DocumentActivities,
    ReceiptLineInput,
    ResolveReceiptLinesInput,
)
from core.audit import AuditLogger
from core.config import Settings, load_settings
from core.observability.metrics import MetricsCollector
from line_matcher import CatalogItem, CatalogTextMatcher, LineMatchResolver
from trust_engine import AttemptAutoPostResult, AutoPostReason, AnomalyFlag, PostDraftResult, TrustService


NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def make_resolver():
    catalog = [
        CatalogItem(id="item-dates", name="Terra Dates", aliases=["terra dates"]),
        CatalogItem(id="item-figs", name="Dried Figs"),
    ]
    return LineMatchResolver(None, CatalogTextMatcher(catalog), metrics=MetricsCollector())


def make_activities(service=None):
    return DocumentActivities(service or AsyncMock(spec=TrustService), make_resolver())


def build_from_settings(settings):
    """Worker-style factory: stores are fakes, thresholds come from settings."""
    service = TrustService(
        AsyncMock(),
        AsyncMock(),
        AsyncMock(),
        config=settings.trust,
        anomaly_config=settings.anomaly,
        audit_logger=AuditLogger.in_memory(),
        metrics=MetricsCollector(),
    )
    resolver = LineMatchResolver(
        None, CatalogTextMatcher([]), settings.lookup, metrics=MetricsCollector(),
    )
    return DocumentActivities(service, resolver)


class TestResolveReceiptLines:

    def test_resolves_lines_in_order(self):
        acts = make_activities()
        env = ActivityEnvironment()

        output = asyncio.run(env.run(
            acts.resolve_receipt_lines,
            ResolveReceiptLinesInput(
                business_id="biz-1",
                lines=[
                    ReceiptLineInput(raw_text="TERRA DATES"),
                    ReceiptLineInput(raw_text="QQQQ"),
                ],
            ),
        ))

        assert output.matched_count == 1
        assert [m["status"] for m in output.matches] == ["matched", "unresolved"]
        assert output.matches[0]["matched_item_id"] == "item-dates"
        assert output.matches[0]["top_match"]["match_source"] == "exact_alias"
        assert output.matches[1]["top_match"] is None

    def test_accepts_dict_lines(self):
        acts = make_activities()
        env = ActivityEnvironment()

        output = asyncio.run(env.run(
            acts.resolve_receipt_lines,
            ResolveReceiptLinesInput(
                business_id="biz-1",
                lines=[{"raw_text": "9999 MISC", "parsed_name": "Terra Dates"}],
            ),
        ))

        assert output.matches[0]["matched_item_id"] == "item-dates"

    def test_invalid_profile_rejected(self):
        acts = make_activities()
        env = ActivityEnvironment()

        with pytest.raises(ValueError):
            asyncio.run(env.run(
                acts.resolve_receipt_lines,
                ResolveReceiptLinesInput(business_id="biz-1", lines=[], profile="wholesale"),
            ))


class TestAttemptAutoPostActivity:

    def test_posted(self):
        service = AsyncMock(spec=TrustService)
        service.attempt_auto_post.return_value = AttemptAutoPostResult(
            auto_posted=True,
            post_result=PostDraftResult(financial_transaction_id="ftx-1", inventory_transactions_created=3),
        )
        acts = make_activities(service)

        output = asyncio.run(ActivityEnvironment().run(
            acts.attempt_auto_post, AttemptAutoPostInput(business_id="biz-1", draft_id="draft-1"),
        ))

        service.attempt_auto_post.assert_awaited_once_with("biz-1", "draft-1")
        assert output.auto_posted is True
        assert output.reason is None
        assert output.financial_transaction_id == "ftx-1"
        assert output.inventory_transactions_created == 3

    def test_rejected_serializes_enums(self):
        service = AsyncMock(spec=TrustService)
        service.attempt_auto_post.return_value = AttemptAutoPostResult(
            auto_posted=False,
            reason=AutoPostReason.ANOMALY_DETECTED,
            anomaly_flags=[AnomalyFlag.LARGE_TOTAL],
        )
        acts = make_activities(service)

        output = asyncio.run(ActivityEnvironment().run(
            acts.attempt_auto_post, AttemptAutoPostInput(business_id="biz-1", draft_id="draft-1"),
        ))

        assert output.auto_posted is False
        assert output.reason == "anomaly_detected"
        assert output.anomaly_flags == ["large_total"]
        assert output.financial_transaction_id is None
        assert output.inventory_transactions_created == 0

    def test_with_real_service(self):
        drafts = AsyncMock()
        drafts.find_draft.return_value = None
        service = TrustService(
            drafts,
            AsyncMock(),
            AsyncMock(),
            audit_logger=AuditLogger.in_memory(),
            clock=lambda: NOW,
            metrics=MetricsCollector(),
        )
        acts = make_activities(service)

        output = asyncio.run(ActivityEnvironment().run(
            acts.attempt_auto_post, AttemptAutoPostInput(business_id="biz-1", draft_id="missing"),
        ))

        assert output.auto_posted is False
        assert output.reason == "draft_not_found"


class TestWorkerFactory:

    def test_load_factory(self):
        from workers.worker import load_factory
        assert load_factory("test_activities:build_from_settings") is build_from_settings

    @pytest.mark.parametrize("path", ["no_colon", ":attr", "module:", "test_activities:NOW"])
    def test_load_factory_rejects(self, path):
        from workers.worker import load_factory
        with pytest.raises(ValueError):
            load_factory(path)

    def test_build_activities_sync_and_async(self):
        from workers.worker import build_activities

        async def async_factory(settings):
            return build_from_settings(settings)

        settings = Settings()
        assert isinstance(asyncio.run(build_activities(build_from_settings, settings)), DocumentActivities)
        assert isinstance(asyncio.run(build_activities(async_factory, settings)), DocumentActivities)

    def test_env_overrides_reach_the_factory(self, monkeypatch):
        from workers.worker import build_activities

        monkeypatch.setenv("TRUST_GLOBAL_THRESHOLD", "9")
        monkeypatch.setenv("LINE_MATCH_LOOKUP_TIMEOUT", "0.5")

        acts = asyncio.run(build_activities(build_from_settings, load_settings(env_file=None)))

        assert acts.service.config.global_trust_threshold == 9
        assert acts.resolver.lookup_config.timeout_seconds == 0.5

    def test_build_activities_wrong_type(self):
        from workers.worker import build_activities
        with pytest.raises(TypeError, match="expected DocumentActivities"):
            asyncio.run(build_activities(lambda settings: types.SimpleNamespace(), Settings()))


class TestTemporalClient:

    def test_cert_without_api_key_rejected(self, monkeypatch):
        from temporal_client import get_temporal_client

        monkeypatch.setenv("TEMPORAL_CERT_PATH", "/tmp/client.pem")
        monkeypatch.delenv("TEMPORAL_API_KEY", raising=False)

        with pytest.raises(ValueError, match="TEMPORAL_API_KEY"):
            asyncio.run(get_temporal_client())
