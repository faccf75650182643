"""
Alias Store and Alias Learning Tests

Covers the SQLite reference store and the write path that learns store
aliases from confirmed matches, then feeds them back into resolution.
"""

import asyncio
import sqlite3
import time

import pytest
from unittest.mock import AsyncMock

from core.audit import AuditEventType, AuditLogger
from core.config import LookupConfig
from core.observability.metrics import MetricsCollector
from line_matcher import (
    AliasLearner,
    CatalogTextMatcher,
    LineMatchResolver,
    MatchConfidence,
    MatchSource,
    MatchStatus,
    SQLiteAliasStore,
    add_inventory_item,
    build_alias_lookup_key,
    build_alias_upsert_args,
    load_catalog,
)
from line_matcher.db import get_aliases_for_place, get_item_alias


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "line_matcher.db"


@pytest.fixture
def store(db_path):
    store = SQLiteAliasStore(db_path)
    add_inventory_item("item-dates", "biz-1", "Terra Dates", db_path=db_path)
    add_inventory_item("item-figs", "biz-1", "Dried Figs", db_path=db_path)
    add_inventory_item("item-old", "biz-1", "Old Dates", is_active=False, db_path=db_path)
    add_inventory_item("item-foreign", "biz-2", "Foreign Dates", db_path=db_path)
    return store


class TestSQLiteAliasStore:

    def test_upsert_then_find(self, store):
        upsert = build_alias_upsert_args("biz-1", "place-1", "item-dates", "TERRA DATES")

        stored = asyncio.run(store.upsert_alias(upsert))
        found = asyncio.run(store.find_alias(upsert.where))

        assert stored.alias_text == "terra dates"
        assert stored.confidence == MatchConfidence.HIGH
        assert found.inventory_item_id == "item-dates"
        assert found.item_name == "Terra Dates"
        assert found.score == 1.0
        assert found.confidence == MatchConfidence.HIGH

    def test_conflict_overwrites_item_and_confidence_only(self, store, db_path):
        first = build_alias_upsert_args("biz-1", "place-1", "item-dates", "TERRA DATES")
        second = build_alias_upsert_args(
            "biz-1", "place-1", "item-figs", "terra  dates!", MatchConfidence.MEDIUM
        )
        assert first.where == second.where

        original = asyncio.run(store.upsert_alias(first))
        updated = asyncio.run(store.upsert_alias(second))

        assert updated.id == original.id
        assert updated.alias_text == original.alias_text
        assert updated.created_at == original.created_at
        assert updated.inventory_item_id == "item-figs"
        assert updated.confidence == MatchConfidence.MEDIUM
        assert len(get_aliases_for_place("biz-1", "place-1", db_path=db_path)) == 1

    def test_alias_scoped_by_place(self, store):
        upsert = build_alias_upsert_args("biz-1", "place-1", "item-dates", "TERRA DATES")
        asyncio.run(store.upsert_alias(upsert))

        other_place = build_alias_lookup_key("biz-1", "place-2", "TERRA DATES")
        assert asyncio.run(store.find_alias(other_place)) is None

    def test_inactive_item_not_returned(self, store, db_path):
        upsert = build_alias_upsert_args("biz-1", "place-1", "item-old", "OLD DATES")
        asyncio.run(store.upsert_alias(upsert))

        assert get_item_alias(upsert.where, db_path=db_path) is not None
        assert asyncio.run(store.find_alias(upsert.where)) is None

    def test_item_from_other_business_not_returned(self, store):
        upsert = build_alias_upsert_args("biz-1", "place-1", "item-foreign", "FOREIGN DATES")
        asyncio.run(store.upsert_alias(upsert))

        assert asyncio.run(store.find_alias(upsert.where)) is None

    def test_locked_database_times_out_without_blocking(self, store, db_path):
        asyncio.run(store.upsert_alias(
            build_alias_upsert_args("biz-1", "place-1", "item-dates", "TERRA DATES")
        ))
        metrics = MetricsCollector()
        resolver = LineMatchResolver(
            store, CatalogTextMatcher([]), LookupConfig(timeout_seconds=0.2), metrics=metrics,
        )

        locker = sqlite3.connect(str(db_path), isolation_level=None)
        locker.execute("BEGIN EXCLUSIVE")

        async def resolve_while_locked():
            started = time.monotonic()
            try:
                result = await resolver.resolve(
                    "TERRA DATES", business_id="biz-1", google_place_id="place-1",
                )
            finally:
                locker.execute("ROLLBACK")
            return result, time.monotonic() - started

        try:
            result, elapsed = asyncio.run(resolve_while_locked())
        finally:
            locker.close()

        # sqlite waits up to 5s on a lock; the lookup timeout must cut it short
        assert elapsed < 2
        assert result.status == MatchStatus.UNRESOLVED
        assert metrics.get_summary()["line_matches"]["lookup_failures"] == {"place_alias": 1}

    def test_load_catalog_active_only(self, store, db_path):
        catalog = load_catalog("biz-1", db_path=db_path)
        assert sorted(item.id for item in catalog) == ["item-dates", "item-figs"]


class TestAliasLearner:

    def test_learns_text_and_code(self, store):
        audit = AuditLogger.in_memory()
        learner = AliasLearner(store, audit)

        written = asyncio.run(learner.learn(
            business_id="biz-1",
            google_place_id="place-1",
            inventory_item_id="item-dates",
            raw_text="5523795 TERRA DATES $9.49",
        ))

        assert [a.alias_text for a in written] == ["5523795 terra dates 9 49", "5523795"]
        events = audit.query(event_type=AuditEventType.ALIAS_LEARNED.value)
        assert len(events) == 1
        assert events[0].details["alias_texts"] == ["5523795 terra dates 9 49", "5523795"]

    def test_nothing_learned_without_place(self, store):
        learner = AliasLearner(store, AuditLogger.in_memory())
        written = asyncio.run(learner.learn("biz-1", None, "item-dates", "5523795 TERRA DATES"))
        assert written == []

    def test_store_errors_propagate(self):
        failing = AsyncMock()
        failing.upsert_alias = AsyncMock(side_effect=RuntimeError("write failed"))
        learner = AliasLearner(failing, AuditLogger.in_memory())

        with pytest.raises(RuntimeError, match="write failed"):
            asyncio.run(learner.learn("biz-1", "place-1", "item-dates", "TERRA DATES"))

    def test_learned_code_resolves_next_receipt(self, store, db_path):
        learner = AliasLearner(store, AuditLogger.in_memory())
        asyncio.run(learner.learn("biz-1", "place-1", "item-dates", "5523795 TERRA DATES $9.49"))

        resolver = LineMatchResolver(
            store,
            CatalogTextMatcher(load_catalog("biz-1", db_path=db_path)),
            metrics=MetricsCollector(),
        )
        # Different price and description, same store code
        result = asyncio.run(resolver.resolve(
            "5523795 TERRA MEDJOOL $10.99",
            business_id="biz-1",
            google_place_id="place-1",
        ))

        assert result.matched_item_id == "item-dates"
        assert result.status == MatchStatus.MATCHED
        assert result.top_match.match_source == MatchSource.RECEIPT_PLACE_CODE_ALIAS
