"""
Unit tests for the hybrid search orchestrator.
"""

import asyncio

import pytest
from unittest.mock import MagicMock

from shared.errors import AuthenticationError, NotFoundError, RemoteUnavailable, StoreUnavailable, ValidationError
from service_search.app.caching import keys
from service_search.app.domain.models import CONTACT_REDACTED, Caller, SearchResultSet
from service_search.app.domain.orchestrator import SearchOrchestrator
from service_search.app.store.base import DuplicateRecordError
from service_search.app.store.memory import InMemoryCatalogStore
from service_search.tests.factories import StubRemoteClient, make_candidate, make_service


def plumbers(count, **overrides):
    return [make_service(f"local-{i}", f"Plumber Pro {i}", **overrides) for i in range(count)]


class SlowStore(InMemoryCatalogStore):
    """Store whose text query never finishes in time."""

    async def search_services(self, *args, **kwargs):
        await asyncio.sleep(1)
        return await super().search_services(*args, **kwargs)


class BrokenStore(InMemoryCatalogStore):
    async def search_services(self, *args, **kwargs):
        raise ConnectionError("connection reset")


class RacingStore(InMemoryCatalogStore):
    """Store where another request wins every insert race."""

    async def insert_service(self, record):
        await super().insert_service(record)
        raise DuplicateRecordError("source_url", record.source_url)


class TestSearchOrchestrator:
    """Test cases for SearchOrchestrator."""

    @pytest.fixture
    def remote(self):
        return StubRemoteClient()

    @pytest.fixture
    def orchestrator(self, store, cache, remote):
        """Create SearchOrchestrator instance."""
        return SearchOrchestrator(store, cache, remote)

    async def seed(self, store, records):
        for record in records:
            await store.insert_service(record)

    @pytest.mark.asyncio
    async def test_no_local_and_no_remote_matches(self, orchestrator, remote):
        """Test an empty search yields an empty page and no error."""
        result = await orchestrator.search("plumber")

        assert isinstance(result, SearchResultSet)
        assert result.records == ()
        assert result.total == 0
        assert result.has_next is False
        assert len(remote.search_calls) == 1

    @pytest.mark.asyncio
    async def test_sufficient_total_skips_remote(self, orchestrator, store, remote):
        """Test a local total of at least 10 never consults the remote service."""
        await self.seed(store, plumbers(12))

        result = await orchestrator.search("plumber", limit=3)

        assert len(result.records) == 3
        assert result.total == 12
        assert remote.search_calls == []

    @pytest.mark.asyncio
    async def test_sufficient_page_skips_remote(self, orchestrator, store, remote):
        """Test a full enough page never consults the remote service."""
        await self.seed(store, plumbers(5))

        result = await orchestrator.search("plumber")

        assert result.total == 5
        assert remote.search_calls == []

    @pytest.mark.asyncio
    async def test_sparse_results_merge_remote_records(self, store, cache):
        """Test 2 local plus 5 new remote records rank into a total of 7."""
        await self.seed(store, [
            make_service("local-high", "Plumber Elite", relevance=80.0, rating=2.0),
            make_service("local-low", "Plumber Basic", relevance=40.0, rating=5.0),
        ])
        remote = StubRemoteClient(results=[make_candidate(i) for i in range(1, 6)])
        orchestrator = SearchOrchestrator(store, cache, remote)

        result = await orchestrator.search("plumber")

        assert result.total == 7
        assert [record.title for record in result.records] == [
            "Plumber Elite",
            "Remote Plumber 5",
            "Remote Plumber 4",
            "Remote Plumber 3",
            "Remote Plumber 2",
            "Remote Plumber 1",
            "Plumber Basic",
        ]
        assert remote.search_calls == [{"query": "plumber", "user_id": None}]

    @pytest.mark.asyncio
    async def test_ingested_records_are_premium_and_unverified(self, store, cache):
        """Test new remote records are stored as premium, unverified listings."""
        remote = StubRemoteClient(results=[make_candidate(1, rating=None, relevance=None)])
        orchestrator = SearchOrchestrator(store, cache, remote)

        await orchestrator.search("plumber")

        stored = await store.find_by_source_url("https://directory.example.com/plumber-1")
        assert stored is not None
        assert stored.premium_only is True
        assert stored.verified is False
        assert stored.rating == 0.0
        assert stored.relevance == 0.0
        assert stored.category_id == "home"
        assert stored.contact_info == "remote1@example.com"

    @pytest.mark.asyncio
    async def test_existing_source_url_is_not_duplicated(self, store, cache):
        """Test a candidate matching a stored source URL resolves to that record."""
        existing = make_service(
            "known",
            "Known Plumbing Company",
            source_url="https://directory.example.com/plumber-1",
            premium_only=False
        )
        await self.seed(store, [existing])
        remote = StubRemoteClient(results=[make_candidate(1)])
        orchestrator = SearchOrchestrator(store, cache, remote)

        result = await orchestrator.search("plumber")

        assert [record.id for record in result.records] == ["known"]
        _, total = await store.list_services(include_premium=True)
        assert total == 1

    @pytest.mark.asyncio
    async def test_title_prefix_match_in_same_category(self, store, cache):
        """Test a candidate without source URL matches by category and title prefix."""
        await self.seed(store, [make_service("known", "Remote Plumber 1 and Sons", premium_only=False)])
        remote = StubRemoteClient(results=[make_candidate(1, sourceUrl=None)])
        orchestrator = SearchOrchestrator(store, cache, remote)

        result = await orchestrator.search("plumber")

        assert [record.id for record in result.records] == ["known"]

    @pytest.mark.asyncio
    async def test_title_prefix_in_other_category_is_ingested(self, store, cache):
        """Test the fuzzy match is limited to the candidate's category."""
        await self.seed(store, [make_service("known", "Remote Plumber 1", category_id="legal", premium_only=False)])
        remote = StubRemoteClient(results=[make_candidate(1, sourceUrl=None)])
        orchestrator = SearchOrchestrator(store, cache, remote)

        result = await orchestrator.search("plumber")

        assert result.total == 2

    @pytest.mark.asyncio
    async def test_category_resolved_by_name(self, store, cache):
        """Test a remote category name resolves to the stored category id."""
        remote = StubRemoteClient(results=[make_candidate(1, category="Legal")])
        orchestrator = SearchOrchestrator(store, cache, remote)

        await orchestrator.search("plumber")

        stored = await store.find_by_source_url("https://directory.example.com/plumber-1")
        assert stored.category_id == "legal"

    @pytest.mark.asyncio
    async def test_duplicate_insert_is_resolved_by_refetch(self, categories, users, cache):
        """Test a lost insert race resolves to the winner's record."""
        store = RacingStore(categories=categories, users=users)
        remote = StubRemoteClient(results=[make_candidate(1)])
        orchestrator = SearchOrchestrator(store, cache, remote)

        result = await orchestrator.search("plumber")

        assert result.total == 1
        assert result.records[0].source_url == "https://directory.example.com/plumber-1"

    @pytest.mark.asyncio
    async def test_failed_candidate_is_skipped(self, store, cache):
        """Test one bad candidate does not sink the others."""
        remote = StubRemoteClient(results=[make_candidate(1), make_candidate(2)])
        orchestrator = SearchOrchestrator(store, cache, remote)

        original_insert = store.insert_service

        async def flaky_insert(record):
            if record.title == "Remote Plumber 1":
                raise RuntimeError("write rejected")
            return await original_insert(record)

        store.insert_service = flaky_insert

        result = await orchestrator.search("plumber")

        assert [record.title for record in result.records] == ["Remote Plumber 2"]

    @pytest.mark.asyncio
    async def test_remote_failure_returns_sparse_local_results(self, store, cache):
        """Test a remote timeout still returns the local results."""
        await self.seed(store, plumbers(2))
        remote = StubRemoteClient(error=RemoteUnavailable("Remote call failed after 3 attempts"))
        orchestrator = SearchOrchestrator(store, cache, remote)

        result = await orchestrator.search("plumber")

        assert result.total == 2
        assert len(result.records) == 2
        assert len(remote.search_calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_remote_error_is_not_fatal(self, store, cache):
        await self.seed(store, plumbers(1))
        orchestrator = SearchOrchestrator(store, cache, StubRemoteClient(error=KeyError("results")))

        result = await orchestrator.search("plumber")

        assert result.total == 1

    @pytest.mark.asyncio
    async def test_premium_contact_redacted_on_miss_and_hit(self, store, cache):
        """Test premium contacts stay hidden from anonymous callers, cached or not."""
        remote = StubRemoteClient(results=[make_candidate(1)])
        orchestrator = SearchOrchestrator(store, cache, remote)

        first = await orchestrator.search("plumber")
        second = await orchestrator.search("plumber")

        assert first.records[0].contact_info == CONTACT_REDACTED
        assert second.records[0].contact_info == CONTACT_REDACTED
        assert cache.stats()["hits"] == 1
        assert len(remote.search_calls) == 1

    @pytest.mark.asyncio
    async def test_payer_sees_paid_contact_on_miss_and_hit(self, store, cache):
        """Test a verified payer sees the contact of the record they paid for."""
        await self.seed(store, plumbers(6, premium_only=True))
        await store.add_paid_service("user-1", "local-0")
        orchestrator = SearchOrchestrator(store, cache, StubRemoteClient())
        payer = Caller(user_id="user-1", verified=True)

        first = await orchestrator.search("plumber", caller=payer)
        second = await orchestrator.search("plumber", caller=payer)

        for result in (first, second):
            contacts = {record.id: record.contact_info for record in result.records}
            assert contacts["local-0"] == "local-0@example.com"
            assert contacts["local-1"] == CONTACT_REDACTED
        assert cache.stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_caller_asserted_paid_ids_unlock_contacts(self, store, cache):
        await self.seed(store, plumbers(6, premium_only=True))
        orchestrator = SearchOrchestrator(store, cache, StubRemoteClient())
        caller = Caller(user_id="ghost", verified=True, paid_service_ids=frozenset({"local-2"}))

        result = await orchestrator.search("plumber", caller=caller)

        contacts = {record.id: record.contact_info for record in result.records}
        assert contacts["local-2"] == "local-2@example.com"
        assert contacts["local-0"] == CONTACT_REDACTED

    @pytest.mark.asyncio
    async def test_cached_page_is_redacted_per_caller(self, store, cache):
        """Test a page cached for a paying caller is not unlocked for others."""
        await self.seed(store, plumbers(6, premium_only=True))
        await store.add_paid_service("user-1", "local-0")
        orchestrator = SearchOrchestrator(store, cache, StubRemoteClient())
        payer = Caller(user_id="user-1", verified=True)

        await orchestrator.search("plumber", caller=payer)
        anonymous = await orchestrator.search("plumber")
        other = await orchestrator.search("plumber", caller=Caller(user_id="user-2", verified=True))
        unverified = await orchestrator.search(
            "plumber", caller=Caller(user_id="user-1", verified=False, paid_service_ids=frozenset({"local-0"}))
        )

        assert anonymous.total == 0
        assert unverified.total == 0
        assert other.total == 6
        assert all(record.contact_info == CONTACT_REDACTED for record in other.records)
        assert cache.stats()["hits"] == 2

    @pytest.mark.asyncio
    async def test_unverified_callers_do_not_see_premium_records(self, orchestrator, store):
        await self.seed(store, plumbers(3) + [make_service("premium", "Plumber Premium", premium_only=True)])

        anonymous = await orchestrator.search("plumber")
        verified = await orchestrator.search("plumber", page=1, limit=10, caller=Caller("user-1", verified=True))

        assert "premium" not in {record.id for record in anonymous.records}
        assert "premium" in {record.id for record in verified.records}

    @pytest.mark.asyncio
    async def test_normalized_query_and_filters_share_cache_entry(self, store, cache):
        """Test case and whitespace variants hit the same cache entry."""
        await self.seed(store, plumbers(6))
        remote = StubRemoteClient()
        orchestrator = SearchOrchestrator(store, cache, remote)

        await orchestrator.search("plumber ", location="Austin")
        hits_before = cache.stats()["hits"]
        await orchestrator.search("PLUMBER", location="austin")

        assert cache.stats()["hits"] == hits_before + 1

    @pytest.mark.asyncio
    async def test_result_is_cached_under_search_key(self, orchestrator, store, cache):
        await self.seed(store, plumbers(6))

        result = await orchestrator.search("Plumber", page=1, limit=5)

        key = keys.search_key("plumber", {"page": 1, "limit": 5})
        assert cache.get(key) is result

    @pytest.mark.asyncio
    async def test_pages_are_cached_separately(self, orchestrator, store):
        await self.seed(store, plumbers(12))

        first = await orchestrator.search("plumber", page=1, limit=5)
        second = await orchestrator.search("plumber", page=2, limit=5)

        assert {record.id for record in first.records}.isdisjoint({record.id for record in second.records})
        assert second.has_prev is True

    @pytest.mark.asyncio
    async def test_merged_results_paginate(self, store, cache):
        """Test pages past the first slice the merged ranking."""
        await self.seed(store, [
            make_service("local-high", "Plumber Elite", relevance=80.0),
            make_service("local-low", "Plumber Basic", relevance=40.0),
        ])
        remote = StubRemoteClient(results=[make_candidate(i) for i in range(1, 6)])
        orchestrator = SearchOrchestrator(store, cache, remote)

        result = await orchestrator.search("plumber", page=2, limit=3)

        assert result.total == 7
        assert [record.title for record in result.records] == [
            "Remote Plumber 3",
            "Remote Plumber 2",
            "Remote Plumber 1",
        ]
        assert result.has_next is True

    @pytest.mark.asyncio
    async def test_validation_happens_before_side_effects(self, orchestrator, cache, remote):
        """Test an invalid request touches neither the cache nor the remote service."""
        with pytest.raises(ValidationError):
            await orchestrator.search("a")

        with pytest.raises(ValidationError):
            await orchestrator.search("plumber", price="cheap")

        assert cache.stats()["misses"] == 0
        assert remote.search_calls == []

    @pytest.mark.asyncio
    async def test_store_timeout(self, categories, cache):
        """Test a slow store surfaces as StoreUnavailable."""
        orchestrator = SearchOrchestrator(SlowStore(categories=categories), cache, StubRemoteClient(), store_timeout=0.01)

        with pytest.raises(StoreUnavailable):
            await orchestrator.search("plumber")

    @pytest.mark.asyncio
    async def test_store_failure(self, cache):
        orchestrator = SearchOrchestrator(BrokenStore(), cache, StubRemoteClient())

        with pytest.raises(StoreUnavailable) as exc_info:
            await orchestrator.search("plumber")

        assert exc_info.value.code == "STORE_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_configurable_thresholds(self, store, cache):
        """Test the sufficiency gate follows its settings."""
        await self.seed(store, plumbers(2))
        remote = StubRemoteClient()
        orchestrator = SearchOrchestrator(store, cache, remote, min_page_results=2, min_total_results=50)

        await orchestrator.search("plumber")

        assert remote.search_calls == []

    @pytest.mark.asyncio
    async def test_history_recorded_for_authenticated_caller(self, orchestrator, store):
        """Test searches are prepended to the caller's history."""
        caller = Caller("user-1", verified=True)

        await orchestrator.search("  Emergency   Plumber ", caller=caller)
        await orchestrator.search("electrician", caller=caller)

        user = await store.get_user("user-1")
        assert [entry.query for entry in user.recent_searches] == ["electrician", "emergency plumber"]

    @pytest.mark.asyncio
    async def test_history_recorded_on_cache_hit(self, orchestrator, store):
        caller = Caller("user-1", verified=True)

        await orchestrator.search("plumber", caller=caller)
        await orchestrator.search("plumber", caller=caller)

        user = await store.get_user("user-1")
        assert len(user.recent_searches) == 2

    @pytest.mark.asyncio
    async def test_history_is_capped(self, orchestrator, store):
        caller = Caller("user-1", verified=True)

        for i in range(12):
            await orchestrator.search(f"query {i}", caller=caller)

        user = await store.get_user("user-1")
        assert len(user.recent_searches) == 10
        assert user.recent_searches[0].query == "query 11"

    @pytest.mark.asyncio
    async def test_history_failure_is_ignored(self, orchestrator, store):
        """Test a history write failure does not fail the search."""
        async def failing_save(user_id, entries):
            raise RuntimeError("write conflict")

        store.save_recent_searches = failing_save

        result = await orchestrator.search("plumber", caller=Caller("user-1", verified=True))

        assert result.total == 0

    @pytest.mark.asyncio
    async def test_history_skipped_for_unknown_user(self, orchestrator):
        result = await orchestrator.search("plumber", caller=Caller("ghost"))

        assert result.total == 0

    @pytest.mark.asyncio
    async def test_recent_searches_cached_and_invalidated(self, orchestrator, cache):
        """Test recent searches are cached and dropped when history changes."""
        caller = Caller("user-1", verified=True)
        await orchestrator.search("plumber", caller=caller)

        first = await orchestrator.recent_searches(caller)
        assert cache.get(keys.user_key("user-1", "recent-searches")) == first

        await orchestrator.search("electrician", caller=caller)
        assert cache.get(keys.user_key("user-1", "recent-searches")) is None

        second = await orchestrator.recent_searches(caller)
        assert [entry.query for entry in second] == ["electrician", "plumber"]

    @pytest.mark.asyncio
    async def test_recent_searches_requires_caller(self, orchestrator):
        with pytest.raises(AuthenticationError):
            await orchestrator.recent_searches(None)

        with pytest.raises(NotFoundError):
            await orchestrator.recent_searches(Caller("ghost"))

    @pytest.mark.asyncio
    async def test_clear_recent_searches(self, orchestrator, store):
        caller = Caller("user-1", verified=True)
        await orchestrator.search("plumber", caller=caller)
        await orchestrator.recent_searches(caller)

        await orchestrator.clear_recent_searches(caller)

        assert await orchestrator.recent_searches(caller) == ()
        with pytest.raises(AuthenticationError):
            await orchestrator.clear_recent_searches(None)

    @pytest.mark.asyncio
    async def test_records_search_metrics(self, store, cache):
        """Test search outcomes are reported by source."""
        metrics = MagicMock()
        remote = StubRemoteClient(results=[make_candidate(1)])
        orchestrator = SearchOrchestrator(store, cache, remote, metrics=metrics)

        await orchestrator.search("plumber")
        await orchestrator.search("plumber")

        metrics.increment_counter.assert_any_call("search_requests_total", source="merged")
        metrics.increment_counter.assert_any_call("search_requests_total", source="cache")
        metrics.increment_counter.assert_any_call("remote_fallback_total", outcome="merged")
        metrics.increment_counter.assert_any_call("remote_ingested_records_total", 1)
