"""
Unit tests for the pure domain helpers: validation, history, ranking and redaction.
"""

from datetime import timedelta

import pytest

from shared.errors import ValidationError
from service_search.app.domain.history import add_recent_search
from service_search.app.domain.models import (
    CONTACT_REDACTED,
    Caller,
    LocalRecord,
    RemoteCandidate,
    RemoteRecord,
    SearchHistoryEntry,
    SearchResultSet,
    canonical,
)
from service_search.app.domain.ranking import merge_records, paginate
from service_search.app.domain.redaction import redact_record, redact_records
from service_search.app.domain.validation import build_search_query
from service_search.tests.factories import FIXED_TIME, make_service


class TestBuildSearchQuery:
    """Test cases for search request validation."""

    def test_normalizes_query_and_filters(self):
        query = build_search_query("  Emergency   PLUMBER ", location=" Austin ", category="", price=None)

        assert query.text == "emergency plumber"
        assert query.filters == {"location": "Austin"}
        assert query.page == 1
        assert query.limit == 20

    def test_accepts_numeric_strings(self):
        query = build_search_query("plumber", page="2", limit="10")

        assert query.page == 2
        assert query.limit == 10
        assert query.skip == 10

    @pytest.mark.parametrize("text", ["a", " a ", "x" * 101, ""])
    def test_rejects_query_length(self, text):
        with pytest.raises(ValidationError):
            build_search_query(text)

    def test_rejects_non_string_query(self):
        with pytest.raises(ValidationError):
            build_search_query(42)

    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 51), ("x", 10), (True, 10), (1, 2.5)])
    def test_rejects_pagination(self, page, limit):
        with pytest.raises(ValidationError):
            build_search_query("plumber", page=page, limit=limit)

    def test_rejects_non_string_filters(self):
        with pytest.raises(ValidationError):
            build_search_query("plumber", location=["Austin"])

    def test_rejects_unknown_price_tier(self):
        with pytest.raises(ValidationError):
            build_search_query("plumber", price="$$$$$")

    def test_reports_every_problem(self):
        with pytest.raises(ValidationError) as exc_info:
            build_search_query("a", price="cheap", page=0)

        assert len(exc_info.value.details["errors"]) == 3
        assert exc_info.value.code == "VALIDATION_ERROR"


class TestSearchHistory:
    """Test cases for history bookkeeping."""

    def test_prepends_most_recent(self):
        history = add_recent_search((), "plumber", now=FIXED_TIME)
        history = add_recent_search(history, "electrician", now=FIXED_TIME + timedelta(minutes=1))

        assert [entry.query for entry in history] == ["electrician", "plumber"]

    def test_caps_at_limit(self):
        history = ()
        for i in range(15):
            history = add_recent_search(history, f"query {i}", now=FIXED_TIME)

        assert len(history) == 10
        assert history[0].query == "query 14"
        assert history[-1].query == "query 5"

    def test_keeps_duplicates_and_input(self):
        original = (SearchHistoryEntry(query="plumber", timestamp=FIXED_TIME),)

        history = add_recent_search(original, "plumber", now=FIXED_TIME)

        assert len(history) == 2
        assert len(original) == 1


class TestRanking:
    """Test cases for merging and ranking."""

    def test_relevance_then_rating(self):
        records = [
            make_service("a", "A", relevance=50.0, rating=3.0),
            make_service("b", "B", relevance=90.0, rating=1.0),
            make_service("c", "C", relevance=50.0, rating=4.5),
            make_service("d", "D", relevance=None, rating=5.0),
        ]

        merged = merge_records(LocalRecord(record) for record in records)

        assert [record.id for record in merged] == ["b", "c", "a", "d"]

    def test_union_by_id_last_write_wins(self):
        local = make_service("x", "Local copy", relevance=10.0)
        remote = make_service("x", "Remote copy", relevance=10.0)
        candidate = RemoteCandidate(title="Remote copy")

        merged = merge_records([LocalRecord(local), RemoteRecord(remote, candidate, ingested=False)])

        assert [record.title for record in merged] == ["Remote copy"]

    def test_canonical_rejects_unknown_sources(self):
        with pytest.raises(TypeError):
            canonical(make_service("x", "X"))

    def test_paginate(self):
        records = [make_service(str(i), f"R{i}") for i in range(7)]

        assert [record.id for record in paginate(records, 3, 3)] == ["6"]
        assert paginate(records, 4, 3) == []

    def test_result_set_navigation(self):
        result = SearchResultSet(records=(), total=7, page=2, limit=3)

        assert result.has_next is True
        assert result.has_prev is True
        assert result.to_dict()["total"] == 7


class TestRedaction:
    """Test cases for contact redaction."""

    def test_free_records_are_untouched(self):
        record = make_service("free", "Free")

        assert redact_record(record) is record

    def test_premium_records_redacted_without_proof(self):
        record = make_service("paid", "Paid", premium_only=True)

        assert redact_record(record).contact_info == CONTACT_REDACTED
        assert redact_record(record, Caller("u1", verified=True)).contact_info == CONTACT_REDACTED
        assert redact_record(
            record, Caller("u1", verified=False, paid_service_ids=frozenset({"paid"}))
        ).contact_info == CONTACT_REDACTED
        assert record.contact_info == "paid@example.com"

    def test_verified_payer_sees_contact(self):
        record = make_service("paid", "Paid", premium_only=True)
        caller = Caller("u1", verified=True, paid_service_ids=frozenset({"paid"}))

        assert redact_record(record, caller).contact_info == "paid@example.com"

    def test_redact_records(self):
        records = [make_service("free", "Free"), make_service("paid", "Paid", premium_only=True)]

        assert [record.contact_info for record in redact_records(records)] == [
            "free@example.com",
            CONTACT_REDACTED,
        ]
