"""Tests for query dispatch across engines."""

from conftest import FakeStore
from dispatcher import QueryDispatcher
from query_builders import SearchType
from store import Engine

ROWS = [{"id": 1, "asin": "B1", "title": "Apple iPhone", "description": "", "brand": "Apple"}]


def make_dispatcher():
    stores = {
        Engine.VANILLA: FakeStore(Engine.VANILLA, responses={"FROM products": ROWS}),
        Engine.PARADE: FakeStore(Engine.PARADE, responses={"FROM products": ROWS}),
    }
    return QueryDispatcher(stores), stores


class TestRun:

    def test_success(self):
        dispatcher, stores = make_dispatcher()
        result = dispatcher.run(Engine.VANILLA, "apple iphone", "fulltext")

        assert result.ok
        assert result.count == 1
        assert result.duration_ms >= 0
        assert "plainto_tsquery" in result.statement
        assert stores[Engine.VANILLA].executed("plainto_tsquery")

    def test_store_failure_becomes_error_result(self):
        broken = FakeStore(Engine.PARADE, fail_on=["@@@"])
        dispatcher, _ = make_dispatcher()
        dispatcher.stores[Engine.PARADE] = broken

        result = dispatcher.run(Engine.PARADE, "apple", SearchType.FULLTEXT)

        assert not result.ok
        assert result.count == 0
        assert result.duration_ms == 0
        assert result.error_kind == "store"

    def test_unknown_search_type(self):
        dispatcher, _ = make_dispatcher()
        result = dispatcher.run(Engine.VANILLA, "apple", "semantic")
        assert result.error_kind == "query"
        assert result.rows == []

    def test_empty_query(self):
        dispatcher, stores = make_dispatcher()
        result = dispatcher.run(Engine.VANILLA, "", "fulltext")
        assert not result.ok
        assert stores[Engine.VANILLA].statements == []

    def test_missing_store(self):
        dispatcher = QueryDispatcher({Engine.VANILLA: FakeStore()})
        result = dispatcher.run(Engine.PARADE, "apple", "fulltext")
        assert result.error_kind == "connection"

    def test_to_dict(self):
        dispatcher, _ = make_dispatcher()
        body = dispatcher.run(Engine.PARADE, "apple", "exact").to_dict()
        assert body["engine"] == "parade"
        assert body["searchType"] == "exact"
        assert body["count"] == 1
        assert body["error"] is None


class TestRunAll:

    def test_both_engines_concurrently(self):
        dispatcher, _ = make_dispatcher()
        results = dispatcher.run_all("apple", "fuzzy")
        assert set(results) == {Engine.VANILLA, Engine.PARADE}
        assert all(r.ok for r in results.values())

    def test_sequential(self):
        dispatcher, _ = make_dispatcher()
        results = dispatcher.run_all("apple", "fuzzy", concurrent=False)
        assert results[Engine.PARADE].search_type is SearchType.FUZZY

    def test_one_engine_failing_does_not_affect_the_other(self):
        dispatcher, _ = make_dispatcher()
        dispatcher.stores[Engine.VANILLA] = FakeStore(Engine.VANILLA, fail_on=["SELECT"])

        results = dispatcher.run_all("apple", "fulltext")

        assert not results[Engine.VANILLA].ok
        assert results[Engine.PARADE].ok

    def test_requested_engines_always_answered(self):
        dispatcher = QueryDispatcher({Engine.VANILLA: FakeStore()})
        results = dispatcher.run_all("apple", "fulltext", engines=[Engine.VANILLA, Engine.PARADE])
        assert not results[Engine.PARADE].ok
