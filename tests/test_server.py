"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from conftest import FakeStore
from dispatcher import QueryResult
from query_builders import SearchType
from server import accuracy_verdict, create_app, speedup_label
from store import Engine

ROWS = [
    {"id": 1, "asin": "B1", "title": "Apple iPhone 12", "description": "", "brand": "Apple",
     "price": "799", "categories": ["Cell Phones"]},
]


def schema_responses(count):
    return {
        "information_schema.columns": [
            {"column_name": "id", "data_type": "integer", "is_nullable": "NO",
             "column_default": "nextval('products_id_seq'::regclass)"},
            {"column_name": "title", "data_type": "text", "is_nullable": "YES", "column_default": None},
        ],
        "pg_indexes": [{"indexname": "products_pkey", "indexdef": "CREATE UNIQUE INDEX products_pkey"}],
        "pg_extension": [{"extname": "pg_trgm", "extversion": "1.6"}],
        "COUNT(*)": [{"count": count}],
        "FROM products": ROWS,
    }


@pytest.fixture
def stores():
    return {
        Engine.VANILLA: FakeStore(Engine.VANILLA, responses=schema_responses(1234567)),
        Engine.PARADE: FakeStore(Engine.PARADE, responses=schema_responses(1234567)),
    }


@pytest.fixture
def client(stores):
    with TestClient(create_app(stores)) as client:
        yield client


class TestBenchmarkEndpoint:

    def test_missing_query(self, client):
        response = client.post("/api/benchmark", json={"searchType": "fulltext"})
        assert response.status_code == 400

    def test_side_by_side(self, client):
        response = client.post("/api/benchmark", json={"query": "apple iphone", "searchType": "exact"})

        assert response.status_code == 200
        body = response.json()
        assert body["searchType"] == "exact"
        assert body["vanilla"]["count"] == 1
        assert body["vanilla"]["relevanceScore"] == "100.0"
        assert body["parade"]["ndcgScore"] == "100.0"
        assert body["accuracy"]["winner"] == "tie"

    def test_default_search_type(self, client):
        body = client.post("/api/benchmark", json={"query": "apple"}).json()
        assert body["searchType"] == "fulltext"

    def test_engine_error_reported_in_body(self, stores):
        stores[Engine.PARADE].fail_on.append("@@@")
        with TestClient(create_app(stores)) as client:
            body = client.post("/api/benchmark", json={"query": "apple"}).json()

        assert body["parade"]["error"]
        assert body["parade"]["count"] == 0
        assert body["speedup"] == "N/A"
        assert body["accuracy"]["winner"] == "vanilla"


class TestStatsEndpoint:

    def test_counts(self, client):
        body = client.get("/api/stats").json()
        assert body == {"vanilla": {"count": 1234567}, "parade": {"count": 1234567}}

    def test_store_failure(self, stores):
        stores[Engine.VANILLA].fail_on.append("COUNT")
        with TestClient(create_app(stores)) as client:
            assert client.get("/api/stats").status_code == 500


class TestSchemaEndpoint:

    def test_describes_both_engines(self, client):
        body = client.get("/api/schema").json()

        assert body["vanilla"]["records"] == "1,234,567 products"
        assert "id: integer NOT NULL DEFAULT nextval" in body["vanilla"]["schema"]
        assert body["parade"]["extensions"] == "pg_trgm v1.6"
        assert body["parade"]["indexes"].startswith("products_pkey:\n  CREATE UNIQUE INDEX")


class TestVerdicts:

    def result(self, duration):
        return QueryResult(Engine.VANILLA, "q", SearchType.FULLTEXT, duration_ms=duration)

    def test_speedup_label(self):
        assert speedup_label(self.result(30.0), self.result(10.0)) == "3.00x"
        assert speedup_label(self.result(0.0), self.result(10.0)) == "N/A"

    def test_accuracy_tie_within_threshold(self):
        assert accuracy_verdict(80.0, 76.0).winner == "tie"

    def test_accuracy_winner(self):
        verdict = accuracy_verdict(60.0, 90.0)
        assert verdict.winner == "parade"
        assert verdict.difference == "30.0"
