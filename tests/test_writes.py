"""Tests for the write workloads."""

import pytest

from conftest import FakeStore
from store import Engine
from writes import (
    ProductGenerator, WriteResult, batch_insert, rebuild_index,
    run_write_workload, single_inserts, update_rows
)


class TestProductGenerator:

    def test_unique_asins(self):
        generator = ProductGenerator(seed=1)
        products = generator.generate(50) + generator.generate(50)
        asins = [p.asin for p in products]

        assert len(set(asins)) == 100
        assert all(len(a) == 18 for a in asins)

    def test_seeded_content(self):
        first = [p.title for p in ProductGenerator(seed=7).generate(5)]
        second = [p.title for p in ProductGenerator(seed=7).generate(5)]
        assert first == second

    def test_shape(self):
        product = ProductGenerator().generate(1)[0]
        assert product.brand == "Apple"
        assert product.sales_rank is not None
        assert len(product.categories) == 1


class TestWriteResult:

    def test_rows_per_sec(self):
        assert WriteResult("x", "vanilla", rows=100, time_ms=500).rows_per_sec == 200
        assert WriteResult("x", "vanilla", rows=100, time_ms=0).rows_per_sec == 0


class TestBatchInsert:

    def test_inserts_in_batches(self, fake_store):
        result = batch_insert(fake_store, ProductGenerator().generate(25), batch_size=10)

        assert result.rows == 25
        assert result.errors == 0
        assert len(fake_store.executed("INSERT INTO products")) == 3
        assert len(fake_store.rows) == 25

    def test_failing_batch_does_not_stop_workload(self):
        products = ProductGenerator().generate(30)
        store = FakeStore(fail_asins={products[10].asin})

        result = batch_insert(store, products, batch_size=10)

        assert result.errors == 1
        assert result.rows == 20


class TestSingleInserts:

    def test_stops_at_first_error(self):
        products = ProductGenerator().generate(10)
        store = FakeStore(fail_asins={products[3].asin})

        result = single_inserts(store, products)

        assert result.rows == 3
        assert result.errors == 1
        assert len(store.executed("INSERT")) == 4


class TestUpdateRows:

    def test_updates_selected_rows(self):
        selected = [{"id": i, "title": f"t{i}", "description": "d"} for i in range(5)]
        store = FakeStore(responses={"ORDER BY RANDOM()": selected})

        result = update_rows(store, 5)

        assert result.rows == 5
        updates = store.executed("UPDATE products")
        assert updates[0][1][0] == "t0 - UPDATED"

    def test_no_rows(self, fake_store):
        result = update_rows(fake_store, 5)
        assert result.rows == 0
        assert result.time_ms == 0


class TestRebuildIndex:

    def test_runs_in_one_transaction(self):
        store = FakeStore(Engine.PARADE)
        result = rebuild_index(store)

        assert result.errors == 0
        begin = [s for s, _ in store.statements].index("BEGIN")
        reindex = [s for s, _ in store.statements].index("REINDEX INDEX products_search_idx")
        assert begin < reindex
        assert store.commits == 1

    def test_settings_scoped_to_transaction(self):
        store = FakeStore(Engine.PARADE)
        rebuild_index(store)

        settings = [s for s, _ in store.statements if s.startswith("SET")]
        assert settings
        assert all(s.startswith("SET LOCAL ") for s in settings)

    def test_failure_reports_zero_time(self):
        store = FakeStore(fail_on=["REINDEX"])
        result = rebuild_index(store)
        assert result.errors == 1
        assert result.time_ms == 0


class TestRunWriteWorkload:

    def test_dispatch(self, fake_store):
        generator = ProductGenerator()
        assert run_write_workload(fake_store, generator, "smallBatch", "batch", 20, 10).rows == 20
        assert run_write_workload(fake_store, generator, "singleInsert", "single", 3, 1).rows == 3
        assert run_write_workload(fake_store, generator, "indexRebuild", "reindex", 0, 0).operation == "indexRebuild"

    def test_unknown_kind(self, fake_store):
        with pytest.raises(ValueError):
            run_write_workload(fake_store, ProductGenerator(), "x", "delete", 1, 1)
