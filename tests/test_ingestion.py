"""Tests for the parallel batch ingestion pipeline."""

import logging
import threading
import time

import pytest

from conftest import FakeStore, make_line, make_record
from ingestion import (
    INSERT_STATEMENT, IngestionPipeline, IngestionStats, WorkerPool, ingest, write_batch
)


def lines(n, prefix="A"):
    return [make_line(f"{prefix}{i:05d}") for i in range(n)]


class TestWriteBatch:

    def test_all_records_written(self, fake_store):
        batch = [make_record(f"A{i}") for i in range(4)]
        assert write_batch(fake_store, batch) == (4, 0)
        assert len(fake_store.rows) == 4
        assert fake_store.commits == 1

    def test_failing_record_is_skipped(self):
        store = FakeStore(fail_asins={"A2"})
        batch = [make_record(f"A{i}") for i in range(5)]

        written, skipped = write_batch(store, batch)

        assert (written, skipped) == (4, 1)
        assert sorted(r["asin"] for r in store.rows) == ["A0", "A1", "A3", "A4"]
        assert store.executed("ROLLBACK TO SAVEPOINT")

    def test_uses_insert_statement(self, fake_store):
        write_batch(fake_store, [make_record("A1")])
        assert fake_store.executed(INSERT_STATEMENT)


class TestIngestionPipeline:

    @pytest.mark.parametrize("workers", [1, 4, 8])
    def test_counts_independent_of_workers(self, workers):
        store = FakeStore()
        stats = ingest(store, lines(103), batch_size=10, workers=workers, queue_capacity=2)

        assert stats.processed == 103
        assert stats.failed == 0
        assert len(store.rows) == 103
        assert len({r["asin"] for r in store.rows}) == 103

    def test_malformed_lines_not_counted(self):
        store = FakeStore()
        source = lines(5) + ["garbage", "{'asin': 'X'}"]
        stats = ingest(store, source, batch_size=2, workers=2)

        assert stats.accepted == 5
        assert stats.processed == 5
        assert stats.failed == 0

    def test_undecodable_dict_literal_skipped(self):
        store = FakeStore()
        source = [make_line("A1"), "{[1]: 2}", make_line("A2")]
        stats = ingest(store, source, batch_size=2, workers=1)

        assert stats.processed == 2
        assert sorted(r["asin"] for r in store.rows) == ["A1", "A2"]

    def test_bad_record_in_batch(self):
        store = FakeStore(fail_asins={"A00002"})
        stats = ingest(store, lines(5), batch_size=5, workers=1)

        assert stats.processed == 4
        assert stats.failed == 1
        assert len(store.rows) == 4

    def test_sample_size_limits_records(self):
        store = FakeStore()
        stats = ingest(store, lines(50), batch_size=4, workers=2, sample_size=7)

        assert stats.processed == 7
        assert len(store.rows) == 7

    def test_failed_batch_logged_and_not_retried(self, caplog):
        store = FakeStore(fail_commit=True)
        with caplog.at_level(logging.ERROR):
            stats = ingest(store, lines(6), batch_size=2, workers=2)

        assert stats.processed == 0
        assert stats.failed_batches == 3
        assert len(store.executed("BEGIN")) == 3
        assert "Error inserting batch" in caplog.text

    def test_unexpected_writer_error_loses_batch(self):
        def broken_writer(store, batch):
            raise RuntimeError("boom")

        stats = ingest(FakeStore(), lines(4), batch_size=2, workers=1, writer=broken_writer)
        assert stats.failed_batches == 2
        assert stats.processed == 0

    def test_cancel_drains_submitted_batches(self):
        store = FakeStore()
        pipeline = IngestionPipeline(store, batch_size=2, workers=2, queue_capacity=4)

        def source():
            for i in range(9):
                yield make_line(f"A{i:05d}")
            pipeline.cancel()
            for i in range(9, 20):
                yield make_line(f"A{i:05d}")

        stats = pipeline.run(source())

        assert pipeline.cancelled
        # the unfilled ninth record is never submitted
        assert stats.processed == 8
        assert len(store.rows) == 8

    def test_snapshot(self):
        stats = ingest(FakeStore(), lines(3), batch_size=2, workers=1)
        snapshot = stats.snapshot()
        assert snapshot["records_processed"] == 3
        assert snapshot["batches_failed"] == 0
        assert snapshot["elapsed_sec"] >= 0


class TestWorkerPool:

    def test_submit_blocks_when_queue_full(self):
        gate = threading.Event()
        store = FakeStore(gate=gate)
        stats = IngestionStats("test")
        pool = WorkerPool(store, stats, workers=1, queue_capacity=1)

        pool.submit([make_record("A1")])
        pool.submit([make_record("A2")])

        third = threading.Thread(target=pool.submit, args=([make_record("A3")],))
        third.start()
        time.sleep(0.2)
        assert third.is_alive()

        gate.set()
        third.join(timeout=5)
        assert not third.is_alive()

        pool.wait()
        assert stats.processed == 3

    def test_submit_after_close_rejected(self, fake_store):
        pool = WorkerPool(fake_store, IngestionStats("test"), workers=1, queue_capacity=1)
        pool.wait()
        with pytest.raises(RuntimeError):
            pool.submit([make_record("A1")])

    def test_invalid_sizes(self, fake_store):
        with pytest.raises(ValueError):
            WorkerPool(fake_store, IngestionStats("test"), workers=0)
        with pytest.raises(ValueError):
            WorkerPool(fake_store, IngestionStats("test"), queue_capacity=0)


class TestIngestionStats:

    def test_progress_logged_on_interval(self, caplog):
        stats = IngestionStats("Vanilla PostgreSQL", total_target=100, progress_interval=10)
        with caplog.at_level(logging.INFO):
            stats.add_processed(5)
            stats.add_processed(7)
            stats.add_processed(3)

        assert stats.processed == 15
        assert caplog.text.count("products processed") == 1

    def test_concurrent_updates(self):
        stats = IngestionStats("test", progress_interval=0)

        def work():
            for _ in range(1000):
                stats.add_processed(1)
                stats.add_failed(1)

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert stats.processed == 8000
        assert stats.failed == 8000

    def test_eta_never_negative(self):
        stats = IngestionStats("test", total_target=10, progress_interval=0)
        stats.add_processed(20)
        assert stats.eta_seconds() == 0.0
