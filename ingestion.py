"""
Parallel batch ingestion: one producer parses corpus lines into batches,
a fixed pool of workers writes them to a store through a bounded queue.
"""

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Tuple

from config import (
    BATCH_SIZE, MAX_WORKERS, PROGRESS_INTERVAL, QUEUE_CAPACITY,
    SAMPLE_SIZE, TABLE_NAME, TOTAL_TARGET
)
from errors import BatchWriteError, RecordWriteError, StoreError
from records import INSERT_COLUMNS, BatchAccumulator, ProductRecord, parse_lines
from store import Store

logger = logging.getLogger(__name__)

INSERT_STATEMENT = (
    f"INSERT INTO {TABLE_NAME} ({', '.join(INSERT_COLUMNS)}) "
    "VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s)"
)

Batch = List[ProductRecord]
BatchWriter = Callable[[Store, Batch], Tuple[int, int]]

_STOP = object()


class IngestionStats:
    """
    Running counters shared by all workers of one ingestion.

    All mutation goes through the lock; progress lines are logged outside
    of it so reporting never holds up a worker.
    """

    def __init__(self, label: str = "", total_target: int = TOTAL_TARGET,
                 progress_interval: int = PROGRESS_INTERVAL):
        self.label = label
        self.total_target = total_target
        self.progress_interval = progress_interval
        self._lock = threading.Lock()
        self._processed = 0
        self._failed = 0
        self._failed_batches = 0
        self._accepted = 0
        self._start = time.perf_counter()
        self._end: Optional[float] = None

    def start(self) -> None:
        with self._lock:
            self._start = time.perf_counter()
            self._end = None

    def finish(self) -> None:
        with self._lock:
            self._end = time.perf_counter()

    def add_processed(self, count: int) -> int:
        if count <= 0:
            return self.processed
        with self._lock:
            before = self._processed
            self._processed += count
            after = self._processed
        if self.progress_interval and after // self.progress_interval > before // self.progress_interval:
            self._report_progress(after)
        return after

    def add_failed(self, count: int = 1) -> None:
        if count <= 0:
            return
        with self._lock:
            self._failed += count

    def add_failed_batch(self) -> None:
        with self._lock:
            self._failed_batches += 1

    def add_accepted(self, count: int = 1) -> None:
        with self._lock:
            self._accepted += count

    @property
    def processed(self) -> int:
        with self._lock:
            return self._processed

    @property
    def failed(self) -> int:
        with self._lock:
            return self._failed

    @property
    def failed_batches(self) -> int:
        with self._lock:
            return self._failed_batches

    @property
    def accepted(self) -> int:
        with self._lock:
            return self._accepted

    @property
    def elapsed(self) -> float:
        with self._lock:
            end = self._end if self._end is not None else time.perf_counter()
            return end - self._start

    def rate(self, count: Optional[int] = None) -> float:
        count = self.processed if count is None else count
        elapsed = self.elapsed
        return count / elapsed if elapsed > 0 else 0.0

    def eta_seconds(self, count: Optional[int] = None) -> float:
        count = self.processed if count is None else count
        rate = self.rate(count)
        if rate <= 0:
            return 0.0
        return max(0.0, (self.total_target - count) / rate)

    def _report_progress(self, count: int) -> None:
        rate = self.rate(count)
        eta = self.eta_seconds(count)
        logger.info(f"{self.label}: {count} products processed ({rate:.0f}/sec, ETA: {eta:.0f}s)...")

    def snapshot(self) -> dict:
        return {
            "label": self.label,
            "records_accepted": self.accepted,
            "records_processed": self.processed,
            "records_failed": self.failed,
            "batches_failed": self.failed_batches,
            "elapsed_sec": round(self.elapsed, 2),
            "rate_per_sec": round(self.rate(), 2),
        }


def write_batch(store: Store, batch: Batch, statement: str = INSERT_STATEMENT) -> Tuple[int, int]:
    """
    Write one batch inside a single transaction.

    A record that fails is rolled back to its own savepoint and skipped;
    the remaining records are still committed.

    Returns:
        Tuple of (records written, records skipped)

    Raises:
        StoreError: when the transaction itself cannot begin or commit
    """
    written = 0
    skipped = 0
    with store.transaction() as tx:
        for record in batch:
            try:
                tx.execute_isolated(statement, record.to_row())
            except StoreError as e:
                skipped += 1
                error = RecordWriteError(f"Error inserting product {record.asin}: {e}", cause=e)
                logger.warning(str(error))
                continue
            written += 1
    return written, skipped


class WorkerPool:
    """
    Fixed-size pool of workers consuming batches from a bounded queue.

    submit() blocks while the queue is full. close() ends submission;
    workers drain what is queued and exit. wait() blocks until they have.
    """

    def __init__(self, store: Store, stats: IngestionStats,
                 workers: int = MAX_WORKERS,
                 queue_capacity: int = QUEUE_CAPACITY,
                 writer: BatchWriter = write_batch):
        if workers < 1:
            raise ValueError("workers must be positive")
        if queue_capacity < 1:
            raise ValueError("queue_capacity must be positive")

        self.store = store
        self.stats = stats
        self.workers = workers
        self._writer = writer
        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_capacity)
        self._closed = False
        self._close_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix=f"ingest-{store.engine.value}"
        )
        self._futures = [self._executor.submit(self._worker) for _ in range(workers)]

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, batch: Batch) -> None:
        if self._closed:
            raise RuntimeError("Cannot submit to a closed worker pool")
        self._queue.put(batch)

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        for _ in range(self.workers):
            self._queue.put(_STOP)

    def wait(self) -> None:
        """Close submission if still open, then block until every worker exits."""
        self.close()
        for future in self._futures:
            future.result()
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.wait()
        return False

    def _worker(self) -> None:
        while True:
            batch = self._queue.get()
            try:
                if batch is _STOP:
                    return
                self._process(batch)
            finally:
                self._queue.task_done()

    def _process(self, batch: Batch) -> None:
        label = self.stats.label or self.store.engine.label
        try:
            written, skipped = self._writer(self.store, batch)
        except StoreError as e:
            error = BatchWriteError(f"batch of {len(batch)} records lost: {e}", cause=e)
            self.stats.add_failed_batch()
            logger.error(f"{label}: Error inserting batch: {error} (not retried)")
            return
        except Exception:
            self.stats.add_failed_batch()
            logger.exception(f"{label}: Unexpected error inserting batch of {len(batch)} records")
            return

        self.stats.add_failed(skipped)
        self.stats.add_processed(written)


class IngestionPipeline:
    """Parse -> batch -> bounded worker pool, for one target store."""

    def __init__(self, store: Store,
                 batch_size: int = BATCH_SIZE,
                 workers: int = MAX_WORKERS,
                 queue_capacity: int = QUEUE_CAPACITY,
                 sample_size: int = SAMPLE_SIZE,
                 total_target: int = TOTAL_TARGET,
                 progress_interval: int = PROGRESS_INTERVAL,
                 writer: BatchWriter = write_batch):
        self.store = store
        self.batch_size = batch_size
        self.workers = workers
        self.queue_capacity = queue_capacity
        self.sample_size = sample_size
        self.writer = writer
        target = sample_size if sample_size else total_target
        self.stats = IngestionStats(store.engine.label, target, progress_interval)
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop submitting batches; queued batches are still written."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self, lines: Iterable[str]) -> IngestionStats:
        label = self.store.engine.label
        accumulator = BatchAccumulator(self.batch_size)
        self.stats.start()

        pool = WorkerPool(self.store, self.stats, self.workers, self.queue_capacity, self.writer)
        try:
            for record in parse_lines(lines):
                if self.cancelled:
                    logger.warning(f"{label}: Ingestion cancelled, draining queued batches")
                    break
                if self.sample_size and self.stats.accepted >= self.sample_size:
                    break

                self.stats.add_accepted()
                batch = accumulator.add(record)
                if batch is not None:
                    pool.submit(batch)

            if not self.cancelled:
                last = accumulator.flush()
                if last is not None:
                    pool.submit(last)
        finally:
            pool.close()
            pool.wait()
            self.stats.finish()

        logger.info(
            f"{label}: Data loading complete! {self.stats.processed} products loaded "
            f"in {self.stats.elapsed:.0f}s ({self.stats.failed} skipped, "
            f"{self.stats.failed_batches} batches lost)"
        )
        return self.stats


def ingest(store: Store, lines: Iterable[str], **kwargs) -> IngestionStats:
    """Run a full ingestion of `lines` into `store`."""
    return IngestionPipeline(store, **kwargs).run(lines)
