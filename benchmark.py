"""
Main benchmarking script: PostgreSQL full-text search vs ParadeDB BM25
"""

import argparse
import logging
import random
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from config import (
    COMPARABLE_NDCG_THRESHOLD, MIN_PARADE_INDEXES, MIN_PRODUCTS, MIN_VANILLA_INDEXES,
    QUERIES_PER_TYPE, RANDOM_SEED, RESULTS_DIR, RUN_ENGINES_CONCURRENTLY,
    RUNS_PER_QUERY, TABLE_NAME, WARMUP_QUERIES, WRITE_WORKLOADS
)
from dispatcher import QueryDispatcher
from errors import BenchmarkError, StoreConnectionError, StoreError
from queries import QUERIES, WARMUP_QUERY_SET
from query_builders import SearchType
from report import log_read_table, log_write_table, save_report
from scoring import ndcg_score, relevance_score
from store import Engine, Store, connect_all
from writes import ProductGenerator, run_write_workload

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='[%(levelname)s] %(asctime)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

ENGINES = (Engine.VANILLA, Engine.PARADE)
COMPARABLE = "comparable"


@dataclass
class Workload:
    """What a benchmark run executes."""
    search_types: List[SearchType] = field(default_factory=lambda: list(SearchType))
    queries: Mapping[str, Sequence[str]] = field(default_factory=lambda: QUERIES)
    queries_per_type: int = QUERIES_PER_TYPE
    runs_per_query: int = RUNS_PER_QUERY
    run_reads: bool = True
    run_writes: bool = True
    warmup: bool = True
    verify: bool = True
    concurrent_engines: bool = RUN_ENGINES_CONCURRENTLY
    shuffle: bool = False
    write_workloads: Sequence[Tuple[str, str, int, int]] = field(default_factory=lambda: WRITE_WORKLOADS)

    def queries_for(self, search_type: SearchType) -> List[str]:
        queries = list(self.queries.get(search_type.value, []))
        if self.queries_per_type:
            queries = queries[:self.queries_per_type]
        if self.shuffle:
            queries = random.sample(queries, len(queries))
        return queries


def log_config(workload: Workload) -> None:
    """Log all configuration parameters at start."""
    logger.info("=" * 60)
    logger.info("Benchmark Configuration")
    logger.info("=" * 60)
    logger.info(f"Search types: {[t.value for t in workload.search_types]}")
    logger.info(f"Queries per type: {workload.queries_per_type}")
    logger.info(f"Runs per query: {workload.runs_per_query}")
    logger.info(f"Reads: {workload.run_reads}, Writes: {workload.run_writes}")
    logger.info(f"Warmup: {workload.warmup}")
    logger.info(f"Engines queried concurrently: {workload.concurrent_engines}")
    logger.info(f"Shuffle query order: {workload.shuffle}")
    logger.info(f"Comparable NDCG threshold: {COMPARABLE_NDCG_THRESHOLD}")
    logger.info(f"Random seed: {RANDOM_SEED}")
    logger.info("=" * 60)


def verify_setup(stores: Mapping[Engine, Store]) -> Tuple[bool, Dict[str, Dict[str, int]]]:
    """
    Check index and product counts on each engine.

    Returns:
        Tuple of (setup is usable, {engine: {"indexes": n, "products": n}})
    """
    logger.info("Verifying setup...")
    minimum_indexes = {Engine.VANILLA: MIN_VANILLA_INDEXES, Engine.PARADE: MIN_PARADE_INDEXES}
    details = {}
    ok = True

    for engine, store in stores.items():
        try:
            indexes = store.query(
                "SELECT indexname FROM pg_indexes WHERE tablename = %s ORDER BY indexname",
                [TABLE_NAME]
            )
            count = store.query(f"SELECT COUNT(*) AS count FROM {TABLE_NAME}")
        except StoreError as e:
            logger.error(f"{engine.label}: setup verification failed: {e}")
            details[engine.value] = {"indexes": 0, "products": 0}
            ok = False
            continue

        products = int(count[0]["count"]) if count else 0
        details[engine.value] = {"indexes": len(indexes), "products": products}
        logger.info(f"{engine.label}: {len(indexes)} indexes, {products:,} products")

        if len(indexes) < minimum_indexes.get(engine, 1):
            ok = False
        if engine is Engine.VANILLA and products <= MIN_PRODUCTS:
            ok = False

    return ok, details


def calculate_statistics(latencies: Sequence[float]) -> Dict[str, float]:
    """min/max/avg/p50/p95/p99/std_dev of successful query latencies."""
    if len(latencies) == 0:
        return {}
    values = np.asarray(latencies, dtype=float)
    return {
        "min_latency_ms": float(np.min(values)),
        "max_latency_ms": float(np.max(values)),
        "avg_latency_ms": float(np.mean(values)),
        "p50_latency_ms": float(np.percentile(values, 50)),
        "p95_latency_ms": float(np.percentile(values, 95)),
        "p99_latency_ms": float(np.percentile(values, 99)),
        "std_dev_ms": float(np.std(values)),
    }


def speed_ratio(a: Optional[float], b: Optional[float]) -> Optional[float]:
    """max/min of two positive measurements; None when either is missing or zero."""
    if a is None or b is None or pd.isna(a) or pd.isna(b) or a <= 0 or b <= 0:
        return None
    return max(a, b) / min(a, b)


def pick_winner(values: Mapping[str, Optional[float]], higher_is_better: bool,
                threshold: float = 0.0) -> Optional[str]:
    """
    Name of the engine with the better value, COMPARABLE when the two are
    within `threshold`, None when a value is missing.
    """
    if len(values) != 2 or any(v is None or pd.isna(v) for v in values.values()):
        return None
    (name_a, a), (name_b, b) = values.items()
    if abs(a - b) <= threshold:
        return COMPARABLE
    if higher_is_better:
        return name_a if a > b else name_b
    return name_a if a < b else name_b


def warmup_search(dispatcher: QueryDispatcher, n: int = WARMUP_QUERIES) -> None:
    """Run warmup queries against every engine to settle caches."""
    logger.info("Warmup started")
    warmup = []
    while len(warmup) < n:
        warmup.extend(WARMUP_QUERY_SET)
    for search_type, query in warmup[:n]:
        dispatcher.run_all(query, search_type)
    logger.info("Warmup finished")


def benchmark_reads(dispatcher: QueryDispatcher, workload: Workload) -> pd.DataFrame:
    """
    Run the search-type x query x engine matrix.

    A failed query is recorded with its error and never stops the run.
    """
    logger.info("\n========== READ PERFORMANCE BENCHMARK ==========")
    rows: List[Dict[str, Any]] = []

    for search_type in workload.search_types:
        logger.info(f"--- {search_type.value.upper()} SEARCH ---")
        for query in workload.queries_for(search_type):
            for run in range(1, workload.runs_per_query + 1):
                results = dispatcher.run_all(query, search_type, concurrent=workload.concurrent_engines)
                line = []
                for engine, result in results.items():
                    relevance = relevance_score(result.rows, query)
                    ndcg = ndcg_score(result.rows, query)
                    rows.append({
                        "timestamp": datetime.now().isoformat(),
                        "search_type": search_type.value,
                        "query": query,
                        "run": run,
                        "engine": engine.value,
                        "latency_ms": result.duration_ms,
                        "count": result.count,
                        "relevance": relevance,
                        "ndcg": ndcg,
                        "success": result.ok,
                        "error": result.error,
                    })
                    status = f"{result.duration_ms:.0f}ms ({relevance:.1f}/{ndcg:.1f})" if result.ok else "ERROR"
                    line.append(f"{engine.label} {status}")
                logger.info(f'"{query}": ' + " | ".join(line))

    columns = ["timestamp", "search_type", "query", "run", "engine", "latency_ms",
               "count", "relevance", "ndcg", "success", "error"]
    return pd.DataFrame(rows, columns=columns)


def summarize_reads(results: pd.DataFrame) -> pd.DataFrame:
    """Per search type and engine averages over successful queries only."""
    columns = ["search_type", "engine", "queries", "errors", "avg_latency_ms",
               "p50_latency_ms", "p95_latency_ms", "avg_relevance", "avg_ndcg"]
    if results.empty:
        return pd.DataFrame(columns=columns)

    summary_rows = []
    for (search_type, engine), group in results.groupby(["search_type", "engine"], sort=False):
        ok = group[group["success"] == True]
        stats = calculate_statistics(ok["latency_ms"].to_numpy())
        summary_rows.append({
            "search_type": search_type,
            "engine": engine,
            "queries": len(ok),
            "errors": len(group) - len(ok),
            "avg_latency_ms": stats.get("avg_latency_ms"),
            "p50_latency_ms": stats.get("p50_latency_ms"),
            "p95_latency_ms": stats.get("p95_latency_ms"),
            "avg_relevance": float(ok["relevance"].mean()) if len(ok) else None,
            "avg_ndcg": float(ok["ndcg"].mean()) if len(ok) else None,
        })
    return pd.DataFrame(summary_rows, columns=columns)


def _summary_value(summary: pd.DataFrame, search_type: str, engine: Engine, column: str) -> Optional[float]:
    match = summary[(summary["search_type"] == search_type) & (summary["engine"] == engine.value)]
    if match.empty:
        return None
    value = match.iloc[0][column]
    return None if value is None or pd.isna(value) else float(value)


def compare_reads(summary: pd.DataFrame) -> List[Dict[str, Any]]:
    """Cross-engine comparison per search type."""
    comparisons = []
    for search_type in summary["search_type"].drop_duplicates():
        latency = {e.value: _summary_value(summary, search_type, e, "avg_latency_ms") for e in ENGINES}
        relevance = {e.value: _summary_value(summary, search_type, e, "avg_relevance") for e in ENGINES}
        ndcg = {e.value: _summary_value(summary, search_type, e, "avg_ndcg") for e in ENGINES}

        vanilla_ms, parade_ms = latency[Engine.VANILLA.value], latency[Engine.PARADE.value]
        comparisons.append({
            "search_type": search_type,
            "vanilla_latency_ms": vanilla_ms,
            "parade_latency_ms": parade_ms,
            "latency_delta_ms": parade_ms - vanilla_ms if None not in (vanilla_ms, parade_ms) else None,
            "speed_ratio": speed_ratio(vanilla_ms, parade_ms),
            "faster": pick_winner(latency, higher_is_better=False),
            "vanilla_relevance": relevance[Engine.VANILLA.value],
            "parade_relevance": relevance[Engine.PARADE.value],
            "vanilla_ndcg": ndcg[Engine.VANILLA.value],
            "parade_ndcg": ndcg[Engine.PARADE.value],
            "accuracy_winner": pick_winner(ndcg, higher_is_better=True,
                                           threshold=COMPARABLE_NDCG_THRESHOLD),
        })
    return comparisons


def benchmark_writes(stores: Mapping[Engine, Store], workload: Workload) -> pd.DataFrame:
    """Run every write workload on each engine in turn."""
    logger.info("\n========== WRITE PERFORMANCE BENCHMARK ==========")
    generator = ProductGenerator(RANDOM_SEED)
    rows = []
    for name, kind, count, batch_size in workload.write_workloads:
        logger.info(f"--- {name} ---")
        for engine in ENGINES:
            if engine not in stores:
                continue
            result = run_write_workload(stores[engine], generator, name, kind, count, batch_size)
            row = result.to_dict()
            row["kind"] = kind
            rows.append(row)

    columns = ["operation", "kind", "engine", "rows", "time_ms", "rows_per_sec", "errors"]
    return pd.DataFrame(rows, columns=columns)


def compare_writes(writes: pd.DataFrame) -> List[Dict[str, Any]]:
    """
    Throughput comparison per write operation. Index rebuilds compare
    elapsed time instead; a zero measurement means the operation failed.
    """
    comparisons = []
    for operation, group in writes.groupby("operation", sort=False):
        kind = group.iloc[0]["kind"]
        metric = "time_ms" if kind == "reindex" else "rows_per_sec"
        values = {}
        for engine in ENGINES:
            match = group[group["engine"] == engine.value]
            value = float(match.iloc[0][metric]) if not match.empty else None
            values[engine.value] = value if value else None

        vanilla, parade = values[Engine.VANILLA.value], values[Engine.PARADE.value]
        comparisons.append({
            "operation": operation,
            "metric": metric,
            "vanilla": vanilla,
            "parade": parade,
            "delta": parade - vanilla if None not in (vanilla, parade) else None,
            "speed_ratio": speed_ratio(vanilla, parade),
            "winner": pick_winner(values, higher_is_better=(metric == "rows_per_sec")),
        })
    return comparisons


class BenchmarkOrchestrator:
    """Runs one workload across both engines and assembles the report."""

    def __init__(self, stores: Mapping[Engine, Store], workload: Optional[Workload] = None,
                 dispatcher: Optional[QueryDispatcher] = None):
        self.stores = dict(stores)
        self.workload = workload or Workload()
        self.dispatcher = dispatcher or QueryDispatcher(self.stores)

    def run(self) -> Dict[str, Any]:
        log_config(self.workload)
        random.seed(RANDOM_SEED)

        report: Dict[str, Any] = {"started_at": datetime.now().isoformat()}

        if self.workload.verify:
            ok, details = verify_setup(self.stores)
            report["setup"] = details
            if not ok:
                logger.warning("Setup verification failed - ensure databases are properly configured")
                report["aborted"] = "setup verification failed"
                return report

        if self.workload.run_reads:
            if self.workload.warmup:
                warmup_search(self.dispatcher)
            results = benchmark_reads(self.dispatcher, self.workload)
            summary = summarize_reads(results)
            report["read_results"] = results
            report["read_summary"] = summary
            report["read_comparison"] = compare_reads(summary)

        if self.workload.run_writes:
            writes = benchmark_writes(self.stores, self.workload)
            report["write_results"] = writes
            report["write_comparison"] = compare_writes(writes)

        report["finished_at"] = datetime.now().isoformat()
        return report


def run_benchmark(stores: Mapping[Engine, Store], workload: Optional[Workload] = None,
                  results_dir: str = RESULTS_DIR, save: bool = True) -> Dict[str, Any]:
    """Run, log the summary tables and optionally save the report files."""
    report = BenchmarkOrchestrator(stores, workload).run()

    logger.info("\n========== BENCHMARK SUMMARY ==========")
    if "read_comparison" in report:
        log_read_table(report["read_comparison"])
    if "write_comparison" in report:
        log_write_table(report["write_comparison"])
    if save and "aborted" not in report:
        save_report(report, results_dir)
    return report


def parse_search_types(value: Optional[str]) -> List[SearchType]:
    if not value:
        return list(SearchType)
    return [SearchType.parse(v) for v in value.split(",") if v.strip()]


def main():
    """Main entry point for standalone benchmark."""
    parser = argparse.ArgumentParser(description="PostgreSQL vs ParadeDB Benchmark Tool")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--reads-only", action="store_true",
                      help="Run only read performance tests")
    mode.add_argument("--writes-only", action="store_true",
                      help="Run only write performance tests")
    parser.add_argument("--search-types", type=str, default=None,
                        help="Comma-separated search types (fulltext,boolean,field,fuzzy,exact)")
    parser.add_argument("--queries-per-type", type=int, default=QUERIES_PER_TYPE,
                        help="Queries per search type (0 for all)")
    parser.add_argument("--runs", type=int, default=RUNS_PER_QUERY,
                        help="Runs per query")
    parser.add_argument("--no-warmup", action="store_true",
                        help="Skip warmup queries")
    parser.add_argument("--no-verify", action="store_true",
                        help="Skip setup verification")
    parser.add_argument("--sequential", action="store_true",
                        help="Query the engines one after the other")
    parser.add_argument("--shuffle", action="store_true",
                        help="Shuffle query order within each search type (seeded)")
    parser.add_argument("--results-dir", type=str, default=RESULTS_DIR,
                        help="Directory for CSV/JSON results")

    args = parser.parse_args()

    try:
        search_types = parse_search_types(args.search_types)
    except BenchmarkError as e:
        parser.error(str(e))

    workload = Workload(
        search_types=search_types,
        queries_per_type=args.queries_per_type,
        runs_per_query=args.runs,
        run_reads=not args.writes_only,
        run_writes=not args.reads_only,
        warmup=not args.no_warmup,
        verify=not args.no_verify,
        concurrent_engines=not args.sequential,
        shuffle=args.shuffle,
    )

    try:
        stores = connect_all(ENGINES)
    except StoreConnectionError as e:
        logger.error(str(e))
        logger.error("Make sure Docker containers are running: docker-compose up -d")
        sys.exit(1)

    try:
        report = run_benchmark(stores, workload, args.results_dir)
    finally:
        for store in stores.values():
            store.close()

    if "aborted" in report:
        sys.exit(1)
    logger.info("Benchmark complete!")
    return report


if __name__ == "__main__":
    main()
