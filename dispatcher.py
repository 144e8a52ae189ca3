"""
Query dispatch: build the engine-specific statement, execute it, time it.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from errors import BenchmarkError, ErrorKind
from query_builders import QUERY_BUILDERS, SearchType, build_query
from store import Engine, Store

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    engine: Engine
    query: str
    search_type: SearchType
    rows: List[Dict[str, Any]] = field(default_factory=list)
    duration_ms: float = 0.0
    statement: str = ""
    params: List[Any] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.rows)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "engine": self.engine.value,
            "query": self.query,
            "searchType": self.search_type.value,
            "results": self.rows,
            "duration": round(self.duration_ms, 2),
            "count": self.count,
            "actualQuery": self.statement.strip(),
            "params": self.params,
            "error": self.error,
            "errorKind": self.error_kind,
        }


class QueryDispatcher:
    """Runs logical queries against whichever engines it holds a store for."""

    def __init__(self, stores: Mapping[Engine, Store], builders=QUERY_BUILDERS):
        self.stores = dict(stores)
        self.builders = builders

    def run(self, engine: Engine, query: str, search_type) -> QueryResult:
        """
        Execute one query on one engine.

        Never raises for query-level problems: the returned result carries
        the error with zero duration and no rows.
        """
        try:
            search_type = SearchType.parse(search_type)
        except BenchmarkError as e:
            return QueryResult(engine, query, SearchType.FULLTEXT, error=str(e),
                               error_kind=e.kind.value)

        store = self.stores.get(engine)
        if store is None:
            return QueryResult(engine, query, search_type,
                               error=f"No store configured for {engine.label}",
                               error_kind=ErrorKind.CONNECTION.value)

        statement = ""
        params: List[Any] = []
        try:
            statement, params = build_query(engine, search_type, query, self.builders)
            start = time.perf_counter()
            rows = store.query(statement, params)
            duration_ms = (time.perf_counter() - start) * 1000
        except BenchmarkError as e:
            logger.error(f"{engine.label} {search_type.value} query failed: {query!r} - {e}")
            return QueryResult(engine, query, search_type, statement=statement,
                               params=list(params), error=str(e),
                               error_kind=e.kind.value)

        return QueryResult(engine, query, search_type, rows=rows, duration_ms=duration_ms,
                           statement=statement, params=list(params))

    def run_all(self, query: str, search_type, concurrent: bool = True,
                engines: Optional[List[Engine]] = None) -> Dict[Engine, QueryResult]:
        """
        Execute the same logical query on every engine.

        Engines have no shared state, so they may run in parallel; both
        results are joined before returning.
        """
        engines = list(engines or self.stores)
        if not concurrent or len(engines) < 2:
            return {engine: self.run(engine, query, search_type) for engine in engines}

        with ThreadPoolExecutor(max_workers=len(engines)) as executor:
            futures = {engine: executor.submit(self.run, engine, query, search_type)
                       for engine in engines}
            return {engine: future.result() for engine, future in futures.items()}
