"""FastAPI service for side-by-side PostgreSQL vs ParadeDB queries."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Mapping, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from config import COMPARABLE_NDCG_THRESHOLD, SERVER_HOST, SERVER_PORT, TABLE_NAME
from dispatcher import QueryDispatcher, QueryResult
from errors import StoreError
from scoring import ndcg_score, relevance_score
from store import Engine, Store, connect_all

logger = logging.getLogger(__name__)


# ============ Request/Response Models ============

class BenchmarkRequest(BaseModel):
    """Request body for a side-by-side query."""
    query: Optional[str] = Field(default=None, description="Search query")
    searchType: str = Field(
        default="fulltext",
        description="Search type: fulltext, boolean, field, fuzzy (or like), exact"
    )


class AccuracyResponse(BaseModel):
    winner: str
    difference: str
    vanillaScore: str
    paradeScore: str


class BenchmarkResponse(BaseModel):
    query: str
    searchType: str
    vanilla: Dict[str, Any]
    parade: Dict[str, Any]
    speedup: str
    accuracy: AccuracyResponse


def speedup_label(vanilla: QueryResult, parade: QueryResult) -> str:
    """Vanilla time over ParadeDB time, 'N/A' when either side has no timing."""
    if vanilla.duration_ms > 0 and parade.duration_ms > 0:
        return f"{vanilla.duration_ms / parade.duration_ms:.2f}x"
    return "N/A"


def accuracy_verdict(vanilla_ndcg: float, parade_ndcg: float,
                     threshold: float = COMPARABLE_NDCG_THRESHOLD) -> AccuracyResponse:
    winner, difference = "tie", 0.0
    if vanilla_ndcg > parade_ndcg + threshold:
        winner, difference = "vanilla", vanilla_ndcg - parade_ndcg
    elif parade_ndcg > vanilla_ndcg + threshold:
        winner, difference = "parade", parade_ndcg - vanilla_ndcg
    return AccuracyResponse(
        winner=winner,
        difference=f"{difference:.1f}",
        vanillaScore=f"{vanilla_ndcg:.1f}",
        paradeScore=f"{parade_ndcg:.1f}",
    )


def _scored(result: QueryResult, query: str) -> Dict[str, Any]:
    body = result.to_dict()
    body["relevanceScore"] = f"{relevance_score(result.rows, query):.1f}"
    body["ndcgScore"] = f"{ndcg_score(result.rows, query):.1f}"
    return body


def _format_schema(rows: List[Dict[str, Any]]) -> str:
    lines = []
    for row in rows:
        line = f"{row['column_name']}: {row['data_type']}"
        if row.get("is_nullable") == "NO":
            line += " NOT NULL"
        if row.get("column_default"):
            line += f" DEFAULT {row['column_default']}"
        lines.append(line)
    return "\n".join(lines)


def describe_store(store: Store, table: str = TABLE_NAME) -> Dict[str, str]:
    """Columns, indexes, extensions and row count of one engine."""
    columns = store.query(
        "SELECT column_name, data_type, is_nullable, column_default "
        "FROM information_schema.columns WHERE table_name = %s ORDER BY ordinal_position",
        [table]
    )
    indexes = store.query(
        "SELECT indexname, indexdef FROM pg_indexes WHERE tablename = %s ORDER BY indexname",
        [table]
    )
    extensions = store.query(
        "SELECT extname, extversion FROM pg_extension "
        "WHERE extname NOT IN ('plpgsql') ORDER BY extname"
    )
    count = store.query(f"SELECT COUNT(*) AS count FROM {table}")
    return {
        "schema": _format_schema(columns),
        "indexes": "\n\n".join(f"{r['indexname']}:\n  {r['indexdef']}" for r in indexes),
        "extensions": "\n".join(f"{r['extname']} v{r['extversion']}" for r in extensions),
        "records": f"{int(count[0]['count']):,} products",
    }


# ============ App Factory ============

def create_app(stores: Optional[Mapping[Engine, Store]] = None) -> FastAPI:
    """
    Create the FastAPI app.

    Args:
        stores: Engine stores to query. When omitted, both engines are
            connected on startup and closed on shutdown.

    Returns:
        FastAPI app instance
    """
    state: Dict[str, Any] = {}
    if stores is not None:
        state["dispatcher"] = QueryDispatcher(stores)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if "dispatcher" not in state:
            owned = connect_all()
            state["dispatcher"] = QueryDispatcher(owned)
        yield
        if owned:
            for store in owned.values():
                store.close()

    app = FastAPI(
        title="PostgreSQL vs ParadeDB Search Benchmark",
        description="Run one query against both engines and compare speed and relevance",
        version="1.0.0",
        lifespan=lifespan,
    )

    def get_dispatcher() -> QueryDispatcher:
        dispatcher = state.get("dispatcher")
        if dispatcher is None:
            raise HTTPException(status_code=503, detail="Stores not initialized")
        return dispatcher

    def get_store(engine: Engine) -> Store:
        store = get_dispatcher().stores.get(engine)
        if store is None:
            raise HTTPException(status_code=503, detail=f"{engine.label} is not configured")
        return store

    # ============ Endpoints ============

    @app.post("/api/benchmark", response_model=BenchmarkResponse)
    def benchmark(request: BenchmarkRequest):
        """Run the query on both engines and score both result lists."""
        if not request.query:
            raise HTTPException(status_code=400, detail="Query is required")

        results = get_dispatcher().run_all(
            request.query, request.searchType, engines=[Engine.VANILLA, Engine.PARADE])
        vanilla, parade = results[Engine.VANILLA], results[Engine.PARADE]

        for result in (vanilla, parade):
            if not result.ok:
                logger.error(f"{result.engine.label} search error: {result.error}")

        return BenchmarkResponse(
            query=request.query,
            searchType=request.searchType,
            vanilla=_scored(vanilla, request.query),
            parade=_scored(parade, request.query),
            speedup=speedup_label(vanilla, parade),
            accuracy=accuracy_verdict(
                ndcg_score(vanilla.rows, request.query),
                ndcg_score(parade.rows, request.query),
            ),
        )

    @app.get("/api/stats")
    def stats():
        """Product count per engine."""
        try:
            return {
                engine.value: {"count": int(get_store(engine).query(
                    f"SELECT COUNT(*) AS count FROM {TABLE_NAME}")[0]["count"])}
                for engine in (Engine.VANILLA, Engine.PARADE)
            }
        except StoreError as e:
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/schema")
    def schema():
        """Columns, indexes, extensions and record count per engine."""
        try:
            return {
                engine.value: describe_store(get_store(engine))
                for engine in (Engine.VANILLA, Engine.PARADE)
            }
        except StoreError as e:
            logger.error(f"Schema error: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    return app


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='[%(levelname)s] %(asctime)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    uvicorn.run(create_app(), host=SERVER_HOST, port=SERVER_PORT)


if __name__ == "__main__":
    main()
