"""
Table lifecycle for bulk loads:

    UNBUFFERED_LOAD -> DURABLE_CONVERSION -> INDEX_CONSTRUCTION
        -> STATISTICS_REFRESH -> READY

Index construction is delegated to a per-engine strategy. When the
primary configuration fails, its fallback is tried once before the
error is surfaced. Statistics are refreshed regardless.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from config import TABLE_NAME
from errors import IndexBuildError, StatisticsRefreshError, StoreError
from store import Engine, Store

logger = logging.getLogger(__name__)


class Stage(Enum):
    UNBUFFERED_LOAD = "unbuffered_load"
    DURABLE_CONVERSION = "durable_conversion"
    INDEX_CONSTRUCTION = "index_construction"
    STATISTICS_REFRESH = "statistics_refresh"
    READY = "ready"


CREATE_TABLE = f"""
    CREATE UNLOGGED TABLE {TABLE_NAME} (
        id SERIAL PRIMARY KEY,
        asin VARCHAR(20),
        title TEXT,
        description TEXT,
        price VARCHAR(50),
        brand VARCHAR(200),
        categories TEXT[],
        sales_rank JSONB,
        image_url TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

COMBINED_DOCUMENT = (
    "to_tsvector('english', COALESCE(title, '') || ' ' || "
    "COALESCE(description, '') || ' ' || COALESCE(brand, ''))"
)


class IndexStrategy(ABC):
    """Engine-specific search structures for the products table."""

    extension: str = ""
    rebuild_index: str = ""

    @abstractmethod
    def build_primary(self, store: Store) -> None:
        pass

    @abstractmethod
    def build_fallback(self, store: Store) -> None:
        pass

    def reindex_statements(self) -> List[str]:
        return [f"REINDEX INDEX {self.rebuild_index}"]


class Bm25IndexStrategy(IndexStrategy):
    """ParadeDB: one composite BM25 index with per-field tokenizers."""

    extension = "pg_search"
    rebuild_index = "products_search_idx"

    PRIMARY = f"""
        CREATE INDEX IF NOT EXISTS products_search_idx ON {TABLE_NAME}
        USING bm25 (id, title, description, brand)
        WITH (
            key_field='id',
            text_fields='{{
                "title": {{
                    "tokenizer": {{"type": "en_stem"}},
                    "record": "position",
                    "normalizer": "lowercase"
                }},
                "description": {{
                    "tokenizer": {{"type": "en_stem"}},
                    "record": "position",
                    "normalizer": "lowercase"
                }},
                "brand": {{
                    "tokenizer": {{"type": "raw"}},
                    "record": "basic",
                    "normalizer": "lowercase"
                }}
            }}'
        )
    """

    FALLBACK = f"""
        CREATE INDEX IF NOT EXISTS products_search_idx ON {TABLE_NAME}
        USING bm25 (id, title, description, brand)
        WITH (key_field='id')
    """

    def build_primary(self, store: Store) -> None:
        logger.info("Creating ParadeDB BM25 index...")
        try:
            store.execute(self.PRIMARY)
        except StoreError as e:
            raise IndexBuildError(f"optimized BM25 index failed: {e}", cause=e) from e

    def build_fallback(self, store: Store) -> None:
        logger.info("Creating ParadeDB BM25 index with default configuration...")
        try:
            store.execute(self.FALLBACK)
        except StoreError as e:
            raise IndexBuildError(f"could not create BM25 index: {e}", cause=e) from e

    def reindex_statements(self) -> List[str]:
        return [
            "SET LOCAL max_parallel_maintenance_workers = 8",
            "SET LOCAL maintenance_work_mem = '512MB'",
            f"REINDEX INDEX {self.rebuild_index}",
        ]


class FullTextIndexStrategy(IndexStrategy):
    """Vanilla PostgreSQL: independent GIN, trigram and btree indexes."""

    extension = "pg_trgm"
    rebuild_index = "idx_combined_fulltext"
    REQUIRED = "idx_combined_fulltext"

    INDEXES = [
        ("idx_asin", f"ON {TABLE_NAME}(asin)"),
        ("idx_title_gin", f"ON {TABLE_NAME} USING gin(to_tsvector('english', title))"),
        ("idx_description_gin", f"ON {TABLE_NAME} USING gin(to_tsvector('english', description))"),
        ("idx_brand_gin", f"ON {TABLE_NAME} USING gin(to_tsvector('english', brand))"),
        ("idx_combined_fulltext", f"ON {TABLE_NAME} USING gin({COMBINED_DOCUMENT})"),
        ("idx_title_trgm", f"ON {TABLE_NAME} USING gin (title gin_trgm_ops)"),
        ("idx_description_trgm", f"ON {TABLE_NAME} USING gin (description gin_trgm_ops)"),
        ("idx_brand_trgm", f"ON {TABLE_NAME} USING gin (brand gin_trgm_ops)"),
        ("idx_price", f"ON {TABLE_NAME}(price)"),
    ]

    FALLBACK_INDEXES = ("idx_combined_fulltext", "idx_title_trgm")

    UNIQUE_ASIN = f"ALTER TABLE {TABLE_NAME} ADD CONSTRAINT products_asin_unique UNIQUE (asin)"

    def build_primary(self, store: Store) -> None:
        logger.info("Creating PostgreSQL indexes...")
        failed = []
        for i, (name, definition) in enumerate(self.INDEXES, 1):
            logger.info(f"Creating index {i}/{len(self.INDEXES)} ({name})...")
            try:
                store.execute(f"CREATE INDEX CONCURRENTLY IF NOT EXISTS {name} {definition}")
            except StoreError as e:
                logger.warning(f"Could not create index {name}: {e}")
                failed.append(name)

        try:
            store.execute(self.UNIQUE_ASIN)
        except StoreError as e:
            logger.warning(f"Could not add unique constraint: {e}")

        if self.REQUIRED in failed:
            raise IndexBuildError(f"required index {self.REQUIRED} was not created")

    def build_fallback(self, store: Store) -> None:
        definitions = dict(self.INDEXES)
        for name in self.FALLBACK_INDEXES:
            logger.info(f"Creating index {name} without CONCURRENTLY...")
            try:
                # an invalid leftover from a failed concurrent build blocks IF NOT EXISTS
                store.execute(f"DROP INDEX IF EXISTS {name}")
                store.execute(f"CREATE INDEX {name} {definitions[name]}")
            except StoreError as e:
                raise IndexBuildError(f"could not create index {name}: {e}", cause=e) from e


INDEX_STRATEGIES: Dict[Engine, IndexStrategy] = {
    Engine.VANILLA: FullTextIndexStrategy(),
    Engine.PARADE: Bm25IndexStrategy(),
}


@dataclass
class BuildReport:
    engine: Engine
    stage: Stage = Stage.UNBUFFERED_LOAD
    timings: Dict[str, float] = field(default_factory=dict)
    used_fallback: bool = False
    error: Optional[str] = None
    row_count: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "engine": self.engine.value,
            "stage": self.stage.value,
            "timings_sec": {k: round(v, 2) for k, v in self.timings.items()},
            "used_fallback": self.used_fallback,
            "error": self.error,
            "row_count": self.row_count,
        }


class StagedIndexBuilder:
    """Drives one table from unbuffered load to READY."""

    def __init__(self, store: Store, strategy: Optional[IndexStrategy] = None,
                 table: str = TABLE_NAME):
        self.store = store
        self.strategy = strategy or INDEX_STRATEGIES[store.engine]
        self.table = table
        self.report = BuildReport(store.engine)

    @property
    def stage(self) -> Stage:
        return self.report.stage

    @property
    def label(self) -> str:
        return self.store.engine.label

    def _enter(self, stage: Stage) -> None:
        logger.info(f"{self.label}: {self.report.stage.value} -> {stage.value}")
        self.report.stage = stage

    def create_table(self) -> None:
        """Recreate the table as UNLOGGED and load the engine extension.

        Raises StoreError if the table cannot be created.
        """
        logger.info(f"Setting up {self.label}...")
        start = time.perf_counter()
        self.store.execute(f"DROP TABLE IF EXISTS {self.table} CASCADE")
        self.store.execute(CREATE_TABLE)

        if self.strategy.extension:
            try:
                self.store.execute(f"CREATE EXTENSION IF NOT EXISTS {self.strategy.extension}")
            except StoreError as e:
                logger.warning(f"Could not create {self.strategy.extension} extension: {e}")
        logger.info(f"{self.label}: Deferring index creation until after data load...")

        self.report.stage = Stage.UNBUFFERED_LOAD
        self.report.timings[Stage.UNBUFFERED_LOAD.value] = time.perf_counter() - start

    def finalize(self) -> BuildReport:
        """
        Run the post-load transitions. Call once ingestion has drained.

        Raises:
            IndexBuildError: both the primary and the fallback index
                configuration failed (after statistics were refreshed)
        """
        self._convert_to_durable()
        failure = self._construct_indexes()
        self._refresh_statistics()

        if failure is not None:
            self.report.error = str(failure)
            raise failure

        self._enter(Stage.READY)
        self._verify()
        return self.report

    def _timed(self, stage: Stage, start: float) -> None:
        elapsed = time.perf_counter() - start
        self.report.timings[stage.value] = elapsed
        logger.info(f"{self.label}: {stage.value} finished in {elapsed:.1f}s")

    def _convert_to_durable(self) -> None:
        self._enter(Stage.DURABLE_CONVERSION)
        start = time.perf_counter()
        try:
            self.store.execute(f"ALTER TABLE {self.table} SET LOGGED")
        except StoreError as e:
            logger.warning(f"{self.label}: Could not convert to logged table: {e}")
        self._timed(Stage.DURABLE_CONVERSION, start)

    def _construct_indexes(self) -> Optional[IndexBuildError]:
        self._enter(Stage.INDEX_CONSTRUCTION)
        start = time.perf_counter()
        failure = None
        try:
            self.strategy.build_primary(self.store)
        except IndexBuildError as e:
            logger.warning(f"{self.label}: {e}; falling back to reduced configuration")
            self.report.used_fallback = True
            try:
                self.strategy.build_fallback(self.store)
            except IndexBuildError as fallback_error:
                logger.error(f"{self.label}: Index construction failed: {fallback_error}")
                failure = fallback_error
        self._timed(Stage.INDEX_CONSTRUCTION, start)
        return failure

    def _refresh_statistics(self) -> None:
        self._enter(Stage.STATISTICS_REFRESH)
        start = time.perf_counter()
        try:
            self.store.execute(f"ANALYZE {self.table}")
        except StoreError as e:
            error = StatisticsRefreshError(f"Error analyzing table: {e}", cause=e)
            logger.warning(f"{self.label}: {error}")
        self._timed(Stage.STATISTICS_REFRESH, start)

    def _verify(self) -> None:
        try:
            rows = self.store.query(f"SELECT COUNT(*) AS count FROM {self.table}")
        except StoreError as e:
            logger.warning(f"{self.label}: Could not verify row count: {e}")
            return
        self.report.row_count = int(rows[0]["count"]) if rows else 0
        logger.info(f"{self.label}: Verified {self.report.row_count} products in database")
