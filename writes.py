"""
Write workloads run against the live products table of each engine.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import List, Optional

from config import RANDOM_SEED, TABLE_NAME
from errors import StoreError
from index_builder import INDEX_STRATEGIES, IndexStrategy
from ingestion import INSERT_STATEMENT
from records import INSERT_COLUMNS, ProductRecord
from store import Store

logger = logging.getLogger(__name__)

BRANDS = [
    "Apple", "Samsung", "Sony", "Microsoft", "Dell", "HP", "Lenovo", "Asus",
    "Acer", "Google", "Amazon", "Canon", "Nikon", "JBL", "Bose", "Unknown"
]

CATEGORIES = [
    "Electronics", "Books", "Computers", "Cell Phones & Accessories",
    "Video Games", "Sports & Outdoors", "Home & Kitchen", "Automotive",
    "Health & Personal Care", "Beauty & Personal Care", "Clothing Shoes & Jewelry"
]

PRODUCT_TYPES = [
    "Wireless Bluetooth Headphones", "Gaming Laptop Computer", "Smartphone Device",
    "Digital Camera", "Mechanical Keyboard", "Smart Watch", "4K Monitor",
    "Bluetooth Speaker", "Coffee Maker", "Air Fryer", "Tablet Computer",
    "Gaming Mouse", "Webcam", "Microphone", "Router", "External Hard Drive"
]

ROW_PLACEHOLDER = "(%s, %s, %s, %s, %s, %s, %s::jsonb, %s)"


@dataclass
class WriteResult:
    operation: str
    engine: str
    rows: int = 0
    time_ms: float = 0.0
    errors: int = 0

    @property
    def rows_per_sec(self) -> float:
        if self.time_ms <= 0:
            return 0.0
        return self.rows / (self.time_ms / 1000)

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "engine": self.engine,
            "rows": self.rows,
            "time_ms": round(self.time_ms, 2),
            "rows_per_sec": round(self.rows_per_sec, 2),
            "errors": self.errors,
        }


class ProductGenerator:
    """Synthetic products shaped like the SNAP metadata, with unique 18-char ASINs."""

    def __init__(self, seed: int = RANDOM_SEED):
        self.rng = random.Random(seed)
        self.stamp = str(int(time.time() * 1000))[-8:]
        self._next_id = 0

    def generate(self, count: int) -> List[ProductRecord]:
        products = []
        for i in range(count):
            serial = self._next_id
            self._next_id += 1
            brand = BRANDS[i % len(BRANDS)]
            product_type = PRODUCT_TYPES[i % len(PRODUCT_TYPES)]
            model = self.rng.randint(1000, 10998)
            sales_rank = None
            if i % 3 == 0:
                sales_rank = {"Electronics": self.rng.randint(1000, 1000999)}

            products.append(ProductRecord(
                asin=f"T{self.stamp}{serial:09d}",
                title=f"{brand} {product_type} Model {model} - High Quality Professional Grade",
                description=(
                    f"Premium {product_type.lower()} featuring advanced technology, wireless "
                    "connectivity, bluetooth support, digital processing, smart features, high "
                    "performance, reliable operation, professional quality, excellent design, "
                    f"and superior functionality. Model {model} specifications include enhanced "
                    "features for optimal user experience."
                ),
                price=f"{self.rng.uniform(10, 1009):.2f}",
                brand=brand,
                categories=(CATEGORIES[i % len(CATEGORIES)],),
                sales_rank=sales_rank,
                image_url=f"http://test-images.example.com/product-{serial}.jpg",
            ))
        return products


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def batch_insert(store: Store, products: List[ProductRecord], batch_size: int,
                 operation: str = "batchInsert") -> WriteResult:
    """Multi-row INSERTs of `batch_size` rows; a failing batch is logged and skipped."""
    result = WriteResult(operation, store.engine.value)
    label = store.engine.label
    logger.info(f"{label}: Testing {len(products)} inserts (batch size: {batch_size})")

    start = time.perf_counter()
    for i in range(0, len(products), batch_size):
        batch = products[i:i + batch_size]
        statement = (
            f"INSERT INTO {TABLE_NAME} ({', '.join(INSERT_COLUMNS)}) VALUES "
            + ", ".join([ROW_PLACEHOLDER] * len(batch))
        )
        params = [value for product in batch for value in product.to_row()]
        try:
            store.execute(statement, params)
            result.rows += len(batch)
        except StoreError as e:
            result.errors += 1
            logger.error(f"  Error inserting batch: {e}")
    result.time_ms = _elapsed_ms(start)

    logger.info(f"  {result.time_ms:.0f}ms ({result.rows_per_sec:,.0f} rows/sec)")
    return result


def single_inserts(store: Store, products: List[ProductRecord],
                   operation: str = "singleInsert") -> WriteResult:
    """One INSERT per row; stops at the first failure."""
    result = WriteResult(operation, store.engine.value)
    label = store.engine.label
    logger.info(f"{label}: Testing {len(products)} single inserts")

    start = time.perf_counter()
    for product in products:
        try:
            store.execute(INSERT_STATEMENT, product.to_row())
        except StoreError as e:
            result.errors += 1
            logger.error(f"  Error inserting: {e}")
            break
        result.rows += 1
    result.time_ms = _elapsed_ms(start)

    logger.info(f"  {result.time_ms:.0f}ms ({result.rows_per_sec:,.0f} rows/sec)")
    return result


def update_rows(store: Store, count: int, operation: str = "updates") -> WriteResult:
    """Update title and description of `count` random existing rows, one statement each."""
    result = WriteResult(operation, store.engine.value)
    label = store.engine.label
    logger.info(f"{label}: Testing {count} updates")

    try:
        rows = store.query(
            f"SELECT id, title, description FROM {TABLE_NAME} ORDER BY RANDOM() LIMIT %s",
            [count]
        )
    except StoreError as e:
        result.errors += 1
        logger.error(f"  Error selecting rows to update: {e}")
        return result

    if not rows:
        logger.info("  No rows to update")
        return result

    start = time.perf_counter()
    for row in rows:
        try:
            store.execute(
                f"UPDATE {TABLE_NAME} SET title = %s, description = %s WHERE id = %s",
                [
                    f"{row.get('title') or ''} - UPDATED",
                    f"{row.get('description') or ''} Enhanced with additional features and improved functionality.",
                    row["id"],
                ]
            )
            result.rows += 1
        except StoreError as e:
            result.errors += 1
            logger.error(f"  Error updating: {e}")
    result.time_ms = _elapsed_ms(start)

    logger.info(f"  {result.time_ms:.0f}ms ({result.rows_per_sec:,.0f} rows/sec)")
    return result


def rebuild_index(store: Store, strategy: Optional[IndexStrategy] = None,
                  operation: str = "indexRebuild") -> WriteResult:
    """Time a REINDEX of the engine's main search index. Time is 0 on failure."""
    strategy = strategy or INDEX_STRATEGIES[store.engine]
    result = WriteResult(operation, store.engine.value)
    logger.info(f"{store.engine.label}: Testing index rebuild performance")

    start = time.perf_counter()
    try:
        # SET LOCAL settings and REINDEX must share one transaction
        with store.transaction() as tx:
            for statement in strategy.reindex_statements():
                tx.execute(statement)
    except StoreError as e:
        result.errors += 1
        logger.error(f"  Error rebuilding index: {e}")
        return result
    result.time_ms = _elapsed_ms(start)

    logger.info(f"  Index rebuilt in {result.time_ms:.0f}ms")
    return result


def run_write_workload(store: Store, generator: ProductGenerator, name: str,
                       kind: str, count: int, batch_size: int) -> WriteResult:
    if kind == "batch":
        return batch_insert(store, generator.generate(count), batch_size, operation=name)
    if kind == "single":
        return single_inserts(store, generator.generate(count), operation=name)
    if kind == "update":
        return update_rows(store, count, operation=name)
    if kind == "reindex":
        return rebuild_index(store, operation=name)
    raise ValueError(f"Unknown write workload kind: {kind}")
