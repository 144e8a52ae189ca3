"""
Script to load the Amazon product metadata into both search engines.
"""

import sys
import logging
import argparse
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import requests

from config import (
    BATCH_SIZE, MAX_WORKERS, METADATA_PATH, METADATA_URL, QUEUE_CAPACITY, SAMPLE_SIZE
)
from corpus import download_file, read_lines
from errors import IndexBuildError, StoreConnectionError, StoreError
from index_builder import StagedIndexBuilder
from ingestion import IngestionPipeline
from store import Engine, Store, connect_all

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='[%(levelname)s] %(asctime)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def parse_engines(value: Optional[str]) -> List[Engine]:
    """'vanilla,parade' -> [Engine.VANILLA, Engine.PARADE]."""
    if not value:
        return [Engine.VANILLA, Engine.PARADE]
    return [Engine(v.strip().lower()) for v in value.split(",") if v.strip()]


def prepare_tables(stores: Mapping[Engine, Store]) -> Dict[Engine, StagedIndexBuilder]:
    """Recreate the products table on every engine, ready for bulk load."""
    builders = {}
    for engine, store in stores.items():
        builder = StagedIndexBuilder(store)
        builder.create_table()
        builders[engine] = builder
    return builders


def load_engine(pipeline: IngestionPipeline, builder: StagedIndexBuilder, source: Path) -> Dict:
    """
    Ingest the corpus into one engine, then build its indexes.

    Returns:
        Dict with ingestion stats and the index build report
    """
    stats = pipeline.run(read_lines(source))
    result = {"engine": builder.store.engine.value, "stats": stats.snapshot()}

    if pipeline.cancelled:
        logger.warning(f"{builder.label}: Ingestion cancelled, skipping index build")
        result["success"] = False
        return result

    try:
        builder.finalize()
        result["success"] = True
    except IndexBuildError as e:
        logger.error(f"{builder.label}: Index build failed: {e}")
        result["success"] = False
    result["build"] = builder.report.to_dict()
    return result


def ingest_products(
    stores: Mapping[Engine, Store],
    source: Path,
    sample_size: int = SAMPLE_SIZE,
    batch_size: int = BATCH_SIZE,
    workers: int = MAX_WORKERS,
    queue_capacity: int = QUEUE_CAPACITY
) -> Dict[str, Dict]:
    """
    Load `source` into every store concurrently.

    Each engine reads the file independently and runs its own worker pool.

    Returns:
        Dict of per-engine results keyed by engine name
    """
    logger.info("=" * 60)
    logger.info("Starting product ingestion")
    logger.info("=" * 60)
    logger.info(f"Source: {source}")
    logger.info(f"Engines: {[e.label for e in stores]}")
    logger.info(f"Sample size: {sample_size or 'all'}")
    logger.info(f"Batch size: {batch_size}, workers: {workers}, queue capacity: {queue_capacity}")
    logger.info("=" * 60)

    builders = prepare_tables(stores)
    pipelines = {
        engine: IngestionPipeline(
            store,
            batch_size=batch_size,
            workers=workers,
            queue_capacity=queue_capacity,
            sample_size=sample_size,
        )
        for engine, store in stores.items()
    }

    results = {}
    with ThreadPoolExecutor(max_workers=len(pipelines)) as executor:
        futures = {
            engine: executor.submit(load_engine, pipelines[engine], builders[engine], source)
            for engine in pipelines
        }
        try:
            for engine, future in futures.items():
                results[engine.value] = future.result()
        except KeyboardInterrupt:
            logger.warning("Interrupted, draining queued batches...")
            for pipeline in pipelines.values():
                pipeline.cancel()
            raise

    logger.info("=" * 60)
    logger.info("Ingestion complete")
    logger.info("=" * 60)
    for name, result in results.items():
        stats = result["stats"]
        logger.info(
            f"{name}: {stats['records_processed']} loaded, {stats['records_failed']} skipped, "
            f"{stats['batches_failed']} batches lost, {stats['elapsed_sec']:.0f}s "
            f"({stats['rate_per_sec']:.0f} records/sec)"
        )
    logger.info("=" * 60)

    return results


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Load product metadata into PostgreSQL and ParadeDB")
    parser.add_argument("--sample-size", type=int, default=SAMPLE_SIZE,
                        help="Number of records to load (0 for all)")
    parser.add_argument("--batch-size", type=int, default=BATCH_SIZE,
                        help="Records per insert transaction")
    parser.add_argument("--workers", type=int, default=MAX_WORKERS,
                        help="Concurrent batch writers per engine")
    parser.add_argument("--queue-capacity", type=int, default=QUEUE_CAPACITY,
                        help="Batches buffered before the reader blocks")
    parser.add_argument("--source", type=str, default=METADATA_PATH,
                        help="Path to metadata.json.gz")
    parser.add_argument("--skip-download", action="store_true",
                        help="Use the local source file without downloading")
    parser.add_argument("--engines", type=str, default=None,
                        help="Comma-separated engines to load (vanilla,parade)")

    args = parser.parse_args()

    try:
        engines = parse_engines(args.engines)
    except ValueError as e:
        parser.error(str(e))

    source = Path(args.source)
    if not args.skip_download:
        try:
            source = download_file(METADATA_URL, source)
        except requests.RequestException as e:
            logger.error(f"Download failed: {e}")
            sys.exit(1)
    if not source.exists():
        logger.error(f"Source file not found: {source}")
        sys.exit(1)

    try:
        stores = connect_all(engines)
    except StoreConnectionError as e:
        logger.error(str(e))
        logger.error("Make sure Docker containers are running: docker-compose up -d")
        sys.exit(1)

    try:
        results = ingest_products(
            stores,
            source,
            sample_size=args.sample_size,
            batch_size=args.batch_size,
            workers=args.workers,
            queue_capacity=args.queue_capacity,
        )
    except StoreError as e:
        logger.error(f"Setup failed: {e}")
        sys.exit(1)
    finally:
        for store in stores.values():
            store.close()

    if not all(r["success"] for r in results.values()):
        sys.exit(1)

    return results


if __name__ == "__main__":
    main()
