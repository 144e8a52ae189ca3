"""
Orchestrator for running the full benchmark end to end.

This script:
1. Downloads the product metadata (unless present)
2. Recreates the products table on both engines
3. Ingests the corpus into both engines concurrently
4. Builds the search indexes and refreshes statistics
5. Runs the read and write benchmark
6. Saves the comparison report
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import Dict, Optional

import requests

from config import (
    BATCH_SIZE, MAX_WORKERS, METADATA_PATH, METADATA_URL, QUEUE_CAPACITY,
    RESULTS_DIR, SAMPLE_SIZE
)
from benchmark import ENGINES, Workload, run_benchmark
from corpus import download_file
from errors import StoreConnectionError, StoreError
from ingest_products import ingest_products
from store import connect_all

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='[%(levelname)s] %(asctime)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def run_full_benchmark(
    source: str = METADATA_PATH,
    sample_size: int = SAMPLE_SIZE,
    skip_ingest: bool = False,
    results_dir: str = RESULTS_DIR,
    workload: Optional[Workload] = None
) -> Dict:
    """
    Run the full benchmark suite.

    Args:
        source: Local path of the metadata file
        sample_size: Records to load per engine (0 for all)
        skip_ingest: Skip download and ingestion (use existing tables)
        results_dir: Output directory
        workload: Benchmark workload, defaults to every read and write test

    Returns:
        Dict with the ingestion results and the benchmark report
    """
    logger.info("=" * 60)
    logger.info("Starting Full Benchmark Suite")
    logger.info("=" * 60)
    logger.info(f"Source: {source}")
    logger.info(f"Sample size: {sample_size or 'all'}")
    logger.info(f"Skip ingest: {skip_ingest}")
    logger.info(f"Results directory: {results_dir}")
    logger.info("=" * 60)

    if not skip_ingest:
        logger.info("Step 1: Downloading product metadata...")
        try:
            source_path = download_file(METADATA_URL, Path(source))
        except requests.RequestException as e:
            logger.error(f"Download failed: {e}. Aborting.")
            sys.exit(1)

    try:
        stores = connect_all(ENGINES)
    except StoreConnectionError as e:
        logger.error(str(e))
        logger.error("Make sure Docker containers are running: docker-compose up -d")
        sys.exit(1)

    summary: Dict = {}
    try:
        if not skip_ingest:
            logger.info("Step 2: Ingesting products and building indexes...")
            try:
                ingestion = ingest_products(
                    stores, source_path, sample_size=sample_size,
                    batch_size=BATCH_SIZE, workers=MAX_WORKERS, queue_capacity=QUEUE_CAPACITY
                )
            except StoreError as e:
                logger.error(f"Table setup failed: {e}. Aborting.")
                sys.exit(1)
            summary["ingestion"] = ingestion
            if not all(r["success"] for r in ingestion.values()):
                logger.warning("Ingestion finished with errors, continuing with the benchmark")

        logger.info("Step 3: Running benchmark...")
        workload = workload or Workload()
        if sample_size:
            # a sampled load can never pass the full-corpus row count check
            workload.verify = False
        summary["benchmark"] = run_benchmark(stores, workload, results_dir)
    finally:
        for store in stores.values():
            store.close()

    logger.info("")
    logger.info("Full benchmark suite completed!")
    logger.info(f"Results saved in: {results_dir}/")
    return summary


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run full PostgreSQL vs ParadeDB benchmark suite"
    )
    parser.add_argument(
        "--skip-ingest", action="store_true",
        help="Skip ingestion, use existing tables"
    )
    parser.add_argument(
        "--sample-size", type=int, default=SAMPLE_SIZE,
        help="Number of records to load (0 for all)"
    )
    parser.add_argument(
        "--source", type=str, default=METADATA_PATH,
        help="Path to metadata.json.gz"
    )
    parser.add_argument(
        "--results-dir", type=str, default=RESULTS_DIR,
        help="Directory for CSV/JSON results"
    )

    args = parser.parse_args()

    summary = run_full_benchmark(
        source=args.source,
        sample_size=args.sample_size,
        skip_ingest=args.skip_ingest,
        results_dir=args.results_dir
    )

    if "aborted" in summary.get("benchmark", {}):
        sys.exit(1)

    return summary


if __name__ == "__main__":
    main()
