"""
Configuration for PostgreSQL vs ParadeDB search benchmarking
"""

import os

# Source dataset
METADATA_URL = "https://snap.stanford.edu/data/amazon/productGraph/metadata.json.gz"
METADATA_PATH = "metadata.json.gz"

# Database endpoints (override with environment variables)
VANILLA_DB = {
    "host": os.environ.get("VANILLA_DB_HOST", "localhost"),
    "port": int(os.environ.get("VANILLA_DB_PORT", "5432")),
    "dbname": os.environ.get("VANILLA_DB_NAME", "benchmark_vanilla"),
    "user": os.environ.get("VANILLA_DB_USER", "benchmark"),
    "password": os.environ.get("VANILLA_DB_PASSWORD", "benchmark123"),
}

PARADE_DB = {
    "host": os.environ.get("PARADE_DB_HOST", "localhost"),
    "port": int(os.environ.get("PARADE_DB_PORT", "5433")),
    "dbname": os.environ.get("PARADE_DB_NAME", "benchmark_parade"),
    "user": os.environ.get("PARADE_DB_USER", "benchmark"),
    "password": os.environ.get("PARADE_DB_PASSWORD", "benchmark123"),
}

POOL_MIN_CONNECTIONS = 2
POOL_MAX_CONNECTIONS = 50

TABLE_NAME = "products"

# Ingestion parameters
SAMPLE_SIZE = 0  # 0 means process all records
BATCH_SIZE = 5000
MAX_WORKERS = 20
QUEUE_CAPACITY = 100  # batches
PROGRESS_INTERVAL = 50000  # records
TOTAL_TARGET = 1600000  # expected corpus size, used for the ETA only

# Benchmark parameters
QUERIES_PER_TYPE = 5
RUNS_PER_QUERY = 1
WARMUP_QUERIES = 10
NDCG_K = 10
RESULT_LIMIT = 10
COMPARABLE_NDCG_THRESHOLD = 5.0
RUN_ENGINES_CONCURRENTLY = True

# Setup verification thresholds
MIN_VANILLA_INDEXES = 11
MIN_PARADE_INDEXES = 2
MIN_PRODUCTS = 1000000

# Write workloads: (name, kind, row count, batch size)
WRITE_WORKLOADS = [
    ("smallBatch", "batch", 100, 10),
    ("mediumBatch", "batch", 1000, 100),
    ("largeBatch", "batch", 5000, 500),
    ("singleInsert", "single", 50, 1),
    ("updates", "update", 100, 1),
    ("bulkUpdates", "update", 1000, 1),
    ("indexRebuild", "reindex", 0, 0),
]

# HTTP facade
SERVER_HOST = "0.0.0.0"
SERVER_PORT = 3000

# Random seed for reproducibility
RANDOM_SEED = 42

# Results directory
RESULTS_DIR = "results"
