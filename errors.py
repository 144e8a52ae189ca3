"""
Error taxonomy for ingestion, index construction and query execution.

Every error carries a kind and whether retrying the same unit of work
could succeed, so callers can tell contained failures from fatal ones.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    MALFORMED_INPUT = "malformed_input"
    RECORD_WRITE = "record_write"
    BATCH_WRITE = "batch_write"
    INDEX_BUILD = "index_build"
    STATISTICS_REFRESH = "statistics_refresh"
    QUERY = "query"
    CONNECTION = "connection"
    STORE = "store"


class BenchmarkError(Exception):
    """Base class for all harness errors."""

    kind = ErrorKind.STORE
    retryable = False

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class StoreError(BenchmarkError):
    """A statement failed inside the store."""

    kind = ErrorKind.STORE
    retryable = True


class StoreConnectionError(StoreError):
    """The store is unreachable. Fatal at startup."""

    kind = ErrorKind.CONNECTION
    retryable = False


class MalformedRecordError(BenchmarkError):
    """A corpus line cannot be decoded or lacks required fields."""

    kind = ErrorKind.MALFORMED_INPUT


class RecordWriteError(BenchmarkError):
    """One record of a batch was rejected; the batch carries on."""

    kind = ErrorKind.RECORD_WRITE


class BatchWriteError(BenchmarkError):
    kind = ErrorKind.BATCH_WRITE
    retryable = True


class IndexBuildError(BenchmarkError):
    kind = ErrorKind.INDEX_BUILD


class QueryBuildError(BenchmarkError):
    """The query text cannot be expressed for the requested search type."""

    kind = ErrorKind.QUERY


class StatisticsRefreshError(BenchmarkError):
    """ANALYZE failed. Logged, never fatal."""

    kind = ErrorKind.STATISTICS_REFRESH
    retryable = True
