"""
Store interface used by ingestion, index construction and query dispatch,
plus its psycopg2 binding.

Connections run in autocommit mode; transactions are opened explicitly so
that statements like CREATE INDEX CONCURRENTLY can run outside of one.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from config import PARADE_DB, POOL_MAX_CONNECTIONS, POOL_MIN_CONNECTIONS, VANILLA_DB
from errors import StoreConnectionError, StoreError

logger = logging.getLogger(__name__)

Params = Optional[Sequence[Any]]


class Engine(Enum):
    VANILLA = "vanilla"
    PARADE = "parade"

    @property
    def label(self) -> str:
        return "Vanilla PostgreSQL" if self is Engine.VANILLA else "ParadeDB"


class Transaction(ABC):
    """One open transaction on one connection."""

    @abstractmethod
    def execute(self, statement: str, params: Params = None) -> int:
        """Run a statement, return affected row count."""

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    def execute_isolated(self, statement: str, params: Params = None) -> int:
        """
        Run a statement behind a savepoint.

        A failure rolls back to the savepoint and is re-raised, leaving
        the surrounding transaction usable.
        """
        self.execute("SAVEPOINT record_write")
        try:
            rows = self.execute(statement, params)
        except StoreError:
            self.execute("ROLLBACK TO SAVEPOINT record_write")
            raise
        self.execute("RELEASE SAVEPOINT record_write")
        return rows


class Store(ABC):
    """A search-capable database reachable through plain SQL."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @abstractmethod
    def execute(self, statement: str, params: Params = None) -> int:
        pass

    @abstractmethod
    def query(self, statement: str, params: Params = None) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def begin(self) -> Transaction:
        pass

    def close(self) -> None:
        pass

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Commit on clean exit, roll back and re-raise otherwise."""
        tx = self.begin()
        try:
            yield tx
        except BaseException:
            try:
                tx.rollback()
            except StoreError as e:
                logger.warning(f"{self.engine.label}: rollback failed: {e}")
            raise
        tx.commit()


class PostgresTransaction(Transaction):

    def __init__(self, store: "PostgresStore", conn):
        self._store = store
        self._conn = conn
        self._open = True

    def execute(self, statement: str, params: Params = None) -> int:
        try:
            with self._conn.cursor() as cur:
                cur.execute(statement, params)
                return cur.rowcount
        except psycopg2.Error as e:
            raise StoreError(str(e).strip(), cause=e) from e

    def commit(self) -> None:
        try:
            self.execute("COMMIT")
        except StoreError:
            self._finish(rollback=True)
            raise
        self._finish()

    def rollback(self) -> None:
        self._finish(rollback=True)

    def _finish(self, rollback: bool = False) -> None:
        if not self._open:
            return
        self._open = False
        try:
            if rollback and not self._conn.closed:
                with self._conn.cursor() as cur:
                    cur.execute("ROLLBACK")
        except psycopg2.Error as e:
            raise StoreError(str(e).strip(), cause=e) from e
        finally:
            self._store._release(self._conn)


class PostgresStore(Store):
    """Store backed by a psycopg2 threaded connection pool."""

    def __init__(self, engine: Engine, db_config: Dict[str, Any],
                 min_connections: int = POOL_MIN_CONNECTIONS,
                 max_connections: int = POOL_MAX_CONNECTIONS):
        super().__init__(engine)
        self.db_config = db_config
        try:
            self._pool = ThreadedConnectionPool(
                min_connections, max_connections,
                cursor_factory=RealDictCursor, **db_config
            )
        except psycopg2.Error as e:
            raise StoreConnectionError(
                f"Failed to connect to {engine.label} at "
                f"{db_config.get('host')}:{db_config.get('port')}: {e}",
                cause=e
            ) from e

    def _acquire(self):
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as e:
            raise StoreError(f"No connection available: {e}", cause=e) from e
        conn.autocommit = True
        return conn

    def _release(self, conn) -> None:
        self._pool.putconn(conn, close=bool(conn.closed))

    @contextmanager
    def _cursor(self):
        conn = self._acquire()
        try:
            with conn.cursor() as cur:
                yield cur
        except psycopg2.Error as e:
            raise StoreError(str(e).strip(), cause=e) from e
        finally:
            self._release(conn)

    def execute(self, statement: str, params: Params = None) -> int:
        with self._cursor() as cur:
            cur.execute(statement, params)
            return cur.rowcount

    def query(self, statement: str, params: Params = None) -> List[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(statement, params)
            return [dict(row) for row in cur.fetchall()]

    def begin(self) -> Transaction:
        conn = self._acquire()
        try:
            with conn.cursor() as cur:
                cur.execute("BEGIN")
        except psycopg2.Error as e:
            self._release(conn)
            raise StoreError(str(e).strip(), cause=e) from e
        return PostgresTransaction(self, conn)

    def ping(self) -> None:
        try:
            self.query("SELECT 1 AS ok")
        except StoreError as e:
            raise StoreConnectionError(f"{self.engine.label} is unreachable: {e}", cause=e) from e

    def close(self) -> None:
        self._pool.closeall()


DB_CONFIGS = {
    Engine.VANILLA: VANILLA_DB,
    Engine.PARADE: PARADE_DB,
}


def connect(engine: Engine, db_config: Optional[Dict[str, Any]] = None) -> PostgresStore:
    """Open and verify a store. Raises StoreConnectionError when unreachable."""
    config = db_config or DB_CONFIGS[engine]
    logger.info(f"Connecting to {engine.label} at {config['host']}:{config['port']}/{config['dbname']}")
    store = PostgresStore(engine, config)
    try:
        store.ping()
    except StoreConnectionError:
        store.close()
        raise
    return store


def connect_all(engines: Sequence[Engine] = (Engine.VANILLA, Engine.PARADE)) -> Dict[Engine, PostgresStore]:
    """Connect every engine, closing the ones already open if one fails."""
    stores: Dict[Engine, PostgresStore] = {}
    try:
        for engine in engines:
            stores[engine] = connect(engine)
    except StoreConnectionError:
        for store in stores.values():
            store.close()
        raise
    return stores
