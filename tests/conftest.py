"""Shared fixtures: an in-memory Store with savepoints and induced failures."""

import threading
from typing import Any, Callable, Dict, List, Optional

import pytest

from errors import StoreError
from records import INSERT_COLUMNS, ProductRecord
from store import Engine, Store, Transaction


def _is_insert(statement: str) -> bool:
    return statement.lstrip().upper().startswith("INSERT")


class FakeTransaction(Transaction):

    def __init__(self, store: "FakeStore"):
        self.store = store
        self.pending: List[Dict[str, Any]] = []
        self._savepoint: Optional[int] = None
        self.committed = False
        self.rolled_back = False

    def execute(self, statement: str, params=None) -> int:
        self.store._record(statement, params)
        upper = statement.strip().upper()
        if upper.startswith("SAVEPOINT"):
            self._savepoint = len(self.pending)
            return 0
        if upper.startswith("ROLLBACK TO SAVEPOINT"):
            del self.pending[self._savepoint:]
            return 0
        if upper.startswith("RELEASE SAVEPOINT"):
            self._savepoint = None
            return 0

        self.store._maybe_fail(statement, params)
        if _is_insert(statement):
            self.pending.append(dict(zip(INSERT_COLUMNS, params)))
            return 1
        return 0

    def commit(self) -> None:
        if self.store.gate is not None:
            self.store.gate.wait(timeout=5)
        if self.store.fail_commit:
            self.rolled_back = True
            raise StoreError("could not commit")
        with self.store.lock:
            self.store.rows.extend(self.pending)
            self.store.commits += 1
        self.committed = True

    def rollback(self) -> None:
        self.pending = []
        self.rolled_back = True


class FakeStore(Store):
    """
    Store double. Committed INSERTs land in `rows`; every statement is
    recorded in `statements`.

    fail_asins: inserts of these ASINs raise StoreError
    fail_on: statements containing any of these substrings raise StoreError
    responses: substring -> rows (or callable) returned by query()
    gate: when set, commits block on this event
    """

    def __init__(self, engine: Engine = Engine.VANILLA, fail_asins=(), fail_on=(),
                 responses: Optional[Dict[str, Any]] = None,
                 gate: Optional[threading.Event] = None, fail_commit: bool = False):
        super().__init__(engine)
        self.lock = threading.Lock()
        self.rows: List[Dict[str, Any]] = []
        self.statements: List[tuple] = []
        self.fail_asins = set(fail_asins)
        self.fail_on = list(fail_on)
        self.responses = dict(responses or {})
        self.gate = gate
        self.fail_commit = fail_commit
        self.commits = 0
        self.closed = False

    def _record(self, statement: str, params) -> None:
        with self.lock:
            self.statements.append((statement, params))

    def _maybe_fail(self, statement: str, params) -> None:
        for fragment in self.fail_on:
            if fragment in statement:
                raise StoreError(f"induced failure on {fragment}")
        if _is_insert(statement) and params and params[0] in self.fail_asins:
            raise StoreError(f"duplicate key value for {params[0]}")

    def executed(self, fragment: str) -> List[tuple]:
        with self.lock:
            return [s for s in self.statements if fragment in s[0]]

    def execute(self, statement: str, params=None) -> int:
        self._record(statement, params)
        self._maybe_fail(statement, params)
        if _is_insert(statement):
            width = len(INSERT_COLUMNS)
            values = list(params or [])
            with self.lock:
                for i in range(0, len(values), width):
                    self.rows.append(dict(zip(INSERT_COLUMNS, values[i:i + width])))
            return len(values) // width
        return 0

    def query(self, statement: str, params=None) -> List[Dict[str, Any]]:
        self._record(statement, params)
        self._maybe_fail(statement, params)
        for fragment, response in self.responses.items():
            if fragment in statement:
                return response(statement, params) if callable(response) else list(response)
        if "COUNT(*)" in statement:
            return [{"count": len(self.rows)}]
        return []

    def begin(self) -> Transaction:
        self._record("BEGIN", None)
        self._maybe_fail("BEGIN", None)
        return FakeTransaction(self)

    def close(self) -> None:
        self.closed = True


def make_line(asin: str, title: str = "Apple iPhone Case", **extra) -> str:
    record = {"asin": asin, "title": title}
    record.update(extra)
    return repr(record)


def make_record(asin: str, title: str = "Apple iPhone Case", **extra) -> ProductRecord:
    return ProductRecord(asin=asin, title=title, **extra)


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def store_factory() -> Callable[..., FakeStore]:
    return FakeStore
