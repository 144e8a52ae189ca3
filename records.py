"""
Product record parsing, normalization and batching.

Corpus lines from the SNAP metadata dump are Python dict literals
(single quotes, True/False/None); plain JSON lines are accepted too.
"""

import ast
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from config import BATCH_SIZE
from errors import MalformedRecordError


INSERT_COLUMNS = (
    "asin", "title", "description", "price", "brand",
    "categories", "sales_rank", "image_url"
)


@dataclass(frozen=True)
class ProductRecord:
    asin: str
    title: str
    description: str = ""
    price: str = "0"
    brand: str = "Unknown"
    categories: Tuple[str, ...] = ()
    sales_rank: Optional[Dict[str, Any]] = None
    image_url: str = ""

    def to_row(self) -> Tuple:
        """Column values in INSERT_COLUMNS order."""
        sales_rank = json.dumps(self.sales_rank) if self.sales_rank is not None else None
        return (
            self.asin,
            self.title,
            self.description,
            self.price,
            self.brand,
            list(self.categories),
            sales_rank,
            self.image_url,
        )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _price(value: Any) -> str:
    price = _text(value)
    if price == "" or price.lower() == "null":
        return "0"
    return price


def flatten_categories(value: Any) -> Tuple[str, ...]:
    """Flatten nested category lists into one ordered tuple of strings."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)

    flat: List[str] = []
    if isinstance(value, (list, tuple)):
        for item in value:
            if isinstance(item, str):
                flat.append(item)
            elif isinstance(item, (list, tuple)):
                flat.extend(flatten_categories(item))
    return tuple(flat)


def normalize(raw: Dict[str, Any]) -> Optional[ProductRecord]:
    """
    Build a ProductRecord from a decoded corpus entry.

    Returns None when the identifier or the title is empty.
    """
    asin = _text(raw.get("asin"))
    title = _text(raw.get("title"))
    if not asin or not title:
        return None

    sales_rank = raw.get("salesRank")
    if not isinstance(sales_rank, dict):
        sales_rank = None

    return ProductRecord(
        asin=asin,
        title=title,
        description=_text(raw.get("description")),
        price=_price(raw.get("price")),
        brand=_text(raw.get("brand")) or "Unknown",
        categories=flatten_categories(raw.get("categories")),
        sales_rank=sales_rank,
        image_url=_text(raw.get("imUrl")),
    )


def decode_line(line: str) -> Dict[str, Any]:
    """
    Decode one raw corpus line into a dict.

    Raises:
        MalformedRecordError: the line is neither JSON nor a dict literal
    """
    line = line.strip()
    if not line:
        raise MalformedRecordError("empty line")

    try:
        raw = json.loads(line)
    except ValueError:
        try:
            raw = ast.literal_eval(line)
        except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError) as e:
            raise MalformedRecordError(f"undecodable line: {line[:80]}", cause=e)

    if not isinstance(raw, dict):
        raise MalformedRecordError(f"not an object: {line[:80]}")
    return raw


def parse_line(line: str) -> Optional[ProductRecord]:
    """Parse one raw corpus line. Malformed or incomplete lines yield None."""
    try:
        raw = decode_line(line)
    except MalformedRecordError:
        return None
    return normalize(raw)


def parse_lines(lines: Iterable[str]) -> Iterator[ProductRecord]:
    """Lazily parse lines, silently dropping rejected ones."""
    for line in lines:
        record = parse_line(line)
        if record is not None:
            yield record


class BatchAccumulator:
    """Groups records into fixed-size batches.

    A returned batch is a fresh list; the accumulator never touches it again.
    """

    def __init__(self, batch_size: int = BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size
        self._pending: List[ProductRecord] = []

    def add(self, record: ProductRecord) -> Optional[List[ProductRecord]]:
        self._pending.append(record)
        if len(self._pending) >= self.batch_size:
            return self._handoff()
        return None

    def flush(self) -> Optional[List[ProductRecord]]:
        if not self._pending:
            return None
        return self._handoff()

    def _handoff(self) -> List[ProductRecord]:
        batch = self._pending
        self._pending = []
        return batch

    def __len__(self):
        return len(self._pending)


def iter_batches(records: Iterable[ProductRecord],
                 batch_size: int = BATCH_SIZE) -> Iterator[List[ProductRecord]]:
    accumulator = BatchAccumulator(batch_size)
    for record in records:
        batch = accumulator.add(record)
        if batch is not None:
            yield batch

    last = accumulator.flush()
    if last is not None:
        yield last
