"""Tests for record parsing, normalization and batching."""

import json

import pytest

from errors import MalformedRecordError
from records import (
    BatchAccumulator, ProductRecord, decode_line, flatten_categories,
    iter_batches, normalize, parse_line, parse_lines
)


class TestParseLine:

    def test_python_literal_line(self):
        line = (
            "{'asin': '0000031852', 'title': 'Girls Ballet Tutu Zebra Hot Pink', "
            "'price': 3.17, 'imUrl': 'http://ecx.images-amazon.com/images/I/51fAmVkTbyL.jpg', "
            "'salesRank': {'Sports &amp; Outdoors': 8547}, "
            "'categories': [['Sports & Outdoors', 'Other Sports', 'Dance']]}"
        )
        record = parse_line(line)

        assert record.asin == "0000031852"
        assert record.title == "Girls Ballet Tutu Zebra Hot Pink"
        assert record.price == "3.17"
        assert record.brand == "Unknown"
        assert record.categories == ("Sports & Outdoors", "Other Sports", "Dance")
        assert record.sales_rank == {"Sports &amp; Outdoors": 8547}
        assert record.image_url.endswith("51fAmVkTbyL.jpg")

    def test_json_line(self):
        record = parse_line(json.dumps({"asin": "B001", "title": "Kindle", "brand": "Amazon"}))
        assert record.asin == "B001"
        assert record.brand == "Amazon"

    def test_missing_title_rejected(self):
        assert parse_line("{'asin': 'B001'}") is None

    def test_empty_asin_rejected(self):
        assert parse_line("{'asin': '', 'title': 'Something'}") is None

    def test_garbage_rejected(self):
        assert parse_line("{'asin': 'B001', 'title': ") is None
        assert parse_line("not a record") is None
        assert parse_line("{[1]: 2}") is None

    def test_non_object_rejected(self):
        assert parse_line("[1, 2, 3]") is None

    def test_decode_line_raises_typed_error(self):
        with pytest.raises(MalformedRecordError) as exc_info:
            decode_line("{broken")
        assert exc_info.value.kind.value == "malformed_input"

    def test_unhashable_key_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            decode_line("{[1]: 2}")


class TestNormalize:

    def test_defaults(self):
        record = normalize({"asin": "B1", "title": "T"})
        assert record.description == ""
        assert record.price == "0"
        assert record.brand == "Unknown"
        assert record.categories == ()
        assert record.sales_rank is None

    def test_null_price(self):
        assert normalize({"asin": "B1", "title": "T", "price": "null"}).price == "0"

    def test_whitespace_title_rejected(self):
        assert normalize({"asin": "B1", "title": "   "}) is None

    def test_flatten_nested_categories(self):
        assert flatten_categories([["A", "B"], ["C", ["D"]]]) == ("A", "B", "C", "D")
        assert flatten_categories("Books") == ("Books",)
        assert flatten_categories(None) == ()

    def test_to_row_order(self):
        record = ProductRecord("B1", "T", categories=("A",), sales_rank={"Books": 5})
        row = record.to_row()
        assert row[0] == "B1"
        assert row[5] == ["A"]
        assert json.loads(row[6]) == {"Books": 5}


class TestParseLines:

    def test_rejected_lines_are_skipped(self):
        lines = [
            "{'asin': 'A1', 'title': 'one'}",
            "garbage",
            "{'asin': 'A2'}",
            "{'asin': 'A3', 'title': 'three'}",
        ]
        assert [r.asin for r in parse_lines(lines)] == ["A1", "A3"]


class TestBatchAccumulator:

    def test_emits_full_batches(self):
        acc = BatchAccumulator(2)
        records = [ProductRecord(f"A{i}", "t") for i in range(5)]

        emitted = [acc.add(r) for r in records]
        batches = [b for b in emitted if b is not None]

        assert [len(b) for b in batches] == [2, 2]
        assert len(acc) == 1
        assert [r.asin for r in acc.flush()] == ["A4"]
        assert acc.flush() is None

    def test_batches_are_not_reused(self):
        acc = BatchAccumulator(1)
        first = acc.add(ProductRecord("A1", "t"))
        second = acc.add(ProductRecord("A2", "t"))
        assert first is not second
        assert [r.asin for r in first] == ["A1"]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            BatchAccumulator(0)

    def test_iter_batches_sizes(self):
        records = [ProductRecord(f"A{i}", "t") for i in range(7)]
        assert [len(b) for b in iter_batches(records, 3)] == [3, 3, 1]
