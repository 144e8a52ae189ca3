"""
Query construction per engine and search type.

Each builder is a pure function: query text -> (statement, params).
Statements use psycopg2 placeholders, so a literal % is written %%.
"""

import re
from enum import Enum
from typing import Callable, Dict, List, Tuple

from config import RESULT_LIMIT, TABLE_NAME
from errors import QueryBuildError
from index_builder import COMBINED_DOCUMENT
from store import Engine

Statement = Tuple[str, List[str]]
QueryBuilder = Callable[[str], Statement]


class SearchType(Enum):
    FULLTEXT = "fulltext"
    BOOLEAN = "boolean"
    FIELD = "field"
    FUZZY = "fuzzy"
    EXACT = "exact"

    @classmethod
    def parse(cls, value) -> "SearchType":
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        if name == "like":
            return cls.FUZZY
        try:
            return cls(name)
        except ValueError:
            raise QueryBuildError(f"Unknown search type: {value}")


COLUMNS = "id, asin, title, description, price, brand, categories"
SEARCH_FIELDS = ("title", "description", "brand")
BOOLEAN_OPERATORS = {"AND", "OR", "NOT"}

_FIELD_PREFIX = re.compile(r"\b(?:title|description|brand):")
_BARE_TERM = re.compile(r"(?<![\w:])(\w+)\b(?!:)")


def _require_text(query: str) -> str:
    text = (query or "").strip()
    if not text:
        raise QueryBuildError("Query is required")
    return text


def split_field_query(query: str) -> Tuple[str, str]:
    """'brand:samsung' -> ('brand', 'samsung'). Unknown fields default to title."""
    text = _require_text(query)
    field, sep, term = text.partition(":")
    if not sep:
        return "title", text
    field = field.strip().lower()
    if field not in SEARCH_FIELDS:
        field = "title"
    term = term.strip()
    if not term:
        raise QueryBuildError(f"Field query has no term: {query}")
    return field, term


def to_tsquery_syntax(query: str) -> str:
    """'laptop AND (dell OR hp) NOT refurbished' -> 'laptop & (dell | hp) & !refurbished'."""
    text = _FIELD_PREFIX.sub("", query)
    text = re.sub(r"\s+NOT\s+(\w+)", r" & !\1", text, flags=re.IGNORECASE)
    text = re.sub(r"\s+AND\s+", " & ", text, flags=re.IGNORECASE)
    text = re.sub(r"\s+OR\s+", " | ", text, flags=re.IGNORECASE)
    return re.sub(r"\s+", " ", text).strip()


def to_bm25_boolean(query: str) -> str:
    """Expand every bare term across all searchable fields, keeping operators."""
    def expand(match):
        term = match.group(1)
        if term.upper() in BOOLEAN_OPERATORS:
            return term
        return "(" + " OR ".join(f"{f}:{term}" for f in SEARCH_FIELDS) + ")"

    return _BARE_TERM.sub(expand, query)


# Vanilla PostgreSQL

def vanilla_fulltext(query: str) -> Statement:
    text = _require_text(query)
    sql = f"""
        SELECT {COLUMNS},
               ts_rank({COMBINED_DOCUMENT}, plainto_tsquery('english', %s)) AS rank_score
        FROM {TABLE_NAME}
        WHERE {COMBINED_DOCUMENT} @@ plainto_tsquery('english', %s)
        ORDER BY rank_score DESC
        LIMIT {RESULT_LIMIT}
    """
    return sql, [text, text]


def vanilla_boolean(query: str) -> Statement:
    tsquery = to_tsquery_syntax(_require_text(query))
    sql = f"""
        SELECT {COLUMNS},
               ts_rank({COMBINED_DOCUMENT}, to_tsquery('english', %s)) AS rank_score
        FROM {TABLE_NAME}
        WHERE {COMBINED_DOCUMENT} @@ to_tsquery('english', %s)
        ORDER BY rank_score DESC
        LIMIT {RESULT_LIMIT}
    """
    return sql, [tsquery, tsquery]


def vanilla_field(query: str) -> Statement:
    # field comes from the SEARCH_FIELDS whitelist, never from raw input
    field, term = split_field_query(query)
    sql = f"""
        SELECT {COLUMNS},
               similarity({field}, %s) AS similarity_score
        FROM {TABLE_NAME}
        WHERE {field} %% %s
        ORDER BY similarity_score DESC
        LIMIT {RESULT_LIMIT}
    """
    return sql, [term, term]


def vanilla_fuzzy(query: str) -> Statement:
    text = _require_text(query)
    sql = f"""
        SELECT {COLUMNS},
               GREATEST(
                   similarity(title, %s),
                   similarity(description, %s),
                   similarity(brand, %s)
               ) AS max_similarity
        FROM {TABLE_NAME}
        WHERE title %% %s OR description %% %s OR brand %% %s
        ORDER BY max_similarity DESC
        LIMIT {RESULT_LIMIT}
    """
    return sql, [text] * 6


def vanilla_exact(query: str) -> Statement:
    text = _require_text(query)
    sql = f"""
        SELECT {COLUMNS},
               ts_rank({COMBINED_DOCUMENT}, phraseto_tsquery('english', %s)) AS rank_score
        FROM {TABLE_NAME}
        WHERE {COMBINED_DOCUMENT} @@ phraseto_tsquery('english', %s)
        ORDER BY rank_score DESC
        LIMIT {RESULT_LIMIT}
    """
    return sql, [text, text]


# ParadeDB

_BM25_SCORED = f"""
    SELECT {COLUMNS},
           paradedb.score(id) AS bm25_score
    FROM {TABLE_NAME}
    WHERE {TABLE_NAME} @@@ %s
    ORDER BY bm25_score DESC
    LIMIT {RESULT_LIMIT}
"""


def parade_fulltext(query: str) -> Statement:
    text = _require_text(query)
    if len(text.split()) == 1:
        search = f"title:{text}^2 OR description:{text} OR brand:{text}^1.5"
    else:
        search = f'(title:"{text}")^2 OR (description:"{text}") OR (brand:"{text}")^1.5'
    return _BM25_SCORED, [search]


def parade_boolean(query: str) -> Statement:
    search = to_bm25_boolean(_require_text(query))
    sql = f"""
        SELECT {COLUMNS}
        FROM {TABLE_NAME}
        WHERE {TABLE_NAME} @@@ %s
        LIMIT {RESULT_LIMIT}
    """
    return sql, [search]


def parade_field(query: str) -> Statement:
    return _BM25_SCORED, [_require_text(query)]


def parade_fuzzy(query: str) -> Statement:
    text = _require_text(query)
    if " " not in text:
        clauses = ",\n".join(
            f"paradedb.fuzzy_term(field => '{f}', value => %s)" for f in SEARCH_FIELDS
        )
    else:
        clauses = ",\n".join(
            f"paradedb.match(field => '{f}', value => %s, distance => 2, conjunction_mode => true)"
            for f in SEARCH_FIELDS
        )
    sql = f"""
        SELECT {COLUMNS}
        FROM {TABLE_NAME}
        WHERE id @@@ paradedb.boolean(
            should => ARRAY[
                {clauses}
            ]
        )
        LIMIT {RESULT_LIMIT}
    """
    return sql, [text] * len(SEARCH_FIELDS)


def parade_exact(query: str) -> Statement:
    text = _require_text(query)
    search = f'title:"{text}"^2 OR description:"{text}" OR brand:"{text}"^1.5'
    return _BM25_SCORED, [search]


QUERY_BUILDERS: Dict[Engine, Dict[SearchType, QueryBuilder]] = {
    Engine.VANILLA: {
        SearchType.FULLTEXT: vanilla_fulltext,
        SearchType.BOOLEAN: vanilla_boolean,
        SearchType.FIELD: vanilla_field,
        SearchType.FUZZY: vanilla_fuzzy,
        SearchType.EXACT: vanilla_exact,
    },
    Engine.PARADE: {
        SearchType.FULLTEXT: parade_fulltext,
        SearchType.BOOLEAN: parade_boolean,
        SearchType.FIELD: parade_field,
        SearchType.FUZZY: parade_fuzzy,
        SearchType.EXACT: parade_exact,
    },
}


def build_query(engine: Engine, search_type, query: str,
                builders: Dict[Engine, Dict[SearchType, QueryBuilder]] = QUERY_BUILDERS) -> Statement:
    search_type = SearchType.parse(search_type)
    try:
        builder = builders[engine][search_type]
    except KeyError:
        raise QueryBuildError(f"No {search_type.value} query builder for {engine.label}")
    return builder(query)
