"""Advanced and fuzzy spell search."""

from .engine import SearchEngine, Suggestion
from .executor import QueryExecutor
from .fields import FieldDefinitions, parse_range_value
from .filters import FilterPanel, FilterState, fuzzy_name_match
from .parser import FieldCondition, ParsedQuery, QueryParser, serialize_query

__all__ = [
    "FieldCondition",
    "FieldDefinitions",
    "FilterPanel",
    "FilterState",
    "ParsedQuery",
    "QueryExecutor",
    "QueryParser",
    "SearchEngine",
    "Suggestion",
    "fuzzy_name_match",
    "parse_range_value",
    "serialize_query",
]
