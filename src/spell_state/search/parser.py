"""
Advanced search query parsing.

Grammar (prefix character already stripped)::

    query  := clause ( AND clause )*
    clause := FIELD ':' VALUE

Every clause must resolve to a known field with a valid value, otherwise
the whole query is rejected.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from ..exceptions import QueryParseError
from .fields import FieldDefinitions

logger = logging.getLogger(__name__)

AND_SPLIT = re.compile(r"\s*\bAND\b\s*", re.IGNORECASE)


@dataclass(frozen=True)
class FieldCondition:
    """One ``field:value`` clause with its value normalised."""
    field: str
    value: str
    type: str = "field"


@dataclass
class ParsedQuery:
    """A conjunction of field conditions."""
    conditions: list[FieldCondition] = field(default_factory=list)
    type: str = "conjunction"

    def fields(self) -> list[str]:
        return [condition.field for condition in self.conditions]


class QueryParser:
    """Parses advanced query text into a ``ParsedQuery``."""

    def __init__(self, field_definitions: FieldDefinitions | None = None) -> None:
        self.field_definitions = field_definitions or FieldDefinitions()

    def parse(self, query: str) -> ParsedQuery:
        """Parse query text.

        Args:
            query: Query without the advanced search prefix

        Returns:
            The parsed conjunction

        Raises:
            QueryParseError: If the query is empty or any clause is invalid
        """
        if not query or not query.strip():
            raise QueryParseError("Empty query", query)
        conditions = []
        for part in AND_SPLIT.split(query.strip()):
            clause = part.strip()
            if not clause:
                raise QueryParseError("Empty clause", query, clause)
            conditions.append(self._parse_field_expression(clause, query))
        return ParsedQuery(conditions=conditions)

    def parse_query(self, query: str) -> ParsedQuery | None:
        """Parse query text, returning None instead of raising."""
        try:
            return self.parse(query)
        except QueryParseError as e:
            logger.debug(f"Rejected query {query!r}: {e.message}")
            return None

    def _parse_field_expression(self, clause: str, query: str) -> FieldCondition:
        alias, colon, value = clause.partition(":")
        if not colon:
            raise QueryParseError("Clause is missing ':'", query, clause)
        field_id = self.field_definitions.get_field_id(alias)
        if field_id is None:
            raise QueryParseError(f"Unknown field: {alias.strip()}", query, clause)
        value = value.strip()
        if not value:
            raise QueryParseError(f"Missing value for {alias.strip()}", query, clause)
        if not self.field_definitions.validate_value(field_id, value):
            raise QueryParseError(
                f"Invalid value for {alias.strip()}: {value}",
                query,
                clause,
                {"field": field_id, "value": value},
            )
        return FieldCondition(field=field_id, value=self.field_definitions.normalize_value(field_id, value))


def serialize_query(parsed: ParsedQuery, field_definitions: FieldDefinitions | None = None) -> str:
    """Canonical ``ALIAS:value AND ...`` text that parses back to ``parsed``."""
    field_definitions = field_definitions or FieldDefinitions()
    return " AND ".join(
        f"{field_definitions.canonical_alias(condition.field)}:{condition.value}" for condition in parsed.conditions
    )


__all__ = ["FieldCondition", "ParsedQuery", "QueryParser", "serialize_query"]
