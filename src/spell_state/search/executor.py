"""
Executes parsed advanced queries against organised spells.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from ..models import OrganizedSpell
from .fields import parse_range_value
from .filters import casting_time_matches, has_any, range_in_bounds
from .parser import FieldCondition, ParsedQuery

logger = logging.getLogger(__name__)

Evaluator = Callable[[OrganizedSpell, str], bool]


def _range(entry: OrganizedSpell, value: str) -> bool:
    if not any(ch.isdigit() or ch == "*" for ch in value):
        # Unit word such as "self" or "touch"
        return entry.filter_data.range.units.lower() == value.lower()
    minimum, maximum = parse_range_value(value)
    return range_in_bounds(entry, minimum, maximum)


def _flag(getter: Callable[[OrganizedSpell], bool]) -> Evaluator:
    return lambda entry, value: bool(getter(entry)) == (value == "true")


EVALUATORS: dict[str, Evaluator] = {
    "name": lambda entry, value: value.lower() in entry.name.lower(),
    "level": lambda entry, value: entry.level == int(value),
    "school": lambda entry, value: entry.school == value,
    "castingTime": casting_time_matches,
    "range": _range,
    "damageType": lambda entry, value: has_any(entry.filter_data.damage_types, value),
    "condition": lambda entry, value: has_any(entry.filter_data.conditions, value),
    "requiresSave": _flag(lambda entry: entry.filter_data.requires_save),
    "concentration": _flag(lambda entry: entry.filter_data.concentration),
    "ritual": _flag(lambda entry: entry.filter_data.is_ritual),
    "prepared": _flag(lambda entry: entry.preparation.prepared),
    "favorited": _flag(lambda entry: entry.favorited),
    "materialComponents": lambda entry, value: entry.filter_data.material_components.consumed
    == (value == "consumed"),
}


class QueryExecutor:
    """Applies every condition of a conjunction; all must match."""

    def __init__(self, evaluators: dict[str, Evaluator] | None = None) -> None:
        self.evaluators = evaluators or EVALUATORS

    def matches(self, condition: FieldCondition, entry: OrganizedSpell) -> bool:
        evaluator = self.evaluators.get(condition.field)
        if evaluator is None:
            return True
        return evaluator(entry, condition.value)

    def execute(self, parsed: ParsedQuery | None, spells: Iterable[OrganizedSpell]) -> list[OrganizedSpell]:
        """Spells matching every clause; the input unchanged when there is no query."""
        spells = list(spells)
        if parsed is None or parsed.type != "conjunction":
            return spells
        results = [
            entry for entry in spells if all(self.matches(condition, entry) for condition in parsed.conditions)
        ]
        logger.debug(f"Query {parsed.fields()} matched {len(results)}/{len(spells)} spells")
        return results


__all__ = ["QueryExecutor", "EVALUATORS"]
