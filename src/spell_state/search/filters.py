"""
The manual filter panel and the field matchers it shares with the query executor.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from pydantic import BaseModel

from ..models import OrganizedSpell
from .fields import parse_range_value
from .parser import ParsedQuery

logger = logging.getLogger(__name__)

FEET_PER_MILE = 5280
QUOTED_PHRASE = re.compile(r"""^["'](.+?)["']$""")


def convert_range_to_standard_unit(units: str, value: int | None) -> int:
    """Range in feet: miles scale by 5280, ``spec`` and missing values are 0."""
    if not units or not value:
        return 0
    if units == "mi":
        return value * FEET_PER_MILE
    if units == "spec":
        return 0
    return value


def range_in_bounds(entry: OrganizedSpell, minimum: int | None, maximum: int | None) -> bool:
    """Spells without range units always pass."""
    units = entry.filter_data.range.units
    if not units:
        return True
    distance = convert_range_to_standard_unit(units, entry.filter_data.range.value)
    if minimum is not None and distance < minimum:
        return False
    if maximum is not None and distance > maximum:
        return False
    return True


def casting_time_matches(entry: OrganizedSpell, value: str) -> bool:
    activation_type, _, amount = value.partition(":")
    casting = entry.filter_data.casting_time
    return casting.type == activation_type and (casting.value or "1") == (amount or "1")


def has_any(values: Iterable[str], wanted: str) -> bool:
    wanted_set = {part.strip().lower() for part in wanted.split(",") if part.strip()}
    return any(value.lower() in wanted_set for value in values)


def fuzzy_name_match(name: str, query: str) -> bool:
    """Name search used outside advanced mode.

    A quoted query matches the phrase literally; otherwise exact, prefix,
    substring, all-words and any-word matches are accepted.
    """
    query = query.strip()
    if not query:
        return True
    name = name.lower()
    quoted = QUOTED_PHRASE.match(query)
    if quoted:
        return quoted.group(1).lower() in name
    lowered = query.lower()
    if name == lowered or name.startswith(lowered) or lowered in name:
        return True
    words = lowered.split()
    return all(word in name for word in words) or any(word in name for word in words)


class FilterState(BaseModel):
    """Values of the filter panel; empty strings and False mean no filter."""

    name: str = ""
    level: str = ""
    school: str = ""
    casting_time: str = ""
    min_range: str = ""
    max_range: str = ""
    damage_type: str = ""
    condition: str = ""
    requires_save: str = ""
    prepared: bool = False
    ritual: bool = False
    favorited: bool = False
    concentration: str = ""
    material_components: str = ""


FIELD_TO_STATE = {
    "level": "level",
    "school": "school",
    "castingTime": "casting_time",
    "damageType": "damage_type",
    "condition": "condition",
    "requiresSave": "requires_save",
    "concentration": "concentration",
    "materialComponents": "material_components",
    "prepared": "prepared",
    "ritual": "ritual",
    "favorited": "favorited",
}


class FilterPanel:
    """Applies a ``FilterState`` to organised spells."""

    def apply(self, state: FilterState, spells: Iterable[OrganizedSpell]) -> list[OrganizedSpell]:
        results = [spell for spell in spells if self.matches(state, spell)]
        logger.debug(f"Filter panel kept {len(results)} spells")
        return results

    def matches(self, state: FilterState, entry: OrganizedSpell) -> bool:
        data = entry.filter_data
        if state.name and not fuzzy_name_match(entry.name, state.name):
            return False
        if state.level and entry.level != int(state.level):
            return False
        if state.school and entry.school != state.school:
            return False
        if state.casting_time and not casting_time_matches(entry, state.casting_time):
            return False
        if state.min_range or state.max_range:
            minimum = int(state.min_range) if state.min_range else None
            maximum = int(state.max_range) if state.max_range else None
            if not range_in_bounds(entry, minimum, maximum):
                return False
        if state.damage_type and not has_any(data.damage_types, state.damage_type):
            return False
        if state.condition and not has_any(data.conditions, state.condition):
            return False
        if state.requires_save and data.requires_save != (state.requires_save == "true"):
            return False
        if state.concentration and data.concentration != (state.concentration == "true"):
            return False
        if state.material_components and data.material_components.consumed != (
            state.material_components.lower() == "consumed"
        ):
            return False
        if state.prepared and not entry.preparation.prepared:
            return False
        if state.ritual and not data.is_ritual:
            return False
        if state.favorited and not entry.favorited:
            return False
        return True

    @staticmethod
    def state_from_query(parsed: ParsedQuery, state: FilterState | None = None) -> FilterState:
        """Copy a parsed advanced query into panel values.

        Checkbox fields only filter when true, so ``ritual:false`` leaves
        the ritual box unchecked.
        """
        state = state.model_copy() if state else FilterState()
        for condition in parsed.conditions:
            if condition.field == "range":
                minimum, maximum = parse_range_value(condition.value)
                state.min_range = "" if minimum is None else str(minimum)
                state.max_range = "" if maximum is None else str(maximum)
                continue
            attribute = FIELD_TO_STATE.get(condition.field)
            if attribute is None:
                continue
            if isinstance(getattr(state, attribute), bool):
                setattr(state, attribute, condition.value == "true")
            else:
                setattr(state, attribute, condition.value)
        return state


__all__ = [
    "FilterPanel",
    "FilterState",
    "convert_range_to_standard_unit",
    "fuzzy_name_match",
    "range_in_bounds",
]
