"""
Field aliases, value validation and autocomplete values for advanced search.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from ..constants import (
    BOOLEAN_FIELDS,
    BOOLEAN_VALUES,
    COMMON_CASTING_TIMES,
    DEFAULT_FILTER_CONFIG,
    MATERIAL_VALUES,
    MULTI_VALUE_FIELDS,
)
from ..game_config import GameConfig

logger = logging.getLogger(__name__)

# Fields whose autocomplete list starts with ALL
ENUMERATED_FIELDS = ("level", "school", "castingTime", "damageType", "condition", "range")
UNBOUNDED = "*"
EXTRA_RANGE_WORDS = ("UNLIMITED", "SIGHT")


def _is_int(text: str) -> bool:
    text = text.strip()
    if text.startswith("-"):
        text = text[1:]
    return text.isdigit()


def parse_range_value(value: str) -> tuple[int | None, int | None]:
    """Split a range value into ``(min, max)``; ``*`` or an empty side is unbounded.

    A single number is a lower bound. Unit words yield ``(None, None)``.
    """
    value = value.strip()
    if not value:
        return None, None
    if "-" not in value:
        return (int(value), None) if _is_int(value) else (None, None)
    parts = value.split("-")
    if len(parts) != 2:
        return None, None
    low, high = (part.strip() for part in parts)
    minimum = int(low) if low and low != UNBOUNDED and _is_int(low) else None
    maximum = int(high) if high and high != UNBOUNDED and _is_int(high) else None
    return minimum, maximum


class FieldDefinitions:
    """Maps search aliases to filter fields and validates their values."""

    def __init__(
        self,
        game_config: GameConfig | None = None,
        filter_config: Iterable[dict] = DEFAULT_FILTER_CONFIG,
    ) -> None:
        self.game_config = game_config or GameConfig.load_default()
        self.field_map: dict[str, str] = {}
        self.canonical_aliases: dict[str, str] = {}
        self.validators: dict[str, Callable[[str], bool]] = {}
        for entry in filter_config:
            aliases = entry.get("search_aliases") or ()
            if not aliases:
                continue
            field_id = entry["id"]
            for alias in aliases:
                self.field_map[alias.upper()] = field_id
            self.canonical_aliases[field_id] = aliases[0].upper()
            # The field id itself is always accepted, e.g. "damageType:fire"
            self.field_map.setdefault(field_id.upper(), field_id)
            self.validators[field_id] = self._validator_for(field_id)
        logger.debug(f"Field definitions initialised with {len(self.field_map)} aliases")

    # ------------------------------------------------------------------ #
    # Validators
    # ------------------------------------------------------------------ #

    def _validator_for(self, field_id: str) -> Callable[[str], bool]:
        config = self.game_config
        if field_id == "level":
            return lambda value: value.strip() in config.spell_levels
        if field_id == "school":
            return lambda value: config.resolve_school(value) is not None
        if field_id == "castingTime":
            types = {key.upper() for key in config.activation_types}
            return lambda value: value.split(":")[0].strip().upper() in types
        if field_id == "damageType":
            types = {key.upper() for key in config.damage_types_with_healing()}
            return lambda value: all(part.strip().upper() in types for part in value.split(","))
        if field_id == "condition":
            conditions = {key.upper() for key in config.searchable_conditions()}
            return lambda value: all(part.strip().upper() in conditions for part in value.split(","))
        if field_id in BOOLEAN_FIELDS:
            return lambda value: value.strip().upper() in BOOLEAN_VALUES
        if field_id == "materialComponents":
            return lambda value: value.strip().upper() in MATERIAL_VALUES
        if field_id == "range":
            return self._valid_range
        return lambda value: True

    def _valid_range(self, value: str) -> bool:
        value = value.strip()
        if "-" in value:
            parts = value.split("-")
            if len(parts) != 2:
                return False
            return all(part.strip() in ("", UNBOUNDED) or _is_int(part) for part in parts)
        if _is_int(value):
            return True
        upper = value.upper()
        return upper in {key.upper() for key in self.game_config.range_types} or upper in EXTRA_RANGE_WORDS

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    def get_field_id(self, alias: str) -> str | None:
        return self.field_map.get(alias.strip().upper())

    def canonical_alias(self, field_id: str) -> str:
        return self.canonical_aliases.get(field_id, field_id.upper())

    def validate_value(self, field_id: str, value: str) -> bool:
        validator = self.validators.get(field_id)
        return validator(value) if validator else True

    @staticmethod
    def normalize_boolean_value(value: str) -> str:
        upper = value.strip().upper()
        if upper in ("TRUE", "YES"):
            return "true"
        if upper in ("FALSE", "NO"):
            return "false"
        return value

    def normalize_value(self, field_id: str, value: str) -> str:
        """Fold a validated value into the form the executor compares against."""
        value = value.strip()
        if field_id in BOOLEAN_FIELDS:
            return self.normalize_boolean_value(value)
        if field_id == "school":
            return self.game_config.resolve_school(value) or value.lower()
        if field_id in MULTI_VALUE_FIELDS:
            return ",".join(part.strip().lower() for part in value.split(",") if part.strip())
        if field_id == "castingTime":
            activation_type, _, amount = value.partition(":")
            return f"{activation_type.strip().lower()}:{amount.strip() or '1'}"
        if field_id == "range":
            return value.replace(" ", "").lower()
        return value.lower()

    def get_all_field_aliases(self) -> list[str]:
        return list(self.field_map)

    def unique_field_aliases(self) -> list[str]:
        """One alias per field, in configuration order."""
        return list(self.canonical_aliases.values())

    def get_valid_values_for_field(self, field_id: str) -> list[str]:
        """Autocomplete values; range has none since it takes free numbers."""
        if field_id == "range":
            return []
        config = self.game_config
        if field_id == "level":
            values = list(config.spell_levels)
        elif field_id == "school":
            values = [key.upper() for key in config.spell_schools]
            values += [entry.full_key.upper() for entry in config.spell_schools.values() if entry.full_key]
        elif field_id == "castingTime":
            values = list(COMMON_CASTING_TIMES)
        elif field_id == "damageType":
            labelled = config.damage_types_with_healing()
            values = [key.upper() for key in sorted(labelled, key=lambda key: labelled[key].casefold())]
        elif field_id == "condition":
            values = [key.upper() for key in config.searchable_conditions()]
        elif field_id in BOOLEAN_FIELDS:
            values = list(BOOLEAN_VALUES)
        elif field_id == "materialComponents":
            values = list(MATERIAL_VALUES)
        else:
            values = []
        if field_id in ENUMERATED_FIELDS:
            return ["ALL", *values]
        return values


__all__ = ["FieldDefinitions", "parse_range_value"]
