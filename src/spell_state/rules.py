"""
Layered class rule resolution.

Effective rules for a class are built from three layers, last writer wins
per key:

1. the module-wide rule set (``legacy`` or ``modern``) from settings,
2. the actor's ``ruleSetOverride`` flag, which swaps in another preset,
3. the actor's stored ``classRules[<class>]`` record.

Downstream components only ever read the resulting ``ClassRules`` record.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from .constants import (
    MAX_PREPARATION_BONUS,
    ClassIdentifiers,
    EnforcementBehavior,
    Flags,
    RitualCastingMode,
    RuleSetName,
    SwapMode,
)
from .exceptions import RuleError
from .host import Actor
from .models import ClassRules
from .settings import SpellStateSettings

logger = logging.getLogger(__name__)

# Keys a preset owns. Applying a preset rewrites these and keeps the rest.
PRESET_KEYS = ("showCantrips", "cantripSwapping", "spellSwapping", "ritualCasting")


def _legacy_defaults(class_identifier: str) -> dict[str, Any]:
    rules: dict[str, Any] = {
        "cantripSwapping": SwapMode.NONE,
        "spellSwapping": SwapMode.NONE,
        "ritualCasting": RitualCastingMode.NONE,
        "showCantrips": True,
    }
    if class_identifier == ClassIdentifiers.WIZARD:
        rules["spellSwapping"] = SwapMode.LONG_REST
        rules["ritualCasting"] = RitualCastingMode.ALWAYS
    elif class_identifier in (ClassIdentifiers.CLERIC, ClassIdentifiers.DRUID):
        rules["spellSwapping"] = SwapMode.LONG_REST
        rules["ritualCasting"] = RitualCastingMode.PREPARED
    elif class_identifier == ClassIdentifiers.PALADIN:
        rules["spellSwapping"] = SwapMode.LONG_REST
        rules["showCantrips"] = False
    elif class_identifier in (
        ClassIdentifiers.RANGER,
        ClassIdentifiers.BARD,
        ClassIdentifiers.SORCERER,
        ClassIdentifiers.WARLOCK,
    ):
        rules["spellSwapping"] = SwapMode.LEVEL_UP
        if class_identifier == ClassIdentifiers.RANGER:
            rules["showCantrips"] = False
    elif class_identifier == ClassIdentifiers.ARTIFICER:
        rules["spellSwapping"] = SwapMode.LONG_REST
    return rules


def _modern_defaults(class_identifier: str) -> dict[str, Any]:
    rules: dict[str, Any] = {
        "cantripSwapping": SwapMode.LEVEL_UP,
        "spellSwapping": SwapMode.NONE,
        "ritualCasting": RitualCastingMode.NONE,
        "showCantrips": True,
    }
    if class_identifier == ClassIdentifiers.WIZARD:
        rules["cantripSwapping"] = SwapMode.LONG_REST
        rules["spellSwapping"] = SwapMode.LONG_REST
        rules["ritualCasting"] = RitualCastingMode.ALWAYS
    elif class_identifier in (ClassIdentifiers.CLERIC, ClassIdentifiers.DRUID):
        rules["spellSwapping"] = SwapMode.LONG_REST
        rules["ritualCasting"] = RitualCastingMode.PREPARED
    elif class_identifier in (ClassIdentifiers.PALADIN, ClassIdentifiers.RANGER):
        rules["cantripSwapping"] = SwapMode.NONE
        rules["spellSwapping"] = SwapMode.LONG_REST
        rules["showCantrips"] = False
    elif class_identifier in (
        ClassIdentifiers.BARD,
        ClassIdentifiers.SORCERER,
        ClassIdentifiers.WARLOCK,
    ):
        rules["spellSwapping"] = SwapMode.LEVEL_UP
    elif class_identifier == ClassIdentifiers.ARTIFICER:
        rules["spellSwapping"] = SwapMode.LONG_REST
    return rules


def preset_defaults(rule_set: RuleSetName | str, class_identifier: str) -> ClassRules:
    """Full default rule record for a class under a named rule set.

    Raises:
        RuleError: If the rule set name is unknown
    """
    try:
        name = RuleSetName(rule_set)
    except ValueError as e:
        raise RuleError(f"Unknown rule set: {rule_set}", {"rule_set": rule_set}) from e
    preset = _legacy_defaults(class_identifier) if name == RuleSetName.LEGACY else _modern_defaults(class_identifier)
    return ClassRules.model_validate(preset)


def _as_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def _alias_for(key: str) -> str:
    """Map a snake_case rule name to its stored camelCase key."""
    info = ClassRules.model_fields.get(key)
    return info.alias if info and info.alias else key


def clamp_preparation_bonus(value: int, base_max: int) -> int:
    """Clamp a preparation bonus into ``[-base_max, +20]``."""
    return max(-max(base_max, 0), min(MAX_PREPARATION_BONUS, int(value)))


class RuleResolver:
    """Resolves and persists per-class rule records for actors."""

    def __init__(self, settings: SpellStateSettings) -> None:
        self.settings = settings

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get_effective_rule_set(self, actor: Actor) -> RuleSetName:
        override = actor.get_flag(Flags.RULE_SET_OVERRIDE)
        if override:
            try:
                return RuleSetName(override)
            except ValueError:
                logger.warning(f"Ignoring unknown rule set override '{override}' on {actor.name}")
        return RuleSetName(self.settings.spellcasting_rule_set)

    def get_enforcement_behavior(self, actor: Actor) -> EnforcementBehavior:
        """Actor flag, then the module default, then ``notifyGM``."""
        stored = actor.get_flag(Flags.ENFORCEMENT_BEHAVIOR)
        for candidate in (stored, self.settings.default_enforcement_behavior):
            if candidate:
                try:
                    return EnforcementBehavior(candidate)
                except ValueError:
                    logger.warning(f"Ignoring unknown enforcement behavior '{candidate}'")
        return EnforcementBehavior.NOTIFY_GM

    def get_class_rules(self, actor: Actor, class_identifier: str) -> ClassRules:
        """Effective rules for one class on an actor.

        Args:
            actor: The actor whose flags are consulted
            class_identifier: Lowercase class identifier

        Returns:
            A fresh ClassRules record; mutating it never touches stored state
        """
        defaults = preset_defaults(self.get_effective_rule_set(actor), class_identifier)
        stored = (actor.get_flag(Flags.CLASS_RULES) or {}).get(class_identifier)
        if not stored:
            return defaults
        merged = {**defaults.to_flag(), **stored}
        try:
            return ClassRules.model_validate(merged)
        except ValidationError as e:
            logger.warning(f"Invalid stored rules for {class_identifier} on {actor.name}, using defaults: {e}")
            return defaults

    def get_class_rule(self, actor: Actor, class_identifier: str, key: str, default: Any = None) -> Any:
        """Single rule value; ``key`` may be camelCase or snake_case."""
        rules = self.get_class_rules(actor, class_identifier)
        for field_name, info in ClassRules.model_fields.items():
            if key in (field_name, info.alias):
                return getattr(rules, field_name)
        return default

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def initialize_new_classes(self, actor: Actor, class_identifiers: list[str]) -> list[str]:
        """Materialize default rule records for classes that have none.

        Returns:
            The identifiers that were added
        """
        existing = actor.get_flag(Flags.CLASS_RULES) or {}
        rule_set = self.get_effective_rule_set(actor)
        added = []
        for class_identifier in class_identifiers:
            if class_identifier in existing:
                continue
            existing[class_identifier] = preset_defaults(rule_set, class_identifier).to_flag()
            added.append(class_identifier)
        if added:
            await actor.set_flag(Flags.CLASS_RULES, existing)
            logger.debug(f"Initialized rules for {added} on {actor.name}")
        return added

    async def apply_rule_set_to_actor(
        self,
        actor: Actor,
        rule_set: RuleSetName | str,
        class_identifiers: list[str],
    ) -> None:
        """Rewrite every class record with a preset, keeping non-preset keys."""
        existing = actor.get_flag(Flags.CLASS_RULES) or {}
        updated = {}
        for class_identifier in class_identifiers:
            preset = preset_defaults(rule_set, class_identifier).to_flag()
            record = {**preset, **existing.get(class_identifier, {})}
            record.update({key: preset[key] for key in PRESET_KEYS})
            updated[class_identifier] = record
        await actor.set_flag(Flags.CLASS_RULES, updated)
        await actor.set_flag(Flags.RULE_SET_OVERRIDE, RuleSetName(rule_set).value)
        logger.info(f"Applied {RuleSetName(rule_set).value} rule set to {actor.name} for {len(updated)} classes")

    async def update_class_rules(
        self,
        actor: Actor,
        class_identifier: str,
        changes: dict[str, Any],
        base_max: int | None = None,
    ) -> bool:
        """Merge ``changes`` into a class record.

        Preparation bonuses are clamped against ``base_max`` when given.

        Returns:
            True when the custom spell list changed

        Raises:
            RuleError: If the merged record does not validate
        """
        all_rules = actor.get_flag(Flags.CLASS_RULES) or {}
        current = all_rules.get(class_identifier, {})
        previous_list = _as_list(current.get("customSpellList"))
        aliased = {_alias_for(key): value for key, value in changes.items()}
        merged = {**current, **aliased}
        try:
            validated = ClassRules.model_validate(merged)
        except ValidationError as e:
            raise RuleError(f"Invalid rules for {class_identifier}", {"errors": e.errors()}) from e
        if base_max is not None:
            validated.spell_preparation_bonus = clamp_preparation_bonus(validated.spell_preparation_bonus, base_max)
            validated.cantrip_preparation_bonus = clamp_preparation_bonus(validated.cantrip_preparation_bonus, base_max)
        record = validated.to_flag()
        all_rules[class_identifier] = {key: record[key] for key in merged if key in record}
        await actor.set_flag(Flags.CLASS_RULES, all_rules)
        list_changed = sorted(previous_list) != sorted(validated.custom_spell_list)
        logger.debug(f"Updated rules for {class_identifier} on {actor.name} (list changed: {list_changed})")
        return list_changed


__all__ = ["RuleResolver", "preset_defaults", "clamp_preparation_bonus", "PRESET_KEYS"]
