"""
Spellcasting class detection and stale flag cleanup.
"""

from __future__ import annotations

import logging
import math

from .constants import MAX_SPELL_LEVEL, ClassIdentifiers, Flags
from .exceptions import HostWriteError
from .host import Actor
from .identity import parse_class_spell_key
from .models import ClassItem, SpellcastingClass
from .rules import RuleResolver

logger = logging.getLogger(__name__)

MAX_PACT_LEVEL = 5


def spellcasting_caster_level(progression: str, levels: int) -> int:
    """Contribution of one class to the multiclass caster level table."""
    if progression == "full":
        return levels
    if progression == "half":
        return math.ceil(levels / 2) if levels >= 2 else 0
    if progression == "third":
        return math.ceil(levels / 3) if levels >= 3 else 0
    if progression == "artificer":
        return math.ceil(levels / 2)
    return 0


def calculate_max_spell_level(spellcasting_class: SpellcastingClass) -> int:
    """Highest spell level a class can cast at its current level.

    Leveled casters read the standard slot table (slot level grows every
    two caster levels, capped at 9th). Pact casters use the warlock table
    (capped at 5th). Any other progression yields 0.
    """
    progression = spellcasting_class.config.progression
    levels = spellcasting_class.levels
    if progression == "pact":
        return min(MAX_PACT_LEVEL, (levels + 1) // 2) if levels > 0 else 0
    caster_level = spellcasting_caster_level(progression, levels)
    if caster_level <= 0:
        return 0
    return min(MAX_SPELL_LEVEL, (caster_level + 1) // 2)


class ClassDetector:
    """Enumerates an actor's spellcasting classes."""

    def __init__(self, rules: RuleResolver) -> None:
        self.rules = rules

    def detect(self, actor: Actor) -> list[SpellcastingClass]:
        """One record per class whose effective progression is not ``none``.

        A class without progression falls back to its subclass when the
        subclass grants spellcasting. Pure read.
        """
        detected: list[SpellcastingClass] = []
        seen: set[str] = set()
        for class_item in actor.class_items():
            source = self._spellcasting_source(class_item)
            if source is None:
                continue
            identifier = class_item.class_identifier
            if identifier in seen:
                logger.warning(f"Duplicate class identifier '{identifier}' on {actor.name}, skipping")
                continue
            seen.add(identifier)
            detected.append(
                SpellcastingClass(
                    id=class_item.id,
                    name=class_item.name,
                    identifier=identifier,
                    img=class_item.img,
                    levels=class_item.levels,
                    config=source.spellcasting,
                    class_item=class_item,
                    source_item=source,
                )
            )
        logger.debug(f"Detected {len(detected)} spellcasting classes on {actor.name}")
        return detected

    @staticmethod
    def _spellcasting_source(class_item: ClassItem) -> ClassItem | None:
        if class_item.spellcasting.has_progression:
            return class_item
        subclass = class_item.subclass
        if subclass is not None and subclass.spellcasting.has_progression:
            return subclass
        return None

    def find(self, actor: Actor, class_identifier: str) -> SpellcastingClass | None:
        for spellcasting_class in self.detect(actor):
            if spellcasting_class.identifier == class_identifier:
                return spellcasting_class
        return None

    def wizard_classes(self, actor: Actor, classes: list[SpellcastingClass] | None = None) -> list[str]:
        """Classes using personal spellbook mechanics.

        The ``wizard`` class always qualifies; any other class qualifies
        through ``forceWizardMode``.
        """
        classes = classes if classes is not None else self.detect(actor)
        return [
            spellcasting_class.identifier
            for spellcasting_class in classes
            if spellcasting_class.identifier == ClassIdentifiers.WIZARD
            or self.rules.get_class_rules(actor, spellcasting_class.identifier).force_wizard_mode
        ]

    # ------------------------------------------------------------------ #
    # Cleanup
    # ------------------------------------------------------------------ #

    async def cleanup_stale(self, actor: Actor, current_ids: list[str] | set[str]) -> list[str]:
        """Drop flag data for classes no longer on the actor.

        Best effort: a failing write is logged and the remaining flags are
        still processed.

        Returns:
            Descriptions of the removed entries, e.g. ``classRules.bard``
        """
        current = set(current_ids)
        removed: list[str] = []

        for flag in Flags.CLASS_KEYED:
            data = actor.get_flag(flag)
            if not isinstance(data, dict):
                continue
            stale = [key for key in data if key not in current]
            if not stale:
                continue
            for key in stale:
                del data[key]
                removed.append(f"{flag}.{key}")
            try:
                await actor.set_flag(flag, data)
                if flag == Flags.PREPARED_SPELLS_BY_CLASS:
                    await actor.set_flag(Flags.PREPARED_SPELLS, flatten_prepared(data))
            except HostWriteError as e:
                logger.error(f"Failed to prune {flag} on {actor.name}: {e.message}")

        for key in actor.flag_keys():
            for base in Flags.WIZARD_SCOPED:
                if not key.startswith(base) or key[len(base):len(base) + 1] not in ("_", "-"):
                    continue
                if key[len(base) + 1:] not in current:
                    try:
                        await actor.unset_flag(key)
                        removed.append(key)
                    except HostWriteError as e:
                        logger.error(f"Failed to remove {key} on {actor.name}: {e.message}")

        if removed:
            logger.info(f"Pruned stale class data on {actor.name}: {', '.join(removed)}")
        return removed


def flatten_prepared(prepared_by_class: dict[str, list[str]]) -> list[str]:
    """Flat ``preparedSpells`` projection: unique identities in class order."""
    flat: list[str] = []
    for keys in prepared_by_class.values():
        for key in keys:
            _, identity = parse_class_spell_key(key)
            if identity and identity not in flat:
                flat.append(identity)
    return flat


__all__ = [
    "ClassDetector",
    "calculate_max_spell_level",
    "spellcasting_caster_level",
    "flatten_prepared",
]
