"""
Preparation status classification and preparation statistics.

``PreparationSnapshot`` captures everything the classifier needs from the
actor once per organised class, so classifying hundreds of spells never
touches the flag store again. ``classify`` is a pure function over a
snapshot; ``PreparationStatsCalculator`` counts prepared spells with a
small cache.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from .constants import (
    SPECIAL_PREPARATION_MODES,
    EnforcementBehavior,
    Flags,
    PreparationContext,
    PreparationMode,
)
from .host import Actor
from .identity import canonical_identity, class_spell_key
from .models import (
    ClassItem,
    OrganizedSpell,
    PreparationStats,
    SourceItemRef,
    Spell,
    SpellLevel,
    SpellPreparationStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class PreparationSnapshot:
    """
    Read-only view of the actor state that drives preparation status.

    Attributes:
        owned: Spell items on the actor
        prepared_by_class: ``preparedSpellsByClass`` flag contents
        class_names: Class identifier -> display name
        sources: Class identifier -> item that grants its spellcasting
        items_by_id: Every non-spell item on the actor (subclasses included)
        behavior: Effective enforcement behavior
        cantrip_max: Class identifier -> maximum cantrips
        cantrip_current: Class identifier -> prepared cantrips
    """
    owned: list[Spell] = field(default_factory=list)
    prepared_by_class: dict[str, list[str]] = field(default_factory=dict)
    class_names: dict[str, str] = field(default_factory=dict)
    sources: dict[str, ClassItem] = field(default_factory=dict)
    items_by_id: dict[str, object] = field(default_factory=dict)
    behavior: EnforcementBehavior = EnforcementBehavior.NOTIFY_GM
    cantrip_max: dict[str, int] = field(default_factory=dict)
    cantrip_current: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_actor(
        cls,
        actor: Actor,
        behavior: EnforcementBehavior = EnforcementBehavior.NOTIFY_GM,
        sources: dict[str, ClassItem] | None = None,
        cantrip_max: dict[str, int] | None = None,
    ) -> "PreparationSnapshot":
        items_by_id: dict[str, object] = {}
        class_names: dict[str, str] = {}
        for class_item in actor.class_items():
            items_by_id[class_item.id] = class_item
            class_names[class_item.class_identifier] = class_item.name
            if class_item.subclass is not None:
                items_by_id[class_item.subclass.id] = class_item.subclass
        for item in actor.items:
            if not isinstance(item, (Spell, ClassItem)):
                items_by_id[item.id] = item
        owned = actor.spells()
        cantrip_current: dict[str, int] = {}
        for spell in owned:
            if spell.level == 0 and spell.prepared == 1 and spell.source_class:
                cantrip_current[spell.source_class] = cantrip_current.get(spell.source_class, 0) + 1
        return cls(
            owned=owned,
            prepared_by_class=actor.get_flag(Flags.PREPARED_SPELLS_BY_CLASS) or {},
            class_names=class_names,
            sources=dict(sources or {}),
            items_by_id=items_by_id,
            behavior=behavior,
            cantrip_max=dict(cantrip_max or {}),
            cantrip_current=cantrip_current,
        )

    def find_owned(
        self,
        identity: str,
        class_identifier: str | None = None,
        prepared_only: bool = False,
        unassigned: bool = False,
    ) -> Spell | None:
        """First owned spell matching an identity (and optionally a class)."""
        for spell in self.owned:
            if identity not in (spell.compendium_source, spell.uuid):
                continue
            if class_identifier is not None and spell.source_class != class_identifier:
                continue
            if prepared_only and (spell.prepared != 1 or spell.method == PreparationMode.RITUAL):
                continue
            if unassigned and spell.source_class:
                continue
            return spell
        return None

    def prepared_by_other(self, identity: str, class_identifier: str | None) -> str | None:
        for other, keys in self.prepared_by_class.items():
            if other == class_identifier:
                continue
            if class_spell_key(other, identity) in keys:
                return other
        return None

    def class_name(self, class_identifier: str | None) -> str:
        if not class_identifier:
            return ""
        return self.class_names.get(class_identifier, class_identifier)


def is_special_spell(spell: Spell) -> bool:
    """Owned spells that are not a preparation choice."""
    return spell.method in SPECIAL_PREPARATION_MODES or spell.prepared == 2 or spell.is_granted


def determine_spell_source(spell: Spell, snapshot: PreparationSnapshot) -> SourceItemRef | None:
    """The item responsible for an owned spell, if it can be found."""
    if spell.advancement_origin:
        item = snapshot.items_by_id.get(spell.advancement_origin.split(".")[0])
        if item is not None:
            return SourceItemRef(name=item.name, type=item.type, id=item.id)
    if spell.cached_for:
        parts = spell.cached_for.split(".")
        item_id = parts[parts.index("Item") + 1] if "Item" in parts[:-1] else spell.cached_for
        item = snapshot.items_by_id.get(item_id)
        if item is not None:
            return SourceItemRef(name=item.name, type=item.type, id=item.id)

    source = snapshot.sources.get(spell.source_class or "")
    if spell.prepared == 2 or spell.method in (PreparationMode.ALWAYS, PreparationMode.PACT):
        if source is not None and source.type == "subclass":
            return SourceItemRef(name=source.name, type="subclass", id=source.id)
        for item in snapshot.items_by_id.values():
            if getattr(item, "type", None) == "subclass":
                return SourceItemRef(name=item.name, type="subclass", id=item.id)
        if spell.method == PreparationMode.PACT:
            return SourceItemRef(name="Pact Magic", type="class")
        return None

    if source is not None:
        return SourceItemRef(name=source.name, type=source.type, id=source.id)
    for item in snapshot.items_by_id.values():
        if getattr(item, "type", None) == "class":
            return SourceItemRef(name=item.name, type="class", id=item.id)
    return None


def owned_status(spell: Spell, snapshot: PreparationSnapshot) -> SpellPreparationStatus:
    """Status of a spell the actor owns."""
    always = spell.prepared == 2
    innate = spell.method == PreparationMode.INNATE
    at_will = spell.method == PreparationMode.AT_WILL
    source = determine_spell_source(spell, snapshot)
    granted = source is not None and spell.is_granted
    if granted:
        reason = "Granted by another item"
    elif always:
        reason = "Always prepared"
    elif innate:
        reason = "Innate spellcasting"
    elif at_will:
        reason = "Castable at will"
    else:
        reason = ""
    return SpellPreparationStatus(
        prepared=granted or always or innate or at_will or spell.prepared == 1,
        is_owned=True,
        preparation_mode=spell.method,
        disabled=granted or always or innate or at_will,
        disabled_reason=reason,
        always_prepared=always,
        source_item=source,
        is_granted=granted,
    )


def _apply_cantrip_lock(
    status: SpellPreparationStatus,
    level: int,
    class_identifier: str | None,
    snapshot: PreparationSnapshot,
) -> SpellPreparationStatus:
    if level != 0 or not class_identifier or status.prepared:
        return status
    maximum = snapshot.cantrip_max.get(class_identifier, 0)
    current = snapshot.cantrip_current.get(class_identifier, 0)
    if current >= maximum:
        status.is_cantrip_locked = snapshot.behavior == EnforcementBehavior.ENFORCED
        status.cantrip_lock_reason = "Maximum cantrips reached"
    return status


def classify(
    spell: Spell,
    class_identifier: str | None,
    snapshot: PreparationSnapshot,
    context: PreparationContext | str | None = None,
) -> SpellPreparationStatus:
    """Compute the preparation status of a spell in a class tab.

    Args:
        spell: Compendium document or owned item
        class_identifier: Tab class; defaults to the spell's source class
        snapshot: Actor state captured for this pass
        context: ``preparable`` for entries that carry a checkbox

    Returns:
        A fresh SpellPreparationStatus
    """
    class_identifier = class_identifier or spell.source_class
    identity = canonical_identity(spell)
    prepared_keys = snapshot.prepared_by_class.get(class_identifier or "", [])

    if context == PreparationContext.PREPARABLE:
        prepared = class_spell_key(class_identifier or "", identity) in prepared_keys
        if not prepared:
            prepared = snapshot.find_owned(identity, class_identifier, prepared_only=True) is not None
        other = snapshot.prepared_by_other(identity, class_identifier)
        if other is not None:
            return SpellPreparationStatus(
                preparation_mode=PreparationMode.SPELL.value,
                disabled_reason=f"Prepared by {snapshot.class_name(other)}",
                prepared_by_other_class=other,
            )
        return _apply_cantrip_lock(SpellPreparationStatus(prepared=prepared), spell.level, class_identifier, snapshot)

    owned = snapshot.find_owned(identity, class_identifier, prepared_only=True) or snapshot.find_owned(
        identity, class_identifier
    )
    if owned is not None:
        return owned_status(owned, snapshot)

    unassigned = snapshot.find_owned(identity, unassigned=True)
    if unassigned is not None and class_identifier:
        return owned_status(unassigned, snapshot)

    other = snapshot.prepared_by_other(identity, class_identifier)
    if other is not None:
        return SpellPreparationStatus(
            prepared=True,
            preparation_mode=PreparationMode.SPELL.value,
            disabled=True,
            disabled_reason=f"Prepared by {snapshot.class_name(other)}",
            prepared_by_other_class=other,
        )

    special = snapshot.find_owned(identity)
    if special is not None:
        if special.prepared == 2:
            return SpellPreparationStatus(
                prepared=True,
                preparation_mode=PreparationMode.ALWAYS.value,
                disabled=True,
                always_prepared=True,
                disabled_reason=f"Always prepared by {snapshot.class_name(special.source_class) or 'Feature'}",
                source_item=determine_spell_source(special, snapshot),
            )
        if special.is_granted:
            source = determine_spell_source(special, snapshot)
            return SpellPreparationStatus(
                prepared=True,
                preparation_mode=PreparationMode.GRANTED.value,
                disabled=True,
                is_granted=True,
                disabled_reason=f"Granted by {source.name if source else 'Feature'}",
                source_item=source,
            )
        if special.method in SPECIAL_PREPARATION_MODES:
            return SpellPreparationStatus(
                prepared=True,
                preparation_mode=special.method,
                disabled=True,
                disabled_reason=(
                    f"{special.method} spell of "
                    f"{snapshot.class_name(special.source_class) or class_identifier or 'unknown class'}"
                ),
                source_item=determine_spell_source(special, snapshot),
            )

    status = SpellPreparationStatus(prepared=class_spell_key(class_identifier or "", identity) in prepared_keys)
    return _apply_cantrip_lock(status, spell.level, class_identifier, snapshot)


# ---------------------------------------------------------------------- #
# Statistics
# ---------------------------------------------------------------------- #


def _flatten(spells: Iterable[SpellLevel] | Iterable[OrganizedSpell]) -> list[OrganizedSpell]:
    flat: list[OrganizedSpell] = []
    for entry in spells:
        if isinstance(entry, SpellLevel):
            flat.extend(entry.spells)
        else:
            flat.append(entry)
    return flat


def count_prepared(class_identifier: str, spells: Iterable[SpellLevel] | Iterable[OrganizedSpell]) -> int:
    """Leveled spells prepared by choice for ``class_identifier``."""
    return sum(
        1
        for entry in _flatten(spells)
        if entry.level != 0
        and entry.spell.method == PreparationMode.SPELL
        and entry.spell.prepared == 1
        and entry.source_class == class_identifier
    )


class PreparationStatsCalculator:
    """Prepared/maximum counts per class, cached on spell count and levels."""

    def __init__(self) -> None:
        self._cache: dict[tuple[str, int, int], PreparationStats] = {}

    def clear(self) -> None:
        self._cache.clear()

    def compute(
        self,
        class_identifier: str,
        spells: Iterable[SpellLevel] | Iterable[OrganizedSpell],
        base_max: int,
        preparation_bonus: int = 0,
        class_levels: int = 0,
    ) -> PreparationStats:
        """Preparation stats for one class.

        Args:
            class_identifier: Class being counted
            spells: Grouped levels or a flat spell list
            base_max: Preparation maximum from the spellcasting config
            preparation_bonus: ``spellPreparationBonus`` from the class rules
            class_levels: Levels in the class, part of the cache key
        """
        flat = _flatten(spells)
        key = (class_identifier, len(flat), class_levels)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Preparation stats cache hit for {class_identifier}")
            return PreparationStats(current=count_prepared(class_identifier, flat), maximum=cached.maximum)
        stats = PreparationStats(
            current=count_prepared(class_identifier, flat),
            maximum=max(0, base_max + preparation_bonus),
        )
        self._cache[key] = stats
        return stats.model_copy()


__all__ = [
    "PreparationSnapshot",
    "PreparationStatsCalculator",
    "classify",
    "count_prepared",
    "determine_spell_source",
    "is_special_spell",
    "owned_status",
]
